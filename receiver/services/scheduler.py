"""
Adaptive poll scheduler for the telematics tracker.

Owns one recurring APScheduler job per active account. Each run polls every
active vehicle on the account, then picks the next interval: short while any
vehicle is awake, long while all are asleep, and a temporary backoff after
the remote API rate limits us.
"""

import enum
import logging
import math
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from config import Config
from database import SessionLocal, get_scheduler_db
from exceptions import (
    AuthenticationError,
    ConfigurationError,
    DatabaseError,
    RateLimitedError,
    TelematicsTrackerError,
)
from models import TelematicsAccount
from services.state_buffer import VehicleStateBuffer, state_buffer
from services.vehicle_service import get_active_vehicles, process_vehicle_state
from sqlalchemy.exc import IntegrityError, OperationalError
from utils.telematics_client import TelematicsClient
from utils.timezone import utc_now
from utils.wide_events import WideEvent, track_operation

logger = logging.getLogger(__name__)

# Module-level scheduler instance
poll_scheduler = None

# The remote API has no structured "token expired" code; these phrases in an
# error message are the only signal.
TOKEN_EXPIRY_MARKERS = (
    "internal_server_error",
    "unauthenticated",
    "unauthorized",
    "unexpected error occurred",
)


def job_id_for(account_id: int) -> str:
    return f"poll-account-{account_id}"


def _message(error: Exception) -> str:
    if isinstance(error, TelematicsTrackerError):
        return error.message
    return str(error)


def is_likely_token_expiration(error: Exception) -> bool:
    """Heuristic check for an expired access token behind a remote API error."""
    if isinstance(error, AuthenticationError) or getattr(error, "status_code", None) == 401:
        return True
    message = _message(error).lower()
    return any(marker in message for marker in TOKEN_EXPIRY_MARKERS)


class AuthRefreshState(enum.Enum):
    NOT_ATTEMPTED = "not_attempted"
    REFRESHING = "refreshing"
    REFRESHED = "refreshed"
    FAILED = "failed"


class AuthRefresh:
    """
    Per-cycle token refresh tracker.

    A cycle may refresh at most once: NOT_ATTEMPTED -> REFRESHING ->
    REFRESHED or FAILED, with no way back.
    """

    def __init__(self):
        self.state = AuthRefreshState.NOT_ATTEMPTED

    @property
    def can_attempt(self) -> bool:
        return self.state == AuthRefreshState.NOT_ATTEMPTED

    def begin(self) -> None:
        if not self.can_attempt:
            raise RuntimeError(f"Token refresh already {self.state.value} in this cycle")
        self.state = AuthRefreshState.REFRESHING

    def complete(self, success: bool) -> None:
        if self.state != AuthRefreshState.REFRESHING:
            raise RuntimeError(f"Cannot complete token refresh from state {self.state.value}")
        self.state = AuthRefreshState.REFRESHED if success else AuthRefreshState.FAILED


@dataclass
class AccountSchedule:
    """Scheduling record for one account."""

    account_id: int
    interval_seconds: int
    backoff_until: Optional[datetime] = None
    any_awake: bool = False
    last_run_at: Optional[datetime] = None

    def in_backoff(self, now: datetime) -> bool:
        return self.backoff_until is not None and now < self.backoff_until

    def to_dict(self) -> Dict:
        return {
            "account_id": self.account_id,
            "job_id": job_id_for(self.account_id),
            "interval_seconds": self.interval_seconds,
            "backoff_until": self.backoff_until.isoformat() if self.backoff_until else None,
            "any_awake": self.any_awake,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
        }


@dataclass
class CycleResult:
    """Outcome of one account poll cycle."""

    account_id: int
    skipped_reason: Optional[str] = None
    vehicles_polled: int = 0
    states_persisted: int = 0
    any_awake: bool = False
    errors: List[str] = field(default_factory=list)
    rate_limited: bool = False
    cancelled: bool = False
    auth_state: AuthRefreshState = AuthRefreshState.NOT_ATTEMPTED


class PollScheduler:
    """
    Registry of per-account poll jobs on top of a BackgroundScheduler.

    Cycles for different accounts run concurrently on the scheduler's thread
    pool. A cycle for an account never overlaps another cycle for the same
    account: APScheduler caps each job at one instance, and a per-account
    lock also covers on-demand runs.
    """

    def __init__(
        self,
        scheduler: Optional[BackgroundScheduler] = None,
        client_factory: Optional[Callable] = None,
        buffer: Optional[VehicleStateBuffer] = None,
        awake_interval: Optional[int] = None,
        asleep_interval: Optional[int] = None,
        backoff_seconds: Optional[int] = None,
    ):
        self.scheduler = scheduler or BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(Config.POLL_MAX_WORKERS)},
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        self.client_factory = client_factory or TelematicsClient
        self.buffer = buffer or state_buffer
        self.awake_interval = awake_interval or Config.POLL_INTERVAL_AWAKE_SECONDS
        self.asleep_interval = asleep_interval or Config.POLL_INTERVAL_ASLEEP_SECONDS
        self.backoff_seconds = backoff_seconds or Config.POLL_BACKOFF_SECONDS
        for key, value in (
            ("POLL_INTERVAL_AWAKE_SECONDS", self.awake_interval),
            ("POLL_INTERVAL_ASLEEP_SECONDS", self.asleep_interval),
            ("POLL_BACKOFF_SECONDS", self.backoff_seconds),
        ):
            if value <= 0:
                raise ConfigurationError(f"{key} must be positive, got {value}", config_key=key)

        self.cancel_event = threading.Event()
        self._schedules: Dict[int, AccountSchedule] = {}
        self._account_locks: Dict[int, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def _account_lock(self, account_id: int) -> threading.Lock:
        with self._registry_lock:
            lock = self._account_locks.get(account_id)
            if lock is None:
                lock = self._account_locks[account_id] = threading.Lock()
            return lock

    def _install(self, account_id: int, interval_seconds: int) -> None:
        """Add the account's job, or move an existing one to a new interval."""
        job_id = job_id_for(account_id)
        if self.scheduler.get_job(job_id):
            self.scheduler.reschedule_job(job_id, trigger="interval", seconds=interval_seconds)
        else:
            self.scheduler.add_job(
                self.run_cycle,
                "interval",
                seconds=interval_seconds,
                id=job_id,
                args=[account_id],
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )

    def is_registered(self, account_id: int) -> bool:
        with self._registry_lock:
            return account_id in self._schedules

    def get_schedule(self, account_id: int) -> Optional[AccountSchedule]:
        with self._registry_lock:
            return self._schedules.get(account_id)

    def get_interval(self, account_id: int) -> Optional[int]:
        schedule = self.get_schedule(account_id)
        return schedule.interval_seconds if schedule else None

    def next_run_time(self, account_id: int) -> Optional[datetime]:
        job = self.scheduler.get_job(job_id_for(account_id))
        return getattr(job, "next_run_time", None) if job else None

    def register_account(self, account_id: int) -> bool:
        """
        Install the account's poll job at the asleep interval.

        Returns:
            True if a job was installed, False if the account was already registered
        """
        with self._registry_lock:
            if account_id in self._schedules:
                return False
            self._schedules[account_id] = AccountSchedule(account_id, self.asleep_interval)

        self._install(account_id, self.asleep_interval)
        logger.info(f"Registered poll job for account {account_id} every {self.asleep_interval}s")
        return True

    def remove_account(self, account_id: int) -> bool:
        """
        Uninstall the account's poll job and forget its schedule.

        Returns:
            True if anything was removed
        """
        with self._registry_lock:
            removed = self._schedules.pop(account_id, None) is not None

        job_id = job_id_for(account_id)
        if self.scheduler.get_job(job_id):
            self.scheduler.remove_job(job_id)
            removed = True

        if removed:
            logger.info(f"Removed poll job for account {account_id}")
        return removed

    def adjust_cadence(self, account_id: int, any_awake: bool) -> bool:
        """
        Move the job to the awake or asleep interval.

        No-op while a backoff is active or if the interval would not change.

        Returns:
            True if the job was rescheduled
        """
        now = utc_now()
        with self._registry_lock:
            schedule = self._schedules.get(account_id)
            if schedule is None:
                return False

            schedule.any_awake = any_awake
            if schedule.in_backoff(now):
                logger.debug(f"Account {account_id} in backoff until {schedule.backoff_until}, keeping interval")
                return False
            schedule.backoff_until = None

            target = self.awake_interval if any_awake else self.asleep_interval
            if target == schedule.interval_seconds:
                return False
            previous = schedule.interval_seconds
            schedule.interval_seconds = target

        self._install(account_id, target)
        logger.info(
            f"Account {account_id} poll interval {previous}s -> {target}s "
            f"({'vehicle awake' if any_awake else 'all vehicles asleep'})"
        )
        return True

    def backoff(self, account_id: int, duration_seconds: float) -> None:
        """
        Widen the account's interval to ``duration_seconds`` and hold it that long.

        The job is kept; awake/asleep cadence resumes once the backoff lapses.
        """
        duration = max(int(math.ceil(duration_seconds)), 1)
        with self._registry_lock:
            schedule = self._schedules.get(account_id)
            if schedule is None:
                schedule = self._schedules[account_id] = AccountSchedule(account_id, duration)
            schedule.interval_seconds = duration
            schedule.backoff_until = utc_now() + timedelta(seconds=duration)

        self._install(account_id, duration)
        logger.warning(f"Backing off account {account_id} polling for {duration}s")

    def trigger_immediate_poll(self, account_id: int) -> None:
        """Run the account's cycle as soon as a worker is free."""
        self.register_account(account_id)
        self.scheduler.modify_job(job_id_for(account_id), next_run_time=datetime.now(timezone.utc))
        logger.info(f"Triggered immediate poll for account {account_id}")

    def synchronize_jobs(self) -> int:
        """
        Make the registered jobs match the accounts that can be polled.

        Registers every active account with an access token and removes jobs
        for accounts that no longer qualify.

        Returns:
            Number of newly registered accounts
        """
        with track_operation("synchronize_jobs") as event:
            db = get_scheduler_db()
            try:
                account_ids = {
                    account_id
                    for (account_id,) in db.query(TelematicsAccount.id)
                    .filter(TelematicsAccount.is_active.is_(True), TelematicsAccount.access_token.isnot(None))
                    .all()
                }
            finally:
                SessionLocal.remove()

            with self._registry_lock:
                stale = [account_id for account_id in self._schedules if account_id not in account_ids]
            for account_id in stale:
                self.remove_account(account_id)

            registered = sum(1 for account_id in sorted(account_ids) if self.register_account(account_id))
            event.add_business_metric("accounts_registered", registered)
            event.add_business_metric("accounts_removed", len(stale))

        logger.info(f"Synchronized poll jobs: {registered} registered, {len(stale)} removed")
        return registered

    # ------------------------------------------------------------------
    # Poll cycle
    # ------------------------------------------------------------------

    def run_cycle(self, account_id: int) -> CycleResult:
        """
        Poll every active vehicle on an account once.

        Never raises: every failure ends up in the account's last_sync_error
        or in a scheduling backoff.
        """
        lock = self._account_lock(account_id)
        if not lock.acquire(blocking=False):
            logger.info(f"Poll cycle for account {account_id} already running, skipping")
            return CycleResult(account_id, skipped_reason="already_running")
        try:
            return self._run_cycle(account_id)
        finally:
            lock.release()

    def _run_cycle(self, account_id: int) -> CycleResult:
        result = CycleResult(account_id)
        event = WideEvent("poll_cycle", trace_id=f"account-{account_id}")
        event.add_context(account_id=account_id)

        db = get_scheduler_db()
        try:
            account = db.query(TelematicsAccount).filter(TelematicsAccount.id == account_id).first()
            if account is None:
                logger.warning(f"Account {account_id} no longer exists, removing its poll job")
                self.remove_account(account_id)
                result.skipped_reason = "account_missing"
                event.add_business_metric("account_removed", True)
                event.mark_success()
                return result

            if not account.is_active:
                result.skipped_reason = "inactive"
            elif not account.access_token:
                result.skipped_reason = "no_token"
            if result.skipped_reason:
                logger.debug(f"Skipping poll for account {account_id}: {result.skipped_reason}")
                event.add_context(skipped_reason=result.skipped_reason)
                event.mark_success()
                return result

            client = self.client_factory(account)
            auth = AuthRefresh()

            try:
                for vehicle in get_active_vehicles(db, account_id):
                    if self.cancel_event.is_set():
                        logger.info(f"Poll cycle for account {account_id} cancelled")
                        result.cancelled = True
                        break
                    with event.timer(f"vehicle_{vehicle.id}"):
                        self._poll_vehicle(db, client, account, vehicle, auth, result)
            except RateLimitedError as e:
                db.rollback()
                result.rate_limited = True
                self.backoff(account_id, e.retry_after or self.backoff_seconds)
                account.last_sync_error = f"Rate limited: {e.message}"
                db.commit()
                event.add_business_metric("backoff_applied", True)
                event.add_error(e)
                return result
            finally:
                result.auth_state = auth.state
                event.add_context(auth_state=auth.state.value)
                if auth.state == AuthRefreshState.REFRESHED:
                    event.add_business_metric("auth_refreshed", True)

            now = utc_now()
            if self.adjust_cadence(account_id, result.any_awake):
                event.add_business_metric("cadence_changed", True)
            schedule = self.get_schedule(account_id)
            if schedule:
                schedule.last_run_at = now
                account.poll_interval_seconds = schedule.interval_seconds

            account.last_sync_at = now
            account.last_sync_error = "; ".join(result.errors) if result.errors else None
            db.commit()

            if result.errors:
                event.mark_failure(account.last_sync_error)
            else:
                event.mark_success()
            return result

        except (IntegrityError, OperationalError) as e:
            error = DatabaseError(f"Poll cycle failed for account {account_id}: {e}")
            logger.error(str(error), exc_info=True)
            db.rollback()
            self._record_account_error(db, account_id, error.message)
            event.add_error(error)
            result.errors.append(error.message)
            return result
        except Exception as e:
            logger.exception(f"Unexpected error polling account {account_id}: {e}")
            db.rollback()
            self._record_account_error(db, account_id, f"Unexpected error: {e}")
            event.add_error(e)
            result.errors.append(str(e))
            return result
        finally:
            event.add_business_metric("vehicles_polled", result.vehicles_polled)
            event.add_business_metric("states_persisted", result.states_persisted)
            event.add_business_metric("vehicle_errors", len(result.errors))
            event.add_context(any_awake=result.any_awake, interval_seconds=self.get_interval(account_id))
            event.emit(level="warning" if not event.context.get("success", True) else "info")
            SessionLocal.remove()

    def _poll_vehicle(self, db, client, account, vehicle, auth: AuthRefresh, result: CycleResult) -> None:
        """
        Fetch and process one vehicle, recording any failure on ``result``.

        Raises:
            RateLimitedError: Propagated so the cycle can back off
        """
        suffix = ""
        try:
            try:
                payload = client.fetch_state(vehicle.remote_vehicle_id)
            except RateLimitedError:
                raise
            except Exception as e:
                if not (is_likely_token_expiration(e) and auth.can_attempt):
                    raise
                logger.info(f"Account {account.id}: possible token expiry ({_message(e)}), refreshing")
                auth.begin()
                try:
                    refreshed = client.refresh_auth()
                except Exception:
                    auth.complete(False)
                    raise
                auth.complete(refreshed)
                if not refreshed:
                    suffix = " (token refresh failed)"
                    raise
                db.commit()
                suffix = " (after token refresh)"
                payload = client.fetch_state(vehicle.remote_vehicle_id)

            merged, persisted = process_vehicle_state(db, vehicle, payload, buffer=self.buffer)
        except RateLimitedError:
            raise
        except Exception as e:
            db.rollback()
            message = f"Vehicle {vehicle.display_name}: {_message(e)}{suffix}"
            if isinstance(e, TelematicsTrackerError):
                logger.warning(f"Account {account.id}: {message}")
            else:
                logger.exception(f"Account {account.id}: {message}")
            result.errors.append(message)
            return

        result.vehicles_polled += 1
        if persisted:
            result.states_persisted += 1
        if merged.is_awake:
            result.any_awake = True

    def _record_account_error(self, db, account_id: int, message: str) -> None:
        try:
            account = db.query(TelematicsAccount).filter(TelematicsAccount.id == account_id).first()
            if account is not None:
                account.last_sync_error = message
                db.commit()
        except (IntegrityError, OperationalError) as e:
            logger.error(f"Failed to record sync error for account {account_id}: {e}", exc_info=True)
            db.rollback()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.cancel_event.clear()
        self.synchronize_jobs()
        self.scheduler.start()
        logger.info("Poll scheduler started")

    def shutdown(self, wait: bool = True) -> None:
        """Signal running cycles to stop after their current vehicle, then stop the scheduler."""
        self.cancel_event.set()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
        logger.info("Poll scheduler shut down")


def get_poll_scheduler() -> PollScheduler:
    """Get the shared PollScheduler, creating it (not started) on first use."""
    global poll_scheduler
    if poll_scheduler is None:
        poll_scheduler = PollScheduler()
    return poll_scheduler


def init_scheduler() -> PollScheduler:
    """
    Initialize and start the background poll scheduler.

    Returns:
        The PollScheduler instance
    """
    scheduler = get_poll_scheduler()
    scheduler.start()
    logger.info("Background scheduler initialized")
    return scheduler


def shutdown_scheduler():
    """Shutdown the background scheduler gracefully."""
    if poll_scheduler:
        poll_scheduler.shutdown()
        logger.info("Background scheduler shut down")
