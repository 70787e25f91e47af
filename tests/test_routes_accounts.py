"""
Tests for account scheduling API routes and the health check.
"""

from services.scheduler import get_poll_scheduler


class TestAccountRoutes:
    """Tests for /api/accounts/<id>."""

    def test_get_account(self, client, account, vehicle):
        """Returns sync status and vehicles."""
        response = client.get(f'/api/accounts/{account.id}')

        assert response.status_code == 200
        data = response.get_json()
        assert data['email'] == 'driver@example.com'
        assert [v['id'] for v in data['vehicles']] == [vehicle.id]

    def test_get_account_not_found(self, client):
        """Unknown accounts are 404."""
        assert client.get('/api/accounts/999').status_code == 404


class TestPollRoute:
    """Tests for POST /api/accounts/<id>/poll."""

    def test_trigger_poll(self, client, account):
        """Triggering registers the job and schedules it now."""
        response = client.post(f'/api/accounts/{account.id}/poll')

        assert response.status_code == 202
        data = response.get_json()
        assert data['status'] == 'scheduled'
        assert data['schedule']['registered'] is True
        assert data['schedule']['next_run_time'] is not None
        assert get_poll_scheduler().is_registered(account.id)

    def test_trigger_poll_unknown_account(self, client):
        """Unknown accounts are 404."""
        assert client.post('/api/accounts/999/poll').status_code == 404

    def test_trigger_poll_inactive_account(self, client, db_session, account):
        """Inactive accounts cannot be polled."""
        account.is_active = False
        db_session.commit()

        response = client.post(f'/api/accounts/{account.id}/poll')

        assert response.status_code == 409
        assert not get_poll_scheduler().is_registered(account.id)


class TestScheduleRoutes:
    """Tests for /api/accounts/<id>/schedule."""

    def test_unregistered_schedule(self, client, account):
        """An account without a job reports registered False."""
        response = client.get(f'/api/accounts/{account.id}/schedule')

        assert response.status_code == 200
        assert response.get_json()['registered'] is False

    def test_register(self, client, account):
        """Registering creates the job at the asleep interval."""
        response = client.post(f'/api/accounts/{account.id}/schedule')

        assert response.status_code == 201
        data = response.get_json()
        assert data['created'] is True
        assert data['schedule']['interval_seconds'] == get_poll_scheduler().asleep_interval

    def test_register_twice(self, client, account):
        """Registering again is a no-op."""
        client.post(f'/api/accounts/{account.id}/schedule')

        response = client.post(f'/api/accounts/{account.id}/schedule')

        assert response.status_code == 200
        assert response.get_json()['created'] is False

    def test_register_unknown_account(self, client):
        """Unknown accounts are 404."""
        assert client.post('/api/accounts/999/schedule').status_code == 404

    def test_remove(self, client, account):
        """Removing the job unregisters the account."""
        client.post(f'/api/accounts/{account.id}/schedule')

        response = client.delete(f'/api/accounts/{account.id}/schedule')

        assert response.status_code == 200
        assert response.get_json() == {'removed': True}
        assert not get_poll_scheduler().is_registered(account.id)

    def test_remove_missing(self, client, account):
        """Removing a job that does not exist is 404."""
        assert client.delete(f'/api/accounts/{account.id}/schedule').status_code == 404


class TestHealthCheck:
    """Tests for /api/health."""

    def test_healthy(self, client):
        """Database reachable and scheduler reported."""
        response = client.get('/api/health')

        assert response.status_code == 200
        data = response.get_json()
        assert data['status'] == 'healthy'
        assert data['scheduler_running'] is False
        assert data['scheduled_accounts'] == 0

    def test_unknown_route(self, client):
        """Unknown routes return a JSON 404."""
        response = client.get('/api/nope')

        assert response.status_code == 404
        assert response.get_json() == {'error': 'Not found'}
