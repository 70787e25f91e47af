"""Tests for custom telematics tracker exceptions."""

import pytest
from exceptions import (
    AuthenticationError,
    ConfigurationError,
    DatabaseError,
    RateLimitedError,
    RemoteAPIError,
    TelematicsTrackerError,
)


class TestTelematicsTrackerError:
    """Tests for base TelematicsTrackerError."""

    def test_basic_message(self):
        """Test exception with just a message."""
        error = TelematicsTrackerError("Something went wrong")
        assert str(error) == "Something went wrong"
        assert error.message == "Something went wrong"
        assert error.details == {}

    def test_with_details(self):
        """Test exception with details dict."""
        error = TelematicsTrackerError("Error occurred", {"vehicle_id": 3})
        assert str(error) == "Error occurred - {'vehicle_id': 3}"
        assert error.details == {"vehicle_id": 3}

    def test_is_exception(self):
        """Test that it's a proper Exception subclass."""
        with pytest.raises(TelematicsTrackerError):
            raise TelematicsTrackerError("test")


class TestDatabaseError:
    """Tests for DatabaseError."""

    def test_inheritance(self):
        """DatabaseError is a TelematicsTrackerError."""
        assert isinstance(DatabaseError("DB connection failed"), TelematicsTrackerError)


class TestRemoteAPIError:
    """Tests for RemoteAPIError and its subclasses."""

    def test_status_code_in_details(self):
        """Status code is kept on the error and in details."""
        error = RemoteAPIError("Vehicle not found", status_code=404)
        assert error.status_code == 404
        assert error.details == {"service": "telematics", "status_code": 404}
        assert error.message == "Vehicle not found"

    def test_without_status_code(self):
        """Transport failures have no status code."""
        error = RemoteAPIError("Connection error")
        assert error.status_code is None
        assert "status_code" not in error.details

    def test_rate_limited(self):
        """RateLimitedError is a 429 with an optional Retry-After."""
        error = RateLimitedError(retry_after=30)
        assert isinstance(error, RemoteAPIError)
        assert error.status_code == 429
        assert error.retry_after == 30
        assert error.details["retry_after"] == 30
        assert error.message == "Too many requests"

    def test_rate_limited_without_retry_after(self):
        """Retry-After is optional."""
        error = RateLimitedError()
        assert error.retry_after is None
        assert "retry_after" not in error.details

    def test_authentication_error(self):
        """AuthenticationError is a 401 tied to an account."""
        error = AuthenticationError("Token expired", account_id=7)
        assert error.status_code == 401
        assert error.account_id == 7
        assert error.details["account_id"] == 7


class TestConfigurationError:
    """Tests for ConfigurationError."""

    def test_configuration_error(self):
        """Config key is carried in details."""
        error = ConfigurationError("Missing URL", config_key="TELEMATICS_API_URL")
        assert error.config_key == "TELEMATICS_API_URL"
        assert error.details == {"config_key": "TELEMATICS_API_URL"}
