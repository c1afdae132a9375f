"""Unit tests for core/exceptions.py."""

import pytest

from core.exceptions import (
    DuplicateRequestError,
    ExternalServiceError,
    InvalidTransitionError,
    NotificationDeliveryError,
    NyaMediaError,
    PersistenceError,
    RequestNotFoundError,
    ServiceInitializationError,
)


class TestNyaMediaError:
    """Tests for the base exception class."""

    def test_message_attribute(self):
        err = NyaMediaError("something went wrong")
        assert err.message == "something went wrong"

    def test_str_output(self):
        err = NyaMediaError("something went wrong")
        assert str(err) == "something went wrong"

    def test_details_default_empty(self):
        err = NyaMediaError("msg")
        assert err.details == {}

    def test_details_provided(self):
        err = NyaMediaError("msg", details={"key": "val"})
        assert err.details == {"key": "val"}

    def test_inherits_from_exception(self):
        err = NyaMediaError("msg")
        assert isinstance(err, Exception)


SUBCLASSES = [
    PersistenceError,
    ServiceInitializationError,
]


@pytest.mark.parametrize("cls", SUBCLASSES, ids=lambda c: c.__name__)
class TestExceptionSubclasses:
    """Plain subclasses inherit from NyaMediaError and carry message/details."""

    def test_inherits_from_base(self, cls):
        err = cls("test")
        assert isinstance(err, NyaMediaError)

    def test_message_and_details(self, cls):
        err = cls("detail msg", details={"a": 1})
        assert err.message == "detail msg"
        assert err.details == {"a": 1}
        assert str(err) == "detail msg"


class TestDomainErrors:
    def test_duplicate_request(self):
        err = DuplicateRequestError("TMDB/TV", "12345")
        assert err.details == {"source": "TMDB/TV", "media_id": "12345"}
        assert "TMDB/TV/12345" in err.message

    def test_external_service_defaults(self):
        err = ExternalServiceError("Emby create_user returned 500", tag="Emby API")
        assert err.tag == "Emby API"
        assert err.user_message is None
        assert err.details == {}

    def test_invalid_transition(self):
        err = InvalidTransitionError(7, "ARCHIVED", "CANCELLED")
        assert err.message == "Request 7 cannot move from ARCHIVED to CANCELLED"
        assert err.current == "ARCHIVED"

    def test_request_not_found(self):
        assert RequestNotFoundError(3).message == "Request 3 not found"

    def test_notification_delivery(self):
        err = NotificationDeliveryError("blocked", chat_id=1001)
        assert err.chat_id == 1001
        assert isinstance(err, NyaMediaError)
