"""
Tests for exception classes.

Covers all exception types and their string representations.
"""

from uuid import uuid4

import pytest

from entitlements.exceptions import (
    AuthenticationError,
    AuthorizationError,
    CollaboratorUnavailableError,
    DataIntegrityError,
    EntitlementError,
    QuotaExceededError,
    ResourceNotFoundError,
)


class TestHierarchy:
    """Every error is an EntitlementError."""

    @pytest.mark.parametrize(
        "error",
        [
            CollaboratorUnavailableError("catalog", "timeout"),
            ResourceNotFoundError("missing"),
            QuotaExceededError(uuid4(), 5, 5),
            DataIntegrityError("duplicate"),
            AuthenticationError("bad key"),
            AuthorizationError("downloads:write"),
        ],
    )
    def test_subclass_of_base(self, error):
        """A single except clause catches the whole family."""
        with pytest.raises(EntitlementError):
            raise error


class TestMessages:
    """String representations."""

    def test_collaborator_unavailable(self):
        """Names the collaborator."""
        error = CollaboratorUnavailableError("ledger", "connection refused")

        assert error.collaborator == "ledger"
        assert str(error) == "ledger unavailable: connection refused"

    def test_quota_exceeded(self):
        """Mentions the limit and the count."""
        user_id = uuid4()
        error = QuotaExceededError(user_id, limit=5, used=5)

        assert "Monthly download limit of 5 reached" in str(error)
        assert str(user_id) in str(error)

    def test_data_integrity(self):
        """Prefixed for log grepping."""
        assert str(DataIntegrityError("two products")) == "Data integrity error: two products"

    def test_authorization(self):
        """Names the missing permission."""
        error = AuthorizationError("downloads:write")

        assert error.required_permission == "downloads:write"
        assert "downloads:write" in str(error)
