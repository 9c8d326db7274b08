"""Unit tests for the role capability matrix."""
import pytest

from rentease.errors import AuthorizationError
from rentease.models import RoleEnum
from rentease.permissions import CAPABILITIES, Operation, ensure_allowed, is_allowed


class TestCapabilities:
    def test_every_operation_is_mapped(self):
        assert set(CAPABILITIES) == set(Operation)

    @pytest.mark.parametrize(
        "operation",
        [Operation.BOOKING_LIST, Operation.BOOKING_DELETE, Operation.REVENUE_READ, Operation.LEDGER_CREATE],
    )
    def test_admin_only_operations(self, operation):
        assert is_allowed(RoleEnum.ADMIN, operation)
        assert not is_allowed(RoleEnum.STAFF, operation)
        assert not is_allowed(RoleEnum.RENTOR, operation)

    @pytest.mark.parametrize("operation", [Operation.BOOKING_UPDATE_ANY, Operation.BOOKING_READ_ANY, Operation.LEDGER_READ_ANY])
    def test_privileged_operations(self, operation):
        assert is_allowed(RoleEnum.ADMIN, operation)
        assert is_allowed(RoleEnum.STAFF, operation)
        assert not is_allowed(RoleEnum.RENTOR, operation)

    def test_everyone_can_book_and_list(self):
        for role in RoleEnum:
            assert is_allowed(role, Operation.BOOKING_CREATE)
            assert is_allowed(role, Operation.PROPERTY_CREATE)

    def test_ensure_allowed_raises_403(self):
        with pytest.raises(AuthorizationError) as exc_info:
            ensure_allowed(RoleEnum.STAFF, Operation.REVENUE_READ)
        assert exc_info.value.status_code == 403
        assert "admin" in exc_info.value.message
