"""
FlightSurety Oracles Test - Data Models

Validates:
- Index assignments: exactly 3 distinct integers in [0, 9]
- OracleIdentity state machine (Unregistered -> Pending -> Registered | Failed)
- StatusRequest bounds and dedup key
"""

import pytest
from pydantic import ValidationError

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from flightsurety_oracles.models import (
    DispatchReport,
    OracleIdentity,
    RegistrationState,
    StatusCode,
    StatusRequest,
    StatusResponse,
    validate_indexes,
)


ACCOUNT = "0x" + "0f" * 20


# =============================================================================
# INDEX VALIDATION
# =============================================================================

class TestValidateIndexes:

    def test_valid_assignment(self):
        assert validate_indexes([2, 5, 7]) == (2, 5, 7)

    def test_accepts_numeric_strings(self):
        assert validate_indexes(["0", "3", "9"]) == (0, 3, 9)

    @pytest.mark.parametrize("indexes", [
        [1, 2],
        [1, 2, 3, 4],
        [],
    ])
    def test_wrong_count(self, indexes):
        with pytest.raises(ValueError, match="Expected 3"):
            validate_indexes(indexes)

    def test_duplicates_rejected(self):
        with pytest.raises(ValueError, match="distinct"):
            validate_indexes([4, 4, 1])

    @pytest.mark.parametrize("indexes", [[0, 1, 10], [-1, 2, 3]])
    def test_out_of_range(self, indexes):
        with pytest.raises(ValueError, match="outside"):
            validate_indexes(indexes)

    def test_not_a_sequence(self):
        with pytest.raises(ValueError):
            validate_indexes(None)


# =============================================================================
# ORACLE IDENTITY
# =============================================================================

class TestOracleIdentity:

    def test_initial_state(self):
        identity = OracleIdentity(account=ACCOUNT)
        assert identity.state == RegistrationState.UNREGISTERED
        assert identity.indexes is None
        assert not identity.is_registered

    def test_successful_lifecycle(self):
        identity = OracleIdentity(account=ACCOUNT).pending().registered([2, 5, 7])

        assert identity.state == RegistrationState.REGISTERED
        assert identity.indexes == (2, 5, 7)
        assert identity.registered_at is not None
        assert identity.holds_index(5)
        assert not identity.holds_index(4)

    def test_failed_lifecycle(self):
        identity = OracleIdentity(account=ACCOUNT).pending().failed("insufficient stake")

        assert identity.state == RegistrationState.FAILED
        assert identity.error == "insufficient stake"
        assert identity.indexes is None
        assert not identity.holds_index(0)

    def test_transitions_return_new_values(self):
        original = OracleIdentity(account=ACCOUNT)
        pending = original.pending()
        assert original.state == RegistrationState.UNREGISTERED
        assert pending.state == RegistrationState.PENDING

    def test_identity_is_frozen(self):
        identity = OracleIdentity(account=ACCOUNT)
        with pytest.raises(ValidationError):
            identity.state = RegistrationState.REGISTERED

    @pytest.mark.parametrize("terminal", ["registered", "failed"])
    def test_terminal_states(self, terminal):
        pending = OracleIdentity(account=ACCOUNT).pending()
        identity = pending.registered([1, 2, 3]) if terminal == "registered" else pending.failed("x")

        with pytest.raises(ValueError, match="Illegal transition"):
            identity.pending()
        with pytest.raises(ValueError, match="Illegal transition"):
            identity.failed("again")

    def test_cannot_skip_pending(self):
        with pytest.raises(ValueError, match="Illegal transition"):
            OracleIdentity(account=ACCOUNT).registered([1, 2, 3])

    def test_registered_requires_valid_indexes(self):
        with pytest.raises(ValueError):
            OracleIdentity(account=ACCOUNT).pending().registered([1, 1, 3])

    def test_registered_without_indexes_rejected(self):
        with pytest.raises(ValidationError):
            OracleIdentity(account=ACCOUNT, state=RegistrationState.REGISTERED)

    def test_pending_with_indexes_rejected(self):
        with pytest.raises(ValidationError):
            OracleIdentity(account=ACCOUNT, state=RegistrationState.PENDING, indexes=(1, 2, 3))


# =============================================================================
# REQUESTS & RESPONSES
# =============================================================================

class TestStatusRequest:

    def test_key_ignores_block_number(self):
        first = StatusRequest(index=5, airline="0xabc", flight="A1111", timestamp=1633963343, block_number=3)
        second = StatusRequest(index=5, airline="0xabc", flight="A1111", timestamp=1633963343, block_number=9)

        assert first.key == ("0xabc", "A1111", 1633963343, 5)
        assert first.key == second.key

    def test_key_includes_index(self):
        first = StatusRequest(index=5, airline="0xabc", flight="A1111", timestamp=1)
        second = StatusRequest(index=6, airline="0xabc", flight="A1111", timestamp=1)
        assert first.key != second.key

    @pytest.mark.parametrize("index", [-1, 10])
    def test_index_bounds(self, index):
        with pytest.raises(ValidationError):
            StatusRequest(index=index, airline="0xabc", flight="A1111", timestamp=1)

    def test_empty_flight_rejected(self):
        with pytest.raises(ValidationError):
            StatusRequest(index=1, airline="0xabc", flight="", timestamp=1)


class TestDispatchReport:

    def test_to_dict(self):
        request = StatusRequest(index=2, airline="0xabc", flight="B2222", timestamp=10)
        report = DispatchReport(
            request=request,
            matched=["0x1", "0x2"],
            submitted=[StatusResponse(request=request, account="0x1", status_code=StatusCode.ON_TIME)],
            failures={"0x2": "reverted"},
        )

        data = report.to_dict()

        assert data["submitted"] == {"0x1": 10}
        assert data["failures"] == {"0x2": "reverted"}
        assert report.submitted_accounts == ["0x1"]
        assert data["duplicate"] is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
