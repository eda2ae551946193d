"""
FlightSurety Oracles Test - Flight Status Scenarios

End-to-end walkthroughs of the oracle protocol against the in-memory
ledger:

1. Ten oracles register with fixed indexes; a request for index 5
   is answered only by the oracles holding 5
2. A malformed event sits between valid ones; the network keeps going
3. The full lifecycle: bootstrap, register, listen, request, resolve
4. A refused subscription is fatal
"""

import asyncio
import json

import pytest

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from flightsurety_oracles.__main__ import main
from flightsurety_oracles.config import BootstrapConfig
from flightsurety_oracles.exceptions import SubscriptionError
from flightsurety_oracles.models import RegistrationState, StatusCode
from flightsurety_oracles.network import OracleNetwork, run_oracle_network
from flightsurety_oracles.status import STATUS_CODES


CANONICAL_CODES = {int(code) for code in STATUS_CODES}

TEN_ORACLES = [
    [2, 5, 7],
    [0, 3, 9],
    [1, 4, 8],
    [5, 6, 9],
    [0, 1, 2],
    [3, 5, 8],
    [4, 6, 7],
    [1, 2, 3],
    [0, 5, 6],
    [7, 8, 9],
]


class FixedGenerator:
    def __init__(self, code):
        self.code = code

    def next(self):
        return self.code


@pytest.fixture
def network(ledger, test_config):
    test_config.ledger.registration_fee_wei = ledger.registration_fee_wei
    test_config.bootstrap = BootstrapConfig(flights=[("A1111", 1633963343), ("B2222", 1633943343)])
    return OracleNetwork(ledger, test_config)


# =============================================================================
# SCENARIO 1: INDEX-MATCHED RESPONSES
# =============================================================================

class TestIndexMatchedResponses:

    @pytest.mark.asyncio
    async def test_only_index_holders_answer(self, ledger, network):
        accounts = ledger.accounts[1:11]
        for account, indexes in zip(accounts, TEN_ORACLES):
            ledger.preset_indexes(account, indexes)

        await network.bootstrap()
        await network.register_oracles(accounts)
        await network.start(from_block=ledger.block_number + 1)

        ledger.set_next_request_index(5)
        index = await network.request_flight_status("A1111", 1633963343)
        await network.wait_until_idle(min_received=1)

        holders = {a for a, idx in zip(accounts, TEN_ORACLES) if 5 in idx}
        submissions = ledger.submissions_for(network.airline, "A1111", 1633963343)

        assert index == 5
        assert holders == {accounts[0], accounts[3], accounts[5], accounts[8]}
        assert {s["account"] for s in submissions} <= holders
        assert all(s["status_code"] in CANONICAL_CODES for s in submissions)
        # Every holder either submitted or was turned away after the
        # request closed on a majority
        assert network.dispatcher.submissions + network.dispatcher.submission_failures == 4

        await network.close()

    @pytest.mark.asyncio
    async def test_agreeing_oracles_resolve_status(self, ledger, test_config):
        test_config.ledger.registration_fee_wei = ledger.registration_fee_wei
        network = OracleNetwork(ledger, test_config, generator=FixedGenerator(StatusCode.LATE_WEATHER))
        accounts = ledger.accounts[1:11]
        for account, indexes in zip(accounts, TEN_ORACLES):
            ledger.preset_indexes(account, indexes)

        await network.bootstrap()
        await network.register_oracles(accounts)
        await network.start(from_block=ledger.block_number + 1)

        ledger.set_next_request_index(0)
        await network.request_flight_status("A1111", 1633963343)
        await network.wait_until_idle(min_received=1)

        assert ledger.flight_statuses[(network.airline, "A1111", 1633963343)] == 30
        await network.close()


# =============================================================================
# SCENARIO 2: MALFORMED EVENT IN THE STREAM
# =============================================================================

class TestMalformedEventInStream:

    @pytest.mark.asyncio
    async def test_stream_continues_after_bad_event(self, ledger, network):
        accounts = ledger.accounts[1:11]
        for account, indexes in zip(accounts, TEN_ORACLES):
            ledger.preset_indexes(account, indexes)

        await network.bootstrap()
        await network.register_oracles(accounts)
        await network.start(from_block=ledger.block_number + 1)

        ledger.emit_raw_event({
            "event": "OracleRequest",
            "args": {"airline": network.airline, "flight": "A1111", "timestamp": 1633963343},
        })
        ledger.set_next_request_index(7)
        await network.request_flight_status("B2222", 1633943343)
        await network.wait_until_idle(min_received=2)

        stats = network.stats()
        assert stats["events_received"] == 2
        assert stats["events_dropped"] == 1
        assert stats["requests_dispatched"] == 1
        assert network.listener.is_running

        await network.close()


# =============================================================================
# SCENARIO 3: FULL LIFECYCLE
# =============================================================================

class TestFullLifecycle:

    @pytest.mark.asyncio
    async def test_bootstrap_register_and_answer(self, ledger, network):
        airline = await network.bootstrap()

        assert airline == ledger.accounts[0]
        assert network.flights == [("A1111", 1633963343), ("B2222", 1633943343)]

        identities = await network.register_oracles()

        assert len(identities) == 20
        assert all(i.state == RegistrationState.REGISTERED for i in identities)
        assert network.registry.is_closed
        assert ledger.accounts[0] not in {i.account for i in identities}

        await network.start(from_block=ledger.block_number + 1)
        for flight, timestamp in network.flights:
            await network.request_flight_status(flight, timestamp)
        await network.wait_until_idle(min_received=2)

        stats = network.stats()
        assert stats["oracles_registered"] == 20
        assert stats["requests_dispatched"] == 2
        assert stats["responses_submitted"] > 0

        await network.close()

    @pytest.mark.asyncio
    async def test_partial_registration_failure(self, ledger, network):
        ledger.fail_registration(ledger.accounts[3], "insufficient stake")
        ledger.fail_registration(ledger.accounts[8])

        await network.register_oracles()

        stats = network.stats()
        assert stats["oracles_registered"] == 18
        assert stats["oracles_failed"] == 2
        await network.close()

    @pytest.mark.asyncio
    async def test_bootstrap_failure_is_not_fatal(self, ledger, network):
        await network.bootstrap()
        # Second bootstrap: airline and flights are already on the ledger
        network.flights = []
        airline = await network.bootstrap()

        assert airline == ledger.accounts[0]
        await network.close()

    @pytest.mark.asyncio
    async def test_bootstrap_disabled(self, ledger, network):
        network.config.bootstrap.enabled = False

        assert await network.bootstrap() is None
        with pytest.raises(ValueError):
            await network.request_flight_status("A1111", 1633963343)

    @pytest.mark.asyncio
    async def test_max_oracles_limits_pool(self, ledger, network):
        network.config.registration.max_oracles = 5

        identities = await network.register_oracles()

        assert [i.account for i in identities] == ledger.accounts[1:6]
        await network.close()

    @pytest.mark.asyncio
    async def test_explicit_accounts(self, ledger, network):
        network.config.registration.accounts = [ledger.accounts[10], ledger.accounts[12]]

        identities = await network.register_oracles()

        assert [i.account for i in identities] == [ledger.accounts[10], ledger.accounts[12]]
        await network.close()


# =============================================================================
# SCENARIO 4: FATAL SUBSCRIPTION
# =============================================================================

class TestFatalSubscription:

    @pytest.mark.asyncio
    async def test_refused_subscription_is_fatal(self, ledger, test_config):
        test_config.ledger.registration_fee_wei = ledger.registration_fee_wei
        ledger.set_refuse_subscriptions(True)

        with pytest.raises(SubscriptionError):
            await run_oracle_network(ledger, test_config)

        assert not ledger.is_registered_oracle(ledger.accounts[0])
        assert ledger.is_registered_oracle(ledger.accounts[1])

    @pytest.mark.asyncio
    async def test_stream_death_ends_run(self, ledger, test_config):
        test_config.ledger.registration_fee_wei = ledger.registration_fee_wei
        task = asyncio.create_task(run_oracle_network(ledger, test_config))

        # Let registration finish and the listener subscribe
        for _ in range(200):
            if ledger._subscribers:
                break
            await asyncio.sleep(0.01)
        ledger.break_subscriptions()

        with pytest.raises(SubscriptionError):
            await asyncio.wait_for(task, timeout=2.0)


# =============================================================================
# COMMAND LINE
# =============================================================================

class TestCommandLine:

    def test_simulate(self, capsys, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "WARNING")

        assert main(["simulate", "--oracles", "12", "--seed", "3"]) == 0

        result = json.loads(capsys.readouterr().out)
        assert result["stats"]["oracles_registered"] == 12
        assert len(result["requests"]) == 5
        assert sum(result["bucket_sizes"].values()) == 36
        valid_names = {code.name for code in StatusCode} | {"UNRESOLVED"}
        assert all(entry["status"] in valid_names for entry in result["requests"])

    def test_run_without_contract_address(self, monkeypatch):
        monkeypatch.delenv("FLIGHT_SURETY_APP_ADDRESS", raising=False)
        monkeypatch.setenv("LOG_LEVEL", "WARNING")

        assert main(["run"]) == 2

    def test_run_with_missing_abi(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FLIGHT_SURETY_APP_ADDRESS", "0x" + "12" * 20)
        monkeypatch.setenv("FLIGHT_SURETY_ABI_PATH", str(tmp_path / "missing.json"))
        monkeypatch.setenv("LOG_LEVEL", "WARNING")

        assert main(["run"]) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
