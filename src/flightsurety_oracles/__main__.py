"""
FlightSurety Oracles command line.

    python -m flightsurety_oracles run        # serve a deployed FlightSuretyApp
    python -m flightsurety_oracles simulate   # in-memory ledger walkthrough

Configuration comes from environment variables (see config.py).
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from .config import OracleNetworkConfig
from .exceptions import LedgerError, SubscriptionError
from .ledger import InMemoryLedgerGateway, Web3LedgerGateway
from .models import StatusCode
from .network import OracleNetwork, run_oracle_network


logger = logging.getLogger("flightsurety_oracles")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flightsurety_oracles",
        description="Flight status oracle network for FlightSuretyApp",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Register oracles and answer OracleRequest events")
    run.add_argument("--from-block", type=int, default=None, help="First block to listen from")

    simulate = sub.add_parser("simulate", help="Run the protocol against an in-memory ledger")
    simulate.add_argument("--oracles", type=int, default=20, help="Number of oracle identities")
    simulate.add_argument("--seed", type=int, default=None, help="Seed for the simulated ledger")
    return parser


async def simulate(config: OracleNetworkConfig, oracle_count: int, seed: Optional[int]) -> Dict[str, Any]:
    """
    Bootstrap an in-memory ledger, register the pool, request the status
    of every bootstrapped flight and report what the ledger resolved.
    """
    gateway = InMemoryLedgerGateway(account_count=oracle_count + 1, seed=seed)
    config.ledger.registration_fee_wei = gateway.registration_fee_wei
    config.registration.accounts = []
    config.registration.account_offset = 1
    config.registration.max_oracles = oracle_count

    network = OracleNetwork(gateway, config)
    try:
        await network.bootstrap()
        await network.register_oracles()
        await network.start(from_block=gateway.block_number + 1)

        requests: List[Dict[str, Any]] = []
        for flight, timestamp in network.flights:
            index = await network.request_flight_status(flight, timestamp)
            requests.append({"flight": flight, "timestamp": timestamp, "index": index})
        await network.wait_until_idle(min_received=len(requests))

        for entry in requests:
            code = gateway.flight_statuses.get((network.airline, entry["flight"], entry["timestamp"]))
            entry["status"] = StatusCode(code).name if code is not None else "UNRESOLVED"
            entry["responses"] = len(
                gateway.submissions_for(network.airline, entry["flight"], entry["timestamp"])
            )

        return {
            "stats": network.stats(),
            "bucket_sizes": network.registry.bucket_sizes(),
            "requests": requests,
        }
    finally:
        await network.close()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = OracleNetworkConfig.from_env()
    config.logging.apply()

    if args.command == "simulate":
        result = asyncio.run(simulate(config, args.oracles, args.seed))
        print(json.dumps(result, indent=2))
        return 0

    report = config.validate()
    for message in report["messages"]:
        logger.warning(message)
    if not report["valid"]:
        return 2

    if args.from_block is not None:
        config.ledger.from_block = args.from_block

    try:
        gateway = Web3LedgerGateway(config.ledger)
        asyncio.run(run_oracle_network(gateway, config))
    except SubscriptionError as e:
        logger.error(f"Fatal: {e}")
        return 1
    except LedgerError as e:
        logger.error(f"Fatal ledger error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
