#!/usr/bin/env python3
"""Chain Escrow — End-to-End Simulation.

Runs the in-process ledger, the event indexer and the replica query service
together, with ClientBot, ProviderBot and ArbitratorBot acting on the ledger:

    Scenario 1: Happy Path
        - Client creates a 1_000_000 native escrow and funds it
        - Client releases -> provider gets 975_000, fee collector 25_000
        - A second release fails with InvalidState

    Scenario 2: Dispute
        - Opening a dispute on an unfunded escrow fails with InvalidState
        - Client funds, provider disputes, arbitrator rules for the client
        - The replica shows the escrow REFUNDED and the dispute RESOLVED

    Scenario 3: Fee Administration
        - Owner tries a default fee above the configured cap -> FeeTooHigh, fee unchanged
        - Owner sets 500 bp; a new escrow snapshots it, an old one keeps the configured default

After every step the indexer runs one cycle, so the replica and the
participants' notification history follow along.

Usage:
    # SQLite in-memory replica (no Docker needed):
    uv run python simulation.py --sqlite

    # Replica in the configured database (DATABASE_URL):
    uv run python simulation.py

    # Run a specific scenario:
    uv run python simulation.py --sqlite --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from chain_escrow.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from chain_escrow.domain.enums import EscrowStatus  # noqa: E402
from chain_escrow.domain.exceptions import EscrowError  # noqa: E402
from chain_escrow.domain.models import NATIVE  # noqa: E402
from chain_escrow.indexer.notifier import InMemoryNotifier  # noqa: E402
from chain_escrow.indexer.reconciler import EventIndexer  # noqa: E402
from chain_escrow.indexer.sources import InProcessLedgerSource  # noqa: E402
from chain_escrow.ledger.chain import Chain  # noqa: E402
from chain_escrow.ledger.contract import EscrowLedger  # noqa: E402
from chain_escrow.services.query_service import ReplicaQueryService  # noqa: E402

OWNER = "0x" + "0a" * 20
FEE_COLLECTOR = "0x" + "fe" * 20

# Module-level state
_sqlite_engine = None
_session_factory = None


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Initialize the replica database and create tables."""
    global _sqlite_engine, _session_factory

    if use_sqlite:
        from sqlalchemy.ext.asyncio import create_async_engine
        from sqlalchemy.pool import StaticPool

        from chain_escrow.infrastructure.database.engine import create_tables, make_session_factory

        _sqlite_engine = create_async_engine(
            "sqlite+aiosqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        await create_tables(_sqlite_engine)
        _session_factory = make_session_factory(_sqlite_engine)
        logger.info("database.sqlite_initialized")
    else:
        from chain_escrow.infrastructure.database.engine import get_session_factory, init_db

        await init_db()
        _session_factory = get_session_factory()


async def shutdown_database() -> None:
    """Close database connections."""
    global _sqlite_engine, _session_factory

    if _sqlite_engine is not None:
        await _sqlite_engine.dispose()
        _sqlite_engine = None
    else:
        from chain_escrow.infrastructure.database.engine import close_db

        await close_db()
    _session_factory = None


# ---------------------------------------------------------------------------
# World: one chain, one ledger, one indexer
# ---------------------------------------------------------------------------
@dataclass
class World:
    chain: Chain
    ledger: EscrowLedger
    source: InProcessLedgerSource
    indexer: EventIndexer
    notifier: InMemoryNotifier

    async def sync(self) -> None:
        """Run one indexer cycle and log how far it got."""
        result = await self.indexer.sync_chain(self.source)
        logger.info(
            "🟣 INDEXER: Cycle complete",
            applied=result.applied,
            cursor=result.cursor,
            error=result.error,
        )


def build_world(chain_id: int) -> World:
    """Deploy a fresh ledger on its own chain id, so scenarios never share replica rows."""
    chain = Chain(chain_id=chain_id)
    ledger = EscrowLedger.from_settings(chain, OWNER, FEE_COLLECTOR)
    notifier = InMemoryNotifier()
    return World(
        chain=chain,
        ledger=ledger,
        source=InProcessLedgerSource(ledger),
        indexer=EventIndexer(_session_factory, notifier),
        notifier=notifier,
    )


# ---------------------------------------------------------------------------
# Bot Agents
# ---------------------------------------------------------------------------
@dataclass
class ClientBot:
    """Simulated client that opens, funds and releases escrows."""

    wallet: str = "0x" + "c1" * 20

    def create_escrow(self, world: World, provider: str, amount: int, **terms: Any) -> int:
        escrow_id = world.ledger.create(
            caller=self.wallet, provider=provider, asset=NATIVE, amount=amount, **terms
        )
        logger.info("🔵 CLIENT: Escrow created", escrow_id=escrow_id, amount=amount)
        return escrow_id

    def fund(self, world: World, escrow_id: int) -> None:
        amount = world.ledger.get_escrow(escrow_id).amount
        world.ledger.fund(escrow_id, caller=self.wallet, value=amount)
        logger.info("🔵 CLIENT: Escrow funded", escrow_id=escrow_id, amount=amount)

    def release(self, world: World, escrow_id: int) -> None:
        world.ledger.release(escrow_id, caller=self.wallet)
        logger.info("🔵 CLIENT: Funds released", escrow_id=escrow_id)


@dataclass
class ProviderBot:
    """Simulated provider that delivers work and may dispute."""

    wallet: str = "0x" + "b2" * 20

    def open_dispute(self, world: World, escrow_id: int) -> None:
        world.ledger.open_dispute(escrow_id, caller=self.wallet)
        logger.info("🟢 PROVIDER: Dispute opened", escrow_id=escrow_id)


@dataclass
class ArbitratorBot:
    """Simulated arbitrator assigned to disputed escrows."""

    wallet: str = "0x" + "a3" * 20

    def resolve(self, world: World, escrow_id: int, favor_client: bool) -> None:
        world.ledger.resolve_dispute(escrow_id, favor_client, caller=self.wallet)
        logger.info(
            "🟠 ARBITRATOR: Dispute resolved",
            escrow_id=escrow_id,
            favor_client=favor_client,
        )


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


def expect_failure(label: str, fn: Any) -> None:
    """Run ``fn`` and print the domain error it is expected to raise."""
    try:
        fn()
    except EscrowError as exc:
        print(f"  ❌ {label}: {exc.code} ({exc.message})")
    else:
        raise AssertionError(f"{label} unexpectedly succeeded")


def print_balances(world: World, **wallets: str) -> None:
    bank = world.chain.bank
    for name, wallet in wallets.items():
        print(f"  💰 {name}: {bank.native_balance(wallet)}")


async def print_replica(world: World, escrow_id: int) -> None:
    """Print what the replica holds for an escrow, plus its disputes."""
    async with _session_factory() as session:
        svc = ReplicaQueryService(session)
        escrow = await svc.get_by_chain_and_id(world.chain.chain_id, escrow_id)
        disputes = await svc.list_disputes(escrow_uuid=escrow.id)
    print(
        f"  📦 Replica: escrow {escrow.escrow_id} {EscrowStatus(escrow.status).name} "
        f"amount={escrow.amount} fee_rate={escrow.fee_rate} fee={escrow.fee}"
    )
    for dispute in disputes:
        outcome = "—" if dispute.in_favor_of_client is None else (
            "client" if dispute.in_favor_of_client else "provider"
        )
        print(f"  ⚖️  Dispute by {dispute.opener[:10]}...: {dispute.status} (favor: {outcome})")


async def print_notifications(world: World, wallet: str) -> None:
    print(f"\n  🔔 Notifications for {wallet[:10]}... (newest first):")
    for i, note in enumerate(await world.notifier.history(wallet), 1):
        print(f"    {i}. [{note['kind']}] escrow {note['escrow_id']} -> {note['details']['status']}")
    print()


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path() -> None:
    banner("SCENARIO 1: Happy Path — create, fund, release")
    world = build_world(chain_id=1001)
    client, provider = ClientBot(), ProviderBot()
    world.chain.bank.mint_native(client.wallet, 10**18)

    section("Client opens and funds an escrow")
    escrow_id = client.create_escrow(world, provider.wallet, 1_000_000, description="x")
    client.fund(world, escrow_id)
    await world.sync()
    await print_replica(world, escrow_id)

    section("Client releases the funds")
    client.release(world, escrow_id)
    await world.sync()
    print_balances(world, provider=provider.wallet, fee_collector=FEE_COLLECTOR)
    await print_replica(world, escrow_id)

    section("A second release is rejected")
    expect_failure("second release", lambda: client.release(world, escrow_id))

    await print_notifications(world, provider.wallet)


# ===========================================================================
# Scenario 2: Dispute
# ===========================================================================
async def scenario_2_dispute() -> None:
    banner("SCENARIO 2: Dispute — provider disputes, arbitrator refunds")
    world = build_world(chain_id=1002)
    client, provider, arbitrator = ClientBot(), ProviderBot(), ArbitratorBot()
    world.chain.bank.mint_native(client.wallet, 10**18)

    escrow_id = client.create_escrow(
        world, provider.wallet, 500_000, arbitrator=arbitrator.wallet, description="translation"
    )

    section("Disputes require a funded escrow")
    expect_failure("dispute on CREATED", lambda: provider.open_dispute(world, escrow_id))

    section("Client funds, provider disputes")
    client.fund(world, escrow_id)
    provider.open_dispute(world, escrow_id)
    await world.sync()
    await print_replica(world, escrow_id)

    section("Client cannot release while disputed")
    expect_failure("release while DISPUTED", lambda: client.release(world, escrow_id))

    section("Arbitrator rules for the client")
    arbitrator.resolve(world, escrow_id, favor_client=True)
    await world.sync()
    print_balances(world, client=client.wallet, fee_collector=FEE_COLLECTOR)
    await print_replica(world, escrow_id)

    await print_notifications(world, client.wallet)


# ===========================================================================
# Scenario 3: Fee Administration
# ===========================================================================
async def scenario_3_fee_admin() -> None:
    banner("SCENARIO 3: Fee Administration — rate cap and fee snapshot")
    world = build_world(chain_id=1003)
    client, provider = ClientBot(), ProviderBot()
    world.chain.bank.mint_native(client.wallet, 10**18)

    old_id = client.create_escrow(world, provider.wallet, 10_000)

    section(f"Owner tries to exceed the {world.ledger.max_fee_rate} bp cap")
    too_high = world.ledger.max_fee_rate + 1
    expect_failure(f"set fee {too_high}", lambda: world.ledger.set_default_fee(too_high, caller=OWNER))
    print(f"  Default fee still: {world.ledger.default_fee_rate} bp")

    section("Owner sets 5%")
    world.ledger.set_default_fee(500, caller=OWNER)
    new_id = client.create_escrow(world, provider.wallet, 10_000)
    await world.sync()
    await print_replica(world, old_id)
    await print_replica(world, new_id)

    async with _session_factory() as session:
        stats = await ReplicaQueryService(session).get_statistics()
    print(f"\n  📊 Statistics: total={stats['total']} volume={stats['total_volume']}")


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_dispute,
    3: scenario_3_fee_admin,
}


async def run_all(use_sqlite: bool = False) -> None:
    """Run all scenarios sequentially."""
    await init_database(use_sqlite=use_sqlite)

    try:
        print("\n" + "🚀" * 35)
        print("  CHAIN ESCROW — SIMULATION")
        db_type = "SQLite (in-memory)" if use_sqlite else "configured database"
        print(f"  Replica: {db_type}")
        print("🚀" * 35 + "\n")

        for scenario in SCENARIOS.values():
            await scenario()

        print("\n" + "=" * 70)
        print("  ✅ ALL SCENARIOS COMPLETED SUCCESSFULLY")
        print("=" * 70 + "\n")

    finally:
        await shutdown_database()


async def run_scenario(num: int, use_sqlite: bool = False) -> None:
    """Run a specific scenario."""
    await init_database(use_sqlite=use_sqlite)

    try:
        if num not in SCENARIOS:
            print(f"Unknown scenario {num}. Available: {', '.join(map(str, SCENARIOS))}")
            return
        await SCENARIOS[num]()
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Chain Escrow Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of the configured database (no Docker needed).",
    )
    args = parser.parse_args()

    if args.scenario == 0:
        asyncio.run(run_all(use_sqlite=args.sqlite))
    else:
        asyncio.run(run_scenario(args.scenario, use_sqlite=args.sqlite))
