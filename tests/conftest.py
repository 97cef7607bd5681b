"""Shared test fixtures for the chain_escrow test suite.

Provides:
    - A deterministic in-process chain with a deployed escrow ledger
    - Well-known participant addresses
    - An in-memory SQLite replica (aiosqlite) with tables created
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from chain_escrow.domain.models import NATIVE
from chain_escrow.indexer.notifier import InMemoryNotifier
from chain_escrow.indexer.reconciler import EventIndexer
from chain_escrow.indexer.sources import InProcessLedgerSource
from chain_escrow.infrastructure.database.engine import create_tables, make_session_factory
from chain_escrow.ledger.chain import Chain
from chain_escrow.ledger.contract import EscrowLedger
from parties import CLIENT, CLIENT_FUNDS, FEE_COLLECTOR, OWNER, PROVIDER, TOKEN, FakeClock

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# ---------------------------------------------------------------------------
# Ledger Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def chain(clock: FakeClock) -> Chain:
    chain = Chain(chain_id=31337, clock=clock)
    chain.bank.mint_native(CLIENT, CLIENT_FUNDS)
    chain.bank.mint_native(OWNER, CLIENT_FUNDS)
    return chain


@pytest.fixture
def ledger(chain: Chain) -> EscrowLedger:
    return EscrowLedger(chain, owner=OWNER, fee_collector=FEE_COLLECTOR)


@pytest.fixture
def token(chain: Chain) -> str:
    """A deployed fungible token with a balance for the client."""
    chain.bank.deploy_token(TOKEN)
    chain.bank.mint_token(TOKEN, CLIENT, CLIENT_FUNDS)
    return TOKEN


@pytest.fixture
def make_escrow(ledger: EscrowLedger) -> Callable[..., int]:
    """Create (and optionally fund) a native escrow; returns its id."""

    def _make(
        amount: int = 1_000_000,
        *,
        arbitrator: str | None = None,
        fund: bool = False,
        description: str = "x",
    ) -> int:
        kwargs = {"arbitrator": arbitrator} if arbitrator else {}
        escrow_id = ledger.create(
            caller=CLIENT,
            provider=PROVIDER,
            asset=NATIVE,
            amount=amount,
            description=description,
            **kwargs,
        )
        if fund:
            ledger.fund(escrow_id, caller=CLIENT, value=amount)
        return escrow_id

    return _make


# ---------------------------------------------------------------------------
# Replica Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """In-memory SQLite replica shared across sessions via a static pool."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)
    yield make_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def notifier() -> InMemoryNotifier:
    return InMemoryNotifier()


@pytest.fixture
def source(ledger: EscrowLedger) -> InProcessLedgerSource:
    return InProcessLedgerSource(ledger)


@pytest.fixture
def indexer(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: InMemoryNotifier,
) -> EventIndexer:
    return EventIndexer(session_factory, notifier, read_timeout_seconds=1.0)
