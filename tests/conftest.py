import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Force test database URL before any package imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

from txn_history.db.base import Base  # noqa: E402
from txn_history.transactions.config import HistoryConfig  # noqa: E402
from txn_history.transactions.models import (  # noqa: E402
    CheckpointParams,
    PayerInfo,
    Transaction,
    TxnInfo,
)

NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock; call it to read the current time."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self):
        self.infos: list[str] = []
        self.errors: list[str] = []

    def info(self, text: str) -> None:
        self.infos.append(text)

    def error(self, text: str) -> None:
        self.errors.append(text)

    @property
    def count(self) -> int:
        return len(self.infos) + len(self.errors)


def make_transaction(
    txn_id: str = "TXN1",
    status: str = "PENDING",
    age_seconds: float = 0,
    now: datetime = NOW,
    role: Optional[str] = None,
    current_count: Optional[int] = None,
    max_count: Optional[int] = None,
    check_point2: Optional[int] = None,
    exhausted: Optional[bool] = None,
    **fields: Any,
) -> Transaction:
    params = None
    if current_count is not None or max_count is not None or check_point2 is not None:
        params = CheckpointParams(
            current_count=current_count, max_count=max_count, check_point2=check_point2
        )
    fields.setdefault("type", "PAY")
    fields.setdefault("self_initiated", True)
    payer_name = fields.pop("payer_name", "Account Holder")
    txn_info = fields.pop("txn_info", None) or TxnInfo(is_req_chk_txn_exhausted=exhausted)
    return Transaction(
        id=txn_id,
        status=status,
        created_at=now - timedelta(seconds=age_seconds),
        payer_info=PayerInfo(vpa="me@bank", name=payer_name, role=role),
        txn_info=txn_info,
        req_chk_txn_params=params,
        **fields,
    )


def make_transactions(count: int, prefix: str = "TXN") -> list[Transaction]:
    return [
        make_transaction(f"{prefix}{i:03d}", status="SUCCESS", age_seconds=60 * i)
        for i in range(count)
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def config() -> HistoryConfig:
    return HistoryConfig(page_size=20, cache_ttl_minutes=30)


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    yield factory

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
