"""Data models for transactions, cached pages and poll checkpoints."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ListId(str, Enum):
    """The two independently cached transaction lists."""

    MAIN = "main"
    CIRCLE = "circle"


class TxnStatus(str, Enum):
    """Transaction status values reported by the server."""

    SUCCESS = "SUCCESS"
    PENDING = "PENDING"
    DECLINED = "DECLINED"
    FAILURE = "FAILURE"
    EXPIRED = "EXPIRED"
    DEEMED = "DEEMED"
    COLLECT_PAY_INITIATED = "COLLECT_PAY_INITIATED"
    DECLINE_INITIATED = "DECLINE_INITIATED"
    DELEGATE_INITIATED = "DELEGATE_INITIATED"


TERMINAL_STATUSES = frozenset(
    status.value for status in (TxnStatus.SUCCESS, TxnStatus.DECLINED, TxnStatus.EXPIRED)
)


class PayerRole(str, Enum):
    PRIMARY = "PRIMARY"
    SECONDARY = "SECONDARY"


def is_terminal_status(status: Optional[str]) -> bool:
    """True when no further status change is expected for a transaction."""
    return status in TERMINAL_STATUSES


def ensure_aware(value: datetime) -> datetime:
    """Treat naive timestamps as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ---------------------------------------------------------------------------
# Transport records
# ---------------------------------------------------------------------------


class PayerInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    vpa: Optional[str] = None
    name: Optional[str] = None
    role: Optional[str] = None


class PayeeInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    mcc: Optional[str] = None
    account_type: Optional[str] = None


class TxnInfo(BaseModel):
    """Auxiliary flags attached to a transaction."""

    model_config = ConfigDict(extra="allow")

    is_icd_requested: Optional[bool] = None
    is_erupi_txn: bool = False
    is_prepaid_recharge: bool = False
    is_req_chk_txn_exhausted: Optional[bool] = None


class CheckpointParams(BaseModel):
    """Server-side counters for status-poll attempts."""

    current_count: Optional[int] = Field(default=None, ge=0)
    max_count: Optional[int] = Field(default=None, ge=0)
    check_point2: Optional[int] = Field(
        default=None, ge=0, description="Seconds after creation when a new window opens"
    )

    def has_counts(self) -> bool:
        return self.current_count is not None and self.max_count is not None


class Transaction(BaseModel):
    """
    A transaction as supplied by the transport.

    Only the fields read by pagination, exclusion, classification and
    rate limiting are declared; anything else the server sends is kept
    as extra data and passed through untouched.
    """

    model_config = ConfigDict(extra="allow")

    id: str
    status: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    type: Optional[str] = Field(default=None, description="PAY or COLLECT")
    self_initiated: Optional[bool] = None
    purpose: Optional[str] = None
    txn_initiation_type: Optional[str] = None
    txn_category: Optional[str] = None
    bill: Optional[dict[str, Any]] = None
    payer_info: PayerInfo = Field(default_factory=PayerInfo)
    payee_info: PayeeInfo = Field(default_factory=PayeeInfo)
    txn_info: TxnInfo = Field(default_factory=TxnInfo)
    req_chk_txn_params: Optional[CheckpointParams] = None

    @property
    def role(self) -> Optional[str]:
        return self.payer_info.role

    @property
    def is_poll_exhausted(self) -> bool:
        return bool(self.txn_info.is_req_chk_txn_exhausted)


class ErrorPayload(BaseModel):
    """Application error fields carried by a well-formed response."""

    error_code: Optional[str] = None
    user_message: Optional[str] = None


class TransactionPage(BaseModel):
    """One page of transactions as returned by the transport."""

    items: list[Transaction] = Field(default_factory=list)
    total_count: int = Field(default=0, ge=0)
    auxiliary_totals: dict[str, str] = Field(default_factory=dict)
    checkpoint1_seconds: Optional[int] = Field(
        default=None, description="Server-suggested first poll checkpoint"
    )
    error: Optional[ErrorPayload] = None


class StatusResponse(BaseModel):
    """Response to a single-transaction status request."""

    transaction: Optional[Transaction] = None
    error: Optional[ErrorPayload] = None


# ---------------------------------------------------------------------------
# Cache state
# ---------------------------------------------------------------------------


class PageStatus(str, Enum):
    UNRESOLVED = "unresolved"
    LOADING = "loading"
    RESOLVED = "resolved"
    FAILED = "failed"


@dataclass(frozen=True)
class PagePayload:
    """Accumulated page set for one list."""

    items: tuple[Transaction, ...] = ()
    total_count: int = 0
    has_more: bool = False
    auxiliary_totals: dict[str, str] = field(default_factory=dict)
    checkpoint1_seconds: Optional[int] = None
    shimmer: bool = False

    @property
    def item_ids(self) -> list[str]:
        return [item.id for item in self.items]


@dataclass(frozen=True)
class CachedPage:
    """The authoritative state of one list at a point in time."""

    status: PageStatus = PageStatus.UNRESOLVED
    payload: Optional[PagePayload] = None
    error: Optional[Exception] = None
    fetched_at: Optional[datetime] = None

    @classmethod
    def unresolved(cls) -> "CachedPage":
        return cls()

    @classmethod
    def loading(cls, prior: Optional[PagePayload], at: datetime) -> "CachedPage":
        """Shimmer page: no items, no more pages, prior totals kept."""
        return cls(
            status=PageStatus.LOADING,
            payload=PagePayload(
                items=(),
                total_count=prior.total_count if prior else 0,
                has_more=False,
                auxiliary_totals=dict(prior.auxiliary_totals) if prior else {},
                checkpoint1_seconds=prior.checkpoint1_seconds if prior else None,
                shimmer=True,
            ),
            fetched_at=at,
        )

    @classmethod
    def resolved(cls, payload: PagePayload, at: datetime) -> "CachedPage":
        return cls(status=PageStatus.RESOLVED, payload=payload, fetched_at=at)

    @classmethod
    def failed(cls, error: Exception, at: datetime) -> "CachedPage":
        return cls(status=PageStatus.FAILED, error=error, fetched_at=at)

    @property
    def is_resolved(self) -> bool:
        return self.status == PageStatus.RESOLVED


@dataclass
class PaginationCursor:
    """Offset into one list. Owned by the controller."""

    offset: int = 0
    page_size: int = 20

    def reset(self) -> None:
        self.offset = 0

    def next_offset(self) -> int:
        return self.offset + self.page_size


@dataclass
class FilterState:
    """Active filter criteria and date mode for the main list."""

    criteria: dict[str, str] = field(default_factory=dict)
    date_mode: dict[str, str] = field(default_factory=dict)

    def as_request(self) -> dict[str, str]:
        return {**self.criteria, **self.date_mode}

    def copy(self) -> "FilterState":
        return FilterState(criteria=dict(self.criteria), date_mode=dict(self.date_mode))


# ---------------------------------------------------------------------------
# Persisted poll checkpoints
# ---------------------------------------------------------------------------


class PollCheckpointRecord(BaseModel):
    """
    Persisted status-poll counters for one transaction.

    ``last_refreshed_at`` anchors the second checkpoint window: it holds the
    creation timestamp the server reported on the refresh that created the
    record, so ``last_refreshed_at + second_checkpoint_seconds`` is the time
    the next polling window opens.
    """

    transaction_id: str
    current_count: int = Field(ge=0)
    max_count: int = Field(ge=0)
    second_checkpoint_seconds: int = Field(default=0, ge=0)
    exhausted: bool = False
    last_refreshed_at: datetime

    @model_validator(mode="after")
    def _count_within_max(self) -> "PollCheckpointRecord":
        if self.current_count > self.max_count:
            raise ValueError("current_count cannot exceed max_count")
        return self

    def advanced(self, params: Optional[CheckpointParams], exhausted: bool) -> "PollCheckpointRecord":
        """Return a copy updated from a fresh server response.

        Counts never decrease and exhaustion is sticky.
        """
        max_count = self.max_count
        current_count = self.current_count
        second_checkpoint = self.second_checkpoint_seconds
        if params is not None:
            if params.max_count is not None:
                max_count = max(params.max_count, current_count)
            if params.current_count is not None:
                current_count = max(current_count, params.current_count)
            if params.check_point2 is not None:
                second_checkpoint = params.check_point2
        return self.model_copy(
            update={
                "current_count": min(current_count, max_count),
                "max_count": max_count,
                "second_checkpoint_seconds": second_checkpoint,
                "exhausted": self.exhausted or exhausted,
            }
        )


# ---------------------------------------------------------------------------
# Poll outcomes
# ---------------------------------------------------------------------------


class PollOutcomeKind(str, Enum):
    """User-facing result of a status poll."""

    BLOCKED = "blocked"
    IN_PROGRESS = "in_progress"
    LIMIT_EXCEEDED = "limit_exceeded"
    ATTEMPTS_LEFT = "attempts_left"
    ATTEMPTS_EXCEEDED = "attempts_exceeded"
    TRY_LATER = "try_later"
    DELEGATE_PRIMARY = "delegate_primary"
    DELEGATE_SECONDARY = "delegate_secondary"
    STATUS_UPDATED = "status_updated"
    FAILED = "failed"


@dataclass(frozen=True)
class PollOutcome:
    """Classified result returned by ``poll_status``."""

    kind: PollOutcomeKind
    severity: Optional[str] = None  # "info" | "error" | None (silent)
    message_key: Optional[str] = None
    message: Optional[str] = None
    params: dict[str, Any] = field(default_factory=dict)
    transaction: Optional[Transaction] = None
    fetched: bool = False
