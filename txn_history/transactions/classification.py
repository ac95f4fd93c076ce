"""
Display classification of transactions.

A transaction is assigned exactly one display category by evaluating an
ordered list of (predicate, category) rules; the first matching rule
wins. Several predicates can match the same transaction, so the order
of ``CLASSIFICATION_RULES`` is significant.

The same predicates supply the list exclusion policy: cash-deposit
transactions still pending must never surface in the history list.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable

from txn_history.transactions.models import Transaction, TxnStatus


class TransactionCategory(str, Enum):
    MOBILE_PREPAID = "mobile_prepaid"
    PREPAID_VOUCHER = "prepaid_voucher"
    MANDATE = "mandate"
    APPROVE_TO_PAY = "approve_to_pay"
    ATM_WITHDRAWAL = "atm_withdrawal"
    ERUPI = "erupi"
    SCAN_AND_PAY = "scan_and_pay"
    REQUEST = "request"
    PREPAID_RECHARGE = "prepaid_recharge"
    BILLPAY = "billpay"
    ICD_REQUEST_GENERATION = "icd_request_generation"
    ICD_CASH_DEPOSIT = "icd_cash_deposit"
    ICD_RECEIVED_TRANSACTION = "icd_received_transaction"
    RECEIVED = "received"
    SEND = "send"


class PurposeCode:
    """Purpose codes referenced by the classification rules."""

    SEND_TO_SELF = "ICD_SELF"
    SEND_TO_OTHER = "ICD_OTHER"
    METRO_ATM_QR = "METRO_ATM_QR"
    NON_METRO_ATM_QR = "NON_METRO_ATM_QR"


class MandateType:
    DEFAULT = "14"
    IPO = "01"
    STANDING_INSTRUCTION = "SI"
    GIFT = "GIFT"
    PREPAID_VOUCHER = "PREPAID_VOUCHER"


MANDATE_INITIATION = "UPI_MANDATE"
CASH_DEPOSIT_PURPOSES = frozenset({PurposeCode.SEND_TO_SELF, PurposeCode.SEND_TO_OTHER})

_APPROVE_TO_PAY_STATUSES = frozenset(
    s.value
    for s in (
        TxnStatus.SUCCESS,
        TxnStatus.DECLINED,
        TxnStatus.FAILURE,
        TxnStatus.EXPIRED,
        TxnStatus.PENDING,
        TxnStatus.COLLECT_PAY_INITIATED,
        TxnStatus.DEEMED,
        TxnStatus.DECLINE_INITIATED,
    )
)
_REQUEST_STATUSES = frozenset(
    s.value
    for s in (
        TxnStatus.SUCCESS,
        TxnStatus.DECLINED,
        TxnStatus.FAILURE,
        TxnStatus.EXPIRED,
        TxnStatus.PENDING,
    )
)

Predicate = Callable[[Transaction], bool]


def _is_pending(txn: Transaction) -> bool:
    return txn.status == TxnStatus.PENDING.value


def _is_qr_initiated(txn: Transaction) -> bool:
    return "QR" in (txn.txn_initiation_type or "")


def _is_cash_deposit_purpose(txn: Transaction) -> bool:
    return txn.purpose in CASH_DEPOSIT_PURPOSES


def is_mobile_prepaid_recharge(txn: Transaction) -> bool:
    return txn.txn_category == "PREPAID"


def is_mandate_or_ipo(txn: Transaction) -> bool:
    return txn.txn_initiation_type == MANDATE_INITIATION and txn.purpose in (
        MandateType.DEFAULT,
        MandateType.IPO,
        MandateType.STANDING_INSTRUCTION,
        MandateType.GIFT,
    )


def is_erupi(txn: Transaction) -> bool:
    return bool(txn.txn_info.is_erupi_txn)


def is_prepaid_voucher(txn: Transaction) -> bool:
    return (
        txn.txn_initiation_type == MANDATE_INITIATION
        and txn.purpose == MandateType.PREPAID_VOUCHER
    )


def is_bill_payment(txn: Transaction) -> bool:
    # Presence of the key is what counts, even when the server sends null.
    return "bill" in txn.model_fields_set


def is_prepaid_recharge(txn: Transaction) -> bool:
    return is_bill_payment(txn) and bool(txn.txn_info.is_prepaid_recharge)


def is_scan_and_pay(txn: Transaction) -> bool:
    return _is_qr_initiated(txn) and txn.self_initiated is True and txn.type == "PAY"


def is_approve_to_pay(txn: Transaction) -> bool:
    return (
        txn.type == "COLLECT"
        and txn.self_initiated is False
        and txn.status in _APPROVE_TO_PAY_STATUSES
    )


def is_receive(txn: Transaction) -> bool:
    return txn.type == "PAY" and txn.self_initiated is False


def is_request(txn: Transaction) -> bool:
    return (
        txn.type == "COLLECT"
        and txn.self_initiated is True
        and txn.status in _REQUEST_STATUSES
    )


def is_atm_withdrawal(txn: Transaction) -> bool:
    return _is_qr_initiated(txn) and txn.purpose in (
        PurposeCode.METRO_ATM_QR,
        PurposeCode.NON_METRO_ATM_QR,
    )


def is_cash_deposit_request_generated(txn: Transaction) -> bool:
    return (
        txn.txn_info.is_icd_requested is True
        and not _is_pending(txn)
        and _is_cash_deposit_purpose(txn)
    )


def is_cash_deposit(txn: Transaction) -> bool:
    return (
        not _is_pending(txn)
        and txn.self_initiated is True
        and txn.txn_info.is_icd_requested is False
        and _is_cash_deposit_purpose(txn)
    )


def is_cash_deposit_pending(txn: Transaction) -> bool:
    """Pending cash deposit: excluded from every history page."""
    return (
        _is_pending(txn)
        and txn.self_initiated in (True, False)
        and txn.txn_info.is_icd_requested is False
        and _is_cash_deposit_purpose(txn)
    )


def is_cash_received(txn: Transaction) -> bool:
    return (
        txn.self_initiated is False
        and not _is_pending(txn)
        and _is_cash_deposit_purpose(txn)
    )


def _is_received_without_role(txn: Transaction) -> bool:
    return is_receive(txn) and txn.payer_info.role is None


CLASSIFICATION_RULES: list[tuple[Predicate, TransactionCategory]] = [
    (is_mobile_prepaid_recharge, TransactionCategory.MOBILE_PREPAID),
    (is_prepaid_voucher, TransactionCategory.PREPAID_VOUCHER),
    (is_mandate_or_ipo, TransactionCategory.MANDATE),
    (is_approve_to_pay, TransactionCategory.APPROVE_TO_PAY),
    (is_atm_withdrawal, TransactionCategory.ATM_WITHDRAWAL),
    (is_erupi, TransactionCategory.ERUPI),
    (is_scan_and_pay, TransactionCategory.SCAN_AND_PAY),
    (is_request, TransactionCategory.REQUEST),
    (is_prepaid_recharge, TransactionCategory.PREPAID_RECHARGE),
    (is_bill_payment, TransactionCategory.BILLPAY),
    (is_cash_deposit_request_generated, TransactionCategory.ICD_REQUEST_GENERATION),
    (is_cash_deposit, TransactionCategory.ICD_CASH_DEPOSIT),
    (is_cash_received, TransactionCategory.ICD_RECEIVED_TRANSACTION),
    (_is_received_without_role, TransactionCategory.RECEIVED),
]


def classify_transaction(txn: Transaction) -> TransactionCategory:
    """Return the display category of ``txn`` (first matching rule wins)."""
    for predicate, category in CLASSIFICATION_RULES:
        if predicate(txn):
            return category
    return TransactionCategory.SEND
