"""Enumerations and policy constants shared across Bookly modules.

The stores, the reconciliation engine and the command-line front-end all read
their identifiers from here so that a payment method or sales channel is
spelled the same way everywhere it is compared.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Mapping


# Workbook layout version expected when loading a persisted session snapshot.
EXPECTED_SCHEMA_VERSION = "1.0.0"


class SalesSource(str, Enum):
    """Acquisition channels a sale or customer can be attributed to."""

    WHATSAPP = "WhatsApp"
    INSTAGRAM = "Instagram"
    FACEBOOK = "Facebook"
    WALK_IN = "Walk-in"
    PHONE_CALL = "Phone Call"
    OTHER = "Other"


class PaymentMethod(str, Enum):
    """Payment mechanisms a customer block can settle with."""

    BOOKLY_WALLET = "Bookly Wallet"
    CASH_TRANSFER = "Cash/Transfer"


class TransactionStatus(str, Enum):
    """Lifecycle states of a ledger transaction."""

    CONFIRMED = "confirmed"
    PAID = "paid"
    UNPAID = "unpaid"
    CANCELLED = "cancelled"


class ExpenseCategory(str, Enum):
    """Overhead buckets used by the expense book."""

    LOGISTICS = "Logistics"
    MARKETING = "Marketing"
    SUPPLIES = "Supplies"
    RENT = "Rent"
    UTILITIES = "Utilities"
    SALARY = "Salary"
    OTHER = "Other"


class Intent(str, Enum):
    """Purposes the extraction service can classify an input into."""

    SALE = "sale"
    PRODUCT = "product"
    EXPENSE = "expense"
    INQUIRY = "inquiry"


class Confidence(str, Enum):
    """Confidence levels reported by the extraction service."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CustomerTier(str, Enum):
    """CRM segments derived from a customer's order count."""

    VIP = "VIP"
    RETURNING = "Returning"
    NEW = "New"


class NotificationKind(str, Enum):
    """Severity attached to a user-facing notification."""

    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"


class SheetName(str, Enum):
    """Worksheet names used by the session snapshot workbook."""

    PRODUCTS = "Products"
    CUSTOMERS = "Customers"
    TRANSACTION_LOG = "TransactionLog"
    EXPENSES = "Expenses"
    WALLET_LOG = "WalletLog"


# Surcharge applied to the subtotal of every line paid through the wallet.
WALLET_FEE_RATE = Decimal("0.025")

DEFAULT_SALES_SOURCE = SalesSource.WHATSAPP
DEFAULT_PAYMENT_METHOD = PaymentMethod.CASH_TRANSFER
DEFAULT_VIP_THRESHOLD = 5
DEFAULT_STOCK_THRESHOLD = 5

PLACEHOLDER_PRODUCT_ID = "temp"
JUST_NOW = "Just now"
NEW_CUSTOMER_ACTIVITY = "New"

# Fields of a transaction that never change once it has been recorded.
IMMUTABLE_TRANSACTION_FIELDS: FrozenSet[str] = frozenset({"transaction_id", "timestamp", "cost_total"})
EDITABLE_TRANSACTION_FIELDS: FrozenSet[str] = frozenset({"total", "quantity", "source", "status"})

ALLOWED_STATUS_TRANSITIONS: Mapping[TransactionStatus, FrozenSet[TransactionStatus]] = {
    TransactionStatus.CONFIRMED: frozenset({TransactionStatus.PAID, TransactionStatus.CANCELLED}),
    TransactionStatus.PAID: frozenset({TransactionStatus.UNPAID}),
    TransactionStatus.UNPAID: frozenset({TransactionStatus.PAID}),
    TransactionStatus.CANCELLED: frozenset(),
}

CURRENCY_SYMBOLS: Dict[str, str] = {
    "NGN": "₦",
    "USD": "$",
    "GBP": "£",
    "EUR": "€",
}


def currency_symbol(code: str | None) -> str:
    """Return the display symbol for an ISO currency code, defaulting to ``$``."""

    if not code:
        return "$"
    return CURRENCY_SYMBOLS.get(code.strip().upper(), "$")


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "SalesSource",
    "PaymentMethod",
    "TransactionStatus",
    "ExpenseCategory",
    "Intent",
    "Confidence",
    "CustomerTier",
    "NotificationKind",
    "SheetName",
    "WALLET_FEE_RATE",
    "DEFAULT_SALES_SOURCE",
    "DEFAULT_PAYMENT_METHOD",
    "DEFAULT_VIP_THRESHOLD",
    "DEFAULT_STOCK_THRESHOLD",
    "PLACEHOLDER_PRODUCT_ID",
    "JUST_NOW",
    "NEW_CUSTOMER_ACTIVITY",
    "IMMUTABLE_TRANSACTION_FIELDS",
    "EDITABLE_TRANSACTION_FIELDS",
    "ALLOWED_STATUS_TRANSITIONS",
    "CURRENCY_SYMBOLS",
    "currency_symbol",
]
