"""Data access layer for Bookly.

This module owns the record types shared by every other layer, the
``config.ini`` handling, and the ``openpyxl`` workbook that stores a session
snapshot between runs. Business rules live in :mod:`bookly.core_logic`; the
in-memory stores live in :mod:`bookly.stores`.

The public API is organised around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini`` into typed
   settings and a :class:`BusinessProfile`.
2. Workbook lifecycle: opening, saving, and reloading the snapshot file.
3. Sheet operations: streaming structured records out of a sheet, appending
   records, and replacing a sheet's contents wholesale.
"""


from __future__ import annotations

import configparser
import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

import openpyxl
from openpyxl.workbook import Workbook

from . import log
from .constants import (
    DEFAULT_SALES_SOURCE,
    DEFAULT_STOCK_THRESHOLD,
    DEFAULT_VIP_THRESHOLD,
    ExpenseCategory,
    NotificationKind,
    PaymentMethod,
    SalesSource,
    SheetName,
    TransactionStatus,
)


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
CUSTOMERS_SHEET = SheetName.CUSTOMERS.value
TRANSACTION_LOG_SHEET = SheetName.TRANSACTION_LOG.value
EXPENSES_SHEET = SheetName.EXPENSES.value
WALLET_LOG_SHEET = SheetName.WALLET_LOG.value

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    PRODUCTS_SHEET: [
        "ProductID",
        "Name",
        "Price",
        "CostPrice",
        "Stock",
        "TotalSales",
        "Category",
        "Description",
        "StockThreshold",
        "Variants",
    ],
    CUSTOMERS_SHEET: [
        "CustomerID",
        "Handle",
        "Name",
        "OrderCount",
        "LTV",
        "Channel",
        "LastActive",
        "Address",
    ],
    TRANSACTION_LOG_SHEET: [
        "TransactionID",
        "Timestamp",
        "CustomerHandle",
        "ProductID",
        "ProductName",
        "Quantity",
        "Total",
        "CostTotal",
        "DeliveryFee",
        "Fee",
        "Status",
        "Source",
        "PaymentMethod",
        "IsArchived",
        "Variant",
        "Address",
        "Items",
        "EditHistory",
    ],
    EXPENSES_SHEET: [
        "ExpenseID",
        "Timestamp",
        "Amount",
        "Category",
        "Description",
        "Vendor",
    ],
    WALLET_LOG_SHEET: [
        "WalletTransactionID",
        "Timestamp",
        "Amount",
        "Kind",
        "Description",
        "Reference",
        "Status",
        "Category",
        "Recipient",
    ],
}


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProductVariant:
    """A sellable variation of a product, e.g. ``"Large / Red"``."""

    variant_id: str
    name: str
    stock: int


@dataclass(frozen=True)
class Product:
    """Catalog entry with pricing, stock, and cumulative sales."""

    product_id: str
    name: str
    price: Decimal
    cost_price: Decimal
    stock: int
    total_sales: int
    category: str
    description: Optional[str] = None
    variants: tuple[ProductVariant, ...] = ()
    stock_threshold: Optional[int] = None


@dataclass(frozen=True)
class Customer:
    """Directory entry keyed by its normalized handle."""

    customer_id: str
    handle: str
    name: str
    order_count: int
    ltv: Decimal
    channel: SalesSource
    last_active: str
    address: Optional[str] = None


@dataclass(frozen=True)
class OrderItem:
    """One resolved order line as stored on a transaction."""

    product_name: str
    quantity: int
    unit_price: Optional[Decimal] = None
    cost_price: Optional[Decimal] = None
    variant: Optional[str] = None


@dataclass(frozen=True)
class EditLog:
    """Entry in a transaction's append-only edit history."""

    timestamp: datetime
    description: str


@dataclass(frozen=True)
class Transaction:
    """Immutable ledger record produced by the reconciliation engine."""

    transaction_id: str
    customer_handle: Optional[str]
    product_id: str
    product_name: str
    quantity: int
    total: Decimal
    cost_total: Decimal
    delivery_fee: Decimal
    timestamp: datetime
    status: TransactionStatus
    source: SalesSource
    payment_method: PaymentMethod
    fee: Decimal = Decimal("0")
    is_archived: bool = False
    edit_history: tuple[EditLog, ...] = ()
    items: tuple[OrderItem, ...] = ()
    variant: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True)
class Expense:
    """Business overhead recorded in the expense book."""

    expense_id: str
    amount: Decimal
    category: ExpenseCategory
    description: str
    timestamp: datetime
    vendor: Optional[str] = None


@dataclass(frozen=True)
class WalletTransaction:
    """Movement on the business's linked wallet."""

    wallet_transaction_id: str
    amount: Decimal
    kind: str
    description: str
    timestamp: datetime
    reference: str
    status: str = "success"
    category: Optional[ExpenseCategory] = None
    recipient: Optional[str] = None


@dataclass(frozen=True)
class WalletProfile:
    """Balance and history of the wallet optionally linked to a business.

    Read from ``config.ini``, ``balance`` is the opening balance. Loading a
    session replays the ``WalletLog`` sheet on top of it.
    """

    wallet_id: str
    enabled: bool
    balance: Decimal
    currency: str
    account_name: str
    transactions: tuple[WalletTransaction, ...] = ()


@dataclass(frozen=True)
class BusinessProfile:
    """Business configuration read by the reconciliation engine."""

    name: str
    currency: str = "USD"
    default_sales_source: Optional[SalesSource] = DEFAULT_SALES_SOURCE
    vip_threshold: int = DEFAULT_VIP_THRESHOLD
    stock_threshold: int = DEFAULT_STOCK_THRESHOLD
    notifications_enabled: bool = True
    receipt_footer: str = ""
    wallet: Optional[WalletProfile] = None


@dataclass(frozen=True)
class Notification:
    """User-facing message emitted by a state-changing operation."""

    notification_id: str
    title: str
    message: str
    kind: NotificationKind
    timestamp: datetime


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    schema_version: str
    profile: BusinessProfile = field(default_factory=lambda: BusinessProfile(name="Bookly"))


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate ``config.ini``.

    An explicit path is returned untouched. Otherwise the search walks up
    from the current working directory and returns the first
    ``CONFIG_FILE_NAME`` found.

    Raises:
        FileNotFoundError: If no directory up to the filesystem root holds a
            configuration file.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser holding the raw configuration.
            Validation of required entries happens in :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into :class:`ConfigSettings`.

    The ``[System]`` section is mandatory. The ``[Business]`` section is
    optional and every option in it falls back to the :class:`BusinessProfile`
    defaults. Relative ``DataFile`` entries are anchored to ``base_path`` (or
    the current working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve a relative
            ``DataFile``.

    Returns:
        ConfigSettings: Settings with the resolved data file and business
            profile.

    Raises:
        KeyError: If a required ``[System]`` entry is missing.
        ValueError: If a ``[Business]`` entry cannot be interpreted.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        business_name = parser.get("System", "BusinessName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    section = "Business"
    default_source_raw = parser.get(section, "DefaultSalesSource", fallback=None)
    profile = BusinessProfile(
        name=business_name,
        currency=parser.get(section, "Currency", fallback="USD").strip().upper(),
        default_sales_source=SalesSource(default_source_raw) if default_source_raw else DEFAULT_SALES_SOURCE,
        vip_threshold=parser.getint(section, "VipThreshold", fallback=DEFAULT_VIP_THRESHOLD),
        stock_threshold=parser.getint(section, "StockThreshold", fallback=DEFAULT_STOCK_THRESHOLD),
        notifications_enabled=parser.getboolean(section, "NotificationsEnabled", fallback=True),
        receipt_footer=parser.get(section, "ReceiptFooter", fallback=""),
        wallet=_parse_wallet(parser, business_name),
    )

    return ConfigSettings(
        data_file=data_file_path,
        schema_version=schema_version,
        profile=profile,
    )


def _parse_wallet(parser: configparser.ConfigParser, business_name: str) -> Optional[WalletProfile]:
    """Read the optional ``[Wallet]`` section; ``None`` when it is absent."""

    section = "Wallet"
    if not parser.has_section(section):
        return None
    opening_raw = parser.get(section, "OpeningBalance", fallback="0")
    try:
        opening_balance = Decimal(opening_raw.strip() or "0")
    except InvalidOperation as exc:
        raise ValueError(f"Invalid wallet OpeningBalance: {opening_raw!r}") from exc
    currency = parser.get(section, "Currency", fallback=None) or parser.get("Business", "Currency", fallback="USD")
    return WalletProfile(
        wallet_id=parser.get(section, "WalletID", fallback="W1"),
        enabled=parser.getboolean(section, "Enabled", fallback=True),
        balance=opening_balance,
        currency=currency.strip().upper(),
        account_name=parser.get(section, "AccountName", fallback=business_name),
    )


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def open_workbook(data_file: Path) -> Workbook:
    """Open the snapshot workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist ``workbook`` at ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding unsaved in-memory changes."""

    return open_workbook(data_file)


# ---------------------------------------------------------------------------
# Sheet operations
# ---------------------------------------------------------------------------


def _iter_rows(workbook: Workbook, sheet_name: str) -> Iterable[tuple[object, ...]]:
    """Yield the non-empty data rows of ``sheet_name`` trimmed to its columns."""

    width = len(SHEET_COLUMNS[sheet_name])
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            padded = tuple(raw) + (None,) * (width - len(raw))
            yield padded[:width]


def iter_products(workbook: Workbook) -> Iterable[Product]:
    """Stream :class:`Product` records from the ``Products`` sheet."""

    for raw in _iter_rows(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_customers(workbook: Workbook) -> Iterable[Customer]:
    """Stream :class:`Customer` records from the ``Customers`` sheet."""

    for raw in _iter_rows(workbook, CUSTOMERS_SHEET):
        yield deserialize_customer(raw)


def iter_transactions(workbook: Workbook) -> Iterable[Transaction]:
    """Stream :class:`Transaction` records in sheet order (most recent first)."""

    for raw in _iter_rows(workbook, TRANSACTION_LOG_SHEET):
        yield deserialize_transaction(raw)


def iter_expenses(workbook: Workbook) -> Iterable[Expense]:
    """Stream :class:`Expense` records from the ``Expenses`` sheet."""

    for raw in _iter_rows(workbook, EXPENSES_SHEET):
        yield deserialize_expense(raw)


def iter_wallet_transactions(workbook: Workbook) -> Iterable[WalletTransaction]:
    """Stream wallet movements, newest first; workbooks without a ``WalletLog`` sheet yield nothing."""

    if WALLET_LOG_SHEET not in workbook.sheetnames:
        return
    for raw in _iter_rows(workbook, WALLET_LOG_SHEET):
        yield deserialize_wallet_transaction(raw)


def append_product(workbook: Workbook, record: Product) -> None:
    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def append_customer(workbook: Workbook, record: Customer) -> None:
    workbook[CUSTOMERS_SHEET].append(serialize_customer(record))


def append_transaction(workbook: Workbook, record: Transaction) -> None:
    workbook[TRANSACTION_LOG_SHEET].append(serialize_transaction(record))


def append_expense(workbook: Workbook, record: Expense) -> None:
    workbook[EXPENSES_SHEET].append(serialize_expense(record))


def append_wallet_transaction(workbook: Workbook, record: WalletTransaction) -> None:
    workbook[WALLET_LOG_SHEET].append(serialize_wallet_transaction(record))


def ensure_sheet(workbook: Workbook, sheet_name: str) -> None:
    """Add ``sheet_name`` with its header row when the workbook lacks it."""

    if sheet_name in workbook.sheetnames:
        return
    workbook.create_sheet(title=sheet_name).append(list(SHEET_COLUMNS[sheet_name]))
    log.info("Added missing sheet '%s' to the session workbook", sheet_name)


def clear_sheet(workbook: Workbook, sheet_name: str) -> None:
    """Remove every data row from ``sheet_name`` while keeping its header."""

    sheet = workbook[sheet_name]
    if sheet.max_row >= 2:
        sheet.delete_rows(2, sheet.max_row - 1)


def write_snapshot(
    workbook: Workbook,
    *,
    products: Iterable[Product],
    customers: Iterable[Customer],
    transactions: Iterable[Transaction],
    expenses: Iterable[Expense],
    wallet_transactions: Iterable[WalletTransaction] = (),
) -> None:
    """Replace the contents of every snapshot sheet with the given records.

    Records are written in the order supplied, so callers pass the ledger in
    its most-recent-first order and reading it back preserves that order.
    """

    for sheet_name in SHEET_COLUMNS:
        ensure_sheet(workbook, sheet_name)
        clear_sheet(workbook, sheet_name)

    counts = {name: 0 for name in SHEET_COLUMNS}
    for product in products:
        append_product(workbook, product)
        counts[PRODUCTS_SHEET] += 1
    for customer in customers:
        append_customer(workbook, customer)
        counts[CUSTOMERS_SHEET] += 1
    for transaction in transactions:
        append_transaction(workbook, transaction)
        counts[TRANSACTION_LOG_SHEET] += 1
    for expense in expenses:
        append_expense(workbook, expense)
        counts[EXPENSES_SHEET] += 1
    for movement in wallet_transactions:
        append_wallet_transaction(workbook, movement)
        counts[WALLET_LOG_SHEET] += 1

    log.debug("Wrote session snapshot: %s", ", ".join(f"{name}={count}" for name, count in counts.items()))


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _to_decimal(raw: object, default: str = "0") -> Decimal:
    if raw is None or raw == "":
        return Decimal(default)
    try:
        return Decimal(str(raw))
    except InvalidOperation as exc:
        raise ValueError(f"Not a decimal value: {raw!r}") from exc


def _to_optional_decimal(raw: object) -> Optional[Decimal]:
    return None if raw is None or raw == "" else _to_decimal(raw)


def _to_int(raw: object, default: int = 0) -> int:
    if raw is None or raw == "":
        return default
    return int(Decimal(str(raw)))


def _to_optional_str(raw: object) -> Optional[str]:
    return None if raw is None or raw == "" else str(raw)


def _to_datetime(raw: object) -> datetime:
    if isinstance(raw, datetime):
        return raw if raw.tzinfo is not None else raw.replace(tzinfo=UTC)
    return datetime.fromisoformat(str(raw))


def _money_text(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def serialize_order_items(items: Sequence[OrderItem]) -> str:
    """Encode order items as JSON text for a single worksheet cell."""

    return json.dumps(
        [
            {
                "productName": item.product_name,
                "quantity": item.quantity,
                "unitPrice": _money_text(item.unit_price),
                "costPrice": _money_text(item.cost_price),
                "variant": item.variant,
            }
            for item in items
        ]
    )


def deserialize_order_items(raw: object) -> tuple[OrderItem, ...]:
    if not raw:
        return ()
    return tuple(
        OrderItem(
            product_name=entry["productName"],
            quantity=int(entry["quantity"]),
            unit_price=_to_optional_decimal(entry.get("unitPrice")),
            cost_price=_to_optional_decimal(entry.get("costPrice")),
            variant=entry.get("variant"),
        )
        for entry in json.loads(str(raw))
    )


def serialize_edit_history(history: Sequence[EditLog]) -> str:
    return json.dumps([{"timestamp": entry.timestamp.isoformat(), "description": entry.description} for entry in history])


def deserialize_edit_history(raw: object) -> tuple[EditLog, ...]:
    if not raw:
        return ()
    return tuple(
        EditLog(timestamp=_to_datetime(entry["timestamp"]), description=entry["description"])
        for entry in json.loads(str(raw))
    )


def serialize_variants(variants: Sequence[ProductVariant]) -> Optional[str]:
    if not variants:
        return None
    return json.dumps([{"id": variant.variant_id, "name": variant.name, "stock": variant.stock} for variant in variants])


def deserialize_variants(raw: object) -> tuple[ProductVariant, ...]:
    if not raw:
        return ()
    return tuple(
        ProductVariant(variant_id=str(entry["id"]), name=entry["name"], stock=int(entry["stock"]))
        for entry in json.loads(str(raw))
    )


def serialize_product(record: Product) -> list[object]:
    """Arrange a product in ``Products`` column order."""

    return [
        record.product_id,
        record.name,
        record.price,
        record.cost_price,
        record.stock,
        record.total_sales,
        record.category,
        record.description,
        record.stock_threshold,
        serialize_variants(record.variants),
    ]


def deserialize_product(raw_row: Sequence[object]) -> Product:
    """Convert a raw ``Products`` row into a :class:`Product`.

    Identifiers and names are coerced to ``str`` so that values Excel stored
    as numbers still compare equal to the ids used in memory.
    """

    (
        product_id,
        name,
        price_raw,
        cost_raw,
        stock_raw,
        total_sales_raw,
        category,
        description,
        threshold_raw,
        variants_raw,
    ) = raw_row

    return Product(
        product_id=str(product_id),
        name=str(name),
        price=_to_decimal(price_raw),
        cost_price=_to_decimal(cost_raw),
        stock=_to_int(stock_raw),
        total_sales=_to_int(total_sales_raw),
        category=str(category) if category is not None else "",
        description=_to_optional_str(description),
        variants=deserialize_variants(variants_raw),
        stock_threshold=None if threshold_raw is None else _to_int(threshold_raw),
    )


def serialize_customer(record: Customer) -> list[object]:
    return [
        record.customer_id,
        record.handle,
        record.name,
        record.order_count,
        record.ltv,
        record.channel.value,
        record.last_active,
        record.address,
    ]


def deserialize_customer(raw_row: Sequence[object]) -> Customer:
    customer_id, handle, name, order_count_raw, ltv_raw, channel, last_active, address = raw_row
    return Customer(
        customer_id=str(customer_id),
        handle=str(handle),
        name=str(name) if name is not None else "",
        order_count=_to_int(order_count_raw),
        ltv=_to_decimal(ltv_raw),
        channel=SalesSource(channel) if channel else SalesSource.OTHER,
        last_active=str(last_active) if last_active is not None else "",
        address=_to_optional_str(address),
    )


def serialize_transaction(record: Transaction) -> list[object]:
    """Arrange a transaction in ``TransactionLog`` column order.

    Monetary fields stay :class:`~decimal.Decimal` so Excel keeps their
    precision; nested collections are encoded as JSON text.
    """

    return [
        record.transaction_id,
        record.timestamp.isoformat(),
        record.customer_handle,
        record.product_id,
        record.product_name,
        record.quantity,
        record.total,
        record.cost_total,
        record.delivery_fee,
        record.fee,
        record.status.value,
        record.source.value,
        record.payment_method.value,
        record.is_archived,
        record.variant,
        record.address,
        serialize_order_items(record.items),
        serialize_edit_history(record.edit_history),
    ]


def deserialize_transaction(raw_row: Sequence[object]) -> Transaction:
    """Convert a raw ``TransactionLog`` row into a :class:`Transaction`."""

    (
        transaction_id,
        timestamp_raw,
        customer_handle,
        product_id,
        product_name,
        quantity_raw,
        total_raw,
        cost_total_raw,
        delivery_fee_raw,
        fee_raw,
        status,
        source,
        payment_method,
        is_archived,
        variant,
        address,
        items_raw,
        history_raw,
    ) = raw_row

    return Transaction(
        transaction_id=str(transaction_id),
        customer_handle=_to_optional_str(customer_handle),
        product_id=str(product_id),
        product_name=str(product_name),
        quantity=_to_int(quantity_raw, default=1),
        total=_to_decimal(total_raw),
        cost_total=_to_decimal(cost_total_raw),
        delivery_fee=_to_decimal(delivery_fee_raw),
        timestamp=_to_datetime(timestamp_raw),
        status=TransactionStatus(status),
        source=SalesSource(source),
        payment_method=PaymentMethod(payment_method),
        fee=_to_decimal(fee_raw),
        is_archived=bool(is_archived),
        edit_history=deserialize_edit_history(history_raw),
        items=deserialize_order_items(items_raw),
        variant=_to_optional_str(variant),
        address=_to_optional_str(address),
    )


def serialize_expense(record: Expense) -> list[object]:
    return [
        record.expense_id,
        record.timestamp.isoformat(),
        record.amount,
        record.category.value,
        record.description,
        record.vendor,
    ]


def deserialize_expense(raw_row: Sequence[object]) -> Expense:
    expense_id, timestamp_raw, amount_raw, category, description, vendor = raw_row
    return Expense(
        expense_id=str(expense_id),
        amount=_to_decimal(amount_raw),
        category=ExpenseCategory(category) if category else ExpenseCategory.OTHER,
        description=str(description) if description is not None else "",
        timestamp=_to_datetime(timestamp_raw),
        vendor=_to_optional_str(vendor),
    )


def serialize_wallet_transaction(record: WalletTransaction) -> list[object]:
    return [
        record.wallet_transaction_id,
        record.timestamp.isoformat(),
        record.amount,
        record.kind,
        record.description,
        record.reference,
        record.status,
        record.category.value if record.category else None,
        record.recipient,
    ]


def deserialize_wallet_transaction(raw_row: Sequence[object]) -> WalletTransaction:
    (
        wallet_transaction_id,
        timestamp_raw,
        amount_raw,
        kind,
        description,
        reference,
        status,
        category,
        recipient,
    ) = raw_row
    return WalletTransaction(
        wallet_transaction_id=str(wallet_transaction_id),
        amount=_to_decimal(amount_raw),
        kind=str(kind) if kind else "debit",
        description=str(description) if description is not None else "",
        timestamp=_to_datetime(timestamp_raw),
        reference=str(reference) if reference is not None else "",
        status=str(status) if status else "success",
        category=ExpenseCategory(category) if category else None,
        recipient=_to_optional_str(recipient),
    )


_SERIALIZERS: Mapping[type, tuple[str, Any]] = {
    Product: (PRODUCTS_SHEET, serialize_product),
    Customer: (CUSTOMERS_SHEET, serialize_customer),
    Transaction: (TRANSACTION_LOG_SHEET, serialize_transaction),
    Expense: (EXPENSES_SHEET, serialize_expense),
    WalletTransaction: (WALLET_LOG_SHEET, serialize_wallet_transaction),
}


def record_as_dict(record: Any) -> dict[str, Any]:
    """Flatten a record into a mapping of worksheet header to cell value.

    The CLI prints records through this helper so that console output uses
    the same column names as the snapshot workbook.

    Raises:
        TypeError: If ``record`` is not one of the persisted record types.
    """

    try:
        sheet_name, serializer = _SERIALIZERS[type(record)]
    except KeyError as exc:
        raise TypeError(f"Unsupported record type: {type(record).__name__}") from exc
    return dict(zip(SHEET_COLUMNS[sheet_name], serializer(record)))
