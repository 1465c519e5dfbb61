"""Business logic layer for Bookly.

This module holds the sale reconciliation engine and the rules around it. It
turns a normalized :class:`~bookly.intake.SaleIntent` into ledger
transactions while keeping the catalog, the customer directory and the
ledger consistent, and it exposes the lifecycle operations (archive, status,
edit, merge) and the read-side reports that the dashboard and CRM views
consume. All state lives in the stores owned by a :class:`RuntimeContext`;
the workbook in :mod:`bookly.data_manager` is only touched when a context is
loaded or persisted.
"""

from __future__ import annotations

import uuid
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import (
    DEFAULT_PAYMENT_METHOD,
    DEFAULT_SALES_SOURCE,
    EDITABLE_TRANSACTION_FIELDS,
    EXPECTED_SCHEMA_VERSION,
    PLACEHOLDER_PRODUCT_ID,
    WALLET_FEE_RATE,
    CustomerTier,
    ExpenseCategory,
    NotificationKind,
    PaymentMethod,
    SalesSource,
    TransactionStatus,
)
from .data_manager import (
    BusinessProfile,
    Customer,
    Expense,
    Notification,
    OrderItem,
    Product,
    Transaction,
    WalletProfile,
    WalletTransaction,
)
from .intake import (
    CustomerBlock,
    ExpenseDraft,
    InquiryReply,
    OrderLine,
    ProductDraft,
    SaleIntent,
    normalize_manual_entry,
    parse_extraction,
)
from .stores import CatalogStore, DirectoryStore, ExpenseBook, TransactionLedger, generate_record_id, normalize_handle


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, customer, or transaction is unknown."""


@dataclass
class RuntimeContext:
    """Session state: the business profile plus the stores it owns.

    ``settings`` and ``workbook`` are only present for contexts loaded from a
    snapshot; purely in-memory sessions built with :func:`new_session` leave
    them unset.
    """

    profile: BusinessProfile
    catalog: CatalogStore = field(default_factory=CatalogStore)
    directory: DirectoryStore = field(default_factory=DirectoryStore)
    ledger: TransactionLedger = field(default_factory=TransactionLedger)
    expenses: ExpenseBook = field(default_factory=ExpenseBook)
    notifications: List[Notification] = field(default_factory=list)
    pending_sale: Optional[SaleIntent] = None
    settings: Optional[data_manager.ConfigSettings] = None
    workbook: Optional[Workbook] = field(default=None, repr=False)


@dataclass(frozen=True)
class CommitResult:
    """Outcome of committing one sale intent."""

    transactions: tuple[Transaction, ...]
    invoice_transaction: Optional[Transaction]
    created_customers: tuple[Customer, ...]
    notifications: tuple[Notification, ...]


@dataclass(frozen=True)
class ProfitSummary:
    """Dashboard headline figures."""

    revenue: Decimal
    cost_of_goods: Decimal
    expenses: Decimal
    net_profit: Decimal
    margin: Decimal
    transaction_count: int


@dataclass(frozen=True)
class TransactionFilter:
    """Criteria used by the sales view; empty criteria match everything."""

    customer_handles: tuple[str, ...] = ()
    platforms: tuple[SalesSource, ...] = ()
    statuses: tuple[TransactionStatus, ...] = ()
    product_names: tuple[str, ...] = ()
    start: Optional[date] = None
    end: Optional[date] = None
    months: tuple[int, ...] = ()
    tiers: tuple[CustomerTier, ...] = ()
    include_archived: bool = False


ExtractionOutcome = Union[SaleIntent, Product, Expense, InquiryReply]


# ---------------------------------------------------------------------------
# Context lifecycle
# ---------------------------------------------------------------------------


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or, when it is ``None``, the current UTC time."""

    return candidate if candidate is not None else datetime.now(UTC)


def new_session(
    profile: BusinessProfile,
    *,
    products: Iterable[Product] = (),
    customers: Iterable[Customer] = (),
    transactions: Iterable[Transaction] = (),
    expenses: Iterable[Expense] = (),
) -> RuntimeContext:
    """Build an in-memory context seeded with the given records."""

    return RuntimeContext(
        profile=profile,
        catalog=CatalogStore(products),
        directory=DirectoryStore(customers),
        ledger=TransactionLedger(transactions),
        expenses=ExpenseBook(expenses),
    )


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration and the snapshot workbook into a fresh context.

    Args:
        config_path (Path | None): Optional override path for ``config.ini``.
            When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Context whose stores hold the workbook's records.

    Raises:
        FileNotFoundError: If the configuration file or workbook is missing.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    context = _context_from_workbook(settings, workbook)
    log.info(
        "Loaded session for '%s' from '%s' (%d products, %d customers, %d transactions)",
        settings.profile.name,
        settings.data_file,
        len(context.catalog),
        len(context.directory),
        len(context.ledger),
    )
    return context


def replay_wallet(wallet: WalletProfile, movements: Iterable[WalletTransaction]) -> WalletProfile:
    """Apply logged movements (newest first) to a wallet's opening balance."""

    history = tuple(movements)
    balance = wallet.balance
    for movement in history:
        if movement.status != "success":
            continue
        balance += movement.amount if movement.kind == "credit" else -movement.amount
    return replace(wallet, balance=balance, transactions=history)


def _context_from_workbook(settings: data_manager.ConfigSettings, workbook: Workbook) -> RuntimeContext:
    profile = settings.profile
    if profile.wallet is not None:
        profile = replace(
            profile,
            wallet=replay_wallet(profile.wallet, data_manager.iter_wallet_transactions(workbook)),
        )
    context = new_session(
        profile,
        products=data_manager.iter_products(workbook),
        customers=data_manager.iter_customers(workbook),
        transactions=data_manager.iter_transactions(workbook),
        expenses=data_manager.iter_expenses(workbook),
    )
    context.settings = settings
    context.workbook = workbook
    return context


def ensure_schema_version(context: RuntimeContext) -> None:
    """Reject snapshots written for a different workbook layout.

    Raises:
        RuntimeError: If the configured schema version differs from
            ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings is None:
        return
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )


def persist_context(context: RuntimeContext) -> None:
    """Write every store into the snapshot workbook and save it.

    Raises:
        RuntimeError: If the context was not loaded from a workbook.
    """

    if context.settings is None or context.workbook is None:
        raise RuntimeError("Session has no backing workbook to persist to")
    data_manager.write_snapshot(
        context.workbook,
        products=context.catalog.list_products(),
        customers=context.directory.list_customers(),
        transactions=context.ledger.list_transactions(),
        expenses=context.expenses.list_expenses(),
        wallet_transactions=context.profile.wallet.transactions if context.profile.wallet else (),
    )
    data_manager.save_workbook(context.workbook, destination=context.settings.data_file)
    log.info("Persisted session snapshot to '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the snapshot, dropping any unsaved in-memory changes.

    Raises:
        RuntimeError: If the context was not loaded from a workbook.
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """

    if context.settings is None:
        raise RuntimeError("Session has no backing workbook to reload")
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded session snapshot '%s'", context.settings.data_file)
    return _context_from_workbook(context.settings, workbook)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


def notify(
    context: RuntimeContext,
    title: str,
    message: str,
    kind: NotificationKind = NotificationKind.INFO,
) -> Optional[Notification]:
    """Record a user-facing notification unless the profile disables them.

    The message is logged either way.
    """

    log.info("%s: %s", title, message)
    if not context.profile.notifications_enabled:
        return None
    notification = Notification(
        notification_id=generate_record_id("N"),
        title=title,
        message=message,
        kind=kind,
        timestamp=datetime.now(UTC),
    )
    context.notifications.append(notification)
    return notification


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


def get_product(context: RuntimeContext, product_id: str) -> Product:
    """Resolve a product by id.

    Raises:
        MissingReferenceError: If the catalog has no such product.
    """

    try:
        return context.catalog.get(product_id)
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def get_customer(context: RuntimeContext, handle: str) -> Customer:
    """Resolve a customer by handle (normalized before lookup).

    Raises:
        MissingReferenceError: If the directory has no such customer.
    """

    try:
        return context.directory.get(handle)
    except KeyError as exc:
        log.warning("Customer lookup failed for handle '%s'", handle)
        raise MissingReferenceError(f"Unknown customer handle: {handle}") from exc


def get_transaction(context: RuntimeContext, transaction_id: str) -> Transaction:
    """Resolve a transaction by id.

    Raises:
        MissingReferenceError: If the ledger has no such transaction.
    """

    try:
        return context.ledger.get(transaction_id)
    except KeyError as exc:
        log.warning("Transaction lookup failed for id '%s'", transaction_id)
        raise MissingReferenceError(f"Unknown transaction id: {transaction_id}") from exc


def list_products(context: RuntimeContext) -> List[Product]:
    return context.catalog.list_products()


def list_customers(context: RuntimeContext) -> List[Customer]:
    return context.directory.list_customers()


def list_transactions(context: RuntimeContext, *, include_archived: bool = True) -> List[Transaction]:
    return context.ledger.list_transactions(include_archived=include_archived)


def list_expenses(context: RuntimeContext) -> List[Expense]:
    return context.expenses.list_expenses()


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def require_positive_quantity(quantity: int) -> None:
    """Raise ``ValueError`` when ``quantity`` is zero or negative."""

    if quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Raise ``ValueError`` when ``amount`` is negative."""

    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")


def generate_transaction_id(*, prefix: str = "T", when: Optional[datetime] = None) -> str:
    """Generate a sortable, collision-free transaction identifier.

    The identifier packs the UTC timestamp down to microseconds followed by a
    short random suffix, so lines committed in the same batch (which share a
    timestamp) still get distinct ids while ids stay in chronological order.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}-{hex6}``.
    """

    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}-{uuid.uuid4().hex[:6]}"


# ---------------------------------------------------------------------------
# Catalog, directory and expense operations
# ---------------------------------------------------------------------------


def add_product(context: RuntimeContext, **fields: Any) -> Product:
    """Add a product to the catalog.

    Keyword arguments are those of :meth:`CatalogStore.add_product`.

    Raises:
        ValueError: If the product fails the catalog's validation.
    """

    product = context.catalog.add_product(**fields)
    log.info("Added product '%s' (%s) with stock %d", product.name, product.product_id, product.stock)
    return product


def adjust_stock(context: RuntimeContext, product_id: str, delta: int) -> Product:
    """Restock (positive ``delta``) or draw down stock, flooring at zero.

    Raises:
        MissingReferenceError: If the product is unknown.
    """

    try:
        product = context.catalog.adjust_stock(product_id, delta)
    except KeyError as exc:
        log.warning("Stock adjustment failed for unknown product '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc
    log.info("Adjusted stock of '%s' by %+d to %d", product_id, delta, product.stock)
    return product


def add_customer(
    context: RuntimeContext,
    *,
    handle: str,
    channel: Optional[SalesSource] = None,
    name: Optional[str] = None,
    address: Optional[str] = None,
) -> Customer:
    """Register a customer ahead of their first order.

    Raises:
        BusinessRuleViolation: If the handle is blank or already registered.
    """

    try:
        customer = context.directory.add_customer(
            handle=handle,
            channel=channel or context.profile.default_sales_source or DEFAULT_SALES_SOURCE,
            name=name,
            address=address,
        )
    except ValueError as exc:
        log.warning("Customer registration rejected: %s", exc)
        raise BusinessRuleViolation(str(exc)) from exc
    log.info("Registered customer '%s'", customer.handle)
    return customer


def add_expense(
    context: RuntimeContext,
    *,
    amount: Decimal,
    category: ExpenseCategory,
    description: str,
    timestamp: Optional[datetime] = None,
    vendor: Optional[str] = None,
) -> Expense:
    """Record an overhead expense.

    Raises:
        ValueError: If ``amount`` is not strictly positive.
    """

    expense = context.expenses.add_expense(
        amount=amount,
        category=category,
        description=description,
        timestamp=timestamp,
        vendor=vendor,
    )
    log.info("Recorded expense '%s' of %s (%s)", expense.expense_id, expense.amount, expense.category.value)
    return expense


def merge_customers(context: RuntimeContext, source_handle: str, target_handle: str) -> Customer:
    """Fold a duplicate customer into another and repoint their transactions.

    Raises:
        MissingReferenceError: If either handle is unknown.
        BusinessRuleViolation: If both handles refer to the same customer.
    """

    source = get_customer(context, source_handle)
    target = get_customer(context, target_handle)
    try:
        merged = context.directory.merge(source.handle, target.handle)
    except ValueError as exc:
        log.warning("Customer merge rejected: %s", exc)
        raise BusinessRuleViolation(str(exc)) from exc
    moved = context.ledger.reassign_customer(source.handle, merged.handle)
    log.info("Merged customer '%s' into '%s' (%d transactions moved)", source.handle, merged.handle, len(moved))
    return merged


def transfer_from_wallet(
    context: RuntimeContext,
    *,
    amount: Decimal,
    recipient: str,
    category: ExpenseCategory = ExpenseCategory.OTHER,
    description: Optional[str] = None,
) -> Expense:
    """Pay ``recipient`` from the linked wallet and book the payment as an expense.

    The wallet balance drops by ``amount``, a debit wallet transaction is
    recorded on the profile, and an :class:`Expense` is added to the book.

    Raises:
        BusinessRuleViolation: If no enabled wallet is linked, the amount is
            not positive, or the balance is insufficient.
    """

    wallet = context.profile.wallet
    if wallet is None or not wallet.enabled:
        raise BusinessRuleViolation("No enabled wallet is linked to this business")
    if amount <= 0:
        raise BusinessRuleViolation("Transfer amount must be greater than zero")
    if amount > wallet.balance:
        log.warning("Wallet transfer of %s rejected: balance is %s", amount, wallet.balance)
        raise BusinessRuleViolation("Insufficient wallet balance")

    timestamp = _resolve_timestamp(None)
    text = description or f"Transfer to {recipient}"
    debit = WalletTransaction(
        wallet_transaction_id=generate_record_id("W"),
        amount=amount,
        kind="debit",
        description=text,
        timestamp=timestamp,
        reference=generate_transaction_id(prefix="REF", when=timestamp),
        category=category,
        recipient=recipient,
    )
    context.profile = replace(
        context.profile,
        wallet=replace(wallet, balance=wallet.balance - amount, transactions=(debit,) + wallet.transactions),
    )
    expense = add_expense(
        context,
        amount=amount,
        category=category,
        description=text,
        timestamp=timestamp,
        vendor=recipient,
    )
    notify(context, "Transfer sent", f"{amount} sent to {recipient}", NotificationKind.SUCCESS)
    return expense


# ---------------------------------------------------------------------------
# Sale reconciliation
# ---------------------------------------------------------------------------


def calculate_fee_rate(payment_method: PaymentMethod) -> Decimal:
    """Return the surcharge rate applied to a line's subtotal."""

    return WALLET_FEE_RATE if payment_method == PaymentMethod.BOOKLY_WALLET else Decimal("0")


def placeholder_product(product_name: str) -> Product:
    """Zero-priced stand-in used when the catalog is empty; never stored."""

    return Product(
        product_id=PLACEHOLDER_PRODUCT_ID,
        name=product_name or "Unlisted item",
        price=Decimal("0"),
        cost_price=Decimal("0"),
        stock=0,
        total_sales=0,
        category="",
    )


def match_product(catalog: CatalogStore, product_name: str) -> Product:
    """Resolve an order line's product name against the catalog.

    The first product whose name contains ``product_name`` (ignoring case)
    wins; without a match the first catalog product is used, and an empty
    catalog yields :func:`placeholder_product`.
    """

    product = catalog.find_by_name_contains(product_name)
    if product is not None:
        return product
    fallback = catalog.first()
    if fallback is not None:
        log.warning("No catalog match for '%s'; falling back to '%s'", product_name, fallback.name)
        return fallback
    log.warning("Catalog is empty; recording '%s' against a placeholder product", product_name)
    return placeholder_product(product_name)


def stage_sale(context: RuntimeContext, intent: SaleIntent) -> SaleIntent:
    """Hold ``intent`` as the pending sale awaiting review."""

    context.pending_sale = intent
    log.info("Staged pending sale with %d customer block(s)", len(intent.blocks))
    return intent


def discard_pending_sale(context: RuntimeContext) -> None:
    context.pending_sale = None


def _build_line_transaction(
    context: RuntimeContext,
    block: CustomerBlock,
    line: OrderLine,
    *,
    source: SalesSource,
    payment_method: PaymentMethod,
    delivery_fee: Decimal,
    timestamp: datetime,
) -> Transaction:
    """Price one order line, apply its catalog side effect, and build its transaction."""

    product = match_product(context.catalog, line.product_name)
    quantity = line.quantity or 1
    base_price = line.unit_price if line.unit_price is not None else product.price
    subtotal = base_price * quantity
    fee = subtotal * calculate_fee_rate(payment_method)
    is_placeholder = product.product_id == PLACEHOLDER_PRODUCT_ID

    transaction = Transaction(
        transaction_id=generate_transaction_id(when=timestamp),
        customer_handle=block.handle,
        product_id=product.product_id,
        product_name=product.name,
        quantity=quantity,
        total=subtotal + fee + delivery_fee,
        cost_total=product.cost_price * quantity,
        delivery_fee=delivery_fee,
        timestamp=timestamp,
        status=TransactionStatus.CONFIRMED,
        source=source,
        payment_method=payment_method,
        fee=fee,
        is_archived=False,
        edit_history=(),
        items=(
            OrderItem(
                product_name=line.product_name or product.name,
                quantity=quantity,
                unit_price=base_price,
                cost_price=product.cost_price,
                variant=line.variant,
            ),
        ),
        variant=line.variant,
        address=block.address,
    )

    if not is_placeholder:
        context.catalog.record_sale(product.product_id, quantity)
    return transaction


def _commit_block(
    context: RuntimeContext,
    block: CustomerBlock,
    *,
    timestamp: datetime,
) -> tuple[List[Transaction], Optional[Customer]]:
    """Reconcile one customer block; returns its transactions and any new customer."""

    source = block.platform or context.profile.default_sales_source or DEFAULT_SALES_SOURCE
    payment_method = block.payment_method or DEFAULT_PAYMENT_METHOD
    delivery_fee = block.delivery_fee or Decimal("0")

    transactions: List[Transaction] = []
    for position, line in enumerate(block.lines):
        transactions.append(
            _build_line_transaction(
                context,
                block,
                line,
                source=source,
                payment_method=payment_method,
                # Delivery is charged once per order, on its first line.
                delivery_fee=delivery_fee if position == 0 else Decimal("0"),
                timestamp=timestamp,
            )
        )

    if not block.lines:
        log.warning("Customer block '%s' has no items; updating the customer anyway", block.handle)

    if not block.handle:
        log.info("Customer block without a handle: %d line(s) logged, directory untouched", len(transactions))
        return transactions, None

    customer, created = context.directory.upsert_on_sale(
        block.handle,
        block.order_total,
        source,
        name=block.display_name,
        address=block.address,
    )
    if created:
        notify(
            context,
            "New customer",
            f"{customer.handle} added to your directory via {source.value}",
            NotificationKind.SUCCESS,
        )
        return transactions, customer
    return transactions, None


def commit_sale(context: RuntimeContext, intent: Optional[SaleIntent] = None) -> CommitResult:
    """Commit a sale intent to the ledger.

    Each customer block is processed in order: its lines are matched to the
    catalog and priced (explicit unit price first, catalog price second), a
    2.5% surcharge is added for wallet payments, the block's delivery fee is
    charged on its first line only, stock is drawn down (never below zero),
    and the customer is updated or created with the block's declared order
    total. The whole batch shares one timestamp and is prepended to the
    ledger in creation order. The pending sale is cleared afterwards.

    Args:
        context (RuntimeContext): Session whose stores are mutated.
        intent (SaleIntent | None): Sale to commit. Defaults to the staged
            pending sale.

    Returns:
        CommitResult: Created transactions, the transaction to show an
            invoice for (the first one created), customers created on the way,
            and the notifications emitted.

    Raises:
        BusinessRuleViolation: If no intent is given and none is staged.
    """

    intent = intent if intent is not None else context.pending_sale
    if intent is None:
        raise BusinessRuleViolation("There is no pending sale to commit")

    timestamp = _resolve_timestamp(None)
    notifications_before = len(context.notifications)
    created: List[Transaction] = []
    new_customers: List[Customer] = []

    for block in intent.blocks:
        transactions, new_customer = _commit_block(context, block, timestamp=timestamp)
        created.extend(transactions)
        if new_customer is not None:
            new_customers.append(new_customer)

    context.ledger.append(created)
    invoice_transaction = created[0] if created else None
    notify(
        context,
        "Order finalized",
        f"{len(created)} line(s) logged",
        NotificationKind.SUCCESS,
    )
    context.pending_sale = None

    return CommitResult(
        transactions=tuple(created),
        invoice_transaction=invoice_transaction,
        created_customers=tuple(new_customers),
        notifications=tuple(context.notifications[notifications_before:]),
    )


def record_manual_sale(
    context: RuntimeContext,
    *,
    customer_handle: str,
    product_name: str,
    quantity: int,
    unit_price: Decimal,
    source: SalesSource = SalesSource.WALK_IN,
    payment_method: PaymentMethod = PaymentMethod.CASH_TRANSFER,
) -> CommitResult:
    """Validate a manual entry and commit it as a one-line sale.

    Raises:
        ValueError: If the manual entry fails validation.
    """

    intent = normalize_manual_entry(
        customer_handle=customer_handle,
        product_name=product_name,
        quantity=quantity,
        unit_price=unit_price,
        source=source,
        payment_method=payment_method,
    )
    return commit_sale(context, intent)


def apply_extraction(context: RuntimeContext, payload: Mapping[str, Any]) -> ExtractionOutcome:
    """Route an extraction payload by intent.

    Sales are staged for review (not committed), products go straight into
    the catalog, expenses into the expense book, and inquiries change
    nothing.

    Returns:
        The staged :class:`SaleIntent`, the created :class:`Product` or
        :class:`Expense`, or the :class:`InquiryReply`.

    Raises:
        BusinessRuleViolation: If the payload has no recognised intent.
        ValueError: If a product or expense draft fails store validation.
    """

    try:
        record = parse_extraction(payload)
    except ValueError as exc:
        log.warning("Extraction payload rejected: %s", exc)
        raise BusinessRuleViolation(str(exc)) from exc

    if isinstance(record, SaleIntent):
        return stage_sale(context, record)
    if isinstance(record, ProductDraft):
        return add_product(
            context,
            name=record.name,
            price=record.price,
            cost_price=record.cost_price,
            stock=record.stock,
            category=record.category,
            description=record.description,
            variants=record.variants,
        )
    if isinstance(record, ExpenseDraft):
        return add_expense(
            context,
            amount=record.amount,
            category=record.category,
            description=record.description,
            timestamp=record.timestamp,
            vendor=record.vendor,
        )
    log.info("Inquiry received with %d suggested replies", len(record.suggested_replies))
    return record


# ---------------------------------------------------------------------------
# Transaction lifecycle
# ---------------------------------------------------------------------------


def describe_changes(transaction: Transaction, updates: Mapping[str, Any]) -> str:
    """Summarise ``updates`` against ``transaction`` for the edit history.

    Produces text such as ``Update: Total 47 -> 50, Qty 3 -> 4``, or an
    empty string when nothing would change.
    """

    labels = (("total", "Total"), ("quantity", "Qty"), ("source", "Source"), ("status", "Status"))
    changes = []
    for field_name, label in labels:
        if field_name not in updates:
            continue
        before = getattr(transaction, field_name)
        after = updates[field_name]
        if after != before:
            changes.append(f"{label} {_display(before)} -> {_display(after)}")
    return f"Update: {', '.join(changes)}" if changes else ""


def _display(value: Any) -> str:
    return str(value.value) if hasattr(value, "value") else str(value)


def edit_transaction(
    context: RuntimeContext,
    transaction_id: str,
    updates: Mapping[str, Any],
    description: Optional[str] = None,
) -> Transaction:
    """Apply a partial update to a transaction and log it in its edit history.

    Only ``total``, ``quantity``, ``source`` and ``status`` may change. When
    ``description`` is omitted one is derived with :func:`describe_changes`;
    an update that changes nothing and carries no description is ignored.

    Raises:
        MissingReferenceError: If the transaction is unknown.
        BusinessRuleViolation: If an immutable or unknown field is targeted
            or the status transition is not allowed.
        ValueError: If the new quantity or total is invalid.
    """

    current = get_transaction(context, transaction_id)
    rejected = sorted(set(updates) - EDITABLE_TRANSACTION_FIELDS)
    if rejected:
        log.error("Edit of transaction '%s' rejected: fields %s cannot be edited", transaction_id, ", ".join(rejected))
        raise BusinessRuleViolation(f"Fields cannot be edited: {', '.join(rejected)}")
    normalized: Dict[str, Any] = dict(updates)
    if "quantity" in normalized:
        normalized["quantity"] = int(normalized["quantity"])
        require_positive_quantity(normalized["quantity"])
    if "total" in normalized:
        normalized["total"] = Decimal(str(normalized["total"]))
        require_nonnegative_money(normalized["total"])
    if "source" in normalized and not isinstance(normalized["source"], SalesSource):
        normalized["source"] = SalesSource(normalized["source"])
    if "status" in normalized and not isinstance(normalized["status"], TransactionStatus):
        normalized["status"] = TransactionStatus(normalized["status"])

    text = description or describe_changes(current, normalized)
    if not text:
        log.debug("Edit of '%s' changed nothing; skipped", transaction_id)
        return current

    try:
        updated = context.ledger.edit(transaction_id, normalized, text)
    except ValueError as exc:
        log.error("Edit of transaction '%s' rejected: %s", transaction_id, exc)
        raise BusinessRuleViolation(str(exc)) from exc
    log.info("Edited transaction '%s': %s", transaction_id, text)
    return updated


def update_status(context: RuntimeContext, transaction_id: str, status: TransactionStatus) -> Transaction:
    """Move a transaction along its status lifecycle.

    Raises:
        MissingReferenceError: If the transaction is unknown.
        BusinessRuleViolation: If the transition is not allowed.
    """

    get_transaction(context, transaction_id)
    try:
        updated = context.ledger.update_status(transaction_id, status)
    except ValueError as exc:
        log.error("Status change of '%s' rejected: %s", transaction_id, exc)
        raise BusinessRuleViolation(str(exc)) from exc
    log.info("Transaction '%s' is now %s", transaction_id, updated.status.value)
    return updated


def set_archived(context: RuntimeContext, transaction_id: str, archived: bool) -> Transaction:
    get_transaction(context, transaction_id)
    updated = context.ledger.set_archived(transaction_id, archived)
    log.info("Transaction '%s' %s", transaction_id, "archived" if archived else "restored")
    return updated


def toggle_archive(context: RuntimeContext, transaction_id: str) -> Transaction:
    """Archive an active transaction or restore an archived one."""

    current = get_transaction(context, transaction_id)
    return set_archived(context, transaction_id, not current.is_archived)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def calculate_profit_summary(context: RuntimeContext) -> ProfitSummary:
    """Compute the dashboard's revenue, cost, expense and profit figures.

    Archived transactions are left out. Net profit is revenue minus cost of
    goods minus expenses; the margin is net profit as a percentage of revenue
    (zero when there is no revenue).
    """

    transactions = context.ledger.list_transactions(include_archived=False)
    revenue = sum((transaction.total for transaction in transactions), Decimal("0"))
    cost_of_goods = sum((transaction.cost_total for transaction in transactions), Decimal("0"))
    expenses = context.expenses.total()
    net_profit = revenue - cost_of_goods - expenses
    margin = (net_profit / revenue * 100) if revenue > 0 else Decimal("0")
    log.debug(
        "Calculated profit summary: revenue=%s cogs=%s expenses=%s net=%s",
        revenue,
        cost_of_goods,
        expenses,
        net_profit,
    )
    return ProfitSummary(
        revenue=revenue,
        cost_of_goods=cost_of_goods,
        expenses=expenses,
        net_profit=net_profit,
        margin=margin,
        transaction_count=len(transactions),
    )


def calculate_channel_breakdown(context: RuntimeContext) -> Dict[SalesSource, Decimal]:
    """Revenue per sales source, skipping channels with no revenue."""

    totals: Dict[SalesSource, Decimal] = OrderedDict()
    for transaction in context.ledger.list_transactions(include_archived=False):
        totals[transaction.source] = totals.get(transaction.source, Decimal("0")) + transaction.total
    return {source: total for source, total in totals.items() if total > 0}


def calculate_daily_revenue(
    context: RuntimeContext,
    *,
    days: int = 7,
    today: Optional[date] = None,
) -> List[tuple[date, Decimal]]:
    """Revenue per UTC calendar day for the trailing ``days`` ending ``today``."""

    today = today or _resolve_timestamp(None).date()
    window = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    totals = {day: Decimal("0") for day in window}
    for transaction in context.ledger.list_transactions(include_archived=False):
        day = transaction.timestamp.astimezone(UTC).date()
        if day in totals:
            totals[day] += transaction.total
    return [(day, totals[day]) for day in window]


def top_performer(context: RuntimeContext) -> Optional[Product]:
    """Product with the most units sold, or ``None`` for an empty catalog."""

    products = context.catalog.list_products()
    if not products:
        return None
    return max(products, key=lambda product: product.total_sales)


def low_stock_products(context: RuntimeContext) -> List[Product]:
    return context.catalog.low_stock(context.profile.stock_threshold)


def customer_tier(customer: Customer, vip_threshold: int) -> CustomerTier:
    """Classify a customer as VIP, returning, or new by order count."""

    if customer.order_count >= vip_threshold:
        return CustomerTier.VIP
    if customer.order_count > 1:
        return CustomerTier.RETURNING
    return CustomerTier.NEW


def customer_history(context: RuntimeContext, handle: str) -> List[Transaction]:
    """All transactions of ``handle``, newest first."""

    customer = get_customer(context, handle)
    matches = [
        transaction
        for transaction in context.ledger.list_transactions()
        if transaction.customer_handle == customer.handle
    ]
    return sorted(matches, key=lambda transaction: transaction.timestamp, reverse=True)


def average_order_value(customer: Customer) -> Decimal:
    if customer.order_count == 0:
        return Decimal("0")
    return customer.ltv / customer.order_count


def filter_transactions(context: RuntimeContext, criteria: TransactionFilter) -> List[Transaction]:
    """Apply the sales-view filters to the ledger, preserving ledger order."""

    handles = {normalize_handle(handle) for handle in criteria.customer_handles} - {None}
    vip_threshold = context.profile.vip_threshold
    results: List[Transaction] = []
    for transaction in context.ledger.list_transactions(include_archived=criteria.include_archived):
        if criteria.platforms and transaction.source not in criteria.platforms:
            continue
        if criteria.statuses and transaction.status not in criteria.statuses:
            continue
        if criteria.product_names and transaction.product_name not in criteria.product_names:
            continue
        if handles and normalize_handle(transaction.customer_handle) not in handles:
            continue
        day = transaction.timestamp.astimezone(UTC).date()
        if criteria.start and day < criteria.start:
            continue
        if criteria.end and day > criteria.end:
            continue
        if criteria.months and day.month not in criteria.months:
            continue
        if criteria.tiers:
            customer = context.directory.find_by_handle(transaction.customer_handle)
            if customer is None or customer_tier(customer, vip_threshold) not in criteria.tiers:
                continue
        results.append(transaction)
    return results


def summarize_intent(intent: SaleIntent) -> Sequence[str]:
    """One line per block describing what a pending sale would log."""

    lines = []
    for block in intent.blocks:
        items = ", ".join(f"{line.quantity} x {line.product_name or '?'}" for line in block.lines) or "no items"
        lines.append(f"{block.handle or '(no handle)'}: {items}")
    return lines
