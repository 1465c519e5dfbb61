"""In-memory stores owning Bookly's session state.

Each store owns one entity type and exposes the narrow set of mutations the
business layer needs. Records are frozen dataclasses, so every mutation
replaces the stored record with an updated copy. Stores report problems with
built-in exceptions (``KeyError`` for unknown identifiers, ``ValueError`` for
values that would break an invariant); :mod:`bookly.core_logic` translates
them into domain errors.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from . import log
from .constants import (
    ALLOWED_STATUS_TRANSITIONS,
    EDITABLE_TRANSACTION_FIELDS,
    IMMUTABLE_TRANSACTION_FIELDS,
    JUST_NOW,
    NEW_CUSTOMER_ACTIVITY,
    ExpenseCategory,
    SalesSource,
    TransactionStatus,
)
from .data_manager import Customer, EditLog, Expense, Product, ProductVariant, Transaction


_WHITESPACE = re.compile(r"\s+")


def generate_record_id(prefix: str) -> str:
    """Return a short random identifier such as ``P3f9a0c2d1``."""

    return f"{prefix}{uuid.uuid4().hex[:9]}"


def normalize_handle(raw: Optional[str]) -> Optional[str]:
    """Canonicalise a customer handle for lookup.

    Handles are trimmed, inner whitespace collapses to ``_``, any leading
    ``@`` characters are replaced by exactly one, and the result is
    case-folded. Blank input yields ``None``.

    >>> normalize_handle("  @@Jess C ")
    '@jess_c'
    """

    if raw is None:
        return None
    text = _WHITESPACE.sub("_", str(raw).strip()).lstrip("@")
    if not text:
        return None
    return f"@{text.casefold()}"


class CatalogStore:
    """Owns :class:`Product` records. Stock never drops below zero."""

    def __init__(self, products: Iterable[Product] = ()) -> None:
        self._products: List[Product] = list(products)

    def __len__(self) -> int:
        return len(self._products)

    def __iter__(self) -> Iterator[Product]:
        return iter(list(self._products))

    def __contains__(self, product_id: object) -> bool:
        return any(product.product_id == product_id for product in self._products)

    def list_products(self) -> List[Product]:
        return list(self._products)

    def get(self, product_id: str) -> Product:
        return self._products[self._index_of(product_id)]

    def first(self) -> Optional[Product]:
        return self._products[0] if self._products else None

    def add_product(
        self,
        *,
        name: str,
        price: Decimal,
        cost_price: Decimal = Decimal("0"),
        stock: int = 0,
        category: str = "General",
        description: Optional[str] = None,
        variants: Iterable[ProductVariant] = (),
        stock_threshold: Optional[int] = None,
        product_id: Optional[str] = None,
    ) -> Product:
        """Create a product with ``total_sales=0`` and place it first in the catalog.

        Raises:
            ValueError: If the name is blank, a money value or the stock is
                negative, or ``product_id`` is already taken.
        """

        if not name or not name.strip():
            raise ValueError("Product name is required")
        if price < 0 or cost_price < 0:
            raise ValueError("Product prices must be zero or positive")
        if stock < 0:
            raise ValueError("Product stock must be zero or positive")
        product_id = product_id or generate_record_id("P")
        if product_id in self:
            raise ValueError(f"Duplicate product id: {product_id}")

        product = Product(
            product_id=product_id,
            name=name.strip(),
            price=price,
            cost_price=cost_price,
            stock=stock,
            total_sales=0,
            category=category,
            description=description,
            variants=tuple(variants),
            stock_threshold=stock_threshold,
        )
        self._products.insert(0, product)
        return product

    def adjust_stock(self, product_id: str, delta: int) -> Product:
        """Apply a signed stock change, flooring the result at zero."""

        index = self._index_of(product_id)
        current = self._products[index]
        updated = replace(current, stock=max(0, current.stock + delta))
        self._products[index] = updated
        return updated

    def record_sale(self, product_id: str, quantity: int) -> Product:
        """Deplete stock (floored at zero) and grow ``total_sales`` by ``quantity``."""

        index = self._index_of(product_id)
        current = self._products[index]
        if quantity > current.stock:
            log.warning(
                "Oversell on product '%s': sold %d with %d in stock; stock floored at 0",
                product_id,
                quantity,
                current.stock,
            )
        updated = replace(
            current,
            stock=max(0, current.stock - quantity),
            total_sales=current.total_sales + max(0, quantity),
        )
        self._products[index] = updated
        return updated

    def find_by_name_contains(self, query: str) -> Optional[Product]:
        """Return the first product whose name contains ``query``, ignoring case."""

        needle = (query or "").casefold()
        for product in self._products:
            if needle in product.name.casefold():
                return product
        return None

    def search(self, term: str) -> List[Product]:
        needle = (term or "").casefold()
        return [
            product
            for product in self._products
            if needle in product.name.casefold() or needle in product.category.casefold()
        ]

    def low_stock(self, threshold: int) -> List[Product]:
        """Products strictly below their own threshold, or ``threshold`` if unset."""

        return [
            product
            for product in self._products
            if product.stock < (product.stock_threshold if product.stock_threshold is not None else threshold)
        ]

    def _index_of(self, product_id: str) -> int:
        for index, product in enumerate(self._products):
            if product.product_id == product_id:
                return index
        raise KeyError(f"Product not found: {product_id}")


class DirectoryStore:
    """Owns :class:`Customer` records keyed by normalized handle."""

    def __init__(self, customers: Iterable[Customer] = ()) -> None:
        self._customers: Dict[str, Customer] = {}
        # Snapshots list customers newest first; insert oldest first to keep that order.
        for customer in reversed(list(customers)):
            key = normalize_handle(customer.handle)
            if key is None:
                raise ValueError(f"Customer '{customer.customer_id}' has no handle")
            if key in self._customers:
                raise ValueError(f"Duplicate customer handle: {key}")
            self._customers[key] = replace(customer, handle=key)

    def __len__(self) -> int:
        return len(self._customers)

    def __iter__(self) -> Iterator[Customer]:
        return iter(self.list_customers())

    def list_customers(self) -> List[Customer]:
        """Return customers newest first."""

        return list(reversed(self._customers.values()))

    def find_by_handle(self, handle: Optional[str]) -> Optional[Customer]:
        key = normalize_handle(handle)
        if key is None:
            return None
        return self._customers.get(key)

    def get(self, handle: str) -> Customer:
        customer = self.find_by_handle(handle)
        if customer is None:
            raise KeyError(f"Customer not found: {handle}")
        return customer

    def add_customer(
        self,
        *,
        handle: str,
        channel: SalesSource,
        name: Optional[str] = None,
        address: Optional[str] = None,
    ) -> Customer:
        """Register a customer with no orders yet.

        Raises:
            ValueError: If the handle is blank or already registered.
        """

        key = normalize_handle(handle)
        if key is None:
            raise ValueError("Customer handle is required")
        if key in self._customers:
            raise ValueError(f"Customer already exists: {key}")
        customer = Customer(
            customer_id=generate_record_id("C"),
            handle=key,
            name=name or key.lstrip("@"),
            order_count=0,
            ltv=Decimal("0"),
            channel=channel,
            last_active=NEW_CUSTOMER_ACTIVITY,
            address=address,
        )
        self._customers[key] = customer
        return customer

    def upsert_on_sale(
        self,
        handle: str,
        order_value: Decimal,
        channel: SalesSource,
        *,
        name: Optional[str] = None,
        address: Optional[str] = None,
    ) -> tuple[Customer, bool]:
        """Count one more order for ``handle``, creating the customer if needed.

        Returns:
            tuple[Customer, bool]: The stored customer and whether it was
                created by this call.

        Raises:
            ValueError: If the handle is blank.
        """

        key = normalize_handle(handle)
        if key is None:
            raise ValueError("Customer handle is required")

        existing = self._customers.get(key)
        if existing is not None:
            updated = replace(
                existing,
                order_count=existing.order_count + 1,
                ltv=existing.ltv + order_value,
                last_active=JUST_NOW,
                address=address or existing.address,
            )
            self._customers[key] = updated
            return updated, False

        created = Customer(
            customer_id=generate_record_id("C"),
            handle=key,
            name=name or key.lstrip("@"),
            order_count=1,
            ltv=order_value,
            channel=channel,
            last_active=JUST_NOW,
            address=address,
        )
        self._customers[key] = created
        return created, True

    def merge(self, source_handle: str, target_handle: str) -> Customer:
        """Fold ``source_handle`` into ``target_handle`` and drop the source.

        Order counts and lifetime values are summed; the target keeps its
        identity, channel and name.

        Raises:
            KeyError: If either customer is unknown.
            ValueError: If both handles normalize to the same customer.
        """

        source = self.get(source_handle)
        target = self.get(target_handle)
        if source.handle == target.handle:
            raise ValueError("Cannot merge a customer into itself")
        merged = replace(
            target,
            order_count=target.order_count + source.order_count,
            ltv=target.ltv + source.ltv,
            address=target.address or source.address,
        )
        del self._customers[source.handle]
        self._customers[target.handle] = merged
        return merged


class TransactionLedger:
    """Owns :class:`Transaction` records, most recent first.

    Records are never removed. Only ``status``, ``is_archived`` and the
    fields in ``EDITABLE_TRANSACTION_FIELDS`` change after creation.
    """

    def __init__(self, transactions: Iterable[Transaction] = ()) -> None:
        self._transactions: List[Transaction] = list(transactions)

    def __len__(self) -> int:
        return len(self._transactions)

    def __iter__(self) -> Iterator[Transaction]:
        return iter(list(self._transactions))

    def append(self, transactions: Iterable[Transaction]) -> None:
        """Prepend a batch, keeping the batch's own order intact."""

        batch = list(transactions)
        known = {transaction.transaction_id for transaction in self._transactions}
        for transaction in batch:
            if transaction.transaction_id in known:
                raise ValueError(f"Duplicate transaction id: {transaction.transaction_id}")
            known.add(transaction.transaction_id)
        self._transactions[:0] = batch

    def get(self, transaction_id: str) -> Transaction:
        return self._transactions[self._index_of(transaction_id)]

    def list_transactions(self, *, include_archived: bool = True) -> List[Transaction]:
        if include_archived:
            return list(self._transactions)
        return [transaction for transaction in self._transactions if not transaction.is_archived]

    def set_archived(self, transaction_id: str, archived: bool) -> Transaction:
        return self._replace(transaction_id, is_archived=archived)

    def toggle_archived(self, transaction_id: str) -> Transaction:
        current = self.get(transaction_id)
        return self._replace(transaction_id, is_archived=not current.is_archived)

    def update_status(self, transaction_id: str, status: TransactionStatus) -> Transaction:
        """Move a transaction to ``status`` if the transition is allowed.

        Re-applying the current status is a no-op.

        Raises:
            ValueError: If the transition is not allowed.
        """

        current = self.get(transaction_id)
        check_status_transition(current.status, status)
        if current.status == status:
            return current
        return self._replace(transaction_id, status=status)

    def edit(self, transaction_id: str, updates: Mapping[str, Any], description: str) -> Transaction:
        """Apply a partial update and append ``description`` to the edit history.

        Raises:
            ValueError: If ``updates`` names an immutable or unknown field, or
                asks for a forbidden status transition.
        """

        current = self.get(transaction_id)
        frozen = IMMUTABLE_TRANSACTION_FIELDS.intersection(updates)
        if frozen:
            raise ValueError(f"Immutable transaction fields cannot be edited: {', '.join(sorted(frozen))}")
        unknown = set(updates) - EDITABLE_TRANSACTION_FIELDS
        if unknown:
            raise ValueError(f"Unknown or non-editable transaction fields: {', '.join(sorted(unknown))}")
        if "status" in updates:
            check_status_transition(current.status, updates["status"])

        entry = EditLog(timestamp=datetime.now(UTC), description=description)
        return self._replace(
            transaction_id,
            **dict(updates),
            edit_history=current.edit_history + (entry,),
        )

    def reassign_customer(self, old_handle: str, new_handle: str) -> List[Transaction]:
        """Point every transaction of ``old_handle`` at ``new_handle``."""

        changed: List[Transaction] = []
        now = datetime.now(UTC)
        for index, transaction in enumerate(self._transactions):
            if transaction.customer_handle != old_handle:
                continue
            entry = EditLog(timestamp=now, description=f"Customer merged: {old_handle} -> {new_handle}")
            updated = replace(
                transaction,
                customer_handle=new_handle,
                edit_history=transaction.edit_history + (entry,),
            )
            self._transactions[index] = updated
            changed.append(updated)
        return changed

    def _replace(self, transaction_id: str, **changes: Any) -> Transaction:
        index = self._index_of(transaction_id)
        updated = replace(self._transactions[index], **changes)
        self._transactions[index] = updated
        return updated

    def _index_of(self, transaction_id: str) -> int:
        for index, transaction in enumerate(self._transactions):
            if transaction.transaction_id == transaction_id:
                return index
        raise KeyError(f"Transaction not found: {transaction_id}")


def check_status_transition(current: TransactionStatus, target: TransactionStatus) -> None:
    """Raise ``ValueError`` unless ``current`` may move to ``target``."""

    if current == target:
        return
    if target not in ALLOWED_STATUS_TRANSITIONS[current]:
        raise ValueError(f"Status transition not allowed: {current.value} -> {target.value}")


class ExpenseBook:
    """Owns :class:`Expense` records, most recent first."""

    def __init__(self, expenses: Iterable[Expense] = ()) -> None:
        self._expenses: List[Expense] = list(expenses)

    def __len__(self) -> int:
        return len(self._expenses)

    def __iter__(self) -> Iterator[Expense]:
        return iter(list(self._expenses))

    def list_expenses(self) -> List[Expense]:
        return list(self._expenses)

    def add_expense(
        self,
        *,
        amount: Decimal,
        category: ExpenseCategory,
        description: str,
        timestamp: Optional[datetime] = None,
        vendor: Optional[str] = None,
    ) -> Expense:
        """Record an expense.

        Raises:
            ValueError: If ``amount`` is not strictly positive.
        """

        if amount <= 0:
            raise ValueError("Expense amount must be greater than zero")
        expense = Expense(
            expense_id=generate_record_id("E"),
            amount=amount,
            category=category,
            description=description,
            timestamp=timestamp or datetime.now(UTC),
            vendor=vendor,
        )
        self._expenses.insert(0, expense)
        return expense

    def total(self) -> Decimal:
        return sum((expense.amount for expense in self._expenses), Decimal("0"))


__all__ = [
    "generate_record_id",
    "normalize_handle",
    "check_status_transition",
    "CatalogStore",
    "DirectoryStore",
    "TransactionLedger",
    "ExpenseBook",
]
