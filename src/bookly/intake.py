"""Normalization of extraction payloads and manual entries.

The extraction service returns best-effort JSON whose shape drifts between
versions: multi-customer payloads carry a ``customers`` list, older flat
payloads carry ``customerName``/``orderItems`` (or ``customerHandle``/
``items``) at the top level. Everything downstream works on the strict
:class:`SaleIntent` produced here, so schema drift stays in this module.

Coercion favours producing a committable record over rejecting input:
missing or invalid quantities become ``1``, missing money becomes ``0``, and
unknown channel or payment names fall back to defaults. Manual entries are the
exception; they are validated the way the entry form validates them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Sequence, Union

from . import log
from .constants import Confidence, ExpenseCategory, Intent, PaymentMethod, SalesSource
from .data_manager import ProductVariant
from .stores import normalize_handle


@dataclass(frozen=True)
class OrderLine:
    """A single requested product line within a customer block."""

    product_name: str
    quantity: int = 1
    unit_price: Optional[Decimal] = None
    variant: Optional[str] = None


@dataclass(frozen=True)
class CustomerBlock:
    """One customer's sub-order inside a sale intent."""

    handle: Optional[str]
    lines: tuple[OrderLine, ...] = ()
    platform: Optional[SalesSource] = None
    payment_method: Optional[PaymentMethod] = None
    delivery_fee: Decimal = Decimal("0")
    order_total: Decimal = Decimal("0")
    display_name: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True)
class SaleIntent:
    """Normalized sale ready for reconciliation."""

    blocks: tuple[CustomerBlock, ...]
    confidence: Confidence = Confidence.HIGH


@dataclass(frozen=True)
class ProductDraft:
    """Product fields proposed by a ``product`` extraction."""

    name: str
    price: Decimal
    cost_price: Decimal
    stock: int
    category: str
    description: Optional[str] = None
    variants: tuple[ProductVariant, ...] = ()
    confidence: Confidence = Confidence.HIGH


@dataclass(frozen=True)
class ExpenseDraft:
    """Expense fields proposed by an ``expense`` extraction."""

    amount: Decimal
    category: ExpenseCategory
    description: str
    timestamp: Optional[datetime] = None
    vendor: Optional[str] = None
    confidence: Confidence = Confidence.HIGH


@dataclass(frozen=True)
class InquiryReply:
    """Customer question with reply suggestions; changes no state."""

    suggested_replies: tuple[str, ...] = ()
    confidence: Confidence = Confidence.HIGH


ExtractionRecord = Union[SaleIntent, ProductDraft, ExpenseDraft, InquiryReply]


# ---------------------------------------------------------------------------
# Scalar coercion
# ---------------------------------------------------------------------------


def coerce_money(raw: Any) -> Optional[Decimal]:
    """Return ``raw`` as a finite :class:`Decimal`, or ``None`` if it is not numeric.

    Numbers and numeric strings are accepted; booleans, blanks, ``NaN`` and
    infinities are not.
    """

    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, float) and not math.isfinite(raw):
        return None
    if isinstance(raw, (int, float, Decimal)):
        value = Decimal(str(raw))
    elif isinstance(raw, str) and raw.strip():
        try:
            value = Decimal(raw.strip())
        except InvalidOperation:
            return None
    else:
        return None
    return value if value.is_finite() else None


def coerce_quantity(raw: Any) -> int:
    """Return a quantity of at least one.

    Missing, unparseable, zero and negative values all become ``1``;
    fractional values are truncated.
    """

    value = coerce_money(raw)
    if value is None:
        return 1
    quantity = int(value)
    if quantity < 1:
        log.warning("Quantity %r coerced to 1", raw)
        return 1
    return quantity


def _match_enum(enum_type: Any, raw: Any) -> Any:
    if raw is None:
        return None
    if isinstance(raw, enum_type):
        return raw
    text = str(raw).strip().casefold()
    if not text:
        return None
    for member in enum_type:
        if member.value.casefold() == text or member.name.casefold() == text:
            return member
    return None


def parse_sales_source(raw: Any) -> Optional[SalesSource]:
    """Map a channel name onto :class:`SalesSource`.

    Blank input returns ``None`` so the caller can apply its own default;
    unrecognised names map to ``Other``.
    """

    source = _match_enum(SalesSource, raw)
    if source is None and raw is not None and str(raw).strip():
        log.warning("Unknown sales source '%s' recorded as Other", raw)
        return SalesSource.OTHER
    return source


def parse_payment_method(raw: Any) -> Optional[PaymentMethod]:
    """Map a payment method name onto :class:`PaymentMethod`.

    ``"wallet"`` is accepted as shorthand for the Bookly wallet. Blank input
    returns ``None``; anything else unrecognised is treated as cash/transfer.
    """

    method = _match_enum(PaymentMethod, raw)
    if method is not None:
        return method
    if raw is None or not str(raw).strip():
        return None
    if str(raw).strip().casefold() in {"wallet", "bookly"}:
        return PaymentMethod.BOOKLY_WALLET
    return PaymentMethod.CASH_TRANSFER


def parse_confidence(raw: Any) -> Confidence:
    return _match_enum(Confidence, raw) or Confidence.LOW


def parse_expense_category(raw: Any) -> ExpenseCategory:
    return _match_enum(ExpenseCategory, raw) or ExpenseCategory.OTHER


def _parse_date(raw: Any) -> Optional[datetime]:
    if not raw:
        return None
    try:
        moment = datetime.fromisoformat(str(raw).strip())
    except ValueError:
        log.warning("Ignoring unparseable date '%s'", raw)
        return None
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


def _text(raw: Any) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


# ---------------------------------------------------------------------------
# Sale payloads
# ---------------------------------------------------------------------------


def _sequence(raw: Any, label: str) -> Sequence[Any]:
    """Return ``raw`` when it is a list-like payload field, else an empty tuple."""

    if raw is None or raw == "":
        return ()
    if isinstance(raw, Sequence) and not isinstance(raw, (str, bytes)):
        return raw
    log.warning("Ignoring '%s' of type %s; expected a list", label, type(raw).__name__)
    return ()


def normalize_order_line(raw: Mapping[str, Any]) -> OrderLine:
    return OrderLine(
        product_name=_text(raw.get("productName")) or "",
        quantity=coerce_quantity(raw.get("quantity")),
        unit_price=coerce_money(raw.get("unitPrice")),
        variant=_text(raw.get("variant")),
    )


def _normalize_lines(raw_items: Any) -> tuple[OrderLine, ...]:
    return tuple(
        normalize_order_line(item) for item in _sequence(raw_items, "items") if isinstance(item, Mapping)
    )


def normalize_customer_block(raw: Mapping[str, Any]) -> CustomerBlock:
    """Normalize one entry of a ``customers`` list."""

    raw_handle = _text(raw.get("handle"))
    return CustomerBlock(
        handle=normalize_handle(raw_handle),
        lines=_normalize_lines(raw.get("items")),
        platform=parse_sales_source(raw.get("platform")),
        payment_method=parse_payment_method(raw.get("paymentMethod")),
        delivery_fee=coerce_money(raw.get("deliveryFee")) or Decimal("0"),
        order_total=coerce_money(raw.get("orderTotal")) or Decimal("0"),
        display_name=_text(raw.get("name")) or (raw_handle.lstrip("@") if raw_handle else None),
        address=_text(raw.get("address")),
    )


def _normalize_flat_order(payload: Mapping[str, Any]) -> CustomerBlock:
    raw_name = _text(payload.get("customerHandle")) or _text(payload.get("customerName"))
    items = payload.get("orderItems") or payload.get("items")
    total = coerce_money(payload.get("total"))
    if total is None:
        total = coerce_money(payload.get("totalPrice"))
    return CustomerBlock(
        handle=normalize_handle(raw_name),
        lines=_normalize_lines(items),
        platform=parse_sales_source(payload.get("platform") or payload.get("source")),
        payment_method=parse_payment_method(payload.get("paymentMethod")),
        delivery_fee=coerce_money(payload.get("deliveryFee")) or Decimal("0"),
        order_total=total or Decimal("0"),
        display_name=_text(payload.get("customerName")) or (raw_name.lstrip("@") if raw_name else None),
        address=_text(payload.get("address")),
    )


def normalize_sale_intent(payload: Mapping[str, Any]) -> SaleIntent:
    """Convert a sale-tagged extraction payload into a :class:`SaleIntent`.

    Payloads with a non-empty ``customers`` list produce one block per entry
    in list order; any other payload is read as a single flat order.

    Raises:
        ValueError: If ``payload`` is not a mapping or is tagged with an
            intent other than ``sale``.
    """

    if not isinstance(payload, Mapping):
        raise ValueError("Sale payload must be a mapping")
    intent = payload.get("intent")
    if intent is not None and str(intent).strip().casefold() != Intent.SALE.value:
        raise ValueError(f"Expected a sale payload, got intent '{intent}'")

    customers = payload.get("customers")
    if isinstance(customers, Sequence) and not isinstance(customers, str) and customers:
        blocks = tuple(normalize_customer_block(entry) for entry in customers if isinstance(entry, Mapping))
    else:
        blocks = (_normalize_flat_order(payload),)

    return SaleIntent(blocks=blocks, confidence=parse_confidence(payload.get("confidence")))


def normalize_manual_entry(
    *,
    customer_handle: str,
    product_name: str,
    quantity: int,
    unit_price: Decimal,
    source: SalesSource = SalesSource.WALK_IN,
    payment_method: PaymentMethod = PaymentMethod.CASH_TRANSFER,
) -> SaleIntent:
    """Build a one-block, one-line :class:`SaleIntent` from manual entry.

    The declared order total is ``unit_price * quantity``.

    Raises:
        ValueError: If the handle or product name is blank, the quantity is
            not positive, or the unit price is negative.
    """

    errors = []
    handle = normalize_handle(customer_handle)
    if handle is None:
        errors.append("handle required")
    if not product_name or not product_name.strip():
        errors.append("product required")
    if quantity <= 0:
        errors.append("quantity must be > 0")
    if unit_price < 0:
        errors.append("invalid price")
    if errors:
        raise ValueError(f"Invalid manual entry: {', '.join(errors)}")

    line = OrderLine(product_name=product_name.strip(), quantity=quantity, unit_price=unit_price)
    block = CustomerBlock(
        handle=handle,
        lines=(line,),
        platform=source,
        payment_method=payment_method,
        order_total=unit_price * quantity,
        display_name=customer_handle.strip().lstrip("@"),
    )
    return SaleIntent(blocks=(block,), confidence=Confidence.HIGH)


# ---------------------------------------------------------------------------
# Other intents
# ---------------------------------------------------------------------------


def _normalize_variants(raw: Any) -> tuple[ProductVariant, ...]:
    variants = []
    for index, entry in enumerate(_sequence(raw, "variants"), start=1):
        if not isinstance(entry, Mapping):
            continue
        variants.append(
            ProductVariant(
                variant_id=_text(entry.get("id")) or f"V{index}",
                name=_text(entry.get("name")) or f"Variant {index}",
                stock=max(0, int(coerce_money(entry.get("stock")) or 0)),
            )
        )
    return tuple(variants)


def normalize_product_draft(payload: Mapping[str, Any]) -> ProductDraft:
    """Read a ``product`` extraction; money defaults to 0 and stock is floored at 0."""

    return ProductDraft(
        name=_text(payload.get("name")) or "",
        price=max(Decimal("0"), coerce_money(payload.get("price")) or Decimal("0")),
        cost_price=max(Decimal("0"), coerce_money(payload.get("costPrice")) or Decimal("0")),
        stock=max(0, int(coerce_money(payload.get("stock")) or 0)),
        category=_text(payload.get("category")) or "General",
        description=_text(payload.get("description")),
        variants=_normalize_variants(payload.get("variants")),
        confidence=parse_confidence(payload.get("confidence")),
    )


def normalize_expense_draft(payload: Mapping[str, Any]) -> ExpenseDraft:
    return ExpenseDraft(
        amount=coerce_money(payload.get("amount")) or Decimal("0"),
        category=parse_expense_category(payload.get("category")),
        description=_text(payload.get("description")) or "",
        timestamp=_parse_date(payload.get("date")),
        vendor=_text(payload.get("vendor")),
        confidence=parse_confidence(payload.get("confidence")),
    )


def normalize_inquiry(payload: Mapping[str, Any]) -> InquiryReply:
    replies = _sequence(payload.get("suggestedReplies") or payload.get("replies"), "suggestedReplies")
    return InquiryReply(
        suggested_replies=tuple(text for text in (_text(reply) for reply in replies) if text),
        confidence=parse_confidence(payload.get("confidence")),
    )


def parse_extraction(payload: Mapping[str, Any]) -> ExtractionRecord:
    """Dispatch an extraction payload on its ``intent`` tag.

    Raises:
        ValueError: If the payload is not a mapping or its intent is unknown.
    """

    if not isinstance(payload, Mapping):
        raise ValueError("Extraction payload must be a mapping")
    intent = _match_enum(Intent, payload.get("intent"))
    if intent is Intent.SALE:
        return normalize_sale_intent(payload)
    if intent is Intent.PRODUCT:
        return normalize_product_draft(payload)
    if intent is Intent.EXPENSE:
        return normalize_expense_draft(payload)
    if intent is Intent.INQUIRY:
        return normalize_inquiry(payload)
    raise ValueError(f"Unknown extraction intent: {payload.get('intent')!r}")


__all__ = [
    "OrderLine",
    "CustomerBlock",
    "SaleIntent",
    "ProductDraft",
    "ExpenseDraft",
    "InquiryReply",
    "ExtractionRecord",
    "coerce_money",
    "coerce_quantity",
    "parse_sales_source",
    "parse_payment_method",
    "parse_confidence",
    "parse_expense_category",
    "normalize_order_line",
    "normalize_customer_block",
    "normalize_sale_intent",
    "normalize_manual_entry",
    "normalize_product_draft",
    "normalize_expense_draft",
    "normalize_inquiry",
    "parse_extraction",
]
