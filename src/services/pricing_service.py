"""Order pricing: line totals, coupon discount, tax and grand total.

All monetary values are Decimals rounded half-up to cents. Each quantity
is rounded on its own before it feeds the next step, so computing the
same order twice always yields the same figures.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping

from src.api.middleware.error_handler import BusinessRuleError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def round_money(value: Any) -> Decimal:
    """Round a monetary value half-up to 2 decimal places.

    Floats are converted through their string form so that 0.1 + 0.2
    style artifacts do not leak into the rounding.
    """
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricedLine:
    """A requested line resolved against catalog prices."""

    product_id: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class OrderTotals:
    """Monetary summary stored on the order."""

    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    grand_total: Decimal
    total_items: int


def price_lines(items: Iterable[Mapping[str, Any]], prices: Mapping[str, Decimal]) -> list[PricedLine]:
    """Resolve each requested line to its unit price and line total.

    Args:
        items: Requested lines with `product` and `quantity`.
        prices: Unit price per product id, as returned by the catalog.

    Returns:
        list[PricedLine]: One entry per requested line, in request order.

    Raises:
        BusinessRuleError: If any product is missing from the catalog or has
            a zero price; a zero price cannot be told apart from "not found".
    """
    lines = []
    for item in items:
        product_id = str(item["product"])
        quantity = int(item.get("quantity") or 1)
        unit_price = prices.get(product_id)
        if not unit_price:
            raise BusinessRuleError(f"Invalid product in items: {product_id}")
        lines.append(
            PricedLine(
                product_id=product_id,
                quantity=quantity,
                unit_price=unit_price,
                line_total=round_money(unit_price * quantity),
            )
        )
    return lines


def subtotal_of(lines: Iterable[PricedLine]) -> Decimal:
    """Sum line totals and round the result to cents."""
    return round_money(sum((line.line_total for line in lines), ZERO))


def compute_discount(coupon: Mapping[str, Any] | None, subtotal: Decimal) -> Decimal:
    """Compute the discount a coupon grants on a subtotal.

    Percentage coupons take `value` percent of the subtotal, capped at
    `maxDiscount` when one is set; fixed coupons take `value` as is. The
    discount never exceeds the subtotal, so the grand total always equals
    subtotal minus discount plus tax.
    """
    if not coupon:
        return ZERO

    value = Decimal(str(coupon.get("value") or 0))
    if coupon.get("type") == "percentage":
        discount = subtotal * value / 100
        max_discount = coupon.get("maxDiscount")
        if max_discount and max_discount > 0:
            discount = min(discount, Decimal(str(max_discount)))
    else:
        discount = value

    return max(ZERO, min(round_money(discount), subtotal))


def compute_totals(
    lines: Iterable[PricedLine],
    coupon: Mapping[str, Any] | None = None,
    tax_amount: Any = 0,
) -> OrderTotals:
    """Compute the order totals from priced lines.

    Args:
        lines: Priced order lines.
        coupon: Validated coupon document, if one applies.
        tax_amount: Caller-supplied tax; negative values count as zero.

    Returns:
        OrderTotals: Rounded subtotal, discount, tax and grand total.
    """
    lines = list(lines)
    subtotal = subtotal_of(lines)
    discount = compute_discount(coupon, subtotal)
    tax = max(ZERO, round_money(tax_amount))
    grand_total = max(ZERO, round_money(subtotal - discount + tax))

    return OrderTotals(
        subtotal=subtotal,
        discount=discount,
        tax=tax,
        grand_total=grand_total,
        total_items=sum(line.quantity for line in lines),
    )
