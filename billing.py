"""
Billing quantity and pricing calculator.

Pieces are counted as whole numbers. ``KG`` and ``L`` are bulk units:
the price is per kilogram or litre but the quantity is tracked in grams
or millilitres, so a bulk line priced at 80 with quantity 1500 costs 120.

The module-level functions are pure. ``BillDraft`` is the running bill
the shopkeeper is building; it only ever replaces its line list with the
result of those functions.
"""

from __future__ import annotations

import math
from typing import List, Optional

from errors import NotFound, ValidationRejected
from schemas import BillItem, BillTotals, Customer, Product


PIECE = "Piece"
BULK_FACTOR = 1000


def is_bulk(unit: str) -> bool:
    return unit != PIECE


def compute_line_price(base_price: float, quantity: float, unit: str) -> float:
    """Price of ``quantity`` at ``base_price``. No rounding happens here."""
    if unit == PIECE:
        return base_price * quantity
    return base_price * (quantity / BULK_FACTOR)


def initial_quantity_for(unit: str) -> int:
    return 1 if unit == PIECE else BULK_FACTOR


def step_quantity(current: int, unit: str, direction: str) -> Optional[int]:
    """Apply one +/- tap to a line quantity.

    Pieces move by one. Bulk lines go up a whole kilogram/litre at a time;
    going down, anything above one whole unit snaps to exactly one unit and
    anything at or below it is halved (1000, 500, 250, 125, 62, ...).

    Returns None when the line has to be removed.
    """
    if direction not in ("plus", "minus"):
        raise ValueError(f"Unknown direction: {direction!r}")
    if unit == PIECE:
        new_qty = current + 1 if direction == "plus" else current - 1
    elif direction == "plus":
        new_qty = current + BULK_FACTOR
    elif current > BULK_FACTOR:
        new_qty = BULK_FACTOR
    else:
        new_qty = current // 2
    if new_qty <= 0:
        return None
    return new_qty


def _parse_number(raw) -> Optional[float]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = float(str(raw).strip())
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def set_exact_quantity(raw_value, unit: str, granularity: str = "base") -> Optional[int]:
    """Quantity typed in by hand.

    For bulk units ``granularity`` says whether the number is in kg/l
    (``"base"``) or g/ml (``"sub"``). Returns None for anything that is
    not a finite positive number, and for a fractional piece count; the
    caller keeps the old quantity.
    """
    value = _parse_number(raw_value)
    if value is None or value <= 0:
        return None
    if not is_bulk(unit):
        return int(value) if value.is_integer() else None
    if granularity == "base":
        value = value * BULK_FACTOR
    # Bulk lines are kept to the nearest whole gram or millilitre.
    quantity = int(round(value))
    if quantity <= 0:
        return None
    return quantity


def make_line(product: Product, quantity: int) -> BillItem:
    return BillItem(
        product_id=product.id,
        name=product.name,
        base_price=product.price,
        unit=product.unit,
        quantity=quantity,
        calculated_price=compute_line_price(product.price, quantity, product.unit),
    )


def _with_quantity(line: BillItem, quantity: int) -> BillItem:
    return line.model_copy(update={
        "quantity": quantity,
        "calculated_price": compute_line_price(line.base_price, quantity, line.unit),
    })


def step_line(lines: List[BillItem], product_id: str, direction: str) -> List[BillItem]:
    """Step one line, dropping it when its quantity reaches zero."""
    result = []
    for line in lines:
        if line.product_id != product_id:
            result.append(line)
            continue
        new_qty = step_quantity(line.quantity, line.unit, direction)
        if new_qty is not None:
            result.append(_with_quantity(line, new_qty))
    return result


def add_or_merge_line(lines: List[BillItem], product: Product) -> List[BillItem]:
    if any(line.product_id == product.id for line in lines):
        return step_line(lines, product.id, "plus")
    return list(lines) + [make_line(product, initial_quantity_for(product.unit))]


def set_line_quantity(lines: List[BillItem], product_id: str, raw_value, granularity: str = "base") -> List[BillItem]:
    result = []
    for line in lines:
        if line.product_id == product_id:
            quantity = set_exact_quantity(raw_value, line.unit, granularity)
            if quantity is not None:
                line = _with_quantity(line, quantity)
        result.append(line)
    return result


def remove_line(lines: List[BillItem], product_id: str) -> List[BillItem]:
    return [line for line in lines if line.product_id != product_id]


def parse_paid_amount(raw) -> float:
    """Blank or non-numeric paid amounts count as nothing paid."""
    value = _parse_number(raw)
    return value if value is not None else 0.0


def compute_bill_totals(lines: List[BillItem], paid_amount: float) -> BillTotals:
    # Priced from each line's own snapshot, not the current catalog price.
    total = sum(compute_line_price(line.base_price, line.quantity, line.unit) for line in lines)
    balance = total - paid_amount
    if balance <= 0:
        status = "Paid"
    elif paid_amount > 0:
        status = "Partial"
    else:
        status = "Unpaid"
    return BillTotals(total_amount=total, due_amount=max(0.0, balance), status=status)


# ----- Display -----

def _plain_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return ("%.3f" % value).rstrip("0").rstrip(".")


def format_quantity(quantity: float, unit: str) -> str:
    if unit == PIECE:
        return f"{_plain_number(quantity)} pc"
    if quantity >= BULK_FACTOR:
        return f"{_plain_number(quantity / BULK_FACTOR)} {unit}"
    minor = "gram" if unit == "KG" else "ml"
    return f"{_plain_number(quantity)} {minor}"


def format_amount(amount: float) -> str:
    return f"{amount:.1f}"


def format_plain_amount(amount: float) -> str:
    return _plain_number(round(amount, 2))


# ----- Running bill -----

class BillDraft:
    """The bill currently being built at the counter."""

    def __init__(self) -> None:
        self.customer: Optional[Customer] = None
        self.lines: List[BillItem] = []
        self.paid_amount: float = 0.0

    def select_customer(self, customer: Customer) -> None:
        self.customer = customer

    def clear_customer(self) -> None:
        self.customer = None

    def _require_line(self, product_id: str) -> None:
        if not any(line.product_id == product_id for line in self.lines):
            raise NotFound(f"Product {product_id} is not on the bill")

    def add_product(self, product: Product) -> None:
        self.lines = add_or_merge_line(self.lines, product)

    def step(self, product_id: str, direction: str) -> None:
        self._require_line(product_id)
        self.lines = step_line(self.lines, product_id, direction)

    def set_quantity(self, product_id: str, raw_value, granularity: Optional[str] = None) -> None:
        self._require_line(product_id)
        if granularity is None:
            granularity = self.default_granularity(product_id)
        self.lines = set_line_quantity(self.lines, product_id, raw_value, granularity)

    def default_granularity(self, product_id: str) -> str:
        for line in self.lines:
            if line.product_id == product_id and is_bulk(line.unit) and line.quantity < BULK_FACTOR:
                return "sub"
        return "base"

    def remove(self, product_id: str) -> None:
        self._require_line(product_id)
        self.lines = remove_line(self.lines, product_id)

    def set_paid(self, raw) -> None:
        amount = parse_paid_amount(raw)
        if amount < 0:
            raise ValidationRejected("Paid amount cannot be negative")
        self.paid_amount = amount

    def totals(self) -> BillTotals:
        return compute_bill_totals(self.lines, self.paid_amount)

    def clear(self) -> None:
        self.customer = None
        self.lines = []
        self.paid_amount = 0.0
