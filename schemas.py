"""
Record Schemas for the Smart Khata store

Each Pydantic model is one record kind held by the application state and
mirrored to storage. Stored JSON keeps the camelCase field names of the
browser records (``basePrice``, ``billNumber``...), Python code uses
snake_case; both are accepted on input.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Literal, Optional, List, Union


UnitType = Literal["KG", "L", "Piece"]
BillStatus = Literal["Paid", "Partial", "Unpaid"]
ChatRole = Literal["user", "model"]
Granularity = Literal["base", "sub"]
Direction = Literal["plus", "minus"]

QUANTITY_TOLERANCE = 1e-6


class Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Product(Record):
    """Catalog entry"""
    id: str = Field(..., description="Opaque product id")
    name: str = Field(..., description="Display name")
    category: str = Field("Grocery", description="Free-text category label")
    price: float = Field(..., ge=0, description="Price per piece, per KG or per L")
    unit: UnitType = Field("Piece", description="Unit of sale")
    quantity: float = Field(0, description="Stock counter (tracked, never enforced)")
    date_added: str = Field("", description="Creation date")
    image: Optional[str] = Field(None, description="Base64 image payload")


class Customer(Record):
    """Khata holder"""
    id: str = Field(..., description="Opaque customer id")
    name: str = Field(..., description="Customer name")
    mobile: str = Field(..., description="Mobile number, unique per customer")
    address: Optional[str] = Field(None, description="Postal address")


class BillItem(Record):
    product_id: str = Field(..., description="Product id at time of sale")
    name: str = Field(..., description="Snapshot of product name at time of sale")
    base_price: float = Field(..., description="Snapshot of unit price at time of sale")
    unit: UnitType
    quantity: Union[int, float] = Field(..., gt=0, description="Pieces, or grams/millilitres for bulk units")
    calculated_price: float = Field(..., description="Line price for the quantity")

    @field_validator("quantity", mode="before")
    @classmethod
    def settle_float_noise(cls, v):
        # Browser-era bills stored kg * 1000 unrounded, e.g. 1100.0000000000002.
        # Anything else fractional is an old receipt and is kept as written.
        if isinstance(v, float) and abs(v - round(v)) < QUANTITY_TOLERANCE:
            return int(round(v))
        return v


class Bill(Record):
    """Point-in-time receipt; never recomputed once stored"""
    id: str
    bill_number: str = Field(..., description="Sequential display number")
    customer_id: str
    customer_name: str
    customer_mobile: str
    items: List[BillItem] = Field(default_factory=list)
    total_amount: float
    paid_amount: float = 0.0
    due_amount: float = Field(..., ge=0)
    date: str
    time: str
    status: BillStatus


class ChatMessage(Record):
    id: str
    role: ChatRole
    text: str


class BillTotals(Record):
    total_amount: float
    due_amount: float
    status: BillStatus


# ----- Request / response bodies -----

class ProductIn(Record):
    name: str
    category: str = "Grocery"
    price: float = Field(..., ge=0)
    unit: UnitType = "Piece"
    image: Optional[str] = None


class CustomerIn(Record):
    name: str
    mobile: str
    address: Optional[str] = None


class CustomerSummary(Record):
    customer: Customer
    total_due: float


class Ledger(Record):
    customer: Customer
    total_sale: float
    total_paid: float
    total_due: float
    bills: List[Bill]


class Stats(Record):
    total_sales: float
    total_dues: float


class SelectCustomer(Record):
    customer_id: str


class AddLine(Record):
    product_id: str


class StepLine(Record):
    direction: Direction


class ExactQuantity(Record):
    value: Union[float, str]
    granularity: Optional[Granularity] = None


class PaidAmount(Record):
    amount: Union[float, str, None] = None


class DraftView(Record):
    customer: Optional[Customer] = None
    items: List[BillItem]
    paid_amount: float
    totals: BillTotals


class PinUpdate(Record):
    pin: str
    confirm_pin: str


class PinCheck(Record):
    pin: Optional[str] = None


class ChatRequest(Record):
    text: str


class ChatReply(Record):
    accepted: bool
    reply: Optional[ChatMessage] = None
    messages: List[ChatMessage]


class ShareLink(Record):
    url: str
    text: str
