"""
Application state for the shop: catalog, customers, bills and the PIN.

``KhataState`` is the only owner of the stores. Every mutation writes the
store it touched back to storage straight away; bills and customers are
never linked live to the catalog, a bill keeps its own copy of what was
sold and to whom.
"""

from __future__ import annotations

import functools
import logging
import threading
import uuid
from datetime import datetime
from typing import List, Optional

import database
from billing import BillDraft
from errors import NotFound, PinMismatch, ValidationRejected
from schemas import Bill, Customer, Ledger, Product, Stats

logger = logging.getLogger(__name__)

BILL_NUMBER_OFFSET = 101
PIN_LENGTH = 4


def _new_id() -> str:
    return uuid.uuid4().hex


def _matches(term: str, *fields: str) -> bool:
    return any(term in (f or "").lower() for f in fields)


def _serialized(method):
    """Run ``method`` while holding the state lock, one action at a time."""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self.lock:
            return method(self, *args, **kwargs)
    return wrapper


class KhataState:
    def __init__(self, storage: database.Storage) -> None:
        self.storage = storage
        # Reentrant: clear_all_data reloads while holding it.
        self.lock = threading.RLock()
        self.draft = BillDraft()
        self.reload()

    @_serialized
    def reload(self) -> None:
        self.products: List[Product] = database.load_records(self.storage, database.PRODUCTS_KEY, Product)
        self.customers: List[Customer] = database.load_records(self.storage, database.CUSTOMERS_KEY, Customer)
        self.bills: List[Bill] = database.load_records(self.storage, database.BILLS_KEY, Bill)
        self.pin: Optional[str] = database.load_pin(self.storage)
        self.draft.clear()

    # ---- Catalog ----

    def _save_products(self) -> None:
        database.save_records(self.storage, database.PRODUCTS_KEY, self.products)

    @staticmethod
    def _check_product_fields(name: str, price: float) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationRejected("Product name is required")
        if price is None or price < 0:
            raise ValidationRejected("Price must be zero or more")
        return name

    @_serialized
    def add_product(self, name: str, price: float, unit: str = "Piece",
                    category: str = "Grocery", image: Optional[str] = None) -> Product:
        name = self._check_product_fields(name, price)
        product = Product(
            id=_new_id(),
            name=name,
            category=category or "Grocery",
            price=price,
            unit=unit,
            quantity=0,
            date_added=datetime.now().strftime("%d/%m/%Y"),
            image=image,
        )
        self.products.append(product)
        self._save_products()
        logger.info("Product added", extra={"extra": {"product_id": product.id, "name": product.name}})
        return product

    @_serialized
    def update_product(self, product_id: str, name: str, price: float, unit: str = "Piece",
                       category: str = "Grocery", image: Optional[str] = None) -> Product:
        name = self._check_product_fields(name, price)
        for index, old in enumerate(self.products):
            if old.id == product_id:
                updated = old.model_copy(update={
                    "name": name,
                    "price": price,
                    "unit": unit,
                    "category": category or "Grocery",
                    "image": image,
                })
                self.products[index] = updated
                self._save_products()
                logger.info("Product updated", extra={"extra": {"product_id": product_id}})
                return updated
        raise NotFound("Product not found")

    def get_product(self, product_id: str) -> Product:
        for p in self.products:
            if p.id == product_id:
                return p
        raise NotFound("Product not found")

    def search_products(self, term: str = "", limit: Optional[int] = None) -> List[Product]:
        term = (term or "").lower().strip()
        if not term:
            return self.products[:limit] if limit is not None else list(self.products)
        return [p for p in self.products if _matches(term, p.name, p.category)]

    # ---- Customers ----

    @_serialized
    def add_customer(self, name: str, mobile: str, address: Optional[str] = None) -> Customer:
        name = (name or "").strip()
        mobile = (mobile or "").strip()
        if not name or not mobile:
            raise ValidationRejected("Name and mobile number are required")
        if any(c.mobile == mobile for c in self.customers):
            raise ValidationRejected("This mobile number already exists")
        customer = Customer(id=_new_id(), name=name, mobile=mobile, address=address or None)
        self.customers.append(customer)
        database.save_records(self.storage, database.CUSTOMERS_KEY, self.customers)
        logger.info("Customer added", extra={"extra": {"customer_id": customer.id}})
        return customer

    def get_customer(self, customer_id: str) -> Customer:
        for c in self.customers:
            if c.id == customer_id:
                return c
        raise NotFound("Customer not found")

    def search_customers(self, term: str = "") -> List[Customer]:
        term = (term or "").lower().strip()
        if not term:
            return list(self.customers)
        return [c for c in self.customers if term in c.name.lower() or term in c.mobile]

    def bills_for_customer(self, customer_id: str) -> List[Bill]:
        return [b for b in self.bills if b.customer_id == customer_id]

    def customer_dues(self, customer_id: str) -> float:
        return sum(b.due_amount for b in self.bills_for_customer(customer_id))

    def customer_ledger(self, customer_id: str) -> Ledger:
        customer = self.get_customer(customer_id)
        bills = self.bills_for_customer(customer_id)
        return Ledger(
            customer=customer,
            total_sale=sum(b.total_amount for b in bills),
            total_paid=sum(b.paid_amount for b in bills),
            total_due=sum(b.due_amount for b in bills),
            bills=list(reversed(bills)),
        )

    # ---- Bills ----

    def _save_bills(self) -> None:
        database.save_records(self.storage, database.BILLS_KEY, self.bills)

    @_serialized
    def finalize_bill(self, draft: Optional[BillDraft] = None, now: Optional[datetime] = None) -> Bill:
        """Turn the running bill into a stored receipt.

        Raises:
            ValidationRejected: no customer picked, or nothing on the bill.
        """
        draft = draft if draft is not None else self.draft
        if draft.customer is None:
            raise ValidationRejected("Pick a customer first")
        if not draft.lines:
            raise ValidationRejected("The bill has no items")
        now = now or datetime.now()
        totals = draft.totals()
        bill = Bill(
            id=_new_id(),
            bill_number=str(len(self.bills) + BILL_NUMBER_OFFSET),
            customer_id=draft.customer.id,
            customer_name=draft.customer.name,
            customer_mobile=draft.customer.mobile,
            items=list(draft.lines),
            total_amount=totals.total_amount,
            paid_amount=draft.paid_amount,
            due_amount=totals.due_amount,
            date=now.strftime("%d/%m/%Y"),
            time=now.strftime("%H:%M"),
            status=totals.status,
        )
        self.bills.append(bill)
        self._save_bills()
        draft.clear()
        logger.info(
            "Bill saved",
            extra={"extra": {"bill_id": bill.id, "bill_number": bill.bill_number,
                             "total": bill.total_amount, "status": bill.status}},
        )
        return bill

    def list_bills(self) -> List[Bill]:
        return list(reversed(self.bills))

    def get_bill(self, bill_id: str) -> Bill:
        for b in self.bills:
            if b.id == bill_id:
                return b
        raise NotFound("Bill not found")

    @_serialized
    def delete_bill(self, bill_id: str, pin: Optional[str] = None) -> None:
        self.get_bill(bill_id)
        if not self.verify_pin(pin):
            raise PinMismatch("Wrong PIN")
        self.bills = [b for b in self.bills if b.id != bill_id]
        self._save_bills()
        logger.info("Bill deleted", extra={"extra": {"bill_id": bill_id}})

    def stats(self) -> Stats:
        return Stats(
            total_sales=sum(b.total_amount for b in self.bills),
            total_dues=sum(b.due_amount for b in self.bills),
        )

    # ---- Settings ----

    @_serialized
    def set_pin(self, new_pin: str, confirm_pin: str) -> None:
        if len(new_pin or "") != PIN_LENGTH or not new_pin.isdigit():
            raise ValidationRejected("PIN must be 4 digits")
        if new_pin != confirm_pin:
            raise ValidationRejected("PIN does not match")
        self.pin = new_pin
        database.save_pin(self.storage, new_pin)
        logger.info("PIN updated")

    def verify_pin(self, pin: Optional[str]) -> bool:
        # A string comparison deterrent, not an access control.
        if not self.pin:
            return True
        return pin == self.pin

    @_serialized
    def clear_all_data(self, pin: Optional[str] = None) -> None:
        if not self.verify_pin(pin):
            raise PinMismatch("Wrong PIN")
        database.clear_all(self.storage)
        self.reload()
        logger.warning("All khata data cleared")
