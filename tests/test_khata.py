import json
import threading
import time
import unittest
from datetime import datetime

import database
from database import MemoryStorage
from errors import NotFound, PinMismatch, ValidationRejected
from khata import KhataState


class SlowStorage(MemoryStorage):
    def set(self, key, value):
        time.sleep(0.05)
        super().set(key, value)


class KhataTestCase(unittest.TestCase):

    def setUp(self):
        self.storage = MemoryStorage()
        self.khata = KhataState(self.storage)

    def stored(self, key):
        return json.loads(self.storage.get(key))

    def make_bill(self, *products_and_taps, paid=0, customer=None):
        customer = customer or self.khata.add_customer("Ramesh", "9876543210")
        self.khata.draft.select_customer(customer)
        for p in products_and_taps:
            self.khata.draft.add_product(p)
        self.khata.draft.set_paid(paid)
        return self.khata.finalize_bill(now=datetime(2024, 3, 5, 18, 30))


class TestCatalog(KhataTestCase):

    def test_add_product_persists_with_schema_envelope(self):
        p = self.khata.add_product("Rice", 80, "KG", "Grocery")
        payload = self.stored(database.PRODUCTS_KEY)
        self.assertEqual(payload["version"], 1)
        self.assertEqual(payload["records"][0]["id"], p.id)
        self.assertIn("dateAdded", payload["records"][0])
        self.assertEqual(p.quantity, 0)

    def test_add_product_validation(self):
        with self.assertRaises(ValidationRejected):
            self.khata.add_product("   ", 10)
        with self.assertRaises(ValidationRejected):
            self.khata.add_product("Soap", -1)
        self.assertEqual(self.khata.products, [])
        self.assertIsNone(self.storage.get(database.PRODUCTS_KEY))

    def test_update_in_place(self):
        a = self.khata.add_product("Rice", 80, "KG")
        b = self.khata.add_product("Soap", 25)
        updated = self.khata.update_product(a.id, "Basmati Rice", 120, "KG", "Grocery")
        self.assertEqual(updated.id, a.id)
        self.assertEqual([p.id for p in self.khata.products], [a.id, b.id])
        self.assertEqual(self.stored(database.PRODUCTS_KEY)["records"][0]["price"], 120)
        with self.assertRaises(NotFound):
            self.khata.update_product("missing", "X", 1)

    def test_search_products(self):
        self.khata.add_product("Rice", 80, "KG", "Grocery")
        self.khata.add_product("Cola", 40, "L", "Drinks")
        for i in range(12):
            self.khata.add_product(f"Biscuit {i}", 10, "Piece", "Snacks")
        self.assertEqual([p.name for p in self.khata.search_products("drink")], ["Cola"])
        self.assertEqual([p.name for p in self.khata.search_products("RICE")], ["Rice"])
        self.assertEqual(len(self.khata.search_products("", limit=10)), 10)
        self.assertEqual(len(self.khata.search_products("")), 14)


class TestCustomers(KhataTestCase):

    def test_duplicate_mobile_rejected(self):
        self.khata.add_customer("Ramesh", "9876543210")
        before = self.storage.get(database.CUSTOMERS_KEY)
        with self.assertRaises(ValidationRejected):
            self.khata.add_customer("Suresh", "9876543210")
        self.assertEqual(self.storage.get(database.CUSTOMERS_KEY), before)
        self.assertEqual(len(self.khata.customers), 1)

    def test_required_fields(self):
        with self.assertRaises(ValidationRejected):
            self.khata.add_customer("", "123")
        with self.assertRaises(ValidationRejected):
            self.khata.add_customer("Ramesh", " ")

    def test_search_by_name_or_mobile(self):
        self.khata.add_customer("Ramesh Kumar", "9876543210")
        self.khata.add_customer("Sunita", "9123456780")
        self.assertEqual([c.name for c in self.khata.search_customers("ramesh")], ["Ramesh Kumar"])
        self.assertEqual([c.name for c in self.khata.search_customers("91234")], ["Sunita"])
        self.assertEqual(len(self.khata.search_customers("")), 2)


class TestBills(KhataTestCase):

    def setUp(self):
        super().setUp()
        self.rice = self.khata.add_product("Rice", 80, "KG")
        self.soap = self.khata.add_product("Soap", 25, "Piece")

    def test_finalize_requires_customer(self):
        self.khata.draft.add_product(self.rice)
        with self.assertRaises(ValidationRejected):
            self.khata.finalize_bill()
        self.assertEqual(self.khata.bills, [])
        self.assertIsNone(self.storage.get(database.BILLS_KEY))

    def test_finalize_requires_items(self):
        self.khata.draft.select_customer(self.khata.add_customer("Ramesh", "9876543210"))
        with self.assertRaises(ValidationRejected):
            self.khata.finalize_bill()
        self.assertEqual(self.khata.bills, [])

    def test_finalize_builds_snapshot(self):
        bill = self.make_bill(self.rice, self.soap, self.soap, paid=100)
        self.assertEqual(bill.bill_number, "101")
        self.assertEqual(bill.total_amount, 130.0)
        self.assertEqual(bill.due_amount, 30.0)
        self.assertEqual(bill.status, "Partial")
        self.assertEqual((bill.date, bill.time), ("05/03/2024", "18:30"))
        self.assertEqual(bill.customer_name, "Ramesh")
        self.assertEqual(self.khata.draft.lines, [])
        self.assertIsNone(self.khata.draft.customer)
        stored = self.stored(database.BILLS_KEY)["records"][0]
        self.assertEqual(stored["billNumber"], "101")
        self.assertEqual(stored["items"][1]["calculatedPrice"], 50.0)

    def test_bill_numbers_are_sequential(self):
        first = self.make_bill(self.soap)
        second = self.make_bill(self.soap, customer=self.khata.get_customer(first.customer_id))
        self.assertEqual(second.bill_number, "102")
        self.assertEqual([b.id for b in self.khata.list_bills()], [second.id, first.id])

    def test_overlapping_finalize_saves_one_bill(self):
        khata = KhataState(SlowStorage())
        customer = khata.add_customer("Ramesh", "9876543210")
        khata.draft.select_customer(customer)
        khata.draft.add_product(khata.add_product("Soap", 25, "Piece"))
        saved, rejected = [], []

        def save():
            try:
                saved.append(khata.finalize_bill())
            except ValidationRejected as e:
                rejected.append(e)

        threads = [threading.Thread(target=save) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(len(saved), 1)
        self.assertEqual(len(rejected), 1)
        self.assertEqual(len(khata.bills), 1)
        self.assertEqual(khata.customer_dues(customer.id), 25.0)

    def test_bill_survives_catalog_change(self):
        bill = self.make_bill(self.rice)
        self.khata.update_product(self.rice.id, "Rice Premium", 150, "KG")
        again = self.khata.get_bill(bill.id)
        self.assertEqual(again.items[0].name, "Rice")
        self.assertEqual(again.total_amount, 80.0)

    def test_ledger_and_stats(self):
        first = self.make_bill(self.rice, paid=80)
        customer = self.khata.get_customer(first.customer_id)
        second = self.make_bill(self.soap, self.soap, paid=10, customer=customer)
        ledger = self.khata.customer_ledger(customer.id)
        self.assertEqual(ledger.total_sale, 130.0)
        self.assertEqual(ledger.total_paid, 90.0)
        self.assertEqual(ledger.total_due, 40.0)
        self.assertEqual([b.id for b in ledger.bills], [second.id, first.id])
        self.assertEqual(self.khata.customer_dues(customer.id), 40.0)
        stats = self.khata.stats()
        self.assertEqual((stats.total_sales, stats.total_dues), (130.0, 40.0))

    def test_delete_without_pin(self):
        bill = self.make_bill(self.soap)
        self.khata.delete_bill(bill.id)
        self.assertEqual(self.khata.bills, [])
        self.assertEqual(self.stored(database.BILLS_KEY)["records"], [])

    def test_delete_with_pin(self):
        bill = self.make_bill(self.soap)
        self.khata.set_pin("4321", "4321")
        with self.assertRaises(PinMismatch):
            self.khata.delete_bill(bill.id, "1111")
        with self.assertRaises(PinMismatch):
            self.khata.delete_bill(bill.id)
        self.assertEqual(len(self.khata.bills), 1)
        self.khata.delete_bill(bill.id, "4321")
        self.assertEqual(self.khata.bills, [])

    def test_delete_unknown_bill(self):
        with self.assertRaises(NotFound):
            self.khata.delete_bill("missing")


class TestSettings(KhataTestCase):

    def test_pin_rules(self):
        for new, confirm in (("123", "123"), ("12a4", "12a4"), ("12345", "12345"), ("1234", "1235")):
            with self.assertRaises(ValidationRejected):
                self.khata.set_pin(new, confirm)
        self.assertIsNone(self.khata.pin)
        self.khata.set_pin("0007", "0007")
        self.assertEqual(database.load_pin(self.storage), "0007")

    def test_clear_all_data(self):
        self.khata.add_product("Rice", 80, "KG")
        self.khata.add_customer("Ramesh", "9876543210")
        self.khata.set_pin("1234", "1234")
        with self.assertRaises(PinMismatch):
            self.khata.clear_all_data("0000")
        self.assertEqual(len(self.khata.products), 1)
        self.khata.clear_all_data("1234")
        self.assertEqual((self.khata.products, self.khata.customers, self.khata.bills), ([], [], []))
        self.assertIsNone(self.khata.pin)
        self.assertEqual(self.storage.data, {})

    def test_state_reloads_from_storage(self):
        self.khata.add_product("Rice", 80, "KG")
        self.khata.add_customer("Ramesh", "9876543210")
        self.khata.set_pin("1234", "1234")
        fresh = KhataState(self.storage)
        self.assertEqual([p.name for p in fresh.products], ["Rice"])
        self.assertEqual([c.mobile for c in fresh.customers], ["9876543210"])
        self.assertEqual(fresh.pin, "1234")


if __name__ == "__main__":
    unittest.main(verbosity=2)
