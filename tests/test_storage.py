import os
import sys
import threading
import unittest

from sqlalchemy.exc import IntegrityError

# Add project root to Python path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from app import create_app
from models import CALENDARIUM_NAME, Order, Product, db, products_that_should_exist
from tests.fixtures import TEST_CONFIG, make_order


class TestOrderStore(unittest.TestCase):

    def setUp(self):
        self.app = create_app(TEST_CONFIG)
        self.store = self.app.extensions["order_store"]
        self.ctx = self.app.app_context()
        self.ctx.push()
        self.addCleanup(self.ctx.pop)

    def test_catalog_is_created_once(self):
        products = self.store.get_products()
        self.assertEqual([p.name for p in products], [CALENDARIUM_NAME])
        self.assertEqual(products[0].price, 20.0)
        self.assertFalse(self.store.ensure_products(products_that_should_exist()))
        self.assertEqual(len(self.store.get_products()), 1)

    def test_product_lookup_by_name(self):
        product = self.store.get_product(CALENDARIUM_NAME)
        self.assertEqual(product.id, 1)
        self.assertEqual(product.description, "Der Slow Food Youth Saisonkalender")
        self.assertIsNone(self.store.get_product("Gibt es nicht"))

    def test_product_lookup_by_id(self):
        self.assertEqual(self.store.get_product_by_id(1).name, CALENDARIUM_NAME)
        self.assertIsNone(self.store.get_product_by_id(-1))
        self.assertIsNone(self.store.get_product_by_id(999))

    def test_duplicate_product_name_is_an_error(self):
        with self.assertRaises(IntegrityError):
            self.store.add_product(Product(name=CALENDARIUM_NAME, price=1.0, shipping=0.0))
        # Store bleibt nach dem Rollback benutzbar
        self.assertEqual(len(self.store.get_products()), 1)

    def test_add_order_assigns_ids(self):
        self.assertEqual(self.store.count_orders(), 0)
        first = self.store.add_order(make_order())
        second = self.store.add_order(make_order(email="zweite@example.org"))
        self.assertEqual(second, first + 1)
        self.assertEqual(self.store.count_orders(), 2)

        orders = self.store.get_orders()
        self.assertEqual([o.id for o in orders], [first, second])
        self.assertEqual(orders[1].email, "zweite@example.org")
        self.assertEqual(orders[0].company_delivery, "Slow Food Youth")
        self.assertEqual(orders[0].billbee_api_response, "")

    def test_incomplete_order_is_not_stored(self):
        order = make_order()
        order.date = None
        with self.assertRaises(IntegrityError):
            self.store.add_order(order)
        self.assertEqual(self.store.count_orders(), 0)

    def test_add_billbee_response_only_touches_that_order(self):
        first = self.store.add_order(make_order())
        second = self.store.add_order(make_order())
        self.store.add_billbee_response(first, '{"Id": 7}')
        self.store.add_billbee_response(first, "Billbee returned HTTP status: 500 Internal Server Error")

        orders = {o.id: o for o in self.store.get_orders()}
        self.assertEqual(orders[first].billbee_api_response,
                         "Billbee returned HTTP status: 500 Internal Server Error")
        self.assertEqual(orders[second].billbee_api_response, "")
        self.assertEqual(orders[first].email, "erika@example.org")

    def test_returned_orders_are_usable_outside_the_store(self):
        self.store.add_order(make_order())
        order = self.store.get_orders()[0]
        db.session.remove()
        self.assertEqual(order.to_dict()["last_name_invoice"], "Mustermann")

    def test_lock_is_released_after_an_error(self):
        with self.assertRaises(IntegrityError):
            self.store.add_order(Order(product_id=1, amount=1))
        self.assertTrue(self.store.lock.acquire(blocking=False))
        self.store.lock.release()

    def test_parallel_inserts_get_distinct_ids(self):
        ids = []
        errors = []

        def worker():
            try:
                with self.app.app_context():
                    ids.append(self.store.add_order(make_order()))
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(len(set(ids)), 10)
        self.assertEqual(self.store.count_orders(), 10)


if __name__ == '__main__':
    unittest.main()
