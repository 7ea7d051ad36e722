# Overview: Threaded checkout tests against a file-backed SQLite database.

"""
Concurrency tests for the checkout core.

Each worker thread pushes its own app context (own session, own connection)
so the database, not the Python process, arbitrates the races.
"""
import os
import tempfile
import threading
import unittest

from shopcore import create_app
from shopcore.errors import InsufficientStock, InvalidStatusTransition
from shopcore.extensions import db
from shopcore.models import InventoryTransaction, Order, Product
from shopcore.services import cart_service, catalog_service, inventory_service, order_service


ADDRESS = {"street": "Calle 1", "city": "Monterrey", "state": "NL", "zip_code": "64000"}


class ConcurrencyTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30, "check_same_thread": False}},
            "DB_RETRY_ATTEMPTS": 5,
            "DB_RETRY_BACKOFF_SECONDS": 0.01,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _make_product(self, stock, sku="CONCUR-1", price_cents=1000):
        with self.app.app_context():
            product = catalog_service.create_product(
                sku=sku, name=f"Concurrent {sku}", price_cents=price_cents, initial_stock=stock,
            )
            return product.id

    def _stock(self, product_id):
        with self.app.app_context():
            return db.session.query(Product.stock_qty).filter_by(id=product_id).scalar()

    def _run(self, target, args_list):
        """Start all workers behind a barrier and collect (result, error) per worker."""
        results = []
        lock = threading.Lock()
        barrier = threading.Barrier(len(args_list))

        def worker(*args):
            with self.app.app_context():
                try:
                    barrier.wait()
                    value = target(*args)
                    with lock:
                        results.append((value, None))
                except Exception as exc:
                    with lock:
                        results.append((None, exc))
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=args) for args in args_list]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def test_two_carts_competing_for_the_last_units(self):
        product_id = self._make_product(stock=3)
        with self.app.app_context():
            cart_service.add_item(101, product_id, 2)
            cart_service.add_item(102, product_id, 2)

        def checkout(user_id):
            return order_service.create_order_from_cart(user_id, ADDRESS, "credit_card").order_number

        results = self._run(checkout, [(101,), (102,)])

        successes = [value for value, error in results if error is None]
        failures = [error for value, error in results if error is not None]
        self.assertEqual(len(successes), 1)
        self.assertEqual(len(failures), 1)
        self.assertIsInstance(failures[0], InsufficientStock)
        self.assertIn(failures[0].available, (1, 3))
        self.assertEqual(self._stock(product_id), 1)

        with self.app.app_context():
            self.assertEqual(db.session.query(Order).count(), 1)

    def test_many_buyers_never_oversell(self):
        product_id = self._make_product(stock=10)

        def buy(user_id):
            order = order_service.create_order(
                user_id, [{"product_id": product_id, "quantity": 1}], ADDRESS, "paypal",
            )
            return order.order_number

        results = self._run(buy, [(user_id,) for user_id in range(1, 21)])

        numbers = [value for value, error in results if error is None]
        errors = [error for value, error in results if error is not None]
        self.assertEqual(len(numbers), 10)
        self.assertEqual(len(set(numbers)), 10)
        self.assertTrue(all(isinstance(e, InsufficientStock) for e in errors))
        self.assertEqual(self._stock(product_id), 0)

        with self.app.app_context():
            sales = db.session.query(InventoryTransaction).filter_by(product_id=product_id, type="sale").count()
            self.assertEqual(sales, 10)
            self.assertTrue(inventory_service.reconcile_inventory(product_id)["is_consistent"])

    def test_multi_item_orders_in_opposite_order(self):
        a = self._make_product(stock=6, sku="CONCUR-A")
        b = self._make_product(stock=6, sku="CONCUR-B")

        def buy(user_id, items):
            return order_service.create_order(user_id, items, ADDRESS, "paypal").id

        forward = [{"product_id": a, "quantity": 1}, {"product_id": b, "quantity": 1}]
        backward = list(reversed(forward))
        results = self._run(buy, [(i, forward if i % 2 else backward) for i in range(1, 9)])

        ok = [value for value, error in results if error is None]
        self.assertEqual(len(ok), 6)
        self.assertEqual((self._stock(a), self._stock(b)), (0, 0))

    def test_concurrent_cancels_release_stock_once(self):
        product_id = self._make_product(stock=5)
        with self.app.app_context():
            order = order_service.create_order(7, [{"product_id": product_id, "quantity": 4}], ADDRESS, "paypal")
            order_id = order.id

        results = self._run(lambda: order_service.cancel_order(order_id).status, [() for _ in range(5)])

        cancelled = [value for value, error in results if error is None]
        errors = [error for value, error in results if error is not None]
        self.assertEqual(cancelled, ["cancelled"])
        self.assertTrue(all(isinstance(e, InvalidStatusTransition) for e in errors))
        self.assertEqual(self._stock(product_id), 5)


if __name__ == "__main__":
    unittest.main()
