"""
Concurrency tests against a file-backed SQLite database.

Each worker thread runs in its own app context, so it gets its own
session and connection, like two requests served at the same time.

Verifies:
- concurrent credit sales to one customer lose no balance increment
- the last unit of stock is sold exactly once
- concurrently created sales get distinct numbers
- a supplier payable is settled once when paid twice at the same time
- concurrent customer payments cannot pay off more than is owed
- an expense deleted twice at the same time is reversed once
"""

import os
import tempfile
import threading
import unittest

from mdcars import create_app
from mdcars.config import Config
from mdcars.extensions import db
from mdcars.models import CashboxTransaction, Customer, Product, Sale, SupplierPayable, User
from mdcars.services import (
    balance_service,
    customers_service,
    finance_service,
    products_service,
    sales_service,
)
from mdcars.services.concurrency import atomic
from mdcars.validation import ConflictError, InsufficientStockError, NotFoundError, ValidationError


WORKERS = 6


class ConcurrencyTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        fd, cls.db_path = tempfile.mkstemp(suffix=".sqlite3")
        os.close(fd)

        class FileConfig(Config):
            TESTING = True
            SQLALCHEMY_DATABASE_URI = f"sqlite:///{cls.db_path}"
            SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}}
            LOG_LEVEL = "WARNING"

        cls.app = create_app(FileConfig)
        with cls.app.app_context():
            db.create_all()

    @classmethod
    def tearDownClass(cls):
        with cls.app.app_context():
            db.session.remove()
            db.drop_all()
            db.engine.dispose()
        os.remove(cls.db_path)

    def setUp(self):
        with self.app.app_context():
            for table in reversed(db.metadata.sorted_tables):
                db.session.execute(table.delete())
            db.session.commit()

            user = User(username="till", password_hash="x", role="cashier",
                        first_name="Till", last_name="One", is_active=True)
            db.session.add(user)
            db.session.commit()
            self.user_id = user.id
            atomic(balance_service.get_cashbox)

    def _make_product(self, stock: int) -> int:
        with self.app.app_context():
            product = products_service.create_product(
                {"name": "Headlight", "cost_price": "10", "selling_price": "25", "initial_stock": stock},
                actor_user_id=self.user_id,
            )
            return product.id

    def _run_workers(self, target):
        results, errors = [], []
        barrier = threading.Barrier(WORKERS)

        def _worker():
            with self.app.app_context():
                barrier.wait()
                try:
                    results.append(target())
                except Exception as exc:
                    errors.append(exc)

        threads = [threading.Thread(target=_worker) for _ in range(WORKERS)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)
        return results, errors

    def test_concurrent_credit_sales_keep_every_increment(self):
        product_id = self._make_product(stock=WORKERS)
        with self.app.app_context():
            customer_id = customers_service.create_customer({"name": "Fleet Co", "phone": "0919999999"}).id

        def _sell():
            sale = sales_service.create_sale(
                {
                    "items": [{"product_id": product_id, "quantity": 1}],
                    "amount_paid": "5",
                    "customer_id": customer_id,
                },
                actor_user_id=self.user_id,
            )
            return sale.sale_number

        numbers, errors = self._run_workers(_sell)

        self.assertEqual(errors, [])
        self.assertEqual(len(numbers), WORKERS)
        self.assertEqual(len(set(numbers)), WORKERS)
        with self.app.app_context():
            customer = db.session.get(Customer, customer_id)
            self.assertEqual(customer.balance_owed_cents, WORKERS * 2000)
            self.assertEqual(customer.total_purchases_cents, WORKERS * 2500)
            self.assertEqual(db.session.get(Product, product_id).current_stock, 0)
            box = balance_service.get_cashbox()
            self.assertEqual(box.balance_lyd_cents, WORKERS * 500)

    def test_last_unit_sold_once(self):
        product_id = self._make_product(stock=1)

        def _sell():
            return sales_service.create_sale(
                {"items": [{"product_id": product_id, "quantity": 1}], "amount_paid": "25"},
                actor_user_id=self.user_id,
            ).id

        sold, errors = self._run_workers(_sell)

        self.assertEqual(len(sold), 1)
        self.assertEqual(len(errors), WORKERS - 1)
        self.assertTrue(all(isinstance(e, InsufficientStockError) for e in errors))
        with self.app.app_context():
            self.assertEqual(db.session.get(Product, product_id).current_stock, 0)
            self.assertEqual(db.session.query(Sale).count(), 1)
            self.assertEqual(balance_service.get_cashbox().balance_lyd_cents, 2500)

    def test_concurrent_returns_refund_once(self):
        product_id = self._make_product(stock=3)
        with self.app.app_context():
            sale_id = sales_service.create_sale(
                {"items": [{"product_id": product_id, "quantity": 2}], "amount_paid": "50"},
                actor_user_id=self.user_id,
            ).id

        def _return():
            return sales_service.return_sale(sale_id, actor_user_id=self.user_id).status

        done, errors = self._run_workers(_return)

        self.assertEqual(done, ["returned"])
        self.assertEqual(len(errors), WORKERS - 1)
        with self.app.app_context():
            self.assertEqual(db.session.get(Product, product_id).current_stock, 3)
            self.assertEqual(balance_service.get_cashbox().balance_lyd_cents, 0)

    def test_concurrent_payable_payments_settle_once(self):
        product_id = self._make_product(stock=0)
        with self.app.app_context():
            products_service.add_stock_movement(
                product_id,
                {"type": "in", "quantity": 10, "cost_per_unit": "5", "purchase_type": "credit", "currency": "USD"},
                actor_user_id=self.user_id,
            )
            payable_id = db.session.query(SupplierPayable).one().id

        def _pay():
            return finance_service.pay_supplier_payable(payable_id, actor_user_id=self.user_id).id

        paid, errors = self._run_workers(_pay)

        self.assertEqual(paid, [payable_id])
        self.assertEqual(len(errors), WORKERS - 1)
        self.assertTrue(all(isinstance(e, ConflictError) for e in errors))
        with self.app.app_context():
            self.assertTrue(db.session.get(SupplierPayable, payable_id).is_paid)
            self.assertEqual(balance_service.get_cashbox().balance_usd_cents, -5000)
            purchases = db.session.query(CashboxTransaction).filter_by(type="purchase").count()
            self.assertEqual(purchases, 1)

    def test_concurrent_customer_payments_cannot_overpay(self):
        product_id = self._make_product(stock=1)
        with self.app.app_context():
            customer_id = customers_service.create_customer({"name": "Rami", "phone": "0918888888"}).id
            sales_service.create_sale(
                {
                    "items": [{"product_id": product_id, "quantity": 1}],
                    "amount_paid": "5",
                    "customer_id": customer_id,
                },
                actor_user_id=self.user_id,
            )

        def _pay():
            return customers_service.record_customer_payment(
                customer_id, {"amount": "15"}, actor_user_id=self.user_id
            ).balance_owed_cents

        balances, errors = self._run_workers(_pay)

        self.assertEqual(balances, [500])
        self.assertEqual(len(errors), WORKERS - 1)
        self.assertTrue(all(isinstance(e, ValidationError) for e in errors))
        with self.app.app_context():
            self.assertEqual(db.session.get(Customer, customer_id).balance_owed_cents, 500)
            self.assertEqual(balance_service.get_cashbox().balance_lyd_cents, 500 + 1500)

    def test_concurrent_expense_deletes_reverse_once(self):
        with self.app.app_context():
            expense_id = finance_service.create_expense(
                {"category": "rent", "amount": "300", "description": "Shop rent"},
                actor_user_id=self.user_id,
            ).id

        def _delete():
            finance_service.delete_expense(expense_id, actor_user_id=self.user_id)
            return expense_id

        deleted, errors = self._run_workers(_delete)

        self.assertEqual(deleted, [expense_id])
        self.assertTrue(all(isinstance(e, NotFoundError) for e in errors))
        with self.app.app_context():
            self.assertEqual(balance_service.get_cashbox().balance_lyd_cents, 0)
            reversals = db.session.query(CashboxTransaction).filter_by(type="adjustment").count()
            self.assertEqual(reversals, 1)


if __name__ == "__main__":
    unittest.main()
