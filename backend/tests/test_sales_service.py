"""
Sale engine tests.

Verifies:
- cash sale, return and credit sale effects on stock, cashbox and customer
- return is the exact inverse of create, and only happens once
- a failing line rolls back the whole sale
- totals, change and payment method are computed server-side
- cancel of pending and completed sales
"""

from decimal import Decimal

import pytest

from mdcars.models import CashboxTransaction, Sale, SaleItem, StockMovement
from mdcars.models.sales import SALE_STATUS_PENDING
from mdcars.services import balance_service, customers_service, ledger_service, products_service, sales_service
from mdcars.services.concurrency import atomic
from mdcars.validation import ConflictError, InsufficientStockError, NotFoundError, ValidationError


def _cashbox():
    return atomic(balance_service.get_cashbox)


def _sell(actor, product, qty, paid, **extra):
    payload = {"items": [{"product_id": product.id, "quantity": qty}], "amount_paid": paid}
    payload.update(extra)
    return sales_service.create_sale(payload, actor_user_id=actor.id)


class TestCashSale:
    def test_cash_sale_effects(self, cashier, make_product):
        product = make_product(name="P", cost="10", price="20", stock=5)
        box_before = _cashbox().balance_lyd_cents

        sale = _sell(cashier, product, 2, "40", currency="LYD")

        assert products_service.get_product(product.id).current_stock == 3
        assert _cashbox().balance_lyd_cents == box_before + 4000
        assert sale.total_amount_cents == 4000
        assert sale.amount_due_cents == 0
        assert sale.status == "completed"
        assert sale.payment_method == "cash"
        assert sale.items[0].profit_cents == 2000
        assert sale.items[0].product_name == "P"

    def test_sale_writes_one_cashbox_row_and_stock_out(self, db_session, cashier, make_product):
        product = make_product(stock=5)
        sale = _sell(cashier, product, 1, "40")

        rows = ledger_service.transactions_for_reference("sale", sale.id)
        assert len(rows) == 1
        assert rows[0].type == "sale"
        assert rows[0].amount_lyd_cents == 4000
        assert rows[0].amount_usd_cents == 0

        out = db_session.query(StockMovement).filter_by(reference_type="sale", reference_id=str(sale.id)).one()
        assert out.type == "out"
        assert out.reason == "Sale"

    def test_usd_sale_credits_usd_balance(self, cashier, make_product):
        product = make_product(price="20", stock=5)
        sale = _sell(cashier, product, 1, "20", currency="USD", exchange_rate="5")

        box = _cashbox()
        assert box.balance_usd_cents == 2000
        assert box.balance_lyd_cents == 0
        assert sale.exchange_rate == "5.0000"

    def test_sale_number_format_and_uniqueness(self, cashier, make_product):
        product = make_product(stock=5)
        first = _sell(cashier, product, 1, "40")
        second = _sell(cashier, product, 1, "40")

        assert first.sale_number.startswith("MD-")
        assert first.sale_number.endswith("-0001")
        assert second.sale_number.endswith("-0002")

    def test_next_number_preview_does_not_reserve(self, cashier, make_product):
        product = make_product(stock=5)
        preview = sales_service.preview_next_sale_number()
        assert sales_service.preview_next_sale_number() == preview
        sale = _sell(cashier, product, 1, "40")
        assert sale.sale_number == preview

    def test_default_rate_from_settings(self, owner, cashier, make_product):
        from mdcars.services import settings_service
        settings_service.upsert_setting("exchange_rate", "6.1", actor_user_id=owner.id)
        product = make_product(stock=2)

        sale = _sell(cashier, product, 1, "40")

        assert sale.exchange_rate == "6.1000"


class TestArithmetic:
    def test_discount_and_change(self, cashier, make_product):
        product = make_product(price="20", stock=10)
        sale = _sell(cashier, product, 3, "100", discount="5")

        assert sale.subtotal_cents == 6000
        assert sale.total_amount_cents == 5500
        assert sale.change_due_cents == 4500
        assert sale.amount_due_cents == 0
        # The till keeps the total, not the note that was handed over
        assert _cashbox().balance_lyd_cents == 5500

    def test_overpayment_logs_retained_cash(self, cashier, make_product):
        product = make_product(price="40", stock=3)
        sale = _sell(cashier, product, 1, "50")

        assert sale.amount_paid_cents == 5000
        assert sale.change_due_cents == 1000
        rows = ledger_service.transactions_for_reference("sale", sale.id)
        assert rows[0].amount_lyd_cents == 4000
        assert _cashbox().balance_lyd_cents == 4000

    def test_scientific_notation_amount_rejected(self, db_session, cashier, make_product):
        product = make_product(price="100", stock=3)
        with pytest.raises(ValidationError):
            _sell(cashier, product, 1, "1e2")
        assert db_session.query(Sale).count() == 0

    def test_discount_above_subtotal_rejected(self, cashier, make_product):
        product = make_product(price="20", stock=10)
        with pytest.raises(ValidationError):
            _sell(cashier, product, 1, "0", discount="25")

    def test_unit_price_override(self, cashier, make_product):
        product = make_product(cost="10", price="20", stock=10)
        sale = sales_service.create_sale(
            {"items": [{"product_id": product.id, "quantity": 2, "unit_price": "18.50"}], "amount_paid": "37"},
            actor_user_id=cashier.id,
        )
        assert sale.total_amount_cents == 3700
        assert sale.items[0].profit_cents == 1700

    def test_contradicting_payment_method_rejected(self, cashier, make_product):
        product = make_product(price="20", stock=10)
        with pytest.raises(ValidationError):
            _sell(cashier, product, 1, "20", payment_method="partial")

    def test_amount_due_requires_customer(self, cashier, make_product):
        product = make_product(price="20", stock=10)
        with pytest.raises(ValidationError):
            _sell(cashier, product, 1, "5")

    def test_empty_items_rejected(self, cashier):
        with pytest.raises(ValidationError):
            sales_service.create_sale({"items": [], "amount_paid": "0"}, actor_user_id=cashier.id)

    def test_missing_amount_paid_rejected(self, cashier, make_product):
        product = make_product(stock=1)
        with pytest.raises(ValidationError):
            sales_service.create_sale({"items": [{"product_id": product.id, "quantity": 1}]},
                                      actor_user_id=cashier.id)

    def test_inactive_product_rejected(self, cashier, make_product):
        product = make_product(stock=3)
        products_service.update_product(product.id, {"is_active": False})
        with pytest.raises(ValidationError):
            _sell(cashier, product, 1, "40")


class TestCreditSale:
    def test_partial_payment_adds_to_customer_balance(self, cashier, make_product, make_customer):
        customer = make_customer()
        product = make_product(price="100", stock=3)

        sale = _sell(cashier, product, 1, "60", customer_id=customer.id)

        customer = customers_service.get_customer(customer.id)
        assert customer.balance_owed_cents == 4000
        assert customer.total_purchases_cents == 10000
        assert sale.amount_due_cents == 4000
        assert sale.payment_method == "partial"
        assert _cashbox().balance_lyd_cents == 6000

    def test_walk_in_customer_created_by_phone(self, cashier, make_product):
        product = make_product(price="100", stock=3)
        sale = _sell(cashier, product, 1, "0", customer_phone="0925551234", customer_name="Omar")

        customer = customers_service.find_by_phone("0925551234")
        assert customer is not None
        assert customer.name == "Omar"
        assert sale.customer_id == customer.id
        assert customer.balance_owed_cents == 10000

    def test_unpaid_sale_and_its_return_still_log_cashbox_rows(self, cashier, make_product, make_customer):
        customer = make_customer()
        product = make_product(price="30", stock=2)

        sale = _sell(cashier, product, 1, "0", customer_id=customer.id)
        sales_service.return_sale(sale.id, actor_user_id=cashier.id)

        sale_rows = ledger_service.transactions_for_reference("sale", sale.id)
        refund_rows = ledger_service.transactions_for_reference("sale_return", sale.id)
        assert [r.type for r in sale_rows] == ["sale"]
        assert [r.type for r in refund_rows] == ["refund"]
        assert sale_rows[0].amount_lyd_cents == 0
        assert refund_rows[0].amount_lyd_cents == 0
        assert _cashbox().balance_lyd_cents == 0
        assert customers_service.get_customer(customer.id).balance_owed_cents == 0

    def test_walk_in_reuses_existing_phone(self, cashier, make_product, make_customer):
        existing = make_customer(name="Huda", phone="0911112222")
        product = make_product(price="10", stock=3)

        sale = _sell(cashier, product, 1, "10", customer_phone="0911112222", customer_name="Someone else")

        assert sale.customer_id == existing.id
        assert len(customers_service.list_customers()) == 1

    def test_unknown_customer_is_not_found(self, cashier, make_product):
        product = make_product(stock=3)
        with pytest.raises(NotFoundError):
            _sell(cashier, product, 1, "40", customer_id=9999)


class TestAtomicity:
    def test_oversell_rolls_back_every_line(self, db_session, cashier, make_product):
        plenty = make_product(name="Plenty", price="10", stock=10)
        scarce = make_product(name="Scarce", price="10", stock=1)
        movements_before = db_session.query(StockMovement).count()

        with pytest.raises(InsufficientStockError):
            sales_service.create_sale(
                {
                    "items": [
                        {"product_id": plenty.id, "quantity": 2},
                        {"product_id": scarce.id, "quantity": 2},
                    ],
                    "amount_paid": "40",
                },
                actor_user_id=cashier.id,
            )

        assert products_service.get_product(plenty.id).current_stock == 10
        assert products_service.get_product(scarce.id).current_stock == 1
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleItem).count() == 0
        assert db_session.query(CashboxTransaction).count() == 0
        assert db_session.query(StockMovement).count() == movements_before

    def test_failed_sale_gives_its_number_back(self, cashier, make_product):
        product = make_product(stock=1)
        with pytest.raises(InsufficientStockError):
            _sell(cashier, product, 2, "80")
        sale = _sell(cashier, product, 1, "40")
        assert sale.sale_number.endswith("-0001")

    def test_unknown_product_rolls_back(self, db_session, cashier):
        with pytest.raises(NotFoundError):
            sales_service.create_sale(
                {"items": [{"product_id": 424242, "quantity": 1}], "amount_paid": "1"},
                actor_user_id=cashier.id,
            )
        assert db_session.query(Sale).count() == 0


class TestReturn:
    def test_return_restores_everything(self, cashier, make_product, make_customer):
        customer = make_customer()
        product = make_product(cost="10", price="20", stock=5)
        box_before = _cashbox().balance_lyd_cents

        sale = _sell(cashier, product, 2, "30", customer_id=customer.id)
        returned = sales_service.return_sale(sale.id, actor_user_id=cashier.id)

        assert returned.status == "returned"
        assert returned.reversed_by_user_id == cashier.id
        assert products_service.get_product(product.id).current_stock == 5
        assert _cashbox().balance_lyd_cents == box_before
        customer = customers_service.get_customer(customer.id)
        assert customer.balance_owed_cents == 0
        assert customer.total_purchases_cents == 0

        refund = ledger_service.transactions_for_reference("sale_return", sale.id)
        assert len(refund) == 1
        assert refund[0].type == "refund"
        assert refund[0].amount_lyd_cents == 3000
        assert refund[0].description == f"Return - Sale {sale.sale_number}"

    def test_second_return_conflicts_without_effects(self, db_session, cashier, make_product):
        product = make_product(stock=5)
        sale = _sell(cashier, product, 2, "80")
        sales_service.return_sale(sale.id, actor_user_id=cashier.id)

        movements = db_session.query(StockMovement).count()
        cashbox_rows = db_session.query(CashboxTransaction).count()
        balance = _cashbox().balance_lyd_cents

        with pytest.raises(ConflictError):
            sales_service.return_sale(sale.id, actor_user_id=cashier.id)

        assert products_service.get_product(product.id).current_stock == 5
        assert db_session.query(StockMovement).count() == movements
        assert db_session.query(CashboxTransaction).count() == cashbox_rows
        assert _cashbox().balance_lyd_cents == balance

    def test_return_refunds_retained_cash_not_tendered(self, cashier, make_product):
        product = make_product(price="20", stock=5)
        sale = _sell(cashier, product, 1, "50")
        assert _cashbox().balance_lyd_cents == 2000

        sales_service.return_sale(sale.id, actor_user_id=cashier.id)

        assert _cashbox().balance_lyd_cents == 0

    def test_return_unknown_sale(self, cashier):
        with pytest.raises(NotFoundError):
            sales_service.return_sale(31337, actor_user_id=cashier.id)


class TestCancel:
    def test_cancel_completed_reverses(self, cashier, make_product):
        product = make_product(stock=5)
        sale = _sell(cashier, product, 2, "80")

        cancelled = sales_service.cancel_sale(sale.id, actor_user_id=cashier.id)

        assert cancelled.status == "cancelled"
        assert products_service.get_product(product.id).current_stock == 5
        assert _cashbox().balance_lyd_cents == 0
        rows = ledger_service.transactions_for_reference("sale_cancel", sale.id)
        assert rows[0].description == f"Cancel - Sale {sale.sale_number}"

    def test_cancel_pending_has_no_effects(self, db_session, cashier, make_product):
        product = make_product(stock=5)
        sale = _sell(cashier, product, 1, "40")
        # A pending sale has not touched stock or cash yet; model one directly
        pending = Sale(
            sale_number="MD-19990101-0001",
            status=SALE_STATUS_PENDING,
            subtotal_cents=4000,
            total_amount_cents=4000,
            currency="LYD",
            created_by_user_id=cashier.id,
        )
        db_session.add(pending)
        db_session.commit()
        rows_before = db_session.query(CashboxTransaction).count()

        cancelled = sales_service.cancel_sale(pending.id, actor_user_id=cashier.id)

        assert cancelled.status == "cancelled"
        assert db_session.query(CashboxTransaction).count() == rows_before
        assert products_service.get_product(product.id).current_stock == 4

    def test_cancel_returned_conflicts(self, cashier, make_product):
        product = make_product(stock=5)
        sale = _sell(cashier, product, 1, "40")
        sales_service.return_sale(sale.id, actor_user_id=cashier.id)
        with pytest.raises(ConflictError):
            sales_service.cancel_sale(sale.id, actor_user_id=cashier.id)

    def test_return_cancelled_conflicts(self, cashier, make_product):
        product = make_product(stock=5)
        sale = _sell(cashier, product, 1, "40")
        sales_service.cancel_sale(sale.id, actor_user_id=cashier.id)
        with pytest.raises(ConflictError):
            sales_service.return_sale(sale.id, actor_user_id=cashier.id)


class TestListing:
    def test_filter_by_status_and_customer(self, cashier, make_product, make_customer):
        customer = make_customer()
        product = make_product(price="10", stock=10)
        a = _sell(cashier, product, 1, "10", customer_id=customer.id)
        b = _sell(cashier, product, 1, "10")
        sales_service.return_sale(b.id, actor_user_id=cashier.id)

        assert [s.id for s in sales_service.list_sales(status="completed")] == [a.id]
        assert [s.id for s in sales_service.list_sales(customer_id=customer.id)] == [a.id]
        assert len(sales_service.list_sales()) == 2

    def test_invalid_status_filter(self, db_session):
        with pytest.raises(ValidationError):
            sales_service.list_sales(status="lost")

    def test_totals_are_decimal_strings(self, cashier, make_product):
        product = make_product(price="12.35", stock=3)
        sale = _sell(cashier, product, 2, "24.70")
        data = sale.to_dict(include_details=True)
        assert data["total_amount"] == "24.70"
        assert Decimal(data["items"][0]["unit_price"]) == Decimal("12.35")
