"""
Cashbox money-movement tests.

Verifies:
- every cashbox balance change has exactly one log row
- supplier payables are paid once and debit the right currency
- expense/revenue deletion posts a compensating adjustment
- partner transactions move their counter and the cashbox together
- customer payments reduce debt and credit the till
"""

import pytest

from mdcars.models import CashboxTransaction, PartnerTransaction, SupplierPayable
from mdcars.services import (
    balance_service,
    customers_service,
    finance_service,
    ledger_service,
    products_service,
    sales_service,
)
from mdcars.services.concurrency import atomic
from mdcars.validation import ConflictError, NotFoundError, ValidationError


def _cashbox():
    return atomic(balance_service.get_cashbox)


def _log_totals(db_session):
    """Net cashbox movement per currency recomputed from the log."""
    sign = {
        "sale": 1, "deposit": 1,
        "refund": -1, "expense": -1, "withdrawal": -1, "purchase": -1,
    }
    usd = lyd = 0
    for tx in db_session.query(CashboxTransaction).all():
        if tx.type == "adjustment":
            direction = -1 if tx.description.startswith("Reversal of REV") else 1
        else:
            direction = sign[tx.type]
        usd += direction * tx.amount_usd_cents
        lyd += direction * tx.amount_lyd_cents
    return usd, lyd


class TestSupplierPayables:
    def test_credit_stock_in_then_pay(self, db_session, owner, make_product):
        product = make_product(cost="5", price="9")
        products_service.add_stock_movement(
            product.id,
            {"type": "in", "quantity": 10, "cost_per_unit": "5", "purchase_type": "credit", "currency": "USD"},
            actor_user_id=owner.id,
        )
        payable = db_session.query(SupplierPayable).one()
        assert payable.to_dict()["amount"] == "50.00"
        assert payable.is_paid is False

        paid = finance_service.pay_supplier_payable(payable.id, actor_user_id=owner.id)

        assert paid.is_paid is True
        assert paid.paid_by_user_id == owner.id
        box = _cashbox()
        assert box.balance_usd_cents == -5000
        assert box.balance_lyd_cents == 0
        rows = ledger_service.transactions_for_reference("supplier_payable", payable.id)
        assert len(rows) == 1
        assert rows[0].type == "purchase"

    def test_paying_twice_conflicts(self, db_session, owner, make_product):
        product = make_product(cost="5", price="9")
        products_service.add_stock_movement(
            product.id,
            {"type": "in", "quantity": 2, "cost_per_unit": "5", "purchase_type": "credit"},
            actor_user_id=owner.id,
        )
        payable = db_session.query(SupplierPayable).one()
        finance_service.pay_supplier_payable(payable.id, actor_user_id=owner.id)

        with pytest.raises(ConflictError):
            finance_service.pay_supplier_payable(payable.id, actor_user_id=owner.id)

        assert _cashbox().balance_lyd_cents == -1000
        assert db_session.query(CashboxTransaction).count() == 1

    def test_list_filters_by_paid(self, db_session, owner, make_product):
        product = make_product(cost="5", price="9")
        for _ in range(2):
            products_service.add_stock_movement(
                product.id,
                {"type": "in", "quantity": 1, "cost_per_unit": "5", "purchase_type": "credit"},
                actor_user_id=owner.id,
            )
        first = finance_service.list_supplier_payables()[-1]
        finance_service.pay_supplier_payable(first.id, actor_user_id=owner.id)

        assert len(finance_service.list_supplier_payables(is_paid=True)) == 1
        assert len(finance_service.list_supplier_payables(is_paid=False)) == 1

    def test_unknown_payable(self, owner):
        with pytest.raises(NotFoundError):
            finance_service.pay_supplier_payable(999, actor_user_id=owner.id)


class TestExpensesAndRevenues:
    def test_expense_debits_cashbox_with_number(self, owner):
        expense = finance_service.create_expense(
            {"category": "rent", "amount": "1500", "currency": "LYD", "description": "Shop rent"},
            actor_user_id=owner.id,
        )
        assert expense.expense_number == "EXP-00001"
        assert expense.exchange_rate == "4.8500"
        assert _cashbox().balance_lyd_cents == -150000

        second = finance_service.create_expense(
            {"category": "utilities", "amount": "20", "description": "Water"},
            actor_user_id=owner.id,
        )
        assert second.expense_number == "EXP-00002"

    def test_invalid_expense_category(self, owner):
        with pytest.raises(ValidationError):
            finance_service.create_expense(
                {"category": "yacht", "amount": "1", "description": "x"}, actor_user_id=owner.id
            )

    def test_zero_amount_rejected(self, owner):
        with pytest.raises(ValidationError):
            finance_service.create_expense(
                {"category": "rent", "amount": "0", "description": "x"}, actor_user_id=owner.id
            )

    def test_delete_expense_posts_reversal(self, db_session, owner):
        expense = finance_service.create_expense(
            {"category": "supplies", "amount": "75.50", "currency": "USD", "description": "Rags"},
            actor_user_id=owner.id,
        )
        finance_service.delete_expense(expense.id, actor_user_id=owner.id)

        assert _cashbox().balance_usd_cents == 0
        reversal = db_session.query(CashboxTransaction).filter_by(type="adjustment").one()
        assert reversal.description == "Reversal of EXP-00001"
        assert reversal.amount_usd_cents == 7550
        with pytest.raises(NotFoundError):
            finance_service.get_expense(expense.id)

    def test_revenue_credits_and_delete_reverses(self, db_session, owner):
        revenue = finance_service.create_revenue(
            {"source": "Scrap metal", "amount": "300", "currency": "LYD"},
            actor_user_id=owner.id,
        )
        assert revenue.revenue_number == "REV-00001"
        assert _cashbox().balance_lyd_cents == 30000

        finance_service.delete_revenue(revenue.id, actor_user_id=owner.id)
        assert _cashbox().balance_lyd_cents == 0
        assert db_session.query(CashboxTransaction).count() == 2

    def test_next_number_previews(self, owner):
        assert finance_service.preview_next_expense_number() == "EXP-00001"
        finance_service.create_revenue({"source": "Fees", "amount": "1"}, actor_user_id=owner.id)
        assert finance_service.preview_next_revenue_number() == "REV-00002"

    def test_expenses_filtered_by_date(self, owner):
        finance_service.create_expense(
            {"category": "rent", "amount": "10", "description": "Jan", "date": "2025-01-15"},
            actor_user_id=owner.id,
        )
        finance_service.create_expense(
            {"category": "rent", "amount": "10", "description": "Feb", "date": "2025-02-15"},
            actor_user_id=owner.id,
        )
        from datetime import datetime
        january = finance_service.list_expenses(start=datetime(2025, 1, 1), end=datetime(2025, 2, 1))
        assert [e.description for e in january] == ["Jan"]


class TestManualCashbox:
    def test_deposit_and_withdrawal(self, owner):
        finance_service.create_manual_cashbox_transaction(
            {"type": "deposit", "amount": "500", "currency": "USD"}, actor_user_id=owner.id
        )
        tx = finance_service.create_manual_cashbox_transaction(
            {"type": "withdrawal", "amount": "120", "currency": "USD", "description": "Bank run"},
            actor_user_id=owner.id,
        )
        assert tx.reference_type == "manual"
        assert _cashbox().balance_usd_cents == 38000

    def test_other_types_rejected(self, owner):
        with pytest.raises(ValidationError):
            finance_service.create_manual_cashbox_transaction(
                {"type": "sale", "amount": "5"}, actor_user_id=owner.id
            )

    def test_log_reconciles_with_balance(self, db_session, owner, cashier, make_product):
        product = make_product(price="30", stock=5)
        sale = sales_service.create_sale(
            {"items": [{"product_id": product.id, "quantity": 2}], "amount_paid": "60"},
            actor_user_id=cashier.id,
        )
        finance_service.create_expense(
            {"category": "other", "amount": "15", "description": "Tea"}, actor_user_id=owner.id
        )
        revenue = finance_service.create_revenue({"source": "Tip", "amount": "5"}, actor_user_id=owner.id)
        finance_service.delete_revenue(revenue.id, actor_user_id=owner.id)
        finance_service.create_manual_cashbox_transaction(
            {"type": "deposit", "amount": "7", "currency": "USD"}, actor_user_id=owner.id
        )
        sales_service.return_sale(sale.id, actor_user_id=cashier.id)

        box = _cashbox()
        assert _log_totals(db_session) == (box.balance_usd_cents, box.balance_lyd_cents)
        assert (box.balance_usd_cents, box.balance_lyd_cents) == (700, -1500)


class TestPartners:
    def test_transactions_move_counters_and_cashbox(self, owner):
        partner = finance_service.create_partner({"name": "Khaled", "ownership_percentage": "25.5"})
        assert partner.ownership_percentage_bp == 2550

        for tx_type, amount in (("investment", "1000"), ("withdrawal", "200"), ("profit_distribution", "50")):
            finance_service.create_partner_transaction(
                {"partner_id": partner.id, "type": tx_type, "amount": amount, "currency": "USD"},
                actor_user_id=owner.id,
            )

        partner = finance_service.get_partner(partner.id)
        data = partner.to_dict()
        assert data["total_invested"] == "1000.00"
        assert data["total_withdrawn"] == "200.00"
        assert data["total_profit_distributed"] == "50.00"
        assert _cashbox().balance_usd_cents == 75000

    def test_ownership_out_of_range(self):
        with pytest.raises(ValidationError):
            finance_service.create_partner({"name": "Greedy", "ownership_percentage": "100.01"})

    def test_unknown_partner_rolls_back(self, db_session, owner):
        with pytest.raises(NotFoundError):
            finance_service.create_partner_transaction(
                {"partner_id": 77, "type": "investment", "amount": "10"}, actor_user_id=owner.id
            )
        assert db_session.query(CashboxTransaction).count() == 0

    def test_delete_keeps_cashbox_history(self, db_session, owner):
        partner = finance_service.create_partner({"name": "Salem"})
        finance_service.create_partner_transaction(
            {"partner_id": partner.id, "type": "investment", "amount": "10"}, actor_user_id=owner.id
        )
        finance_service.delete_partner(partner.id)

        assert db_session.query(PartnerTransaction).count() == 0
        assert db_session.query(CashboxTransaction).count() == 1
        assert _cashbox().balance_lyd_cents == 1000


class TestCustomerPayments:
    def test_payment_reduces_debt_and_credits_cashbox(self, owner, cashier, make_product, make_customer):
        customer = make_customer()
        product = make_product(price="100", stock=2)
        sales_service.create_sale(
            {"items": [{"product_id": product.id, "quantity": 1}], "amount_paid": "0", "customer_id": customer.id},
            actor_user_id=cashier.id,
        )

        customer = customers_service.record_customer_payment(
            customer.id, {"amount": "40"}, actor_user_id=cashier.id
        )

        assert customer.balance_owed_cents == 6000
        assert customer.total_purchases_cents == 10000
        assert _cashbox().balance_lyd_cents == 4000
        rows = ledger_service.transactions_for_reference("customer_payment", customer.id)
        assert rows[0].type == "deposit"

    def test_overpayment_rejected(self, cashier, make_customer):
        customer = make_customer()
        with pytest.raises(ValidationError):
            customers_service.record_customer_payment(customer.id, {"amount": "1"}, actor_user_id=cashier.id)
        assert _cashbox().balance_lyd_cents == 0

    def test_customer_with_balance_cannot_be_deleted(self, cashier, make_product, make_customer):
        customer = make_customer()
        product = make_product(price="10", stock=1)
        sales_service.create_sale(
            {"items": [{"product_id": product.id, "quantity": 1}], "amount_paid": "0", "customer_id": customer.id},
            actor_user_id=cashier.id,
        )
        with pytest.raises(ConflictError):
            customers_service.delete_customer(customer.id)

    def test_duplicate_phone_conflicts(self, make_customer):
        make_customer(phone="0910000009")
        with pytest.raises(ConflictError):
            make_customer(name="Other", phone="0910000009")
