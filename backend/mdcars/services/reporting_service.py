# Overview: Read-only aggregates for the dashboard and reports.

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import case, func

from ..extensions import db
from ..models import Cashbox, Customer, Product, Sale, SaleItem
from ..models.sales import SALE_STATUS_COMPLETED
from ..money import CURRENCIES, CURRENCY_LYD, CURRENCY_USD, format_cents
from ..time_utils import day_bounds, month_bounds, utcnow
from ..validation import ValidationError
from . import products_service


"""
Only completed sales count toward revenue, profit and best sellers.
Returned and cancelled sales are excluded; pending sales have not
happened yet. Every aggregate coalesces to zero on empty data.

Amounts are reported per currency; LYD and USD are never added together.
Profit is the sum of line profits less the sale-level discount.
"""


def _per_currency(rows) -> dict:
    out = {c: 0 for c in CURRENCIES}
    for currency, cents in rows:
        out[currency] = int(cents or 0)
    return {c: format_cents(v) for c, v in out.items()}


def _window_totals(start: datetime, end: datetime) -> dict:
    in_window = (
        Sale.status == SALE_STATUS_COMPLETED,
        Sale.created_at >= start,
        Sale.created_at < end,
    )

    count = db.session.query(func.count(Sale.id)).filter(*in_window).scalar() or 0

    revenue_rows = (
        db.session.query(Sale.currency, func.coalesce(func.sum(Sale.total_amount_cents), 0))
        .filter(*in_window)
        .group_by(Sale.currency)
        .all()
    )

    line_profit = dict(
        db.session.query(Sale.currency, func.coalesce(func.sum(SaleItem.profit_cents), 0))
        .join(SaleItem, SaleItem.sale_id == Sale.id)
        .filter(*in_window)
        .group_by(Sale.currency)
        .all()
    )
    discounts = dict(
        db.session.query(Sale.currency, func.coalesce(func.sum(Sale.discount_cents), 0))
        .filter(*in_window)
        .group_by(Sale.currency)
        .all()
    )
    profit_rows = [
        (c, int(line_profit.get(c, 0) or 0) - int(discounts.get(c, 0) or 0))
        for c in CURRENCIES
    ]

    return {
        "total_sales": int(count),
        "total_revenue": _per_currency(revenue_rows),
        "total_profit": _per_currency(profit_rows),
    }


def daily_report(day: date) -> dict:
    start, end = day_bounds(day)
    data = _window_totals(start, end)
    data["date"] = day.isoformat()
    return data


def monthly_report(year: int, month: int) -> dict:
    try:
        start, end = month_bounds(year, month)
    except ValueError as exc:
        raise ValidationError(str(exc))
    data = _window_totals(start, end)
    data.update({"year": year, "month": month})
    return data


def best_sellers(limit: int = 10) -> list[dict]:
    """Products by units sold, descending; ties broken by product id."""
    if limit < 1:
        raise ValidationError("limit must be a positive integer")

    total_sold = func.sum(SaleItem.quantity)
    rows = (
        db.session.query(
            SaleItem.product_id,
            func.max(SaleItem.product_name).label("product_name"),
            func.max(SaleItem.product_sku).label("product_sku"),
            total_sold.label("total_sold"),
            func.sum(case((Sale.currency == CURRENCY_LYD, SaleItem.total_price_cents), else_=0)).label("revenue_lyd"),
            func.sum(case((Sale.currency == CURRENCY_USD, SaleItem.total_price_cents), else_=0)).label("revenue_usd"),
        )
        .join(Sale, Sale.id == SaleItem.sale_id)
        .filter(Sale.status == SALE_STATUS_COMPLETED)
        .group_by(SaleItem.product_id)
        .order_by(total_sold.desc(), SaleItem.product_id.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "product_id": row.product_id,
            "product_name": row.product_name,
            "product_sku": row.product_sku,
            "total_sold": int(row.total_sold or 0),
            "total_revenue": {
                CURRENCY_LYD: format_cents(int(row.revenue_lyd or 0)),
                CURRENCY_USD: format_cents(int(row.revenue_usd or 0)),
            },
        }
        for row in rows
    ]


def dashboard_stats() -> dict:
    start, end = day_bounds(utcnow().date())
    today = _window_totals(start, end)

    total_products = db.session.query(func.count(Product.id)).scalar() or 0
    low_stock = (
        db.session.query(func.count(Product.id))
        .filter(Product.current_stock <= Product.low_stock_threshold)
        .scalar()
        or 0
    )
    total_customers = db.session.query(func.count(Customer.id)).scalar() or 0
    box = db.session.query(Cashbox).order_by(Cashbox.id.asc()).first()

    return {
        "today_sales": today["total_sales"],
        "today_revenue": today["total_revenue"],
        "total_products": int(total_products),
        "low_stock_count": int(low_stock),
        "total_customers": int(total_customers),
        "cashbox_balance_usd": format_cents(box.balance_usd_cents if box else 0),
        "cashbox_balance_lyd": format_cents(box.balance_lyd_cents if box else 0),
        "goods_capital": products_service.goods_capital()["goods_capital"],
    }
