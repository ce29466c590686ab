# Overview: Order statistics, dashboard counters and daily series for the admin screens.

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import date, timedelta

from ..models.finance import EXPENSE_CATEGORIES
from ..models.orders import OPEN_ORDER_STATUSES, ORDER_COMPLETED, ORDER_STATUSES
from ..models.users import USER_ACTIVE
from ..time_utils import in_window, resolve_window, start_of_day, utcnow
from ..validation import ValidationError
from .profit_service import (
    calculate_order_profit,
    calculate_orders_profit,
    get_profit_analysis,
    percent_of,
    resolve_cost_ratio,
    round_money,
)


TOP_PRODUCTS_LIMIT = 5
LOW_STOCK_THRESHOLD = 10
NEW_USER_DAYS = 7


def _window(start, end):
    try:
        return resolve_window(start, end)
    except ValueError as exc:
        raise ValidationError(f"Invalid date window: {exc}")


def _day_range(days: int, now) -> list[date]:
    days = max(1, int(days))
    today = now.date()
    return [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]


def get_order_stats(store, start=None, end=None, *, now=None, cost_ratio: float | None = None) -> dict:
    """
    Order counts, revenue and profit for the window.

    Revenue, average order value and profit cover completed orders only;
    counts and conversion rate cover every order created in the window.
    """
    start_dt, end_dt = _window(start, end)
    now = now or utcnow()
    ratio = resolve_cost_ratio(store, cost_ratio)
    products = {p.id: p for p in store.get_all_products()}
    orders = [o for o in store.get_all_orders() if in_window(o.created_at, start_dt, end_dt)]
    completed = [o for o in orders if o.status == ORDER_COMPLETED]

    counts = Counter(o.status for o in orders)
    by_status = {status: counts.get(status, 0) for status in ORDER_STATUSES}
    revenue = sum(o.total_amount for o in completed)

    today = now.date()
    todays = [o for o in orders if o.created_at.date() == today]

    per_product: dict[str, dict] = {}
    margins = Counter()
    for order in completed:
        product = products.get(order.product_id)
        result = calculate_order_profit(order, product, ratio)
        margins[result["margin_category"]] += 1
        row = per_product.setdefault(order.product_id, {
            "product_id": order.product_id,
            "product_title": product.title if product else order.product_id,
            "orders": 0,
            "quantity": 0,
            "revenue": 0,
            "profit": 0,
        })
        row["orders"] += 1
        row["quantity"] += order.quantity
        row["revenue"] += result["revenue"]
        row["profit"] = round_money(row["profit"] + result["profit"])

    rows = list(per_product.values())

    def top(key):
        return sorted(rows, key=lambda r: r[key], reverse=True)[:TOP_PRODUCTS_LIMIT]

    return {
        "total_orders": len(orders),
        "by_status": by_status,
        "total_revenue": revenue,
        "average_order_value": round_money(revenue / len(completed)) if completed else 0,
        "today_orders": len(todays),
        "today_revenue": sum(o.total_amount for o in todays if o.status == ORDER_COMPLETED),
        "conversion_rate": percent_of(len(completed), len(orders)),
        "profit": calculate_orders_profit(completed, products, ratio),
        "status_distribution": [
            {"status": status, "count": count, "percentage": percent_of(count, len(orders))}
            for status, count in by_status.items()
        ],
        "top_products": {
            "by_orders": top("orders"),
            "by_revenue": top("revenue"),
            "by_profit": top("profit"),
        },
        "profit_distribution": {
            category: margins.get(category, 0) for category in ("high", "medium", "low", "negative")
        },
    }


def get_dashboard_stats(store, *, now=None) -> dict:
    """Headline counters for the admin dashboard."""
    now = now or utcnow()
    today_start = start_of_day(now)
    month_start = today_start.replace(day=1)
    new_since = now - timedelta(days=NEW_USER_DAYS)

    users = store.get_users()
    products = store.get_products()
    orders = store.get_all_orders()
    pending = store.get_pending_topup_requests()
    completed = [o for o in orders if o.status == ORDER_COMPLETED]

    return {
        "users": {
            "total": len(users),
            "active": sum(1 for u in users if u.status == USER_ACTIVE),
            "new_this_week": sum(1 for u in users if u.created_at >= new_since),
            "total_balance": sum(u.balance for u in users),
        },
        "products": {
            "total": len(products),
            "active": sum(1 for p in products if p.is_active),
            "low_stock": sum(1 for p in products if p.is_active and p.stock < LOW_STOCK_THRESHOLD),
        },
        "orders": {
            "total": len(orders),
            "today": sum(1 for o in orders if o.created_at >= today_start),
            "open": sum(1 for o in orders if o.status in OPEN_ORDER_STATUSES),
        },
        "revenue": {
            "today": sum(o.total_amount for o in completed if o.created_at >= today_start),
            "this_month": sum(o.total_amount for o in completed if o.created_at >= month_start),
            "all_time": sum(o.total_amount for o in completed),
        },
        "topups": {
            "pending": len(pending),
            "pending_amount": sum(r.requested_amount for r in pending),
        },
        "recent_activity": [a.to_dict() for a in store.get_recent_activity(5)],
    }


def get_revenue_series(store, days: int = 30, *, now=None) -> list[dict]:
    """Completed-order revenue per day for the trailing `days` days (oldest first)."""
    now = now or utcnow()
    buckets = _day_range(days, now)
    revenue = defaultdict(int)
    count = defaultdict(int)
    for order in store.get_all_orders():
        if order.status != ORDER_COMPLETED:
            continue
        day = order.created_at.date()
        revenue[day] += order.total_amount
        count[day] += 1
    return [{"date": d.isoformat(), "revenue": revenue[d], "orders": count[d]} for d in buckets]


def get_user_growth_series(store, days: int = 30, *, now=None) -> list[dict]:
    now = now or utcnow()
    buckets = _day_range(days, now)
    users = store.get_users()
    joined = Counter(u.created_at.date() for u in users)
    running = sum(1 for u in users if u.created_at.date() < buckets[0])
    series = []
    for d in buckets:
        running += joined[d]
        series.append({"date": d.isoformat(), "new_users": joined[d], "total_users": running})
    return series


def get_daily_margin_trends(store, days: int = 30, *, now=None, cost_ratio: float | None = None) -> list[dict]:
    """Per-day revenue, order cost, profit and margin from completed orders."""
    now = now or utcnow()
    ratio = resolve_cost_ratio(store, cost_ratio)
    buckets = _day_range(days, now)
    products = {p.id: p for p in store.get_all_products()}
    by_day = defaultdict(list)
    for order in store.get_all_orders():
        if order.status == ORDER_COMPLETED:
            by_day[order.created_at.date()].append(order)

    series = []
    for d in buckets:
        totals = calculate_orders_profit(by_day.get(d, []), products, ratio)
        series.append({
            "date": d.isoformat(),
            "revenue": totals["total_revenue"],
            "cost": totals["total_cost"],
            "profit": totals["total_profit"],
            "margin": totals["average_margin"],
        })
    return series


def get_cost_breakdown(store, start=None, end=None, *, cost_ratio: float | None = None) -> list[dict]:
    """Cost categories for the window with their share of total cost, largest first."""
    costs = get_profit_analysis(store, start, end, cost_ratio=cost_ratio, include_trends=False)["costs"]
    total = costs["total"]
    rows = [
        {"category": category, "amount": costs[category], "percentage": percent_of(costs[category], total)}
        for category in EXPENSE_CATEGORIES
    ]
    return sorted(rows, key=lambda r: r["amount"], reverse=True)
