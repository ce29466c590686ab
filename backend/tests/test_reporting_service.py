from datetime import datetime

import pytest

from shopdata.models.orders import ORDER_STATUSES
from shopdata.services import reporting_service as rs
from shopdata.services.checkout_service import place_order

from conftest import make_completed_order


MARCH = ("2026-03-01", "2026-03-31")
NOW = datetime(2026, 3, 12, 18, 0)


@pytest.fixture
def march_orders(store, product, option_product):
    make_completed_order(store, product, user_id="user-a", created_at=datetime(2026, 3, 10, 9, 0))
    make_completed_order(store, product, user_id="user-b", created_at=datetime(2026, 3, 12, 10, 0))
    store.create_order({
        "user_id": "user-c",
        "product_id": option_product.id,
        "selected_option_id": "1month",
        "created_at": datetime(2026, 3, 12, 11, 0),
    })


def test_order_stats(store, product, march_orders):
    stats = rs.get_order_stats(store, *MARCH, now=NOW)

    assert stats["total_orders"] == 3
    assert stats["by_status"]["completed"] == 2
    assert stats["by_status"]["pending"] == 1
    assert stats["by_status"]["cancelled"] == 0
    assert stats["total_revenue"] == 300_000
    assert stats["average_order_value"] == 150_000
    assert stats["today_orders"] == 2
    assert stats["today_revenue"] == 150_000
    assert stats["conversion_rate"] == 66.67
    assert stats["profit"]["total_profit"] == 100_000
    assert len(stats["status_distribution"]) == len(ORDER_STATUSES)
    assert stats["top_products"]["by_orders"][0]["product_id"] == product.id
    assert stats["top_products"]["by_orders"][0]["orders"] == 2
    assert stats["profit_distribution"] == {"high": 2, "medium": 0, "low": 0, "negative": 0}


def test_order_stats_outside_window(store, march_orders):
    stats = rs.get_order_stats(store, "2026-04-01", "2026-04-30", now=NOW)
    assert stats["total_orders"] == 0
    assert stats["average_order_value"] == 0
    assert stats["conversion_rate"] == 0


def test_dashboard_stats(store, funded_user, product, option_product):
    store.create_topup_request({"user_id": funded_user.id, "requested_amount": 50_000})
    order = place_order(store, user_id=funded_user.id, items=[{"product_id": product.id}]).orders[0]

    stats = rs.get_dashboard_stats(store)
    assert stats["orders"]["open"] == 1
    assert stats["revenue"]["all_time"] == 0

    store.update_order_status(order.id, "processing")
    store.update_order_status(order.id, "completed")
    stats = rs.get_dashboard_stats(store)

    assert stats["users"] == {"total": 1, "active": 1, "new_this_week": 1, "total_balance": 850_000}
    assert stats["products"]["total"] == 2
    assert stats["products"]["low_stock"] == 1
    assert stats["orders"]["open"] == 0
    assert stats["revenue"]["today"] == 150_000
    assert stats["topups"] == {"pending": 1, "pending_amount": 50_000}
    assert stats["recent_activity"][0]["action"] == "update_order_status"


def test_revenue_series(store, march_orders):
    series = rs.get_revenue_series(store, 3, now=NOW)
    assert [row["date"] for row in series] == ["2026-03-10", "2026-03-11", "2026-03-12"]
    assert [row["revenue"] for row in series] == [150_000, 0, 150_000]
    assert [row["orders"] for row in series] == [1, 0, 1]


def test_user_growth_series(store, user):
    series = rs.get_user_growth_series(store, 2)
    assert len(series) == 2
    assert series[0]["total_users"] == 0
    assert series[-1] == {"date": user.created_at.date().isoformat(), "new_users": 1, "total_users": 1}


def test_daily_margin_trends(store, march_orders):
    series = rs.get_daily_margin_trends(store, 2, now=NOW)
    assert series[0] == {"date": "2026-03-11", "revenue": 0, "cost": 0, "profit": 0, "margin": 0}
    assert series[1]["revenue"] == 150_000
    assert series[1]["margin"] == 33.33


def test_cost_breakdown(store, march_orders):
    store.create_expense({
        "category": "operational", "description": "Hosting", "amount": 30_000, "date": "2026-03-15",
    })
    rows = rs.get_cost_breakdown(store, *MARCH)
    assert len(rows) == 6
    assert rows[0] == {"category": "cogs", "amount": 200_000, "percentage": 86.96}
    assert rows[1] == {"category": "operational", "amount": 30_000, "percentage": 13.04}
