from datetime import datetime

import pytest

from shopdata.models import Order
from shopdata.services import profit_service as ps
from shopdata.validation import ValidationError

from conftest import make_completed_order


MARCH = ("2026-03-01", "2026-03-31")


@pytest.fixture
def march_sales(store, product):
    """Two completed single-unit sales of the 150k product (100k supplier cost)."""
    make_completed_order(store, product, user_id="user-a", created_at=datetime(2026, 3, 10, 9, 0))
    make_completed_order(store, product, user_id="user-b", created_at=datetime(2026, 3, 12, 15, 30))
    return product


class TestOrderProfit:
    def test_supplier_base_price_is_the_unit_cost(self, product):
        order = Order(id="ord-1", user_id="u", product_id=product.id, quantity=2,
                      unit_price=150_000, total_amount=300_000)
        result = ps.calculate_order_profit(order, product)
        assert result["cost"] == 200_000
        assert result["profit"] == 100_000
        assert result["margin"] == 33.33
        assert result["margin_category"] == "high"

    def test_option_base_price_wins(self, option_product):
        order = Order(id="ord-1", user_id="u", product_id=option_product.id, quantity=1,
                      unit_price=79_000, total_amount=79_000, selected_option_id="1month")
        assert ps.get_order_unit_cost(order, option_product) == 50_000

    def test_cost_ratio_fallback(self, option_product):
        order = Order(id="ord-1", user_id="u", product_id=option_product.id, quantity=1,
                      unit_price=100_000, total_amount=100_000, selected_option_id="1year")
        assert ps.get_order_unit_cost(order, option_product, 0.6) == pytest.approx(60_000)

    def test_missing_product_costs_nothing(self):
        order = Order(id="ord-1", user_id="u", product_id="prod-gone", quantity=1,
                      unit_price=100_000, total_amount=100_000)
        assert ps.calculate_order_profit(order, None)["profit"] == 100_000

    @pytest.mark.parametrize("margin,expected", [
        (30, "high"), (29.99, "medium"), (15, "medium"), (0, "low"), (-0.01, "negative"),
    ])
    def test_margin_categories(self, margin, expected):
        assert ps.get_profit_margin_category(margin) == expected


class TestAllocation:
    PRODUCTS = [
        {"product_id": "a", "revenue": 300, "quantity": 1},
        {"product_id": "b", "revenue": 100, "quantity": 3},
    ]

    def _by_id(self, rows):
        return {r["product_id"]: r["allocated_cost"] for r in rows}

    def test_revenue_based(self):
        assert self._by_id(ps.allocate_shared_costs(1000, self.PRODUCTS, "revenue_based")) == {"a": 750, "b": 250}

    def test_quantity_based(self):
        assert self._by_id(ps.allocate_shared_costs(1000, self.PRODUCTS, "quantity_based")) == {"a": 250, "b": 750}

    def test_equal(self):
        assert self._by_id(ps.allocate_shared_costs(1000, self.PRODUCTS, "equal")) == {"a": 500, "b": 500}

    def test_zero_weight_allocates_nothing(self):
        rows = [{"product_id": "a", "revenue": 0, "quantity": 0}]
        assert ps.allocate_shared_costs(1000, rows) == [{"product_id": "a", "allocated_cost": 0}]

    def test_unknown_method(self):
        with pytest.raises(ValidationError):
            ps.allocate_shared_costs(1000, self.PRODUCTS, "by_vibes")


class TestProfitAnalysis:
    def test_gross_and_net_without_expenses(self, store, march_sales):
        analysis = ps.get_profit_analysis(store, *MARCH)
        assert analysis["revenue"]["total"] == 300_000
        assert analysis["costs"]["cogs"] == 200_000
        assert analysis["profit"]["gross"] == 100_000
        assert analysis["profit"]["net"] == 100_000
        assert analysis["profit"]["net_margin"] == 33.33
        assert analysis["order_count"] == 2
        assert analysis["revenue"]["by_category"][0]["category"] == "gaming"
        assert analysis["period"]["start"] == "2026-03-01T00:00:00.000Z"

    def test_empty_window_is_all_zero(self, store, product):
        analysis = ps.get_profit_analysis(store, "2024-01-01", "2024-01-31")

        assert analysis["order_count"] == 0
        assert analysis["revenue"]["total"] == 0
        assert analysis["costs"]["total"] == 0
        assert analysis["costs"]["cogs"] == 0
        assert analysis["profit"]["gross"] == 0
        assert analysis["profit"]["net"] == 0
        assert analysis["profit"]["gross_margin"] == 0
        assert analysis["profit"]["net_margin"] == 0
        assert analysis["trends"]["revenue_growth"] == 0
        assert analysis["trends"]["profit_growth"] == 0
        assert analysis["trends"]["margin_trend"] == "stable"
        assert analysis["revenue"]["by_product"] == []
        assert analysis["costs"]["by_product"] == []
        assert analysis["profit"]["by_product"] == []

    def test_expenses_reduce_net_profit(self, store, march_sales):
        store.create_expense({
            "category": "operational", "description": "Hosting", "amount": 30_000, "date": "2026-03-15",
        })
        store.create_expense({
            "category": "marketing", "description": "Ads in April", "amount": 99_000, "date": "2026-04-02",
        })
        analysis = ps.get_profit_analysis(store, *MARCH)
        assert analysis["costs"]["operational"] == 30_000
        assert analysis["costs"]["marketing"] == 0
        assert analysis["costs"]["total"] == 230_000
        assert analysis["profit"]["gross"] == 100_000
        assert analysis["profit"]["net"] == 70_000
        assert analysis["profit"]["by_product"][0]["net_profit"] == 70_000

    def test_expense_for_specific_products_stays_with_them(self, store, march_sales, option_product):
        make_completed_order(store, option_product, selected_option_id="1month",
                             created_at=datetime(2026, 3, 20))
        store.create_expense({
            "category": "marketing", "description": "Premium promo", "amount": 20_000,
            "date": "2026-03-20", "allocated_to_products": [option_product.id],
        })
        costs = {r["product_id"]: r["breakdown"] for r in ps.get_profit_analysis(store, *MARCH)["costs"]["by_product"]}
        assert costs[option_product.id]["marketing"] == 20_000
        assert costs[march_sales.id]["marketing"] == 0

    def test_pending_orders_are_not_revenue(self, store, product):
        store.create_order({"user_id": "u", "product_id": product.id, "created_at": datetime(2026, 3, 5)})
        analysis = ps.get_profit_analysis(store, *MARCH)
        assert analysis["revenue"]["total"] == 0
        assert analysis["profit"]["net_margin"] == 0

    def test_trends_compare_with_previous_window(self, store, march_sales):
        make_completed_order(store, march_sales, created_at=datetime(2026, 2, 15))
        trends = ps.get_profit_analysis(store, *MARCH)["trends"]
        assert trends["revenue_growth"] == 100.0
        assert trends["profit_growth"] == 100.0
        assert trends["margin_trend"] == "stable"

    def test_no_previous_profit_means_zero_growth(self, store, march_sales):
        trends = ps.get_profit_analysis(store, *MARCH)["trends"]
        assert trends["profit_growth"] == 0.0

    def test_bad_window(self, store):
        with pytest.raises(ValidationError):
            ps.get_profit_analysis(store, "not-a-date", None)


class TestCostBreakdown:
    def test_per_unit_costs(self, store, march_sales):
        store.create_expense({
            "category": "operational", "description": "Hosting", "amount": 30_000, "date": "2026-03-15",
        })
        breakdown = ps.calculate_product_cost_breakdown(store, march_sales.id, *MARCH)
        assert breakdown["units_sold"] == 2
        assert breakdown["base_price"] == 100_000
        assert breakdown["operational_cost"] == 15_000
        assert breakdown["total_cost"] == 115_000
        assert breakdown["selling_price"] == 150_000
        assert breakdown["net_profit"] == 35_000
        assert breakdown["net_margin"] == 23.33

    def test_unsold_product_uses_list_price(self, store, product):
        breakdown = ps.calculate_product_cost_breakdown(store, product.id)
        assert breakdown["units_sold"] == 0
        assert breakdown["selling_price"] == 150_000
        assert breakdown["base_price"] == 100_000

    def test_missing_product(self, store):
        assert ps.calculate_product_cost_breakdown(store, "prod-missing") is None


class TestROI:
    def test_roi_metrics(self, store, march_sales):
        roi = ps.calculate_roi(
            store, campaign_name="Spring", investment=100_000,
            start=MARCH[0], end=MARCH[1], product_ids=[march_sales.id],
        )
        assert roi["returns"] == 300_000
        assert roi["profit"] == 200_000
        assert roi["roi"] == 200.0
        assert roi["metrics"]["customer_count"] == 2
        assert roi["metrics"]["customer_acquisition_cost"] == 50_000
        assert roi["metrics"]["customer_lifetime_value"] == 150_000
        assert roi["metrics"]["payback_period_days"] == 10.3

    def test_no_returns_has_no_payback(self, store, product):
        roi = ps.calculate_roi(store, campaign_name="Dud", investment=50_000, start=MARCH[0], end=MARCH[1])
        assert roi["roi"] == -100.0
        assert roi["metrics"]["payback_period_days"] is None

    @pytest.mark.parametrize("investment", [0, -10])
    def test_investment_must_be_positive(self, store, investment):
        with pytest.raises(ValidationError):
            ps.calculate_roi(store, campaign_name="x", investment=investment)


class TestAlerts:
    def test_healthy_window_raises_nothing(self, store, march_sales):
        assert ps.check_profit_alerts(store, start=MARCH[0], end=MARCH[1]) == []

    def test_loss_making_window(self, store, march_sales):
        store.create_expense({
            "category": "operational", "description": "Office", "amount": 400_000, "date": "2026-03-02",
        })
        alerts = ps.check_profit_alerts(store, start=MARCH[0], end=MARCH[1])
        types = {a.type for a in alerts}
        assert types == {"low_margin", "negative_profit", "high_cost"}
        assert all(a.severity == "critical" for a in alerts if a.type == "low_margin")
        assert store.get_profit_alerts() == []

    def test_custom_threshold(self, store, march_sales):
        alerts = ps.check_profit_alerts(store, start=MARCH[0], end=MARCH[1], threshold=40)
        assert {a.type for a in alerts} == {"low_margin"}
        assert {a.severity for a in alerts} == {"medium"}
        assert any(a.product_id == march_sales.id for a in alerts)

    def test_declining_profit(self, store, product):
        for day in (3, 10, 20):
            make_completed_order(store, product, created_at=datetime(2026, 2, day))
        make_completed_order(store, product, created_at=datetime(2026, 3, 5))
        alerts = ps.check_profit_alerts(store, start=MARCH[0], end=MARCH[1])
        declining = [a for a in alerts if a.type == "declining_trend"]
        assert len(declining) == 1
        assert declining[0].severity == "high"
        assert declining[0].current_value == -66.67

    def test_alerts_can_be_recorded(self, store, march_sales):
        alerts = ps.check_profit_alerts(store, start=MARCH[0], end=MARCH[1], threshold=40)
        store.record_profit_alerts(alerts)
        assert len(store.get_profit_alerts(unread_only=True)) == len(alerts)


class TestForecast:
    NOW = datetime(2026, 3, 15, 12, 0)

    def test_flat_projection(self, store, march_sales):
        forecast = ps.generate_profit_forecast(
            store, forecast_days=30, history_days=10, now=self.NOW,
            assumptions={"revenue_growth_rate": 0, "cost_inflation_rate": 0, "seasonality_factor": 1},
        )
        assert forecast["forecast"]["revenue"] == 900_000
        assert forecast["forecast"]["costs"] == 600_000
        assert forecast["forecast"]["net_profit"] == 300_000
        assert forecast["forecast"]["confidence"] == 43
        assert forecast["metrics"]["break_even_days"] == 20
        assert forecast["metrics"]["profit_per_day"] == 10_000
        assert forecast["scenarios"]["optimistic"]["revenue"] == 1_080_000
        assert forecast["scenarios"]["pessimistic"]["revenue"] == 720_000
        assert forecast["history"] == {"days": 10, "orders": 2, "active_days": 2}
        assert forecast["period"]["label"] == "Next 30 days"

    def test_without_history(self, store):
        forecast = ps.generate_profit_forecast(store, forecast_days=7, now=self.NOW)
        assert forecast["forecast"]["revenue"] == 0
        assert forecast["forecast"]["confidence"] == 10
        assert forecast["metrics"]["break_even_days"] == 0

    def test_shrinking_revenue_is_flagged(self, store, march_sales):
        forecast = ps.generate_profit_forecast(
            store, forecast_days=30, history_days=10, now=self.NOW,
            assumptions={"revenue_growth_rate": -10},
        )
        titles = [r["title"] for r in forecast["recommendations"]]
        assert "Revenue is expected to shrink" in titles

    def test_assumptions_are_clamped(self, store):
        forecast = ps.generate_profit_forecast(
            store, forecast_days=30, now=self.NOW, assumptions={"revenue_growth_rate": 500},
        )
        assert forecast["assumptions"]["revenue_growth_rate"] == 100.0
        assert forecast["assumptions"]["cost_inflation_rate"] == 2.0

    @pytest.mark.parametrize("days", [0, 366])
    def test_forecast_days_bounds(self, store, days):
        with pytest.raises(ValidationError):
            ps.generate_profit_forecast(store, forecast_days=days)

    def test_unknown_assumption(self, store):
        with pytest.raises(ValidationError):
            ps.generate_profit_forecast(store, forecast_days=30, assumptions={"luck": 2})


class TestValidation:
    def test_consistent_data_passes(self, store, march_sales):
        store.create_expense({
            "category": "cogs", "description": "Extra keys", "amount": 10_000, "date": "2026-03-11",
        })
        result = ps.validate_profit_calculations(store, *MARCH)
        assert result["is_valid"] is True
        assert result["warnings"] == []
        assert result["summary"]["order_count"] == 2

    def test_mismatched_order_total_is_warned(self, store, product):
        make_completed_order(store, product, unit_price=100_000, total_amount=90_000,
                             created_at=datetime(2026, 3, 3))
        result = ps.validate_profit_calculations(store, *MARCH)
        assert len(result["warnings"]) == 1
        assert result["is_valid"] is True
