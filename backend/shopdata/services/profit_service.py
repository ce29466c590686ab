# Overview: Read-only profit analytics over stored orders, products and expenses.

"""
Profit Analytics

All functions take the store first and an inclusive [start, end] window
(datetime, ISO string or None for unbounded). Orders are windowed by
created_at and expenses by date. Only completed orders count as revenue.

Unit cost, first match wins:
    1. selected option base_price
    2. product supplier.base_price
    3. cost_ratio * unit_price (ESTIMATED_COST_RATIO, default 0.7)
A missing product costs 0.

Percentages are rounded to 2 decimals; a zero denominator gives 0.
Nothing here mutates the store.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import timedelta
from typing import Iterable, Optional

from ..models import Expense, Order, Product, ProfitAlert, new_id
from ..models.finance import (
    ALERT_DECLINING_TREND,
    ALERT_HIGH_COST,
    ALERT_LOW_MARGIN,
    ALERT_NEGATIVE_PROFIT,
    EXPENSE_ADMINISTRATIVE,
    EXPENSE_CATEGORIES,
    EXPENSE_COGS,
    EXPENSE_MARKETING,
    EXPENSE_OPERATIONAL,
    EXPENSE_OTHER,
    EXPENSE_TRANSACTION_FEES,
    SEVERITY_CRITICAL,
    SEVERITY_HIGH,
    SEVERITY_MEDIUM,
    SHARED_EXPENSE_CATEGORIES,
)
from ..models.catalog import UNCATEGORIZED_SLUG
from ..models.orders import ORDER_COMPLETED
from ..time_utils import days_between, in_window, resolve_window, shift_window, to_utc_z, utcnow
from ..validation import ValidationError, coerce_int


logger = logging.getLogger(__name__)

DEFAULT_COST_RATIO = 0.7

HIGH_MARGIN_THRESHOLD = 30
MEDIUM_MARGIN_THRESHOLD = 15

# Alert thresholds (percent)
DEFAULT_LOW_MARGIN_THRESHOLD = 10
HIGH_COST_RATIO_THRESHOLD = 80
DECLINING_TREND_THRESHOLD = -5

# A margin move smaller than this (points) reads as stable
MARGIN_TREND_TOLERANCE = 1.0

ALLOCATION_METHODS = ("revenue_based", "equal", "quantity_based")

FORECAST_MAX_DAYS = 365
FORECAST_SCENARIO_SWING = 0.2
DEFAULT_ASSUMPTIONS = {
    "revenue_growth_rate": 5.0,
    "cost_inflation_rate": 2.0,
    "seasonality_factor": 1.0,
}
ASSUMPTION_BOUNDS = {
    "revenue_growth_rate": (-50.0, 100.0),
    "cost_inflation_rate": (-20.0, 50.0),
    "seasonality_factor": (0.1, 3.0),
}


# ---------------------------------------------------------------------------
# Small helpers
# ---------------------------------------------------------------------------

def percent_of(part: float, whole: float) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def round_money(value: float):
    return round(value, 2)


def _growth(current: float, previous: float) -> float:
    """Percent change versus the previous value; 0 when there is no positive baseline."""
    return round((current - previous) / previous * 100, 2) if previous > 0 else 0.0


def _window(start, end):
    try:
        return resolve_window(start, end)
    except ValueError as exc:
        raise ValidationError(f"Invalid date window: {exc}")


def resolve_cost_ratio(store, cost_ratio: Optional[float]) -> float:
    if cost_ratio is not None:
        return float(cost_ratio)
    return float(store.estimated_cost_ratio)


def completed_orders(store, start=None, end=None, product_ids: Iterable[str] | None = None) -> list[Order]:
    """Completed orders created inside the window (optionally for some products)."""
    start_dt, end_dt = _window(start, end)
    wanted = set(product_ids) if product_ids is not None else None
    return [
        o for o in store.get_all_orders()
        if o.status == ORDER_COMPLETED
        and in_window(o.created_at, start_dt, end_dt)
        and (wanted is None or o.product_id in wanted)
    ]


def _products_by_id(store) -> dict[str, Product]:
    return {p.id: p for p in store.get_all_products()}


# ---------------------------------------------------------------------------
# Per-order profit
# ---------------------------------------------------------------------------

def get_order_unit_cost(order: Order, product: Optional[Product], cost_ratio: float = DEFAULT_COST_RATIO) -> float:
    if product is None:
        return 0
    option = product.get_option(order.selected_option_id)
    if option is not None and option.base_price is not None:
        return option.base_price
    if product.supplier is not None and product.supplier.base_price is not None:
        return product.supplier.base_price
    return order.unit_price * cost_ratio


def get_profit_margin_category(margin: float) -> str:
    if margin >= HIGH_MARGIN_THRESHOLD:
        return "high"
    if margin >= MEDIUM_MARGIN_THRESHOLD:
        return "medium"
    if margin >= 0:
        return "low"
    return "negative"


def calculate_order_profit(order: Order, product: Optional[Product], cost_ratio: float = DEFAULT_COST_RATIO) -> dict:
    revenue = order.total_amount
    cost = round_money(get_order_unit_cost(order, product, cost_ratio) * order.quantity)
    profit = round_money(revenue - cost)
    margin = percent_of(profit, revenue)
    return {
        "order_id": order.id,
        "revenue": revenue,
        "cost": cost,
        "profit": profit,
        "margin": margin,
        "margin_category": get_profit_margin_category(margin),
    }


def calculate_orders_profit(
    orders: Iterable[Order],
    products_by_id: dict[str, Product],
    cost_ratio: float = DEFAULT_COST_RATIO,
) -> dict:
    """Totals over the given orders; average margin is total profit / total revenue."""
    total_revenue = 0
    total_cost = 0.0
    count = 0
    for order in orders:
        result = calculate_order_profit(order, products_by_id.get(order.product_id), cost_ratio)
        total_revenue += result["revenue"]
        total_cost += result["cost"]
        count += 1
    total_profit = round_money(total_revenue - total_cost)
    return {
        "order_count": count,
        "total_revenue": total_revenue,
        "total_cost": round_money(total_cost),
        "total_profit": total_profit,
        "average_margin": percent_of(total_profit, total_revenue),
    }


# ---------------------------------------------------------------------------
# Cost allocation
# ---------------------------------------------------------------------------

def allocate_shared_costs(total: float, products: list[dict], method: str = "revenue_based") -> list[dict]:
    """
    Split a shared cost across products.

    products: [{"product_id", "revenue", "quantity"}]
    method: revenue_based (share of revenue), equal, or quantity_based
    (share of units). A zero total weight allocates nothing.
    """
    if method not in ALLOCATION_METHODS:
        raise ValidationError(f"Invalid allocation method '{method}'. Must be one of: {', '.join(ALLOCATION_METHODS)}")
    if not products:
        return []
    if method == "equal":
        share = total / len(products)
        return [{"product_id": p["product_id"], "allocated_cost": round_money(share)} for p in products]

    key = "revenue" if method == "revenue_based" else "quantity"
    weight = sum(p.get(key, 0) for p in products)
    return [
        {
            "product_id": p["product_id"],
            "allocated_cost": round_money(p.get(key, 0) / weight * total) if weight else 0,
        }
        for p in products
    ]


def _allocate_expenses(
    expenses: Iterable[Expense],
    product_rows: dict[str, dict],
    method: str = "revenue_based",
) -> dict[str, dict[str, float]]:
    """
    Per-product share of every expense, keyed product_id -> category -> amount.

    An expense allocated to specific products is split among those of them
    that sold in the window; otherwise it is spread across all sold products.
    """
    shares: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
    for expense in expenses:
        targets = [product_rows[pid] for pid in expense.allocated_to_products if pid in product_rows]
        if not targets:
            targets = list(product_rows.values())
        for row in allocate_shared_costs(expense.amount, targets, method):
            shares[row["product_id"]][expense.category] += row["allocated_cost"]
    return shares


# ---------------------------------------------------------------------------
# Profit analysis
# ---------------------------------------------------------------------------

def _analyze(store, start_dt, end_dt, cost_ratio: float, allocation_method: str = "revenue_based") -> dict:
    products = _products_by_id(store)
    orders = completed_orders(store, start_dt, end_dt)
    expenses = store.get_expenses(start=start_dt, end=end_dt)

    rows: dict[str, dict] = {}
    computed_cogs: dict[str, float] = defaultdict(float)
    by_category: dict[str, dict] = {}
    for order in orders:
        product = products.get(order.product_id)
        row = rows.setdefault(order.product_id, {
            "product_id": order.product_id,
            "product_title": product.title if product else order.product_id,
            "revenue": 0,
            "quantity": 0,
        })
        row["revenue"] += order.total_amount
        row["quantity"] += order.quantity
        computed_cogs[order.product_id] += get_order_unit_cost(order, product, cost_ratio) * order.quantity

        category = product.category if product else UNCATEGORIZED_SLUG
        cat_row = by_category.setdefault(category, {"category": category, "revenue": 0, "quantity": 0})
        cat_row["revenue"] += order.total_amount
        cat_row["quantity"] += order.quantity

    expense_totals = {category: 0 for category in EXPENSE_CATEGORIES}
    for expense in expenses:
        expense_totals[expense.category] += expense.amount
    shares = _allocate_expenses(expenses, rows, allocation_method)

    revenue_total = sum(r["revenue"] for r in rows.values())
    cogs_total = sum(computed_cogs.values()) + expense_totals[EXPENSE_COGS]
    costs_total = cogs_total + sum(v for k, v in expense_totals.items() if k != EXPENSE_COGS)

    cost_rows = []
    profit_rows = []
    for pid, row in rows.items():
        share = shares.get(pid, {})
        breakdown = {
            "cogs": round_money(computed_cogs[pid] + share.get(EXPENSE_COGS, 0)),
            "operational": round_money(share.get(EXPENSE_OPERATIONAL, 0)),
            "marketing": round_money(share.get(EXPENSE_MARKETING, 0)),
            "administrative": round_money(share.get(EXPENSE_ADMINISTRATIVE, 0)),
            "transaction_fees": round_money(share.get(EXPENSE_TRANSACTION_FEES, 0)),
            "other": round_money(share.get(EXPENSE_OTHER, 0)),
        }
        product_cost = round_money(sum(breakdown.values()))
        cost_rows.append({
            "product_id": pid,
            "product_title": row["product_title"],
            "total_cost": product_cost,
            "breakdown": breakdown,
        })
        gross = round_money(row["revenue"] - breakdown["cogs"])
        net = round_money(row["revenue"] - product_cost)
        profit_rows.append({
            "product_id": pid,
            "product_title": row["product_title"],
            "gross_profit": gross,
            "net_profit": net,
            "gross_margin": percent_of(gross, row["revenue"]),
            "net_margin": percent_of(net, row["revenue"]),
            "quantity": row["quantity"],
        })

    gross_total = round_money(revenue_total - cogs_total)
    net_total = round_money(revenue_total - costs_total)
    return {
        "revenue": {
            "total": revenue_total,
            "by_product": sorted(rows.values(), key=lambda r: r["revenue"], reverse=True),
            "by_category": sorted(by_category.values(), key=lambda r: r["revenue"], reverse=True),
        },
        "costs": {
            "total": round_money(costs_total),
            "cogs": round_money(cogs_total),
            "operational": expense_totals[EXPENSE_OPERATIONAL],
            "marketing": expense_totals[EXPENSE_MARKETING],
            "administrative": expense_totals[EXPENSE_ADMINISTRATIVE],
            "transaction_fees": expense_totals[EXPENSE_TRANSACTION_FEES],
            "other": expense_totals[EXPENSE_OTHER],
            "by_product": sorted(cost_rows, key=lambda r: r["total_cost"], reverse=True),
        },
        "profit": {
            "gross": gross_total,
            "net": net_total,
            "gross_margin": percent_of(gross_total, revenue_total),
            "net_margin": percent_of(net_total, revenue_total),
            "by_product": sorted(profit_rows, key=lambda r: r["net_profit"], reverse=True),
        },
        "order_count": len(orders),
    }


def _period(start_dt, end_dt, label: str | None = None) -> dict:
    if label is None:
        if start_dt and end_dt:
            label = f"{start_dt.date().isoformat()} to {end_dt.date().isoformat()}"
        else:
            label = "All time"
    return {"start": to_utc_z(start_dt), "end": to_utc_z(end_dt), "label": label}


def get_profit_analysis(
    store,
    start=None,
    end=None,
    *,
    cost_ratio: float | None = None,
    allocation_method: str = "revenue_based",
    include_trends: bool = True,
) -> dict:
    """
    Revenue, costs and profit for a window, with per-product and
    per-category breakdowns.

    COGS is the computed per-order cost plus manually recorded cogs
    expenses. Gross profit = revenue - COGS; net profit = revenue - all
    costs. Trends compare against the preceding window of equal length and
    need both bounds; an unbounded window reports zero growth.
    """
    start_dt, end_dt = _window(start, end)
    ratio = resolve_cost_ratio(store, cost_ratio)
    analysis = _analyze(store, start_dt, end_dt, ratio, allocation_method)
    analysis["period"] = _period(start_dt, end_dt)

    trends = {"revenue_growth": 0.0, "profit_growth": 0.0, "margin_trend": "stable"}
    if include_trends and start_dt is not None and end_dt is not None and start_dt <= end_dt:
        prev_start, prev_end = shift_window(start_dt, end_dt)
        previous = _analyze(store, prev_start, prev_end, ratio, allocation_method)
        trends["revenue_growth"] = _growth(analysis["revenue"]["total"], previous["revenue"]["total"])
        trends["profit_growth"] = _growth(analysis["profit"]["net"], previous["profit"]["net"])
        margin_delta = analysis["profit"]["net_margin"] - previous["profit"]["net_margin"]
        if previous["revenue"]["total"] and margin_delta > MARGIN_TREND_TOLERANCE:
            trends["margin_trend"] = "improving"
        elif previous["revenue"]["total"] and margin_delta < -MARGIN_TREND_TOLERANCE:
            trends["margin_trend"] = "declining"
    analysis["trends"] = trends
    return analysis


def calculate_product_cost_breakdown(
    store,
    product_id: str,
    start=None,
    end=None,
    allocation_method: str = "revenue_based",
    *,
    cost_ratio: float | None = None,
) -> Optional[dict]:
    """
    Per-unit cost picture for one product: base cost plus its allocated
    share of operational, marketing and transaction-fee expenses.

    Returns None if the product does not exist.
    """
    product = store.get_product(product_id)
    if product is None:
        return None
    start_dt, end_dt = _window(start, end)
    ratio = resolve_cost_ratio(store, cost_ratio)
    products = _products_by_id(store)
    orders = completed_orders(store, start_dt, end_dt)

    rows: dict[str, dict] = {}
    for order in orders:
        row = rows.setdefault(order.product_id, {"product_id": order.product_id, "revenue": 0, "quantity": 0})
        row["revenue"] += order.total_amount
        row["quantity"] += order.quantity

    own = [o for o in orders if o.product_id == product_id]
    units = sum(o.quantity for o in own)
    if units:
        base_cost = sum(get_order_unit_cost(o, products.get(o.product_id), ratio) * o.quantity for o in own) / units
        selling_price = sum(o.total_amount for o in own) / units
    else:
        selling_price = product.display_price or 0
        if product.supplier is not None and product.supplier.base_price is not None:
            base_cost = product.supplier.base_price
        else:
            base_cost = selling_price * ratio

    shared = [
        e for e in store.get_expenses(start=start_dt, end=end_dt)
        if e.category in SHARED_EXPENSE_CATEGORIES
    ]
    share = _allocate_expenses(shared, rows, allocation_method).get(product_id, {})

    def per_unit(category: str) -> float:
        return round_money(share.get(category, 0) / units) if units else 0

    operational = per_unit(EXPENSE_OPERATIONAL)
    marketing = per_unit(EXPENSE_MARKETING)
    fees = per_unit(EXPENSE_TRANSACTION_FEES)
    total_cost = round_money(base_cost + operational + marketing + fees)
    gross = round_money(selling_price - base_cost)
    net = round_money(selling_price - total_cost)
    return {
        "product_id": product.id,
        "product_title": product.title,
        "units_sold": units,
        "base_price": round_money(base_cost),
        "transaction_fees": fees,
        "operational_cost": operational,
        "marketing_cost": marketing,
        "total_cost": total_cost,
        "selling_price": round_money(selling_price),
        "gross_profit": gross,
        "net_profit": net,
        "gross_margin": percent_of(gross, selling_price),
        "net_margin": percent_of(net, selling_price),
        "allocation_method": allocation_method,
    }


# ---------------------------------------------------------------------------
# ROI
# ---------------------------------------------------------------------------

def calculate_roi(
    store,
    *,
    campaign_name: str,
    investment,
    start=None,
    end=None,
    product_ids: Iterable[str] | None = None,
    campaign_id: str | None = None,
) -> dict:
    """
    Return on an investment over a window.

    returns = revenue of matching completed orders; roi = profit /
    investment * 100. Acquisition cost and lifetime value are per unique
    buyer. payback_period_days is None when the window produced no revenue.
    """
    investment = coerce_int(investment, "investment")
    if investment <= 0:
        raise ValidationError("investment must be greater than 0")
    start_dt, end_dt = _window(start, end)
    orders = completed_orders(store, start_dt, end_dt, product_ids)

    returns = sum(o.total_amount for o in orders)
    profit = returns - investment
    customers = {o.user_id for o in orders}

    if start_dt is not None and end_dt is not None:
        days = days_between(start_dt, end_dt)
    elif orders:
        days = days_between(min(o.created_at for o in orders), max(o.created_at for o in orders))
    else:
        days = 1
    returns_per_day = returns / days
    payback = round(investment / returns_per_day, 1) if returns_per_day > 0 else None

    return {
        "campaign_id": campaign_id,
        "campaign_name": campaign_name,
        "investment": investment,
        "returns": returns,
        "profit": profit,
        "roi": percent_of(profit, investment),
        "period": _period(start_dt, end_dt),
        "metrics": {
            "order_count": len(orders),
            "customer_count": len(customers),
            "customer_acquisition_cost": round_money(investment / len(customers)) if customers else 0,
            "customer_lifetime_value": round_money(returns / len(customers)) if customers else 0,
            "payback_period_days": payback,
        },
    }


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

def _margin_severity(margin: float, threshold: float) -> str:
    if margin < 0:
        return SEVERITY_CRITICAL
    if margin < threshold / 2:
        return SEVERITY_HIGH
    return SEVERITY_MEDIUM


def check_profit_alerts(
    store,
    *,
    start=None,
    end=None,
    threshold: float | None = None,
    cost_ratio: float | None = None,
) -> list[ProfitAlert]:
    """
    Scan a window's profit analysis and build alerts.

    Pure: nothing is stored. Pass the result to store.record_profit_alerts
    to keep it.
    """
    if threshold is None:
        threshold = store.low_margin_threshold
    analysis = get_profit_analysis(store, start, end, cost_ratio=cost_ratio)
    revenue = analysis["revenue"]["total"]
    net = analysis["profit"]["net"]
    margin = analysis["profit"]["net_margin"]
    alerts: list[ProfitAlert] = []

    def add(**kwargs):
        alerts.append(ProfitAlert(id=new_id(ProfitAlert.ID_PREFIX), **kwargs))

    if revenue > 0 and margin < threshold:
        add(
            type=ALERT_LOW_MARGIN,
            severity=_margin_severity(margin, threshold),
            title="Low profit margin",
            description=f"Net margin is {margin:.2f}%, below the {threshold:g}% threshold",
            current_value=margin,
            threshold=threshold,
            recommendation="Review pricing and cut operating costs to lift the margin.",
        )
    if net < 0:
        add(
            type=ALERT_NEGATIVE_PROFIT,
            severity=SEVERITY_CRITICAL,
            title="Negative profit",
            description=f"Net profit for the period is {net:,.0f} VND",
            current_value=net,
            threshold=0,
            recommendation="Costs exceed revenue: pause loss-making products and audit expenses.",
        )
    for row in analysis["profit"]["by_product"]:
        if row["net_margin"] < threshold:
            add(
                type=ALERT_LOW_MARGIN,
                severity=_margin_severity(row["net_margin"], threshold),
                title=f"Low margin on {row['product_title']}",
                description=f"{row['product_title']} earns a {row['net_margin']:.2f}% net margin",
                current_value=row["net_margin"],
                threshold=threshold,
                recommendation="Raise the price or negotiate a lower supplier cost for this product.",
                product_id=row["product_id"],
                product_title=row["product_title"],
            )
    if revenue > 0:
        cost_ratio_pct = percent_of(analysis["costs"]["total"], revenue)
        if cost_ratio_pct > HIGH_COST_RATIO_THRESHOLD:
            add(
                type=ALERT_HIGH_COST,
                severity=SEVERITY_HIGH,
                title="High cost ratio",
                description=f"Costs are {cost_ratio_pct:.2f}% of revenue",
                current_value=cost_ratio_pct,
                threshold=HIGH_COST_RATIO_THRESHOLD,
                recommendation="Look for cheaper suppliers and trim marketing spend with low return.",
            )
    growth = analysis["trends"]["profit_growth"]
    if growth < DECLINING_TREND_THRESHOLD:
        add(
            type=ALERT_DECLINING_TREND,
            severity=SEVERITY_HIGH if growth < DECLINING_TREND_THRESHOLD * 4 else SEVERITY_MEDIUM,
            title="Profit is declining",
            description=f"Profit changed {growth:.2f}% versus the previous period",
            current_value=growth,
            threshold=DECLINING_TREND_THRESHOLD,
            recommendation="Compare product mix with the previous period and revive top sellers.",
        )
    if alerts:
        logger.info("Profit check raised %d alert(s)", len(alerts))
    return alerts


# ---------------------------------------------------------------------------
# Forecast
# ---------------------------------------------------------------------------

def _clamp_assumptions(assumptions: dict | None) -> dict:
    clean = dict(DEFAULT_ASSUMPTIONS)
    for name, value in (assumptions or {}).items():
        if name not in DEFAULT_ASSUMPTIONS:
            raise ValidationError(f"Unknown forecast assumption: {name}")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        low, high = ASSUMPTION_BOUNDS[name]
        clean[name] = float(max(low, min(high, value)))
    return clean


def _scenario(revenue: float, costs: float) -> dict:
    profit = round_money(revenue - costs)
    return {"revenue": round_money(revenue), "profit": profit, "margin": percent_of(profit, revenue)}


def generate_profit_forecast(
    store,
    *,
    forecast_days,
    assumptions: dict | None = None,
    history_days: int = 30,
    now=None,
    cost_ratio: float | None = None,
) -> dict:
    """
    Linear forecast from the trailing history window.

    Daily revenue and cost averages are projected over forecast_days, with
    revenue scaled by growth and seasonality and costs by inflation.
    Optimistic/pessimistic scenarios swing revenue by 20%. Confidence grows
    with the share of history days that had completed orders.

    Raises:
        ValidationError: forecast_days outside 1..365
    """
    forecast_days = coerce_int(forecast_days, "forecast_days")
    if forecast_days < 1 or forecast_days > FORECAST_MAX_DAYS:
        raise ValidationError(f"forecast_days must be between 1 and {FORECAST_MAX_DAYS}")
    history_days = max(1, coerce_int(history_days, "history_days"))
    clean = _clamp_assumptions(assumptions)
    now = now or utcnow()

    history_start = now - timedelta(days=history_days)
    history = get_profit_analysis(store, history_start, now, cost_ratio=cost_ratio, include_trends=False)
    history_orders = completed_orders(store, history_start, now)

    daily_revenue = history["revenue"]["total"] / history_days
    daily_cogs = history["costs"]["cogs"] / history_days
    daily_costs = history["costs"]["total"] / history_days

    revenue_factor = (1 + clean["revenue_growth_rate"] / 100) * clean["seasonality_factor"]
    cost_factor = 1 + clean["cost_inflation_rate"] / 100
    revenue = daily_revenue * forecast_days * revenue_factor
    cogs = daily_cogs * forecast_days * cost_factor
    costs = daily_costs * forecast_days * cost_factor
    net = revenue - costs

    active_days = len({o.created_at.date() for o in history_orders})
    if history_orders:
        confidence = round(min(95, 30 + 65 * active_days / history_days))
    else:
        confidence = 10

    scenarios = {
        "optimistic": _scenario(revenue * (1 + FORECAST_SCENARIO_SWING), costs),
        "realistic": _scenario(revenue, costs),
        "pessimistic": _scenario(revenue * (1 - FORECAST_SCENARIO_SWING), costs),
    }
    realistic_margin = scenarios["realistic"]["margin"]
    if costs > 0 and revenue > 0:
        break_even_days = math.ceil(costs / (revenue / forecast_days))
    elif costs > 0:
        break_even_days = None
    else:
        break_even_days = 0
    metrics = {
        "break_even_days": break_even_days,
        "profit_per_day": round_money(net / forecast_days),
        "margin_improvement": round(scenarios["optimistic"]["margin"] - realistic_margin, 2),
        "risk_factor": percent_of(realistic_margin - scenarios["pessimistic"]["margin"], realistic_margin),
    }

    recommendations = []
    if realistic_margin < DEFAULT_LOW_MARGIN_THRESHOLD:
        recommendations.append({
            "type": "warning", "priority": "high", "title": "Low forecast margin",
            "description": "Forecast margin is under 10%. Optimize costs or raise prices.",
        })
    if scenarios["pessimistic"]["profit"] < 0:
        recommendations.append({
            "type": "critical", "priority": "critical", "title": "Loss in the pessimistic scenario",
            "description": "A weaker month would run at a loss. Prepare a contingency plan.",
        })
    if clean["revenue_growth_rate"] < 0:
        recommendations.append({
            "type": "info", "priority": "medium", "title": "Revenue is expected to shrink",
            "description": "Plan new marketing and sales initiatives.",
        })
    if metrics["risk_factor"] > 50:
        recommendations.append({
            "type": "warning", "priority": "medium", "title": "High profit volatility",
            "description": "Profit swings widely between scenarios. Diversify revenue sources.",
        })

    end = now + timedelta(days=forecast_days)
    return {
        "period": _period(now, end, label=f"Next {forecast_days} days"),
        "forecast": {
            "revenue": round_money(revenue),
            "costs": round_money(costs),
            "gross_profit": round_money(revenue - cogs),
            "net_profit": round_money(net),
            "confidence": confidence,
        },
        "assumptions": clean,
        "scenarios": scenarios,
        "metrics": metrics,
        "recommendations": recommendations,
        "history": {
            "days": history_days,
            "orders": len(history_orders),
            "active_days": active_days,
        },
    }


# ---------------------------------------------------------------------------
# Consistency check
# ---------------------------------------------------------------------------

def validate_profit_calculations(store, start=None, end=None, *, cost_ratio: float | None = None) -> dict:
    """
    Cross-check the profit analysis against the raw orders.

    Flags analysis totals that disagree with a direct recomputation, orders
    whose total differs from unit_price * quantity, and orders whose product
    no longer exists (counted at zero cost).
    """
    ratio = resolve_cost_ratio(store, cost_ratio)
    analysis = get_profit_analysis(store, start, end, cost_ratio=ratio, include_trends=False)
    orders = completed_orders(store, start, end)
    products = _products_by_id(store)
    direct = calculate_orders_profit(orders, products, ratio)

    checks = []

    def check(name, expected, actual):
        passed = abs((expected or 0) - (actual or 0)) < 0.01
        checks.append({"name": name, "expected": expected, "actual": actual, "passed": passed})

    check("revenue_total", direct["total_revenue"], analysis["revenue"]["total"])
    check("revenue_by_product_sum", analysis["revenue"]["total"],
          sum(r["revenue"] for r in analysis["revenue"]["by_product"]))
    manual_cogs = sum(e.amount for e in store.get_expenses(category=EXPENSE_COGS, start=start, end=end))
    check("cogs_total", round_money(direct["total_cost"] + manual_cogs), analysis["costs"]["cogs"])
    parts = sum(analysis["costs"][k] for k in (
        "cogs", "operational", "marketing", "administrative", "transaction_fees", "other",
    ))
    check("costs_total", round_money(parts), analysis["costs"]["total"])
    check("net_profit", round_money(analysis["revenue"]["total"] - analysis["costs"]["total"]), analysis["profit"]["net"])
    if analysis["profit"]["by_product"]:
        check("net_profit_by_product_sum", analysis["profit"]["net"],
              round_money(sum(r["net_profit"] for r in analysis["profit"]["by_product"])))

    warnings = []
    for order in orders:
        if order.total_amount != order.unit_price * order.quantity:
            warnings.append(f"Order {order.id}: total {order.total_amount:,} != {order.unit_price:,} x {order.quantity}")
        if order.product_id not in products:
            warnings.append(f"Order {order.id}: product {order.product_id} is missing (counted at zero cost)")

    return {
        "is_valid": all(c["passed"] for c in checks),
        "checks": checks,
        "warnings": warnings,
        "summary": direct,
    }
