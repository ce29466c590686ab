# Overview: Flask CLI command groups for store maintenance, admin workflows and profit reports.

# backend/shopdata/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: python -m flask --app shopdata <group> <command> [options]
# - Backend is chosen by SHOPDATA_SNAPSHOT_BACKEND (file | sql | memory).
#
# Store bootstrap/inspection:
# - python -m flask --app shopdata store init
#   Create snapshot storage (tables for the sql backend) and write every collection.
# - python -m flask --app shopdata store flush
#   Write all collections now instead of waiting for the debounce timer.
# - python -m flask --app shopdata store stats
#   Record counts per collection.
# - python -m flask --app shopdata store activity --limit 20
#   Most recent admin/system activity.
#
# Users:
# - python -m flask --app shopdata users list
# - python -m flask --app shopdata users credit --email a@b.vn --amount 50000 --description "Manual top-up"
#   Credit (or, with a negative amount, debit) a balance with a ledger entry.
#
# Top-up requests:
# - python -m flask --app shopdata topups list [--all]
# - python -m flask --app shopdata topups approve <request-id> [--amount 40000] [--notes "..."]
# - python -m flask --app shopdata topups reject <request-id> --reason "Transfer not found"
#
# Orders:
# - python -m flask --app shopdata orders stats [--start 2024-01-01 --end 2024-01-31]
# - python -m flask --app shopdata orders set-status <order-id> completed [--notes "..."]
#
# Categories:
# - python -m flask --app shopdata categories list
# - python -m flask --app shopdata categories delete <category-id>
#   Products move to the uncategorized category.
#
# Expenses:
# - python -m flask --app shopdata expenses add --category marketing --amount 500000 --description "Ads" [--date 2024-01-15]
# - python -m flask --app shopdata expenses list [--category marketing] [--start ... --end ...]
#
# Profit analytics:
# - python -m flask --app shopdata profit analyze [--start ... --end ...]
# - python -m flask --app shopdata profit alerts [--threshold 10] [--save]
# - python -m flask --app shopdata profit forecast --days 30 [--growth 5 --inflation 2 --seasonality 1]
# - python -m flask --app shopdata profit roi --name "Tet campaign" --investment 2000000 --start ... --end ... [--product <id>]
# - python -m flask --app shopdata profit validate [--start ... --end ...]

import click
from flask.cli import with_appcontext

from . import get_store
from .extensions import db
from .models.activity import SYSTEM_ACTOR_ID
from .models.finance import EXPENSE_CATEGORIES, RECURRING_PERIODS
from .models.orders import ORDER_STATUSES
from .services import profit_service, reporting_service
from .services.order_status import get_available_transitions
from .services.topup_service import ACTION_APPROVE, ACTION_REJECT, process_topup_request
from .time_utils import to_utc_z, utcnow
from .validation import ReferentialIntegrityError, ValidationError


CLI_ADMIN_ID = SYSTEM_ACTOR_ID
CLI_ADMIN_NAME = "CLI"


def _admin_options(func):
    func = click.option('--admin-name', default=CLI_ADMIN_NAME, help='Name recorded in the activity log')(func)
    func = click.option('--admin-id', default=CLI_ADMIN_ID, help='Admin id recorded in the activity log')(func)
    return func


def _window_options(func):
    func = click.option('--end', help='Window end (ISO date or datetime, inclusive)')(func)
    func = click.option('--start', help='Window start (ISO date or datetime)')(func)
    return func


def _money(value) -> str:
    return f"{value:,.0f} VND"


# =============================================================================
# STORE COMMANDS
# =============================================================================

@click.group('store')
def store_group():
    """Snapshot storage bootstrap and inspection."""


@store_group.command('init')
@with_appcontext
def init_store():
    """
    Prepare snapshot storage and write every collection.

    Idempotent: safe to run against existing data. The catalog was already
    seeded on load if the product collection was empty.
    """
    from flask import current_app

    click.echo("START Initializing shopdata storage...")
    if current_app.config.get("SNAPSHOT_BACKEND") == "sql":
        db.create_all()
        click.echo("PASS Snapshot table ready")

    store = get_store()
    store.persist_all()
    counts = store.stats()
    click.echo(f"PASS Wrote {len(counts)} collections ({sum(counts.values())} records)")


@store_group.command('flush')
@with_appcontext
def flush_store():
    """Write all collections immediately."""
    try:
        get_store().persist_all()
    except Exception as e:
        click.echo(f"FAIL Snapshot write failed: {str(e)}")
        return
    click.echo("PASS Snapshot written")


@store_group.command('stats')
@with_appcontext
def store_stats():
    """Record counts per collection."""
    counts = get_store().stats()
    click.echo("\n" + "="*40)
    click.echo(f"{'Collection':<20} {'Records':>10}")
    click.echo("="*40)
    for name, count in counts.items():
        click.echo(f"{name:<20} {count:>10}")
    click.echo("="*40 + "\n")


@store_group.command('activity')
@click.option('--limit', type=int, default=20, show_default=True)
@with_appcontext
def store_activity(limit):
    """Most recent activity, newest first."""
    entries = get_store().get_recent_activity(limit)
    if not entries:
        click.echo("No activity recorded.")
        return
    for entry in entries:
        click.echo(f"{to_utc_z(entry.created_at)}  {entry.admin_name:<12} {entry.action:<28} {entry.description}")


# =============================================================================
# USER COMMANDS
# =============================================================================

@click.group('users')
def users_group():
    """User inspection and balance adjustments."""


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with balance and status."""
    users = sorted(get_store().get_users(), key=lambda u: u.created_at)
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<22} {'Email':<32} {'Role':<7} {'Status':<10} {'Balance':>15} {'Orders':>7}")
    click.echo("="*100)
    for user in users:
        click.echo(
            f"{user.id:<22} {user.email:<32} {user.role:<7} {user.status:<10} "
            f"{user.balance:>15,} {user.total_orders:>7}"
        )
    click.echo("="*100 + "\n")


@users_group.command('credit')
@click.option('--user-id', help='User id')
@click.option('--email', help='User email (used when --user-id is omitted)')
@click.option('--amount', type=int, required=True, help='VND; negative to debit')
@click.option('--description', default='Manual adjustment', show_default=True)
@_admin_options
@with_appcontext
def credit_user(user_id, email, amount, description, admin_id, admin_name):
    """Adjust a user's balance through the ledger."""
    store = get_store()
    user = store.get_user(user_id) if user_id else store.get_user_by_email(email or "")
    if user is None:
        click.echo(f"FAIL User {user_id or email} not found")
        return
    try:
        user, tx = store.adjust_balance(
            user.id,
            amount,
            description=description,
            admin_id=admin_id,
            admin_name=admin_name,
        )
    except (ValidationError, ReferentialIntegrityError) as e:
        click.echo(f"FAIL {str(e)}")
        return
    click.echo(f"PASS {user.email}: {tx.type} {_money(tx.amount)}, balance now {_money(user.balance)}")


# =============================================================================
# TOP-UP COMMANDS
# =============================================================================

@click.group('topups')
def topups_group():
    """Deposit request review."""


@topups_group.command('list')
@click.option('--all', 'show_all', is_flag=True, help='Include processed requests')
@with_appcontext
def list_topups(show_all):
    """Pending top-up requests (newest first)."""
    store = get_store()
    requests = store.get_topup_requests() if show_all else store.get_pending_topup_requests()
    if not requests:
        click.echo("No top-up requests found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<24} {'Email':<32} {'Amount':>12} {'Status':<10} {'Created'}")
    click.echo("="*100)
    for req in requests:
        click.echo(
            f"{req.id:<24} {req.user_email:<32} {req.requested_amount:>12,} {req.status:<10} "
            f"{to_utc_z(req.created_at)}"
        )
    click.echo("="*100 + "\n")


@topups_group.command('approve')
@click.argument('request_id')
@click.option('--amount', type=int, help='Credit a different amount than requested')
@click.option('--notes', help='Admin notes kept on the request')
@_admin_options
@with_appcontext
def approve_topup(request_id, amount, notes, admin_id, admin_name):
    """Approve a pending request and credit the user."""
    try:
        result = process_topup_request(
            get_store(),
            request_id,
            ACTION_APPROVE,
            admin_id=admin_id,
            admin_name=admin_name,
            approved_amount=amount,
            admin_notes=notes,
        )
    except (ValidationError, ReferentialIntegrityError) as e:
        click.echo(f"FAIL {str(e)}")
        return
    if result is None:
        click.echo(f"FAIL Request {request_id} not found or already processed")
        return
    click.echo(
        f"PASS Approved {request_id}: credited {_money(result.request.approved_amount)} "
        f"to {result.request.user_email} (tx {result.transaction.id})"
    )


@topups_group.command('reject')
@click.argument('request_id')
@click.option('--reason', required=True, help='Shown to the customer')
@click.option('--notes', help='Admin notes kept on the request')
@_admin_options
@with_appcontext
def reject_topup(request_id, reason, notes, admin_id, admin_name):
    """Reject a pending request. Balances are untouched."""
    try:
        result = process_topup_request(
            get_store(),
            request_id,
            ACTION_REJECT,
            admin_id=admin_id,
            admin_name=admin_name,
            admin_notes=notes,
            rejection_reason=reason,
        )
    except ValidationError as e:
        click.echo(f"FAIL {str(e)}")
        return
    if result is None:
        click.echo(f"FAIL Request {request_id} not found or already processed")
        return
    click.echo(f"PASS Rejected {request_id}")


# =============================================================================
# ORDER COMMANDS
# =============================================================================

@click.group('orders')
def orders_group():
    """Order statistics and status changes."""


@orders_group.command('stats')
@_window_options
@with_appcontext
def order_stats(start, end):
    """Counts, revenue and profit for the window."""
    try:
        stats = reporting_service.get_order_stats(get_store(), start, end)
    except ValidationError as e:
        click.echo(f"FAIL {str(e)}")
        return

    click.echo(f"Orders:              {stats['total_orders']}")
    for status, count in stats['by_status'].items():
        click.echo(f"  {status:<18} {count}")
    click.echo(f"Revenue:             {_money(stats['total_revenue'])}")
    click.echo(f"Average order value: {_money(stats['average_order_value'])}")
    click.echo(f"Conversion rate:     {stats['conversion_rate']}%")
    click.echo(f"Profit:              {_money(stats['profit']['total_profit'])} ({stats['profit']['average_margin']}%)")
    for row in stats['top_products']['by_revenue']:
        click.echo(f"  {row['product_title']:<30} {row['orders']:>5} orders {_money(row['revenue']):>18}")


@orders_group.command('set-status')
@click.argument('order_id')
@click.argument('status', type=click.Choice(ORDER_STATUSES))
@click.option('--notes', help='Admin notes kept on the order')
@_admin_options
@with_appcontext
def set_order_status(order_id, status, notes, admin_id, admin_name):
    """Move an order along its lifecycle."""
    try:
        order = get_store().update_order_status(
            order_id, status, admin_id=admin_id, admin_name=admin_name, admin_notes=notes,
        )
    except ValidationError as e:
        click.echo(f"FAIL {str(e)}")
        return
    if order is None:
        click.echo(f"FAIL Order {order_id} not found")
        return
    allowed = get_available_transitions(order.status)
    click.echo(f"PASS Order {order_id} is now {order.status} (next: {', '.join(allowed) or 'none'})")


# =============================================================================
# CATEGORY COMMANDS
# =============================================================================

@click.group('categories')
def categories_group():
    """Catalog category maintenance."""


@categories_group.command('list')
@with_appcontext
def list_categories():
    """All categories in display order with product counts."""
    store = get_store()
    products = store.get_products()
    click.echo(f"{'ID':<26} {'Slug':<20} {'Name':<24} {'Order':>6} {'Products':>9} Active")
    for category in store.get_all_categories():
        count = sum(1 for p in products if p.category == category.slug)
        active_str = "Yes" if category.is_active else "No"
        click.echo(
            f"{category.id:<26} {category.slug:<20} {category.name:<24} "
            f"{category.sort_order:>6} {count:>9} {active_str}"
        )


@categories_group.command('delete')
@click.argument('category_id')
@_admin_options
@with_appcontext
def delete_category_cli(category_id, admin_id, admin_name):
    """Delete a category; its products move to uncategorized."""
    try:
        deleted = get_store().delete_category(category_id, admin_id=admin_id, admin_name=admin_name)
    except ReferentialIntegrityError as e:
        click.echo(f"FAIL {str(e)}")
        return
    if not deleted:
        click.echo(f"FAIL Category {category_id} not found")
        return
    click.echo(f"PASS Deleted category {category_id}")


# =============================================================================
# EXPENSE COMMANDS
# =============================================================================

@click.group('expenses')
def expenses_group():
    """Operating expense records."""


@expenses_group.command('add')
@click.option('--category', type=click.Choice(EXPENSE_CATEGORIES), required=True)
@click.option('--amount', type=int, required=True, help='VND')
@click.option('--description', required=True)
@click.option('--date', 'spent_on', help='ISO date; defaults to now')
@click.option('--recurring', type=click.Choice(sorted(RECURRING_PERIODS)), help='Recurring period')
@click.option('--product', 'product_ids', multiple=True, help='Allocate to product id (repeatable)')
@_admin_options
@with_appcontext
def add_expense(category, amount, description, spent_on, recurring, product_ids, admin_id, admin_name):
    """Record an expense."""
    patch = {
        "category": category,
        "amount": amount,
        "description": description,
        "date": spent_on or utcnow(),
        "is_recurring": bool(recurring),
        "recurring_period": recurring,
        "allocated_to_products": list(product_ids),
    }
    try:
        expense = get_store().create_expense(patch, admin_id=admin_id, admin_name=admin_name)
    except (ValidationError, ReferentialIntegrityError) as e:
        click.echo(f"FAIL {str(e)}")
        return
    click.echo(f"PASS Recorded {expense.category} expense {expense.id}: {_money(expense.amount)}")


@expenses_group.command('list')
@click.option('--category', type=click.Choice(EXPENSE_CATEGORIES))
@_window_options
@with_appcontext
def list_expenses(category, start, end):
    """Expenses, newest first."""
    try:
        expenses = get_store().get_expenses(category=category, start=start, end=end)
    except ValidationError as e:
        click.echo(f"FAIL {str(e)}")
        return
    if not expenses:
        click.echo("No expenses found.")
        return
    for expense in expenses:
        click.echo(
            f"{expense.date.date().isoformat()}  {expense.category:<17} {expense.amount:>14,}  {expense.description}"
        )
    click.echo(f"Total: {_money(sum(e.amount for e in expenses))}")


# =============================================================================
# PROFIT COMMANDS
# =============================================================================

@click.group('profit')
def profit_group():
    """Profit analysis, alerts, forecasts and ROI."""


@profit_group.command('analyze')
@_window_options
@with_appcontext
def analyze_profit(start, end):
    """Revenue, costs and profit for the window."""
    try:
        analysis = profit_service.get_profit_analysis(get_store(), start, end)
    except ValidationError as e:
        click.echo(f"FAIL {str(e)}")
        return

    revenue, costs, profit, trends = analysis["revenue"], analysis["costs"], analysis["profit"], analysis["trends"]
    click.echo(f"Period:       {analysis['period']['label']}")
    click.echo(f"Revenue:      {_money(revenue['total'])}")
    click.echo(f"COGS:         {_money(costs['cogs'])}")
    click.echo(f"Total costs:  {_money(costs['total'])}")
    click.echo(f"Gross profit: {_money(profit['gross'])} ({profit['gross_margin']}%)")
    click.echo(f"Net profit:   {_money(profit['net'])} ({profit['net_margin']}%)")
    click.echo(
        f"Trend:        revenue {trends['revenue_growth']:+}%, profit {trends['profit_growth']:+}%, "
        f"margin {trends['margin_trend']}"
    )
    for row in profit["by_product"]:
        click.echo(f"  {row['product_title']:<30} {_money(row['net_profit']):>18} {row['net_margin']:>7}%")


@profit_group.command('alerts')
@_window_options
@click.option('--threshold', type=float, help='Low margin threshold (%)')
@click.option('--save', is_flag=True, help='Store the alerts')
@with_appcontext
def profit_alerts(start, end, threshold, save):
    """Check the window for margin and cost problems."""
    store = get_store()
    try:
        alerts = profit_service.check_profit_alerts(store, start=start, end=end, threshold=threshold)
    except ValidationError as e:
        click.echo(f"FAIL {str(e)}")
        return
    if not alerts:
        click.echo("PASS No profit alerts")
        return
    for alert in alerts:
        click.echo(f"[{alert.severity.upper():<8}] {alert.title}: {alert.description}")
        click.echo(f"           {alert.recommendation}")
    if save:
        store.record_profit_alerts(alerts)
        click.echo(f"PASS Saved {len(alerts)} alert(s)")


@profit_group.command('forecast')
@click.option('--days', type=int, default=30, show_default=True)
@click.option('--growth', type=float, help='Revenue growth rate (%)')
@click.option('--inflation', type=float, help='Cost inflation rate (%)')
@click.option('--seasonality', type=float, help='Seasonality factor')
@click.option('--history-days', type=int, default=30, show_default=True)
@with_appcontext
def profit_forecast(days, growth, inflation, seasonality, history_days):
    """Project revenue and profit from recent history."""
    assumptions = {}
    if growth is not None:
        assumptions["revenue_growth_rate"] = growth
    if inflation is not None:
        assumptions["cost_inflation_rate"] = inflation
    if seasonality is not None:
        assumptions["seasonality_factor"] = seasonality
    try:
        result = profit_service.generate_profit_forecast(
            get_store(), forecast_days=days, assumptions=assumptions, history_days=history_days,
        )
    except ValidationError as e:
        click.echo(f"FAIL {str(e)}")
        return

    forecast = result["forecast"]
    click.echo(f"{result['period']['label']} (confidence {forecast['confidence']}%)")
    click.echo(f"Revenue:    {_money(forecast['revenue'])}")
    click.echo(f"Costs:      {_money(forecast['costs'])}")
    click.echo(f"Net profit: {_money(forecast['net_profit'])}")
    for name, scenario in result["scenarios"].items():
        click.echo(f"  {name:<12} {_money(scenario['profit']):>18} {scenario['margin']:>7}%")
    for rec in result["recommendations"]:
        click.echo(f"- [{rec['priority']}] {rec['title']}: {rec['description']}")


@profit_group.command('roi')
@click.option('--name', 'campaign_name', required=True)
@click.option('--investment', type=int, required=True, help='VND')
@_window_options
@click.option('--product', 'product_ids', multiple=True, help='Limit to product id (repeatable)')
@with_appcontext
def profit_roi(campaign_name, investment, start, end, product_ids):
    """Return on a campaign investment."""
    try:
        result = profit_service.calculate_roi(
            get_store(),
            campaign_name=campaign_name,
            investment=investment,
            start=start,
            end=end,
            product_ids=list(product_ids) or None,
        )
    except ValidationError as e:
        click.echo(f"FAIL {str(e)}")
        return
    metrics = result["metrics"]
    payback = metrics["payback_period_days"]
    click.echo(f"{campaign_name}: ROI {result['roi']}%")
    click.echo(f"Returns:  {_money(result['returns'])}")
    click.echo(f"Profit:   {_money(result['profit'])}")
    click.echo(f"Customers: {metrics['customer_count']} (CAC {_money(metrics['customer_acquisition_cost'])})")
    click.echo(f"Payback:  {'never' if payback is None else f'{payback} days'}")


@profit_group.command('validate')
@_window_options
@with_appcontext
def profit_validate(start, end):
    """Cross-check the profit analysis against raw orders."""
    try:
        report = profit_service.validate_profit_calculations(get_store(), start, end)
    except ValidationError as e:
        click.echo(f"FAIL {str(e)}")
        return
    for check in report["checks"]:
        status = "PASS" if check["passed"] else "FAIL"
        click.echo(f"{status} {check['name']}: expected {check['expected']}, got {check['actual']}")
    for warning in report["warnings"]:
        click.echo(f"WARN {warning}")
    click.echo("PASS Profit calculations consistent" if report["is_valid"] else "FAIL Profit calculations inconsistent")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(store_group)
    app.cli.add_command(users_group)
    app.cli.add_command(topups_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(categories_group)
    app.cli.add_command(expenses_group)
    app.cli.add_command(profit_group)
