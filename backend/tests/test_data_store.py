from datetime import datetime

import pytest

from shopdata.services import event_bus as events
from shopdata.validation import ConflictError, ReferentialIntegrityError, ValidationError


class TestUsers:
    def test_email_is_normalized_and_unique(self, store):
        user = store.create_user({"email": "  Mixed@Example.VN "})
        assert user.email == "mixed@example.vn"
        with pytest.raises(ConflictError):
            store.create_user({"email": "mixed@example.vn"})

    def test_unknown_field_is_rejected(self, store):
        with pytest.raises(ValidationError):
            store.create_user({"email": "a@b.vn", "password": "x"})

    def test_opening_balance_is_booked_in_the_ledger(self, store):
        user = store.create_user({"email": "a@b.vn", "balance": 30_000})
        (tx,) = store.get_user_transactions(user.id)
        assert tx.type == "credit"
        assert tx.amount == 30_000
        assert store.reconcile_balance(user.id)["consistent"] is True

    def test_getters_return_copies(self, store, user):
        copy = store.get_user(user.id)
        copy.balance = 999
        assert store.get_user(user.id).balance == 0

    def test_update_missing_user_returns_none(self, store):
        assert store.update_user("user-missing", {"name": "x"}) is None

    def test_direct_balance_write_emits_balance_event(self, store, user):
        seen = []
        store.subscribe(lambda e: seen.append(e) if e.type == events.USER_BALANCE_CHANGED else None)

        store.update_user(user.id, {"balance": 5_000}, admin_id="admin-1", admin_name="Admin")

        assert seen[0].payload == {"user_id": user.id, "old_balance": 0, "new_balance": 5_000}
        assert store.get_recent_activity(1)[0].action == "credit_user"


class TestBalance:
    def test_balance_equals_sum_of_transactions(self, store, user):
        store.adjust_balance(user.id, 100_000)
        store.adjust_balance(user.id, -30_000)
        store.adjust_balance(user.id, 5_000, tx_type="refund")

        total = sum(t.amount for t in store.get_user_transactions(user.id))
        assert store.get_user(user.id).balance == total == 75_000

    def test_overdraft_is_rejected_without_side_effects(self, store, user):
        store.adjust_balance(user.id, 10_000)
        with pytest.raises(ValidationError):
            store.adjust_balance(user.id, -20_000)
        assert store.get_user(user.id).balance == 10_000
        assert len(store.get_user_transactions(user.id)) == 1

    def test_sign_must_match_transaction_type(self, store, user):
        with pytest.raises(ValidationError):
            store.adjust_balance(user.id, 10_000, tx_type="purchase")

    def test_unknown_user_is_a_referential_error(self, store):
        with pytest.raises(ReferentialIntegrityError):
            store.adjust_balance("user-missing", 10_000)

    def test_admin_adjustment_is_logged(self, store, user):
        store.adjust_balance(user.id, 10_000, admin_id="admin-1", admin_name="Admin")
        entry = store.get_recent_activity(1)[0]
        assert entry.action == "credit_user"
        assert entry.admin_name == "Admin"

    def test_create_transaction_records_without_moving_balance(self, store, user):
        tx = store.create_transaction({"user_id": user.id, "type": "debit", "amount": -1_000})
        assert tx.amount == -1_000
        assert store.get_user(user.id).balance == 0
        assert store.reconcile_balance(user.id)["difference"] == 1_000


class TestProducts:
    def test_product_needs_price_or_options(self, store):
        with pytest.raises(ValidationError):
            store.create_product({"title": "Free?"})

    def test_unknown_category_is_rejected(self, store):
        with pytest.raises(ReferentialIntegrityError):
            store.create_product({"title": "X", "price": 1_000, "category": "nope"})

    def test_product_defaults_to_uncategorized(self, store):
        product = store.create_product({"title": "X", "price": 1_000})
        assert product.category == "uncategorized"

    def test_tracked_field_changes_are_logged(self, store, product):
        store.update_product(product.id, {"price": 160_000}, admin_id="admin-1", admin_name="Admin")
        entry = store.get_recent_activity(1)[0]
        assert entry.action == "update_product_price"
        assert entry.metadata == {"field": "price", "old": 150_000, "new": 160_000}

    def test_soft_delete_hides_product_but_keeps_it_resolvable(self, store, product):
        assert store.delete_product(product.id) is True
        assert store.get_products() == []
        assert store.get_product(product.id).is_deleted
        assert [p.id for p in store.get_deleted_products()] == [product.id]

        restored = store.restore_product(product.id)
        assert restored.deleted_at is None

    def test_open_order_blocks_delete(self, store, product):
        store.create_order({"user_id": "u1", "product_id": product.id})
        with pytest.raises(ReferentialIntegrityError):
            store.delete_product(product.id)

    def test_purge_blocked_by_any_order(self, store, product):
        order = store.create_order({"user_id": "u1", "product_id": product.id})
        store.update_order_status(order.id, "cancelled")
        with pytest.raises(ReferentialIntegrityError):
            store.purge_product(product.id)

    def test_purge_removes_product_from_featured_lists(self, store, category, product):
        store.update_category(category.id, {"featured_product_ids": [product.id]})
        assert store.purge_product(product.id) is True
        assert store.get_product(product.id) is None
        assert store.get_category(category.id).featured_product_ids == []

    def test_restore_rehomes_product_whose_category_is_gone(self, store, category, product):
        store.delete_product(product.id)
        store.delete_category(category.id)
        restored = store.restore_product(product.id)
        assert restored.category == "uncategorized"


class TestOrders:
    def test_price_defaults_from_option(self, store, option_product):
        order = store.create_order({
            "user_id": "u1", "product_id": option_product.id,
            "selected_option_id": "1month", "quantity": 2,
        })
        assert order.unit_price == 79_000
        assert order.total_amount == 158_000
        assert order.status == "pending"

    def test_unknown_option_is_rejected(self, store, option_product):
        with pytest.raises(ValidationError):
            store.create_order({"user_id": "u1", "product_id": option_product.id, "selected_option_id": "2y"})

    def test_unknown_product_is_rejected(self, store):
        with pytest.raises(ReferentialIntegrityError):
            store.create_order({"user_id": "u1", "product_id": "product-missing"})

    def test_refund_amount_cannot_exceed_total(self, store, product):
        order = store.create_order({"user_id": "u1", "product_id": product.id})
        with pytest.raises(ValidationError):
            store.update_order(order.id, {"refund_amount": 200_000})

    def test_orders_by_user_newest_first(self, store, product):
        first = store.create_order({"user_id": "u1", "product_id": product.id, "created_at": "2024-01-01T00:00:00Z"})
        second = store.create_order({"user_id": "u1", "product_id": product.id, "created_at": "2024-02-01T00:00:00Z"})
        store.create_order({"user_id": "u2", "product_id": product.id})
        assert [o.id for o in store.get_orders_by_user("u1")] == [second.id, first.id]


class TestActivity:
    def test_activity_is_newest_first_and_capped(self, backend):
        from shopdata.services.data_store import DataStore

        store = DataStore(backend, activity_limit=3, seed_catalog=False)
        for i in range(5):
            store.log_activity(action=f"step_{i}", target_type="system", description=str(i))

        actions = [a.action for a in store.get_recent_activity(10)]
        assert actions == ["step_4", "step_3", "step_2"]
        store.shutdown()

    def test_system_actor_fills_missing_admin(self, store):
        entry = store.log_activity(action="noop", target_type="system", description="")
        assert (entry.admin_id, entry.admin_name) == ("system", "System")


class TestExpenses:
    def test_recurring_expense_needs_period(self, store):
        with pytest.raises(ValidationError):
            store.create_expense({
                "category": "operational", "description": "Hosting", "amount": 200_000,
                "date": "2024-01-01", "is_recurring": True,
            })

    def test_expenses_filtered_by_window_and_category(self, store):
        for day, category in ((1, "marketing"), (15, "marketing"), (20, "operational")):
            store.create_expense({
                "category": category, "description": f"day {day}", "amount": 1_000,
                "date": datetime(2024, 1, day, 12),
            })

        in_window = store.get_expenses(category="marketing", start="2024-01-10", end="2024-01-31")
        assert [e.description for e in in_window] == ["day 15"]
        assert [e.description for e in store.get_expenses()] == ["day 20", "day 15", "day 1"]

    def test_bare_end_date_covers_whole_day(self, store):
        store.create_expense({
            "category": "other", "description": "late", "amount": 1_000, "date": "2024-01-31T23:30:00Z",
        })
        assert len(store.get_expenses(end="2024-01-31")) == 1

    def test_allocated_products_must_exist(self, store):
        with pytest.raises(ReferentialIntegrityError):
            store.create_expense({
                "category": "marketing", "description": "Ads", "amount": 1_000,
                "date": "2024-01-01", "allocated_to_products": ["product-missing"],
            })

    def test_delete_expense_emits_event(self, store):
        expense = store.create_expense({"category": "other", "description": "x", "amount": 1, "date": "2024-01-01"})
        seen = []
        store.subscribe(seen.append)
        assert store.delete_expense(expense.id) is True
        assert seen[-1].type == events.EXPENSE_DELETED
        assert store.delete_expense(expense.id) is False


class TestAlerts:
    def test_record_mark_and_resolve(self, store):
        (alert,) = store.record_profit_alerts([{
            "type": "low_margin", "severity": "medium", "title": "Low", "description": "d",
            "current_value": 5, "threshold": 10, "recommendation": "r",
        }])
        assert store.get_profit_alerts(unread_only=True)[0].id == alert.id

        store.mark_alert_read(alert.id)
        assert store.get_profit_alerts(unread_only=True) == []

        store.resolve_alert(alert.id)
        assert store.get_profit_alerts(include_resolved=False) == []
        assert store.resolve_alert("alert-missing") is False

    def test_invalid_alert_type_is_rejected(self, store):
        with pytest.raises(ValidationError):
            store.record_profit_alerts([{
                "type": "weird", "severity": "low", "title": "t", "description": "d",
                "current_value": 0, "threshold": 0, "recommendation": "",
            }])


class TestListings:
    def test_active_products_exclude_hidden_ones(self, store, product, option_product):
        store.update_product(option_product.id, {"is_active": False})
        assert [p.id for p in store.get_active_products()] == [product.id]

    def test_recent_users_limit(self, store):
        first = store.create_user({"email": "first@example.vn"})
        second = store.create_user({"email": "second@example.vn"})
        assert len(store.get_recent_users(1)) == 1
        assert {u.id for u in store.get_recent_users()} == {first.id, second.id}

    def test_transactions_limit(self, store, user):
        for amount in (10_000, 20_000, 30_000):
            store.adjust_balance(user.id, amount)
        assert len(store.get_transactions()) == 3
        assert len(store.get_transactions(limit=2)) == 2

    def test_user_topup_requests(self, store, user):
        request = store.create_topup_request({"user_id": user.id, "requested_amount": 20_000})
        assert [r.id for r in store.get_user_topup_requests(user.id)] == [request.id]
        assert store.get_user_topup_requests("user-other") == []

    def test_get_expense(self, store):
        expense = store.create_expense({
            "category": "other", "description": "Stamps", "amount": 5_000, "date": "2026-03-01",
        })
        assert store.get_expense(expense.id).description == "Stamps"
        assert store.get_expense("exp-missing") is None
