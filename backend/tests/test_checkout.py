import pytest

from shopdata.services.checkout_service import place_order, refund_order
from shopdata.services.order_status import OrderStatusError
from shopdata.validation import ReferentialIntegrityError, ValidationError

from conftest import ADMIN_ID, ADMIN_NAME


def test_checkout_debits_once_and_creates_orders(store, funded_user, product, option_product):
    result = place_order(store, user_id=funded_user.id, items=[
        {"product_id": product.id, "quantity": 2},
        {"product_id": option_product.id, "option_id": "1month"},
    ])

    assert result.total_amount == 2 * 150_000 + 79_000
    assert len(result.orders) == 2
    assert {o.checkout_id for o in result.orders} == {result.checkout_id}
    assert all(o.status == "pending" for o in result.orders)
    assert all(o.payment_id == result.transaction.id for o in result.orders)
    assert result.transaction.type == "purchase"
    assert result.transaction.amount == -result.total_amount

    user = store.get_user(funded_user.id)
    assert user.balance == 1_000_000 - result.total_amount
    assert user.total_orders == 2
    assert user.total_spent == result.total_amount
    assert store.reconcile_balance(user.id)["consistent"] is True


def test_insufficient_balance_writes_nothing(store, user, product):
    with pytest.raises(ValidationError):
        place_order(store, user_id=user.id, items=[{"product_id": product.id}])
    assert store.get_all_orders() == []
    assert store.get_user_transactions(user.id) == []


def test_option_required_for_products_with_options(store, funded_user, option_product):
    with pytest.raises(ValidationError):
        place_order(store, user_id=funded_user.id, items=[{"product_id": option_product.id}])


def test_stock_is_checked(store, funded_user, option_product):
    with pytest.raises(ValidationError):
        place_order(store, user_id=funded_user.id, items=[
            {"product_id": option_product.id, "option_id": "1year", "quantity": 3},
        ])


def test_inactive_or_deleted_products_cannot_be_bought(store, funded_user, product):
    store.update_product(product.id, {"is_active": False})
    with pytest.raises(ValidationError):
        place_order(store, user_id=funded_user.id, items=[{"product_id": product.id}])

    store.delete_product(product.id)
    with pytest.raises(ReferentialIntegrityError):
        place_order(store, user_id=funded_user.id, items=[{"product_id": product.id}])


def test_empty_cart_is_rejected(store, funded_user):
    with pytest.raises(ValidationError):
        place_order(store, user_id=funded_user.id, items=[])


def test_suspended_user_cannot_check_out(store, funded_user, product):
    store.update_user(funded_user.id, {"status": "suspended"})
    with pytest.raises(ValidationError):
        place_order(store, user_id=funded_user.id, items=[{"product_id": product.id}])


class TestRefunds:
    def _completed_order(self, store, funded_user, product):
        result = place_order(store, user_id=funded_user.id, items=[{"product_id": product.id}])
        order = result.orders[0]
        store.update_order_status(order.id, "processing")
        store.update_order_status(order.id, "completed")
        return order

    def test_full_refund_credits_balance(self, store, funded_user, product):
        order = self._completed_order(store, funded_user, product)

        refunded, tx = refund_order(store, order.id, admin_id=ADMIN_ID, admin_name=ADMIN_NAME, reason="Key invalid")

        assert refunded.status == "refunded"
        assert refunded.refund_amount == 150_000
        assert refunded.refund_reason == "Key invalid"
        assert refunded.refunded_at is not None
        assert tx.type == "refund" and tx.order_id == order.id
        assert store.get_user(funded_user.id).balance == 1_000_000

    def test_partial_refund_bounds(self, store, funded_user, product):
        order = self._completed_order(store, funded_user, product)
        with pytest.raises(ValidationError):
            refund_order(store, order.id, admin_id=ADMIN_ID, admin_name=ADMIN_NAME, reason="x", amount=200_000)

        refunded, tx = refund_order(store, order.id, admin_id=ADMIN_ID, admin_name=ADMIN_NAME, reason="x", amount=50_000)
        assert tx.amount == 50_000
        assert refunded.refund_amount == 50_000

    def test_pending_order_cannot_be_refunded(self, store, funded_user, product):
        result = place_order(store, user_id=funded_user.id, items=[{"product_id": product.id}])
        with pytest.raises(OrderStatusError):
            refund_order(store, result.orders[0].id, admin_id=ADMIN_ID, admin_name=ADMIN_NAME, reason="x")

    def test_missing_order_returns_none(self, store):
        assert refund_order(store, "ord-missing", admin_id=ADMIN_ID, admin_name=ADMIN_NAME, reason="x") is None
