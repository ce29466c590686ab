# Overview: Balance-funded checkout and admin refunds on top of the data store.

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..models import Order, Transaction, new_id
from ..models.activity import TARGET_ORDER
from ..models.orders import ORDER_REFUNDED
from ..models.users import TX_PURCHASE, TX_REFUND, USER_ACTIVE
from ..validation import ReferentialIntegrityError, ValidationError, coerce_amount, coerce_int, require_text
from .data_store import DataStore
from .order_status import validate_transition


logger = logging.getLogger(__name__)

MAX_CHECKOUT_ITEMS = 50


@dataclass
class CheckoutResult:
    checkout_id: str
    orders: list[Order] = field(default_factory=list)
    transaction: Optional[Transaction] = None
    total_amount: int = 0


def _price_item(store: DataStore, item: dict) -> dict:
    """Validate one cart line and resolve its unit price."""
    if not isinstance(item, dict):
        raise ValidationError("Each item must be an object")
    product_id = require_text(item.get("product_id"), "product_id")
    quantity = coerce_int(item.get("quantity", 1), "quantity")
    if quantity < 1:
        raise ValidationError("quantity must be at least 1")

    product = store.get_product(product_id)
    if product is None or product.is_deleted:
        raise ReferentialIntegrityError(f"Product {product_id} does not exist")
    if not product.is_active:
        raise ValidationError(f"{product.title} is not available for sale")

    option_id = item.get("option_id") or item.get("selected_option_id")
    if product.options:
        if not option_id:
            raise ValidationError(f"Choose an option for {product.title}")
        option = product.get_option(option_id)
        if option is None:
            raise ValidationError(f"Option {option_id} does not exist on {product.title}")
        unit_price, stock = option.price, option.stock
    else:
        option_id = None
        unit_price, stock = product.price, product.stock

    if unit_price is None or unit_price <= 0:
        raise ValidationError(f"{product.title} has no valid price")
    if stock < quantity:
        raise ValidationError(f"Not enough stock for {product.title}: {stock} left, {quantity} requested")

    return {
        "product": product,
        "product_id": product_id,
        "selected_option_id": option_id,
        "quantity": quantity,
        "unit_price": unit_price,
        "total_amount": unit_price * quantity,
    }


def place_order(store: DataStore, *, user_id: str, items: list[dict], payment_method: str = "balance") -> CheckoutResult:
    """
    Pay for a cart from the user's balance.

    The balance is debited once with a purchase transaction; one pending
    order per line is created, all sharing a checkout_id. Nothing is written
    when any line fails validation or the balance is short.

    Raises:
        ValidationError: bad cart line, unavailable product, short balance
        ReferentialIntegrityError: unknown user or product
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("Cart is empty")
    if len(items) > MAX_CHECKOUT_ITEMS:
        raise ValidationError(f"A checkout holds at most {MAX_CHECKOUT_ITEMS} items")

    with store.atomic():
        user = store.get_user(user_id)
        if user is None:
            raise ReferentialIntegrityError(f"User {user_id} not found")
        if user.status != USER_ACTIVE:
            raise ValidationError(f"Account {user.email} is {user.status}")

        lines = [_price_item(store, item) for item in items]
        total = sum(line["total_amount"] for line in lines)
        if user.balance < total:
            raise ValidationError(f"Insufficient balance: {user.balance:,} VND available, {total:,} VND required")

        checkout_id = new_id("checkout")
        _, transaction = store.adjust_balance(
            user_id,
            -total,
            tx_type=TX_PURCHASE,
            description=f"Purchase of {len(lines)} item(s)",
            metadata={"checkout_id": checkout_id},
        )

        orders = []
        for line in lines:
            orders.append(store.create_order({
                "user_id": user_id,
                "product_id": line["product_id"],
                "quantity": line["quantity"],
                "unit_price": line["unit_price"],
                "total_amount": line["total_amount"],
                "selected_option_id": line["selected_option_id"],
                "checkout_id": checkout_id,
                "payment_method": payment_method,
                "payment_id": transaction.id,
            }))

        store.update_user(user_id, {
            "total_orders": user.total_orders + len(orders),
            "total_spent": user.total_spent + total,
        })
        logger.info("Checkout %s: %d order(s), %s VND for %s", checkout_id, len(orders), total, user.email)
        return CheckoutResult(checkout_id=checkout_id, orders=orders, transaction=transaction, total_amount=total)


def refund_order(
    store: DataStore,
    order_id: str,
    *,
    admin_id: str,
    admin_name: str,
    reason: str,
    amount=None,
) -> Optional[tuple[Order, Transaction]]:
    """
    Refund an order to the buyer's balance and mark it refunded.

    Returns None when the order does not exist.

    Raises:
        OrderStatusError: the order cannot move to refunded from its status
        ValidationError: missing reason, or amount outside 1..total_amount
    """
    reason = require_text(reason, "reason")
    with store.atomic():
        order = store.get_order(order_id)
        if order is None:
            return None
        validate_transition(order.status, ORDER_REFUNDED)
        refund = order.total_amount if amount is None else coerce_amount(amount, "amount", allow_zero=False)
        if refund > order.total_amount:
            raise ValidationError(f"Refund cannot exceed the order total of {order.total_amount:,} VND")

        _, transaction = store.adjust_balance(
            order.user_id,
            refund,
            tx_type=TX_REFUND,
            description=f"Refund for order {order_id}: {reason}",
            order_id=order_id,
            admin_id=admin_id,
            admin_name=admin_name,
            metadata={"reason": reason},
        )
        store.update_order(order_id, {
            "refund_amount": refund,
            "refund_reason": reason,
            "refunded_by": admin_id,
        })
        updated = store.update_order_status(order_id, ORDER_REFUNDED, admin_id=admin_id, admin_name=admin_name)
        store.log_activity(
            action="refund_order",
            target_type=TARGET_ORDER,
            target_id=order_id,
            description=f"Refunded {refund:,} VND for order {order_id}: {reason}",
            admin_id=admin_id,
            admin_name=admin_name,
            metadata={"transaction_id": transaction.id, "amount": refund},
        )
        return updated, transaction
