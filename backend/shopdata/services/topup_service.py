# Overview: Deposit request approval workflow (pending -> approved | rejected | cancelled).

"""
Top-up Workflow

STATE MACHINE:
    PENDING -> APPROVED   (admin; credits the user once)
    PENDING -> REJECTED   (admin; reason required, balance untouched)
    PENDING -> CANCELLED  (owner withdraws the request)

Every non-pending status is terminal. Processing a request that is missing
or no longer pending returns None so callers can report "already processed".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..models import TopupRequest, Transaction
from ..models.activity import TARGET_TOPUP_REQUEST
from ..models.topups import TOPUP_APPROVED, TOPUP_CANCELLED, TOPUP_REJECTED
from ..models.users import TX_CREDIT
from ..time_utils import utcnow
from ..validation import ValidationError, coerce_amount, require_text
from .data_store import DataStore
from .event_bus import TOPUP_REQUEST_PROCESSED


logger = logging.getLogger(__name__)

ACTION_APPROVE = "approve"
ACTION_REJECT = "reject"
TOPUP_ACTIONS = {ACTION_APPROVE, ACTION_REJECT}

FALLBACK_REGISTRATION_SOURCE = "topup-approve-fallback"


@dataclass
class TopupResult:
    request: TopupRequest
    transaction: Optional[Transaction] = None


def _resolve_user(store: DataStore, request: TopupRequest):
    """
    Find the user to credit: by id, then by email, then provision a
    minimal account so an approved credit is never dropped.
    """
    user = store.get_user(request.user_id)
    if user is not None:
        return user
    user = store.get_user_by_email(request.user_email)
    if user is not None:
        logger.warning(
            "Top-up %s: user id %s not found, matched %s by email",
            request.id, request.user_id, request.user_email,
        )
        return user
    logger.warning("Top-up %s: no user for %s, creating one", request.id, request.user_email)
    return store.create_user({
        "email": request.user_email,
        "name": request.user_name or request.user_email.split("@")[0],
        "registration_source": FALLBACK_REGISTRATION_SOURCE,
    })


def process_topup_request(
    store: DataStore,
    request_id: str,
    action: str,
    *,
    admin_id: str,
    admin_name: str,
    approved_amount=None,
    admin_notes: str | None = None,
    rejection_reason: str | None = None,
) -> Optional[TopupResult]:
    """
    Approve or reject a pending top-up request.

    Args:
        store: The data store
        request_id: Request to process
        action: "approve" or "reject"
        admin_id / admin_name: Processing admin, recorded on the request
        approved_amount: Override for the credited amount (approve only)
        admin_notes: Free text kept on the request
        rejection_reason: Required when rejecting

    Returns:
        TopupResult with the updated request (and the credit transaction on
        approval), or None when the request is missing or not pending.

    Raises:
        ValidationError: unknown action, bad amount, or missing rejection reason
    """
    if action not in TOPUP_ACTIONS:
        raise ValidationError(f"Invalid action '{action}'. Must be one of: approve, reject")

    with store.atomic():
        request = store.get_topup_request(request_id)
        if request is None or not request.is_pending:
            return None

        if action == ACTION_REJECT:
            reason = require_text(rejection_reason, "rejection_reason")
            updated = store.update_topup_request(
                request_id,
                {
                    "status": TOPUP_REJECTED,
                    "rejection_reason": reason,
                    "admin_notes": admin_notes,
                    "processed_at": utcnow(),
                    "processed_by": admin_id,
                    "processed_by_name": admin_name,
                },
                event_type=TOPUP_REQUEST_PROCESSED,
                workflow=True,
            )
            store.log_activity(
                action="reject_topup_request",
                target_type=TARGET_TOPUP_REQUEST,
                target_id=request_id,
                description=f"Rejected top-up of {request.requested_amount:,} VND for {request.user_email}: {reason}",
                admin_id=admin_id,
                admin_name=admin_name,
                metadata={"rejection_reason": reason},
            )
            return TopupResult(request=updated)

        amount = request.requested_amount if approved_amount is None else approved_amount
        amount = coerce_amount(amount, "approved_amount", allow_zero=False)
        # Nothing may fail after the credit is booked
        if request.approved_amount is not None and request.approved_amount != amount:
            raise ValidationError(
                f"Top-up request {request_id} already carries approved_amount {request.approved_amount:,}"
            )

        user = _resolve_user(store, request)
        _, transaction = store.adjust_balance(
            user.id,
            amount,
            tx_type=TX_CREDIT,
            description=f"Top-up approved ({request_id})",
            admin_id=admin_id,
            admin_name=admin_name,
            metadata={"topup_request_id": request_id},
        )
        updated = store.update_topup_request(
            request_id,
            {
                "status": TOPUP_APPROVED,
                "approved_amount": amount,
                "admin_notes": admin_notes,
                "processed_at": utcnow(),
                "processed_by": admin_id,
                "processed_by_name": admin_name,
                "transaction_id": transaction.id,
                "user_id": user.id,
            },
            event_type=TOPUP_REQUEST_PROCESSED,
            workflow=True,
        )
        store.log_activity(
            action="approve_topup_request",
            target_type=TARGET_TOPUP_REQUEST,
            target_id=request_id,
            description=f"Approved top-up of {amount:,} VND for {user.email}",
            admin_id=admin_id,
            admin_name=admin_name,
            metadata={
                "requested_amount": request.requested_amount,
                "approved_amount": amount,
                "transaction_id": transaction.id,
            },
        )
        return TopupResult(request=updated, transaction=transaction)


def cancel_topup_request(store: DataStore, request_id: str, *, user_id: str) -> Optional[TopupRequest]:
    """The owner withdraws a pending request. None if missing, foreign or not pending."""
    with store.atomic():
        request = store.get_topup_request(request_id)
        if request is None or request.user_id != user_id or not request.is_pending:
            return None
        updated = store.update_topup_request(
            request_id,
            {"status": TOPUP_CANCELLED, "processed_at": utcnow()},
            workflow=True,
        )
        store.log_activity(
            action="cancel_topup_request",
            target_type=TARGET_TOPUP_REQUEST,
            target_id=request_id,
            description=f"Top-up request of {request.requested_amount:,} VND withdrawn by {request.user_email}",
            admin_id=user_id,
            admin_name=request.user_name or request.user_email,
        )
        return updated
