import pytest

from shopdata.services import event_bus as events
from shopdata.services.topup_service import (
    FALLBACK_REGISTRATION_SOURCE,
    cancel_topup_request,
    process_topup_request,
)
from shopdata.validation import ValidationError

from conftest import ADMIN_ID, ADMIN_NAME


@pytest.fixture
def request_50k(store, user):
    return store.create_topup_request({"user_id": user.id, "requested_amount": 50_000})


def test_request_copies_identity_from_user(store, user, request_50k):
    assert request_50k.user_email == "buyer@example.vn"
    assert request_50k.user_name == "Buyer"
    assert request_50k.status == "pending"


@pytest.mark.parametrize("amount", [9_999, 10_000_001])
def test_amount_limits(store, user, amount):
    with pytest.raises(ValidationError):
        store.create_topup_request({"user_id": user.id, "requested_amount": amount})


def test_unregistered_requester_needs_email(store):
    with pytest.raises(ValidationError):
        store.create_topup_request({"user_id": "user-ghost", "requested_amount": 50_000})


def test_approve_with_override_credits_exactly_once(store, user, request_50k):
    processed = []
    store.subscribe(lambda e: processed.append(e) if e.type == events.TOPUP_REQUEST_PROCESSED else None)

    result = process_topup_request(
        store, request_50k.id, "approve",
        admin_id=ADMIN_ID, admin_name=ADMIN_NAME, approved_amount=40_000,
    )

    assert result.request.status == "approved"
    assert result.request.approved_amount == 40_000
    assert result.request.transaction_id == result.transaction.id
    assert result.request.processed_by_name == ADMIN_NAME
    assert store.get_user(user.id).balance == 40_000
    assert result.transaction.metadata == {"topup_request_id": request_50k.id}
    assert len(processed) == 1

    again = process_topup_request(store, request_50k.id, "approve", admin_id=ADMIN_ID, admin_name=ADMIN_NAME)
    assert again is None
    assert store.get_user(user.id).balance == 40_000


def test_reject_needs_reason_and_never_touches_balance(store, user, request_50k):
    with pytest.raises(ValidationError):
        process_topup_request(store, request_50k.id, "reject", admin_id=ADMIN_ID, admin_name=ADMIN_NAME)

    result = process_topup_request(
        store, request_50k.id, "reject",
        admin_id=ADMIN_ID, admin_name=ADMIN_NAME, rejection_reason="Transfer not found",
    )
    assert result.request.status == "rejected"
    assert result.transaction is None
    assert store.get_user(user.id).balance == 0

    second = process_topup_request(
        store, request_50k.id, "reject",
        admin_id=ADMIN_ID, admin_name=ADMIN_NAME, rejection_reason="again",
    )
    assert second is None


def test_invalid_action(store, request_50k):
    with pytest.raises(ValidationError):
        process_topup_request(store, request_50k.id, "maybe", admin_id=ADMIN_ID, admin_name=ADMIN_NAME)


def test_missing_request_returns_none(store):
    assert process_topup_request(store, "topup-missing", "approve", admin_id=ADMIN_ID, admin_name=ADMIN_NAME) is None


def test_approval_falls_back_to_email_then_creates_user(store):
    request = store.create_topup_request({
        "user_id": "user-ghost", "user_email": "Ghost@Example.vn", "requested_amount": 20_000,
    })
    result = process_topup_request(store, request.id, "approve", admin_id=ADMIN_ID, admin_name=ADMIN_NAME)

    created = store.get_user_by_email("ghost@example.vn")
    assert created.registration_source == FALLBACK_REGISTRATION_SOURCE
    assert created.balance == 20_000
    assert result.request.user_id == created.id


def test_processed_request_status_is_final(store, request_50k):
    process_topup_request(store, request_50k.id, "approve", admin_id=ADMIN_ID, admin_name=ADMIN_NAME)
    with pytest.raises(ValidationError):
        store.update_topup_request(request_50k.id, {"status": "pending"}, workflow=True)
    with pytest.raises(ValidationError):
        store.update_topup_request(request_50k.id, {"approved_amount": 1_000}, workflow=True)


@pytest.mark.parametrize("patch", [
    {"status": "approved"},
    {"status": "rejected", "rejection_reason": "nope"},
    {"approved_amount": 30_000},
    {"transaction_id": "tx-forged"},
    {"processed_by": ADMIN_ID},
    {"processed_at": "2026-03-01T10:00:00Z"},
])
def test_plain_update_cannot_touch_workflow_fields(store, user, request_50k, patch):
    with pytest.raises(ValidationError):
        store.update_topup_request(request_50k.id, patch)

    current = store.get_topup_request(request_50k.id)
    assert current.is_pending
    assert current.approved_amount is None
    assert current.transaction_id is None
    assert store.get_user(user.id).balance == 0


def test_plain_update_still_patches_notes(store, request_50k):
    updated = store.update_topup_request(request_50k.id, {"admin_notes": "checked", "user_notes": "sent at 9am"})
    assert updated.admin_notes == "checked"
    assert updated.user_notes == "sent at 9am"
    assert updated.is_pending


def test_conflicting_preset_amount_blocks_approval_before_credit(store, user, request_50k):
    store.update_topup_request(request_50k.id, {"approved_amount": 30_000}, workflow=True)

    with pytest.raises(ValidationError):
        process_topup_request(store, request_50k.id, "approve", admin_id=ADMIN_ID, admin_name=ADMIN_NAME)

    assert store.get_user(user.id).balance == 0
    assert store.get_user_transactions(user.id) == []
    assert store.get_topup_request(request_50k.id).status == "pending"

    result = process_topup_request(
        store, request_50k.id, "approve",
        admin_id=ADMIN_ID, admin_name=ADMIN_NAME, approved_amount=30_000,
    )
    assert result.request.status == "approved"
    assert store.get_user(user.id).balance == 30_000
    assert len(store.get_user_transactions(user.id)) == 1


def test_owner_can_cancel_pending_request(store, user, request_50k):
    assert cancel_topup_request(store, request_50k.id, user_id="someone-else") is None
    cancelled = cancel_topup_request(store, request_50k.id, user_id=user.id)
    assert cancelled.status == "cancelled"
    assert cancel_topup_request(store, request_50k.id, user_id=user.id) is None
    assert store.get_pending_topup_requests() == []


def test_approval_activity_is_logged(store, request_50k):
    process_topup_request(store, request_50k.id, "approve", admin_id=ADMIN_ID, admin_name=ADMIN_NAME)
    actions = [a.action for a in store.get_recent_activity(5)]
    assert actions[0] == "approve_topup_request"
    assert "credit_user" in actions
