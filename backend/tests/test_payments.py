"""Payment webhook, payment worker and payout tests"""
import asyncio
import json
from unittest.mock import patch

import pytest
import stripe

from roomgate.core.errors import InvalidCredentials
from roomgate.db.task_queue import (
    PAYMENT_TASK_TYPE, QUEUE_KEY_PREFIX, enqueue_task, get_task_status, pending_task_count
)
from roomgate.models.purchase import (
    Purchase, PURCHASE_STATUS_COMPLETED, PURCHASE_STATUS_FAILED
)
from roomgate.services.ledger_service import validate
from roomgate.services.payment_service import extract_payment_job, process_payment
from roomgate.services.stripe_service import PayoutResult, StripePayoutClient
from roomgate.tasks.payment_worker import _running_tasks, drain_running_tasks, process_payment_task

SIGNATURE = "t=1700000000,v1=deadbeef"


def payment_event(room_id="room_1", user_id="user_buyer", amount=5000, payment_id="pi_test_1", **extra):
    intent = {
        "id": payment_id,
        "object": "payment_intent",
        "amount": amount,
        "amount_received": amount,
        "currency": "usd",
        "receipt_email": "buyer@example.com",
        "metadata": {},
    }
    if room_id is not None:
        intent["metadata"]["room_id"] = room_id
    if user_id is not None:
        intent["metadata"]["user_id"] = user_id
    intent.update(extra)
    return {"id": "evt_test_1", "type": "payment_intent.succeeded", "data": {"object": intent}}


def queued_jobs(redis_client):
    return [json.loads(raw) for raw in redis_client.lrange(f"{QUEUE_KEY_PREFIX}{PAYMENT_TASK_TYPE}", 0, -1)]


def pop_task(redis_client):
    return json.loads(redis_client.rpop(f"{QUEUE_KEY_PREFIX}{PAYMENT_TASK_TYPE}"))


def post_webhook(client, event=None, headers=None):
    with patch("roomgate.services.stripe_service.stripe.Webhook.construct_event", return_value=event):
        return client.post(
            "/api/purchases/webhook",
            content=json.dumps(event or {}),
            headers={"stripe-signature": SIGNATURE} if headers is None else headers,
        )


@pytest.mark.high
class TestExtractPaymentJob:

    def test_extracts_job_fields(self):
        job = extract_payment_job(payment_event())
        assert job == {
            "external_user_id": "user_buyer",
            "room_id": "room_1",
            "amount": 5000,
            "currency": "usd",
            "payment_id": "pi_test_1",
            "email": "buyer@example.com",
        }

    def test_falls_back_to_customer_and_amount(self):
        event = payment_event(user_id=None, customer="cus_42", amount_received=None)
        job = extract_payment_job(event)
        assert job["external_user_id"] == "cus_42"
        assert job["amount"] == 5000

    def test_missing_room_hint_is_ignored(self):
        assert extract_payment_job(payment_event(room_id=None)) is None

    def test_missing_buyer_is_ignored(self):
        assert extract_payment_job(payment_event(user_id=None)) is None

    def test_unreadable_amount_is_ignored(self):
        assert extract_payment_job(payment_event(amount="five dollars")) is None

    def test_other_event_types_are_ignored(self):
        event = payment_event()
        event["type"] = "charge.refunded"
        assert extract_payment_job(event) is None


@pytest.mark.critical
class TestPaymentWebhook:

    def test_bad_signature_is_rejected_without_side_effects(self, client, mock_redis):
        with patch(
            "roomgate.services.stripe_service.stripe.Webhook.construct_event",
            side_effect=stripe.SignatureVerificationError("No signatures found", SIGNATURE)
        ):
            response = client.post(
                "/api/purchases/webhook",
                content=json.dumps(payment_event()),
                headers={"stripe-signature": SIGNATURE},
            )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid signature"}
        assert pending_task_count(PAYMENT_TASK_TYPE) == 0

    def test_missing_signature_header_is_rejected(self, client):
        response = post_webhook(client, payment_event(), headers={})
        assert response.status_code == 400
        assert pending_task_count(PAYMENT_TASK_TYPE) == 0

    def test_invalid_payload_is_rejected(self, client):
        with patch(
            "roomgate.services.stripe_service.stripe.Webhook.construct_event",
            side_effect=ValueError("Invalid payload")
        ):
            response = client.post(
                "/api/purchases/webhook", content=b"not json", headers={"stripe-signature": SIGNATURE}
            )
        assert response.status_code == 400

    def test_valid_delivery_acks_and_enqueues_exactly_one_job(self, client, mock_redis, room):
        response = post_webhook(client, payment_event(room_id=room.id))

        assert response.status_code == 200
        assert response.text == "OK"
        jobs = queued_jobs(mock_redis)
        assert len(jobs) == 1
        assert jobs[0]["task_type"] == PAYMENT_TASK_TYPE
        assert jobs[0]["payload"]["room_id"] == room.id
        assert jobs[0]["payload"]["amount"] == 5000

    def test_ack_does_not_touch_the_ledger(self, client, db_session, room):
        post_webhook(client, payment_event(room_id=room.id))
        assert db_session.query(Purchase).count() == 0

    def test_missing_room_hint_acks_without_job(self, client):
        response = post_webhook(client, payment_event(room_id=None))
        assert response.status_code == 200
        assert response.text == "OK"
        assert pending_task_count(PAYMENT_TASK_TYPE) == 0

    def test_unreadable_amount_acks_without_job(self, client, room):
        response = post_webhook(client, payment_event(room_id=room.id, amount="abc"))
        assert response.status_code == 200
        assert response.text == "OK"
        assert pending_task_count(PAYMENT_TASK_TYPE) == 0

    def test_webhook_is_not_rate_limited(self, client):
        with patch("roomgate.core.middleware.check_rate_limit", return_value=False):
            response = post_webhook(client, payment_event(room_id=None))
            limited = client.get("/api/rooms/anything")
        assert response.status_code == 200
        assert limited.status_code == 429


@pytest.mark.critical
class TestProcessPayment:

    def test_full_flow_from_webhook_to_revocation(self, client, db_session, mock_redis, room,
                                                   payout_client, session_factory, creator_headers):
        """Webhook -> worker -> validate -> revoke -> validate fails"""
        post_webhook(client, payment_event(room_id=room.id, amount=5000))
        process_payment_task(pop_task(mock_redis), payout_client, session_factory=session_factory)

        purchase = db_session.query(Purchase).filter(Purchase.room_id == room.id).one()
        assert purchase.status == PURCHASE_STATUS_COMPLETED
        assert purchase.platform_fee == 1000
        assert purchase.creator_share == 4000
        payout_client.payout.assert_called_once_with(
            1000, "usd", idempotency_key=f"platform-fee-{room.id}-pi_test_1"
        )

        response = client.post("/api/rooms/validate-password",
                               json={"roomId": room.id, "password": purchase.password})
        assert response.status_code == 200
        assert response.json() == {"success": True}

        response = client.post("/api/creator/purchases/revoke", json={"purchaseId": purchase.id},
                               headers=creator_headers)
        assert response.status_code == 200

        response = client.post("/api/rooms/validate-password",
                               json={"roomId": room.id, "password": purchase.password})
        assert response.status_code == 401
        assert response.json() == {"error": "Incorrect password"}

    def test_payout_failure_marks_purchase_failed(self, db_session, room, payout_client):
        payout_client.payout.return_value = PayoutResult(success=False, error="insufficient funds")
        job = extract_payment_job(payment_event(room_id=room.id))

        purchase = process_payment(job, db_session, payout_client)

        assert purchase.status == PURCHASE_STATUS_FAILED
        with pytest.raises(InvalidCredentials):
            validate(room.id, purchase.password, db_session)

    def test_payout_exception_marks_purchase_failed(self, db_session, room, payout_client):
        payout_client.payout.side_effect = RuntimeError("connection reset")
        job = extract_payment_job(payment_event(room_id=room.id))
        assert process_payment(job, db_session, payout_client).status == PURCHASE_STATUS_FAILED

    def test_duplicate_delivery_pays_out_once(self, db_session, room, payout_client):
        job = extract_payment_job(payment_event(room_id=room.id))
        first = process_payment(job, db_session, payout_client)
        second = process_payment(job, db_session, payout_client)

        assert first.id == second.id
        assert second.status == PURCHASE_STATUS_COMPLETED
        assert payout_client.payout.call_count == 1

    def test_replayed_older_payment_pays_out_once(self, db_session, room, payout_client):
        first_job = extract_payment_job(payment_event(room_id=room.id, payment_id="pi_first"))
        second_job = extract_payment_job(payment_event(room_id=room.id, payment_id="pi_second"))
        process_payment(first_job, db_session, payout_client)
        current = process_payment(second_job, db_session, payout_client)
        password = current.password

        replayed = process_payment(first_job, db_session, payout_client)

        assert replayed.status == PURCHASE_STATUS_COMPLETED
        assert replayed.payment_id == "pi_second"
        assert replayed.password == password
        assert payout_client.payout.call_count == 2
        assert validate(room.id, password, db_session) == current.id

    def test_failed_payment_is_not_retried_on_redelivery(self, db_session, room, payout_client):
        payout_client.payout.return_value = PayoutResult(success=False, error="declined")
        job = extract_payment_job(payment_event(room_id=room.id))
        process_payment(job, db_session, payout_client)
        payout_client.payout.return_value = PayoutResult(success=True)

        again = process_payment(job, db_session, payout_client)

        assert again.status == PURCHASE_STATUS_FAILED
        assert payout_client.payout.call_count == 1


@pytest.mark.high
class TestPaymentWorker:

    def test_successful_task_is_marked_completed(self, db_session, room, payout_client, session_factory, mock_redis):
        task_id = enqueue_task(PAYMENT_TASK_TYPE, extract_payment_job(payment_event(room_id=room.id)))
        process_payment_task(pop_task(mock_redis), payout_client, session_factory=session_factory)

        status = get_task_status(task_id)
        assert status["status"] == "completed"
        assert status["result"]["status"] == PURCHASE_STATUS_COMPLETED

    def test_unknown_room_fails_without_retry(self, payout_client, session_factory, mock_redis):
        task_id = enqueue_task(PAYMENT_TASK_TYPE, extract_payment_job(payment_event(room_id="missing")))
        process_payment_task(pop_task(mock_redis), payout_client, session_factory=session_factory)

        status = get_task_status(task_id)
        assert status["status"] == "failed"
        assert status["error"] == "Room not found"
        assert pending_task_count(PAYMENT_TASK_TYPE) == 0
        payout_client.payout.assert_not_called()

    def test_unexpected_error_schedules_retry(self, room, payout_client, session_factory, mock_redis):
        task_id = enqueue_task(PAYMENT_TASK_TYPE, extract_payment_job(payment_event(room_id=room.id)))
        with patch("roomgate.tasks.payment_worker.process_payment", side_effect=RuntimeError("db went away")):
            process_payment_task(pop_task(mock_redis), payout_client, session_factory=session_factory)

        assert get_task_status(task_id)["status"] == "retrying"
        retry = pop_task(mock_redis)
        assert retry["retry_count"] == 1
        assert retry["payload"]["room_id"] == room.id

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_in_flight_jobs(self):
        finished = []

        async def job():
            await asyncio.sleep(0.01)
            finished.append(True)

        task = asyncio.create_task(job())
        _running_tasks.add(task)
        task.add_done_callback(_running_tasks.discard)

        await drain_running_tasks()

        assert task.done()
        assert finished == [True]
        assert task not in _running_tasks

    @pytest.mark.asyncio
    async def test_drain_with_nothing_running_returns(self):
        assert not _running_tasks
        await drain_running_tasks()


@pytest.mark.critical
class TestHandlePaymentEndpoint:

    def payload(self, room_id, **overrides):
        body = {"userId": "user_buyer", "roomId": room_id, "paymentAmount": 5000, "paymentId": "pi_manual_1"}
        body.update(overrides)
        return body

    def test_requires_internal_key(self, client, room):
        response = client.post("/api/purchases/handle-payment", json=self.payload(room.id))
        assert response.status_code == 401

    def test_settles_payment_synchronously(self, client, room):
        response = client.post(
            "/api/purchases/handle-payment",
            json=self.payload(room.id),
            headers={"X-Internal-Api-Key": "internal_test_key"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["status"] == PURCHASE_STATUS_COMPLETED

    def test_payout_failure_returns_502(self, client, room, payout_client):
        payout_client.payout.return_value = PayoutResult(success=False, error="declined")
        response = client.post(
            "/api/purchases/handle-payment",
            json=self.payload(room.id),
            headers={"X-Internal-Api-Key": "internal_test_key"},
        )
        assert response.status_code == 502
        assert response.json() == {"error": "Platform fee payout failed"}

    def test_unknown_room_returns_404(self, client):
        response = client.post(
            "/api/purchases/handle-payment",
            json=self.payload("missing"),
            headers={"X-Internal-Api-Key": "internal_test_key"},
        )
        assert response.status_code == 404


@pytest.mark.high
class TestStripePayoutClient:

    def test_transfers_fee_to_operator_account(self, auto_mock_stripe):
        client = StripePayoutClient("sk_test_123", "acct_operator_123")
        result = client.payout(1000, "usd", idempotency_key="platform-fee-r-pi")

        assert result.success is True
        assert result.transfer_id == "tr_test123"
        auto_mock_stripe["transfer_create"].assert_called_once_with(
            amount=1000,
            currency="usd",
            destination="acct_operator_123",
            api_key="sk_test_123",
            idempotency_key="platform-fee-r-pi",
        )

    def test_stripe_error_is_reported_not_raised(self, auto_mock_stripe):
        auto_mock_stripe["transfer_create"].side_effect = stripe.InvalidRequestError("No such destination", "destination")
        result = StripePayoutClient("sk_test_123", "acct_operator_123").payout(1000, "usd")
        assert result.success is False
        assert "No such destination" in result.error

    def test_zero_fee_needs_no_transfer(self, auto_mock_stripe):
        assert StripePayoutClient("sk_test_123", "acct_operator_123").payout(0, "usd").success is True
        auto_mock_stripe["transfer_create"].assert_not_called()

    def test_unconfigured_client_fails(self, auto_mock_stripe):
        result = StripePayoutClient("", "").payout(1000, "usd")
        assert result.success is False
        auto_mock_stripe["transfer_create"].assert_not_called()
