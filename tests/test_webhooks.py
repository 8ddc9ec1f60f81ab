"""Tests for the webhooks blueprint and Stripe event handling.

Covers:
- Webhook signature verification (missing, invalid, stale, valid)
- Event-id ledger (duplicate deliveries skipped)
- checkout.session.completed handler (upsert + premium flag)
- invoice.payment_succeeded handler (period from the invoice)
- customer.subscription.updated handler (two-state status mapping)
- customer.subscription.deleted handler (terminal cancel)
- Marketplace payment_intent / charge events driving orders
- Unknown event types and handler failures (still 200)
"""

import json
import time
from decimal import Decimal
from unittest.mock import patch

from socialmarket.extensions import db
from socialmarket.models.billing import Subscription
from socialmarket.models.marketplace import MarketplaceItem, Order
from socialmarket.models.stripe_event import StripeEvent
from socialmarket.models.user import User

from conftest import WEBHOOK_URL, sign_payload


def _checkout_session(user_id, tier="supporter", sub_id="sub_123", customer="cus_123"):
    return {
        "id": "cs_test_123",
        "object": "checkout.session",
        "customer": customer,
        "subscription": sub_id,
        "metadata": {"userId": user_id, "tier": tier},
    }


class TestWebhookSignature:
    """Tests for webhook signature validation."""

    def test_missing_signature_returns_400(self, client, seed_data):
        resp = client.post(WEBHOOK_URL, data="{}", content_type="application/json")
        assert resp.status_code == 400
        body = resp.get_json()
        assert body["error"]["code"] == "INVALID_SIGNATURE"
        assert body["error"]["message"] == "Missing signature"

    @patch("socialmarket.services.stripe_service.upsert_subscription_for_user")
    def test_invalid_signature_returns_400_and_writes_nothing(
        self, mock_upsert, client, seed_data, make_event
    ):
        event = make_event("checkout.session.completed",
                           _checkout_session(seed_data["buyer_id"]))
        payload = json.dumps(event)

        resp = client.post(
            WEBHOOK_URL,
            data=payload,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(payload, secret="whsec_wrong")},
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_SIGNATURE"
        mock_upsert.assert_not_called()
        assert Subscription.query.count() == 0
        assert StripeEvent.query.count() == 0

    def test_tampered_body_rejected(self, client, seed_data, make_event):
        event = make_event("checkout.session.completed",
                           _checkout_session(seed_data["buyer_id"]))
        payload = json.dumps(event)
        header = sign_payload(payload)
        tampered = payload.replace("supporter", "vip")

        resp = client.post(WEBHOOK_URL, data=tampered, content_type="application/json",
                           headers={"Stripe-Signature": header})
        assert resp.status_code == 400
        assert Subscription.query.count() == 0

    def test_stale_timestamp_rejected(self, post_event, seed_data, make_event):
        event = make_event("checkout.session.completed",
                           _checkout_session(seed_data["buyer_id"]))
        resp = post_event(event, timestamp=int(time.time()) - 3600)
        assert resp.status_code == 400
        assert Subscription.query.count() == 0

    def test_valid_signature_accepted(self, post_event, seed_data, make_event):
        resp = post_event(make_event("customer.created", {"id": "cus_1"}))
        assert resp.status_code == 200
        assert resp.get_json()["received"] is True


class TestWebhookIdempotency:
    """Tests for duplicate event handling."""

    def test_duplicate_event_id_skipped(self, post_event, seed_data, make_event):
        event = make_event("checkout.session.completed",
                           _checkout_session(seed_data["buyer_id"]),
                           event_id="evt_duplicate_123")

        first = post_event(event)
        second = post_event(event)

        assert first.get_json()["status"] == "processed"
        assert second.status_code == 200
        assert second.get_json()["status"] == "already_processed"
        assert StripeEvent.query.filter_by(stripe_event_id="evt_duplicate_123").count() == 1

    def test_replayed_checkout_yields_single_row(self, post_event, seed_data, make_event):
        """Same checkout delivered under two event ids -> one row, same state."""
        created = int(time.time())
        session = _checkout_session(seed_data["buyer_id"])
        post_event(make_event("checkout.session.completed", session,
                              event_id="evt_a", created=created))
        first = Subscription.query.one().to_dict()

        post_event(make_event("checkout.session.completed", session,
                              event_id="evt_b", created=created))

        assert Subscription.query.count() == 1
        assert Subscription.query.one().to_dict() == first
        user = db.session.get(User, seed_data["buyer_id"])
        assert user.is_premium is True
        assert user.premium_tier == "supporter"


class TestCheckoutCompleted:
    """Tests for checkout.session.completed webhook."""

    def test_creates_active_subscription(self, post_event, seed_data, make_event):
        created = 1700000000
        resp = post_event(make_event("checkout.session.completed",
                                     _checkout_session(seed_data["buyer_id"], tier="vip"),
                                     event_id="evt_checkout_001", created=created))
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "processed"

        sub = Subscription.query.filter_by(stripe_subscription_id="sub_123").first()
        assert sub is not None
        assert sub.user_id == seed_data["buyer_id"]
        assert sub.stripe_customer_id == "cus_123"
        assert sub.tier == "vip"
        assert sub.status == "active"
        assert sub.canceled_at is None
        data = sub.to_dict()
        assert data["current_period_start"] == "2023-11-14T22:13:20+00:00"
        assert data["current_period_end"] == "2023-12-14T22:13:20+00:00"

        user = db.session.get(User, seed_data["buyer_id"])
        assert user.is_premium is True
        assert user.premium_tier == "vip"

        evt = StripeEvent.query.filter_by(stripe_event_id="evt_checkout_001").first()
        assert evt is not None
        assert evt.event_type == "checkout.session.completed"
        assert evt.object_id == "cs_test_123"
        assert evt.outcome == "processed"
        assert evt.livemode is False

    def test_second_checkout_overwrites_row(self, post_event, seed_data, make_event):
        post_event(make_event("checkout.session.completed",
                              _checkout_session(seed_data["buyer_id"], "supporter", "sub_old")))
        post_event(make_event("checkout.session.completed",
                              _checkout_session(seed_data["buyer_id"], "vip", "sub_new")))

        assert Subscription.query.count() == 1
        sub = Subscription.query.one()
        assert sub.stripe_subscription_id == "sub_new"
        assert sub.tier == "vip"

    def test_missing_metadata_ignored(self, post_event, seed_data, make_event):
        session = _checkout_session(seed_data["buyer_id"])
        session["metadata"] = {"userId": seed_data["buyer_id"]}

        resp = post_event(make_event("checkout.session.completed", session))
        assert resp.status_code == 200
        assert Subscription.query.count() == 0
        assert db.session.get(User, seed_data["buyer_id"]).is_premium is False

    def test_unknown_tier_ignored(self, post_event, seed_data, make_event):
        resp = post_event(make_event("checkout.session.completed",
                                     _checkout_session(seed_data["buyer_id"], tier="platinum")))
        assert resp.status_code == 200
        assert Subscription.query.count() == 0

    def test_unknown_user_ignored(self, post_event, seed_data, make_event):
        resp = post_event(make_event("checkout.session.completed",
                                     _checkout_session("no-such-user")))
        assert resp.status_code == 200
        assert Subscription.query.count() == 0


class TestPaymentSucceeded:
    """Tests for invoice.payment_succeeded webhook."""

    def test_sets_period_from_invoice(self, post_event, seed_data, make_event):
        post_event(make_event("checkout.session.completed",
                              _checkout_session(seed_data["buyer_id"])))

        resp = post_event(make_event("invoice.payment_succeeded", {
            "id": "in_123",
            "subscription": "sub_123",
            "period_start": 1700000000,
            "period_end": 1702592000,
        }))
        assert resp.status_code == 200

        data = Subscription.query.one().to_dict()
        assert data["status"] == "active"
        assert data["current_period_start"] == "2023-11-14T22:13:20+00:00"
        assert data["current_period_end"] == "2023-12-14T22:13:20+00:00"

    def test_new_invoice_shape_resolves_subscription(self, post_event, seed_data, make_event):
        post_event(make_event("checkout.session.completed",
                              _checkout_session(seed_data["buyer_id"])))

        post_event(make_event("invoice.payment_succeeded", {
            "id": "in_456",
            "parent": {"subscription_details": {"subscription": "sub_123"}},
            "period_start": 1700000000,
            "period_end": 1702592000,
        }))

        assert Subscription.query.one().to_dict()["current_period_end"] == \
            "2023-12-14T22:13:20+00:00"

    def test_reactivates_past_due(self, post_event, seed_data, make_event):
        post_event(make_event("checkout.session.completed",
                              _checkout_session(seed_data["buyer_id"])))
        post_event(make_event("customer.subscription.updated",
                              {"id": "sub_123", "status": "past_due"}))
        assert db.session.get(User, seed_data["buyer_id"]).is_premium is False

        post_event(make_event("invoice.payment_succeeded", {
            "id": "in_789", "subscription": "sub_123",
            "period_start": 1700000000, "period_end": 1702592000,
        }))

        assert Subscription.query.one().status == "active"
        assert db.session.get(User, seed_data["buyer_id"]).is_premium is True

    def test_unknown_subscription_is_noop(self, post_event, seed_data, make_event):
        resp = post_event(make_event("invoice.payment_succeeded", {
            "id": "in_000", "subscription": "sub_missing",
            "period_start": 1700000000, "period_end": 1702592000,
        }))
        assert resp.status_code == 200
        assert Subscription.query.count() == 0


class TestSubscriptionUpdated:
    """Tests for customer.subscription.updated webhook."""

    def test_past_due_maps_to_canceled(self, post_event, seed_data, make_event):
        post_event(make_event("checkout.session.completed",
                              _checkout_session(seed_data["buyer_id"], tier="supporter")))

        resp = post_event(make_event("customer.subscription.updated", {
            "id": "sub_123",
            "status": "past_due",
        }))
        assert resp.status_code == 200

        sub = Subscription.query.one()
        assert sub.status == "canceled"
        assert sub.canceled_at is None
        user = db.session.get(User, seed_data["buyer_id"])
        assert user.is_premium is False
        assert user.premium_tier is None

    def test_period_read_from_items(self, post_event, seed_data, make_event):
        post_event(make_event("checkout.session.completed",
                              _checkout_session(seed_data["buyer_id"])))

        post_event(make_event("customer.subscription.updated", {
            "id": "sub_123",
            "status": "active",
            "items": {"data": [{
                "current_period_start": 1700000000,
                "current_period_end": 1702592000,
            }]},
        }))

        data = Subscription.query.one().to_dict()
        assert data["status"] == "active"
        assert data["current_period_start"] == "2023-11-14T22:13:20+00:00"
        assert data["current_period_end"] == "2023-12-14T22:13:20+00:00"

    def test_reapplying_same_update_is_stable(self, post_event, seed_data, make_event):
        post_event(make_event("checkout.session.completed",
                              _checkout_session(seed_data["buyer_id"])))
        update = {"id": "sub_123", "status": "active",
                  "current_period_start": 1700000000, "current_period_end": 1702592000}

        post_event(make_event("customer.subscription.updated", update))
        first = Subscription.query.one().to_dict()
        post_event(make_event("customer.subscription.updated", update))

        assert Subscription.query.one().to_dict() == first


class TestSubscriptionDeleted:
    """Tests for customer.subscription.deleted webhook."""

    def test_cancels_and_clears_premium(self, post_event, seed_data, make_event):
        post_event(make_event("checkout.session.completed",
                              _checkout_session(seed_data["buyer_id"], tier="vip")))

        resp = post_event(make_event("customer.subscription.deleted", {
            "id": "sub_123",
            "status": "canceled",
            "canceled_at": 1700000000,
        }))
        assert resp.status_code == 200

        sub = Subscription.query.one()
        assert sub.status == "canceled"
        assert sub.to_dict()["canceled_at"] == "2023-11-14T22:13:20+00:00"
        user = db.session.get(User, seed_data["buyer_id"])
        assert user.is_premium is False
        assert user.premium_tier is None

    def test_unknown_subscription_writes_nothing(self, post_event, seed_data, make_event):
        resp = post_event(make_event("customer.subscription.deleted",
                                     {"id": "sub_nope", "status": "canceled"}))
        assert resp.status_code == 200
        assert Subscription.query.count() == 0
        assert db.session.get(User, seed_data["buyer_id"]).is_premium is False

    def test_deleted_is_terminal(self, post_event, seed_data, make_event):
        """Late updates and invoices cannot revive a deleted subscription."""
        post_event(make_event("checkout.session.completed",
                              _checkout_session(seed_data["buyer_id"])))
        post_event(make_event("customer.subscription.deleted",
                              {"id": "sub_123", "status": "canceled",
                               "canceled_at": 1700000000}))

        post_event(make_event("customer.subscription.updated",
                              {"id": "sub_123", "status": "active"}))
        post_event(make_event("invoice.payment_succeeded", {
            "id": "in_late", "subscription": "sub_123",
            "period_start": 1702592000, "period_end": 1705184000,
        }))

        sub = Subscription.query.one()
        assert sub.status == "canceled"
        assert sub.to_dict()["canceled_at"] == "2023-11-14T22:13:20+00:00"
        assert db.session.get(User, seed_data["buyer_id"]).is_premium is False

    def test_new_checkout_after_delete_starts_fresh(self, post_event, seed_data, make_event):
        post_event(make_event("checkout.session.completed",
                              _checkout_session(seed_data["buyer_id"], sub_id="sub_old")))
        post_event(make_event("customer.subscription.deleted",
                              {"id": "sub_old", "status": "canceled"}))

        post_event(make_event("checkout.session.completed",
                              _checkout_session(seed_data["buyer_id"], sub_id="sub_new")))

        sub = Subscription.query.one()
        assert sub.stripe_subscription_id == "sub_new"
        assert sub.status == "active"
        assert sub.canceled_at is None
        assert db.session.get(User, seed_data["buyer_id"]).is_premium is True


class TestMarketplaceEvents:
    """Tests for payment_intent.* and charge.refunded driving orders."""

    def _order(self, seed_data, status="pending", quantity=2):
        order = Order(
            buyer_id=seed_data["buyer_id"],
            seller_id=seed_data["seller_id"],
            item_id=seed_data["item_id"],
            quantity=quantity,
            total_price=Decimal("25.00"),
            currency="cad",
            payment_intent_id="pi_123",
            status=status,
        )
        db.session.add(order)
        db.session.commit()
        return order.id

    def test_payment_succeeded_marks_paid_once(self, post_event, seed_data, make_event):
        order_id = self._order(seed_data)
        intent = {"id": "pi_123", "object": "payment_intent", "status": "succeeded"}

        post_event(make_event("payment_intent.succeeded", intent))
        post_event(make_event("payment_intent.succeeded", intent))

        assert db.session.get(Order, order_id).status == "paid"
        assert db.session.get(MarketplaceItem, seed_data["item_id"]).sold_count == 2

    def test_payment_failed_only_from_pending(self, post_event, seed_data, make_event):
        order_id = self._order(seed_data, status="paid")

        post_event(make_event("payment_intent.payment_failed", {"id": "pi_123"}))

        assert db.session.get(Order, order_id).status == "paid"

    def test_payment_failed_marks_pending_failed(self, post_event, seed_data, make_event):
        order_id = self._order(seed_data)

        post_event(make_event("payment_intent.payment_failed", {"id": "pi_123"}))

        assert db.session.get(Order, order_id).status == "failed"

    def test_charge_refunded(self, post_event, seed_data, make_event):
        order_id = self._order(seed_data, status="paid")

        post_event(make_event("charge.refunded",
                              {"id": "ch_123", "payment_intent": "pi_123"}))
        post_event(make_event("payment_intent.succeeded", {"id": "pi_123"}))

        assert db.session.get(Order, order_id).status == "refunded"
        assert db.session.get(MarketplaceItem, seed_data["item_id"]).sold_count == 0

    def test_unknown_intent_is_noop(self, post_event, seed_data, make_event):
        resp = post_event(make_event("payment_intent.succeeded", {"id": "pi_missing"}))
        assert resp.status_code == 200
        assert Order.query.count() == 0


class TestUnknownAndFailures:
    """Unhandled types and handler exceptions are still acknowledged."""

    def test_unknown_event_type_ignored(self, post_event, seed_data, make_event):
        resp = post_event(make_event("customer.created", {"id": "cus_1"},
                                     event_id="evt_unknown_1"))
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "ignored"
        evt = StripeEvent.query.filter_by(stripe_event_id="evt_unknown_1").one()
        assert evt.outcome == "ignored"
        assert evt.object_id == "cus_1"
        assert StripeEvent.seen("evt_unknown_1") is True
        assert StripeEvent.seen("evt_never_sent") is False

    @patch("socialmarket.services.stripe_service.sync_premium_flag")
    def test_handler_failure_returns_200_and_rolls_back(
        self, mock_sync, post_event, seed_data, make_event
    ):
        mock_sync.side_effect = RuntimeError("database went away")

        resp = post_event(make_event("checkout.session.completed",
                                     _checkout_session(seed_data["buyer_id"]),
                                     event_id="evt_fail_1"))

        assert resp.status_code == 200
        assert resp.get_json()["status"] == "failed"
        assert Subscription.query.count() == 0
        # Not recorded, so a redelivery is dispatched again.
        assert StripeEvent.query.filter_by(stripe_event_id="evt_fail_1").count() == 0
        assert db.session.get(User, seed_data["buyer_id"]).is_premium is False

    def test_invalid_json_with_valid_signature(self, client, seed_data):
        payload = "not json"
        resp = client.post(WEBHOOK_URL, data=payload, content_type="application/json",
                           headers={"Stripe-Signature": sign_payload(payload)})
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "INVALID_INPUT"
