"""Tests for the billing and marketplace payment routes.

Covers:
- POST /api/v1/billing/checkout (Stripe Checkout Session for supporter / vip)
- GET  /api/v1/billing/subscription
- POST /api/v1/marketplace/payment-intents (server-priced PaymentIntent + pending order)
- GET  /api/v1/marketplace/orders/<id>
"""

from decimal import Decimal
from unittest.mock import MagicMock, patch

import stripe

from socialmarket.extensions import db
from socialmarket.models.billing import Subscription
from socialmarket.models.marketplace import MarketplaceItem, Order


class TestCheckout:
    """Tests for subscription checkout."""

    @patch("socialmarket.services.stripe_service.stripe.checkout.Session.create")
    @patch("socialmarket.services.stripe_service.stripe.Customer.create")
    def test_checkout_creates_session(self, mock_customer, mock_session,
                                      client, seed_data, auth_headers):
        mock_customer.return_value = MagicMock(id="cus_new")
        mock_session.return_value = MagicMock(
            id="cs_test_123", url="https://checkout.stripe.com/c/pay/cs_test_123"
        )

        resp = client.post("/api/v1/billing/checkout", json={"tier": "vip"},
                           headers=auth_headers)

        assert resp.status_code == 200
        assert resp.get_json() == {
            "session_id": "cs_test_123",
            "url": "https://checkout.stripe.com/c/pay/cs_test_123",
        }
        mock_customer.assert_called_once()
        assert mock_customer.call_args.kwargs["metadata"] == {"userId": seed_data["buyer_id"]}

        kwargs = mock_session.call_args.kwargs
        assert kwargs["mode"] == "subscription"
        assert kwargs["customer"] == "cus_new"
        assert kwargs["line_items"] == [{"price": "price_vip_test", "quantity": 1}]
        assert kwargs["metadata"] == {"userId": seed_data["buyer_id"], "tier": "vip"}
        assert kwargs["success_url"].endswith("/dashboard?session_id={CHECKOUT_SESSION_ID}")

    @patch("socialmarket.services.stripe_service.stripe.checkout.Session.create")
    @patch("socialmarket.services.stripe_service.stripe.Customer.create")
    def test_checkout_uses_existing_customer(self, mock_customer, mock_session,
                                             client, seed_data, auth_headers):
        db.session.add(Subscription(
            user_id=seed_data["buyer_id"],
            stripe_customer_id="cus_existing",
            stripe_subscription_id="sub_old",
            tier="supporter",
            status="canceled",
        ))
        db.session.commit()
        mock_session.return_value = MagicMock(id="cs_1", url="https://checkout.stripe.com/x")

        resp = client.post("/api/v1/billing/checkout", json={"tier": "supporter"},
                           headers=auth_headers)

        assert resp.status_code == 200
        mock_customer.assert_not_called()
        assert mock_session.call_args.kwargs["customer"] == "cus_existing"
        assert mock_session.call_args.kwargs["line_items"][0]["price"] == "price_supporter_test"

    def test_checkout_invalid_tier(self, client, seed_data, auth_headers):
        resp = client.post("/api/v1/billing/checkout", json={"tier": "platinum"},
                           headers=auth_headers)
        assert resp.status_code == 400
        error = resp.get_json()["error"]
        assert error["code"] == "INVALID_INPUT"
        assert error["field"] == "tier"

    def test_checkout_missing_tier(self, client, seed_data, auth_headers):
        resp = client.post("/api/v1/billing/checkout", json={}, headers=auth_headers)
        assert resp.status_code == 400
        assert resp.get_json()["error"]["code"] == "MISSING_FIELD"

    def test_checkout_unconfigured_price(self, app, client, seed_data, auth_headers):
        original = app.config["STRIPE_PRICE_VIP"]
        app.config["STRIPE_PRICE_VIP"] = ""
        try:
            resp = client.post("/api/v1/billing/checkout", json={"tier": "vip"},
                               headers=auth_headers)
        finally:
            app.config["STRIPE_PRICE_VIP"] = original
        assert resp.status_code == 400
        assert resp.get_json()["error"]["field"] == "tier"

    @patch("socialmarket.services.stripe_service.stripe.Customer.create")
    def test_checkout_stripe_error(self, mock_customer, client, seed_data, auth_headers):
        mock_customer.side_effect = stripe.StripeError("card network down")

        resp = client.post("/api/v1/billing/checkout", json={"tier": "vip"},
                           headers=auth_headers)

        assert resp.status_code == 500
        error = resp.get_json()["error"]
        assert error["code"] == "EXTERNAL_API_ERROR"
        assert "card network" not in error["message"]

    def test_checkout_requires_auth(self, client, seed_data):
        resp = client.post("/api/v1/billing/checkout", json={"tier": "vip"})
        assert resp.status_code == 401
        assert resp.get_json()["error"]["code"] == "UNAUTHORIZED"

    def test_checkout_user_without_profile(self, client, seed_data, as_user):
        headers = as_user("ghost-user", "ghost@example.com")
        resp = client.post("/api/v1/billing/checkout", json={"tier": "vip"}, headers=headers)
        assert resp.status_code == 404


class TestSubscriptionView:

    def test_no_subscription(self, client, seed_data, auth_headers):
        resp = client.get("/api/v1/billing/subscription", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.get_json() == {"subscription": None}

    def test_with_subscription(self, client, seed_data, auth_headers):
        db.session.add(Subscription(
            user_id=seed_data["buyer_id"],
            stripe_customer_id="cus_1",
            stripe_subscription_id="sub_1",
            tier="vip",
            status="active",
        ))
        db.session.commit()

        resp = client.get("/api/v1/billing/subscription", headers=auth_headers)
        data = resp.get_json()["subscription"]
        assert data["tier"] == "vip"
        assert data["status"] == "active"
        assert data["canceled_at"] is None


class TestPaymentIntents:
    """Tests for marketplace PaymentIntent creation."""

    @patch("socialmarket.services.stripe_service.stripe.PaymentIntent.create")
    def test_creates_intent_and_pending_order(self, mock_intent, client, seed_data,
                                              auth_headers):
        mock_intent.return_value = MagicMock(id="pi_123", client_secret="pi_123_secret_abc")

        resp = client.post(
            "/api/v1/marketplace/payment-intents",
            json={"item_id": seed_data["item_id"], "quantity": 2, "amount": 1},
            headers=auth_headers,
        )

        assert resp.status_code == 201
        data = resp.get_json()
        assert data["client_secret"] == "pi_123_secret_abc"
        assert data["payment_intent_id"] == "pi_123"
        assert data["order"]["status"] == "pending"
        assert data["order"]["total_price"] == "25.00"

        # Amount is the listed price x quantity, never the client's figure.
        kwargs = mock_intent.call_args.kwargs
        assert kwargs["amount"] == 2500
        assert kwargs["currency"] == "cad"
        assert kwargs["metadata"]["buyerId"] == seed_data["buyer_id"]

        order = Order.query.filter_by(payment_intent_id="pi_123").one()
        assert order.buyer_id == seed_data["buyer_id"]
        assert order.seller_id == seed_data["seller_id"]
        assert order.total_price == Decimal("25.00")

    def test_item_not_found(self, client, seed_data, auth_headers):
        resp = client.post("/api/v1/marketplace/payment-intents",
                           json={"item_id": "missing"}, headers=auth_headers)
        assert resp.status_code == 404
        assert resp.get_json()["error"]["code"] == "NOT_FOUND"

    def test_cannot_buy_own_item(self, client, seed_data, as_user):
        headers = as_user(seed_data["seller_id"], seed_data["seller_email"])
        resp = client.post("/api/v1/marketplace/payment-intents",
                           json={"item_id": seed_data["item_id"]}, headers=headers)
        assert resp.status_code == 400
        assert Order.query.count() == 0

    def test_unavailable_item(self, client, seed_data, auth_headers):
        db.session.get(MarketplaceItem, seed_data["item_id"]).is_available = False
        db.session.commit()

        resp = client.post("/api/v1/marketplace/payment-intents",
                           json={"item_id": seed_data["item_id"]}, headers=auth_headers)
        assert resp.status_code == 400

    def test_quantity_out_of_range(self, client, seed_data, auth_headers):
        resp = client.post("/api/v1/marketplace/payment-intents",
                           json={"item_id": seed_data["item_id"], "quantity": 0},
                           headers=auth_headers)
        assert resp.status_code == 400
        assert resp.get_json()["error"]["field"] == "quantity"

    @patch("socialmarket.services.stripe_service.stripe.PaymentIntent.create")
    def test_stripe_error_writes_no_order(self, mock_intent, client, seed_data, auth_headers):
        mock_intent.side_effect = stripe.StripeError("boom")

        resp = client.post("/api/v1/marketplace/payment-intents",
                           json={"item_id": seed_data["item_id"]}, headers=auth_headers)

        assert resp.status_code == 500
        assert resp.get_json()["error"]["code"] == "EXTERNAL_API_ERROR"
        assert Order.query.count() == 0


class TestOrderView:

    def _order(self, seed_data):
        order = Order(
            buyer_id=seed_data["buyer_id"],
            seller_id=seed_data["seller_id"],
            item_id=seed_data["item_id"],
            quantity=1,
            total_price=Decimal("12.50"),
            currency="cad",
            payment_intent_id="pi_view",
        )
        db.session.add(order)
        db.session.commit()
        return order.id

    def test_buyer_and_seller_can_view(self, client, seed_data, as_user):
        order_id = self._order(seed_data)

        for user_id, email in ((seed_data["buyer_id"], seed_data["buyer_email"]),
                               (seed_data["seller_id"], seed_data["seller_email"])):
            resp = client.get(f"/api/v1/marketplace/orders/{order_id}",
                              headers=as_user(user_id, email))
            assert resp.status_code == 200
            assert resp.get_json()["order"]["id"] == order_id

    def test_stranger_forbidden(self, client, seed_data, as_user):
        order_id = self._order(seed_data)
        resp = client.get(f"/api/v1/marketplace/orders/{order_id}",
                          headers=as_user("someone-else", "x@example.com"))
        assert resp.status_code == 403
        assert resp.get_json()["error"]["code"] == "FORBIDDEN"
