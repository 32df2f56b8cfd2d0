"""
Checkout and customer endpoint tests (/checkout/...).

The activation webhook and the return redirect race; whichever lands first creates the
subscription and the other must find it.
"""

from datetime import datetime
from decimal import Decimal
from urllib.parse import parse_qs, urlsplit

from subsync.core.config import GatewayConfig
from subsync.database.repositories.checkout_intent_repository import CheckoutIntentCache
from subsync.database.repositories.subscription_repository import SubscriptionRepository
from subsync.database.session import get_session
from subsync.utils.enums import CancellationSource, RemoteState, SubscriptionStatus

USER = {"X-User-Id": "4"}


def start_checkout(client, plan_payload, **overrides):
    body = {
        "payment_method": "paypal",
        "plan": plan_payload,
        "application_id": 21,
        "customer_data": {"email": "buyer@example.com", "first_name": "Ana", "country": "BR"},
        "success_url": "https://app.example.com/billing/success?from=checkout",
        "cancel_url": "https://app.example.com/billing/cancel",
    }
    body.update(overrides)
    return client.post("/checkout/subscriptions", json=body, headers=USER)


def subscription_count():
    with get_session() as db:
        return SubscriptionRepository(db).count()


class TestCreateCheckout:
    def test_returns_approval_url_and_stores_intent(self, test_client, gateway, plan_payload):
        response = start_checkout(test_client, plan_payload)

        assert response.status_code == 201
        data = response.json()
        assert data["remote_subscription_id"] == "I-FAKE0001"
        assert data["checkout_url"] == "https://provider.test/approve/I-FAKE0001"

        success_query = parse_qs(urlsplit(gateway.last_create["success_url"]).query)
        assert success_query["session_key"] == [data["session_key"]]
        assert success_query["from"] == ["checkout"]
        assert gateway.last_create["reference"] == data["session_key"]

        with get_session() as db:
            intent = CheckoutIntentCache(db).take(data["session_key"])
        assert intent.remote_subscription_id == "I-FAKE0001"
        assert intent.checkout_data == {"user_id": 4, "application_id": 21}
        assert subscription_count() == 0

    def test_tax_added_to_total(self, test_client, gateway, settings, monkeypatch, plan_payload):
        monkeypatch.setattr(settings, "tax_rates", {"DE": Decimal("19")})

        response = start_checkout(
            test_client, plan_payload, customer_data={"email": "k@example.de", "country": "de"}
        )

        with get_session() as db:
            intent = CheckoutIntentCache(db).take(response.json()["session_key"])
        assert intent.tax_amount == Decimal("1.90")
        assert intent.total_amount == Decimal("11.90")
        assert gateway.last_create["amount"] == Decimal("11.90")

    def test_unknown_gateway(self, test_client, plan_payload):
        response = start_checkout(test_client, plan_payload, payment_method="bitcoin")
        assert response.status_code == 400

    def test_disabled_gateway(self, test_client, gateway, plan_payload):
        gateway.config = GatewayConfig(name="paypal", enabled=False)
        response = start_checkout(test_client, plan_payload)
        assert response.status_code == 403

    def test_provider_failure_discards_intent(self, test_client, gateway, plan_payload):
        gateway.failing.add("create")

        response = start_checkout(test_client, plan_payload)

        assert response.status_code == 502
        assert response.json()["detail"] == "create failed"
        with get_session() as db:
            assert CheckoutIntentCache(db).purge_expired(datetime(2100, 1, 1)) == 0

    def test_invalid_plan_rejected(self, test_client, plan_payload):
        response = start_checkout(test_client, {**plan_payload, "price": "0"})
        assert response.status_code == 422

    def test_non_numeric_user(self, test_client, plan_payload):
        body = {
            "payment_method": "paypal",
            "plan": plan_payload,
            "success_url": "https://app.example.com/ok",
            "cancel_url": "https://app.example.com/cancel",
        }
        response = test_client.post("/checkout/subscriptions", json=body, headers={"X-User-Id": "abc"})
        assert response.status_code == 400


class TestCheckoutReturn:
    def test_return_before_approval_is_pending(self, test_client, plan_payload):
        session_key = start_checkout(test_client, plan_payload).json()["session_key"]

        response = test_client.get("/checkout/return", params={"session_key": session_key})

        assert response.status_code == 200
        assert response.json()["state"] == "pending"
        assert subscription_count() == 0

    def test_return_before_webhook_creates_subscription(self, test_client, gateway, notifier, plan_payload):
        session_key = start_checkout(test_client, plan_payload).json()["session_key"]
        gateway.remote_states["I-FAKE0001"] = RemoteState.ACTIVE

        response = test_client.get("/checkout/return", params={"session_key": session_key})

        data = response.json()
        assert data["state"] == "active"
        assert data["subscription"]["payment_id"] == "I-FAKE0001"
        assert data["subscription"]["user_id"] == 4
        assert data["subscription"]["status"] == SubscriptionStatus.ACTIVE
        assert len(notifier.events) == 1

    def test_webhook_after_return_does_not_duplicate(self, test_client, gateway, notifier, plan_payload,
                                                     paypal_event):
        session_key = start_checkout(test_client, plan_payload).json()["session_key"]
        gateway.remote_states["I-FAKE0001"] = RemoteState.ACTIVE
        test_client.get("/checkout/return", params={"session_key": session_key})

        response = test_client.post("/webhooks/paypal", json=paypal_event(
            "BILLING.SUBSCRIPTION.ACTIVATED",
            {"id": "I-FAKE0001", "status": "ACTIVE", "custom_id": session_key},
        ))

        assert response.status_code == 200
        assert subscription_count() == 1
        assert len(notifier.events) == 1

    def test_return_after_webhook_finds_subscription(self, test_client, plan_payload, paypal_event):
        session_key = start_checkout(test_client, plan_payload).json()["session_key"]
        test_client.post("/webhooks/paypal", json=paypal_event(
            "BILLING.SUBSCRIPTION.ACTIVATED",
            {"id": "I-FAKE0001", "status": "ACTIVE", "custom_id": session_key},
        ))

        response = test_client.get(
            "/checkout/return", params={"session_key": session_key, "subscription_id": "I-FAKE0001"}
        )

        assert response.status_code == 200
        assert response.json()["state"] == "active"
        assert subscription_count() == 1

    def test_unknown_session(self, test_client):
        response = test_client.get("/checkout/return", params={"session_key": "nope"})
        assert response.status_code == 404
        assert response.json()["message"] == "Checkout session not found or expired"

    def test_provider_unreachable_is_pending(self, test_client, gateway, plan_payload):
        session_key = start_checkout(test_client, plan_payload).json()["session_key"]
        gateway.failing.add("fetch")

        response = test_client.get("/checkout/return", params={"session_key": session_key})

        assert response.json()["state"] == "pending"
        assert subscription_count() == 0


class TestCustomerActions:
    def test_list_only_own_subscriptions(self, test_client, make_subscription):
        mine = make_subscription(user_id=4)
        make_subscription(user_id=5)

        data = test_client.get("/checkout/subscriptions", headers=USER).json()

        assert data["total"] == 1
        assert data["items"][0]["id"] == mine

    def test_cannot_see_other_users_subscription(self, test_client, make_subscription):
        other = make_subscription(user_id=5)
        assert test_client.get(f"/checkout/subscriptions/{other}", headers=USER).status_code == 404
        assert test_client.post(f"/checkout/subscriptions/{other}/cancel", headers=USER).status_code == 404

    def test_cancel_schedules_end_of_period(self, test_client, gateway, notifier, make_subscription,
                                            load_subscription):
        sid = make_subscription(user_id=4, payment_id="I-USERCANCEL")

        response = test_client.post(f"/checkout/subscriptions/{sid}/cancel", headers=USER)

        data = response.json()
        assert data["success"] is True
        assert data["subscription"]["status"] == SubscriptionStatus.PENDING_CANCELLATION
        row = load_subscription(sid)
        assert row.cancellation_source == CancellationSource.FRONTEND
        assert row.next_billing_date == row.end_date
        assert gateway.calls_for("schedule_cancel") == ["I-USERCANCEL"]
        assert notifier.events == []

    def test_cancel_uses_provider_next_billing_time(self, test_client, gateway, make_subscription,
                                                    load_subscription):
        sid = make_subscription(user_id=4)
        gateway.next_billing_time = datetime(2031, 5, 1, 12, 0)

        test_client.post(f"/checkout/subscriptions/{sid}/cancel", headers=USER)

        assert load_subscription(sid).next_billing_date == datetime(2031, 5, 1, 12, 0)

    def test_cancel_twice_is_noop(self, test_client, make_subscription):
        sid = make_subscription(user_id=4)
        test_client.post(f"/checkout/subscriptions/{sid}/cancel", headers=USER)

        data = test_client.post(f"/checkout/subscriptions/{sid}/cancel", headers=USER).json()

        assert data["success"] is True
        assert data["message"] == "Subscription is already pending cancellation"

    def test_cancel_expired_rejected(self, test_client, make_subscription):
        sid = make_subscription(user_id=4, status=SubscriptionStatus.EXPIRED)
        data = test_client.post(f"/checkout/subscriptions/{sid}/cancel", headers=USER).json()
        assert data["success"] is False
        assert data["code"] == "error_cannot_cancel"

    def test_resume_own_cancellation(self, test_client, gateway, make_subscription, load_subscription):
        sid = make_subscription(user_id=4, payment_id="I-RESUME")
        test_client.post(f"/checkout/subscriptions/{sid}/cancel", headers=USER)

        data = test_client.post(f"/checkout/subscriptions/{sid}/resume", headers=USER).json()

        assert data["success"] is True
        row = load_subscription(sid)
        assert row.status == SubscriptionStatus.ACTIVE
        assert row.cancellation_source == CancellationSource.NONE
        assert row.next_billing_date is None
        assert gateway.calls_for("resume") == ["I-RESUME"]

    def test_resume_refused_when_remote_cancelled(self, test_client, gateway, make_subscription,
                                                  load_subscription):
        sid = make_subscription(user_id=4, payment_id="I-GONE")
        test_client.post(f"/checkout/subscriptions/{sid}/cancel", headers=USER)
        gateway.remote_states["I-GONE"] = RemoteState.CANCELLED

        data = test_client.post(f"/checkout/subscriptions/{sid}/resume", headers=USER).json()

        assert data["success"] is False
        assert data["code"] == "error_cannot_resume"
        assert load_subscription(sid).status == SubscriptionStatus.PENDING_CANCELLATION
