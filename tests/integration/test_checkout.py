"""Integration tests for POST /create-checkout."""
from urllib.parse import parse_qs, urlsplit

from src.storefront import crud, models
from src.storefront.main import app, get_payment_provider
from src.storefront.provider import ProviderRequestError, ProviderTimeoutError, ProviderUnavailableError


class TestCreateCheckout:
    def test_creates_pending_order_and_session(self, client, db, provider, start_checkout):
        response = start_checkout(metadata={
            "items": [{"id": "P1", "name": "Maize Meal 5kg", "quantity": 1, "price": 64.99}],
            "customer_name": "Thandi",
            "customer_phone": "+27820000000",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["checkout_id"] == "ch_test_1"
        assert data["redirectUrl"] == "https://pay.test/ch_test_1"
        assert set(data) == {"redirectUrl", "order_reference", "checkout_id"}
        reference = data["order_reference"]

        sent = provider.created[0]
        assert sent["amount"] == 6499
        assert sent["currency"] == "ZAR"
        assert sent["order_reference"] == reference
        assert sent["items"] == [("P1", 1, 6499)]
        assert sent["metadata"]["customer_phone"] == "+27820000000"

        order = crud.get_order_by_reference(db, reference)
        assert order.status == models.OrderStatus.PENDING
        assert order.checkout_id == "ch_test_1"
        assert order.amount == 6499

    def test_default_return_urls_carry_order_reference(self, client, provider, start_checkout):
        reference = start_checkout().json()["order_reference"]

        success = urlsplit(provider.created[0]["success_url"])
        assert success.netloc == "testserver"
        assert success.path == "/success-redirect"
        assert parse_qs(success.query)["order_reference"] == [reference]
        assert urlsplit(provider.created[0]["failure_url"]).path == "/failure-redirect"

    def test_caller_return_urls_are_kept(self, client, provider, start_checkout):
        start_checkout(successUrl="https://shop.example.com/done?src=app")
        query = parse_qs(urlsplit(provider.created[0]["success_url"]).query)
        assert query["src"] == ["app"]
        assert "order_reference" in query


class TestCreateCheckoutValidation:
    def test_zero_amount(self, client, db, provider, start_checkout):
        response = start_checkout(amount="0")

        assert response.status_code == 400
        assert response.json()["error"] == "validation failed"
        assert "amount must be positive" in response.json()["details"]
        assert provider.created == []
        assert db.query(models.Order).count() == 0

    def test_sub_cent_amount_is_400(self, client, db, provider, start_checkout):
        response = start_checkout(amount="0.001", items=[{"id": "P1", "quantity": 1, "price": "0.001"}])

        assert response.status_code == 400
        assert "amount must be positive" in response.json()["details"]
        assert provider.created == []
        assert db.query(models.Order).count() == 0

    def test_huge_amount_is_400(self, client, db, provider, start_checkout):
        response = start_checkout(amount="1e30")

        assert response.status_code == 400
        assert "amount is too large" in response.json()["details"]
        assert db.query(models.Order).count() == 0

    def test_all_failures_reported_together(self, client, start_checkout):
        response = start_checkout(amount="abc", currency="12", cancelUrl="ftp//nowhere", items=None, metadata={"items": []})

        assert response.status_code == 400
        assert response.json()["details"] == [
            "amount must be a number",
            "currency must be a 3-letter currency code",
            "cancelUrl must be an absolute http(s) URL",
            "items must not be empty",
        ]

    def test_amount_not_matching_items(self, client, start_checkout):
        response = start_checkout(amount="70.00")
        assert response.status_code == 400
        assert response.json()["details"] == ["amount does not match line items total"]

    def test_body_must_be_json_object(self, client):
        response = client.post("/create-checkout", content=b"[1, 2]", headers={"Content-Type": "application/json"})
        assert response.status_code == 400

        response = client.post("/create-checkout", content=b"amount=1", headers={"Content-Type": "text/plain"})
        assert response.status_code == 400


class TestCreateCheckoutProviderFailures:
    def test_unavailable_provider_fails_order(self, client, db, provider, start_checkout):
        provider.fail_with = ProviderUnavailableError("down")

        response = start_checkout()

        assert response.status_code == 503
        assert response.json()["retry_recommended"] is True
        order = db.query(models.Order).one()
        assert order.status == models.OrderStatus.FAILED
        assert order.checkout_id is None

    def test_timeout_is_504(self, client, provider, start_checkout):
        provider.fail_with = ProviderTimeoutError("slow")
        response = start_checkout()
        assert response.status_code == 504
        assert response.json()["retry_recommended"] is True

    def test_rejected_request_is_not_retryable(self, client, provider, start_checkout):
        provider.fail_with = ProviderRequestError("bad request")
        response = start_checkout()
        assert response.status_code == 502
        assert response.json()["retry_recommended"] is False

    def test_missing_api_key_is_500(self, client, db, start_checkout):
        app.dependency_overrides[get_payment_provider] = lambda: None

        response = start_checkout()

        assert response.status_code == 500
        assert response.json() == {"detail": "server configuration error"}
        assert db.query(models.Order).count() == 0
