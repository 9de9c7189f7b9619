"""Unit tests for create-checkout request validation."""
import pytest
from pydantic import ValidationError

from src.storefront import schemas


def valid_payload(**overrides):
    payload = {
        "amount": "64.99",
        "currency": "ZAR",
        "successUrl": "https://shop.example.com/success-redirect",
        "cancelUrl": "https://shop.example.com/cancel-redirect",
        "failureUrl": "https://shop.example.com/failure-redirect",
        "metadata": {"items": [{"id": "P1", "name": "Maize Meal 5kg", "quantity": 1, "price": 64.99}]},
    }
    payload.update(overrides)
    return payload


def messages_for(payload):
    with pytest.raises(ValidationError) as exc:
        schemas.CheckoutRequest.model_validate(payload)
    return schemas.validation_messages(exc.value)


class TestCheckoutRequest:
    def test_valid_request(self):
        request = schemas.CheckoutRequest.model_validate(valid_payload())
        assert request.amount_minor == 6499
        assert request.currency == "ZAR"
        assert request.success_url == "https://shop.example.com/success-redirect"
        assert request.metadata.items[0].unit_price_minor == 6499

    def test_return_urls_are_optional(self):
        payload = valid_payload()
        for key in ("successUrl", "cancelUrl", "failureUrl"):
            del payload[key]
        request = schemas.CheckoutRequest.model_validate(payload)
        assert request.success_url is None

    def test_numeric_product_ids_become_strings(self):
        payload = valid_payload(metadata={"items": [{"id": 7, "quantity": 1, "price": "64.99"}]})
        request = schemas.CheckoutRequest.model_validate(payload)
        assert request.metadata.items[0].id == "7"

    def test_lowercase_currency_normalised(self):
        assert schemas.CheckoutRequest.model_validate(valid_payload(currency="zar")).currency == "ZAR"

    def test_zero_amount(self):
        assert "amount must be positive" in messages_for(valid_payload(amount="0"))

    def test_missing_amount(self):
        payload = valid_payload()
        del payload["amount"]
        assert "amount is required" in messages_for(payload)

    def test_non_numeric_amount(self):
        assert "amount must be a number" in messages_for(valid_payload(amount="sixty"))

    def test_sub_cent_amount_is_not_positive(self):
        items = [{"id": "P1", "quantity": 1, "price": "0.001"}]
        messages = messages_for(valid_payload(amount="0.001", metadata={"items": items}))
        assert "amount must be positive" in messages
        assert "price must be positive" in messages

    def test_huge_amount_is_rejected_by_name(self):
        assert "amount is too large" in messages_for(valid_payload(amount="1e30"))

    def test_huge_item_price_is_rejected_by_name(self):
        items = [{"id": "P1", "quantity": 1, "price": "1e30"}]
        assert "price is too large" in messages_for(valid_payload(metadata={"items": items}))

    @pytest.mark.parametrize("currency", ["ZAR\n", " ZAR", "ZARR"])
    def test_currency_must_be_exactly_three_letters(self, currency):
        assert "currency must be a 3-letter currency code" in messages_for(valid_payload(currency=currency))

    def test_errors_are_aggregated_in_field_order(self):
        messages = messages_for(valid_payload(amount="-1", currency="RAND", successUrl="not a url", metadata={"items": []}))
        assert messages == [
            "amount must be positive",
            "currency must be a 3-letter currency code",
            "successUrl must be an absolute http(s) URL",
            "items must not be empty",
        ]

    def test_missing_metadata_reports_items(self):
        payload = valid_payload()
        del payload["metadata"]
        assert messages_for(payload) == ["items must not be empty"]

    def test_bad_line_item_fields_are_named(self):
        payload = valid_payload(metadata={"items": [{"id": "P1", "quantity": 0, "price": "64.99"}]})
        messages = messages_for(payload)
        assert len(messages) == 1
        assert messages[0].startswith("metadata.items.0.quantity")

    def test_amount_must_match_items_total(self):
        payload = valid_payload(
            amount="100.00",
            metadata={"items": [{"id": "P1", "quantity": 2, "price": "45.00"}]},
        )
        assert messages_for(payload) == ["amount does not match line items total"]

    def test_items_total_uses_minor_units(self):
        payload = valid_payload(
            amount="0.30",
            metadata={"items": [{"id": "P1", "quantity": 1, "price": 0.1}, {"id": "P2", "quantity": 1, "price": 0.2}]},
        )
        assert schemas.CheckoutRequest.model_validate(payload).amount_minor == 30
