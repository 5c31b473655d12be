"""Tests for Checkout and Payments API endpoints."""

import asyncio

from fastapi.testclient import TestClient

from storefront.infrastructure.payment_gateway import DECLINED_CARD, SandboxPaymentGateway

BROWSER = {"X-Cart-Session": "browser-1"}
VALID_CARD = {"number": "4111111111111111", "expiration_date": "12/2099", "cvv": "123"}


def _fill_cart(client: TestClient, headers: dict[str, str], *product_ids: str) -> None:
    for product_id in product_ids:
        response = client.post("/cart/items", json={"product_id": product_id}, headers=headers)
        assert response.status_code == 201


def _start(client: TestClient, headers: dict[str, str]) -> dict:
    response = client.post("/checkout", headers=headers)
    assert response.status_code == 201
    return response.json()


class TestClientToken:
    """Tests for GET /payments/client-token."""

    def test_get_client_token(self, client: TestClient) -> None:
        """A client token is issued."""
        response = client.get("/payments/client-token")
        assert response.status_code == 200
        assert response.json()["client_token"].startswith("sandbox_client_token_")

    def test_gateway_down(self, client: TestClient, gateway: SandboxPaymentGateway) -> None:
        """An unavailable gateway returns 503."""
        gateway.token_failure = True
        response = client.get("/payments/client-token")
        assert response.status_code == 503
        assert response.json()["message"] == "Error fetching payment token"


class TestStartCheckout:
    """Tests for POST /checkout."""

    def test_anonymous_redirects_to_login(self, client: TestClient) -> None:
        """Guests are sent to login and come back to the cart."""
        _fill_cart(client, BROWSER, "laptop")

        data = _start(client, BROWSER)

        assert data["status"] == "blocked"
        assert data["redirect_to"] == "/login"
        assert data["return_to"] == "/cart"
        assert data["message"] == "Please Login to checkout"
        assert not data["can_submit"]

    def test_empty_cart(self, client: TestClient, buyer_headers) -> None:
        """Empty carts go back to the cart page."""
        data = _start(client, buyer_headers)
        assert data["status"] == "blocked"
        assert data["error_code"] == "EMPTY_CART"
        assert data["redirect_to"] == "/cart"

    def test_missing_address(self, client: TestClient, verifier) -> None:
        """Buyers without an address go to their profile."""
        headers = {"Authorization": f"Bearer {verifier.sign({'sub': 'u9', 'name': 'No'})}"}
        _fill_cart(client, headers, "mouse")

        data = _start(client, headers)

        assert data["redirect_to"] == "/dashboard/user/profile"

    def test_ready_with_token(self, client: TestClient, buyer_headers) -> None:
        """A ready buyer gets a client token and can pay."""
        _fill_cart(client, buyer_headers, "laptop")

        data = _start(client, buyer_headers)

        assert data["status"] == "ready"
        assert data["can_submit"]
        assert data["client_token"]

    def test_token_failure_and_retry(
        self, client: TestClient, gateway: SandboxPaymentGateway, buyer_headers
    ) -> None:
        """A failed token fetch shows an error and can be retried."""
        _fill_cart(client, buyer_headers, "laptop")
        gateway.token_failure = True

        data = _start(client, buyer_headers)
        assert data["status"] == "failed"
        assert data["message"] == "Error fetching payment token"
        assert not data["can_submit"]

        gateway.token_failure = False
        retry = client.post(f"/checkout/{data['id']}/token", headers=buyer_headers)

        assert retry.status_code == 200
        assert retry.json()["status"] == "ready"

    def test_retry_on_ready_session_conflicts(self, client: TestClient, buyer_headers) -> None:
        """Retrying a ready session returns 409."""
        _fill_cart(client, buyer_headers, "laptop")
        data = _start(client, buyer_headers)

        response = client.post(f"/checkout/{data['id']}/token", headers=buyer_headers)

        assert response.status_code == 409

    def test_get_session(self, client: TestClient, buyer_headers, admin_headers) -> None:
        """Sessions are visible to their owner only."""
        _fill_cart(client, buyer_headers, "laptop")
        data = _start(client, buyer_headers)

        assert client.get(f"/checkout/{data['id']}", headers=buyer_headers).status_code == 200
        other = client.get(f"/checkout/{data['id']}", headers=admin_headers)
        assert other.status_code == 404
        assert other.json()["error_code"] == "CHECKOUT_NOT_FOUND"


class TestSubmitPayment:
    """Tests for POST /checkout/{id}/payment."""

    def test_pay_with_hosted_fields(self, client: TestClient, buyer_headers) -> None:
        """Paying records the order, clears the cart and redirects."""
        _fill_cart(client, buyer_headers, "laptop", "mouse")
        session = _start(client, buyer_headers)

        response = client.post(
            f"/checkout/{session['id']}/payment",
            json={"hosted_fields": VALID_CARD},
            headers=buyer_headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "success"
        assert data["redirect_to"] == "/dashboard/user/orders"
        assert data["order_id"]
        assert client.get("/cart", headers=buyer_headers).json()["items"] == []

        orders = client.get("/orders", headers=buyer_headers).json()
        assert orders["total"] == 1
        assert orders["items"][0]["total"]["amount"] == 102400

    def test_pay_with_nonce(
        self, client: TestClient, gateway: SandboxPaymentGateway, buyer_headers
    ) -> None:
        """A nonce obtained by the browser is accepted."""
        _fill_cart(client, buyer_headers, "mouse")
        session = _start(client, buyer_headers)
        nonce = asyncio.run(gateway.issue_nonce())

        response = client.post(
            f"/checkout/{session['id']}/payment",
            json={"nonce": nonce},
            headers=buyer_headers,
        )

        assert response.status_code == 201
        assert response.json()["transaction_id"] in gateway.transactions

    def test_missing_nonce(self, client: TestClient, buyer_headers) -> None:
        """A submission without payment data is a validation error."""
        _fill_cart(client, buyer_headers, "mouse")
        session = _start(client, buyer_headers)

        response = client.post(
            f"/checkout/{session['id']}/payment", json={}, headers=buyer_headers
        )

        assert response.status_code == 422
        body = response.json()
        assert body["error_code"] == "CARD_VALIDATION_ERROR"
        assert body["message"] == "Payment method nonce is required"
        assert body["details"]["status"] == "ready"

    def test_invalid_card(self, client: TestClient, buyer_headers) -> None:
        """Bad card input is rejected and the cart kept."""
        _fill_cart(client, buyer_headers, "mouse")
        session = _start(client, buyer_headers)

        response = client.post(
            f"/checkout/{session['id']}/payment",
            json={"hosted_fields": {**VALID_CARD, "number": "4111111111111112"}},
            headers=buyer_headers,
        )

        assert response.status_code == 422
        assert len(client.get("/cart", headers=buyer_headers).json()["items"]) == 1

    def test_declined_card_then_retry(self, client: TestClient, buyer_headers) -> None:
        """A declined card returns 502 and the buyer can pay again."""
        _fill_cart(client, buyer_headers, "mouse")
        session = _start(client, buyer_headers)
        url = f"/checkout/{session['id']}/payment"

        declined = client.post(
            url,
            json={"hosted_fields": {**VALID_CARD, "number": DECLINED_CARD}},
            headers=buyer_headers,
        )
        assert declined.status_code == 502
        assert declined.json()["error_code"] == "GATEWAY_ERROR"

        paid = client.post(url, json={"hosted_fields": VALID_CARD}, headers=buyer_headers)
        assert paid.status_code == 201

    def test_second_payment_after_success_conflicts(
        self, client: TestClient, buyer_headers
    ) -> None:
        """A finished checkout cannot be paid twice."""
        _fill_cart(client, buyer_headers, "mouse")
        session = _start(client, buyer_headers)
        url = f"/checkout/{session['id']}/payment"
        client.post(url, json={"hosted_fields": VALID_CARD}, headers=buyer_headers)

        again = client.post(url, json={"hosted_fields": VALID_CARD}, headers=buyer_headers)

        assert again.status_code == 409
        assert client.get("/orders", headers=buyer_headers).json()["total"] == 1

    def test_out_of_stock(self, client: TestClient, buyer_headers) -> None:
        """Products without stock fail with 409 before charging."""
        _fill_cart(client, buyer_headers, "monitor")
        session = _start(client, buyer_headers)

        response = client.post(
            f"/checkout/{session['id']}/payment",
            json={"hosted_fields": VALID_CARD},
            headers=buyer_headers,
        )

        assert response.status_code == 409
        assert response.json()["error_code"] == "OUT_OF_STOCK"

    def test_unknown_session(self, client: TestClient, buyer_headers) -> None:
        """Unknown sessions return 404."""
        response = client.post(
            "/checkout/nope/payment", json={"nonce": "n"}, headers=buyer_headers
        )
        assert response.status_code == 404


class TestAbandonCheckout:
    """Tests for DELETE /checkout/{id}."""

    def test_abandon(self, client: TestClient, buyer_headers) -> None:
        """Abandoned sessions refuse payment and keep the cart."""
        _fill_cart(client, buyer_headers, "mouse")
        session = _start(client, buyer_headers)

        response = client.delete(f"/checkout/{session['id']}", headers=buyer_headers)
        assert response.status_code == 204

        state = client.get(f"/checkout/{session['id']}", headers=buyer_headers).json()
        assert state["status"] == "abandoned"

        paid = client.post(
            f"/checkout/{session['id']}/payment",
            json={"hosted_fields": VALID_CARD},
            headers=buyer_headers,
        )
        assert paid.status_code == 409
        assert len(client.get("/cart", headers=buyer_headers).json()["items"]) == 1

    def test_abandon_unknown_session(self, client: TestClient, buyer_headers) -> None:
        """Unknown sessions return 404."""
        response = client.delete("/checkout/nope", headers=buyer_headers)
        assert response.status_code == 404
