"""
Test Module: test_api.py
Description: Route tests through FastAPI's TestClient.

Tests:
    - Response envelope for success, app errors, auth errors and validation errors
    - Auth, transaction, AI, payment and subscription endpoints end to end
"""

from datetime import date, datetime, timedelta

from enums import SubscriptionTier


def _add(client, headers, **overrides):
    body = {
        "description": "Swiggy order",
        "amount": 250.0,
        "date": date.today().isoformat(),
        "category": "Food",
        "payment_mode": "UPI",
    }
    body.update(overrides)
    return client.post("/api/transactions/add", json=body, headers=headers)


# =============================================================================
# System
# =============================================================================

class TestSystem:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": "connected", "ai": "circuit_closed"}

    def test_metrics(self, client):
        body = client.get("/metrics").json()

        assert "counters" in body
        assert "cache" in body
        assert body["circuit_breaker"]["state"] == "closed"


# =============================================================================
# Auth
# =============================================================================

class TestAuthEndpoints:
    def test_register_then_login(self, client):
        response = client.post(
            "/api/auth/register",
            json={"name": "Asha", "email": "asha@example.com", "password": "hunter22"},
        )
        body = response.json()

        assert response.status_code == 200
        assert body["success"] is True
        assert body["message"] == "User registered successfully"
        assert body["data"]["user"]["email"] == "asha@example.com"
        assert "timestamp" in body

        login = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "hunter22"})
        tokens = login.json()["data"]
        assert tokens["token"] and tokens["refresh_token"]

        refreshed = client.post("/api/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refreshed.json()["data"]["refresh_token"] == tokens["refresh_token"]

    def test_duplicate_register_is_409(self, client):
        payload = {"name": "A", "email": "a@example.com", "password": "secret1"}
        client.post("/api/auth/register", json=payload)

        response = client.post("/api/auth/register", json=payload)

        assert response.status_code == 409
        assert response.json()["success"] is False
        assert response.json()["message"] == "Email already registered"

    def test_wrong_password_is_401(self, client):
        client.post("/api/auth/register", json={"name": "A", "email": "a@example.com", "password": "secret1"})

        response = client.post("/api/auth/login", json={"email": "a@example.com", "password": "nope"})

        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_validation_error_envelope(self, client):
        response = client.post("/api/auth/register", json={"name": "A", "email": "not-an-email", "password": "x"})
        body = response.json()

        assert response.status_code == 400
        assert body["success"] is False
        assert body["message"] == "Validation failed"
        assert "password" in body["data"]

    def test_missing_token_is_401_envelope(self, client):
        response = client.get("/api/transactions/all")

        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_google_shortcut_redirects(self, client):
        response = client.get("/auth/google", follow_redirects=False)

        assert response.status_code == 307
        assert response.headers["location"] == "/oauth2/authorization/google"

    def test_oauth_callback_failure_redirects_to_frontend(self, client):
        response = client.get("/login/oauth2/code/google?error=access_denied", follow_redirects=False)

        assert response.status_code == 307
        assert response.headers["location"].endswith("?error=authentication_failed")

    def test_profile(self, client, user, auth_headers):
        body = client.get("/api/users/me", headers=auth_headers(user)).json()["data"]

        assert body["user"]["email"] == user.email
        assert body["effective_tier"] == "FREE"
        assert body["subscription_active"] is False
        assert body["remaining_ai_chats"] == 2


# =============================================================================
# Transactions
# =============================================================================

class TestTransactionEndpoints:
    def test_crud_flow(self, client, user, auth_headers):
        headers = auth_headers(user)

        created = _add(client, headers).json()
        assert created["message"] == "Transaction added successfully"
        transaction_id = created["data"]["id"]

        listed = client.get("/api/transactions/all", headers=headers).json()["data"]
        assert [t["id"] for t in listed] == [transaction_id]

        recategorized = client.put(
            f"/api/transactions/{transaction_id}/category", params={"category": "Travel"}, headers=headers
        ).json()
        assert recategorized["data"]["category"] == "Travel"

        deleted = client.delete(f"/api/transactions/{transaction_id}", headers=headers).json()
        assert deleted["success"] is True
        assert deleted["data"] is None
        assert client.get("/api/transactions/all", headers=headers).json()["data"] == []

    def test_non_positive_amount_rejected(self, client, user, auth_headers):
        response = _add(client, auth_headers(user), amount=0)
        assert response.status_code == 400

    def test_other_users_transaction_is_403(self, client, make_user, auth_headers):
        owner = make_user()
        intruder = make_user()
        transaction_id = _add(client, auth_headers(owner)).json()["data"]["id"]

        response = client.delete(f"/api/transactions/{transaction_id}", headers=auth_headers(intruder))

        assert response.status_code == 403
        assert response.json()["message"] == "Unauthorized access"

    def test_unknown_transaction_is_404(self, client, user, auth_headers):
        response = client.put(
            "/api/transactions/999/category", params={"category": "Food"}, headers=auth_headers(user)
        )
        assert response.status_code == 404

    def test_date_range_and_stats(self, client, user, auth_headers):
        headers = auth_headers(user)
        _add(client, headers, date="2024-03-05", amount=100.0, category="Food")
        _add(client, headers, date="2024-03-20", amount=300.0, category="Travel")
        _add(client, headers, date="2024-04-02", amount=50.0, category="Food")

        in_range = client.get(
            "/api/transactions/date-range",
            params={"start_date": "2024-03-01", "end_date": "2024-03-31"},
            headers=headers,
        ).json()["data"]
        assert [t["date"] for t in in_range] == ["2024-03-20", "2024-03-05"]

        stats = client.get(
            "/api/transactions/stats",
            params={"start_date": "2024-03-01", "end_date": "2024-03-31"},
            headers=headers,
        ).json()["data"]
        assert stats["total_spending"] == 400.0
        assert stats["by_category"][0] == {"category": "Travel", "total": 300.0}

    def test_inverted_range_is_400(self, client, user, auth_headers):
        response = client.get(
            "/api/transactions/date-range",
            params={"start_date": "2024-03-31", "end_date": "2024-03-01"},
            headers=auth_headers(user),
        )
        assert response.status_code == 400

    def test_recent_defaults_to_three_months(self, client, user, auth_headers):
        headers = auth_headers(user)
        _add(client, headers, description="fresh")
        _add(client, headers, description="stale", date=(date.today() - timedelta(days=200)).isoformat())

        recent = client.get("/api/transactions/recent", headers=headers).json()["data"]

        assert [t["description"] for t in recent] == ["fresh"]


# =============================================================================
# AI
# =============================================================================

class TestAIEndpoints:
    def test_chatbot_consumes_quota(self, client, user, auth_headers, fake_gemini):
        headers = auth_headers(user)

        first = client.post("/api/ai/chatbot", json={"query": "Where does my money go?"}, headers=headers).json()
        assert first["data"] == {
            "response": fake_gemini.reply,
            "remaining_chats": 1,
            "subscription_tier": "FREE",
        }

        client.post("/api/ai/chatbot", json={"query": "Again?"}, headers=headers)
        blocked = client.post("/api/ai/chatbot", json={"query": "One more"}, headers=headers)

        assert blocked.status_code == 429
        assert blocked.json()["message"].startswith("Daily AI chat limit exceeded. You have used 2/2 requests.")
        assert len(fake_gemini.prompts) == 2

    def test_blank_query_rejected(self, client, user, auth_headers):
        response = client.post("/api/ai/chatbot", json={"query": "   "}, headers=auth_headers(user))
        assert response.status_code == 400

    def test_chat_limit(self, client, make_user, auth_headers):
        premium = make_user(SubscriptionTier.PREMIUM, end_date=datetime.utcnow() + timedelta(days=30))

        body = client.get("/api/ai/chat-limit", headers=auth_headers(premium)).json()["data"]

        assert body == {"remaining": 15, "total": 15, "subscription_tier": "PREMIUM", "is_premium": True}

    def test_chat_limit_reports_lapsed_plan_as_free(self, client, make_user, auth_headers):
        lapsed = make_user(SubscriptionTier.PREMIUM, end_date=datetime.utcnow() - timedelta(days=1))

        body = client.get("/api/ai/chat-limit", headers=auth_headers(lapsed)).json()["data"]

        assert body == {"remaining": 2, "total": 2, "subscription_tier": "FREE", "is_premium": False}

    def test_analyze_falls_back_on_plain_text(self, client, user, auth_headers):
        response = client.post(
            "/api/ai/analyze",
            json={"transactions": [{"description": "Uber ride", "amount": 180.0}]},
            headers=auth_headers(user),
        )
        body = response.json()

        assert body["message"] == "Analysis completed"
        assert body["data"]["categorized_transactions"] == [
            {"transaction": "Uber ride ₹180.00", "category": "Travel"}
        ]

    def test_insights(self, client, user, auth_headers, fake_gemini):
        headers = auth_headers(user)
        _add(client, headers)

        body = client.get("/api/ai/insights", headers=headers).json()

        assert body["data"] == fake_gemini.reply


# =============================================================================
# Payments & Subscriptions
# =============================================================================

class TestPaymentEndpoints:
    def test_plans_and_gateways(self, client):
        plans = client.get("/api/payments/plans").json()["data"]
        gateways = client.get("/api/payments/gateways").json()["data"]

        assert [p["name"] for p in plans] == ["FREE", "PREMIUM", "ENTERPRISE"]
        assert gateways == ["MOCK"]

    def test_upgrade_flow(self, client, user, auth_headers):
        headers = auth_headers(user)

        order = client.post(
            "/api/payments/create-order",
            json={"amount": 9.0, "payment_method": "UPI", "subscription_tier": "PREMIUM", "duration_months": 1},
            headers=headers,
        ).json()
        assert order["success"] is True
        order_id = order["data"]["order_id"]

        verified = client.post(
            "/api/payments/verify",
            json={"order_id": order_id, "payment_id": "pay_abc", "signature": "sig"},
            headers=headers,
        )
        assert verified.status_code == 200

        profile = client.get("/api/users/me", headers=headers).json()["data"]
        assert profile["effective_tier"] == "PREMIUM"
        assert profile["remaining_ai_chats"] == 15

        history = client.get("/api/payments/history", headers=headers).json()["data"]
        assert history[0]["status"] == "SUCCESS"
        assert history[0]["transaction_id"] == "pay_abc"

        again = client.post(
            "/api/payments/verify",
            json={"order_id": order_id, "payment_id": "pay_abc", "signature": "sig"},
            headers=headers,
        )
        assert again.status_code == 409

        cancelled = client.post("/api/subscriptions/cancel", headers=headers).json()
        assert cancelled["data"]["subscription_tier"] == "FREE"

    def test_underpayment_is_400(self, client, user, auth_headers):
        response = client.post(
            "/api/payments/create-order",
            json={"amount": 1.0, "payment_method": "UPI", "subscription_tier": "ENTERPRISE", "duration_months": 1},
            headers=auth_headers(user),
        )

        assert response.status_code == 400
        assert response.json()["success"] is False
