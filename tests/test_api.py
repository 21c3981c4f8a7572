"""Tests for the HTTP surface."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from downloadgate.config import settings
from downloadgate.main import app
from downloadgate.models.product import AccessType
from downloadgate.routers.downloads import get_storage_service
from downloadgate.services.crypto_utils import generate_token_value
from downloadgate.services.delivery_authorizer import redeem_access, request_access
from downloadgate.services.results import IssuanceFailedError, RevocationFailedError
from downloadgate.services.token_issuer import TokenPolicy, issue_download_token
from tests.test_utils import create_gate, create_product, utcnow


def request_token(client, product_id, proof=None, holder="a@x.com"):
    body = {"product_id": product_id, "holder_identity": holder}
    if proof is not None:
        body["proof"] = proof
    return client.post("/api/v1/access-requests", json=body)


def redeem(client, token):
    return client.post("/api/v1/downloads/redeem", headers={"Authorization": f"Bearer {token}"})


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestAccessRequests:
    def test_free_product_without_proof(self, client, db_session):
        product = create_product(db_session, AccessType.FREE)

        response = request_token(client, product.id)

        assert response.status_code == 201
        data = response.json()
        assert len(data["token"]) == 43
        assert data["product_id"] == product.id
        assert data["max_redemptions"] == 5
        assert data["expires_at"].endswith("Z")

    def test_payment_flow(self, client, db_session):
        product = create_product(db_session, AccessType.PAYMENT, product_id="P1")

        denied = request_token(client, "P1", {"type": "payment", "verified": False})
        assert denied.status_code == 403
        assert denied.json()["detail"] == {"error": "gate-denied"}

        granted = request_token(
            client, product.id, {"type": "payment", "verified": True, "transaction_ref": "txn_9"}
        )
        assert granted.status_code == 201
        token = granted.json()["token"]

        for expected in range(1, 6):
            response = redeem(client, token)
            assert response.status_code == 200
            assert response.json()["redemption_number"] == expected

        exhausted = redeem(client, token)
        assert exhausted.status_code == 410
        assert exhausted.json()["detail"] == {"error": "exhausted"}

    def test_email_gate(self, client, db_session):
        product = create_product(db_session, AccessType.EMAIL)

        bad = request_token(client, product.id, {"type": "email", "address": "nope"})
        good = request_token(client, product.id, {"type": "email", "address": "a@x.com"})

        assert bad.status_code == 403
        assert good.status_code == 201

    def test_unknown_product(self, client):
        response = request_token(client, "missing")
        assert response.status_code == 404
        assert response.json()["detail"] == {"error": "product-not-found"}

    def test_inactive_product(self, client, db_session):
        product = create_product(db_session, AccessType.FREE, is_active=False)
        response = request_token(client, product.id)
        assert response.status_code == 409
        assert response.json()["detail"] == {"error": "product-inactive"}

    def test_misconfigured_gate(self, client, db_session):
        product = create_product(db_session, AccessType.PAYMENT, with_gate=False)
        response = request_token(client, product.id, {"type": "payment", "verified": True})
        assert response.status_code == 409
        assert response.json()["detail"] == {"error": "misconfigured-gate"}

    def test_unknown_proof_type(self, client, db_session):
        product = create_product(db_session, AccessType.FREE)
        response = request_token(client, product.id, {"type": "oauth"})
        assert response.status_code == 422

    def test_blank_holder_identity(self, client, db_session):
        product = create_product(db_session, AccessType.FREE)
        response = request_token(client, product.id, holder="   ")
        assert response.status_code == 422

    def test_issuance_failure(self, client, db_session):
        product = create_product(db_session, AccessType.FREE)
        with patch(
            "downloadgate.services.delivery_authorizer.issue_download_token",
            side_effect=IssuanceFailedError("collided"),
        ):
            response = request_token(client, product.id)

        assert response.status_code == 503
        assert response.json()["detail"] == {"error": "issuance-failed"}

    def test_generic_denial_when_reasons_hidden(self, client, db_session):
        product = create_product(db_session, AccessType.PAYMENT)
        with patch.object(settings, "expose_denial_reasons", False):
            response = request_token(client, product.id, {"type": "payment", "verified": False})

        assert response.status_code == 403
        assert response.json()["detail"] == {"error": "denied"}


class TestRedeem:
    def test_redeem_returns_asset_location(self, client, db_session):
        product = create_product(db_session, AccessType.FREE)
        token = request_token(client, product.id).json()["token"]

        response = redeem(client, token)

        assert response.status_code == 200
        data = response.json()
        assert data["product_id"] == product.id
        assert data["asset_location"] == product.asset_location
        assert data["download_url"] is None
        assert data["remaining_redemptions"] == 4

    def test_unknown_token(self, client):
        response = redeem(client, generate_token_value())
        assert response.status_code == 404
        assert response.json()["detail"] == {"error": "not-found"}

    def test_expired_token(self, client, db_session):
        product = create_product(db_session, AccessType.FREE)
        _, raw_token = issue_download_token(
            db_session,
            product.id,
            "a@x.com",
            TokenPolicy(ttl=timedelta(seconds=1), max_redemptions=5),
            now=utcnow() - timedelta(minutes=1),
        )

        response = redeem(client, raw_token)

        assert response.status_code == 410
        assert response.json()["detail"] == {"error": "expired"}

    def test_missing_bearer_prefix(self, client):
        response = client.post("/api/v1/downloads/redeem", headers={"Authorization": "Token abc"})
        assert response.status_code == 401

    def test_missing_authorization(self, client):
        response = client.post("/api/v1/downloads/redeem")
        assert response.status_code == 422

    def test_presigned_url_when_storage_enabled(self, client, db_session):
        product = create_product(db_session, AccessType.FREE)
        token = request_token(client, product.id).json()["token"]

        storage = MagicMock()
        storage.enabled = True
        storage.presign_download = AsyncMock(return_value="https://cdn.example.com/signed")
        app.dependency_overrides[get_storage_service] = lambda: storage

        response = redeem(client, token)

        assert response.status_code == 200
        assert response.json()["download_url"] == "https://cdn.example.com/signed"
        storage.presign_download.assert_awaited_once_with(object_key=product.asset_location)

    def test_presign_failure_still_returns_authorization(self, client, db_session):
        product = create_product(db_session, AccessType.FREE)
        token = request_token(client, product.id).json()["token"]

        storage = MagicMock()
        storage.enabled = True
        storage.presign_download = AsyncMock(side_effect=RuntimeError("signer unavailable"))
        app.dependency_overrides[get_storage_service] = lambda: storage

        with patch(
            "downloadgate.routers.downloads.send_error_alert", new_callable=AsyncMock
        ) as mock_alert:
            response = redeem(client, token)

        assert response.status_code == 200
        data = response.json()
        assert data["download_url"] is None
        assert data["asset_location"] == product.asset_location
        assert data["redemption_number"] == 1
        assert mock_alert.call_args.args[0] == "PresignFailed"


class TestAdmin:
    def test_revoke(self, client, db_session, admin_headers):
        product = create_product(db_session, AccessType.FREE)
        token = request_token(client, product.id).json()["token"]

        response = client.post(
            "/api/v1/admin/tokens/revoke",
            headers={**admin_headers, "Authorization": f"Bearer {token}"},
        )
        assert response.status_code == 200
        assert response.json() == {"ok": True}

        again = client.post(
            "/api/v1/admin/tokens/revoke",
            headers={**admin_headers, "Authorization": f"Bearer {token}"},
        )
        assert again.status_code == 200

        denied = redeem(client, token)
        assert denied.status_code == 410
        assert denied.json()["detail"] == {"error": "revoked"}

    def test_revoke_unknown_token(self, client, admin_headers):
        response = client.post(
            "/api/v1/admin/tokens/revoke",
            headers={**admin_headers, "Authorization": f"Bearer {generate_token_value()}"},
        )
        assert response.status_code == 404

    def test_revoke_wrong_api_key(self, client, admin_headers):
        response = client.post(
            "/api/v1/admin/tokens/revoke",
            headers={"X-API-Key": "wrong-key", "Authorization": "Bearer abc"},
        )
        assert response.status_code == 401
        assert "Invalid API key" in response.json()["detail"]

    def test_admin_not_configured(self, client):
        with patch.object(settings, "internal_api_key", None):
            response = client.post(
                "/api/v1/admin/tokens/revoke",
                headers={"X-API-Key": "any-key", "Authorization": "Bearer abc"},
            )
        assert response.status_code == 503
        assert "not configured" in response.json()["detail"]

    def test_token_usage(self, client, db_session, admin_headers):
        product = create_product(db_session, AccessType.FREE)
        token = request_token(client, product.id).json()["token"]
        redeem(client, token)

        response = client.get(
            "/api/v1/admin/tokens/usage",
            headers={**admin_headers, "Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "active"
        assert data["redemption_count"] == 1
        assert [r["outcome"] for r in data["redemptions"]] == ["granted"]

    def test_product_stats(self, client, db_session, admin_headers):
        product = create_product(db_session, AccessType.FREE)
        token = request_token(client, product.id).json()["token"]
        redeem(client, token)
        redeem(client, token)

        response = client.get(f"/api/v1/admin/products/{product.id}/stats", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["tokens_issued"] == 1
        assert data["downloads"] == 2

    def test_product_stats_unknown_product(self, client, admin_headers):
        response = client.get("/api/v1/admin/products/missing/stats", headers=admin_headers)
        assert response.status_code == 404

    @pytest.mark.parametrize(("active_only", "expected"), [(False, 2), (True, 1)])
    def test_list_products(self, client, db_session, admin_headers, active_only, expected):
        create_product(db_session, AccessType.FREE)
        create_product(db_session, AccessType.EMAIL, is_active=False)

        response = client.get(
            "/api/v1/admin/products",
            params={"active_only": active_only},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert len(response.json()) == expected

    def test_revoke_storage_failure(self, client, db_session, admin_headers):
        product = create_product(db_session, AccessType.FREE)
        token = request_token(client, product.id).json()["token"]

        with patch(
            "downloadgate.routers.admin.revoke_access",
            side_effect=RevocationFailedError("database is locked"),
        ):
            response = client.post(
                "/api/v1/admin/tokens/revoke",
                headers={**admin_headers, "Authorization": f"Bearer {token}"},
            )

        assert response.status_code == 503
        assert response.json()["detail"] == {"error": "revocation-failed"}

    def test_list_tokens_by_product_and_holder(self, client, db_session, admin_headers):
        product = create_product(db_session, AccessType.EMAIL)
        other = create_product(db_session, AccessType.FREE)
        email_proof = {"type": "email", "address": "a@x.com"}
        first = request_token(client, product.id, email_proof, holder="a@x.com").json()["token"]
        request_token(client, product.id, {"type": "email", "address": "b@x.com"}, holder="b@x.com")
        request_token(client, other.id, holder="a@x.com")
        redeem(client, first)

        by_product = client.get(
            "/api/v1/admin/tokens", params={"product_id": product.id}, headers=admin_headers
        )
        assert by_product.status_code == 200
        assert {t["holder_identity"] for t in by_product.json()} == {"a@x.com", "b@x.com"}

        both = client.get(
            "/api/v1/admin/tokens",
            params={"product_id": product.id, "holder_identity": "a@x.com"},
            headers=admin_headers,
        )
        [summary] = both.json()
        assert summary["token_prefix"] == first[:6]
        assert summary["status"] == "active"
        assert summary["redemption_count"] == 1
        assert summary["max_redemptions"] == 5
        assert summary["gate_id"] is not None
        assert summary["last_granted_at"].endswith("Z")
        assert first not in both.text

        by_holder = client.get(
            "/api/v1/admin/tokens", params={"holder_identity": "a@x.com"}, headers=admin_headers
        )
        assert {t["product_id"] for t in by_holder.json()} == {product.id, other.id}

    def test_list_tokens_requires_api_key(self, client, admin_headers):
        response = client.get("/api/v1/admin/tokens", headers={"X-API-Key": "wrong-key"})
        assert response.status_code == 401

    def test_product_gates_with_unlock_counts(self, client, db_session, admin_headers):
        product = create_product(db_session, AccessType.EMAIL, with_gate=False)
        gate = create_gate(db_session, product, AccessType.EMAIL)
        create_gate(db_session, product, AccessType.PAYMENT, is_enabled=False)
        for holder in ("a@x.com", "b@x.com"):
            request_token(client, product.id, {"type": "email", "address": holder}, holder=holder)

        response = client.get(f"/api/v1/admin/products/{product.id}/gates", headers=admin_headers)

        assert response.status_code == 200
        gates = {g["id"]: g for g in response.json()}
        assert len(gates) == 2
        assert gates[gate.id]["unlock_count"] == 2
        assert gates[gate.id]["custom_message"] == "Enter your email to download"
        [disabled] = [g for g in gates.values() if not g["is_enabled"]]
        assert disabled["unlock_count"] == 0

    def test_product_gates_unknown_product(self, client, admin_headers):
        response = client.get("/api/v1/admin/products/missing/gates", headers=admin_headers)
        assert response.status_code == 404


class TestBlockingWork:
    """Database and Argon2 work must not run on the event loop thread."""

    @staticmethod
    def _on_event_loop():
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    def test_access_request_runs_in_threadpool(self, client, db_session, monkeypatch):
        from downloadgate.routers import access

        product = create_product(db_session, AccessType.FREE)
        seen = []

        def recording_request_access(*args, **kwargs):
            seen.append(self._on_event_loop())
            return request_access(*args, **kwargs)

        monkeypatch.setattr(access, "request_access", recording_request_access)

        assert request_token(client, product.id).status_code == 201
        assert seen == [False]

    def test_redeem_runs_in_threadpool(self, client, db_session, monkeypatch):
        from downloadgate.routers import downloads

        product = create_product(db_session, AccessType.FREE)
        token = request_token(client, product.id).json()["token"]
        seen = []

        def recording_redeem_access(*args, **kwargs):
            seen.append(self._on_event_loop())
            return redeem_access(*args, **kwargs)

        monkeypatch.setattr(downloads, "redeem_access", recording_redeem_access)

        assert redeem(client, token).status_code == 200
        assert seen == [False]
