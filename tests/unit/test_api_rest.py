"""
Unit tests for the REST API.
"""

import pytest
from fastapi.testclient import TestClient

from zkcoupon.api import MerchantAuth, ServiceAuth
from zkcoupon.api.rest import create_app, status_for
from zkcoupon.core import ConfirmationAction
from zkcoupon.crypto.commitments import (
    identity_commitment,
    metadata_commitment,
    recovery_commitment,
)
from zkcoupon.crypto.zkp import (
    IssuanceInputs,
    ProofGenerator,
    ProofScheme,
    RedemptionInputs,
    generate_keypair,
)
from zkcoupon.errors import (
    CouponExpiredError,
    CouponNotFoundError,
    IssuanceCapReachedError,
    LockTimeoutError,
    StorageError,
    UnauthorizedError,
    ValidationError,
)
from zkcoupon.wallet import build_recovery_proof

from conftest import MERCHANT_WALLET

IDENTITY_KEY = "identity-service-key"
SERVICE_HEADERS = {"X-API-Key": IDENTITY_KEY}


@pytest.fixture
def auth():
    return MerchantAuth("test-secret")


@pytest.fixture
def client(service, auth):
    return TestClient(create_app(service, auth, ServiceAuth([IDENTITY_KEY])))


@pytest.fixture
def keys():
    return generate_keypair(ProofScheme.HMAC_SHA256)


@pytest.fixture
def merchant(client):
    response = client.post(
        "/v1/merchants", json={"wallet_address": MERCHANT_WALLET, "name": "Corner Cafe"}
    )
    assert response.status_code == 201
    body = response.json()
    return {
        "id": body["merchant"]["merchant_id"],
        "headers": {"Authorization": f"Bearer {body['access_token']}"},
    }


@pytest.fixture
def program(client, merchant, keys):
    response = client.post(
        f"/v1/merchants/{merchant['id']}/programs",
        json={
            "validity_period": 3600,
            "max_issuance": 2,
            "name": "Coffee",
            "verification_key": {"key_data": keys[1].key_data.hex(), "scheme": "hmac_sha256"},
        },
        headers=merchant["headers"],
    )
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def recovery_keys():
    return generate_keypair(ProofScheme.ECDSA_SECP256K1)


@pytest.fixture
def wallet(client, service, recovery_keys):
    commitment = identity_commitment("alice@example.com")
    response = client.post(
        "/v1/registrations",
        json={
            "identity_commitment": commitment,
            "recovery_commitment": recovery_commitment(recovery_keys[1].key_data),
        },
    )
    assert response.status_code == 202
    event = service.notifier.latest(action=ConfirmationAction.REGISTER)

    response = client.post(
        "/v1/registrations/confirm",
        json={"token": event.token, "identity_commitment": commitment},
    )
    assert response.status_code == 201
    return {"address": response.json()["address"], "commitment": commitment}


def issue_body(program, owner, prover):
    commitment, _ = metadata_commitment({"discount": "10%"})
    inputs = IssuanceInputs(program["program_id"], owner, commitment, program["key_version"])
    return {
        "program_id": program["program_id"],
        "owner_wallet": owner,
        "metadata_commitment": commitment,
        "proof": prover.prove(inputs).to_dict(),
        "public_inputs": {
            "program_id": inputs.program_id,
            "owner_wallet": inputs.owner_wallet,
            "metadata_commitment": inputs.metadata_commitment,
            "key_version": inputs.key_version,
        },
    }


@pytest.fixture
def coupon(client, program, wallet, keys):
    response = client.post("/v1/coupons", json=issue_body(program, wallet["address"], ProofGenerator(keys[0])))
    assert response.status_code == 201
    return response.json()


class TestStatusMapping:
    """Test error to HTTP status mapping."""

    @pytest.mark.parametrize(
        "error,status",
        [
            (CouponNotFoundError("x"), 404),
            (UnauthorizedError("x"), 403),
            (ValidationError("x"), 400),
            (IssuanceCapReachedError("x"), 409),
            (CouponExpiredError("x"), 410),
            (LockTimeoutError("x"), 503),
            (StorageError("x"), 500),
        ],
    )
    def test_status_for(self, error, status):
        assert status_for(error) == status


class TestMerchantEndpoints:
    """Test merchant and program endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_register_and_get(self, client, merchant):
        response = client.get(f"/v1/merchants/{merchant['id']}")

        assert response.status_code == 200
        assert response.json()["wallet_address"] == MERCHANT_WALLET
        assert len(client.get("/v1/merchants").json()) == 1

    def test_register_invalid_wallet(self, client):
        response = client.post("/v1/merchants", json={"wallet_address": "nope"})

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_unknown_merchant(self, client):
        response = client.get("/v1/merchants/mer_missing")
        assert response.status_code == 404
        assert response.json()["error"] == "MerchantNotFound"

    def test_update_requires_token(self, client, merchant):
        response = client.patch(f"/v1/merchants/{merchant['id']}", json={"name": "New"})
        assert response.status_code == 401

        response = client.patch(
            f"/v1/merchants/{merchant['id']}",
            json={"name": "New"},
            headers={"Authorization": "Bearer garbage"},
        )
        assert response.status_code == 401

    def test_update(self, client, merchant):
        response = client.patch(
            f"/v1/merchants/{merchant['id']}", json={"name": "New"}, headers=merchant["headers"]
        )
        assert response.status_code == 200
        assert response.json()["name"] == "New"

    def test_other_merchant_forbidden(self, client, merchant):
        other = client.post("/v1/merchants", json={"wallet_address": "0x" + "cd" * 20}).json()
        headers = {"Authorization": f"Bearer {other['access_token']}"}

        response = client.post(f"/v1/merchants/{merchant['id']}/deactivate", headers=headers)
        assert response.status_code == 403
        assert response.json()["error"] == "Unauthorized"

    def test_deactivate(self, client, merchant):
        response = client.post(
            f"/v1/merchants/{merchant['id']}/deactivate", headers=merchant["headers"]
        )
        assert response.status_code == 200
        assert response.json()["active"] is False
        assert client.get("/v1/merchants", params={"active_only": True}).json() == []

    def test_program(self, client, program, merchant):
        assert program["key_version"] == 1
        assert program["issued_count"] == 0

        response = client.get(f"/v1/programs/{program['program_id']}")
        assert response.json() == program
        listed = client.get("/v1/programs", params={"merchant_id": merchant["id"]}).json()
        assert listed == [program]

    def test_program_validation(self, client, merchant):
        response = client.post(
            f"/v1/merchants/{merchant['id']}/programs",
            json={"validity_period": 3600, "max_issuance": 0},
            headers=merchant["headers"],
        )
        assert response.status_code == 422

    def test_program_with_bad_key(self, client, merchant):
        response = client.post(
            f"/v1/merchants/{merchant['id']}/programs",
            json={
                "validity_period": 60,
                "max_issuance": 1,
                "verification_key": {"key_data": "zz", "scheme": "hmac_sha256"},
            },
            headers=merchant["headers"],
        )
        assert response.status_code == 400

    def test_rotate_key(self, client, program, merchant):
        _, new_key = generate_keypair(ProofScheme.ECDSA_SECP256K1)
        response = client.post(
            f"/v1/programs/{program['program_id']}/keys",
            json={"key_data": new_key.key_data.hex()},
            headers=merchant["headers"],
        )
        assert response.status_code == 200
        assert response.json()["key_version"] == 2


class TestWalletEndpoints:
    """Test the confirmation-gated wallet flows."""

    def test_register_and_lookup(self, client, wallet):
        response = client.get(f"/v1/wallets/lookup/{wallet['commitment']}")
        assert response.json() == {"address": wallet["address"]}

        response = client.get(f"/v1/wallets/{wallet['address']}")
        assert response.status_code == 200
        assert "identity_commitment" not in response.json()

    def test_begin_registration_hides_token(self, client, service):
        commitment = identity_commitment("dave@example.com")
        response = client.post(
            "/v1/registrations",
            json={"identity_commitment": commitment, "recovery_commitment": "cd" * 32},
        )

        assert response.status_code == 202
        body = response.json()
        assert "token" not in body
        assert body["action"] == "register"
        assert body["target_wallet"] == service.notifier.latest().target_wallet
        assert client.get(f"/v1/wallets/lookup/{commitment}").status_code == 404

    def test_registration_token_single_use(self, client, service):
        commitment = identity_commitment("dave@example.com")
        client.post(
            "/v1/registrations",
            json={"identity_commitment": commitment, "recovery_commitment": "cd" * 32},
        )
        body = {
            "token": service.notifier.latest(action=ConfirmationAction.REGISTER).token,
            "identity_commitment": commitment,
        }

        assert client.post("/v1/registrations/confirm", json=body).status_code == 201
        response = client.post("/v1/registrations/confirm", json=body)
        assert response.status_code == 409
        assert response.json()["error"] == "TokenAlreadyUsed"

    def test_registration_needs_token(self, client):
        response = client.post(
            "/v1/registrations/confirm",
            json={"token": "guess", "identity_commitment": identity_commitment("eve@example.com")},
        )
        assert response.status_code == 404
        assert response.json()["error"] == "TokenNotFound"

    def test_register_existing(self, client, wallet):
        response = client.post(
            "/v1/registrations",
            json={"identity_commitment": wallet["commitment"], "recovery_commitment": "cd" * 32},
        )
        assert response.status_code == 409
        assert response.json()["error"] == "WalletExists"

    def test_lookup_unknown(self, client):
        response = client.get(f"/v1/wallets/lookup/{'ab' * 32}")
        assert response.status_code == 404

    def test_login(self, client, service, wallet):
        response = client.post("/v1/logins", json={"identity_commitment": wallet["commitment"]})
        assert response.status_code == 202
        assert response.json()["target_wallet"] == wallet["address"]

        token = service.notifier.latest(action=ConfirmationAction.LOGIN).token
        response = client.post(
            "/v1/logins/confirm",
            json={"token": token, "identity_commitment": wallet["commitment"]},
        )
        assert response.status_code == 200
        assert response.json()["address"] == wallet["address"]

    def test_recovery_flow(self, client, service, wallet, recovery_keys):
        new_commitment = identity_commitment("alice@new.example.com")
        response = client.post(
            f"/v1/wallets/{wallet['address']}/recoveries",
            json={"new_identity_commitment": new_commitment},
        )
        assert response.status_code == 202

        token = service.notifier.latest(action=ConfirmationAction.RECOVER).token
        proof = build_recovery_proof(
            recovery_keys[0], wallet["address"], wallet["commitment"], new_commitment
        )
        response = client.post(
            f"/v1/wallets/{wallet['address']}/recoveries/confirm",
            json={
                "token": token,
                "new_identity_commitment": new_commitment,
                "recovery_proof": proof.to_dict(),
            },
        )

        assert response.status_code == 200
        assert response.json()["recovery_count"] == 1
        assert client.get(f"/v1/wallets/lookup/{wallet['commitment']}").status_code == 404
        assert client.get(f"/v1/wallets/lookup/{new_commitment}").json() == {
            "address": wallet["address"]
        }

    def test_recovery_malformed_proof(self, client, service, wallet):
        new_commitment = identity_commitment("alice@new.example.com")
        client.post(
            f"/v1/wallets/{wallet['address']}/recoveries",
            json={"new_identity_commitment": new_commitment},
        )
        token = service.notifier.latest(action=ConfirmationAction.RECOVER).token

        response = client.post(
            f"/v1/wallets/{wallet['address']}/recoveries/confirm",
            json={
                "token": token,
                "new_identity_commitment": new_commitment,
                "recovery_proof": {"proof": {}},
            },
        )
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidProof"


class TestIdentityServiceEndpoints:
    """Test that raw wallet routes require the identity service key."""

    def wallet_body(self, recovery_keys):
        return {
            "identity_commitment": identity_commitment("alice@example.com"),
            "recovery_commitment": recovery_commitment(recovery_keys[1].key_data),
        }

    @pytest.mark.parametrize("headers", [{}, {"X-API-Key": "wrong"}])
    def test_create_requires_key(self, client, recovery_keys, headers):
        response = client.post("/v1/wallets", json=self.wallet_body(recovery_keys), headers=headers)

        assert response.status_code == 401
        lookup = client.get(f"/v1/wallets/lookup/{identity_commitment('alice@example.com')}")
        assert lookup.status_code == 404

    def test_disabled_without_configured_key(self, service, auth, recovery_keys):
        client = TestClient(create_app(service, auth))
        response = client.post(
            "/v1/wallets", json=self.wallet_body(recovery_keys), headers=SERVICE_HEADERS
        )
        assert response.status_code == 401

    def test_create_with_key(self, client, recovery_keys):
        response = client.post(
            "/v1/wallets", json=self.wallet_body(recovery_keys), headers=SERVICE_HEADERS
        )
        assert response.status_code == 201

        response = client.post(
            "/v1/wallets", json=self.wallet_body(recovery_keys), headers=SERVICE_HEADERS
        )
        assert response.status_code == 409
        assert response.json()["error"] == "WalletExists"

    def test_recover_requires_key(self, client, wallet, recovery_keys):
        new_commitment = identity_commitment("mallory@example.com")
        proof = build_recovery_proof(
            recovery_keys[0], wallet["address"], wallet["commitment"], new_commitment
        )
        body = {"new_identity_commitment": new_commitment, "recovery_proof": proof.to_dict()}

        response = client.post(f"/v1/wallets/{wallet['address']}/recover", json=body)
        assert response.status_code == 401
        assert client.get(f"/v1/wallets/lookup/{wallet['commitment']}").status_code == 200

        response = client.post(
            f"/v1/wallets/{wallet['address']}/recover", json=body, headers=SERVICE_HEADERS
        )
        assert response.status_code == 200
        assert response.json()["recovery_count"] == 1


class TestCouponEndpoints:
    """Test issuance, redemption and reads."""

    def test_issue(self, client, coupon, wallet):
        assert coupon["owner_wallet"] == wallet["address"]
        assert coupon["state"] == "issued"
        assert coupon["valid"] is True

        response = client.get(f"/v1/coupons/{coupon['token_id']}/valid")
        assert response.json()["valid"] is True
        listed = client.get(f"/v1/wallets/{wallet['address']}/coupons").json()
        assert [c["token_id"] for c in listed] == [coupon["token_id"]]

    def test_issue_bad_proof(self, client, program, wallet):
        stranger = ProofGenerator(generate_keypair(ProofScheme.HMAC_SHA256)[0])
        response = client.post("/v1/coupons", json=issue_body(program, wallet["address"], stranger))

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidProof"
        assert response.json()["message"] == "Proof rejected"

    def test_issue_malformed_inputs(self, client, program, wallet, keys):
        body = issue_body(program, wallet["address"], ProofGenerator(keys[0]))
        body["public_inputs"] = {"unexpected": 1}

        response = client.post("/v1/coupons", json=body)
        assert response.status_code == 400

    def test_issue_cap(self, client, program, wallet, keys):
        prover = ProofGenerator(keys[0])
        for _ in range(2):
            assert client.post("/v1/coupons", json=issue_body(program, wallet["address"], prover)).status_code == 201

        response = client.post("/v1/coupons", json=issue_body(program, wallet["address"], prover))
        assert response.status_code == 409
        assert response.json()["error"] == "IssuanceCapReached"

    def test_unknown_coupon(self, client):
        response = client.get("/v1/coupons/cpn_missing")
        assert response.status_code == 404
        assert client.get("/v1/coupons/cpn_missing/valid").json()["valid"] is False

    def test_redemption_flow(self, client, service, coupon, merchant, keys):
        response = client.post(
            f"/v1/coupons/{coupon['token_id']}/redemptions",
            json={"ttl": 120},
            headers=merchant["headers"],
        )
        assert response.status_code == 202
        assert "token" not in response.json()
        assert response.json()["target_wallet"] == coupon["owner_wallet"]

        event = service.notifier.latest(action=ConfirmationAction.REDEEM)
        proof = ProofGenerator(keys[0]).prove(
            RedemptionInputs(coupon["token_id"], coupon["owner_wallet"], coupon["key_version"])
        )
        body = {"proof": proof.to_dict(), "confirmation_token": event.token}

        response = client.post(f"/v1/coupons/{coupon['token_id']}/redeem", json=body)
        assert response.status_code == 200
        assert response.json()["state"] == "redeemed"

        response = client.post(f"/v1/coupons/{coupon['token_id']}/redeem", json=body)
        assert response.status_code == 409
        assert response.json()["error"] == "CouponAlreadyRedeemed"

    def test_redeem_expired(self, client, service, coupon, merchant, keys, clock):
        client.post(
            f"/v1/coupons/{coupon['token_id']}/redemptions", json={}, headers=merchant["headers"]
        )
        event = service.notifier.latest(action=ConfirmationAction.REDEEM)
        proof = ProofGenerator(keys[0]).prove(
            RedemptionInputs(coupon["token_id"], coupon["owner_wallet"], coupon["key_version"])
        )
        clock.advance(3600)

        response = client.post(
            f"/v1/coupons/{coupon['token_id']}/redeem",
            json={"proof": proof.to_dict(), "confirmation_token": event.token},
        )
        assert response.status_code == 410
        assert client.get(f"/v1/coupons/{coupon['token_id']}").json()["state"] == "expired"

    def test_initiate_requires_owner_merchant(self, client, coupon):
        other = client.post("/v1/merchants", json={"wallet_address": "0x" + "cd" * 20}).json()
        response = client.post(
            f"/v1/coupons/{coupon['token_id']}/redemptions",
            json={},
            headers={"Authorization": f"Bearer {other['access_token']}"},
        )
        assert response.status_code == 403

    def test_merchant_coupon_listings(self, client, coupon, merchant, program):
        response = client.get(f"/v1/merchants/{merchant['id']}/coupons", headers=merchant["headers"])
        assert [c["token_id"] for c in response.json()] == [coupon["token_id"]]

        response = client.get(
            f"/v1/programs/{program['program_id']}/coupons", headers=merchant["headers"]
        )
        assert response.status_code == 200
        assert len(response.json()) == 1

    def test_request_id_echoed(self, client):
        response = client.get("/v1/coupons/cpn_missing", headers={"X-Request-ID": "req-42"})
        assert response.json()["request_id"] == "req-42"
