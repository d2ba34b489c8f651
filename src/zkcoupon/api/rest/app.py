"""
REST API for zkcoupon.

Exposes merchant tooling, the wallet directory, issuance, redemption and the
read surface over HTTP with FastAPI. Merchant-only endpoints take a bearer
JWT issued at merchant registration. Users register, log in and recover
wallets through begin/confirm pairs gated by a confirmation token; the raw
wallet routes accept only the identity service's API key. Confirmation
token values are never returned over this API; they reach the wallet owner
through the notification sink.
"""

import argparse
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field, field_validator

from ... import __version__
from ...config import CouponConfig
from ...core.context import CallerContext
from ...crypto.zkp import (
    Proof,
    ProofKind,
    ProofScheme,
    VerificationKey,
    ZKPError,
    public_inputs_from_dict,
)
from ...errors import (
    ConflictError,
    CouponError,
    CouponNotFoundError,
    ExpiryError,
    InvalidProofError,
    LockTimeoutError,
    MerchantNotFoundError,
    ProgramNotFoundError,
    TokenNotFoundError,
    UnauthorizedError,
    ValidationError,
    WalletNotFoundError,
)
from ...logging import LogContext, get_logger, setup_logging
from ...service import CouponService
from ...wallet import RecoveryProof
from ..auth import AuthError, MerchantAuth, ServiceAuth

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


# Pydantic models for request/response validation

class ProofModel(BaseModel):
    """Proof as produced by the proof generation service."""
    kind: str = Field(..., description="issuance, redemption or recovery")
    scheme: str = Field(..., description="Proof scheme")
    proof_data: str = Field(..., description="Proof bytes (hex)")
    public_input_hash: str = Field(..., description="Public-input digest (hex)")

    def to_proof(self) -> Proof:
        return Proof.from_dict(self.model_dump())


class VerificationKeyModel(BaseModel):
    """Verification key registration."""
    key_data: str = Field(..., description="Key bytes (hex)")
    scheme: str = Field(ProofScheme.ECDSA_SECP256K1.value, description="Proof scheme")

    @field_validator("scheme")
    @classmethod
    def validate_scheme(cls, v):
        try:
            ProofScheme(v)
        except ValueError:
            raise ValueError(f"Unknown proof scheme: {v}")
        return v

    def to_key(self) -> VerificationKey:
        try:
            return VerificationKey.from_dict(self.model_dump())
        except ZKPError as e:
            raise ValidationError(str(e), field="verification_key")


class MerchantCreateRequest(BaseModel):
    """Merchant registration request."""
    wallet_address: str = Field(..., description="Merchant wallet address")
    name: str = Field("", description="Display name")


class MerchantUpdateRequest(BaseModel):
    """Merchant details update."""
    wallet_address: Optional[str] = Field(None, description="New wallet address")
    name: Optional[str] = Field(None, description="New display name")


class ProgramCreateRequest(BaseModel):
    """Program creation request."""
    validity_period: float = Field(..., description="Coupon validity in seconds")
    max_issuance: int = Field(..., description="Issuance cap")
    name: str = Field("", description="Program name")
    verification_key: Optional[VerificationKeyModel] = None

    @field_validator("validity_period")
    @classmethod
    def validate_validity_period(cls, v):
        if v <= 0:
            raise ValueError("validity_period must be positive")
        return v

    @field_validator("max_issuance")
    @classmethod
    def validate_max_issuance(cls, v):
        if v <= 0:
            raise ValueError("max_issuance must be positive")
        return v


class WalletCreateRequest(BaseModel):
    """Wallet creation request."""
    identity_commitment: str = Field(..., description="Identity commitment (hex)")
    recovery_commitment: str = Field(..., description="Recovery key commitment (hex)")


class WalletRecoverRequest(BaseModel):
    """Wallet recovery request."""
    new_identity_commitment: str = Field(..., description="New identity commitment (hex)")
    recovery_proof: Dict[str, Any] = Field(..., description="Recovery proof")


class RegistrationRequest(BaseModel):
    """Start of a confirmation-gated wallet registration."""
    identity_commitment: str = Field(..., description="Identity commitment (hex)")
    recovery_commitment: str = Field(..., description="Recovery key commitment (hex)")
    ttl: Optional[float] = Field(None, description="Confirmation token lifetime in seconds")


class RegistrationConfirmRequest(BaseModel):
    """Confirmation of a wallet registration."""
    token: str = Field(..., description="Confirmation token delivered out-of-band")
    identity_commitment: str


class LoginRequest(BaseModel):
    """Start of a confirmation-gated login."""
    identity_commitment: str
    ttl: Optional[float] = None


class LoginConfirmRequest(BaseModel):
    """Confirmation of a login."""
    token: str
    identity_commitment: str


class RecoveryRequest(BaseModel):
    """Start of a confirmation-gated wallet recovery."""
    new_identity_commitment: str
    ttl: Optional[float] = None


class RecoveryConfirmRequest(BaseModel):
    """Confirmation of a wallet recovery."""
    token: str
    new_identity_commitment: str
    recovery_proof: Dict[str, Any] = Field(..., description="Recovery proof")


class IssueRequest(BaseModel):
    """Coupon issuance request."""
    program_id: str
    owner_wallet: str
    metadata_commitment: str
    proof: ProofModel
    public_inputs: Dict[str, Any]


class RedemptionInitRequest(BaseModel):
    """Redemption initiation request."""
    ttl: Optional[float] = Field(None, description="Confirmation token lifetime in seconds")


class RedeemRequest(BaseModel):
    """Redemption request."""
    proof: ProofModel
    confirmation_token: str


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    message: str
    timestamp: datetime
    request_id: Optional[str] = None


_NOT_FOUND = (
    MerchantNotFoundError,
    ProgramNotFoundError,
    CouponNotFoundError,
    TokenNotFoundError,
    WalletNotFoundError,
)


def status_for(error: CouponError) -> int:
    """HTTP status for a protocol error."""
    if isinstance(error, _NOT_FOUND):
        return 404
    if isinstance(error, UnauthorizedError):
        return 403
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, ConflictError):
        return 409
    if isinstance(error, ExpiryError):
        return 410
    if isinstance(error, LockTimeoutError):
        return 503
    return 500


def _parse_proof(model: ProofModel) -> Proof:
    try:
        return model.to_proof()
    except ZKPError:
        raise InvalidProofError()


def create_app(
    service: Optional[CouponService] = None,
    auth: Optional[MerchantAuth] = None,
    service_auth: Optional[ServiceAuth] = None,
) -> FastAPI:
    """Build the REST application around a service."""
    service = service or CouponService()
    auth = auth or MerchantAuth.from_config(service.config)
    service_auth = service_auth or ServiceAuth.from_config(service.config)

    app = FastAPI(
        title="zkcoupon REST API",
        description="Zero-knowledge coupon issuance and redemption",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.service = service
    app.state.auth = auth

    def current_merchant(
        request: Request,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    ) -> CallerContext:
        """Caller context of the authenticated merchant."""
        if credentials is None:
            raise HTTPException(status_code=401, detail="Missing bearer token")
        try:
            return auth.verify_token(
                credentials.credentials, request_id=request.headers.get("x-request-id")
            )
        except AuthError as e:
            raise HTTPException(status_code=401, detail=str(e))

    def identity_service(api_key: Optional[str] = Depends(api_key_header)) -> None:
        """Only the identity service may call the unconfirmed wallet routes."""
        try:
            service_auth.verify_api_key(api_key)
        except AuthError as e:
            raise HTTPException(status_code=401, detail=str(e))

    def pending(token) -> Dict[str, Any]:
        # The token value itself only travels through the notification sink.
        return {
            "action": token.action.value,
            "target_wallet": token.target_wallet,
            "expires_at": token.expires_at,
        }

    # Error handlers

    @app.exception_handler(CouponError)
    async def coupon_error_handler(request: Request, exc: CouponError):
        status = status_for(exc)
        log = logger.error if status >= 500 else logger.warning
        log(
            f"{request.method} {request.url.path} rejected: {exc.error_code}",
            context=LogContext(component="api", request_id=request.headers.get("x-request-id")),
        )
        return JSONResponse(
            status_code=status,
            content=ErrorResponse(
                error=exc.error_code,
                message=exc.message,
                timestamp=datetime.now(),
                request_id=request.headers.get("x-request-id"),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error="HTTPError",
                message=str(exc.detail),
                timestamp=datetime.now(),
                request_id=request.headers.get("x-request-id"),
            ).model_dump(mode="json"),
        )

    @app.get("/health")
    def health():
        return {"status": "ok", "version": __version__}

    # Merchants and programs

    @app.post("/v1/merchants", status_code=201)
    def register_merchant(body: MerchantCreateRequest):
        merchant = service.register_merchant(body.wallet_address, name=body.name)
        return {
            "merchant": merchant.to_dict(),
            "access_token": auth.create_token(merchant.merchant_id),
        }

    @app.get("/v1/merchants")
    def list_merchants(active_only: bool = False):
        return [m.to_dict() for m in service.list_merchants(active_only=active_only)]

    @app.get("/v1/merchants/{merchant_id}")
    def get_merchant(merchant_id: str):
        return service.get_merchant(merchant_id).to_dict()

    @app.patch("/v1/merchants/{merchant_id}")
    def update_merchant(
        merchant_id: str,
        body: MerchantUpdateRequest,
        caller: CallerContext = Depends(current_merchant),
    ):
        merchant = service.update_merchant_details(
            caller, merchant_id, wallet_address=body.wallet_address, name=body.name
        )
        return merchant.to_dict()

    @app.post("/v1/merchants/{merchant_id}/deactivate")
    def deactivate_merchant(merchant_id: str, caller: CallerContext = Depends(current_merchant)):
        return service.deactivate_merchant(caller, merchant_id).to_dict()

    @app.get("/v1/merchants/{merchant_id}/coupons")
    def merchant_coupons(merchant_id: str, caller: CallerContext = Depends(current_merchant)):
        caller.require_merchant(merchant_id)
        now = service.clock()
        return [c.to_dict(now) for c in service.get_merchant_coupons(merchant_id)]

    @app.post("/v1/merchants/{merchant_id}/programs", status_code=201)
    def create_program(
        merchant_id: str,
        body: ProgramCreateRequest,
        caller: CallerContext = Depends(current_merchant),
    ):
        key = body.verification_key.to_key() if body.verification_key else None
        program = service.create_program(
            caller,
            merchant_id,
            body.validity_period,
            body.max_issuance,
            verification_key=key,
            name=body.name,
        )
        return program.to_dict()

    @app.get("/v1/programs")
    def list_programs(merchant_id: Optional[str] = None):
        return [p.to_dict() for p in service.list_programs(merchant_id)]

    @app.get("/v1/programs/{program_id}")
    def get_program(program_id: str):
        return service.get_program(program_id).to_dict()

    @app.post("/v1/programs/{program_id}/keys")
    def register_key(
        program_id: str,
        body: VerificationKeyModel,
        caller: CallerContext = Depends(current_merchant),
    ):
        return service.register_verification_key(caller, program_id, body.to_key()).to_dict()

    @app.get("/v1/programs/{program_id}/coupons")
    def program_coupons(program_id: str, caller: CallerContext = Depends(current_merchant)):
        caller.require_merchant(service.get_program(program_id).merchant_id)
        now = service.clock()
        return [c.to_dict(now) for c in service.get_program_coupons(program_id)]

    # Confirmation-gated wallet flows

    @app.post("/v1/registrations", status_code=202)
    def begin_registration(body: RegistrationRequest):
        token = service.begin_registration(
            body.identity_commitment, body.recovery_commitment, ttl=body.ttl
        )
        return pending(token)

    @app.post("/v1/registrations/confirm", status_code=201)
    def complete_registration(body: RegistrationConfirmRequest):
        address = service.complete_registration(body.token, body.identity_commitment)
        return {"address": address}

    @app.post("/v1/logins", status_code=202)
    def begin_login(body: LoginRequest):
        return pending(service.begin_login(body.identity_commitment, ttl=body.ttl))

    @app.post("/v1/logins/confirm")
    def complete_login(body: LoginConfirmRequest):
        return service.complete_login(body.token, body.identity_commitment).to_dict()

    @app.post("/v1/wallets/{address}/recoveries", status_code=202)
    def begin_recovery(address: str, body: RecoveryRequest):
        return pending(service.begin_recovery(address, body.new_identity_commitment, ttl=body.ttl))

    @app.post("/v1/wallets/{address}/recoveries/confirm")
    def complete_recovery(address: str, body: RecoveryConfirmRequest):
        try:
            proof = RecoveryProof.from_dict(body.recovery_proof)
        except ZKPError:
            raise InvalidProofError()
        wallet = service.complete_recovery(
            body.token, address, body.new_identity_commitment, proof
        )
        return wallet.to_dict()

    # Wallets

    @app.post("/v1/wallets", status_code=201, dependencies=[Depends(identity_service)])
    def create_wallet(body: WalletCreateRequest):
        address = service.create_wallet(body.identity_commitment, body.recovery_commitment)
        return {"address": address}

    @app.get("/v1/wallets/lookup/{identity_commitment}")
    def lookup_wallet(identity_commitment: str):
        address = service.get_wallet_address(identity_commitment)
        if address is None:
            raise WalletNotFoundError("No wallet is bound to this identity commitment")
        return {"address": address}

    @app.get("/v1/wallets/{address}")
    def get_wallet(address: str):
        return service.get_wallet(address).to_dict()

    @app.post("/v1/wallets/{address}/recover", dependencies=[Depends(identity_service)])
    def recover_wallet(address: str, body: WalletRecoverRequest):
        try:
            proof = RecoveryProof.from_dict(body.recovery_proof)
        except ZKPError:
            raise InvalidProofError()
        return service.recover_wallet(address, body.new_identity_commitment, proof).to_dict()

    @app.get("/v1/wallets/{address}/coupons")
    def wallet_coupons(address: str):
        now = service.clock()
        return [c.to_dict(now) for c in service.get_user_coupons(address)]

    # Coupons

    @app.post("/v1/coupons", status_code=201)
    def issue_coupon(body: IssueRequest):
        proof = _parse_proof(body.proof)
        try:
            inputs = public_inputs_from_dict(ProofKind.ISSUANCE, body.public_inputs)
        except ZKPError:
            raise InvalidProofError()
        coupon = service.issue(
            body.program_id, body.owner_wallet, body.metadata_commitment, proof, inputs
        )
        return coupon.to_dict(service.clock())

    @app.get("/v1/coupons/{token_id}")
    def get_coupon(token_id: str):
        return service.get_coupon_details(token_id).to_dict(service.clock())

    @app.get("/v1/coupons/{token_id}/valid")
    def coupon_valid(token_id: str):
        return {"token_id": token_id, "valid": service.is_valid_coupon(token_id)}

    @app.post("/v1/coupons/{token_id}/redemptions", status_code=202)
    def initiate_redemption(
        token_id: str,
        body: RedemptionInitRequest,
        caller: CallerContext = Depends(current_merchant),
    ):
        token = service.initiate_redemption(caller, token_id, ttl=body.ttl)
        return {
            "token_id": token_id,
            "target_wallet": token.target_wallet,
            "expires_at": token.expires_at,
        }

    @app.post("/v1/coupons/{token_id}/redeem")
    def redeem_coupon(token_id: str, body: RedeemRequest):
        coupon = service.redeem(token_id, _parse_proof(body.proof), body.confirmation_token)
        return coupon.to_dict(service.clock())

    return app


def run(argv: Optional[List[str]] = None) -> None:
    """Console entry point: serve the API with uvicorn."""
    parser = argparse.ArgumentParser(description="zkcoupon REST API")
    parser.add_argument("--host", default=os.environ.get("ZKCOUPON_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("ZKCOUPON_PORT", "8000")))
    args = parser.parse_args(argv)

    config = CouponConfig.from_env()
    setup_logging(config.log_config())
    app = create_app(CouponService(config))
    service: CouponService = app.state.service
    service.reconciler.start()
    try:
        uvicorn.run(app, host=args.host, port=args.port)
    finally:
        service.reconciler.stop()
