"""FastAPI-powered DID authentication service."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .auth import AuthenticationService
from .config import Settings
from .errors import DIDAuthError, ErrorKind

logger = logging.getLogger(__name__)

SERVICE_NAME = "DID Authentication Backend"

_STATUS_CODES = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.INVALID_PUBLIC_KEY_FORMAT: 400,
    ErrorKind.INVALID_SIGNATURE_FORMAT: 400,
    ErrorKind.UNKNOWN_IDENTITY: 401,
    ErrorKind.SIGNATURE_MISMATCH: 401,
    ErrorKind.CHALLENGE_REJECTED: 401,
    ErrorKind.MALFORMED_CREDENTIAL: 401,
    ErrorKind.BAD_SIGNATURE: 401,
    ErrorKind.EXPIRED: 401,
    ErrorKind.IDENTITY_REVOKED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.KEY_UNAVAILABLE: 502,
    ErrorKind.ORACLE_UNAVAILABLE: 503,
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChallengeRequest(BaseModel):
    identity: str = Field(validation_alias=AliasChoices("identity", "did"))


class ChallengeResponse(BaseModel):
    challenge: str
    identity: str


class LoginRequest(BaseModel):
    identity: str = Field(validation_alias=AliasChoices("identity", "did"))
    signature: str
    challenge: str


class LoginResponse(_CamelModel):
    token: str
    identity: str
    expires_in: str = Field(alias="expiresIn")


class TokenRequest(BaseModel):
    token: str


class VerifyResponse(_CamelModel):
    identity: str
    public_key: str = Field(alias="publicKey")
    type: str
    issued_at: int = Field(alias="issuedAt")
    expiry: int


class RefreshResponse(_CamelModel):
    token: str
    expires_in: str = Field(alias="expiresIn")


class LogoutResponse(BaseModel):
    success: bool


class DIDStatusResponse(BaseModel):
    did: str
    exists: bool


class DIDPublicKeyResponse(_CamelModel):
    did: str
    public_key: str = Field(alias="publicKey")


class DIDDocumentModel(_CamelModel):
    did: str
    version: int
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")
    main_public_key: str = Field(alias="mainPublicKey")
    reco_public_key: str = Field(alias="recoPublicKey")
    service_endpoint: str = Field(alias="serviceEndpoint")
    did_proof: str = Field(alias="didProof")
    owner: str


class DIDDocumentResponse(BaseModel):
    did: str
    document: DIDDocumentModel
    timestamp: str


class ValidateRequest(BaseModel):
    dids: List[str] = Field(min_length=1, max_length=10)


class ValidationResult(BaseModel):
    did: str
    exists: Optional[bool]
    error: Optional[str]


class ValidateResponse(BaseModel):
    results: List[ValidationResult]


class HealthResponse(BaseModel):
    status: str
    service: str
    timestamp: str


def get_service(request: Request) -> AuthenticationService:
    return request.app.state.service


auth_router = APIRouter(prefix="/api/auth", tags=["auth"])
did_router = APIRouter(prefix="/api/did", tags=["did"])


@auth_router.post("/challenge", response_model=ChallengeResponse)
def challenge(
    request: ChallengeRequest,
    service: AuthenticationService = Depends(get_service),
) -> ChallengeResponse:
    message = service.issue_challenge(request.identity)
    return ChallengeResponse(challenge=message, identity=request.identity)


@auth_router.post("/login", response_model=LoginResponse)
def login(
    request: LoginRequest,
    service: AuthenticationService = Depends(get_service),
) -> LoginResponse:
    credential = service.login(request.identity, request.signature, request.challenge)
    return LoginResponse(
        token=credential.token,
        identity=credential.identity,
        expires_in=credential.expires_in,
    )


@auth_router.post("/verify", response_model=VerifyResponse)
def verify(
    request: TokenRequest,
    service: AuthenticationService = Depends(get_service),
) -> VerifyResponse:
    claims = service.verify_credential(request.token)
    return VerifyResponse(
        identity=claims.identity,
        public_key=claims.public_key,
        type=claims.token_type,
        issued_at=claims.issued_at,
        expiry=claims.expires_at,
    )


@auth_router.post("/refresh", response_model=RefreshResponse)
def refresh(
    request: TokenRequest,
    service: AuthenticationService = Depends(get_service),
) -> RefreshResponse:
    credential = service.refresh_credential(request.token)
    return RefreshResponse(token=credential.token, expires_in=credential.expires_in)


@auth_router.post("/logout", response_model=LogoutResponse)
def logout() -> LogoutResponse:
    return LogoutResponse(success=True)


@did_router.get("/{did}/status", response_model=DIDStatusResponse)
def did_status(did: str, service: AuthenticationService = Depends(get_service)) -> DIDStatusResponse:
    return DIDStatusResponse(did=did, exists=service.identity_exists(did))


@did_router.get("/{did}/public-key", response_model=DIDPublicKeyResponse)
def did_public_key(did: str, service: AuthenticationService = Depends(get_service)) -> DIDPublicKeyResponse:
    return DIDPublicKeyResponse(did=did, public_key=service.identity_public_key(did))


@did_router.get("/{did}/document", response_model=DIDDocumentResponse)
def did_document(did: str, service: AuthenticationService = Depends(get_service)) -> DIDDocumentResponse:
    document = service.identity_document(did)
    return DIDDocumentResponse(
        did=did,
        document=DIDDocumentModel(**document.to_dict()),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@did_router.post("/validate", response_model=ValidateResponse)
def validate_dids(
    request: ValidateRequest,
    service: AuthenticationService = Depends(get_service),
) -> ValidateResponse:
    malformed = [did for did in request.dids if not service.is_valid_identity(did)]
    if malformed:
        raise DIDAuthError(ErrorKind.INVALID_INPUT, f"Malformed DIDs: {malformed}")
    results = [ValidationResult(**item) for item in service.check_identities(request.dids)]
    return ValidateResponse(results=results)


def _error_response(kind: ErrorKind, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=_STATUS_CODES.get(kind, 500),
        content={"success": False, "error": kind.value, "message": message},
    )


async def _handle_auth_error(request: Request, exc: DIDAuthError) -> JSONResponse:
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.kind.value, exc.detail)
    return _error_response(exc.kind, exc.public_message)


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("%s %s -> invalid request body: %s", request.method, request.url.path, exc.errors())
    error = DIDAuthError(ErrorKind.INVALID_INPUT)
    return _error_response(error.kind, error.public_message)


def create_app(
    settings: Optional[Settings] = None,
    service: Optional[AuthenticationService] = None,
) -> FastAPI:
    """Build the HTTP application around an authentication service."""

    if service is None:
        settings = settings or Settings.from_env()
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s %(message)s",
        )
        service = AuthenticationService.from_settings(settings)

    app = FastAPI(title="DIDAuth", description="Passwordless DID challenge-response authentication")
    app.state.service = service
    app.include_router(auth_router)
    app.include_router(did_router)
    app.add_exception_handler(DIDAuthError, _handle_auth_error)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(
            status="ok",
            service=SERVICE_NAME,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    return app


__all__ = ["create_app"]
