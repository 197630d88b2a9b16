"""HTTP route definitions for the identity service."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import jwt
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .schemas import (
    ActivateRequest,
    AuditLogEntry,
    AuditLogResponse,
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    OrganizationInviteRequest,
    ProfileResponse,
    PurgeResponse,
    RefreshTokenRequest,
    RegisterRequest,
    RegistrationResponse,
    ResetPasswordRequest,
    SessionResponse,
    VerifyEmailRequest,
)
from ..config import get_settings
from ..domain.account import AccountType
from ..domain.contracts import CreateOrganizationInviteInput, RegisterIndividualInput, normalize_email
from ..domain.lifecycle import RegistrationResult
from ..domain.service import IdentityServices
from ..security.rate_limit import RateLimiter
from ..security.tokens import decode_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")

bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request) -> IdentityServices:
    """Resolve the services stored on the FastAPI application state."""
    services: IdentityServices = request.app.state.identity
    return services


def get_rate_limiter(request: Request) -> RateLimiter:
    limiter: RateLimiter = request.app.state.rate_limiter
    return limiter


def get_current_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    """Decode the bearer access token; no storage lookup is involved."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="missing bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return decode_access_token(credentials.credentials)
    except jwt.PyJWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="invalid or expired access token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


def require_support_admin(claims: dict[str, Any] = Depends(get_current_claims)) -> dict[str, Any]:
    if claims.get("account_type") != AccountType.support_admin.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="support admin access required")
    return claims


def _enforce_rate_limit(limiter: RateLimiter, request: Request, scope: str, subject: str = "") -> None:
    client = request.client.host if request.client else "unknown"
    if not limiter.allow(f"{scope}:{client}:{subject}"):
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="rate limited")


def _registration_response(message: str, result: RegistrationResult) -> RegistrationResponse:
    created = ProfileResponse.from_domain(result.created)
    return RegistrationResponse(
        message=message,
        user=created.user,
        profile=created.profile,
        activation_token=result.activation_token if get_settings().is_development else None,
    )


@router.post("/auth/register", response_model=RegistrationResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    services: IdentityServices = Depends(get_services),
) -> RegistrationResponse:
    """Register an individual account pending email verification."""
    result = services.lifecycle.register_individual(RegisterIndividualInput(**payload.model_dump()))
    return _registration_response(
        "User registered successfully. Please check your email for a verification link to activate your account.",
        result,
    )


@router.post("/auth/login", response_model=SessionResponse)
def login(
    request: Request,
    payload: LoginRequest,
    services: IdentityServices = Depends(get_services),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> SessionResponse:
    _enforce_rate_limit(limiter, request, "login", normalize_email(payload.email))
    session = services.sessions.authenticate(payload.email, payload.password)
    return SessionResponse.from_domain(session)


@router.post("/auth/verify-email", response_model=SessionResponse)
def verify_email(
    payload: VerifyEmailRequest,
    services: IdentityServices = Depends(get_services),
) -> SessionResponse:
    """Activate an individual account and log it in."""
    return SessionResponse.from_domain(services.lifecycle.verify_email(payload.token))


@router.post("/auth/resend-verification", response_model=MessageResponse)
def resend_verification(
    request: Request,
    payload: EmailRequest,
    services: IdentityServices = Depends(get_services),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> MessageResponse:
    _enforce_rate_limit(limiter, request, "resend-verification")
    services.lifecycle.resend_verification(payload.email)
    return MessageResponse(message="Verification email resent if the account exists and is not verified")


@router.post("/auth/activate-and-set-password", response_model=SessionResponse)
def activate_and_set_password(
    payload: ActivateRequest,
    services: IdentityServices = Depends(get_services),
) -> SessionResponse:
    """Accept an organization invite by choosing the first password."""
    session = services.lifecycle.activate_and_set_password(payload.token, payload.new_password)
    return SessionResponse.from_domain(session)


@router.post("/auth/refresh-token", response_model=SessionResponse)
def refresh_token(
    payload: RefreshTokenRequest,
    services: IdentityServices = Depends(get_services),
) -> SessionResponse:
    return SessionResponse.from_domain(services.sessions.refresh(payload.refresh_token))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    payload: LogoutRequest,
    services: IdentityServices = Depends(get_services),
) -> MessageResponse:
    services.sessions.logout(payload.refresh_token)
    return MessageResponse(message="Logged out successfully.")


@router.post("/auth/logout-all", response_model=MessageResponse)
def logout_all(
    claims: dict[str, Any] = Depends(get_current_claims),
    services: IdentityServices = Depends(get_services),
) -> MessageResponse:
    """Revoke every refresh token of the calling account."""
    revoked = services.sessions.logout_all(claims["sub"])
    return MessageResponse(message=f"Logged out of {revoked} session(s).")


@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(
    request: Request,
    payload: EmailRequest,
    services: IdentityServices = Depends(get_services),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> MessageResponse:
    _enforce_rate_limit(limiter, request, "forgot-password")
    return MessageResponse(message=services.recovery.forgot_password(payload.email))


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(
    payload: ResetPasswordRequest,
    services: IdentityServices = Depends(get_services),
) -> MessageResponse:
    return MessageResponse(message=services.recovery.reset_password(payload.reset_token, payload.new_password))


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    payload: ChangePasswordRequest,
    claims: dict[str, Any] = Depends(get_current_claims),
    services: IdentityServices = Depends(get_services),
) -> MessageResponse:
    message = services.recovery.change_password(claims["sub"], payload.current_password, payload.new_password)
    return MessageResponse(message=message)


@router.get("/auth/profile", response_model=ProfileResponse)
def get_profile(
    claims: dict[str, Any] = Depends(get_current_claims),
    services: IdentityServices = Depends(get_services),
) -> ProfileResponse:
    return ProfileResponse.from_domain(services.lifecycle.get_profile(claims["sub"]))


@router.post(
    "/admin/organizations",
    response_model=RegistrationResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_organization_invite(
    payload: OrganizationInviteRequest,
    admin: dict[str, Any] = Depends(require_support_admin),
    services: IdentityServices = Depends(get_services),
) -> RegistrationResponse:
    """Create a pending organization account and email its setup link."""
    result = services.lifecycle.create_organization_invite(
        CreateOrganizationInviteInput(**payload.model_dump()),
        created_by_admin_id=admin["sub"],
    )
    return _registration_response("Organization user created and invitation sent.", result)


@router.post("/admin/tokens/purge", response_model=PurgeResponse)
def purge_expired_tokens(
    _admin: dict[str, Any] = Depends(require_support_admin),
    services: IdentityServices = Depends(get_services),
) -> PurgeResponse:
    purged = services.tokens.purge_expired()
    return PurgeResponse(purged={kind.value: count for kind, count in purged.items()})


@router.get("/admin/audit/logs", response_model=AuditLogResponse)
def list_audit_logs(
    account_id: str | None = Query(default=None),
    event_type: str | None = Query(default=None),
    created_after: datetime | None = Query(default=None),
    created_before: datetime | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=100),
    cursor: str | None = Query(default=None),
    _admin: dict[str, Any] = Depends(require_support_admin),
    services: IdentityServices = Depends(get_services),
) -> AuditLogResponse:
    """Return paginated audit events with optional filtering."""
    records, next_cursor = services.audit.list_audit_events(
        account_id=account_id,
        event_type=event_type,
        created_after=created_after,
        created_before=created_before,
        limit=limit,
        cursor=cursor,
    )
    items = [
        AuditLogEntry(
            audit_id=record.audit_id,
            account_id=record.account_id,
            event_type=record.event_type,
            actor=record.actor,
            metadata=record.metadata,
            created_at=record.created_at,
        )
        for record in records
    ]
    return AuditLogResponse(items=items, next_cursor=next_cursor)
