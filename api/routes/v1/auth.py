"""
api/routes/v1/auth.py -- Registration, verification and login REST endpoints.

Routes:
  POST /api/v1/auth/register     -- create unverified account, email OTP; 201
  POST /api/v1/auth/verify-otp   -- redeem OTP; returns token + user
  POST /api/v1/auth/resend-otp   -- issue and email a fresh OTP
  POST /api/v1/auth/login        -- password login; returns token + user
  POST /api/v1/auth/google       -- Google ID token login; returns token + user
  GET  /api/v1/auth/providers    -- list enabled federated providers (public)

Route handlers are thin: they pull the store, email sender and verifier off
app.state, call one workflow function, and map the result onto a response
model. Every failure is an AppError raised inside the workflow and rendered
by the handlers in api/main.py.

Security:
  [H2] Every POST here is rate-limited per client IP (limits in core/config.py).
  [C1] login() runs bcrypt on every path -- never short-circuit it here.
  [M5] Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response

from api.limiter import limiter
from api.models import (
    AccountPublic,
    AuthResponse,
    GoogleLoginRequest,
    LoginRequest,
    MessageResponse,
    ProviderInfo,
    RegisterRequest,
    RegisterResponse,
    ResendOtpRequest,
    VerifyOtpRequest,
)
from auth import login as login_flow
from auth import registration
from auth.federated import get_enabled_providers
from auth.models import AuthResult
from core.config import get_settings

# Auth policy:
# - every route in this module is public; they are how a client obtains a token
router = APIRouter()

_settings = get_settings()


def _token_response(response: Response, result: AuthResult, message: str) -> AuthResponse:
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return AuthResponse(message=message, token=result.token, user=AccountPublic.from_account(result.account))


@limiter.limit(_settings.register_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=RegisterResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> RegisterResponse:
    """Create an unverified account and email it a one-time code.

    The account is created even if the email cannot be delivered; the
    response then says verificationSent=false and the client should offer
    /auth/resend-otp.
    """
    result = registration.register(
        request.app.state.account_store,
        request.app.state.email_sender,
        body.email,
        body.password,
        body.name,
    )
    if result.verification_sent:
        message = "User registered successfully. Please check your email for OTP verification."
    else:
        message = "User registered successfully, but the verification email could not be sent. Request a new code."
    return RegisterResponse(
        message=message,
        user_id=result.account.id,
        email=result.account.email,
        verification_sent=result.verification_sent,
    )


@limiter.limit(_settings.otp_rate_limit)  # [H2]
@router.post("/auth/verify-otp", response_model=AuthResponse)
def verify_otp(request: Request, response: Response, body: VerifyOtpRequest) -> AuthResponse:
    """Redeem the emailed code; on success the account is verified and a token issued."""
    result = registration.verify_otp(
        request.app.state.account_store,
        request.app.state.email_sender,
        body.email,
        body.otp,
    )
    return _token_response(response, result, "Email verified successfully")


@limiter.limit(_settings.resend_rate_limit)  # [H2]
@router.post("/auth/resend-otp", response_model=MessageResponse)
def resend_otp(request: Request, body: ResendOtpRequest) -> MessageResponse:
    """Replace the pending code with a new one and email it. Fails if delivery fails."""
    registration.resend_otp(request.app.state.account_store, request.app.state.email_sender, body.email)
    return MessageResponse(message="OTP sent successfully. Please check your email.")


@limiter.limit(_settings.login_rate_limit)  # [H2] brute-force mitigation
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same INVALID_CREDENTIALS
    error so responses do not reveal which emails are registered.
    """
    result = login_flow.login(request.app.state.account_store, body.email, body.password)
    return _token_response(response, result, "Login successful")


@limiter.limit(_settings.login_rate_limit)  # [H2]
@router.post("/auth/google", response_model=AuthResponse)
def google_login(request: Request, response: Response, body: GoogleLoginRequest) -> AuthResponse:
    """Sign in with a Google ID token, creating or linking the account as needed."""
    result = login_flow.federated_login(
        request.app.state.account_store,
        request.app.state.email_sender,
        request.app.state.identity_verifier,
        body.token_id,
    )
    return _token_response(response, result, "Google authentication successful")


@router.get("/auth/providers", response_model=list[ProviderInfo])
async def list_providers() -> list[ProviderInfo]:
    """Return the configured federated login providers.

    Public endpoint -- the login page calls this to decide which provider
    buttons to render. Returns an empty list if GOOGLE_CLIENT_ID is not set.
    """
    return [ProviderInfo(**p) for p in get_enabled_providers()]
