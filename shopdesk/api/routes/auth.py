from fastapi import APIRouter, HTTPException, Request

from shopdesk.schemas import LoginPayload, LoginSuccessResponse
from shopdesk.security.guards import RATE_LIMITS, enforce_same_origin, rate_limit_request
from shopdesk.services.auth_service import (
    AuthenticationError,
    InvalidCredentials,
    login_with_password,
)

router = APIRouter()


@router.post("/login", response_model=LoginSuccessResponse)
async def login_endpoint(payload: LoginPayload, request: Request) -> LoginSuccessResponse:
    enforce_same_origin(request)
    limit, window_seconds = RATE_LIMITS["login"]
    rate_limit_request(request, scope="login", limit=limit, window_seconds=window_seconds)

    try:
        session = await login_with_password(payload.email, payload.password)
    except InvalidCredentials as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except AuthenticationError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return LoginSuccessResponse(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        expires_in=session.expires_in,
        expires_at=session.expires_at,
    )
