"""
Session cookie endpoints.

After a client signs in it POSTs its ID token here; the server exchanges
it for a long-lived session cookie through the server auth adapter.
"""
from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from app.config import Settings, get_logger, get_settings
from app.dependencies import get_app_state
from app.exceptions import AuthError
from app.models import ErrorResponse, SessionResponse
from app.state import AppState

logger = get_logger("routes.session")

router = APIRouter(prefix="/api/auth", tags=["Session"])

INVALID_TOKEN_MESSAGE = "The provided ID token is invalid or has expired. Please sign out and back in."


@router.post(
    "/session",
    response_model=SessionResponse,
    summary="Create session cookie",
    description="Exchange an ID token (raw request body) for an httpOnly session cookie.",
    responses={
        400: {"model": ErrorResponse, "description": "Missing ID token"},
        401: {"model": ErrorResponse, "description": "Invalid or expired ID token"},
        429: {"description": "Rate limit exceeded"},
    },
)
async def create_session(
    request: Request,
    state: AppState = Depends(get_app_state),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    id_token = (await request.body()).decode("utf-8", errors="replace").strip()
    if not id_token:
        error = ErrorResponse(detail="ID token is required", error_type="ValidationError")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=error.to_content())

    auth = await state.backend.get_server_auth()
    try:
        session_cookie = await auth.create_session_cookie(
            id_token,
            timedelta(days=settings.SESSION_COOKIE_MAX_AGE_DAYS),
        )
    except AuthError as e:
        logger.warning("Session cookie rejected | code=%s", e.error_code)
        error = ErrorResponse(
            detail=INVALID_TOKEN_MESSAGE,
            error_type=e.__class__.__name__,
            error_code=e.error_code,
            details=e.message,
        )
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content=error.to_content())

    response = JSONResponse(content=SessionResponse().model_dump())
    response.set_cookie(
        settings.SESSION_COOKIE_NAME,
        session_cookie,
        max_age=settings.SESSION_COOKIE_MAX_AGE_SECONDS,
        httponly=True,
        secure=True,
        samesite="lax",
        path="/",
    )
    logger.info("Session cookie issued | provider=%s", state.provider_name)
    return response


@router.delete(
    "/session",
    response_model=SessionResponse,
    summary="Clear session cookie",
)
async def delete_session(settings: Settings = Depends(get_settings)) -> JSONResponse:
    response = JSONResponse(content=SessionResponse().model_dump())
    response.delete_cookie(settings.SESSION_COOKIE_NAME, path="/", secure=True, httponly=True, samesite="lax")
    return response
