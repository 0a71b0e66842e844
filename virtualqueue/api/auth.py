from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from virtualqueue.api.cookies import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    clear_auth_cookies,
    set_auth_cookies,
)
from virtualqueue.api.deps import get_auth_context, get_auth_service, get_client_ip, get_current_user
from virtualqueue.core.config import settings
from virtualqueue.core.exceptions import InternalServerError
from virtualqueue.core.rate_limiter import limiter
from virtualqueue.db.session import get_db
from virtualqueue.models.user import User, UserRole
from virtualqueue.schemas.auth import SessionListResponse, SessionResponse, SignInRequest, TokenPair
from virtualqueue.schemas.user import SignUpRequest, UserResponse
from virtualqueue.services.auth_service import AuthContext, AuthService, IssuedTokens
from virtualqueue.services.user_service import UserService
from virtualqueue.utils.response import error, success

router = APIRouter()


def _token_response(request: Request, issued: IssuedTokens, message: str) -> JSONResponse:
    payload = TokenPair(access_token=issued.access_token, refresh_token=issued.refresh_token)
    response = JSONResponse(
        content=success(request, data=payload.model_dump(by_alias=True), message=message)
    )
    set_auth_cookies(response, issued.access_token, issued.refresh_token)
    return response


@router.post(
    "/signup",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    summary="Register user account",
    responses={
        201: {"description": "Registration successful"},
        409: {"description": "Email address is already in use"},
        422: {"description": "Validation error"},
    },
)
@limiter.limit(settings.SIGNUP_RATE_LIMIT)
def signup(request: Request, user_in: SignUpRequest, db: Session = Depends(get_db)):
    user = UserService.create_user(
        db,
        email=user_in.email,
        password=user_in.password,
        full_name=user_in.full_name,
        phone=user_in.phone,
        photo=user_in.photo,
        role=UserRole.USER,
    )
    return success(
        request,
        data=UserResponse.model_validate(user).model_dump(by_alias=True, mode="json"),
        message="Registration successful",
        status_code=status.HTTP_201_CREATED,
    )


@router.post(
    "/signin",
    response_model=dict,
    summary="Sign in a user",
    description="""
Authenticates a user and sets `accessToken` and `refreshToken` as httpOnly cookies.

Behavior:
1. Looks up the (non-deleted) user by email
2. Verifies the password
3. Opens a new session and issues tokens bound to it
""",
    responses={
        200: {"description": "Signed in"},
        400: {"description": "Invalid password"},
        404: {"description": "User not found"},
    },
)
@limiter.limit(settings.SIGNIN_RATE_LIMIT)
def signin(
    request: Request,
    credentials: SignInRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    issued = auth_service.sign_in(
        credentials.email,
        credentials.password,
        user_agent=request.headers.get("User-Agent"),
        ip=get_client_ip(request),
    )
    return _token_response(request, issued, "Signed in successfully")


@router.post(
    "/refresh",
    response_model=dict,
    summary="Rotate the refresh token",
    responses={
        200: {"description": "New token pair issued"},
        401: {"description": "Missing, invalid or revoked refresh token"},
        500: {"description": "Failed to refresh token"},
    },
)
@limiter.limit(settings.REFRESH_RATE_LIMIT)
def refresh(request: Request, auth_service: AuthService = Depends(get_auth_service)):
    issued = auth_service.refresh(request.cookies.get(REFRESH_TOKEN_COOKIE))
    return _token_response(request, issued, "Token refreshed")


@router.post(
    "/signout",
    response_model=dict,
    summary="Sign out a user",
    responses={
        200: {"description": "Successfully signed out"},
        500: {"description": "Failed to sign out"},
    },
)
def signout(request: Request, auth_service: AuthService = Depends(get_auth_service)):
    try:
        auth_service.sign_out(
            request.cookies.get(ACCESS_TOKEN_COOKIE),
            request.cookies.get(REFRESH_TOKEN_COOKIE),
        )
    except InternalServerError as exc:
        response = error(request, status_code=exc.status_code, message=exc.detail)
        clear_auth_cookies(response)
        return response

    response = JSONResponse(
        content=success(request, data="Successfully signed out", message="Successfully signed out")
    )
    clear_auth_cookies(response)
    return response


@router.get("/me", response_model=dict, summary="Current user profile")
def me(request: Request, current_user: User = Depends(get_current_user)):
    return success(
        request,
        data=UserResponse.model_validate(current_user).model_dump(by_alias=True, mode="json"),
        message="User profile retrieved",
    )


@router.get("/sessions", response_model=dict, summary="List active sessions")
def list_sessions(
    request: Request,
    context: AuthContext = Depends(get_auth_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    sessions = [
        SessionResponse.model_validate(item).model_copy(update={"current": item.id == context.session_id})
        for item in auth_service.list_sessions(context)
    ]
    payload = SessionListResponse(sessions=sessions)
    return success(request, data=payload.model_dump(by_alias=True, mode="json"), message="Sessions retrieved")


@router.delete("/sessions/{session_id}", response_model=dict, summary="Terminate one session")
def terminate_session(
    request: Request,
    session_id: str,
    context: AuthContext = Depends(get_auth_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    auth_service.terminate_session(context, session_id)
    return success(request, message="Session terminated successfully")


@router.delete("/sessions", response_model=dict, summary="Terminate all sessions")
def terminate_all_sessions(
    request: Request,
    except_current: bool = Query(False, alias="exceptCurrent"),
    context: AuthContext = Depends(get_auth_context),
    auth_service: AuthService = Depends(get_auth_service),
):
    terminated = auth_service.terminate_all_sessions(context, except_current=except_current)
    return success(
        request,
        data={"terminated": terminated},
        message="All other sessions terminated successfully" if except_current else "All sessions terminated successfully",
    )
