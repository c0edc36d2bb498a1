import logging

from fastapi import APIRouter, status, HTTPException, Request, Response, Depends
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from supabase import AuthApiError

from siro.core.config import Settings
from siro.core.container import Services
from siro.core.dependencies import get_current_user_id, get_services
from siro.core.exceptions import DuplicateKeyError
from siro.core.supabase_client import get_supabase
from siro.friendship.routers import request_items
from siro.users.schemas import ProfileModel
from .schemas import (
    UserRegistrationModel,
    UserRegistrationResponseModel,
    UserLoginModel,
    UserLoginResponseModel,
    AccessTokenResponseModel,
    MeResponseModel,
)


logger = logging.getLogger(__name__)
router = APIRouter()

REFRESH_COOKIE = "refresh_token"
REFRESH_COOKIE_PATH = "/auth/access"
REFRESH_COOKIE_MAX_AGE = 60 * 60 * 24 * 7  # 7 days


def _set_refresh_cookie(response: Response, settings: Settings, refresh_token: str):
    response.set_cookie(
        key=REFRESH_COOKIE,
        value=refresh_token,
        httponly=settings.cookie_httponly,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
        domain=settings.cookie_domain,
        max_age=REFRESH_COOKIE_MAX_AGE,
        path=REFRESH_COOKIE_PATH,
    )


def _clear_refresh_cookie(response: Response, settings: Settings):
    response.delete_cookie(
        key=REFRESH_COOKIE,
        path=REFRESH_COOKIE_PATH,  # must match set_cookie()
        domain=settings.cookie_domain,
    )


@router.post("/register", response_model=UserRegistrationResponseModel, status_code=201)
async def register_user(data: UserRegistrationModel, services: Services = Depends(get_services)):
    """
    Register a new user.

    Creates a Supabase Auth user and the matching chat profile. New users
    start offline with no friends.

    **Input Fields**
    - **email**: A valid user email. Must not already exist in Supabase Auth.
    - **username**: 3–20 characters, letters, numbers, underscores or dots. Stored lowercase.
    - **password**: Minimum 8 characters with at least one letter and one number.
    - **first_name** / **last_name**: Optional, used as the display name.

    **Returns**
    - User ID
    - Email
    - Username

    **Errors**
    - 400: Failed to create user
    - 409: Email or Username already registered
    - 422: Invalid input
    """
    if await services.directory.find_by_username(data.username):
        raise HTTPException(status_code=409, detail="Username already taken.")

    supabase = get_supabase(services.settings)

    try:
        res = await run_in_threadpool(
            supabase.auth.sign_up,
            {
                "email": data.email,
                "password": data.password.get_secret_value(),
            },
        )
    except AuthApiError as error:
        logger.error(f"supabase_error={error}")
        raise HTTPException(status_code=409, detail=str(error))

    if not res.user:
        raise HTTPException(status_code=400, detail="Failed to create user")

    try:
        user = await services.directory.create(
            res.user.id,
            data.username,
            email=res.user.email or data.email,
            display_name=data.display_name,
        )
    except DuplicateKeyError:
        # lost a race for the username after the existence check
        raise HTTPException(status_code=409, detail="Username already taken.")

    logger.info(f"user_registered user_id={user.id} username={user.username}")

    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
    }


@router.post("/login", response_model=UserLoginResponseModel, status_code=200)
async def login_user(
    user_data: UserLoginModel,
    response: Response,
    services: Services = Depends(get_services),
):
    """
    Authenticate a user with email and password.

    Checks credentials against Supabase Auth and returns an access token. The
    refresh token is set in an HttpOnly cookie scoped to `/auth/access`.

    The access token is also what the realtime connection expects in its
    `token` query parameter.

    **Input Fields**
    - **email**: The user's email address.
    - **password**: The user's password.

    **Returns**
    - `access_token`: A short-lived JWT used for authorized API requests.
    - `user_id`: The authenticated user's ID.
    - `email`: The authenticated user's email.

    **Errors**
    - 401: Invalid email or password
    - 500: Unexpected response from Supabase
    """
    supabase = get_supabase(services.settings)

    try:
        res = await run_in_threadpool(
            supabase.auth.sign_in_with_password,
            {
                "email": user_data.email,
                "password": user_data.password.get_secret_value(),
            },
        )
    except AuthApiError as error:
        logger.info(f"user_login_failed email={user_data.email}")
        raise HTTPException(status_code=401, detail=error.message)

    if not res.session:
        raise HTTPException(
            status_code=500,
            detail="Supabase authentication returned an unexpected response.",
        )

    _set_refresh_cookie(response, services.settings, res.session.refresh_token)
    logger.info(f"user_login_success email={user_data.email}")

    return {
        "access_token": res.session.access_token,
        "expires_in": res.session.expires_in,
        "user_id": res.user.id,
        "email": res.user.email,
    }


@router.get("/access", response_model=AccessTokenResponseModel, status_code=200)
async def get_new_access(
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
):
    """
    Issue a new access token using the refresh token stored in an HttpOnly cookie.

    If Supabase rotates the refresh token, the cookie is updated.

    **Input**
    - No JSON body.
    - Reads `refresh_token` from an HttpOnly cookie.

    **Returns**
    - A new `access_token`

    **Errors**
    - 401: Missing, expired, revoked, or invalid refresh token
    """
    refresh_token = request.cookies.get(REFRESH_COOKIE)

    if not refresh_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No refresh token provided.",
        )

    supabase = get_supabase(services.settings)

    try:
        res = await run_in_threadpool(supabase.auth.refresh_session, refresh_token)
    except AuthApiError as error:
        logger.info(f"token_refresh_failed error={error}")
        res = None

    if not res or not res.session:
        failed = JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": "Refresh token invalid or expired. Please log in again."},
        )
        _clear_refresh_cookie(failed, services.settings)
        return failed

    _set_refresh_cookie(response, services.settings, res.session.refresh_token)
    return {"access_token": res.session.access_token}


@router.get("/me", response_model=MeResponseModel, status_code=200)
async def get_me(
    user_id: str = Depends(get_current_user_id),
    services: Services = Depends(get_services),
):
    """
    Get the authenticated user's profile, friends and open friend requests.

    **Returns**
    - `profile`: id, username, display name, email, about, avatar, presence status
    - `friends`: friend summaries
    - `incoming_requests`: users who sent YOU a request
    - `outgoing_requests`: users YOU sent a request to

    **Errors**
    - `401`: Invalid or expired token
    - `404`: Profile not found
    """
    user = await services.directory.get(user_id)
    if not user:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Profile not found.")

    friends = await services.directory.get_many(user.friends)
    incoming = await services.ledger.incoming(user_id)
    outgoing = await services.ledger.outgoing(user_id)

    return {
        "profile": ProfileModel.from_user(user),
        "friends": [friend.summary() for friend in friends],
        "incoming_requests": await request_items(incoming, services.directory),
        "outgoing_requests": await request_items(outgoing, services.directory),
    }


@router.post("/logout")
async def logout(services: Services = Depends(get_services)):
    """
    Logs out the user by clearing the refresh_token cookie that was used
    during authentication. Supabase cannot invalidate JWTs early, so logout
    consists of deleting the refresh token stored in cookies.
    """
    response = JSONResponse({"logged_out": True})
    _clear_refresh_cookie(response, services.settings)
    return response
