from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from pgplane.config import Settings, get_settings
from pgplane.dependencies import get_current_actor, get_db_session
from pgplane.errors import AuthenticationRequiredError
from pgplane.logger import get_logger
from pgplane.schemas.auth import LoginRequest, UserCreate, UserOut
from pgplane.security import SESSION_COOKIE_NAME, Actor, create_session_token
from pgplane.services import users as user_service

router = APIRouter(prefix="/auth", tags=["auth"])
_logger = get_logger("auth.login")


def _client_ip(request: Request) -> str:
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


@router.post("/login")
async def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    client_ip = _client_ip(request)
    async with _logger.operation(
        "login.submit",
        "Handled login request",
        username=payload.username,
        client_ip=client_ip,
    ) as op:
        user = await user_service.authenticate(session, payload.username, payload.password)
        if user is None:
            raise AuthenticationRequiredError("Invalid username or password.")
        op.step("credentials.verify", "Verified submitted credentials")

        token = create_session_token(
            user.username,
            settings.auth_secret_key,
            ttl_seconds=settings.auth_session_ttl_seconds,
        )
        response.set_cookie(
            key=SESSION_COOKIE_NAME,
            value=token,
            max_age=settings.auth_session_ttl_seconds,
            httponly=True,
            secure=settings.auth_cookie_secure,
            samesite="lax",
            path="/",
        )
        return {
            "username": user.username,
            "role": user.role,
            "session_token": token,
            "expires_in": settings.auth_session_ttl_seconds,
        }


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(response: Response) -> None:
    _logger.info("logout.submit", "Processed logout request")
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")


@router.get("/me")
async def me(actor: Actor = Depends(get_current_actor)) -> Dict[str, Any]:
    return {"user_id": actor.user_id, "username": actor.username, "role": actor.role}


@router.post("/users", response_model=UserOut, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: UserCreate,
    session: AsyncSession = Depends(get_db_session),
    actor: Actor = Depends(get_current_actor),
) -> UserOut:
    user = await user_service.create_user(session, actor, payload)
    return UserOut.model_validate(user)
