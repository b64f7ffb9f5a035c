"""Sign-in, sign-up and sign-out by handle."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..container import Container
from ..identity import handle_from_email
from .deps import get_container

router = APIRouter(prefix="/auth", tags=["auth"])


class Credentials(BaseModel):
    handle: str = Field(..., min_length=1, description="User-chosen login, turned into a pseudo-email")
    password: str = Field(..., min_length=1)


class AuthStatus(BaseModel):
    logged_in: bool
    uid: Optional[str] = None
    handle: Optional[str] = None


def _status(container: Container) -> AuthStatus:
    user = container.identity.current_user()
    if user is None or not container.auth.logged_in:
        return AuthStatus(logged_in=False)
    return AuthStatus(
        logged_in=True,
        uid=user.uid,
        handle=handle_from_email(user.email, container.settings.email_domain),
    )


@router.post("/sign-in", response_model=AuthStatus)
def sign_in(req: Credentials, container: Container = Depends(get_container)) -> AuthStatus:
    container.auth.sign_in(req.handle, req.password)
    return _status(container)


@router.post("/sign-up", response_model=AuthStatus)
def sign_up(req: Credentials, container: Container = Depends(get_container)) -> AuthStatus:
    container.auth.sign_up(req.handle, req.password)
    return _status(container)


@router.post("/sign-out", response_model=AuthStatus)
def sign_out(container: Container = Depends(get_container)) -> AuthStatus:
    container.auth.sign_out()
    return _status(container)


@router.get("/status", response_model=AuthStatus)
def status(container: Container = Depends(get_container)) -> AuthStatus:
    return _status(container)
