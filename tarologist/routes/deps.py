"""Request-scoped accessors shared by the routers."""

from __future__ import annotations

from fastapi import Depends, Request

from ..container import Container


def get_container(request: Request) -> Container:
    return request.app.state.container


def current_user_id(container: Container = Depends(get_container)) -> str:
    """Signed-in user's id; raises UnauthenticatedError (401) otherwise."""
    return container.auth.require_user_id()
