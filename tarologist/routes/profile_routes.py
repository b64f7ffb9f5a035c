"""Profile: subscription flag of the signed-in user."""

from typing import Dict

from fastapi import APIRouter, Depends

from ..container import Container
from .deps import current_user_id, get_container

router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("/subscription")
def subscription_status(container: Container = Depends(get_container)) -> Dict[str, bool]:
    return {"isSubscribed": container.subscription.has_active_subscription()}


@router.post("/subscription")
def activate_subscription(
    user_id: str = Depends(current_user_id),
    container: Container = Depends(get_container),
) -> Dict[str, bool]:
    container.subscription.activate()
    return {"isSubscribed": True}


@router.delete("/subscription")
def deactivate_subscription(
    user_id: str = Depends(current_user_id),
    container: Container = Depends(get_container),
) -> Dict[str, bool]:
    container.subscription.deactivate()
    return {"isSubscribed": False}
