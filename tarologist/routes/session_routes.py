"""The signed-in user's saved sessions."""

from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field, ValidationError

from ..container import Container
from ..errors import ReadingError
from ..models import TarotSession, decode_document
from .deps import current_user_id, get_container

router = APIRouter(prefix="/sessions", tags=["sessions"])


class RenameRequest(BaseModel):
    client_name: str = Field(..., min_length=1)


def _session_json(session: TarotSession) -> Dict[str, Any]:
    body = session.to_json()
    body["shortDescription"] = session.short_description
    return body


@router.get("")
def list_sessions(
    user_id: str = Depends(current_user_id),
    container: Container = Depends(get_container),
) -> List[Dict[str, Any]]:
    """Newest first."""
    return [_session_json(s) for s in container.sessions.fetch_sessions(user_id)]


@router.get("/{session_id}")
def get_session(
    session_id: str,
    user_id: str = Depends(current_user_id),
    container: Container = Depends(get_container),
) -> Dict[str, Any]:
    session = container.sessions.get_session(user_id, session_id)
    body = _session_json(session)
    body["shareText"] = session.share_text()
    return body


@router.put("/{session_id}")
def replace_session(
    session_id: str,
    payload: Dict[str, Any] = Body(...),
    user_id: str = Depends(current_user_id),
    container: Container = Depends(get_container),
) -> Dict[str, Any]:
    """Full replace: the body must carry every stored field of the session."""
    try:
        session = decode_document(TarotSession, session_id, payload)
    except ValidationError as e:
        raise ReadingError(f"Некорректная сессия: {e.errors()[0]['msg']}") from e
    except ValueError as e:
        raise ReadingError(f"Некорректная сессия: {e}") from e
    spread = container.spreads.spread_by_id(session.spread_id)
    container.sessions.update_session(user_id, session, spread)
    return _session_json(session)


@router.post("/{session_id}/sent")
def mark_sent(
    session_id: str,
    user_id: str = Depends(current_user_id),
    container: Container = Depends(get_container),
) -> Dict[str, Any]:
    container.sessions.mark_as_sent(user_id, session_id)
    return {"id": session_id, "isSent": True}


@router.patch("/{session_id}/client")
def rename_client(
    session_id: str,
    req: RenameRequest,
    user_id: str = Depends(current_user_id),
    container: Container = Depends(get_container),
) -> Dict[str, Any]:
    container.sessions.rename_client(user_id, session_id, req.client_name)
    return {"id": session_id, "clientName": req.client_name.strip()}


@router.delete("/{session_id}")
def delete_session(
    session_id: str,
    user_id: str = Depends(current_user_id),
    container: Container = Depends(get_container),
) -> Dict[str, Any]:
    container.sessions.delete_session(user_id, session_id)
    return {"id": session_id, "deleted": True}
