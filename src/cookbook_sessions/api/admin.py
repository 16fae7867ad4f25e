"""Admin API endpoints with simple token auth."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID  # noqa: TC003

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

if TYPE_CHECKING:
    from cookbook_sessions.containers import AppContainer

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_admin_token(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.admin_token


async def require_admin(
    x_admin_token: str | None = Header(default=None),
    admin_token: str = Depends(_get_admin_token),
) -> None:
    """Ensure requests include a valid admin token."""
    if not x_admin_token or x_admin_token != admin_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.get("/health", dependencies=[Depends(require_admin)])
async def admin_health() -> dict[str, str]:
    """Admin health check endpoint."""
    return {"status": "ok"}


@router.get("/sessions", dependencies=[Depends(require_admin)])
async def list_sessions(request: Request) -> dict[str, object]:
    """Return every active session."""
    container: AppContainer = request.app.state.container
    return {
        "sessions": [
            {
                "id": str(view.id),
                "scope_count": view.scope_count,
                "order_id": view.order_id,
                "user_id": view.user_id,
                "conversation_count": view.conversation_count,
                "created_at": view.created_at.isoformat(),
                "expires_at": view.expires_at.isoformat(),
                "expires_immediately": view.expires_immediately,
            }
            for view in container.session_manager.snapshot()
        ]
    }


@router.delete("/sessions/{session_id}", dependencies=[Depends(require_admin)])
async def end_session(session_id: UUID, request: Request) -> dict[str, str]:
    """End a session and persist its state."""
    container: AppContainer = request.app.state.container
    await container.session_manager.end_session_by_id(session_id)
    return {"status": "ended"}


@router.post("/sessions/sweep", dependencies=[Depends(require_admin)])
async def sweep_sessions(request: Request) -> dict[str, int]:
    """Run one cleanup sweep immediately."""
    container: AppContainer = request.app.state.container
    return {"ended": await container.cleanup_service.sweep()}
