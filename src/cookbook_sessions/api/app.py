"""FastAPI application factory."""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager, suppress
from uuid import UUID

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse

from cookbook_sessions.api.admin import router as admin_router
from cookbook_sessions.app_logging import configure_logging
from cookbook_sessions.containers import AppContainer
from cookbook_sessions.domain.errors import InvalidArgumentError, NotFoundError
from cookbook_sessions.domain.sessions import Scope, Session
from cookbook_sessions.services.sessions import SessionManager

SESSION_HEADER = "X-Session-Id"

_BYPASS_PREFIXES = ("/health", "/admin")


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        stop_event = asyncio.Event()
        cleanup_task = asyncio.create_task(
            state_container.cleanup_service.run(stop_event)
        )
        yield
        stop_event.set()
        await cleanup_task
        try:
            await state_container.session_manager.shutdown()
        finally:
            await state_container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(admin_router)

    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)}
        )

    @app.exception_handler(InvalidArgumentError)
    async def invalid_argument(
        request: Request, exc: InvalidArgumentError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)}
        )

    @app.middleware("http")
    async def bind_session(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Attach a fresh scope to a session for the duration of the request."""
        if request.url.path.startswith(_BYPASS_PREFIXES):
            return await call_next(request)

        state_container: AppContainer = request.app.state.container
        manager = state_container.session_manager
        scope = state_container.scope_factory.create_scope()
        try:
            session = _bind_session(manager, scope, request.headers.get(SESSION_HEADER))
        except NotFoundError as exc:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)}
            )
        scope.session_id = session.id
        request.state.scope = scope
        logger.info(
            "Request %s bound to scope %s in Session %s",
            request.url.path,
            scope.id,
            session.id,
        )
        try:
            response = await call_next(request)
        finally:
            await _release_scope(manager, scope, session, logger)
        response.headers[SESSION_HEADER] = str(session.id)
        return response

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.get("/sessions/current")
    async def current_session(request: Request) -> dict[str, object]:
        """Return the session bound to this request."""
        scope: Scope = request.state.scope
        session = request.app.state.container.session_manager.find_session_by_scope(
            scope.id
        )
        if session is None:
            return {"session_id": None, "scope_id": str(scope.id)}
        return {
            "session_id": str(session.id),
            "scope_id": str(scope.id),
            "scope_count": len(session.scopes),
            "expires_at": session.expires_at.isoformat(),
        }

    return app


def _bind_session(manager: SessionManager, scope: Scope, header: str | None) -> Session:
    """Rejoin the session named by the header, or create a new one."""
    session_id = None
    if header:
        with suppress(ValueError):
            session_id = UUID(header)
    if session_id is None:
        return manager.create_session(scope.id)
    session = manager.get_session(session_id)
    manager.add_scope_to_session(session, scope.id)
    return session


async def _release_scope(
    manager: SessionManager,
    scope: Scope,
    session: Session,
    logger: logging.Logger,
) -> None:
    """Detach the request scope and end sessions left drained."""
    owner = manager.remove_scope_from_session(scope.id)
    candidates = {session.id: session}
    if owner is not None:
        candidates[owner.id] = owner
    now = manager.clock()
    for candidate in candidates.values():
        if candidate.ended or not candidate.is_expired(now):
            continue
        try:
            await manager.end_session_if_expired(candidate, now)
        except Exception:
            logger.exception("Error ending session %s", candidate.id)
