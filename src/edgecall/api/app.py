"""
Core API backend for edgecall.

It exposes the following endpoints:
- **GET /health**  - liveness probe for health checks.
- **GET /tools** - function-calling definitions of the tools available right now.
- **POST /sessions** - create a new session, returns a session ID.
- **GET /sessions** - list all active sessions.
- **DELETE /sessions/{id}** - abort and drop a session.
- **DELETE /sessions/{id}/history** - clear a session's conversation.
- **POST /sessions/{id}/abort** - cancel the turn a session is running.
- **POST /chat**   - multi-turn interaction: {"message": "...", "session_id": "..."}
"""

import logging
from contextlib import asynccontextmanager
from typing import (
    AsyncIterator,
    Callable,
    Dict,
    List,
    Optional,
)

from fastapi import (
    FastAPI,
    HTTPException,
)

from edgecall.agent.agent_loop import (
    ConversationBusyError,
    ToolChat,
)
from edgecall.agent.engine_interface import (
    InferenceEngine,
    InferenceError,
    load_engine,
)
from edgecall.agent.session import (
    ChatSession,
    TurnAbortedError,
)
from edgecall.agent.tool_executor import ToolDispatcher
from edgecall.api.models import (
    AbortResponse,
    MessageRequest,
    MessageResponse,
    SessionResponse,
    ToolCallInfo,
    ToolDefinitionsResponse,
)
from edgecall.common import (
    AnsiColors,
    colored_print,
)
from edgecall.config import settings
from edgecall.tools import (
    ToolCatalog,
    default_catalog,
)

logger = logging.getLogger(__name__)


def create_app(
    catalog: Optional[ToolCatalog] = None,
    engine_factory: Optional[Callable[[], InferenceEngine]] = None,
    dispatcher: Optional[ToolDispatcher] = None,
) -> FastAPI:
    """
    Build the API application.

    Parameters
    ----------
    catalog:
        Tools offered to every session (default: the built-in catalog).
    engine_factory:
        Builds the engine shared by all sessions (default: :func:`load_engine`).
    dispatcher:
        Dispatcher shared by all sessions (default: one over *catalog*).
    """
    tool_catalog = catalog if catalog is not None else default_catalog
    tool_dispatcher = dispatcher or ToolDispatcher(tool_catalog)
    engine = (engine_factory or load_engine)()

    # Session storage (in-memory for now, could be moved to a database)
    sessions: Dict[str, ChatSession] = {}

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        for session in list(sessions.values()):
            await session.abort()
        await engine.aclose()
        tool_dispatcher.close()

    app = FastAPI(
        title="edgecall API",
        version="0.1.0",
        description="Bounded tool-calling conversations for on-device models",
        lifespan=lifespan,
    )
    app.state.sessions = sessions
    app.state.catalog = tool_catalog
    app.state.engine = engine

    # ---------------------------------------------------------------------------
    # Helper functions
    # ---------------------------------------------------------------------------
    def new_session() -> ChatSession:
        chat = ToolChat(engine=engine, catalog=tool_catalog, dispatcher=tool_dispatcher)
        session = ChatSession(chat)
        sessions[session.session_id] = session
        logger.info("Created session %s", session.session_id)
        return session

    def get_session(session_id: str) -> ChatSession:
        session = sessions.get(session_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
        return session

    def describe(session: ChatSession) -> SessionResponse:
        return SessionResponse(
            session_id=session.session_id,
            history_size=session.chat.history_size,
            is_processing=session.is_processing,
        )

    # ---------------------------------------------------------------------------
    # Routes
    # ---------------------------------------------------------------------------
    @app.get("/health", summary="Health check")
    async def health() -> dict[str, str]:
        """Return a simple liveness payload."""
        return {"status": "ok", "engine": "ready" if engine.is_ready else "not ready"}

    @app.get("/tools", response_model=ToolDefinitionsResponse, summary="List available tools")
    async def list_tools() -> ToolDefinitionsResponse:
        """Definitions of the tools usable right now."""
        return ToolDefinitionsResponse(tools=tool_catalog.to_tool_definitions())

    @app.post("/sessions", response_model=SessionResponse, summary="Create a new session")
    async def create_session() -> SessionResponse:
        """Create a new conversation session."""
        return describe(new_session())

    @app.get("/sessions", response_model=List[str], summary="List active sessions")
    async def list_sessions() -> List[str]:
        """List all active session IDs."""
        return list(sessions.keys())

    @app.delete("/sessions/{session_id}", response_model=SessionResponse, summary="Drop a session")
    async def delete_session(session_id: str) -> SessionResponse:
        """Abort anything the session is running and forget it."""
        session = get_session(session_id)
        await session.abort()
        sessions.pop(session_id, None)
        return describe(session)

    @app.delete(
        "/sessions/{session_id}/history",
        response_model=SessionResponse,
        summary="Clear a session's history",
    )
    async def clear_history(session_id: str) -> SessionResponse:
        """Abort any running turn and reset the conversation."""
        session = get_session(session_id)
        await session.clear_history()
        return describe(session)

    @app.post(
        "/sessions/{session_id}/abort", response_model=AbortResponse, summary="Abort a turn"
    )
    async def abort_turn(session_id: str) -> AbortResponse:
        """Cancel the running turn; a no-op when the session is idle."""
        session = get_session(session_id)
        return AbortResponse(session_id=session_id, aborted=await session.abort())

    @app.post("/chat", response_model=MessageResponse, summary="Process a message")
    async def chat_endpoint(req: MessageRequest) -> MessageResponse:
        """Run one user turn, creating a session when none is given."""
        session = get_session(req.session_id) if req.session_id else new_session()

        try:
            response = await session.send_message(req.message)
        except ConversationBusyError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except TurnAbortedError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except InferenceError as exc:
            logger.warning("Inference failure in session %s: %s", session.session_id, exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc

        if response is None:  # blank input is rejected by MessageRequest already
            raise HTTPException(status_code=422, detail="message must not be blank")

        return MessageResponse(
            reply=response.text,
            session_id=session.session_id,
            used_tools=response.used_tools,
            tool_calls=[ToolCallInfo.from_record(r) for r in response.tool_calls],
        )

    return app


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting the API.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting edgecall API at %s:%d (engine=%s, reload=%s, log_level=%s)",
        host,
        port,
        settings.ENGINE,
        reload,
        log_level,
    )
    logger.debug("API settings: %s", settings.model_dump(exclude={"OPENAI_API_KEY"}))

    colored_print(f"edgecall API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "edgecall.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m edgecall.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
