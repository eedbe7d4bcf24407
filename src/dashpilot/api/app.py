"""
Core API backend for dashpilot.

Two ways to run the agent over HTTP:

*Remote split* - the caller owns the tools (e.g. they touch a browser UI) and executes them
itself between calls:

- **POST /api/agent/run**          - start a run; returns tool calls or the final result.
- **POST /api/agent/tool-result**  - feed tool results back; returns the next assistant message.

*Server-side sessions* - tools run here against a per-session in-memory dashboard:

- **POST /api/sessions**                  - create a new session, returns a session ID.
- **GET /api/sessions**                   - list all active sessions.
- **GET /api/sessions/{id}/dashboard**    - current dashboard of a session.
- **POST /api/agent/chat**                - full run: {"message": "...", "sessionId": "..."}

Plus **GET /api/health**.  Fatal run errors map to HTTP 500 with ``{"error": message}``.
"""

import logging
import uuid
from dataclasses import (
    dataclass,
    field,
)
from functools import lru_cache
from typing import (
    Dict,
    List,
    Optional,
)

from fastapi import (
    Depends,
    FastAPI,
    HTTPException,
    Request,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dashpilot.agent.agent_loop import (
    AgentRunner,
    AgentState,
)
from dashpilot.agent.llm_interface import (
    BaseLLMClient,
    describe_provider,
    load_client,
)
from dashpilot.api.models import (
    ChatRequest,
    ChatResponse,
    HealthResponse,
    RunRequest,
    RunResponse,
    SessionResponse,
    ToolResultRequest,
    ToolResultResponse,
)
from dashpilot.common import (
    AnsiColors,
    colored_print,
)
from dashpilot.config import settings
from dashpilot.core.errors import AgentRunError
from dashpilot.core.schema import (
    AgentTurn,
    HistoryEntry,
    RunOptions,
)
from dashpilot.memory.memory_store import (
    init_memory_store,
    save_turn,
)
from dashpilot.tools import ToolRegistry
from dashpilot.tools.dashboard import (
    InMemoryDashboardStore,
    build_dashboard_registry,
)

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """Server-side conversation: chat history plus its own dashboard and tools."""

    store: InMemoryDashboardStore = field(default_factory=InMemoryDashboardStore)
    history: List[HistoryEntry] = field(default_factory=list)
    registry: ToolRegistry = field(init=False)

    def __post_init__(self) -> None:
        self.registry = build_dashboard_registry(self.store)


# Session storage (in-memory for now, could be moved to a database)
sessions: Dict[str, Session] = {}

app = FastAPI(title="dashpilot API", version="0.1.0", description="dashpilot dashboard agent API")

# Add CORS middleware to allow requests from the dashboard UI
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        f"http://localhost:{settings.API_PORT}",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Dependencies & helpers
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_llm_client() -> BaseLLMClient:
    """The configured LLM client, built on first use."""
    return load_client()


def get_runner(llm: BaseLLMClient = Depends(get_llm_client)) -> AgentRunner:
    """Runner for the remote split; its tools come with each request."""
    return AgentRunner(llm, ToolRegistry())


def get_or_create_session(session_id: Optional[str] = None) -> str:
    """Get existing session or create a new one."""
    if session_id and session_id in sessions:
        return session_id

    new_session_id = session_id or str(uuid.uuid4())
    sessions[new_session_id] = Session()
    return new_session_id


@app.exception_handler(AgentRunError)
async def agent_error_handler(request: Request, exc: AgentRunError) -> JSONResponse:
    """Fatal run errors surface as a single message, never a traceback."""
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": str(exc)})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything else (e.g. a misconfigured provider) gets the same JSON error shape."""
    logger.exception("%s %s crashed", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": str(exc) or type(exc).__name__})


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/api/health", response_model=HealthResponse, summary="Health check")
async def health() -> HealthResponse:
    """Return a liveness payload with the configured provider and model."""
    provider, model = describe_provider()
    return HealthResponse(status="ok", provider=provider, model=model)


@app.post(
    "/api/agent/run",
    response_model=RunResponse,
    response_model_exclude_none=True,
    summary="Start a run",
)
async def agent_run(req: RunRequest, runner: AgentRunner = Depends(get_runner)) -> RunResponse:
    """Build the context and make the first LLM call."""
    logger.info(
        "New agent request: history=%d, tools=%d, prompt=%s",
        len(req.history),
        len(req.tools),
        req.user_prompt,
    )
    ctx = runner.start(
        req.user_prompt,
        req.history,
        req.options,
        tools=req.tool_specs(),
        system_prompt=req.system_prompt,
    )
    state = await runner.advance(ctx)

    if state is AgentState.DISPATCHING_TOOLS:
        return RunResponse(
            type="tool_calls",
            tool_calls=ctx.pending,
            thoughts=ctx.thoughts,
            messages=ctx.messages,
            scratchpad=ctx.scratchpad.text,
        )
    return RunResponse(type="final", response=ctx.result)


@app.post(
    "/api/agent/tool-result",
    response_model=ToolResultResponse,
    response_model_exclude_none=True,
    summary="Continue a run with tool results",
)
async def agent_tool_result(
    req: ToolResultRequest, runner: AgentRunner = Depends(get_runner)
) -> ToolResultResponse:
    """Append the caller's tool results and ask the model for its next message."""
    logger.info(
        "Processing tool results: messages=%d, results=%d, tools=%d",
        len(req.messages),
        len(req.tool_results),
        len(req.tools),
    )
    ctx = runner.resume([*req.messages, *req.tool_results], req.scratchpad, req.tool_specs())
    completion = await runner.call_llm(ctx)
    return ToolResultResponse(
        message=completion.message,
        scratchpad=ctx.scratchpad.text,
        stop_reason=completion.stop_reason,
    )


@app.post("/api/sessions", response_model=SessionResponse, summary="Create a new session")
async def create_session() -> SessionResponse:
    """Create a new conversation session."""
    session_id = get_or_create_session()
    return SessionResponse(session_id=session_id)


@app.get("/api/sessions", response_model=List[str], summary="List active sessions")
async def list_sessions() -> List[str]:
    """List all active session IDs."""
    return list(sessions.keys())


@app.get("/api/sessions/{session_id}/dashboard", summary="Dashboard of a session")
async def session_dashboard(session_id: str) -> dict:
    """Return the modules currently on the session's dashboard."""
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown session '{session_id}'")
    return session.store.get_state()


@app.post("/api/agent/chat", response_model=ChatResponse, summary="Run the agent server-side")
async def agent_chat(
    req: ChatRequest, llm: BaseLLMClient = Depends(get_llm_client)
) -> ChatResponse:
    """Run the full loop with the session's history and dashboard tools."""
    session_id = get_or_create_session(req.session_id)
    session = sessions[session_id]

    runner = AgentRunner(llm, session.registry)
    options = RunOptions(initial_state=session.store.get_state())
    result = await runner.run(req.message, session.history, options)

    session.history.append(HistoryEntry(role="user", content=req.message))
    session.history.append(HistoryEntry(role="agent", content=result.response))
    save_turn(AgentTurn(user_message=req.message, session_id=session_id, result=result))

    return ChatResponse(
        response=result, session_id=session_id, dashboard=session.store.get_state()
    )


@app.get("/", summary="API root")
async def root() -> dict[str, str]:
    """Return a simple welcome message."""
    return {"message": "Welcome to the dashpilot API! Use /docs for API documentation."}


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Prepare the run log and serve *app* with uvicorn (blocks until shutdown).

    ``log_level`` defaults to ``settings.LOG_LEVEL``; ``reload`` only works from the main thread.
    """

    # Imported here so the app module stays importable without a server installed
    import uvicorn  # pylint: disable=import-outside-toplevel

    log_level = log_level or settings.LOG_LEVEL
    provider, model = describe_provider()
    logger.info(
        "Serving dashpilot API on %s:%d (provider=%s, model=%s, reload=%s)",
        host,
        port,
        provider,
        model,
        reload,
    )
    init_memory_store()

    colored_print(f"🔮 dashpilot API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(
        f"Visit http://localhost:{port}/docs for API documentation.",
        AnsiColors.BLUE,
    )
    uvicorn.run(
        "dashpilot.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m dashpilot.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
