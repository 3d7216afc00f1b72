"""FastAPI application factory for the DM script studio."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from dmflow.executor import create_session, simulate, stage_progress, step
from dmflow.model import Script, ScriptValidationError, ValidationIssue, load
from dmflow.session import ConversationSession
from dmflow.telemetry import StepEvent, fetch_step_events, log_step_event, step_event
from dmflow.variables import TypeMismatch

from .config import Settings, ensure_data_directory, get_settings
from .schemas import (
    IssueRead,
    MessageIn,
    ScriptList,
    ScriptRead,
    SessionCreate,
    SessionList,
    SimulateRequest,
    SimulateResult,
    SimulationTurnRead,
    StageRead,
    StepResult,
    ValidationReport,
)
from .store import ScriptStore, SessionStore, VersionConflict

logger = logging.getLogger("dmflow.api")


def _issues(issues: tuple[ValidationIssue, ...] | list[ValidationIssue]) -> list[IssueRead]:
    return [IssueRead(**issue.as_dict()) for issue in issues]


def _script_read(script: Script) -> ScriptRead:
    return ScriptRead(
        id=script.id,
        version=script.version,
        entry_node_id=script.entry_node_id,
        keyword=script.keyword,
        node_ids=list(script.nodes),
        variables=list(script.variables),
        warnings=_issues(script.warnings),
    )


def _stage_read(script: Script, session: ConversationSession) -> StageRead:
    progress = stage_progress(script, session)
    return StageRead(completed=list(progress.completed), last=progress.last, next=progress.next)


def _schedule_background_coroutine(
    background_tasks: BackgroundTasks,
    coro_func: Callable[..., Awaitable[Any]],
    *args: Any,
    description: str,
) -> None:
    async def runner() -> None:
        try:
            await coro_func(*args)
        except Exception:
            logger.exception("Background task '%s' failed", description)

    background_tasks.add_task(runner)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    ensure_data_directory(settings.sessions_path)
    ensure_data_directory(settings.scripts_path)

    app = FastAPI(title="DM Flow API", version="0.1.0", docs_url="/docs")
    app.state.sessions = SessionStore(settings.sessions_path)
    app.state.scripts = ScriptStore(settings.scripts_path)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ScriptValidationError)
    async def invalid_script_handler(_: Request, exc: ScriptValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc), "issues": [issue.as_dict() for issue in exc.issues]},
        )

    @app.get("/health", summary="Simple health check")
    async def health() -> dict[str, object]:
        return {
            "status": "ok",
            "scripts": len(app.state.scripts.list_scripts()),
            "environment": app.state.settings.environment,
        }

    def get_sessions(request: Request) -> SessionStore:
        return request.app.state.sessions

    def get_scripts(request: Request) -> ScriptStore:
        return request.app.state.scripts

    @app.post("/scripts/validate", response_model=ValidationReport, summary="Validate a script definition")
    async def validate(raw: dict[str, Any]) -> ValidationReport:
        try:
            script = load(raw)
        except ScriptValidationError as exc:
            return ValidationReport(valid=False, issues=_issues(exc.issues))
        return ValidationReport(valid=True, warnings=_issues(script.warnings))

    @app.post(
        "/scripts",
        response_model=ScriptRead,
        status_code=status.HTTP_201_CREATED,
        summary="Register a new script version",
    )
    async def register_script(raw: dict[str, Any], scripts: ScriptStore = Depends(get_scripts)) -> ScriptRead:
        try:
            script = scripts.register(raw)
        except VersionConflict as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        logger.info("Registered script %s v%s", script.id, script.version)
        return _script_read(script)

    @app.get("/scripts", response_model=ScriptList, summary="List registered script versions")
    async def list_scripts(scripts: ScriptStore = Depends(get_scripts)) -> ScriptList:
        return ScriptList(scripts=[_script_read(script) for script in scripts.list_scripts()])

    @app.get("/scripts/{script_id}", response_model=ScriptRead, summary="Fetch a script version")
    async def get_script(
        script_id: str,
        version: Optional[int] = None,
        scripts: ScriptStore = Depends(get_scripts),
    ) -> ScriptRead:
        try:
            return _script_read(scripts.get(script_id, version))
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc.args[0])) from exc

    @app.post("/sessions", status_code=status.HTTP_201_CREATED, summary="Start a session on a script")
    async def start_session(
        payload: SessionCreate,
        scripts: ScriptStore = Depends(get_scripts),
        sessions: SessionStore = Depends(get_sessions),
    ) -> dict[str, Any]:
        try:
            script = scripts.get(payload.script_id, payload.version)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc.args[0])) from exc
        try:
            session = create_session(script, session_id=payload.session_id, bindings=payload.bindings)
        except TypeMismatch as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        sessions.save(session)
        return session.snapshot()

    @app.get("/sessions", response_model=SessionList, summary="List stored sessions")
    async def list_sessions(
        script_id: Optional[str] = None,
        sessions: SessionStore = Depends(get_sessions),
    ) -> SessionList:
        return SessionList(sessions=[session.snapshot() for session in sessions.list_sessions(script_id)])

    @app.delete(
        "/sessions/{session_id}",
        status_code=status.HTTP_204_NO_CONTENT,
        summary="Discard a session snapshot",
    )
    async def delete_session(session_id: str, sessions: SessionStore = Depends(get_sessions)) -> Response:
        try:
            sessions.delete(session_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc.args[0])) from exc
        logger.info("Deleted session %s", session_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/sessions/{session_id}", summary="Fetch a session snapshot")
    async def get_session(session_id: str, sessions: SessionStore = Depends(get_sessions)) -> dict[str, Any]:
        try:
            return sessions.get(session_id).snapshot()
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc.args[0])) from exc

    @app.post(
        "/sessions/{session_id}/messages",
        response_model=StepResult,
        summary="Feed one customer reply to a session",
    )
    async def post_message(
        session_id: str,
        payload: MessageIn,
        background_tasks: BackgroundTasks,
        scripts: ScriptStore = Depends(get_scripts),
        sessions: SessionStore = Depends(get_sessions),
    ) -> StepResult:
        if len(payload.text) > app.state.settings.max_input_length:
            raise HTTPException(
                status_code=422,
                detail=f"Message exceeds {app.state.settings.max_input_length} characters",
            )
        try:
            before = sessions.get(session_id)
            script = scripts.get(before.script_id, before.script_version)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc.args[0])) from exc

        after, outcome = step(script, before, payload.text, max_steps=app.state.settings.max_steps)
        sessions.save(after)

        stage = _stage_read(script, after)
        _schedule_background_coroutine(
            background_tasks,
            log_step_event,
            step_event(before, after, outcome, stage=stage.last),
            description="step event",
        )
        return StepResult(session=after.snapshot(), outcome=outcome.as_dict(), stage=stage)

    @app.get("/sessions/{session_id}/events", response_model=list[StepEvent], summary="Recorded step events")
    async def session_events(session_id: str) -> list[StepEvent]:
        return list(await fetch_step_events(session_id))

    @app.post("/simulate", response_model=SimulateResult, summary="Dry-run replies through a script")
    async def dry_run(payload: SimulateRequest) -> SimulateResult:
        limit = app.state.settings.max_input_length
        if any(len(text) > limit for text in payload.inputs):
            raise HTTPException(status_code=422, detail=f"Message exceeds {limit} characters")
        script = load(payload.script)
        try:
            session = create_session(script, session_id="dry-run", bindings=payload.bindings)
        except TypeMismatch as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        result = simulate(script, payload.inputs, session=session, max_steps=app.state.settings.max_steps)
        return SimulateResult(
            opening=list(result.opening),
            turns=[
                SimulationTurnRead(input=turn.text, outcome=turn.outcome.as_dict(), session=turn.session.snapshot())
                for turn in result.turns
            ],
            session=result.session.snapshot(),
            transcript=[{"role": role, "text": text} for role, text in result.transcript],
            warnings=_issues(script.warnings),
        )

    return app
