# dmflow/telemetry.py
"""Forward per-step funnel events to Supabase, or to the log when offline."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx
from pydantic import BaseModel, Field

from .intents import primary
from .outcomes import Outcome
from .session import ConversationSession

logger = logging.getLogger("dmflow.telemetry")

EVENTS_PATH = "/rest/v1/dm_step_events"


@dataclass(frozen=True)
class _SupabaseConfig:
    """Credentials required to reach the Supabase REST API."""

    url: str
    key: str

    def headers(self, extras: Optional[Iterable[tuple[str, str]]] = None) -> Dict[str, str]:
        base = {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
            "Content-Type": "application/json",
        }
        if extras:
            for extra_key, value in extras:
                base[extra_key] = value
        return base


def _credentials() -> Optional[_SupabaseConfig]:
    """Return Supabase credentials if fully configured."""

    url = os.getenv("SUPABASE_URL", "").rstrip("/")
    key = os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or ""
    if not (url and key):
        return None
    return _SupabaseConfig(url=url, key=key)


def _missing_credentials_message() -> None:
    message = "Supabase credentials missing; logging step events locally."
    print(message)
    logger.warning(message)


@asynccontextmanager
async def _client_context(client: Optional[httpx.AsyncClient], timeout: float = 10.0):
    if client is not None:
        yield client
        return

    managed_client = httpx.AsyncClient(timeout=timeout)
    try:
        yield managed_client
    finally:
        await managed_client.aclose()


async def _request(
    method: str,
    path: str,
    *,
    config: _SupabaseConfig,
    payload: Optional[Dict[str, Any]] = None,
    params: Optional[Dict[str, str]] = None,
    prefer: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[Any]:
    headers_extra: Optional[Iterable[tuple[str, str]]] = None
    if prefer:
        headers_extra = (("Prefer", prefer),)

    async with _client_context(client) as http_client:
        response = await http_client.request(
            method,
            f"{config.url}{path}",
            headers=config.headers(headers_extra),
            json=payload,
            params=params,
        )
        response.raise_for_status()
        return response.json() if method.upper() == "GET" else None


class StepEvent(BaseModel):
    """One executor step, as seen by the analytics collector."""

    session_id: str
    script_id: str
    script_version: int
    from_node_id: str
    to_node_id: str
    outcome: str
    intent: str
    intents: List[str] = Field(default_factory=list)
    status: str
    step_count: int
    warnings: int = 0
    stage: Optional[str] = None


def step_event(
    before: ConversationSession,
    after: ConversationSession,
    outcome: Outcome,
    *,
    stage: Optional[str] = None,
) -> StepEvent:
    return StepEvent(
        session_id=after.session_id,
        script_id=after.script_id,
        script_version=after.script_version,
        from_node_id=before.current_node_id,
        to_node_id=after.current_node_id,
        outcome=outcome.kind.value,
        intent=primary(outcome.intents),
        intents=list(outcome.intents),
        status=after.status.value,
        step_count=after.step_count,
        warnings=len(outcome.warnings),
        stage=stage,
    )


def _log_locally(prefix: str, payload: BaseModel) -> None:
    logger.info("%s %s", prefix, payload.model_dump_json())


async def log_step_event(event: StepEvent, *, client: Optional[httpx.AsyncClient] = None) -> None:
    config = _credentials()
    if not config:
        _missing_credentials_message()
        _log_locally("STEP_EVENT", event)
        return

    try:
        await _request(
            "POST",
            EVENTS_PATH,
            config=config,
            payload=event.model_dump(),
            prefer="return=minimal",
            client=client,
        )
    except httpx.HTTPError:
        logger.exception("Supabase step event insert failed; logged locally")
        _log_locally("STEP_EVENT", event)


async def fetch_step_events(
    session_id: str,
    *,
    limit: int = 200,
    client: Optional[httpx.AsyncClient] = None,
) -> Tuple[StepEvent, ...]:
    """Return the recorded events of ``session_id`` in step order."""

    config = _credentials()
    if not config:
        _missing_credentials_message()
        return ()

    params = {
        "select": "*",
        "session_id": f"eq.{session_id}",
        "order": "step_count.asc",
        "limit": str(limit),
    }

    try:
        items = await _request("GET", EVENTS_PATH, config=config, params=params, client=client)
    except httpx.HTTPError:
        logger.exception("Supabase step event fetch failed")
        return ()

    return tuple(StepEvent.model_validate(item) for item in items or [])


__all__ = ["StepEvent", "fetch_step_events", "log_step_event", "step_event"]
