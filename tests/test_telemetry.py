import json
import logging
import sys
from pathlib import Path

import httpx
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))
from dmflow.executor import create_session, step
from dmflow.model import load
from dmflow.telemetry import StepEvent, fetch_step_events, log_step_event, step_event
from sample_scripts import shop_script


def _event() -> StepEvent:
    script = load(shop_script())
    before = create_session(script, session_id="s-42")
    after, outcome = step(script, before, "what's the price?")
    return step_event(before, after, outcome, stage="qualify")


def test_step_event_describes_transition():
    event = _event()
    assert event.session_id == "s-42"
    assert event.from_node_id == "start"
    assert event.to_node_id == "price"
    assert event.outcome == "advanced"
    assert event.intent == "price_check"
    assert event.intents == ["price_check", "checkout"]
    assert event.status == "active"
    assert event.step_count == 1
    assert event.stage == "qualify"


def test_step_event_records_objection_as_primary_intent():
    script = load(shop_script())
    before, _ = step(script, create_session(script, session_id="s-43"), "price")
    after, outcome = step(script, before, "maybe later, how much again?")
    event = step_event(before, after, outcome)
    assert event.outcome == "awaiting_input"
    assert event.intent == "objection"
    assert event.intents == ["objection", "checkout"]


@pytest.mark.asyncio
async def test_log_step_event_posts_payload(monkeypatch):
    """Ensure the sink posts the expected payload to Supabase."""

    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_KEY", "testkey")

    captured = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["prefer"] = request.headers.get("Prefer")
        captured["json"] = json.loads(request.content.decode())
        return httpx.Response(201)

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        await log_step_event(_event(), client=client)

    assert captured["url"] == "https://example.supabase.co/rest/v1/dm_step_events"
    assert captured["prefer"] == "return=minimal"
    assert captured["json"]["session_id"] == "s-42"
    assert captured["json"]["to_node_id"] == "price"


@pytest.mark.asyncio
async def test_log_step_event_skips_without_credentials(monkeypatch, capsys):
    """Without credentials the sink should exit gracefully."""

    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_KEY", raising=False)
    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY", raising=False)

    await log_step_event(_event())

    captured = capsys.readouterr()
    assert "Supabase credentials missing" in captured.out


@pytest.mark.asyncio
async def test_log_step_event_falls_back_to_log_on_http_error(monkeypatch, caplog):
    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_KEY", "testkey")

    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    transport = httpx.MockTransport(handler)
    with caplog.at_level(logging.INFO, logger="dmflow.telemetry"):
        async with httpx.AsyncClient(transport=transport) as client:
            await log_step_event(_event(), client=client)

    assert "insert failed" in caplog.text
    assert "STEP_EVENT" in caplog.text


@pytest.mark.asyncio
async def test_fetch_step_events_returns_models(monkeypatch):
    """Ensure recorded events are retrieved correctly."""

    monkeypatch.setenv("SUPABASE_URL", "https://example.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_KEY", "testkey")

    captured = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        captured["params"] = dict(request.url.params)
        return httpx.Response(200, json=[_event().model_dump()])

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        events = await fetch_step_events("s-42", client=client)

    assert captured["params"]["session_id"] == "eq.s-42"
    assert captured["params"]["order"] == "step_count.asc"
    assert len(events) == 1
    assert events[0].to_node_id == "price"
