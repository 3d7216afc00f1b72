"""Persistent storage helpers for scripts and session snapshots."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Mapping, Optional, Tuple

from dmflow.definition import ScriptDefinition
from dmflow.model import Script, ScriptValidationError, load
from dmflow.session import ConversationSession

logger = logging.getLogger("dmflow.store")


class VersionConflict(ValueError):
    """Raised when a script version is registered twice with different content."""


def _read_json_list(path: Path) -> List[Any]:
    if not path.exists():
        return []
    try:
        data = json.loads(path.read_text("utf-8"))
    except json.JSONDecodeError:
        logger.warning("Ignoring unreadable store file %s", path)
        return []
    return data if isinstance(data, list) else []


class SessionStore:
    """Tiny JSON-backed session snapshot store keyed by ``session_id``."""

    def __init__(self, path: Path):
        self._path = path
        self._lock = Lock()
        self._sessions: Dict[str, ConversationSession] = {}
        self._load()

    def _load(self) -> None:
        for item in _read_json_list(self._path):
            session = ConversationSession.model_validate(item)
            self._sessions[session.session_id] = session

    def _save(self) -> None:
        payload = [session.snapshot() for session in self._sessions.values()]
        self._path.write_text(json.dumps(payload, indent=2), "utf-8")

    def save(self, session: ConversationSession) -> ConversationSession:
        with self._lock:
            self._sessions[session.session_id] = session
            self._save()
            return session

    def get(self, session_id: str) -> ConversationSession:
        with self._lock:
            if session_id not in self._sessions:
                raise KeyError(f"Session {session_id} not found")
            return self._sessions[session_id]

    def list_sessions(self, script_id: Optional[str] = None) -> List[ConversationSession]:
        with self._lock:
            return [
                session
                for session in self._sessions.values()
                if script_id is None or session.script_id == script_id
            ]

    def delete(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise KeyError(f"Session {session_id} not found")
            self._save()


class ScriptStore:
    """Script definitions keyed by ``(id, version)``; each version is loaded once."""

    def __init__(self, path: Path):
        self._path = path
        self._lock = Lock()
        self._definitions: Dict[Tuple[str, int], Dict[str, Any]] = {}
        self._scripts: Dict[Tuple[str, int], Script] = {}
        self._load()

    def _load(self) -> None:
        for item in _read_json_list(self._path):
            try:
                script = load(item)
            except ScriptValidationError as exc:
                logger.warning("Skipping stored script that no longer validates: %s", exc)
                continue
            key = (script.id, script.version)
            self._definitions[key] = item
            self._scripts[key] = script

    def _save(self) -> None:
        payload = list(self._definitions.values())
        self._path.write_text(json.dumps(payload, indent=2), "utf-8")

    def register(self, raw: Mapping[str, Any]) -> Script:
        """Validate and store ``raw``; raises ``ScriptValidationError`` or ``VersionConflict``."""

        script = load(raw)
        document = ScriptDefinition.model_validate(raw).model_dump(mode="json")
        key = (script.id, script.version)
        with self._lock:
            existing = self._definitions.get(key)
            if existing is not None:
                if existing != document:
                    raise VersionConflict(
                        f"Script {script.id} v{script.version} already exists; register a new version"
                    )
                return self._scripts[key]
            self._definitions[key] = document
            self._scripts[key] = script
            self._save()
            return script

    def get(self, script_id: str, version: Optional[int] = None) -> Script:
        with self._lock:
            if version is not None:
                if (script_id, version) not in self._scripts:
                    raise KeyError(f"Script {script_id} v{version} not found")
                return self._scripts[(script_id, version)]
            versions = [v for (sid, v) in self._scripts if sid == script_id]
            if not versions:
                raise KeyError(f"Script {script_id} not found")
            return self._scripts[(script_id, max(versions))]

    def list_scripts(self) -> List[Script]:
        with self._lock:
            return sorted(self._scripts.values(), key=lambda s: (s.id, s.version))
