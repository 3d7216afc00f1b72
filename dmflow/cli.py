# dmflow/cli.py
# ──────────────────────────────────────────────────────────────────────────────
# Dry-run DM scripts from the terminal.
# - validate: load a script file and report issues/warnings
# - run: walk a script with a list of replies and print the transcript
# ──────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from dmflow.executor import DEFAULT_MAX_STEPS, create_session, simulate
from dmflow.model import Script, ScriptValidationError, load
from dmflow.variables import TypeMismatch


def _read_script(path: str) -> Script:
    try:
        raw = json.loads(Path(path).read_text("utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"Cannot read script {path}: {e}") from e
    return load(raw)


def _parse_bindings(pairs: Sequence[str]) -> Dict[str, str]:
    bindings: Dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise ValueError(f"Binding {pair!r} must look like name=value")
        bindings[name.strip()] = value
    return bindings


def _read_inputs(args: argparse.Namespace) -> List[str]:
    inputs = list(args.input or [])
    if args.inputs_file:
        lines = Path(args.inputs_file).read_text("utf-8").splitlines()
        inputs.extend(line for line in lines if line.strip())
    return inputs


def _validate(args: argparse.Namespace) -> int:
    script = _read_script(args.script)
    print(f"✅ {script.id} v{script.version}: {len(script.nodes)} nodes, {len(script.variables)} variables")
    for warning in script.warnings:
        print(f"⚠️  {warning.kind.value}: {warning.message}")
    return 0


def _run(args: argparse.Namespace) -> int:
    script = _read_script(args.script)
    session = create_session(script, session_id="cli", bindings=_parse_bindings(args.bind or []))
    result = simulate(script, _read_inputs(args), session=session, max_steps=args.max_steps)

    if args.json:
        payload: Dict[str, Any] = {
            "opening": list(result.opening),
            "turns": [
                {"input": turn.text, "outcome": turn.outcome.as_dict(), "session": turn.session.snapshot()}
                for turn in result.turns
            ],
            "session": result.session.snapshot(),
        }
        print(json.dumps(payload, indent=2))
        return 0

    for role, text in result.transcript:
        prefix = "👤" if role == "user" else "🤖"
        print(f"{prefix} {text}")
    for turn in result.turns:
        for warning in turn.outcome.warnings:
            print(f"⚠️  {warning.kind.value}: {warning.message}", file=sys.stderr)
    print(f"ℹ️  status={result.session.status.value} node={result.session.current_node_id} "
          f"steps={result.session.step_count}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(prog="dmflow", description="DM script dry-run utilities")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p_validate = sub.add_parser("validate", help="Validate a script definition file")
    p_validate.add_argument("script", help="Path to a JSON script definition")

    p_run = sub.add_parser("run", help="Walk a script with a sequence of replies")
    p_run.add_argument("script", help="Path to a JSON script definition")
    p_run.add_argument("-i", "--input", action="append", help="A customer reply (repeatable)")
    p_run.add_argument("--inputs-file", help="File with one customer reply per line")
    p_run.add_argument("--bind", action="append", help="Seed binding as name=value (repeatable)")
    p_run.add_argument("--max-steps", type=int, default=DEFAULT_MAX_STEPS)
    p_run.add_argument("--json", action="store_true", help="Print turns as JSON")

    args = ap.parse_args(argv)
    try:
        if args.cmd == "validate":
            return _validate(args)
        return _run(args)
    except ScriptValidationError as e:
        print("❌ Invalid script:", file=sys.stderr)
        for issue in e.issues:
            print(f"   {issue.kind.value}: {issue.message}", file=sys.stderr)
        return 1
    except (OSError, TypeMismatch, ValueError) as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
