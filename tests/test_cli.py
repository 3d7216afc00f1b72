import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from dmflow.cli import main
from sample_scripts import shop_script


@pytest.fixture
def script_file(tmp_path: Path) -> Path:
    path = tmp_path / "tee.json"
    path.write_text(json.dumps(shop_script()), "utf-8")
    return path


def test_validate_prints_summary(script_file, capsys):
    assert main(["validate", str(script_file)]) == 0
    out = capsys.readouterr().out
    assert "tee-drop v1: 7 nodes, 5 variables" in out


def test_validate_reports_issues(tmp_path, capsys):
    raw = shop_script()
    raw["nodes"][0]["transitions"][0]["target"] = "ghost"
    path = tmp_path / "broken.json"
    path.write_text(json.dumps(raw), "utf-8")

    assert main(["validate", str(path)]) == 1
    err = capsys.readouterr().err
    assert "Invalid script" in err
    assert "dangling_target" in err


def test_run_prints_transcript(script_file, capsys):
    code = main(["run", str(script_file), "-i", "price", "-i", "size L", "-i", "paid"])
    assert code == 0
    out = capsys.readouterr().out
    assert out.splitlines()[0] == "🤖 Hey! Ask me about the Black Tee."
    assert "👤 price" in out
    assert "🤖 Size L it is." in out
    assert "🤖 Thanks! Your Black Tee in size L is on its way." in out
    assert "status=completed node=delivered steps=3" in out


def test_run_reads_inputs_file_and_emits_json(script_file, tmp_path, capsys):
    replies = tmp_path / "replies.txt"
    replies.write_text("not now\n\n", "utf-8")

    code = main(["run", str(script_file), "-i", "price", "--inputs-file", str(replies), "--bind", "name=Jo", "--json"])
    assert code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["opening"] == ["Hey! Ask me about the Black Tee."]
    assert [turn["input"] for turn in payload["turns"]] == ["price", "not now"]
    assert payload["turns"][-1]["outcome"]["message"] == "No worries Jo, catch you later!"
    assert payload["session"]["status"] == "completed"


def test_run_rejects_malformed_binding(script_file, capsys):
    assert main(["run", str(script_file), "--bind", "size"]) == 1
    assert "name=value" in capsys.readouterr().err


def test_run_rejects_mistyped_binding(script_file, capsys):
    assert main(["run", str(script_file), "--bind", "size=XL"]) == 1
    assert "Error" in capsys.readouterr().err
