import json

import pytest

import cli


@pytest.fixture
def fake_analyze(monkeypatch):
    calls = []

    def fake(path, **kwargs):
        calls.append({"path": path, **kwargs})
        return {
            "file_name": path.rsplit("/", 1)[-1],
            "sha256": "cd" * 32,
            "ml": {"vote_label": "benign"},
            "malware_type": {"label": None},
            "final_verdict": {"verdict": "benign", "final_score": 4, "confidence": "low"},
        }

    monkeypatch.setattr(cli, "analyze_file", fake)
    monkeypatch.setattr(cli, "configure_logging", lambda level: None)
    monkeypatch.delenv("MAIWARE_TIE_BREAK", raising=False)
    return calls


def test_summary_of_one_file(fake_analyze, pe_file, capsys):
    assert cli.main([str(pe_file), "--summary"]) == cli.EXIT_OK

    out = json.loads(capsys.readouterr().out)
    assert out["file_name"] == "sample.exe"
    assert out["verdict"] == "benign"
    assert out["ml_vote"] == "benign"
    assert out["display"]["label"] == "Safe"
    assert fake_analyze[0]["tie_break"] == "mean"
    assert fake_analyze[0]["callgraph"] is False


def test_several_files_give_a_list(fake_analyze, pe_file, tmp_path, capsys):
    other = tmp_path / "other.dll"
    other.write_bytes(b"MZ")
    args = [str(pe_file), str(other), "--tie-break", "confident", "--callgraph", "--pretty"]

    assert cli.main(args) == cli.EXIT_OK

    out = json.loads(capsys.readouterr().out)
    assert [r["file_name"] for r in out] == ["sample.exe", "other.dll"]
    assert "final_verdict" in out[0]
    assert all(c["tie_break"] == "confident" and c["callgraph"] for c in fake_analyze)


def test_missing_path(fake_analyze, tmp_path, capsys):
    missing = tmp_path / "ghost.exe"
    assert cli.main([str(missing)]) == cli.EXIT_BAD_INPUT

    out = json.loads(capsys.readouterr().out)
    assert out["ok"] is False
    assert "ghost.exe" in out["error"]
    assert fake_analyze == []


def test_unknown_tie_break_is_rejected(fake_analyze, pe_file):
    with pytest.raises(SystemExit):
        cli.main([str(pe_file), "--tie-break", "coin-flip"])
