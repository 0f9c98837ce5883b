import io
import os

import pytest

from routes import scan_routes


def _fake_analysis(path, verdict="malicious", rules=("Keylogger_Hooks",), vote="malicious"):
    return {
        "file_name": path.rsplit("/", 1)[-1],
        "sha256": "ab" * 32,
        "size": 3,
        "file_type": {"final_type": "exe", "declared_extension": "exe", "is_pe": True},
        "entropy": {"overall_entropy": 6.1},
        "yara": {"enabled": True, "error": None,
                 "matches": [{"rule": r, "meta": {"severity": "high"}} for r in rules]},
        "virustotal": {"enabled": False, "found": False},
        "ml": {"enabled": True, "ml_score": 0.91, "ml_verdict": "malicious",
               "vote_label": vote, "tie": False, "tie_break": "mean"},
        "callgraph": {"enabled": False},
        "malware_type": {"label": "spyware", "source": "yara"},
        "final_verdict": {"verdict": verdict, "final_score": 75, "confidence": "high",
                          "component_scores": {}, "flags": []},
    }


@pytest.fixture
def calls(monkeypatch):
    recorded = []

    def fake_analyze(path, **kwargs):
        recorded.append({"path": path, **kwargs})
        if path.endswith("clean.txt"):
            return _fake_analysis(path, verdict="benign", rules=(), vote=None)
        return _fake_analysis(path)

    monkeypatch.setattr(scan_routes, "analyze_file", fake_analyze)
    return recorded


def _upload(client, *names, **form):
    data = {"files": [(io.BytesIO(b"abc"), name) for name in names], **form}
    return client.post("/api/scan", data=data, content_type="multipart/form-data")


def test_health(client):
    body = client.get("/api/health").get_json()
    assert body["ok"] is True
    assert body["models"] == []
    assert body["models_error"] is None
    assert body["tie_break"] == "mean"
    assert body["yara_enabled"] is False
    assert body["virustotal_configured"] is False
    assert body["callgraph_default"] is False


def test_scan_upload(client, app, calls):
    resp = _upload(client, "dropper.exe", "clean.txt")
    assert resp.status_code == 201
    body = resp.get_json()

    assert body["ok"] is True
    first, second = body["results"]
    assert first["file_name"] == "dropper.exe"
    assert first["display"]["label"] == "Malicious"
    assert second["display"]["label"] == "Safe"

    assert calls[0]["path"].endswith(f"{body['scan_id']}_dropper.exe")
    assert calls[0]["tie_break"] == "mean"
    assert calls[0]["callgraph"] is False
    assert calls[0]["models_dir"] == app.config["MODELS_DIR"]


def test_scan_options_are_forwarded(client, calls):
    resp = _upload(client, "a.exe", tie_break="confident", callgraph="1")
    assert resp.status_code == 201
    assert calls[0]["tie_break"] == "confident"
    assert calls[0]["callgraph"] is True


def test_scan_detail_and_events(client, calls):
    scan_id = _upload(client, "dropper.exe", "clean.txt").get_json()["scan_id"]

    body = client.get(f"/api/scans/{scan_id}").get_json()
    assert body["scan"]["file_count"] == 2
    assert [r["file_name"] for r in body["results"]] == ["dropper.exe", "clean.txt"]
    assert body["results"][0]["display"]["label"] == "Malicious"
    assert body["results"][0]["analysis"]["malware_type"]["label"] == "spyware"

    events = [e["event_type"] for e in body["events"]]
    assert events == [
        "SCAN_STARTED",
        "FILE_SCANNED", "YARA_MATCH", "ML_MALICIOUS",
        "FILE_SCANNED",
    ]


def test_scan_history(client, calls):
    _upload(client, "dropper.exe")
    _upload(client, "clean.txt", "dropper.exe")

    scans = client.get("/api/scans?limit=5").get_json()["scans"]
    assert len(scans) == 2
    latest = scans[0]
    assert latest["file_count"] == 2
    assert (latest["malicious"], latest["benign"], latest["suspicious"]) == (1, 1, 0)


def test_analyst_note(client, calls):
    file_id = _upload(client, "dropper.exe").get_json()["results"][0]["file_id"]

    resp = client.post(f"/api/files/{file_id}/note", json={"note_text": "  x" * 600})
    assert resp.status_code == 200
    body = resp.get_json()
    assert len(body["note_text"]) == 1000
    assert body["updated_at"]

    assert client.post("/api/files/999/note", json={"note_text": "hi"}).status_code == 404


def test_bad_requests(client, calls):
    resp = client.post("/api/scan", data={}, content_type="multipart/form-data")
    assert resp.status_code == 400
    assert resp.get_json()["ok"] is False

    assert _upload(client, "a.exe", tie_break="coin-flip").status_code == 400
    assert client.get("/api/scans/42").status_code == 404
    assert client.get("/api/nothing-here").status_code == 404
    assert calls == []


def test_upload_limit(tmp_path):
    from app import create_app

    app = create_app({
        "TESTING": True,
        "DB_PATH": str(tmp_path / "limit.db"),
        "UPLOAD_FOLDER": str(tmp_path / "uploads"),
        "MAX_UPLOAD_MB": 1,
    })
    data = {"files": [(io.BytesIO(b"\x00" * (2 * 1024 * 1024)), "big.bin")]}
    resp = app.test_client().post("/api/scan", data=data, content_type="multipart/form-data")
    assert resp.status_code == 413
    assert "1 MB" in resp.get_json()["error"]


def test_uploads_are_removed_after_scanning(client, app, calls):
    assert _upload(client, "dropper.exe", "clean.txt").status_code == 201
    assert len(calls) == 2
    assert os.listdir(app.config["UPLOAD_FOLDER"]) == []


def test_corrupted_upload_is_rejected(client, app, calls, monkeypatch):
    monkeypatch.setattr(scan_routes, "is_corrupted", lambda path: True)

    body = _upload(client, "broken.exe").get_json()

    assert calls == []
    result = body["results"][0]
    assert result["file_id"] is None
    assert "corrupted" in result["error"]
    assert os.listdir(app.config["UPLOAD_FOLDER"]) == []

    events = client.get(f"/api/scans/{body['scan_id']}").get_json()["events"]
    assert [e["event_type"] for e in events] == ["SCAN_STARTED", "SCAN_ERROR"]
    assert events[1]["severity"] == "ERROR"


def test_upload_removed_when_analysis_fails(client, app, monkeypatch):
    def unreadable(path, **kwargs):
        raise OSError("disk went away")

    monkeypatch.setattr(scan_routes, "analyze_file", unreadable)

    body = _upload(client, "a.exe").get_json()
    assert body["results"][0]["error"] == "disk went away"
    assert os.listdir(app.config["UPLOAD_FOLDER"]) == []


def test_health_reports_broken_manifest(client, app):
    manifest = os.path.join(app.config["MODELS_DIR"], "manifest.json")
    with open(manifest, "w", encoding="utf-8") as f:
        f.write("{not json")

    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["models"] == []
    assert "manifest.json" in body["models_error"]
