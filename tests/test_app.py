import importlib
import queue

import pytest

from pipeline import dispatcher as dispatcher_module


def _load_sandbox_app(monkeypatch):
    monkeypatch.setattr(dispatcher_module.Dispatcher, "start",
                        lambda self: None)
    monkeypatch.delenv("BACKEND_API", raising=False)
    import app as sandbox_app
    return importlib.reload(sandbox_app)


@pytest.fixture
def sandbox_app(monkeypatch, tmp_path):
    sandbox_app = _load_sandbox_app(monkeypatch)
    sandbox_app.ORCHESTRATOR.scratch_root = tmp_path / "scratch"
    return sandbox_app


@pytest.fixture
def client(sandbox_app):
    return sandbox_app.app.test_client()


def _run_payload(**kwargs):
    payload = {
        "language": "python",
        "code": "a, b = map(int, input().split())\nprint(a + b)\n",
        "testcases": [
            {
                "input": "1 2",
                "expected_output": "3"
            },
            {
                "input": "10 20",
                "expected_output": "30"
            },
        ],
        "constraints": {
            "time_limit_ms": 1000,
            "memory_mb": 128
        },
    }
    payload.update(kwargs)
    return payload


def test_health(client):
    rv = client.get("/health")
    assert rv.status_code == 200
    assert rv.get_json() == {"status": "OK"}


def test_languages(client):
    rv = client.get("/languages")
    assert "python" in rv.get_json()["languages"]


def test_run_accepted(client):
    rv = client.post("/run", json=_run_payload())
    assert rv.status_code == 200
    data = rv.get_json()
    assert data["status"] == "AC"
    assert (data["passed"], data["total"]) == (2, 2)
    assert data["details"][0]["testcase"] == 1
    assert data["details"][0]["status"] == "AC"


def test_run_wrong_answer(client):
    rv = client.post("/run",
                     json=_run_payload(testcases=[{
                         "input": "1 2",
                         "expected_output": "4"
                     }]))
    data = rv.get_json()
    assert data["status"] == "WA"
    assert (data["passed"], data["total"]) == (0, 1)


def test_run_hidden_case_is_redacted(client):
    rv = client.post("/run",
                     json=_run_payload(testcases=[{
                         "input": "1 2",
                         "expected_output": "3",
                         "hidden": True
                     }]))
    detail = rv.get_json()["details"][0]
    assert detail["status"] == "AC"
    assert detail["stdout"] is None


def test_run_validation_error(client):
    rv = client.post("/run", json=_run_payload(language="cobol", code=""))
    assert rv.status_code == 400
    data = rv.get_json()
    assert data["status"] == "VALIDATION_ERROR"
    assert "Unsupported language: cobol" in data["errors"]
    assert "Code cannot be empty" in data["errors"]


def test_run_invalid_body(client):
    rv = client.post("/run", data="not json", content_type="text/plain")
    assert rv.status_code == 400


def test_run_infrastructure_error(client, sandbox_app, monkeypatch):
    from judge.exception import ToolchainNotFoundError

    def missing(*args, **kwargs):
        raise ToolchainNotFoundError("executable not found: g++")

    monkeypatch.setattr(sandbox_app.ORCHESTRATOR, "evaluate", missing)
    rv = client.post("/run", json=_run_payload())
    assert rv.status_code == 500
    assert rv.get_json() == {
        "status": "ERROR",
        "message": "executable not found: g++",
    }


def test_run_unexpected_error_is_json(client, sandbox_app, monkeypatch):

    def broken(*args, **kwargs):
        raise KeyError("verdict")

    monkeypatch.setattr(sandbox_app.ORCHESTRATOR, "evaluate", broken)
    rv = client.post("/run", json=_run_payload())
    assert rv.status_code == 500
    assert rv.get_json() == {
        "status": "ERROR",
        "message": "Internal sandbox error",
    }


def test_unknown_route_keeps_http_status(client):
    assert client.get("/nowhere").status_code == 404


def _job(**kwargs):
    job = {
        "submissionId": "sub-1",
        "code": "print(3)",
        "language": "python",
        "problemId": "p1",
        "userId": "u1",
        "testCases": [{
            "input": "",
            "expectedOutput": "3"
        }],
        "limits": {
            "timeLimit": 1,
            "memoryLimit": 128
        },
        "points": 10,
    }
    job.update(kwargs)
    return job


def test_submit_requires_token(client):
    rv = client.post("/submit", json=_job())
    assert rv.status_code == 403


def test_submit_queues_job(client, sandbox_app):
    rv = client.post(f"/submit?token={sandbox_app.SANDBOX_TOKEN}",
                     json=_job())
    assert rv.status_code == 200
    assert rv.get_json()["data"] == "sub-1"
    assert sandbox_app.DISPATCHER.queue.qsize() == 1
    doc = client.get(
        f"/submission/sub-1?token={sandbox_app.SANDBOX_TOKEN}").get_json()
    assert doc["data"]["status"] == "pending"


def test_submit_then_judge(client, sandbox_app):
    client.post(f"/submit?token={sandbox_app.SANDBOX_TOKEN}", json=_job())
    d = sandbox_app.DISPATCHER
    assert d.process(d.queue.get(timeout=1)) == "done"
    doc = client.get(
        f"/submission/sub-1?token={sandbox_app.SANDBOX_TOKEN}").get_json()
    assert doc["data"]["status"] == "AC"
    assert doc["data"]["score"] == 10


def test_submit_malformed_job(client, sandbox_app):
    rv = client.post(f"/submit?token={sandbox_app.SANDBOX_TOKEN}",
                     json={"code": "x"})
    assert rv.status_code == 400
    assert rv.get_json()["status"] == "VALIDATION_ERROR"


def test_submit_queue_full(client, sandbox_app, monkeypatch):

    def full(*args, **kwargs):
        raise queue.Full

    monkeypatch.setattr(sandbox_app.DISPATCHER, "handle", full)
    rv = client.post(f"/submit?token={sandbox_app.SANDBOX_TOKEN}",
                     json=_job())
    assert rv.status_code == 500
    assert rv.get_json()["status"] == "err"


def test_unknown_submission(client, sandbox_app):
    rv = client.get(f"/submission/nope?token={sandbox_app.SANDBOX_TOKEN}")
    assert rv.status_code == 404


def test_status(client, sandbox_app):
    rv = client.get("/status")
    assert rv.get_json() == {"load": 0.0}
    rv = client.get(f"/status?token={sandbox_app.SANDBOX_TOKEN}")
    data = rv.get_json()
    assert data["queueSize"] == 0
    assert data["workerCount"] == sandbox_app.DISPATCHER.WORKER_COUNT
