"""Web API v1 contract tests."""

from __future__ import annotations

import time

from fastapi.testclient import TestClient

from fakes import ScriptedModel, call, reply, tool_calls
from agentloop.config import EngineSettings
from agentloop.web.app import create_app


def _client(responses) -> TestClient:
    return TestClient(create_app(model=ScriptedModel(responses), settings=EngineSettings()))


def _wait_for_status(client: TestClient, run_id: str, statuses, timeout_seconds: float = 3.0) -> dict:
    deadline = time.time() + timeout_seconds
    while time.time() < deadline:
        response = client.get(f"/api/v1/runs/{run_id}")
        assert response.status_code == 200
        body = response.json()
        if body["status"] in statuses:
            return body
        time.sleep(0.02)
    raise AssertionError(f"Timed out waiting for run {run_id} to reach {statuses}")


def test_healthz() -> None:
    with _client([]) as client:
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "paused_executions": 0}


def test_run_completes_in_background() -> None:
    with _client([reply("Hello!")]) as client:
        response = client.post("/api/v1/runs", json={"message": "Hi", "session_id": "web-1"})
        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "queued"
        assert body["run_id"].startswith("exec_")

        run = _wait_for_status(client, body["run_id"], {"completed", "failed"})
        assert run["status"] == "completed"
        assert run["result"] == "Hello!"
        assert run["session_id"] == "web-1"
        assert run["ended_at"].endswith("Z")


def test_full_output_format() -> None:
    with _client([reply("Done")]) as client:
        run_id = client.post("/api/v1/runs", json={"message": "Hi", "output_format": "full"}).json()["run_id"]
        run = _wait_for_status(client, run_id, {"completed"})
        assert run["result"]["success"] is True
        assert run["result"]["metadata"]["iterations"] == 1


def test_invalid_payload_uses_error_envelope() -> None:
    with _client([]) as client:
        response = client.post("/api/v1/runs", json={"message": ""})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "BAD_REQUEST"


def test_invalid_run_options() -> None:
    with _client([]) as client:
        response = client.post("/api/v1/runs", json={"message": "Hi", "max_iterations": 99})
        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_OPTIONS"
        assert "max_iterations" in error["message"]


def test_unknown_run() -> None:
    with _client([]) as client:
        response = client.get("/api/v1/runs/exec_missing")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "RUN_NOT_FOUND"


def test_failed_run_reports_error_kind() -> None:
    responses = [tool_calls(call("calculator", {"expression": "1+1"}, f"c{i}")) for i in range(2)]
    with _client(responses) as client:
        run_id = client.post("/api/v1/runs", json={"message": "Loop", "max_iterations": 2}).json()["run_id"]
        run = _wait_for_status(client, run_id, {"failed"})
        assert run["error"]["kind"] == "MAX_ITERATIONS"
        assert "Increase max_iterations" in run["error"]["description"]


def test_pause_and_resume_over_http() -> None:
    responses = [
        tool_calls(call("ask_human", {"question": "Which city?"}, "c1")),
        reply("Booked Paris."),
    ]
    with _client(responses) as client:
        run_id = client.post("/api/v1/runs", json={"message": "Book a trip"}).json()["run_id"]
        run = _wait_for_status(client, run_id, {"waiting_for_human_input"})
        assert run["pending_tool_call"]["question"] == "Which city?"

        paused = client.get("/api/v1/executions/paused").json()["items"]
        assert [item["execution_id"] for item in paused] == [run_id]

        response = client.post(f"/api/v1/executions/{run_id}/resume", json={"response": "Paris"})
        assert response.status_code == 200
        assert response.json() == {"execution_id": run_id, "status": "running"}

        run = _wait_for_status(client, run_id, {"completed"})
        assert run["result"] == "Booked Paris."

        checkpoint = client.get(f"/api/v1/executions/{run_id}").json()
        assert checkpoint["status"] == "COMPLETED"


def test_cancel_paused_run() -> None:
    with _client([tool_calls(call("ask_human", {"question": "Proceed?"}, "c1"))]) as client:
        run_id = client.post("/api/v1/runs", json={"message": "Deploy"}).json()["run_id"]
        _wait_for_status(client, run_id, {"waiting_for_human_input"})

        response = client.post(f"/api/v1/executions/{run_id}/cancel", json={"reason": "Not today"})
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        run = _wait_for_status(client, run_id, {"cancelled"})
        deadline = time.time() + 3
        while run["ended_at"] is None and time.time() < deadline:
            time.sleep(0.02)
            run = client.get(f"/api/v1/runs/{run_id}").json()
        assert run["error"]["kind"] == "HUMAN_CANCELLED"
        assert run["error"]["message"] == "Not today"


def test_resume_unknown_execution() -> None:
    with _client([]) as client:
        response = client.post("/api/v1/executions/exec_nope/resume", json={"response": "hi"})
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "EXECUTION_NOT_PAUSED"


def test_one_active_run_per_session() -> None:
    with _client([tool_calls(call("ask_human", {"question": "Wait?"}, "c1"))]) as client:
        first = client.post("/api/v1/runs", json={"message": "A", "session_id": "s"}).json()["run_id"]
        _wait_for_status(client, first, {"waiting_for_human_input"})

        response = client.post("/api/v1/runs", json={"message": "B", "session_id": "s"})
        assert response.status_code == 409
        assert response.json()["error"]["details"]["run_id"] == first
