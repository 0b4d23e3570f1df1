"""
Tests for the connection test endpoint (POST /test-connection).
"""
import json

import httpx
import pytest

from conftest import UPSTREAM_BASE, completion


def _payload(**overrides) -> dict:
    payload = {"baseUrl": UPSTREAM_BASE, "apiKey": "sk-test", "modelName": "test-model"}
    payload.update(overrides)
    return payload


class TestConnectionCheck:

    def test_success_reports_upstream_model(self, client, completions_route):
        completions_route.mock(return_value=httpx.Response(200, json=completion(model="test-model-2024")))

        response = client.post("/test-connection", json=_payload())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["model"] == "test-model-2024"
        assert body["message"]

    def test_success_falls_back_to_configured_model(self, client, completions_route):
        completions_route.mock(return_value=httpx.Response(200, json={"choices": []}))

        body = client.post("/test-connection", json=_payload()).json()

        assert body["success"] is True
        assert body["model"] == "test-model"

    def test_sends_minimal_request(self, client, completions_route):
        completions_route.mock(return_value=httpx.Response(200, json=completion()))

        client.post("/test-connection", json=_payload(baseUrl=UPSTREAM_BASE + "/"))

        sent = completions_route.calls.last.request
        assert sent.headers["authorization"] == "Bearer sk-test"
        assert json.loads(sent.content) == {
            "model": "test-model",
            "messages": [{"role": "user", "content": "Hi"}],
            "max_tokens": 5,
        }

    @pytest.mark.parametrize("field", ["baseUrl", "apiKey", "modelName"])
    def test_missing_field(self, client, completions_route, field):
        response = client.post("/test-connection", json=_payload(**{field: ""}))

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Missing required fields"
        assert completions_route.call_count == 0

    @pytest.mark.parametrize(
        "status, fragment",
        [
            (401, "invalid or has expired"),
            (404, "model does not exist"),
            (429, "Too many requests"),
            (500, "(500)"),
        ],
    )
    def test_upstream_failure_is_reported_not_raised(self, client, completions_route, status, fragment):
        completions_route.mock(return_value=httpx.Response(status, text="upstream says no"))

        response = client.post("/test-connection", json=_payload())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert fragment in body["error"]
        assert body["details"] == "upstream says no"

    def test_unreachable_server(self, client, completions_route):
        completions_route.mock(side_effect=httpx.ConnectError("name resolution failed"))

        body = client.post("/test-connection", json=_payload()).json()

        assert body["success"] is False
        assert "base URL" in body["error"]

    def test_cors_headers(self, client, completions_route):
        completions_route.mock(return_value=httpx.Response(200, json=completion()))

        response = client.post("/test-connection", json=_payload())

        assert response.headers["access-control-allow-origin"] == "*"
