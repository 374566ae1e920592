"""Tests for the optional AI diagnosis client."""

from unittest.mock import patch

import httpx
import pytest

from defib.config import AIConfig
from defib.diagnosis import ANTHROPIC_URL, OPENAI_URL, DiagnosisClient, build_diagnosis_prompt

pytestmark = pytest.mark.unit

DETAILS = {"pid": "42", "command": "python train.py", "cpu": 99.5, "runtime_hours": 6.0}


def response(status_code: int, payload=None) -> httpx.Response:
    return httpx.Response(status_code, json=payload, request=httpx.Request("POST", "https://api.example.com"))


class TestPrompt:
    def test_includes_present_details_only(self) -> None:
        prompt = build_diagnosis_prompt("runaway_process", DETAILS)
        assert "Issue type: runaway_process" in prompt
        assert "PID: 42" in prompt
        assert "CPU usage: 99.5%" in prompt
        assert "Runtime: 6.0 hours" in prompt
        assert "Memory:" not in prompt
        assert "under 200 words" in prompt


class TestDiagnose:
    def test_disabled_by_default(self) -> None:
        client = DiagnosisClient(AIConfig())
        assert client.enabled is False
        with patch("defib.diagnosis.httpx.post") as post:
            assert client.diagnose("runaway_process", DETAILS) is None
        post.assert_not_called()

    def test_anthropic(self) -> None:
        client = DiagnosisClient(AIConfig(provider="anthropic", api_key="sk-test"))
        payload = {"content": [{"type": "text", "text": "Likely an infinite loop."}]}
        with patch("defib.diagnosis.httpx.post", return_value=response(200, payload)) as post:
            assert client.diagnose("runaway_process", DETAILS) == "Likely an infinite loop."
        args, kwargs = post.call_args
        assert args == (ANTHROPIC_URL,)
        assert kwargs["headers"]["x-api-key"] == "sk-test"

    def test_anthropic_requires_key(self) -> None:
        client = DiagnosisClient(AIConfig(provider="anthropic"))
        with patch("defib.diagnosis.httpx.post") as post:
            assert client.diagnose("runaway_process", DETAILS) is None
        post.assert_not_called()

    def test_openai(self) -> None:
        client = DiagnosisClient(AIConfig(provider="openai", api_key="sk-test", model="gpt-test"))
        payload = {"choices": [{"message": {"content": "Memory leak."}}]}
        with patch("defib.diagnosis.httpx.post", return_value=response(200, payload)) as post:
            assert client.diagnose("high_memory", DETAILS) == "Memory leak."
        args, kwargs = post.call_args
        assert args == (OPENAI_URL,)
        assert kwargs["json"]["model"] == "gpt-test"

    def test_ollama(self) -> None:
        client = DiagnosisClient(AIConfig(provider="ollama", ollama_url="http://gpu-box:11434/"))
        with patch("defib.diagnosis.httpx.post", return_value=response(200, {"response": "Stuck on I/O."})) as post:
            assert client.diagnose("stuck_process", DETAILS) == "Stuck on I/O."
        assert post.call_args.args == ("http://gpu-box:11434/api/generate",)

    def test_http_error_status(self) -> None:
        client = DiagnosisClient(AIConfig(provider="openai", api_key="sk-test"))
        with patch("defib.diagnosis.httpx.post", return_value=response(429, {"error": "rate limited"})):
            assert client.diagnose("runaway_process", DETAILS) is None

    def test_network_error(self) -> None:
        client = DiagnosisClient(AIConfig(provider="ollama"))
        with patch("defib.diagnosis.httpx.post", side_effect=httpx.ConnectError("refused")):
            assert client.diagnose("runaway_process", DETAILS) is None

    def test_unexpected_payload(self) -> None:
        client = DiagnosisClient(AIConfig(provider="anthropic", api_key="sk-test"))
        with patch("defib.diagnosis.httpx.post", return_value=response(200, {"content": []})):
            assert client.diagnose("runaway_process", DETAILS) is None
