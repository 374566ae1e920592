"""
Optional AI-enhanced diagnosis

Asks a text-generation API for a short diagnosis of a flagged process.
Any failure (disabled, missing key, HTTP error, timeout) returns None and
callers fall back to the static guidance text.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from defib.config import AIConfig

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "anthropic": "claude-3-5-haiku-latest",
    "openai": "gpt-4o-mini",
    "ollama": "llama3.1:8b",
}

ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"
REQUEST_TIMEOUT_SECONDS = 30.0
MAX_TOKENS = 500


def build_diagnosis_prompt(issue_type: str, details: Dict[str, Any]) -> str:
    lines = [
        "You are a Linux system administrator diagnosing a production issue. Be concise and specific.",
        "",
        f"Issue type: {issue_type}",
    ]
    if details.get("pid"):
        lines.append(f"PID: {details['pid']}")
    if details.get("command"):
        lines.append(f"Process: {details['command']}")
    if details.get("cpu"):
        lines.append(f"CPU usage: {details['cpu']:.1f}%")
    if details.get("memory_mb"):
        lines.append(f"Memory: {details['memory_mb']:.0f}MB")
    if details.get("runtime_hours"):
        lines.append(f"Runtime: {details['runtime_hours']:.1f} hours")
    if details.get("swap_percent"):
        lines.append(f"Swap usage: {details['swap_percent']:.1f}%")
    if details.get("health_url"):
        lines.append(f"Health URL: {details['health_url']}")
    lines.extend([
        "",
        "Based on the process name and resource usage pattern, provide:",
        "1. DIAGNOSIS: What's likely happening (1-2 sentences)",
        "2. ROOT CAUSE: Most probable root cause based on the process type",
        "3. FIX: The specific command(s) to run, and why",
        "4. PREVENT: How to prevent recurrence (1 sentence)",
        "",
        "Keep your total response under 200 words.",
    ])
    return "\n".join(lines)


class DiagnosisClient:
    def __init__(self, config: AIConfig, timeout: float = REQUEST_TIMEOUT_SECONDS):
        self.config = config
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return self.config.provider != "none"

    def diagnose(self, issue_type: str, details: Dict[str, Any]) -> Optional[str]:
        if not self.enabled:
            return None

        prompt = build_diagnosis_prompt(issue_type, details)
        model = self.config.model or DEFAULT_MODELS[self.config.provider]

        try:
            if self.config.provider == "anthropic":
                return self._anthropic(prompt, model)
            if self.config.provider == "openai":
                return self._openai(prompt, model)
            if self.config.provider == "ollama":
                return self._ollama(prompt, model)
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as e:
            logger.error(f"AI: Diagnosis failed: {e}")
        return None

    def _anthropic(self, prompt: str, model: str) -> Optional[str]:
        if not self.config.api_key:
            logger.error("AI: Anthropic API key required (set ai.apiKey or DEFIB_AI_API_KEY)")
            return None
        response = httpx.post(
            ANTHROPIC_URL,
            headers={
                "x-api-key": self.config.api_key,
                "anthropic-version": "2023-06-01",
            },
            json={
                "model": model,
                "max_tokens": MAX_TOKENS,
                "messages": [{"role": "user", "content": prompt}],
            },
            timeout=self.timeout,
        )
        if not response.is_success:
            logger.error(f"AI: Anthropic API error: {response.status_code}")
            return None
        return response.json()["content"][0]["text"] or None

    def _openai(self, prompt: str, model: str) -> Optional[str]:
        if not self.config.api_key:
            logger.error("AI: OpenAI API key required (set ai.apiKey or DEFIB_AI_API_KEY)")
            return None
        response = httpx.post(
            OPENAI_URL,
            headers={"Authorization": f"Bearer {self.config.api_key}"},
            json={
                "model": model,
                "max_tokens": MAX_TOKENS,
                "messages": [{"role": "user", "content": prompt}],
            },
            timeout=self.timeout,
        )
        if not response.is_success:
            logger.error(f"AI: OpenAI API error: {response.status_code}")
            return None
        return response.json()["choices"][0]["message"]["content"] or None

    def _ollama(self, prompt: str, model: str) -> Optional[str]:
        response = httpx.post(
            f"{self.config.ollama_url.rstrip('/')}/api/generate",
            json={"model": model, "prompt": prompt, "stream": False},
            timeout=self.timeout,
        )
        if not response.is_success:
            logger.error(f"AI: Ollama error: {response.status_code} (is Ollama running?)")
            return None
        return response.json().get("response") or None
