"""
Client for a locally hosted Ollama model.

One model on one accelerator: callers are expected to serialize requests
(see syncwatch.ai.worker). Every failure is reported as None ("unavailable")
so AI features degrade instead of breaking the caller.
"""

import logging
from typing import Optional

import httpx

from syncwatch.config import Settings

logger = logging.getLogger(__name__)

# Sent with every request unless the model was built from a Modelfile that
# already carries it.
SYSTEM_PROMPT = (
    "You are the monitoring engine for syncwatch, a service that keeps GitHub pull requests "
    "in sync with Jira, Asana and Linear tasks.\n\n"
    "Alert types: PR_READY_TASK_NOT_UPDATED (PR open but task not in review), "
    "PR_MERGED_TASK_OPEN (PR merged but task still open), STALE_PR (open more than 7 days), "
    "STATUS_MISMATCH, ASSIGNEE_MISMATCH, MISSING_LINK.\n\n"
    "Jira statuses: To Do, In Progress, In Review, Done. "
    "Asana statuses: In Progress, In Review, Complete, Blocked. "
    "Linear statuses: In Progress, In Review, Done, Cancelled, Backlog.\n\n"
    "For JSON responses, output only valid JSON with no surrounding text or markdown."
)


class OllamaClient:
    """Inference gateway over Ollama's /api/generate."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._settings = settings
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._settings.ollama_url,
            timeout=float(self._settings.ollama_timeout_seconds),
            transport=self._transport,
        )

    def _body(self, prompt: str, options: dict, json_format: bool = False) -> dict:
        body = {
            "model": self._settings.ollama_model,
            "prompt": prompt,
            "stream": False,
            "options": options,
        }
        if not self._settings.ollama_system_prompt_baked:
            body["system"] = SYSTEM_PROMPT
        if json_format:
            body["format"] = "json"
        return body

    async def _generate(self, body: dict) -> Optional[str]:
        try:
            async with self._client() as client:
                response = await client.post("/api/generate", json=body)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException:
            logger.warning(f"Ollama request timed out after {self._settings.ollama_timeout_seconds}s")
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Ollama request failed (is Ollama running?): {e}")
            return None

        text = data.get("response") if isinstance(data, dict) else None
        if not text or not text.strip():
            return None
        return text

    async def generate_text(self, prompt: str) -> Optional[str]:
        """Free-text generation, focused but not rigid."""
        return await self._generate(self._body(prompt, {
            "num_predict": self._settings.ollama_max_tokens,
            "temperature": 0.4,
            "top_p": 0.9,
            "repeat_penalty": 1.1,
        }))

    async def generate_json(self, prompt: str, max_tokens: Optional[int] = None) -> Optional[str]:
        """JSON-mode generation with near-deterministic sampling."""
        return await self._generate(self._body(prompt, {
            "num_predict": max_tokens or self._settings.analysis_max_tokens,
            "temperature": 0.1,
            "top_p": 0.85,
            "repeat_penalty": 1.05,
        }, json_format=True))

    async def is_available(self) -> bool:
        try:
            async with self._client() as client:
                response = await client.get("/api/tags")
                response.raise_for_status()
            return True
        except httpx.HTTPError:
            return False
