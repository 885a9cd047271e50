"""
Optional LLM text classifier (Ollama).

Used only for communications whose rule-based score lands in the ambiguous
band. Any failure raises CollaboratorError; the risk classifier falls back to
the rule-based score.
"""

import json
import logging
import re

import httpx

from securewatch.config import settings
from securewatch.exceptions import CollaboratorError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a security analyst reviewing workplace communications for data "
    "exfiltration, policy violations and regulatory exposure. Reply with JSON only: "
    '{"score": <integer 0-100>, "category": "<short_snake_case_label>"}'
)


class TextClassifier:
    name = "text_classifier"

    def __init__(self, base_url: str | None = None, model: str | None = None,
                 timeout: float | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = (base_url or settings.ollama_url).rstrip("/")
        self.model = model or settings.llm_model
        self.timeout = settings.llm_timeout_seconds if timeout is None else timeout
        self._transport = transport

    @staticmethod
    def _strip_think_tags(text: str) -> str:
        return re.sub(r"<think>.*?</think>\s*", "", text, flags=re.DOTALL).strip()

    async def classify(self, text: str) -> dict:
        """Return {"score": int, "category": str}."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.base_url}/api/generate",
                    json={
                        "model": self.model,
                        "system": SYSTEM_PROMPT,
                        "prompt": text[:4000],
                        "stream": False,
                        "format": "json",
                        "options": {"temperature": 0.1},
                    },
                )
        except httpx.TimeoutException as exc:
            raise CollaboratorError(self.name, f"timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise CollaboratorError(self.name, f"unreachable: {exc}") from exc

        if resp.status_code != 200:
            raise CollaboratorError(self.name, f"HTTP {resp.status_code}")

        raw = self._strip_think_tags(resp.json().get("response", ""))
        if raw.startswith("```"):
            raw = raw.split("\n", 1)[1].rsplit("```", 1)[0]
        try:
            parsed = json.loads(raw)
            score = int(round(float(parsed["score"])))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise CollaboratorError(self.name, "unparseable response", {"raw": raw[:200]}) from exc

        category = str(parsed.get("category") or "general").strip().lower() or "general"
        return {"score": max(0, min(100, score)), "category": category}


def build_text_classifier() -> TextClassifier | None:
    """None when the LLM is switched off by configuration."""
    if not settings.llm_enabled or not settings.ollama_url:
        return None
    return TextClassifier()
