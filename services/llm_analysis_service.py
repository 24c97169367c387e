# services/llm_analysis_service.py
from __future__ import annotations

import json
import re
import time
from typing import Optional

import openai
from openai import AsyncOpenAI
from pydantic import ValidationError

from app.config import require_llm, settings
from app.core.errors import ProviderError
from app.core.logging import get_logger
from app.models.analysis import RemoteAnalysisPayload

logger = get_logger()

_JSON_HINT = (
    "Respond with exactly one valid JSON object, no explanation, "
    "no extra text, no markdown, no code fences."
)

BASE_SYSTEM_PROMPT = (
    "You are a news analysis assistant. Analyze the following news article.\n"
    "Return a JSON object with the following fields:\n"
    "- summary: A concise 2-3 sentence summary of the key information\n"
    '- sentiment: Either "positive", "negative", or "neutral"\n'
    "- keywords: An array of 3-5 key terms from the article"
)

MAX_CONTENT_CHARS = 12000


def _extract_first_json(text: str) -> str:
    """
    Tolerant parser: take the first {...} block and drop trailing commas.
    """
    m = re.search(r"\{.*\}", text, flags=re.DOTALL)
    candidate = m.group(0) if m else text.strip()
    candidate = re.sub(r",\s*([}\]])", r"\1", candidate)
    return candidate.strip()


def parse_analysis_payload(raw_text: str) -> RemoteAnalysisPayload:
    """
    Validate a raw completion into a payload.

    Raises:
        ProviderError: empty, non-JSON, or missing/invalid fields.
    """
    if not raw_text or not raw_text.strip():
        raise ProviderError("empty_completion")
    try:
        data = json.loads(_extract_first_json(raw_text))
    except json.JSONDecodeError as exc:
        raise ProviderError("malformed_json", {"error": str(exc), "raw": raw_text[:200]}) from exc
    if not isinstance(data, dict):
        raise ProviderError("unexpected_json_root", {"root_type": type(data).__name__})
    try:
        return RemoteAnalysisPayload.model_validate(data)
    except ValidationError as exc:
        raise ProviderError("invalid_payload", {"errors": exc.errors(include_url=False)}) from exc


class LLMAnalysisService:
    """
    Remote analyzer over an OpenAI-compatible chat completions endpoint.
    One attempt per call with a bounded timeout; every failure becomes ProviderError.
    """

    def __init__(
        self,
        *,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        system_prompt: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self.model = model or settings.LLM_MODEL
        self.timeout_s = timeout_s or settings.LLM_TIMEOUT_S
        self.system_prompt = system_prompt or settings.LLM_SYSTEM_PROMPT
        self.client = client or AsyncOpenAI(
            api_key=require_llm(),
            base_url=base_url or settings.LLM_BASE_URL,
            max_retries=0,
        )

    def _build_messages(self, title: str, content: str) -> list[dict]:
        system = BASE_SYSTEM_PROMPT
        if self.system_prompt:
            # Custom analysis framing; the JSON contract still applies.
            system = f"{system}\n\n{self.system_prompt.strip()}"
        system = f"{system}\n\n{_JSON_HINT}"
        user = f"Title: {title}\n\nContent: {content[:MAX_CONTENT_CHARS]}"
        return [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]

    async def analyze(self, title: str, content: str) -> RemoteAnalysisPayload:
        """
        Returns the validated payload.

        Raises:
            ProviderError: timeout, transport error, non-2xx, or bad payload.
        """
        messages = self._build_messages(title, content)
        t0 = time.perf_counter()
        try:
            completion = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0.2,
                max_tokens=1000,
                timeout=self.timeout_s,
            )
        except openai.APITimeoutError as exc:
            raise ProviderError("timeout", {"timeout_s": self.timeout_s}) from exc
        except openai.APIStatusError as exc:
            raise ProviderError("bad_status", {"status_code": exc.status_code}) from exc
        except openai.APIError as exc:
            raise ProviderError("transport_error", {"error": str(exc)}) from exc

        try:
            raw_text = completion.choices[0].message.content or ""
        except (AttributeError, IndexError) as exc:
            raise ProviderError("missing_choices") from exc

        payload = parse_analysis_payload(raw_text)
        logger.debug(
            "llm_analysis_success",
            model=self.model,
            duration_ms=int((time.perf_counter() - t0) * 1000),
            keywords=len(payload.keywords),
        )
        return payload

