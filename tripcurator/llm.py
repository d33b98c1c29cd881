# tripcurator/llm.py
from __future__ import annotations

import json
from typing import Any, Dict, Optional, Protocol

from openai import AsyncOpenAI, OpenAIError

from tripcurator import config
from tripcurator.logsetup import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = "You only reply with ONE valid JSON object. No prose, no code fences."


class CompletionPort(Protocol):
    """Given a prompt, return text believed to contain one JSON object."""

    async def complete_json(self, prompt: str) -> str: ...


class OpenAICompletionClient:
    """Chat-completions backed implementation of ``CompletionPort``.

    Transport errors, empty choices and non-JSON content all collapse to
    ``"{}"`` so callers only ever deal with "an object, maybe empty".
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        model: str = config.OPENAI_MODEL,
        attempts: int = 2,
        timeout: float = 30.0,
        client: Any = None,
    ):
        self.model = model
        self.attempts = max(1, attempts)
        key = (api_key or "").strip()
        if client is not None:
            self._client = client
        elif key:
            self._client = AsyncOpenAI(api_key=key, timeout=timeout)
        else:
            logger.warning("OPENAI_API_KEY not set; completion calls will return an empty object")
            self._client = None

    async def complete_json(self, prompt: str) -> str:
        if self._client is None:
            logger.info("Skipping LLM call (missing client or API key)")
            return "{}"

        for attempt in range(1, self.attempts + 1):
            try:
                logger.debug("POST chat.completions attempt=%d model=%s", attempt, self.model)
                resp = await self._client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": prompt},
                    ],
                    temperature=0.2,
                    max_tokens=1200,
                    response_format={"type": "json_object"},
                )
            except OpenAIError:
                logger.warning("LLM call failed (attempt %d/%d)", attempt, self.attempts, exc_info=True)
                continue

            content = ""
            if resp.choices:
                content = resp.choices[0].message.content or ""
            cleaned = strip_code_fences(content)
            if not cleaned:
                logger.warning("LLM returned empty content (attempt %d/%d)", attempt, self.attempts)
                continue
            if parse_json_object(cleaned):
                logger.debug("LLM ok: %s", cleaned[:160])
                return cleaned
            logger.warning("LLM response was not a JSON object; returning empty object")
            return "{}"

        return "{}"


def strip_code_fences(text: str) -> str:
    s = (text or "").strip()
    if s.startswith("```"):
        s = s[3:]
        if s.lower().startswith("json"):
            s = s[4:]
        s = s.strip()
        if s.endswith("```"):
            s = s[:-3].strip()
    return s


def extract_json_object(raw: str) -> str:
    """Return the first balanced ``{...}`` substring of ``raw`` or ``"{}"``.

    Braces inside JSON string literals are ignored while balancing.
    """
    text = (raw or "").replace("```json", "```").replace("```", "")
    start = text.find("{")
    while start >= 0:
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            ch = text[idx]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : idx + 1]
        # unbalanced from this brace; try the next opening brace
        start = text.find("{", start + 1)
    return "{}"


def parse_json_object(raw: str) -> Dict[str, Any]:
    """Decode the first JSON object found in ``raw``; anything else yields ``{}``."""
    snippet = extract_json_object(raw)
    try:
        parsed = json.loads(snippet)
    except ValueError:
        logger.warning("Failed to decode JSON object from model output", exc_info=True)
        return {}
    return parsed if isinstance(parsed, dict) else {}
