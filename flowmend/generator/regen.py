# flowmend/generator/regen.py

from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Protocol

from openai import OpenAI

from flowmend.config import Settings
from flowmend.conformance.classifier import fix_instructions
from flowmend.errors import DocumentParseError
from flowmend.model.results import ErrorClassification
from flowmend.utils.logger import get_logger

log = get_logger("generator")

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.S)


class WorkflowGenerator(Protocol):
    """External collaborator: given a prompt, return candidate text containing a document."""

    def regenerate(self, current: Dict[str, Any], prompt: str, classification: ErrorClassification) -> str:
        ...


# ---------- Document extraction ----------

def _balanced_object(text: str) -> Optional[str]:
    """First top-level {...} span, honoring strings and escapes."""
    start = text.find("{")
    while start != -1:
        depth, in_str, esc = 0, False, False
        for i in range(start, len(text)):
            ch = text[i]
            if in_str:
                if esc:
                    esc = False
                elif ch == "\\":
                    esc = True
                elif ch == '"':
                    in_str = False
            elif ch == '"':
                in_str = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        start = text.find("{", start + 1)
    return None


def _as_document(value: Any) -> Optional[Dict[str, Any]]:
    if isinstance(value, dict):
        if isinstance(value.get("nodes"), list):
            return value
        inner = value.get("workflow")
        if isinstance(inner, dict) and isinstance(inner.get("nodes"), list):
            return inner
    return None


def extract_document(text: Any) -> Dict[str, Any]:
    """
    Pull a workflow document out of generator output: raw JSON, a fenced block,
    or the first balanced {...} span in prose. Raises DocumentParseError.
    """
    doc = _as_document(text)
    if doc is not None:
        return doc
    if not isinstance(text, str) or not text.strip():
        raise DocumentParseError("generator returned no text", text=str(text or ""))

    candidates: List[str] = [text.strip()]
    candidates.extend(m.group(1).strip() for m in _FENCE_RE.finditer(text))
    span = _balanced_object(text)
    if span:
        candidates.append(span)

    for chunk in candidates:
        try:
            parsed = json.loads(chunk)
        except ValueError:
            continue
        doc = _as_document(parsed)
        if doc is not None:
            return doc
    raise DocumentParseError("no workflow document found in generator output", text=text)


# ---------- OpenAI-backed generator ----------

def _get_client(settings: Settings) -> Optional[OpenAI]:
    """Return an OpenAI client, or None when no API key is configured."""
    if not settings.openai_api_key:
        return None
    kwargs: Dict[str, Any] = {"api_key": settings.openai_api_key, "timeout": settings.http_timeout,
                              "max_retries": settings.http_retries}
    if settings.openai_org:
        kwargs["organization"] = settings.openai_org
    if settings.openai_base_url:
        kwargs["base_url"] = settings.openai_base_url
    return OpenAI(**kwargs)


SYSTEM_PROMPT = """
You repair n8n workflows. Output ONE raw JSON object and nothing else.

The object has the keys "name", "nodes", "connections" and "settings".
- Every node has "id", "name" (unique), "type" (exact n8n type, e.g. "n8n-nodes-base.slack"),
  "typeVersion", "position" ([x, y]) and "parameters".
- "connections" is keyed by node NAME: {"A": {"main": [[{"node": "B", "type": "main", "index": 0}]]}}.
- Expressions are written as ={{ $json["field"] }}.
- Do not add credentials, webhookId, or any field starting with "_".
""".strip()


def build_regeneration_prompt(current: Dict[str, Any], prompt: str, classification: ErrorClassification) -> str:
    return (
        f"Original request:\n{prompt}\n\n"
        f"n8n rejected the workflow below with:\n{classification.raw or classification.kind.value}\n\n"
        f"How to fix it: {fix_instructions(classification.kind)}\n"
        + (f"Hint: {classification.hint}\n" if classification.hint else "")
        + f"\nCurrent workflow:\n{json.dumps(current, ensure_ascii=False)}\n\n"
        "Return the corrected workflow as raw JSON."
    )


class OpenAIGenerator:
    def __init__(self, settings: Optional[Settings] = None, client: Optional[Any] = None,
                 model: Optional[str] = None, temperature: float = 0.1, max_tokens: int = 4000):
        self.settings = settings or Settings.from_env()
        self.client = client if client is not None else _get_client(self.settings)
        self.model = model or self.settings.model
        self.temperature = temperature
        self.max_tokens = max_tokens

    @property
    def available(self) -> bool:
        return self.client is not None

    def _complete(self, user_msg: str) -> str:
        resp = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_msg},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        return (resp.choices[0].message.content or "").strip()

    def draft(self, prompt: str) -> str:
        """First-draft generation from the user's description."""
        if self.client is None:
            raise RuntimeError("OpenAI client not configured (OPENAI_API_KEY)")
        return self._complete(f"Create an n8n workflow for:\n\n{prompt}\n\nReturn raw JSON only.")

    def regenerate(self, current: Dict[str, Any], prompt: str, classification: ErrorClassification) -> str:
        if self.client is None:
            log.debug("no OpenAI client; skipping regeneration")
            return ""
        log.info("regenerating after %s (model=%s)", classification.kind.value, self.model)
        return self._complete(build_regeneration_prompt(current, prompt, classification))
