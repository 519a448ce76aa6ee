"""Tolerant JSON extraction from LLM responses.

Models wrap JSON in prose, markdown fences, or emit small syntax slips
(trailing commas, curly quotes, single-quoted strings).  Every structured
LLM call in ragindex goes through :func:`parse_llm_json`, which tries the
following candidates in order and keeps the first one that both parses and
passes the caller's shape validator:

1. the body of a fenced code block (```json ... ```)
2. the first balanced ``{...}`` region (string-aware brace matching)
3. the whole response
4. each of the above again after syntax repair

Failure is a value, not an exception: the returned :class:`ParseResult`
says which strategies were tried and why each one was rejected.
:meth:`ParseResult.unwrap` converts a failure into
:class:`~ragindex.utils.errors.LLMResponseParseError` for callers that want
the retry policy to see it.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ragindex.utils.errors import LLMResponseParseError

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_SINGLE_QUOTED_RE = re.compile(r"([{\[,:]\s*)'([^'\"\\]*)'")
_SMART_QUOTES = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'"})

Validator = Callable[[Any], None]


@dataclass(frozen=True)
class ParseResult:
    """Outcome of :func:`parse_llm_json`.

    ``value`` is only meaningful when ``ok`` is true.  ``strategy`` names
    the candidate that succeeded; ``reasons`` lists one entry per rejected
    candidate.
    """

    ok: bool
    value: Any = None
    strategy: str | None = None
    reasons: list[str] = field(default_factory=list)

    def unwrap(self, provider_name: str | None = None) -> Any:
        if self.ok:
            return self.value
        raise LLMResponseParseError(
            message="LLM response did not contain valid JSON of the expected shape",
            provider_name=provider_name,
            reasons=self.reasons,
        )


def extract_fenced_block(text: str) -> str | None:
    """Return the body of the first markdown code fence, if any."""
    match = _FENCE_RE.search(text)
    return match.group(1).strip() if match else None


def extract_balanced_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` region of ``text``.

    Braces inside JSON string literals are ignored, so ``{"a": "}"}`` is
    matched whole.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for pos in range(start, len(text)):
            char = text[pos]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : pos + 1]
        # Unbalanced from this brace; try the next opening brace.
        start = text.find("{", start + 1)
    return None


def repair_json(text: str) -> str:
    """Fix the syntax slips LLMs commonly make in otherwise valid JSON."""
    repaired = text.translate(_SMART_QUOTES)
    repaired = _SINGLE_QUOTED_RE.sub(r'\1"\2"', repaired)
    return _TRAILING_COMMA_RE.sub(r"\1", repaired)


def _candidates(text: str) -> list[tuple[str, str]]:
    raw: list[tuple[str, str]] = []
    fenced = extract_fenced_block(text)
    if fenced:
        raw.append(("fenced", fenced))
    balanced = extract_balanced_object(text)
    if balanced:
        raw.append(("balanced", balanced))
    raw.append(("whole", text.strip()))

    repaired = [(f"repaired_{name}", repair_json(body)) for name, body in raw]
    seen: set[str] = set()
    ordered: list[tuple[str, str]] = []
    for name, body in [*raw, *repaired]:
        if body and body not in seen:
            seen.add(body)
            ordered.append((name, body))
    return ordered


def parse_llm_json(text: str, validator: Validator | None = None) -> ParseResult:
    """Parse an LLM response into JSON, tolerating wrappers and small slips.

    Parameters
    ----------
    text:
        Raw model output.
    validator:
        Optional shape check.  It receives the decoded value and raises
        ``ValueError`` (or ``TypeError``) when the shape is wrong.

    Returns
    -------
    ParseResult
        ``ok=True`` with the first accepted value, or ``ok=False`` with
        the rejection reason of every candidate.
    """
    if not text or not text.strip():
        return ParseResult(ok=False, reasons=["empty response"])

    reasons: list[str] = []
    for name, body in _candidates(text):
        try:
            value = json.loads(body)
        except json.JSONDecodeError as exc:
            reasons.append(f"{name}: {exc.msg} at line {exc.lineno} column {exc.colno}")
            continue
        if validator is not None:
            try:
                validator(value)
            except (ValueError, TypeError) as exc:
                reasons.append(f"{name}: {exc}")
                continue
        return ParseResult(ok=True, value=value, strategy=name, reasons=reasons)

    return ParseResult(ok=False, reasons=reasons)


def require_list_field(key: str) -> Validator:
    """Build a validator that accepts ``{key: [...]}`` objects."""

    def _validate(value: Any) -> None:
        if not isinstance(value, dict):
            raise TypeError(f"expected a JSON object, got {type(value).__name__}")
        if not isinstance(value.get(key), list):
            raise ValueError(f"missing list field {key!r}")

    return _validate
