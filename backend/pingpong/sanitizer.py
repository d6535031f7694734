"""
Response Sanitizer
==================

Generative backends are asked for STRICT JSON but regularly return something
else: prose around the object, markdown fences, smart quotes, a trailing comma,
a missing field. Everything the quest engine reads from a backend goes through
:func:`sanitize_and_parse`, which always hands back a structurally valid value.

Cascade:
1. Direct parse of the raw text.
2. Repair (fences, quotes, control characters, outer braces, trailing commas)
   and parse again.
3. The caller's default, flagged with ``used_fallback``.

Each stage also checks the parsed object against the expected shape: a
pydantic model (missing fields are taken from the default) or a plain dict.
"""

from __future__ import annotations

import copy
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar, Union

from pydantic import BaseModel, ValidationError

from .errors import MalformedResponse

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Union[BaseModel, Dict[str, Any]])

_FENCE_OPEN = re.compile(r"^\s*```(?:json)?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"```\s*$")
_CONTROL_CHARS = re.compile(r"[\u0000-\u001F\u007F]")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")


@dataclass(frozen=True)
class GeneratedPayload(Generic[T]):
	"""Outcome of one backend round trip after sanitizing."""
	raw: str
	parsed: Optional[Dict[str, Any]]
	value: T
	used_fallback: bool


def repair_json_text(text: str) -> str:
	s = str(text or "")
	s = _FENCE_OPEN.sub("", s)
	s = _FENCE_CLOSE.sub("", s)
	s = s.replace("“", '"').replace("”", '"').replace("‘", "'").replace("’", "'")
	# Control characters inside string literals break strict parsing; whitespace is harmless
	s = _CONTROL_CHARS.sub(" ", s)
	first = s.find("{")
	last = s.rfind("}")
	if first != -1 and last > first:
		s = s[first : last + 1]
	return _TRAILING_COMMA.sub(r"\1", s)


def _strict_parse(text: str) -> Dict[str, Any]:
	try:
		data = json.loads(text)
	except (TypeError, ValueError) as exc:
		raise MalformedResponse(f"not valid JSON: {exc}") from exc
	if not isinstance(data, dict):
		raise MalformedResponse(f"expected a JSON object, got {type(data).__name__}")
	return data


def _coerce(data: Dict[str, Any], default: T) -> T:
	if isinstance(default, BaseModel):
		merged = {**default.model_dump(), **data}
		try:
			return type(default).model_validate(merged)
		except ValidationError as exc:
			raise MalformedResponse(f"unexpected shape: {exc.error_count()} invalid field(s)") from exc
	return {**default, **data}  # type: ignore[return-value]


def _copy_default(default: T) -> T:
	if isinstance(default, BaseModel):
		return default.model_copy(deep=True)
	return copy.deepcopy(default)


def sanitize_and_parse(raw: Optional[str], default: T) -> GeneratedPayload[T]:
	text = raw or ""
	stages = (("direct", lambda: text), ("repair", lambda: repair_json_text(text)))
	for stage, candidate in stages:
		try:
			parsed = _strict_parse(candidate())
			value = _coerce(parsed, default)
		except MalformedResponse as exc:
			logger.debug("sanitizer %s stage failed: %s", stage, exc)
			continue
		if stage == "repair":
			logger.info("Backend output needed repair before parsing")
		return GeneratedPayload(raw=text, parsed=parsed, value=value, used_fallback=False)
	logger.warning("Backend output could not be parsed; using default (%d chars)", len(text))
	return GeneratedPayload(raw=text, parsed=None, value=_copy_default(default), used_fallback=True)
