"""Exact utterance matching.

Recognized speech is compared to the expected utterance after a fixed
normalization. There is no partial credit: two utterances match only when
their normalized forms are identical.
"""

from __future__ import annotations

import re
import unicodedata

_CURLY_QUOTES = str.maketrans({
	"“": '"',
	"”": '"',
	"‘": "'",
	"’": "'",
})
_NON_WORD = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")


def normalize(text: str) -> str:
	"""Normalize an utterance for comparison.

	Applies NFKC, lower-cases, straightens curly quotes, drops everything that
	is not a letter, digit or whitespace, recomposes what the stripping brought
	together, and collapses whitespace.
	"""
	# Lower-case after NFKC: compatibility forms such as "㎀" expand to mixed case
	s = unicodedata.normalize("NFKC", text or "").lower()
	s = s.translate(_CURLY_QUOTES)
	s = _NON_WORD.sub("", s)
	# Stripping can bring composable characters together (Hangul jamo around punctuation)
	s = unicodedata.normalize("NFKC", s)
	return _WHITESPACE.sub(" ", s).strip()


def matches(recognized: str, expected: str) -> bool:
	target = normalize(expected)
	# A blank expectation can never be answered
	if not target:
		return False
	return normalize(recognized) == target
