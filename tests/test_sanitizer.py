from __future__ import annotations

import logging

from pingpong.sanitizer import repair_json_text, sanitize_and_parse
from pingpong.session import TurnFeedback

DEFAULT = TurnFeedback(feedback="default feedback", speech="Try again!")


def test_fenced_object_with_trailing_comma_is_repaired() -> None:
	payload = sanitize_and_parse('```json\n{"a":1,}\n```', {})
	assert payload.value == {"a": 1}
	assert payload.parsed == {"a": 1}
	assert payload.used_fallback is False


def test_plain_text_falls_back_to_default() -> None:
	payload = sanitize_and_parse("not json at all", DEFAULT)
	assert payload.used_fallback is True
	assert payload.parsed is None
	assert payload.value == DEFAULT
	# A copy, so callers may not mutate the shared default through it
	assert payload.value is not DEFAULT


def test_direct_parse_needs_no_repair(caplog) -> None:
	with caplog.at_level(logging.INFO, logger="pingpong.sanitizer"):
		payload = sanitize_and_parse('{"feedback": "Good", "speech": "Nice!"}', DEFAULT)
	assert payload.value.feedback == "Good"
	assert payload.value.speech == "Nice!"
	assert not payload.used_fallback
	assert "needed repair" not in caplog.text


def test_prose_around_the_object() -> None:
	raw = 'Sure! Here is your JSON: {"feedback": "Close", "speech": "Again!"} Hope it helps.'
	payload = sanitize_and_parse(raw, DEFAULT)
	assert not payload.used_fallback
	assert payload.value.feedback == "Close"


def test_smart_quotes() -> None:
	raw = "{“feedback”: “Nice”, “speech”: “Great job!”}"
	payload = sanitize_and_parse(raw, DEFAULT)
	assert not payload.used_fallback
	assert payload.value.speech == "Great job!"


def test_control_characters_inside_strings() -> None:
	raw = '{"feedback": "line one\nline two", "speech": "ok"}'
	payload = sanitize_and_parse(raw, DEFAULT)
	assert not payload.used_fallback
	assert payload.value.feedback == "line one line two"


def test_missing_field_taken_from_default() -> None:
	payload = sanitize_and_parse('{"feedback": "Only feedback"}', DEFAULT)
	assert not payload.used_fallback
	assert payload.value.feedback == "Only feedback"
	assert payload.value.speech == "Try again!"
	assert payload.value.tips == []


def test_wrong_shape_falls_back() -> None:
	payload = sanitize_and_parse('{"feedback": ["not", "a", "string"]}', DEFAULT)
	assert payload.used_fallback
	assert payload.value == DEFAULT


def test_top_level_array_is_not_an_object() -> None:
	payload = sanitize_and_parse('[1, 2, 3]', {"a": 0})
	assert payload.used_fallback
	assert payload.value == {"a": 0}


def test_dict_default_merges_missing_keys() -> None:
	payload = sanitize_and_parse('{"b": 2}', {"a": 1, "b": 0})
	assert payload.value == {"a": 1, "b": 2}


def test_empty_and_none_fall_back() -> None:
	assert sanitize_and_parse("", DEFAULT).used_fallback
	assert sanitize_and_parse(None, DEFAULT).used_fallback


def test_repair_steps() -> None:
	assert repair_json_text('```\n{"x": [1, 2,],}\n```') == '{"x": [1, 2]}'
	assert repair_json_text("noise {\"k\": ‘v’} tail") == "{\"k\": 'v'}"
