"""Debug trace redaction and truncation tests."""
from __future__ import annotations

import json

import pytest

from schemas import DebugTrace
from utils.redaction import (
	BASE64_PLACEHOLDER,
	DATA_URL_PLACEHOLDER,
	LOG_BUDGET,
	PROMPT_BUDGET,
	TRUNCATION_MARKER,
	redact_images,
	sanitize_for_log,
	scrub_trace,
	truncate_prompts,
)

DATA_URL = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUg=="
B64 = "iVBORw0KGgoAAAANSUhEUg=="


def _trace(provider: str, payload: dict) -> DebugTrace:
	return DebugTrace(provider=provider, endpoint="https://example.invalid", payload=payload)


@pytest.mark.parametrize(
	"provider, payload, path, placeholder",
	[
		("aliyun", {"body": B64}, ("body",), BASE64_PLACEHOLDER),
		(
			"google-vision",
			{"requests": [{"image": {"content": B64}}]},
			("requests", 0, "image", "content"),
			BASE64_PLACEHOLDER,
		),
		(
			"google-vision",
			{"requests": [{"image": {"source": {"imageUri": DATA_URL}}}]},
			("requests", 0, "image", "source", "imageUri"),
			DATA_URL_PLACEHOLDER,
		),
		(
			"openai-vision",
			{"messages": [{"content": [{"type": "image_url", "image_url": {"url": DATA_URL}}]}]},
			("messages", 0, "content", 0, "image_url", "url"),
			DATA_URL_PLACEHOLDER,
		),
		(
			"claude-vision",
			{"messages": [{"content": [{"type": "image", "source": {"data": B64}}]}]},
			("messages", 0, "content", 0, "source", "data"),
			BASE64_PLACEHOLDER,
		),
		(
			"gemini-vision",
			{"contents": [{"parts": [{"inline_data": {"data": B64}}]}]},
			("contents", 0, "parts", 0, "inline_data", "data"),
			BASE64_PLACEHOLDER,
		),
		(
			"qwen-vision",
			{"messages": [{"content": [{"image": DATA_URL}]}]},
			("messages", 0, "content", 0, "image"),
			DATA_URL_PLACEHOLDER,
		),
	],
)
def test_every_known_image_location_is_replaced(provider, payload, path, placeholder) -> None:
	"""Each provider's image field becomes a placeholder, and a second pass changes nothing."""
	redacted = redact_images(_trace(provider, payload))
	node = redacted.payload
	for step in path:
		node = node[step]
	assert node == placeholder
	assert redact_images(redacted) == redacted


def test_external_image_urls_are_kept() -> None:
	"""Only inline data is removed; a reachable URL is useful debug information."""
	payload = {"requests": [{"image": {"source": {"imageUri": "https://example.com/a.png"}}}]}
	redacted = redact_images(_trace("google-vision", payload))
	assert redacted.payload["requests"][0]["image"]["source"]["imageUri"] == "https://example.com/a.png"


def test_absent_fields_are_skipped() -> None:
	payload = {"messages": [{"content": "hello"}], "requests": []}
	assert redact_images(_trace("openai", payload)).payload == payload


def test_redaction_copies_the_trace() -> None:
	trace = _trace("aliyun", {"body": B64})
	redact_images(trace)
	assert trace.payload["body"] == B64


def test_prompt_truncation_is_bounded_and_idempotent() -> None:
	"""Long prompts are cut to the budget plus the marker, once."""
	prompt = "x" * (PROMPT_BUDGET + 500)
	trace = _trace(
		"openai",
		{
			"messages": [
				{"role": "user", "content": prompt},
				{"role": "user", "content": [{"type": "text", "text": prompt}]},
			]
		},
	)
	once = truncate_prompts(trace)
	first = once.payload["messages"][0]["content"]
	block = once.payload["messages"][1]["content"][0]["text"]
	assert first == "x" * PROMPT_BUDGET + TRUNCATION_MARKER
	assert block == first
	assert truncate_prompts(once) == once


def test_short_prompts_are_left_alone() -> None:
	trace = _trace("gemini", {"contents": [{"parts": [{"text": "short prompt"}]}]})
	assert truncate_prompts(trace) == trace


def test_scrub_trace_applies_both_passes() -> None:
	trace = _trace(
		"gemini-vision",
		{"contents": [{"parts": [{"text": "y" * 2000}, {"inline_data": {"mime_type": "image/png", "data": B64}}]}]},
	)
	parts = scrub_trace(trace).payload["contents"][0]["parts"]
	assert parts[0]["text"].endswith(TRUNCATION_MARKER)
	assert parts[1]["inline_data"]["data"] == BASE64_PLACEHOLDER


def test_sanitize_for_log_redacts_wire_form_and_caps_size() -> None:
	"""The log boundary handles traces that skipped the coordinator pass."""
	raw = _trace("aliyun", {"body": B64, "padding": "z" * (LOG_BUDGET * 2)}).to_wire()
	rendered = sanitize_for_log(raw)
	assert B64 not in rendered
	assert len(rendered) == LOG_BUDGET
	assert rendered.endswith(TRUNCATION_MARKER)


def test_sanitize_for_log_renders_small_traces_whole() -> None:
	rendered = sanitize_for_log(_trace("local", {}))
	assert json.loads(rendered)["provider"] == "local"
	assert sanitize_for_log(None) == "null"
