"""Prompts shared by the OCR and parse adapters."""

import json
from datetime import datetime

from errors import ProtocolError
from schemas import ParsedEvent

OCR_PROMPT = "Extract all text from this image exactly as it appears."
JSON_TAG_INSTRUCTION = "Return JSON inside <json> tags."


def describe_now(now: datetime | None = None) -> str:
	"""Local wall-clock time in a form models reliably anchor relative dates to."""
	moment = (now or datetime.now()).astimezone()
	return moment.strftime("%a %b %d %Y %H:%M:%S %Z (UTC%z)")


def build_parse_prompt(text: str, now: datetime | None = None) -> str:
	return (
		"Your task is to analyze ONLY the text provided below and extract event details into a single raw "
		'JSON object with keys: "title", "start", "end", "location", "hasTime". '
		f"The current date is {describe_now(now)}. "
		'Format dates as local ISO 8601 strings (e.g., "2025-09-23T17:30:00"). '
		'Set "hasTime" to false when the event has no specific time of day. '
		f"If info is missing, use null. --- {text} ---"
	)


def load_event(raw: str, provider: str) -> ParsedEvent:
	"""Decode a model's JSON answer into event fields."""
	try:
		data = json.loads(raw)
	except json.JSONDecodeError as exc:
		raise ProtocolError(f"{provider}: response is not valid JSON: {exc.msg}") from exc
	if not isinstance(data, dict):
		raise ProtocolError(f"{provider}: expected a JSON object, got {type(data).__name__}")
	return ParsedEvent.model_validate(data)
