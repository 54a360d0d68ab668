"""Redaction and truncation of provider debug traces.

Traces are exact copies of outbound provider requests, so they carry the captured image
and the full prompt. Before a trace leaves the coordinator, ``scrub_trace`` replaces
every known image location with a placeholder and trims every known prompt location.
The review log runs ``sanitize_for_log`` again and caps the serialized size.

Each location is a path into the payload. ``*`` fans out over list items; a missing key,
an out-of-range index or a value of the wrong type simply yields nothing. Rewrites
return the replacement value, or ``None`` to leave the field alone.
"""

import copy
import json
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping

from schemas import DebugTrace
from utils.image_io import is_data_url

BASE64_PLACEHOLDER = "<base64 omitted>"
DATA_URL_PLACEHOLDER = "<data-url omitted>"
TRUNCATION_MARKER = "… [truncated]"
PROMPT_BUDGET = 1600
LOG_BUDGET = 4000

PathStep = str | int
Rewrite = Callable[[Any], Any | None]


@dataclass(frozen=True)
class FieldLocation:
	"""A sensitive or oversized field inside a provider payload."""
	name: str
	path: tuple[PathStep, ...]
	rewrite: Rewrite


def _omit_base64(value: Any) -> str | None:
	if isinstance(value, str) and value and value != BASE64_PLACEHOLDER:
		return BASE64_PLACEHOLDER
	return None


def _omit_data_url(value: Any) -> str | None:
	if is_data_url(value):
		return DATA_URL_PLACEHOLDER
	return None


def _truncator(budget: int) -> Rewrite:
	def rewrite(value: Any) -> str | None:
		if not isinstance(value, str) or len(value) <= budget:
			return None
		if len(value) == budget + len(TRUNCATION_MARKER) and value.endswith(TRUNCATION_MARKER):
			return None
		return value[:budget] + TRUNCATION_MARKER

	return rewrite


IMAGE_LOCATIONS: tuple[FieldLocation, ...] = (
	FieldLocation("aliyun.body", ("body",), _omit_base64),
	FieldLocation("google.content", ("requests", "*", "image", "content"), _omit_base64),
	FieldLocation("google.imageUri", ("requests", "*", "image", "source", "imageUri"), _omit_data_url),
	FieldLocation("openai.image_url", ("messages", "*", "content", "*", "image_url", "url"), _omit_data_url),
	FieldLocation("claude.source", ("messages", "*", "content", "*", "source", "data"), _omit_base64),
	FieldLocation("gemini.inline_data", ("contents", "*", "parts", "*", "inline_data", "data"), _omit_base64),
	FieldLocation("dashscope.image", ("messages", "*", "content", "*", "image"), _omit_data_url),
)


def prompt_locations(budget: int = PROMPT_BUDGET) -> tuple[FieldLocation, ...]:
	truncate = _truncator(budget)
	return (
		FieldLocation("chat.content", ("messages", "*", "content"), truncate),
		FieldLocation("chat.block_text", ("messages", "*", "content", "*", "text"), truncate),
		FieldLocation("gemini.text", ("contents", "*", "parts", "*", "text"), truncate),
	)


def _slots(node: Any, path: tuple[PathStep, ...]) -> Iterator[tuple[Any, PathStep]]:
	"""Yield ``(container, key)`` pairs for every existing field matching ``path``."""
	if not path:
		return
	step, rest = path[0], path[1:]
	if step == "*":
		children = list(enumerate(node)) if isinstance(node, list) else []
	elif isinstance(step, int):
		children = [(step, node[step])] if isinstance(node, list) and -len(node) <= step < len(node) else []
	else:
		children = [(step, node[step])] if isinstance(node, dict) and step in node else []
	for key, child in children:
		if rest:
			yield from _slots(child, rest)
		else:
			yield node, key


def apply_locations(payload: Any, locations: tuple[FieldLocation, ...]) -> list[str]:
	"""Rewrite ``payload`` in place. Returns the names of locations that changed."""
	changed: list[str] = []
	for location in locations:
		for container, key in _slots(payload, location.path):
			replacement = location.rewrite(container[key])
			if replacement is not None:
				container[key] = replacement
				changed.append(location.name)
	return changed


def _payload_copy(trace: DebugTrace | Mapping[str, Any]) -> dict[str, Any]:
	if isinstance(trace, DebugTrace):
		return trace.to_wire()
	return copy.deepcopy(dict(trace))


def redact_images(trace: DebugTrace) -> DebugTrace:
	data = trace.to_wire()
	apply_locations(data.get("payload"), IMAGE_LOCATIONS)
	return DebugTrace.model_validate(data)


def truncate_prompts(trace: DebugTrace, budget: int = PROMPT_BUDGET) -> DebugTrace:
	data = trace.to_wire()
	apply_locations(data.get("payload"), prompt_locations(budget))
	return DebugTrace.model_validate(data)


def scrub_trace(trace: DebugTrace) -> DebugTrace:
	"""Coordinator-side pass applied before a trace crosses a context boundary."""
	return truncate_prompts(redact_images(trace))


def sanitize_for_log(trace: DebugTrace | Mapping[str, Any] | None, budget: int = LOG_BUDGET) -> str:
	"""Final-boundary pass for rendered or logged traces.

	Accepts the wire form as received from another context, whatever its shape.
	"""
	if trace is None:
		return "null"
	data = _payload_copy(trace)
	payload = data.get("payload")
	apply_locations(payload, IMAGE_LOCATIONS)
	serialized = json.dumps(data, ensure_ascii=False, indent=2, default=str)
	if len(serialized) > budget:
		serialized = serialized[: budget - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER
	return serialized
