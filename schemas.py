"""Pydantic schemas for normalized provider results and debug traces."""


from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
	"""Base for models that cross a context boundary in camelCase form."""
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

	def to_wire(self) -> dict[str, Any]:
		return self.model_dump(mode="json", by_alias=True)


class OcrText(WireModel):
	"""Plain text recognized by any OCR provider."""
	text: str = ""


class ParsedEvent(WireModel):
	"""Calendar fields extracted from recognized text.

	``start`` and ``end`` are local-time ISO-8601 strings. ``has_time`` False means an
	all-day event, whatever time components ``start``/``end`` may carry.
	"""
	title: str | None = None
	start: str | None = None
	end: str | None = None
	location: str | None = None
	has_time: bool = False

	@model_validator(mode="before")
	@classmethod
	def _normalize(cls, data: Any) -> Any:
		if not isinstance(data, dict):
			return data
		values = dict(data)
		# Some models answer with startDate/endDate instead of start/end.
		for key, legacy in (("start", "startDate"), ("end", "endDate")):
			if not values.get(key) and values.get(legacy):
				values[key] = values[legacy]
		for key in ("title", "start", "end", "location"):
			value = values.get(key)
			if isinstance(value, str) and not value.strip():
				values[key] = None
			elif value is not None and not isinstance(value, str):
				values[key] = str(value)
		flag = values.get("hasTime", values.get("has_time"))
		if flag is None:
			start = values.get("start")
			flag = isinstance(start, str) and "T" in start
		elif isinstance(flag, str):
			flag = flag.strip().lower() in ("true", "1", "yes")
		values.pop("has_time", None)
		values["hasTime"] = bool(flag)
		return values


class DebugTrace(WireModel):
	"""Exact copy of an outbound provider request, kept in memory only."""
	provider: str
	endpoint: str | None = None
	model: str | None = None
	payload: dict[str, Any] = Field(default_factory=dict)
