"""Gemini generateContent providers: vision OCR and event parsing."""


from datetime import datetime
from typing import Any

from config import ApiKeys
from providers.base import OcrAdapter, OcrProvider, ParseAdapter, ParseProvider, ProviderRun
from providers.prompts import OCR_PROMPT, build_parse_prompt, load_event
from providers.transport import HttpTransport
from schemas import DebugTrace, OcrText, ParsedEvent
from utils.image_io import split_data_url

DEFAULT_MODEL = "gemini-1.5-flash-latest"


def endpoint_for(model: str) -> str:
	return f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


def _parts(data: dict[str, Any]) -> list[dict[str, Any]]:
	candidates = data.get("candidates")
	if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
		return []
	content = candidates[0].get("content") or {}
	parts = content.get("parts") if isinstance(content, dict) else None
	return [part for part in parts if isinstance(part, dict)] if isinstance(parts, list) else []


class GeminiVisionOcr(OcrAdapter):
	provider = OcrProvider.GEMINI_VISION.value
	credential = "gemini"
	credential_label = "Gemini"

	def __init__(self, transport: HttpTransport, model: str = DEFAULT_MODEL) -> None:
		super().__init__()
		self._transport = transport
		self._model = model

	async def run(self, image: str, credentials: ApiKeys) -> ProviderRun[OcrText]:
		api_key = self.require_credential(credentials)
		mime, data = split_data_url(image)
		payload = {
			"contents": [
				{
					"parts": [
						{"text": OCR_PROMPT},
						{"inline_data": {"mime_type": mime, "data": data}},
					]
				}
			]
		}
		endpoint = endpoint_for(self._model)
		trace = DebugTrace(provider=self.provider, endpoint=endpoint, model=self._model, payload=payload)
		with self.traced(trace):
			response = await self._transport.post_json(self.provider, endpoint, payload, params={"key": api_key})
		text = "".join(str(part.get("text") or "") for part in _parts(response))
		return ProviderRun(result=OcrText(text=text), debug=trace)


class GeminiParser(ParseAdapter):
	"""Requests an application/json response."""

	provider = ParseProvider.GEMINI.value
	credential = "gemini"
	credential_label = "Gemini"

	def __init__(self, transport: HttpTransport, model: str = DEFAULT_MODEL) -> None:
		super().__init__()
		self._transport = transport
		self._model = model

	async def run(self, text: str, credentials: ApiKeys, now: datetime | None = None) -> ProviderRun[ParsedEvent]:
		api_key = self.require_credential(credentials)
		payload = {
			"contents": [{"parts": [{"text": build_parse_prompt(text, now)}]}],
			"generationConfig": {"response_mime_type": "application/json"},
		}
		endpoint = endpoint_for(self._model)
		trace = DebugTrace(provider=self.provider, endpoint=endpoint, model=self._model, payload=payload)
		with self.traced(trace):
			response = await self._transport.post_json(self.provider, endpoint, payload, params={"key": api_key})
			parts = _parts(response)
			raw = str(parts[0].get("text") or "{}") if parts else "{}"
			event = load_event(raw, self.provider)
		return ProviderRun(result=event, debug=trace)
