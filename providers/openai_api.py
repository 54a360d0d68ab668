"""OpenAI chat-completions providers: vision OCR and event parsing."""


from datetime import datetime
from typing import Any

from config import ApiKeys
from providers.base import OcrAdapter, OcrProvider, ParseAdapter, ParseProvider, ProviderRun
from providers.prompts import OCR_PROMPT, build_parse_prompt, load_event
from providers.transport import HttpTransport
from schemas import DebugTrace, OcrText, ParsedEvent

ENDPOINT = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-4o-mini"


def _headers(api_key: str) -> dict[str, str]:
	return {"Authorization": f"Bearer {api_key}"}


def _first_message(data: dict[str, Any]) -> str:
	choices = data.get("choices")
	if isinstance(choices, list) and choices and isinstance(choices[0], dict):
		message = choices[0].get("message") or {}
		content = message.get("content") if isinstance(message, dict) else None
		return content if isinstance(content, str) else ""
	return ""


class OpenAiVisionOcr(OcrAdapter):
	provider = OcrProvider.OPENAI_VISION.value
	credential = "openai"
	credential_label = "OpenAI"

	def __init__(self, transport: HttpTransport, model: str = DEFAULT_MODEL) -> None:
		super().__init__()
		self._transport = transport
		self._model = model

	async def run(self, image: str, credentials: ApiKeys) -> ProviderRun[OcrText]:
		api_key = self.require_credential(credentials)
		body = {
			"model": self._model,
			"messages": [
				{
					"role": "user",
					"content": [
						{"type": "text", "text": OCR_PROMPT},
						{"type": "image_url", "image_url": {"url": image}},
					],
				}
			],
			"max_tokens": 2000,
		}
		trace = DebugTrace(provider=self.provider, endpoint=ENDPOINT, model=self._model, payload=body)
		with self.traced(trace):
			data = await self._transport.post_json(self.provider, ENDPOINT, body, headers=_headers(api_key))
		return ProviderRun(result=OcrText(text=_first_message(data)), debug=trace)


class OpenAiParser(ParseAdapter):
	"""Uses the native JSON response mode."""

	provider = ParseProvider.OPENAI.value
	credential = "openai"
	credential_label = "OpenAI"

	def __init__(self, transport: HttpTransport, model: str = DEFAULT_MODEL) -> None:
		super().__init__()
		self._transport = transport
		self._model = model

	async def run(self, text: str, credentials: ApiKeys, now: datetime | None = None) -> ProviderRun[ParsedEvent]:
		api_key = self.require_credential(credentials)
		body = {
			"model": self._model,
			"messages": [{"role": "user", "content": build_parse_prompt(text, now)}],
			"response_format": {"type": "json_object"},
		}
		trace = DebugTrace(provider=self.provider, endpoint=ENDPOINT, model=self._model, payload=body)
		with self.traced(trace):
			data = await self._transport.post_json(self.provider, ENDPOINT, body, headers=_headers(api_key))
			event = load_event(_first_message(data) or "{}", self.provider)
		return ProviderRun(result=event, debug=trace)
