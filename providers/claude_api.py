"""Anthropic messages-API providers: vision OCR and event parsing."""


import re
from datetime import datetime
from typing import Any

from config import ApiKeys
from errors import ProtocolError
from providers.base import OcrAdapter, OcrProvider, ParseAdapter, ParseProvider, ProviderRun
from providers.prompts import JSON_TAG_INSTRUCTION, build_parse_prompt, load_event
from providers.transport import HttpTransport
from schemas import DebugTrace, OcrText, ParsedEvent
from utils.image_io import split_data_url

ENDPOINT = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"
DEFAULT_MODEL = "claude-3-haiku-20240307"
JSON_BLOCK = re.compile(r"<json>(.*?)</json>", re.DOTALL)


def _headers(api_key: str) -> dict[str, str]:
	return {"x-api-key": api_key, "anthropic-version": API_VERSION}


def _first_text(data: dict[str, Any]) -> str:
	content = data.get("content")
	if isinstance(content, list) and content and isinstance(content[0], dict):
		text = content[0].get("text")
		return text if isinstance(text, str) else ""
	return ""


class ClaudeVisionOcr(OcrAdapter):
	provider = OcrProvider.CLAUDE_VISION.value
	credential = "claude"
	credential_label = "Claude"

	def __init__(self, transport: HttpTransport, model: str = DEFAULT_MODEL) -> None:
		super().__init__()
		self._transport = transport
		self._model = model

	async def run(self, image: str, credentials: ApiKeys) -> ProviderRun[OcrText]:
		api_key = self.require_credential(credentials)
		media_type, data = split_data_url(image)
		body = {
			"model": self._model,
			"max_tokens": 2000,
			"messages": [
				{
					"role": "user",
					"content": [
						{"type": "image", "source": {"type": "base64", "media_type": media_type, "data": data}},
						{"type": "text", "text": "Extract text from this image."},
					],
				}
			],
		}
		trace = DebugTrace(provider=self.provider, endpoint=ENDPOINT, model=self._model, payload=body)
		with self.traced(trace):
			response = await self._transport.post_json(self.provider, ENDPOINT, body, headers=_headers(api_key))
		return ProviderRun(result=OcrText(text=_first_text(response)), debug=trace)


class ClaudeParser(ParseAdapter):
	"""No native JSON mode here, so the answer must come wrapped in <json> tags."""

	provider = ParseProvider.CLAUDE.value
	credential = "claude"
	credential_label = "Claude"

	def __init__(self, transport: HttpTransport, model: str = DEFAULT_MODEL) -> None:
		super().__init__()
		self._transport = transport
		self._model = model

	async def run(self, text: str, credentials: ApiKeys, now: datetime | None = None) -> ProviderRun[ParsedEvent]:
		api_key = self.require_credential(credentials)
		body = {
			"model": self._model,
			"max_tokens": 1024,
			"messages": [{"role": "user", "content": f"{build_parse_prompt(text, now)}\n\n{JSON_TAG_INSTRUCTION}"}],
		}
		trace = DebugTrace(provider=self.provider, endpoint=ENDPOINT, model=self._model, payload=body)
		with self.traced(trace):
			response = await self._transport.post_json(self.provider, ENDPOINT, body, headers=_headers(api_key))
			match = JSON_BLOCK.search(_first_text(response))
			if not match:
				raise ProtocolError("Valid JSON not found in Claude response.")
			event = load_event(match.group(1), self.provider)
		return ProviderRun(result=event, debug=trace)
