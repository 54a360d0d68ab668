"""Google Cloud Vision OCR provider implementation."""


from typing import Any

from config import ApiKeys
from errors import TransportError
from providers.base import OcrAdapter, OcrProvider, ProviderRun
from providers.transport import HttpTransport
from schemas import DebugTrace, OcrText
from utils.image_io import is_data_url, split_data_url

ENDPOINT = "https://vision.googleapis.com/v1/images:annotate"


class GoogleVisionOcr(OcrAdapter):
	"""DOCUMENT_TEXT_DETECTION over inline content or an external image URL."""

	provider = OcrProvider.GOOGLE_VISION.value
	credential = "google"
	credential_label = "Google Cloud"

	def __init__(self, transport: HttpTransport, language_hints: tuple[str, ...] = ("en",)) -> None:
		super().__init__()
		self._transport = transport
		self._language_hints = list(language_hints)

	async def run(self, image: str, credentials: ApiKeys) -> ProviderRun[OcrText]:
		api_key = self.require_credential(credentials)
		payload = self._build_payload(image)
		trace = DebugTrace(provider=self.provider, endpoint=ENDPOINT, payload=payload)
		with self.traced(trace):
			data = await self._transport.post_json(self.provider, ENDPOINT, payload, params={"key": api_key})
			response = self._first_response(data)
			error = response.get("error")
			if isinstance(error, dict) and error.get("message"):
				raise TransportError(self.provider, f"Google Vision API error: {error['message']}")
		return ProviderRun(result=OcrText(text=self._extract_text(response)), debug=trace)

	def _build_payload(self, image: str) -> dict[str, Any]:
		if is_data_url(image):
			_, content = split_data_url(image)
			source: dict[str, Any] = {"content": content}
		else:
			source = {"source": {"imageUri": image}}
		return {
			"requests": [
				{
					"image": source,
					"features": [{"type": "DOCUMENT_TEXT_DETECTION", "maxResults": 1}],
					"imageContext": {"languageHints": self._language_hints},
				}
			]
		}

	def _first_response(self, data: dict[str, Any]) -> dict[str, Any]:
		responses = data.get("responses")
		if isinstance(responses, list) and responses and isinstance(responses[0], dict):
			return responses[0]
		return {}

	def _extract_text(self, response: dict[str, Any]) -> str:
		full = response.get("fullTextAnnotation")
		if isinstance(full, dict) and isinstance(full.get("text"), str) and full["text"]:
			return full["text"]
		annotations = response.get("textAnnotations")
		if isinstance(annotations, list) and annotations and isinstance(annotations[0], dict):
			return str(annotations[0].get("description") or "")
		return ""
