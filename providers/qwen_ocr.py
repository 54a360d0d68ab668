"""DashScope Qwen-VL OCR provider implementation."""


import asyncio
from typing import Any

from config import ApiKeys, DashScopeCredentials
from errors import TransportError
from providers.base import OcrAdapter, OcrProvider, ProviderRun
from providers.prompts import OCR_PROMPT
from schemas import DebugTrace, OcrText

try:
	from dashscope import MultiModalConversation
except ImportError:
	MultiModalConversation = None  # type: ignore[assignment]

DEFAULT_MODEL = "qwen-vl-ocr"
ENDPOINT = "https://dashscope.aliyuncs.com/api/v1/services/aigc/multimodal-generation/generation"


class QwenVisionOcr(OcrAdapter):
	"""Multimodal conversation call; the text is the first content block of the reply."""

	provider = OcrProvider.QWEN_VISION.value
	credential = "dashscope"
	credential_label = "DashScope"

	def __init__(self, model: str = DEFAULT_MODEL) -> None:
		super().__init__()
		self._model = model

	async def run(self, image: str, credentials: ApiKeys) -> ProviderRun[OcrText]:
		dashscope = DashScopeCredentials(api_key=self.require_credential(credentials))
		messages = self._build_messages(image)
		trace = DebugTrace(
			provider=self.provider,
			endpoint=ENDPOINT,
			model=self._model,
			payload={"model": self._model, "messages": messages},
		)
		with self.traced(trace):
			try:
				response = await asyncio.to_thread(self._call_service, dashscope, messages)
			except ImportError:
				raise
			except Exception as exc:  # noqa: BLE001
				raise TransportError(self.provider, str(exc)) from exc
			if getattr(response, "status_code", 500) != 200:
				message = getattr(response, "message", None) or "Qwen OCR request failed."
				raise TransportError(self.provider, str(message), getattr(response, "status_code", None))
		return ProviderRun(result=OcrText(text=self._extract_text(response)), debug=trace)

	def _build_messages(self, image: str) -> list[dict[str, Any]]:
		return [{"role": "user", "content": [{"image": image}, {"text": OCR_PROMPT}]}]

	def _call_service(self, credentials: DashScopeCredentials, messages: list[dict[str, Any]]) -> Any:
		if MultiModalConversation is None:
			raise ImportError("DashScope SDK is not installed. Please install dashscope.")
		return MultiModalConversation.call(
			model=self._model,
			messages=messages,
			api_key=credentials.api_key,
		)

	def _extract_text(self, response: Any) -> str:
		output = getattr(response, "output", None)
		choices = self._get(output, "choices")
		if not isinstance(choices, list) or not choices:
			return ""
		message = self._get(choices[0], "message")
		content = self._get(message, "content")
		if isinstance(content, str):
			return content
		if isinstance(content, list) and content:
			text = self._get(content[0], "text")
			return text if isinstance(text, str) else ""
		return ""

	def _get(self, node: Any, key: str) -> Any:
		# DashScope responses mix dict subclasses and attribute objects.
		if isinstance(node, dict):
			return node.get(key)
		return getattr(node, key, None)
