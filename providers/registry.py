"""Provider lookup: one entry point per capability family."""


import logging
from datetime import datetime
from typing import Mapping

from config import ApiKeys
from errors import ConfigurationError
from providers.aliyun_ocr import AliyunOcr
from providers.base import OcrAdapter, OcrProvider, ParseAdapter, ParseProvider, ProviderRun
from providers.claude_api import ClaudeParser, ClaudeVisionOcr
from providers.gemini_api import GeminiParser, GeminiVisionOcr
from providers.google_vision import GoogleVisionOcr
from providers.local import LocalOcrEngine, LocalParser, TesseractOcr
from providers.openai_api import OpenAiParser, OpenAiVisionOcr
from providers.qwen_ocr import QwenVisionOcr
from providers.transport import HttpTransport
from schemas import OcrText, ParsedEvent


class ProviderRegistry:
	"""Maps provider identifiers to adapters. Adding a provider is one entry here."""

	def __init__(
		self,
		ocr: Mapping[OcrProvider, OcrAdapter],
		parsers: Mapping[ParseProvider, ParseAdapter],
	) -> None:
		self._ocr = dict(ocr)
		self._parsers = dict(parsers)
		self._logger = logging.getLogger(self.__class__.__name__)

	@classmethod
	def default(cls, transport: HttpTransport, local_engine: LocalOcrEngine) -> "ProviderRegistry":
		return cls(
			ocr={
				OcrProvider.TESSERACT: TesseractOcr(local_engine),
				OcrProvider.GOOGLE_VISION: GoogleVisionOcr(transport),
				OcrProvider.OPENAI_VISION: OpenAiVisionOcr(transport),
				OcrProvider.CLAUDE_VISION: ClaudeVisionOcr(transport),
				OcrProvider.GEMINI_VISION: GeminiVisionOcr(transport),
				OcrProvider.ALIYUN: AliyunOcr(),
				OcrProvider.QWEN_VISION: QwenVisionOcr(),
			},
			parsers={
				ParseProvider.LOCAL: LocalParser(),
				ParseProvider.OPENAI: OpenAiParser(transport),
				ParseProvider.GEMINI: GeminiParser(transport),
				ParseProvider.CLAUDE: ClaudeParser(transport),
			},
		)

	def ocr_adapter(self, provider: str) -> OcrAdapter:
		try:
			return self._ocr[OcrProvider(provider)]
		except (ValueError, KeyError):
			raise ConfigurationError(f"Unknown OCR provider: {provider}") from None

	def parse_adapter(self, provider: str) -> ParseAdapter:
		try:
			return self._parsers[ParseProvider(provider)]
		except (ValueError, KeyError):
			raise ConfigurationError(f"Unknown parse provider: {provider}") from None

	async def perform_ocr(self, provider: str, image: str, credentials: ApiKeys) -> ProviderRun[OcrText]:
		adapter = self.ocr_adapter(provider)
		self._logger.info("Running OCR with %s", adapter.provider)
		run = await adapter.run(image, credentials)
		self._logger.info("OCR with %s extracted %s characters", adapter.provider, len(run.result.text))
		return run

	async def perform_parse(
		self,
		provider: str,
		text: str,
		credentials: ApiKeys,
		now: datetime | None = None,
	) -> ProviderRun[ParsedEvent]:
		adapter = self.parse_adapter(provider)
		self._logger.info("Parsing %s characters with %s", len(text), adapter.provider)
		return await adapter.run(text, credentials, now)
