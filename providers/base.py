"""Common contract for OCR and parse provider adapters."""


import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Generic, Iterator, TypeVar

from config import ApiKeys
from errors import ConfigurationError, Text2CalError
from schemas import DebugTrace, OcrText, ParsedEvent

ResultT = TypeVar("ResultT", OcrText, ParsedEvent)


class OcrProvider(str, Enum):
	TESSERACT = "tesseract"
	GOOGLE_VISION = "google-vision"
	OPENAI_VISION = "openai-vision"
	CLAUDE_VISION = "claude-vision"
	GEMINI_VISION = "gemini-vision"
	ALIYUN = "aliyun"
	QWEN_VISION = "qwen-vision"


class ParseProvider(str, Enum):
	LOCAL = "local"
	OPENAI = "openai"
	GEMINI = "gemini"
	CLAUDE = "claude"


@dataclass(frozen=True)
class ProviderRun(Generic[ResultT]):
	"""A provider result together with the request that produced it."""
	result: ResultT
	debug: DebugTrace


class Adapter(ABC):
	"""Shared credential handling. ``credential`` names an ``ApiKeys`` field."""

	provider: str
	credential: str | None = None
	credential_label: str = ""

	def __init__(self) -> None:
		self._logger = logging.getLogger(self.__class__.__name__)

	def require_credential(self, credentials: ApiKeys) -> str:
		"""Fail before any network activity when the key is missing."""
		if self.credential is None:
			return ""
		value = getattr(credentials, self.credential, "")
		if not value or not value.strip():
			raise ConfigurationError(f"{self.credential_label or self.provider} API key is missing.")
		return value.strip()

	@contextmanager
	def traced(self, trace: DebugTrace) -> Iterator[DebugTrace]:
		"""Attach the outbound request to any provider failure raised inside the block."""
		try:
			yield trace
		except Text2CalError as exc:
			exc.debug = trace
			raise


class OcrAdapter(Adapter):
	"""Turns an image (data URL or external URL) into plain text."""

	@abstractmethod
	async def run(self, image: str, credentials: ApiKeys) -> ProviderRun[OcrText]:
		...


class ParseAdapter(Adapter):
	"""Turns recognized text into calendar event fields."""

	@abstractmethod
	async def run(self, text: str, credentials: ApiKeys, now: datetime | None = None) -> ProviderRun[ParsedEvent]:
		...
