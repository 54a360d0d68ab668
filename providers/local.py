"""Network-free providers: sandboxed Tesseract OCR and the no-op parser."""


from datetime import datetime
from typing import Protocol

from config import ApiKeys
from messaging.messages import PSM_SINGLE_LINE
from providers.base import OcrAdapter, OcrProvider, ParseAdapter, ParseProvider, ProviderRun
from schemas import DebugTrace, OcrText, ParsedEvent


class LocalOcrEngine(Protocol):
	"""Whatever relays a job into the sandboxed OCR context."""

	async def recognize(self, image: str, mode: int = PSM_SINGLE_LINE) -> str:
		...


class TesseractOcr(OcrAdapter):
	provider = OcrProvider.TESSERACT.value

	def __init__(self, engine: LocalOcrEngine, mode: int = PSM_SINGLE_LINE) -> None:
		super().__init__()
		self._engine = engine
		self._mode = mode

	async def run(self, image: str, credentials: ApiKeys) -> ProviderRun[OcrText]:
		text = await self._engine.recognize(image, self._mode)
		return ProviderRun(
			result=OcrText(text=text),
			debug=DebugTrace(provider=self.provider, payload={"mode": self._mode}),
		)


class LocalParser(ParseAdapter):
	"""Always available, needs no credential, and extracts nothing."""

	provider = ParseProvider.LOCAL.value

	async def run(self, text: str, credentials: ApiKeys, now: datetime | None = None) -> ProviderRun[ParsedEvent]:
		return ProviderRun(
			result=ParsedEvent(title=None, start=None, end=None, location=None, has_time=False),
			debug=DebugTrace(provider=self.provider),
		)
