"""Wiring of the three contexts plus the configuration surface."""


import logging
from typing import Any

from capture.page import PageContext
from capture.review import ReviewForm
from config import SettingsStore
from messaging.context import ExecutionContext
from messaging.messages import DiagTestOcr, DiagTestParse
from providers.transport import HttpTransport
from runtime.coordinator import Coordinator
from runtime.host import HostEnvironment
from runtime.sandbox import EngineFactory, SandboxWorker, TesseractEngineFactory


class Text2CalApp:
	"""Async context manager owning the coordinator, page, sandbox and options contexts.

	The page context is started lazily by the coordinator on the first capture.
	"""

	def __init__(
		self,
		store: SettingsStore,
		host: HostEnvironment,
		factory: EngineFactory | None = None,
		transport: HttpTransport | None = None,
		device_scale: float = 1.0,
	) -> None:
		self.sandbox = SandboxWorker(factory or TesseractEngineFactory())
		self.coordinator = Coordinator(store, host, self.sandbox, transport=transport)
		self.page = PageContext(self.coordinator, device_scale=device_scale, opener=host.open_url)
		self.coordinator.attach_page(self.page)
		self.options = ExecutionContext("options")
		self._logger = logging.getLogger(self.__class__.__name__)

	async def __aenter__(self) -> "Text2CalApp":
		self.coordinator.start()
		self.options.start()
		self.sandbox.start()
		return self

	async def __aexit__(self, *exc_info: Any) -> None:
		await self.page.stop()
		await self.sandbox.stop()
		await self.options.stop()
		await self.coordinator.aclose()

	async def wait_ready(self) -> str:
		"""Wait for sandbox initialization and return the state the coordinator sees."""
		await self.sandbox.wait_initialized()
		state = await self.coordinator.bridge.ping()
		self._logger.info("Local OCR engine state: %s", state)
		return state

	async def capture(self, start: tuple[float, float], end: tuple[float, float]) -> ReviewForm | None:
		"""Drive one drag selection from ``start`` to ``end`` and wait for the review."""
		previous = self.page.review
		await self.coordinator.start_capture()
		self.page.pointer_down(*start)
		self.page.pointer_move(*end)
		self.page.pointer_up(*end)
		await self.page.settle()
		# a cancelled selection leaves no new form behind
		return self.page.review if self.page.review is not previous else None

	async def diagnose_ocr(self, provider: str, data_url: str) -> dict[str, Any]:
		return await self.options.request(self.coordinator, DiagTestOcr(provider=provider, data_url=data_url))

	async def diagnose_parse(self, provider: str, text: str) -> dict[str, Any]:
		return await self.options.request(self.coordinator, DiagTestParse(provider=provider, text=text))
