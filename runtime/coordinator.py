"""Coordinator context: settings, provider dispatch and access to the host."""


import asyncio
import logging
from typing import Any, Awaitable, Callable

from config import SettingsStore, resolve_settings
from errors import Text2CalError
from messaging.context import ExecutionContext
from messaging.messages import (
	BeginCapture,
	DiagTestOcr,
	DiagTestParse,
	Message,
	MessageKind,
	Ping,
	RunOcr,
	RunParse,
	SandboxJobResult,
	SandboxReady,
	failure_reply,
	ok_reply,
)
from messaging.router import Router
from providers.base import ProviderRun
from providers.registry import ProviderRegistry
from providers.transport import HttpTransport
from runtime.host import HostEnvironment
from runtime.sandbox import LocalOcrBridge, SandboxWorker
from utils.image_io import encode_data_url
from utils.redaction import scrub_trace

Reply = dict[str, Any]


class Coordinator(ExecutionContext):
	"""Background context. The only place provider code and credentials are used."""

	def __init__(
		self,
		store: SettingsStore,
		host: HostEnvironment,
		sandbox: SandboxWorker,
		transport: HttpTransport | None = None,
		registry: ProviderRegistry | None = None,
		name: str = "coordinator",
	) -> None:
		super().__init__(name, Router(name))
		self.store = store
		self.host = host
		self.sandbox = sandbox
		sandbox.parent = self
		self.bridge = LocalOcrBridge(self, sandbox)
		self.transport = transport or HttpTransport()
		self.registry = registry or ProviderRegistry.default(self.transport, self.bridge)
		self.page: ExecutionContext | None = None
		self._tasks: set[asyncio.Task] = set()
		self._logger = logging.getLogger(self.__class__.__name__)

		self.router.on_awaited(MessageKind.SCREENSHOT, self._on_screenshot)
		self.router.on_awaited(MessageKind.GET_SETTINGS, self._on_get_settings)
		self.router.on_awaited(MessageKind.RUN_OCR, self._on_run_ocr)
		self.router.on_awaited(MessageKind.RUN_PARSE, self._on_run_parse)
		self.router.on_awaited(MessageKind.DIAG_TEST_OCR, self._on_diag_ocr)
		self.router.on_awaited(MessageKind.DIAG_TEST_PARSE, self._on_diag_parse)
		self.router.on(MessageKind.REDRAW, self._on_redraw)
		self.router.on(MessageKind.SANDBOX_READY, self._on_sandbox_ready)
		self.router.on(MessageKind.SANDBOX_JOB_RESULT, self._on_sandbox_job_result)

	def attach_page(self, page: ExecutionContext) -> None:
		self.page = page

	async def ensure_page(self) -> ExecutionContext:
		"""Make sure the page context is loaded and answering before talking to it."""
		if self.page is None:
			raise RuntimeError("No page attached.")
		if not self.page.running:
			self._logger.info("Starting page context %s", self.page.name)
			self.page.start()
		await self.request(self.page, Ping())
		return self.page

	async def start_capture(self) -> Reply:
		page = await self.ensure_page()
		return await self.request(page, BeginCapture())

	async def _on_screenshot(self, message: Message, sender: str | None) -> Reply:
		frame = await self.host.capture_visible_frame()
		return ok_reply(dataUrl=encode_data_url(frame))

	async def _on_get_settings(self, message: Message, sender: str | None) -> Reply:
		settings = await resolve_settings(self.store)
		return ok_reply(settings=settings.describe())

	async def _on_run_ocr(self, message: RunOcr, sender: str | None) -> Reply:
		async def call(settings) -> ProviderRun:
			provider = message.provider or settings.ocr_method
			return await self.registry.perform_ocr(provider, message.data_url, settings.api_keys)

		return await self._provider_call(call, lambda run: {"text": run.result.text}, message.request_id)

	async def _on_run_parse(self, message: RunParse, sender: str | None) -> Reply:
		async def call(settings) -> ProviderRun:
			provider = message.provider or settings.parse_method
			return await self.registry.perform_parse(provider, message.text, settings.api_keys)

		return await self._provider_call(call, lambda run: {"result": run.result.to_wire()}, message.request_id)

	async def _on_diag_ocr(self, message: DiagTestOcr, sender: str | None) -> Reply:
		async def call(settings) -> ProviderRun:
			return await self.registry.perform_ocr(message.provider, message.data_url, settings.api_keys)

		return await self._provider_call(call, lambda run: {"text": run.result.text})

	async def _on_diag_parse(self, message: DiagTestParse, sender: str | None) -> Reply:
		async def call(settings) -> ProviderRun:
			return await self.registry.perform_parse(message.provider, message.text, settings.api_keys)

		return await self._provider_call(call, lambda run: {"result": run.result.to_wire()})

	async def _provider_call(
		self,
		call: Callable[[Any], Awaitable[ProviderRun]],
		render: Callable[[ProviderRun], dict[str, Any]],
		request_id: str | None = None,
	) -> Reply:
		echo = {"requestId": request_id} if request_id is not None else {}
		settings = await resolve_settings(self.store)
		try:
			run = await call(settings)
		except Text2CalError as exc:
			self._logger.error("Provider call failed: %s", exc)
			if exc.debug is not None:
				echo["debug"] = scrub_trace(exc.debug).to_wire()
			return failure_reply(exc, **echo)
		return ok_reply(**render(run), debug=scrub_trace(run.debug).to_wire(), **echo)

	def _on_redraw(self, message: Message, sender: str | None) -> Reply:
		task = asyncio.get_running_loop().create_task(self.start_capture())
		self._tasks.add(task)
		task.add_done_callback(self._capture_started)
		return ok_reply()

	def _capture_started(self, task: asyncio.Task) -> None:
		self._tasks.discard(task)
		if not task.cancelled() and task.exception() is not None:
			self._logger.error("Could not start capture: %s", task.exception())

	def _on_sandbox_ready(self, message: SandboxReady, sender: str | None) -> None:
		self.bridge.on_ready(message)
		return None

	def _on_sandbox_job_result(self, message: SandboxJobResult, sender: str | None) -> None:
		self.bridge.on_job_result(message)
		return None

	async def stop(self) -> None:
		for task in list(self._tasks):
			task.cancel()
		await super().stop()

	async def aclose(self) -> None:
		await self.stop()
		await self.transport.aclose()
