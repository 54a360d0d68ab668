"""Sandboxed local OCR context and the coordinator-side bridge into it.

The sandbox initializes its engine once on load, preferring the accelerated core and
falling back to the baseline core at most once. Readiness is pushed to the parent
unsolicited. Every job gets its own engine worker, released when the job ends.
"""


import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import pytesseract
from PIL import Image

from errors import NotReadyError, TransportError
from messaging.context import ExecutionContext
from messaging.messages import (
	PSM_SINGLE_LINE,
	Message,
	MessageKind,
	SandboxJobResult,
	SandboxPing,
	SandboxReady,
	SandboxRunJob,
	new_request_id,
)
from messaging.router import Router
from utils.image_io import decode_data_url, open_image

NOT_INITIALIZED = "Sandbox not initialized"


class ReadinessState(str, Enum):
	UNINITIALIZED = "uninitialized"
	INITIALIZING = "initializing"
	READY = "ready"
	FAILED = "failed"


@dataclass(frozen=True)
class EngineCore:
	"""A Tesseract engine variant, selected through its command-line config."""
	name: str
	config: str


ACCELERATED_CORE = EngineCore("accelerated", "--oem 1")
BASELINE_CORE = EngineCore("baseline", "--oem 3")


class OcrWorker(Protocol):
	async def recognize(self, image: bytes, mode: int) -> str:
		...

	async def terminate(self) -> None:
		...


class EngineFactory(Protocol):
	async def create_worker(self, core: EngineCore) -> OcrWorker:
		...


class TesseractWorker:
	"""Runs pytesseract in a worker thread for one job."""

	def __init__(self, core: EngineCore, lang: str = "eng") -> None:
		self.core = core
		self.lang = lang
		self.closed = False

	async def recognize(self, image: bytes, mode: int) -> str:
		if self.closed:
			raise RuntimeError("worker already terminated")
		config = f"{self.core.config} --psm {mode}"
		return await asyncio.to_thread(self._read, image, config)

	def _read(self, image: bytes, config: str) -> str:
		return pytesseract.image_to_string(open_image(image), lang=self.lang, config=config)

	async def terminate(self) -> None:
		self.closed = True


class TesseractEngineFactory:
	"""Creates Tesseract workers, verifying each core once against a blank probe image."""

	def __init__(self, lang: str = "eng") -> None:
		self.lang = lang
		self._verified: set[EngineCore] = set()

	async def create_worker(self, core: EngineCore) -> TesseractWorker:
		if core not in self._verified:
			await asyncio.to_thread(self._probe, core)
			self._verified.add(core)
		return TesseractWorker(core, self.lang)

	def _probe(self, core: EngineCore) -> None:
		pytesseract.get_tesseract_version()
		probe = Image.new("L", (32, 32), color=255)
		pytesseract.image_to_string(probe, lang=self.lang, config=f"{core.config} --psm {PSM_SINGLE_LINE}")


class SandboxWorker(ExecutionContext):
	"""Isolated context hosting the local OCR engine."""

	def __init__(
		self,
		factory: EngineFactory,
		parent: ExecutionContext | None = None,
		name: str = "sandbox",
		preferred: EngineCore = ACCELERATED_CORE,
		fallback: EngineCore = BASELINE_CORE,
	) -> None:
		super().__init__(name, Router(name))
		self.parent = parent
		self.state = ReadinessState.UNINITIALIZED
		self.failure_reason: str | None = None
		self.core = preferred
		self._factory = factory
		self._fallback = fallback
		self._fallback_used = False
		self._init_task: asyncio.Task | None = None
		self._jobs: set[asyncio.Task] = set()
		self._logger = logging.getLogger(self.__class__.__name__)
		self.router.on(MessageKind.SANDBOX_INITIALIZE, self._on_initialize)
		self.router.on(MessageKind.SANDBOX_PING, self._on_ping)
		self.router.on(MessageKind.SANDBOX_RUN_JOB, self._on_run_job)

	def on_load(self) -> None:
		self.initialize()

	def initialize(self) -> asyncio.Task | None:
		"""Start initialization once; later calls return the same task."""
		if self.state is ReadinessState.UNINITIALIZED:
			self._init_task = asyncio.get_running_loop().create_task(self._initialize())
		return self._init_task

	async def wait_initialized(self) -> ReadinessState:
		if self._init_task is not None:
			await asyncio.shield(self._init_task)
		return self.state

	async def _initialize(self) -> None:
		self._transition(ReadinessState.INITIALIZING)
		while True:
			try:
				worker = await self._factory.create_worker(self.core)
				await worker.terminate()
			except Exception as exc:  # noqa: BLE001
				reason = str(exc) or exc.__class__.__name__
				self.failure_reason = reason
				self._transition(ReadinessState.FAILED)
				if self._fallback_used or self.core == self._fallback:
					self._announce(SandboxReady(state=self.state.value, error=reason))
					return
				self._logger.warning("Core %s failed (%s); retrying with %s", self.core.name, reason, self._fallback.name)
				self._fallback_used = True
				self.core = self._fallback
				self._transition(ReadinessState.INITIALIZING)
				continue
			self.failure_reason = None
			self._transition(ReadinessState.READY)
			self._announce(SandboxReady(state=self.state.value))
			return

	def _transition(self, state: ReadinessState) -> None:
		self._logger.info("Sandbox %s -> %s (core=%s)", self.state.value, state.value, self.core.name)
		self.state = state

	def _announce(self, message: Message) -> None:
		if self.parent is not None:
			self.post(self.parent, message)

	def _on_initialize(self, message: Message, sender: str | None) -> None:
		self.initialize()
		return None

	def _on_ping(self, message: Message, sender: str | None) -> None:
		ready = self.state is ReadinessState.READY
		error = None if ready else (self.failure_reason if self.state is ReadinessState.FAILED else "not-initialized")
		self._announce(SandboxReady(state=self.state.value, error=error))
		return None

	def _on_run_job(self, message: SandboxRunJob, sender: str | None) -> None:
		if self.state is not ReadinessState.READY:
			self._announce(SandboxJobResult(job_id=message.job_id, ok=False, error=NOT_INITIALIZED, not_ready=True))
			return None
		task = asyncio.get_running_loop().create_task(self._run_job(message))
		self._jobs.add(task)
		task.add_done_callback(self._jobs.discard)
		return None

	async def _run_job(self, job: SandboxRunJob) -> None:
		worker: OcrWorker | None = None
		try:
			worker = await self._factory.create_worker(self.core)
			text = await worker.recognize(decode_data_url(job.image), job.mode)
			result = SandboxJobResult(job_id=job.job_id, ok=True, text=text or "")
		except Exception as exc:  # noqa: BLE001
			self._logger.error("OCR job %s failed: %s", job.job_id, exc)
			result = SandboxJobResult(job_id=job.job_id, ok=False, error=str(exc) or exc.__class__.__name__)
		finally:
			if worker is not None:
				await self._release(worker)
		self._announce(result)

	async def _release(self, worker: OcrWorker) -> None:
		try:
			await worker.terminate()
		except Exception as exc:  # noqa: BLE001
			self._logger.warning("Failed to terminate OCR worker: %s", exc)

	async def stop(self) -> None:
		for task in list(self._jobs):
			task.cancel()
		if self._init_task is not None and not self._init_task.done():
			self._init_task.cancel()
		await super().stop()


class LocalOcrBridge:
	"""Coordinator-side view of the sandbox: readiness pushes and pending jobs."""

	def __init__(self, owner: ExecutionContext, sandbox: SandboxWorker) -> None:
		self._owner = owner
		self._sandbox = sandbox
		self.state = ReadinessState.UNINITIALIZED.value
		self.error: str | None = None
		self._announced = asyncio.Event()
		self._pending: dict[str, asyncio.Future] = {}
		self._logger = logging.getLogger(self.__class__.__name__)

	@property
	def ready(self) -> bool:
		return self.state == ReadinessState.READY.value

	async def recognize(self, image: str, mode: int = PSM_SINGLE_LINE) -> str:
		job_id = new_request_id()
		future = asyncio.get_running_loop().create_future()
		self._pending[job_id] = future
		try:
			self._owner.post(self._sandbox, SandboxRunJob(job_id=job_id, image=image, mode=mode))
			result: SandboxJobResult = await future
		finally:
			self._pending.pop(job_id, None)
		if result.ok:
			return result.text or ""
		if result.not_ready:
			raise NotReadyError(result.error or NOT_INITIALIZED)
		raise TransportError("tesseract", result.error or "Tesseract OCR failed")

	async def ping(self) -> str:
		"""Ask the sandbox for its state and wait for the answer."""
		self._announced.clear()
		self._owner.post(self._sandbox, SandboxPing())
		await self._announced.wait()
		return self.state

	def on_ready(self, message: SandboxReady) -> None:
		self.state = message.state
		self.error = message.error
		if message.error and message.state == ReadinessState.FAILED.value:
			self._logger.error("Local OCR engine unavailable: %s", message.error)
		self._announced.set()

	def on_job_result(self, message: SandboxJobResult) -> None:
		future = self._pending.get(message.job_id)
		if future is None or future.done():
			self._logger.debug("Dropping result for unknown job %s", message.job_id)
			return
		future.set_result(message)
