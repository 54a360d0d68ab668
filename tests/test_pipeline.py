"""End-to-end capture tests across the coordinator, page and sandbox contexts."""
from __future__ import annotations

import asyncio
import io
import json

import httpx
from PIL import Image

from capture.page import PageContext
from capture.review import FormStatus
from config import MemorySettingsStore
from messaging.context import ExecutionContext
from messaging.messages import GetSettings, MessageKind, ok_reply
from providers.transport import HttpTransport
from runtime.app import Text2CalApp
from runtime.sandbox import EngineCore


class FakeHost:
	def __init__(self, size: tuple[int, int] = (200, 100)) -> None:
		buffer = io.BytesIO()
		Image.new("RGB", size, color=(250, 250, 250)).save(buffer, format="PNG")
		self.frame = buffer.getvalue()
		self.frames = 0
		self.opened: list[str] = []

	async def capture_visible_frame(self) -> bytes:
		self.frames += 1
		return self.frame

	def open_url(self, url: str) -> None:
		self.opened.append(url)


class RecordingWorker:
	def __init__(self, images: list[tuple[int, int]], text: str) -> None:
		self.images = images
		self.text = text

	async def recognize(self, image: bytes, mode: int) -> str:
		self.images.append(Image.open(io.BytesIO(image)).size)
		return self.text

	async def terminate(self) -> None:
		pass


class RecordingFactory:
	def __init__(self, text: str = "Meet tomorrow at 2:30 PM in Room 4") -> None:
		self.text = text
		self.images: list[tuple[int, int]] = []

	async def create_worker(self, core: EngineCore) -> RecordingWorker:
		return RecordingWorker(self.images, self.text)


def _transport() -> HttpTransport:
	def unreachable(request: httpx.Request) -> httpx.Response:
		raise AssertionError(f"unexpected request to {request.url}")

	return HttpTransport(httpx.AsyncClient(transport=httpx.MockTransport(unreachable)))


def _app(store: MemorySettingsStore, host: FakeHost, factory: RecordingFactory, scale: float = 1.0) -> Text2CalApp:
	return Text2CalApp(store, host, factory=factory, transport=_transport(), device_scale=scale)


def test_local_pipeline_end_to_end() -> None:
	"""Local OCR plus the local parser yields a ready, all-day form with empty fields."""
	host = FakeHost()
	factory = RecordingFactory()

	async def scenario():
		async with _app(MemorySettingsStore(), host, factory, scale=2.0) as app:
			assert await app.wait_ready() == "ready"
			form = await app.capture((10, 10), (60, 40))
			calls = app.coordinator.transport.calls
			form.start_date = "2025-09-24"
			url = app.page.open_calendar()
		return form, calls, url

	form, calls, url = asyncio.run(scenario())
	assert form is not None
	assert form.status is FormStatus.READY
	assert form.ocr_text == "Meet tomorrow at 2:30 PM in Room 4"
	assert form.title == ""
	assert form.all_day is True
	assert form.methods == "OCR: tesseract • Parse: local"
	assert factory.images == [(100, 60)]
	assert host.frames == 1
	assert calls == 0
	assert host.opened == [url]
	assert "dates=20250924/20250925" in url


def test_small_selection_makes_no_calls() -> None:
	"""A click-sized drag cancels before any screenshot, OCR or parse request."""
	host = FakeHost()
	factory = RecordingFactory()

	async def scenario():
		async with _app(MemorySettingsStore(), host, factory) as app:
			await app.wait_ready()
			form = await app.capture((30, 30), (35, 70))
			listeners = app.page.document.listener_count
			calls = app.coordinator.transport.calls
		return form, listeners, calls

	form, listeners, calls = asyncio.run(scenario())
	assert form is None
	assert listeners == 0
	assert calls == 0
	assert host.frames == 0
	assert factory.images == []


def test_escape_and_repeated_begin() -> None:
	"""Beginning twice keeps one overlay; Escape removes every listener."""
	async def scenario():
		async with _app(MemorySettingsStore(), FakeHost(), RecordingFactory()) as app:
			await app.coordinator.start_capture()
			started = app.page.running
			first_count = app.page.document.listener_count
			again = app.page.begin_capture()
			second_count = app.page.document.listener_count
			app.page.key_down("Escape")
			return started, again, first_count, second_count, app.page.document.listener_count, app.page.overlay_active

	started, again, first_count, second_count, final_count, active = asyncio.run(scenario())
	assert started is True
	assert again is False
	assert first_count == second_count == 2
	assert final_count == 0
	assert active is False


def test_missing_key_fails_the_form() -> None:
	"""A cloud provider without a key fails the review without touching the network."""
	host = FakeHost()
	store = MemorySettingsStore({"ocrMethod": "openai-vision"})

	async def scenario():
		async with _app(store, host, RecordingFactory()) as app:
			form = await app.capture((0, 0), (50, 50))
			return form, app.coordinator.transport.calls

	form, calls = asyncio.run(scenario())
	assert form.status is FormStatus.FAILED
	assert any("OpenAI API key is missing." in line for line in form.log_lines)
	assert calls == 0


def test_settings_reply_hides_key_values() -> None:
	store = MemorySettingsStore({"openaiKey": "sk-secret", "parseMethod": "openai"})

	async def scenario():
		async with _app(store, FakeHost(), RecordingFactory()) as app:
			return await app.options.request(app.coordinator, GetSettings())

	reply = asyncio.run(scenario())
	assert reply["settings"]["parseMethod"] == "openai"
	assert reply["settings"]["apiKeys"]["openai"] is True
	assert "sk-secret" not in json.dumps(reply)


def test_diagnostics_use_the_explicit_provider() -> None:
	async def scenario():
		async with _app(MemorySettingsStore({"parseMethod": "claude"}), FakeHost(), RecordingFactory()) as app:
			parsed = await app.diagnose_parse("local", "Lunch")
			unknown = await app.diagnose_ocr("bogus", "data:image/png;base64,AA==")
			return parsed, unknown

	parsed, unknown = asyncio.run(scenario())
	assert parsed["ok"] is True
	assert parsed["result"]["hasTime"] is False
	assert parsed["debug"]["provider"] == "local"
	assert unknown == {"ok": False, "error": "Unknown OCR provider: bogus", "errorType": "ConfigurationError"}


def test_stale_reply_leaves_form_untouched() -> None:
	"""An OCR reply for an older request id never reaches the form."""
	async def scenario():
		coordinator = ExecutionContext("coordinator")
		coordinator.router.on(
			MessageKind.GET_SETTINGS,
			lambda message, sender: ok_reply(settings={"ocrMethod": "tesseract", "parseMethod": "local"}),
		)
		coordinator.router.on(MessageKind.RUN_OCR, lambda message, sender: ok_reply(text="old text", requestId="t1"))
		page = PageContext(coordinator)
		coordinator.start()
		page.start()
		form = await page.review_capture("data:image/png;base64,AA==")
		await page.stop()
		await coordinator.stop()
		return form

	form = asyncio.run(scenario())
	assert form.status is FormStatus.PROCESSING
	assert form.ocr_text == ""
	assert any("Discarded stale ocr response" in line for line in form.log_lines)


def test_redraw_rearms_the_overlay() -> None:
	"""The page can ask the coordinator for a fresh selection after cancelling one."""
	async def wait_for_overlay(page: PageContext) -> None:
		while not page.overlay_active:
			await asyncio.sleep(0)

	async def scenario():
		async with _app(MemorySettingsStore(), FakeHost(), RecordingFactory()) as app:
			await app.coordinator.start_capture()
			app.page.key_down("Escape")
			cancelled = app.page.overlay_active
			app.page.request_redraw()
			await asyncio.wait_for(wait_for_overlay(app.page), timeout=5)
			return cancelled, app.page.document.listener_count

	cancelled, listeners = asyncio.run(scenario())
	assert cancelled is False
	assert listeners == 2
