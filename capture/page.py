"""Page context: selection overlay, local crop and the review session."""


import asyncio
import logging
from typing import Any, Callable, Mapping

from capture.geometry import CaptureRect, crop_frame
from capture.overlay import EventTarget, KeyEvent, PointerEvent, SelectionOverlay
from capture.review import RequestSlots, ReviewForm
from config import DEFAULT_OCR_METHOD, DEFAULT_PARSE_METHOD
from errors import RemoteError, StaleResponseError
from messaging.context import ExecutionContext
from messaging.messages import GetSettings, Message, MessageKind, Redraw, RunOcr, RunParse, Screenshot, ok_reply
from messaging.router import Router
from schemas import ParsedEvent
from utils.image_io import decode_data_url, encode_data_url


class PageContext(ExecutionContext):
	"""Capture and review UI for one page.

	At most one overlay exists at a time; every capture gets a fresh ``ReviewForm``.
	Correlation slots are shared across captures so a reply to an older capture can
	never touch the form of a newer one.
	"""

	def __init__(
		self,
		coordinator: ExecutionContext,
		device_scale: float = 1.0,
		name: str = "page",
		opener: Callable[[str], Any] | None = None,
	) -> None:
		super().__init__(name, Router(name))
		self.coordinator = coordinator
		self.device_scale = device_scale
		self.opener = opener
		self.document = EventTarget()
		self.slots = RequestSlots()
		self.review: ReviewForm | None = None
		self.last_error: str | None = None
		self._overlay: SelectionOverlay | None = None
		self._tasks: set[asyncio.Task] = set()
		self._logger = logging.getLogger(self.__class__.__name__)
		self.router.on(MessageKind.PING, self._on_ping)
		self.router.on(MessageKind.BEGIN_CAPTURE, self._on_begin_capture)
		self.router.on(MessageKind.REDRAW, self._on_begin_capture)

	def _on_ping(self, message: Message, sender: str | None) -> dict[str, Any]:
		return ok_reply()

	def _on_begin_capture(self, message: Message, sender: str | None) -> dict[str, Any]:
		self.begin_capture()
		return ok_reply()

	@property
	def overlay_active(self) -> bool:
		return self._overlay is not None and self._overlay.active

	def begin_capture(self) -> bool:
		"""Arm a selection overlay. Returns False when one is already active."""
		if self.overlay_active:
			return False
		self._overlay = SelectionOverlay(self.document, self.device_scale, self._on_select, self._on_cancel)
		self._overlay.open()
		return True

	def pointer_down(self, x: float, y: float, button: int = 0) -> None:
		self.document.dispatch("pointerdown", PointerEvent(x, y, button))

	def pointer_move(self, x: float, y: float) -> None:
		self.document.dispatch("pointermove", PointerEvent(x, y))

	def pointer_up(self, x: float, y: float) -> None:
		self.document.dispatch("pointerup", PointerEvent(x, y))

	def key_down(self, key: str) -> None:
		self.document.dispatch("keydown", KeyEvent(key))

	def _on_cancel(self, reason: str) -> None:
		self._overlay = None
		self._logger.info("Capture cancelled (%s)", reason)

	def _on_select(self, rect: CaptureRect) -> None:
		self._overlay = None
		task = asyncio.get_running_loop().create_task(self.process_selection(rect))
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)

	async def settle(self) -> None:
		"""Wait until every capture started so far has finished."""
		while self._tasks:
			await asyncio.gather(*list(self._tasks), return_exceptions=True)

	async def process_selection(self, rect: CaptureRect) -> ReviewForm | None:
		try:
			image_url = await self.capture_region(rect)
		except Exception as exc:  # noqa: BLE001
			self.last_error = str(exc)
			self._logger.error("Capture error: %s", exc)
			return None
		return await self.review_capture(image_url)

	async def capture_region(self, rect: CaptureRect) -> str:
		reply = await self.request(self.coordinator, Screenshot())
		if not reply.get("ok") or not reply.get("dataUrl"):
			raise RemoteError(reply.get("error") or "screenshot failed", reply.get("errorType"))
		cropped = await asyncio.to_thread(crop_frame, decode_data_url(reply["dataUrl"]), rect)
		return encode_data_url(cropped)

	async def review_capture(self, image_url: str) -> ReviewForm:
		form = ReviewForm()
		self.review = form
		form.begin(image_url)
		try:
			ocr_method, parse_method = await self._load_methods(form)
			text = await self.run_ocr(form, ocr_method, image_url)
			form.apply_ocr_text(text)
			event = await self.run_parse(form, parse_method, text)
			form.apply_event(event)
			form.finish()
		except StaleResponseError as exc:
			form.log(f"Discarded stale {exc.slot} response")
		except Exception as exc:  # noqa: BLE001
			form.fail(str(exc))
		return form

	async def _load_methods(self, form: ReviewForm) -> tuple[str, str]:
		try:
			reply = await self.request(self.coordinator, GetSettings())
		except Exception as exc:  # noqa: BLE001
			reply = {"ok": False, "error": str(exc)}
		settings = reply.get("settings") if reply.get("ok") else None
		if isinstance(settings, Mapping):
			ocr_method = settings.get("ocrMethod") or DEFAULT_OCR_METHOD
			parse_method = settings.get("parseMethod") or DEFAULT_PARSE_METHOD
			form.log(f"Settings loaded: OCR={ocr_method}, Parse={parse_method}")
			form.log(f"Available API keys: {settings.get('apiKeys')}")
		else:
			ocr_method, parse_method = DEFAULT_OCR_METHOD, DEFAULT_PARSE_METHOD
			form.log(f"Failed to get settings: {reply.get('error')}")
			form.log(f"Using default settings: OCR={ocr_method}, Parse={parse_method}")
		form.show_methods(ocr_method, parse_method)
		return ocr_method, parse_method

	async def run_ocr(self, form: ReviewForm, provider: str, image_url: str) -> str:
		token = self.slots.issue("ocr")
		reply = await self.request(self.coordinator, RunOcr(provider=provider, data_url=image_url, request_id=token))
		self._accept(form, "ocr", reply, "OCR request debug")
		return str(reply.get("text") or "")

	async def run_parse(self, form: ReviewForm, provider: str, text: str) -> ParsedEvent:
		token = self.slots.issue("parse")
		reply = await self.request(self.coordinator, RunParse(provider=provider, text=text, request_id=token))
		self._accept(form, "parse", reply, "Parse request debug")
		return ParsedEvent.model_validate(reply.get("result") or {})

	def _accept(self, form: ReviewForm, slot: str, reply: Mapping[str, Any], label: str) -> None:
		self.slots.accept(slot, reply)
		form.log_debug(label, reply.get("debug"))
		if not reply.get("ok"):
			raise RemoteError(reply.get("error") or f"{slot} failed", reply.get("errorType"))

	def request_redraw(self) -> None:
		"""Ask the coordinator to start a fresh selection on this page."""
		self.post(self.coordinator, Redraw())

	def open_calendar(self) -> str:
		if self.review is None:
			raise RuntimeError("No review form is open.")
		if self.opener is None:
			return self.review.calendar_url()
		return self.review.open_calendar(self.opener)

	async def stop(self) -> None:
		for task in list(self._tasks):
			task.cancel()
		if self._overlay is not None:
			self._overlay.close()
			self._overlay = None
		await super().stop()
