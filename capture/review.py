"""Editable review form and per-slot stale-reply suppression.

The form is a leaf: it only receives results that the page context obtained from the
coordinator. It never calls a provider.
"""


import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Mapping
from urllib.parse import quote

from errors import StaleResponseError
from messaging.messages import new_request_id
from schemas import ParsedEvent
from utils.redaction import sanitize_for_log

CALENDAR_URL = "https://calendar.google.com/calendar/render?action=TEMPLATE"
DEFAULT_TITLE = "New Event"
EVENT_DETAILS = "Created by Text2Cal"
READY_MESSAGE = "Ready - review and edit as needed"
PROCESSING_MESSAGE = "Processing…"
FAILED_MESSAGE = "Processing failed - check log for details"
MAX_LOG_LINES = 500


class RequestSlots:
	"""Latest correlation token per request slot (``"ocr"``, ``"parse"``)."""

	def __init__(self) -> None:
		self._latest: dict[str, str] = {}

	def issue(self, slot: str) -> str:
		token = new_request_id()
		self._latest[slot] = token
		return token

	def current(self, slot: str) -> str | None:
		return self._latest.get(slot)

	def accept(self, slot: str, reply: Mapping[str, Any]) -> Mapping[str, Any]:
		"""Return ``reply`` when it answers the latest request for ``slot``.

		Raises:
			StaleResponseError: a newer request was issued since.
		"""
		expected = self._latest.get(slot)
		received = reply.get("requestId")
		if expected is None or received != expected:
			raise StaleResponseError(slot, expected, received)
		return reply


class FormStatus(str, Enum):
	IDLE = "idle"
	PROCESSING = "processing"
	READY = "ready"
	FAILED = "failed"


@dataclass
class ReviewForm:
	"""State of the review form for one capture."""

	image_url: str = ""
	title: str = ""
	location: str = ""
	start_date: str = ""
	start_time: str = ""
	end_date: str = ""
	end_time: str = ""
	all_day: bool = False
	ocr_text: str = ""
	methods: str = ""
	status: FormStatus = FormStatus.IDLE
	status_message: str = ""
	log_lines: list[str] = field(default_factory=list)

	def __post_init__(self) -> None:
		self._logger = logging.getLogger(self.__class__.__name__)

	def begin(self, image_url: str) -> None:
		self.image_url = image_url
		self.status = FormStatus.PROCESSING
		self.status_message = PROCESSING_MESSAGE
		self.log("=== PROCESSING START ===")

	def show_methods(self, ocr_method: str, parse_method: str) -> None:
		self.methods = f"OCR: {ocr_method} • Parse: {parse_method}"

	def apply_ocr_text(self, text: str) -> None:
		self.ocr_text = text
		self.log(f"OCR completed. Extracted {len(text)} characters")

	def apply_event(self, event: ParsedEvent) -> None:
		self.title = event.title or ""
		self.location = event.location or ""
		start = _parse_local(event.start)
		end = _parse_local(event.end)
		if event.start and start is None:
			self.log(f"Unreadable start value: {event.start!r}")
		if start is not None:
			self.start_date, self.start_time = _split(start)
		if end is not None:
			self.end_date, self.end_time = _split(end)
		# hasTime False wins over any time of day carried by start/end
		self.set_all_day(event.has_time is False)
		self.log(f'Final result: title="{event.title}", hasTime={event.has_time}, location="{event.location}"')

	def set_all_day(self, on: bool) -> None:
		self.all_day = on
		if on:
			self.start_time = ""
			self.end_time = ""

	def finish(self) -> None:
		self.status = FormStatus.READY
		self.status_message = READY_MESSAGE
		self.log("=== PROCESSING COMPLETE ===")

	def fail(self, message: str) -> None:
		"""Switch to the failed state. Fields already filled in are kept."""
		self.status = FormStatus.FAILED
		self.status_message = FAILED_MESSAGE
		self.log("=== PROCESSING ERROR ===")
		self.log(f"Error: {message}")

	def log(self, message: str) -> None:
		line = f"[{datetime.now().strftime('%H:%M:%S')}] {message}"
		self._logger.info(message)
		self.log_lines.append(line)
		del self.log_lines[:-MAX_LOG_LINES]

	def log_debug(self, label: str, trace: Mapping[str, Any] | None) -> None:
		if trace:
			self.log(f"{label}: {sanitize_for_log(trace)}")

	def calendar_url(self) -> str:
		"""Google Calendar template link for the current field values.

		Raises:
			ValueError: the start date (and, for timed events, time) is not set.
		"""
		title = self.title or DEFAULT_TITLE
		url = (
			f"{CALENDAR_URL}&text={quote(title, safe='')}"
			f"&location={quote(self.location, safe='')}"
			f"&details={quote(EVENT_DETAILS, safe='')}"
		)
		if self.all_day:
			if not self.start_date:
				raise ValueError("Please set a start date for an all-day event")
			start = date.fromisoformat(self.start_date)
			end = date.fromisoformat(self.end_date or self.start_date) + timedelta(days=1)
			return f"{url}&dates={start:%Y%m%d}/{end:%Y%m%d}"

		if not self.start_date or not self.start_time:
			raise ValueError('Please set start time, end date, and end time, or check "All-day"')
		end_date = self.end_date or self.start_date
		end_time = self.end_time or self.start_time
		return (
			f"{url}&dates={self.start_date.replace('-', '')}T{self.start_time.replace(':', '')}00"
			f"/{end_date.replace('-', '')}T{end_time.replace(':', '')}00"
		)

	def open_calendar(self, opener: Callable[[str], Any]) -> str:
		url = self.calendar_url()
		opener(url)
		return url

	def snapshot(self) -> dict[str, Any]:
		return {
			"title": self.title,
			"location": self.location,
			"startDate": self.start_date,
			"startTime": self.start_time,
			"endDate": self.end_date,
			"endTime": self.end_time,
			"allDay": self.all_day,
			"ocrText": self.ocr_text,
			"methods": self.methods,
			"status": self.status.value,
			"statusMessage": self.status_message,
		}


def _parse_local(value: str | None) -> datetime | None:
	if not value:
		return None
	try:
		moment = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
	except ValueError:
		return None
	if moment.tzinfo is not None:
		moment = moment.astimezone().replace(tzinfo=None)
	return moment


def _split(moment: datetime) -> tuple[str, str]:
	return moment.strftime("%Y-%m-%d"), moment.strftime("%H:%M")
