"""Drag-to-select overlay for one capture session."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from capture.geometry import CaptureRect, Point, normalize_rect

Listener = Callable[[Any], None]
PRIMARY_BUTTON = 0
ESCAPE = "Escape"


@dataclass(frozen=True)
class PointerEvent:
	x: float
	y: float
	button: int = PRIMARY_BUTTON


@dataclass(frozen=True)
class KeyEvent:
	key: str


class EventTarget:
	"""Minimal listener registry standing in for the page document."""

	def __init__(self) -> None:
		self._listeners: dict[str, list[Listener]] = {}

	def add_listener(self, event: str, listener: Listener) -> None:
		self._listeners.setdefault(event, []).append(listener)

	def remove_listener(self, event: str, listener: Listener) -> None:
		listeners = self._listeners.get(event, [])
		if listener in listeners:
			listeners.remove(listener)
		if not listeners:
			self._listeners.pop(event, None)

	def dispatch(self, event: str, payload: Any) -> int:
		"""Call the current listeners for ``event``; returns how many ran."""
		listeners = list(self._listeners.get(event, []))
		for listener in listeners:
			listener(payload)
		return len(listeners)

	@property
	def listener_count(self) -> int:
		return sum(len(listeners) for listeners in self._listeners.values())


class OverlayState(str, Enum):
	ARMED = "armed"
	DRAGGING = "dragging"
	CLOSED = "closed"


class SelectionOverlay:
	"""Owns the listeners of a single capture from arming to teardown.

	``on_select`` receives the normalized rectangle; ``on_cancel`` receives a reason
	(``"escape"``, ``"too-small"`` or ``"no-start"``). Once closed the overlay never
	calls back again.
	"""

	def __init__(
		self,
		target: EventTarget,
		device_scale: float,
		on_select: Callable[[CaptureRect], None],
		on_cancel: Callable[[str], None] | None = None,
	) -> None:
		self._target = target
		self._device_scale = device_scale
		self._on_select = on_select
		self._on_cancel = on_cancel
		self._start: Point | None = None
		self._attached: list[tuple[str, Listener]] = []
		self.state = OverlayState.CLOSED
		self.preview: tuple[float, float, float, float] | None = None
		self._logger = logging.getLogger(self.__class__.__name__)

	@property
	def active(self) -> bool:
		return self.state is not OverlayState.CLOSED

	def open(self) -> None:
		if self.active:
			return
		self.state = OverlayState.ARMED
		self._start = None
		self.preview = None
		self._listen("keydown", self._handle_key)
		self._listen("pointerdown", self._handle_down)

	def close(self) -> None:
		for event, listener in self._attached:
			self._target.remove_listener(event, listener)
		self._attached.clear()
		self.state = OverlayState.CLOSED

	def _listen(self, event: str, listener: Listener) -> None:
		self._target.add_listener(event, listener)
		self._attached.append((event, listener))

	def _unlisten(self, event: str, listener: Listener) -> None:
		self._target.remove_listener(event, listener)
		if (event, listener) in self._attached:
			self._attached.remove((event, listener))

	def _handle_key(self, event: KeyEvent) -> None:
		if event.key == ESCAPE and self.active:
			self._cancel("escape")

	def _handle_down(self, event: PointerEvent) -> None:
		if event.button != PRIMARY_BUTTON:
			return
		# one selection per session
		self._unlisten("pointerdown", self._handle_down)
		self._start = Point(event.x, event.y)
		self.state = OverlayState.DRAGGING
		self._listen("pointermove", self._handle_move)
		self._listen("pointerup", self._handle_up)

	def _handle_move(self, event: PointerEvent) -> None:
		if self._start is None:
			return
		self.preview = (
			min(event.x, self._start.x),
			min(event.y, self._start.y),
			abs(event.x - self._start.x),
			abs(event.y - self._start.y),
		)

	def _handle_up(self, event: PointerEvent) -> None:
		start = self._start
		if start is None:
			self._cancel("no-start")
			return
		rect = normalize_rect(start, Point(event.x, event.y), self._device_scale)
		if rect is None:
			self._cancel("too-small")
			return
		self.close()
		self._on_select(rect)

	def _cancel(self, reason: str) -> None:
		self.close()
		self._logger.debug("Capture cancelled: %s", reason)
		if self._on_cancel is not None:
			self._on_cancel(reason)
