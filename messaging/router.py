"""Per-context message dispatch.

A router owns a closed table of handlers keyed by ``MessageKind``. Synchronous
handlers answer immediately and the reply channel closes. Awaited handlers keep the
channel open until their coroutine finishes. Anything else is reported as not handled
and the sender gets no response. Exceptions never leave the router: they become a
``{"ok": False, "error": ...}`` reply.
"""


import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping

from messaging.messages import Message, MessageKind, decode_message, failure_reply, message_kind

Reply = dict[str, Any] | None
SyncHandler = Callable[[Message, str | None], Reply]
AsyncHandler = Callable[[Message, str | None], Awaitable[Reply]]

NOT_HANDLED = False
KEEP_OPEN = True


class ReplyChannel:
	"""Continuation for one reply. Only the first send or close takes effect."""

	def __init__(self, future: asyncio.Future) -> None:
		self._future = future

	@property
	def closed(self) -> bool:
		return self._future.done()

	def send(self, response: Reply) -> bool:
		if self._future.done():
			return False
		self._future.set_result(response)
		return True

	def close(self) -> None:
		if not self._future.done():
			self._future.set_result(None)


@dataclass(frozen=True)
class Route:
	handler: SyncHandler | AsyncHandler
	awaited: bool


class Router:
	"""Dispatches wire messages to the handlers registered for their kind."""

	def __init__(self, name: str) -> None:
		self.name = name
		self._routes: dict[MessageKind, Route] = {}
		self._pending: set[asyncio.Task] = set()
		self._logger = logging.getLogger(f"{self.__class__.__name__}.{name}")

	def on(self, kind: MessageKind, handler: SyncHandler) -> None:
		"""Register a synchronous acknowledgement handler."""
		self._routes[kind] = Route(handler, awaited=False)

	def on_awaited(self, kind: MessageKind, handler: AsyncHandler) -> None:
		"""Register a handler whose reply depends on awaited work."""
		self._routes[kind] = Route(handler, awaited=True)

	@property
	def kinds(self) -> frozenset[MessageKind]:
		return frozenset(self._routes)

	def route(self, raw: Mapping[str, Any], sender: str | None, reply: ReplyChannel) -> bool:
		"""Dispatch one message. Returns ``KEEP_OPEN`` while an awaited handler runs."""
		kind = message_kind(raw)
		route = self._routes.get(kind) if kind is not None else None
		if route is None:
			self._logger.debug("Unhandled message %r from %s", raw.get("type") if isinstance(raw, Mapping) else raw, sender)
			return NOT_HANDLED

		try:
			message = decode_message(raw)
		except ValueError as exc:
			reply.send(failure_reply(exc))
			return NOT_HANDLED

		if route.awaited:
			task = asyncio.get_running_loop().create_task(self._run_awaited(route, message, sender, reply))
			self._pending.add(task)
			task.add_done_callback(self._pending.discard)
			return KEEP_OPEN

		try:
			reply.send(route.handler(message, sender))
		except Exception as exc:  # noqa: BLE001
			self._logger.exception("Handler for %s failed", message.type.value)
			reply.send(failure_reply(exc))
		return NOT_HANDLED

	async def _run_awaited(self, route: Route, message: Message, sender: str | None, reply: ReplyChannel) -> None:
		try:
			response = await route.handler(message, sender)
		except asyncio.CancelledError:
			reply.close()
			raise
		except Exception as exc:  # noqa: BLE001
			self._logger.error("%s error: %s", message.type.value, exc)
			response = failure_reply(exc, **_echo(message))
		try:
			reply.send(response)
		except (TypeError, ValueError) as exc:
			self._logger.error("%s reply could not be transferred: %s", message.type.value, exc)
			reply.send(failure_reply(exc, **_echo(message)))
		finally:
			reply.close()

	def cancel_pending(self) -> None:
		for task in list(self._pending):
			task.cancel()


def _echo(message: Message) -> dict[str, Any]:
	request_id = getattr(message, "request_id", None)
	return {"requestId": request_id} if request_id is not None else {}
