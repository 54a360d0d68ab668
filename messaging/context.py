"""Isolated execution contexts connected only by asynchronous messages."""


import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from errors import TransportError
from messaging.messages import Message
from messaging.router import ReplyChannel, Router


def transfer(payload: Any) -> Any:
	"""Serialize across the boundary so no object is shared between contexts."""
	if payload is None:
		return None
	return json.loads(json.dumps(payload))


@dataclass
class Envelope:
	message: dict[str, Any]
	sender: str | None
	future: asyncio.Future


class ExecutionContext:
	"""A single-threaded context with its own inbox.

	Messages are delivered one at a time by an inbox pump; awaited handlers run as
	separate tasks so a slow provider call never blocks the next message.
	"""

	def __init__(self, name: str, router: Router | None = None) -> None:
		self.name = name
		self.router = router or Router(name)
		self._inbox: asyncio.Queue[Envelope] = asyncio.Queue()
		self._pump: asyncio.Task | None = None
		self._logger = logging.getLogger(f"{self.__class__.__name__}.{name}")

	@property
	def running(self) -> bool:
		return self._pump is not None and not self._pump.done()

	def start(self) -> None:
		if self.running:
			return
		self._pump = asyncio.get_running_loop().create_task(self._drain_inbox())
		self.on_load()

	def on_load(self) -> None:
		"""Hook run once the context is able to receive messages."""

	async def stop(self) -> None:
		self.router.cancel_pending()
		if self._pump is not None:
			self._pump.cancel()
			try:
				await self._pump
			except asyncio.CancelledError:
				pass
			self._pump = None
		while not self._inbox.empty():
			envelope = self._inbox.get_nowait()
			if not envelope.future.done():
				envelope.future.set_result(None)

	def deliver(self, message: Mapping[str, Any], sender: str | None = None) -> asyncio.Future:
		"""Queue a wire message; the future resolves to the reply, or ``None``."""
		future = asyncio.get_running_loop().create_future()
		self._inbox.put_nowait(Envelope(transfer(dict(message)), sender, future))
		return future

	async def request(self, target: "ExecutionContext", message: Message) -> dict[str, Any]:
		"""Fire-and-respond: wait for exactly one reply from ``target``."""
		reply = await target.deliver(message.to_wire(), sender=self.name)
		if reply is None:
			raise TransportError(target.name, f"no response to {message.type.value}")
		return reply

	def post(self, target: "ExecutionContext", message: Message) -> None:
		"""Fire-and-forget: deliver without waiting for any outcome."""
		target.deliver(message.to_wire(), sender=self.name)

	async def _drain_inbox(self) -> None:
		while True:
			envelope = await self._inbox.get()
			self._dispatch(envelope)

	def _dispatch(self, envelope: Envelope) -> None:
		channel = _TransferringChannel(envelope.future)
		keep_open = self.router.route(envelope.message, envelope.sender, channel)
		if not keep_open:
			channel.close()


class _TransferringChannel(ReplyChannel):
	def send(self, response: Any) -> bool:
		return super().send(transfer(response))
