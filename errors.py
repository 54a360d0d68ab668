"""Error taxonomy shared by every execution context."""


class Text2CalError(Exception):
	"""Base class for failures that are reported back across a context boundary.

	``debug`` holds the provider request that failed, when there was one.
	"""

	debug = None


class ConfigurationError(Text2CalError):
	"""A selected provider is unknown or lacks its credential."""


class TransportError(Text2CalError):
	"""An endpoint or peer context failed to deliver a successful response."""

	def __init__(self, provider: str, message: str, status_code: int | None = None) -> None:
		super().__init__(f"{provider}: {message}")
		self.provider = provider
		self.status_code = status_code


class ProtocolError(Text2CalError):
	"""A response arrived but could not be read into the expected shape."""


class StaleResponseError(Text2CalError):
	"""A reply's correlation token no longer matches the active request."""

	def __init__(self, slot: str, expected: str | None, received: str | None) -> None:
		super().__init__(f"Stale {slot} response")
		self.slot = slot
		self.expected = expected
		self.received = received


class NotReadyError(Text2CalError):
	"""The sandboxed OCR engine received a job before initialization finished."""


class RemoteError(Text2CalError):
	"""A peer context answered with a failure envelope."""

	def __init__(self, message: str, error_type: str | None = None) -> None:
		super().__init__(message)
		self.error_type = error_type
