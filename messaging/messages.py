"""Message kinds exchanged between the coordinator, page and sandbox contexts."""


import uuid
from enum import Enum
from typing import Any, Mapping

from pydantic import ValidationError

from schemas import WireModel

PSM_SINGLE_LINE = 7


class MessageKind(str, Enum):
	# page context
	PING = "t2c.ping"
	BEGIN_CAPTURE = "t2c.beginCapture"
	# coordinator
	REDRAW = "t2c.redraw"
	SCREENSHOT = "t2c.screenshot"
	GET_SETTINGS = "ec.getSettings"
	RUN_OCR = "ec.runOcr"
	RUN_PARSE = "ec.runParse"
	DIAG_TEST_OCR = "diag.testOcr"
	DIAG_TEST_PARSE = "diag.testParse"
	# sandbox inbound
	SANDBOX_INITIALIZE = "sandbox.initialize"
	SANDBOX_PING = "sandbox.ping"
	SANDBOX_RUN_JOB = "sandbox.runOcrJob"
	# sandbox outbound
	SANDBOX_READY = "sandbox.ready"
	SANDBOX_JOB_RESULT = "sandbox.jobResult"


class Message(WireModel):
	type: MessageKind


class Ping(Message):
	type: MessageKind = MessageKind.PING


class BeginCapture(Message):
	type: MessageKind = MessageKind.BEGIN_CAPTURE


class Redraw(Message):
	type: MessageKind = MessageKind.REDRAW


class Screenshot(Message):
	type: MessageKind = MessageKind.SCREENSHOT


class GetSettings(Message):
	type: MessageKind = MessageKind.GET_SETTINGS


class RunOcr(Message):
	"""``provider`` falls back to the stored OCR method when omitted."""
	type: MessageKind = MessageKind.RUN_OCR
	provider: str | None = None
	data_url: str = ""
	request_id: str | None = None


class RunParse(Message):
	type: MessageKind = MessageKind.RUN_PARSE
	provider: str | None = None
	text: str = ""
	request_id: str | None = None


class DiagTestOcr(Message):
	type: MessageKind = MessageKind.DIAG_TEST_OCR
	provider: str
	data_url: str = ""


class DiagTestParse(Message):
	type: MessageKind = MessageKind.DIAG_TEST_PARSE
	provider: str
	text: str = ""


class SandboxInitialize(Message):
	type: MessageKind = MessageKind.SANDBOX_INITIALIZE


class SandboxPing(Message):
	type: MessageKind = MessageKind.SANDBOX_PING


class SandboxRunJob(Message):
	type: MessageKind = MessageKind.SANDBOX_RUN_JOB
	job_id: str
	image: str
	mode: int = PSM_SINGLE_LINE


class SandboxReady(Message):
	"""Readiness announcement. ``error`` is set while the engine is unusable."""
	type: MessageKind = MessageKind.SANDBOX_READY
	state: str
	error: str | None = None


class SandboxJobResult(Message):
	type: MessageKind = MessageKind.SANDBOX_JOB_RESULT
	job_id: str
	ok: bool
	text: str | None = None
	error: str | None = None
	not_ready: bool = False


MESSAGE_TYPES: dict[MessageKind, type[Message]] = {
	MessageKind.PING: Ping,
	MessageKind.BEGIN_CAPTURE: BeginCapture,
	MessageKind.REDRAW: Redraw,
	MessageKind.SCREENSHOT: Screenshot,
	MessageKind.GET_SETTINGS: GetSettings,
	MessageKind.RUN_OCR: RunOcr,
	MessageKind.RUN_PARSE: RunParse,
	MessageKind.DIAG_TEST_OCR: DiagTestOcr,
	MessageKind.DIAG_TEST_PARSE: DiagTestParse,
	MessageKind.SANDBOX_INITIALIZE: SandboxInitialize,
	MessageKind.SANDBOX_PING: SandboxPing,
	MessageKind.SANDBOX_RUN_JOB: SandboxRunJob,
	MessageKind.SANDBOX_READY: SandboxReady,
	MessageKind.SANDBOX_JOB_RESULT: SandboxJobResult,
}


def message_kind(raw: Any) -> MessageKind | None:
	"""Read the discriminant of a wire message; ``None`` when absent or unknown."""
	if not isinstance(raw, Mapping):
		return None
	try:
		return MessageKind(raw.get("type"))
	except ValueError:
		return None


def decode_message(raw: Mapping[str, Any]) -> Message:
	"""Validate a wire message of a known kind.

	Raises:
		ValueError: the kind is unknown or the fields do not validate.
	"""
	kind = message_kind(raw)
	if kind is None:
		raise ValueError(f"Unknown message type: {raw.get('type')!r}")
	try:
		return MESSAGE_TYPES[kind].model_validate(dict(raw))
	except ValidationError as exc:
		raise ValueError(f"Malformed {kind.value} message: {exc.error_count()} invalid field(s)") from exc


def new_request_id() -> str:
	return uuid.uuid4().hex


def ok_reply(**fields: Any) -> dict[str, Any]:
	return {"ok": True, **fields}


def failure_reply(exc: BaseException, **fields: Any) -> dict[str, Any]:
	return {"ok": False, "error": str(exc) or exc.__class__.__name__, "errorType": exc.__class__.__name__, **fields}
