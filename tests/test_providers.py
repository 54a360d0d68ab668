"""Provider adapter tests against a mocked HTTP layer."""
from __future__ import annotations

import asyncio
import json
from datetime import datetime
from types import SimpleNamespace

import httpx
import pytest

from config import ApiKeys
from errors import ConfigurationError, ProtocolError, TransportError
from providers.aliyun_ocr import AliyunOcr
from providers.local import PSM_SINGLE_LINE
from providers.prompts import build_parse_prompt
from providers.qwen_ocr import QwenVisionOcr
from providers.registry import ProviderRegistry
from providers.transport import HttpTransport

DATA_URL = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUg=="
KEYS = ApiKeys(openai="sk-open", claude="sk-claude", gemini="gm-key", google="gv-key")


class FakeEngine:
	def __init__(self, text: str = "Team sync 3pm") -> None:
		self.text = text
		self.jobs: list[tuple[str, int]] = []

	async def recognize(self, image: str, mode: int = PSM_SINGLE_LINE) -> str:
		self.jobs.append((image, mode))
		return self.text


def _registry(handler) -> tuple[ProviderRegistry, HttpTransport, list[httpx.Request]]:
	seen: list[httpx.Request] = []

	def record(request: httpx.Request) -> httpx.Response:
		seen.append(request)
		return handler(request)

	transport = HttpTransport(httpx.AsyncClient(transport=httpx.MockTransport(record)))
	return ProviderRegistry.default(transport, FakeEngine()), transport, seen


def _unreachable(request: httpx.Request) -> httpx.Response:
	raise AssertionError(f"unexpected request to {request.url}")


@pytest.mark.parametrize("provider", ["google-vision", "openai-vision", "claude-vision", "gemini-vision", "qwen-vision"])
def test_missing_ocr_key_fails_before_any_request(provider: str) -> None:
	"""No credential means no network activity at all."""
	registry, transport, seen = _registry(_unreachable)
	with pytest.raises(ConfigurationError, match="API key is missing"):
		asyncio.run(registry.perform_ocr(provider, DATA_URL, ApiKeys()))
	assert transport.calls == 0
	assert seen == []


@pytest.mark.parametrize("provider", ["openai", "gemini", "claude"])
def test_missing_parse_key_fails_before_any_request(provider: str) -> None:
	registry, transport, _ = _registry(_unreachable)
	with pytest.raises(ConfigurationError):
		asyncio.run(registry.perform_parse(provider, "Lunch Friday", ApiKeys()))
	assert transport.calls == 0


def test_missing_aliyun_credentials() -> None:
	registry, _, _ = _registry(_unreachable)
	with pytest.raises(ConfigurationError, match="Aliyun"):
		asyncio.run(registry.perform_ocr("aliyun", DATA_URL, ApiKeys(aliyun_access_key_id="only-id")))


def test_unknown_providers_are_configuration_errors() -> None:
	registry, _, _ = _registry(_unreachable)
	with pytest.raises(ConfigurationError, match="Unknown OCR provider: bogus"):
		registry.ocr_adapter("bogus")
	with pytest.raises(ConfigurationError, match="Unknown parse provider: bogus"):
		registry.parse_adapter("bogus")


def test_tesseract_relays_to_local_engine() -> None:
	engine = FakeEngine("Dentist 9:15")
	transport = HttpTransport(httpx.AsyncClient(transport=httpx.MockTransport(_unreachable)))
	registry = ProviderRegistry.default(transport, engine)
	run = asyncio.run(registry.perform_ocr("tesseract", DATA_URL, ApiKeys()))
	assert run.result.text == "Dentist 9:15"
	assert engine.jobs == [(DATA_URL, PSM_SINGLE_LINE)]
	assert run.debug.provider == "tesseract"


def test_local_parser_is_network_free() -> None:
	"""The local parser returns all-null fields and an all-day flag."""
	registry, transport, _ = _registry(_unreachable)
	run = asyncio.run(registry.perform_parse("local", "Meet tomorrow at 2:30 PM in Room 4", ApiKeys()))
	assert run.result.model_dump() == {"title": None, "start": None, "end": None, "location": None, "has_time": False}
	assert transport.calls == 0


def test_google_vision_prefers_full_text_and_hides_key() -> None:
	def handler(request: httpx.Request) -> httpx.Response:
		assert request.url.params["key"] == "gv-key"
		body = json.loads(request.content)
		assert body["requests"][0]["image"]["content"] == "iVBORw0KGgoAAAANSUhEUg=="
		return httpx.Response(
			200,
			json={"responses": [{"fullTextAnnotation": {"text": "Board meeting"}, "textAnnotations": [{"description": "x"}]}]},
		)

	registry, _, _ = _registry(handler)
	run = asyncio.run(registry.perform_ocr("google-vision", DATA_URL, KEYS))
	assert run.result.text == "Board meeting"
	assert "gv-key" not in (run.debug.endpoint or "")


def test_google_vision_falls_back_to_first_annotation() -> None:
	def handler(request: httpx.Request) -> httpx.Response:
		return httpx.Response(200, json={"responses": [{"textAnnotations": [{"description": "Standup 10am"}]}]})

	registry, _, _ = _registry(handler)
	assert asyncio.run(registry.perform_ocr("google-vision", DATA_URL, KEYS)).result.text == "Standup 10am"


def test_google_vision_accepts_external_image_url() -> None:
	def handler(request: httpx.Request) -> httpx.Response:
		image = json.loads(request.content)["requests"][0]["image"]
		assert image == {"source": {"imageUri": "https://example.com/flyer.png"}}
		return httpx.Response(200, json={"responses": [{}]})

	registry, _, _ = _registry(handler)
	assert asyncio.run(registry.perform_ocr("google-vision", "https://example.com/flyer.png", KEYS)).result.text == ""


def test_google_vision_error_field_carries_request() -> None:
	"""A provider error surfaces with its message and the outbound request attached."""
	def handler(request: httpx.Request) -> httpx.Response:
		return httpx.Response(200, json={"responses": [{"error": {"message": "Bad image data."}}]})

	registry, _, _ = _registry(handler)
	with pytest.raises(TransportError, match="Bad image data") as info:
		asyncio.run(registry.perform_ocr("google-vision", DATA_URL, KEYS))
	assert info.value.debug.provider == "google-vision"


def test_http_error_status_uses_provider_message() -> None:
	def handler(request: httpx.Request) -> httpx.Response:
		return httpx.Response(401, json={"error": {"message": "Incorrect API key provided"}})

	registry, _, _ = _registry(handler)
	with pytest.raises(TransportError, match="Incorrect API key provided") as info:
		asyncio.run(registry.perform_parse("openai", "Lunch", KEYS))
	assert info.value.status_code == 401
	assert info.value.debug is not None


def test_openai_vision_reads_first_choice() -> None:
	def handler(request: httpx.Request) -> httpx.Response:
		assert request.headers["Authorization"] == "Bearer sk-open"
		return httpx.Response(200, json={"choices": [{"message": {"content": "Demo day 5pm"}}]})

	registry, _, _ = _registry(handler)
	run = asyncio.run(registry.perform_ocr("openai-vision", DATA_URL, KEYS))
	assert run.result.text == "Demo day 5pm"
	assert run.debug.payload["messages"][0]["content"][1]["image_url"]["url"] == DATA_URL


def test_openai_parser_requests_json_mode() -> None:
	event = {"title": "Review", "start": "2025-09-23T17:30:00", "end": None, "location": "Room 4", "hasTime": True}

	def handler(request: httpx.Request) -> httpx.Response:
		assert json.loads(request.content)["response_format"] == {"type": "json_object"}
		return httpx.Response(200, json={"choices": [{"message": {"content": json.dumps(event)}}]})

	registry, _, _ = _registry(handler)
	result = asyncio.run(registry.perform_parse("openai", "Review 5:30pm Room 4", KEYS)).result
	assert result.title == "Review"
	assert result.location == "Room 4"
	assert result.has_time is True


def test_gemini_parser_reads_json_part() -> None:
	def handler(request: httpx.Request) -> httpx.Response:
		body = json.loads(request.content)
		assert body["generationConfig"]["response_mime_type"] == "application/json"
		assert request.url.params["key"] == "gm-key"
		text = json.dumps({"title": "Picnic", "start": "2025-10-04", "hasTime": False})
		return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})

	registry, _, _ = _registry(handler)
	result = asyncio.run(registry.perform_parse("gemini", "Picnic Oct 4", KEYS)).result
	assert result.title == "Picnic"
	assert result.start == "2025-10-04"
	assert result.has_time is False


def test_claude_parser_extracts_delimited_json() -> None:
	def handler(request: httpx.Request) -> httpx.Response:
		assert request.headers["x-api-key"] == "sk-claude"
		text = 'Here you go: <json>{"title": "Yoga", "start": "2025-09-24T07:00:00", "hasTime": true}</json>'
		return httpx.Response(200, json={"content": [{"type": "text", "text": text}]})

	registry, _, _ = _registry(handler)
	result = asyncio.run(registry.perform_parse("claude", "Yoga 7am", KEYS)).result
	assert result.title == "Yoga"
	assert result.has_time is True


def test_claude_parser_without_delimiter_is_protocol_error() -> None:
	def handler(request: httpx.Request) -> httpx.Response:
		return httpx.Response(200, json={"content": [{"type": "text", "text": '{"title": "Yoga"}'}]})

	registry, _, _ = _registry(handler)
	with pytest.raises(ProtocolError, match="Valid JSON not found in Claude response."):
		asyncio.run(registry.perform_parse("claude", "Yoga 7am", KEYS))


def test_parse_prompt_embeds_current_date() -> None:
	prompt = build_parse_prompt("Lunch tomorrow", datetime(2025, 9, 23, 12, 0))
	assert "Sep 23 2025" in prompt
	assert "Lunch tomorrow" in prompt
	assert '"hasTime"' in prompt


class SdkResponse:
	"""Mimics a tea model: ``to_map`` returns headers, status and body."""

	def __init__(self, body: dict) -> None:
		self.body = body

	def to_map(self) -> dict:
		return {"statusCode": 200, "body": self.body}


class SdkBody:
	def __init__(self, data: dict) -> None:
		self.data = data

	def to_map(self) -> dict:
		return self.data


ALIYUN_KEYS = ApiKeys(aliyun_access_key_id="ak-id", aliyun_access_key_secret="ak-secret")


def _aliyun(monkeypatch: pytest.MonkeyPatch, response) -> AliyunOcr:
	adapter = AliyunOcr()
	monkeypatch.setattr(adapter, "_call_service", lambda credentials, image: response)
	return adapter


def test_aliyun_prefers_full_text_content(monkeypatch: pytest.MonkeyPatch) -> None:
	data = {"content": "Lunch at noon", "prism_wordsInfo": [{"word": "Lunch", "prob": 99}]}
	adapter = _aliyun(monkeypatch, SdkResponse({"Data": json.dumps(data), "RequestId": "req-1"}))
	run = asyncio.run(adapter.run(DATA_URL, ALIYUN_KEYS))
	assert run.result.text == "Lunch at noon"
	assert run.debug.payload == {"body": "iVBORw0KGgoAAAANSUhEUg=="}
	assert run.debug.endpoint == "ocr-api.cn-hangzhou.aliyuncs.com"


def test_aliyun_word_fallback_drops_low_confidence(monkeypatch: pytest.MonkeyPatch) -> None:
	"""Word probabilities are percentages, so a prob of 1 is noise."""
	data = {"prism_wordsInfo": [{"word": "noise", "prob": 1}, {"word": "Lunch", "prob": 99}, {"word": "12:30", "prob": 50}]}
	adapter = _aliyun(monkeypatch, SdkResponse({"Data": json.dumps(data)}))
	assert asyncio.run(adapter.run(DATA_URL, ALIYUN_KEYS)).result.text == "Lunch\n12:30"


def test_aliyun_reads_body_only_models(monkeypatch: pytest.MonkeyPatch) -> None:
	class BodyOnly:
		body = SdkBody({"Data": {"Content": "Standup 9am"}})

	adapter = _aliyun(monkeypatch, BodyOnly())
	assert asyncio.run(adapter.run(DATA_URL, ALIYUN_KEYS)).result.text == "Standup 9am"


def test_aliyun_invalid_data_is_protocol_error(monkeypatch: pytest.MonkeyPatch) -> None:
	adapter = _aliyun(monkeypatch, SdkResponse({"Data": "{not json"}))
	with pytest.raises(ProtocolError) as info:
		asyncio.run(adapter.run(DATA_URL, ALIYUN_KEYS))
	assert info.value.debug.provider == "aliyun"


def test_aliyun_sdk_failure_is_transport_error(monkeypatch: pytest.MonkeyPatch) -> None:
	adapter = AliyunOcr()

	def fail(credentials, image):
		raise RuntimeError("InvalidAccessKeyId.NotFound")

	monkeypatch.setattr(adapter, "_call_service", fail)
	with pytest.raises(TransportError, match="InvalidAccessKeyId.NotFound") as info:
		asyncio.run(adapter.run(DATA_URL, ALIYUN_KEYS))
	assert info.value.debug.payload == {"body": "iVBORw0KGgoAAAANSUhEUg=="}


def _qwen(monkeypatch: pytest.MonkeyPatch, response) -> QwenVisionOcr:
	adapter = QwenVisionOcr()
	monkeypatch.setattr(adapter, "_call_service", lambda credentials, messages: response)
	return adapter


def test_qwen_reads_first_content_block(monkeypatch: pytest.MonkeyPatch) -> None:
	output = {"choices": [{"message": {"role": "assistant", "content": [{"text": "Dinner 7pm"}]}}]}
	adapter = _qwen(monkeypatch, SimpleNamespace(status_code=200, output=output))
	run = asyncio.run(adapter.run(DATA_URL, ApiKeys(dashscope="ds-key")))
	assert run.result.text == "Dinner 7pm"
	assert run.debug.payload["messages"][0]["content"][0] == {"image": DATA_URL}


def test_qwen_error_status_is_transport_error(monkeypatch: pytest.MonkeyPatch) -> None:
	response = SimpleNamespace(status_code=400, message="InvalidParameter", output=None)
	adapter = _qwen(monkeypatch, response)
	with pytest.raises(TransportError, match="InvalidParameter") as info:
		asyncio.run(adapter.run(DATA_URL, ApiKeys(dashscope="ds-key")))
	assert info.value.status_code == 400
	assert info.value.debug.provider == "qwen-vision"
