"""Aliyun OCR provider implementation."""


import asyncio
import io
import json
from typing import Any

from config import AliyunCredentials, ApiKeys
from errors import ConfigurationError, ProtocolError, TransportError
from providers.base import OcrAdapter, OcrProvider, ProviderRun
from schemas import DebugTrace, OcrText
from utils.image_io import decode_data_url, is_data_url, split_data_url

try:
	from alibabacloud_ocr_api20210707.client import Client as OcrClient
	from alibabacloud_ocr_api20210707 import models as ocr_models
	from alibabacloud_tea_openapi import models as open_api_models
except ImportError:
	OcrClient = None  # type: ignore[assignment]
	ocr_models = None  # type: ignore[assignment]
	open_api_models = None  # type: ignore[assignment]

JsonDict = dict[str, Any]
ENDPOINT_TEMPLATE = "ocr-api.{region}.aliyuncs.com"


class AliyunOcr(OcrAdapter):
	"""RecognizeAdvanced through the Alibaba Cloud SDK.

	The SDK is blocking, so each call runs in a worker thread. The structured response
	carries a full-text ``content`` field; when it is absent the recognized words are
	joined, dropping those under ``min_conf``.
	"""

	provider = OcrProvider.ALIYUN.value
	credential_label = "Aliyun"

	def __init__(self, min_conf: float = 0.5) -> None:
		super().__init__()
		self.min_conf = min_conf

	async def run(self, image: str, credentials: ApiKeys) -> ProviderRun[OcrText]:
		aliyun = credentials.aliyun_credentials()
		if aliyun is None:
			raise ConfigurationError("Aliyun access key id/secret is missing.")
		trace = DebugTrace(
			provider=self.provider,
			endpoint=ENDPOINT_TEMPLATE.format(region=aliyun.region_id),
			model="RecognizeAdvanced",
			payload=self._build_payload(image),
		)
		with self.traced(trace):
			try:
				response = await asyncio.to_thread(self._call_service, aliyun, image)
			except ImportError:
				raise
			except Exception as exc:  # noqa: BLE001
				raise TransportError(self.provider, str(exc)) from exc
			text = self._extract_full_text(self._to_dict(response))
		return ProviderRun(result=OcrText(text=text), debug=trace)

	def _build_payload(self, image: str) -> JsonDict:
		if is_data_url(image):
			_, content = split_data_url(image)
			return {"body": content}
		return {"url": image}

	def _call_service(self, credentials: AliyunCredentials, image: str) -> Any:
		if not all([OcrClient, open_api_models, ocr_models]):
			raise ImportError("Aliyun OCR SDK is not installed. Please install alibabacloud-ocr-api20210707.")
		config = open_api_models.Config(
			access_key_id=credentials.access_key_id,
			access_key_secret=credentials.access_key_secret,
			region_id=credentials.region_id,
		)
		config.endpoint = ENDPOINT_TEMPLATE.format(region=credentials.region_id)
		client = OcrClient(config)
		if is_data_url(image):
			request = ocr_models.RecognizeAdvancedRequest(body=io.BytesIO(decode_data_url(image)))
		else:
			request = ocr_models.RecognizeAdvancedRequest(url=image)
		return client.recognize_advanced(request)

	def _to_dict(self, response: Any) -> JsonDict:
		if hasattr(response, "to_map"):
			return response.to_map()
		if hasattr(response, "body") and hasattr(response.body, "to_map"):
			return {"body": response.body.to_map()}
		if isinstance(response, dict):
			return response
		return {"body": response} if response is not None else {}

	def _extract_full_text(self, payload: JsonDict) -> str:
		data = self._extract_data(payload)
		content = data.get("content") or data.get("Content")
		if isinstance(content, str) and content.strip():
			return content.strip()
		lines = [
			self._extract_text(item)
			for item in self._collect_candidates(data)
			if self._confident(item)
		]
		return "\n".join(line for line in lines if line)

	def _extract_data(self, payload: JsonDict) -> JsonDict:
		body = payload.get("body") if isinstance(payload, dict) else None
		data = body.get("Data", body) if isinstance(body, dict) else payload
		if isinstance(data, str):
			try:
				data = json.loads(data)
			except json.JSONDecodeError as exc:
				raise ProtocolError(f"aliyun: Data is not valid JSON: {exc.msg}") from exc
		return data if isinstance(data, dict) else {}

	def _collect_candidates(self, data: JsonDict) -> list[JsonDict]:
		candidates: list[JsonDict] = []
		for key in ("prism_wordsInfo", "PrismWordsInfo", "Results", "Lines", "Blocks"):
			items = data.get(key)
			if isinstance(items, list):
				candidates.extend(item for item in items if isinstance(item, dict))
		return candidates

	def _extract_text(self, item: JsonDict) -> str:
		for key in ("word", "Word", "Text", "Content", "text"):
			value = item.get(key)
			if isinstance(value, str) and value.strip():
				return value.strip()
		return ""

	def _confident(self, item: JsonDict) -> bool:
		for key in ("prob", "Prob"):
			value = item.get(key)
			if isinstance(value, (int, float)):
				# word probabilities are always on a 0-100 scale
				return float(value) / 100.0 >= self.min_conf
		for key in ("Score", "Confidence"):
			value = item.get(key)
			if isinstance(value, (int, float)):
				return float(value) >= self.min_conf
		return True
