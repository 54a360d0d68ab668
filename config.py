"""Application configuration and settings resolution for Text2Cal."""


import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final, Iterable, Mapping, Protocol

from dotenv import load_dotenv

ENV_FILE: Final[str] = ".env"
DEFAULT_REGION: Final[str] = "cn-hangzhou"
DEFAULT_LOG_LEVEL: Final[int] = logging.INFO
DEFAULT_OCR_METHOD: Final[str] = "tesseract"
DEFAULT_PARSE_METHOD: Final[str] = "local"

# Storage key -> environment variable used by EnvSettingsStore.
SETTINGS_ENV_KEYS: Final[dict[str, str]] = {
	"ocrMethod": "T2C_OCR_METHOD",
	"parseMethod": "T2C_PARSE_METHOD",
	"openaiKey": "OPENAI_API_KEY",
	"claudeKey": "ANTHROPIC_API_KEY",
	"geminiKey": "GEMINI_API_KEY",
	"googleKey": "GOOGLE_API_KEY",
	"dashscopeKey": "DASHSCOPE_API_KEY",
	"aliyunAccessKeyId": "ALIBABA_CLOUD_ACCESS_KEY_ID",
	"aliyunAccessKeySecret": "ALIBABA_CLOUD_ACCESS_KEY_SECRET",
	"aliyunRegion": "ALIBABA_CLOUD_REGION",
}
SETTINGS_KEYS: Final[tuple[str, ...]] = tuple(SETTINGS_ENV_KEYS)


@dataclass(frozen=True)
class AliyunCredentials:
	"""Container for Aliyun credential details."""
	access_key_id: str
	access_key_secret: str
	region_id: str = DEFAULT_REGION


@dataclass(frozen=True)
class DashScopeCredentials:
	"""Container for DashScope credential details."""
	api_key: str


@dataclass(frozen=True)
class ApiKeys:
	"""Credentials for every cloud provider. Empty strings mean "not configured"."""
	openai: str = ""
	claude: str = ""
	gemini: str = ""
	google: str = ""
	dashscope: str = ""
	aliyun_access_key_id: str = ""
	aliyun_access_key_secret: str = ""
	aliyun_region: str = DEFAULT_REGION

	def aliyun_credentials(self) -> AliyunCredentials | None:
		if self.aliyun_access_key_id and self.aliyun_access_key_secret:
			return AliyunCredentials(
				access_key_id=self.aliyun_access_key_id,
				access_key_secret=self.aliyun_access_key_secret,
				region_id=self.aliyun_region or DEFAULT_REGION,
			)
		return None

	def presence(self) -> dict[str, bool]:
		"""Which keys are set, without exposing their values."""
		return {
			"openai": bool(self.openai),
			"claude": bool(self.claude),
			"gemini": bool(self.gemini),
			"google": bool(self.google),
			"dashscope": bool(self.dashscope),
			"aliyun": self.aliyun_credentials() is not None,
		}


@dataclass(frozen=True)
class Settings:
	"""Read-only snapshot of the user's provider choices and credentials."""
	ocr_method: str = DEFAULT_OCR_METHOD
	parse_method: str = DEFAULT_PARSE_METHOD
	api_keys: ApiKeys = field(default_factory=ApiKeys)

	@classmethod
	def from_mapping(cls, values: Mapping[str, Any]) -> "Settings":
		def text(key: str, default: str = "") -> str:
			value = values.get(key)
			return str(value).strip() if value else default

		return cls(
			ocr_method=text("ocrMethod", DEFAULT_OCR_METHOD),
			parse_method=text("parseMethod", DEFAULT_PARSE_METHOD),
			api_keys=ApiKeys(
				openai=text("openaiKey"),
				claude=text("claudeKey"),
				gemini=text("geminiKey"),
				google=text("googleKey"),
				dashscope=text("dashscopeKey"),
				aliyun_access_key_id=text("aliyunAccessKeyId"),
				aliyun_access_key_secret=text("aliyunAccessKeySecret"),
				aliyun_region=text("aliyunRegion", DEFAULT_REGION),
			),
		)

	def describe(self) -> dict[str, Any]:
		return {
			"ocrMethod": self.ocr_method,
			"parseMethod": self.parse_method,
			"apiKeys": self.api_keys.presence(),
		}


class SettingsStore(Protocol):
	"""Persistent key-value store owned by the configuration surface."""

	async def get(self, keys: Iterable[str]) -> dict[str, Any]:
		...


class MemorySettingsStore:
	"""Dictionary-backed store, used by tests and by the CLI overrides."""

	def __init__(self, values: Mapping[str, Any] | None = None) -> None:
		self._values: dict[str, Any] = dict(values or {})

	async def get(self, keys: Iterable[str]) -> dict[str, Any]:
		return {key: self._values[key] for key in keys if key in self._values}

	def set(self, **values: Any) -> None:
		self._values.update(values)


class EnvSettingsStore:
	"""Store backed by environment variables, optionally seeded from a dotenv file."""

	def __init__(self, env_file: str | Path | None = ENV_FILE) -> None:
		self._env_file = env_file

	async def get(self, keys: Iterable[str]) -> dict[str, Any]:
		if self._env_file:
			load_dotenv(self._env_file)
		values: dict[str, Any] = {}
		for key in keys:
			env_name = SETTINGS_ENV_KEYS.get(key)
			value = os.getenv(env_name) if env_name else None
			if value:
				values[key] = value
		return values


async def resolve_settings(store: SettingsStore) -> Settings:
	"""Read a fresh settings snapshot. Never cached across operations."""
	values = await store.get(SETTINGS_KEYS)
	return Settings.from_mapping(values)


@dataclass(frozen=True)
class AppConfig:
	"""Aggregate configuration for the CLI runtime."""
	env_file: str
	log_level: int = DEFAULT_LOG_LEVEL


def load_config() -> AppConfig:
	"""Load environment-based configuration values.

	Returns:
		AppConfig: Parsed runtime configuration.
	"""
	env_file = os.getenv("T2C_ENV_FILE", ENV_FILE)
	load_dotenv(env_file)
	level_name = os.getenv("T2C_LOG_LEVEL", "").upper()
	level = logging.getLevelName(level_name) if level_name else DEFAULT_LOG_LEVEL
	if not isinstance(level, int):
		level = DEFAULT_LOG_LEVEL
	return AppConfig(env_file=env_file, log_level=level)


def configure_logging(level: int = DEFAULT_LOG_LEVEL) -> None:
	"""Configure the root logger for the application."""
	logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
