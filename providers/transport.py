"""Async HTTP transport shared by the cloud provider adapters."""


import logging
from typing import Any

import httpx

from errors import TransportError

JsonDict = dict[str, Any]


class HttpTransport:
	"""Posts JSON to provider endpoints and turns failures into ``TransportError``.

	No timeout is applied: a hung call stays pending until the connection fails.
	"""

	def __init__(self, client: httpx.AsyncClient | None = None) -> None:
		self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(None))
		self._logger = logging.getLogger(self.__class__.__name__)
		self.calls = 0

	async def post_json(
		self,
		provider: str,
		url: str,
		payload: JsonDict,
		headers: dict[str, str] | None = None,
		params: dict[str, str] | None = None,
	) -> JsonDict:
		self.calls += 1
		self._logger.debug("POST %s for %s", url, provider)
		try:
			response = await self._client.post(url, json=payload, headers=headers, params=params)
		except httpx.HTTPError as exc:
			raise TransportError(provider, f"request failed: {exc}") from exc

		try:
			data = response.json()
		except ValueError:
			data = {}
		if not isinstance(data, dict):
			data = {"data": data}
		if response.is_error:
			raise TransportError(provider, _error_message(data) or f"HTTP {response.status_code}", response.status_code)
		return data

	async def aclose(self) -> None:
		await self._client.aclose()


def _error_message(data: JsonDict) -> str | None:
	error = data.get("error")
	if isinstance(error, dict):
		message = error.get("message")
		return str(message) if message else None
	if isinstance(error, str):
		return error
	return None
