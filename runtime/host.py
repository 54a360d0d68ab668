"""Host environment services: full-frame screenshots and opening links."""

import asyncio
import webbrowser
from pathlib import Path
from typing import Protocol

from PIL import ImageGrab

from utils.image_io import encode_png, ensure_image_path, file_to_png


class HostEnvironment(Protocol):
	async def capture_visible_frame(self) -> bytes:
		"""Return the visible frame as encoded PNG bytes."""
		...

	def open_url(self, url: str) -> None:
		...


class ImageFileHost:
	"""Treats an image file as the visible viewport."""

	def __init__(self, frame: str | Path) -> None:
		self.frame = ensure_image_path(frame)

	async def capture_visible_frame(self) -> bytes:
		return await asyncio.to_thread(file_to_png, self.frame)

	def open_url(self, url: str) -> None:
		webbrowser.open_new_tab(url)


class ScreenGrabHost:
	"""Grabs the primary screen at physical resolution."""

	async def capture_visible_frame(self) -> bytes:
		image = await asyncio.to_thread(ImageGrab.grab)
		return encode_png(image)

	def open_url(self, url: str) -> None:
		webbrowser.open_new_tab(url)
