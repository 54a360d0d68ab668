"""Utility helpers for working with captured images and data URLs."""

import base64
import binascii
import io
import re
from pathlib import Path

from PIL import Image

DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[^;,]*)(?P<b64>;base64)?,(?P<data>.*)$", re.DOTALL)
DEFAULT_MIME = "image/png"


def ensure_image_path(image: str | Path) -> Path:
	"""Validate that the provided path exists and points to a file."""
	path = Path(image).expanduser().resolve()
	if not path.exists():
		raise FileNotFoundError(f"Image path not found: {path}")
	if not path.is_file():
		raise ValueError(f"Image path is not a file: {path}")
	return path


def is_data_url(value: object) -> bool:
	return isinstance(value, str) and value.startswith("data:")


def encode_data_url(data: bytes, mime: str = DEFAULT_MIME) -> str:
	"""Inline-encode image bytes for transfer between contexts."""
	return f"data:{mime};base64,{base64.b64encode(data).decode('utf-8')}"


def split_data_url(url: str) -> tuple[str, str]:
	"""Return ``(mime, base64 payload)`` for a data URL."""
	match = DATA_URL_PATTERN.match(url)
	if not match:
		raise ValueError("Not a data URL")
	mime = match.group("mime") or DEFAULT_MIME
	payload = match.group("data")
	if not match.group("b64"):
		payload = base64.b64encode(payload.encode("utf-8")).decode("utf-8")
	return mime, payload


def decode_data_url(url: str) -> bytes:
	_, payload = split_data_url(url)
	try:
		return base64.b64decode(payload, validate=True)
	except binascii.Error as exc:
		raise ValueError(f"Invalid base64 image payload: {exc}") from exc


def open_image(data: bytes) -> Image.Image:
	"""Decode encoded image bytes into a fully loaded Pillow image."""
	image = Image.open(io.BytesIO(data))
	image.load()
	return image


def encode_png(image: Image.Image) -> bytes:
	"""Re-encode an image losslessly."""
	buffer = io.BytesIO()
	image.save(buffer, format="PNG")
	return buffer.getvalue()


def file_to_png(path: Path) -> bytes:
	"""Load any Pillow-readable image file and return it as PNG bytes."""
	with Image.open(path) as image:
		return encode_png(image.convert("RGB") if image.mode not in ("RGB", "RGBA", "L") else image.copy())
