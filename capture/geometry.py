"""Selection rectangle normalization and device-pixel cropping."""

import math
from dataclasses import dataclass

from utils.image_io import encode_png, open_image

MIN_SELECTION_SIZE = 10


@dataclass(frozen=True)
class Point:
	x: float
	y: float


@dataclass(frozen=True)
class CaptureRect:
	"""Selection in logical viewport pixels plus the device scale at capture time."""
	x: float
	y: float
	width: float
	height: float
	device_scale: float = 1.0

	def __post_init__(self) -> None:
		if not self.device_scale > 0:
			raise ValueError(f"device scale must be positive, got {self.device_scale}")


@dataclass(frozen=True)
class CropBox:
	"""Source box in physical pixels."""
	left: int
	top: int
	width: int
	height: int

	def as_pillow_box(self) -> tuple[int, int, int, int]:
		return (self.left, self.top, self.left + self.width, self.top + self.height)


def normalize_rect(start: Point, end: Point, device_scale: float = 1.0) -> CaptureRect | None:
	"""Top-left normalized rectangle between two pointer positions.

	Returns ``None`` for selections under ``MIN_SELECTION_SIZE`` in either dimension;
	callers treat that as a cancelled capture, not a failure.
	"""
	width = abs(end.x - start.x)
	height = abs(end.y - start.y)
	if width < MIN_SELECTION_SIZE or height < MIN_SELECTION_SIZE:
		return None
	return CaptureRect(
		x=min(start.x, end.x),
		y=min(start.y, end.y),
		width=width,
		height=height,
		device_scale=device_scale,
	)


def crop_box(rect: CaptureRect, image_size: tuple[int, int]) -> CropBox:
	# floor keeps the box inside the frame
	scale = rect.device_scale
	left = max(0, math.floor(rect.x * scale))
	top = max(0, math.floor(rect.y * scale))
	width = max(1, math.floor(rect.width * scale))
	height = max(1, math.floor(rect.height * scale))

	image_width, image_height = image_size
	left = min(left, max(0, image_width - 1))
	top = min(top, max(0, image_height - 1))
	width = max(1, min(width, image_width - left))
	height = max(1, min(height, image_height - top))
	return CropBox(left=left, top=top, width=width, height=height)


def crop_frame(frame: bytes, rect: CaptureRect) -> bytes:
	"""Crop an encoded full-frame image to ``rect`` and re-encode it as PNG."""
	image = open_image(frame)
	box = crop_box(rect, image.size)
	return encode_png(image.crop(box.as_pillow_box()))
