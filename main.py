"""Command-line interface for Text2Cal."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any

from config import SETTINGS_KEYS, AppConfig, EnvSettingsStore, MemorySettingsStore, configure_logging, load_config
from runtime.app import Text2CalApp
from runtime.host import ImageFileHost, ScreenGrabHost
from utils.image_io import encode_data_url, ensure_image_path, file_to_png
from utils.redaction import sanitize_for_log


def parse_point(value: str) -> tuple[float, float]:
	"""Parse an ``X,Y`` pair of logical pixel coordinates."""
	try:
		x, y = (float(part) for part in value.split(","))
	except ValueError:
		raise argparse.ArgumentTypeError(f"Expected X,Y but got {value!r}") from None
	return x, y


def parse_arguments(argv: list[str] | None = None) -> argparse.Namespace:
	"""Parse command-line arguments."""
	parser = argparse.ArgumentParser(description="Capture a screen region and turn its text into a calendar event")
	parser.add_argument("--ocr", help="Override the configured OCR method")
	parser.add_argument("--parse", help="Override the configured parse method")
	commands = parser.add_subparsers(dest="command", required=True)

	capture = commands.add_parser("capture", help="Select a region of a frame and review the parsed event")
	capture.add_argument("--image", help="Image file used as the visible frame (default: grab the screen)")
	capture.add_argument("--start", type=parse_point, required=True, help="Drag start as X,Y")
	capture.add_argument("--end", type=parse_point, required=True, help="Drag end as X,Y")
	capture.add_argument("--scale", type=float, default=1.0, help="Device pixel ratio of the frame")
	capture.add_argument("--open", action="store_true", help="Open the calendar link in a browser")

	ocr = commands.add_parser("ocr", help="Run one OCR provider on an image")
	ocr.add_argument("--provider", required=True, help="OCR provider identifier")
	ocr.add_argument("--image", required=True, help="Path to the image file")

	parse = commands.add_parser("parse", help="Run one parse provider on text")
	parse.add_argument("--provider", required=True, help="Parse provider identifier")
	parse.add_argument("--text", required=True, help="Text to extract the event from")
	return parser.parse_args(argv)


async def build_store(args: argparse.Namespace, config: AppConfig) -> MemorySettingsStore:
	"""Snapshot the environment settings and apply command-line overrides."""
	values = await EnvSettingsStore(config.env_file).get(SETTINGS_KEYS)
	store = MemorySettingsStore(values)
	if args.ocr:
		store.set(ocrMethod=args.ocr)
	if args.parse:
		store.set(parseMethod=args.parse)
	return store


async def run(args: argparse.Namespace, config: AppConfig) -> dict[str, Any]:
	"""Execute the selected command and return its printable result."""
	store = await build_store(args, config)
	if args.command == "capture":
		host = ImageFileHost(args.image) if args.image else ScreenGrabHost()
		async with Text2CalApp(store, host, device_scale=args.scale) as app:
			await app.wait_ready()
			form = await app.capture(args.start, args.end)
			if form is None:
				return {"ok": False, "error": app.page.last_error or "Selection cancelled"}
			result: dict[str, Any] = {"ok": form.status.value == "ready", "form": form.snapshot(), "log": form.log_lines}
			try:
				result["calendarUrl"] = app.page.open_calendar() if args.open else form.calendar_url()
			except ValueError as exc:
				result["calendarError"] = str(exc)
			return result

	host = ImageFileHost(args.image) if args.command == "ocr" else ScreenGrabHost()
	async with Text2CalApp(store, host) as app:
		if args.command == "ocr":
			await app.wait_ready()
			frame = await asyncio.to_thread(file_to_png, ensure_image_path(args.image))
			reply = await app.diagnose_ocr(args.provider, encode_data_url(frame))
		else:
			reply = await app.diagnose_parse(args.provider, args.text)
	if reply.get("debug") is not None:
		logging.debug("Provider request: %s", sanitize_for_log(reply["debug"]))
	return reply


def main(argv: list[str] | None = None) -> int:
	"""Entry point for the CLI application."""
	config = load_config()
	configure_logging(config.log_level)
	try:
		args = parse_arguments(argv)
		result = asyncio.run(run(args, config))
		print(json.dumps(result, ensure_ascii=False, indent=2))
	except Exception as exc:  # noqa: BLE001
		logging.exception("Text2Cal failed: %s", exc)
		return 1
	return 0 if result.get("ok") else 1


if __name__ == "__main__":
	raise SystemExit(main())
