"""Photo payload helpers for room media."""

from __future__ import annotations

import base64
import binascii

MAX_PHOTO_BYTES = 5 * 1024 * 1024


class AttachmentValidationError(ValueError):
	"""Raised when a photo payload is malformed or too large."""


def decode_photo(payload: str) -> bytes:
	"""Decode a base64 photo, accepting an optional ``data:<mime>;base64,`` prefix."""
	text = payload.strip()
	if text.startswith("data:"):
		header, _, text = text.partition(",")
		if ";base64" not in header:
			raise AttachmentValidationError("photo_not_base64")
	try:
		data = base64.b64decode(text, validate=True)
	except (binascii.Error, ValueError) as exc:
		raise AttachmentValidationError("photo_invalid") from exc
	if not data:
		raise AttachmentValidationError("photo_empty")
	if len(data) > MAX_PHOTO_BYTES:
		raise AttachmentValidationError("photo_too_large")
	return data


def photo_destination(folder: str, room_id: str) -> str:
	return f"{folder.strip('/')}/{room_id}/photo"
