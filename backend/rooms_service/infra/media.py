"""Media upload backends for room photos."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from rooms_service.settings import settings

logger = logging.getLogger(__name__)


class MediaUploadError(RuntimeError):
	"""Raised when a media backend rejects or fails an upload."""


class MediaUploader(Protocol):
	async def upload(self, data: bytes, destination: str) -> str:
		...


class LocalMediaUploader:
	"""Write uploads below a local directory and serve them from ``base_url``."""

	def __init__(self, upload_dir: str | Path, base_url: str) -> None:
		self.upload_dir = Path(upload_dir)
		self.base_url = base_url.rstrip("/")

	def _write(self, data: bytes, destination: str) -> None:
		path = self.upload_dir / destination
		path.parent.mkdir(parents=True, exist_ok=True)
		path.write_bytes(data)

	async def upload(self, data: bytes, destination: str) -> str:
		destination = destination.strip("/")
		try:
			await asyncio.to_thread(self._write, data, destination)
		except OSError as exc:
			raise MediaUploadError(f"local_write_failed:{destination}") from exc
		return f"{self.base_url}/{destination}"


class S3MediaUploader:
	"""Put uploads into an S3 bucket, overwriting any previous object at the key."""

	def __init__(self, bucket: str, region: str, *, client=None) -> None:
		self.bucket = bucket
		self.region = region
		self._client = client or boto3.client("s3", region_name=region)

	def _put(self, data: bytes, key: str) -> None:
		self._client.put_object(Bucket=self.bucket, Key=key, Body=data)

	async def upload(self, data: bytes, destination: str) -> str:
		key = destination.strip("/")
		try:
			await asyncio.to_thread(self._put, data, key)
		except (BotoCoreError, ClientError) as exc:
			raise MediaUploadError(f"s3_put_failed:{key}") from exc
		return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"


_uploader: Optional[MediaUploader] = None


def get_media_uploader() -> MediaUploader:
	global _uploader
	if _uploader is None:
		if settings.media_backend == "s3":
			if not settings.s3_bucket:
				raise MediaUploadError("s3_bucket_not_configured")
			_uploader = S3MediaUploader(settings.s3_bucket, settings.s3_region)
		else:
			_uploader = LocalMediaUploader(settings.upload_dir, settings.upload_base_url)
		logger.info("media.uploader_configured", extra={"backend": settings.media_backend})
	return _uploader


def set_media_uploader(uploader: Optional[MediaUploader]) -> None:
	global _uploader
	_uploader = uploader
