import asyncio
import mimetypes
from typing import Optional

import httpx
from google.cloud import storage as gcs_storage

from app.config import get_settings

_DEFAULT_MIME = "image/jpeg"


def get_storage_client():
    return gcs_storage.Client(project=get_settings().GCP_PROJECT_ID)


def get_bucket(bucket_name: Optional[str] = None):
    client = get_storage_client()
    return client.bucket(bucket_name or get_settings().GCS_BUCKET_NAME)


def parse_gs_uri(uri: str) -> tuple[str, str]:
    """Split ``gs://bucket/path/to/object`` into ``(bucket, path)``."""
    if not uri.startswith("gs://"):
        raise ValueError(f"Not a GCS URI: {uri}")
    bucket, _, path = uri[len("gs://"):].partition("/")
    if not bucket or not path:
        raise ValueError(f"Incomplete GCS URI: {uri}")
    return bucket, path


def download_file(path: str, bucket_name: Optional[str] = None) -> tuple[bytes, Optional[str]]:
    """Download an object from GCS. Returns the bytes and its content type."""
    bucket = get_bucket(bucket_name)
    blob = bucket.blob(path)
    data = blob.download_as_bytes()
    return data, blob.content_type


def guess_mime_type(reference: str, declared: Optional[str] = None) -> str:
    if declared and declared.startswith("image/"):
        return declared
    guessed, _ = mimetypes.guess_type(reference)
    return guessed or _DEFAULT_MIME


async def fetch_image_bytes(reference: str) -> tuple[bytes, str]:
    """Fetch image bytes from a ``gs://`` URI, an http(s) URL or a bucket path.

    Returns the raw bytes and a MIME type suitable for the vision model.
    """
    if reference.startswith("gs://"):
        bucket_name, path = parse_gs_uri(reference)
        data, content_type = await asyncio.to_thread(download_file, path, bucket_name)
        return data, guess_mime_type(path, content_type)

    if reference.startswith(("http://", "https://")):
        timeout = get_settings().IMAGE_FETCH_TIMEOUT_SECONDS
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            response = await client.get(reference)
            response.raise_for_status()
            return response.content, guess_mime_type(
                reference, response.headers.get("content-type")
            )

    data, content_type = await asyncio.to_thread(download_file, reference)
    return data, guess_mime_type(reference, content_type)
