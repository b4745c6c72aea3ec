"""
Object storage for uploaded spreadsheets.

Any S3-compatible provider works (AWS S3, MinIO, Backblaze B2, Supabase
Storage's S3 API); boto3 talks to all of them. Files are stored and fetched
by path; the ingestion core never lists or rewrites stored objects.
"""
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.core.config import settings

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class StorageConnectionError(StorageError):
    """Raised when the storage client cannot be created."""
    pass


class StorageUploadError(StorageError):
    """Raised when file upload fails."""
    pass


class StorageDownloadError(StorageError):
    """Raised when file download fails."""
    pass


def is_storage_configured() -> bool:
    return all([settings.storage_access_key_id, settings.storage_secret_access_key, settings.storage_bucket_name])


def get_storage_client():
    """
    Get an S3 client for the configured provider.

    Raises:
        StorageConnectionError: If configuration is incomplete or the client cannot be built
    """
    if not is_storage_configured():
        raise StorageConnectionError(
            "Storage configuration is incomplete. Please set STORAGE_ACCESS_KEY_ID, "
            "STORAGE_SECRET_ACCESS_KEY, and STORAGE_BUCKET_NAME in your environment."
        )

    # No automatic retries anywhere in ingestion; a failed store is reported to the caller
    config = Config(signature_version='s3v4', retries={'max_attempts': 1, 'mode': 'standard'})

    client_kwargs = {
        'service_name': 's3',
        'aws_access_key_id': settings.storage_access_key_id,
        'aws_secret_access_key': settings.storage_secret_access_key,
        'config': config,
    }
    if settings.storage_endpoint_url:
        client_kwargs['endpoint_url'] = settings.storage_endpoint_url
    if settings.storage_region:
        client_kwargs['region_name'] = settings.storage_region

    try:
        return boto3.client(**client_kwargs)
    except (BotoCoreError, ValueError) as e:
        logger.error("Failed to create storage client: %s", e)
        raise StorageConnectionError(f"Failed to connect to storage: {e}") from e


def build_public_url(file_path: str) -> str:
    """Public URL for a stored object, falling back to the path-style endpoint URL."""
    if settings.storage_public_base_url:
        return f"{settings.storage_public_base_url.rstrip('/')}/{quote(file_path)}"
    if settings.storage_endpoint_url:
        return f"{settings.storage_endpoint_url.rstrip('/')}/{settings.storage_bucket_name}/{quote(file_path)}"
    return f"https://{settings.storage_bucket_name}.s3.{settings.storage_region}.amazonaws.com/{quote(file_path)}"


def upload_file(file_content: bytes, file_path: str, content_type: Optional[str] = None) -> Dict[str, Any]:
    """
    Store bytes at ``file_path``.

    Returns:
        Dictionary with ``file_path``, ``file_url``, ``size`` and the object's ``etag``.

    Raises:
        StorageUploadError: If upload fails
    """
    put_kwargs = {
        'Bucket': settings.storage_bucket_name,
        'Key': file_path,
        'Body': file_content,
    }
    if content_type:
        put_kwargs['ContentType'] = content_type

    try:
        client = get_storage_client()
        response = client.put_object(**put_kwargs)
    except StorageConnectionError as e:
        raise StorageUploadError(str(e)) from e
    except ClientError as e:
        error_code = e.response.get('Error', {}).get('Code', 'Unknown')
        logger.error("Storage upload failed: %s - %s", error_code, e)
        raise StorageUploadError(f"Upload failed: {e}") from e
    except BotoCoreError as e:
        logger.error("Unexpected error during upload: %s", e)
        raise StorageUploadError(f"Upload failed: {e}") from e

    logger.info("Stored %d bytes at %s", len(file_content), file_path)
    return {
        "file_path": file_path,
        "file_url": build_public_url(file_path),
        "size": len(file_content),
        "etag": str(response.get('ETag', '')).strip('"'),
    }


def download_file(file_path: str) -> bytes:
    """
    Fetch the bytes stored at ``file_path``.

    Raises:
        StorageDownloadError: If the object is missing or download fails
    """
    try:
        client = get_storage_client()
        response = client.get_object(Bucket=settings.storage_bucket_name, Key=file_path)
        return response['Body'].read()
    except StorageConnectionError as e:
        raise StorageDownloadError(str(e)) from e
    except ClientError as e:
        error_code = e.response.get('Error', {}).get('Code', 'Unknown')
        if error_code == 'NoSuchKey':
            raise StorageDownloadError(f"File not found: {file_path}") from e
        logger.error("Storage download failed: %s - %s", error_code, e)
        raise StorageDownloadError(f"Download failed: {e}") from e
    except BotoCoreError as e:
        logger.error("Unexpected error during download: %s", e)
        raise StorageDownloadError(f"Download failed: {e}") from e


def delete_file(file_path: str) -> bool:
    """Delete a stored object. Returns False instead of raising; used for best-effort cleanup."""
    try:
        client = get_storage_client()
        client.delete_object(Bucket=settings.storage_bucket_name, Key=file_path)
        return True
    except (StorageError, ClientError, BotoCoreError) as e:
        logger.error("Error deleting file from storage: %s", e)
        return False
