from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
import uuid
from datetime import datetime, timedelta, timezone

from azure.core.credentials import TokenCredential

from azure.core.exceptions import HttpResponseError, ResourceExistsError
from azure.storage.blob import (
    BlobSasPermissions,
    BlobServiceClient,
    ContentSettings,
    generate_blob_sas,
)

from .config import settings

logger = logging.getLogger(__name__)

# Question media is either an illustration or a clip for blind-test questions
ALLOWED_MEDIA_PREFIXES = ("audio/", "image/")
MAX_MEDIA_BYTES = 20 * 1024 * 1024
SAS_LIFETIME = timedelta(hours=6)

_blob_service_client: BlobServiceClient | None = None
_container_initialised = False
_container_is_private: bool | None = None


def _get_blob_service() -> BlobServiceClient:
    global _blob_service_client
    if _blob_service_client is None:
        if not settings.AZURE_STORAGE_CONNECTION_STRING:
            raise RuntimeError("Azure Blob Storage is not configured")
        _blob_service_client = BlobServiceClient.from_connection_string(
            settings.AZURE_STORAGE_CONNECTION_STRING
        )
    return _blob_service_client


def _media_type(filename: str, content_type: str | None) -> str:
    guessed = content_type or mimetypes.guess_type(filename)[0]
    if not guessed or not guessed.startswith(ALLOWED_MEDIA_PREFIXES):
        raise ValueError(f"Unsupported media type: {guessed or 'unknown'}")
    return guessed


async def _ensure_container(container_client) -> bool:
    """Create the container once and remember whether it is private."""
    global _container_initialised, _container_is_private
    if _container_initialised:
        return bool(_container_is_private)

    try:
        await asyncio.to_thread(container_client.create_container, public_access="blob")
    except ResourceExistsError:
        pass
    except HttpResponseError as exc:
        error_code = getattr(exc, "error_code", None) or getattr(
            getattr(exc, "error", None), "code", None
        )
        if error_code != "PublicAccessNotPermitted":
            raise
        logger.info("Public blob access is disabled; media URLs will be SAS signed")
        try:
            await asyncio.to_thread(container_client.create_container)
        except ResourceExistsError:
            pass
        _container_is_private = True
    else:
        _container_is_private = False

    if _container_is_private is None:
        properties = await asyncio.to_thread(container_client.get_container_properties)
        public_access = getattr(properties, "public_access", None)
        _container_is_private = public_access not in {"blob", "container"}
    _container_initialised = True
    return _container_is_private


async def upload_question_media(
    session_id: str,
    question_id: str,
    filename: str,
    content: bytes,
    content_type: str | None,
) -> str:
    if not content:
        raise ValueError("Uploaded file was empty")
    if len(content) > MAX_MEDIA_BYTES:
        raise ValueError("Uploaded file is too large")
    media_type = _media_type(filename, content_type)

    service = _get_blob_service()
    container_name = settings.AZURE_STORAGE_CONTAINER
    container_client = service.get_container_client(container_name)
    is_private = await _ensure_container(container_client)

    extension = os.path.splitext(filename)[1] or mimetypes.guess_extension(media_type) or ""
    blob_name = f"{session_id}/{question_id}-{uuid.uuid4().hex}{extension}".strip("/")
    blob_client = container_client.get_blob_client(blob_name)

    await asyncio.to_thread(
        blob_client.upload_blob,
        content,
        overwrite=True,
        content_settings=ContentSettings(content_type=media_type),
    )
    logger.info("Uploaded %s (%s, %d bytes)", blob_name, media_type, len(content))

    if is_private:
        return await _build_private_blob_url(service, container_name, blob_name, blob_client.url)
    return blob_client.url


async def _build_private_blob_url(
    service: BlobServiceClient, container_name: str, blob_name: str, base_url: str
) -> str:
    now = datetime.now(timezone.utc)
    expiry = now + SAS_LIFETIME
    permissions = BlobSasPermissions(read=True)

    credential = getattr(service, "credential", None)

    if isinstance(credential, TokenCredential):
        delegation_key = await asyncio.to_thread(service.get_user_delegation_key, now, expiry)
        sas_token = generate_blob_sas(
            account_name=service.account_name,
            container_name=container_name,
            blob_name=blob_name,
            user_delegation_key=delegation_key,
            permission=permissions,
            expiry=expiry,
        )
    elif credential is not None:
        sas_token = generate_blob_sas(
            account_name=service.account_name,
            container_name=container_name,
            blob_name=blob_name,
            credential=credential,
            permission=permissions,
            expiry=expiry,
        )
    else:
        raise RuntimeError("Azure Blob Storage credential is required for SAS generation")

    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{sas_token}"
