"""
Durable Storage - S3-compatible object store for inputs and finished artifacts
"""

import asyncio
import mimetypes
import os
import shutil
import tempfile
import uuid
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urlencode, urlparse

import boto3
import httpx
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel

from mediaforge.config.settings import settings
from mediaforge.services.downloader import MediaDownloadError, MediaDownloader
from mediaforge.services.observability import logger


DEFAULT_EXTENSIONS = {"video": ".mp4", "image": ".png"}


class StorageUploadError(Exception):
    """Durable storage rejected or could not receive an upload"""

    pass


class UploadResult(BaseModel):
    """Outcome of one durable upload"""

    public_id: str
    secure_url: str
    bytes: int
    content_type: str
    duration: Optional[float] = None


class DurableStorage:
    """
    Object store wrapper

    Keys are ``{root_folder}/{folder}/{name}{ext}`` and double as the public
    id. Without bucket credentials objects are kept in process memory and
    still addressed through the public URL base.
    """

    def __init__(
        self,
        downloader: Optional[MediaDownloader] = None,
        bucket: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        region_name: Optional[str] = None,
        public_url: Optional[str] = None,
        root_folder: Optional[str] = None,
    ):
        self.bucket = (bucket if bucket is not None else settings.storage_bucket).strip()
        self.access_key = (access_key if access_key is not None else settings.storage_access_key).strip()
        self.secret_key = (secret_key if secret_key is not None else settings.storage_secret_key).strip()
        self.endpoint_url = (endpoint_url or settings.storage_endpoint_url or "").rstrip("/") or None
        self.region_name = (region_name or settings.storage_region or "").strip() or None
        self.public_url_base = (public_url or settings.storage_public_url).rstrip("/")
        self.root_folder = self._normalize_path(
            root_folder if root_folder is not None else settings.storage_root_folder
        )
        self.downloader = downloader or MediaDownloader()
        self._memory: Dict[str, Dict[str, Any]] = {}
        self._client = None
        if self.is_configured():
            session = boto3.session.Session(
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
                region_name=self.region_name,
            )
            self._client = session.client(
                "s3",
                endpoint_url=self.endpoint_url,
                config=BotoConfig(s3={"addressing_style": "virtual"}),
            )

    def is_configured(self) -> bool:
        return bool(self.bucket and self.access_key and self.secret_key)

    async def upload(
        self,
        source: Union[bytes, str],
        folder: str,
        tags: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None,
        resource_type: str = "image",
        public_id: Optional[str] = None,
        content_type: Optional[str] = None,
        duration: Optional[float] = None,
    ) -> UploadResult:
        """
        Upload bytes, a local file or a remote URL

        Uploads overwrite: the same ``folder``/``public_id`` pair always
        lands on the same object.

        Args:
            source: Raw bytes, a local file path or an http(s) URL
            folder: Folder below the root folder, e.g. "outputs/{user_id}"
            tags: "key:value" tags (a bare tag becomes "key=true")
            context: Opaque metadata stored with the object
            resource_type: "image" or "video"
            public_id: Object name inside the folder; random when omitted
            content_type: MIME type, guessed when omitted
            duration: Media duration recorded with the object

        Raises:
            StorageUploadError: If the source cannot be read or the upload fails
        """
        staging_dir: Optional[str] = None
        try:
            if isinstance(source, (bytes, bytearray)):
                body: Optional[bytes] = bytes(source)
                path, source_type, source_name = None, None, ""
            elif source.startswith(("http://", "https://")):
                staging_dir = tempfile.mkdtemp(prefix="upload-", dir=settings.scratch_root or None)
                body = None
                path, source_type = await self._stage_remote(source, staging_dir)
                source_name = urlparse(source).path
            else:
                if not os.path.exists(source):
                    raise StorageUploadError(f"Upload source not found: {source}")
                body = None
                path, source_type, source_name = source, None, source

            content_type = content_type or source_type or self._guess_type(source_name, resource_type)
            ext = self._extension(source_name, content_type, resource_type)
            name = public_id or uuid.uuid4().hex
            key = self._normalize_path(f"{self.root_folder}/{folder}/{name}{ext}")

            metadata = {k: str(v) for k, v in (context or {}).items() if v is not None}
            if duration is not None:
                metadata["duration"] = str(duration)
            tagging = self._tagging(tags or [])

            if self._client is None:
                if body is None:
                    with open(path, "rb") as f:
                        body = f.read()
                self._memory[key] = {
                    "body": body,
                    "content_type": content_type,
                    "tags": list(tags or []),
                    "context": metadata,
                }
            elif body is None:
                await asyncio.to_thread(self._upload_file, key, path, content_type, tagging, metadata)
            else:
                await asyncio.to_thread(self._put_object, key, body, content_type, tagging, metadata)

            size = len(body) if body is not None else os.path.getsize(path)
        finally:
            if staging_dir:
                shutil.rmtree(staging_dir, ignore_errors=True)

        logger.info(
            "durable_upload_complete",
            public_id=key,
            folder=folder,
            size_bytes=size,
            resource_type=resource_type,
            in_memory=self._client is None,
        )

        return UploadResult(
            public_id=key,
            secure_url=self.public_url(key),
            bytes=size,
            content_type=content_type,
            duration=duration,
        )

    def _put_object(
        self,
        key: str,
        body: bytes,
        content_type: str,
        tagging: str,
        metadata: Dict[str, str],
    ) -> None:
        kwargs: Dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": body,
            "ContentType": content_type,
            "Metadata": metadata,
        }
        if tagging:
            kwargs["Tagging"] = tagging
        try:
            self._client.put_object(**kwargs)
        except (BotoCoreError, ClientError) as exc:
            raise StorageUploadError(f"Durable upload failed: {exc}") from exc

    def _upload_file(
        self,
        key: str,
        path: str,
        content_type: str,
        tagging: str,
        metadata: Dict[str, str],
    ) -> None:
        extra_args: Dict[str, Any] = {"ContentType": content_type, "Metadata": metadata}
        if tagging:
            extra_args["Tagging"] = tagging
        try:
            self._client.upload_file(path, self.bucket, key, ExtraArgs=extra_args)
        except (BotoCoreError, ClientError, S3UploadFailedError) as exc:
            raise StorageUploadError(f"Durable upload failed: {exc}") from exc

    async def _stage_remote(self, url: str, staging_dir: str):
        """Stream a remote source into ``staging_dir``; returns (path, content type)"""
        target = os.path.join(staging_dir, os.path.basename(urlparse(url).path) or "source")
        try:
            downloaded = await self.downloader.download(url, target)
        except (httpx.HTTPError, MediaDownloadError) as exc:
            raise StorageUploadError(f"Failed to fetch {url} for upload: {exc}") from exc
        return downloaded.path, downloaded.content_type

    def get_object(self, public_id: str) -> Optional[Dict[str, Any]]:
        """In-memory object record (body, content type, tags, context)"""
        return self._memory.get(self._normalize_path(public_id))

    def public_url(self, public_id: str) -> str:
        clean = self._normalize_path(public_id)
        if self.public_url_base:
            return f"{self.public_url_base}/{clean}"
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{clean}"
        return f"/{self.bucket}/{clean}"

    def is_durable_url(self, url: str) -> bool:
        """True when the URL already points into this store"""
        if not url or not url.startswith(("http://", "https://")):
            return False
        base = self.public_url(self.root_folder or "")
        return url.startswith(base.rstrip("/") + "/")

    def public_id_from_url(self, url: str) -> Optional[str]:
        if not self.is_durable_url(url):
            return None
        path = url.split("?", 1)[0].split("#", 1)[0]
        prefix = self.public_url("").rstrip("/") + "/"
        return self._normalize_path(path[len(prefix):])

    @staticmethod
    def _tagging(tags: List[str]) -> str:
        pairs = []
        for tag in tags:
            key, _, value = tag.partition(":")
            pairs.append((key, value or "true"))
        return urlencode(pairs)

    @staticmethod
    def _guess_type(name: str, resource_type: str) -> str:
        guessed, _ = mimetypes.guess_type(name) if name else (None, None)
        if guessed:
            return guessed
        return "video/mp4" if resource_type == "video" else "image/png"

    @staticmethod
    def _extension(name: str, content_type: str, resource_type: str) -> str:
        ext = os.path.splitext(name)[1].lower() if name else ""
        if ext:
            return ext
        guessed = mimetypes.guess_extension(content_type or "")
        if guessed:
            return guessed
        return DEFAULT_EXTENSIONS.get(resource_type, "")

    @staticmethod
    def _normalize_path(path: Optional[str]) -> str:
        if not path:
            return ""
        return "/".join(part for part in path.strip().split("/") if part)
