"""
Source Resolver - Turn user supplied media into a durable URL
"""

import base64
import binascii
import re
from typing import Optional, Tuple, Union

from pydantic import BaseModel

from mediaforge.config.constants import VIDEO_EXTENSIONS
from mediaforge.services.media_storage import DurableStorage
from mediaforge.services.observability import logger


VIDEO_URL_PATTERN = re.compile(r"\.(" + "|".join(VIDEO_EXTENSIONS) + r")(\?|#|$)", re.IGNORECASE)
DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[\w/+.-]+)?(;[\w=-]+)*;base64,(?P<data>.*)$", re.DOTALL)


class InvalidSourceError(ValueError):
    """Raw source payload could not be decoded"""

    pass


class ResolvedSource(BaseModel):
    """Durable reference to an input or output media object"""

    url: str
    public_id: Optional[str] = None
    media_type: str = "image"  # "image" or "video"
    uploaded: bool = False


def detect_media_type(url: Optional[str] = None, content_type: Optional[str] = None) -> str:
    """Classify a source as "video" or "image" from its MIME type or file extension"""
    if content_type:
        return "video" if content_type.lower().startswith("video/") else "image"
    if url and VIDEO_URL_PATTERN.search(url):
        return "video"
    return "image"


def decode_data_url(value: str) -> Tuple[bytes, Optional[str]]:
    """
    Decode a ``data:<mime>;base64,<payload>`` URL

    Raises:
        InvalidSourceError: If the URL is not base64 or the payload is malformed
    """
    match = DATA_URL_PATTERN.match(value.strip())
    if not match:
        raise InvalidSourceError("Only base64 data: URLs are supported")
    return decode_base64(match.group("data")), match.group("mime")


def decode_base64(value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidSourceError("Invalid base64 payload") from exc


class SourceResolver:
    """
    Resolve a source URL, bare identifier or raw bytes to a durable reference

    Already-durable URLs are returned unchanged; everything else is
    uploaded under ``{inputs|outputs}/{user_id}``.
    """

    def __init__(self, storage: DurableStorage):
        self.storage = storage

    async def resolve(
        self,
        source: Union[str, bytes],
        user_id: str,
        role: str = "input",
        content_type: Optional[str] = None,
        public_id: Optional[str] = None,
    ) -> ResolvedSource:
        """
        Resolve ``source`` for ``user_id``

        Args:
            source: http(s) URL, durable public id, data: URL or raw bytes
            user_id: Owner, used for the folder and the user tag
            role: "input" or "output"; selects the folder and the type tag
            content_type: MIME type of raw bytes when known
            public_id: Fixed object name for the upload

        Raises:
            InvalidSourceError: If a data: URL cannot be decoded
            StorageUploadError: If the upload fails
        """
        if isinstance(source, str):
            source = source.strip()

            if self.storage.is_durable_url(source):
                return ResolvedSource(
                    url=source,
                    public_id=self.storage.public_id_from_url(source),
                    media_type=detect_media_type(source, content_type),
                )

            if source.startswith("data:"):
                source, data_type = decode_data_url(source)
                content_type = content_type or data_type
            elif not source.startswith(("http://", "https://")):
                # Bare identifier of an object already in durable storage
                url = self.storage.public_url(source)
                return ResolvedSource(
                    url=url,
                    public_id=source,
                    media_type=detect_media_type(source, content_type),
                )

        media_type = detect_media_type(
            source if isinstance(source, str) else None,
            content_type,
        )
        folder = f"{'outputs' if role == 'output' else 'inputs'}/{user_id}"
        uploaded = await self.storage.upload(
            source,
            folder=folder,
            tags=[f"type:{role}", f"user:{user_id}"],
            context={"user_id": user_id},
            resource_type=media_type,
            public_id=public_id,
            content_type=content_type,
        )

        logger.info(
            "source_resolved",
            user_id=user_id,
            role=role,
            public_id=uploaded.public_id,
            media_type=media_type,
        )

        return ResolvedSource(
            url=uploaded.secure_url,
            public_id=uploaded.public_id,
            media_type=media_type,
            uploaded=True,
        )
