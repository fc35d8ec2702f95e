"""
On-disk attachment storage.

Uploads are written under a generated name (epoch millis, random hex
suffix, original extension) so that the client-supplied filename never
reaches the filesystem. Both the extension and the declared MIME type
must be on the allow-list.
"""

import logging
import os
import re
import secrets
import time
from dataclasses import dataclass
from pathlib import Path

from chat_api.errors import FileTooLarge, NotFound, UnsupportedType, UpstreamError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = frozenset({
    ".jpg", ".jpeg", ".png", ".gif", ".webp",
    ".pdf",
    ".doc", ".docx",
    ".txt",
    ".zip",
})

ALLOWED_MIME_TYPES = frozenset({
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
    "application/zip",
    "application/x-zip-compressed",
})

IMAGE_NAME_RE = re.compile(r"\.(jpe?g|png|gif|webp)$", re.IGNORECASE)

# Shape of every name produced by AttachmentStore._generate_name
STORED_NAME_RE = re.compile(r"^\d+-[0-9a-f]{16}\.[a-z0-9]+$")


@dataclass(frozen=True)
class StoredAttachment:
    path: str
    size: int


def is_image(filename: str) -> bool:
    return bool(IMAGE_NAME_RE.search(filename or ""))


def file_extension(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lower()


class AttachmentStore:
    def __init__(self, root: str, max_bytes: int = 10 * 1024 * 1024):
        self.root = Path(root).resolve()
        self.max_bytes = max_bytes

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def save(self, data: bytes, original_name: str, declared_mime_type: str) -> StoredAttachment:
        """
        Validate and write an upload.

        Args:
            data: File contents
            original_name: Filename as sent by the client (only its extension is kept)
            declared_mime_type: Content type as sent by the client

        Returns:
            StoredAttachment with the generated name and byte size

        Raises:
            FileTooLarge: more than max_bytes
            UnsupportedType: extension or MIME type not allowed
            UpstreamError: the write failed
        """
        size = len(data)
        if size > self.max_bytes:
            logger.info(f"Upload rejected: {size} bytes exceeds {self.max_bytes}")
            raise FileTooLarge()

        extension = file_extension(original_name)
        mime_type = (declared_mime_type or "").split(";")[0].strip().lower()
        if extension not in ALLOWED_EXTENSIONS or mime_type not in ALLOWED_MIME_TYPES:
            logger.info(f"Upload rejected: extension={extension!r}, mime={mime_type!r}")
            raise UnsupportedType()

        name = self._generate_name(extension)
        target = self.root / name
        try:
            self.ensure_root()
            with open(target, "xb") as fh:
                fh.write(data)
        except OSError as e:
            logger.error(f"Failed to write attachment {name}: {e}")
            raise UpstreamError() from e

        logger.info(f"Attachment stored: name={name}, size={size}")
        return StoredAttachment(path=name, size=size)

    def resolve(self, path: str) -> Path:
        """
        Map a generated name to its file inside the storage root.

        Raises:
            NotFound: not a generated name, outside the root, or missing
        """
        if not STORED_NAME_RE.match(path or ""):
            raise NotFound("File not found")

        target = (self.root / path).resolve()
        if target.parent != self.root or not target.is_file():
            raise NotFound("File not found")
        return target

    def retrieve(self, path: str) -> bytes:
        target = self.resolve(path)
        try:
            return target.read_bytes()
        except OSError as e:
            logger.error(f"Failed to read attachment {path}: {e}")
            raise UpstreamError() from e

    def check_health(self) -> bool:
        try:
            self.ensure_root()
        except OSError as e:
            logger.error(f"Attachment storage unavailable: {e}")
            return False
        return os.access(self.root, os.W_OK)

    @staticmethod
    def _generate_name(extension: str) -> str:
        return f"{int(time.time() * 1000)}-{secrets.token_hex(8)}{extension}"
