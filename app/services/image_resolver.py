"""
Resolves step image references to image bytes for the template renderer.
"""
from __future__ import annotations

import logging
import os
from typing import Optional, Protocol
from urllib.parse import urlparse

import aiofiles

logger = logging.getLogger(__name__)

UPLOADS_PREFIX = "/uploads/"


class ImageResolver(Protocol):
    async def resolve(self, reference: str) -> Optional[bytes]:
        """Return image bytes for *reference*, or None if it cannot be resolved."""
        ...


def normalize_image_reference(reference: Optional[str]) -> Optional[str]:
    """
    Reduce an image reference to its ``/uploads/...`` path.

    Accepts bare paths and full URLs (``http://host:3001/uploads/x.png``);
    anything that does not point into the uploads area yields None.
    """
    if not reference:
        return None
    path = urlparse(reference).path if "://" in reference else reference
    if not path.startswith(UPLOADS_PREFIX):
        return None
    return path


class UploadDirImageResolver:
    """Reads uploaded images from the upload directory on local disk."""

    def __init__(self, upload_dir: str) -> None:
        self.upload_dir = os.path.abspath(upload_dir)

    def _local_path(self, reference: str) -> Optional[str]:
        path = normalize_image_reference(reference)
        if path is None:
            return None
        relative = path[len(UPLOADS_PREFIX):]
        candidate = os.path.abspath(os.path.join(self.upload_dir, relative))
        if os.path.commonpath([candidate, self.upload_dir]) != self.upload_dir:
            logger.warning("Refusing image reference outside upload dir: %r", reference)
            return None
        return candidate

    async def resolve(self, reference: str) -> Optional[bytes]:
        local_path = self._local_path(reference)
        if local_path is None:
            return None
        try:
            async with aiofiles.open(local_path, "rb") as fh:
                return await fh.read()
        except OSError as exc:
            logger.warning("Could not read step image %r: %s", reference, exc)
            return None
