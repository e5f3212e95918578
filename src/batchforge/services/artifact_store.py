"""Storage for generated artifacts."""
import asyncio
import logging
import mimetypes
import time
from abc import ABC, abstractmethod
from pathlib import Path
from uuid import UUID
from batchforge.config import get_settings
from batchforge.core.exceptions import ArtifactStoreError

logger = logging.getLogger(__name__)

DEFAULT_MEDIA_TYPE = "image/png"


_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
}


def extension_for(media_type: str) -> str:
    """File extension for a media type, ``png`` when unknown."""
    if media_type in _EXTENSIONS:
        return _EXTENSIONS[media_type]
    extension = mimetypes.guess_extension(media_type or DEFAULT_MEDIA_TYPE)
    return extension.lstrip(".") if extension else "png"


class ArtifactStore(ABC):
    """Abstract interface for storing generated artifacts."""

    @abstractmethod
    async def save(self, execution_id: UUID, index: int, data: bytes, media_type: str) -> str:
        """
        Store one artifact.

        Args:
            execution_id: Owning execution
            index: Item index within the batch
            data: Artifact bytes
            media_type: Artifact media type

        Returns:
            str: Reference (public URL) of the stored artifact

        Raises:
            ArtifactStoreError: If the artifact cannot be stored
        """
        ...


class FileSystemArtifactStore(ArtifactStore):
    """Writes artifacts under a directory served at base_url."""

    def __init__(self, root: str, base_url: str):
        """
        Initialize store.

        Args:
            root: Directory artifacts are written to
            base_url: Public URL the directory is served from
        """
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_settings(cls) -> "FileSystemArtifactStore":
        settings = get_settings()
        return cls(settings.ARTIFACT_DIR, settings.ARTIFACT_BASE_URL)

    async def save(self, execution_id: UUID, index: int, data: bytes, media_type: str) -> str:
        relative = f"{execution_id}/{index}_{int(time.time() * 1000)}.{extension_for(media_type)}"
        target = self.root / relative

        def write_sync():
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        try:
            await asyncio.to_thread(write_sync)
        except OSError as e:
            logger.error(f"Failed to store artifact {relative}: {e}")
            raise ArtifactStoreError(f"Storage upload failed: {e.strerror or e}")

        logger.debug(f"Stored artifact {relative} ({len(data)} bytes, {media_type})")
        return f"{self.base_url}/{relative}"
