"""Visual generation and asset storage collaborators.

The engine awaits an upload only long enough to get a durable URL and
never retries; retry policy belongs to whoever calls the engine.
"""

import asyncio
import logging
import mimetypes
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from ..config import config

logger = logging.getLogger(__name__)


@dataclass
class VisualAsset:
    data: bytes
    mime_type: str = "image/png"


class VisualGenerator(ABC):
    """Produces an image for a text prompt."""

    @abstractmethod
    async def generate(self, prompt: str) -> VisualAsset:
        pass


class AssetStore(ABC):
    """Stores raw media and returns a stable reference URL."""

    @abstractmethod
    async def upload(self, asset: VisualAsset, folder: str) -> str:
        pass


class LocalAssetStore(AssetStore):
    """Writes assets under a directory and returns ``file://`` URLs.

    Layout:
        {root}/{folder}/{uuid}.{ext}
    """

    def __init__(self, root: str | Path | None = None):
        self.root = Path(root or config.ASSET_DIR).resolve()

    async def upload(self, asset: VisualAsset, folder: str) -> str:
        path = await asyncio.to_thread(self._write, asset, folder)
        logger.debug(f"Stored {len(asset.data)} bytes at {path}")
        return path.as_uri()

    def _write(self, asset: VisualAsset, folder: str) -> Path:
        extension = mimetypes.guess_extension(asset.mime_type) or ".bin"
        target_dir = self.root / folder
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / f"{uuid.uuid4().hex}{extension}"
        path.write_bytes(asset.data)
        return path


async def generate_and_upload(
    visuals: VisualGenerator,
    assets: AssetStore,
    prompt: str,
    folder: str,
) -> str:
    """Generate a visual and return its stored URL."""
    asset = await visuals.generate(prompt)
    return await assets.upload(asset, folder)
