"""
Object storage interface and a filesystem-backed implementation.

Artifacts are addressed by `<conversation>/<direction>/<timestamp>_<name>`
paths and exposed as public URLs.
"""

from pathlib import Path
from typing import Optional, Protocol
import asyncio
import logging
import re
import time

from intent_engine.config import settings


logger = logging.getLogger(__name__)

RE_UNSAFE_PATH_CHARS = re.compile(r'[^A-Za-z0-9._-]+')


class ObjectStorage(Protocol):
    """Durable storage for media artifacts"""

    async def put(self, data: bytes, path: str, content_type: str) -> str:
        """Store bytes at path and return the public URI."""
        ...

    async def get(self, uri: str) -> bytes:
        """Read back the bytes behind a URI returned by put."""
        ...


def build_object_path(
    conversation_id: str,
    direction: str,
    name: str,
    timestamp: Optional[int] = None,
) -> str:
    """Build `<conversation>/<input|output>/<timestamp>_<name>`."""
    ts = timestamp if timestamp is not None else int(time.time() * 1000)
    conversation = RE_UNSAFE_PATH_CHARS.sub("_", conversation_id) or "anonymous"
    safe_name = RE_UNSAFE_PATH_CHARS.sub("_", name).strip("._") or "artifact"
    return f"{conversation}/{direction}/{ts}_{safe_name}"


class LocalObjectStorage:
    """Stores artifacts on the local filesystem under `settings.storage_root`."""

    def __init__(self, root: Optional[str] = None, public_base_url: Optional[str] = None):
        self.root = Path(root or settings.storage_root)
        self.public_base_url = (public_base_url or settings.storage_public_base_url).rstrip("/")

    def _path_for(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise ValueError(f"Path escapes storage root: {path}")
        return target

    async def put(self, data: bytes, path: str, content_type: str) -> str:
        target = self._path_for(path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        await asyncio.to_thread(_write)
        uri = f"{self.public_base_url}/{path}"
        logger.info(f"[STORAGE] Stored {len(data)} bytes ({content_type}) at {uri}")
        return uri

    async def get(self, uri: str) -> bytes:
        prefix = f"{self.public_base_url}/"
        if not uri.startswith(prefix):
            raise FileNotFoundError(f"Not a stored artifact: {uri}")
        target = self._path_for(uri[len(prefix):])
        return await asyncio.to_thread(target.read_bytes)
