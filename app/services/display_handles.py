"""
Process-local display handles for preview images.

A handle stands in for fetched preview bytes behind a revocable blob: url,
much like an object url in a browser. Handles are never persisted and must be
released explicitly; the registry that created them tracks every outstanding
handle so a superseded collection can release them as a batch.
"""

import logging
import uuid
from typing import Dict, Optional

from app.core.exceptions import HandleReleasedError

logger = logging.getLogger(__name__)


class DisplayHandle:
    def __init__(self, registry: "DisplayHandleRegistry", data: bytes, content_type: str):
        self.url = f"blob:{uuid.uuid4().hex}"
        self.content_type = content_type
        self._registry = registry
        self._data: Optional[bytes] = data

    @property
    def released(self) -> bool:
        return self._data is None

    def read(self) -> bytes:
        if self._data is None:
            raise HandleReleasedError(f"Display handle {self.url} has been released")
        return self._data

    def release(self) -> bool:
        """Revoke the handle. Returns False if it was already released."""
        return self._registry.release(self)

    def __repr__(self) -> str:
        state = "released" if self.released else "live"
        return f"<DisplayHandle {self.url} {state}>"


class DisplayHandleRegistry:
    def __init__(self):
        self._handles: Dict[str, DisplayHandle] = {}

    def create(self, data: bytes, content_type: str = "image/png") -> DisplayHandle:
        handle = DisplayHandle(self, data, content_type)
        self._handles[handle.url] = handle
        return handle

    def resolve(self, url: str) -> Optional[DisplayHandle]:
        return self._handles.get(url)

    def release(self, handle: DisplayHandle) -> bool:
        if self._handles.pop(handle.url, None) is None:
            return False
        handle._data = None
        return True

    def release_all(self) -> int:
        released = 0
        for handle in list(self._handles.values()):
            if self.release(handle):
                released += 1
        if released:
            logger.debug(f"Released {released} display handles")
        return released

    def __len__(self) -> int:
        return len(self._handles)
