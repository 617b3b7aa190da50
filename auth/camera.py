"""Camera contract and exclusive ownership.

The capture primitive itself lives outside this package; it only has to
satisfy CameraDevice/CameraStream. The arbiter guarantees at most one
collector holds the device at a time.
"""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class CameraStream(Protocol):
    """A live video stream. The host view renders its preview."""

    def capture_still(self, width: int, height: int) -> bytes:
        """Grab one frame scaled to width x height, JPEG-encoded."""
        ...

    def stop(self) -> None:
        """Stop every track. Must be safe to call twice."""
        ...


class CameraDevice(Protocol):
    async def open(self) -> CameraStream:
        """Request the camera. Raises if permission is denied."""
        ...


class CameraArbiter:
    """Single-owner lease on the camera device."""

    def __init__(self, device: CameraDevice):
        self.device = device
        self._owner: object | None = None

    @property
    def owner(self) -> object | None:
        return self._owner

    def try_acquire(self, owner: object) -> bool:
        """Take the lease. Re-acquiring by the current owner succeeds."""
        if self._owner is not None and self._owner is not owner:
            return False
        self._owner = owner
        logger.debug("Camera acquired")
        return True

    def release(self, owner: object) -> None:
        """Give the lease back. A non-owner release is ignored."""
        if self._owner is owner:
            self._owner = None
            logger.debug("Camera released")
