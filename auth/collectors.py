"""Factor collectors: one acquisition procedure per factor kind.

Every collector has the same surface: begin(), cancel() and an awaitable
result(). Text collectors also take provide(raw) from the host view, and
the biometric collector takes capture(). Collectors validate locally and
either produce a typed factor or fail; they never substitute a default.

Collectors are async context managers. Leaving the block releases whatever
the collector holds (the camera, in practice) on every exit path.
"""

import asyncio
import logging
from typing import Awaitable, Callable, ClassVar

from auth.camera import CameraArbiter, CameraStream
from auth.exceptions import AcquisitionFailedError, FlowClosedError
from auth.types import (
    AlternateIdentity,
    AuthenticatorCode,
    BiometricImage,
    EmailCode,
    FactorKind,
    Password,
    VerificationFactor,
)

logger = logging.getLogger(__name__)


class FactorCollector:
    """Base collector. Subclasses set `kind` and override the hooks."""

    kind: ClassVar[FactorKind]

    def __init__(self):
        self._ready = asyncio.Event()
        self._factor: VerificationFactor | None = None
        self._cancelled = False
        self._begun = False

    @property
    def begun(self) -> bool:
        return self._begun

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def factor(self) -> VerificationFactor | None:
        return self._factor

    async def begin(self) -> None:
        """Start acquisition.

        Raises:
            FlowClosedError: If the collector was cancelled
            AcquisitionFailedError: If the factor cannot be acquired
        """
        self._ensure_open()
        self._begun = True
        await self._on_begin()

    def cancel(self) -> None:
        """Abandon collection and release held resources. Idempotent."""
        if self._cancelled:
            return
        self._cancelled = True
        self._release()
        self._ready.set()
        logger.debug(f"{self.kind.value} collector cancelled")

    async def result(self) -> VerificationFactor:
        """Wait for the factor.

        Raises:
            FlowClosedError: If cancelled before a factor was produced
        """
        await self._ready.wait()
        if self._factor is None:
            raise FlowClosedError(f"{self.kind.value} collection was cancelled")
        return self._factor

    async def __aenter__(self):
        await self.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self._factor is None:
            self.cancel()
        else:
            self._release()
        return False

    def _accept(self, factor: VerificationFactor) -> None:
        self._factor = factor
        self._ready.set()

    def _ensure_open(self) -> None:
        if self._cancelled:
            raise FlowClosedError(f"{self.kind.value} collector was cancelled")

    async def _on_begin(self) -> None:
        pass

    def _release(self) -> None:
        pass


class TextFactorCollector(FactorCollector):
    """Collector for factors typed by the user."""

    factor_type: ClassVar[type]
    strip_input: ClassVar[bool] = True

    def provide(self, raw: str) -> VerificationFactor:
        """Validate literal input and accept it.

        Raises:
            InputInvalidError: Input fails local validation; re-prompt
            FlowClosedError: If the collector was cancelled
        """
        self._ensure_open()
        value = (raw or "").strip() if self.strip_input else (raw or "")
        factor = self.factor_type(value)
        self._accept(factor)
        return factor


class PasswordCollector(TextFactorCollector):
    kind = FactorKind.PASSWORD
    factor_type = Password
    strip_input = False


class AuthenticatorCodeCollector(TextFactorCollector):
    """Six digits, checked for shape only. The authority verifies the code."""

    kind = FactorKind.AUTHENTICATOR_CODE
    factor_type = AuthenticatorCode


class AlternateIdentityCollector(TextFactorCollector):
    """
    Seven-digit alternate ID.

    The orchestrator resolves it with the authority before the password
    step of the same identity unlocks.
    """

    kind = FactorKind.ALTERNATE_IDENTITY
    factor_type = AlternateIdentity


class EmailCodeCollector(TextFactorCollector):
    """Triggers the send-code request on begin, then accepts the typed code."""

    kind = FactorKind.EMAIL_CODE
    factor_type = EmailCode

    def __init__(self, send_code: Callable[[], Awaitable[None]]):
        super().__init__()
        self._send_code = send_code
        self.sends = 0

    async def _on_begin(self) -> None:
        await self.resend()

    async def resend(self) -> None:
        """Request another code. Failures raise AcquisitionFailedError."""
        self._ensure_open()
        await self._send_code()
        self.sends += 1


class BiometricCollector(FactorCollector):
    """
    Face capture.

    begin() takes the camera lease and opens the stream for the live
    preview; capture() grabs one still frame and stops the stream at once.
    cancel() and leaving the context block also stop it.
    """

    kind = FactorKind.BIOMETRIC_IMAGE

    def __init__(self, arbiter: CameraArbiter, width: int = 240, height: int = 180):
        super().__init__()
        self._arbiter = arbiter
        self.width = width
        self.height = height
        self._stream: CameraStream | None = None

    @property
    def stream(self) -> CameraStream | None:
        """The live stream for preview rendering, if open."""
        return self._stream

    @property
    def streaming(self) -> bool:
        return self._stream is not None

    async def _on_begin(self) -> None:
        if not self._arbiter.try_acquire(self):
            raise AcquisitionFailedError("Camera is in use by another verification")

        try:
            stream = await self._arbiter.device.open()
        except Exception as e:
            self._arbiter.release(self)
            logger.warning(f"Camera open failed: {e}")
            raise AcquisitionFailedError(
                "Unable to access camera. Please allow camera access."
            ) from e

        if self._cancelled:
            # Closed while the permission prompt was up
            stream.stop()
            self._arbiter.release(self)
            raise FlowClosedError("Face capture was cancelled")

        self._stream = stream

    def capture(self) -> BiometricImage:
        """Grab one still frame and release the camera.

        Raises:
            AcquisitionFailedError: Camera not streaming, or the grab failed
            FlowClosedError: If the collector was cancelled
        """
        self._ensure_open()
        if self._stream is None:
            raise AcquisitionFailedError("Camera is not active")

        try:
            frame = self._stream.capture_still(self.width, self.height)
        except Exception as e:
            raise AcquisitionFailedError("Unable to capture image") from e
        finally:
            self._release()

        if not frame:
            raise AcquisitionFailedError("Camera returned an empty frame")

        factor = BiometricImage(frame)
        self._accept(factor)
        return factor

    async def retake(self) -> None:
        """Discard the captured frame and reopen the camera."""
        self._ensure_open()
        self._factor = None
        self._ready.clear()
        await self.begin()

    def _release(self) -> None:
        if self._stream is not None:
            self._stream.stop()
            self._stream = None
        self._arbiter.release(self)
