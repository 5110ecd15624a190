import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional
import numpy as np

from snapcam.core.types import DeviceDescriptor, FlashMode, ResolutionPreset

class SessionHandle:
    """
    An open binding to one physical camera.
    Device implementations subclass this to carry their own resources.
    """

    def __init__(self, descriptor: DeviceDescriptor, resolution: ResolutionPreset):
        self.descriptor = descriptor
        self.resolution = resolution
        self.flash_mode = FlashMode.OFF
        self.recording = False
        self.closed = False

class TemporaryFile:
    """A capture result sitting outside the media store until it is written there."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def discard(self) -> None:
        """Removes the file if it is still around (no-op once moved into the store)."""
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass

    def __repr__(self):
        return f"TemporaryFile({str(self.path)!r})"

class CaptureDevice(ABC):
    """
    Abstract base class for camera implementations.
    Ensures that OpenCVCaptureDevice and MockCaptureDevice expose the same API.

    Failures are reported as snapcam.core.errors.CameraError subclasses.
    """

    @abstractmethod
    def enumerate(self) -> List[DeviceDescriptor]:
        """List the cameras that can be opened."""
        pass

    @abstractmethod
    async def open(self, descriptor: DeviceDescriptor, resolution: ResolutionPreset) -> SessionHandle:
        """
        Open and configure the camera described by `descriptor`.

        Raises:
            InitializationFailure: If the device cannot be opened or configured.
        """
        pass

    @abstractmethod
    def set_flash(self, handle: SessionHandle, mode: FlashMode) -> None:
        """Switch the torch on or off for a live session."""
        pass

    @abstractmethod
    async def capture_still(self, handle: SessionHandle) -> TemporaryFile:
        """
        Capture a still image.

        Returns:
            TemporaryFile: A JPEG file outside the media store.
        """
        pass

    @abstractmethod
    async def start_video(self, handle: SessionHandle) -> None:
        """Begin recording video on the session."""
        pass

    @abstractmethod
    async def stop_video(self, handle: SessionHandle) -> TemporaryFile:
        """
        Finish the current recording.

        Returns:
            TemporaryFile: An MP4 file outside the media store.
        """
        pass

    @abstractmethod
    def close(self, handle: SessionHandle) -> None:
        """Release the device. Safe to call on an already closed handle."""
        pass

    def cleanup(self) -> None:
        """Remove scratch files the device created. Called once at application exit."""
        pass

    @abstractmethod
    def get_frame(self, handle: SessionHandle) -> Optional[np.ndarray]:
        """
        Latest live preview frame.

        Returns:
            np.ndarray: BGR frame (compatible with OpenCV).
            None: If no frame is available yet.
        """
        pass
