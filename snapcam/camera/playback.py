import asyncio
from abc import ABC, abstractmethod
from functools import partial
import threading
from pathlib import Path
from typing import Optional
import cv2
import numpy as np

from snapcam.core.errors import PlaybackFailure
from snapcam.infra.logging import get_logger

logger = get_logger(__name__)

class PlayerHandle:
    def __init__(self, path: Path, width: int = 0, height: int = 0, fps: float = 30.0):
        self.path = Path(path)
        self.width = width
        self.height = height
        self.fps = fps
        self.playing = False
        self.finished = False
        self.closed = False

    @property
    def aspect_ratio(self) -> float:
        if self.height <= 0:
            return 1.0
        return self.width / self.height

class PlaybackDevice(ABC):
    """Opens a video file and hands out frames for the gallery dialog."""

    @abstractmethod
    async def open(self, path: Path) -> PlayerHandle:
        """
        Raises:
            PlaybackFailure: If the file cannot be decoded.
        """
        pass

    @abstractmethod
    def play(self, handle: PlayerHandle) -> None:
        pass

    @abstractmethod
    def read_frame(self, handle: PlayerHandle) -> Optional[np.ndarray]:
        """Next BGR frame while playing, None when paused or finished."""
        pass

    @abstractmethod
    def close(self, handle: PlayerHandle) -> None:
        pass

class OpenCVPlayer(PlayerHandle):
    def __init__(self, path, capture: cv2.VideoCapture, width, height, fps):
        super().__init__(path, width, height, fps)
        self.capture = capture
        self.lock = threading.Lock()

class OpenCVPlaybackDevice(PlaybackDevice):
    """Decodes MP4 files with cv2.VideoCapture."""

    async def open(self, path: Path) -> PlayerHandle:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(self._open_sync, Path(path)))

    def _open_sync(self, path: Path) -> OpenCVPlayer:
        if not path.exists():
            raise PlaybackFailure(f"Video not found: {path}")

        capture = cv2.VideoCapture(str(path))
        if not capture.isOpened():
            capture.release()
            raise PlaybackFailure(f"Could not decode {path.name}")

        width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
        fps = capture.get(cv2.CAP_PROP_FPS) or 30.0
        logger.info(f"Opened {path.name} for playback ({width}x{height} @ {fps:.1f}fps)")
        return OpenCVPlayer(path, capture, width, height, fps)

    def play(self, handle: PlayerHandle) -> None:
        if handle.closed:
            raise PlaybackFailure("Player is closed")
        handle.playing = True

    def read_frame(self, handle: PlayerHandle) -> Optional[np.ndarray]:
        with handle.lock:
            if handle.closed or not handle.playing or handle.finished:
                return None
            ok, frame = handle.capture.read()

        if not ok:
            handle.finished = True
            handle.playing = False
            logger.debug(f"Playback of {handle.path.name} finished")
            return None
        return frame

    def close(self, handle: PlayerHandle) -> None:
        with handle.lock:
            if handle.closed:
                return
            handle.closed = True
            handle.playing = False
            handle.capture.release()
        logger.info(f"Closed player for {handle.path.name}")

def read_thumbnail(path: Path) -> Optional[np.ndarray]:
    """First frame of a video, or None if it cannot be decoded."""
    capture = cv2.VideoCapture(str(path))
    try:
        ok, frame = capture.read()
        return frame if ok else None
    finally:
        capture.release()
