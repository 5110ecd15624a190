import asyncio
import tempfile
import threading
import time
import uuid
from pathlib import Path
from typing import List, Optional
import numpy as np
import cv2

from snapcam.camera.interface import CaptureDevice, SessionHandle, TemporaryFile
from snapcam.core.errors import CaptureFailure, InitializationFailure, RecordingFailure
from snapcam.core.types import DeviceDescriptor, Facing, FlashMode, ResolutionPreset
from snapcam.infra.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MOCK_DEVICES = [
    DeviceDescriptor(id="mock-back", facing=Facing.BACK, name="Mock Back Camera"),
    DeviceDescriptor(id="mock-front", facing=Facing.FRONT, name="Mock Front Camera"),
]

class MockSession(SessionHandle):
    def __init__(self, descriptor, resolution, width, height):
        super().__init__(descriptor, resolution)
        self.width = width
        self.height = height
        self.lock = threading.Lock()
        self.writer: Optional[cv2.VideoWriter] = None
        self.video_path: Optional[Path] = None
        self.frames_written = 0

class MockCaptureDevice(CaptureDevice):
    """
    Simulates cameras for development when hardware is unavailable.
    Generates synthetic noise frames and writes real JPEG / MP4 files.
    """

    def __init__(self, devices: Optional[List[DeviceDescriptor]] = None, fps=15,
                 shutter_delay=0.2, temp_dir: Optional[Path] = None):
        self.devices = list(devices) if devices is not None else list(DEFAULT_MOCK_DEVICES)
        self.fps = fps
        self.shutter_delay = shutter_delay
        # Scratch space is ours to delete only when the caller did not provide it
        self._scratch = None if temp_dir else tempfile.TemporaryDirectory(prefix="snapcam_mock_")
        self.temp_dir = Path(temp_dir) if temp_dir else Path(self._scratch.name)
        self.temp_dir.mkdir(parents=True, exist_ok=True)

    def enumerate(self) -> List[DeviceDescriptor]:
        return list(self.devices)

    async def open(self, descriptor: DeviceDescriptor, resolution: ResolutionPreset) -> SessionHandle:
        if descriptor not in self.devices:
            raise InitializationFailure(f"Unknown mock device {descriptor.id}")

        # Keep mock frames small regardless of preset
        width, height = resolution.size or (1280, 720)
        width, height = min(width, 640), min(height, 480)

        await asyncio.sleep(self.shutter_delay)
        logger.info(f"[MockCamera] Opened {descriptor.id} at {width}x{height}")
        return MockSession(descriptor, resolution, width, height)

    def set_flash(self, handle: SessionHandle, mode: FlashMode) -> None:
        handle.flash_mode = mode
        logger.info(f"[MockCamera] Flash set to {mode.value}")

    def _render_frame(self, handle: MockSession) -> np.ndarray:
        frame = np.random.randint(0, 256, (handle.height, handle.width, 3), dtype=np.uint8)
        if handle.flash_mode == FlashMode.TORCH:
            frame = cv2.add(frame, np.full_like(frame, 60))

        cv2.putText(frame, f"MOCK {handle.descriptor.facing.value.upper()}", (30, 40),
                    cv2.FONT_HERSHEY_SIMPLEX, 1, (255, 255, 255), 2)
        cv2.putText(frame, f"Time: {time.time():.2f}", (30, 80), cv2.FONT_HERSHEY_SIMPLEX,
                    0.6, (0, 255, 0), 2)
        if handle.recording:
            cv2.circle(frame, (handle.width - 30, 30), 10, (0, 0, 255), -1)
        return frame

    def get_frame(self, handle: SessionHandle) -> Optional[np.ndarray]:
        if handle.closed:
            return None

        frame = self._render_frame(handle)
        with handle.lock:
            if handle.recording and handle.writer is not None:
                handle.writer.write(frame)
                handle.frames_written += 1
        return frame

    async def capture_still(self, handle: SessionHandle) -> TemporaryFile:
        if handle.closed:
            raise CaptureFailure("Camera is not running.")

        # Simulate shutter delay
        await asyncio.sleep(self.shutter_delay)

        img = self._render_frame(handle)
        cv2.putText(img, "MOCK STILL CAPTURE", (30, handle.height - 30), cv2.FONT_HERSHEY_SIMPLEX,
                    1, (0, 0, 255), 2)

        output_path = self.temp_dir / f"{uuid.uuid4().hex}.jpg"
        if not cv2.imwrite(str(output_path), img):
            raise CaptureFailure(f"Failed to save mock capture to {output_path}")

        logger.info(f"[MockCamera] Captured still {output_path.name}")
        return TemporaryFile(output_path)

    async def start_video(self, handle: SessionHandle) -> None:
        if handle.closed:
            raise RecordingFailure("Camera is not running.")
        if handle.recording:
            raise RecordingFailure("Recording already in progress.")

        handle.video_path = self.temp_dir / f"{uuid.uuid4().hex}.mp4"
        fourcc = cv2.VideoWriter_fourcc(*"mp4v")
        writer = cv2.VideoWriter(str(handle.video_path), fourcc, float(self.fps),
                                 (handle.width, handle.height))
        if not writer.isOpened():
            raise RecordingFailure("Could not open mock video writer")

        with handle.lock:
            handle.writer = writer
            handle.frames_written = 0
            handle.recording = True
        logger.info("[MockCamera] Recording started")

    async def stop_video(self, handle: SessionHandle) -> TemporaryFile:
        with handle.lock:
            writer, handle.writer = handle.writer, None
            handle.recording = False
        if writer is None:
            raise RecordingFailure("No recording in progress.")

        # Nobody may have pulled preview frames; make sure the clip is playable
        while handle.frames_written < self.fps:
            writer.write(self._render_frame(handle))
            handle.frames_written += 1

        writer.release()
        logger.info(f"[MockCamera] Recording stopped ({handle.frames_written} frames)")
        return TemporaryFile(handle.video_path)

    def close(self, handle: SessionHandle) -> None:
        if handle.closed:
            return
        with handle.lock:
            handle.closed = True
            handle.recording = False
            writer, handle.writer = handle.writer, None
        if writer is not None:
            writer.release()
            TemporaryFile(handle.video_path).discard()
        logger.info(f"[MockCamera] Closed {handle.descriptor.id}")

    def cleanup(self) -> None:
        if self._scratch is not None:
            self._scratch.cleanup()
            logger.info(f"[MockCamera] Removed scratch directory {self.temp_dir}")
