import asyncio
import tempfile
import threading
import time
import uuid
from functools import partial
from pathlib import Path
from typing import Dict, List, Optional
import cv2
import numpy as np

from snapcam.camera.interface import CaptureDevice, SessionHandle, TemporaryFile
from snapcam.core.errors import CaptureFailure, InitializationFailure, RecordingFailure
from snapcam.core.types import DeviceDescriptor, Facing, FlashMode, ResolutionPreset
from snapcam.infra.logging import get_logger

logger = get_logger(__name__)

class OpenCVSession(SessionHandle):
    def __init__(self, descriptor, resolution, capture: cv2.VideoCapture):
        super().__init__(descriptor, resolution)
        self.capture = capture
        self.lock = threading.Lock()
        self.latest_frame: Optional[np.ndarray] = None
        self.writer: Optional[cv2.VideoWriter] = None
        self.video_path: Optional[Path] = None
        self.running = True
        self.thread: Optional[threading.Thread] = None

class OpenCVCaptureDevice(CaptureDevice):
    """
    Implementation of CaptureDevice using cv2.VideoCapture.
    A grabber thread per session keeps the latest frame for preview and
    feeds the VideoWriter while recording.

    Webcams have no torch; flash mode is tracked but has no hardware effect.
    """

    def __init__(self, camera_indices: Dict[str, int], video_fps: float = 30.0,
                 temp_dir: Optional[Path] = None):
        """
        Args:
            camera_indices: OpenCV device index per facing, e.g. {"back": 0, "front": 1}.
            video_fps: Frame rate written into recorded MP4 files.
        """
        self.camera_indices = camera_indices
        self.video_fps = video_fps
        self._scratch = None if temp_dir else tempfile.TemporaryDirectory(prefix="snapcam_")
        self.temp_dir = Path(temp_dir) if temp_dir else Path(self._scratch.name)
        self.temp_dir.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def check_camera_availability(index: int) -> bool:
        """Returns True if OpenCV can open the device at `index`."""
        cap = cv2.VideoCapture(index)
        try:
            return cap.isOpened()
        finally:
            cap.release()

    def enumerate(self) -> List[DeviceDescriptor]:
        devices = []
        for facing_name, index in self.camera_indices.items():
            if self.check_camera_availability(index):
                devices.append(DeviceDescriptor(
                    id=str(index),
                    facing=Facing(facing_name),
                    name=f"Camera {index} ({facing_name})"
                ))
            else:
                logger.warning(f"Camera index {index} ({facing_name}) is not available")
        return devices

    async def _run_blocking(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args))

    async def open(self, descriptor: DeviceDescriptor, resolution: ResolutionPreset) -> SessionHandle:
        return await self._run_blocking(self._open_sync, descriptor, resolution)

    def _open_sync(self, descriptor: DeviceDescriptor, resolution: ResolutionPreset) -> OpenCVSession:
        logger.info(f"Opening camera {descriptor.id} at preset {resolution.value}")
        capture = cv2.VideoCapture(int(descriptor.id))
        if not capture.isOpened():
            capture.release()
            raise InitializationFailure(f"Could not open camera {descriptor.id}")

        if resolution.size is not None:
            width, height = resolution.size
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        ok, frame = capture.read()
        if not ok or frame is None:
            capture.release()
            raise InitializationFailure(f"Camera {descriptor.id} returned no frames")

        session = OpenCVSession(descriptor, resolution, capture)
        session.latest_frame = frame
        session.thread = threading.Thread(target=self._frame_loop, args=(session,), daemon=True)
        session.thread.start()
        logger.info(f"Camera {descriptor.id} ready ({frame.shape[1]}x{frame.shape[0]})")
        return session

    def _frame_loop(self, session: OpenCVSession):
        """Continuously grabs frames until the session is closed."""
        while session.running:
            try:
                ok, frame = session.capture.read()
                if not ok or frame is None:
                    time.sleep(0.01)
                    continue
                with session.lock:
                    session.latest_frame = frame
                    if session.writer is not None:
                        session.writer.write(frame)
            except cv2.error as e:
                logger.error(f"Frame loop error on camera {session.descriptor.id}: {e}")
                time.sleep(1)

    def set_flash(self, handle: SessionHandle, mode: FlashMode) -> None:
        handle.flash_mode = mode
        logger.info(f"Flash {mode.value} requested on camera {handle.descriptor.id} (no torch control)")

    def get_frame(self, handle: SessionHandle) -> Optional[np.ndarray]:
        if handle.closed:
            return None
        with handle.lock:
            if handle.latest_frame is not None:
                return handle.latest_frame.copy()
        return None

    async def capture_still(self, handle: SessionHandle) -> TemporaryFile:
        if handle.closed:
            raise CaptureFailure("Camera is not running.")
        return await self._run_blocking(self._capture_still_sync, handle)

    def _capture_still_sync(self, handle: OpenCVSession) -> TemporaryFile:
        frame = self.get_frame(handle)
        if frame is None:
            raise CaptureFailure("Captured frame was None")

        output_path = self.temp_dir / f"{uuid.uuid4().hex}.jpg"
        try:
            success = cv2.imwrite(str(output_path), frame)
        except cv2.error as e:
            raise CaptureFailure(f"Failed to encode still: {e}") from e
        if not success:
            raise CaptureFailure(f"Failed to write image to {output_path}")

        logger.info(f"Captured still {output_path.name}")
        return TemporaryFile(output_path)

    async def start_video(self, handle: SessionHandle) -> None:
        if handle.closed:
            raise RecordingFailure("Camera is not running.")
        await self._run_blocking(self._start_video_sync, handle)

    def _start_video_sync(self, handle: OpenCVSession) -> None:
        with handle.lock:
            if handle.writer is not None:
                raise RecordingFailure("Recording already in progress.")
            if handle.latest_frame is None:
                raise RecordingFailure("No frames to size the recording")

            height, width = handle.latest_frame.shape[:2]
            handle.video_path = self.temp_dir / f"{uuid.uuid4().hex}.mp4"
            writer = cv2.VideoWriter(str(handle.video_path), cv2.VideoWriter_fourcc(*"mp4v"),
                                     self.video_fps, (width, height))
            if not writer.isOpened():
                raise RecordingFailure("Could not open video writer")

            handle.writer = writer
            handle.recording = True
        logger.info(f"Recording started on camera {handle.descriptor.id}")

    async def stop_video(self, handle: SessionHandle) -> TemporaryFile:
        return await self._run_blocking(self._stop_video_sync, handle)

    def _stop_video_sync(self, handle: OpenCVSession) -> TemporaryFile:
        with handle.lock:
            writer, handle.writer = handle.writer, None
            handle.recording = False
        if writer is None:
            raise RecordingFailure("No recording in progress.")

        writer.release()
        logger.info(f"Recording stopped on camera {handle.descriptor.id}")
        return TemporaryFile(handle.video_path)

    def close(self, handle: SessionHandle) -> None:
        if handle.closed:
            return

        logger.info(f"Closing camera {handle.descriptor.id}...")
        handle.closed = True
        handle.running = False
        if handle.thread is not None:
            handle.thread.join(timeout=2.0)

        with handle.lock:
            if handle.writer is not None:
                handle.writer.release()
                handle.writer = None
                TemporaryFile(handle.video_path).discard()
            handle.recording = False
        handle.capture.release()
        logger.info(f"Camera {handle.descriptor.id} closed")

    def cleanup(self) -> None:
        if self._scratch is not None:
            self._scratch.cleanup()
