import asyncio
import threading
import uuid
from pathlib import Path
from typing import List, Optional

import pytest

from snapcam.camera.interface import CaptureDevice, SessionHandle, TemporaryFile
from snapcam.camera.playback import PlaybackDevice, PlayerHandle
from snapcam.core.controller import CameraScreenController
from snapcam.core.errors import (
    CaptureFailure, InitializationFailure, PlaybackFailure, RecordingFailure,
)
from snapcam.core.types import DeviceDescriptor, Facing, ResolutionPreset
from snapcam.infra.storage import MediaStore

BACK = DeviceDescriptor(id="0", facing=Facing.BACK, name="back")
FRONT = DeviceDescriptor(id="1", facing=Facing.FRONT, name="front")

class FakeCaptureDevice(CaptureDevice):
    """In-memory camera that records every call and can be told to fail."""

    def __init__(self, temp_dir: Path, devices: Optional[List[DeviceDescriptor]] = None):
        self.temp_dir = temp_dir
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        self.devices = list(devices) if devices is not None else [BACK, FRONT]
        self.events = []
        self.live = []
        self.max_live = 0
        self.fail_open = False
        self.fail_capture = False
        self.fail_start = False
        self.fail_stop = False
        self.open_gate: Optional[asyncio.Event] = None
        self.capture_gate: Optional[asyncio.Event] = None
        self.start_gate: Optional[asyncio.Event] = None
        self.temp_files = []
        self.call_threads = {"enumerate": [], "close": []}

    def enumerate(self):
        self.call_threads["enumerate"].append(threading.get_ident())
        return list(self.devices)

    async def open(self, descriptor, resolution):
        self.events.append(("open", descriptor.id))
        if self.open_gate is not None:
            await self.open_gate.wait()
        await asyncio.sleep(0)
        if self.fail_open:
            raise InitializationFailure("sensor offline")
        handle = SessionHandle(descriptor, resolution)
        self.live.append(handle)
        self.max_live = max(self.max_live, len(self.live))
        return handle

    def set_flash(self, handle, mode):
        self.events.append(("flash", mode))
        handle.flash_mode = mode

    def _temp(self, suffix, payload):
        path = self.temp_dir / f"{uuid.uuid4().hex}{suffix}"
        path.write_bytes(payload)
        temp = TemporaryFile(path)
        self.temp_files.append(temp)
        return temp

    async def capture_still(self, handle):
        self.events.append(("capture", handle.descriptor.id))
        if self.capture_gate is not None:
            await self.capture_gate.wait()
        await asyncio.sleep(0)
        if self.fail_capture:
            raise CaptureFailure("shutter jammed")
        return self._temp(".jpg", b"\xff\xd8fake-jpeg")

    async def start_video(self, handle):
        self.events.append(("start", handle.descriptor.id))
        if self.start_gate is not None:
            await self.start_gate.wait()
        await asyncio.sleep(0)
        if self.fail_start:
            raise RecordingFailure("encoder busy")
        handle.recording = True

    async def stop_video(self, handle):
        self.events.append(("stop", handle.descriptor.id))
        await asyncio.sleep(0)
        handle.recording = False
        if self.fail_stop:
            raise RecordingFailure("encoder crashed")
        return self._temp(".mp4", b"fake-mp4")

    def close(self, handle):
        self.call_threads["close"].append(threading.get_ident())
        self.events.append(("close", handle.descriptor.id))
        handle.closed = True
        if handle in self.live:
            self.live.remove(handle)

    def get_frame(self, handle):
        return None

    def count(self, name):
        return len([e for e in self.events if e[0] == name])

class FakePlaybackDevice(PlaybackDevice):
    def __init__(self):
        self.events = []
        self.live = []
        self.fail_open = False

    async def open(self, path):
        self.events.append(("open", Path(path).name))
        await asyncio.sleep(0)
        if self.fail_open:
            raise PlaybackFailure("corrupt file")
        handle = PlayerHandle(path, 640, 480, 30.0)
        self.live.append(handle)
        return handle

    def play(self, handle):
        self.events.append(("play", handle.path.name))
        handle.playing = True

    def read_frame(self, handle):
        return None

    def close(self, handle):
        self.events.append(("close", handle.path.name))
        handle.closed = True
        if handle in self.live:
            self.live.remove(handle)

class FakeClock:
    def __init__(self, now=1000):
        self.now = now

    def __call__(self):
        return self.now

@pytest.fixture
def media_store(tmp_path):
    return MediaStore(tmp_path / "media")

@pytest.fixture
def capture_device(tmp_path):
    return FakeCaptureDevice(tmp_path / "camera_tmp")

@pytest.fixture
def playback_device():
    return FakePlaybackDevice()

@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def controller(capture_device, media_store, playback_device, clock):
    return CameraScreenController(
        capture_device=capture_device,
        media_store=media_store,
        playback_device=playback_device,
        resolution=ResolutionPreset.HIGH,
        default_facing=Facing.BACK,
        clock=clock,
    )

def run(coro):
    """Drive an async scenario without pytest-asyncio."""
    return asyncio.run(coro)
