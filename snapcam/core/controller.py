import asyncio
import functools
import time
from contextlib import contextmanager
from typing import Callable, List, Optional, Set

import numpy as np

from snapcam.camera.interface import CaptureDevice, SessionHandle, TemporaryFile
from snapcam.camera.playback import PlaybackDevice, PlayerHandle
from snapcam.core.errors import (
    CameraError, DeviceUnavailable, InvalidState, OperationInProgress, PlaybackFailure, SessionClosed,
)
from snapcam.core.types import (
    CameraSession, CaptureMode, DeviceDescriptor, ErrorInfo, Facing, FlashMode, MediaAsset,
    MediaKind, PreviewPlayerState, ResolutionPreset, ScreenState, SessionStatus,
)
from snapcam.infra.logging import get_logger
from snapcam.infra.storage import MediaStore, asset_from_path

logger = get_logger(__name__)

def wall_clock_ms() -> int:
    return int(time.time() * 1000)

def guarded(func):
    """
    Error boundary for controller operations.
    CameraErrors are logged and recorded in state.last_error; the operation returns None.
    """
    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        self.state.last_error = None
        try:
            return await func(self, *args, **kwargs)
        except CameraError as e:
            self._record_error(e, func.__name__)
            return None
    return wrapper

class CameraScreenController:
    """
    Single owner of the camera screen state.

    All mutations of `state` go through the coroutines below, which run on one
    asyncio loop. Listeners are called with the state after every change.
    """

    def __init__(self, capture_device: CaptureDevice, media_store: MediaStore,
                 playback_device: PlaybackDevice,
                 resolution: ResolutionPreset = ResolutionPreset.HIGH,
                 default_facing: Facing = Facing.BACK,
                 clock: Callable[[], int] = wall_clock_ms):
        self.capture_device = capture_device
        self.media_store = media_store
        self.playback_device = playback_device
        self.resolution = resolution
        self.clock = clock

        self.state = ScreenState(requested_facing=default_facing)
        self._listeners: List[Callable[[ScreenState], None]] = []

        self._devices: Optional[List[DeviceDescriptor]] = None
        self._descriptor: Optional[DeviceDescriptor] = None
        self._handle: Optional[SessionHandle] = None
        self._generation = 0
        self._was_active = False
        self._init_lock = asyncio.Lock()
        self._opening_generation: Optional[int] = None

        self._player_handle: Optional[PlayerHandle] = None
        self._player_generation = 0

        self._in_flight: Set[str] = set()
        self._release_pending = False

    # --- Observation ---

    def add_listener(self, callback: Callable[[ScreenState], None]):
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[ScreenState], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _notify(self):
        for callback in list(self._listeners):
            try:
                callback(self.state)
            except Exception:
                logger.exception(f"State listener {callback!r} failed")

    def _record_error(self, error: CameraError, operation: str):
        logger.error(f"{operation} failed ({error.kind.value}): {error}")
        self.state.last_error = ErrorInfo(kind=error.kind, message=str(error))
        self._notify()

    # --- Helpers ---

    @contextmanager
    def _single_flight(self, name: str):
        if name in self._in_flight:
            raise OperationInProgress(f"{name} already in progress")
        self._in_flight.add(name)
        try:
            yield
        finally:
            self._in_flight.discard(name)

    def is_busy(self, name: str) -> bool:
        return name in self._in_flight

    async def _run_blocking(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    def _require_ready(self) -> SessionHandle:
        session = self.state.session
        if session is None or session.status != SessionStatus.READY or self._handle is None:
            raise InvalidState(f"Camera is {self.state.status.value}")
        return self._handle

    def _ensure_live(self, generation: int):
        if generation != self._generation:
            raise SessionClosed("Camera session was disposed while the operation was pending")

    async def load_devices(self) -> List[DeviceDescriptor]:
        """Cameras found on first use; the list is not re-enumerated afterwards."""
        if self._devices is None:
            self._devices = await self._run_blocking(self.capture_device.enumerate)
            logger.info(f"Found {len(self._devices)} camera(s): {[d.id for d in self._devices]}")
        return self._devices

    async def select_device(self, facing: Facing) -> DeviceDescriptor:
        """The camera with the requested facing, else the first one available."""
        devices = await self.load_devices()
        if not devices:
            raise DeviceUnavailable("No cameras available")

        for device in devices:
            if device.facing == facing:
                return device

        logger.warning(f"No {facing.value} camera, falling back to {devices[0].id}")
        return devices[0]

    # --- Session lifecycle ---

    def _detach_session(self) -> Optional[SessionHandle]:
        """
        Drops the current session from state and returns its device handle.
        Pending operations on it become stale.
        """
        self._generation += 1
        handle, self._handle = self._handle, None

        if self.state.recording.active:
            logger.warning("Recording abandoned because the camera session was disposed")
        self.state.recording.active = False
        self.state.session = None
        return handle

    async def _release(self, handle: Optional[SessionHandle]):
        if handle is None:
            return
        try:
            await self._run_blocking(self.capture_device.close, handle)
        except CameraError as e:
            logger.error(f"Error while closing camera {handle.descriptor.id}: {e}")

    def _initializing(self) -> bool:
        """True while an open for the current session is still pending."""
        return self._init_lock.locked() and self._opening_generation == self._generation

    async def _open_session(self, descriptor: DeviceDescriptor) -> bool:
        if self._initializing():
            raise OperationInProgress("Camera is already initializing")

        # An open made stale by dispose() still holds the lock; wait for it to let go
        async with self._init_lock:
            previous = self._detach_session()
            generation = self._generation
            self._opening_generation = generation
            self._descriptor = descriptor
            self._was_active = True
            self.state.session = CameraSession(
                device=descriptor,
                resolution=self.resolution,
                flash_mode=self.state.flash_mode,
                status=SessionStatus.INITIALIZING,
                generation=generation,
            )
            self._notify()

            await self._release(previous)
            self._ensure_live(generation)
            logger.info(f"Initializing camera {descriptor.id} ({descriptor.facing.value})")

            try:
                handle = await self.capture_device.open(descriptor, self.resolution)
            except CameraError:
                if generation == self._generation and self.state.session is not None:
                    self.state.session.status = SessionStatus.FAILED
                raise

            if generation != self._generation:
                await self._release(handle)
                raise SessionClosed(f"Camera {descriptor.id} was disposed while opening")

            self._handle = handle
            self.state.session.status = SessionStatus.READY
            logger.info(f"Camera {descriptor.id} ready")

            # Flash is applied after every (re)initialization
            self.capture_device.set_flash(handle, self.state.flash_mode)
            self._notify()
            return True

    @guarded
    async def initialize(self, descriptor: Optional[DeviceDescriptor] = None):
        """
        Opens `descriptor` (default: the requested facing) as the only live session.
        Returns True when ready; on failure the session status is FAILED.
        A second call while one is pending is rejected with OperationInProgress.
        """
        if descriptor is None:
            descriptor = await self.select_device(self.state.requested_facing)
        return await self._open_session(descriptor)

    async def dispose(self):
        """Tears down the camera session (status goes back to uninitialized)."""
        if self._handle is None and self.state.session is None:
            return
        logger.info("Disposing camera session")
        handle = self._detach_session()
        self._notify()
        await self._release(handle)

    @guarded
    async def toggle_facing(self):
        """
        Re-acquires the camera facing the other way (falls back to the first camera).
        Only a ready or failed session can be switched.
        """
        if self.state.recording.active or self.is_busy("recording"):
            raise InvalidState("Cannot switch camera while recording")
        if self._initializing():
            raise OperationInProgress("Camera is still initializing")
        if self.state.status not in (SessionStatus.READY, SessionStatus.FAILED):
            raise InvalidState(f"Cannot switch camera while {self.state.status.value}")

        facing = self.state.requested_facing.opposite()
        self.state.requested_facing = facing
        descriptor = await self.select_device(facing)
        return await self._open_session(descriptor)

    # --- Settings toggles ---

    @guarded
    async def toggle_flash(self) -> FlashMode:
        mode = FlashMode.TORCH if self.state.flash_mode == FlashMode.OFF else FlashMode.OFF
        self.state.flash_mode = mode
        logger.info(f"Flash mode -> {mode.value}")

        session = self.state.session
        live = session is not None and session.status == SessionStatus.READY and self._handle is not None
        if live:
            session.flash_mode = mode
        self._notify()

        # Applied immediately only to a ready session; otherwise on next initialize
        if live:
            self.capture_device.set_flash(self._handle, mode)
        return mode

    @guarded
    async def toggle_mode(self) -> CaptureMode:
        if self.state.recording.active or self.is_busy("recording"):
            raise InvalidState("Cannot change capture mode while recording")

        mode = CaptureMode.VIDEO if self.state.capture_mode == CaptureMode.PHOTO else CaptureMode.PHOTO
        self.state.capture_mode = mode
        logger.info(f"Capture mode -> {mode.value}")
        self._notify()
        return mode

    # --- Capture ---

    async def _persist(self, temp: TemporaryFile, kind: MediaKind, generation: int) -> MediaAsset:
        try:
            self._ensure_live(generation)
            dest = self.media_store.new_path(kind, self.clock())
            saved = await self._run_blocking(self.media_store.write, temp, dest)
        finally:
            temp.discard()
        return asset_from_path(saved)

    async def _refresh_after_capture(self):
        try:
            await self._scan_gallery()
        except CameraError as e:
            self._record_error(e, "refresh_gallery")

    @guarded
    async def capture_photo(self) -> Optional[MediaAsset]:
        """Captures a still into `<epoch-millis>.jpg`. No-op unless in photo mode and ready."""
        if self.state.capture_mode != CaptureMode.PHOTO:
            raise InvalidState("Photo capture requires photo mode")
        handle = self._require_ready()

        with self._single_flight("capture"):
            generation = self._generation
            temp = await self.capture_device.capture_still(handle)
            asset = await self._persist(temp, MediaKind.PHOTO, generation)

        logger.info(f"Photo saved: {asset.name}")
        await self._refresh_after_capture()
        return asset

    @guarded
    async def start_recording(self) -> bool:
        """
        Returns True once the device has acknowledged the start. If the shutter
        was released meanwhile, the recording is stopped and saved right away;
        the clip shows up in the gallery.
        """
        if self.state.capture_mode != CaptureMode.VIDEO:
            raise InvalidState("Recording requires video mode")
        if self.state.recording.active:
            raise InvalidState("Already recording")
        handle = self._require_ready()

        with self._single_flight("recording"):
            generation = self._generation
            try:
                await self.capture_device.start_video(handle)
                self._ensure_live(generation)
            except CameraError:
                self._release_pending = False
                raise
            self.state.recording.active = True

        logger.info("Recording started")
        self._notify()

        if self._release_pending:
            # Shutter was released while the device was still starting
            self._release_pending = False
            await self._stop_recording()
        return True

    async def _stop_recording(self) -> MediaAsset:
        if not self.state.recording.active:
            raise InvalidState("Not recording")
        handle = self._require_ready()

        with self._single_flight("recording"):
            generation = self._generation
            try:
                temp = await self.capture_device.stop_video(handle)
            finally:
                self.state.recording.active = False
                self._notify()
            asset = await self._persist(temp, MediaKind.VIDEO, generation)

        logger.info(f"Video saved: {asset.name}")
        await self._refresh_after_capture()
        return asset

    @guarded
    async def stop_recording(self) -> Optional[MediaAsset]:
        """Finishes the recording into `<epoch-millis>.mp4` (stop time)."""
        if self.state.capture_mode != CaptureMode.VIDEO:
            raise InvalidState("Recording requires video mode")
        return await self._stop_recording()

    # --- Gallery ---

    async def _scan_gallery(self) -> List[MediaAsset]:
        assets = await self._run_blocking(self.media_store.scan)
        self.state.gallery = assets
        self._notify()
        return assets

    @guarded
    async def refresh_gallery(self) -> List[MediaAsset]:
        return await self._scan_gallery()

    @guarded
    async def toggle_gallery(self) -> bool:
        visible = not self.state.gallery_visible
        self.state.gallery_visible = visible
        self._notify()

        if visible:
            await self._scan_gallery()
        else:
            self._close_player()
            self.state.opened_asset = None
            self.state.gallery = []
            self._notify()
        return visible

    # --- Asset preview ---

    def _close_player(self):
        self._player_generation += 1
        handle, self._player_handle = self._player_handle, None
        if handle is not None:
            try:
                self.playback_device.close(handle)
            except CameraError as e:
                logger.error(f"Error while closing player: {e}")
        self.state.player = None

    @guarded
    async def open_asset(self, asset: MediaAsset) -> Optional[MediaAsset]:
        """
        Photos are shown as a static image. Videos get a fresh player that
        starts playing once initialized; any previous player is disposed first.
        """
        self._close_player()
        self.state.opened_asset = asset

        if asset.kind == MediaKind.PHOTO:
            self._notify()
            return asset

        with self._single_flight("playback"):
            generation = self._player_generation
            self.state.player = PreviewPlayerState(asset=asset)
            self._notify()

            try:
                handle = await self.playback_device.open(asset.path)
            except CameraError:
                if generation == self._player_generation:
                    self.state.player = None
                raise

            if generation != self._player_generation:
                self.playback_device.close(handle)
                raise SessionClosed(f"Preview of {asset.name} was closed while loading")

            self._player_handle = handle
            self.state.player.ready = True
            try:
                self.playback_device.play(handle)
            except CameraError as e:
                self._close_player()
                raise PlaybackFailure(f"Could not play {asset.name}: {e}") from e
            self.state.player.playing = True

        logger.info(f"Playing {asset.name}")
        self._notify()
        return asset

    def close_asset(self):
        self._close_player()
        self.state.opened_asset = None
        self._notify()

    # --- Frames for the view ---

    def preview_frame(self) -> Optional[np.ndarray]:
        handle = self._handle
        if handle is None or self.state.status != SessionStatus.READY:
            return None
        return self.capture_device.get_frame(handle)

    def player_frame(self) -> Optional[np.ndarray]:
        handle = self._player_handle
        if handle is None:
            return None
        return self.playback_device.read_frame(handle)

    @property
    def player_handle(self) -> Optional[PlayerHandle]:
        return self._player_handle

    # --- Lifecycle events ---

    async def on_screen_enter(self):
        await self.initialize()
        await self.refresh_gallery()

    async def on_app_backgrounded(self):
        if self.state.session is not None:
            logger.info("App backgrounded, releasing camera")
            await self.dispose()

    async def on_app_resumed(self):
        if self._was_active and self.state.session is None and self._descriptor is not None:
            logger.info("App resumed, re-initializing camera")
            await self.initialize(self._descriptor)

    async def on_capture_tap(self):
        if self.state.capture_mode == CaptureMode.PHOTO:
            return await self.capture_photo()
        return None

    async def on_shutter_long_press(self):
        if self.state.capture_mode == CaptureMode.VIDEO and not self.state.recording.active:
            self._release_pending = False
            return await self.start_recording()
        return None

    async def on_long_press_release(self):
        if self.state.capture_mode != CaptureMode.VIDEO:
            return None
        if self.state.recording.active:
            return await self.stop_recording()
        if self.is_busy("recording"):
            self._release_pending = True
        return None

    async def on_screen_exit(self):
        await self.shutdown()

    async def shutdown(self):
        """Screen teardown: releases the camera and any preview player."""
        self._close_player()
        self.state.opened_asset = None
        handle = self._detach_session()
        self._was_active = False
        self._notify()
        await self._release(handle)
        logger.info("Camera screen closed")
