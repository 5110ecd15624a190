import asyncio
import threading

import pytest

from snapcam.core.controller import CameraScreenController
from snapcam.core.errors import StorageFailure
from snapcam.core.types import (
    CaptureMode, ErrorKind, Facing, FlashMode, MediaKind, SessionStatus,
)
from conftest import BACK, FRONT, FakeCaptureDevice, run

def names(assets):
    return [a.name for a in assets]

def stored_files(media_store):
    return sorted(p.name for p in media_store.list())

# --- Session lifecycle ---

def test_screen_enter_opens_back_camera_and_applies_flash(controller, capture_device):
    run(controller.on_screen_enter())

    assert controller.state.status == SessionStatus.READY
    assert controller.state.session.device == BACK
    assert ("flash", FlashMode.OFF) in capture_device.events
    assert controller.state.gallery == []

def test_screen_enter_falls_back_to_first_camera(tmp_path, media_store, playback_device, clock):
    device = FakeCaptureDevice(tmp_path / "cam", devices=[FRONT])
    controller = CameraScreenController(device, media_store, playback_device, clock=clock)

    run(controller.on_screen_enter())

    assert controller.state.status == SessionStatus.READY
    assert controller.state.session.device == FRONT

def test_no_cameras_reports_device_unavailable(tmp_path, media_store, playback_device):
    device = FakeCaptureDevice(tmp_path / "cam", devices=[])
    controller = CameraScreenController(device, media_store, playback_device)

    result = run(controller.initialize())

    assert result is None
    assert controller.state.status == SessionStatus.UNINITIALIZED
    assert controller.state.last_error.kind == ErrorKind.DEVICE_UNAVAILABLE

def test_initialization_failure_marks_failed_and_blocks_capture(controller, capture_device, media_store):
    capture_device.fail_open = True

    async def scenario():
        await controller.on_screen_enter()
        return await controller.capture_photo()

    assert run(scenario()) is None
    assert controller.state.status == SessionStatus.FAILED
    assert controller.state.last_error.kind == ErrorKind.INVALID_STATE
    assert capture_device.count("capture") == 0
    assert stored_files(media_store) == []

def test_facing_toggles_never_hold_two_devices(controller, capture_device):
    async def scenario():
        await controller.on_screen_enter()
        facings = []
        for _ in range(5):
            await controller.toggle_facing()
            facings.append(controller.state.session.facing)
        return facings

    facings = run(scenario())

    assert facings == [Facing.FRONT, Facing.BACK, Facing.FRONT, Facing.BACK, Facing.FRONT]
    assert capture_device.max_live == 1
    assert len(capture_device.live) == 1
    assert capture_device.count("open") == 6
    assert capture_device.count("close") == 5

def test_toggle_facing_with_single_back_camera_reuses_it(tmp_path, media_store, playback_device):
    device = FakeCaptureDevice(tmp_path / "cam", devices=[BACK])
    controller = CameraScreenController(device, media_store, playback_device)

    async def scenario():
        await controller.on_screen_enter()
        return await controller.toggle_facing()

    assert run(scenario()) is True
    assert controller.state.status == SessionStatus.READY
    assert controller.state.session.device == BACK
    assert controller.state.requested_facing == Facing.FRONT
    assert device.max_live == 1

def test_toggle_facing_rejected_while_recording(controller, capture_device):
    async def scenario():
        await controller.on_screen_enter()
        await controller.toggle_mode()
        await controller.start_recording()
        return await controller.toggle_facing()

    assert run(scenario()) is None
    assert controller.state.last_error.kind == ErrorKind.INVALID_STATE
    assert controller.state.recording.active
    assert capture_device.count("open") == 1

def test_background_and_resume_reacquires_same_camera(controller, capture_device):
    async def scenario():
        await controller.on_screen_enter()
        await controller.toggle_facing()
        await controller.on_app_backgrounded()
        backgrounded = controller.state.status
        await controller.on_app_resumed()
        return backgrounded

    assert run(scenario()) == SessionStatus.UNINITIALIZED
    assert controller.state.status == SessionStatus.READY
    assert controller.state.session.device == FRONT
    assert capture_device.max_live == 1

def test_resume_without_previous_session_does_nothing(controller, capture_device):
    run(controller.on_app_resumed())

    assert controller.state.status == SessionStatus.UNINITIALIZED
    assert capture_device.count("open") == 0

def test_background_while_recording_abandons_recording(controller, capture_device, media_store):
    async def scenario():
        await controller.on_screen_enter()
        await controller.toggle_mode()
        await controller.start_recording()
        await controller.on_app_backgrounded()
        during = controller.state.recording.active
        await controller.on_app_resumed()
        return during

    assert run(scenario()) is False
    assert controller.state.recording.active is False
    assert controller.state.status == SessionStatus.READY
    assert capture_device.count("stop") == 0
    assert stored_files(media_store) == []

def test_shutdown_releases_camera_and_player(controller, capture_device, playback_device, media_store, clock):
    async def scenario():
        await controller.on_screen_enter()
        await controller.toggle_mode()
        await controller.start_recording()
        asset = await controller.stop_recording()
        await controller.open_asset(asset)
        await controller.on_screen_exit()

    run(scenario())

    assert capture_device.live == []
    assert playback_device.live == []
    assert controller.state.status == SessionStatus.UNINITIALIZED
    assert controller.state.player is None

def test_resume_after_failed_initialize_retries(controller, capture_device):
    capture_device.fail_open = True

    async def scenario():
        await controller.on_screen_enter()
        failed = controller.state.status
        capture_device.fail_open = False
        await controller.on_app_backgrounded()
        await controller.on_app_resumed()
        return failed

    assert run(scenario()) == SessionStatus.FAILED
    assert controller.state.status == SessionStatus.READY
    assert controller.state.session.device == BACK
    assert capture_device.count("open") == 2

def test_toggle_facing_before_screen_enter_is_rejected(controller, capture_device):
    assert run(controller.toggle_facing()) is None
    assert controller.state.last_error.kind == ErrorKind.INVALID_STATE
    assert controller.state.requested_facing == Facing.BACK
    assert capture_device.count("open") == 0

def test_toggle_facing_while_backgrounded_keeps_camera_released(controller, capture_device):
    async def scenario():
        await controller.on_screen_enter()
        await controller.on_app_backgrounded()
        return await controller.toggle_facing()

    assert run(scenario()) is None
    assert controller.state.status == SessionStatus.UNINITIALIZED
    assert controller.state.last_error.kind == ErrorKind.INVALID_STATE
    assert capture_device.live == []
    assert capture_device.count("open") == 1

def test_toggle_facing_recovers_from_failed_camera(controller, capture_device):
    capture_device.fail_open = True

    async def scenario():
        await controller.on_screen_enter()
        capture_device.fail_open = False
        return await controller.toggle_facing()

    assert run(scenario()) is True
    assert controller.state.status == SessionStatus.READY
    assert controller.state.session.device == FRONT

def test_concurrent_initialize_is_rejected(controller, capture_device):
    async def scenario():
        await controller.load_devices()
        capture_device.open_gate = asyncio.Event()
        first = asyncio.create_task(controller.initialize())
        await asyncio.sleep(0)
        second = await controller.initialize()
        error = controller.state.last_error
        capture_device.open_gate.set()
        return await first, second, error

    first, second, error = run(scenario())

    assert first is True
    assert second is None
    assert error.kind == ErrorKind.OPERATION_IN_PROGRESS
    assert capture_device.count("open") == 1
    assert controller.state.status == SessionStatus.READY

def test_resume_waits_for_open_abandoned_by_background(controller, capture_device):
    async def scenario():
        await controller.load_devices()
        capture_device.open_gate = asyncio.Event()
        entering = asyncio.create_task(controller.on_screen_enter())
        await asyncio.sleep(0)
        await controller.on_app_backgrounded()
        resuming = asyncio.create_task(controller.on_app_resumed())
        await asyncio.sleep(0)
        capture_device.open_gate.set()
        await entering
        await resuming

    run(scenario())

    assert controller.state.status == SessionStatus.READY
    assert capture_device.count("open") == 2
    assert capture_device.max_live == 1
    assert len(capture_device.live) == 1

def test_device_enumeration_and_release_run_off_the_loop(controller, capture_device):
    async def scenario():
        await controller.on_screen_enter()
        await controller.on_app_backgrounded()
        return threading.get_ident()

    loop_thread = run(scenario())

    assert capture_device.call_threads["enumerate"]
    assert capture_device.call_threads["close"]
    assert loop_thread not in capture_device.call_threads["enumerate"]
    assert loop_thread not in capture_device.call_threads["close"]

# --- Photo capture ---

def test_capture_photo_writes_timestamped_jpeg(controller, media_store):
    async def scenario():
        await controller.on_screen_enter()
        return await controller.capture_photo()

    asset = run(scenario())

    assert asset.name == "1000.jpg"
    assert asset.kind == MediaKind.PHOTO
    assert stored_files(media_store) == ["1000.jpg"]
    assert names(controller.state.gallery) == ["1000.jpg"]

def test_two_photos_listed_newest_first(controller, clock):
    async def scenario():
        await controller.on_screen_enter()
        await controller.capture_photo()
        clock.now = 2000
        await controller.capture_photo()
        return await controller.refresh_gallery()

    assert names(run(scenario())) == ["2000.jpg", "1000.jpg"]

def test_capture_photo_in_video_mode_is_noop(controller, capture_device, media_store):
    async def scenario():
        await controller.on_screen_enter()
        await controller.toggle_mode()
        return await controller.capture_photo()

    assert run(scenario()) is None
    assert capture_device.count("capture") == 0
    assert stored_files(media_store) == []

def test_capture_tap_in_video_mode_is_ignored(controller, capture_device):
    async def scenario():
        await controller.on_screen_enter()
        await controller.toggle_mode()
        return await controller.on_capture_tap()

    assert run(scenario()) is None
    assert capture_device.count("capture") == 0
    assert controller.state.last_error is None

def test_capture_failure_leaves_no_file(controller, capture_device, media_store):
    capture_device.fail_capture = True

    async def scenario():
        await controller.on_screen_enter()
        return await controller.capture_photo()

    assert run(scenario()) is None
    assert controller.state.last_error.kind == ErrorKind.CAPTURE_FAILURE
    assert stored_files(media_store) == []
    assert controller.state.status == SessionStatus.READY

def test_concurrent_capture_is_rejected(controller, capture_device, media_store):
    async def scenario():
        await controller.on_screen_enter()
        capture_device.capture_gate = asyncio.Event()
        first = asyncio.create_task(controller.capture_photo())
        await asyncio.sleep(0)
        second = await controller.capture_photo()
        error = controller.state.last_error
        capture_device.capture_gate.set()
        return await first, second, error

    first, second, error = run(scenario())

    assert first.name == "1000.jpg"
    assert second is None
    assert error.kind == ErrorKind.OPERATION_IN_PROGRESS
    assert capture_device.count("capture") == 1
    assert stored_files(media_store) == ["1000.jpg"]

def test_capture_pending_when_backgrounded_is_discarded(controller, capture_device, media_store):
    async def scenario():
        await controller.on_screen_enter()
        capture_device.capture_gate = asyncio.Event()
        pending = asyncio.create_task(controller.capture_photo())
        await asyncio.sleep(0)
        await controller.on_app_backgrounded()
        capture_device.capture_gate.set()
        return await pending

    assert run(scenario()) is None
    assert controller.state.last_error.kind == ErrorKind.SESSION_CLOSED
    assert stored_files(media_store) == []
    assert not any(temp.exists() for temp in capture_device.temp_files)

def test_same_millisecond_captures_get_distinct_names(controller, media_store):
    async def scenario():
        await controller.on_screen_enter()
        await controller.capture_photo()
        await controller.capture_photo()

    run(scenario())

    assert stored_files(media_store) == ["1000.jpg", "1001.jpg"]

# --- Video recording ---

def test_recording_saves_video_named_at_stop_time(controller, clock, media_store):
    async def scenario():
        await controller.on_screen_enter()
        await controller.toggle_mode()
        clock.now = 5000
        started = await controller.start_recording()
        active = controller.state.recording.active
        clock.now = 9000
        asset = await controller.stop_recording()
        return started, active, asset

    started, active, asset = run(scenario())

    assert started is True
    assert active is True
    assert asset.name == "9000.mp4"
    assert asset.kind == MediaKind.VIDEO
    assert controller.state.recording.active is False
    assert stored_files(media_store) == ["9000.mp4"]

def test_start_recording_twice_is_noop(controller, capture_device):
    async def scenario():
        await controller.on_screen_enter()
        await controller.toggle_mode()
        await controller.start_recording()
        return await controller.start_recording()

    assert run(scenario()) is None
    assert capture_device.count("start") == 1
    assert controller.state.recording.active is True

def test_start_recording_requires_video_mode(controller, capture_device):
    async def scenario():
        await controller.on_screen_enter()
        return await controller.start_recording()

    assert run(scenario()) is None
    assert capture_device.count("start") == 0
    assert controller.state.recording.active is False

def test_failed_start_keeps_recording_off(controller, capture_device):
    capture_device.fail_start = True

    async def scenario():
        await controller.on_screen_enter()
        await controller.toggle_mode()
        return await controller.on_shutter_long_press()

    assert run(scenario()) is None
    assert controller.state.recording.active is False
    assert controller.state.last_error.kind == ErrorKind.RECORDING_FAILURE

def test_failed_stop_reverts_recording_state(controller, capture_device, media_store):
    capture_device.fail_stop = True

    async def scenario():
        await controller.on_screen_enter()
        await controller.toggle_mode()
        await controller.on_shutter_long_press()
        return await controller.on_long_press_release()

    assert run(scenario()) is None
    assert controller.state.recording.active is False
    assert controller.state.last_error.kind == ErrorKind.RECORDING_FAILURE
    assert stored_files(media_store) == []

def test_release_while_start_pending_stops_recording(controller, capture_device, media_store):
    async def scenario():
        await controller.on_screen_enter()
        await controller.toggle_mode()
        capture_device.start_gate = asyncio.Event()
        press = asyncio.create_task(controller.on_shutter_long_press())
        await asyncio.sleep(0)
        await controller.on_long_press_release()
        capture_device.start_gate.set()
        return await press

    assert run(scenario()) is True
    assert controller.state.recording.active is False
    assert capture_device.count("stop") == 1
    assert stored_files(media_store) == ["1000.mp4"]
    assert names(controller.state.gallery) == ["1000.mp4"]

def test_mode_toggle_rejected_while_recording(controller):
    async def scenario():
        await controller.on_screen_enter()
        await controller.toggle_mode()
        await controller.start_recording()
        return await controller.toggle_mode()

    assert run(scenario()) is None
    assert controller.state.capture_mode == CaptureMode.VIDEO
    assert controller.state.last_error.kind == ErrorKind.INVALID_STATE

def test_mixed_captures_fill_gallery_newest_first(controller, clock):
    async def scenario():
        await controller.on_screen_enter()
        await controller.capture_photo()
        await controller.toggle_mode()
        clock.now = 3000
        await controller.start_recording()
        await controller.stop_recording()
        await controller.toggle_mode()
        clock.now = 4000
        await controller.capture_photo()
        return controller.state.gallery

    gallery = run(scenario())

    assert names(gallery) == ["4000.jpg", "3000.mp4", "1000.jpg"]
    assert [a.kind for a in gallery] == [MediaKind.PHOTO, MediaKind.VIDEO, MediaKind.PHOTO]

# --- Flash ---

def test_toggle_flash_twice_restores_mode(controller, capture_device):
    async def scenario():
        await controller.on_screen_enter()
        first = await controller.toggle_flash()
        second = await controller.toggle_flash()
        return first, second

    first, second = run(scenario())

    assert first == FlashMode.TORCH
    assert second == FlashMode.OFF
    flashes = [e[1] for e in capture_device.events if e[0] == "flash"]
    assert flashes == [FlashMode.OFF, FlashMode.TORCH, FlashMode.OFF]

def test_flash_chosen_before_initialize_is_applied_on_open(controller, capture_device):
    async def scenario():
        await controller.toggle_flash()
        await controller.on_screen_enter()

    run(scenario())

    assert controller.state.session.flash_mode == FlashMode.TORCH
    assert [e for e in capture_device.events if e[0] == "flash"] == [("flash", FlashMode.TORCH)]

# --- Gallery and preview ---

def test_gallery_open_scans_and_close_discards(controller, media_store):
    media_store.root.mkdir(parents=True)
    (media_store.root / "1500.jpg").write_bytes(b"x")
    (media_store.root / "notes.txt").write_text("ignored")

    async def scenario():
        opened = await controller.toggle_gallery()
        seen = names(controller.state.gallery)
        closed = await controller.toggle_gallery()
        return opened, seen, closed

    opened, seen, closed = run(scenario())

    assert opened is True
    assert seen == ["1500.jpg"]
    assert closed is False
    assert controller.state.gallery == []

def test_storage_failure_keeps_stale_gallery(controller, media_store, monkeypatch):
    async def scenario():
        await controller.on_screen_enter()
        await controller.capture_photo()

        def broken_scan():
            raise StorageFailure("disk unplugged")

        monkeypatch.setattr(media_store, "scan", broken_scan)
        return await controller.refresh_gallery()

    assert run(scenario()) is None
    assert names(controller.state.gallery) == ["1000.jpg"]
    assert controller.state.last_error.kind == ErrorKind.STORAGE_FAILURE

def test_open_photo_never_creates_player(controller, playback_device):
    async def scenario():
        await controller.on_screen_enter()
        asset = await controller.capture_photo()
        return await controller.open_asset(asset)

    asset = run(scenario())

    assert controller.state.opened_asset == asset
    assert controller.state.player is None
    assert playback_device.events == []

def test_open_video_disposes_previous_player_first(controller, playback_device, clock):
    async def scenario():
        await controller.on_screen_enter()
        await controller.toggle_mode()
        await controller.start_recording()
        first = await controller.stop_recording()
        clock.now = 2000
        await controller.start_recording()
        second = await controller.stop_recording()
        await controller.open_asset(first)
        await controller.open_asset(second)
        return first, second

    first, second = run(scenario())

    assert playback_device.events == [
        ("open", "1000.mp4"), ("play", "1000.mp4"),
        ("close", "1000.mp4"),
        ("open", "2000.mp4"), ("play", "2000.mp4"),
    ]
    assert len(playback_device.live) == 1
    assert controller.state.player.asset == second
    assert controller.state.player.playing

def test_player_open_failure_is_reported(controller, playback_device, media_store):
    playback_device.fail_open = True

    async def scenario():
        await controller.on_screen_enter()
        await controller.toggle_mode()
        await controller.start_recording()
        asset = await controller.stop_recording()
        return await controller.open_asset(asset)

    assert run(scenario()) is None
    assert controller.state.player is None
    assert controller.state.last_error.kind == ErrorKind.PLAYBACK_FAILURE

def test_close_asset_disposes_player(controller, playback_device):
    async def scenario():
        await controller.on_screen_enter()
        await controller.toggle_mode()
        await controller.start_recording()
        asset = await controller.stop_recording()
        await controller.open_asset(asset)
        controller.close_asset()

    run(scenario())

    assert playback_device.live == []
    assert controller.state.opened_asset is None
    assert controller.state.player is None

# --- Observation ---

def test_listeners_see_every_transition(controller):
    statuses = []
    controller.add_listener(lambda state: statuses.append(state.status))

    run(controller.on_screen_enter())

    assert statuses[0] == SessionStatus.INITIALIZING
    assert SessionStatus.READY in statuses

def test_failing_listener_does_not_break_controller(controller):
    def broken(state):
        raise RuntimeError("view crashed")

    controller.add_listener(broken)
    run(controller.on_screen_enter())

    assert controller.state.status == SessionStatus.READY

@pytest.mark.parametrize("facing, expected", [(Facing.BACK, BACK), (Facing.FRONT, FRONT)])
def test_select_device_matches_facing(controller, facing, expected):
    assert run(controller.select_device(facing)) == expected
