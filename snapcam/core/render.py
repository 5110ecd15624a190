from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field

from snapcam.core.types import CaptureMode, FlashMode, ScreenState, SessionStatus

class GalleryTile(BaseModel):
    path: Path
    is_video: bool
    label: str

class ScreenModel(BaseModel):
    """What the camera screen should display. Produced by render(), consumed by the view."""
    show_gallery: bool = False
    show_spinner: bool = False
    show_preview: bool = False
    status_text: str = ""
    flash_icon: str = "flash_off"
    mode_label: str = "PHOTO"
    shutter_icon: str = "camera"
    tap_enabled: bool = False
    long_press_enabled: bool = False
    release_enabled: bool = False
    mode_toggle_enabled: bool = True
    facing_toggle_enabled: bool = False
    gallery_columns: int = 3
    gallery_tiles: List[GalleryTile] = Field(default_factory=list)
    dialog_path: Optional[Path] = None
    dialog_is_video: bool = False
    dialog_loading: bool = False
    error_message: Optional[str] = None

STATUS_TEXT = {
    SessionStatus.UNINITIALIZED: "Camera off",
    SessionStatus.INITIALIZING: "Starting camera...",
    SessionStatus.READY: "Ready",
    SessionStatus.FAILED: "Camera unavailable",
}

def render(state: ScreenState, gallery_columns: int = 3) -> ScreenModel:
    """Pure projection of the controller state onto the screen."""
    status = state.status
    ready = status == SessionStatus.READY
    recording = state.recording.active
    video_mode = state.capture_mode == CaptureMode.VIDEO

    if recording:
        shutter_icon = "stop"
        status_text = "Recording"
    else:
        shutter_icon = "videocam" if video_mode else "camera"
        status_text = STATUS_TEXT[status]

    tiles = [
        GalleryTile(path=asset.path, is_video=asset.is_video, label=asset.name)
        for asset in state.gallery
    ] if state.gallery_visible else []

    opened = state.opened_asset
    return ScreenModel(
        show_gallery=state.gallery_visible,
        show_spinner=not state.gallery_visible and status == SessionStatus.INITIALIZING,
        show_preview=not state.gallery_visible and ready,
        status_text=status_text,
        flash_icon="flash_on" if state.flash_mode == FlashMode.TORCH else "flash_off",
        mode_label="VIDEO" if video_mode else "PHOTO",
        shutter_icon=shutter_icon,
        tap_enabled=ready and not video_mode,
        long_press_enabled=ready and video_mode and not recording,
        release_enabled=ready and video_mode and recording,
        mode_toggle_enabled=not recording,
        facing_toggle_enabled=not recording and status in (SessionStatus.READY, SessionStatus.FAILED),
        gallery_columns=gallery_columns,
        gallery_tiles=tiles,
        dialog_path=opened.path if opened is not None else None,
        dialog_is_video=opened is not None and opened.is_video,
        dialog_loading=state.player is not None and not state.player.ready,
        error_message=state.last_error.message if state.last_error else None,
    )
