from enum import Enum
from pathlib import Path
from typing import Optional, List, Tuple
from pydantic import BaseModel, Field

class Facing(str, Enum):
    FRONT = "front"
    BACK = "back"

    def opposite(self) -> "Facing":
        return Facing.FRONT if self == Facing.BACK else Facing.BACK

class FlashMode(str, Enum):
    OFF = "off"
    TORCH = "torch"

class CaptureMode(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"

class SessionStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"

class ResolutionPreset(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"
    ULTRA_HIGH = "ultra_high"
    MAX = "max"

    @property
    def size(self) -> Optional[Tuple[int, int]]:
        """Target (width, height); None means whatever the sensor offers."""
        return RESOLUTION_SIZES[self]

RESOLUTION_SIZES = {
    ResolutionPreset.LOW: (320, 240),
    ResolutionPreset.MEDIUM: (640, 480),
    ResolutionPreset.HIGH: (1280, 720),
    ResolutionPreset.VERY_HIGH: (1920, 1080),
    ResolutionPreset.ULTRA_HIGH: (3840, 2160),
    ResolutionPreset.MAX: None,
}

class MediaKind(str, Enum):
    PHOTO = "photo"
    VIDEO = "video"

class ErrorKind(str, Enum):
    DEVICE_UNAVAILABLE = "device_unavailable"
    INITIALIZATION_FAILURE = "initialization_failure"
    CAPTURE_FAILURE = "capture_failure"
    RECORDING_FAILURE = "recording_failure"
    STORAGE_FAILURE = "storage_failure"
    PLAYBACK_FAILURE = "playback_failure"
    INVALID_STATE = "invalid_state"
    OPERATION_IN_PROGRESS = "operation_in_progress"
    SESSION_CLOSED = "session_closed"

class DeviceDescriptor(BaseModel):
    """One camera as reported by CaptureDevice.enumerate()."""
    id: str
    facing: Facing
    name: str = ""

class MediaAsset(BaseModel):
    path: Path
    kind: MediaKind
    timestamp_ms: Optional[int] = None # Parsed from the filename stem

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def is_video(self) -> bool:
        return self.kind == MediaKind.VIDEO

class CameraSession(BaseModel):
    device: DeviceDescriptor
    resolution: ResolutionPreset
    flash_mode: FlashMode = FlashMode.OFF
    status: SessionStatus = SessionStatus.UNINITIALIZED
    generation: int = 0

    @property
    def facing(self) -> Facing:
        return self.device.facing

class RecordingState(BaseModel):
    active: bool = False

class PreviewPlayerState(BaseModel):
    asset: MediaAsset
    ready: bool = False
    playing: bool = False

class ErrorInfo(BaseModel):
    kind: ErrorKind
    message: str

class ScreenState(BaseModel):
    """Everything the camera screen shows. Mutated only by the controller."""
    session: Optional[CameraSession] = None
    requested_facing: Facing = Facing.BACK
    flash_mode: FlashMode = FlashMode.OFF
    capture_mode: CaptureMode = CaptureMode.PHOTO
    recording: RecordingState = Field(default_factory=RecordingState)
    gallery_visible: bool = False
    gallery: List[MediaAsset] = Field(default_factory=list)
    opened_asset: Optional[MediaAsset] = None
    player: Optional[PreviewPlayerState] = None
    last_error: Optional[ErrorInfo] = None

    @property
    def status(self) -> SessionStatus:
        if self.session is None:
            return SessionStatus.UNINITIALIZED
        return self.session.status
