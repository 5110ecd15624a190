from snapcam.core.types import ErrorKind

class CameraError(Exception):
    """Base class for every failure the camera screen knows how to absorb."""
    kind = ErrorKind.CAPTURE_FAILURE

class DeviceUnavailable(CameraError):
    kind = ErrorKind.DEVICE_UNAVAILABLE

class InitializationFailure(CameraError):
    kind = ErrorKind.INITIALIZATION_FAILURE

class CaptureFailure(CameraError):
    kind = ErrorKind.CAPTURE_FAILURE

class RecordingFailure(CameraError):
    kind = ErrorKind.RECORDING_FAILURE

class StorageFailure(CameraError):
    kind = ErrorKind.STORAGE_FAILURE

class PlaybackFailure(CameraError):
    kind = ErrorKind.PLAYBACK_FAILURE

class InvalidState(CameraError):
    kind = ErrorKind.INVALID_STATE

class OperationInProgress(CameraError):
    kind = ErrorKind.OPERATION_IN_PROGRESS

class SessionClosed(CameraError):
    kind = ErrorKind.SESSION_CLOSED
