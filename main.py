import argparse
import sys
from pathlib import Path

from snapcam.core.config import settings, ensure_directories
from snapcam.core.types import Facing
from snapcam.infra.logging import setup_logging, get_logger

logger = get_logger(__name__)

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="SnapCam camera")
    parser.add_argument("--mock", action="store_true", help="Use synthetic cameras instead of hardware")
    parser.add_argument("--media-dir", type=Path, help="Override the media directory")
    parser.add_argument("--facing", type=str, choices=[f.value for f in Facing], help="Camera to start with")
    return parser.parse_args(argv)

def build_controller(cfg=settings):
    """Wires devices and storage into a CameraScreenController."""
    from snapcam.camera.mock_camera import MockCaptureDevice
    from snapcam.camera.playback import OpenCVPlaybackDevice
    from snapcam.camera.real_camera import OpenCVCaptureDevice
    from snapcam.core.controller import CameraScreenController
    from snapcam.infra.storage import MediaStore

    if cfg.USE_MOCK_CAMERA:
        logger.info("Starting with MOCK cameras")
        capture_device = MockCaptureDevice()
    else:
        capture_device = OpenCVCaptureDevice(cfg.CAMERA_INDICES, video_fps=cfg.VIDEO_FPS)

    return CameraScreenController(
        capture_device=capture_device,
        media_store=MediaStore(cfg.MEDIA_DIR),
        playback_device=OpenCVPlaybackDevice(),
        resolution=cfg.RESOLUTION_PRESET,
        default_facing=cfg.DEFAULT_FACING,
    )

def main(argv=None):
    args = parse_args(argv)

    # Override settings if provided via CLI
    if args.mock:
        settings.USE_MOCK_CAMERA = True
    if args.media_dir:
        settings.MEDIA_DIR = args.media_dir
    if args.facing:
        settings.DEFAULT_FACING = Facing(args.facing)

    setup_logging()
    ensure_directories(settings)
    logger.info(f"Media directory: {settings.MEDIA_DIR}")

    from PyQt6.QtWidgets import QApplication
    from snapcam.gui.bridge import AsyncBridge
    from snapcam.gui.window import MainWindow

    app = QApplication(sys.argv if argv is None else [sys.argv[0], *argv])

    bridge = AsyncBridge()
    bridge.start()

    controller = build_controller(settings)
    window = MainWindow(controller, bridge, preview_fps=settings.PREVIEW_FPS,
                        gallery_columns=settings.GALLERY_COLUMNS)
    window.show()

    exit_code = app.exec()
    controller.capture_device.cleanup()
    sys.exit(exit_code)

if __name__ == "__main__":
    main()
