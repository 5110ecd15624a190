import os
from pathlib import Path
from typing import Dict
from pydantic_settings import BaseSettings, SettingsConfigDict

from snapcam.core.types import Facing, ResolutionPreset

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="SNAPCAM_")

    # System
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATA_DIR: Path = BASE_DIR / "data"
    LOG_LEVEL: str = "INFO"

    # Storage
    MEDIA_DIR: Path = DATA_DIR / "media"
    LOG_DIR: Path = DATA_DIR / "logs"

    # Camera
    USE_MOCK_CAMERA: bool = False
    RESOLUTION_PRESET: ResolutionPreset = ResolutionPreset.HIGH
    DEFAULT_FACING: Facing = Facing.BACK
    CAMERA_INDICES: Dict[str, int] = {"back": 0, "front": 1} # OpenCV device index per facing
    PREVIEW_FPS: int = 30
    VIDEO_FPS: float = 30.0

    # Gallery
    GALLERY_COLUMNS: int = 3

# Global settings instance
settings = Settings()

def ensure_directories(cfg: Settings = settings):
    """Creates the media and log directories if they are missing."""
    os.makedirs(cfg.MEDIA_DIR, exist_ok=True)
    os.makedirs(cfg.LOG_DIR, exist_ok=True)
