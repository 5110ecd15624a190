import os
import shutil
from pathlib import Path
from typing import List, Optional

from snapcam.camera.interface import TemporaryFile
from snapcam.core.errors import StorageFailure
from snapcam.core.types import MediaAsset, MediaKind
from snapcam.infra.logging import get_logger

logger = get_logger(__name__)

# The filename is the only metadata: "<epoch-millis><suffix>"
SUFFIXES = {
    MediaKind.PHOTO: ".jpg",
    MediaKind.VIDEO: ".mp4",
}

def kind_for_path(path: Path) -> Optional[MediaKind]:
    for kind, suffix in SUFFIXES.items():
        if path.name.endswith(suffix):
            return kind
    return None

def asset_from_path(path: Path) -> Optional[MediaAsset]:
    """Builds a MediaAsset from a filename, or None if the suffix is not recognised."""
    path = Path(path)
    kind = kind_for_path(path)
    if kind is None:
        return None

    stem = path.name[:-len(SUFFIXES[kind])]
    timestamp_ms = int(stem) if stem.isdigit() else None
    return MediaAsset(path=path, kind=kind, timestamp_ms=timestamp_ms)

def newest_first(assets: List[MediaAsset]) -> List[MediaAsset]:
    """
    Orders by the timestamp embedded in the filename, newest first.
    Files without a numeric timestamp go last, by name.
    """
    stamped = [a for a in assets if a.timestamp_ms is not None]
    unstamped = [a for a in assets if a.timestamp_ms is None]
    stamped.sort(key=lambda a: (a.timestamp_ms, a.name), reverse=True)
    unstamped.sort(key=lambda a: a.name)
    return stamped + unstamped

class MediaStore:
    """
    Manages the filesystem directory holding captured photos and videos.
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    def join(self, name: str) -> Path:
        return self.root / name

    def list(self) -> List[Path]:
        """All entries of the media directory (missing directory lists as empty)."""
        if not self.root.exists():
            return []
        try:
            return [self.root / name for name in os.listdir(self.root)]
        except OSError as e:
            raise StorageFailure(f"Could not list {self.root}: {e}") from e

    def new_path(self, kind: MediaKind, timestamp_ms: int) -> Path:
        """
        Destination for a new capture, `<timestamp_ms>.jpg` or `.mp4`.
        Bumps the timestamp by a millisecond while the name is taken.
        """
        suffix = SUFFIXES[kind]
        path = self.join(f"{timestamp_ms}{suffix}")
        while path.exists():
            timestamp_ms += 1
            path = self.join(f"{timestamp_ms}{suffix}")
        return path

    def write(self, temp_file: TemporaryFile, dest_path: Path) -> Path:
        """
        Moves a captured temp file to `dest_path`.
        Goes through a `.part` file so a failed copy never leaves a half-written asset.
        """
        dest_path = Path(dest_path)
        partial_path = dest_path.with_name(dest_path.name + ".part")
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(temp_file.path), str(partial_path))
            os.replace(partial_path, dest_path)
        except OSError as e:
            try:
                os.remove(partial_path)
            except FileNotFoundError:
                pass
            raise StorageFailure(f"Could not save {dest_path.name}: {e}") from e

        logger.info(f"Saved media to {dest_path}")
        return dest_path

    def scan(self) -> List[MediaAsset]:
        """Photos and videos in the store, newest first."""
        assets = []
        for path in self.list():
            asset = asset_from_path(path)
            if asset is not None:
                assets.append(asset)
        return newest_first(assets)
