from pathlib import Path
from typing import Optional
import cv2
import numpy as np
from PyQt6.QtGui import QImage, QPixmap

def frame_to_pixmap(frame: np.ndarray) -> QPixmap:
    """Converts a BGR (OpenCV) frame to QPixmap."""
    rgb_frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
    height, width, channel = rgb_frame.shape
    bytes_per_line = channel * width
    q_img = QImage(rgb_frame.data, width, height, bytes_per_line, QImage.Format.Format_RGB888)
    # Copy so the pixmap outlives the numpy buffer
    return QPixmap.fromImage(q_img.copy())

def load_pixmap(path: Path) -> Optional[QPixmap]:
    pixmap = QPixmap(str(path))
    if pixmap.isNull():
        return None
    return pixmap
