from typing import List, Optional

from PyQt6.QtWidgets import (
    QMainWindow, QWidget, QVBoxLayout, QHBoxLayout, QPushButton, QLabel, QDialog,
    QScrollArea, QGridLayout, QStackedWidget, QSizePolicy, QStatusBar,
)
from PyQt6.QtCore import Qt, QTimer, QEvent, QObject, pyqtSignal
from PyQt6.QtGui import QColor, QIcon, QPainter, QPixmap

from snapcam.camera.playback import read_thumbnail
from snapcam.core.controller import CameraScreenController
from snapcam.core.render import GalleryTile, ScreenModel, render
from snapcam.core.types import ScreenState
from snapcam.gui.bridge import AsyncBridge
from snapcam.gui.image_utils import frame_to_pixmap, load_pixmap
from snapcam.infra.logging import get_logger

logger = get_logger(__name__)

THUMB_SIZE = 160
LONG_PRESS_MS = 400

class StateRelay(QObject):
    """Carries rendered screen models from the asyncio thread to the Qt thread."""
    screen_changed = pyqtSignal(object)

class PreviewLabel(QLabel):
    """A QLabel that draws a scaled pixmap in its paintEvent."""

    def __init__(self, text=""):
        super().__init__(text)
        self.pixmap_frame: Optional[QPixmap] = None
        self.setSizePolicy(QSizePolicy.Policy.Ignored, QSizePolicy.Policy.Ignored)
        self.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.setStyleSheet("background-color: black; color: white;")

    def set_frame(self, pixmap: Optional[QPixmap]):
        self.pixmap_frame = pixmap
        self.update()

    def paintEvent(self, event):
        if self.pixmap_frame is None or self.pixmap_frame.isNull():
            super().paintEvent(event)
            return

        painter = QPainter(self)
        painter.fillRect(self.rect(), QColor("#000000"))
        scaled = self.pixmap_frame.scaled(
            self.size(), Qt.AspectRatioMode.KeepAspectRatio, Qt.TransformationMode.SmoothTransformation
        )
        x = (self.width() - scaled.width()) // 2
        y = (self.height() - scaled.height()) // 2
        painter.drawPixmap(x, y, scaled)

class ShutterButton(QPushButton):
    """Round shutter: a tap takes a photo, press-and-hold records video."""
    tapped = pyqtSignal()
    long_pressed = pyqtSignal()
    long_press_released = pyqtSignal()

    def __init__(self):
        super().__init__()
        self.setFixedSize(70, 70)
        self._long_press_fired = False
        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.setInterval(LONG_PRESS_MS)
        self._timer.timeout.connect(self._on_hold)
        self.pressed.connect(self._on_pressed)
        self.released.connect(self._on_released)

    def _on_pressed(self):
        self._long_press_fired = False
        self._timer.start()

    def _on_hold(self):
        self._long_press_fired = True
        self.long_pressed.emit()

    def _on_released(self):
        self._timer.stop()
        if self._long_press_fired:
            self.long_press_released.emit()
        else:
            self.tapped.emit()

    def set_icon_name(self, name: str):
        glyphs = {"camera": "◎", "videocam": "●", "stop": "■"}
        color = "red" if name in ("stop", "videocam") else "black"
        self.setText(glyphs.get(name, ""))
        self.setStyleSheet(
            "QPushButton { border-radius: 35px; background-color: white; border: 3px solid black;"
            f" font-size: 28px; color: {color}; }}"
        )

class AssetDialog(QDialog):
    """Enlarged view of one gallery item: still image or a playing video."""

    def __init__(self, controller: CameraScreenController, bridge: AsyncBridge, tile: GalleryTile,
                 fps: int = 30, parent=None):
        super().__init__(parent)
        self.controller = controller
        self.bridge = bridge
        self.tile = tile
        self.setWindowTitle(tile.label)
        self.resize(800, 600)

        layout = QVBoxLayout(self)
        self.view = PreviewLabel("Loading...")
        layout.addWidget(self.view)

        self.timer = QTimer(self)
        self.timer.timeout.connect(self._next_frame)

        if tile.is_video:
            self.timer.start(int(1000 / max(fps, 1)))
        else:
            pixmap = load_pixmap(tile.path)
            if pixmap is None:
                self.view.setText(f"Could not load {tile.label}")
            else:
                self.view.set_frame(pixmap)

    def _next_frame(self):
        frame = self.controller.player_frame()
        if frame is not None:
            self.view.set_frame(frame_to_pixmap(frame))

    def done(self, result):
        self.timer.stop()
        self.bridge.call_soon(self.controller.close_asset)
        super().done(result)

class MainWindow(QMainWindow):
    def __init__(self, controller: CameraScreenController, bridge: AsyncBridge,
                 preview_fps: int = 30, gallery_columns: int = 3):
        super().__init__()
        self.controller = controller
        self.bridge = bridge
        self.preview_fps = preview_fps
        self.gallery_columns = gallery_columns
        self.model = ScreenModel()
        self._gallery_tiles: List[GalleryTile] = []
        self.dialog: Optional[AssetDialog] = None
        self._dismissed_path = None

        self.relay = StateRelay()
        self.relay.screen_changed.connect(self.apply_model)
        self.controller.add_listener(self._on_state)

        self.init_ui()

        self.preview_timer = QTimer(self)
        self.preview_timer.timeout.connect(self.update_preview)
        self.preview_timer.start(int(1000 / max(preview_fps, 1)))

        self.bridge.run_coroutine(self.controller.on_screen_enter())

    def _on_state(self, state: ScreenState):
        # Runs on the asyncio thread
        self.relay.screen_changed.emit(render(state, self.gallery_columns))

    def init_ui(self):
        self.setWindowTitle("SnapCam")
        self.resize(480, 800)
        self.setStyleSheet("QMainWindow, QWidget { background-color: #121212; color: white; }")

        central = QWidget()
        self.setCentralWidget(central)
        layout = QVBoxLayout(central)
        layout.setContentsMargins(0, 0, 0, 0)

        # Top bar
        top_bar = QHBoxLayout()
        top_bar.setContentsMargins(16, 8, 16, 8)
        self.btn_gallery = QPushButton("Gallery")
        self.btn_gallery.clicked.connect(lambda: self.bridge.run_coroutine(self.controller.toggle_gallery()))
        top_bar.addWidget(self.btn_gallery)

        top_bar.addStretch()
        self.btn_flash = QPushButton("Flash: Off")
        self.btn_flash.clicked.connect(lambda: self.bridge.run_coroutine(self.controller.toggle_flash()))
        top_bar.addWidget(self.btn_flash)

        top_bar.addStretch()
        self.btn_switch = QPushButton("Switch")
        self.btn_switch.clicked.connect(lambda: self.bridge.run_coroutine(self.controller.toggle_facing()))
        top_bar.addWidget(self.btn_switch)
        layout.addLayout(top_bar)

        # Camera page / gallery page
        self.stack = QStackedWidget()
        self.preview = PreviewLabel("Starting camera...")
        self.stack.addWidget(self.preview)

        self.gallery_scroll = QScrollArea()
        self.gallery_scroll.setWidgetResizable(True)
        self.gallery_widget = QWidget()
        self.gallery_grid = QGridLayout(self.gallery_widget)
        self.gallery_grid.setSpacing(4)
        self.gallery_scroll.setWidget(self.gallery_widget)
        self.stack.addWidget(self.gallery_scroll)
        layout.addWidget(self.stack, stretch=1)

        # Bottom bar
        bottom_bar = QHBoxLayout()
        bottom_bar.setContentsMargins(16, 16, 16, 24)
        bottom_bar.addStretch()
        self.btn_mode = QPushButton("PHOTO")
        self.btn_mode.setStyleSheet(
            "QPushButton { background-color: rgba(0, 0, 0, 96); border-radius: 14px; padding: 8px 16px; }"
        )
        self.btn_mode.clicked.connect(lambda: self.bridge.run_coroutine(self.controller.toggle_mode()))
        bottom_bar.addWidget(self.btn_mode)
        bottom_bar.addSpacing(20)

        self.shutter = ShutterButton()
        self.shutter.set_icon_name("camera")
        self.shutter.tapped.connect(lambda: self.bridge.run_coroutine(self.controller.on_capture_tap()))
        self.shutter.long_pressed.connect(
            lambda: self.bridge.run_coroutine(self.controller.on_shutter_long_press()))
        self.shutter.long_press_released.connect(
            lambda: self.bridge.run_coroutine(self.controller.on_long_press_release()))
        bottom_bar.addWidget(self.shutter)
        bottom_bar.addStretch()
        layout.addLayout(bottom_bar)

        self.setStatusBar(QStatusBar())

    def apply_model(self, model: ScreenModel):
        self.model = model

        self.stack.setCurrentIndex(1 if model.show_gallery else 0)
        if not model.show_preview:
            self.preview.set_frame(None)
            self.preview.setText("Starting camera..." if model.show_spinner else model.status_text)

        self.btn_flash.setText("Flash: On" if model.flash_icon == "flash_on" else "Flash: Off")
        self.btn_switch.setEnabled(model.facing_toggle_enabled)
        self.btn_mode.setText(model.mode_label)
        self.btn_mode.setEnabled(model.mode_toggle_enabled)
        self.shutter.set_icon_name(model.shutter_icon)
        self.shutter.setEnabled(model.tap_enabled or model.long_press_enabled or model.release_enabled)

        if model.show_gallery and model.gallery_tiles != self._gallery_tiles:
            self.populate_gallery(model.gallery_tiles)

        if model.dialog_path is None:
            self._dismissed_path = None
        elif self.dialog is None and model.dialog_path != self._dismissed_path:
            self.open_dialog(model)

        if model.error_message:
            self.statusBar().showMessage(model.error_message, 5000)
        else:
            self.statusBar().showMessage(model.status_text)

    def update_preview(self):
        if not self.model.show_preview:
            return
        frame = self.controller.preview_frame()
        if frame is not None:
            self.preview.set_frame(frame_to_pixmap(frame))

    def populate_gallery(self, tiles: List[GalleryTile]):
        self._gallery_tiles = list(tiles)
        for i in reversed(range(self.gallery_grid.count())):
            self.gallery_grid.itemAt(i).widget().setParent(None)

        if not tiles:
            self.gallery_grid.addWidget(QLabel("No photos or videos yet."), 0, 0)
            return

        cols = self.model.gallery_columns
        for index, tile in enumerate(tiles):
            button = QPushButton()
            button.setFixedSize(THUMB_SIZE, THUMB_SIZE)
            button.setIconSize(button.size())
            button.setIcon(QIcon(self._thumbnail(tile)))
            if tile.is_video:
                button.setText("▶")
                button.setStyleSheet("font-size: 32px; color: rgba(255, 255, 255, 180);")
            button.clicked.connect(lambda checked, t=tile: self.request_open(t))
            self.gallery_grid.addWidget(button, index // cols, index % cols)

    def _thumbnail(self, tile: GalleryTile) -> QPixmap:
        pixmap = None
        if tile.is_video:
            frame = read_thumbnail(tile.path)
            if frame is not None:
                pixmap = frame_to_pixmap(frame)
        else:
            pixmap = load_pixmap(tile.path)

        if pixmap is None:
            pixmap = QPixmap(THUMB_SIZE, THUMB_SIZE)
            pixmap.fill(QColor("grey"))
        return pixmap.scaled(THUMB_SIZE, THUMB_SIZE, Qt.AspectRatioMode.KeepAspectRatioByExpanding)

    def request_open(self, tile: GalleryTile):
        asset = next((a for a in self.controller.state.gallery if a.path == tile.path), None)
        if asset is None:
            logger.warning(f"Gallery item {tile.label} is gone")
            return
        self.bridge.run_coroutine(self.controller.open_asset(asset))

    def open_dialog(self, model: ScreenModel):
        tile = next((t for t in self._gallery_tiles if t.path == model.dialog_path), None)
        if tile is None:
            return
        fps = self.preview_fps
        if self.controller.player_handle is not None:
            fps = int(self.controller.player_handle.fps)
        self.dialog = AssetDialog(self.controller, self.bridge, tile, fps, self)
        self.dialog.finished.connect(self._on_dialog_closed)
        self.dialog.show()

    def _on_dialog_closed(self):
        # Late updates for the asset being closed must not reopen it
        self._dismissed_path = self.dialog.tile.path if self.dialog else None
        self.dialog = None

    def changeEvent(self, event):
        # Minimize/restore stand in for the mobile background/resume lifecycle
        if event.type() == QEvent.Type.WindowStateChange:
            if self.windowState() & Qt.WindowState.WindowMinimized:
                self.bridge.run_coroutine(self.controller.on_app_backgrounded())
            elif event.oldState() & Qt.WindowState.WindowMinimized:
                self.bridge.run_coroutine(self.controller.on_app_resumed())
        super().changeEvent(event)

    def closeEvent(self, event):
        self.preview_timer.stop()
        self.controller.remove_listener(self._on_state)
        future = self.bridge.run_coroutine(self.controller.on_screen_exit())
        future.result(timeout=5)
        self.bridge.stop()
        event.accept()
