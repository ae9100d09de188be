"""
System tray icon and menu using PySide6.

Left-click opens the transcription window; right-click shows the model and
language menu, rebuilt from a :class:`MenuEntry` tree every time it opens.
"""

from enum import Enum, auto
from typing import Callable, Dict, Iterable, Optional, Tuple

from PySide6.QtCore import QObject, Qt, Signal
from PySide6.QtGui import QAction, QBrush, QColor, QIcon, QPainter, QPen, QPixmap
from PySide6.QtWidgets import QMenu, QSystemTrayIcon

from .. import __app_name__
from ..core.menu import MenuEntry

MenuProvider = Callable[[], Tuple[MenuEntry, ...]]


class TrayStatus(Enum):
    IDLE = auto()
    LOADING = auto()
    PROCESSING = auto()
    RECORDING = auto()
    ERROR = auto()


STATUS_COLORS: Dict[TrayStatus, QColor] = {
    TrayStatus.IDLE: QColor("#4CAF50"),
    TrayStatus.LOADING: QColor("#FF9800"),
    TrayStatus.PROCESSING: QColor("#2196F3"),
    TrayStatus.RECORDING: QColor("#F44336"),
    TrayStatus.ERROR: QColor("#9E9E9E"),
}

STATUS_LABELS: Dict[TrayStatus, str] = {
    TrayStatus.IDLE: "Ready",
    TrayStatus.LOADING: "Loading...",
    TrayStatus.PROCESSING: "Transcribing...",
    TrayStatus.RECORDING: "Recording",
    TrayStatus.ERROR: "Error",
}


def render_menu(menu: QMenu, entries: Iterable[MenuEntry]) -> None:
    """Replace the contents of ``menu`` with ``entries``."""
    menu.clear()
    for entry in entries:
        if entry.separator:
            menu.addSeparator()
        elif entry.children:
            submenu = menu.addMenu(entry.label)
            submenu.menuAction().setEnabled(entry.enabled)
            render_menu(submenu, entry.children)
        else:
            action = QAction(entry.label, menu)
            action.setEnabled(entry.enabled)
            if entry.checked is not None:
                action.setCheckable(True)
                action.setChecked(entry.checked)
            if entry.action is not None:
                action.triggered.connect(
                    lambda _checked=False, callback=entry.action: callback()
                )
            menu.addAction(action)


class SystemTray(QObject):
    """
    System tray icon with a status-colored indicator.

    Signals:
        open_window_requested: Emitted on a left-click on the icon
    """

    open_window_requested = Signal()

    def __init__(self, menu_provider: MenuProvider, parent: Optional[QObject] = None):
        super().__init__(parent)

        self._status = TrayStatus.LOADING
        self._message = ""
        self._menu_provider = menu_provider

        self._tray_icon = QSystemTrayIcon(self)
        self._menu = QMenu()
        self._menu.aboutToShow.connect(self.refresh_menu)
        self._tray_icon.setContextMenu(self._menu)
        self._tray_icon.activated.connect(self._on_activated)

        self.refresh_menu()
        self._update_icon()
        self._tray_icon.show()

    @property
    def status(self) -> TrayStatus:
        return self._status

    @property
    def menu(self) -> QMenu:
        return self._menu

    def refresh_menu(self) -> None:
        render_menu(self._menu, self._menu_provider())

    def _on_activated(self, reason: QSystemTrayIcon.ActivationReason) -> None:
        if reason == QSystemTrayIcon.ActivationReason.Trigger:
            self.open_window_requested.emit()

    def set_status(self, status: TrayStatus, message: str = "") -> None:
        self._status = status
        self._message = message
        self._update_icon()

    def tooltip(self) -> str:
        if self._status == TrayStatus.ERROR:
            return f"{__app_name__} - Error: {self._message}"
        if self._status == TrayStatus.LOADING and self._message:
            return f"{__app_name__} - {self._message}"
        return f"{__app_name__} - {STATUS_LABELS[self._status]}"

    def _update_icon(self) -> None:
        self._tray_icon.setIcon(QIcon(status_pixmap(self._status)))
        self._tray_icon.setToolTip(self.tooltip())

    def hide(self) -> None:
        self._tray_icon.hide()


def status_pixmap(status: TrayStatus, size: int = 22) -> QPixmap:
    """A filled disc in the status color with three waveform bars on top."""
    pixmap = QPixmap(size, size)
    pixmap.fill(Qt.transparent)

    color = STATUS_COLORS.get(status, QColor("#808080"))
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing)
    painter.setBrush(QBrush(color))
    painter.setPen(QPen(color.darker(120), 1))
    painter.drawEllipse(1, 1, size - 2, size - 2)

    painter.setPen(QPen(QColor("#FFFFFF"), 2, Qt.SolidLine, Qt.RoundCap))
    middle = size // 2
    heights = (0.15, 0.3, 0.15) if status != TrayStatus.ERROR else (0.0, 0.0, 0.0)
    for offset, height in zip((-5, 0, 5), heights):
        half = max(1, int(size * height))
        painter.drawLine(middle + offset, middle - half, middle + offset, middle + half)
    painter.end()
    return pixmap
