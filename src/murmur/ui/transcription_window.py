"""
Main transcription window.

Accepts a dropped audio file, shows the live decoder preview while a run is
in progress and the reconciled transcript once segments arrive, plus the
model load progress and a footer with the current model, language and state.
"""

import html
import os
import platform
from typing import Iterable, Optional

from PySide6.QtCore import QUrl, Qt, Signal
from PySide6.QtGui import QDragEnterEvent, QDropEvent, QGuiApplication
from PySide6.QtWidgets import (
    QHBoxLayout,
    QLabel,
    QProgressBar,
    QPushButton,
    QTextEdit,
    QVBoxLayout,
    QWidget,
)

from ..core.transcript.reconciler import TranscriptSnapshot
from ..core.transcript.segments import format_segments

AUDIO_EXTENSIONS = (
    ".wav",
    ".mp3",
    ".m4a",
    ".flac",
    ".ogg",
    ".aac",
    ".aiff",
    ".caf",
    ".mp4",
    ".webm",
)

PROGRESS_STEPS = 1000
NO_TRANSCRIPTION = "No transcription available."
NOT_LOADED = "Not loaded"


def accepted_audio_path(urls: Iterable[QUrl]) -> Optional[str]:
    """Local path of the first dropped file if it is a supported audio file."""
    for url in urls:
        if not url.isLocalFile():
            return None
        path = url.toLocalFile()
        if os.path.splitext(path)[1].lower() in AUDIO_EXTENSIONS:
            return path
        return None
    return None


class TranscriptionWindow(QWidget):
    """
    Signals:
        file_dropped: A supported audio file was dropped (path)
        record_requested: Record button pressed while idle
        stop_requested: Record button pressed while recording
        cancel_requested: Cancel button pressed
    """

    file_dropped = Signal(str)
    record_requested = Signal()
    stop_requested = Signal()
    cancel_requested = Signal()

    def __init__(self, parent=None):
        super().__init__(parent)
        self.setWindowTitle("MurMur")
        self.setWindowFlags(self.windowFlags() | Qt.WindowStaysOnTopHint)
        self.setAcceptDrops(True)
        self.resize(500, 350)

        self._recording = False
        self._with_timestamps = False

        self._setup_ui()

    def _setup_ui(self) -> None:
        layout = QVBoxLayout(self)
        layout.setSpacing(8)
        layout.setContentsMargins(12, 12, 12, 12)

        self.drop_label = QLabel("Drop an audio file here")
        self.drop_label.setAlignment(Qt.AlignCenter)
        self.drop_label.setStyleSheet(
            "border: 2px dashed #888; border-radius: 6px; padding: 12px; color: #888;"
        )
        layout.addWidget(self.drop_label)

        self.transcript_view = QTextEdit()
        self.transcript_view.setReadOnly(True)
        self.transcript_view.setPlaceholderText(NO_TRANSCRIPTION)
        layout.addWidget(self.transcript_view, 1)

        self.progress_bar = QProgressBar()
        self.progress_bar.setMinimum(0)
        self.progress_bar.setMaximum(PROGRESS_STEPS)
        self.progress_bar.setValue(0)
        self.progress_bar.setTextVisible(False)
        layout.addWidget(self.progress_bar)

        self.status_label = QLabel(NOT_LOADED)
        self.status_label.setStyleSheet("color: #888; font-size: 11px;")
        layout.addWidget(self.status_label)

        button_layout = QHBoxLayout()

        self.record_button = QPushButton("Record")
        self.record_button.clicked.connect(self._on_record_clicked)
        button_layout.addWidget(self.record_button)

        self.cancel_button = QPushButton("Cancel")
        self.cancel_button.setEnabled(False)
        self.cancel_button.clicked.connect(self.cancel_requested.emit)
        button_layout.addWidget(self.cancel_button)

        button_layout.addStretch()

        self.copy_button = QPushButton("Copy")
        self.copy_button.clicked.connect(self.copy_transcript)
        button_layout.addWidget(self.copy_button)

        self.clear_button = QPushButton("Clear")
        self.clear_button.clicked.connect(self.clear_transcript)
        button_layout.addWidget(self.clear_button)

        layout.addLayout(button_layout)

        self.footer_label = QLabel()
        self.footer_label.setStyleSheet("color: #666; font-size: 11px;")
        layout.addWidget(self.footer_label)

        self.device_label = QLabel(f"{platform.node()} • {platform.platform()}")
        self.device_label.setStyleSheet("color: #999; font-size: 10px;")
        layout.addWidget(self.device_label)

    def dragEnterEvent(self, event: QDragEnterEvent) -> None:
        if accepted_audio_path(event.mimeData().urls()):
            event.acceptProposedAction()
        else:
            event.ignore()

    def dropEvent(self, event: QDropEvent) -> None:
        path = accepted_audio_path(event.mimeData().urls())
        if path is None:
            event.ignore()
            return
        event.acceptProposedAction()
        self.file_dropped.emit(path)

    def _on_record_clicked(self) -> None:
        if self._recording:
            self.stop_requested.emit()
        else:
            self.record_requested.emit()

    def set_recording(self, recording: bool) -> None:
        self._recording = recording
        self.record_button.setText("Stop" if recording else "Record")

    def set_busy(self, busy: bool) -> None:
        self.cancel_button.setEnabled(busy)
        self.drop_label.setEnabled(not busy)

    def set_record_enabled(self, enabled: bool) -> None:
        self.record_button.setEnabled(enabled or self._recording)

    def set_with_timestamps(self, enabled: bool) -> None:
        self._with_timestamps = enabled

    def set_progress(self, value: float) -> None:
        self.progress_bar.setValue(int(max(0.0, min(1.0, value)) * PROGRESS_STEPS))

    @property
    def progress(self) -> float:
        return self.progress_bar.value() / PROGRESS_STEPS

    def set_status(self, message: str) -> None:
        self.status_label.setText(message)

    def set_footer(
        self,
        model: str,
        language: str,
        state: str,
        real_time_factor: Optional[float] = None,
        tokens_per_second: Optional[float] = None,
    ) -> None:
        parts = [model, language, state]
        if real_time_factor:
            parts.append(f"RTF {real_time_factor:.2f}x")
        if tokens_per_second:
            parts.append(f"{tokens_per_second:.1f} tok/s")
        self.footer_label.setText(" • ".join(parts))

    def show_preview(self, text: str) -> None:
        self.transcript_view.setPlainText(text)

    def show_snapshot(self, snapshot: TranscriptSnapshot) -> None:
        confirmed = format_segments(snapshot.confirmed, self._with_timestamps)
        unconfirmed = format_segments(snapshot.unconfirmed, self._with_timestamps)

        html_lines = [html.escape(line) for line in confirmed]
        html_lines += [
            f'<span style="color: #888;">{html.escape(line)}</span>' for line in unconfirmed
        ]
        if html_lines:
            self.transcript_view.setHtml("<br>".join(html_lines))
        else:
            self.transcript_view.setPlainText(NO_TRANSCRIPTION)

    def show_placeholder(self, text: str) -> None:
        self.transcript_view.setPlainText(text)

    def transcript_text(self) -> str:
        return self.transcript_view.toPlainText()

    def copy_transcript(self) -> None:
        QGuiApplication.clipboard().setText(self.transcript_text())

    def clear_transcript(self) -> None:
        self.transcript_view.clear()
