"""Application runtime."""

import signal
import sys
from functools import partial
from typing import Callable, List, Optional, Tuple

from PySide6.QtCore import QObject, QThread, QTimer, QUrl, Signal
from PySide6.QtGui import QDesktopServices
from PySide6.QtWidgets import QApplication

from murmur import __app_name__, __version__
from murmur.core.asr import (
    FileTranscriptionWorker,
    LiveTranscriptionWorker,
    ModelLoaderThread,
    ModelState,
    ProgressSimulator,
    TranscriptionResult,
)
from murmur.core.context import AppContext
from murmur.core.languages import available_languages
from murmur.core.menu import MenuEntry, build_tray_menu
from murmur.ui.transcription_window import NOT_LOADED, TranscriptionWindow
from murmur.ui.tray import SystemTray, TrayStatus
from murmur.utils.logger import get_logger, shutdown_logging

logger = get_logger(__name__)


class RemoteModelsThread(QThread):
    fetched = Signal(list, list)

    def __init__(self, context: AppContext, parent=None):
        super().__init__(parent)
        self._context = context

    def run(self):
        supported, disabled = self._context.fetch_remote_models()
        self.fetched.emit(supported, disabled)


class MurMurApp(QObject):

    def __init__(self, context: AppContext):
        super().__init__()

        self._context = context
        self._settings = context.settings
        self._manager = context.manager

        self._window = TranscriptionWindow()
        self._window.set_with_timestamps(self._settings.enable_timestamps)
        if self._settings.window_geometry:
            self._window.setGeometry(*self._settings.window_geometry)

        self._tray = SystemTray(menu_provider=self._build_menu)
        self._simulator = ProgressSimulator(parent=self)

        self._model_loader_thread: Optional[ModelLoaderThread] = None
        self._remote_models_thread: Optional[RemoteModelsThread] = None
        self._worker = None
        self._live_worker: Optional[LiveTranscriptionWorker] = None
        self._worker_active = False
        self._pending_start: Optional[Callable[[], None]] = None
        self._runtime_unavailable = False

        self._tray.open_window_requested.connect(self._show_window)
        self._simulator.progress_changed.connect(self._window.set_progress)

        self._window.file_dropped.connect(self._on_file_dropped)
        self._window.record_requested.connect(self._start_recording)
        self._window.stop_requested.connect(self._stop_recording)
        self._window.cancel_requested.connect(self._cancel)

        self._update_footer()

    def _build_menu(self) -> Tuple[MenuEntry, ...]:
        state = self._manager.state
        status = f"{self._settings.selected_model}: {state.description}"
        if self._runtime_unavailable:
            status = "Speech runtime unavailable"

        return build_tray_menu(
            catalog=self._context.catalog,
            selected_model=self._settings.selected_model,
            selected_language=self._settings.selected_language,
            languages=available_languages(),
            status=status,
            on_select_model=self._select_model,
            on_select_language=self._select_language,
            on_delete_model=self._delete_model,
            on_open_models_folder=self._open_models_folder,
            on_quit=self._quit,
            busy=state.is_busy,
        )

    def _show_window(self) -> None:
        self._window.show()
        self._window.raise_()
        self._window.activateWindow()

    def _update_footer(self, result: Optional[TranscriptionResult] = None) -> None:
        timings = result.timings if result is not None else None
        self._window.set_record_enabled(self._manager.is_loaded)
        self._window.set_footer(
            self._settings.selected_model,
            self._settings.selected_language,
            self._manager.state.description,
            real_time_factor=timings.real_time_factor if timings else None,
            tokens_per_second=timings.tokens_per_second if timings else None,
        )

    # Model loading

    def _select_model(self, model_name: str) -> None:
        if self._context.select_model(model_name):
            logger.info(f"Selected model: {model_name}")
            self._start_model_loading(model_name)

    def _select_language(self, language: str) -> None:
        logger.info(f"Selected language: {language}")
        self._context.select_language(language)
        self._update_footer()

    def _start_model_loading(self, model_name: str, redownload: bool = False) -> None:
        if self._runtime_unavailable:
            logger.warning("Speech runtime unavailable, not loading a model")
            return

        previous = self._model_loader_thread
        if previous is not None and previous.isRunning():
            logger.info(f"Superseding load of {previous.model_name}")

        self._simulator.stop()
        self._window.set_progress(0.0)

        loader = ModelLoaderThread(self._manager, model_name, redownload, parent=self)
        loader.state_changed.connect(self._on_model_state_changed)
        loader.progress.connect(self._on_load_progress)
        loader.init_failed.connect(self._on_runtime_unavailable)
        loader.finished.connect(self._on_model_loaded)
        self._model_loader_thread = loader
        loader.start()

    def _on_model_state_changed(self, state: ModelState, message: str) -> None:
        if self.sender() is not self._model_loader_thread:
            return

        logger.debug(f"Model state: {state.description} {message}")
        self._window.set_status(message or state.description)
        self._update_footer()

        if state == ModelState.PREWARMING:
            self._simulator.start(self._manager.progress)
        else:
            self._simulator.stop()

        if state == ModelState.LOADED:
            self._tray.set_status(TrayStatus.IDLE, message)
        elif state.is_busy:
            self._tray.set_status(TrayStatus.LOADING, message)

    def _on_load_progress(self, value: float) -> None:
        if self.sender() is not self._model_loader_thread:
            return
        if not self._simulator.is_running:
            self._window.set_progress(value)

    def _on_runtime_unavailable(self, message: str) -> None:
        self._runtime_unavailable = True
        self._tray.set_status(TrayStatus.ERROR, message)
        self._window.set_status(f"Speech runtime unavailable: {message}")

    def _on_model_loaded(self, success: bool, message: str) -> None:
        loader = self.sender()
        if loader is not self._model_loader_thread:
            logger.debug(f"Ignoring result of superseded load: {message}")
            return

        self._simulator.stop()
        self._update_footer()

        if success:
            logger.info(f"Model loading complete: {message}")
            self._window.set_progress(1.0)
            self._tray.set_status(TrayStatus.IDLE, message)
            self._context.refresh_catalog()
            return

        if loader.was_cancelled:
            logger.info("Model loading cancelled")
            self._window.set_status(message)
            self._tray.set_status(TrayStatus.IDLE)
            return

        logger.error(f"Model loading failed: {message}")
        self._window.set_progress(0.0)
        self._window.set_status(message)
        self._tray.set_status(TrayStatus.ERROR, message)

    def _delete_model(self, model_name: str) -> None:
        success, message = self._manager.delete_model(model_name)
        if success:
            logger.info(message)
            self._context.refresh_catalog()
            self._update_footer()
        self._window.set_status(message)

    def _open_models_folder(self) -> None:
        folder = self._manager.model_folder(self._settings.selected_model)
        if folder is None:
            logger.warning("No local models folder to open")
            return
        QDesktopServices.openUrl(QUrl.fromLocalFile(folder))

    def _on_remote_models(self, supported: List[str], disabled: List[str]) -> None:
        self._context.refresh_catalog(supported, disabled)

    # Transcription

    def _worker_running(self) -> bool:
        return self._worker is not None and self._worker_active

    def _replace_worker(self, start: Callable[[], None]) -> None:
        """Run ``start`` now, or once the running transcription has wound down.

        Cancellation is only noticed between decoded windows, so the old
        worker is never waited on here; its terminal signal starts the next.
        """
        self._pending_start = None
        if not self._worker_running():
            start()
            return

        logger.info("Cancelling running transcription")
        self._pending_start = start
        self._worker.cancel()
        self._stop_capture()
        self._window.set_status("Cancelling previous transcription...")

    def _start_pending(self) -> None:
        start, self._pending_start = self._pending_start, None
        if start is not None:
            start()

    def _stop_capture(self) -> None:
        self._live_worker = None
        if self._context.recorder.is_recording:
            self._context.recorder.stop()
            self._window.set_recording(False)

    def _connect_worker(self, worker) -> None:
        worker.preview.connect(self._window.show_preview)
        worker.segments.connect(self._window.show_snapshot)
        worker.finished.connect(self._on_transcription_complete)
        worker.error.connect(self._on_transcription_error)
        worker.cancelled.connect(self._on_transcription_cancelled)

    def _launch(self, worker) -> None:
        self._worker = worker
        self._worker_active = True
        self._connect_worker(worker)
        worker.start()

    def _on_file_dropped(self, path: str) -> None:
        if not self._manager.is_loaded:
            self._window.show_placeholder(NOT_LOADED)
            return
        self._replace_worker(partial(self._transcribe_file, path))

    def _transcribe_file(self, path: str) -> None:
        self._window.set_with_timestamps(self._settings.enable_timestamps)
        self._window.show_placeholder("")
        self._window.set_busy(True)
        self._window.set_status(f"Transcribing {path}...")
        self._tray.set_status(TrayStatus.PROCESSING)

        self._launch(FileTranscriptionWorker(self._context.engine, path, parent=self))

    def _start_recording(self) -> None:
        if not self._manager.is_loaded:
            self._window.show_placeholder(NOT_LOADED)
            return
        self._replace_worker(self._record)

    def _record(self) -> None:
        recorder = self._context.recorder
        if not recorder.start():
            error_msg = recorder.last_error or "Failed to start recording"
            self._tray.set_status(TrayStatus.ERROR, error_msg)
            self._window.set_status(error_msg)
            return

        self._window.set_with_timestamps(self._settings.enable_timestamps)
        self._window.show_placeholder("")
        self._window.set_recording(True)
        self._window.set_busy(True)
        self._window.set_status("Recording...")
        self._tray.set_status(TrayStatus.RECORDING)

        self._live_worker = LiveTranscriptionWorker(
            self._context.engine, recorder, parent=self
        )
        self._launch(self._live_worker)

    def _stop_recording(self) -> None:
        if self._live_worker is not None:
            self._live_worker.stop()
            self._live_worker = None
        self._context.recorder.stop()
        self._window.set_recording(False)
        self._window.set_status("Finishing transcription...")
        self._tray.set_status(TrayStatus.PROCESSING)

    def _cancel(self) -> None:
        self._pending_start = None
        if self._worker_running():
            self._worker.cancel()
        elif self._model_loader_thread is not None and self._model_loader_thread.isRunning():
            self._manager.cancel_load()

        self._simulator.stop()
        self._stop_capture()

    def _on_transcription_complete(self, result: Optional[TranscriptionResult]) -> None:
        if self.sender() is not self._worker:
            return
        self._worker_active = False
        self._window.set_busy(False)
        self._window.set_recording(False)
        self._window.set_status("Done")
        self._tray.set_status(TrayStatus.IDLE)
        self._update_footer(result)
        self._start_pending()

    def _on_transcription_error(self, error_message: str) -> None:
        if self.sender() is not self._worker:
            return
        self._worker_active = False
        logger.error(f"Background transcription failed: {error_message}")
        self._window.set_busy(False)
        self._window.set_recording(False)
        self._window.show_placeholder(f"Transcription failed: {error_message}")
        self._window.set_status("Transcription failed")
        self._tray.set_status(TrayStatus.ERROR, error_message)
        self._start_pending()

    def _on_transcription_cancelled(self) -> None:
        if self.sender() is not self._worker:
            return
        self._worker_active = False
        self._simulator.stop()
        self._window.set_busy(False)
        self._window.set_recording(False)
        self._window.set_status("Cancelled")
        self._tray.set_status(TrayStatus.IDLE)
        self._start_pending()

    def _quit(self) -> None:
        logger.info("Shutting down application")
        self._pending_start = None
        if self._worker_running():
            # The thread must end before its QThread object is destroyed.
            self._worker.cancel()
            self._worker.wait()
        self._stop_capture()
        self._manager.cancel_load()

        geometry = self._window.geometry()
        self._settings.window_geometry = (
            geometry.x(),
            geometry.y(),
            geometry.width(),
            geometry.height(),
        )
        self._settings.save()

        self._manager.unload()
        self._tray.hide()
        self._window.hide()
        QApplication.quit()
        logger.info("Application shutdown complete")
        shutdown_logging()

    def run(self) -> None:
        logger.info(f"Starting {__app_name__} v{__version__}")
        logger.info(
            f"Settings: model={self._settings.selected_model}, "
            f"language={self._settings.selected_language}, "
            f"compute={self._settings.encoder_compute_units.value}/"
            f"{self._settings.decoder_compute_units.value}"
        )

        self._remote_models_thread = RemoteModelsThread(self._context, parent=self)
        self._remote_models_thread.fetched.connect(self._on_remote_models)
        self._remote_models_thread.start()

        logger.info("Deferring model load to after tray is shown...")
        QTimer.singleShot(100, self._start_deferred_model_loading)

    def _start_deferred_model_loading(self) -> None:
        self._start_model_loading(self._settings.selected_model)


def main():
    app = QApplication(sys.argv)
    app.setApplicationName(__app_name__)
    app.setQuitOnLastWindowClosed(False)
    signal.signal(signal.SIGINT, lambda *args: QApplication.quit())

    try:
        context = AppContext.create()
    except OSError as e:
        logger.error(f"Could not initialize application directories: {e}")
        sys.exit(1)

    murmur_app = MurMurApp(context)
    murmur_app.run()

    sys.exit(app.exec())


if __name__ == "__main__":
    main()
