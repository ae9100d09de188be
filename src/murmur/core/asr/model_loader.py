from PySide6.QtCore import QThread, Signal

from ...utils.logger import get_logger
from .errors import InitError, LoadCancelled, MurMurError
from .model_manager import ModelManager, ModelState

logger = get_logger(__name__)


class ModelLoaderThread(QThread):
    """
    Runs :meth:`ModelManager.load_model` off the UI thread.

    Signals:
        finished: (success, message)
        progress: Real load progress in [0, 1]
        state_changed: (ModelState, message)
        init_failed: The runtime could not be constructed; not retryable
    """

    finished = Signal(bool, str)
    progress = Signal(float)
    state_changed = Signal(object, str)
    init_failed = Signal(str)

    def __init__(
        self,
        manager: ModelManager,
        model_name: str,
        redownload: bool = False,
        parent=None,
    ):
        super().__init__(parent)
        self._manager = manager
        self._model_name = model_name
        self._redownload = redownload
        self._cancelled = False

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def was_cancelled(self) -> bool:
        return self._cancelled

    def run(self):
        logger.info(f"Background loading model: {self._model_name}")

        self._manager.on_state_change = self._on_state_change
        self._manager.on_progress = self._on_progress

        try:
            runtime = self._manager.load_model(self._model_name, self._redownload)

            message = f"Model loaded on {runtime.device.upper()}"
            logger.info(f"Background model loading complete: {message}")
            self.finished.emit(True, message)

        except LoadCancelled as e:
            self._cancelled = True
            logger.info(f"Model load cancelled: {e}")
            self.finished.emit(False, "Model load cancelled")
        except InitError as e:
            logger.error(f"Speech runtime unavailable: {e}")
            self.init_failed.emit(str(e))
            self.finished.emit(False, f"Error initializing runtime: {e}")
        except MurMurError as e:
            logger.error(f"Background model loading error: {e}")
            self.finished.emit(False, f"Error loading model: {e}")
        except Exception as e:
            message = f"Error loading model: {e}"
            logger.exception(f"Background model loading error: {e}")
            self.finished.emit(False, message)

    def _on_state_change(self, state: ModelState, message: str):
        self.state_changed.emit(state, message)

    def _on_progress(self, value: float):
        self.progress.emit(value)
