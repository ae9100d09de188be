"""
Model acquisition and load sequencing.

A load walks UNLOADED -> DOWNLOADING -> DOWNLOADED -> PREWARMING -> LOADING ->
LOADED. A failed download or prewarm is retried once with a forced
redownload; any other failure resets to UNLOADED. Starting a new load
supersedes the one in flight.
"""

import os
import threading
from enum import Enum
from typing import Callable, List, Optional, Tuple

from ...utils.logger import get_logger
from ..settings.config import PREWARM_TARGET, SPECIALIZATION_PROGRESS_RATIO
from .errors import (
    DownloadError,
    FileAccessError,
    InitError,
    LoadCancelled,
    LoadError,
    PrewarmError,
)
from .model_downloader import ModelDownloader
from .model_registry import (
    DEFAULT_REPO,
    delete_local_model,
    fetch_local_models,
    get_models_dir,
    local_model_path,
)
from .runtime import ComputeOptions, WhisperRuntime, load_runtime

logger = get_logger(__name__)


class ModelState(Enum):
    UNLOADED = "unloaded"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    PREWARMING = "prewarming"
    LOADING = "loading"
    LOADED = "loaded"

    @property
    def description(self) -> str:
        return {
            ModelState.UNLOADED: "Unloaded",
            ModelState.DOWNLOADING: "Downloading",
            ModelState.DOWNLOADED: "Downloaded",
            ModelState.PREWARMING: "Specializing",
            ModelState.LOADING: "Loading",
            ModelState.LOADED: "Loaded",
        }[self]

    @property
    def is_busy(self) -> bool:
        return self not in (ModelState.UNLOADED, ModelState.LOADED)


StateCallback = Callable[[ModelState, str], None]
ProgressCallback = Callable[[float], None]
RuntimeFactory = Callable[[ComputeOptions], WhisperRuntime]


class ModelManager:
    """
    Loads one model at a time into a :class:`WhisperRuntime`.

    ``load_model`` blocks and is meant to run on a worker thread. Each call
    takes a new generation; callbacks from a superseded generation are
    dropped and the superseded load stops with :class:`LoadCancelled` at its
    next step.
    """

    def __init__(
        self,
        compute: Optional[ComputeOptions] = None,
        repo: str = DEFAULT_REPO,
        models_dir: Optional[str] = None,
        downloader: Optional[ModelDownloader] = None,
        runtime_factory: RuntimeFactory = load_runtime,
        on_state_change: Optional[StateCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.compute = compute or ComputeOptions()
        self.repo = repo
        self.models_dir = models_dir or get_models_dir()
        self.on_state_change = on_state_change
        self.on_progress = on_progress

        self._downloader = downloader or ModelDownloader(self.models_dir)
        self._runtime_factory = runtime_factory
        self._lock = threading.Lock()
        self._generation = 0

        self._state = ModelState.UNLOADED
        self._progress = 0.0
        self._runtime: Optional[WhisperRuntime] = None
        self._model_name: Optional[str] = None
        self.local_models: List[str] = fetch_local_models(self.models_dir)

    @property
    def state(self) -> ModelState:
        return self._state

    @property
    def progress(self) -> float:
        return self._progress

    @property
    def runtime(self) -> Optional[WhisperRuntime]:
        return self._runtime

    @property
    def model_name(self) -> Optional[str]:
        return self._model_name

    @property
    def is_loaded(self) -> bool:
        return self._state == ModelState.LOADED and self._runtime is not None

    def refresh_local_models(self) -> List[str]:
        self.local_models = fetch_local_models(self.models_dir)
        return self.local_models

    def _is_current(self, generation: int) -> bool:
        with self._lock:
            return generation == self._generation

    def _check_current(self, generation: int) -> None:
        if not self._is_current(generation):
            raise LoadCancelled("Model load superseded")

    def _set_state(self, generation: int, state: ModelState, message: str = "") -> None:
        if not self._is_current(generation):
            return
        self._state = state
        if self.on_state_change:
            self.on_state_change(state, message)

    def _set_progress(self, generation: int, value: float) -> None:
        if not self._is_current(generation):
            return
        self._progress = value
        if self.on_progress:
            self.on_progress(value)

    def cancel_load(self) -> None:
        """Supersede the load in flight, if any, and reset to UNLOADED."""
        with self._lock:
            self._generation += 1
        self._downloader.cancel()

        if self._state.is_busy:
            self._state = ModelState.UNLOADED
            self._progress = 0.0
            if self.on_state_change:
                self.on_state_change(ModelState.UNLOADED, "Model load cancelled")

    def load_model(self, model_name: str, redownload: bool = False) -> WhisperRuntime:
        """
        Load ``model_name``, downloading it first if it is not cached.

        Raises:
            InitError: The runtime could not be constructed.
            DownloadError, PrewarmError: Failed twice (once after redownload).
            LoadError: Weights could not be loaded.
            LoadCancelled: A newer load or ``cancel_load`` superseded this one.
        """
        with self._lock:
            self._generation += 1
            generation = self._generation

        self._runtime = None
        self._model_name = model_name
        return self._load(model_name, redownload, generation)

    def _load(self, model_name: str, redownload: bool, generation: int) -> WhisperRuntime:
        ratio = SPECIALIZATION_PROGRESS_RATIO

        try:
            runtime = self._runtime_factory(self.compute)
        except InitError as e:
            logger.error(f"Error initializing runtime: {e}")
            self._set_state(generation, ModelState.UNLOADED, str(e))
            raise
        self._check_current(generation)

        try:
            if model_name in self.local_models and not redownload:
                folder = local_model_path(model_name, self.models_dir)
                logger.info(f"Model {model_name} is available locally at {folder}")
            else:
                logger.info(f"Model {model_name} is not available locally, downloading")
                self._set_progress(generation, 0.0)
                self._set_state(
                    generation, ModelState.DOWNLOADING, f"Downloading {model_name}..."
                )
                folder = self._downloader.download(
                    model_name,
                    self.repo,
                    on_progress=lambda f: self._set_progress(generation, f * ratio),
                    should_cancel=lambda: not self._is_current(generation),
                )
                if folder is None:
                    raise LoadCancelled(f"Download of {model_name} cancelled")
            self._check_current(generation)

            self._set_progress(generation, ratio)
            self._set_state(generation, ModelState.DOWNLOADED)

            runtime.model_folder = folder
            self._set_state(
                generation, ModelState.PREWARMING, f"Specializing {model_name}..."
            )
            runtime.prewarm()
            self._check_current(generation)

        except (DownloadError, PrewarmError) as e:
            if not self._is_current(generation):
                raise LoadCancelled("Model load superseded") from e
            if not redownload:
                logger.warning(f"Error preparing model, retrying with redownload: {e}")
                return self._load(model_name, True, generation)
            logger.error(f"Redownload of {model_name} failed: {e}")
            self._set_state(generation, ModelState.UNLOADED, str(e))
            raise

        self._set_state(generation, ModelState.LOADING, f"Loading {model_name}...")
        self._set_progress(generation, ratio + PREWARM_TARGET * (1 - ratio))

        try:
            runtime.load_weights()
        except LoadError as e:
            logger.error(f"Error loading model weights: {e}")
            self._set_state(generation, ModelState.UNLOADED, str(e))
            raise
        self._check_current(generation)

        if model_name not in self.local_models:
            self.local_models.append(model_name)

        self._runtime = runtime
        self._set_progress(generation, 1.0)
        self._set_state(
            generation, ModelState.LOADED, f"Model loaded on {runtime.device.upper()}"
        )
        return runtime

    def unload(self) -> None:
        self.cancel_load()
        if self._runtime is not None:
            self._runtime.unload()
            self._runtime = None

        # cancel_load has already reported UNLOADED for a load in flight
        if self._state == ModelState.UNLOADED:
            return
        self._state = ModelState.UNLOADED
        self._progress = 0.0
        if self.on_state_change:
            self.on_state_change(ModelState.UNLOADED, "Model unloaded")

    def delete_model(self, model_name: str) -> Tuple[bool, str]:
        if model_name not in self.local_models:
            return False, f"Model '{model_name}' not found"

        if model_name == self._model_name:
            self.unload()

        try:
            delete_local_model(model_name, self.models_dir)
        except FileAccessError as e:
            logger.error(f"Error deleting model: {e}")
            return False, str(e)

        self.local_models.remove(model_name)
        return True, f"Deleted '{model_name}'"

    def model_folder(self, model_name: Optional[str] = None) -> Optional[str]:
        name = model_name or self._model_name
        if name and name in self.local_models:
            return local_model_path(name, self.models_dir)
        if os.path.isdir(self.models_dir):
            return self.models_dir
        return None
