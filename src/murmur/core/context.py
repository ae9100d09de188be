from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..utils.logger import get_logger
from .asr.model_manager import ModelManager
from .asr.model_registry import (
    ModelCatalog,
    fetch_remote_models,
    merge_model_lists,
    recommended_remote_models,
)
from .asr.transcriber import TranscriptionEngine
from .audio.recorder import AudioRecorder
from .settings.settings import Settings

logger = get_logger(__name__)


@dataclass
class AppContext:
    """
    Everything the application shares between the tray, the window and the
    background workers. Created once in ``main()`` and passed explicitly.
    """

    settings: Settings
    manager: ModelManager
    engine: TranscriptionEngine
    recorder: AudioRecorder
    catalog: ModelCatalog = field(default_factory=ModelCatalog)
    remote_models: Optional[Tuple[List[str], List[str]]] = None

    @classmethod
    def create(cls, settings: Optional[Settings] = None) -> "AppContext":
        settings = settings or Settings.load()
        manager = ModelManager(
            compute=settings.compute_options(),
            repo=settings.repo_name,
        )
        engine = TranscriptionEngine(lambda: manager.runtime, settings)
        recorder = AudioRecorder(
            sample_rate=settings.sample_rate, device=settings.input_device
        )
        context = cls(settings=settings, manager=manager, engine=engine, recorder=recorder)
        context.refresh_catalog()
        return context

    @property
    def device(self) -> str:
        return self.settings.compute_options().device

    def fetch_remote_models(self) -> Tuple[List[str], List[str]]:
        return fetch_remote_models(self.settings.repo_name, self.device)

    def refresh_catalog(
        self,
        supported: Optional[List[str]] = None,
        disabled: Optional[List[str]] = None,
    ) -> ModelCatalog:
        """Rebuild the menu catalog from the local cache and a remote listing.

        Without arguments the last remote listing is reused, or the bundled
        recommendation before any listing has arrived.
        """
        if supported is not None and disabled is not None:
            self.remote_models = (list(supported), list(disabled))
        elif self.remote_models is not None:
            supported, disabled = self.remote_models
        else:
            supported, disabled = recommended_remote_models(self.device)

        self.catalog = merge_model_lists(
            self.settings.selected_model,
            self.manager.refresh_local_models(),
            supported,
            disabled,
        )
        logger.debug(
            f"Model catalog: {len(self.catalog.available)} available, "
            f"{len(self.catalog.local)} local, {len(self.catalog.disabled)} disabled"
        )
        return self.catalog

    def select_model(self, model_name: str) -> bool:
        """Persist a new model choice. Returns False if it was already selected."""
        if model_name == self.settings.selected_model and self.manager.is_loaded:
            return False
        self.settings.selected_model = model_name
        self.settings.save()
        return True

    def select_language(self, language: str) -> None:
        self.settings.selected_language = language
        self.settings.save()
