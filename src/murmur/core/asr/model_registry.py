"""
Model catalog and local model cache discovery.

Local models live under the user data directory as one folder per model,
named ``faster-whisper-<id>``. The remote catalog is bundled in models.json and
refreshed from the Hugging Face model index when the network allows.
"""

import json
import os
import shutil
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

import platformdirs
import requests

from ...utils.logger import get_logger
from .errors import FileAccessError

logger = get_logger(__name__)

APP_DATA_NAME = "MurMur"
MODEL_FOLDER_PREFIX = "faster-whisper-"
DEFAULT_REPO = "Systran"
HF_API_MODELS_URL = "https://huggingface.co/api/models"


@dataclass
class ModelInfo:
    id: str
    name: str
    size_mb: int = 0
    min_device: str = "cpu"
    deprecated: bool = False

    def repo_id(self, repo: str = DEFAULT_REPO) -> str:
        return f"{repo}/{MODEL_FOLDER_PREFIX}{self.id}"


@dataclass
class ModelCatalog:
    available: List[str] = field(default_factory=list)
    local: List[str] = field(default_factory=list)
    disabled: List[str] = field(default_factory=list)


def get_models_dir() -> str:
    return os.path.join(
        platformdirs.user_data_dir(APP_DATA_NAME, appauthor=False), "models"
    )


def load_models() -> List[ModelInfo]:
    try:
        current_dir = os.path.dirname(os.path.abspath(__file__))
        json_path = os.path.join(current_dir, "models.json")

        with open(json_path, "r", encoding="utf-8") as f:
            data = json.load(f)
            return [ModelInfo(**item) for item in data]
    except (OSError, ValueError, TypeError) as e:
        logger.error(f"Error loading models.json: {e}")
        return []


AVAILABLE_MODELS: List[ModelInfo] = load_models()


def get_model_by_id(model_id: str) -> Optional[ModelInfo]:
    for model in AVAILABLE_MODELS:
        if model.id == model_id:
            return model
    return None


def model_folder_name(model_id: str) -> str:
    return f"{MODEL_FOLDER_PREFIX}{model_id}"


def local_model_path(model_id: str, models_dir: Optional[str] = None) -> str:
    return os.path.join(models_dir or get_models_dir(), model_folder_name(model_id))


def _size_rank(model_id: str) -> int:
    for index, model in enumerate(AVAILABLE_MODELS):
        if model.id == model_id:
            return index
    return len(AVAILABLE_MODELS)


def format_model_files(entries: Iterable[str]) -> List[str]:
    """Turn cache folder names into model ids, smallest model first."""
    names = []
    for entry in entries:
        if not entry.startswith(MODEL_FOLDER_PREFIX):
            continue
        name = entry[len(MODEL_FOLDER_PREFIX):]
        if name and name not in names:
            names.append(name)
    return sorted(names, key=lambda n: (_size_rank(n), n))


def fetch_local_models(models_dir: Optional[str] = None) -> List[str]:
    models_dir = models_dir or get_models_dir()

    if not os.path.exists(models_dir):
        return []

    try:
        entries = [
            name
            for name in os.listdir(models_dir)
            if os.path.isdir(os.path.join(models_dir, name))
        ]
    except OSError as e:
        logger.error(f"Error enumerating models in {models_dir}: {e}")
        return []

    models = format_model_files(entries)
    logger.debug(f"Found locally: {models}")
    return models


def recommended_remote_models(device: str = "auto") -> Tuple[List[str], List[str]]:
    supported, disabled = [], []
    for model in AVAILABLE_MODELS:
        if model.deprecated or (model.min_device == "cuda" and device == "cpu"):
            disabled.append(model.id)
        else:
            supported.append(model.id)
    return supported, disabled


def fetch_remote_models(
    repo: str = DEFAULT_REPO, device: str = "auto", timeout: float = 10
) -> Tuple[List[str], List[str]]:
    """Recommended models that the repository actually publishes.

    Falls back to the bundled recommendation when the index cannot be reached.
    """
    supported, disabled = recommended_remote_models(device)

    try:
        response = requests.get(
            HF_API_MODELS_URL,
            params={"author": repo, "search": MODEL_FOLDER_PREFIX},
            timeout=timeout,
        )
        response.raise_for_status()
        listing = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning(f"Could not fetch remote model list: {e}")
        return supported, disabled

    prefix = f"{repo}/{MODEL_FOLDER_PREFIX}"
    published = [
        item["id"][len(prefix):]
        for item in listing
        if isinstance(item, dict) and str(item.get("id", "")).startswith(prefix)
    ]

    remote_supported = [m for m in supported if m in published]
    remote_supported += [
        m for m in published if m not in supported and m not in disabled
    ]
    remote_disabled = [m for m in disabled if m in published]
    return remote_supported, remote_disabled


def merge_model_lists(
    selected: Optional[str],
    local: Iterable[str],
    supported: Iterable[str],
    disabled: Iterable[str],
) -> ModelCatalog:
    local = list(local)
    available: List[str] = []
    for name in ([selected] if selected else []) + local + list(supported):
        if name not in available:
            available.append(name)

    disabled_models = []
    for name in disabled:
        if name not in available and name not in disabled_models:
            disabled_models.append(name)

    return ModelCatalog(available=available, local=local, disabled=disabled_models)


def delete_local_model(model_id: str, models_dir: Optional[str] = None) -> None:
    model_path = local_model_path(model_id, models_dir)

    if not os.path.isdir(model_path):
        raise FileAccessError(f"Model '{model_id}' not found")

    try:
        shutil.rmtree(model_path)
    except OSError as e:
        raise FileAccessError(f"Failed to delete model: {e}") from e
