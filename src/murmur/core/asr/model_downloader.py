import os
import shutil
import tempfile
from typing import Callable, List, Optional

import requests

from ...utils.logger import get_logger
from .errors import DownloadError
from .model_registry import (
    DEFAULT_REPO,
    MODEL_FOLDER_PREFIX,
    get_models_dir,
    model_folder_name,
)

HF_BASE_URL = "https://huggingface.co"
STAGING_SUFFIX = ".partial"

ProgressCallback = Callable[[float], None]
CancelCheck = Callable[[], bool]


class ModelDownloader:
    """
    Downloads a converted Whisper model repository into the local cache.

    Files are fetched into a hidden staging folder and moved into place only
    once every file has arrived, so an interrupted download never looks like a
    usable local model.
    """

    def __init__(self, models_dir: Optional[str] = None, chunk_size: int = 1 << 16):
        self._models_dir = models_dir
        self._chunk_size = chunk_size
        self._cancelled = False
        self._logger = get_logger(__name__)

    @property
    def models_dir(self) -> str:
        return self._models_dir or get_models_dir()

    def cancel(self) -> None:
        self._cancelled = True

    def list_files(self, repo_id: str) -> List[str]:
        response = requests.get(f"{HF_BASE_URL}/api/models/{repo_id}", timeout=30)
        response.raise_for_status()
        siblings = response.json().get("siblings", [])
        return [
            s["rfilename"]
            for s in siblings
            if "rfilename" in s and not s["rfilename"].startswith(".")
        ]

    def download(
        self,
        model_id: str,
        repo: str = DEFAULT_REPO,
        on_progress: Optional[ProgressCallback] = None,
        should_cancel: Optional[CancelCheck] = None,
    ) -> Optional[str]:
        """Download ``model_id`` from ``repo`` and return its local folder.

        Returns None if the download was cancelled.

        Raises:
            DownloadError: If the repository or any of its files cannot be fetched.
        """
        self._cancelled = False

        def cancelled() -> bool:
            return self._cancelled or (should_cancel is not None and should_cancel())

        repo_id = f"{repo}/{MODEL_FOLDER_PREFIX}{model_id}"
        target_dir = os.path.join(self.models_dir, model_folder_name(model_id))
        staging_dir: Optional[str] = None

        self._logger.info(f"Downloading model {model_id} from {repo_id}")

        try:
            os.makedirs(self.models_dir, exist_ok=True)
            files = self.list_files(repo_id)
            if not files:
                raise DownloadError(f"Repository {repo_id} has no files")

            # Each download stages privately, so a superseded one cleaning up
            # never touches the files of its replacement.
            staging_dir = tempfile.mkdtemp(
                prefix=f".{model_folder_name(model_id)}.",
                suffix=STAGING_SUFFIX,
                dir=self.models_dir,
            )

            for index, filename in enumerate(files):
                completed = self._download_file(
                    repo_id,
                    filename,
                    staging_dir,
                    on_fraction=lambda f, i=index: self._report(
                        on_progress, (i + f) / len(files)
                    ),
                    cancelled=cancelled,
                )
                if not completed:
                    self._logger.info("Download cancelled")
                    self._discard(staging_dir)
                    return None

            shutil.rmtree(target_dir, ignore_errors=True)
            os.replace(staging_dir, target_dir)

        except requests.RequestException as e:
            self._logger.error(f"Download failed: {e}")
            self._discard(staging_dir)
            raise DownloadError(f"Failed to download {repo_id}: {e}") from e
        except OSError as e:
            self._logger.error(f"Could not write model files: {e}")
            self._discard(staging_dir)
            raise DownloadError(f"Failed to store {repo_id}: {e}") from e

        self._report(on_progress, 1.0)
        self._logger.info(f"Model {model_id} downloaded to {target_dir}")
        return target_dir

    def _download_file(
        self,
        repo_id: str,
        filename: str,
        staging_dir: str,
        on_fraction: Callable[[float], None],
        cancelled: CancelCheck,
    ) -> bool:
        url = f"{HF_BASE_URL}/{repo_id}/resolve/main/{filename}"
        path = os.path.join(staging_dir, filename)
        os.makedirs(os.path.dirname(path), exist_ok=True)

        with requests.get(url, stream=True, timeout=30) as response:
            response.raise_for_status()
            total_size = int(response.headers.get("content-length", 0))
            downloaded = 0

            with open(path, "wb") as f:
                for chunk in response.iter_content(chunk_size=self._chunk_size):
                    if cancelled():
                        return False

                    f.write(chunk)
                    downloaded += len(chunk)

                    if total_size > 0:
                        on_fraction(min(1.0, downloaded / total_size))

        on_fraction(1.0)
        return True

    @staticmethod
    def _discard(staging_dir: Optional[str]) -> None:
        if staging_dir is not None:
            shutil.rmtree(staging_dir, ignore_errors=True)

    @staticmethod
    def _report(on_progress: Optional[ProgressCallback], fraction: float) -> None:
        if on_progress is not None:
            on_progress(fraction)
