"""
Settings management with JSON persistence.

Handles loading, saving, and validating the user's transcription preferences.
Uses platformdirs for cross-platform directory resolution.
"""

import json
from pathlib import Path
from typing import Literal, Optional, Tuple

from platformdirs import user_config_path
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...utils.logger import get_logger
from ..asr.model_registry import DEFAULT_REPO
from ..asr.runtime import ComputeOptions, ComputeUnits, DecodingOptions
from ..languages import LANGUAGES, language_code
from ..transcript.early_stop import EarlyStopPolicy

logger = get_logger(__name__)

APP_NAME = "murmur"


def get_config_dir() -> Path:
    return user_config_path(APP_NAME, ensure_exists=True)


class Settings(BaseModel):
    model_config = ConfigDict(validate_assignment=False)

    selected_model: str = "tiny"
    selected_language: str = "english"
    selected_task: Literal["transcribe", "translate"] = "transcribe"
    repo_name: str = DEFAULT_REPO

    temperature_start: float = Field(default=0.0, ge=0.0, le=1.0)
    fallback_count: int = Field(default=5, ge=0, le=5)
    sample_length: int = Field(default=224, ge=1, le=448)
    compression_check_window: int = Field(default=60, ge=0, le=100)
    silence_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    token_confirmations_needed: int = Field(default=2, ge=0, le=10)
    concurrent_worker_count: int = Field(default=4, ge=1, le=32)
    realtime_delay_interval: float = Field(default=1.0, ge=0.0, le=30.0)

    compression_ratio_threshold: float = Field(default=2.4, gt=0.0)
    logprob_threshold: float = Field(default=-1.0, le=0.0)

    enable_timestamps: bool = True
    enable_prompt_prefill: bool = True
    enable_cache_prefill: bool = True
    enable_special_characters: bool = False
    enable_eager_decoding: bool = False
    enable_decoder_preview: bool = True
    use_vad: bool = True

    encoder_compute_units: ComputeUnits = ComputeUnits.AUTO
    decoder_compute_units: ComputeUnits = ComputeUnits.AUTO

    sample_rate: int = Field(default=16000, ge=8000, le=192000)
    input_device: Optional[str] = None
    window_geometry: Optional[Tuple[int, int, int, int]] = None

    @field_validator("selected_model", "repo_name")
    @classmethod
    def not_empty(cls, v):
        if not isinstance(v, str) or not v.strip():
            raise ValueError("must be a non-empty string")
        return v

    @field_validator("selected_language")
    @classmethod
    def known_language(cls, v):
        if not isinstance(v, str) or v.lower() not in LANGUAGES:
            raise ValueError(f"unknown language {v!r}")
        return v.lower()

    @classmethod
    def load(cls) -> "Settings":
        config_file = get_config_dir() / "settings.json"

        if config_file.exists():
            try:
                with open(config_file, "r") as f:
                    data = json.load(f)

                # Filter to valid keys only
                valid_keys = cls.model_fields.keys()
                filtered_data = {k: v for k, v in data.items() if k in valid_keys}

                return cls._load_with_fallbacks(filtered_data)
            except (json.JSONDecodeError, TypeError, AttributeError) as e:
                logger.warning(
                    f"Could not load settings: {e}. Using defaults.", exc_info=True
                )
                return cls()

        return cls()

    @classmethod
    def _load_with_fallbacks(cls, data: dict) -> "Settings":
        """Load settings with field-level fallback to defaults on validation errors."""
        defaults = cls()
        result_data = {}

        for field_name in cls.model_fields:
            if field_name in data:
                try:
                    validated = cls.model_validate(
                        {**defaults.model_dump(), field_name: data[field_name]}
                    )
                    result_data[field_name] = getattr(validated, field_name)
                except Exception:
                    default_val = getattr(defaults, field_name)
                    logger.warning(
                        f"Invalid {field_name} {data[field_name]!r}, resetting to {default_val}"
                    )
                    result_data[field_name] = default_val
            else:
                result_data[field_name] = getattr(defaults, field_name)

        return cls.model_construct(**result_data)

    def save(self) -> None:
        config_file = get_config_dir() / "settings.json"

        data = self.model_dump(mode="json")

        with open(config_file, "w") as f:
            json.dump(data, f, indent=2)

    def reset_to_defaults(self) -> None:
        default = Settings()
        for key, value in default.model_dump().items():
            setattr(self, key, value)

    @property
    def language_code(self) -> str:
        return language_code(self.selected_language)

    def decoding_options(self, clip_start: Optional[float] = None) -> DecodingOptions:
        return DecodingOptions(
            task=self.selected_task,
            language=self.language_code,
            temperature=self.temperature_start,
            temperature_fallback_count=self.fallback_count,
            sample_length=self.sample_length,
            use_prefill_prompt=self.enable_prompt_prefill,
            use_prefill_cache=self.enable_cache_prefill,
            skip_special_tokens=not self.enable_special_characters,
            without_timestamps=not self.enable_timestamps,
            word_timestamps=self.enable_timestamps,
            clip_timestamps=(clip_start,) if clip_start is not None else (),
            compression_ratio_threshold=self.compression_ratio_threshold,
            logprob_threshold=self.logprob_threshold,
            use_vad=self.use_vad,
        )

    def compute_options(self) -> ComputeOptions:
        return ComputeOptions(
            encoder=self.encoder_compute_units,
            decoder=self.decoder_compute_units,
            worker_count=self.concurrent_worker_count,
        )

    def early_stop_policy(self) -> EarlyStopPolicy:
        return EarlyStopPolicy(
            compression_check_window=self.compression_check_window,
            compression_ratio_threshold=self.compression_ratio_threshold,
            logprob_threshold=self.logprob_threshold,
        )
