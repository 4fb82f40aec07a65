from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, PositiveInt


class Limits(BaseModel):
    max_file_size_bytes: PositiveInt = 200_000_000

    # Bytes buffered up front for header decoding and pattern scans
    header_buffer_bytes: PositiveInt = 1024 * 1024

    # Section table
    max_sections: PositiveInt = 96
    section_entropy_window: PositiveInt = 64 * 1024

    # Import table
    max_import_descriptors: PositiveInt = 200
    max_thunks_per_dll: PositiveInt = 100
    max_functions_per_dll: PositiveInt = 50
    max_name_len: PositiveInt = 256

    # Entropy profile, thresholds in bits per byte
    entropy_block_size: PositiveInt = 256
    max_entropy_bytes: PositiveInt = 20_000_000
    high_entropy_threshold: float = Field(7.0, ge=0.0, le=8.0)
    low_entropy_threshold: float = Field(1.0, ge=0.0, le=8.0)
    max_entropy_regions: PositiveInt = 20

    # Suspicious strings
    strings_per_pattern: PositiveInt = 10
    strings_max_total: PositiveInt = 50


class AppConfig(BaseModel):
    schema_version: str = "1.0"
    log_level: str = "WARNING"
    limits: Limits = Limits()


def load_config(path: Optional[str]) -> AppConfig:
    if not path:
        return AppConfig()
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    return AppConfig.model_validate(data)


def config_to_snapshot(cfg: AppConfig) -> Dict[str, Any]:
    return cfg.model_dump()
