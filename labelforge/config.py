from __future__ import annotations

import copy
import os
import platform
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from labelforge.constants import (
    DEFAULT_FONT_SIZE,
    DEFAULT_IMAGE_COLUMN,
    DEFAULT_TEXT_COLOR,
    MAX_FONT_SIZE,
    MIN_FONT_SIZE,
    OUTPUT_ARCHIVE_NAME,
    OUTPUT_TABLE_NAME,
    ZONE_PADDING,
)

CONFIG_ENV_VAR = "LABELFORGE_CONFIG"
ARCHIVE_CODECS = {"builtin", "zipfile"}
DUPLICATE_POLICIES = {"overwrite", "fail"}


def default_jobs() -> int:
    cpu_count = os.cpu_count() or 2
    return max(1, cpu_count - 1)


DEFAULT_CONFIG: dict[str, Any] = {
    "max_rows": 50,
    "max_template_bytes": 5 * 1024 * 1024,
    "max_archive_bytes": 50 * 1024 * 1024,
    "max_table_bytes": 2 * 1024 * 1024,
    "zone_padding": ZONE_PADDING,
    "image_column": DEFAULT_IMAGE_COLUMN,
    "default_font_size": DEFAULT_FONT_SIZE,
    "default_color": DEFAULT_TEXT_COLOR,
    "font_path": None,
    "jobs": default_jobs(),
    "archive_codec": "builtin",
    "duplicate_names": "overwrite",
    "output_name": OUTPUT_ARCHIVE_NAME,
    "table_name": OUTPUT_TABLE_NAME,
    "log_level": "info",
}


def get_user_data_dir() -> Path:
    """Per-user writable directory: APPDATA on Windows, Application Support on macOS, XDG elsewhere."""
    system_name = platform.system().lower()
    if system_name == "windows":
        base = os.environ.get("APPDATA") or os.environ.get("LOCALAPPDATA")
        return Path(base or Path.home() / "AppData" / "Roaming") / "LabelForge"
    if system_name == "darwin":
        return Path.home() / "Library" / "Application Support" / "LabelForge"
    return Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config") / "LabelForge"


def get_config_path() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override)
    return get_user_data_dir() / "Config" / "config.yaml"


def _merge_known(loaded: dict[str, Any]) -> dict[str, Any]:
    # 只接受已知键，其余忽略
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg.update({key: value for key, value in loaded.items() if key in DEFAULT_CONFIG})
    return cfg


def load_config(path: Path | None = None) -> dict[str, Any]:
    cfg_path = path or get_config_path()
    if not cfg_path.exists():
        cfg = copy.deepcopy(DEFAULT_CONFIG)
        cfg["jobs"] = default_jobs()
        return cfg

    text = cfg_path.read_text(encoding="utf-8")
    loaded = yaml.safe_load(text) or {}
    if not isinstance(loaded, dict):
        loaded = {}
    cfg = _merge_known(loaded)
    if not cfg.get("jobs"):
        cfg["jobs"] = default_jobs()
    return cfg


def write_default_config(path: Path | None = None, force: bool = False) -> Path:
    cfg_path = path or get_config_path()
    cfg_path.parent.mkdir(parents=True, exist_ok=True)
    if cfg_path.exists() and not force:
        return cfg_path
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["jobs"] = default_jobs()
    cfg_path.write_text(yaml.safe_dump(cfg, sort_keys=False, allow_unicode=True), encoding="utf-8")
    return cfg_path


def _int_setting(value: Any, fallback: int, minimum: int = 0) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        parsed = fallback
    return max(minimum, parsed)


@dataclass(slots=True)
class PipelineSettings:
    max_rows: int = 50
    max_template_bytes: int = 5 * 1024 * 1024
    max_archive_bytes: int = 50 * 1024 * 1024
    max_table_bytes: int = 2 * 1024 * 1024
    zone_padding: int = ZONE_PADDING
    image_column: str = DEFAULT_IMAGE_COLUMN
    default_font_size: int = DEFAULT_FONT_SIZE
    default_color: str = DEFAULT_TEXT_COLOR
    font_path: Path | None = None
    jobs: int = 1
    archive_codec: str = "builtin"
    duplicate_names: str = "overwrite"
    output_name: str = OUTPUT_ARCHIVE_NAME
    table_name: str = OUTPUT_TABLE_NAME

    @classmethod
    def from_config(cls, cfg: dict[str, Any]) -> "PipelineSettings":
        defaults = cls()
        codec = str(cfg.get("archive_codec") or defaults.archive_codec).lower()
        duplicates = str(cfg.get("duplicate_names") or defaults.duplicate_names).lower()
        font_path = cfg.get("font_path")
        font_size = _int_setting(cfg.get("default_font_size"), defaults.default_font_size, MIN_FONT_SIZE)
        return cls(
            max_rows=_int_setting(cfg.get("max_rows"), defaults.max_rows, 1),
            max_template_bytes=_int_setting(cfg.get("max_template_bytes"), defaults.max_template_bytes, 1),
            max_archive_bytes=_int_setting(cfg.get("max_archive_bytes"), defaults.max_archive_bytes, 1),
            max_table_bytes=_int_setting(cfg.get("max_table_bytes"), defaults.max_table_bytes, 1),
            zone_padding=_int_setting(cfg.get("zone_padding"), defaults.zone_padding),
            image_column=str(cfg.get("image_column") or defaults.image_column),
            default_font_size=min(MAX_FONT_SIZE, font_size),
            default_color=str(cfg.get("default_color") or defaults.default_color),
            font_path=Path(font_path) if font_path else None,
            jobs=_int_setting(cfg.get("jobs"), default_jobs(), 1),
            archive_codec=codec if codec in ARCHIVE_CODECS else defaults.archive_codec,
            duplicate_names=duplicates if duplicates in DUPLICATE_POLICIES else defaults.duplicate_names,
            output_name=str(cfg.get("output_name") or defaults.output_name),
            table_name=str(cfg.get("table_name") or defaults.table_name),
        )


def load_settings(path: Path | None = None) -> PipelineSettings:
    return PipelineSettings.from_config(load_config(path))
