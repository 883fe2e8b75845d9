"""Configuration management for image-sanitizer."""

import copy
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from image_sanitizer.utils.logger import setup_logger

logger = setup_logger(__name__)


class Config:
    """Manages user configuration and settings."""

    DEFAULT_CONFIG_DIR = Path.home() / ".image-sanitizer"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.json"

    DEFAULT_SETTINGS: Dict[str, Any] = {
        "formats": ["JPEG", "PNG"],
        "workers": None,  # None -> min(8, cpu_count)
        "naming": "content",  # content, uuid
        "scratch_dir": None,  # None -> system temp dir
        "retry": {
            "max_attempts": 3,
            "delay_seconds": 1.0,
            "backoff": "fixed",  # fixed, exponential
            "max_delay_seconds": 8.0,
        },
        "timeouts": {"command_seconds": 120},
        "fingerprint": {
            "grid_size": 8,
            "histogram_grid": 16,
            "levels": 4,
            "histogram_levels": 2,
            "histogram_steps": 20,
            "tolerance": 0.1,
            "max_borderline": 10,
            "provenance_fields": ["Make", "Model", "DateTimeOriginal"],
        },
        "reencode": {"jpeg_quality": 95},
        "optimize": {
            "jpeg_quality": 80,
            "png_quality": 80,
            "webp_quality": 80,
            "allow_lossy": True,
            "adaptive_jpeg": False,
            "jpeg_fallback_quality": 75,
            "optipng_level": 2,
        },
        "tools": {
            "metadata": ["exiftool", "mat2", "pillow"],
            "transform": "auto",  # auto, magick, pillow
            "optimizers": {
                "JPEG": ["jpegoptim", "pillow"],
                "PNG": ["pngquant", "optipng", "pngcrush", "pillow"],
                "WEBP": ["pillow"],
            },
        },
        "secure_delete": {"passes": 3, "zero": True, "scratch": True},
    }

    def __init__(self, config_file: Optional[Path] = None, persist: bool = True):
        """
        Initialize configuration.

        Args:
            config_file: Path to config file (default: ~/.image-sanitizer/config.json)
            persist: Write defaults and ``set`` calls back to the config file
        """
        self.config_file = Path(config_file) if config_file else self.DEFAULT_CONFIG_FILE
        self.persist = persist
        self.settings: Dict[str, Any] = {}
        self.load()

    @classmethod
    def defaults(cls) -> "Config":
        """In-memory configuration that never touches the filesystem."""
        config = cls.__new__(cls)
        config.config_file = cls.DEFAULT_CONFIG_FILE
        config.persist = False
        config.settings = copy.deepcopy(cls.DEFAULT_SETTINGS)
        return config

    def load(self) -> None:
        """Load configuration from file or create with defaults."""
        self.settings = copy.deepcopy(self.DEFAULT_SETTINGS)
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    _deep_merge(self.settings, json.load(f))
                logger.debug(f"Loaded configuration from {self.config_file}")
            except json.JSONDecodeError as e:
                logger.warning(f"Invalid config file: {e}. Using defaults.")
        else:
            logger.debug("No config file found. Using defaults.")
            if self.persist:
                self.save()

    def save(self) -> None:
        """Save configuration to file."""
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(self.settings, f, indent=2)
        logger.debug(f"Saved configuration to {self.config_file}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.

        Args:
            key: Configuration key (supports dot notation, e.g., 'retry.max_attempts')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key.split(".")
        value = self.settings
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default
        return value

    def set(self, key: str, value: Any, persist: Optional[bool] = None) -> None:
        """
        Set a configuration value.

        Args:
            key: Configuration key (supports dot notation)
            value: Value to set
            persist: Override the instance-level persistence for this call
        """
        keys = key.split(".")
        target = self.settings
        for k in keys[:-1]:
            if k not in target or not isinstance(target[k], dict):
                target[k] = {}
            target = target[k]
        target[keys[-1]] = value
        if self.persist if persist is None else persist:
            self.save()

    def get_formats(self) -> List[str]:
        """Sniffed formats admitted into processing, upper-cased."""
        return [f.upper() for f in self.get("formats", ["JPEG", "PNG"])]

    def get_workers(self) -> int:
        """Worker pool size."""
        workers = self.get("workers")
        if workers:
            return max(1, int(workers))
        return max(1, min(8, os.cpu_count() or 1))

    def get_scratch_dir(self) -> Optional[Path]:
        """Root for per-file scratch areas, or None for the system temp dir."""
        scratch = self.get("scratch_dir")
        return Path(scratch) if scratch else None

    def get_command_timeout(self) -> float:
        """Timeout in seconds for a single external tool invocation."""
        return float(self.get("timeouts.command_seconds", 120))


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
