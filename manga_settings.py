"""
Manga Settings - Download preferences from defaults, a JSON file and the environment
Settings file lives in ~/.manga_dl/settings.json (override with MANGA_SETTINGS_FILE)
"""

import os
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from threading import Lock

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / '.manga_dl'
SETTINGS_FILE = CONFIG_DIR / 'settings.json'

SAVE_FORMATS = ['raw', 'zip', 'cbz', 'pdf']
IMAGE_FORMATS = ['original', 'png', 'jpeg', 'webp']
IMAGE_QUALITIES = ['normal', 'high']
FUZ_POSITIONS = ['first', 'last', 'detail']


def default_max_workers() -> int:
    return max(1, min(8, os.cpu_count() or 1))


DEFAULT_SETTINGS = {
    'device_secret': '',         # opaque device-identity token, never logged
    'image_quality': 'high',     # normal or high
    'max_workers': default_max_workers(),
    'max_retries': 2,            # transient HTTP failures, per request
    'timeout': 30,               # seconds, per request
    'save_format': 'zip',        # raw, zip, cbz, pdf
    'image_format': 'original',  # keep bytes as served, or re-encode
    'output_dir': '.',
    'user_agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'fuz_position': 'first',     # chapter picked when a COMIC FUZ manga URL is given
}

# Environment variable -> setting key
ENV_VARS = {
    'MANGA_DEVICE_SECRET': 'device_secret',
    'MANGA_IMAGE_QUALITY': 'image_quality',
    'MANGA_MAX_WORKERS': 'max_workers',
    'MANGA_MAX_RETRIES': 'max_retries',
    'MANGA_TIMEOUT': 'timeout',
    'MANGA_SAVE_FORMAT': 'save_format',
    'MANGA_IMAGE_FORMAT': 'image_format',
    'MANGA_OUTPUT_DIR': 'output_dir',
    'MANGA_USER_AGENT': 'user_agent',
    'MANGA_FUZ_POSITION': 'fuz_position',
}

_INT_KEYS = {'max_workers': 1, 'max_retries': 0, 'timeout': 1}
_CHOICES = {
    'image_quality': IMAGE_QUALITIES,
    'save_format': SAVE_FORMATS,
    'image_format': IMAGE_FORMATS,
    'fuz_position': FUZ_POSITIONS,
}


def validate_setting(key: str, value: Any) -> Any:
    """Return the normalized value or raise ValueError"""
    if key not in DEFAULT_SETTINGS:
        raise ValueError(f"Unknown setting: {key}")

    if key in _INT_KEYS:
        try:
            value = int(value)
        except (TypeError, ValueError):
            raise ValueError(f"{key} must be an integer, got {value!r}")
        if value < _INT_KEYS[key]:
            raise ValueError(f"{key} must be >= {_INT_KEYS[key]}, got {value}")
        return value

    if key in _CHOICES:
        value = str(value).lower()
        if value == 'jpg':
            value = 'jpeg'
        if value not in _CHOICES[key]:
            raise ValueError(f"{key} must be one of {', '.join(_CHOICES[key])}, got {value!r}")
        return value

    return '' if value is None else str(value)


class SettingsManager:
    """Loads settings once; later overrides are applied on top"""

    def __init__(self, settings_file: Optional[Path] = None, use_env: bool = True):
        if settings_file is None:
            settings_file = Path(os.getenv('MANGA_SETTINGS_FILE', SETTINGS_FILE))
        self.settings_file = Path(settings_file)
        self.use_env = use_env
        self._settings: Dict[str, Any] = {}
        self._lock = Lock()
        self._load_settings()

    def _load_settings(self):
        """Merge defaults, settings file and environment"""
        settings = DEFAULT_SETTINGS.copy()
        settings.update(self._read_file())
        if self.use_env:
            load_dotenv(find_dotenv(usecwd=True))
            for env_name, key in ENV_VARS.items():
                value = os.getenv(env_name)
                if value is not None and value != '':
                    settings[key] = value

        with self._lock:
            self._settings = {key: validate_setting(key, value) for key, value in settings.items()}

    def _read_file(self) -> Dict[str, Any]:
        try:
            if not self.settings_file.exists():
                logger.debug(f"No settings file at {self.settings_file}, using defaults")
                return {}
            with open(self.settings_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupted settings file {self.settings_file}, ignoring: {e}")
            return {}

        if not isinstance(data, dict):
            logger.error(f"Settings file {self.settings_file} must hold a JSON object")
            return {}

        unknown = [k for k in data if k not in DEFAULT_SETTINGS]
        for key in unknown:
            logger.warning(f"Ignoring unknown setting in {self.settings_file}: {key}")
            data.pop(key)
        logger.info(f"Loaded {len(data)} settings from {self.settings_file}")
        return data

    def get_settings(self, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """All settings, with caller overrides (None values are ignored)"""
        with self._lock:
            result = self._settings.copy()
        for key, value in (overrides or {}).items():
            if value is not None:
                result[key] = validate_setting(key, value)
        return result

    def get_setting(self, key: str) -> Any:
        with self._lock:
            return self._settings.get(key, DEFAULT_SETTINGS.get(key))

    def set_setting(self, key: str, value: Any):
        value = validate_setting(key, value)
        with self._lock:
            self._settings[key] = value
        logger.info(f"Set {key} = {'***' if key == 'device_secret' else value}")

    def save_settings(self):
        """Persist current settings (the device secret is left out)"""
        with self._lock:
            data = {k: v for k, v in self._settings.items() if k != 'device_secret'}
        self.settings_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.settings_file, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        logger.debug(f"Saved settings to {self.settings_file}")

