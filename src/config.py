"""
Configuration module for the priority matrix sync engine
Centralizes all constants, settings, and configuration with validation
"""

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Optional, Union


class ConfigError(Exception):
    """Configuration validation error"""
    pass


def _safe_int_env(name: str, default: int, min_val: int = None, max_val: int = None) -> int:
    """
    Safely parse integer environment variable with bounds.
    Falls back to default on invalid values.
    """
    logger_local = logging.getLogger(__name__)
    try:
        value = int(os.getenv(name, str(default)))
        if min_val is not None:
            value = max(min_val, value)
        if max_val is not None:
            value = min(max_val, value)
        return value
    except (ValueError, TypeError):
        logger_local.warning(f"Invalid {name}, using default {default}")
        return default


def _safe_float_env(
    name: str, default: float, min_val: float = None, max_val: float = None
) -> float:
    """Float counterpart of _safe_int_env."""
    logger_local = logging.getLogger(__name__)
    try:
        value = float(os.getenv(name, str(default)))
        if value != value:  # NaN
            raise ValueError(name)
        if min_val is not None:
            value = max(min_val, value)
        if max_val is not None:
            value = min(max_val, value)
        return value
    except (ValueError, TypeError):
        logger_local.warning(f"Invalid {name}, using default {default}")
        return default


class Config:
    """
    Configuration management with:
    - Input validation
    - Environment variable support
    - Safe defaults
    """

    # ========== Matrix Geometry ==========
    # Logical canvas is fixed; rendered pixel size is not.
    MATRIX = {
        'canvas_width': 520.0,
        'canvas_height': 520.0,
        'overflow': 20.0,          # clamp allowance beyond each canvas edge
        'render_margin': 40.0,     # percentage mapping: (x + 40) / 600
        'drag_epsilon_px': 0.5,
        'quadrant_threshold': 0.5,
    }

    # ========== Card Footprint (rendered pixels) ==========
    CARDS = {
        'expanded_width': 240,
        'expanded_height': 160,
        'collapsed_width': 144,
        'collapsed_height': 80,
        'min_spacing': 20,
        'placement_attempts': 50,
    }

    # ========== Stacking Order ==========
    Z_INDEX = {
        'card_base': 10,
        'card_hover': 20,
        'card_editing': 30,
        'card_dragging': 50,
    }

    # ========== Soft Locks (With Validation) ==========
    @classmethod
    def get_locks_config(cls) -> dict:
        """Get lock configuration with validation"""
        return {
            'ttl_seconds': _safe_int_env('MATRIX_LOCK_TTL_SECONDS', 300, 5, 3600),
        }

    # ========== Optimistic Sync (With Validation) ==========
    @classmethod
    def get_sync_config(cls) -> dict:
        """Get optimistic-update configuration with validation"""
        return {
            'persist_timeout': _safe_float_env('MATRIX_PERSIST_TIMEOUT', 8.0, 0.1, 120.0),
            'retry_attempts': _safe_int_env('MATRIX_RETRY_ATTEMPTS', 2, 0, 10),
            'retry_backoff': _safe_float_env('MATRIX_RETRY_BACKOFF', 0.25, 0.0, 10.0),
            'resync_on_reconnect': os.getenv(
                'MATRIX_RESYNC_ON_RECONNECT', 'true'
            ).lower() == 'true',
        }

    LOCKS = property(lambda self: self.get_locks_config())
    SYNC = property(lambda self: self.get_sync_config())

    # ========== Change Feed ==========
    FEED = {
        'table': 'cards',
        'reconnect_delay': 1.0,
        'max_reconnect_delay': 30.0,
        'reconnect_multiplier': 1.5,
        'max_buffer_size': 10,
    }

    # ========== File Settings ==========
    @classmethod
    def get_files_config(cls) -> dict:
        """Get file configuration with lazy initialization to avoid import issues"""
        return {
            'config_dir': Path(os.getenv(
                'MATRIX_CONFIG_DIR',
                str(Path.home() / '.priority_matrix')
            )),
            'log_dir': Path(os.getenv(
                'MATRIX_LOG_DIR',
                str(Path.home() / '.priority_matrix' / 'logs')
            )),
        }

    # ========== Logging Settings ==========
    LOGGING = {
        'level': os.getenv('LOG_LEVEL', 'INFO'),
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'date_format': '%Y-%m-%d %H:%M:%S',
        'max_bytes': 5 * 1024 * 1024,
        'backup_count': 3,
        'console_output': True,
    }

    def __init__(
        self,
        config_file: Optional[str] = None,
        validate: bool = True,
        ensure_directories: bool = True,
    ):
        """
        Initialize configuration with optional validation

        Args:
            config_file: Optional path to JSON config file
            validate: Whether to validate configuration on init
            ensure_directories: Create required directories on init
        """
        self._lock = threading.RLock()
        self._files_config: Optional[dict] = None
        self.config_file = config_file
        self._custom_settings = {}
        self._logger = None  # Will be set after logger initialization

        if ensure_directories:
            self.ensure_directories()

        if config_file:
            self.load_from_file(config_file)

        if validate:
            self.validate()

    @property
    def FILES(self) -> dict:
        """Cached file configuration"""
        with self._lock:
            if self._files_config is None:
                self._files_config = self.get_files_config()
            return self._files_config

    def ensure_directories(self) -> Dict[str, bool]:
        """Ensure all required directories exist, track success."""
        status: Dict[str, bool] = {}
        logger_local = self._logger or logging.getLogger(__name__)
        for key in ['config_dir', 'log_dir']:
            path = self.FILES[key]
            try:
                path.mkdir(parents=True, exist_ok=True)
                status[key] = path.exists() and path.is_dir()
            except OSError as e:
                logger_local.warning(f"Could not create {key}: {e}")
                status[key] = False
        self._directory_status = status
        return status

    def validate(self):
        """
        Validate all configuration values

        Raises:
            ConfigError: If configuration is invalid
        """
        errors = []

        # Matrix geometry
        if self.get('matrix', 'canvas_width') <= 0 or self.get('matrix', 'canvas_height') <= 0:
            errors.append("canvas dimensions must be positive")
        if self.get('matrix', 'overflow') < 0:
            errors.append("overflow cannot be negative")
        threshold = self.get('matrix', 'quadrant_threshold')
        if not 0 < threshold < 1:
            errors.append("quadrant_threshold must be between 0 and 1")

        # Stacking order must keep dragging > editing > hover > base
        z = self.Z_INDEX
        if not (z['card_dragging'] > z['card_editing'] > z['card_hover'] > z['card_base']):
            errors.append("Z_INDEX must be strictly ordered dragging > editing > hover > base")

        # Locks / sync
        if self.get('locks', 'ttl_seconds') <= 0:
            errors.append("lock ttl_seconds must be positive")
        if self.get('sync', 'persist_timeout') <= 0:
            errors.append("persist_timeout must be positive")
        if self.get('sync', 'retry_attempts') < 0:
            errors.append("retry_attempts cannot be negative")

        # Feed
        if self.FEED['reconnect_delay'] <= 0:
            errors.append("reconnect_delay must be positive")
        if self.FEED['max_reconnect_delay'] < self.FEED['reconnect_delay']:
            errors.append("max_reconnect_delay must be >= reconnect_delay")

        # Logging
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if self.LOGGING['level'].upper() not in valid_levels:
            errors.append(f"Invalid log level: {self.LOGGING['level']}")

        if hasattr(self, '_directory_status'):
            for key, success in self._directory_status.items():
                if not success:
                    errors.append(f"Required directory {key} could not be created")

        if errors:
            raise ConfigError("Configuration validation failed:\n" + "\n".join(errors))

    def load_from_file(self, filepath: Union[str, Path]):
        """
        Load configuration from JSON file

        Args:
            filepath: Path to JSON configuration file
        """
        filepath = Path(filepath)

        if not filepath.exists():
            if self._logger:
                self._logger.warning(f"Config file not found: {filepath}")
            return

        try:
            with open(filepath, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            error_msg = f"Invalid JSON in config file: {e}"
            if self._logger:
                self._logger.error(error_msg)
            raise ConfigError(error_msg)
        except OSError as e:
            error_msg = f"Error loading config file: {e}"
            if self._logger:
                self._logger.error(error_msg)
            raise ConfigError(error_msg)

        if not isinstance(data, dict):
            raise ConfigError(f"Config file must contain a JSON object: {filepath}")

        with self._lock:
            self._custom_settings = {k.lower(): v for k, v in data.items() if isinstance(v, dict)}

        if self._logger:
            self._logger.info(f"Loaded configuration from {filepath}")

    def save_to_file(self, filepath: Union[str, Path]):
        """
        Save current configuration to JSON file

        Args:
            filepath: Path where to save the configuration
        """
        filepath = Path(filepath)
        config_dict = self.to_dict()
        config_dict.pop('custom', None)

        with self._lock:
            custom_settings = {k: dict(v) for k, v in self._custom_settings.items()}

        for section, values in custom_settings.items():
            if section in config_dict:
                config_dict[section].update(values)
            else:
                config_dict[section] = values

        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(config_dict, f, indent=2, default=str)

        if self._logger:
            self._logger.info(f"Saved configuration to {filepath}")

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """
        Get configuration value with support for custom settings

        Args:
            section: Configuration section name
            key: Configuration key
            default: Default value if not found

        Returns:
            Configuration value or default
        """
        with self._lock:
            section_lower = section.lower()
            if section_lower in self._custom_settings:
                if key in self._custom_settings[section_lower]:
                    return self._custom_settings[section_lower][key]

            section_attr = section.upper()
            if hasattr(self, section_attr):
                section_dict = getattr(self, section_attr)
                if callable(section_dict):
                    section_dict = section_dict()
                if isinstance(section_dict, dict):
                    return section_dict.get(key, default)

        return default

    def set(self, section: str, key: str, value: Any):
        """
        Set a configuration value

        Args:
            section: Configuration section name
            key: Configuration key
            value: Value to set
        """
        with self._lock:
            section_lower = section.lower()
            if section_lower not in self._custom_settings:
                self._custom_settings[section_lower] = {}
            self._custom_settings[section_lower][key] = value

    def set_logger(self, logger):
        """Set logger instance after logger initialization"""
        self._logger = logger

    def to_dict(self) -> dict:
        """Export entire configuration as dictionary"""
        with self._lock:
            custom_settings = {k: dict(v) for k, v in self._custom_settings.items()}

        return {
            'matrix': dict(self.MATRIX),
            'cards': dict(self.CARDS),
            'z_index': dict(self.Z_INDEX),
            'locks': self.get_locks_config(),
            'sync': self.get_sync_config(),
            'feed': dict(self.FEED),
            'files': {k: str(v) for k, v in self.FILES.items()},
            'logging': dict(self.LOGGING),
            'custom': custom_settings,
        }


# Create global configuration instance.
#
# IMPORTANT: Keep this import side-effect free. Runtime initialization (logging
# configuration, directory creation, validation) must happen in an explicit app
# startup path (see `src/main.py`).
config = Config(validate=False, ensure_directories=False)
