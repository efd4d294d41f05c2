"""
Configuration module for Local Chrome Agent
Centralizes browser, scheduler and logging settings with validation
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


def _safe_float_env(name: str, default: float) -> float:
    """Parse float environment variable, falling back to default."""
    try:
        return float(os.getenv(name, str(default)))
    except (ValueError, TypeError):
        logging.getLogger(__name__).warning(f"Invalid {name}, using default {default}")
        return default


class Config:
    """
    Configuration management with:
    - Environment variable support
    - Safe defaults
    - Validation
    - JSON overrides
    """

    SECTIONS = ('browser', 'scheduler', 'logging')

    # ========== Browser Settings ==========
    @classmethod
    def get_browser_config(cls) -> dict:
        """Get browser configuration, read from the environment on each call"""
        return {
            'chromedriver': os.getenv('CHROMEDRIVER', ''),
            'chrome_binary': os.getenv('CHROME_BINARY', ''),
            'server_port': _safe_int_env('WD_SERVER_PORT', 4444, 1, 65535),
            'devtools_port': _safe_int_env('DEVTOOLS_PORT', 1234, 1, 65535),
        }

    # ========== Scheduler Settings ==========
    @classmethod
    def get_scheduler_config(cls) -> dict:
        """Get scheduler configuration"""
        return {
            'name': os.getenv('SCHEDULER_NAME', 'ControlFlow'),
            'stop_timeout': _safe_float_env('SCHEDULER_STOP_TIMEOUT', 5.0),
        }

    # ========== File Settings ==========
    @classmethod
    def get_files_config(cls) -> dict:
        """Get file configuration"""
        return {
            'log_dir': Path(os.getenv(
                'LOCAL_CHROME_LOG_DIR',
                str(Path.home() / '.local_chrome' / 'logs')
            )),
        }

    # ========== Logging Settings ==========
    LOGGING = {
        'level': os.getenv('LOG_LEVEL', 'INFO'),
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'date_format': '%Y-%m-%d %H:%M:%S',
        'max_bytes': 5 * 1024 * 1024,
        'backup_count': 3,
    }

    def __init__(
        self,
        config_file: Optional[str] = None,
        validate: bool = True,
    ):
        """
        Initialize configuration with optional validation

        Args:
            config_file: Optional path to JSON config file
            validate: Whether to validate configuration on init
        """
        self._lock = threading.RLock()
        self.config_file = config_file
        self._custom_settings = {}
        self._logger = None  # Will be set after logger initialization

        if config_file:
            self.load_from_file(config_file)

        if validate:
            self.validate()

    @property
    def BROWSER(self) -> dict:
        """Browser section merged with custom settings"""
        return self._merged('browser', self.get_browser_config())

    @property
    def SCHEDULER(self) -> dict:
        """Scheduler section merged with custom settings"""
        return self._merged('scheduler', self.get_scheduler_config())

    @property
    def FILES(self) -> dict:
        """File section"""
        return self.get_files_config()

    def _merged(self, section: str, values: dict) -> dict:
        with self._lock:
            values.update(self._custom_settings.get(section, {}))
        return values

    def validate(self):
        """
        Validate all configuration values

        Raises:
            ConfigError: If configuration is invalid
        """
        errors = []

        browser = self.BROWSER
        for key in ('server_port', 'devtools_port'):
            port = browser.get(key)
            if not isinstance(port, int) or not 0 < port < 65536:
                errors.append(f"{key} must be a port number, got {port!r}")
        if browser.get('server_port') == browser.get('devtools_port'):
            errors.append("server_port and devtools_port must differ")

        if self.SCHEDULER.get('stop_timeout', 0) <= 0:
            errors.append("Scheduler stop_timeout must be positive")

        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if self.LOGGING['level'].upper() not in valid_levels:
            errors.append(f"Invalid log level: {self.LOGGING['level']}")

        if errors:
            raise ConfigError("Configuration validation failed:\n" + "\n".join(errors))

    def load_from_file(self, filepath: Union[str, Path]):
        """
        Load configuration overrides from a JSON file

        Args:
            filepath: Path to JSON configuration file
        """
        filepath = Path(filepath)

        try:
            if not filepath.exists():
                if self._logger:
                    self._logger.warning(f"Config file not found: {filepath}")
                return

            with open(filepath, 'r') as f:
                data = json.load(f)

            if not isinstance(data, dict):
                raise ConfigError(f"Config file must contain a JSON object: {filepath}")

            settings = {
                section: dict(values)
                for section, values in data.items()
                if section in self.SECTIONS and isinstance(values, dict)
            }

            with self._lock:
                self._custom_settings = settings

            if self._logger:
                self._logger.info(f"Loaded configuration from {filepath}")

        except json.JSONDecodeError as e:
            error_msg = f"Invalid JSON in config file: {e}"
            if self._logger:
                self._logger.error(error_msg)
            raise ConfigError(error_msg)

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
            if key in self._custom_settings.get(section_lower, {}):
                return self._custom_settings[section_lower][key]

        section_dict = getattr(self, section.upper(), None)
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
            self._custom_settings.setdefault(section.lower(), {})[key] = value

    def set_logger(self, logger):
        """Set logger instance after logger initialization"""
        self._logger = logger

    def to_dict(self) -> Dict[str, Any]:
        """Export entire configuration as dictionary"""
        return {
            'browser': self.BROWSER,
            'scheduler': self.SCHEDULER,
            'files': {k: str(v) for k, v in self.FILES.items()},
            'logging': self.LOGGING,
        }


# Create global configuration instance.
#
# Keep this import side-effect free. Logging setup and validation happen in
# the explicit startup path (see `src/main.py`).
config = Config(validate=False)
