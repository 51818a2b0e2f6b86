"""Configuration management for VoxGate Recorder.

This module provides configuration constants, the :class:`AppConfig` class
which merges defaults with values from an optional YAML file
(``.voxgate-recorder.yml`` in the working directory), and the typed
:class:`PipelineConfig` consumed by the capture pipeline.

Detection constants
-------------------
- ``THRESHOLD_DB``     – loudness separating silence from speech (default 50)
- ``RELEASE_GRACE``    – seconds below threshold before a session ends (2.0)
- ``DRAIN_DELAY``      – seconds to keep collecting after the stop (0.5)

Audio constants
---------------
- ``MONITOR_RATE`` / ``MONITOR_CHANNELS`` – coarse detection feed (8 kHz mono)
- ``HIFI_RATE`` / ``HIFI_CHANNELS``       – stored feed (44.1 kHz stereo)
- ``FRAMES_PER_BUFFER``                   – PyAudio buffer size in frames

Configuration file
------------------
Every constant can be overridden from ``.voxgate-recorder.yml``:

.. code-block:: yaml

    detection:
      threshold: 45
      release_grace: 1.5
    audio:
      hifi_rate: 48000
      audio_format: wav
    capture:
      screenshot_interval: 5
    storage:
      mode: local
      local_directory: recordings/
    s3:
      endpoint_url: https://s3.example.test
      region: eu-west-1
      access_key: ...
      secret_key: ...
"""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .errors import ConfigurationError

# Activity detection
THRESHOLD_DB = 50.0
RELEASE_GRACE = 2.0  # seconds
DRAIN_DELAY = 0.5  # seconds

# Audio feeds
MONITOR_RATE = 8000
MONITOR_CHANNELS = 1
HIFI_RATE = 44100
HIFI_CHANNELS = 2
FRAMES_PER_BUFFER = 1024
SAMPLE_WIDTH_INT16 = 2
AUDIO_FORMAT = 'wav'  # 'wav' wraps PCM in a container, 'raw' stores PCM as-is
AUDIO_FORMATS = ('wav', 'raw')
SESSION_BUFFER = 'memory'  # 'memory' or 'spool'
SESSION_BUFFERS = ('memory', 'spool')
SPOOL_MAX_MEMORY = 8 * 1024 * 1024

# Periodic image capture
SCREENSHOT_INTERVAL = 1.0  # seconds
WEBCAM_INTERVAL = 1.0  # seconds
IMAGE_QUALITY = 80
WEBCAM_WIDTH = 1280
WEBCAM_HEIGHT = 720

# Storage
STORAGE_MODE = 's3'
STORAGE_MODES = ('s3', 'local')
LOCAL_DIRECTORY = 'recordings/'
S3_BUCKET = 'recordings'
MAX_RETRIES = 0
SHUTDOWN_TIMEOUT = 30.0  # seconds

CONFIG_FILE = '.voxgate-recorder.yml'

# Local recording log
LOG_FILE = 'recordings.jsonl'

# YAML section each flat key is read from
_SECTIONS = {
    'detection': ('threshold', 'release_grace', 'drain_delay'),
    'audio': (
        'monitor_rate', 'monitor_channels', 'hifi_rate', 'hifi_channels',
        'frames_per_buffer', 'audio_format', 'session_buffer',
        'skip_empty_recordings',
    ),
    'capture': (
        'enable_screenshot', 'screenshot_interval', 'enable_webcam',
        'webcam_interval', 'webcam_device', 'image_quality',
    ),
    'storage': ('mode', 'local_directory', 'max_retries', 'shutdown_timeout'),
}


class AppConfig:
    """Application configuration management."""

    def __init__(self) -> None:
        """Initialize configuration with defaults."""
        self._config: Dict[str, Any] = {
            'threshold': THRESHOLD_DB,
            'release_grace': RELEASE_GRACE,
            'drain_delay': DRAIN_DELAY,
            'monitor_rate': MONITOR_RATE,
            'monitor_channels': MONITOR_CHANNELS,
            'hifi_rate': HIFI_RATE,
            'hifi_channels': HIFI_CHANNELS,
            'frames_per_buffer': FRAMES_PER_BUFFER,
            'audio_format': AUDIO_FORMAT,
            'session_buffer': SESSION_BUFFER,
            'skip_empty_recordings': False,
            'enable_screenshot': False,
            'screenshot_interval': SCREENSHOT_INTERVAL,
            'enable_webcam': False,
            'webcam_interval': WEBCAM_INTERVAL,
            'webcam_device': None,
            'image_quality': IMAGE_QUALITY,
            'mode': STORAGE_MODE,
            'local_directory': LOCAL_DIRECTORY,
            'max_retries': MAX_RETRIES,
            'shutdown_timeout': SHUTDOWN_TIMEOUT,
        }
        self._load_yaml_config()

    def _load_yaml_config(self) -> None:
        """Load optional YAML configuration from project root."""
        config_path = Path.cwd() / CONFIG_FILE
        if not config_path.exists():
            return

        content = yaml.safe_load(config_path.read_text(encoding='utf-8'))
        if not content:
            return

        if not isinstance(content, dict):
            raise ValueError(f"Configuration in {CONFIG_FILE} must be a mapping")

        for section, keys in _SECTIONS.items():
            section_config = content.get(section)
            if isinstance(section_config, dict):
                for key in keys:
                    if key in section_config:
                        self._config[key] = section_config[key]

        for key, value in content.items():
            if key in _SECTIONS:
                continue
            self._config[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value.

        Args:
            key: Configuration key
            value: Configuration value
        """
        self._config[key] = value

    def as_dict(self) -> Dict[str, Any]:
        """Return a shallow copy of the merged configuration."""
        return dict(self._config)

    def get_s3_config(self) -> Optional[Dict[str, Any]]:
        """Get S3 configuration mapping, if present."""
        s3_config = self._config.get('s3')
        if isinstance(s3_config, dict):
            return s3_config
        return None

    def get_log_path(self, output_dir: Optional[Path] = None) -> Path:
        """Return the recording log file path.

        The log file name is taken from the ``log.file`` key in
        ``.voxgate-recorder.yml`` when present, otherwise from the
        :data:`LOG_FILE` constant.  The file is placed inside *output_dir*
        (defaults to the working directory).

        Args:
            output_dir: Directory that will contain the log file.

        Returns:
            Path including the log filename.
        """
        log_config = self._config.get('log')
        log_file = LOG_FILE
        if isinstance(log_config, dict):
            log_file = log_config.get('file', LOG_FILE)
        base = Path(output_dir) if output_dir is not None else Path.cwd()
        return base / log_file


@dataclass
class PipelineConfig:
    """Validated settings for :class:`~voxgate_recorder.core.pipeline.CapturePipeline`."""

    threshold: float = THRESHOLD_DB
    release_grace: float = RELEASE_GRACE
    drain_delay: float = DRAIN_DELAY
    monitor_rate: int = MONITOR_RATE
    monitor_channels: int = MONITOR_CHANNELS
    hifi_rate: int = HIFI_RATE
    hifi_channels: int = HIFI_CHANNELS
    frames_per_buffer: int = FRAMES_PER_BUFFER
    audio_format: str = AUDIO_FORMAT
    session_buffer: str = SESSION_BUFFER
    skip_empty_recordings: bool = False
    enable_screenshot: bool = False
    screenshot_interval: float = SCREENSHOT_INTERVAL
    enable_webcam: bool = False
    webcam_interval: float = WEBCAM_INTERVAL
    webcam_device: Optional[str] = None
    image_quality: int = IMAGE_QUALITY
    max_retries: int = MAX_RETRIES
    shutdown_timeout: float = SHUTDOWN_TIMEOUT

    def __post_init__(self) -> None:
        problems = []
        if self.release_grace < 0:
            problems.append("release_grace must be >= 0")
        if self.drain_delay < 0:
            problems.append("drain_delay must be >= 0")
        if not 1 <= self.image_quality <= 100:
            problems.append("image_quality must be between 1 and 100")
        if self.screenshot_interval <= 0 or self.webcam_interval <= 0:
            problems.append("capture intervals must be positive")
        for name in ('monitor_rate', 'monitor_channels', 'hifi_rate', 'hifi_channels', 'frames_per_buffer'):
            if getattr(self, name) <= 0:
                problems.append(f"{name} must be positive")
        if self.audio_format not in AUDIO_FORMATS:
            problems.append(f"audio_format must be one of {', '.join(AUDIO_FORMATS)}")
        if self.session_buffer not in SESSION_BUFFERS:
            problems.append(f"session_buffer must be one of {', '.join(SESSION_BUFFERS)}")
        if self.max_retries < 0:
            problems.append("max_retries must be >= 0")
        if self.shutdown_timeout <= 0:
            problems.append("shutdown_timeout must be positive")
        if problems:
            raise ConfigurationError("; ".join(problems))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineConfig":
        """Build and validate pipeline config from a mapping, ignoring unknown keys."""
        known = {field.name for field in fields(cls)}
        values = {key: value for key, value in data.items() if key in known and value is not None}
        try:
            for key in ('threshold', 'release_grace', 'drain_delay', 'screenshot_interval',
                        'webcam_interval', 'shutdown_timeout'):
                if key in values:
                    values[key] = float(values[key])
            for key in ('monitor_rate', 'monitor_channels', 'hifi_rate', 'hifi_channels',
                        'frames_per_buffer', 'image_quality', 'max_retries'):
                if key in values:
                    values[key] = int(values[key])
        except (TypeError, ValueError) as error:
            raise ConfigurationError(f"Invalid numeric setting: {error}") from error
        if 'webcam_device' in values:
            values['webcam_device'] = str(values['webcam_device'])
        return cls(**values)
