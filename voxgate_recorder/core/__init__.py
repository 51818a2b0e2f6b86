"""Core business logic for VoxGate Recorder."""

from .config import AppConfig, PipelineConfig
from .detector import ActivityDetector, ActivityEvent, ActivityState
from .errors import (
    CaptureError,
    ConfigurationError,
    DeliveryError,
    RecorderError,
    SessionError,
    SessionFinalizeError,
)
from .log import RecordingLogger
from .pipeline import CapturePipeline, build_pipeline
from .processing import calculate_db_level, detect_driver_type, encode_wav
from .recording import AudioFeed, PyAudioFeed, QueueFeed, RecordingEngine
from .s3_upload import S3Config, S3StorageAdapter, build_object_key
from .session import RecordingSession, SpooledRecordingSession
from .storage import (
    ArtifactKind,
    LocalStorageAdapter,
    StorageAdapter,
    build_artifact_name,
    create_storage_adapter,
    format_timestamp,
)
from .upload_queue import UploadQueue, UploadTask

__all__ = [
    "AppConfig",
    "PipelineConfig",
    "ActivityDetector",
    "ActivityEvent",
    "ActivityState",
    "RecordingSession",
    "SpooledRecordingSession",
    "UploadQueue",
    "UploadTask",
    "ArtifactKind",
    "StorageAdapter",
    "LocalStorageAdapter",
    "S3Config",
    "S3StorageAdapter",
    "CapturePipeline",
    "build_pipeline",
    "AudioFeed",
    "QueueFeed",
    "PyAudioFeed",
    "RecordingEngine",
    "RecordingLogger",
    "RecorderError",
    "ConfigurationError",
    "CaptureError",
    "SessionError",
    "SessionFinalizeError",
    "DeliveryError",
    "calculate_db_level",
    "encode_wav",
    "detect_driver_type",
    "build_artifact_name",
    "build_object_key",
    "create_storage_adapter",
    "format_timestamp",
]
