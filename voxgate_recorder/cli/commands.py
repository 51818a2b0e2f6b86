"""CLI commands for VoxGate Recorder.

This module provides all command-line interface commands using Typer.
"""

import asyncio
import math
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import typer
from loguru import logger
from rich.panel import Panel

from voxgate_recorder.core import (
    CapturePipeline,
    PipelineConfig,
    RecordingEngine,
    RecordingLogger,
    StorageAdapter,
    build_pipeline,
    create_storage_adapter,
)
from voxgate_recorder.core.config import (
    AppConfig, STORAGE_MODES,
)
from voxgate_recorder.core.detector import ActivityState
from voxgate_recorder.core.errors import ConfigurationError
from voxgate_recorder.cli.utils import (
    METER_MAX_DB, console, make_device_table, make_level_progress, make_settings_table, suppress_stderr,
)

app = typer.Typer(help="Voice-activated audio, screenshot and webcam recorder")

app_config = AppConfig()
default_mode = str(app_config.get("mode"))
default_local_directory = str(app_config.get("local_directory"))
default_threshold = float(app_config.get("threshold"))
default_release_grace_ms = int(float(app_config.get("release_grace")) * 1000)
default_drain_delay_ms = int(float(app_config.get("drain_delay")) * 1000)
default_screenshot_interval_ms = int(float(app_config.get("screenshot_interval")) * 1000)
default_webcam_interval_ms = int(float(app_config.get("webcam_interval")) * 1000)
default_image_quality = int(app_config.get("image_quality"))
default_max_retries = int(app_config.get("max_retries"))


def _configure_logging(verbose: bool) -> None:
    """Configure loguru log level based on verbose flag."""
    logger.remove()
    if verbose:
        logger.add(sys.stderr, level="DEBUG")
    else:
        logger.add(sys.stderr, level="INFO")


def _s3_settings(**overrides: Optional[str]) -> Dict[str, Any]:
    """Merge the YAML ``s3`` section with command-line overrides."""
    settings = dict(app_config.get_s3_config() or {})
    for key, value in overrides.items():
        if value:
            settings[key] = value
    return settings


def _build_storage(
    mode: str,
    local_directory: Optional[str],
    s3_settings: Dict[str, Any],
    create_directory: bool = True,
) -> StorageAdapter:
    if mode not in STORAGE_MODES:
        raise ConfigurationError(f"Invalid storage mode {mode!r}. Use 's3' or 'local'.")
    return create_storage_adapter(
        mode,
        local_directory=local_directory,
        s3_config=s3_settings,
        create_directory=create_directory,
    )


async def _run_pipeline(pipeline: CapturePipeline, show_meter: bool) -> None:
    """Run *pipeline* with SIGINT/SIGTERM wired to an orderly shutdown."""
    loop = asyncio.get_running_loop()

    def _on_signal() -> None:
        if not pipeline.stopping:
            console.print("\n[warning]⏹ Received interrupt signal, stopping recorder...[/warning]")
        pipeline.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Signal handler for {sig} not supported on this platform")

    meter_task = None
    if show_meter:
        meter_task = loop.create_task(_show_meter(pipeline))
    try:
        await pipeline.run()
    finally:
        if meter_task is not None:
            meter_task.cancel()
            await asyncio.gather(meter_task, return_exceptions=True)


async def _show_meter(pipeline: CapturePipeline) -> None:
    with make_level_progress() as progress:
        task = progress.add_task("level", total=METER_MAX_DB, db_text="-- dB", status="")
        while True:
            level = pipeline.current_level
            shown = level if math.isfinite(level) else 0.0
            state = pipeline.state
            if state is ActivityState.ACTIVE:
                status = "🎙 [bold green]RECORDING[/bold green]"
            elif state is ActivityState.RELEASING:
                status = "[yellow]releasing[/yellow]"
            else:
                status = "[dim]idle[/dim]"
            progress.update(
                task,
                completed=max(0.0, min(METER_MAX_DB, shown)),
                db_text=f"{shown:.1f} dB",
                status=f"{status}  queued: {pipeline.upload_queue.pending}",
            )
            await asyncio.sleep(0.1)


@app.command()
def record(
    mode: str = typer.Option(default_mode, help="Storage mode: 's3' or 'local'"),
    endpoint: Optional[str] = typer.Option(None, help="S3 endpoint (required for s3 mode)"),
    region: Optional[str] = typer.Option(None, help="S3 region (required for s3 mode)"),
    key: Optional[str] = typer.Option(None, help="AWS access key (required for s3 mode)"),
    secret: Optional[str] = typer.Option(None, help="AWS secret key (required for s3 mode)"),
    bucket: Optional[str] = typer.Option(None, help="S3 bucket name (default: recordings)"),
    local_directory: str = typer.Option(
        default_local_directory, help="Local directory path (used in local mode)"
    ),
    enable_screenshot: bool = typer.Option(
        bool(app_config.get("enable_screenshot")), "--enable-screenshot", help="Enable screenshot capture"
    ),
    screenshot_interval: int = typer.Option(
        default_screenshot_interval_ms, help="Screenshot interval in ms"
    ),
    enable_webcam: bool = typer.Option(
        bool(app_config.get("enable_webcam")), "--enable-webcam", help="Enable webcam capture"
    ),
    webcam_interval: int = typer.Option(default_webcam_interval_ms, help="Webcam capture interval in ms"),
    webcam_device: Optional[str] = typer.Option(
        app_config.get("webcam_device"), help="Webcam device index or path"
    ),
    image_quality: int = typer.Option(default_image_quality, help="Image quality (1-100)"),
    threshold: float = typer.Option(default_threshold, help="Voice threshold in dB"),
    release_grace: int = typer.Option(
        default_release_grace_ms, help="Silence (ms) tolerated before a recording ends"
    ),
    drain_delay: int = typer.Option(
        default_drain_delay_ms, help="Wait (ms) for trailing audio after a recording ends"
    ),
    monitor_device: Optional[int] = typer.Option(
        None, help="Audio device ID for the detection feed. Leave empty for the default input."
    ),
    hifi_device: Optional[int] = typer.Option(
        None, help="Audio device ID for the recorded feed. Leave empty for the default input."
    ),
    max_retries: int = typer.Option(
        default_max_retries, help="Extra store attempts before an upload is dropped"
    ),
    log_file: Optional[str] = typer.Option(
        None,
        help=(
            "Path of the JSONL recording log. Defaults to the value from "
            ".voxgate-recorder.yml or 'recordings.jsonl' in the working directory."
        ),
    ),
    meter: bool = typer.Option(True, "--meter/--no-meter", help="Show the live level meter"),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """Record audio while speech is detected, plus optional screenshots and webcam frames."""
    _configure_logging(verbose)

    settings = app_config.as_dict()
    settings.update(
        threshold=threshold,
        release_grace=release_grace / 1000,
        drain_delay=drain_delay / 1000,
        enable_screenshot=enable_screenshot,
        screenshot_interval=screenshot_interval / 1000,
        enable_webcam=enable_webcam,
        webcam_interval=webcam_interval / 1000,
        webcam_device=webcam_device,
        image_quality=image_quality,
        max_retries=max_retries,
    )

    try:
        config = PipelineConfig.from_dict(settings)
        storage = _build_storage(
            mode,
            local_directory,
            _s3_settings(endpoint_url=endpoint, region=region, access_key=key, secret_key=secret, bucket=bucket),
        )
    except ConfigurationError as e:
        console.print(f"[error]✗ Error: {e}[/error]")
        raise typer.Exit(1)

    log_path = Path(log_file) if log_file else app_config.get_log_path()
    recording_logger = RecordingLogger(log_path)

    pipeline = build_pipeline(
        config,
        storage,
        recording_logger=recording_logger,
        monitor_device=monitor_device,
        hifi_device=hifi_device,
    )

    captures = ["audio"]
    if config.enable_screenshot:
        captures.append(f"screenshot every {screenshot_interval} ms")
    if config.enable_webcam:
        captures.append(f"webcam every {webcam_interval} ms (quality {config.image_quality})")
    info_grid = make_settings_table({
        "Storage": storage.describe(),
        "Threshold": f"{config.threshold:.1f} dB",
        "Release grace": f"{release_grace} ms",
        "Drain delay": f"{drain_delay} ms",
        "Monitor feed": f"{config.monitor_rate} Hz, {config.monitor_channels} ch",
        "Recorded feed": f"{config.hifi_rate} Hz, {config.hifi_channels} ch ({config.audio_format})",
        "Captures": ", ".join(captures),
        "Log": str(log_path),
    })
    console.print(Panel(info_grid, title="[bold]🎙 Voice-Activated Recorder[/bold]", border_style="green"))
    console.print("[info]Press Ctrl+C to stop[/info]")

    try:
        asyncio.run(_run_pipeline(pipeline, meter))
    except Exception as e:
        console.print(f"[error]✗ Error during recording: {e}[/error]")
        raise typer.Exit(1)

    console.print(
        f"[success]✓ Recorder stopped: {pipeline.sessions_recorded} recording(s), "
        f"{pipeline.upload_queue.delivered} upload(s) delivered, "
        f"{pipeline.upload_queue.failed} failed[/success]"
    )


@app.command()
def list_devices(
    driver: Optional[str] = typer.Option(
        None, help="Filter by driver type: pulse, alsa, jack, usb, default"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output from audio libraries"
    ),
):
    """List all available input audio devices."""
    try:
        if verbose:
            devices = RecordingEngine.list_devices(driver_filter=driver)
        else:
            with suppress_stderr():
                devices = RecordingEngine.list_devices(driver_filter=driver)
    except Exception as e:
        console.print(f"[error]✗ Error listing devices: {e}[/error]")
        raise typer.Exit(1)

    title = "Available Input Devices"
    if driver:
        title += f" (filtered by: {driver})"
    console.print(Panel(make_device_table(devices), title=f"[bold]{title}[/bold]"))


@app.command()
def status(
    mode: str = typer.Option(default_mode, help="Storage mode to check: 's3' or 'local'"),
    local_directory: str = typer.Option(default_local_directory, help="Local directory to check"),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Show debug output"
    ),
):
    """Show the effective detection settings and check the storage backend.

    In s3 mode the configured bucket is probed with a lightweight
    ``head_bucket`` call; in local mode the target directory must be
    writable.
    """
    _configure_logging(verbose)

    console.rule("[bold]📋 VoxGate Recorder Status[/bold]")
    settings: Dict[str, Any] = {
        "Threshold": f"{float(app_config.get('threshold')):.1f} dB",
        "Release grace": f"{app_config.get('release_grace')} s",
        "Drain delay": f"{app_config.get('drain_delay')} s",
        "Audio format": app_config.get("audio_format"),
        "Storage mode": mode,
    }
    console.print(Panel(make_settings_table(settings), title="[bold]Settings[/bold]"))

    storage, error = _try_storage(mode, local_directory)
    if storage is None:
        console.print(f"[error]Storage not configured: {error}[/error]")
        return

    if storage.check():
        console.print(f"[info]Storage available: {storage.describe()}[/info]")
    else:
        console.print(f"[warning]Storage not reachable: {storage.describe()}[/warning]")


def _try_storage(mode: str, local_directory: str) -> Tuple[Optional[StorageAdapter], Optional[str]]:
    try:
        return _build_storage(mode, local_directory, _s3_settings(), create_directory=False), None
    except ConfigurationError as e:
        return None, str(e)
