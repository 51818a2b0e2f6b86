"""Audio processing utilities for VoxGate Recorder.

This module provides the loudness estimate used by the activity detector,
the WAV container wrapping applied to finished recordings, and driver
detection for device listings.
"""

import io
import math

import numpy as np
import soundfile as sf

from .config import SAMPLE_WIDTH_INT16


def calculate_db_level(audio_data: bytes) -> float:
    """Calculate the loudness of a chunk of 16-bit PCM audio.

    The chunk is read as signed little-endian int16 samples and reduced to
    ``20 * log10(rms)``.  Silence (or an empty chunk) yields ``-inf``, which
    never compares above a threshold.

    Args:
        audio_data: Raw audio bytes; a trailing odd byte is ignored

    Returns:
        Loudness in dB relative to one sample unit
    """
    usable = len(audio_data) - len(audio_data) % SAMPLE_WIDTH_INT16
    if usable == 0:
        return -math.inf

    audio_array = np.frombuffer(audio_data[:usable], dtype='<i2')
    rms = float(np.sqrt(np.mean(audio_array.astype(np.float64) ** 2)))
    if rms == 0:
        return -math.inf
    return 20 * math.log10(rms)


def encode_wav(pcm: bytes, rate: int, channels: int) -> bytes:
    """Wrap interleaved 16-bit PCM in a WAV container.

    Args:
        pcm: Interleaved int16 samples; a trailing partial frame is dropped
        rate: Sample rate in Hz
        channels: Number of interleaved channels

    Returns:
        The complete WAV file as bytes
    """
    frame_size = SAMPLE_WIDTH_INT16 * channels
    usable = len(pcm) - len(pcm) % frame_size
    audio_data = np.frombuffer(pcm[:usable], dtype='<i2').reshape(-1, channels)

    buffer = io.BytesIO()
    sf.write(buffer, audio_data, rate, format='WAV', subtype='PCM_16')
    return buffer.getvalue()


def detect_driver_type(device_name: str) -> str:
    """Detect the audio driver type from device name.

    Args:
        device_name: The name of the audio device

    Returns:
        Driver type: 'pulse', 'alsa', 'jack', 'usb' or 'default'
    """
    name_lower = device_name.lower()

    if 'pulse' in name_lower or 'pipewire' in name_lower:
        return 'pulse'
    elif 'alsa' in name_lower or 'hw:' in name_lower or 'plughw' in name_lower:
        return 'alsa'
    elif 'jack' in name_lower:
        return 'jack'
    elif 'usb' in name_lower:
        return 'usb'
    else:
        return 'default'
