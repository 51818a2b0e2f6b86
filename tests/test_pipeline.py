"""End-to-end pipeline tests with in-memory feeds and storage."""

import asyncio
import io
import json

import numpy as np
import pytest
import soundfile as sf

from conftest import tone
from voxgate_recorder.core.config import PipelineConfig
from voxgate_recorder.core.detector import ActivityState
from voxgate_recorder.core.errors import CaptureError
from voxgate_recorder.core.log import RecordingLogger
from voxgate_recorder.core.pipeline import CapturePipeline
from voxgate_recorder.core.recording import AudioFeed, QueueFeed
from voxgate_recorder.core.session import RecordingSession
from voxgate_recorder.core.storage import ArtifactKind

CHUNK_INTERVAL = 0.02


def make_pipeline(storage, recording_logger=None, monitor_feed=None, **overrides):
    settings = dict(
        threshold=50,
        release_grace=0.08,
        drain_delay=0.03,
        audio_format="raw",
        shutdown_timeout=5,
    )
    settings.update(overrides)
    return CapturePipeline(
        PipelineConfig.from_dict(settings),
        storage,
        monitor_feed or QueueFeed("monitor"),
        QueueFeed("hifi"),
        recording_logger=recording_logger,
    )


async def feed(pipeline, level, hifi_chunk):
    """Push one monitor chunk, let the detector react, then push the matching hifi chunk."""
    pipeline._monitor_feed.push(tone(level))
    await asyncio.sleep(0.005)
    pipeline._hifi_feed.push(hifi_chunk)
    await asyncio.sleep(CHUNK_INTERVAL - 0.005)


def hifi(index):
    return bytes([index]) * 8


def audio_payloads(storage):
    return [payload for kind, payload, _ in storage.stored if kind is ArtifactKind.AUDIO]


def test_loudness_scenario_records_one_session(fake_storage, tmp_path):
    storage = fake_storage()
    log_path = tmp_path / "recordings.jsonl"

    async def scenario():
        pipeline = make_pipeline(storage, RecordingLogger(log_path))
        await pipeline.start()
        for index, level in enumerate([30, 30, 60, 60, 30, 30], start=1):
            await feed(pipeline, level, hifi(index))
        await asyncio.sleep(0.3)
        assert pipeline.session is None
        await pipeline.shutdown()
        return pipeline

    pipeline = asyncio.run(scenario())

    assert audio_payloads(storage) == [hifi(3) + hifi(4) + hifi(5) + hifi(6)]
    assert pipeline.sessions_recorded == 1
    records = [json.loads(line) for line in log_path.read_text().splitlines()]
    assert [(r["type"], r.get("event")) for r in records] == [
        ("session", "start"),
        ("session", "end"),
        ("delivery", None),
    ]
    assert records[1]["chunk_count"] == 4
    assert records[2]["delivered"] is True


def test_brief_dip_keeps_session_continuous(fake_storage):
    storage = fake_storage()

    async def scenario():
        pipeline = make_pipeline(storage, release_grace=0.2)
        await pipeline.start()
        for index, level in enumerate([60, 60, 30, 30, 60, 60], start=1):
            await feed(pipeline, level, hifi(index))
        assert pipeline.session is not None
        await pipeline.shutdown()

    asyncio.run(scenario())

    assert audio_payloads(storage) == [b"".join(hifi(i) for i in range(1, 7))]


def test_silence_records_nothing(fake_storage):
    storage = fake_storage()

    async def scenario():
        pipeline = make_pipeline(storage)
        await pipeline.start()
        for index in range(1, 6):
            await feed(pipeline, 20, hifi(index))
        await pipeline.shutdown()

    asyncio.run(scenario())
    assert storage.stored == []


def test_recording_is_wrapped_as_wav(fake_storage):
    storage = fake_storage()
    samples = np.arange(-400, 400, dtype=np.int16)

    async def scenario():
        pipeline = make_pipeline(storage, audio_format="wav", hifi_rate=8000, hifi_channels=1)
        await pipeline.start()
        await feed(pipeline, 70, samples[:400].tobytes())
        await feed(pipeline, 70, samples[400:].tobytes())
        await pipeline.shutdown()

    asyncio.run(scenario())

    (payload,) = audio_payloads(storage)
    assert payload[:4] == b"RIFF"
    data, rate = sf.read(io.BytesIO(payload), dtype="int16")
    assert rate == 8000
    assert np.array_equal(data, samples)


def test_shutdown_saves_session_in_progress(fake_storage):
    storage = fake_storage()

    async def scenario():
        pipeline = make_pipeline(storage, release_grace=10)
        await pipeline.start()
        await feed(pipeline, 70, hifi(1))
        await feed(pipeline, 70, hifi(2))
        drained = await pipeline.shutdown()
        return pipeline, drained

    pipeline, drained = asyncio.run(scenario())

    assert drained is True
    assert audio_payloads(storage) == [hifi(1) + hifi(2)]
    assert pipeline.upload_queue.pending == 0
    assert pipeline.session is None


def test_new_episode_during_drain_finalizes_previous_session(fake_storage):
    storage = fake_storage()

    async def scenario():
        pipeline = make_pipeline(storage, release_grace=0.03, drain_delay=1.0)
        await pipeline.start()
        await feed(pipeline, 70, hifi(1))
        await feed(pipeline, 20, hifi(2))
        await asyncio.sleep(0.08)
        # STOP has fired, the first session is still draining
        draining = pipeline.session
        assert draining is not None and draining.is_open
        await feed(pipeline, 70, hifi(3))
        assert draining.is_open is False
        assert pipeline.session is not draining
        await pipeline.shutdown()

    asyncio.run(scenario())

    assert audio_payloads(storage) == [hifi(1) + hifi(2), hifi(3)]


def test_empty_session_is_uploaded_unless_skipped(fake_storage):
    async def scenario(storage, skip):
        pipeline = make_pipeline(storage, skip_empty_recordings=skip)
        await pipeline.start()
        pipeline._monitor_feed.push(tone(70))
        await asyncio.sleep(0.01)
        await pipeline.shutdown()

    kept = fake_storage()
    asyncio.run(scenario(kept, False))
    assert audio_payloads(kept) == [b""]

    skipped = fake_storage()
    asyncio.run(scenario(skipped, True))
    assert skipped.stored == []


def test_image_sources_share_the_upload_queue(fake_storage):
    storage = fake_storage()
    grabs = {"count": 0}

    def flaky_grab():
        grabs["count"] += 1
        if grabs["count"] == 2:
            raise CaptureError("webcam busy")
        return b"jpeg-frame"

    async def scenario():
        pipeline = make_pipeline(storage)
        screenshots = pipeline.add_image_source(ArtifactKind.SCREENSHOT, 0.02, lambda: b"png-frame")
        webcam = pipeline.add_image_source(ArtifactKind.WEBCAM, 0.02, flaky_grab)
        await pipeline.start()
        await asyncio.sleep(0.15)
        await pipeline.shutdown()
        return screenshots, webcam

    screenshots, webcam = asyncio.run(scenario())

    kinds = [kind for kind, _, _ in storage.stored]
    assert kinds.count(ArtifactKind.SCREENSHOT) == screenshots.captured >= 2
    assert kinds.count(ArtifactKind.WEBCAM) == webcam.captured >= 2
    assert webcam.errors == 1
    assert storage.max_active == 1


class FailingMonitorFeed(QueueFeed):
    """Yields one loud chunk, then fails like an unplugged device."""

    async def __aiter__(self):
        yield tone(70)
        await asyncio.sleep(0.05)
        raise RuntimeError("device unplugged")


def test_task_failure_triggers_orderly_shutdown(fake_storage):
    storage = fake_storage()

    async def scenario():
        pipeline = make_pipeline(storage, monitor_feed=FailingMonitorFeed("monitor"), release_grace=10)

        async def push_hifi():
            await asyncio.sleep(0.02)
            pipeline._hifi_feed.push(hifi(9))

        pusher = asyncio.get_running_loop().create_task(push_hifi())
        with pytest.raises(RuntimeError, match="device unplugged"):
            await asyncio.wait_for(pipeline.run(), timeout=5)
        await pusher

    asyncio.run(scenario())

    assert audio_payloads(storage) == [hifi(9)]


def test_request_stop_ends_run(fake_storage):
    storage = fake_storage()

    async def scenario():
        pipeline = make_pipeline(storage)
        asyncio.get_running_loop().call_later(0.05, pipeline.request_stop)
        await asyncio.wait_for(pipeline.run(), timeout=5)
        return pipeline

    pipeline = asyncio.run(scenario())
    assert pipeline.stopping is True
    assert pipeline._monitor_feed.closed is True


class FullDiskLogger(RecordingLogger):
    """Session records fail as if the log volume were full."""

    def write_session_start(self, *args, **kwargs):
        raise OSError("No space left on device")

    def write_session_end(self, *args, **kwargs):
        raise OSError("No space left on device")


def test_session_log_failure_does_not_lose_recording(fake_storage, tmp_path):
    storage = fake_storage()

    async def scenario():
        pipeline = make_pipeline(storage, FullDiskLogger(tmp_path / "recordings.jsonl"), release_grace=10)
        await pipeline.start()
        await feed(pipeline, 70, hifi(1))
        assert pipeline.session is not None
        drained = await pipeline.shutdown()
        return pipeline, drained

    pipeline, drained = asyncio.run(scenario())

    assert drained is True
    assert audio_payloads(storage) == [hifi(1)]
    assert pipeline.upload_queue.running is False
    assert pipeline.sessions_recorded == 1


def test_packaging_failure_loses_only_that_episode(fake_storage, monkeypatch):
    storage = fake_storage()
    calls = {"count": 0}

    def flaky_encode(pcm, rate, channels):
        calls["count"] += 1
        if calls["count"] == 1:
            raise ValueError("cannot wrap audio")
        return b"RIFF" + pcm

    monkeypatch.setattr("voxgate_recorder.core.pipeline.encode_wav", flaky_encode)

    async def scenario():
        pipeline = make_pipeline(
            storage, audio_format="wav", hifi_channels=1, release_grace=0.03, drain_delay=0.01
        )
        await pipeline.start()
        await feed(pipeline, 70, hifi(1))
        await feed(pipeline, 20, hifi(2))
        await asyncio.sleep(0.1)
        assert pipeline.state is ActivityState.IDLE
        assert pipeline.session is None
        assert pipeline.upload_queue.pending == 0
        assert storage.stored == []

        await feed(pipeline, 70, hifi(3))
        await pipeline.shutdown()
        return pipeline

    pipeline = asyncio.run(scenario())

    assert audio_payloads(storage) == [b"RIFF" + hifi(3)]
    assert pipeline.sessions_recorded == 1


def test_finalizing_a_closed_session_is_logged_not_raised(fake_storage):
    async def scenario():
        pipeline = make_pipeline(fake_storage())
        session = RecordingSession()
        session.begin()
        session.finalize()
        return pipeline._finish_session(session), pipeline

    task, pipeline = asyncio.run(scenario())

    assert task is None
    assert pipeline.upload_queue.pending == 0


def test_audio_feed_requires_iteration():
    with pytest.raises(TypeError):
        AudioFeed()
