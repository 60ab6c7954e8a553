"""
Unit tests for the tuner proxy.

ffmpeg is replaced by FakeProcess; device watch requests go through the
mock device transport.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from tests.conftest import FakeProcess
from tunerbridge.exceptions import (
    ChannelConfigError,
    ChannelNotFoundError,
    PlaybackUnavailableError,
    TunerCapacityError,
)
from tunerbridge.hdhomerun.lineup import Lineup
from tunerbridge.streaming.tuner_proxy import TunerProxy, build_ffmpeg_command

PLAYLIST = "http://192.168.1.50:8887/stream/pl.m3u8"


def _watch_path(channel_id: str) -> str:
    return f"/guide/channels/{channel_id}/watch"


@pytest.fixture
def extra_channels(sample_lineup_payload):
    payload = list(sample_lineup_payload)
    payload.append(
        {
            "identifier": "S3",
            "name": "KQED",
            "kind": "ota",
            "logos": [],
            "ota": {"major": 9, "minor": 1, "network": "KQED", "callSign": "KQED"},
        }
    )
    return payload


@pytest.fixture
def proxy(tb_config, loaded_session, device_upstream, extra_channels):
    from tunerbridge.cloud.models import parse_lineup

    tb_config.guide.include_internet_channels = True
    for channel_id in ("S1", "S2", "S3", "F1"):
        device_upstream.add_json("POST", _watch_path(channel_id), {"playlist_url": PLAYLIST})

    lineup = Lineup(tb_config)
    lineup.update(parse_lineup(extra_channels), loaded_session.bundle)
    return TunerProxy(loaded_session, lineup, tb_config.ffmpeg)


@pytest.fixture
def spawn():
    processes = []

    async def fake_exec(*cmd, **kwargs):
        process = FakeProcess(stay_open=True)
        process.cmd = cmd
        processes.append(process)
        return process

    with patch("tunerbridge.streaming.tuner_proxy.asyncio.create_subprocess_exec", side_effect=fake_exec) as mock:
        mock.processes = processes
        yield mock


@pytest.mark.unit
class TestStartStream:
    """Tests for start_stream."""

    @pytest.mark.asyncio
    async def test_capacity_is_enforced(self, proxy, spawn, device_upstream):
        first = await proxy.start_stream("S1", "10.0.0.2")
        await proxy.start_stream("S2", "10.0.0.3")

        with pytest.raises(TunerCapacityError):
            await proxy.start_stream("S3", "10.0.0.4")

        assert proxy.in_use == 2
        assert device_upstream.count("POST", _watch_path("S3")) == 0
        assert spawn.call_count == 2

        await first.close()
        assert proxy.in_use == 1

        await proxy.start_stream("S3", "10.0.0.4")
        assert proxy.in_use == 2

    @pytest.mark.asyncio
    async def test_concurrent_requests_never_exceed_capacity(self, proxy, spawn):
        results = await asyncio.gather(
            *(proxy.start_stream(channel_id, "10.0.0.9") for channel_id in ("S1", "S2", "S3", "S1", "S2")),
            return_exceptions=True,
        )

        started = [r for r in results if not isinstance(r, Exception)]
        rejected = [r for r in results if isinstance(r, TunerCapacityError)]
        assert len(started) == 2
        assert len(rejected) == 3
        assert proxy.in_use == 2

    @pytest.mark.asyncio
    async def test_ffmpeg_command(self, proxy, spawn):
        await proxy.start_stream("S1", "10.0.0.2")

        assert spawn.processes[0].cmd == (
            "ffmpeg", "-i", PLAYLIST, "-c", "copy", "-f", "mpegts", "-v", "repeat+level+error", "pipe:1",
        )

    @pytest.mark.asyncio
    async def test_internet_channel_does_not_use_tuner(self, proxy, spawn):
        stream = await proxy.start_stream("F1", "10.0.0.2")

        assert not stream.uses_tuner
        assert proxy.in_use == 0

        await stream.close()
        assert proxy.in_use == 0

    @pytest.mark.asyncio
    async def test_unknown_channel(self, proxy, spawn):
        with pytest.raises(ChannelNotFoundError) as exc_info:
            await proxy.start_stream("NOPE", "10.0.0.2")

        assert exc_info.value.status_code == 404
        assert proxy.in_use == 0
        spawn.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_source_url(self, proxy, spawn):
        projection = proxy._lineup.get("S1")
        proxy._lineup._projections["S1"] = projection.model_copy(update={"src_url": None})

        with pytest.raises(ChannelConfigError):
            await proxy.start_stream("S1", "10.0.0.2")

        assert proxy.in_use == 0

    @pytest.mark.asyncio
    async def test_missing_playlist(self, proxy, spawn, device_upstream):
        device_upstream.add_json("POST", _watch_path("S1"), {"error": "no signal"})

        with pytest.raises(PlaybackUnavailableError):
            await proxy.start_stream("S1", "10.0.0.2")

        assert proxy.in_use == 0
        spawn.assert_not_called()

    @pytest.mark.asyncio
    async def test_ffmpeg_not_installed(self, proxy):
        with patch(
            "tunerbridge.streaming.tuner_proxy.asyncio.create_subprocess_exec",
            AsyncMock(side_effect=FileNotFoundError("ffmpeg")),
        ):
            with pytest.raises(PlaybackUnavailableError):
                await proxy.start_stream("S1", "10.0.0.2")

        assert proxy.in_use == 0


@pytest.mark.unit
class TestTunerStream:
    """Tests for stream teardown."""

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, proxy, spawn):
        stream = await proxy.start_stream("S1", "10.0.0.2")

        await stream.close()
        await stream.close()

        assert proxy.in_use == 0
        assert spawn.processes[0].terminated

    @pytest.mark.asyncio
    async def test_iteration_to_eof_releases_tuner(self, proxy):
        process = FakeProcess(data=b"\x47" * 376)
        with patch(
            "tunerbridge.streaming.tuner_proxy.asyncio.create_subprocess_exec",
            AsyncMock(return_value=process),
        ):
            stream = await proxy.start_stream("S1", "10.0.0.2")

        assert proxy.in_use == 1
        data = b"".join([chunk async for chunk in stream.chunks()])

        assert data == b"\x47" * 376
        assert stream.bytes_sent == 376
        assert stream.closed
        assert proxy.in_use == 0

    @pytest.mark.asyncio
    async def test_client_disconnect_releases_tuner(self, proxy, spawn):
        stream = await proxy.start_stream("S1", "10.0.0.2")
        spawn.processes[0].stdout.feed_data(b"\x47" * 188)

        chunks = stream.chunks()
        assert await chunks.__anext__() == b"\x47" * 188
        await chunks.aclose()

        assert stream.closed
        assert proxy.in_use == 0

    @pytest.mark.asyncio
    async def test_status_and_shutdown(self, proxy, spawn):
        await proxy.start_stream("S1", "10.0.0.2")

        slots = proxy.status()
        assert len(slots) == 2
        assert slots[0]["VctNumber"] == "S1"
        assert slots[0]["TargetIP"] == "10.0.0.2"
        assert slots[0]["StartedAt"].endswith("+00:00")
        assert slots[1] == {"Resource": "tuner1"}

        await proxy.shutdown()
        assert proxy.in_use == 0
        assert proxy.status() == [{"Resource": "tuner0"}, {"Resource": "tuner1"}]


@pytest.mark.unit
def test_build_ffmpeg_command_uses_log_level():
    cmd = build_ffmpeg_command("/usr/bin/ffmpeg", "http://x/pl.m3u8", "debug")

    assert cmd[0] == "/usr/bin/ffmpeg"
    assert cmd[-3:] == ["-v", "repeat+level+debug", "pipe:1"]
