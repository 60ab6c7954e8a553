"""
Tuner proxy for live channel streams.

Gates every stream request on the device tuner capacity, asks the device for
a playback playlist and relays it through an ffmpeg stream-copy process as
MPEG-TS.

Tuner accounting:
- Only broadcast (ota) channels occupy a tuner slot
- The capacity check, watch request, spawn and slot increment run under one
  lock, so concurrent requests cannot overshoot the capacity
- Each stream has exactly one teardown, which releases its slot once
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Optional
from uuid import uuid4

from tunerbridge.cloud.session import SessionManager
from tunerbridge.config import FFmpegConfig
from tunerbridge.exceptions import (
    ChannelConfigError,
    ChannelNotFoundError,
    PlaybackUnavailableError,
    TunerCapacityError,
)
from tunerbridge.hdhomerun.lineup import Lineup

logger = logging.getLogger(__name__)

WATCH_PATH = "/guide/channels/{channel_id}/watch"


def build_ffmpeg_command(ffmpeg_path: str, playlist_url: str, log_level: str) -> list[str]:
    """Stream-copy the playlist to MPEG-TS on stdout."""
    return [
        ffmpeg_path,
        "-i", playlist_url,
        "-c", "copy",
        "-f", "mpegts",
        "-v", f"repeat+level+{log_level}",
        "pipe:1",
    ]


def _ffmpeg_log_level(level: str) -> int:
    return {
        "info": logging.INFO,
        "debug": logging.DEBUG,
        "warning": logging.WARNING,
    }.get(level, logging.ERROR)


def _parse_playlist_url(raw: bytes) -> str | None:
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    return data.get("playlist_url") or None


@dataclass
class TunerStream:
    """
    A running relay for one client.

    Iterate ``chunks()`` to receive MPEG-TS data; the iterator closes the
    stream when it finishes for any reason.
    """

    channel_id: str
    client: str
    kind: str
    process: asyncio.subprocess.Process
    proxy: "TunerProxy"
    read_size: int = 65536
    stream_id: str = field(default_factory=lambda: str(uuid4()))
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    bytes_sent: int = 0
    stderr_task: Optional[asyncio.Task] = None
    closed: bool = False

    @property
    def uses_tuner(self) -> bool:
        return self.kind == "ota"

    async def chunks(self) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await self.process.stdout.read(self.read_size)
                if not chunk:
                    break
                self.bytes_sent += len(chunk)
                yield chunk
        finally:
            await self.close()

    async def close(self) -> None:
        """Release the tuner slot and stop ffmpeg; safe to call repeatedly."""
        if self.closed:
            return
        self.closed = True

        # Release before any await so a cancelled caller cannot skip it
        self.proxy._release(self)

        await asyncio.shield(self._stop())

    async def _stop(self) -> None:
        await _stop_process(self.process, self.channel_id)

        if self.stderr_task is not None and not self.stderr_task.done():
            self.stderr_task.cancel()
            try:
                await self.stderr_task
            except asyncio.CancelledError:
                pass

    def to_status(self, index: int) -> dict:
        return {
            "Resource": f"tuner{index}",
            "VctNumber": self.channel_id,
            "Type": self.kind,
            "TargetIP": self.client,
            "StartedAt": self.started_at.isoformat(),
            "BytesSent": self.bytes_sent,
        }


async def _stop_process(process: asyncio.subprocess.Process, channel_id: str) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=5.0)
        logger.debug(f"Terminated ffmpeg for channel {channel_id}")
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        logger.warning(f"Force killed ffmpeg for channel {channel_id}")


async def _forward_stderr(process: asyncio.subprocess.Process, level: int) -> None:
    while True:
        line = await process.stderr.readline()
        if not line:
            break
        logger.log(level, f"[ffmpeg] {line.decode('utf-8', errors='replace').rstrip()}")


class TunerProxy:
    """
    Starts and tracks live streams against the device tuner capacity.

    Args:
        session: Session manager used for signed device requests
        lineup: Current channel lineup
        ffmpeg_config: ffmpeg path, log level and read size
    """

    def __init__(self, session: SessionManager, lineup: Lineup, ffmpeg_config: FFmpegConfig):
        self._session = session
        self._lineup = lineup
        self._ffmpeg = ffmpeg_config
        self._lock = asyncio.Lock()
        self._in_use = 0
        self._streams: dict[str, TunerStream] = {}

    @property
    def capacity(self) -> int:
        return self._session.tuners

    @property
    def in_use(self) -> int:
        return self._in_use

    async def start_stream(self, channel_id: str, client: str) -> TunerStream:
        """
        Start relaying a channel to a client.

        Raises:
            ChannelNotFoundError: Channel is not in the lineup
            ChannelConfigError: Channel has no source URL
            TunerCapacityError: Every tuner is in use
            PlaybackUnavailableError: Device gave no playlist or ffmpeg failed to start
        """
        projection = self._lineup.get(channel_id)
        if projection is None:
            logger.error(f"Channel not found: {channel_id}")
            raise ChannelNotFoundError(f"Channel {channel_id} not found", {"channel_id": channel_id})

        if not projection.src_url:
            logger.error(f"srcURL missing from requested channel {channel_id}: {projection}")
            raise ChannelConfigError(f"Channel {channel_id} has no source URL", {"channel_id": channel_id})

        async with self._lock:
            if self._in_use >= self.capacity:
                logger.error(f"Client {client} connected to {channel_id}, but max streams are running.")
                raise TunerCapacityError(
                    "All tuners are in use",
                    {"in_use": self._in_use, "capacity": self.capacity},
                )

            raw = await self._session.device_request("POST", WATCH_PATH.format(channel_id=channel_id))
            playlist_url = _parse_playlist_url(raw)
            if playlist_url is None:
                logger.error(f"playlist_url missing from requested channel {channel_id}")
                logger.debug(f"Device response: {raw[:500]!r}")
                raise PlaybackUnavailableError(
                    f"No playlist for channel {channel_id}", {"channel_id": channel_id}
                )

            process = await self._spawn(playlist_url, channel_id)

            stream = TunerStream(
                channel_id=channel_id,
                client=client,
                kind=projection.type,
                process=process,
                proxy=self,
                read_size=self._ffmpeg.read_size,
            )
            stream.stderr_task = asyncio.create_task(
                _forward_stderr(process, _ffmpeg_log_level(self._ffmpeg.log_level))
            )

            if stream.uses_tuner:
                self._in_use += 1
            self._streams[stream.stream_id] = stream

        suffix = "" if stream.uses_tuner else " (IPTV)"
        logger.info(
            f"[{self._in_use}/{self.capacity}] Client {client} connected to {channel_id}{suffix}, "
            "spawning ffmpeg stream."
        )
        return stream

    async def _spawn(self, playlist_url: str, channel_id: str) -> asyncio.subprocess.Process:
        cmd = build_ffmpeg_command(self._ffmpeg.path, playlist_url, self._ffmpeg.log_level)
        logger.debug(f"Starting ffmpeg: {' '.join(cmd)}")
        try:
            return await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"Failed to start ffmpeg for channel {channel_id}: {e}")
            raise PlaybackUnavailableError(
                f"Failed to start ffmpeg for channel {channel_id}", {"channel_id": channel_id}
            ) from e

    def _release(self, stream: TunerStream) -> None:
        if self._streams.pop(stream.stream_id, None) is None:
            return
        if stream.uses_tuner:
            self._in_use -= 1

        suffix = "" if stream.uses_tuner else " (IPTV)"
        logger.info(
            f"[{self._in_use}/{self.capacity}] Client {stream.client} disconnected from "
            f"{stream.channel_id}{suffix}, killing ffmpeg"
        )

    def status(self) -> list[dict]:
        """Per-slot tuner status; idle slots report no channel."""
        active = [s for s in self._streams.values() if s.uses_tuner]
        slots = [stream.to_status(index) for index, stream in enumerate(active)]
        for index in range(len(active), self.capacity):
            slots.append({"Resource": f"tuner{index}"})
        return slots

    async def shutdown(self) -> None:
        """Close every live stream."""
        streams = list(self._streams.values())
        if streams:
            logger.info(f"Closing {len(streams)} live streams")
        for stream in streams:
            await stream.close()
