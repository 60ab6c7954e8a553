"""
Guide synchronization.

Keeps a per-channel, per-day cache of airing files in sync with the cloud
guide and recompiles the XMLTV document after each pass.

Cache rules:
- One file per (channel identifier, day) named ``<identifier>_<day>.json``
- Missing file: download it
- Present file: compare its size to the upstream ``Content-Length`` and
  re-download only when they differ
- Any failure leaves an empty ``[]`` placeholder and the pass continues
- Files outside the current window are pruned

Usage:
    sync = GuideSync(config, store, cloud, session, lineup)
    report = await sync.refresh()
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Optional, Sequence

from tunerbridge.cloud.client import CloudClient
from tunerbridge.cloud.models import BroadcastChannel, InternetChannel, parse_airings
from tunerbridge.cloud.session import SessionManager
from tunerbridge.config import TunerBridgeConfig
from tunerbridge.exceptions import CloudRequestError
from tunerbridge.guide.compiler import GuideCompiler
from tunerbridge.hdhomerun.lineup import Lineup
from tunerbridge.utils.dates import days_from_today, utcnow
from tunerbridge.utils.file_store import FileStore

logger = logging.getLogger(__name__)

PLACEHOLDER = b"[]"


def cache_file_name(channel_id: str, day: str) -> str:
    return f"{channel_id}_{day}.json"


@dataclass
class SyncReport:
    """Outcome of one cache pass."""

    downloaded: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    pruned: list[str] = field(default_factory=list)
    guide_written: bool = False

    def to_dict(self) -> dict:
        return {
            "downloaded": len(self.downloaded),
            "unchanged": len(self.unchanged),
            "failed": len(self.failed),
            "pruned": len(self.pruned),
            "guide_written": self.guide_written,
        }


class GuideSync:
    """
    Incremental guide cache and XMLTV writer.

    Args:
        config: Application configuration
        store: File store rooted at the data directory
        cloud: Cloud account API client
        session: Session manager (credentials and lineup download)
        lineup: Shared lineup updated on refresh
        today: Callable returning the local calendar date (tests)
        now: Callable returning the compile time (tests)
    """

    def __init__(
        self,
        config: TunerBridgeConfig,
        store: FileStore,
        cloud: CloudClient,
        session: SessionManager,
        lineup: Lineup,
        today: Optional[Callable[[], date]] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self._config = config
        self._store = store
        self._cloud = cloud
        self._session = session
        self._lineup = lineup
        self._today = today or date.today
        self._now = now or utcnow
        self._cache_dir = config.storage.cache_dir
        self._guide_file = config.storage.guide_file
        self._compiler = GuideCompiler(
            generator_name=config.server.friendly_name,
            include_internet_channels=config.guide.include_internet_channels,
        )
        self._lock = asyncio.Lock()
        self.last_report: SyncReport | None = None
        self.last_run: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def has_guide(self) -> bool:
        return self._store.exists(self._guide_file)

    def read_guide(self) -> bytes:
        return self._store.read(self._guide_file)

    # ============ Refresh ============

    async def refresh(self) -> SyncReport | None:
        """
        Refresh the lineup, then sync the guide cache.

        Returns None when another refresh is already in progress.
        """
        if self._lock.locked():
            logger.info("Guide refresh already in progress, skipping")
            return None

        async with self._lock:
            await self.refresh_lineup()
            if not self._config.guide.create_xml:
                return None
            return await self._sync(self._lineup.entries)

    async def refresh_lineup(self) -> None:
        """Download the lineup; keep the persisted copy when the download fails."""
        try:
            entries = await self._session.fetch_lineup()
        except CloudRequestError as e:
            logger.error(f"Issue with creating new lineup file: {e}")
            entries = self._session.load_lineup()
            if entries is None:
                logger.warning("No saved lineup available")
                return
            logger.info("Using saved lineup")

        self._lineup.update(entries, self._session.bundle)

    async def sync(self, entries: Sequence[BroadcastChannel | InternetChannel]) -> SyncReport:
        """Sync the cache for ``entries`` and rewrite the guide."""
        async with self._lock:
            return await self._sync(entries)

    async def _sync(self, entries: Sequence[BroadcastChannel | InternetChannel]) -> SyncReport:
        bundle = self._session.bundle
        days = days_from_today(self._config.guide.days, self._today())
        report = SyncReport()
        needed: list[str] = []

        self._store.ensure_dir(self._cache_dir)
        logger.info(f"Prepping {len(entries) * len(days)} needed guide files.")

        for entry in entries:
            for day in days:
                file_name = cache_file_name(entry.identifier, day)
                needed.append(file_name)
                cache_path = f"{self._cache_dir}/{file_name}"

                if not self._store.exists(cache_path):
                    await self._download(
                        cache_path, file_name, entry.identifier, day,
                        bundle.cloud_authorization, bundle.lighthouse, report,
                    )
                    continue

                try:
                    upstream_size = await self._cloud.head_airings(
                        bundle.cloud_authorization, bundle.lighthouse, entry.identifier, day
                    )
                except CloudRequestError as e:
                    logger.error(f"Checking {file_name} failed: {e}")
                    self._store.write(cache_path, PLACEHOLDER)
                    report.failed.append(file_name)
                    continue

                if upstream_size is not None and upstream_size == self._store.size(cache_path):
                    report.unchanged.append(file_name)
                    continue

                await self._download(
                    cache_path, file_name, entry.identifier, day,
                    bundle.cloud_authorization, bundle.lighthouse, report,
                )

        report.pruned = self._store.delete_unlisted(self._cache_dir, needed)
        logger.info(
            f"Guide data caching completed: {len(report.downloaded)} downloaded, "
            f"{len(report.unchanged)} unchanged, {len(report.failed)} failed, "
            f"{len(report.pruned)} pruned"
        )

        self.write_guide(entries, days)
        report.guide_written = True

        self.last_report = report
        self.last_run = self._now()
        return report

    async def _download(
        self,
        cache_path: str,
        file_name: str,
        channel_id: str,
        day: str,
        authorization: str,
        lighthouse: str,
        report: SyncReport,
    ) -> None:
        try:
            data = await self._cloud.get_airings(authorization, lighthouse, channel_id, day)
        except CloudRequestError as e:
            logger.error(f"Could not write {file_name}: {e}")
            self._store.write(cache_path, PLACEHOLDER)
            report.failed.append(file_name)
            return

        try:
            payload = json.loads(data)
        except ValueError:
            payload = None
        if not isinstance(payload, list):
            logger.error(f"Could not write {file_name}: response is not a list of airings")
            logger.debug(f"Response: {data[:500]!r}")
            self._store.write(cache_path, PLACEHOLDER)
            report.failed.append(file_name)
            return

        self._store.write(cache_path, data)
        report.downloaded.append(file_name)

    # ============ Compile ============

    def load_airings(self, entries: Sequence[BroadcastChannel | InternetChannel], days: Sequence[str]) -> dict:
        """Parsed cached airings keyed by channel identifier."""
        airings: dict[str, list] = {}
        for entry in entries:
            channel_airings: list = []
            for day in days:
                cache_path = f"{self._cache_dir}/{cache_file_name(entry.identifier, day)}"
                if not self._store.exists(cache_path):
                    continue
                try:
                    payload = self._store.read_json(cache_path)
                except ValueError as e:
                    logger.warning(f"Unreadable guide file {cache_path}: {e}")
                    continue
                if isinstance(payload, list):
                    channel_airings.extend(parse_airings(payload))
            airings[entry.identifier] = channel_airings
        return airings

    def _extra_xmltv(self) -> str | None:
        extra_path = self._config.guide.extra_xmltv_path
        if not extra_path:
            return None
        path = Path(extra_path)
        if not path.is_file():
            logger.debug(f"Extra XMLTV file {extra_path} not found")
            return None
        return path.read_text(encoding="utf-8")

    def write_guide(self, entries: Sequence[BroadcastChannel | InternetChannel], days: Sequence[str]) -> Path:
        xml = self._compiler.compile(
            entries,
            self.load_airings(entries, days),
            self._now(),
            extra_xmltv=self._extra_xmltv(),
        )
        path = self._store.write(self._guide_file, xml)
        logger.info(f"Guide written to {path}")
        return path
