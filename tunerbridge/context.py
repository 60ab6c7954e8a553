"""
Service context.

Builds and owns every long-lived collaborator of the running bridge so the
HTTP layer and the CLI share one explicitly constructed object graph.
"""

import logging

import httpx

from tunerbridge.cloud.client import CloudClient
from tunerbridge.cloud.session import SessionManager
from tunerbridge.config import TunerBridgeConfig
from tunerbridge.exceptions import CloudRequestError
from tunerbridge.guide.sync import GuideSync
from tunerbridge.hdhomerun.lineup import Lineup
from tunerbridge.streaming.tuner_proxy import TunerProxy
from tunerbridge.tasks.scheduler import TaskScheduler
from tunerbridge.utils.file_store import FileStore
from tunerbridge.utils.prompts import Prompter

logger = logging.getLogger(__name__)

GUIDE_TASK = "guide_refresh"


class ServiceContext:
    """Configuration plus the services built from it."""

    def __init__(
        self,
        config: TunerBridgeConfig,
        store: FileStore,
        cloud: CloudClient,
        session: SessionManager,
        lineup: Lineup,
        tuner_proxy: TunerProxy,
        guide_sync: GuideSync,
        scheduler: TaskScheduler,
    ):
        self.config = config
        self.store = store
        self.cloud = cloud
        self.session = session
        self.lineup = lineup
        self.tuner_proxy = tuner_proxy
        self.guide_sync = guide_sync
        self.scheduler = scheduler

    @classmethod
    def build(
        cls,
        config: TunerBridgeConfig,
        prompter: Prompter | None = None,
        cloud_transport: httpx.AsyncBaseTransport | None = None,
        device_transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ServiceContext":
        store = FileStore(config.storage.data_dir)
        cloud = CloudClient(config.cloud, transport=cloud_transport)
        session = SessionManager(config, store, cloud, prompter=prompter, device_transport=device_transport)
        lineup = Lineup(config)
        return cls(
            config=config,
            store=store,
            cloud=cloud,
            session=session,
            lineup=lineup,
            tuner_proxy=TunerProxy(session, lineup, config.ffmpeg),
            guide_sync=GuideSync(config, store, cloud, session, lineup),
            scheduler=TaskScheduler(),
        )

    async def start(self, refresh_guide: bool = True) -> None:
        """
        Load the session and lineup, then schedule guide refreshes.

        Raises:
            SessionMissingError: No saved session exists
            SessionCorruptError: The saved session could not be read
        """
        bundle = await self.session.ensure_session(interactive=False)

        entries = self.session.load_lineup()
        if entries is None:
            try:
                entries = await self.session.fetch_lineup()
            except CloudRequestError as e:
                logger.error(f"Issue with creating new lineup file: {e}")
                entries = []
        self.lineup.update(entries, bundle)

        self.scheduler.add_task(
            GUIDE_TASK,
            self.guide_sync.refresh,
            interval_seconds=self.config.guide.refresh_interval,
            run_immediately=refresh_guide and self.config.guide.refresh_on_start,
        )
        await self.scheduler.start()

        logger.info(
            f"Server is running on {self.config.server.base_url} with {bundle.tuners} tuners"
        )
        if self.config.guide.create_xml:
            logger.info(f"Guide data can be found at {self.config.server.base_url}/guide.xml")

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.tuner_proxy.shutdown()
        await self.session.close()
        await self.cloud.close()
