"""HDHomeRun lineup projection of the device channel lineup"""

import logging
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from tunerbridge.cloud.models import (
    BroadcastChannel,
    InternetChannel,
    SessionBundle,
    guide_channel_id,
    preferred_logo,
)
from tunerbridge.config import TunerBridgeConfig

logger = logging.getLogger(__name__)


class LineupProjection(BaseModel):
    """One channel as published in lineup.json."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    guide_number: str = Field(alias="GuideNumber")
    guide_name: str = Field(alias="GuideName")
    image_url: Optional[str] = Field(default=None, alias="ImageURL")
    affiliate: str = Field(default="", alias="Affiliate")
    url: str = Field(alias="URL")
    type: Literal["ota", "ott"]
    src_url: Optional[str] = Field(default=None, alias="srcURL")
    stream_url: Optional[str] = Field(default=None, alias="streamUrl")

    def to_hdhomerun(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


def build_projection(
    entry: BroadcastChannel | InternetChannel,
    bundle: SessionBundle,
    config: TunerBridgeConfig,
) -> LineupProjection | None:
    """
    Project a lineup entry; returns None for excluded internet channels.

    GuideNumber is the guide channel id when an XMLTV guide is produced, so
    the media server can match lineup and guide, else ``major.minor``.
    """
    if isinstance(entry, InternetChannel) and not config.guide.include_internet_channels:
        return None

    numbering = entry.numbering
    if config.guide.create_xml:
        guide_number = guide_channel_id(entry)
    else:
        guide_number = f"{numbering.major}.{numbering.minor}"

    base_url = config.server.base_url.rstrip("/")
    watch_url = f"{bundle.device.url.rstrip('/')}/guide/channels/{entry.identifier}/watch"

    return LineupProjection(
        guide_number=guide_number,
        guide_name=numbering.network,
        image_url=preferred_logo(entry.logos),
        affiliate=numbering.call_sign,
        url=f"{base_url}/channel/{entry.identifier}",
        type=entry.kind,
        src_url=watch_url,
        stream_url=entry.ott.stream_url if isinstance(entry, InternetChannel) else watch_url,
    )


class Lineup:
    """
    Current lineup and its projections, keyed by channel identifier.

    Replaced wholesale by ``update``; readers always see one consistent
    snapshot.
    """

    def __init__(self, config: TunerBridgeConfig):
        self._config = config
        self._entries: list[BroadcastChannel | InternetChannel] = []
        self._projections: dict[str, LineupProjection] = {}

    @property
    def entries(self) -> list[BroadcastChannel | InternetChannel]:
        return self._entries

    def update(self, entries: list[BroadcastChannel | InternetChannel], bundle: SessionBundle) -> None:
        projections: dict[str, LineupProjection] = {}
        for entry in entries:
            projection = build_projection(entry, bundle, self._config)
            if projection is not None:
                projections[entry.identifier] = projection

        self._entries = list(entries)
        self._projections = projections
        logger.info(f"Lineup has {len(projections)} channels")

    def get(self, channel_id: str) -> LineupProjection | None:
        return self._projections.get(channel_id)

    def projections(self) -> list[LineupProjection]:
        return list(self._projections.values())

    def __len__(self) -> int:
        return len(self._projections)
