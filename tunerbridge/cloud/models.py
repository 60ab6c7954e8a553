"""
Pydantic models for cloud account and device payloads.

Channels and airings are kind-tagged; each is modelled as a discriminated
union so consumers can dispatch on the concrete class.
"""

import logging
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)


class CloudModel(BaseModel):
    """Base model: camelCase payload keys, unknown keys ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


# ============ Session ============


class Profile(CloudModel):
    identifier: str
    name: str


class Device(CloudModel):
    server_id: str = Field(alias="serverId")
    name: str
    url: str


class SessionBundle(CloudModel):
    """Cloud and device credentials persisted between runs."""

    cloud_authorization: str
    cloud_identifier: str
    profile: Profile
    device: Device
    lighthouse: str
    device_uuid: str
    tuners: int = Field(ge=1)


# ============ Lineup ============


class Logo(CloudModel):
    kind: str
    url: str


class ChannelNumbering(CloudModel):
    major: int
    minor: int
    network: str = ""
    call_sign: str = Field(default="", alias="callSign")


class InternetNumbering(ChannelNumbering):
    stream_url: Optional[str] = Field(default=None, alias="streamUrl")
    provider: Optional[str] = None


class BroadcastChannel(CloudModel):
    """Over-the-air channel received by the device antenna."""

    identifier: str
    name: str = ""
    kind: Literal["ota"]
    logos: list[Logo] = Field(default_factory=list)
    ota: ChannelNumbering

    @property
    def numbering(self) -> ChannelNumbering:
        return self.ota


class InternetChannel(CloudModel):
    """Internet-delivered (FAST) channel; does not use a tuner."""

    identifier: str
    name: str = ""
    kind: Literal["ott"]
    logos: list[Logo] = Field(default_factory=list)
    ott: InternetNumbering

    @property
    def numbering(self) -> InternetNumbering:
        return self.ott


LineupEntry = Annotated[Union[BroadcastChannel, InternetChannel], Field(discriminator="kind")]

_lineup_entry_adapter: TypeAdapter = TypeAdapter(LineupEntry)


def preferred_logo(logos: list[Logo]) -> str | None:
    """Large light-background logo when present, else the first logo."""
    if not logos:
        return None
    for logo in logos:
        if logo.kind == "lightLarge":
            return logo.url
    return logos[0].url


def guide_channel_id(entry: BroadcastChannel | InternetChannel) -> str:
    """Channel number used as XMLTV id and (optionally) as GuideNumber."""
    return f"{entry.numbering.major}{entry.numbering.minor}1"


def parse_lineup(payload: list[dict[str, Any]]) -> list[BroadcastChannel | InternetChannel]:
    """Parse a raw lineup, skipping entries of unknown kind."""
    entries: list[BroadcastChannel | InternetChannel] = []
    for raw in payload:
        if not isinstance(raw, dict):
            logger.error(f"Skipping malformed lineup entry: {raw!r}")
            continue
        try:
            entries.append(_lineup_entry_adapter.validate_python(raw))
        except ValidationError as e:
            logger.error(f"Unknown lineup entry {raw.get('identifier')!r} ({raw.get('kind')!r}): {e}")
    return entries


# ============ Airings ============


class Image(CloudModel):
    kind: str = ""
    url: str


class ChannelRef(CloudModel):
    identifier: str


class ShowRef(CloudModel):
    identifier: str = ""
    title: str = ""


class SeasonDescriptor(CloudModel):
    kind: str = "none"
    number: Optional[int] = None
    string: Optional[str] = None


class EpisodeDetails(CloudModel):
    season: SeasonDescriptor = Field(default_factory=SeasonDescriptor)
    episode_number: Optional[int] = Field(default=None, alias="episodeNumber")
    original_air_date: Optional[str] = Field(default=None, alias="originalAirDate")
    rating: Optional[str] = None

    @property
    def season_number(self) -> int:
        """Season as a number; 1 unless the descriptor is a plain number."""
        if self.season.kind == "number" and self.season.number is not None:
            return self.season.number
        return 1


class MovieDetails(CloudModel):
    release_year: Optional[int] = Field(default=None, alias="releaseYear")
    film_rating: Optional[str] = Field(default=None, alias="filmRating")
    quality_rating: Optional[float] = Field(default=None, alias="qualityRating")


class SportEventDetails(CloudModel):
    season: Optional[str] = None


class AiringBase(CloudModel):
    identifier: str
    title: str = ""
    channel: ChannelRef
    datetime: str
    duration: int = 0
    description: Optional[str] = None
    genres: list[str] = Field(default_factory=list)
    images: list[Image] = Field(default_factory=list)
    show: ShowRef = Field(default_factory=ShowRef)


class EpisodeAiring(AiringBase):
    kind: Literal["episode"]
    episode: EpisodeDetails = Field(default_factory=EpisodeDetails)


class MovieAiring(AiringBase):
    kind: Literal["movieAiring"]
    movie_airing: MovieDetails = Field(default_factory=MovieDetails, alias="movieAiring")


class SportEventAiring(AiringBase):
    kind: Literal["sportEvent"]
    sport_event: SportEventDetails = Field(default_factory=SportEventDetails, alias="sportEvent")


Airing = Annotated[
    Union[EpisodeAiring, MovieAiring, SportEventAiring], Field(discriminator="kind")
]

_airing_adapter: TypeAdapter = TypeAdapter(Airing)


def parse_airings(payload: list[dict[str, Any]]) -> list[EpisodeAiring | MovieAiring | SportEventAiring]:
    """Parse a day-file, skipping airings that do not validate."""
    airings: list[EpisodeAiring | MovieAiring | SportEventAiring] = []
    for raw in payload:
        if not isinstance(raw, dict):
            logger.warning(f"Skipping malformed airing: {raw!r}")
            continue
        try:
            airings.append(_airing_adapter.validate_python(raw))
        except ValidationError as e:
            logger.warning(f"Skipping airing {raw.get('identifier')!r} ({raw.get('kind')!r}): {e}")
    return airings
