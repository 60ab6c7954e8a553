"""XMLTV guide compiler - lineup and cached airings to one XMLTV document"""

import logging
import re
from datetime import datetime, timedelta
from typing import Mapping, Sequence
from xml.sax.saxutils import escape as xml_escape

from tunerbridge.cloud.models import (
    BroadcastChannel,
    EpisodeAiring,
    InternetChannel,
    MovieAiring,
    guide_channel_id,
    preferred_logo,
)
from tunerbridge.utils.dates import parse_timestamp, xmltv_date, xmltv_timestamp

logger = logging.getLogger(__name__)

_NEWLINES = re.compile(r"[\n\r]+")


def _clean(text: str) -> str:
    """Collapse line breaks and escape for XML text."""
    return xml_escape(_NEWLINES.sub(" ", text))


def _attr(text: str) -> str:
    return xml_escape(text, {'"': "&quot;"})


def extract_fragment(xmltv: str) -> str:
    """
    Body of an externally produced XMLTV document.

    Drops the first two lines (declaration and ``<tv>`` open) and the last
    line (``</tv>`` close); the rest is merged verbatim.
    """
    lines = xmltv.split("\n")
    return "\n".join(lines[2:-1])


class GuideCompiler:
    """
    XMLTV guide compiler

    Pure transformation of (lineup, cached airings, now) into XMLTV text.
    Programmes that have already ended are left out.
    """

    def __init__(self, generator_name: str = "TunerBridge", include_internet_channels: bool = False):
        self.generator_name = generator_name
        self.include_internet_channels = include_internet_channels

    def compile(
        self,
        lineup: Sequence[BroadcastChannel | InternetChannel],
        airings: Mapping[str, Sequence],
        now: datetime,
        extra_xmltv: str | None = None,
    ) -> str:
        """
        Generate the XMLTV document.

        Args:
            lineup: Channel lineup in output order
            airings: Parsed airings keyed by channel identifier
            now: Compile time; also the fallback programme date
            extra_xmltv: Optional XMLTV document whose body is merged in

        Returns:
            XMLTV XML string
        """
        xml_parts = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            f'<tv generator-info-name="{_attr(self.generator_name)}">',
        ]
        fallback_date = xmltv_date(now)

        for entry in lineup:
            if isinstance(entry, InternetChannel) and not self.include_internet_channels:
                continue

            channel_id = guide_channel_id(entry)
            xml_parts.append(f'  <channel id="{_attr(channel_id)}">')
            xml_parts.append(f'    <display-name lang="en">{_clean(entry.numbering.network)}</display-name>')
            logo = preferred_logo(entry.logos)
            if logo:
                xml_parts.append(f'    <icon src="{_attr(logo)}"/>')
            xml_parts.append("  </channel>")

            logger.info(f"Creating {entry.name} - {channel_id} guide data.")

            for airing in airings.get(entry.identifier, ()):
                programme = self._generate_programme_xml(channel_id, airing, now, fallback_date)
                if programme:
                    xml_parts.append(programme)

        if extra_xmltv:
            xml_parts.append(extract_fragment(extra_xmltv))

        xml_parts.append("</tv>")
        return "\n".join(xml_parts)

    def _generate_programme_xml(self, channel_id: str, airing, now: datetime, fallback_date: str) -> str | None:
        """Generate one programme, or None when it has already ended."""
        try:
            start = parse_timestamp(airing.datetime)
        except ValueError:
            logger.warning(f"Skipping airing {airing.identifier} with bad start time {airing.datetime!r}")
            return None

        stop = start + timedelta(seconds=airing.duration)
        if stop <= now:
            return None

        xml_parts = [
            f'  <programme start="{xmltv_timestamp(start)}" stop="{xmltv_timestamp(stop)}" '
            f'channel="{_attr(channel_id)}">',
        ]

        date = fallback_date
        rating = None

        if isinstance(airing, EpisodeAiring):
            episode = airing.episode
            if episode.episode_number is not None:
                xml_parts.append(f'    <title lang="en">{_clean(airing.show.title)}</title>')
                xml_parts.append("    <previously-shown/>")
                xml_parts.append(f'    <sub-title lang="en">{_clean(airing.title)}</sub-title>')
                xml_parts.append(
                    f'    <episode-num system="xmltv_ns">'
                    f"{episode.season_number - 1} . {episode.episode_number - 1} . 0/1</episode-num>"
                )
            else:
                xml_parts.append(f'    <title lang="en">{_clean(airing.title)}</title>')
            if episode.original_air_date:
                date = episode.original_air_date.replace("-", "")
            rating = episode.rating
        else:
            xml_parts.append(f'    <title lang="en">{_clean(airing.title)}</title>')
            if isinstance(airing, MovieAiring):
                if airing.movie_airing.release_year is not None:
                    date = f"{airing.movie_airing.release_year}0000"
                rating = airing.movie_airing.film_rating

        xml_parts.append(f"    <date>{xml_escape(date)}</date>")

        if airing.images:
            xml_parts.append(f'    <icon src="{_attr(airing.images[0].url)}"/>')

        if airing.description is not None:
            xml_parts.append(f'    <desc lang="en">{_clean(airing.description)}</desc>')

        if rating is not None:
            xml_parts.append('    <rating system="MPAA">')
            xml_parts.append(f"      <value>{xml_escape(rating)}</value>")
            xml_parts.append("    </rating>")

        xml_parts.append("  </programme>")
        return "\n".join(xml_parts)
