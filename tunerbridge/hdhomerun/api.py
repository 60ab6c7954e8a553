"""HDHomeRun API endpoints for Plex/Emby/Jellyfin integration"""

import logging
from xml.sax.saxutils import escape as xml_escape

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from tunerbridge.context import ServiceContext
from tunerbridge.exceptions import StreamError

logger = logging.getLogger(__name__)

HDHOMERUN_MODEL = "HDHR3-US"
HDHOMERUN_FIRMWARE_NAME = "hdhomerun3_atsc"
HDHOMERUN_FIRMWARE = "20240101"
MANUFACTURER = "tunerbridge"

STREAM_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Cache-Control": "no-cache, no-store, must-revalidate, private",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

hdhomerun_router = APIRouter(tags=["HDHomeRun"])


def get_context(request: Request) -> ServiceContext:
    return request.app.state.context


def _base_url(context: ServiceContext) -> str:
    return context.config.server.base_url.rstrip("/")


def _client_ip(request: Request) -> str:
    if request.client is None:
        return "unknown"
    return request.client.host.replace("::ffff:", "")


@hdhomerun_router.get("/discover.json")
async def discover(context: ServiceContext = Depends(get_context)):
    """HDHomeRun device discovery endpoint"""
    base_url = _base_url(context)
    server = context.config.server

    return {
        "FriendlyName": server.friendly_name,
        "Manufacturer": MANUFACTURER,
        "ModelNumber": HDHOMERUN_MODEL,
        "FirmwareName": HDHOMERUN_FIRMWARE_NAME,
        "FirmwareVersion": HDHOMERUN_FIRMWARE,
        "DeviceID": server.device_id,
        "DeviceAuth": server.device_auth,
        "BaseURL": base_url,
        "LocalIP": base_url,
        "LineupURL": f"{base_url}/lineup.json",
        "GuideURL": f"{base_url}/guide.xml",
        "TunerCount": context.session.tuners,
    }


@hdhomerun_router.get("/lineup_status.json")
async def lineup_status():
    """HDHomeRun lineup status"""
    return {
        "ScanInProgress": 0,
        "ScanPossible": 1,
        "Source": "Antenna",
        "SourceList": ["Antenna"],
    }


@hdhomerun_router.get("/lineup.json")
async def lineup(context: ServiceContext = Depends(get_context)):
    """HDHomeRun channel lineup"""
    return [projection.to_hdhomerun() for projection in context.lineup.projections()]


@hdhomerun_router.get("/channel/{channel_id}")
async def stream_channel(
    channel_id: str,
    request: Request,
    context: ServiceContext = Depends(get_context),
):
    """
    Relay a live channel as MPEG-TS.

    404 for unknown channels; every other failure is a generic 500 with the
    details in the log.
    """
    client = _client_ip(request)

    try:
        stream = await context.tuner_proxy.start_stream(channel_id, client)
    except StreamError as e:
        if e.status_code == 404:
            raise HTTPException(status_code=404, detail="Channel not found")
        logger.error(f"Error starting stream for {client} on {channel_id}: {e.message}")
        raise HTTPException(status_code=e.status_code, detail="Failed to start stream")

    # The background close covers a body that is never iterated
    return StreamingResponse(
        stream.chunks(),
        media_type="video/mp2t",
        headers=STREAM_HEADERS,
        background=BackgroundTask(stream.close),
    )


@hdhomerun_router.get("/guide.xml")
async def guide(context: ServiceContext = Depends(get_context)):
    """Last compiled XMLTV guide"""
    if not context.guide_sync.has_guide():
        raise HTTPException(status_code=404, detail="Guide not found")
    return Response(content=context.guide_sync.read_guide(), media_type="application/xml")


@hdhomerun_router.get("/status.json")
async def status(context: ServiceContext = Depends(get_context)):
    """Tuner slot status"""
    server = context.config.server
    report = context.guide_sync.last_report

    return {
        "FriendlyName": server.friendly_name,
        "ModelNumber": HDHOMERUN_MODEL,
        "DeviceID": server.device_id,
        "TunerCount": context.tuner_proxy.capacity,
        "TunersInUse": context.tuner_proxy.in_use,
        "TunerStatus": context.tuner_proxy.status(),
        "GuideLastRun": context.guide_sync.last_run.isoformat() if context.guide_sync.last_run else None,
        "GuideLastReport": report.to_dict() if report else None,
        "Tasks": context.scheduler.get_tasks(),
    }


@hdhomerun_router.get("/device.xml")
async def device_description(context: ServiceContext = Depends(get_context)):
    """HDHomeRun device description XML (UPnP)"""
    server = context.config.server
    base_url = _base_url(context)

    xml = f"""<?xml version="1.0" encoding="UTF-8"?>
<root xmlns="urn:schemas-upnp-org:device-1-0">
    <specVersion>
        <major>1</major>
        <minor>0</minor>
    </specVersion>
    <URLBase>{xml_escape(base_url)}</URLBase>
    <device>
        <deviceType>urn:schemas-upnp-org:device:MediaServer:1</deviceType>
        <friendlyName>{xml_escape(server.friendly_name)}</friendlyName>
        <manufacturer>{MANUFACTURER}</manufacturer>
        <modelName>{HDHOMERUN_MODEL}</modelName>
        <modelNumber>{HDHOMERUN_MODEL}</modelNumber>
        <serialNumber></serialNumber>
        <UDN>uuid:{xml_escape(server.device_id)}</UDN>
    </device>
</root>"""

    return Response(content=xml, media_type="application/xml")
