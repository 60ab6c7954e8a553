"""
Session manager for cloud and device credentials.

Owns the only interactive login flow and the only code path that signs
requests to the local DVR device. Cloud calls use the bearer token plus the
``Lighthouse`` session token; device calls use a per-request HMAC signature
keyed by the stored device identity.

Usage:
    manager = SessionManager(config, store, cloud, prompter=Prompter())
    await manager.ensure_session()

    raw = await manager.device_request("GET", "/server/info")
"""

import asyncio
import json
import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from tunerbridge.cloud.client import CloudClient
from tunerbridge.cloud.models import (
    BroadcastChannel,
    Device,
    InternetChannel,
    Profile,
    SessionBundle,
    parse_lineup,
)
from tunerbridge.config import TunerBridgeConfig
from tunerbridge.exceptions import (
    CloudRequestError,
    DeviceUnreachableError,
    SelectionError,
    SessionCorruptError,
    SessionMissingError,
)
from tunerbridge.security.crypto import SessionCipher, make_device_auth, new_device_uuid
from tunerbridge.utils.dates import device_date
from tunerbridge.utils.file_store import FileStore
from tunerbridge.utils.prompts import Prompter

logger = logging.getLogger(__name__)

DEVICE_QUERY = "lh"
SERVER_INFO_PATH = "/server/info"

# Extra client details the device expects on POST requests
_WATCH_EXTRA = {
    "limitedAdTracking": 1,
    "deviceOSVersion": "16.6",
    "lang": "en_US",
    "height": 1080,
    "deviceId": "00000000-0000-0000-0000-000000000000",
    "width": 1920,
    "deviceModel": "iPhone10,1",
    "deviceMake": "Apple",
    "deviceOS": "iOS",
}


def _server_message(body: str) -> str | None:
    """Pull the human readable ``message`` out of an error payload."""
    try:
        data = json.loads(body)
    except (TypeError, ValueError):
        return None
    if isinstance(data, dict):
        return data.get("message")
    return None


class SessionManager:
    """
    Manages the persisted session bundle.

    Args:
        config: Application configuration
        store: File store rooted at the data directory
        cloud: Cloud account API client
        prompter: Interactive prompt; None disables interactive acquisition
        device_transport: Optional httpx transport for device calls (tests)
    """

    def __init__(
        self,
        config: TunerBridgeConfig,
        store: FileStore,
        cloud: CloudClient,
        prompter: Optional[Prompter] = None,
        device_transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config
        self._store = store
        self._cloud = cloud
        self._prompter = prompter
        self._cipher = SessionCipher(store, config.storage.key_file)
        self._session_file = config.storage.session_file
        self._bundle: SessionBundle | None = None
        self._lock = asyncio.Lock()
        self._device_client = httpx.AsyncClient(
            timeout=config.device.request_timeout,
            transport=device_transport,
        )

    # ============ State ============

    @property
    def bundle(self) -> SessionBundle:
        if self._bundle is None:
            raise SessionMissingError("No session loaded")
        return self._bundle

    @property
    def is_loaded(self) -> bool:
        return self._bundle is not None

    @property
    def tuners(self) -> int:
        return self.bundle.tuners

    def has_persisted_session(self) -> bool:
        return self._store.exists(self._session_file)

    async def ensure_session(self, interactive: bool = True) -> SessionBundle:
        """
        Return the current session, loading or acquiring it once.

        Concurrent callers share one acquisition; the lock keeps early
        requests from starting duplicate interactive logins.
        """
        async with self._lock:
            if self._bundle is not None:
                return self._bundle

            if self.has_persisted_session():
                return self.load_session()

            if not interactive or self._prompter is None and not self._has_config_credentials():
                raise SessionMissingError(
                    "No saved credentials found. Run `tunerbridge --creds` to log in."
                )

            return await self.acquire_session()

    def forget(self) -> None:
        """Delete the persisted session so the next start logs in again."""
        if self._store.delete(self._session_file):
            logger.info("Removed saved credentials")
        self._bundle = None

    # ============ Load / persist ============

    def load_session(self) -> SessionBundle:
        """
        Decrypt and adopt the persisted session.

        Raises:
            SessionCorruptError: The artifact was not a JSON object; it has
                been deleted and the process must be restarted.
        """
        decrypted = self._cipher.decrypt(self._store.read(self._session_file))

        if not decrypted or decrypted[0] != 0x7B:  # "{"
            self._discard_corrupt("Issue decrypting creds file")

        try:
            bundle = SessionBundle.model_validate_json(decrypted)
        except ValidationError as e:
            logger.debug(f"Session validation failed: {e}")
            self._discard_corrupt("Issue reading decrypted creds file")

        self._bundle = bundle
        logger.info(
            f"Loaded session for device {bundle.device.name} ({bundle.device.server_id}) "
            f"with {bundle.tuners} tuners"
        )
        return bundle

    def _discard_corrupt(self, reason: str) -> None:
        logger.error(f"{reason}. Removing creds file. Please start the app again to log in.")
        self._store.delete(self._session_file)
        raise SessionCorruptError(f"{reason}; saved credentials were removed")

    def _persist(self, bundle: SessionBundle) -> None:
        payload = bundle.model_dump_json(by_alias=True).encode("utf-8")
        self._store.write(self._session_file, self._cipher.encrypt(payload))
        logger.info("Credentials successfully encrypted! Ready to use the server!")

    # ============ Acquisition ============

    def _has_config_credentials(self) -> bool:
        return bool(self._config.cloud.email and self._config.cloud.password)

    def _require_prompter(self) -> Prompter:
        if self._prompter is None:
            raise SessionMissingError("Interactive input is required but not available")
        return self._prompter

    async def acquire_session(self) -> SessionBundle:
        """Log in, select profile and device, and persist a new session."""
        authorization = await self._login()

        try:
            account = await self._cloud.get_account(authorization)
        except CloudRequestError as e:
            reason = _server_message(e.body) or "try again later"
            logger.error(f"Account login was not accepted: {reason}")
            raise SelectionError(f"Account lookup failed: {reason}") from e

        logger.debug(f"Cloud account: {account}")

        identifier = account.get("identifier")
        if not identifier:
            raise SelectionError("User identifier missing from account data")

        profile = self._select_profile(account.get("profiles"))
        device = self._select_device(account.get("devices"))

        logger.info("Getting account token.")
        try:
            selected = await self._cloud.select(authorization, profile.identifier, device.server_id)
        except CloudRequestError as e:
            raise SelectionError("Account token request failed") from e

        lighthouse = selected.get("token")
        if not lighthouse:
            raise SelectionError("Account token was not found")
        logger.info("Account token found!")

        device_uuid = new_device_uuid()

        logger.info("Connecting to device.")
        tuners = await self._probe_tuners(device, device_uuid)

        bundle = SessionBundle(
            cloud_authorization=authorization,
            cloud_identifier=identifier,
            profile=profile,
            device=device,
            lighthouse=lighthouse,
            device_uuid=device_uuid,
            tuners=tuners,
        )
        logger.info("Credentials successfully created!")

        self._persist(bundle)
        self._bundle = bundle
        return bundle

    async def _login(self) -> str:
        email = self._config.cloud.email
        password = self._config.cloud.password

        while True:
            if not email:
                email = self._require_prompter().input("What is your email?")
            if not password:
                password = self._require_prompter().input("What is your password?", hidden=True)

            try:
                data = await self._cloud.login(email, password)
            except CloudRequestError as e:
                reason = _server_message(e.body)
                if reason:
                    logger.error(f"Login was not accepted: {reason}")
                else:
                    logger.error("Login was not accepted or had issues, try again!")
                email = password = None
                continue
            except ValueError:
                data = None

            if not isinstance(data, dict):
                logger.error("Login response could not be read, try again!")
                email = password = None
                continue

            if data.get("code"):
                logger.error(f"Login was not accepted: {data.get('message')}")
                email = password = None
                continue

            if data.get("is_verified") is not True:
                logger.info(
                    "NOTE: While password was accepted, account is not verified. "
                    "Please check email to make sure your account is fully set up."
                )

            token_type = data.get("token_type")
            access_token = data.get("access_token")
            if token_type and access_token:
                logger.info("Login was accepted!")
                return f"{token_type} {access_token}"

            logger.error("Login response did not include an access token, try again!")
            email = password = None

    def _select_profile(self, profiles: list[dict[str, Any]] | None) -> Profile:
        if not profiles:
            raise SelectionError("User profile data missing from account")

        choices = [Profile.model_validate(p) for p in profiles]
        profile: Profile | None = None

        if len(choices) == 1:
            profile = choices[0]
        elif self._config.cloud.profile:
            profile = next((p for p in choices if p.name == self._config.cloud.profile), None)
            if profile is None:
                logger.warning(f"Profile {self._config.cloud.profile} not found, falling back to selection.")

        if profile is None and self._config.cloud.auto_profile:
            profile = choices[0]

        if profile is None:
            answer = self._require_prompter().choose(
                "Select which profile to use.", [p.name for p in choices]
            )
            profile = next(p for p in choices if p.name == answer)

        logger.info(f"Using profile {profile.name}")
        return profile

    def _select_device(self, devices: list[dict[str, Any]] | None) -> Device:
        if not devices:
            raise SelectionError("User device data missing from account")

        choices = [Device.model_validate(d) for d in devices]
        device: Device | None = None

        if len(choices) == 1:
            device = choices[0]
        elif self._config.cloud.device:
            device = next((d for d in choices if d.server_id == self._config.cloud.device), None)
            if device is None:
                logger.error(f"Device with serverId {self._config.cloud.device} not found.")
                logger.warning("Falling back to manual selection.")

        if device is None:
            answer = self._require_prompter().choose(
                "Select which device to use.", [d.server_id for d in choices]
            )
            device = next(d for d in choices if d.server_id == answer)

        logger.info(f"Using device {device.name} {device.server_id} @ {device.url}")
        return device

    async def _probe_tuners(self, device: Device, device_uuid: str) -> int:
        raw = await self._device_call(device.url, device_uuid, "GET", SERVER_INFO_PATH)
        try:
            info = json.loads(raw)
            model = info["model"]
            tuners = int(model["tuners"])
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Could not reach device. Make sure it's on the same network and try again!")
            raise DeviceUnreachableError(f"Device {device.url} did not report its tuners") from e

        logger.info(f"Found {model.get('name', 'device')} with {tuners} max tuners found!")
        logger.debug(f"Server info: {info}")
        return tuners

    # ============ Lineup ============

    async def fetch_lineup(self) -> list[BroadcastChannel | InternetChannel]:
        """
        Download the channel lineup and persist it to the lineup file.

        Internet channels are dropped unless
        ``guide.include_internet_channels`` is set.
        """
        bundle = self.bundle
        logger.info("Requesting a new channel lineup file.")
        payload = await self._cloud.get_lineup(bundle.cloud_authorization, bundle.lighthouse)

        if not self._config.guide.include_internet_channels:
            payload = [entry for entry in payload if entry.get("kind") != "ott"]

        self._store.write_json(self._config.storage.lineup_file, payload, indent=4)
        entries = parse_lineup(payload)
        logger.info(f"Lineup updated with {len(entries)} channels")
        return entries

    def load_lineup(self) -> list[BroadcastChannel | InternetChannel] | None:
        """Lineup persisted by the last successful fetch, if any."""
        if not self._store.exists(self._config.storage.lineup_file):
            return None
        return parse_lineup(self._store.read_json(self._config.storage.lineup_file))

    # ============ Device requests ============

    async def device_request(self, method: str, path: str, query: str = DEVICE_QUERY) -> bytes:
        """
        Issue a signed request to the selected device.

        Returns:
            Raw response bytes (empty on transport failure); callers parse.
        """
        bundle = self.bundle
        return await self._device_call(bundle.device.url, bundle.device_uuid, method, path, query)

    async def _device_call(
        self,
        base_url: str,
        device_uuid: str,
        method: str,
        path: str,
        query: str = DEVICE_QUERY,
    ) -> bytes:
        date = device_date()
        headers = {
            "Connection": "keep-alive",
            "Date": date,
            "Accept": "*/*",
            "User-Agent": self._config.device.user_agent,
        }

        body = ""
        if method == "POST":
            headers["Content-Type"] = "application/x-www-form-urlencoded"
            body = json.dumps(
                {
                    "bandwidth": None,
                    "extra": _WATCH_EXTRA,
                    "device_id": device_uuid,
                    "platform": "ios",
                }
            )

        headers["Authorization"] = make_device_auth(
            method,
            path,
            body,
            date,
            self._config.device.hash_key,
            self._config.device.auth_key,
        )

        url = f"{base_url.rstrip('/')}{path}"
        if query:
            url = f"{url}?{query}"

        logger.debug(f"Device request: {method} {url}")

        try:
            response = await self._device_client.request(
                method,
                url,
                headers=headers,
                content=body.encode("utf-8") if body else None,
            )
        except httpx.HTTPError as e:
            logger.error(f"Fetching device {url} failed: {e!r}")
            return b""

        return response.content

    async def close(self) -> None:
        await self._device_client.aclose()
