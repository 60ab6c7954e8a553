"""
TunerBridge Test Configuration

Shared fixtures and configuration for all tests.
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Generator

import httpx
import pytest

from tunerbridge.cloud.client import CloudClient
from tunerbridge.cloud.models import SessionBundle, parse_lineup
from tunerbridge.cloud.session import SessionManager
from tunerbridge.config import (
    DeviceConfig,
    LoggingConfig,
    ServerConfig,
    StorageConfig,
    TunerBridgeConfig,
)
from tunerbridge.security.crypto import SessionCipher
from tunerbridge.utils.file_store import FileStore

DEVICE_URL = "http://192.168.1.50:8887"
BASE_URL = "http://bridge.local:8181"


# ============ Mock Upstreams ============


class MockUpstream:
    """Route table for an httpx.MockTransport that records every call."""

    def __init__(self):
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.calls: list[httpx.Request] = []

    def add(self, method: str, path: str, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.routes[(method, path)] = handler

    def add_json(self, method: str, path: str, payload: Any, status: int = 200) -> None:
        self.add(method, path, lambda request: httpx.Response(status, json=payload))

    def add_bytes(self, method: str, path: str, content: bytes, status: int = 200) -> None:
        self.add(method, path, lambda request: httpx.Response(status, content=content))

    def count(self, method: str, path: str) -> int:
        return sum(1 for r in self.calls if r.method == method and r.url.path == path)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"message": "not found"})
        return handler(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


class FakePrompter:
    """Scripted stand-in for the interactive prompter."""

    def __init__(self, inputs: list[str] | None = None, choices: list[int] | None = None):
        self.inputs = list(inputs or [])
        self.choices = list(choices or [])
        self.asked: list[str] = []

    def input(self, message: str, hidden: bool = False) -> str:
        self.asked.append(message)
        return self.inputs.pop(0)

    def choose(self, message: str, options: list[str]) -> str:
        self.asked.append(message)
        return options[self.choices.pop(0)]


def persist_session(config: TunerBridgeConfig, bundle: SessionBundle) -> Path:
    """Write an encrypted session the way a completed login does."""
    store = FileStore(config.storage.data_dir)
    cipher = SessionCipher(store, config.storage.key_file)
    payload = bundle.model_dump_json(by_alias=True).encode("utf-8")
    return store.write(config.storage.session_file, cipher.encrypt(payload))


# ============ Temporary File Fixtures ============


@pytest.fixture(scope="function")
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(scope="function")
def temp_config_file(temp_dir: Path) -> Path:
    """Create a temporary config file."""
    config_file = temp_dir / "config.yaml"
    config_content = f"""
server:
  host: "127.0.0.1"
  port: 8282
  base_url: "{BASE_URL}"

guide:
  days: 3
  include_internet_channels: true

storage:
  data_dir: "{temp_dir / 'data'}"

logging:
  level: "DEBUG"
"""
    config_file.write_text(config_content)
    return config_file


# ============ Configuration Fixtures ============


@pytest.fixture
def tb_config(temp_dir: Path) -> TunerBridgeConfig:
    """Configuration rooted in a temporary data directory."""
    return TunerBridgeConfig(
        server=ServerConfig(base_url=BASE_URL),
        device=DeviceConfig(hash_key="test-hash-key", auth_key="test-auth-key"),
        storage=StorageConfig(data_dir=str(temp_dir / "data")),
        logging=LoggingConfig(file=""),
    )


@pytest.fixture
def store(tb_config: TunerBridgeConfig) -> FileStore:
    return FileStore(tb_config.storage.data_dir)


# ============ Sample Data Fixtures ============


@pytest.fixture
def sample_bundle() -> SessionBundle:
    return SessionBundle(
        cloud_authorization="Bearer cloud-token",
        cloud_identifier="user-1",
        profile={"identifier": "profile-1", "name": "Family"},
        device={"serverId": "SID_1", "name": "Living Room", "url": DEVICE_URL},
        lighthouse="lighthouse-token",
        device_uuid="11111111-2222-3333-4444-555555555555",
        tuners=2,
    )


@pytest.fixture
def sample_lineup_payload() -> list[dict]:
    return [
        {
            "identifier": "S1",
            "name": "KXYZ HD",
            "kind": "ota",
            "logos": [
                {"kind": "darkLarge", "url": "http://img.test/kxyz-dark.png"},
                {"kind": "lightLarge", "url": "http://img.test/kxyz-light.png"},
            ],
            "ota": {"major": 7, "minor": 1, "network": "KXYZ", "callSign": "KXYZ-DT"},
        },
        {
            "identifier": "S2",
            "name": "WABC",
            "kind": "ota",
            "logos": [],
            "ota": {"major": 9, "minor": 2, "network": "WABC", "callSign": "WABC-DT"},
        },
        {
            "identifier": "F1",
            "name": "Fast One",
            "kind": "ott",
            "logos": [{"kind": "darkSmall", "url": "http://img.test/fast.png"}],
            "ott": {
                "major": 100,
                "minor": 1,
                "network": "FAST1",
                "callSign": "FAST1",
                "streamUrl": "http://fast.test/1.m3u8",
            },
        },
    ]


@pytest.fixture
def sample_lineup(sample_lineup_payload: list[dict]):
    return parse_lineup(sample_lineup_payload)


@pytest.fixture
def sample_airings() -> list[dict]:
    return [
        {
            "identifier": "A1",
            "kind": "episode",
            "title": "The Pilot",
            "channel": {"identifier": "S1"},
            "datetime": "2026-10-19T20:00Z",
            "duration": 1800,
            "description": "First\nepisode",
            "genres": ["Comedy"],
            "images": [{"kind": "thumb", "url": "http://img.test/a1.jpg"}],
            "show": {"identifier": "SH1", "title": "Great Show"},
            "episode": {
                "season": {"kind": "number", "number": 3},
                "episodeNumber": 5,
                "originalAirDate": "2020-01-02",
                "rating": "TV-PG",
            },
        },
    ]


# ============ Upstream Fixtures ============


@pytest.fixture
def cloud_upstream() -> MockUpstream:
    return MockUpstream()


@pytest.fixture
def device_upstream() -> MockUpstream:
    upstream = MockUpstream()
    upstream.add_json("GET", "/server/info", {"model": {"name": "Gen4 Quad", "tuners": 2}})
    return upstream


@pytest.fixture
def cloud_client(tb_config: TunerBridgeConfig, cloud_upstream: MockUpstream) -> CloudClient:
    return CloudClient(tb_config.cloud, transport=cloud_upstream.transport())


@pytest.fixture
def session_manager(
    tb_config: TunerBridgeConfig,
    store: FileStore,
    cloud_client: CloudClient,
    device_upstream: MockUpstream,
) -> SessionManager:
    return SessionManager(
        tb_config,
        store,
        cloud_client,
        device_transport=device_upstream.transport(),
    )


@pytest.fixture
def loaded_session(
    tb_config: TunerBridgeConfig,
    sample_bundle: SessionBundle,
    session_manager: SessionManager,
) -> SessionManager:
    """Session manager with a persisted, loaded session."""
    persist_session(tb_config, sample_bundle)
    session_manager.load_session()
    return session_manager


# ============ Environment Fixtures ============


@pytest.fixture(autouse=True)
def clean_environment():
    """Clean environment variables for each test."""
    original_env = os.environ.copy()

    for key in list(os.environ.keys()):
        if key.startswith("TUNERBRIDGE_"):
            del os.environ[key]

    yield

    os.environ.clear()
    os.environ.update(original_env)


# ============ Subprocess Fakes ============


class FakeProcess:
    """Minimal asyncio subprocess stand-in for ffmpeg."""

    def __init__(self, data: bytes = b"", stay_open: bool = False, exit_delay: float = 0.0):
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.returncode: int | None = None
        self.terminated = False
        self.killed = False
        self._exited = asyncio.Event()
        self.exit_delay = exit_delay
        if data:
            self.stdout.feed_data(data)
        if not stay_open:
            self.stdout.feed_eof()
        self.stderr.feed_data(b"ffmpeg version test\n")
        self.stderr.feed_eof()

    def terminate(self) -> None:
        self.terminated = True
        if self.exit_delay:
            asyncio.get_running_loop().call_later(self.exit_delay, self._finish, 0)
        else:
            self._finish(0)

    def kill(self) -> None:
        self.killed = True
        self._finish(-9)

    def _finish(self, code: int) -> None:
        if self.returncode is None:
            self.returncode = code
        if not self.stdout.at_eof():
            self.stdout.feed_eof()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode


def json_bytes(payload: Any) -> bytes:
    return json.dumps(payload).encode("utf-8")


# ============ Markers ============


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
