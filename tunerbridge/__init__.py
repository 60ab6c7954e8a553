"""
TunerBridge - HDHomeRun emulation for a cloud-managed OTA DVR

- Cloud login, profile and device selection with encrypted session storage
- Tuner-gated live MPEG-TS relay through ffmpeg
- Incremental guide cache and XMLTV generation
"""

__version__ = "1.0.0"
__license__ = "MIT"

from tunerbridge.config import get_config, load_config

__all__ = [
    "__version__",
    "get_config",
    "load_config",
]
