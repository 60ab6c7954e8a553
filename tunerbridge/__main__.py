"""Allow running as ``python -m tunerbridge``."""

from tunerbridge.main import main

main()
