"""HDHomeRun emulation endpoints and lineup."""
