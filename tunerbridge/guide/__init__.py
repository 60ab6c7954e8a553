"""Guide cache and XMLTV generation."""
