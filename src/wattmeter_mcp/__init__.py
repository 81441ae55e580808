"""Serial drivers for the ISW 8001 and MPM-1010 power meters, with an MCP tool server."""

__version__ = "0.1.0"
