"""Protocol layer: stream framing, command vocabulary, and frame decoding."""

from .framing import Frame, LineFramer, MarkerFramer
from .commands import Command, encode_command
