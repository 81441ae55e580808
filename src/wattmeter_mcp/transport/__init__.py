"""Transport layer: asynchronous serial port access."""

from .serial_connection import SerialConfig, SerialConnection, list_ports, open_serial
