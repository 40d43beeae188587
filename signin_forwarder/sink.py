"""GELF over UDP transport towards Graylog."""

from __future__ import annotations

import logging
import os
import socket
import zlib
from typing import List

logger = logging.getLogger(__name__)

CHUNK_MAGIC = b"\x1e\x0f"
CHUNK_HEADER_SIZE = 12
MAX_CHUNKS = 128
WAN_CHUNK_SIZE = 1420
LAN_CHUNK_SIZE = 8154


class GelfMessageTooLarge(ValueError):
    """Raised when a message would need more than 128 GELF chunks."""


def chunk_message(payload: bytes, chunk_size: int, message_id: bytes) -> List[bytes]:
    """Split ``payload`` into GELF chunks of at most ``chunk_size`` bytes each."""

    if len(payload) <= chunk_size:
        return [payload]
    body_size = chunk_size - CHUNK_HEADER_SIZE
    parts = [payload[i : i + body_size] for i in range(0, len(payload), body_size)]
    if len(parts) > MAX_CHUNKS:
        raise GelfMessageTooLarge(f"message of {len(payload)} bytes needs {len(parts)} chunks")
    total = len(parts)
    return [CHUNK_MAGIC + message_id + bytes([index, total]) + part for index, part in enumerate(parts)]


class GelfUdpSink:
    """Fire-and-forget GELF sender. Nothing is read back from the collector."""

    def __init__(
        self,
        host: str,
        port: int,
        *,
        chunk_size: int = WAN_CHUNK_SIZE,
        compress: bool = True,
    ) -> None:
        family, _, _, _, address = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)[0]
        self._address = address
        self._chunk_size = chunk_size
        self._compress = compress
        self._sock = socket.socket(family, socket.SOCK_DGRAM)

    def send(self, message: bytes) -> None:
        payload = zlib.compress(message) if self._compress else message
        for chunk in chunk_message(payload, self._chunk_size, os.urandom(8)):
            self._sock.sendto(chunk, self._address)
        logger.debug("Sent %d byte GELF message to %s", len(payload), self._address)

    def close(self) -> None:
        self._sock.close()


__all__ = ["GelfMessageTooLarge", "GelfUdpSink", "chunk_message", "LAN_CHUNK_SIZE", "WAN_CHUNK_SIZE"]
