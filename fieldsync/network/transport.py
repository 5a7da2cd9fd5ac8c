"""Length-prefixed JSON transport"""

import asyncio
import struct
import json
from typing import Optional
import logging

from ..crypto.cipher import PayloadCipher
from .protocol import ProtocolMessage, MAX_FRAME_SIZE

logger = logging.getLogger(__name__)


class MessageTransport:
    """Frames protocol messages over an asyncio stream, encrypted if a cipher is set"""

    def __init__(self, reader: Optional[asyncio.StreamReader] = None,
                 writer: Optional[asyncio.StreamWriter] = None,
                 cipher: Optional[PayloadCipher] = None):
        self.reader = reader
        self.writer = writer
        self.cipher = cipher

    def set_stream(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """Set network stream"""
        self.reader = reader
        self.writer = writer

    async def send_message(self, message: ProtocolMessage):
        """Send message (encrypted if cipher available)"""
        if not self.writer:
            raise ConnectionError("No writer stream set")

        msg_bytes = json.dumps(message.to_dict()).encode('utf-8')

        if self.cipher:
            msg_bytes = self.cipher.encrypt(msg_bytes)

        if len(msg_bytes) > MAX_FRAME_SIZE:
            raise ValueError(f"Message too large: {len(msg_bytes)} bytes")

        length_prefix = struct.pack('!I', len(msg_bytes))
        self.writer.write(length_prefix + msg_bytes)
        await self.writer.drain()

    async def recv_message(self) -> ProtocolMessage:
        """Receive message (decrypt if cipher available)"""
        if not self.reader:
            raise ConnectionError("No reader stream set")

        length_bytes = await self.reader.readexactly(4)
        msg_length = struct.unpack('!I', length_bytes)[0]

        if msg_length > MAX_FRAME_SIZE:
            raise ValueError(f"Frame too large: {msg_length} bytes")

        msg_bytes = await self.reader.readexactly(msg_length)

        if self.cipher:
            msg_bytes = self.cipher.decrypt(msg_bytes)

        try:
            return ProtocolMessage.from_dict(json.loads(msg_bytes.decode('utf-8')))
        except (ValueError, KeyError) as e:
            logger.error(f"Malformed message: {e}")
            raise

    async def close(self):
        if self.writer is None:
            return
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error while closing stream: {e}")
        finally:
            self.reader = None
            self.writer = None
