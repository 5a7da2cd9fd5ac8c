"""Remote API client speaking the sync wire protocol"""

import asyncio
from typing import List, Optional
import logging

from ..crypto.cipher import CipherError, PayloadCipher
from ..network.protocol import Protocol, MessageType
from ..network.transport import MessageTransport
from ..storage.records import Record

logger = logging.getLogger(__name__)


class RemoteError(Exception):
    """The server answered a request with an error"""


class RemoteSyncClient:
    """
    Implements the engine's remote contract over a TCP connection
    One request is in flight at a time; the connection is opened lazily
    and dropped on any transport error
    """

    def __init__(self, host: str, port: int, cipher: Optional[PayloadCipher] = None,
                 timeout: float = 10.0):
        self.host = host
        self.port = port
        self.cipher = cipher
        self.timeout = timeout

        self.protocol = Protocol()
        self.transport: Optional[MessageTransport] = None
        self._lock = asyncio.Lock()

    async def connect(self):
        """Connect to server"""
        logger.info(f"Connecting to {self.host}:{self.port}")
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(self.host, self.port), self.timeout
        )
        self.transport = MessageTransport(reader, writer, cipher=self.cipher)

    async def close(self):
        if self.transport is not None:
            await self.transport.close()
            self.transport = None

    async def _request(self, msg_type: MessageType, payload: dict) -> dict:
        async with self._lock:
            request = self.protocol.create_message(msg_type, payload)
            try:
                if self.transport is None:
                    await self.connect()
                await self.transport.send_message(request)
                reply = await asyncio.wait_for(self.transport.recv_message(), self.timeout)
            except (OSError, EOFError, asyncio.TimeoutError, ValueError, CipherError) as e:
                # asyncio.IncompleteReadError is an EOFError
                await self.close()
                raise ConnectionError(f"{msg_type.name} failed: {e}") from e

            if reply.seq_num != request.seq_num:
                await self.close()
                raise ConnectionError(
                    f"Out of order reply: expected {request.seq_num}, got {reply.seq_num}")

            if reply.msg_type == MessageType.ERROR:
                raise RemoteError(reply.payload.get('error', 'unknown error'))

            return reply.payload

    # Engine contract

    async def is_online(self) -> bool:
        try:
            reply = await self._request(MessageType.PING, {'version': self.protocol.version})
        except (ConnectionError, RemoteError) as e:
            logger.info(f"Server unreachable: {e}")
            return False

        if not self.protocol.is_compatible(reply.get('version', '')):
            logger.error(f"Incompatible server protocol {reply.get('version')}")
            return False
        return bool(reply.get('online'))

    async def push(self, record: Record) -> bool:
        reply = await self._request(MessageType.PUSH, {'record': record.to_wire()})
        return bool(reply.get('accepted'))

    async def push_batch(self, records: List[Record]) -> int:
        reply = await self._request(
            MessageType.PUSH_BATCH, {'records': [r.to_wire() for r in records]}
        )
        return int(reply.get('accepted', 0))

    async def pull(self, since_version: int) -> List[Record]:
        reply = await self._request(MessageType.PULL, {'since_version': since_version})
        return [Record.from_wire(r) for r in reply.get('records', [])]

    async def get_server_version(self) -> int:
        reply = await self._request(MessageType.SERVER_VERSION, {})
        return int(reply['version'])
