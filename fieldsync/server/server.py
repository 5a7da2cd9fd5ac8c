"""Reference sync server: the remote authority"""

import asyncio
from typing import Dict, List, Optional
import logging

from ..crypto.cipher import CipherError, PayloadCipher
from ..network.protocol import Protocol, MessageType, ProtocolMessage
from ..network.transport import MessageTransport

logger = logging.getLogger(__name__)


class SyncServer:
    """
    Authoritative record store
    Every accepted change gets the next value of a logical version counter,
    so clients can ask for "everything after version N"
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 8443,
                 cipher: Optional[PayloadCipher] = None):
        self.host = host
        self.port = port
        self.cipher = cipher

        self.records: Dict[str, dict] = {}
        self.version = 0
        self._server: Optional[asyncio.AbstractServer] = None

    # Store operations

    def apply_change(self, record: dict) -> int:
        """Store a pushed record and stamp it with a new version"""
        entity_id = record.get('entity_id')
        if not entity_id:
            raise ValueError("Record has no entity_id")

        self.version += 1
        stored = dict(record)
        stored['version'] = self.version
        self.records[entity_id] = stored

        logger.debug(f"Stored {entity_id} at version {self.version}")
        return self.version

    def changes_since(self, since_version: int) -> List[dict]:
        changes = [r for r in self.records.values() if r['version'] > since_version]
        return sorted(changes, key=lambda r: r['version'])

    # Request handling

    async def handle_request(self, request: ProtocolMessage) -> dict:
        payload = request.payload

        if request.msg_type == MessageType.PING:
            return {'online': True, 'version': Protocol().version}

        if request.msg_type == MessageType.PUSH:
            return {'accepted': True, 'version': self.apply_change(payload['record'])}

        if request.msg_type == MessageType.PUSH_BATCH:
            accepted = 0
            for record in payload.get('records', []):
                try:
                    self.apply_change(record)
                    accepted += 1
                except ValueError as e:
                    logger.warning(f"Rejected record in batch: {e}")
            return {'accepted': accepted}

        if request.msg_type == MessageType.PULL:
            since = int(payload.get('since_version', 0))
            return {'records': self.changes_since(since), 'version': self.version}

        if request.msg_type == MessageType.SERVER_VERSION:
            return {'version': self.version}

        raise ValueError(f"Unsupported message type: {request.msg_type}")

    async def handle_client(self, reader: asyncio.StreamReader,
                            writer: asyncio.StreamWriter):
        """Handle client connection"""
        addr = writer.get_extra_info('peername')
        logger.info(f"New connection from {addr}")

        protocol = Protocol()
        transport = MessageTransport(reader, writer, cipher=self.cipher)

        try:
            while True:
                request = await transport.recv_message()

                try:
                    reply = protocol.create_reply(request, await self.handle_request(request))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Bad request from {addr}: {e}")
                    reply = protocol.create_error(request, str(e))

                await transport.send_message(reply)

        except asyncio.IncompleteReadError:
            logger.info(f"Client {addr} disconnected")
        except CipherError as e:
            logger.warning(f"Dropping client {addr}: {e}")
        except Exception as e:
            logger.error(f"Error handling client {addr}: {e}", exc_info=True)
        finally:
            await transport.close()

    async def start(self) -> int:
        """Start listening; returns the bound port"""
        self._server = await asyncio.start_server(
            self.handle_client, self.host, self.port
        )

        addr = self._server.sockets[0].getsockname()
        self.port = addr[1]
        logger.info(f"Sync server listening on {addr}")
        return self.port

    async def stop(self):
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        logger.info("Sync server stopped")

    async def run(self):
        """Start server and serve until cancelled"""
        await self.start()
        async with self._server:
            await self._server.serve_forever()
