"""Sync wire protocol with versioning"""

import time
from enum import Enum
from typing import Dict, Any
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)

# Protocol version
PROTOCOL_VERSION = "1.0.0"
MAX_FRAME_SIZE = 16 * 1024 * 1024  # 16MB


class MessageType(Enum):
    """Protocol message types"""
    # Requests
    PING = 1
    PUSH = 2
    PUSH_BATCH = 3
    PULL = 4
    SERVER_VERSION = 5

    # Replies
    RESPONSE = 10
    ERROR = 11


@dataclass
class ProtocolMessage:
    """Standard protocol message format"""
    msg_type: MessageType
    seq_num: int
    payload: Dict[str, Any]
    timestamp: float = 0.0

    def to_dict(self) -> dict:
        return {
            'type': self.msg_type.value,
            'seq': self.seq_num,
            'timestamp': self.timestamp,
            'payload': self.payload
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'ProtocolMessage':
        return cls(
            msg_type=MessageType(data['type']),
            seq_num=data.get('seq', 0),
            payload=data.get('payload') or {},
            timestamp=data.get('timestamp', 0.0)
        )


class Protocol:
    """Protocol handler with versioning"""

    def __init__(self, version: str = PROTOCOL_VERSION):
        self.version = version
        self.sequence_number = 0

    def is_compatible(self, peer_version: str) -> bool:
        """Peers interoperate when major versions match"""
        try:
            return peer_version.split('.')[0] == self.version.split('.')[0]
        except AttributeError:
            return False

    def create_message(self, msg_type: MessageType, payload: Dict) -> ProtocolMessage:
        """Create a request with the next sequence number"""
        self.sequence_number += 1

        return ProtocolMessage(
            msg_type=msg_type,
            seq_num=self.sequence_number,
            payload=payload,
            timestamp=time.time()
        )

    def create_reply(self, request: ProtocolMessage, payload: Dict) -> ProtocolMessage:
        return ProtocolMessage(
            msg_type=MessageType.RESPONSE,
            seq_num=request.seq_num,
            payload=payload,
            timestamp=time.time()
        )

    def create_error(self, request: ProtocolMessage, error: str) -> ProtocolMessage:
        return ProtocolMessage(
            msg_type=MessageType.ERROR,
            seq_num=request.seq_num,
            payload={'error': error},
            timestamp=time.time()
        )
