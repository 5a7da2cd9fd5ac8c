from .protocol import Protocol, MessageType, ProtocolMessage, PROTOCOL_VERSION
from .transport import MessageTransport

__all__ = [
    'Protocol',
    'MessageType',
    'ProtocolMessage',
    'PROTOCOL_VERSION',
    'MessageTransport'
]
