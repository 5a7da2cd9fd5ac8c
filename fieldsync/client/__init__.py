from .client import RemoteSyncClient, RemoteError

__all__ = [
    'RemoteSyncClient',
    'RemoteError'
]
