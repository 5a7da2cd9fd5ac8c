from .records import Record
from .repository import FileRepository

__all__ = [
    'Record',
    'FileRepository'
]
