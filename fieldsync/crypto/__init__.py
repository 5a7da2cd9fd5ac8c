from .cipher import PayloadCipher, CipherError

__all__ = [
    'PayloadCipher',
    'CipherError'
]
