import hashlib
import secrets
from typing import Union
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
import logging

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
TAG_SIZE = 16


class CipherError(Exception):
    """Ciphertext could not be authenticated or decoded"""


class PayloadCipher:
    """
    AES-GCM encryption of sync payloads
    Shared by the wire transport and the local file store
    """

    def __init__(self, secret: bytes, context: bytes = b'fieldsync-aes-key'):
        if not secret:
            raise ValueError("secret must not be empty")
        self.context = context
        self.key = self._derive_key(secret)

    @classmethod
    def from_passphrase(cls, passphrase: Union[str, bytes], **kwargs) -> 'PayloadCipher':
        if isinstance(passphrase, str):
            passphrase = passphrase.encode('utf-8')
        return cls(hashlib.sha256(passphrase).digest(), **kwargs)

    def _derive_key(self, secret: bytes) -> bytes:
        """Derive AES key from the shared secret using HKDF"""
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=None,
            info=self.context
        )
        return hkdf.derive(secret)

    def encrypt(self, plaintext: bytes) -> bytes:
        """Encrypt data with AES-GCM; output is nonce + tag + ciphertext"""
        nonce = secrets.token_bytes(NONCE_SIZE)
        encryptor = Cipher(algorithms.AES(self.key), modes.GCM(nonce)).encryptor()
        ciphertext = encryptor.update(plaintext) + encryptor.finalize()
        return nonce + encryptor.tag + ciphertext

    def decrypt(self, bundle: bytes) -> bytes:
        """Decrypt and authenticate an AES-GCM bundle"""
        if len(bundle) < NONCE_SIZE + TAG_SIZE:
            raise CipherError("Ciphertext too short")

        nonce = bundle[:NONCE_SIZE]
        tag = bundle[NONCE_SIZE:NONCE_SIZE + TAG_SIZE]
        ciphertext = bundle[NONCE_SIZE + TAG_SIZE:]

        decryptor = Cipher(algorithms.AES(self.key), modes.GCM(nonce, tag)).decryptor()
        try:
            return decryptor.update(ciphertext) + decryptor.finalize()
        except InvalidTag:
            raise CipherError("Ciphertext failed authentication") from None
