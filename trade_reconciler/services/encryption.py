from __future__ import annotations

import hashlib
import hmac
import os
from typing import Optional, Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from trade_reconciler.config import decode_encryption_key
from trade_reconciler.exceptions import EncryptionConfigError

IV_LENGTH = 16
KEY_LENGTH = 32


class FieldCipher:
    """
    AES-256-CBC for individual column values.

    Stored form is "<iv hex>:<ciphertext hex>" with a fresh random IV per
    call, so the same plaintext never encrypts to the same string twice.
    Only the repository layer should hold one of these.
    """

    def __init__(self, key: Union[bytes, str]):
        if isinstance(key, str):
            key = decode_encryption_key(key)
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
            raise EncryptionConfigError(f"encryption key must be {KEY_LENGTH} bytes")
        self._key = bytes(key)

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        if plaintext is None:
            return None
        iv = os.urandom(IV_LENGTH)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        data = padder.update(str(plaintext).encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(data) + encryptor.finalize()
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, token: Optional[str]) -> Optional[str]:
        if token is None:
            return None
        try:
            iv_hex, ct_hex = token.split(":", 1)
            iv = bytes.fromhex(iv_hex)
            ciphertext = bytes.fromhex(ct_hex)
        except ValueError as exc:
            raise ValueError("malformed encrypted value") from exc
        if len(iv) != IV_LENGTH:
            raise ValueError("malformed encrypted value: bad IV length")

        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        data = unpadder.update(padded) + unpadder.finalize()
        return data.decode("utf-8")

    def fingerprint(self, value: str) -> str:
        """Keyed, deterministic digest used to group and delete by account."""
        return hmac.new(self._key, str(value).encode("utf-8"), hashlib.sha256).hexdigest()
