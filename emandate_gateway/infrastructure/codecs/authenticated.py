"""Authenticated AES-256 + HMAC-SHA384 codec for the external API channel"""

import base64
import binascii
import hashlib
import hmac
import logging
import os

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from emandate_gateway.domain.exceptions import CodecConfigurationError, DecryptionError, IntegrityError

logger = logging.getLogger(__name__)

HMAC_SIZE = 48  # SHA-384 digest
IV_SIZE = 12
AES_KEY_SIZE = 32


class AuthenticatedCodec:
    """
    Encrypt-then-MAC codec.

    Wire format (upper-case hex): HMAC-SHA384(IV || C) || IV || C

    C is the AES-256-GCM ciphertext of the UTF-8 plaintext without associated
    data; the GCM tag is not transmitted, the HMAC carries integrity.
    """

    version = "v2"

    def __init__(self, aes_key_b64: str, hmac_key_b64: str):
        self._aes_key_b64 = aes_key_b64 or ""
        self._hmac_key_b64 = hmac_key_b64 or ""

    def _keys(self) -> tuple[bytes, bytes]:
        try:
            aes_key = base64.b64decode(self._aes_key_b64, validate=True)
            hmac_key = base64.b64decode(self._hmac_key_b64, validate=True)
        except binascii.Error as e:
            raise CodecConfigurationError("API keys must be base64 encoded") from e

        if len(aes_key) != AES_KEY_SIZE:
            raise CodecConfigurationError("API AES key must decode to 32 bytes")
        if not hmac_key:
            raise CodecConfigurationError("API HMAC key is not configured")
        return aes_key, hmac_key

    @staticmethod
    def _keystream(aes_key: bytes, iv: bytes) -> Cipher:
        # GCM payload encryption for a 96-bit IV is CTR starting at block J0 + 1
        return Cipher(algorithms.AES(aes_key), modes.CTR(iv + b"\x00\x00\x00\x02"))

    @staticmethod
    def _sign(hmac_key: bytes, data: bytes) -> bytes:
        return hmac.new(hmac_key, data, hashlib.sha384).digest()

    def encrypt(self, plaintext: str) -> str:
        aes_key, hmac_key = self._keys()
        iv = os.urandom(IV_SIZE)

        encryptor = self._keystream(aes_key, iv).encryptor()
        ciphertext = encryptor.update(plaintext.encode("utf-8")) + encryptor.finalize()

        tag = self._sign(hmac_key, iv + ciphertext)
        return (tag + iv + ciphertext).hex().upper()

    def decrypt(self, wire: str) -> str:
        aes_key, hmac_key = self._keys()

        try:
            raw = bytes.fromhex((wire or "").strip())
        except ValueError as e:
            raise DecryptionError("Encrypted payload is not valid hex") from e

        if len(raw) < HMAC_SIZE + IV_SIZE:
            raise DecryptionError("Encrypted payload is too short")

        received_tag = raw[:HMAC_SIZE]
        signed = raw[HMAC_SIZE:]

        if not hmac.compare_digest(self._sign(hmac_key, signed), received_tag):
            logger.warning("Rejected payload with invalid HMAC")
            raise IntegrityError("Payload integrity check failed")

        iv, ciphertext = signed[:IV_SIZE], signed[IV_SIZE:]
        decryptor = self._keystream(aes_key, iv).decryptor()
        plaintext = decryptor.update(ciphertext) + decryptor.finalize()

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted payload is not valid UTF-8") from e
