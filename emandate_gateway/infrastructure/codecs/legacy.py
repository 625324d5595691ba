"""Legacy AES-128-CBC codec for the gateway query-string channel"""

import base64
import binascii
import logging
from urllib.parse import quote, unquote

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from emandate_gateway.domain.exceptions import CodecConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

# Characters encodeURIComponent leaves untouched
URI_COMPONENT_SAFE = "-_.!~*'()"


class LegacyAESCodec:
    """
    Fixed key/IV AES-128-CBC with PKCS7 padding.

    Wire format: percent-encoded base64 of the ciphertext. The scheme has no
    integrity protection and is kept byte-compatible with the gateway.
    """

    version = "v1"
    block_size = 16

    def __init__(self, key: str, iv: str):
        self._key = (key or "").encode("utf-8")
        self._iv = (iv or "").encode("utf-8")

    def _cipher(self) -> Cipher:
        if len(self._key) != self.block_size or len(self._iv) != self.block_size:
            raise CodecConfigurationError("Invalid key or IV length. Must be 16 bytes.")
        return Cipher(algorithms.AES(self._key), modes.CBC(self._iv))

    def encrypt(self, plaintext: str) -> str:
        cipher = self._cipher()

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = cipher.encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        encoded = base64.b64encode(ciphertext).decode("ascii")
        return quote(encoded, safe=URI_COMPONENT_SAFE)

    def decrypt(self, wire: str) -> str:
        cipher = self._cipher()

        try:
            ciphertext = base64.b64decode(unquote(wire or "").strip(), validate=True)
            if not ciphertext or len(ciphertext) % self.block_size:
                raise ValueError("ciphertext is not a whole number of blocks")

            decryptor = cipher.decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except (ValueError, binascii.Error) as e:
            logger.warning("Legacy payload decryption failed", extra={"error": str(e)})
            raise DecryptionError("Decryption error") from e
