"""Versioned payload codec: one entry point for every encrypted channel"""

import re
from typing import Any, Dict, Mapping, Optional, Protocol

from emandate_gateway.config import Settings
from emandate_gateway.domain.exceptions import DecryptionError
from emandate_gateway.infrastructure.codecs.authenticated import HMAC_SIZE, IV_SIZE, AuthenticatedCodec
from emandate_gateway.infrastructure.codecs.legacy import LegacyAESCodec
from emandate_gateway.infrastructure.codecs.querystring import parse_query_string, to_query_string

LEGACY = LegacyAESCodec.version
AUTHENTICATED = AuthenticatedCodec.version

_AUTHENTICATED_WIRE = re.compile(r"(?:[0-9A-F]{2}){%d,}" % (HMAC_SIZE + IV_SIZE))


class TextCodec(Protocol):
    version: str

    def encrypt(self, plaintext: str) -> str: ...

    def decrypt(self, wire: str) -> str: ...


class PayloadCodec:
    """Encode flat mappings as encrypted query strings under a named scheme"""

    def __init__(self, *codecs: TextCodec):
        self._codecs: Dict[str, TextCodec] = {codec.version: codec for codec in codecs}

    @classmethod
    def from_settings(cls, settings: Settings) -> "PayloadCodec":
        return cls(
            LegacyAESCodec(settings.auth_key, settings.auth_iv),
            AuthenticatedCodec(settings.api_aes_key, settings.api_hmac_key),
        )

    def codec(self, version: str) -> TextCodec:
        try:
            return self._codecs[version]
        except KeyError:
            raise ValueError(f"Unknown codec version: {version}") from None

    def detect_version(self, wire: str) -> str:
        """Upper-case hex long enough to hold HMAC and IV is the authenticated scheme"""
        if _AUTHENTICATED_WIRE.fullmatch((wire or "").strip()):
            return AUTHENTICATED
        return LEGACY

    def encode(self, version: str, payload: Mapping[str, Any]) -> str:
        return self.codec(version).encrypt(to_query_string(payload))

    def decode(self, wire: str, version: Optional[str] = None) -> Dict[str, Optional[str]]:
        if not wire:
            raise DecryptionError("Encrypted payload is missing")
        codec = self.codec(version or self.detect_version(wire))
        return parse_query_string(codec.decrypt(wire))
