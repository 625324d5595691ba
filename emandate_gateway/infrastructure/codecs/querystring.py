"""Flat mapping <-> query string codec used as the plaintext of encrypted payloads"""

from typing import Any, Dict, Mapping, Optional
from urllib.parse import parse_qsl, urlencode

NULL_TOKEN = "null"


def to_query_string(payload: Mapping[str, Any]) -> str:
    """
    Serialize a flat mapping as `key=value&key=value`.

    None becomes the literal "null"; keys and values are percent-encoded.
    """
    pairs = [(str(key), NULL_TOKEN if value is None else str(value)) for key, value in payload.items()]
    return urlencode(pairs)


def parse_query_string(text: str) -> Dict[str, Optional[str]]:
    """Inverse of to_query_string; a repeated key keeps its last value"""
    result: Dict[str, Optional[str]] = {}
    for key, value in parse_qsl(text, keep_blank_values=True):
        result[key] = None if value == NULL_TOKEN else value
    return result
