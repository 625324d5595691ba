"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, Request

from emandate_gateway.config import Settings, settings
from emandate_gateway.infrastructure.clients.gateway import GatewayClient
from emandate_gateway.infrastructure.codecs.registry import PayloadCodec


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_settings() -> Settings:
    """Provide application settings"""
    return settings


def get_gateway_client(config: Settings = Depends(get_settings)) -> GatewayClient:
    """Provide payment gateway client instance"""
    return GatewayClient(
        base_url=config.gateway_base_url,
        api_key=config.gateway_api_key,
        callback_base_url=config.base_url,
        timeout=config.http_timeout_seconds,
    )


def get_payload_codec(config: Settings = Depends(get_settings)) -> PayloadCodec:
    """Provide the versioned payload codec built from configured keys"""
    return PayloadCodec.from_settings(config)
