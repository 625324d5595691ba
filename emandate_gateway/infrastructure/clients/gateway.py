"""Payment gateway HTTP client for mandate registration and enquiry"""

import logging
from decimal import Decimal
from typing import Any, Dict

import httpx

from emandate_gateway.config import settings
from emandate_gateway.domain.exceptions import GatewayError
from emandate_gateway.domain.models import EnquiryResult, MandateRequest
from emandate_gateway.infrastructure.observability.metrics import gateway_failures_counter, gateway_latency_histogram

logger = logging.getLogger(__name__)

ENQUIRY_FIELDS = (
    "registration_status",
    "bank_status_message",
    "start_date",
    "end_date",
    "max_amount",
    "purpose",
    "frequency",
    "account_number",
    "account_type",
    "account_holder_name",
    "bank_name",
    "ifsc_code",
    "umrn",
)


def _money(value: Decimal) -> str:
    return f"{Decimal(value):.2f}"


class GatewayClient:
    """Client for the external mandate gateway API"""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        callback_base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.gateway_base_url
        self.api_key = api_key if api_key is not None else settings.gateway_api_key
        self.callback_base_url = callback_base_url or settings.base_url
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    def _url(self, path: str) -> str:
        return self.base_url.rstrip("/") + "/" + path

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a JSON payload to the gateway.

        Raises:
            GatewayError: On timeout, HTTP errors, or a non-JSON response
        """
        headers = {"api-key": self.api_key, "Content-Type": "application/json"}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                with gateway_latency_histogram.labels(endpoint=path).time():
                    response = await client.post(self._url(path), json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
            except httpx.TimeoutException as e:
                gateway_failures_counter.labels(endpoint=path).inc()
                raise GatewayError(f"Gateway timeout after {self.timeout}s") from e
            except httpx.HTTPStatusError as e:
                gateway_failures_counter.labels(endpoint=path).inc()
                raise GatewayError(f"Gateway error: {e.response.status_code}") from e
            except httpx.RequestError as e:
                gateway_failures_counter.labels(endpoint=path).inc()
                raise GatewayError(f"Gateway unreachable: {e}") from e
            except ValueError as e:
                gateway_failures_counter.labels(endpoint=path).inc()
                raise GatewayError("Gateway returned a non-JSON response") from e

        if not isinstance(data, dict):
            gateway_failures_counter.labels(endpoint=path).inc()
            raise GatewayError("Gateway returned an unexpected response shape")
        return data

    async def create_mandate(self, request: MandateRequest) -> Dict[str, Any]:
        """Register a mandate; the response carries the bank authorisation URL"""
        payload = {
            "consumer_id": request.consumer_id,
            "customer_name": request.customer.name,
            "customer_mobile": request.customer.mobile,
            "customer_email_id": request.customer.email,
            "start_date": request.start_date.isoformat(),
            "end_date": request.end_date.isoformat(),
            "max_amount": _money(request.max_amount),
            "frequency": request.frequency,
            "purpose": request.purpose,
            "mandate_category": request.mandate_category,
            "client_code": request.client_code,
            "redirect_url": self.callback_base_url.rstrip("/") + "/v1/mandate/web-hook/",
            "customer_type": "pg",
            "amount_type": "Fixed",
            "until_cancel": 0,
            "emi_amount": _money(request.max_amount),
        }
        logger.info(
            "Sending create mandate request",
            extra={"consumer_id": request.consumer_id, "client_code": request.client_code},
        )

        data = await self._post("mandate/create-mandate/", payload)
        if not data.get("bank_details_url"):
            gateway_failures_counter.labels(endpoint="mandate/create-mandate/").inc()
            raise GatewayError("Gateway response is missing bank_details_url")
        return data

    async def mandate_enquiry(self, consumer_id: str) -> EnquiryResult:
        """Fetch the registration status of a mandate by consumer id"""
        logger.info("Sending mandate enquiry request", extra={"consumer_id": consumer_id})

        data = await self._post("mandate/mandate-enquiry/", {"consumer_id": consumer_id})
        result = data.get("result")
        if not isinstance(result, dict) or not result.get("consumer_id"):
            gateway_failures_counter.labels(endpoint="mandate/mandate-enquiry/").inc()
            raise GatewayError("Gateway enquiry response is missing result.consumer_id")

        return EnquiryResult(
            consumer_id=str(result["consumer_id"]),
            raw=result,
            **{name: result.get(name) for name in ENQUIRY_FIELDS},
        )
