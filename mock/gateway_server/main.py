from typing import Any, Dict

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import RedirectResponse
import os

app = FastAPI(title="Mock Mandate Gateway", version="1.0.0")
API_KEY = os.environ.get("MOCK_GATEWAY_API_KEY", "test-api-key")
BANK_BASE_URL = os.environ.get("MOCK_BANK_BASE_URL", "http://localhost:8001/bank/authorise/")

MANDATES: Dict[str, Dict[str, Any]] = {}


def _check_key(api_key: str | None):
    if api_key != API_KEY:
        raise HTTPException(status_code=401, detail="invalid api-key")


@app.get("/health")
def health(): return {"status": "ok"}


@app.post("/mandate/create-mandate/")
async def create_mandate(request: Request, api_key: str | None = Header(None, alias="api-key")):
    _check_key(api_key)
    body = await request.json()
    consumer_id = body.get("consumer_id")
    if not consumer_id or not body.get("max_amount"):
        raise HTTPException(status_code=400, detail="consumer_id and max_amount are required")

    MANDATES[consumer_id] = {**body, "registration_status": "PENDING"}
    return {"status": "SUCCESS", "bank_details_url": f"{BANK_BASE_URL}{consumer_id}"}


@app.get("/bank/authorise/{consumer_id}")
def authorise(consumer_id: str, approve: bool = True):
    """Payer finishes at the bank; the gateway calls back the merchant service"""
    mandate = MANDATES.get(consumer_id)
    if mandate is None:
        raise HTTPException(status_code=404, detail="mandate not found")

    mandate["registration_status"] = "ACTIVE" if approve else "REJECTED"
    mandate["umrn"] = f"UMRN{consumer_id}" if approve else None
    return RedirectResponse(f"{mandate['redirect_url']}{consumer_id}", status_code=302)


@app.post("/mandate/mandate-enquiry/")
async def mandate_enquiry(request: Request, api_key: str | None = Header(None, alias="api-key")):
    _check_key(api_key)
    consumer_id = (await request.json()).get("consumer_id")
    mandate = MANDATES.get(consumer_id)
    if mandate is None:
        raise HTTPException(status_code=404, detail="mandate not found")

    approved = mandate["registration_status"] == "ACTIVE"
    return {
        "status": "SUCCESS",
        "result": {
            "consumer_id": consumer_id,
            "registration_status": mandate["registration_status"],
            "bank_status_message": "Mandate approved" if approved else "Mandate not approved",
            "start_date": mandate["start_date"],
            "end_date": mandate["end_date"],
            "max_amount": mandate["max_amount"],
            "purpose": mandate["purpose"],
            "frequency": mandate["frequency"],
            "account_number": "XXXXXXXX4321" if approved else None,
            "account_type": "SAVINGS" if approved else None,
            "account_holder_name": mandate["customer_name"],
            "bank_name": "Mock Bank" if approved else None,
            "ifsc_code": "MOCK0000001" if approved else None,
            "umrn": mandate.get("umrn"),
        },
    }
