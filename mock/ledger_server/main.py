from datetime import date
from pathlib import Path
import json
import os
import re
from typing import Optional
from urllib.parse import parse_qs

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

app = FastAPI(title="Mock Ledger Server", version="1.0.0")
# Support both local development and Docker
DATA_DIR = Path("/ledger_stub") if os.path.exists("/ledger_stub") else Path(__file__).resolve().parents[1] / "ledger_stub"

ENDPOINTS = {
    "Contacts": "contacts.json",
    "Invoices": "invoices.json",
    "Payments": "payments.json",
    "CreditNotes": "credit_notes.json",
    "Overpayments": "overpayments.json",
    "Prepayments": "prepayments.json",
}

REVOKED_REFRESH_TOKEN = "revoked"
_WHERE_DATE = re.compile(r"Date\s*>=\s*DateTime\((\d{4}),\s*(\d{1,2}),\s*(\d{1,2})\)")


def _load(endpoint: str) -> list:
    return json.loads((DATA_DIR / ENDPOINTS[endpoint]).read_text())


def _apply_where(records: list, where: Optional[str]) -> list:
    if not where:
        return records
    match = _WHERE_DATE.search(where)
    if not match:
        raise HTTPException(status_code=400, detail="unsupported where clause")
    lower = date(*(int(part) for part in match.groups()))
    return [r for r in records if date.fromisoformat(r["Date"][:10]) >= lower]


@app.get("/health")
def health(): return {"status": "ok"}


@app.get("/api.xro/2.0/{endpoint}")
def list_endpoint(
    endpoint: str,
    page: int = Query(1, ge=1),
    pageSize: int = Query(100, ge=1, le=1000),
    where: Optional[str] = None,
    authorization: Optional[str] = Header(None),
    xero_tenant_id: Optional[str] = Header(None),
):
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="unauthorized")
    if not xero_tenant_id:
        raise HTTPException(status_code=403, detail="tenant header missing")
    if endpoint not in ENDPOINTS:
        raise HTTPException(status_code=404, detail="unknown endpoint")

    records = _apply_where(_load(endpoint), where)
    start = (page - 1) * pageSize
    return JSONResponse(
        content={endpoint: records[start:start + pageSize]},
        headers={"X-MinLimit-Remaining": "59", "X-DayLimit-Remaining": "4999"},
    )


@app.post("/connect/token")
async def token(request: Request):
    form = parse_qs((await request.body()).decode())
    grant_type = form.get("grant_type", [""])[0]
    refresh_token = form.get("refresh_token", [""])[0]
    if grant_type != "refresh_token" or refresh_token == REVOKED_REFRESH_TOKEN:
        return JSONResponse(status_code=400, content={"error": "invalid_grant"})
    return {
        "access_token": f"access-{refresh_token}",
        "refresh_token": f"{refresh_token}-rotated",
        "expires_in": 1800,
        "token_type": "Bearer",
    }
