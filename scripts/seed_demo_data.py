#!/usr/bin/env python3
"""
Seed a running backend with a demo procurement round.

Run with backend up: uvicorn procurement.main:app --reload (from backend dir)

Usage:
  python scripts/seed_demo_data.py
  python scripts/seed_demo_data.py --base http://localhost:8000

Creates two vendors, parses one RFP, dispatches it to both vendors and posts one vendor
reply through the inbound webhook, so the dashboard shows a 50% response rate.
Writes: scripts/demo_data.json with the created IDs.
"""

import json
import os
import sys
import urllib.error
import urllib.request
from datetime import datetime, timedelta, timezone
from pathlib import Path

BASE_URL = os.environ.get("API_BASE", "http://localhost:8000").rstrip("/")

VENDORS = [
    {"name": "Acme Hardware", "email": "sales@acme-hardware.example", "category": "Hardware", "contactPerson": "Ann Lee"},
    {"name": "Bolt Computing", "email": "bids@bolt-computing.example", "category": "Hardware", "contactPerson": "Raj Patel"},
]


def request(method: str, path: str, body: dict | None = None, allow: tuple[int, ...] = ()) -> dict | list:
    url = f"{BASE_URL}{path}"
    data = json.dumps(body).encode("utf-8") if body is not None else None
    req = urllib.request.Request(
        url,
        data=data,
        method=method,
        headers={"Content-Type": "application/json"} if data else {},
    )
    try:
        with urllib.request.urlopen(req, timeout=60) as resp:
            return json.loads(resp.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        if e.code in allow:
            return {}
        err_body = e.read().decode("utf-8") if e.fp else ""
        raise SystemExit(f"HTTP {e.code} {path}: {err_body}")
    except urllib.error.URLError as e:
        raise SystemExit(f"Request failed (is the backend running at {BASE_URL}?): {e.reason}")


def ensure_vendors() -> list[dict]:
    for v in VENDORS:
        request("POST", "/vendors", body=v, allow=(409,))
    wanted = {v["email"] for v in VENDORS}
    return [v for v in request("GET", "/vendors") if v["email"] in wanted]


def main() -> None:
    global BASE_URL
    if "--help" in sys.argv or "-h" in sys.argv:
        print(__doc__)
        sys.exit(0)
    for i, arg in enumerate(sys.argv):
        if arg == "--base" and i + 1 < len(sys.argv):
            BASE_URL = sys.argv[i + 1].rstrip("/")
            break

    print(f"Using API base: {BASE_URL}")
    vendors = ensure_vendors()
    print(f"  Vendors: {', '.join(v['name'] for v in vendors)}")

    deadline = (datetime.now(timezone.utc).date() + timedelta(days=30)).isoformat()
    parsed = request("POST", "/rfps/parse", body={
        "description": (
            f"We need 20 laptops with 16GB RAM and 15 monitors. Budget $50,000, delivery by {deadline}, "
            "payment Net 30, 1 year warranty."
        ),
    })
    rfp_id = parsed["rfp"]["id"]
    print(f"  RFP {rfp_id} parsed (category={parsed['rfp']['category']}, {parsed['vendors_count']} matching vendors)")

    vendor_ids = [v["id"] for v in vendors]
    dispatch = request("POST", f"/rfps/{rfp_id}/dispatch", body={"vendorIds": vendor_ids})
    print(f"  Dispatched: {dispatch['successful']} sent, {dispatch['failed']} failed, status={dispatch['rfp_status']}")

    first = vendors[0]
    ack = request("POST", "/proposals/webhook", body={
        "from": f"{first['name']} <{first['email']}>",
        "to": "procurement@example.com",
        "subject": "RE: Request for Proposal - Your Expertise Needed",
        "text": f"Hello, our total price is $42,500 for all items. Delivery by {deadline}. 1 year warranty included.",
    })
    print(f"  Webhook reply: {ack.get('message')} (proposal_id={ack.get('proposal_id')})")

    stats = request("GET", f"/rfps/{rfp_id}/stats")
    print(f"  Response rate: {stats['responseRate']}% ({stats['totalResponses']}/{stats['totalVendorsContacted']})")

    manifest = {
        "base_url": BASE_URL,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "rfp_id": rfp_id,
        "vendor_ids": vendor_ids,
        "proposal_id": ack.get("proposal_id"),
    }
    manifest_path = Path(__file__).resolve().parent / "demo_data.json"
    manifest_path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")
    print(f"  Manifest: {manifest_path}")

    print("\nDone. Next:")
    print(f"  1. GET {BASE_URL}/proposals/rfp/{rfp_id} to see the proposal with its compliance verdict.")
    print(f"  2. Connect a WebSocket client to {BASE_URL.replace('http', 'ws', 1)}/ws and send "
          f'{{"action": "join-rfp", "rfpId": {rfp_id}}} before posting more replies.')


if __name__ == "__main__":
    main()
