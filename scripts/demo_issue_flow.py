"""Demo: issue, verify and revoke a certificate using FastAPI TestClient.

A throwaway secp256k1 key plays the issuer's browser wallet.

Run with:
    python scripts/demo_issue_flow.py
"""

from __future__ import annotations

import asyncio
import os

from fastapi.testclient import TestClient

from certify.crypto.signing import LocalKeySigner


def sign(wallet: LocalKeySigner, message: str) -> str:
    return asyncio.run(wallet.sign(message.encode("utf-8")))


def main() -> None:
    wallet = LocalKeySigner.generate()
    # Settings are read on import, so authorize the demo wallet first.
    os.environ["AUTHORIZED_ISSUERS"] = wallet.get_address()
    from certify.main import app

    client = TestClient(app)
    print(f"issuer wallet: {wallet.get_address()}")

    # ── Step 1: wallet sign-in ──────────────────────────────────────
    r = client.post("/v1/auth/challenge", json={"address": wallet.get_address()})
    challenge = r.json()
    r = client.post(
        "/v1/auth/wallet",
        json={
            "address": wallet.get_address(),
            "nonce": challenge["nonce"],
            "signature": sign(wallet, challenge["message"]),
        },
    )
    token = r.json()["access_token"]
    auth = {"Authorization": f"Bearer {token}"}
    print(f"1. POST /v1/auth/wallet           → {r.status_code}  roles={r.json()['roles']}")

    # ── Step 2: prepare ─────────────────────────────────────────────
    draft = {
        "name": "Ada Lovelace",
        "recipient_address": "0x" + "ab" * 20,
        "issuer_name": "Analytical Engine Institute",
        "certificate_type": "Diploma",
        "category": "academic",
        "sub_category": "mathematics",
        "metadata": {"course": "Numerical Methods", "grade": "A", "gpa": 3.9},
    }
    r = client.post("/v1/certificates/prepare", json=draft, headers=auth)
    prepared = r.json()
    print(f"2. POST /v1/certificates/prepare  → {r.status_code}  fingerprint={prepared['fingerprint'][:18]}…")

    # ── Step 3: wallet signs, issue ─────────────────────────────────
    body = {
        **draft,
        "id": prepared["id"],
        "issue_date": prepared["issue_date"],
        "content_ref": prepared["content_ref"],
        "signature": sign(wallet, prepared["message"]),
    }
    r = client.post("/v1/certificates", json=body, headers=auth)
    cert_id = r.json()["id"]
    print(f"3. POST /v1/certificates          → {r.status_code}  id={cert_id}")

    # ── Step 4: verify ──────────────────────────────────────────────
    r = client.get(f"/v1/certificates/{cert_id}/verify")
    print(f"4. GET  …/verify                  → {r.status_code}  {r.json()['outcome']}")

    # ── Step 5: revoke, verify again ────────────────────────────────
    r = client.patch(
        f"/v1/certificates/{cert_id}/revoke",
        json={"reason": "issued in error"},
        headers=auth,
    )
    print(f"5. PATCH …/revoke                 → {r.status_code}  status={r.json()['status']}")
    r = client.get(f"/v1/certificates/{cert_id}/verify")
    print(f"6. GET  …/verify                  → {r.status_code}  {r.json()['message']}")

    print("\nAll steps completed.")


if __name__ == "__main__":
    main()
