"""Fordefi client — hands serialized messages to the custody vault for signing and broadcast.

Uses the create-and-wait endpoint: the call returns once the vault has
signed (and pushed) the transaction, or with an error state.
"""

import json
import time
from dataclasses import dataclass
from typing import Optional

import httpx
from cryptography.hazmat.primitives.asymmetric import ec
from loguru import logger

from signer import sign_payload

FAILED_STATES = {
    "aborted",
    "error_signing",
    "error_pushing_to_blockchain",
    "stuck",
    "dropped",
    "mined_reverted",
}


@dataclass
class SubmissionResult:
    accepted: bool
    reference: str = ""           # Fordefi transaction id
    signature: Optional[str] = None  # on-chain tx signature, when Fordefi reports one
    error_detail: Optional[str] = None


def build_request_body(vault_id: str, serialized_message: str) -> dict:
    return {
        "vault_id": vault_id,
        "signer_type": "api_signer",
        "sign_mode": "auto",
        "type": "solana_transaction",
        "details": {
            "fee": {
                "type": "priority",
                "priority_level": "medium",
            },
            "type": "solana_serialized_transaction_message",
            "push_mode": "auto",
            "data": serialized_message,
            "chain": "solana_mainnet",
        },
        "wait_for_state": "signed",
    }


def _error_detail(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}: {resp.text[:200]}"
    detail = data.get("detail") or data.get("title") or data.get("message") or data
    return f"HTTP {resp.status_code}: {detail}"


class FordefiClient:
    def __init__(
        self,
        api_url: str,
        api_path: str,
        access_token: str,
        vault_id: str,
        private_key: ec.EllipticCurvePrivateKey,
        timeout: float = 60.0,
    ):
        self.api_path = api_path
        self.vault_id = vault_id
        self._private_key = private_key
        self._client = httpx.AsyncClient(
            base_url=api_url,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=httpx.Timeout(timeout),
        )

    async def close(self):
        await self._client.aclose()

    def signed_headers(self, body: str, timestamp_ms: int) -> dict:
        signature = sign_payload(f"{self.api_path}|{timestamp_ms}|{body}", self._private_key)
        return {
            "Content-Type": "application/json",
            "x-signature": signature,
            "x-timestamp": str(timestamp_ms),
        }

    async def submit(self, serialized_message: str, label: str = "") -> SubmissionResult:
        body = json.dumps(
            build_request_body(self.vault_id, serialized_message), separators=(",", ":")
        )
        headers = self.signed_headers(body, int(time.time() * 1000))

        logger.info(f"Sending '{label}' payload to Fordefi...")
        try:
            resp = await self._client.post(self.api_path, content=body, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Fordefi request failed for '{label}': {e}")
            return SubmissionResult(accepted=False, error_detail=f"{type(e).__name__}: {e}")

        if resp.status_code >= 400:
            detail = _error_detail(resp)
            logger.error(f"Fordefi rejected '{label}': {detail}")
            return SubmissionResult(accepted=False, error_detail=detail)

        data = resp.json()
        tx_id = str(data.get("id", ""))
        state = data.get("state", "")
        signature = data.get("hash") or None
        logger.debug(f"Fordefi response for '{label}': id={tx_id} state={state}")

        if state in FAILED_STATES:
            return SubmissionResult(
                accepted=False, reference=tx_id, signature=signature,
                error_detail=f"state={state}",
            )

        logger.info(f"Fordefi accepted '{label}': id={tx_id} state={state}")
        return SubmissionResult(accepted=True, reference=tx_id, signature=signature)
