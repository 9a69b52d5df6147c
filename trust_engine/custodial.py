# trust_engine/custodial.py
import logging
from typing import Optional

import requests

from trust_engine.errors import UpstreamServiceError

log = logging.getLogger("custodial")


class CustodialError(UpstreamServiceError):
    pass


class CustodialWalletClient:
    """
    REST client for the custodial wallet provider. The provider holds the keys;
    we only ask it to create wallets and to sign envelope digests.
    """

    def __init__(self, base_url: str, api_key: Optional[str], timeout: int = 30,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings) -> "CustodialWalletClient":
        return cls(settings.CUSTODIAL_API_URL, settings.CUSTODIAL_API_KEY, timeout=settings.CUSTODIAL_TIMEOUT)

    def _post(self, path: str, body: dict) -> dict:
        if not self.api_key:
            raise CustodialError("Custodial provider API key (CUSTODIAL_API_KEY) is not configured")
        headers = {"X-API-KEY": self.api_key, "Content-Type": "application/json"}
        try:
            res = self.session.post(f"{self.base_url}{path}", json=body, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise CustodialError(f"Custodial provider request failed: {e}") from e
        if not res.ok:
            raise CustodialError(f"Custodial provider error: {res.status_code} - {res.text}", status=res.status_code)
        try:
            return res.json()
        except ValueError as e:
            raise CustodialError(f"Custodial provider returned an unreadable response: {e}") from e

    def create_wallet(self, user_id: str) -> str:
        res = self._post("/wallets", {
            "chainType": "evm",
            "type": "smart",
            "config": {"adminSigner": {"type": "api-key"}},
            "linkedUser": f"userId:{user_id}",
        })
        address = res.get("address")
        if not address:
            raise CustodialError("Custodial provider did not return a wallet address")
        log.info("Created custodial wallet %s", address)
        return address

    def sign_digest(self, wallet: str, digest: bytes) -> str:
        """Ask the provider to personal-sign `digest` with `wallet`'s key."""
        res = self._post(f"/wallets/{wallet}/signatures", {
            "type": "evm-message",
            "params": {"message": "0x" + digest.hex()},
        })
        signature = res.get("outputSignature") or res.get("signature")
        if not signature:
            raise CustodialError("Custodial provider did not return a signature")
        return signature
