# trust_engine/pinata.py
import json
import logging
from typing import Dict, Optional

import requests

from trust_engine.errors import UpstreamServiceError

log = logging.getLogger("pinata")

PINATA_BASE_URL = "https://api.pinata.cloud"


class StorageError(UpstreamServiceError):
    pass


class PinataClient:
    """Content-addressed storage for registration metadata documents."""

    def __init__(
        self,
        jwt: Optional[str] = None,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        base_url: str = PINATA_BASE_URL,
        timeout: int = 60,
        session: Optional[requests.Session] = None,
    ):
        self.jwt = jwt
        self.api_key = api_key
        self.api_secret = api_secret
        self.pin_json_url = f"{base_url.rstrip('/')}/pinning/pinJSONToIPFS"
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings) -> "PinataClient":
        return cls(
            jwt=settings.PINATA_JWT,
            api_key=settings.PINATA_API_KEY,
            api_secret=settings.PINATA_API_SECRET,
            timeout=settings.STORAGE_TIMEOUT,
        )

    def _auth_headers(self) -> Dict[str, str]:
        """
        Build authorization headers for Pinata.
        """
        headers = {}
        if self.jwt:
            headers["Authorization"] = f"Bearer {self.jwt}"
        elif self.api_key and self.api_secret:
            headers["pinata_api_key"] = self.api_key
            headers["pinata_secret_api_key"] = self.api_secret
        else:
            raise StorageError("Pinata credentials not configured properly in .env")
        return headers

    def pin_json(self, data: dict, metadata: Optional[dict] = None) -> dict:
        """
        Pins JSON data to Pinata and returns the API JSON response.
        """
        headers = self._auth_headers()
        headers["Content-Type"] = "application/json"

        payload = {"pinataContent": data}
        if metadata:
            payload["pinataMetadata"] = metadata

        try:
            res = self.session.post(self.pin_json_url, headers=headers, data=json.dumps(payload), timeout=self.timeout)
        except requests.RequestException as e:
            raise StorageError(f"Pinata JSON upload failed: {e}") from e

        if not res.ok:
            raise StorageError(f"Pinata JSON upload failed: {res.status_code} - {res.text}", status=res.status_code)
        try:
            return res.json()
        except ValueError as e:
            raise StorageError(f"Pinata returned an unreadable response: {e}") from e

    def upload_json(self, data: dict, name: str) -> str:
        """Pin `data` and return its CID. Never returns without a CID."""
        res = self.pin_json(data, metadata={"name": name})
        cid = res.get("IpfsHash") or res.get("ipfsHash")
        if not cid:
            raise StorageError("Pinata did not return CID")
        log.info("Pinned %s as %s", name, cid)
        return cid
