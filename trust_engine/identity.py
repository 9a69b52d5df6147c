# trust_engine/identity.py
"""
One external user id <-> one wallet.

The identity program keeps the relation under two derived keys, one per
direction. A new link is only attempted when both keys are free; the program
itself rejects a duplicate if two requests race past the check.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from web3 import Web3

from trust_engine.addresses import is_valid_address, user_id_relation_address, wallet_relation_address
from trust_engine.blockchain import AccountNotFound
from trust_engine.custodial import CustodialError
from trust_engine.errors import ConflictError, ValidationError
from trust_engine.schemas import MAX_USER_ID_LENGTH

log = logging.getLogger("identity")

RELATION_REQUIREMENT = "User-Key Relation"


def _iso(ts: int) -> str:
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).isoformat().replace("+00:00", "Z")


class IdentityLinker:

    def __init__(self, ledger, custodial=None):
        self.ledger = ledger
        self.custodial = custodial

    def _fetch(self, address: str) -> Optional[Dict[str, Any]]:
        try:
            return self.ledger.fetch_relation(address)
        except AccountNotFound:
            return None

    def _user_id_key(self, user_id: str) -> str:
        return user_id_relation_address(self.ledger.identity_address, user_id)

    def _wallet_key(self, wallet: str) -> str:
        return wallet_relation_address(self.ledger.identity_address, wallet)

    def _check_user_id_free(self, user_id: str) -> None:
        existing = self._fetch(self._user_id_key(user_id))
        if existing is not None:
            log.warning("User ID %s is already linked to %s", user_id, existing["wallet"])
            raise ConflictError(f"A wallet is already associated with the User ID: {user_id}.", {
                "conflictType": "User ID already linked",
                "userID": user_id,
                "existingWallet": existing["wallet"],
                "suggestion": "Use a different User ID or unlink the existing wallet first",
            })

    def _check_wallet_free(self, wallet: str) -> None:
        existing = self._fetch(self._wallet_key(wallet))
        if existing is not None:
            log.warning("Wallet %s is already linked to %s", wallet, existing["userId"])
            raise ConflictError(f"This wallet address is already linked to a User ID: {existing['userId']}.", {
                "conflictType": "Wallet already linked",
                "walletAddress": wallet,
                "existingUserID": existing["userId"],
                "suggestion": "Use a different wallet address or unlink the existing relation first",
            })

    def link(self, user_id: str, wallet: str) -> Dict[str, Any]:
        errors = []
        if not isinstance(user_id, str) or not user_id:
            errors.append({"field": "userID", "type": "missing", "message": "User ID is required"})
        elif len(user_id) > MAX_USER_ID_LENGTH:
            errors.append({"field": "userID", "type": "string_too_long",
                           "message": f"User ID is too long. A maximum of {MAX_USER_ID_LENGTH} characters is allowed."})
        if not is_valid_address(wallet):
            errors.append({"field": "walletAddress", "type": "invalid_format", "message": "Invalid wallet address format."})
        if errors:
            raise ValidationError("Input validation failed", errors)
        wallet = Web3.to_checksum_address(wallet)

        self._check_user_id_free(user_id)
        self._check_wallet_free(wallet)

        log.info("Linking user %s to wallet %s", user_id, wallet)
        signature = self.ledger.store_user_key_relation(user_id, wallet)
        return {
            "userID": user_id,
            "walletAddress": wallet,
            "transactionSignature": signature,
            "explorerUrl": self.ledger.tx_url(signature),
        }

    def find(self, user_id: Optional[str] = None, wallet: Optional[str] = None) -> Dict[str, Any]:
        if bool(user_id) == bool(wallet):
            raise ValidationError(
                "Please provide exactly one of `userID` or `walletAddress`, but not both.",
                details={
                    "provided": {
                        "userID": "provided" if user_id else "not provided",
                        "walletAddress": "provided" if wallet else "not provided",
                    },
                    "requirement": "Exactly one of userID or walletAddress must be provided",
                },
            )
        if user_id:
            search_type, search_value = "userID", user_id
            key = self._user_id_key(user_id)
        else:
            if not is_valid_address(wallet):
                raise ValidationError("Invalid wallet address format.", [
                    {"field": "walletAddress", "type": "invalid_format", "message": "Not a valid address"},
                ])
            search_type, search_value = "walletAddress", wallet
            key = self._wallet_key(wallet)

        relation = self._fetch(key)
        if relation is None:
            log.warning("No relation found for %s: %s", search_type, search_value)
            other = "wallet address" if search_type == "userID" else "user ID"
            raise ConflictError(f"No wallet relation found for the provided {search_type}.", {
                "searchType": search_type,
                "searchValue": search_value,
                "suggestion": f"Try using the {other} instead, or create a new relation using /link-wallet",
            })
        return {
            "searchType": search_type,
            "searchValue": search_value,
            "relation": {
                "userId": relation["userId"],
                "walletAddress": relation["wallet"],
                "createdAt": _iso(relation["createdAt"]),
                "relationAddress": key,
            },
        }

    def require_wallet_relation(self, wallet: str) -> Dict[str, Any]:
        relation = self._fetch(self._wallet_key(wallet))
        if relation is None:
            log.warning("No user-key relation found for wallet %s", wallet)
            raise ConflictError("This wallet address doesn't have a user ID relation. Please create one first.", {
                "missingRequirement": RELATION_REQUIREMENT,
                "walletAddress": wallet,
                "suggestion": "Use the /link-wallet endpoint to link your wallet to a user ID first",
                "alternative": "Use the /create-wallet endpoint to create a new wallet with automatic user ID linking",
                "findExisting": "Use the /find-wallet endpoint to check if a relation already exists",
            })
        return relation

    def lookup_user_id(self, wallet: str) -> Optional[str]:
        relation = self._fetch(self._wallet_key(wallet))
        return relation["userId"] if relation else None

    def create_wallet(self, user_id: str) -> Dict[str, Any]:
        if self.custodial is None:
            raise RuntimeError("No custodial wallet provider configured")
        self._check_user_id_free(user_id)
        wallet = self.custodial.create_wallet(user_id)
        if not is_valid_address(wallet):
            raise CustodialError(f"Custodial provider returned an invalid wallet address: {wallet!r}")
        linked = self.link(user_id, wallet)
        return {
            "walletAddress": linked["walletAddress"],
            "userID": user_id,
            "transactionSignature": linked["transactionSignature"],
            "explorerUrl": linked["explorerUrl"],
        }
