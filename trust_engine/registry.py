# trust_engine/registry.py
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from trust_engine.addresses import registration_address
from trust_engine.blockchain import AccountNotFound
from trust_engine.dispatcher import SubmissionResult, select_mode
from trust_engine.errors import ConflictError
from trust_engine.guards import account_exists
from trust_engine.schemas import RegisterIn

log = logging.getLogger("registry")

ZERO_HASH = b"\x00" * 32


class ContentRegistrar:
    """
    Registers a content fingerprint for a creator wallet.

    Ordering matters: the duplicate and prerequisite checks come first, then the
    metadata upload, and only with a CID in hand is the ledger instruction
    built. A failure at any step leaves nothing on the ledger, so the caller
    may simply retry.
    """

    def __init__(self, ledger, linker, storage, dispatcher, clock=time.time):
        self.ledger = ledger
        self.linker = linker
        self.storage = storage
        self.dispatcher = dispatcher
        self.clock = clock

    def register(self, req: RegisterIn) -> SubmissionResult:
        mode = select_mode(req.wallet_type, req.return_action_link)
        content_hash = bytes.fromhex(req.content_hash)
        claim_hash = bytes.fromhex(req.claim_hash) if req.claim_hash else ZERO_HASH

        reg_address = registration_address(self.ledger.registry_address, req.wallet_address, content_hash)
        if account_exists(self.ledger.fetch_registration, reg_address):
            log.warning("Content %s is already registered at %s", req.content_hash, reg_address)
            raise ConflictError(
                "Looks like you have already registered this file. Please use the /search endpoint to find the existing record.",
                {
                    "contentHash": req.content_hash,
                    "registrationAddress": reg_address,
                    "suggestion": "Use the /search endpoint to find the existing record.",
                },
            )

        relation = self.linker.require_wallet_relation(req.wallet_address)
        log.info("Registering %r for user %s (wallet %s)", req.content_title, relation["userId"], req.wallet_address)

        file_metadata = req.file_metadata.model_dump(by_alias=True)
        file_metadata["contentTitle"] = req.content_title
        document = {
            "public_metadata": req.metadata or "",
            "file_metadata": file_metadata,
            "content_hash": req.content_hash,
        }
        now = int(self.clock())
        cid = self.storage.upload_json(document, name=f"combined-metadata-{req.content_hash}-{now}.json")

        call = self.ledger.registration_call(req.wallet_address, content_hash, claim_hash, cid, now)
        return self.dispatcher.dispatch(
            mode,
            req.wallet_address,
            [call],
            {
                "contentHash": req.content_hash,
                "registrationAddress": reg_address,
                "ipfsCid": cid,
            },
            content_hash=req.content_hash,
            content_title=req.content_title,
        )

    def search(self, content_hash_hex: str, wallet: Optional[str] = None) -> Dict[str, Any]:
        content_hash = bytes.fromhex(content_hash_hex)
        if wallet:
            search_mode = "content_hash_and_wallet"
            addresses = [registration_address(self.ledger.registry_address, wallet, content_hash)]
        else:
            search_mode = "content_hash_only"
            addresses = self.ledger.registrations_for_content(content_hash)

        matches = []
        for address in addresses:
            try:
                matches.append((address, self.ledger.fetch_registration(address)))
            except AccountNotFound:
                continue

        if not matches:
            criteria = {"searchedContentHash": content_hash_hex, "searchMode": search_mode}
            if wallet:
                criteria["searchedWalletAddress"] = wallet
                message = "No registration found for this content hash and wallet address combination."
            else:
                message = "An on-chain proof for this file does not exist, which means it has not been registered."
            raise ConflictError(message, criteria)

        registrations = [self._present(content_hash_hex, address, account) for address, account in matches]
        if wallet:
            message = "Found the specific registration for this content hash and wallet address."
        else:
            message = f"Found {len(registrations)} registration(s) for this content hash."

        criteria = {"contentHash": content_hash_hex}
        if wallet:
            criteria["walletAddress"] = wallet
        return {
            "searchMode": search_mode,
            "message": message,
            "searchCriteria": criteria,
            "totalResults": len(registrations),
            "registrations": registrations,
        }

    def _present(self, content_hash_hex: str, address: str, account: Dict[str, Any]) -> Dict[str, Any]:
        finalized = bool(account["finalized"])
        return {
            "contentHash": content_hash_hex,
            "registrationAddress": address,
            "ipfsCid": account["storageCid"],
            "registeredBy": account["creator"],
            "userID": self.linker.lookup_user_id(account["creator"]),
            "timestamp": datetime.fromtimestamp(int(account["timestamp"]), tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "validationStatus": "Verified" if finalized else "Pending Verification",
            "consensus": f"{account['consensusPercentage']}%" if finalized else "Pending",
            "voteCounts": {"for": account["votesFor"], "against": account["votesAgainst"]},
            "explorerUrl": self.ledger.address_url(address),
        }
