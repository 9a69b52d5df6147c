# trust_engine/dispatcher.py
import logging
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List

from web3 import Web3

from trust_engine import crud
from trust_engine.envelope import Call, SponsoredTransaction
from trust_engine.errors import ValidationError
from trust_engine.models import iso_utc, utcnow
from trust_engine.schemas import WalletType

log = logging.getLogger("dispatcher")


class SubmissionMode(str, Enum):
    CUSTODIAL_IMMEDIATE = "custodial-immediate"
    CLIENT_DEFERRED = "client-deferred-immediate"
    CLIENT_ACTION_LINK = "client-deferred-token"


def select_mode(wallet_type, return_action_link: bool) -> SubmissionMode:
    wallet_type = WalletType(wallet_type)
    if wallet_type is WalletType.CUSTODIAL:
        if return_action_link:
            raise ValidationError("Input validation failed", [{
                "field": "returnActionLink",
                "type": "invalid_value",
                "message": "returnActionLink is only available for standard wallets",
            }])
        return SubmissionMode.CUSTODIAL_IMMEDIATE
    if return_action_link:
        return SubmissionMode.CLIENT_ACTION_LINK
    return SubmissionMode.CLIENT_DEFERRED


@dataclass
class SubmissionResult:
    status_code: int
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


class SubmissionDispatcher:
    """
    Routes a constructed bundle of calls to completion (custodial wallets) or
    to a handoff point where the client signs out of band.
    """

    def __init__(self, ledger, guard, db, custodial=None, action_link_base_url="", token_ttl=crud.DEFAULT_TOKEN_TTL,
                 clock=time.time):
        self.ledger = ledger
        self.guard = guard
        self.db = db
        self.custodial = custodial
        self.action_link_base_url = action_link_base_url.rstrip("/")
        self.token_ttl = token_ttl
        self.clock = clock

    def dispatch(self, mode: SubmissionMode, sender: str, calls: List[Call],
                 details: Dict[str, Any], content_hash: str = "", content_title: str = None) -> SubmissionResult:
        now = utcnow()
        deadline = None
        if mode is SubmissionMode.CLIENT_ACTION_LINK:
            # the envelope must outlive the link that carries it
            deadline = math.ceil((now + self.token_ttl).timestamp())
        tx = self.ledger.prepare_sponsored(sender, calls, deadline=deadline)

        if mode is SubmissionMode.CUSTODIAL_IMMEDIATE:
            if self.custodial is None:
                raise RuntimeError("No custodial wallet provider configured")
            self.guard.check(tx)
            log.info("Signing via custodial provider for %s", sender)
            tx.signature = self.custodial.sign_digest(sender, tx.digest())
            signature = self.ledger.submit_sponsored(tx)
            log.info("Transaction %s confirmed", signature)
            return SubmissionResult(200, "Success! Your transaction has been submitted and confirmed.", {
                "status": "confirmed",
                "transactionSignature": signature,
                "explorerUrl": self.ledger.tx_url(signature),
                **details,
            })

        if mode is SubmissionMode.CLIENT_DEFERRED:
            return SubmissionResult(202, "Transaction prepared. Please sign and submit via your wallet.", {
                "status": "requires-client-signature",
                "transaction": tx.to_base64(),
                **details,
            })

        if mode is SubmissionMode.CLIENT_ACTION_LINK:
            rec = crud.issue_action_token(
                self.db, tx.to_base64(), sender, content_hash, content_title, ttl=self.token_ttl, now=now,
            )
            log.info("Action link issued for %s, expires %s", sender, rec.expires_at)
            return SubmissionResult(202, "Action link created. Open it to sign the transaction with your wallet.", {
                "status": "action-link-created",
                "actionLink": f"{self.action_link_base_url}/tx-action/{rec.token}",
                "token": rec.token,
                "expiresAt": iso_utc(rec.expires_at),
                **details,
            })

        raise ValueError(f"Unknown submission mode: {mode}")

    def submit_cosigned(self, payload: str) -> Dict[str, Any]:
        """
        Co-sign and submit a client-signed transaction. Every call is checked
        against the allow-list before the sponsor signs anything.
        """
        tx = SponsoredTransaction.from_base64(payload)

        errors = []
        if tx.chain_id != self.ledger.chain_id:
            errors.append({"field": "transaction.chainId", "type": "invalid_value",
                           "message": f"Expected chain {self.ledger.chain_id}"})
        if tx.forwarder != Web3.to_checksum_address(self.ledger.forwarder_address):
            errors.append({"field": "transaction.forwarder", "type": "invalid_value",
                           "message": f"Expected forwarder {self.ledger.forwarder_address}"})
        if errors:
            raise ValidationError("The transaction was built for a different network.", errors)

        if tx.deadline < int(self.clock()):
            raise ValidationError("The transaction has expired. Request a new one and sign it again.", [
                {"field": "transaction.deadline", "type": "expired",
                 "message": f"Deadline {tx.deadline} has passed"},
            ])

        self.guard.check(tx)

        signer = tx.signer()
        if signer is None:
            raise ValidationError("The transaction is missing the sender signature.", [
                {"field": "transaction.signature", "type": "missing", "message": "Sign the transaction before submitting"},
            ])
        if signer != tx.sender:
            raise ValidationError("Signature verification failed", [
                {"field": "transaction.signature", "type": "invalid_signature",
                 "message": f"Signed by {signer}, expected {tx.sender}"},
            ])

        log.info("Co-signing transaction from %s (%d instruction(s))", tx.sender, len(tx.calls))
        signature = self.ledger.submit_sponsored(tx)
        log.info("Transaction %s confirmed", signature)
        return {
            "transactionSignature": signature,
            "explorerUrl": self.ledger.tx_url(signature),
        }
