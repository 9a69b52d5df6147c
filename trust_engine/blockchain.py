# trust_engine/blockchain.py
import json
import logging
import os
import time
from typing import Any, Dict, List, Optional, Sequence

import requests
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import Web3Exception

from trust_engine.addresses import ZERO_ADDRESS
from trust_engine.envelope import Call, SponsoredTransaction
from trust_engine.errors import UpstreamServiceError

log = logging.getLogger("blockchain")

HERE = os.path.dirname(__file__)
ARTIFACTS_DIR = os.path.join(HERE, "artifacts")

REGISTRATION_FIELDS = (
    "creator", "contentHash", "claimHash", "storageCid", "timestamp",
    "finalized", "consensusPercentage", "votesFor", "votesAgainst",
)
RELATION_FIELDS = ("userId", "wallet", "createdAt")
VALIDATOR_FIELDS = (
    "validator", "stakedAmount", "reputationScore", "totalVotes",
    "honestVotes", "dishonestVotes", "lastActiveTime",
)

_TRANSPORT_ERRORS = (Web3Exception, requests.RequestException)


class AccountNotFound(LookupError):
    """The program holds no record under the requested key."""

    def __init__(self, address: str):
        super().__init__(f"No account at {address}")
        self.address = address


class LedgerError(UpstreamServiceError):
    pass


def load_abi(name: str) -> list:
    with open(os.path.join(ARTIFACTS_DIR, f"{name}.json")) as f:
        artifact = json.load(f)
    if isinstance(artifact, dict):
        return artifact.get("abi", [])
    return artifact  # if the file is just the abi array


def _record(fields: Sequence[str], values) -> Dict[str, Any]:
    record = dict(zip(fields, values))
    for key, value in record.items():
        if isinstance(value, (bytes, bytearray)):
            record[key] = bytes(value)
    return record


class LedgerClient:
    """
    Read and write access to the registration, identity, staking and forwarder
    programs. Every network call is single-shot and bounded by the provider
    timeout; nothing here retries.
    """

    def __init__(
        self,
        w3: Web3,
        registry_address: str,
        identity_address: str,
        staking_address: str,
        forwarder_address: str,
        sponsor_key: Optional[str] = None,
        chain_id: int = 31337,
        gas_limit: int = 800000,
        confirm_timeout: int = 120,
        sponsored_ttl: int = 3600,
        explorer_url: str = "https://etherscan.io",
    ):
        self.w3 = w3
        self.chain_id = int(chain_id)
        self.registry_address = Web3.to_checksum_address(registry_address)
        self.identity_address = Web3.to_checksum_address(identity_address)
        self.staking_address = Web3.to_checksum_address(staking_address)
        self.forwarder_address = Web3.to_checksum_address(forwarder_address)
        self.registry = w3.eth.contract(address=self.registry_address, abi=load_abi("Registry"))
        self.identity = w3.eth.contract(address=self.identity_address, abi=load_abi("Identity"))
        self.staking = w3.eth.contract(address=self.staking_address, abi=load_abi("Staking"))
        self.forwarder = w3.eth.contract(address=self.forwarder_address, abi=load_abi("Forwarder"))
        self._sponsor_key = sponsor_key
        self._sponsor = w3.eth.account.from_key(sponsor_key) if sponsor_key else None
        self.gas_limit = gas_limit
        self.confirm_timeout = confirm_timeout
        self.sponsored_ttl = sponsored_ttl
        self.explorer_url = explorer_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings) -> "LedgerClient":
        w3 = Web3(Web3.HTTPProvider(settings.RPC_URL, request_kwargs={"timeout": settings.RPC_TIMEOUT}))
        return cls(
            w3,
            settings.REGISTRY_ADDRESS,
            settings.IDENTITY_ADDRESS,
            settings.STAKING_ADDRESS,
            settings.FORWARDER_ADDRESS,
            sponsor_key=settings.SPONSOR_PK,
            chain_id=settings.CHAIN_ID,
            gas_limit=settings.SPONSOR_GAS_LIMIT,
            confirm_timeout=settings.CONFIRM_TIMEOUT,
            sponsored_ttl=settings.SPONSORED_TX_TTL_SECONDS,
            explorer_url=settings.EXPLORER_URL,
        )

    @property
    def sponsor_address(self) -> str:
        if self._sponsor is None:
            raise LedgerError("Sponsor key (SPONSOR_PK) is not configured")
        return self._sponsor.address

    # ---------- reads ----------

    def _rpc(self, what: str, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except _TRANSPORT_ERRORS as e:
            log.error("Ledger %s failed: %s", what, e)
            raise LedgerError(f"Ledger {what} failed: {e}") from e

    def _fetch(self, what: str, call, fields, owner_field: str, address: str) -> Dict[str, Any]:
        values = self._rpc(what, call.call)
        record = _record(fields, values)
        if record[owner_field] == ZERO_ADDRESS:
            raise AccountNotFound(address)
        return record

    def fetch_registration(self, address: str) -> Dict[str, Any]:
        call = self.registry.functions.getRegistration(Web3.to_checksum_address(address))
        return self._fetch("registration read", call, REGISTRATION_FIELDS, "creator", address)

    def fetch_relation(self, address: str) -> Dict[str, Any]:
        call = self.identity.functions.getRelation(Web3.to_checksum_address(address))
        return self._fetch("relation read", call, RELATION_FIELDS, "wallet", address)

    def fetch_validator(self, address: str) -> Dict[str, Any]:
        call = self.staking.functions.getValidator(Web3.to_checksum_address(address))
        return self._fetch("validator read", call, VALIDATOR_FIELDS, "validator", address)

    def registrations_for_content(self, content_hash: bytes) -> List[str]:
        call = self.registry.functions.registrationsForContent(HexBytes(content_hash))
        return [Web3.to_checksum_address(a) for a in self._rpc("registration search", call.call)]

    # ---------- instruction construction ----------

    def registration_call(self, creator, content_hash: bytes, claim_hash: bytes, storage_cid: str, timestamp: int) -> Call:
        data = self.registry.encode_abi(
            "submitRegistration",
            args=[Web3.to_checksum_address(creator), HexBytes(content_hash), HexBytes(claim_hash), storage_cid, int(timestamp)],
        )
        return Call(to=self.registry_address, data=data)

    def prepare_sponsored(self, sender: str, calls: List[Call], deadline: Optional[int] = None) -> SponsoredTransaction:
        """
        Build the unsigned envelope for `sender`, carrying the forwarder nonce
        and the current gas price so the client wallet can display the cost.
        The deadline defaults to now + SPONSORED_TX_TTL_SECONDS.
        """
        sender = Web3.to_checksum_address(sender)
        nonce = self._rpc("nonce read", self.forwarder.functions.getNonce(sender).call)
        gas_price = self._rpc("gas price read", lambda: self.w3.eth.gas_price)
        return SponsoredTransaction(
            forwarder=self.forwarder_address,
            chain_id=self.chain_id,
            sender=sender,
            sponsor=self.sponsor_address,
            nonce=int(nonce),
            deadline=deadline if deadline is not None else int(time.time()) + self.sponsored_ttl,
            gas=self.gas_limit,
            gas_price=int(gas_price),
            calls=calls,
        )

    # ---------- writes ----------

    def _send_signed_transaction_and_wait(self, signed_tx):
        """
        Works with both eth-account return shapes:
          - signed_tx.rawTransaction  (older)
          - signed_tx.raw_transaction (newer)
        """
        raw = getattr(signed_tx, "raw_transaction", None) or getattr(signed_tx, "rawTransaction", None)
        if raw is None:
            raise LedgerError("Signed transaction object does not contain raw tx bytes")

        tx_hash = self._rpc("submission", self.w3.eth.send_raw_transaction, raw)
        log.info("Confirming transaction %s", Web3.to_hex(tx_hash))
        receipt = self._rpc(
            "confirmation", self.w3.eth.wait_for_transaction_receipt, tx_hash, timeout=self.confirm_timeout
        )
        if receipt.get("status") != 1:
            raise LedgerError(f"Transaction {Web3.to_hex(tx_hash)} reverted")
        return Web3.to_hex(tx_hash)

    def _transact(self, fn, gas: int) -> str:
        """Sign `fn` as the sponsor, send it, and wait for confirmation."""
        sponsor = self.sponsor_address
        tx = self._rpc("transaction build", fn.build_transaction, {
            "from": sponsor,
            "nonce": self._rpc("nonce read", self.w3.eth.get_transaction_count, sponsor),
            "gas": gas,
            "gasPrice": self._rpc("gas price read", lambda: self.w3.eth.gas_price),
            "chainId": self.chain_id,
        })
        signed = self.w3.eth.account.sign_transaction(tx, private_key=self._sponsor_key)
        return self._send_signed_transaction_and_wait(signed)

    def submit_sponsored(self, tx: SponsoredTransaction) -> str:
        request = (
            tx.sender,
            tx.nonce,
            tx.deadline,
            [(c.to, c.value, HexBytes(c.data)) for c in tx.calls],
        )
        fn = self.forwarder.functions.execute(request, HexBytes(tx.signature))
        return self._transact(fn, gas=min(tx.gas, self.gas_limit))

    def store_user_key_relation(self, user_id: str, wallet: str) -> str:
        fn = self.identity.functions.storeUserKeyRelation(user_id, Web3.to_checksum_address(wallet))
        return self._transact(fn, gas=self.gas_limit)

    # ---------- explorer ----------

    def tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}"

    def address_url(self, address: str) -> str:
        return f"{self.explorer_url}/address/{address}"
