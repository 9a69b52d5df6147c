import time

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from fastapi.testclient import TestClient
from web3 import Web3

from trust_engine.addresses import registration_address, user_id_relation_address, wallet_relation_address
from trust_engine.blockchain import AccountNotFound, LedgerError
from trust_engine.envelope import Call, SponsoredTransaction
from trust_engine.main import create_app
from trust_engine.pinata import StorageError
from trust_engine.services import build_services
from trust_engine.settings import Settings

REGISTRY = Web3.to_checksum_address("0x" + "11" * 20)
IDENTITY = Web3.to_checksum_address("0x" + "22" * 20)
STAKING = Web3.to_checksum_address("0x" + "33" * 20)
FORWARDER = Web3.to_checksum_address("0x" + "44" * 20)


class FakeLedger:
    """In-memory stand-in for the ledger programs."""

    chain_id = 31337
    registry_address = REGISTRY
    identity_address = IDENTITY
    staking_address = STAKING
    forwarder_address = FORWARDER

    def __init__(self):
        self.registrations = {}
        self.relations = {}
        self.validators = {}
        self.content_index = {}
        self.pending = {}
        self.nonces = {}
        self.submitted = []
        self.relation_writes = []
        self.sponsor = Account.create()
        self.fail_reads = False
        self.tx_count = 0

    def _read(self, table, address):
        if self.fail_reads:
            raise LedgerError("Ledger read failed: connection refused")
        try:
            return table[address]
        except KeyError:
            raise AccountNotFound(address)

    def fetch_registration(self, address):
        return self._read(self.registrations, address)

    def fetch_relation(self, address):
        return self._read(self.relations, address)

    def fetch_validator(self, address):
        return self._read(self.validators, address)

    def registrations_for_content(self, content_hash):
        return list(self.content_index.get(content_hash, []))

    def registration_call(self, creator, content_hash, claim_hash, storage_cid, timestamp):
        data = "0x" + bytes.fromhex(creator[2:]).hex() + content_hash.hex()
        self.pending[data] = {
            "creator": creator,
            "contentHash": content_hash,
            "claimHash": claim_hash,
            "storageCid": storage_cid,
            "timestamp": timestamp,
            "finalized": False,
            "consensusPercentage": 0,
            "votesFor": 0,
            "votesAgainst": 0,
        }
        return Call(to=self.registry_address, data=data)

    def prepare_sponsored(self, sender, calls, deadline=None):
        return SponsoredTransaction(
            forwarder=self.forwarder_address,
            chain_id=self.chain_id,
            sender=sender,
            sponsor=self.sponsor.address,
            nonce=self.nonces.get(sender, 0),
            deadline=deadline if deadline is not None else int(time.time()) + 3600,
            gas=800000,
            gas_price=1000000000,
            calls=calls,
        )

    def submit_sponsored(self, tx):
        self.submitted.append(tx)
        self.nonces[tx.sender] = tx.nonce + 1
        for call in tx.calls:
            record = self.pending.pop(call.data, None)
            if record is not None:
                self.add_registration(record)
        return self._tx_hash()

    def store_user_key_relation(self, user_id, wallet):
        record = {"userId": user_id, "wallet": wallet, "createdAt": 1700000000}
        self.relations[user_id_relation_address(IDENTITY, user_id)] = record
        self.relations[wallet_relation_address(IDENTITY, wallet)] = record
        self.relation_writes.append((user_id, wallet))
        return self._tx_hash()

    def add_registration(self, record):
        key = registration_address(REGISTRY, record["creator"], record["contentHash"])
        self.registrations[key] = record
        self.content_index.setdefault(record["contentHash"], []).append(key)
        return key

    def _tx_hash(self):
        self.tx_count += 1
        return "0x%064x" % self.tx_count

    def tx_url(self, tx_hash):
        return f"https://explorer.test/tx/{tx_hash}"

    def address_url(self, address):
        return f"https://explorer.test/address/{address}"


class FakeStorage:

    def __init__(self):
        self.documents = []
        self.fail = False

    def upload_json(self, data, name):
        if self.fail:
            raise StorageError("Pinata JSON upload failed: 503 - service unavailable", status=503)
        self.documents.append((name, data))
        return "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzd%d" % len(self.documents)


class FakeCustodial:

    def __init__(self):
        self.accounts = {}

    def add(self, account):
        self.accounts[account.address] = account

    def create_wallet(self, user_id):
        account = Account.create()
        self.add(account)
        return account.address

    def sign_digest(self, wallet, digest):
        signed = Account.sign_message(encode_defunct(primitive=digest), private_key=self.accounts[wallet].key)
        return Web3.to_hex(signed.signature)


def sign(tx, account):
    signed = Account.sign_message(encode_defunct(primitive=tx.digest()), private_key=account.key)
    tx.signature = Web3.to_hex(signed.signature)
    return tx


def register_body(wallet, content_hash="ab" * 32, **overrides):
    body = {
        "contentTitle": "Quarterly report",
        "walletAddress": wallet,
        "walletType": "standard",
        "contentHash": content_hash,
        "fileMetadata": {"fileName": "report.pdf", "fileSize": 2048, "mimeType": "application/pdf"},
    }
    body.update(overrides)
    return body


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def custodial():
    return FakeCustodial()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        REGISTRY_ADDRESS=REGISTRY,
        IDENTITY_ADDRESS=IDENTITY,
        STAKING_ADDRESS=STAKING,
        FORWARDER_ADDRESS=FORWARDER,
        DATABASE_URL=f"sqlite:///{tmp_path / 'tokens.db'}",
        ACTION_LINK_BASE_URL="https://app.test",
        TOKEN_EXPIRY_CHECK_MINUTES=0,
    )


@pytest.fixture
def services(settings, ledger, storage, custodial):
    svc = build_services(settings, ledger=ledger, storage=storage, custodial=custodial)
    svc.db.init()
    yield svc
    svc.db.close()


@pytest.fixture
def client(services):
    with TestClient(create_app(services)) as c:
        yield c


@pytest.fixture
def wallet():
    return Account.create()


@pytest.fixture
def linked_wallet(ledger, wallet):
    ledger.store_user_key_relation("user-1", wallet.address)
    return wallet
