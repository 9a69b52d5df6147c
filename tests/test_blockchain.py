import pytest
import requests
from eth_account import Account
from hexbytes import HexBytes
from web3.exceptions import ContractLogicError

from conftest import FORWARDER, IDENTITY, REGISTRY, STAKING, sign
from test_envelope import make_tx
from trust_engine.addresses import ZERO_ADDRESS
from trust_engine.blockchain import AccountNotFound, LedgerClient, LedgerError
from trust_engine.envelope import Call

TX_HASH = HexBytes(b"\xab" * 32)


class StubFunction:

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.args = None
        self.params = None

    def call(self):
        if self.error is not None:
            raise self.error
        return self.result

    def build_transaction(self, params):
        self.params = params
        return dict(params, to=FORWARDER, value=0, data="0x")


class StubFunctions:

    def __init__(self):
        self.results = {}

    def __getattr__(self, name):
        def bind(*args):
            fn = self.results[name]
            fn.args = args
            return fn
        return bind


class StubContract:

    def __init__(self):
        self.functions = StubFunctions()


class StubEth:
    account = Account

    def __init__(self):
        self.contracts = {}
        self.gas_price = 7
        self.receipt_status = 1
        self.sent = []

    def contract(self, address, abi):
        return self.contracts.setdefault(address, StubContract())

    def get_transaction_count(self, address):
        return 3

    def send_raw_transaction(self, raw):
        self.sent.append(raw)
        return TX_HASH

    def wait_for_transaction_receipt(self, tx_hash, timeout):
        return {"status": self.receipt_status}


class StubWeb3:

    def __init__(self):
        self.eth = StubEth()


@pytest.fixture
def w3():
    return StubWeb3()


@pytest.fixture
def sponsor():
    return Account.create()


@pytest.fixture
def ledger_client(w3, sponsor):
    return LedgerClient(
        w3, REGISTRY, IDENTITY, STAKING, FORWARDER,
        sponsor_key=sponsor.key, gas_limit=500000, explorer_url="https://explorer.test/",
    )


def stub(w3, program, name, **kwargs):
    fn = StubFunction(**kwargs)
    w3.eth.contracts[program].functions.results[name] = fn
    return fn


def relation_values(wallet):
    return ("alice", wallet, 1700000000)


def test_fetch_returns_named_record(ledger_client, w3):
    wallet = Account.create().address
    stub(w3, IDENTITY, "getRelation", result=relation_values(wallet))
    assert ledger_client.fetch_relation(REGISTRY) == {"userId": "alice", "wallet": wallet, "createdAt": 1700000000}


def test_zero_owner_means_absent(ledger_client, w3):
    stub(w3, IDENTITY, "getRelation", result=relation_values(ZERO_ADDRESS))
    with pytest.raises(AccountNotFound):
        ledger_client.fetch_relation(REGISTRY)


@pytest.mark.parametrize("error", [
    ContractLogicError("execution reverted"),
    requests.ConnectionError("connection refused"),
])
def test_read_failures_are_never_absence(ledger_client, w3, error):
    stub(w3, STAKING, "getValidator", error=error)
    with pytest.raises(LedgerError) as exc:
        ledger_client.fetch_validator(REGISTRY)
    assert not isinstance(exc.value, AccountNotFound)
    assert exc.value.status_code == 500


def test_prepare_sponsored_reads_nonce_and_gas_price(ledger_client, w3, sponsor):
    sender = Account.create().address
    stub(w3, FORWARDER, "getNonce", result=5)
    tx = ledger_client.prepare_sponsored(sender.lower(), [Call(to=REGISTRY, data="0x01")], deadline=2000000000)
    assert tx.sender == sender
    assert tx.sponsor == sponsor.address
    assert (tx.nonce, tx.gas_price, tx.gas, tx.deadline) == (5, 7, 500000, 2000000000)


def test_submit_sponsored_returns_hash_on_success(ledger_client, w3, sponsor):
    client = Account.create()
    execute = stub(w3, FORWARDER, "execute")
    tx = sign(make_tx(client.address, gas=900000), client)

    assert ledger_client.submit_sponsored(tx) == "0x" + "ab" * 32
    assert execute.params["from"] == sponsor.address
    assert execute.params["gas"] == 500000
    assert execute.params["gasPrice"] == 7
    request, signature = execute.args
    assert request[0] == client.address
    assert signature == HexBytes(tx.signature)
    assert len(w3.eth.sent) == 1
    assert ledger_client.tx_url("0x1") == "https://explorer.test/tx/0x1"


def test_reverted_submission_raises(ledger_client, w3):
    client = Account.create()
    stub(w3, FORWARDER, "execute")
    w3.eth.receipt_status = 0
    with pytest.raises(LedgerError, match="reverted"):
        ledger_client.submit_sponsored(sign(make_tx(client.address), client))


def test_writes_need_a_sponsor_key(w3):
    client = LedgerClient(w3, REGISTRY, IDENTITY, STAKING, FORWARDER)
    stub(w3, IDENTITY, "storeUserKeyRelation")
    with pytest.raises(LedgerError):
        client.store_user_key_relation("alice", Account.create().address)
