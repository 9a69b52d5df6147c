import time

import pytest

from conftest import REGISTRY
from trust_engine import crud
from trust_engine.dispatcher import SubmissionMode, select_mode
from trust_engine.envelope import Call, SponsoredTransaction
from trust_engine.errors import ValidationError


@pytest.mark.parametrize("wallet_type,action_link,mode", [
    ("custodial", False, SubmissionMode.CUSTODIAL_IMMEDIATE),
    ("standard", False, SubmissionMode.CLIENT_DEFERRED),
    ("standard", True, SubmissionMode.CLIENT_ACTION_LINK),
])
def test_select_mode(wallet_type, action_link, mode):
    assert select_mode(wallet_type, action_link) is mode


def test_custodial_action_link_never_falls_back():
    with pytest.raises(ValidationError):
        select_mode("custodial", True)


def test_unknown_wallet_type_is_rejected():
    with pytest.raises(ValueError):
        select_mode("hardware", False)


def test_custodial_mode_signs_and_confirms(services, ledger, custodial, wallet):
    custodial.add(wallet)
    result = services.dispatcher.dispatch(
        SubmissionMode.CUSTODIAL_IMMEDIATE, wallet.address, [Call(to=REGISTRY, data="0x01")], {"extra": 1},
    )
    assert result.status_code == 200
    assert result.details["status"] == "confirmed"
    assert result.details["extra"] == 1
    assert ledger.submitted[0].signer() == wallet.address


def test_deferred_mode_returns_unsigned_transaction(services, ledger, wallet):
    result = services.dispatcher.dispatch(
        SubmissionMode.CLIENT_DEFERRED, wallet.address, [Call(to=REGISTRY, data="0x01")], {},
    )
    assert result.status_code == 202
    assert result.details["status"] == "requires-client-signature"
    tx = SponsoredTransaction.from_base64(result.details["transaction"])
    assert tx.sender == wallet.address
    assert tx.signature is None
    assert tx.gas_price > 0
    assert ledger.submitted == []


def test_action_link_mode_persists_token(services, ledger, wallet):
    result = services.dispatcher.dispatch(
        SubmissionMode.CLIENT_ACTION_LINK, wallet.address, [Call(to=REGISTRY, data="0x01")], {},
        content_hash="ab" * 32, content_title="Report",
    )
    assert result.status_code == 202
    assert result.details["status"] == "action-link-created"
    token = result.details["token"]
    assert result.details["actionLink"] == f"https://app.test/tx-action/{token}"
    rec = crud.get_action_token(services.db, token)
    assert rec.creator_address == wallet.address
    assert SponsoredTransaction.from_base64(rec.unsigned_transaction).sender == wallet.address
    assert ledger.submitted == []


def test_action_link_envelope_outlives_its_token(services, wallet):
    result = services.dispatcher.dispatch(
        SubmissionMode.CLIENT_ACTION_LINK, wallet.address, [Call(to=REGISTRY, data="0x01")], {},
    )
    rec = crud.redeem_action_token(services.db, result.details["token"])
    tx = SponsoredTransaction.from_base64(rec.unsigned_transaction)
    assert tx.deadline >= rec.expires_at.timestamp()
    assert tx.deadline - time.time() > 23 * 3600


def test_deferred_envelope_keeps_the_short_deadline(services, wallet):
    result = services.dispatcher.dispatch(
        SubmissionMode.CLIENT_DEFERRED, wallet.address, [Call(to=REGISTRY, data="0x01")], {},
    )
    tx = SponsoredTransaction.from_base64(result.details["transaction"])
    assert tx.deadline - time.time() <= 3600
