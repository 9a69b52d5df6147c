# trust_engine/envelope.py
"""
Sponsored transaction envelope.

Clients never broadcast directly: they sign the envelope digest and the
sponsor wraps the envelope in a `Forwarder.execute` transaction it pays for.
On the wire the envelope is JSON, base64-encoded.
"""
import base64
import binascii
import json
from typing import List, Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from hexbytes import HexBytes
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel
from web3 import Web3

from trust_engine.addresses import is_valid_address
from trust_engine.errors import ValidationError


def _checksum(value: str) -> str:
    if not is_valid_address(value):
        raise ValueError("Must be a valid address")
    return Web3.to_checksum_address(value)


class Call(BaseModel):
    """A single instruction: one call into a ledger program."""

    to: str
    value: int = Field(default=0, ge=0)
    data: str = "0x"

    @field_validator("to")
    @classmethod
    def _checksum_to(cls, v: str) -> str:
        return _checksum(v)

    @field_validator("data")
    @classmethod
    def _hex_data(cls, v: str) -> str:
        if not v.startswith("0x"):
            raise ValueError("Calldata must be 0x-prefixed hex")
        try:
            bytes.fromhex(v[2:])
        except ValueError:
            raise ValueError("Calldata must be 0x-prefixed hex")
        return v.lower()

    def hash(self) -> bytes:
        return Web3.solidity_keccak(["address", "uint256", "bytes"], [self.to, self.value, HexBytes(self.data)])


class SponsoredTransaction(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    forwarder: str
    chain_id: int
    sender: str
    sponsor: str
    nonce: int = Field(ge=0)
    deadline: int
    gas: int = Field(gt=0)
    gas_price: int = Field(ge=0)
    calls: List[Call] = Field(min_length=1)
    signature: Optional[str] = None

    @field_validator("forwarder", "sender", "sponsor")
    @classmethod
    def _checksum_addresses(cls, v: str) -> str:
        return _checksum(v)

    def digest(self) -> bytes:
        """
        Packed keccak over (forwarder, chainId, sender, nonce, deadline, callsHash).
        Gas parameters are advisory and stay outside the digest.
        """
        calls_hash = Web3.keccak(b"".join(bytes(c.hash()) for c in self.calls))
        return bytes(Web3.solidity_keccak(
            ["address", "uint256", "address", "uint256", "uint256", "bytes32"],
            [self.forwarder, self.chain_id, self.sender, self.nonce, self.deadline, calls_hash],
        ))

    def signer(self) -> Optional[str]:
        """Recover the address that personal-signed the digest, if signed."""
        if not self.signature:
            return None
        try:
            recovered = Account.recover_message(encode_defunct(primitive=self.digest()), signature=self.signature)
        except Exception as e:
            raise ValidationError(
                "Signature verification failed",
                [{"field": "transaction.signature", "type": "invalid_signature", "message": str(e)}],
            ) from e
        return Web3.to_checksum_address(recovered)

    def to_base64(self) -> str:
        return base64.b64encode(self.model_dump_json(by_alias=True).encode("utf-8")).decode("ascii")

    @classmethod
    def from_base64(cls, payload: str) -> "SponsoredTransaction":
        try:
            raw = base64.b64decode(payload, validate=True)
            return cls.model_validate(json.loads(raw))
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ValidationError(
                "The transaction could not be decoded.",
                [{"field": "transaction", "type": "invalid_format", "message": f"Must be a base64-encoded transaction: {e}"}],
            )
        except PydanticValidationError as e:
            errors = [
                {"field": "transaction." + ".".join(str(p) for p in err["loc"]), "type": err["type"], "message": err["msg"]}
                for err in e.errors()
            ]
            raise ValidationError("The transaction is malformed.", errors)
