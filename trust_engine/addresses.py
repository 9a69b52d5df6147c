# trust_engine/addresses.py
"""
Deterministic account addresses.

Every record kept by a ledger program lives under a key derived from the
program address, a fixed tag and the caller's seed values:

    keccak256(0xff ‖ program ‖ tag ‖ seed_1 ‖ ... ‖ seed_n)[12:]

The seed order is part of the on-ledger layout. Reordering the parts yields a
different address and orphans existing records.
"""
from web3 import Web3
from hexbytes import HexBytes

REGISTRATION_TAG = b"content_registration"
USER_ID_TO_WALLET_TAG = b"user_id_to_wallet"
WALLET_TO_USER_ID_TAG = b"wallet_to_user_id"
VALIDATOR_TAG = b"validator"

ZERO_ADDRESS = "0x" + "00" * 20


def is_valid_address(value) -> bool:
    return isinstance(value, str) and Web3.is_address(value)


def address_seed(address: str) -> bytes:
    """20 raw bytes of an address. Raises ValueError on malformed input."""
    if not is_valid_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    return bytes(HexBytes(address))


def text_seed(value: str) -> bytes:
    return value.encode("utf-8")


def derive_address(program: str, tag: bytes, *seed_parts: bytes) -> str:
    for part in (tag,) + seed_parts:
        if not isinstance(part, (bytes, bytearray)):
            raise TypeError(f"Seed parts must be bytes, got {type(part).__name__}")
    digest = Web3.keccak(b"\xff" + address_seed(program) + bytes(tag) + b"".join(bytes(p) for p in seed_parts))
    return Web3.to_checksum_address(digest[12:])


def registration_address(registry: str, creator: str, content_hash: bytes) -> str:
    return derive_address(registry, REGISTRATION_TAG, address_seed(creator), content_hash)


def user_id_relation_address(identity: str, user_id: str) -> str:
    return derive_address(identity, USER_ID_TO_WALLET_TAG, text_seed(user_id))


def wallet_relation_address(identity: str, wallet: str) -> str:
    return derive_address(identity, WALLET_TO_USER_ID_TAG, address_seed(wallet))


def validator_address(staking: str, wallet: str) -> str:
    return derive_address(staking, VALIDATOR_TAG, address_seed(wallet))
