# trust_engine/schemas.py
import os
import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from web3 import Web3

from trust_engine.addresses import is_valid_address

HASH_RE = re.compile(r"^[a-fA-F0-9]{64}$")

MAX_USER_ID_LENGTH = 200
MAX_METADATA_LENGTH = 500
MAX_FILE_SIZE = 100 * 1024 * 1024  # 100MB
MAX_FILE_NAME_LENGTH = 255

WHITELISTED_EXTENSIONS = {
    ".txt", ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".odt", ".ods", ".odp", ".csv", ".rtf",
    ".html", ".htm", ".xml", ".json", ".md", ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".ico", ".svg",
    ".mp3", ".wav", ".mp4", ".mov", ".avi", ".webm", ".ogg", ".zip", ".rar", ".tar", ".gz", ".7z",
}
SUSPICIOUS_NAMES = [
    re.compile(r"^(con|prn|aux|nul|com[1-9]|lpt[1-9])$", re.IGNORECASE),
    re.compile(r"^\."),
    re.compile(r"\.\."),
]


def check_address(value: str) -> str:
    if not is_valid_address(value):
        raise ValueError("Invalid wallet address format. Must be a valid 0x-prefixed address.")
    return Web3.to_checksum_address(value)


def check_hash(value: str) -> str:
    if not HASH_RE.match(value):
        raise ValueError("Must be a 32-byte hex string (64 characters)")
    return value.lower()


class WalletType(str, Enum):
    STANDARD = "standard"
    CUSTODIAL = "custodial"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FileMetadata(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    file_name: str = Field(min_length=1, max_length=MAX_FILE_NAME_LENGTH)
    file_size: int = Field(ge=0, le=MAX_FILE_SIZE)
    mime_type: str = Field(min_length=1)

    @field_validator("file_name")
    @classmethod
    def _safe_name(cls, v: str) -> str:
        base, ext = os.path.splitext(v)
        if ext.lower() not in WHITELISTED_EXTENSIONS:
            raise ValueError(f"File extension {ext or '(none)'} not allowed.")
        for pattern in SUSPICIOUS_NAMES:
            if pattern.search(base):
                raise ValueError(f"Invalid filename pattern detected: {v}")
        return v


class RegisterIn(CamelModel):
    content_title: str = Field(min_length=1)
    wallet_address: str
    wallet_type: WalletType
    content_hash: str
    claim_hash: Optional[str] = None
    metadata: Optional[str] = Field(default=None, max_length=MAX_METADATA_LENGTH)
    file_metadata: FileMetadata
    return_action_link: bool = False

    @field_validator("wallet_address")
    @classmethod
    def _address(cls, v: str) -> str:
        return check_address(v)

    @field_validator("content_hash", "claim_hash")
    @classmethod
    def _hashes(cls, v: Optional[str]) -> Optional[str]:
        return check_hash(v) if v is not None else v

    @model_validator(mode="after")
    def _action_link_needs_standard_wallet(self):
        if self.return_action_link and self.wallet_type is WalletType.CUSTODIAL:
            raise ValueError("returnActionLink is only available for standard wallets")
        return self


class SearchIn(CamelModel):
    content_hash: str
    wallet_address: Optional[str] = None

    @field_validator("content_hash")
    @classmethod
    def _hash(cls, v: str) -> str:
        return check_hash(v)

    @field_validator("wallet_address")
    @classmethod
    def _address(cls, v: Optional[str]) -> Optional[str]:
        return check_address(v) if v is not None else v


class LinkWalletIn(CamelModel):
    user_id: str = Field(alias="userID", min_length=1, max_length=MAX_USER_ID_LENGTH)
    wallet_address: str

    @field_validator("wallet_address")
    @classmethod
    def _address(cls, v: str) -> str:
        return check_address(v)


class CreateWalletIn(CamelModel):
    user_id: str = Field(alias="userID", min_length=1, max_length=MAX_USER_ID_LENGTH)


class ValidatorDataIn(CamelModel):
    wallet_address: str

    @field_validator("wallet_address")
    @classmethod
    def _address(cls, v: str) -> str:
        return check_address(v)


class TransactionIn(BaseModel):
    transaction: str = Field(min_length=1)
