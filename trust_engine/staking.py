# trust_engine/staking.py
from datetime import datetime, timezone
from typing import Any, Dict

from trust_engine.addresses import validator_address
from trust_engine.blockchain import AccountNotFound
from trust_engine.errors import ConflictError


def accuracy_percentage(honest_votes: int, total_votes: int):
    """Share of honest votes, or None before the validator has voted."""
    if total_votes <= 0:
        return None
    return round(honest_votes / total_votes * 100, 2)


def validator_summary(ledger, wallet: str) -> Dict[str, Any]:
    key = validator_address(ledger.staking_address, wallet)
    try:
        account = ledger.fetch_validator(key)
    except AccountNotFound:
        raise ConflictError("Validator account not found. This validator may not be initialized.", {
            "walletAddress": wallet,
            "expectedAddress": key,
            "suggestion": "Initialize the validator with the staking program first.",
        })

    last_active = int(account["lastActiveTime"])
    return {
        "validatorAddress": account["validator"],
        "validatorAccount": key,
        "stakedAmount": int(account["stakedAmount"]),
        "reputationScore": int(account["reputationScore"]),
        "totalVotes": int(account["totalVotes"]),
        "honestVotes": int(account["honestVotes"]),
        "dishonestVotes": int(account["dishonestVotes"]),
        "accuracyPercentage": accuracy_percentage(int(account["honestVotes"]), int(account["totalVotes"])),
        "lastActiveTime": last_active,
        "lastActiveDate": (
            datetime.fromtimestamp(last_active, tz=timezone.utc).isoformat().replace("+00:00", "Z")
            if last_active > 0 else "Never"
        ),
    }
