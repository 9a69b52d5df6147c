# trust_engine/guards.py
from typing import Callable, Iterable

from web3 import Web3

from trust_engine.blockchain import AccountNotFound
from trust_engine.envelope import SponsoredTransaction
from trust_engine.errors import UnauthorizedInstructionError


def account_exists(fetch: Callable[[str], object], address: str) -> bool:
    """
    True if `fetch(address)` finds an account. Only a typed not-found counts
    as absence; any other failure propagates to the caller.
    """
    try:
        fetch(address)
    except AccountNotFound:
        return False
    return True


class InstructionGuard:
    """
    Checks a client transaction before the sponsor co-signs it. The sponsor's
    signature pays for and co-authorizes every call in the bundle, so each
    call must target one of our own programs.
    """

    def __init__(self, allowed_programs: Iterable[str]):
        self.allowed_programs = frozenset(Web3.to_checksum_address(p) for p in allowed_programs)

    @classmethod
    def for_ledger(cls, ledger, system_programs: Iterable[str] = ()) -> "InstructionGuard":
        programs = [ledger.registry_address, ledger.identity_address, ledger.staking_address]
        return cls(programs + list(system_programs))

    def check(self, tx: SponsoredTransaction) -> None:
        allowed = sorted(self.allowed_programs)
        for index, call in enumerate(tx.calls):
            program = Web3.to_checksum_address(call.to)
            if program not in self.allowed_programs:
                raise UnauthorizedInstructionError(
                    f"Instruction {index} targets a program that is not authorized for co-signing.",
                    {"unauthorizedProgram": program, "instructionIndex": index, "allowedPrograms": allowed},
                )
            if call.value:
                raise UnauthorizedInstructionError(
                    f"Instruction {index} transfers value, which is never sponsored.",
                    {"unauthorizedProgram": program, "instructionIndex": index, "value": call.value},
                )
