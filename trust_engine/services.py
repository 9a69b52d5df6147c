# trust_engine/services.py
from dataclasses import dataclass
from datetime import timedelta

from trust_engine.blockchain import LedgerClient
from trust_engine.crud import Database
from trust_engine.custodial import CustodialWalletClient
from trust_engine.dispatcher import SubmissionDispatcher
from trust_engine.guards import InstructionGuard
from trust_engine.identity import IdentityLinker
from trust_engine.pinata import PinataClient
from trust_engine.registry import ContentRegistrar
from trust_engine.settings import Settings


@dataclass
class Services:
    """Everything a request handler may touch, wired once at startup."""

    settings: Settings
    ledger: object
    storage: object
    custodial: object
    db: Database
    linker: IdentityLinker
    dispatcher: SubmissionDispatcher
    registrar: ContentRegistrar


def build_services(settings: Settings, ledger=None, storage=None, custodial=None, db=None) -> Services:
    ledger = ledger or LedgerClient.from_settings(settings)
    storage = storage or PinataClient.from_settings(settings)
    custodial = custodial or CustodialWalletClient.from_settings(settings)
    db = db or Database(settings.DATABASE_URL)

    guard = InstructionGuard.for_ledger(ledger, settings.SYSTEM_PROGRAMS)
    linker = IdentityLinker(ledger, custodial)
    dispatcher = SubmissionDispatcher(
        ledger,
        guard,
        db,
        custodial=custodial,
        action_link_base_url=settings.ACTION_LINK_BASE_URL,
        token_ttl=timedelta(hours=settings.ACTION_TOKEN_TTL_HOURS),
    )
    registrar = ContentRegistrar(ledger, linker, storage, dispatcher)
    return Services(settings, ledger, storage, custodial, db, linker, dispatcher, registrar)
