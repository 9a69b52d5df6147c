# trust_engine/main.py
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from .crud import peek_action_token, redeem_action_token
from .errors import register_exception_handlers
from .models import iso_utc
from .schemas import CreateWalletIn, LinkWalletIn, RegisterIn, SearchIn, TransactionIn, ValidatorDataIn
from .services import Services, build_services
from .settings import Settings
from .staking import validator_summary
from .tasks import build_scheduler

log = logging.getLogger("main")

router = APIRouter()


def get_services(request: Request) -> Services:
    return request.app.state.services


@router.get("/health")
def health():
    return {
        "message": "All systems operational!",
        "details": {
            "status": "operational",
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        },
    }


@router.post("/validators/data")
def validator_data(body: ValidatorDataIn, services: Services = Depends(get_services)):
    details = validator_summary(services.ledger, body.wallet_address)
    return {"message": "Validator data retrieved successfully.", "details": details}


@router.post("/register")
def register(body: RegisterIn, services: Services = Depends(get_services)):
    """
    Check for duplicates and the identity prerequisite, pin the metadata
    document, then route the registration through the wallet's signing path.
    """
    result = services.registrar.register(body)
    return JSONResponse(status_code=result.status_code, content={"message": result.message, "details": result.details})


@router.post("/search")
def search(body: SearchIn, services: Services = Depends(get_services)):
    return services.registrar.search(body.content_hash, body.wallet_address)


@router.post("/link-wallet")
def link_wallet(body: LinkWalletIn, services: Services = Depends(get_services)):
    details = services.linker.link(body.user_id, body.wallet_address)
    return {"message": "Success! The wallet address has been linked to the user ID.", "details": details}


@router.post("/create-wallet", status_code=201)
def create_wallet(body: CreateWalletIn, services: Services = Depends(get_services)):
    details = services.linker.create_wallet(body.user_id)
    return {"message": "Success! Your custodial wallet has been created and linked to your user ID.", "details": details}


@router.get("/find-wallet")
def find_wallet(
    user_id: Optional[str] = Query(default=None, alias="userID"),
    wallet_address: Optional[str] = Query(default=None, alias="walletAddress"),
    services: Services = Depends(get_services),
):
    details = services.linker.find(user_id=user_id, wallet=wallet_address)
    return {
        "success": True,
        "message": f"Wallet relation found successfully using {details['searchType']}.",
        "details": details,
    }


@router.post("/transactions")
def submit_transaction(body: TransactionIn, services: Services = Depends(get_services)):
    """
    Sponsor a client-signed transaction: allow-list check, co-sign, submit,
    wait for confirmation.
    """
    details = services.dispatcher.submit_cosigned(body.transaction)
    return {"message": "Transaction submitted and confirmed successfully!", "details": details}


@router.get("/tx-action/{token}")
def preview_action_link(token: str, services: Services = Depends(get_services)):
    """Describe the pending action without consuming the token."""
    rec = peek_action_token(services.db, token)
    return {
        "message": "Action link found. Redeem it to receive the transaction to sign.",
        "details": {
            "token": rec.token,
            "status": rec.status,
            "creatorAddress": rec.creator_address,
            "contentHash": rec.content_hash,
            "contentTitle": rec.content_title,
            "expiresAt": iso_utc(rec.expires_at),
        },
    }


@router.post("/tx-action/{token}")
def redeem_action_link(token: str, services: Services = Depends(get_services)):
    rec = redeem_action_token(services.db, token)
    return {
        "message": "Sign this transaction with your wallet and submit it to /transactions.",
        "details": {
            "transaction": rec.unsigned_transaction,
            "creatorAddress": rec.creator_address,
            "contentHash": rec.content_hash,
            "contentTitle": rec.content_title,
        },
    }


def create_app(services: Optional[Services] = None) -> FastAPI:
    app = FastAPI(title="Trust Engine Backend")
    register_exception_handlers(app)
    app.include_router(router)

    @app.on_event("startup")
    def startup():
        svc = services or build_services(Settings())
        logging.basicConfig(level=svc.settings.LOG_LEVEL)
        svc.db.init()
        app.state.services = svc
        app.state.scheduler = None
        if svc.settings.TOKEN_EXPIRY_CHECK_MINUTES > 0:
            app.state.scheduler = build_scheduler(svc.db, svc.settings.TOKEN_EXPIRY_CHECK_MINUTES)
            app.state.scheduler.start()

    @app.on_event("shutdown")
    def shutdown():
        if app.state.scheduler is not None:
            app.state.scheduler.shutdown(wait=False)
        app.state.services.db.close()

    return app


app = create_app()


def run():
    import uvicorn

    settings = Settings()
    uvicorn.run("trust_engine.main:app", host=settings.HOST, port=settings.PORT)
