"""
FastAPI REST API Module

Exposes the vault ledger over HTTP. The calling account always comes from
the identity provider (JWT bearer token, or the X-Account-Id header when
auth is disabled); no endpoint accepts an "on behalf of" account for
deposits or withdrawals. Runs on port 8090 by default.
"""

from typing import Optional
from fastapi import FastAPI, APIRouter, HTTPException, Depends, Header, Query, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, StrictInt
import uvicorn

from .config import VaultConfig, get_config
from .storage import StorageInterface, create_storage
from .audit import AuditTrail
from .events import EventDispatcher
from .transfer import TransferExecutor, create_transfer_executor
from .identity import IdentityProvider, IdentityError, JWTIdentityProvider, HeaderIdentityProvider
from .vault import VaultLedger
from .errors import VaultError, TransferFailed, DirectDepositNotAllowed
from .logging_config import setup_logging, get_logger
from . import __version__


class VaultSystem:
    """Vault service with all components initialized from configuration"""

    def __init__(
        self,
        config: Optional[VaultConfig] = None,
        storage: Optional[StorageInterface] = None,
        transfer_executor: Optional[TransferExecutor] = None,
        identity_provider: Optional[IdentityProvider] = None
    ):
        self.config = config or get_config()

        self.storage = storage or create_storage(self.config.database_path)
        self.audit_trail = AuditTrail(self.storage) if self.config.enable_audit_logging else None
        self.event_dispatcher = EventDispatcher()
        self.transfer_executor = transfer_executor or create_transfer_executor(
            url=self.config.transfer_url,
            timeout=self.config.transfer_timeout,
            api_key=self.config.transfer_api_key
        )
        self.ledger = VaultLedger(
            bank_cap=self.config.bank_cap,
            withdraw_limit=self.config.withdraw_limit,
            deployer=self.config.deployer,
            storage=self.storage,
            transfer_executor=self.transfer_executor,
            audit_trail=self.audit_trail,
            event_dispatcher=self.event_dispatcher
        )

        if identity_provider:
            self.identity_provider = identity_provider
        elif self.config.auth_enabled:
            self.identity_provider = JWTIdentityProvider(self.config.jwt_secret, self.config.jwt_algorithm)
        else:
            self.identity_provider = HeaderIdentityProvider()

    def close(self) -> None:
        self.transfer_executor.close()
        self.storage.close()


# Request models
class DepositRequest(BaseModel):
    value: StrictInt = Field(..., description="Value attached to the call, in base units")


class WithdrawRequest(BaseModel):
    amount: StrictInt = Field(..., description="Amount to withdraw, in base units")


# Dependencies
security = HTTPBearer(auto_error=False)


def get_vault_system(request: Request) -> VaultSystem:
    return request.app.state.vault


def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_account_id: Optional[str] = Header(None),
    system: VaultSystem = Depends(get_vault_system)
) -> str:
    """Dependency that resolves the calling account via the identity provider"""
    try:
        return system.identity_provider.identify(
            token=credentials.credentials if credentials else None,
            account_header=x_account_id
        )
    except IdentityError as e:
        raise HTTPException(status_code=401, detail=str(e))


def get_optional_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    x_account_id: Optional[str] = Header(None),
    system: VaultSystem = Depends(get_vault_system)
) -> Optional[str]:
    try:
        return system.identity_provider.identify(
            token=credentials.credentials if credentials else None,
            account_header=x_account_id
        )
    except IdentityError:
        return None


router = APIRouter()


@router.post("/deposit")
def deposit(
    request: DepositRequest,
    account: str = Depends(get_current_account),
    system: VaultSystem = Depends(get_vault_system)
):
    """Deposit the value attached to the call into the caller's vault"""
    receipt = system.ledger.deposit(account, request.value)
    return {
        "account": receipt.account,
        "amount": receipt.amount,
        "balance_after": receipt.balance_after,
        "message": "Deposit accepted"
    }


@router.post("/withdraw")
def withdraw(
    request: WithdrawRequest,
    account: str = Depends(get_current_account),
    system: VaultSystem = Depends(get_vault_system)
):
    """Withdraw from the caller's vault and pay out through the transfer executor"""
    receipt = system.ledger.withdraw(account, request.amount)
    return {
        "account": receipt.account,
        "amount": receipt.amount,
        "balance_after": receipt.balance_after,
        "transfer_reference": receipt.transfer_reference,
        "message": "Withdrawal paid out"
    }


@router.post("/receive")
def receive(
    request: DepositRequest,
    sender: Optional[str] = Depends(get_optional_account),
    system: VaultSystem = Depends(get_vault_system)
):
    """Direct transfers into the vault are always rejected"""
    system.ledger.receive(sender=sender, amount=request.value)


@router.get("/balance/{account}")
def balance_of(account: str, system: VaultSystem = Depends(get_vault_system)):
    return {"account": account, "balance": system.ledger.balance_of(account)}


@router.get("/stats")
def stats(system: VaultSystem = Depends(get_vault_system)):
    return system.ledger.stats().to_dict()


@router.get("/audit")
def audit_events(
    limit: Optional[int] = Query(None, ge=1, description="Most recent records to return"),
    account: str = Depends(get_current_account),
    system: VaultSystem = Depends(get_vault_system)
):
    """Audit records for the calling account"""
    if not system.audit_trail:
        raise HTTPException(status_code=404, detail="Audit logging is disabled")

    events = system.audit_trail.get_events_for_account(account, limit=limit)
    return {
        "account": account,
        "events": [
            {
                "event_id": e.id,
                "event_type": e.event_type.value,
                "sequence": e.sequence,
                "created_at": e.created_at.isoformat(),
                "metadata": e.metadata,
                "hash": e.current_hash
            }
            for e in events
        ]
    }


def _status_for(error: VaultError) -> int:
    if isinstance(error, TransferFailed):
        return 502
    if isinstance(error, DirectDepositNotAllowed):
        return 403
    return 400


def create_app(system: Optional[VaultSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    if system is None:
        config = get_config()
        setup_logging(config.log_level, log_file=config.log_file)
        system = VaultSystem(config)

    app = FastAPI(
        title="Value Vault API",
        description="Per-account value vault with bank cap and withdrawal limit",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.vault = system
    logger = get_logger("value_vault.api")

    @app.exception_handler(VaultError)
    async def vault_error_handler(request: Request, exc: VaultError):
        logger.debug(f"{request.method} {request.url.path} rejected: {exc.code}")
        return JSONResponse(status_code=_status_for(exc), content={"detail": exc.to_dict()})

    app.include_router(router, prefix="/vault", tags=["Vault"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint, including a ledger invariant check"""
        try:
            system.ledger.check_invariants()
        except VaultError as e:
            return JSONResponse(status_code=503, content={
                "status": "unhealthy",
                "service": "value_vault_api",
                "version": __version__,
                "invariants": e.to_dict()
            })
        return {
            "status": "healthy",
            "service": "value_vault_api",
            "version": __version__,
            "invariants": "ok"
        }

    return app


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "value_vault.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
