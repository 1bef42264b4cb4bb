from fastapi import FastAPI, HTTPException, Request, Depends, status
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from typing import List, Optional
import structlog

from config import configure_logging, get_settings
from errors import (
    AccountLocked,
    DuplicateTransaction,
    InsufficientFunds,
    InsufficientHeldFunds,
    InvalidTransaction,
    LedgerError,
    Overflow,
    TransactionParseError,
)
from models import AccountRow, ErrorResponse, HealthResponse, TransactionResponse, TransactionRow
from services import LedgerEngine, TransactionOutcome

settings = get_settings()
configure_logging(settings.log_level, settings.log_format)

logger = structlog.get_logger()

ERROR_STATUS = {
    TransactionParseError: 422,
    DuplicateTransaction: status.HTTP_409_CONFLICT,
    AccountLocked: status.HTTP_409_CONFLICT,
    InsufficientFunds: status.HTTP_400_BAD_REQUEST,
    InvalidTransaction: status.HTTP_400_BAD_REQUEST,
    Overflow: status.HTTP_400_BAD_REQUEST,
    InsufficientHeldFunds: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

# One engine per process; transactions are applied in arrival order
_engine = LedgerEngine()


def get_engine() -> LedgerEngine:
    return _engine


def reset_engine() -> None:
    """Replace the engine with an empty one (for testing only)."""
    global _engine
    _engine = LedgerEngine()


# Rate limiting
limiter = Limiter(key_func=get_remote_address)


app = FastAPI(
    title=settings.app_name,
    description="Replays deposits, withdrawals and disputes against per-client accounts",
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Add rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# Health check endpoint
@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="Check API health and get ledger statistics"
)
async def health_check(engine: LedgerEngine = Depends(get_engine)):
    return HealthResponse(
        status="healthy",
        accounts_count=engine.accounts_repo.count(),
        transactions_recorded=engine.transactions_count()
    )


# Main transaction endpoint
@app.post(
    "/transactions",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Process Transaction",
    description="Apply a deposit, withdrawal, dispute, resolve or chargeback",
    responses={
        201: {"description": "Transaction processed or ignored"},
        400: {"description": "Insufficient funds, invalid transaction or overflow"},
        409: {"description": "Duplicate transaction or locked account"},
        422: {"description": "Malformed transaction"},
        429: {"description": "Rate limit exceeded"},
        500: {"description": "Internal consistency fault"}
    }
)
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def create_transaction(
    request: Request,
    row: TransactionRow,
    engine: LedgerEngine = Depends(get_engine)
):
    logger.info(
        "Transaction request received",
        type=row.type.value,
        client=row.client,
        tx=row.tx
    )

    transaction = row.to_transaction()
    outcome = engine.execute(transaction)

    # The transaction is committed; building the response must not fail
    result = TransactionResponse(
        tx=row.tx,
        type=row.type,
        client=row.client,
        status=outcome.value,
        account=_account_row(engine, row.client)
    )

    log = logger.info if outcome is TransactionOutcome.processed else logger.warning
    log("Transaction request completed", tx=row.tx, status=outcome.value)
    return result


def _account_row(engine: LedgerEngine, client: int) -> Optional[AccountRow]:
    account = engine.account(client)
    if account is None:
        return None
    try:
        return account.to_row()
    except Overflow as e:
        logger.error("Account cannot be reported", client=client, error=str(e))
        return None


@app.get(
    "/accounts",
    response_model=List[AccountRow],
    summary="Account Report",
    description="Every client account ordered by client id"
)
async def list_accounts(engine: LedgerEngine = Depends(get_engine)):
    return engine.report()


@app.get(
    "/accounts/{client}",
    response_model=AccountRow,
    summary="Client Account",
    responses={404: {"description": "Account not found"}}
)
async def get_account(client: int, engine: LedgerEngine = Depends(get_engine)):
    account = engine.account(client)
    if account is None:
        raise HTTPException(status_code=404, detail="Account not found")
    return account.to_row()


@app.exception_handler(LedgerError)
async def ledger_exception_handler(request: Request, exc: LedgerError):
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    if status_code >= 500:
        logger.error("Ledger consistency fault", error=str(exc), url=str(request.url))
    else:
        logger.warning(
            "Transaction rejected",
            error_code=exc.error_code,
            error=str(exc),
            url=str(request.url)
        )

    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            detail=exc.detail,
            error_code=exc.error_code
        ).model_dump(mode="json")
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            detail=exc.detail,
            error_code=f"HTTP_{exc.status_code}"
        ).model_dump(mode="json")
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(
        "Unhandled exception",
        error=str(exc),
        url=str(request.url),
        method=request.method,
        exc_info=True
    )

    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            detail="Internal server error",
            error_code="INTERNAL_ERROR"
        ).model_dump(mode="json")
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
