from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from gymledger.api.audit import router as audit_router
from gymledger.api.auth import router as auth_router
from gymledger.api.notifications import router as notifications_router
from gymledger.api.payments import router as payments_router
from gymledger.api.settlements import router as settlements_router
from gymledger.api.subscriptions import router as subscriptions_router
from gymledger.core.config import settings
from gymledger.core.errors import LedgerError
from gymledger.core.logging import init_logging

logger = init_logging("gymledger-api", settings.log_level)

app = FastAPI(title="GymLedger", version="0.1.0")

app.include_router(auth_router, prefix="/auth", tags=["auth"])
app.include_router(subscriptions_router, prefix="/subscriptions", tags=["subscriptions"])
app.include_router(payments_router, prefix="/payments", tags=["payments"])
app.include_router(settlements_router, prefix="/settlements", tags=["settlements"])
app.include_router(notifications_router, prefix="/notifications", tags=["notifications"])
app.include_router(audit_router, prefix="/audit-logs", tags=["audit"])


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    logger.info(
        "ledger_error",
        extra={"extra": {"code": exc.code, "path": request.url.path, "detail": exc.message}},
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


@app.get("/health")
def health():
    return {"status": "ok"}
