from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.api.v1.router import router as v1_router
from backend.app.core.config import LOG_LEVEL
from backend.app.core.logging import setup_logging
from backend.services.errors import (
    Conflict,
    InvalidInput,
    InvalidState,
    LedgerError,
    NotFound,
    StockCountError,
)

# InvalidState et LedgerError doivent rester distinguables côté UI :
# "inventaire non modifiable" vs "ajustements non appliqués, rien n'a changé"
ERROR_STATUS = {
    InvalidInput: 400,
    NotFound: 404,
    Conflict: 409,
    InvalidState: 409,
    LedgerError: 502,
}

setup_logging(LOG_LEVEL)

app = FastAPI(title="STOCKTAKE WMS", version="0.1.0")
app.include_router(v1_router, prefix="/v1")


@app.exception_handler(StockCountError)
def stock_count_error_handler(request: Request, exc: StockCountError):
    return JSONResponse(
        status_code=ERROR_STATUS.get(type(exc), 400),
        content={"error": exc.code, "detail": exc.detail},
    )
