from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes import router as api_router
from app.core.config import ENVIRONMENT
from app.core.exceptions import IncomeLedgerError, SourceReadError
from app.core.logging import get_logger
from app.schemas.models import ErrorResponse

logger = get_logger("ledger.api")

app = FastAPI(title="Income Ledger API", version="0.1.0")

LOCALHOST_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]

CORS_ORIGINS = {
    "development": LOCALHOST_ORIGINS,
    "production": [
        "https://hannam-erp.web.app",
        "https://hannam-erp.firebaseapp.com",
        "capacitor://localhost",
        "http://localhost",
    ],
}

origins = CORS_ORIGINS.get(ENVIRONMENT, CORS_ORIGINS["development"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, error: ErrorResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error.model_dump(exclude_none=True))


@app.exception_handler(IncomeLedgerError)
async def ledger_error_handler(request: Request, exc: IncomeLedgerError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
    body = ErrorResponse(error=exc.message)
    if isinstance(exc, SourceReadError):
        body.lastDocId = exc.last_doc_id
        body.migrated = exc.migrated
    return _error(exc.status_code, body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}" for err in exc.errors()
    )
    return _error(400, ErrorResponse(error=messages or "Invalid request"))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} crashed: {exc}", exc_info=True)
    return _error(500, ErrorResponse(error=str(exc) or exc.__class__.__name__))


app.include_router(api_router)
