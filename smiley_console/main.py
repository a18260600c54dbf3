import contextlib
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from smiley_console.config import get_log_level
from smiley_console.console_database import init_db
from smiley_console.router.auth import router as auth_router
from smiley_console.router.catalog import router as catalog_router
from smiley_console.router.expenses import router as expenses_router
from smiley_console.router.records import router as records_router
from smiley_console.router.settlement import router as settlement_router
from smiley_console.services.clinic_api import ClinicAPIError, SessionExpired

logging.basicConfig(
    level=get_log_level(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
console = logging.getLogger("smiley")


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Creates the console session table on startup.
    """
    init_db()
    console.info("Console session store ready")
    yield


app = FastAPI(
    title="Clínica Smiley Console API",
    lifespan=lifespan,
)


app.include_router(auth_router, prefix="/api")
app.include_router(catalog_router, prefix="/api")
app.include_router(records_router, prefix="/api")
app.include_router(settlement_router, prefix="/api")
app.include_router(expenses_router, prefix="/api")


@app.exception_handler(ClinicAPIError)
async def clinic_api_error_handler(request: Request, exc: ClinicAPIError):
    return JSONResponse({"detail": exc.message}, status_code=exc.status)


@app.exception_handler(SessionExpired)
async def session_expired_handler(request: Request, exc: SessionExpired):
    return JSONResponse({"error": str(exc), "redirect": "/login"}, status_code=401)


@app.get("/health")
def health():
    return {"status": "ok"}
