from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketplace_finance.core.config import settings
from marketplace_finance.core.errors import FinanceError
from marketplace_finance.core.logging_config import configure_logging
import marketplace_finance.models  # noqa: F401  # force model registration

from marketplace_finance.api.v1.commissions import router as commissions_router
from marketplace_finance.api.v1.commission_settings import router as commission_settings_router
from marketplace_finance.api.v1.payouts import router as payouts_router
from marketplace_finance.jobs.scheduler import build_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    scheduler = build_scheduler() if settings.PAYOUT_SCHEDULER_ENABLED else None
    if scheduler is not None:
        scheduler.start()
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown(wait=False)


def create_application() -> FastAPI:
    app = FastAPI(title="Marketplace Finance API", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            # Local admin dashboard
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(FinanceError)
    async def finance_error_handler(request: Request, exc: FinanceError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail()})

    @app.get("/")
    def root():
        return {"status": "ok", "service": "marketplace-finance"}

    # Routers
    app.include_router(commissions_router, prefix="/api/v1")
    app.include_router(commission_settings_router, prefix="/api/v1")
    app.include_router(payouts_router, prefix="/api/v1")

    return app


app = create_application()
