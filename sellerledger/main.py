from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
from sellerledger.config import settings
from sellerledger.database import check_all_databases, create_tables, shutdown_databases
from sellerledger.api.routes import ledger, sync
from sellerledger.services.scheduler_service import SchedulerService
from sellerledger.utils.dates import utcnow
from sellerledger.utils.logger import get_loggers
logger = get_loggers("Main")


def create_application() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.VERSION,
        debug=settings.DEBUG,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(sync.router, prefix="/api/v1")
    app.include_router(ledger.router, prefix="/api/v1")
    return app


app = create_application()


@app.on_event("startup")
async def startup_event():
    await create_tables()
    if settings.ENABLE_BACKGROUND_SYNC:
        SchedulerService().start()
    logger.info(f"{settings.APP_NAME} v{settings.VERSION} started")


@app.on_event("shutdown")
async def shutdown_event():
    if settings.ENABLE_BACKGROUND_SYNC:
        SchedulerService().shutdown()
    await shutdown_databases()


@app.get("/")
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.VERSION,
        "status": "healthy"
    }


@app.get("/health")
async def health_check():
    databases = await check_all_databases()
    healthy = databases["postgres"] and databases["redis"] is not False
    return {"status": "healthy" if healthy else "degraded", "databases": databases,
            "timestamp": utcnow().isoformat() + "Z"}


if __name__ == "__main__":
    uvicorn.run(
        "sellerledger.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info" if settings.DEBUG else "warning"
    )
