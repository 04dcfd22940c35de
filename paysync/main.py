from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from .config import Settings
from .database import PaymentStore, create_engine, init_db
from .errors import PaySyncError, ValidationError
from .logs import setup_logging
from .routes import api, webhooks
from .signature import WebhookSignatureValidator
from .sync import ClientSynchronizer
from .tasks import BackgroundWorker
from .uisp import UispClient
from .webhook import PaymentWebhookProcessor


def create_app(settings: Optional[Settings] = None, uisp: Optional[UispClient] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, settings.log_file)
        engine = create_engine(settings.database_url)
        await init_db(engine)

        store = PaymentStore(engine)
        client = uisp or UispClient(settings)
        worker = BackgroundWorker()
        synchronizer = ClientSynchronizer(store, client, settings.uisp_sync_page_size)

        app.state.settings = settings
        app.state.store = store
        app.state.uisp = client
        app.state.worker = worker
        app.state.synchronizer = synchronizer
        app.state.signature_validator = WebhookSignatureValidator(
            settings.webhook_secret,
            settings.webhook_signature_header,
            settings.webhook_allow_unsigned,
        )
        app.state.processor = PaymentWebhookProcessor(
            store, client, synchronizer, worker, settings.default_currency
        )
        logger.info("paysync started (db={}, uisp={})", engine.url.render_as_string(hide_password=True), settings.uisp_api_url)
        try:
            yield
        finally:
            await worker.shutdown()
            await engine.dispose()
            logger.info("paysync stopped")

    app = FastAPI(title="paysync", version="0.1", lifespan=lifespan)
    app.include_router(webhooks.router, prefix="/webhook", tags=["webhook"])
    app.include_router(api.router, prefix="/api", tags=["api"])

    @app.exception_handler(PaySyncError)
    async def paysync_error(request: Request, exc: PaySyncError):
        if exc.status_code >= 500:
            logger.error("{} {} failed: {}", request.method, request.url.path, exc.message)
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        err = ValidationError("Invalid request parameters", error="Invalid request")
        body = err.to_dict()
        body["details"] = [{"loc": list(e.get("loc", [])), "msg": e.get("msg")} for e in exc.errors()]
        return JSONResponse(body, status_code=400)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.opt(exception=exc).error("Unhandled error on {} {}", request.method, request.url.path)
        return JSONResponse(
            {"success": False, "error": "Internal server error", "message": "An unexpected error occurred"},
            status_code=500,
        )

    return app
