from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from starlette.exceptions import HTTPException as StarletteHTTPException

from salescrm.api.routes import router as api_router
from salescrm.core.config import get_settings
from salescrm.crm.api import http_exception_handler
from salescrm.logging import configure_logging
from salescrm.middleware.correlation_id import CorrelationIdMiddleware
from salescrm.middleware.request_logging import RequestLoggingMiddleware
from salescrm.otel import configure_tracing, server_request_hook


configure_logging()

settings = get_settings()

app = FastAPI(title=settings.app_name, version=settings.app_version)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.include_router(api_router)

configure_tracing(settings)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=server_request_hook)

