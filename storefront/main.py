from fastapi import FastAPI
from storefront.version import VERSION
from storefront.api import cart as cart_routes
from storefront.api import checkout as checkout_routes
from storefront.api import orders as order_routes
from storefront.api import payments as payment_routes
from storefront.core.config import settings
from storefront.core.logging_config import get_logger, setup_logging
from storefront.gateways import close_shared_http_client
from prometheus_fastapi_instrumentator import Instrumentator

setup_logging(settings.LOG_LEVEL)
log = get_logger(__name__)

instrumentator = Instrumentator()

app = FastAPI(title="Storefront Checkout Service", version=VERSION)

instrumentator.instrument(app).expose(
    app,
    include_in_schema=False,
    endpoint="/storefront/metrics",
    should_gzip=True,
)

@app.get("/health")
def health():
    return {"status": "ok"}

@app.get('/storefront/health')
def storefront_health(): return {'status':'ok'}

@app.get("/v1/_info")
def info():
    return {"service": "storefront", "version": VERSION, "gateways": settings.gateway_status()}

@app.on_event("startup")
async def startup_event():
    for gateway, configured in settings.gateway_status().items():
        if configured:
            log.info(f"Payment gateway {gateway} enabled")
        else:
            log.warning(f"Payment gateway {gateway} has no credentials; checkout with it will be refused")
    for route in app.routes:
        if hasattr(route, "methods") and hasattr(route, "path"):
            log.debug(f"{sorted(route.methods)} {route.path}")

@app.on_event("shutdown")
async def shutdown_event():
    close_shared_http_client()

app.include_router(cart_routes.router, prefix='/storefront', tags=['cart'])
app.include_router(checkout_routes.router, prefix='/storefront', tags=['checkout'])
app.include_router(payment_routes.router, prefix='/storefront', tags=['payments'])
app.include_router(order_routes.router, prefix='/storefront', tags=['orders'])
