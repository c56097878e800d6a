# main.py
import logging
import logging.config

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shop.core.config import LOGGING, CLIENT_URL
from shop.core.db import init_models
from shop.core.exceptions import ShopError
from shop.routers import orders_router, payments_router, coupons_router, auto_coupons_router

logging.config.dictConfig(LOGGING)
logger = logging.getLogger("shop.api")

app = FastAPI(
    title="Shop Orders API",
    description="Orders, payments and coupons backend",
    version="0.1.0"
)
# CORS setup
app.add_middleware(
    CORSMiddleware,
    allow_origins=[CLIENT_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(level, "%s %s -> %s %s: %s", request.method, request.url.path,
               exc.status_code, exc.__class__.__name__, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.message, "error": exc.__class__.__name__, "details": exc.details},
    )


# Health check endpoint
@app.get("/", tags=["Health"])
async def health_check():
    return {"status": "ok", "message": "Backend is running"}

# Register routers
app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(coupons_router)
app.include_router(auto_coupons_router)


@app.on_event("startup")
async def on_startup():
    await init_models()
