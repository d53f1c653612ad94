from dotenv import load_dotenv
load_dotenv()

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import get_db

# ENV
from config.env import ENV, CORS_ALLOWED_ORIGINS, validate_production_env

# ROUTES
from routes.auth import router as auth_router
from routes.products import router as products_router
from routes.cart import router as cart_router
from routes.orders import router as orders_router
from routes.payments import router as payments_router
from routes.payouts import router as payouts_router
from routes.favorites import router as favorites_router
from routes.reviews import router as reviews_router

# STARTUP
from utils.indexes import ensure_indexes
from utils.roles import seed_roles
from utils.guards import format_validation_errors

# WORKERS
from utils.email_queue import email_worker
from workers.payment_expiry_worker import payment_expiry_worker
from workers.audit_cleanup_worker import audit_cleanup_worker

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)
logger.info("ENV: %s", ENV)

app = FastAPI(
    title="Marketplace API",
    version="1.0.0",
    docs_url=None if ENV == "production" else "/docs",
    redoc_url=None if ENV == "production" else "/redoc",
    openapi_url=None if ENV == "production" else "/openapi.json",
)

# -----------------------------
# CORS
# -----------------------------

allowed_origins = [origin.strip() for origin in CORS_ALLOWED_ORIGINS if origin.strip()]
if not allowed_origins:
    allowed_origins = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -----------------------------
# ERROR HANDLING
# -----------------------------

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": format_validation_errors(exc.errors())},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("UNHANDLED_ERROR %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error"},
    )

# -----------------------------
# ROUTES
# -----------------------------

app.include_router(auth_router)
app.include_router(products_router)
app.include_router(cart_router)
app.include_router(orders_router)
app.include_router(payments_router)
app.include_router(payouts_router)
app.include_router(favorites_router)
app.include_router(reviews_router)


@app.get("/")
async def root():
    return {"message": "Marketplace API is running", "version": app.version}


@app.get("/api")
async def api_index():
    return {
        "message": "Marketplace API",
        "endpoints": {
            "auth": "/api/auth",
            "products": "/api/products",
            "cart": "/api/cart",
            "orders": "/api/orders",
            "payments": "/api/payments",
            "payouts": "/api/payouts",
            "favorites": "/api/favorites",
            "reviews": "/api/reviews",
            "health": "/api/health",
        },
    }

# -----------------------------
# HEALTH CHECKS
# -----------------------------

@app.get("/api/health")
async def health():

    return {"status": "ok", "env": ENV}

@app.get("/api/health/db")
async def health_db():
    db = get_db()
    await db.command("ping")
    return {"status": "mongodb connected"}

# -----------------------------
# STARTUP WORKERS (ONE PLACE ONLY)
# -----------------------------

@app.on_event("startup")
async def startup():
    validate_production_env()

    db = get_db()
    await ensure_indexes(db)
    await seed_roles(db)

    asyncio.create_task(email_worker())
    asyncio.create_task(payment_expiry_worker())
    asyncio.create_task(audit_cleanup_worker())
