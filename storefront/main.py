# storefront/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv

from storefront.config import settings
from storefront.database import init_db
from storefront.services.errors import StorefrontError

load_dotenv()

# Router imports
from storefront.routes.cart import router as cart_router
from storefront.routes.orders import router as orders_router
from storefront.routes.shipping import router as shipping_router
from storefront.routes.wallet import router as wallet_router
from storefront.routes.tax import router as tax_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create missing tables on startup; schema changes go through Alembic
    init_db()
    yield


app = FastAPI(title="Storefront API", version="1.0.0", lifespan=lifespan)

# CORS Configuration
origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
if settings.FRONTEND_URL and settings.FRONTEND_URL not in origins:
    origins.append(settings.FRONTEND_URL)

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Every service error carries its own status code and a stable kind
@app.exception_handler(StorefrontError)
async def storefront_error_handler(request: Request, exc: StorefrontError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s %s", request.method, request.url.path, exc.kind, exc.context)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Router registration
app.include_router(cart_router)
app.include_router(orders_router)
app.include_router(shipping_router)
app.include_router(wallet_router)
app.include_router(tax_router)


@app.get("/")
def read_root():
    return {"message": "Storefront API is running"}
