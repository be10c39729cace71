from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .database import init_db
from .logger import get_logger
from .routers import invoice_router, order_router, product_router, quotation_router

logger = get_logger(__name__)

app = FastAPI(
    title="Rental Service",
    description="Quotations, inventory reservations, rental orders and invoices for the rental marketplace",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(product_router.router)
app.include_router(quotation_router.router)
app.include_router(order_router.router)
app.include_router(invoice_router.router)


@app.on_event("startup")
def _startup() -> None:
    # Create database tables
    init_db()
    logger.info("Rental service started")


@app.get("/")
def root():
    return {
        "service": "Rental Service",
        "status": "running",
        "version": "1.0.0"
    }


@app.get("/health")
def health_check():
    return {
        "status": "healthy",
        "service": "rental-service"
    }
