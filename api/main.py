"""FastAPI application entry point"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

load_dotenv()

# Setup logging
from invoicebook.config import settings
from invoicebook.logging_config import setup_logging
setup_logging()

app = FastAPI(
    title="InvoiceBook API",
    description="Invoice line-item deduplication, ledger allocation and supplier resolution",
    version=settings.APP_VERSION,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def _init_database() -> None:
    """Ensure database tables exist (local databases)."""
    from invoicebook.models.database import init_models

    await init_models()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "InvoiceBook API",
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "healthy"}


# Import routes
from api.routes import invoices, suppliers
app.include_router(invoices.router, prefix="/api", tags=["invoices"])
app.include_router(suppliers.router, prefix="/api", tags=["suppliers"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
