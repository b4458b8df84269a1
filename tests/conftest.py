"""Pytest configuration and shared fixtures"""

import pytest
import os
import sys
from typing import AsyncGenerator, List
from datetime import date
from decimal import Decimal
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

# Keep the application engine off the local database file
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from invoicebook.models.database import Base
from invoicebook.models import db_models  # noqa: F401
from invoicebook.models.invoice import (
    Allocation,
    ExtractedInvoiceData,
    Invoice,
    LineItem,
)


# Test database setup (SQLite in-memory)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False
)

TestingSessionLocal = async_sessionmaker(
    test_engine,
    class_=AsyncSession,
    expire_on_commit=False
)


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database session for each test

    Yields:
        Async database session
    """
    # Create tables
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Create session
    async with TestingSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

    # Drop tables after test
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def duplicated_items() -> List[LineItem]:
    """Tomatoes registered twice by OCR, then onions"""
    return [
        LineItem(description="Tomates", quantity=Decimal("10"), unit_price=Decimal("2"),
                 total_price=Decimal("20"), is_ht=True),
        LineItem(description="tomates", quantity=Decimal("10"), unit_price=Decimal("2"),
                 total_price=Decimal("20"), is_ht=True),
        LineItem(description="Oignons", quantity=Decimal("5"), unit_price=Decimal("1"),
                 total_price=Decimal("5"), is_ht=True),
    ]


@pytest.fixture
def sample_invoice(duplicated_items) -> Invoice:
    """Sample invoice Pydantic model for testing"""
    return Invoice(
        organization_id="org-1",
        file_name="facture_primeur.pdf",
        extracted_data=ExtractedInvoiceData(
            invoice_number="F-2024-0117",
            invoice_date=date(2024, 1, 17),
            supplier_name="Primeurs Martin SARL",
            currency="EUR",
            subtotal=Decimal("25.00"),
            tax_amount=Decimal("1.38"),
            total_amount=Decimal("26.38"),
            items=duplicated_items,
        ),
    )


@pytest.fixture
def sample_allocations() -> List[Allocation]:
    """Two allocations splitting a 25.00 HT subtotal"""
    return [
        Allocation(account_code="601100", label="Légumes", amount=Decimal("20.00")),
        Allocation(account_code="601200", label="Condiments", amount=Decimal("5.00")),
    ]
