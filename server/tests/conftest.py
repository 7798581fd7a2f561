"""
Pytest configuration and fixtures for the verdict pipeline test suite.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from halalscan.db.crud import VerdictStore
from halalscan.db.db import Base
from halalscan.models import models
from halalscan.schemas.schemas import ProductLookup, ProductRecord


@pytest_asyncio.fixture
async def session_factory():
    """In-memory SQLite database with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def store(session_factory):
    return VerdictStore(session_factory)


@pytest.fixture
def cached_product(session_factory):
    """Read the cached Open Food Facts payload for a barcode straight from the table."""

    async def _read(barcode):
        async with session_factory() as session:
            result = await session.execute(select(models.ProductCache).where(models.ProductCache.barcode == barcode))
            cached = result.scalar_one_or_none()
            return None if cached is None else cached.external_data

    return _read


@pytest.fixture
def off_product():
    """Build an Open Food Facts product payload."""

    def _build(**overrides):
        product = {
            "product_name": "Chocolate Wafer",
            "brands": "Crunchy Co",
            "ingredients_text": "sugar, wheat flour, cocoa butter, emulsifier (soy lecithin)",
            "ingredients": [
                {"id": "en:sugar", "text": "sugar"},
                {"id": "en:wheat-flour", "text": "wheat flour"},
                {"id": "en:cocoa-butter", "text": "cocoa butter"},
                {"id": "en:emulsifier"},
            ],
            "image_url": "https://images.openfoodfacts.org/wafer.jpg",
            "countries_tags": ["en:united-kingdom"],
            "labels_tags": ["en:vegetarian"],
            "categories_tags": ["en:snacks"],
            "allergens_tags": ["en:gluten"],
        }
        product.update(overrides)
        return product

    return _build


@pytest.fixture
def product_record():
    """Build a ProductRecord as the fetcher would return it."""

    def _build(**overrides):
        fields = {
            "barcode": "5000159407236",
            "name": "Chocolate Wafer",
            "brand": "Crunchy Co",
            "ingredients_text": "sugar, wheat flour, cocoa butter",
            "ingredients_list": ["sugar", "wheat flour", "cocoa butter"],
            "region": "united-kingdom",
            "labels": ["en:vegetarian"],
        }
        fields.update(overrides)
        return ProductRecord(**fields)

    return _build


@pytest.fixture
def found(product_record):
    def _build(**overrides):
        return ProductLookup(found=True, product=product_record(**overrides))

    return _build


@pytest.fixture
def mock_client():
    """httpx.AsyncClient whose requests are answered by ``handler``."""
    def _build(handler):
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _build
