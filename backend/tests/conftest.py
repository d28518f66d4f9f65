from __future__ import annotations

import datetime as dt
import sys
import types
from decimal import Decimal
from pathlib import Path

import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Add backend folder to sys.path so `import receiptbox...` works in tests when running from backend root
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from receiptbox.core.database import Base  # noqa: E402
from receiptbox.models.tables import Receipt, User  # noqa: E402


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    Session = async_sessionmaker(engine, expire_on_commit=False)
    async with Session() as s:
        yield s


def _receipt(owner: User, merchant: str, total: str, when: dt.datetime, **kw) -> Receipt:
    return Receipt(
        user_id=owner.id,
        merchant=merchant,
        total=Decimal(total),
        purchase_date=when,
        image_url=f"receipts/{merchant.lower().replace(' ', '_')}.jpg",
        **kw,
    )


@pytest_asyncio.fixture
async def seeded(session):
    """Two owners; the first has four receipts, the second two.

    Returns a namespace with ``owner``, ``other`` and ``ids`` (name -> id).
    """
    owner = User(email="owner@example.com", name="Owner")
    other = User(email="other@example.com", name="Other")
    session.add_all([owner, other])
    await session.commit()

    rows = {
        "walmart": _receipt(
            owner, "Walmart", "45.67", dt.datetime(2024, 1, 15, 10, 30),
            category="Groceries", subcategory="Food", confidence_score=0.95,
            summary="Weekly groceries", raw_text="MILK EGGS BREAD",
        ),
        "shell": _receipt(
            owner, "Shell", "35.00", dt.datetime(2024, 1, 20, 8, 0),
            category="Transportation", subcategory="Fuel", confidence_score=0.88,
            raw_text="UNLEADED 10.2 GAL",
        ),
        "starbucks": _receipt(
            owner, "Starbucks", "12.50", dt.datetime(2024, 2, 3, 7, 45),
            category="Dining", subcategory="Coffee", confidence_score=0.72,
            summary="Morning coffee", raw_text="LATTE GRANDE",
        ),
        "corner": _receipt(
            owner, "Corner Store", "5.25", dt.datetime(2023, 12, 30, 18, 0),
        ),
        "other_walmart": _receipt(
            other, "Walmart", "20.00", dt.datetime(2024, 1, 16, 12, 0),
            category="Groceries", confidence_score=0.9, summary="Snacks",
        ),
        "other_target": _receipt(
            other, "Target", "99.99", dt.datetime(2024, 1, 18, 12, 0),
            category="Shopping", confidence_score=0.5,
        ),
    }
    session.add_all(rows.values())
    await session.commit()

    # Plain snapshots: a rollback inside a test expires the ORM instances
    return types.SimpleNamespace(
        owner=types.SimpleNamespace(id=owner.id, email=owner.email),
        other=types.SimpleNamespace(id=other.id, email=other.email),
        ids={name: r.id for name, r in rows.items()},
    )
