import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from halalscan.models.models import ProductCache, Verdict
from halalscan.schemas.schemas import VerdictRecord

logger = logging.getLogger(__name__)


class VerdictStore:
    """
    Verdict persistence keyed by barcode.

    Verdicts are written once: ``insert_verdict_if_absent`` never overwrites an
    existing row, and on a unique-key conflict the row that won is returned.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def get_verdict(self, barcode: str) -> Optional[VerdictRecord]:
        async with self._session_factory() as session:
            row = await _verdict_row(session, barcode)
            if row is None:
                return None
            return VerdictRecord.model_validate(row)

    async def insert_verdict_if_absent(self, record: VerdictRecord) -> VerdictRecord:
        async with self._session_factory() as session:
            row = Verdict(
                barcode=record.barcode,
                verdict=record.verdict.value,
                confidence_score=record.confidence_score,
                analysis_notes=record.analysis_notes,
                flagged_ingredients=record.flagged_ingredients,
                is_certified=record.is_certified,
                cert_body=record.cert_body,
                cert_country=record.cert_country,
                cert_link=record.cert_link,
                analysis_method=record.analysis_method.value,
                external_source=record.external_source,
                ai_explanation=record.ai_explanation,
                check_details=[d.model_dump(mode="json") for d in record.check_details],
            )
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(f"Verdict for {record.barcode} already stored, keeping the existing row")
                existing = await _verdict_row(session, record.barcode)
                if existing is None:
                    raise
                return VerdictRecord.model_validate(existing)

            await session.refresh(row)
            return VerdictRecord.model_validate(row)

    async def upsert_product_cache(
        self,
        barcode: str,
        external_data: Dict[str, Any],
        source: str = "open_food_facts",
    ):
        async with self._session_factory() as session:
            result = await session.execute(select(ProductCache).where(ProductCache.barcode == barcode))
            cached = result.scalar_one_or_none()
            now = datetime.now(timezone.utc)
            if cached is None:
                session.add(ProductCache(
                    barcode=barcode,
                    source=source,
                    external_data=external_data,
                    last_fetched_at=now,
                ))
            else:
                cached.external_data = external_data
                cached.source = source
                cached.last_fetched_at = now
            await session.commit()


async def _verdict_row(session: AsyncSession, barcode: str) -> Optional[Verdict]:
    result = await session.execute(select(Verdict).where(Verdict.barcode == barcode))
    return result.scalar_one_or_none()
