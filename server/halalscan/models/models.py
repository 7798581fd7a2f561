from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String, Text
from sqlalchemy.sql import func

from halalscan.db.db import Base


class Verdict(Base):
    __tablename__ = "verdicts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    barcode = Column(String(14), nullable=False, unique=True, index=True)
    verdict = Column(String(16), nullable=False)
    confidence_score = Column(Integer, nullable=False, default=0)
    analysis_notes = Column(Text)
    flagged_ingredients = Column(JSON, nullable=True)
    is_certified = Column(Boolean, nullable=False, default=False)
    cert_body = Column(String, nullable=True)
    cert_country = Column(String, nullable=True)
    cert_link = Column(String, nullable=True)
    analysis_method = Column(String(32), nullable=False)
    external_source = Column(String, nullable=True)
    ai_explanation = Column(Text, nullable=True)
    check_details = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
    last_verified_at = Column(DateTime(timezone=True), server_default=func.now())


class ProductCache(Base):
    __tablename__ = "product_cache"

    id = Column(Integer, primary_key=True, autoincrement=True)
    barcode = Column(String(14), nullable=False, unique=True, index=True)
    source = Column(String, nullable=False, default="open_food_facts")
    external_data = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_fetched_at = Column(DateTime(timezone=True), server_default=func.now())
