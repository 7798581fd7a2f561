import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CheckStatus(str, Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    ERROR = "error"
    TIMEOUT = "timeout"


class AIVerdict(str, Enum):
    HALAL = "halal"
    NOT_HALAL = "not_halal"
    QUESTIONABLE = "questionable"


class VerdictValue(str, Enum):
    HALAL = "halal"
    NOT_HALAL = "not_halal"
    UNCLEAR = "unclear"


class AnalysisMethod(str, Enum):
    CERTIFICATION_VERIFIED = "certification_verified"
    AI_ANALYSIS = "ai_analysis"
    RULES_ENGINE = "rules_engine"
    INSUFFICIENT_DATA = "insufficient_data"


class ProductRecord(BaseModel):
    barcode: str
    name: str
    brand: str
    ingredients_text: str = ""
    ingredients_list: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    region: str = "global"
    labels: List[str] = Field(default_factory=list)
    categories: List[str] = Field(default_factory=list)
    allergens: List[str] = Field(default_factory=list)
    raw_source: Dict[str, Any] = Field(default_factory=dict, exclude=True)

    model_config = ConfigDict(frozen=True)

    @property
    def has_ingredients(self) -> bool:
        return bool(self.ingredients_list) or bool(self.ingredients_text.strip())


class ProductLookup(BaseModel):
    found: bool
    product: Optional[ProductRecord] = None


class ProductSummary(BaseModel):
    barcode: str
    name: str
    brand: str
    image_url: Optional[str] = None
    has_ingredients: bool = False


class CertificationCheckResult(BaseModel):
    registry_name: str
    country: str
    checked: bool = True
    found: bool = False
    response_time_ms: int = 0
    status: CheckStatus


class CertificationOutcome(BaseModel):
    is_certified: bool = False
    cert_body: Optional[str] = None
    cert_country: Optional[str] = None
    cert_link: Optional[str] = None
    confidence_score: int = 0
    external_source: Optional[str] = None
    check_details: List[CertificationCheckResult] = Field(default_factory=list)


class AIAnalysis(BaseModel):
    verdict: AIVerdict
    confidence_score: int = Field(ge=0, le=100)
    flagged_ingredients: List[str] = Field(default_factory=list)
    analysis_notes: str = ""
    raw_model_output: str = ""


class ParsedAnalysis(AIAnalysis):
    kind: Literal["parsed"] = "parsed"


class FallbackAnalysis(AIAnalysis):
    kind: Literal["fallback"] = "fallback"


class RulesAnalysis(AIAnalysis):
    kind: Literal["rules"] = "rules"


AnalysisResult = Union[ParsedAnalysis, FallbackAnalysis]


class VerdictRecord(BaseModel):
    barcode: str
    verdict: VerdictValue
    confidence_score: int = Field(ge=0, le=100)
    analysis_notes: Optional[str] = None
    flagged_ingredients: Optional[List[str]] = None
    is_certified: bool = False
    cert_body: Optional[str] = None
    cert_country: Optional[str] = None
    cert_link: Optional[str] = None
    analysis_method: AnalysisMethod
    external_source: Optional[str] = None
    ai_explanation: Optional[str] = None
    check_details: List[CertificationCheckResult] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_verified_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LookupResponse(BaseModel):
    found: bool
    status: str
    message: Optional[str] = None
    product: Optional[ProductRecord] = None
    verdict: Optional[VerdictRecord] = None


class SearchResponse(BaseModel):
    products: List[ProductSummary]
    count: int


BARCODE_RE = re.compile(r"\d{8,14}", re.ASCII)

ALLOWED_REGIONS = ("world", "us", "uk", "fr", "de", "ca", "au", "global")
DEFAULT_REGION = "world"

MAX_INGREDIENT_LENGTH = 500
MAX_INGREDIENTS_TEXT_LENGTH = 10000
MAX_LABELS = 50
MAX_LABEL_LENGTH = 100


def _barcode(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("Barcode must be a string")
    trimmed = value.strip()
    if not BARCODE_RE.fullmatch(trimmed):
        raise ValueError("Barcode must be 8-14 digits")
    return trimmed


def _optional_string(value: Any, field: str, max_length: int) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{field} must be a string")
    trimmed = value.strip()
    if len(trimmed) > max_length:
        raise ValueError(f"{field} must be at most {max_length} characters")
    return trimmed or None


def _region(value: Any) -> str:
    if value is None:
        return DEFAULT_REGION
    if not isinstance(value, str):
        raise ValueError("Region must be a string")
    normalized = value.strip().lower()
    # unknown regions fall back to the default instead of failing
    return normalized if normalized in ALLOWED_REGIONS else DEFAULT_REGION


class BarcodeLookupRequest(BaseModel):
    barcode: str

    @field_validator("barcode", mode="before")
    @classmethod
    def check_barcode(cls, value):
        return _barcode(value)


class NameSearchRequest(BaseModel):
    product_name: str
    region: str = DEFAULT_REGION

    @field_validator("product_name", mode="before")
    @classmethod
    def check_product_name(cls, value):
        if not isinstance(value, str):
            raise ValueError("Product name must be a string")
        trimmed = value.strip()
        if len(trimmed) < 2:
            raise ValueError("Product name must be at least 2 characters")
        if len(trimmed) > 200:
            raise ValueError("Product name must be at most 200 characters")
        return trimmed

    @field_validator("region", mode="before")
    @classmethod
    def check_region(cls, value):
        return _region(value)


class CertificationCheckRequest(BaseModel):
    product_name: Optional[str] = None
    barcode: Optional[str] = None
    brand: Optional[str] = None
    labels: Optional[List[str]] = None

    @field_validator("product_name", mode="before")
    @classmethod
    def check_product_name(cls, value):
        return _optional_string(value, "product_name", 200)

    @field_validator("barcode", mode="before")
    @classmethod
    def check_barcode(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return _barcode(value)

    @field_validator("brand", mode="before")
    @classmethod
    def check_brand(cls, value):
        return _optional_string(value, "brand", 100)

    @field_validator("labels", mode="before")
    @classmethod
    def collapse_labels(cls, value):
        """Accept a list or a comma-separated string; keep at most 50 labels of 100 characters."""
        if not value:
            return None
        if isinstance(value, str):
            value = value.split(",")
        if not isinstance(value, (list, tuple)):
            return None
        collapsed = []
        for item in value[:MAX_LABELS]:
            text = str(item).strip()[:MAX_LABEL_LENGTH]
            if text:
                collapsed.append(text)
        return collapsed or None


class IngredientAnalysisRequest(BaseModel):
    ingredients: Union[List[str], str]
    product_name: Optional[str] = None
    brand: Optional[str] = None
    region: str = DEFAULT_REGION

    @field_validator("ingredients", mode="before")
    @classmethod
    def check_ingredients(cls, value):
        if isinstance(value, list):
            items = []
            for item in value:
                if not isinstance(item, str):
                    raise ValueError("All ingredients must be strings")
                if len(item) > MAX_INGREDIENT_LENGTH:
                    raise ValueError(f"Individual ingredient must be at most {MAX_INGREDIENT_LENGTH} characters")
                if item.strip():
                    items.append(item.strip())
            if not items:
                raise ValueError("Ingredients are required")
            return items

        if isinstance(value, str):
            if len(value) > MAX_INGREDIENTS_TEXT_LENGTH:
                raise ValueError(f"Ingredients text must be at most {MAX_INGREDIENTS_TEXT_LENGTH} characters")
            if not value.strip():
                raise ValueError("Ingredients are required")
            return value.strip()

        if value is None:
            raise ValueError("Ingredients are required")
        raise ValueError("Ingredients must be a string or array")

    @field_validator("product_name", mode="before")
    @classmethod
    def check_product_name(cls, value):
        return _optional_string(value, "product_name", 200)

    @field_validator("brand", mode="before")
    @classmethod
    def check_brand(cls, value):
        return _optional_string(value, "brand", 100)

    @field_validator("region", mode="before")
    @classmethod
    def check_region(cls, value):
        return _region(value)
