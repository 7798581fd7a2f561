import json
import logging
import math
from typing import Any, Dict, Iterator, List, Optional, Union

import httpx

from halalscan.core.config import settings
from halalscan.core.errors import (
    ConfigurationError,
    GatewayUnreachable,
    QuotaExhausted,
    RateLimited,
    UpstreamError,
)
from halalscan.schemas.schemas import AIVerdict, AnalysisResult, FallbackAnalysis, ParsedAnalysis

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 50

SYSTEM_PROMPT = """You are a halal food certification expert. Analyze ingredients for halal compliance according to Islamic dietary laws.

Consider:
1. **Haram (Forbidden) Ingredients**: Pork, alcohol, blood, carnivorous animals, insects (except locust/grasshopper), animals not slaughtered according to Islamic law
2. **E-Numbers**: Many E-numbers can be from animal or plant sources. Flag suspicious ones (e.g., E120=carmine/insect, E441=gelatin, E542=bone phosphate, E471=mono/diglycerides which could be animal-derived)
3. **Derivatives**: Animal fats, lard, enzymes (rennet, pepsin), gelatin, whey (if from non-halal cheese), emulsifiers, glycerin
4. **Ambiguous Terms**: "Natural flavors", "enzymes", "processing aids" can hide non-halal ingredients
5. **Regional Context**: Standards vary by region ({region})

Return your analysis as a JSON object with:
- verdict: "halal", "not_halal", or "questionable"
- confidence_score: 0-100 (higher = more certain)
- flagged_ingredients: array of ingredient names that are problematic
- analysis_notes: detailed explanation of your verdict (2-3 sentences)
- recommendations: what to verify or look for on certification"""

USER_PROMPT = """Product: {product_name}
Brand: {brand}
Region: {region}

Ingredients:
{ingredients}

Analyze these ingredients for halal compliance and return JSON only."""

VERDICT_ALIASES = {
    "halal": AIVerdict.HALAL,
    "permissible": AIVerdict.HALAL,
    "not_halal": AIVerdict.NOT_HALAL,
    "haram": AIVerdict.NOT_HALAL,
    "questionable": AIVerdict.QUESTIONABLE,
    "mashbooh": AIVerdict.QUESTIONABLE,
    "doubtful": AIVerdict.QUESTIONABLE,
    "unclear": AIVerdict.QUESTIONABLE,
}


def build_messages(
    ingredients: Union[List[str], str],
    product_name: Optional[str] = None,
    brand: Optional[str] = None,
    region: Optional[str] = None,
) -> List[Dict[str, str]]:
    region = region or "global"
    ingredients_text = ", ".join(ingredients) if isinstance(ingredients, list) else ingredients
    return [
        {"role": "system", "content": SYSTEM_PROMPT.format(region=region)},
        {"role": "user", "content": USER_PROMPT.format(
            product_name=product_name or "Unknown",
            brand=brand or "Unknown",
            region=region,
            ingredients=ingredients_text,
        )},
    ]


def iter_json_objects(text: str) -> Iterator[str]:
    """Yield each balanced ``{...}`` span in ``text``, outermost first, left to right."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        end = None
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    end = i
                    break
        if end is None:
            return
        yield text[start:end + 1]
        start = text.find("{", start + 1)


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _confidence(value: Any) -> int:
    if value is None:
        return FALLBACK_CONFIDENCE
    if isinstance(value, int):
        return max(0, min(100, value))
    score = float(value)
    if math.isnan(score):
        return FALLBACK_CONFIDENCE
    # json.loads yields inf for 1e999 and Infinity; clamp before rounding
    return int(round(max(0.0, min(100.0, score))))


def _to_parsed(data: Dict[str, Any], raw: str) -> ParsedAnalysis:
    verdict_value = str(_pick(data, "verdict") or "").strip().lower().replace(" ", "_").replace("-", "_")
    verdict = VERDICT_ALIASES.get(verdict_value)
    if verdict is None:
        raise ValueError(f"unknown verdict {verdict_value!r}")

    confidence = _confidence(_pick(data, "confidence_score", "confidenceScore", "confidence"))

    flagged = _pick(data, "flagged_ingredients", "flaggedIngredients") or []
    if isinstance(flagged, str):
        flagged = [flagged]
    flagged = [str(item).strip() for item in flagged if str(item).strip()]

    notes = str(_pick(data, "analysis_notes", "analysisNotes") or "").strip()
    recommendations = _pick(data, "recommendations")
    if recommendations:
        if isinstance(recommendations, list):
            recommendations = "; ".join(str(r) for r in recommendations)
        notes = f"{notes}\n\nRecommendations: {recommendations}".strip()

    return ParsedAnalysis(
        verdict=verdict,
        confidence_score=confidence,
        flagged_ingredients=flagged,
        analysis_notes=notes,
        raw_model_output=raw,
    )


def parse_analysis(raw: str) -> AnalysisResult:
    for span in iter_json_objects(raw):
        try:
            data = json.loads(span)
            if isinstance(data, dict):
                return _to_parsed(data, raw)
        except (ValueError, TypeError, OverflowError) as e:
            logger.debug(f"Skipping unparseable JSON span: {e}")

    logger.warning("AI response carried no usable JSON, falling back to questionable")
    return FallbackAnalysis(
        verdict=AIVerdict.QUESTIONABLE,
        confidence_score=FALLBACK_CONFIDENCE,
        flagged_ingredients=[],
        analysis_notes=raw.strip() or "Unable to parse AI response",
        raw_model_output=raw,
    )


class IngredientClassifier:
    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: Optional[str] = None,
        url: str = settings.LLM_GATEWAY_URL,
        model: str = settings.LLM_MODEL,
        temperature: float = settings.LLM_TEMPERATURE,
    ):
        self._client = client
        self._api_key = api_key if api_key is not None else settings.LLM_GATEWAY_KEY
        self._url = url
        self._model = model
        self._temperature = temperature

    async def analyze(
        self,
        ingredients: Union[List[str], str],
        product_name: Optional[str] = None,
        brand: Optional[str] = None,
        region: Optional[str] = None,
    ) -> AnalysisResult:
        if not self._api_key:
            raise ConfigurationError("LLM_GATEWAY_KEY is not configured")

        logger.info(f"Analyzing ingredients for: {product_name}")
        payload = {
            "model": self._model,
            "messages": build_messages(ingredients, product_name, brand, region),
            "temperature": self._temperature,
        }
        try:
            response = await self._client.post(
                self._url,
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.TransportError as e:
            raise GatewayUnreachable(f"AI gateway unreachable: {e}") from e

        if not response.is_success:
            logger.error(f"AI gateway error: {response.status_code} {response.text}")
            if response.status_code == 429:
                raise RateLimited("Rate limit exceeded. Please try again later.", status_code=429)
            if response.status_code == 402:
                raise QuotaExhausted("AI credits exhausted. Please add credits to continue.", status_code=402)
            raise UpstreamError(f"AI API error: {response.status_code}", status_code=response.status_code)

        content = _message_content(response)
        logger.debug(f"AI Response: {content}")
        return parse_analysis(content)


def _message_content(response: httpx.Response) -> str:
    try:
        data = response.json()
        content = data["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError):
        return response.text
    return content if isinstance(content, str) else ""
