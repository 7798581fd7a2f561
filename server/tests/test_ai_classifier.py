"""
Tests for the AI ingredient classifier and its tolerant response parser.
"""

import json

import httpx
import pytest

from halalscan.core.errors import (
    ConfigurationError,
    GatewayUnreachable,
    QuotaExhausted,
    RateLimited,
    UpstreamError,
)
from halalscan.schemas.schemas import AIVerdict, FallbackAnalysis, ParsedAnalysis
from halalscan.services.ai_classifier import (
    IngredientClassifier,
    build_messages,
    iter_json_objects,
    parse_analysis,
)


def completion(content):
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


class TestParseAnalysis:
    def test_plain_json(self):
        raw = json.dumps({
            "verdict": "not_halal",
            "confidence_score": 92,
            "flagged_ingredients": ["gelatin (pork)"],
            "analysis_notes": "Contains pork gelatin.",
        })
        analysis = parse_analysis(raw)

        assert isinstance(analysis, ParsedAnalysis)
        assert analysis.verdict == AIVerdict.NOT_HALAL
        assert analysis.confidence_score == 92
        assert analysis.flagged_ingredients == ["gelatin (pork)"]
        assert analysis.analysis_notes == "Contains pork gelatin."
        assert analysis.raw_model_output == raw

    def test_fenced_json_with_prose(self):
        raw = (
            "Here is my analysis:\n```json\n"
            '{"verdict": "halal", "confidence_score": 80, "flagged_ingredients": [], '
            '"analysis_notes": "All plant based {no animal inputs}."}\n```\nThanks!'
        )
        analysis = parse_analysis(raw)

        assert analysis.kind == "parsed"
        assert analysis.verdict == AIVerdict.HALAL
        assert analysis.analysis_notes == "All plant based {no animal inputs}."

    def test_plain_prose_falls_back(self):
        prose = "I could not determine the status of these ingredients."
        analysis = parse_analysis(prose)

        assert isinstance(analysis, FallbackAnalysis)
        assert analysis.verdict == AIVerdict.QUESTIONABLE
        assert analysis.confidence_score == 50
        assert analysis.flagged_ingredients == []
        assert analysis.analysis_notes == prose
        assert analysis.raw_model_output == prose

    def test_broken_json_falls_back(self):
        raw = '{"verdict": "halal", "confidence_score": }'
        analysis = parse_analysis(raw)
        assert analysis.kind == "fallback"
        assert analysis.raw_model_output == raw

    def test_empty_output_falls_back(self):
        analysis = parse_analysis("")
        assert analysis.kind == "fallback"
        assert analysis.analysis_notes == "Unable to parse AI response"

    def test_unknown_verdict_falls_back(self):
        assert parse_analysis('{"verdict": "maybe"}').kind == "fallback"

    def test_camel_case_keys_and_aliases(self):
        raw = '{"verdict": "Haram", "confidenceScore": 150, "flaggedIngredients": "lard", "analysisNotes": "Lard."}'
        analysis = parse_analysis(raw)

        assert analysis.verdict == AIVerdict.NOT_HALAL
        assert analysis.confidence_score == 100
        assert analysis.flagged_ingredients == ["lard"]

    def test_mashbooh_is_questionable(self):
        analysis = parse_analysis('{"verdict": "mashbooh", "confidence_score": -5}')
        assert analysis.verdict == AIVerdict.QUESTIONABLE
        assert analysis.confidence_score == 0

    def test_recommendations_appended(self):
        raw = '{"verdict": "questionable", "confidence_score": 40, "analysis_notes": "E471 source unknown.", "recommendations": "Look for a halal logo"}'
        analysis = parse_analysis(raw)
        assert analysis.analysis_notes == "E471 source unknown.\n\nRecommendations: Look for a halal logo"

    def test_skips_unparseable_span(self):
        raw = 'Rules {see below}. {"verdict": "halal", "confidence_score": 70}'
        analysis = parse_analysis(raw)
        assert analysis.kind == "parsed"
        assert analysis.confidence_score == 70

    @pytest.mark.parametrize("score, expected", [
        ("1e999", 100),
        ("Infinity", 100),
        ("-Infinity", 0),
        ("1" + "0" * 400, 100),
        ("NaN", 50),
    ])
    def test_out_of_range_confidence_clamped(self, score, expected):
        analysis = parse_analysis('{"verdict": "halal", "confidence_score": %s}' % score)
        assert analysis.kind == "parsed"
        assert analysis.verdict == AIVerdict.HALAL
        assert analysis.confidence_score == expected

    def test_non_numeric_confidence_falls_back(self):
        assert parse_analysis('{"verdict": "halal", "confidence_score": "very"}').kind == "fallback"


class TestJsonSpans:
    def test_braces_inside_strings_ignored(self):
        text = 'x {"a": "}{", "b": {"c": 1}} y'
        assert list(iter_json_objects(text))[0] == '{"a": "}{", "b": {"c": 1}}'

    def test_unbalanced(self):
        assert list(iter_json_objects('{"a": 1')) == []


class TestPrompt:
    def test_list_ingredients_joined(self):
        messages = build_messages(["sugar", "gelatin"], product_name="Gummies", brand="Sweet", region="uk")
        assert messages[0]["role"] == "system"
        assert "Standards vary by region (uk)" in messages[0]["content"]
        assert "Product: Gummies" in messages[1]["content"]
        assert "sugar, gelatin" in messages[1]["content"]

    def test_defaults(self):
        messages = build_messages("water")
        assert "Brand: Unknown" in messages[1]["content"]
        assert "Region: global" in messages[1]["content"]


class TestClassifier:
    @pytest.mark.asyncio
    async def test_successful_completion(self, mock_client):
        requests = []

        def handler(request):
            requests.append(request)
            return completion('{"verdict": "halal", "confidence_score": 88, "flagged_ingredients": [], "analysis_notes": "ok"}')

        classifier = IngredientClassifier(mock_client(handler), api_key="key-123", url="https://gateway.test/v1/chat")
        analysis = await classifier.analyze(["sugar", "salt"], product_name="Crisps", region="us")

        assert analysis.verdict == AIVerdict.HALAL
        assert analysis.confidence_score == 88
        assert requests[0].headers["authorization"] == "Bearer key-123"
        body = json.loads(requests[0].content)
        assert body["temperature"] == 0.3
        assert [m["role"] for m in body["messages"]] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_prose_completion_does_not_raise(self, mock_client):
        classifier = IngredientClassifier(mock_client(lambda r: completion("Looks fine to me.")), api_key="k")
        analysis = await classifier.analyze("sugar")
        assert analysis.kind == "fallback"
        assert analysis.analysis_notes == "Looks fine to me."

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,error", [
        (429, RateLimited),
        (402, QuotaExhausted),
        (500, UpstreamError),
        (401, UpstreamError),
    ])
    async def test_gateway_statuses(self, mock_client, status, error):
        classifier = IngredientClassifier(mock_client(lambda r: httpx.Response(status, text="nope")), api_key="k")
        with pytest.raises(error) as exc_info:
            await classifier.analyze(["sugar"])
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_transport_failure(self, mock_client):
        def handler(request):
            raise httpx.ConnectError("no route", request=request)

        classifier = IngredientClassifier(mock_client(handler), api_key="k")
        with pytest.raises(GatewayUnreachable):
            await classifier.analyze(["sugar"])

    @pytest.mark.asyncio
    async def test_missing_key(self, mock_client):
        classifier = IngredientClassifier(mock_client(lambda r: completion("{}")), api_key="")
        with pytest.raises(ConfigurationError):
            await classifier.analyze(["sugar"])
