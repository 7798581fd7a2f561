import re
from typing import List, Sequence, Union

from halalscan.schemas.schemas import AIVerdict, RulesAnalysis

FORBIDDEN_TERMS = (
    "pork", "pig", "swine", "lard", "bacon", "ham", "gammon", "prosciutto", "pancetta",
    "alcohol", "ethanol", "wine", "beer", "rum", "brandy", "whisky", "whiskey", "liqueur",
    "blood", "carmine", "cochineal", "e120",
)

QUESTIONABLE_TERMS = (
    "gelatin", "gelatine", "e441", "e542", "e471", "e472", "e422", "e920",
    "mono- and diglycerides", "monoglycerides", "diglycerides",
    "rennet", "pepsin", "lipase", "enzymes", "whey", "glycerin", "glycerol",
    "animal fat", "shortening", "tallow", "l-cysteine",
    "natural flavour", "natural flavours", "natural flavor", "natural flavors",
    "emulsifier", "vanilla extract",
)


def _pattern(terms: Sequence[str]) -> "re.Pattern[str]":
    alternatives = "|".join(re.escape(t) for t in sorted(terms, key=len, reverse=True))
    return re.compile(rf"(?<![a-z0-9])(?:{alternatives})(?![a-z0-9])", re.I)


FORBIDDEN_RE = _pattern(FORBIDDEN_TERMS)
QUESTIONABLE_RE = _pattern(QUESTIONABLE_TERMS)


def _flag(items: List[str], pattern: "re.Pattern[str]") -> List[str]:
    return [item for item in items if pattern.search(item)]


def evaluate(ingredients: Union[List[str], str]) -> RulesAnalysis:
    """Keyword scan used when the language model cannot be reached."""
    if isinstance(ingredients, str):
        items = [i.strip() for i in re.split(r"[,;]", ingredients) if i.strip()]
    else:
        items = [i for i in ingredients if i]

    forbidden = _flag(items, FORBIDDEN_RE)
    if forbidden:
        return RulesAnalysis(
            verdict=AIVerdict.NOT_HALAL,
            confidence_score=60,
            flagged_ingredients=forbidden,
            analysis_notes=f"Contains ingredients that are not permissible: {', '.join(forbidden)}.",
        )

    questionable = _flag(items, QUESTIONABLE_RE)
    notes = "Automated analysis found no clearly forbidden ingredients."
    if questionable:
        notes = f"Source of these ingredients could not be confirmed: {', '.join(questionable)}."
    return RulesAnalysis(
        verdict=AIVerdict.QUESTIONABLE,
        confidence_score=50,
        flagged_ingredients=questionable,
        analysis_notes=notes,
    )
