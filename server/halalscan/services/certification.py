"""
Halal certification lookup.

A cheap label-tag check runs first. When it finds nothing, every configured
probe (reputation site, optional web search, certification registries) runs
concurrently with its own timeout. All probes are awaited so ``check_details``
always lists every source that was tried; the first hit in probe order wins.
"""
import asyncio
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple
from urllib.parse import quote_plus

import httpx

from halalscan.core.config import settings
from halalscan.schemas.schemas import CertificationCheckResult, CertificationOutcome, CheckStatus
from halalscan.services import serp_api

logger = logging.getLogger(__name__)

HALAL_LABEL_MARKERS = ("halal", "halaal")
LABEL_CONFIDENCE = 85

PAGE_INDICATORS = ("halal-certified", "certified halal", "certification-badge")
CERT_BODY_RE = re.compile(r"certification(?:-|\s+)body[\"\s:]+([^\"<>\n]+)", re.I)
CERT_COUNTRY_RE = re.compile(r"certified(?:-|\s+)in[\"\s:]+([^\"<>\n]+)", re.I)


@dataclass(frozen=True)
class ProbeContext:
    product_name: Optional[str] = None
    barcode: Optional[str] = None
    brand: Optional[str] = None


@dataclass(frozen=True)
class CertificationHit:
    cert_body: str
    cert_country: Optional[str]
    cert_link: Optional[str]
    confidence_score: int
    external_source: str


@dataclass(frozen=True)
class ProbeResult:
    status: CheckStatus
    hit: Optional[CertificationHit] = None

    @property
    def found(self) -> bool:
        return self.hit is not None


class CertificationProbe(ABC):
    name: str
    country: str

    def applies_to(self, context: ProbeContext) -> bool:
        return True

    @abstractmethod
    async def probe(self, context: ProbeContext, client: httpx.AsyncClient) -> ProbeResult:
        ...


class RegistryProbe(CertificationProbe):
    """HEAD request against a registry page keyed by barcode; any 2xx counts as listed."""

    confidence = 95

    def __init__(self, name: str, country: str, url_template: str):
        self.name = name
        self.country = country
        self.url_template = url_template

    def applies_to(self, context: ProbeContext) -> bool:
        return bool(context.barcode)

    def url_for(self, barcode: str) -> str:
        return self.url_template.format(barcode=barcode)

    async def probe(self, context, client):
        url = self.url_for(context.barcode)
        response = await client.head(url, headers={
            "User-Agent": settings.USER_AGENT,
            "Accept": "text/html,application/json",
        })
        if not response.is_success:
            return ProbeResult(status=CheckStatus.NOT_FOUND)

        logger.info(f"Found potential certification in {self.name} ({self.country})")
        return ProbeResult(
            status=CheckStatus.SUCCESS,
            hit=CertificationHit(
                cert_body=self.name,
                cert_country=self.country,
                cert_link=url,
                confidence_score=self.confidence,
                external_source=self.name.lower(),
            ),
        )


class ReputationSiteProbe(CertificationProbe):
    """Text search on a verification site, scanning the result page for certification markers."""

    name = "VerifyHalal"
    country = "Global"
    search_url = "https://verifyhalal.com/product-result.html?keyword={keyword}"
    confidence = 90

    def applies_to(self, context):
        return bool(context.product_name)

    async def probe(self, context, client):
        url = self.search_url.format(keyword=quote_plus(context.product_name))
        response = await client.get(url, headers={"User-Agent": settings.USER_AGENT})
        if not response.is_success:
            return ProbeResult(status=CheckStatus.ERROR)

        hit = scan_certification_page(response.text, url)
        if hit is not None:
            logger.info(f"Found certification on {self.name}")
        return ProbeResult(status=CheckStatus.SUCCESS, hit=hit)


def scan_certification_page(html: str, link: str) -> Optional[CertificationHit]:
    lowered = html.lower()
    has_indicator = any(marker in lowered for marker in PAGE_INDICATORS)
    body_match = CERT_BODY_RE.search(html)
    if not has_indicator and body_match is None:
        return None

    country_match = CERT_COUNTRY_RE.search(html)
    return CertificationHit(
        cert_body=body_match.group(1).strip() if body_match else "VerifyHalal Listed",
        cert_country=country_match.group(1).strip() if country_match else None,
        cert_link=link,
        confidence_score=ReputationSiteProbe.confidence,
        external_source="verifyhalal",
    )


class WebSearchProbe(CertificationProbe):
    """Google search through SerpAPI for pages that call the product halal certified."""

    name = "Web Search"
    country = "Global"
    confidence = 70
    indicators = ("halal certified", "certified halal", "halal-certified")

    def __init__(self, api_key: str):
        self.api_key = api_key

    def applies_to(self, context):
        return bool(context.product_name)

    async def probe(self, context, client):
        query = f"\"{context.product_name}\" halal certified"
        if context.brand:
            query = f"{context.brand} {query}"
        result = await serp_api.google_search(query, api_key=self.api_key)
        if result.get("error"):
            logger.warning(f"SerpAPI search failed: {result['error']}")
            return ProbeResult(status=CheckStatus.ERROR)

        for item in serp_api.organic_results(result):
            text = f"{item.get('title', '')} {item.get('snippet', '')}".lower()
            if any(indicator in text for indicator in self.indicators):
                return ProbeResult(
                    status=CheckStatus.SUCCESS,
                    hit=CertificationHit(
                        cert_body=item.get("source") or item.get("displayed_link") or self.name,
                        cert_country=None,
                        cert_link=item.get("link"),
                        confidence_score=self.confidence,
                        external_source="web_search",
                    ),
                )
        return ProbeResult(status=CheckStatus.SUCCESS)


CERTIFICATION_REGISTRIES: Tuple[Tuple[str, str, str], ...] = (
    ("JAKIM", "Malaysia",
     "https://www.halal.gov.my/v4/index.php?data=bW9kdWxlcy9uZXdzOzs7Ow==&utama=panduan&ids={barcode}"),
    ("MUI", "Indonesia", "https://www.halalmui.org/mui14/main/page/produk-halal-mui/{barcode}"),
    ("HFA", "United States", "https://halalfoodauthority.com/verify?barcode={barcode}"),
    ("IFANCA", "International", "https://www.ifanca.org/halal-certification/verify/{barcode}"),
    ("EIAC", "United Arab Emirates", "https://www.eiac.gov.ae/en/halal-products/search?code={barcode}"),
    ("HMC", "United Kingdom", "https://www.halalhmc.org/verify-product/{barcode}"),
    ("SANHA", "South Africa", "https://www.sanha.co.za/halaal-search/?product_code={barcode}"),
    ("HFCE", "Canada", "https://halalfoodcouncil.ca/verify/{barcode}"),
)


def default_probes(serp_api_key: Optional[str] = None) -> List[CertificationProbe]:
    probes: List[CertificationProbe] = [ReputationSiteProbe()]
    if serp_api_key:
        probes.append(WebSearchProbe(serp_api_key))
    probes.extend(RegistryProbe(name, country, url) for name, country, url in CERTIFICATION_REGISTRIES)
    return probes


def find_halal_label(labels: Optional[Iterable[str]]) -> Optional[str]:
    for label in labels or ():
        lowered = label.lower()
        if any(marker in lowered for marker in HALAL_LABEL_MARKERS):
            return label
    return None


class CertificationChecker:
    def __init__(
        self,
        client: httpx.AsyncClient,
        probes: Optional[Sequence[CertificationProbe]] = None,
        timeout: float = settings.CERT_PROBE_TIMEOUT_SECONDS,
    ):
        self._client = client
        self._probes = list(probes) if probes is not None else default_probes(settings.SERPAI_KEY)
        self._timeout = timeout

    async def check(
        self,
        product_name: Optional[str] = None,
        barcode: Optional[str] = None,
        brand: Optional[str] = None,
        labels: Optional[Iterable[str]] = None,
    ) -> CertificationOutcome:
        label = find_halal_label(labels)
        if label is not None:
            logger.info(f"Found halal label in product tags: {label}")
            return CertificationOutcome(
                is_certified=True,
                cert_body=label,
                confidence_score=LABEL_CONFIDENCE,
                external_source="label_tags",
            )

        context = ProbeContext(product_name=product_name, barcode=barcode, brand=brand)
        probes = [p for p in self._probes if p.applies_to(context)]
        logger.info(f"Running {len(probes)} certification checks in parallel...")

        settled = await asyncio.gather(*(self._run_probe(p, context) for p in probes))

        outcome = CertificationOutcome(check_details=[check for check, _ in settled])
        for _, hit in settled:
            if hit is None:
                continue
            outcome.is_certified = True
            outcome.cert_body = hit.cert_body
            outcome.cert_country = hit.cert_country
            outcome.cert_link = hit.cert_link
            outcome.confidence_score = hit.confidence_score
            outcome.external_source = hit.external_source
            logger.info(f"Found certification: {hit.cert_body}")
            break
        return outcome

    async def _run_probe(
        self, probe: CertificationProbe, context: ProbeContext
    ) -> Tuple[CertificationCheckResult, Optional[CertificationHit]]:
        started = time.monotonic()
        hit = None
        try:
            result = await asyncio.wait_for(probe.probe(context, self._client), timeout=self._timeout)
            status, hit = result.status, result.hit
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.info(f"Certification check {probe.name} timed out")
            status = CheckStatus.TIMEOUT
        except Exception as e:
            logger.info(f"Could not check {probe.name}: {e}")
            status = CheckStatus.ERROR

        check = CertificationCheckResult(
            registry_name=probe.name,
            country=probe.country,
            checked=True,
            found=hit is not None,
            response_time_ms=int((time.monotonic() - started) * 1000),
            status=status,
        )
        return check, hit
