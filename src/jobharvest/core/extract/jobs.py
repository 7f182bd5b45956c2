"""
Guest job listing and detail page parsing.

Listing pages are fragments of ``<li>`` cards; detail pages carry the
description, compensation, criteria list and applicant count. Parsing is
selector-based with fallbacks, and never raises on missing fields.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from urllib.parse import quote

from lxml import html as lxml_html
from lxml.etree import ParserError
from lxml.html import HtmlElement

from .records import JobRecord

logger = logging.getLogger(__name__)


# =============================================================================
# Selectors
# =============================================================================

CARD_SELECTOR = "div.base-card"
TITLE_SELECTOR = ".base-search-card__title"
COMPANY_SELECTORS = (".base-search-card__subtitle a", ".base-search-card__subtitle")
LOCATION_SELECTOR = ".job-search-card__location"
POSTED_SELECTOR = "time"
LINK_SELECTOR = "a.base-card__full-link"

DESCRIPTION_SELECTORS = (
    ".show-more-less-html__markup",
    ".description__text",
    ".jobs-description-content__text",
    ".jobs-description__content",
    ".jobs-box__html-content",
    ".job-description",
)

APPLICANT_SELECTORS = (
    "span.num-applicants__caption",
    "figcaption.num-applicants__caption",
    ".jobs-unified-top-card__applicant-count",
    ".applicant-count",
)

SALARY_SELECTORS = (
    ".compensation__salary",
    ".salary",
    ".jobs-unified-top-card__salary-details",
    ".salary-range",
)

CRITERIA_ITEM_SELECTORS = (
    ".description__job-criteria-item",
    ".job-criteria-item",
)
CRITERIA_HEADER_SELECTORS = (".description__job-criteria-subheader", "h3")
CRITERIA_VALUE_SELECTORS = (".description__job-criteria-text", "span")

REMOTE_SELECTORS = (
    ".jobs-unified-top-card__workplace-type",
    ".workplace-type",
    ".job-type-info",
)

# Text that shows the source is refusing us rather than out of results
BLOCKED_INDICATORS = (
    "rate limit",
    "blocked",
    "access denied",
    "captcha",
    "please verify you are human",
)

SALARY_PATTERN = re.compile(
    r"[\$¥€£₹]\s*[\d,.]+[Kk]?(?:[\s\-–]+[\$¥€£₹]?[\d,.]+[Kk]?)?(?:\s*/\s*[a-zA-Z]+)?"
)
DIGITS_PATTERN = re.compile(r"\d[\d,]*")

CRITERIA_FIELDS = {
    "seniority": "seniority",
    "employment": "employment_type",
    "function": "job_function",
    "industr": "industries",
}


@dataclass
class ListingParse:
    """Cards parsed from one listing page."""

    records: list[JobRecord] = field(default_factory=list)
    card_count: int = 0
    blocked: bool = False


# =============================================================================
# Helpers
# =============================================================================


def _text(element: HtmlElement | None) -> str:
    if element is None:
        return ""
    return " ".join(element.text_content().split())


def _first(root: HtmlElement, selectors: tuple[str, ...] | str) -> HtmlElement | None:
    if isinstance(selectors, str):
        selectors = (selectors,)
    for selector in selectors:
        found = root.cssselect(selector)
        if found:
            return found[0]
    return None


def _parse_document(html: str) -> HtmlElement | None:
    if not html or not html.strip():
        return None
    try:
        return lxml_html.fromstring(html)
    except (ParserError, ValueError) as e:
        logger.warning(f"Unparseable page: {e}")
        return None


def looks_blocked(text: str) -> bool:
    """Check page text for block or rate-limit wording."""
    lowered = text.lower()
    return any(indicator in lowered for indicator in BLOCKED_INDICATORS)


def _parse_posted(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.strip())
    except ValueError:
        return None


# =============================================================================
# Listing
# =============================================================================


def parse_listing(
    html: str,
    detail_url_template: str,
    keyword: str | None = None,
    region_id: str | None = None,
) -> ListingParse:
    """Parse a listing fragment into records.

    An empty page whose text matches a block indicator is reported as
    blocked, so the caller can abandon the cell instead of paging on.
    """
    doc = _parse_document(html)
    if doc is None:
        return ListingParse()

    result = ListingParse()
    for card in doc.cssselect(CARD_SELECTOR):
        result.card_count += 1
        urn = card.get("data-entity-urn")
        if not urn:
            continue
        job_id = urn.rsplit(":", 1)[-1].strip()
        if not job_id:
            continue

        ref_id = (card.get("data-reference-id") or "").strip() or None
        detail_url = detail_url_template.format(job_id=job_id)
        if ref_id:
            detail_url = f"{detail_url}?refId={quote(ref_id)}"

        link = _first(card, LINK_SELECTOR)
        posted = _first(card, POSTED_SELECTOR)

        result.records.append(
            JobRecord(
                external_id=job_id,
                title=_text(_first(card, TITLE_SELECTOR)),
                organization=_text(_first(card, COMPANY_SELECTORS)),
                location=_text(_first(card, LOCATION_SELECTOR)),
                posted_at=_parse_posted(posted.get("datetime") if posted is not None else None),
                posted_text=_text(posted) or None,
                url=(link.get("href") if link is not None else None)
                or f"https://www.linkedin.com/jobs/view/{job_id}",
                detail_url=detail_url,
                ref_id=ref_id,
                keyword=keyword,
                region_id=region_id,
            )
        )

    if result.card_count == 0 and looks_blocked(_text(doc)):
        result.blocked = True

    return result


# =============================================================================
# Detail
# =============================================================================


def _extract_salary(doc: HtmlElement) -> str | None:
    for selector in SALARY_SELECTORS:
        for element in doc.cssselect(selector):
            text = _text(element)
            if not text:
                continue
            match = SALARY_PATTERN.search(text)
            return match.group(0).strip() if match else text
    return None


def _extract_applicants(doc: HtmlElement) -> int | None:
    element = _first(doc, APPLICANT_SELECTORS)
    if element is None:
        return None
    match = DIGITS_PATTERN.search(_text(element))
    if not match:
        return None
    return int(match.group(0).replace(",", ""))


def _extract_criteria(doc: HtmlElement) -> dict[str, str]:
    criteria: dict[str, str] = {}
    for selector in CRITERIA_ITEM_SELECTORS:
        for item in doc.cssselect(selector):
            header = _text(_first(item, CRITERIA_HEADER_SELECTORS))
            value = _text(_first(item, CRITERIA_VALUE_SELECTORS))
            if not header or not value:
                continue
            lowered = header.lower()
            for needle, key in CRITERIA_FIELDS.items():
                if needle in lowered:
                    criteria[key] = value
                    break
        if criteria:
            break
    return criteria


def _detect_remote(doc: HtmlElement, record: JobRecord) -> bool:
    texts = [_text(e).lower() for selector in REMOTE_SELECTORS for e in doc.cssselect(selector)]
    texts.append(record.location.lower())
    texts.append(record.title.lower())
    return any("remote" in text for text in texts)


def parse_detail(html: str, record: JobRecord) -> JobRecord:
    """Merge detail page fields into a listing record.

    Fields missing from the page keep the listing values.
    """
    doc = _parse_document(html)
    if doc is None:
        return record.model_copy(update={"detailed": True})

    description_el = _first(doc, DESCRIPTION_SELECTORS)
    description = description_el.text_content().strip() if description_el is not None else None

    update = {
        "description": description or record.description,
        "salary_text": _extract_salary(doc) or record.salary_text,
        "applicants_count": _extract_applicants(doc),
        "criteria": {**record.criteria, **_extract_criteria(doc)},
        "is_remote": _detect_remote(doc, record),
        "detailed": True,
    }
    if update["applicants_count"] is None:
        update["applicants_count"] = record.applicants_count
    return record.model_copy(update=update)
