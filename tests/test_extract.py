"""Listing and detail page parsing."""

from __future__ import annotations

from datetime import datetime

import pytest
from pydantic import ValidationError

from jobharvest.core.extract import JobRecord, looks_blocked, parse_detail, parse_listing

DETAIL_TEMPLATE = "https://www.linkedin.com/jobs-guest/jobs/api/jobPosting/{job_id}"

LISTING_HTML = """
<li>
  <div class="base-card" data-entity-urn="urn:li:jobPosting:3901234567"
       data-reference-id="abc/123==">
    <a class="base-card__full-link" href="https://www.linkedin.com/jobs/view/senior-react-3901234567"></a>
    <h3 class="base-search-card__title">  Senior React Developer </h3>
    <h4 class="base-search-card__subtitle"><a href="#">Acme Corp</a></h4>
    <span class="job-search-card__location">Berlin, Germany</span>
    <time datetime="2024-05-01">2 weeks ago</time>
  </div>
</li>
<li>
  <div class="base-card" data-entity-urn="urn:li:jobPosting:3907654321">
    <h3 class="base-search-card__title">Frontend Engineer (Remote)</h3>
    <h4 class="base-search-card__subtitle">Globex</h4>
    <span class="job-search-card__location">United Kingdom</span>
  </div>
</li>
<li>
  <div class="base-card">
    <h3 class="base-search-card__title">Card without id</h3>
  </div>
</li>
"""

DETAIL_HTML = """
<section>
  <div class="show-more-less-html__markup">
    <p>Build things with React.</p>
  </div>
  <div class="compensation__salary">Base pay range $120,000 - $150,000/yr</div>
  <figcaption class="num-applicants__caption">Over 1,200 applicants</figcaption>
  <ul>
    <li class="description__job-criteria-item">
      <h3 class="description__job-criteria-subheader">Seniority level</h3>
      <span class="description__job-criteria-text">Mid-Senior level</span>
    </li>
    <li class="description__job-criteria-item">
      <h3 class="description__job-criteria-subheader">Employment type</h3>
      <span class="description__job-criteria-text">Full-time</span>
    </li>
    <li class="description__job-criteria-item">
      <h3 class="description__job-criteria-subheader">Industries</h3>
      <span class="description__job-criteria-text">Software Development</span>
    </li>
  </ul>
  <span class="workplace-type">Remote</span>
</section>
"""


def test_listing_cards_become_records():
    parsed = parse_listing(LISTING_HTML, DETAIL_TEMPLATE, keyword="react", region_id="101282230")

    assert parsed.card_count == 3
    assert not parsed.blocked
    assert [r.external_id for r in parsed.records] == ["3901234567", "3907654321"]

    first = parsed.records[0]
    assert first.title == "Senior React Developer"
    assert first.organization == "Acme Corp"
    assert first.location == "Berlin, Germany"
    assert first.posted_at == datetime(2024, 5, 1)
    assert first.posted_text == "2 weeks ago"
    assert first.url == "https://www.linkedin.com/jobs/view/senior-react-3901234567"
    assert first.ref_id == "abc/123=="
    assert first.detail_url == f"{DETAIL_TEMPLATE.format(job_id='3901234567')}?refId=abc/123%3D%3D"
    assert first.keyword == "react"
    assert first.region_id == "101282230"
    assert not first.detailed

    second = parsed.records[1]
    assert second.organization == "Globex"
    assert second.url == "https://www.linkedin.com/jobs/view/3907654321"
    assert second.detail_url == DETAIL_TEMPLATE.format(job_id="3907654321")


def test_empty_listing_is_not_blocked():
    parsed = parse_listing("", DETAIL_TEMPLATE)
    assert parsed.records == []
    assert not parsed.blocked


def test_block_page_is_detected():
    parsed = parse_listing(
        "<html><body><h1>Access Denied</h1><p>Please verify you are human</p></body></html>",
        DETAIL_TEMPLATE,
    )
    assert parsed.records == []
    assert parsed.blocked


def test_block_wording_inside_cards_is_ignored():
    html = LISTING_HTML.replace("Acme Corp", "Blocked Chain Labs")
    assert not parse_listing(html, DETAIL_TEMPLATE).blocked


def test_looks_blocked():
    assert looks_blocked("You have hit a RATE LIMIT")
    assert not looks_blocked("Senior React Developer")


def test_detail_fields_are_merged_into_record():
    record = JobRecord(external_id="3901234567", title="Senior React Developer", location="Berlin")
    detailed = parse_detail(DETAIL_HTML, record)

    assert detailed.detailed
    assert detailed.description == "Build things with React."
    assert detailed.salary_text == "$120,000 - $150,000/yr"
    assert detailed.applicants_count == 1200
    assert detailed.criteria == {
        "seniority": "Mid-Senior level",
        "employment_type": "Full-time",
        "industries": "Software Development",
    }
    assert detailed.is_remote
    # The listing record is left untouched
    assert not record.detailed
    assert record.description is None


def test_detail_without_fields_keeps_listing_values():
    record = JobRecord(
        external_id="1",
        title="Engineer",
        location="Remote",
        salary_text="$90K",
        applicants_count=12,
    )
    detailed = parse_detail("<div><p>Nothing here</p></div>", record)

    assert detailed.detailed
    assert detailed.salary_text == "$90K"
    assert detailed.applicants_count == 12
    assert detailed.is_remote


def test_record_id_is_normalized():
    assert JobRecord(external_id=" 42 ").external_id == "42"
    assert JobRecord(external_id=42).external_id == "42"
    with pytest.raises(ValidationError):
        JobRecord(external_id="")
