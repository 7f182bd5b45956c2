"""Job record model and page parsers."""

from .jobs import ListingParse, looks_blocked, parse_detail, parse_listing
from .records import CRITERIA_KEYS, JobRecord

__all__ = [
    "CRITERIA_KEYS",
    "JobRecord",
    "ListingParse",
    "looks_blocked",
    "parse_detail",
    "parse_listing",
]
