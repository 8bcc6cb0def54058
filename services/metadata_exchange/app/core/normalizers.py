"""Text, identifier and date normalization for metadata exchange."""

import html
import re
from datetime import datetime, time, timezone
from enum import Enum
from xml.sax.saxutils import escape

DAY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
SECONDS_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$")
HTML_TAG_PATTERN = re.compile(r"<[^>]*>")
ORCID_PREFIX_PATTERN = re.compile(r"^(?:https?://)?orcid\.org/", re.IGNORECASE)
DOI_PATTERN = re.compile(r"^10\.\d{4,}/\S+$")
DOI_PREFIX_PATTERN = re.compile(r"^10\.\d{4,}$")

# escape() already covers &, < and >
_XML_QUOTE_ENTITIES = {'"': "&quot;", "'": "&apos;"}


class DateGranularity(str, Enum):
    """OAI-PMH datestamp granularities."""

    DAY = "YYYY-MM-DD"
    SECONDS = "YYYY-MM-DDThh:mm:ssZ"


def escape_xml(value: str | None) -> str:
    """Escape the five reserved XML characters and nothing else."""
    if not value:
        return ""
    return escape(value, _XML_QUOTE_ENTITIES)


def normalize_doi(doi: str | None) -> str | None:
    """Normalize a DOI for comparison.

    Normalization steps:
    1. Remove common URL prefixes (https://doi.org/, http://dx.doi.org/)
    2. Convert to lowercase
    3. Strip whitespace

    Args:
        doi: Raw DOI string or None

    Returns:
        Normalized DOI string or None
    """
    if not doi:
        return None

    normalized = doi.strip()

    prefixes = [
        "https://doi.org/",
        "http://doi.org/",
        "https://dx.doi.org/",
        "http://dx.doi.org/",
        "doi:",
        "DOI:",
    ]

    for prefix in prefixes:
        if normalized.startswith(prefix):
            normalized = normalized[len(prefix) :]
            break

    # Lowercase (DOIs are case-insensitive)
    return normalized.lower().strip()


def is_valid_doi(doi: str | None) -> bool:
    """Whether a bare DOI has the ``10.<registrant>/<suffix>`` shape."""
    return bool(doi and DOI_PATTERN.match(doi))


def is_valid_doi_prefix(prefix: str | None) -> bool:
    """Whether a registrant prefix looks like ``10.<four or more digits>``."""
    return bool(prefix and DOI_PREFIX_PATTERN.match(prefix))


def strip_html(text: str, max_length: int | None = None) -> str:
    """Remove HTML tags, decode entities and optionally truncate.

    Args:
        text: Possibly HTML-formatted text
        max_length: Hard cap on the returned length

    Returns:
        Plain text
    """
    plain = html.unescape(HTML_TAG_PATTERN.sub("", text))
    if max_length is not None:
        plain = plain[:max_length]
    return plain


def format_orcid(orcid: str) -> str:
    """Format an ORCID iD as the https URL form registries expect."""
    bare = ORCID_PREFIX_PATTERN.sub("", orcid.strip())
    return f"https://orcid.org/{bare}"


def format_oai_datetime(value: datetime) -> str:
    """Format a timestamp at second granularity, e.g. 2025-03-10T08:00:00Z."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def format_oai_date(value: datetime) -> str:
    """Format a timestamp truncated to its calendar day in UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d")


def parse_oai_date(value: str, end_of_day: bool = False) -> tuple[datetime, DateGranularity]:
    """Parse an OAI-PMH from/until argument.

    Day-granularity values expand to the first second of the day, or to the
    last instant of the day when ``end_of_day`` is set, so both bounds are
    inclusive.

    Args:
        value: ``YYYY-MM-DD`` or ``YYYY-MM-DDThh:mm:ssZ``
        end_of_day: Expand a day value to the end of that day

    Returns:
        Tuple of (aware UTC datetime, granularity)

    Raises:
        ValueError: If the value matches neither granularity or is not a real date
    """
    if DAY_PATTERN.match(value):
        day = datetime.strptime(value, "%Y-%m-%d").date()
        moment = time.max if end_of_day else time.min
        return datetime.combine(day, moment, tzinfo=timezone.utc), DateGranularity.DAY

    if SECONDS_PATTERN.match(value):
        parsed = datetime.strptime(value, "%Y-%m-%dT%H:%M:%SZ").replace(tzinfo=timezone.utc)
        if end_of_day:
            parsed = parsed.replace(microsecond=999999)
        return parsed, DateGranularity.SECONDS

    raise ValueError(f"Unsupported datestamp: {value!r}")
