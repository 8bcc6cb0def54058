"""Dublin Core rendering and OAI identifiers for content records."""

from services.metadata_exchange.app.config import Settings
from services.metadata_exchange.app.core.normalizers import escape_xml, format_oai_date
from shared.schemas.content import ContentRecord, ContentType

OAI_DC_PREFIX = "oai_dc"
OAI_DC_SCHEMA = "http://www.openarchives.org/OAI/2.0/oai_dc.xsd"
OAI_DC_NAMESPACE = "http://www.openarchives.org/OAI/2.0/oai_dc/"
DC_NAMESPACE = "http://purl.org/dc/elements/1.1/"
XSI_NAMESPACE = "http://www.w3.org/2001/XMLSchema-instance"

DEFAULT_LANGUAGE = "en"

DC_TYPE_LABELS: dict[ContentType, str] = {
    ContentType.ARTICLE: "Article",
    ContentType.CASE_STUDY: "Case Study",
    ContentType.BOOK: "Book",
    ContentType.BOOK_CHAPTER: "Book Chapter",
    ContentType.TEACHING_NOTE: "Teaching Material",
    ContentType.COLLECTION: "Collection",
}

LANDING_PATHS: dict[ContentType, str] = {
    ContentType.ARTICLE: "articles",
    ContentType.CASE_STUDY: "case-studies",
    ContentType.BOOK: "books",
    ContentType.BOOK_CHAPTER: "books",
    ContentType.TEACHING_NOTE: "teaching-notes",
    ContentType.COLLECTION: "collections",
}


def content_type_label(content_type: ContentType | None) -> str:
    """Dublin Core type for a content type, ``Text`` when unmapped."""
    return DC_TYPE_LABELS.get(content_type, "Text")


def landing_url(record: ContentRecord, base_url: str) -> str:
    """Canonical public page of a record."""
    path = LANDING_PATHS.get(record.content_type, "articles")
    return f"{base_url.rstrip('/')}/{path}/{record.slug}"


def oai_identifier(content_id: str, repository_identifier: str) -> str:
    """Build ``oai:<host>:content:<id>``."""
    return f"oai:{repository_identifier}:content:{content_id}"


def parse_oai_identifier(identifier: str) -> str:
    """Native content id from an OAI identifier (its last ``:`` segment)."""
    return identifier.rsplit(":", 1)[-1]


def render_dublin_core(record: ContentRecord, settings: Settings) -> str:
    """Render the ``oai_dc:dc`` metadata fragment for a record.

    Output is deterministic for a given record and settings so harvesters can
    compare payloads byte for byte.

    Args:
        record: Published content record with journal resolved
        settings: Service settings (repository name, base URL)

    Returns:
        XML fragment string
    """
    journal = record.journal
    publisher = (journal.publisher if journal and journal.publisher else None) or (
        settings.repository_name
    )
    if record.doi:
        identifier = f"https://doi.org/{record.doi}"
    else:
        identifier = landing_url(record, settings.base_url)
    language = (journal.language if journal and journal.language else DEFAULT_LANGUAGE).lower()
    rights = "Open Access" if journal and journal.open_access else "All Rights Reserved"

    lines = [
        f'<oai_dc:dc xmlns:oai_dc="{OAI_DC_NAMESPACE}" xmlns:dc="{DC_NAMESPACE}" '
        f'xmlns:xsi="{XSI_NAMESPACE}" '
        f'xsi:schemaLocation="{OAI_DC_NAMESPACE} {OAI_DC_SCHEMA}">',
        f"  <dc:title>{escape_xml(record.title)}</dc:title>",
    ]
    for author in record.authors:
        lines.append(f"  <dc:creator>{escape_xml(author.name)}</dc:creator>")
    for tag in record.tags:
        lines.append(f"  <dc:subject>{escape_xml(tag)}</dc:subject>")
    if record.description:
        lines.append(f"  <dc:description>{escape_xml(record.description)}</dc:description>")
    lines.append(f"  <dc:publisher>{escape_xml(publisher)}</dc:publisher>")
    if record.published_at:
        lines.append(f"  <dc:date>{format_oai_date(record.published_at)}</dc:date>")
    lines.append(f"  <dc:type>{escape_xml(content_type_label(record.content_type))}</dc:type>")
    lines.append(f"  <dc:identifier>{escape_xml(identifier)}</dc:identifier>")
    lines.append(f"  <dc:language>{escape_xml(language)}</dc:language>")
    if journal and journal.title:
        lines.append(f"  <dc:relation>{escape_xml(journal.title)}</dc:relation>")
    lines.append(f"  <dc:rights>{rights}</dc:rights>")
    if journal and journal.issn:
        lines.append(f"  <dc:source>ISSN: {escape_xml(journal.issn)}</dc:source>")
    lines.append("</oai_dc:dc>")
    return "\n".join(lines)
