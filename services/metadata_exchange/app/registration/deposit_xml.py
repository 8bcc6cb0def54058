"""Crossref 4.4.2 deposit XML rendering."""

from datetime import datetime

from services.metadata_exchange.app.config import Settings
from services.metadata_exchange.app.core.clock import Clock
from services.metadata_exchange.app.core.normalizers import escape_xml, format_orcid, strip_html
from services.metadata_exchange.app.oai.serializer import DEFAULT_LANGUAGE, landing_url
from services.metadata_exchange.app.registration.metadata import ABSTRACT_MAX_LENGTH
from shared.schemas.content import ContentRecord

CROSSREF_SCHEMA_VERSION = "4.4.2"
CROSSREF_NAMESPACE = f"http://www.crossref.org/schema/{CROSSREF_SCHEMA_VERSION}"
CROSSREF_SCHEMA = f"{CROSSREF_NAMESPACE}/crossref{CROSSREF_SCHEMA_VERSION}.xsd"
XSI_NAMESPACE = "http://www.w3.org/2001/XMLSchema-instance"


def _date_parts(value: datetime, indent: str) -> list[str]:
    return [
        f"{indent}<year>{value.year}</year>",
        f"{indent}<month>{value.month:02d}</month>",
        f"{indent}<day>{value.day:02d}</day>",
    ]


def render_deposit_xml(
    record: ContentRecord,
    settings: Settings,
    clock: Clock,
    doi: str | None = None,
) -> str:
    """Render a Crossref ``doi_batch`` deposit document for one record.

    Args:
        record: Published record with authors and journal resolved
        settings: Service settings (depositor identity, prefix, base URL)
        clock: Source of the batch timestamp
        doi: DOI to deposit; defaults to the record's DOI, then to
            ``<prefix>/<content_id>``

    Returns:
        XML document string

    Raises:
        ValueError: If the record has no publication date
    """
    if record.published_at is None:
        raise ValueError(f"Content {record.content_id} has no publication date")

    doi = doi or record.doi or f"{settings.crossref_doi_prefix}/{record.content_id}"
    published = record.published_at
    journal = record.journal
    language = (journal.language if journal and journal.language else DEFAULT_LANGUAGE).lower()
    full_title = journal.title if journal else settings.repository_name

    lines = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        f'<doi_batch xmlns="{CROSSREF_NAMESPACE}" xmlns:xsi="{XSI_NAMESPACE}" '
        f'xsi:schemaLocation="{CROSSREF_NAMESPACE} {CROSSREF_SCHEMA}" '
        f'version="{CROSSREF_SCHEMA_VERSION}">',
        "  <head>",
        f"    <doi_batch_id>{escape_xml(record.content_id)}</doi_batch_id>",
        f"    <timestamp>{clock.now().strftime('%Y%m%d%H%M%S')}</timestamp>",
        "    <depositor>",
        f"      <depositor_name>{escape_xml(settings.repository_name)}</depositor_name>",
        f"      <email_address>{escape_xml(settings.admin_email)}</email_address>",
        "    </depositor>",
        f"    <registrant>{escape_xml(settings.repository_name)}</registrant>",
        "  </head>",
        "  <body>",
        "    <journal>",
        f'      <journal_metadata language="{escape_xml(language)}">',
        f"        <full_title>{escape_xml(full_title)}</full_title>",
    ]
    if journal and journal.issn:
        lines.append(f'        <issn media_type="print">{escape_xml(journal.issn)}</issn>')
    if journal and journal.eissn:
        lines.append(f'        <issn media_type="electronic">{escape_xml(journal.eissn)}</issn>')
    lines.extend(
        [
            "      </journal_metadata>",
            "      <journal_issue>",
            '        <publication_date media_type="online">',
            *_date_parts(published, "          "),
            "        </publication_date>",
            "      </journal_issue>",
            '      <journal_article publication_type="full_text">',
            "        <titles>",
            f"          <title>{escape_xml(record.title)}</title>",
            "        </titles>",
            "        <contributors>",
        ]
    )

    for index, author in enumerate(record.authors):
        sequence = "first" if index == 0 else "additional"
        lines.append(f'          <person_name sequence="{sequence}" contributor_role="author">')
        if author.given_name:
            lines.append(f"            <given_name>{escape_xml(author.given_name)}</given_name>")
        lines.append(f"            <surname>{escape_xml(author.family_name)}</surname>")
        if author.orcid:
            lines.append(f"            <ORCID>{escape_xml(format_orcid(author.orcid))}</ORCID>")
        if author.institution:
            lines.extend(
                [
                    "            <affiliations>",
                    "              <institution>",
                    "                <institution_name>"
                    f"{escape_xml(author.institution)}</institution_name>",
                    "              </institution>",
                    "            </affiliations>",
                ]
            )
        lines.append("          </person_name>")

    lines.extend(
        [
            "        </contributors>",
            '        <publication_date media_type="online">',
            *_date_parts(published, "          "),
            "        </publication_date>",
            "        <doi_data>",
            f"          <doi>{escape_xml(doi)}</doi>",
            f"          <resource>{escape_xml(landing_url(record, settings.base_url))}</resource>",
        ]
    )
    if record.pdf_url:
        lines.extend(
            [
                '          <collection property="text-mining">',
                "            <item>",
                '              <resource mime_type="application/pdf">'
                f"{escape_xml(record.pdf_url)}</resource>",
                "            </item>",
                "          </collection>",
            ]
        )
    lines.append("        </doi_data>")

    if record.description:
        abstract = strip_html(record.description.strip(), ABSTRACT_MAX_LENGTH)
        lines.extend(
            [
                "        <abstract>",
                f"          <p>{escape_xml(abstract)}</p>",
                "        </abstract>",
            ]
        )

    if journal and journal.open_access:
        lines.extend(
            [
                "        <license_ref>",
                "          <start_date>",
                *_date_parts(published, "            "),
                "          </start_date>",
                "          <license_text>Open Access</license_text>",
                "        </license_ref>",
            ]
        )

    lines.extend(
        [
            "      </journal_article>",
            "    </journal>",
            "  </body>",
            "</doi_batch>",
        ]
    )
    return "\n".join(lines)
