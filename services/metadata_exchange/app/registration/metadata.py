"""Crossref deposit metadata for journal articles."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from services.metadata_exchange.app.config import Settings
from services.metadata_exchange.app.core.normalizers import format_orcid, strip_html
from services.metadata_exchange.app.oai.serializer import landing_url
from services.metadata_exchange.app.registration.errors import DepositValidationError
from shared.schemas.content import AuthorRef, ContentRecord

ABSTRACT_MAX_LENGTH = 4000


class _CrossrefModel(BaseModel):
    """Base for Crossref JSON structures, serialized by alias."""

    model_config = ConfigDict(populate_by_name=True)

    def to_payload(self) -> dict:
        """Dump in Crossref's wire field names, omitting absent blocks."""
        return self.model_dump(by_alias=True, exclude_none=True)


class DateParts(_CrossrefModel):
    """Crossref ``date-parts`` structure."""

    date_parts: list[list[int]] = Field(..., alias="date-parts")

    @classmethod
    def from_datetime(cls, value: datetime) -> "DateParts":
        return cls(date_parts=[[value.year, value.month, value.day]])


class Affiliation(_CrossrefModel):
    name: str


class Contributor(_CrossrefModel):
    """Author entry in deposit order."""

    given: Optional[str] = None
    family: str
    sequence: Literal["first", "additional"]
    affiliation: Optional[list[Affiliation]] = None
    orcid: Optional[str] = Field(None, alias="ORCID")


class PrimaryResource(_CrossrefModel):
    url: str = Field(..., alias="URL")


class Resource(_CrossrefModel):
    primary: PrimaryResource


class License(_CrossrefModel):
    url: str = Field(..., alias="URL")
    start: DateParts
    delay_in_days: int = Field(0, alias="delay-in-days")
    content_version: str = Field("vor", alias="content-version")


class Link(_CrossrefModel):
    url: str = Field(..., alias="URL")
    content_type: str = Field("application/pdf", alias="content-type")
    content_version: str = Field("vor", alias="content-version")
    intended_application: str = Field("text-mining", alias="intended-application")


class JournalArticleMetadata(_CrossrefModel):
    """Deposit metadata for one journal article."""

    type: Literal["journal-article"] = "journal-article"
    title: list[str]
    author: list[Contributor]
    container_title: Optional[list[str]] = Field(None, alias="container-title")
    issn: Optional[list[str]] = Field(None, alias="ISSN")
    published: DateParts
    abstract: Optional[str] = None
    url: str = Field(..., alias="URL")
    doi: str = Field(..., alias="DOI")
    resource: Resource
    license: Optional[list[License]] = None
    link: Optional[list[Link]] = None


class DepositMetadataBuilder:
    """Validates content records and builds their deposit metadata."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def validate(self, record: ContentRecord) -> list[str]:
        """Return every reason the record cannot be deposited.

        An empty list means the record is depositable.
        """
        reasons = []
        if not record.title or not record.title.strip():
            reasons.append("Title is required")
        if not record.authors:
            reasons.append("At least one author is required")
        if record.published_at is None:
            reasons.append("Publication date is required")
        if not record.slug or not record.slug.strip():
            reasons.append("Slug is required for URL generation")
        return reasons

    def ensure_valid(self, record: ContentRecord) -> None:
        """Raise DepositValidationError listing all missing fields."""
        reasons = self.validate(record)
        if reasons:
            raise DepositValidationError(reasons)

    def build(self, record: ContentRecord, doi: str) -> JournalArticleMetadata:
        """Build deposit metadata for a validated record.

        Args:
            record: Record that passed ``validate``
            doi: Candidate or confirmed DOI

        Returns:
            Journal article metadata
        """
        self.ensure_valid(record)

        published = DateParts.from_datetime(record.published_at)
        url = landing_url(record, self.settings.base_url)

        metadata = JournalArticleMetadata(
            title=[record.title],
            author=[
                self._contributor(author, index) for index, author in enumerate(record.authors)
            ],
            container_title=[self._container_title(record)],
            issn=self._issns(record) or None,
            published=published,
            url=url,
            doi=doi,
            resource=Resource(primary=PrimaryResource(url=url)),
        )

        if record.description:
            abstract = strip_html(record.description.strip(), ABSTRACT_MAX_LENGTH)
            if abstract:
                metadata.abstract = abstract
        if record.pdf_url:
            metadata.link = [Link(url=record.pdf_url)]
        if record.license_url:
            metadata.license = [License(url=record.license_url, start=published)]

        return metadata

    def _contributor(self, author: AuthorRef, index: int) -> Contributor:
        return Contributor(
            given=author.given_name,
            family=author.family_name,
            sequence="first" if index == 0 else "additional",
            affiliation=[Affiliation(name=author.institution)] if author.institution else None,
            orcid=format_orcid(author.orcid) if author.orcid else None,
        )

    def _container_title(self, record: ContentRecord) -> str:
        if record.journal and record.journal.title:
            return record.journal.title
        return self.settings.crossref_journal_title

    def _issns(self, record: ContentRecord) -> list[str]:
        if record.journal:
            issns = [value for value in (record.journal.issn, record.journal.eissn) if value]
            if issns:
                return issns
        return [self.settings.crossref_issn] if self.settings.crossref_issn else []
