"""Tests for the OAI-PMH harvest responder."""

import re
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from services.metadata_exchange.app.db.models import JournalModel
from services.metadata_exchange.app.db.repository import ContentRepository
from services.metadata_exchange.app.oai.errors import OAIErrorCode
from services.metadata_exchange.app.oai.responder import HarvestResponder
from services.metadata_exchange.app.oai.tokens import ResumptionToken
from shared.schemas.content import ContentStatus

TOKEN_PATTERN = re.compile(r"<resumptionToken[^>]*>([^<]+)</resumptionToken>")


@pytest.fixture
def responder(db_session, test_settings, fake_clock) -> HarvestResponder:
    return HarvestResponder(ContentRepository(db_session), test_settings, fake_clock)


def _identifiers(body: str) -> list[str]:
    return re.findall(r"<identifier>([^<]+)</identifier>", body)


def _token(body: str) -> str | None:
    match = TOKEN_PATTERN.search(body)
    return match.group(1) if match else None


async def _make_many(make_content, count: int, journal_id: str | None = None):
    base = datetime(2025, 1, 1, tzinfo=timezone.utc)
    for i in range(count):
        await make_content(
            content_id=f"c{i:04d}",
            slug=f"item-{i}",
            published_at=base + timedelta(hours=i),
            journal_id=journal_id,
        )


async def _make_many_outside(make_content):
    await make_content(
        content_id="zz-outside",
        published_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
    )


class TestEnvelope:
    """Tests for the common response envelope."""

    @pytest.mark.asyncio
    async def test_envelope_structure(self, responder):
        """Test declaration, namespace, response date and echoed request."""
        result = await responder.handle({"verb": "Identify"})

        assert result.status_code == 200
        assert result.body.startswith('<?xml version="1.0" encoding="UTF-8"?>')
        assert '<OAI-PMH xmlns="http://www.openarchives.org/OAI/2.0/"' in result.body
        assert "<responseDate>2025-06-01T12:00:00Z</responseDate>" in result.body
        assert '<request verb="Identify">https://primesp.com/exchange/oai</request>' in result.body

    @pytest.mark.asyncio
    async def test_missing_verb(self, responder):
        """Test that a missing verb is badVerb without echoed arguments."""
        result = await responder.handle({})

        assert result.status_code == 400
        assert result.error_code == OAIErrorCode.BAD_VERB
        assert '<error code="badVerb">' in result.body
        assert "<request>https://primesp.com/exchange/oai</request>" in result.body

    @pytest.mark.asyncio
    async def test_unknown_verb(self, responder):
        result = await responder.handle({"verb": "ListEverything"})

        assert result.status_code == 400
        assert '<error code="badVerb">Illegal verb: ListEverything</error>' in result.body

    @pytest.mark.asyncio
    async def test_unexpected_failure_is_wrapped(self, test_settings, fake_clock):
        """Test that internal faults still produce a well-formed envelope."""
        repository = AsyncMock(spec=ContentRepository)
        repository.list_published.side_effect = RuntimeError("database exploded")
        responder = HarvestResponder(repository, test_settings, fake_clock)

        result = await responder.handle({"verb": "ListIdentifiers", "metadataPrefix": "oai_dc"})

        assert result.status_code == 500
        assert '<error code="badArgument">An internal error occurred</error>' in result.body
        assert "database exploded" not in result.body
        assert result.body.rstrip().endswith("</OAI-PMH>")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["bad key", 'x"y', "1abc", "a<b"])
    async def test_illegal_argument_names_rejected(self, responder, key):
        """Test that unknown argument names give a parseable badArgument document."""
        result = await responder.handle({"verb": "Identify", key: "1"})

        assert result.status_code == 400
        assert result.error_code == OAIErrorCode.BAD_ARGUMENT
        root = ET.fromstring(result.body)
        request = root.find("{http://www.openarchives.org/OAI/2.0/}request")
        assert request.attrib == {}

    @pytest.mark.asyncio
    async def test_argument_not_allowed_for_verb(self, responder):
        result = await responder.handle(
            {"verb": "ListSets", "metadataPrefix": "oai_dc"}
        )

        assert result.error_code == OAIErrorCode.BAD_ARGUMENT
        assert "Illegal argument for ListSets: metadataPrefix" in result.body

    @pytest.mark.asyncio
    async def test_echo_limited_to_known_arguments(self, responder):
        """Test that echoed error envelopes carry only the verb's own arguments."""
        result = await responder.handle(
            {"verb": "GetRecord", "identifier": "oai:x:content:1", "metadataPrefix": "mods"}
        )

        assert result.error_code == OAIErrorCode.CANNOT_DISSEMINATE_FORMAT
        request = ET.fromstring(result.body).find("{http://www.openarchives.org/OAI/2.0/}request")
        assert request.attrib == {
            "verb": "GetRecord",
            "identifier": "oai:x:content:1",
            "metadataPrefix": "mods",
        }


class TestIdentify:
    """Tests for the Identify verb."""

    @pytest.mark.asyncio
    async def test_identify_without_content_uses_default_datestamp(self, responder):
        result = await responder.handle({"verb": "Identify"})

        assert "<repositoryName>Prime Scientific Publishing</repositoryName>" in result.body
        assert "<protocolVersion>2.0</protocolVersion>" in result.body
        assert "<adminEmail>admin@primesp.com</adminEmail>" in result.body
        assert "<earliestDatestamp>2020-01-01T00:00:00Z</earliestDatestamp>" in result.body
        assert "<deletedRecord>no</deletedRecord>" in result.body
        assert "<granularity>YYYY-MM-DDThh:mm:ssZ</granularity>" in result.body
        assert "<repositoryIdentifier>primesp.com</repositoryIdentifier>" in result.body
        assert "<sampleIdentifier>oai:primesp.com:content:abc123</sampleIdentifier>" in result.body

    @pytest.mark.asyncio
    async def test_identify_uses_oldest_publication(self, responder, make_content):
        """Test that earliestDatestamp reflects the oldest published record."""
        await make_content(content_id="old", published_at=datetime(2021, 5, 4, 3, 2, 1, tzinfo=timezone.utc))
        await make_content(content_id="new", published_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        await make_content(
            content_id="draft",
            status=ContentStatus.DRAFT,
            published_at=datetime(2019, 1, 1, tzinfo=timezone.utc),
        )

        result = await responder.handle({"verb": "Identify"})

        assert "<earliestDatestamp>2021-05-04T03:02:01Z</earliestDatestamp>" in result.body


class TestListMetadataFormats:
    """Tests for the ListMetadataFormats verb."""

    @pytest.mark.asyncio
    async def test_lists_oai_dc(self, responder):
        result = await responder.handle({"verb": "ListMetadataFormats"})

        assert result.status_code == 200
        assert "<metadataPrefix>oai_dc</metadataPrefix>" in result.body
        assert "<schema>http://www.openarchives.org/OAI/2.0/oai_dc.xsd</schema>" in result.body

    @pytest.mark.asyncio
    async def test_known_identifier(self, responder, published_content):
        result = await responder.handle(
            {"verb": "ListMetadataFormats", "identifier": "oai:primesp.com:content:abc123"}
        )
        assert result.status_code == 200
        assert "<metadataPrefix>oai_dc</metadataPrefix>" in result.body

    @pytest.mark.asyncio
    async def test_unknown_identifier(self, responder):
        result = await responder.handle(
            {"verb": "ListMetadataFormats", "identifier": "oai:primesp.com:content:nope"}
        )
        assert result.status_code == 404
        assert result.error_code == OAIErrorCode.ID_DOES_NOT_EXIST


class TestListSets:
    """Tests for the ListSets verb."""

    @pytest.mark.asyncio
    async def test_lists_published_journals(self, responder, journal, db_session):
        db_session.add(
            JournalModel(journal_id="hidden", title="Archived Journal", status=ContentStatus.ARCHIVED)
        )
        await db_session.commit()

        result = await responder.handle({"verb": "ListSets"})

        assert result.status_code == 200
        assert "<setSpec>journal:jrnl1</setSpec>" in result.body
        assert "<setName>Journal of Testing</setName>" in result.body
        assert "journal:hidden" not in result.body

    @pytest.mark.asyncio
    async def test_no_journals(self, responder):
        result = await responder.handle({"verb": "ListSets"})

        assert result.status_code == 200
        assert result.error_code == OAIErrorCode.NO_SET_HIERARCHY


class TestGetRecord:
    """Tests for the GetRecord verb."""

    @pytest.mark.asyncio
    async def test_get_record(self, responder, published_content):
        """Test the single-author example record."""
        result = await responder.handle(
            {
                "verb": "GetRecord",
                "identifier": "oai:primesp.com:content:abc123",
                "metadataPrefix": "oai_dc",
            }
        )

        assert result.status_code == 200
        assert "<identifier>oai:primesp.com:content:abc123</identifier>" in result.body
        assert "<datestamp>2025-03-10T00:00:00Z</datestamp>" in result.body
        assert result.body.count("<dc:creator>") == 1
        assert "<dc:creator>Jane Q. Doe</dc:creator>" in result.body
        assert "<dc:date>2025-03-10</dc:date>" in result.body
        assert 'identifier="oai:primesp.com:content:abc123"' in result.body

    @pytest.mark.asyncio
    async def test_missing_arguments(self, responder):
        result = await responder.handle({"verb": "GetRecord", "identifier": "oai:x:content:1"})

        assert result.status_code == 400
        assert result.error_code == OAIErrorCode.BAD_ARGUMENT
        assert "<request>https://primesp.com/exchange/oai</request>" in result.body

    @pytest.mark.asyncio
    async def test_unsupported_format(self, responder, published_content):
        result = await responder.handle(
            {
                "verb": "GetRecord",
                "identifier": "oai:primesp.com:content:abc123",
                "metadataPrefix": "marc21",
            }
        )
        assert result.status_code == 200
        assert result.error_code == OAIErrorCode.CANNOT_DISSEMINATE_FORMAT

    @pytest.mark.asyncio
    async def test_unpublished_record_does_not_exist(self, responder, make_content):
        await make_content(content_id="draft1", status=ContentStatus.DRAFT)

        result = await responder.handle(
            {
                "verb": "GetRecord",
                "identifier": "oai:primesp.com:content:draft1",
                "metadataPrefix": "oai_dc",
            }
        )

        assert result.status_code == 404
        assert '<error code="idDoesNotExist">' in result.body
        assert 'verb="GetRecord"' in result.body


class TestListIdentifiers:
    """Tests for ListIdentifiers and ListRecords paging and filtering."""

    @pytest.mark.asyncio
    async def test_requires_metadata_prefix(self, responder):
        result = await responder.handle({"verb": "ListIdentifiers"})

        assert result.status_code == 400
        assert result.error_code == OAIErrorCode.BAD_ARGUMENT

    @pytest.mark.asyncio
    async def test_unsupported_format(self, responder):
        result = await responder.handle({"verb": "ListRecords", "metadataPrefix": "mods"})
        assert result.error_code == OAIErrorCode.CANNOT_DISSEMINATE_FORMAT

    @pytest.mark.asyncio
    async def test_empty_repository(self, responder):
        result = await responder.handle({"verb": "ListIdentifiers", "metadataPrefix": "oai_dc"})

        assert result.status_code == 200
        assert result.error_code == OAIErrorCode.NO_RECORDS_MATCH

    @pytest.mark.asyncio
    async def test_paging_with_101_records(self, responder, make_content):
        """Test that 101 records page as 100 plus a token, then 1 and no token."""
        await _make_many(make_content, 101)

        first = await responder.handle({"verb": "ListIdentifiers", "metadataPrefix": "oai_dc"})
        first_ids = _identifiers(first.body)
        token = _token(first.body)

        assert len(first_ids) == 100
        assert token is not None
        assert 'completeListSize="101"' in first.body
        assert 'cursor="0"' in first.body
        assert "<metadata>" not in first.body
        # Newest first
        assert first_ids[0] == "oai:primesp.com:content:c0100"

        second = await responder.handle({"verb": "ListIdentifiers", "resumptionToken": token})
        second_ids = _identifiers(second.body)

        assert second_ids == ["oai:primesp.com:content:c0000"]
        assert _token(second.body) is None
        assert set(first_ids).isdisjoint(second_ids)

    @pytest.mark.asyncio
    async def test_exact_page_has_no_token(self, responder, make_content, test_settings):
        test_settings.oai_page_size = 5
        await _make_many(make_content, 5)

        result = await responder.handle({"verb": "ListIdentifiers", "metadataPrefix": "oai_dc"})

        assert len(_identifiers(result.body)) == 5
        assert "<resumptionToken" not in result.body

    @pytest.mark.asyncio
    async def test_token_harvest_covers_everything(self, responder, make_content, test_settings):
        """Test that following tokens yields the full set exactly once."""
        test_settings.oai_page_size = 3
        await _make_many(make_content, 10)

        seen: list[str] = []
        params = {"verb": "ListRecords", "metadataPrefix": "oai_dc"}
        while True:
            result = await responder.handle(params)
            assert result.status_code == 200
            seen.extend(_identifiers(result.body))
            token = _token(result.body)
            if token is None:
                break
            params = {"verb": "ListRecords", "resumptionToken": token}

        assert len(seen) == 10
        assert len(set(seen)) == 10

    @pytest.mark.asyncio
    async def test_ties_break_on_content_id(self, responder, make_content):
        """Test stable ordering when publication times are equal."""
        same_time = datetime(2025, 2, 2, tzinfo=timezone.utc)
        for content_id in ("b", "c", "a"):
            await make_content(content_id=content_id, published_at=same_time)

        result = await responder.handle({"verb": "ListIdentifiers", "metadataPrefix": "oai_dc"})

        assert _identifiers(result.body) == [
            "oai:primesp.com:content:c",
            "oai:primesp.com:content:b",
            "oai:primesp.com:content:a",
        ]

    @pytest.mark.asyncio
    async def test_list_records_includes_metadata(self, responder, published_content):
        result = await responder.handle({"verb": "ListRecords", "metadataPrefix": "oai_dc"})

        assert "<record>" in result.body
        assert "<metadata>" in result.body
        assert "<dc:title>X</dc:title>" in result.body

    @pytest.mark.asyncio
    async def test_date_range_is_inclusive(self, responder, make_content):
        """Test that a date-only until covers the whole day."""
        await make_content(content_id="before", published_at=datetime(2025, 3, 9, 23, 59, tzinfo=timezone.utc))
        await make_content(content_id="start", published_at=datetime(2025, 3, 10, 0, 0, tzinfo=timezone.utc))
        await make_content(content_id="late", published_at=datetime(2025, 3, 11, 22, 0, tzinfo=timezone.utc))
        await make_content(content_id="after", published_at=datetime(2025, 3, 12, 0, 0, tzinfo=timezone.utc))

        result = await responder.handle(
            {
                "verb": "ListIdentifiers",
                "metadataPrefix": "oai_dc",
                "from": "2025-03-10",
                "until": "2025-03-11",
            }
        )

        assert _identifiers(result.body) == [
            "oai:primesp.com:content:late",
            "oai:primesp.com:content:start",
        ]

    @pytest.mark.asyncio
    async def test_seconds_granularity(self, responder, make_content):
        await make_content(content_id="a", published_at=datetime(2025, 3, 10, 8, 0, tzinfo=timezone.utc))
        await make_content(content_id="b", published_at=datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc))

        result = await responder.handle(
            {
                "verb": "ListIdentifiers",
                "metadataPrefix": "oai_dc",
                "from": "2025-03-10T08:30:00Z",
            }
        )
        assert _identifiers(result.body) == ["oai:primesp.com:content:b"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "extra",
        [
            {"from": "yesterday"},
            {"until": "2025-02-30"},
            {"from": "2025-03-10", "until": "2025-03-11T00:00:00Z"},
            {"from": "2025-03-12", "until": "2025-03-10"},
            {"set": "collection:abc"},
            {"set": "journal:"},
        ],
    )
    async def test_bad_arguments(self, responder, extra):
        result = await responder.handle(
            {"verb": "ListIdentifiers", "metadataPrefix": "oai_dc", **extra}
        )

        assert result.status_code == 400
        assert result.error_code == OAIErrorCode.BAD_ARGUMENT

    @pytest.mark.asyncio
    async def test_set_filter(self, responder, journal, make_content):
        await make_content(content_id="in", journal_id="jrnl1")
        await make_content(content_id="out")

        result = await responder.handle(
            {"verb": "ListIdentifiers", "metadataPrefix": "oai_dc", "set": "journal:jrnl1"}
        )

        assert _identifiers(result.body) == ["oai:primesp.com:content:in"]
        assert "<setSpec>journal:jrnl1</setSpec>" in result.body

    @pytest.mark.asyncio
    async def test_token_keeps_original_filters(self, responder, journal, make_content, test_settings):
        """Test that the token, not fresh arguments, decides the next page."""
        test_settings.oai_page_size = 2
        await _make_many(make_content, 3, journal_id="jrnl1")
        await _make_many_outside(make_content)

        first = await responder.handle(
            {"verb": "ListIdentifiers", "metadataPrefix": "oai_dc", "set": "journal:jrnl1"}
        )
        token = _token(first.body)
        second = await responder.handle(
            {"verb": "ListIdentifiers", "resumptionToken": token, "set": "journal:other"}
        )

        assert _identifiers(second.body) == ["oai:primesp.com:content:c0000"]

    @pytest.mark.asyncio
    async def test_garbage_token(self, responder):
        result = await responder.handle({"verb": "ListIdentifiers", "resumptionToken": "garbage!"})

        assert result.status_code == 400
        assert result.error_code == OAIErrorCode.BAD_RESUMPTION_TOKEN

    @pytest.mark.asyncio
    async def test_token_with_conflicting_prefix(self, responder, published_content):
        """Test that a token issued for another format is rejected."""
        token = ResumptionToken(offset=0, metadata_prefix="oai_dc").encode()

        result = await responder.handle(
            {"verb": "ListRecords", "resumptionToken": token, "metadataPrefix": "marc21"}
        )

        assert result.error_code == OAIErrorCode.BAD_RESUMPTION_TOKEN

    @pytest.mark.asyncio
    async def test_token_with_invalid_embedded_filter(self, responder):
        token = ResumptionToken(offset=0, metadata_prefix="oai_dc", from_date="nonsense").encode()

        result = await responder.handle({"verb": "ListRecords", "resumptionToken": token})

        assert result.error_code == OAIErrorCode.BAD_RESUMPTION_TOKEN

