"""OAI-PMH 2.0 request handling.

The responder turns a mapping of query arguments into a complete XML
document. It holds no state between requests: pagination state travels in
the resumption token, and every request runs its own repository queries.
"""

import time
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime

from services.metadata_exchange.app.config import Settings
from services.metadata_exchange.app.core.clock import Clock
from services.metadata_exchange.app.core.normalizers import (
    DateGranularity,
    escape_xml,
    format_oai_datetime,
    parse_oai_date,
)
from services.metadata_exchange.app.db.repository import ContentRepository
from services.metadata_exchange.app.oai.errors import OAIError, OAIErrorCode
from services.metadata_exchange.app.oai.serializer import (
    OAI_DC_NAMESPACE,
    OAI_DC_PREFIX,
    OAI_DC_SCHEMA,
    oai_identifier,
    parse_oai_identifier,
    render_dublin_core,
)
from services.metadata_exchange.app.oai.tokens import InvalidTokenError, ResumptionToken
from shared.schemas.content import ContentRecord
from shared.utils.logging import get_logger
from shared.utils.metrics import create_counter, create_histogram

logger = get_logger(__name__)

OAI_NAMESPACE = "http://www.openarchives.org/OAI/2.0/"
OAI_SCHEMA = "http://www.openarchives.org/OAI/2.0/OAI-PMH.xsd"
OAI_IDENTIFIER_NAMESPACE = "http://www.openarchives.org/OAI/2.0/oai-identifier"
OAI_IDENTIFIER_SCHEMA = "http://www.openarchives.org/OAI/2.0/oai-identifier.xsd"
XSI_NAMESPACE = "http://www.w3.org/2001/XMLSchema-instance"
SET_SPEC_PREFIX = "journal:"

_LIST_ARGUMENTS = frozenset({"metadataPrefix", "from", "until", "set", "resumptionToken"})

# Arguments each verb accepts besides ``verb`` itself
VERB_ARGUMENTS: dict[str, frozenset[str]] = {
    "Identify": frozenset(),
    "ListMetadataFormats": frozenset({"identifier"}),
    "ListSets": frozenset({"resumptionToken"}),
    "ListIdentifiers": _LIST_ARGUMENTS,
    "ListRecords": _LIST_ARGUMENTS,
    "GetRecord": frozenset({"identifier", "metadataPrefix"}),
}

VERBS = tuple(VERB_ARGUMENTS)

HARVEST_REQUESTS = create_counter(
    "exchange_harvest_requests_total",
    "OAI-PMH requests by verb and outcome",
    ["verb", "outcome"],
)

HARVEST_LATENCY = create_histogram(
    "exchange_harvest_duration_seconds",
    "OAI-PMH request handling time in seconds",
    ["verb"],
)


@dataclass(frozen=True)
class HarvestResponse:
    """Rendered OAI-PMH document and the HTTP status to serve it with."""

    body: str
    status_code: int = 200
    error_code: OAIErrorCode | None = None


@dataclass(frozen=True)
class _ListQuery:
    """Validated selection for one page of a list verb."""

    token: ResumptionToken
    from_date: datetime | None
    until_date: datetime | None
    journal_id: str | None


class HarvestResponder:
    """Dispatches OAI-PMH verbs against the content repository."""

    def __init__(self, repository: ContentRepository, settings: Settings, clock: Clock):
        """Initialize responder.

        Args:
            repository: Content repository bound to this request's session
            settings: Service settings
            clock: Time source for responseDate
        """
        self.repository = repository
        self.settings = settings
        self.clock = clock

    async def handle(self, params: Mapping[str, str]) -> HarvestResponse:
        """Handle one harvest request. Never raises."""
        verb = params.get("verb")
        metric_verb = verb if verb in VERBS else "invalid"
        start_time = time.perf_counter()

        try:
            if verb not in VERBS:
                raise OAIError(
                    OAIErrorCode.BAD_VERB,
                    "Missing verb argument" if not verb else f"Illegal verb: {verb}",
                )
            self._check_arguments(verb, params)
            body = await self._dispatch(verb, params)
            response = HarvestResponse(body=self._envelope(body, params))
            outcome = "ok"
        except OAIError as e:
            logger.info(
                "harvest_protocol_error",
                verb=verb,
                error_code=e.code.value,
                message=e.message,
            )
            response = HarvestResponse(
                body=self._error_envelope(e, params),
                status_code=e.http_status,
                error_code=e.code,
            )
            outcome = e.code.value
        except Exception as e:
            logger.exception(
                "harvest_internal_error",
                verb=verb,
                error=str(e),
                error_type=type(e).__name__,
            )
            fault = OAIError(OAIErrorCode.BAD_ARGUMENT, "An internal error occurred")
            response = HarvestResponse(
                body=self._error_envelope(fault, params),
                status_code=500,
                error_code=fault.code,
            )
            outcome = "internal_error"

        HARVEST_REQUESTS.labels(verb=metric_verb, outcome=outcome).inc()
        HARVEST_LATENCY.labels(verb=metric_verb).observe(time.perf_counter() - start_time)
        return response

    async def _dispatch(self, verb: str, params: Mapping[str, str]) -> str:
        if verb == "Identify":
            return await self._identify()
        if verb == "ListMetadataFormats":
            return await self._list_metadata_formats(params)
        if verb == "ListSets":
            return await self._list_sets(params)
        if verb == "ListIdentifiers":
            return await self._list(params, include_metadata=False)
        if verb == "ListRecords":
            return await self._list(params, include_metadata=True)
        return await self._get_record(params)

    # Envelope

    def _envelope(
        self,
        body: str,
        params: Mapping[str, str],
        echo_arguments: bool = True,
    ) -> str:
        response_date = format_oai_datetime(self.clock.now())
        if echo_arguments:
            attributes = "".join(
                f' {key}="{escape_xml(value)}"'
                for key, value in self._echo_items(params)
            )
        else:
            attributes = ""
        return "\n".join(
            [
                '<?xml version="1.0" encoding="UTF-8"?>',
                f'<OAI-PMH xmlns="{OAI_NAMESPACE}" xmlns:xsi="{XSI_NAMESPACE}" '
                f'xsi:schemaLocation="{OAI_NAMESPACE} {OAI_SCHEMA}">',
                f"  <responseDate>{response_date}</responseDate>",
                f"  <request{attributes}>{escape_xml(self.settings.oai_base_url)}</request>",
                body,
                "</OAI-PMH>",
            ]
        )

    def _error_envelope(self, error: OAIError, params: Mapping[str, str]) -> str:
        body = f'  <error code="{error.code.value}">{escape_xml(error.message)}</error>'
        return self._envelope(body, params, echo_arguments=error.echoes_arguments)

    @staticmethod
    def _echo_items(params: Mapping[str, str]) -> list[tuple[str, str]]:
        verb = params.get("verb")
        if verb not in VERB_ARGUMENTS:
            return []
        allowed = VERB_ARGUMENTS[verb]
        items = [("verb", verb)]
        items.extend(
            (key, params[key]) for key in sorted(params) if key in allowed and params[key]
        )
        return items

    # Verbs

    async def _identify(self) -> str:
        earliest = await self.repository.earliest_published_at()
        earliest_datestamp = (
            format_oai_datetime(earliest) if earliest else self.settings.oai_earliest_datestamp
        )
        host = self.settings.repository_identifier
        return "\n".join(
            [
                "  <Identify>",
                f"    <repositoryName>{escape_xml(self.settings.repository_name)}</repositoryName>",
                f"    <baseURL>{escape_xml(self.settings.oai_base_url)}</baseURL>",
                "    <protocolVersion>2.0</protocolVersion>",
                f"    <adminEmail>{escape_xml(self.settings.admin_email)}</adminEmail>",
                f"    <earliestDatestamp>{earliest_datestamp}</earliestDatestamp>",
                "    <deletedRecord>no</deletedRecord>",
                f"    <granularity>{DateGranularity.SECONDS.value}</granularity>",
                "    <description>",
                f'      <oai-identifier xmlns="{OAI_IDENTIFIER_NAMESPACE}" '
                f'xmlns:xsi="{XSI_NAMESPACE}" '
                f'xsi:schemaLocation="{OAI_IDENTIFIER_NAMESPACE} {OAI_IDENTIFIER_SCHEMA}">',
                "        <scheme>oai</scheme>",
                f"        <repositoryIdentifier>{escape_xml(host)}</repositoryIdentifier>",
                "        <delimiter>:</delimiter>",
                "        <sampleIdentifier>"
                f"{escape_xml(oai_identifier('abc123', host))}</sampleIdentifier>",
                "      </oai-identifier>",
                "    </description>",
                "  </Identify>",
            ]
        )

    async def _list_metadata_formats(self, params: Mapping[str, str]) -> str:
        identifier = params.get("identifier")
        if identifier:
            await self._resolve(identifier)
        return "\n".join(
            [
                "  <ListMetadataFormats>",
                "    <metadataFormat>",
                f"      <metadataPrefix>{OAI_DC_PREFIX}</metadataPrefix>",
                f"      <schema>{OAI_DC_SCHEMA}</schema>",
                f"      <metadataNamespace>{OAI_DC_NAMESPACE}</metadataNamespace>",
                "    </metadataFormat>",
                "  </ListMetadataFormats>",
            ]
        )

    async def _list_sets(self, params: Mapping[str, str]) -> str:
        if params.get("resumptionToken"):
            raise OAIError(
                OAIErrorCode.BAD_RESUMPTION_TOKEN,
                "The resumptionToken argument is invalid or expired",
            )
        journals = await self.repository.list_published_journals()
        if not journals:
            raise OAIError(
                OAIErrorCode.NO_SET_HIERARCHY,
                "This repository does not currently expose any sets",
            )
        lines = ["  <ListSets>"]
        for journal in journals:
            lines.extend(
                [
                    "    <set>",
                    f"      <setSpec>{escape_xml(journal.set_spec)}</setSpec>",
                    f"      <setName>{escape_xml(journal.title)}</setName>",
                    "    </set>",
                ]
            )
        lines.append("  </ListSets>")
        return "\n".join(lines)

    async def _get_record(self, params: Mapping[str, str]) -> str:
        identifier = params.get("identifier")
        metadata_prefix = params.get("metadataPrefix")
        if not identifier or not metadata_prefix:
            raise OAIError(
                OAIErrorCode.BAD_ARGUMENT,
                "GetRecord requires identifier and metadataPrefix arguments",
            )
        self._check_format(metadata_prefix)
        record = await self._resolve(identifier)
        return "\n".join(["  <GetRecord>", self._record(record), "  </GetRecord>"])

    async def _list(self, params: Mapping[str, str], include_metadata: bool) -> str:
        query = self._list_query(params)
        token = query.token
        page_size = self.settings.oai_page_size

        rows = await self.repository.list_published(
            from_date=query.from_date,
            until_date=query.until_date,
            journal_id=query.journal_id,
            offset=token.offset,
            limit=page_size + 1,
        )
        if not rows:
            raise OAIError(
                OAIErrorCode.NO_RECORDS_MATCH,
                "The combination of arguments results in an empty list",
            )

        has_more = len(rows) > page_size
        page = rows[:page_size]

        element = "ListRecords" if include_metadata else "ListIdentifiers"
        lines = [f"  <{element}>"]
        for record in page:
            lines.append(self._record(record) if include_metadata else self._header(record, "    "))

        if has_more:
            complete_size = await self.repository.count_published(
                from_date=query.from_date,
                until_date=query.until_date,
                journal_id=query.journal_id,
            )
            next_token = token.advance(page_size).encode()
            lines.append(
                f'    <resumptionToken completeListSize="{complete_size}" '
                f'cursor="{token.offset}">{next_token}</resumptionToken>'
            )
        lines.append(f"  </{element}>")

        logger.debug(
            "harvest_page_served",
            verb=element,
            offset=token.offset,
            returned=len(page),
            has_more=has_more,
        )
        return "\n".join(lines)

    # Argument handling

    @staticmethod
    def _check_arguments(verb: str, params: Mapping[str, str]) -> None:
        illegal = sorted(set(params) - VERB_ARGUMENTS[verb] - {"verb"})
        if illegal:
            raise OAIError(
                OAIErrorCode.BAD_ARGUMENT,
                f"Illegal argument for {verb}: {', '.join(illegal)}",
            )

    def _check_format(self, metadata_prefix: str) -> None:
        if metadata_prefix != OAI_DC_PREFIX:
            raise OAIError(
                OAIErrorCode.CANNOT_DISSEMINATE_FORMAT,
                f"The metadata format '{metadata_prefix}' is not supported",
            )

    def _list_query(self, params: Mapping[str, str]) -> _ListQuery:
        """Build the page selection from fresh arguments or a resumption token.

        A token fully determines the selection; fresh from/until/set
        arguments sent alongside it are ignored.
        """
        token_value = params.get("resumptionToken")
        if token_value:
            try:
                token = ResumptionToken.decode(token_value)
            except InvalidTokenError as e:
                raise OAIError(
                    OAIErrorCode.BAD_RESUMPTION_TOKEN,
                    "The resumptionToken argument is invalid or expired",
                ) from e
            requested_prefix = params.get("metadataPrefix")
            if requested_prefix and requested_prefix != token.metadata_prefix:
                raise OAIError(
                    OAIErrorCode.BAD_RESUMPTION_TOKEN,
                    "The resumptionToken was issued for a different metadataPrefix",
                )
            try:
                return self._selection(token)
            except OAIError as e:
                raise OAIError(
                    OAIErrorCode.BAD_RESUMPTION_TOKEN,
                    "The resumptionToken argument is invalid or expired",
                ) from e

        metadata_prefix = params.get("metadataPrefix")
        if not metadata_prefix:
            raise OAIError(
                OAIErrorCode.BAD_ARGUMENT,
                "Missing required argument: metadataPrefix",
            )
        token = ResumptionToken(
            offset=0,
            metadata_prefix=metadata_prefix,
            from_date=params.get("from") or None,
            until_date=params.get("until") or None,
            set_spec=params.get("set") or None,
        )
        return self._selection(token)

    def _selection(self, token: ResumptionToken) -> _ListQuery:
        self._check_format(token.metadata_prefix)

        from_date = until_date = None
        from_granularity = until_granularity = None
        try:
            if token.from_date:
                from_date, from_granularity = parse_oai_date(token.from_date)
            if token.until_date:
                until_date, until_granularity = parse_oai_date(token.until_date, end_of_day=True)
        except ValueError as e:
            raise OAIError(OAIErrorCode.BAD_ARGUMENT, "Invalid date format") from e

        if from_granularity and until_granularity and from_granularity != until_granularity:
            raise OAIError(
                OAIErrorCode.BAD_ARGUMENT,
                "The from and until arguments must have the same granularity",
            )
        if from_date and until_date and from_date > until_date:
            raise OAIError(
                OAIErrorCode.BAD_ARGUMENT,
                "The from argument must be less than or equal to until",
            )

        journal_id = None
        if token.set_spec:
            journal_id = token.set_spec[len(SET_SPEC_PREFIX):]
            if not token.set_spec.startswith(SET_SPEC_PREFIX) or not journal_id:
                raise OAIError(
                    OAIErrorCode.BAD_ARGUMENT,
                    f"Invalid setSpec: {token.set_spec}",
                )

        return _ListQuery(
            token=token,
            from_date=from_date,
            until_date=until_date,
            journal_id=journal_id,
        )

    async def _resolve(self, identifier: str) -> ContentRecord:
        content_id = parse_oai_identifier(identifier)
        record = await self.repository.get_published_record(content_id) if content_id else None
        if record is None:
            raise OAIError(
                OAIErrorCode.ID_DOES_NOT_EXIST,
                f"The identifier '{identifier}' does not exist",
            )
        return record

    # Records

    def _header(self, record: ContentRecord, indent: str) -> str:
        identifier = oai_identifier(record.content_id, self.settings.repository_identifier)
        datestamp = record.published_at or record.created_at or self.clock.now()
        lines = [
            f"{indent}<header>",
            f"{indent}  <identifier>{escape_xml(identifier)}</identifier>",
            f"{indent}  <datestamp>{format_oai_datetime(datestamp)}</datestamp>",
        ]
        if record.journal_id:
            set_spec = SET_SPEC_PREFIX + record.journal_id
            lines.append(f"{indent}  <setSpec>{escape_xml(set_spec)}</setSpec>")
        lines.append(f"{indent}</header>")
        return "\n".join(lines)

    def _record(self, record: ContentRecord) -> str:
        return "\n".join(
            [
                "    <record>",
                self._header(record, "      "),
                "      <metadata>",
                render_dublin_core(record, self.settings),
                "      </metadata>",
                "    </record>",
            ]
        )
