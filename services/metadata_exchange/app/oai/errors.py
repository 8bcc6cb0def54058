"""OAI-PMH protocol errors."""

from enum import Enum


class OAIErrorCode(str, Enum):
    """Error codes defined by OAI-PMH 2.0."""

    BAD_VERB = "badVerb"
    BAD_ARGUMENT = "badArgument"
    BAD_RESUMPTION_TOKEN = "badResumptionToken"
    CANNOT_DISSEMINATE_FORMAT = "cannotDisseminateFormat"
    ID_DOES_NOT_EXIST = "idDoesNotExist"
    NO_SET_HIERARCHY = "noSetHierarchy"
    NO_RECORDS_MATCH = "noRecordsMatch"


# Argument-shape failures and unknown ids get a non-200 status; every other
# protocol error is a normal 200 response carrying an <error> element.
_HTTP_STATUS: dict[OAIErrorCode, int] = {
    OAIErrorCode.BAD_VERB: 400,
    OAIErrorCode.BAD_ARGUMENT: 400,
    OAIErrorCode.BAD_RESUMPTION_TOKEN: 400,
    OAIErrorCode.ID_DOES_NOT_EXIST: 404,
}


class OAIError(Exception):
    """Protocol-level error rendered inside the OAI-PMH envelope."""

    def __init__(self, code: OAIErrorCode, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code.value}: {message}")

    @property
    def http_status(self) -> int:
        """HTTP status code the envelope is served with."""
        return _HTTP_STATUS.get(self.code, 200)

    @property
    def echoes_arguments(self) -> bool:
        """Whether request arguments may be echoed in the <request> element.

        OAI-PMH forbids echoing arguments when the verb or its arguments are
        themselves the problem.
        """
        return self.code not in (OAIErrorCode.BAD_VERB, OAIErrorCode.BAD_ARGUMENT)
