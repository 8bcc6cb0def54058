"""OAI-PMH harvesting."""

from services.metadata_exchange.app.oai.errors import OAIError, OAIErrorCode
from services.metadata_exchange.app.oai.responder import HarvestResponder, HarvestResponse
from services.metadata_exchange.app.oai.tokens import InvalidTokenError, ResumptionToken

__all__ = [
    "HarvestResponder",
    "HarvestResponse",
    "InvalidTokenError",
    "OAIError",
    "OAIErrorCode",
    "ResumptionToken",
]
