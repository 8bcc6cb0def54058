"""DOI minting and Crossref deposit."""

from services.metadata_exchange.app.registration.client import DepositResult, RegistrationClient
from services.metadata_exchange.app.registration.errors import (
    DepositValidationError,
    FailureCause,
    TransientDepositError,
)
from services.metadata_exchange.app.registration.identifiers import (
    DoiGenerator,
    IdentifierCollisionError,
)
from services.metadata_exchange.app.registration.orchestrator import (
    OutcomeKind,
    RegistrationOrchestrator,
    RegistrationOutcome,
    get_registration_config_status,
    is_registration_configured,
    register_doi_for_content,
    retry_doi_registration,
)

__all__ = [
    "DepositResult",
    "DepositValidationError",
    "DoiGenerator",
    "FailureCause",
    "IdentifierCollisionError",
    "OutcomeKind",
    "RegistrationClient",
    "RegistrationOrchestrator",
    "RegistrationOutcome",
    "TransientDepositError",
    "get_registration_config_status",
    "is_registration_configured",
    "register_doi_for_content",
    "retry_doi_registration",
]
