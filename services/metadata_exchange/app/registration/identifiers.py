"""DOI generation."""

import base64
import re

from services.metadata_exchange.app.core.clock import Clock, Entropy
from services.metadata_exchange.app.db.repository import ContentRepository
from shared.schemas.content import ContentRecord
from shared.utils.logging import get_logger

logger = get_logger(__name__)

NON_ALPHANUMERIC = re.compile(r"[^A-Za-z0-9]")

ID_HASH_LENGTH = 4
RANDOM_BYTES = 2


class IdentifierCollisionError(Exception):
    """Raised when every generated DOI candidate is already taken."""

    def __init__(self, content_id: str, attempts: int):
        self.content_id = content_id
        self.attempts = attempts
        super().__init__(
            f"Could not generate a unique DOI for content {content_id} "
            f"after {attempts} attempts"
        )


def format_doi_url(doi: str) -> str:
    """Resolver URL for a DOI."""
    return f"https://doi.org/{doi}"


class DoiGenerator:
    """Mints DOI candidates of the form ``<prefix>/<year>.<idHash><random>``.

    The id hash makes suffixes recognisable per record; the random part keeps
    regenerated candidates for the same record distinct.
    """

    def __init__(
        self,
        prefix: str,
        repository: ContentRepository,
        entropy: Entropy,
        clock: Clock,
        max_attempts: int = 5,
    ):
        """Initialize generator.

        Args:
            prefix: Registrant DOI prefix, e.g. ``10.12345``
            repository: Used to check candidates for existing use
            entropy: Source of the random suffix part
            clock: Fallback year for records without a publication date
            max_attempts: Candidates tried before giving up
        """
        self.prefix = prefix
        self.repository = repository
        self.entropy = entropy
        self.clock = clock
        self.max_attempts = max_attempts

    def generate_suffix(self, record: ContentRecord) -> str:
        """Build one suffix candidate for a record."""
        published = record.published_at or self.clock.now()
        encoded = base64.b64encode(record.content_id.encode("utf-8")).decode("ascii")
        id_hash = NON_ALPHANUMERIC.sub("", encoded)[:ID_HASH_LENGTH]
        random_part = self.entropy.token_bytes(RANDOM_BYTES).hex()
        return f"{published.year}.{id_hash}{random_part}"

    def generate(self, record: ContentRecord) -> str:
        """Build one full DOI candidate (not checked for uniqueness)."""
        return f"{self.prefix}/{self.generate_suffix(record)}"

    async def generate_unique(
        self,
        record: ContentRecord,
        exclude: set[str] | None = None,
    ) -> str:
        """Generate a DOI not yet used by any content.

        Args:
            record: Record the DOI is for
            exclude: Candidates that must not be reused (earlier failed deposits)

        Returns:
            Unused DOI

        Raises:
            IdentifierCollisionError: If ``max_attempts`` candidates all collide
        """
        excluded = exclude or set()
        for attempt in range(1, self.max_attempts + 1):
            candidate = self.generate(record)
            if candidate in excluded or await self.repository.doi_exists(candidate):
                logger.warning(
                    "doi_candidate_collision",
                    content_id=record.content_id,
                    candidate=candidate,
                    attempt=attempt,
                )
                continue
            return candidate

        raise IdentifierCollisionError(record.content_id, self.max_attempts)
