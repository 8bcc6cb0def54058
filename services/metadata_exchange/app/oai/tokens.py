"""Resumption token wire format.

Tokens are URL-safe base64 of a compact JSON object. The ``v`` field versions
the format so tokens issued by an older deployment are rejected cleanly
instead of being misread.
"""

import base64
import binascii
import json
from dataclasses import asdict, dataclass
from typing import Any

TOKEN_VERSION = 1


class InvalidTokenError(ValueError):
    """Raised when a resumption token cannot be decoded."""


@dataclass(frozen=True)
class ResumptionToken:
    """Continuation state for a paged ListIdentifiers/ListRecords harvest.

    ``from_date`` and ``until_date`` keep the harvester's original argument
    strings so the next page re-parses them with the same granularity.
    """

    offset: int
    metadata_prefix: str
    from_date: str | None = None
    until_date: str | None = None
    set_spec: str | None = None

    def encode(self) -> str:
        """Serialize to an opaque token string."""
        payload = {
            "v": TOKEN_VERSION,
            "offset": self.offset,
            "metadataPrefix": self.metadata_prefix,
            "from": self.from_date,
            "until": self.until_date,
            "set": self.set_spec,
        }
        raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii")

    @classmethod
    def decode(cls, token: str) -> "ResumptionToken":
        """Parse a token string.

        Raises:
            InvalidTokenError: On bad base64, bad JSON, unknown version or
                missing/ill-typed fields
        """
        try:
            padded = token + "=" * (-len(token) % 4)
            raw = base64.urlsafe_b64decode(padded.encode("ascii"))
            payload: Any = json.loads(raw.decode("utf-8"))
        except (binascii.Error, UnicodeError, ValueError) as e:
            raise InvalidTokenError("Token is not valid encoded data") from e

        if not isinstance(payload, dict):
            raise InvalidTokenError("Token payload is not an object")
        if payload.get("v") != TOKEN_VERSION:
            raise InvalidTokenError(f"Unsupported token version: {payload.get('v')!r}")

        offset = payload.get("offset")
        prefix = payload.get("metadataPrefix")
        # bool is an int subclass
        if not isinstance(offset, int) or isinstance(offset, bool) or offset < 0:
            raise InvalidTokenError("Token offset is invalid")
        if not isinstance(prefix, str) or not prefix:
            raise InvalidTokenError("Token metadataPrefix is invalid")

        optional: dict[str, str | None] = {}
        for key in ("from", "until", "set"):
            value = payload.get(key)
            if value is not None and not isinstance(value, str):
                raise InvalidTokenError(f"Token field {key!r} is invalid")
            optional[key] = value

        return cls(
            offset=offset,
            metadata_prefix=prefix,
            from_date=optional["from"],
            until_date=optional["until"],
            set_spec=optional["set"],
        )

    def advance(self, page_size: int) -> "ResumptionToken":
        """Token for the page after this one."""
        data = asdict(self)
        data["offset"] = self.offset + page_size
        return ResumptionToken(**data)
