from __future__ import annotations

import secrets
import uuid
from typing import List, Union

from ..errors import ValidationError

ProviderId = Union[str, uuid.UUID]


def canonical_provider_id(value: ProviderId) -> str:
    """Hyphenated UUID string for any accepted encoding of a therapist id."""
    if isinstance(value, uuid.UUID):
        return str(value)
    try:
        return str(uuid.UUID(str(value).strip()))
    except (ValueError, AttributeError, TypeError):
        raise ValidationError("Invalid therapist ID format", [f"therapist_id: {value!r} is not a valid id"]) from None


def provider_id_forms(value: ProviderId) -> List[str]:
    """
    Every storage encoding of a therapist id.

    Rows written through the ORM carry the hyphenated form, rows imported
    from the legacy store carry the bare 32-char hex form, so lookups must
    match both.
    """
    canonical = canonical_provider_id(value)
    return [canonical, uuid.UUID(canonical).hex]


def new_therapist_id() -> str:
    return str(uuid.uuid4())


def new_booking_id() -> str:
    return "bkg_" + uuid.uuid4().hex[:12]


def new_cancellation_token() -> str:
    return secrets.token_hex(32)


def new_entry_id(prefix: str) -> str:
    return f"{prefix}_" + uuid.uuid4().hex[:12]
