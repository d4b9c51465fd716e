"""Canonical fingerprint of a transfer request.

The fingerprint is what decides whether a repeated ``request_id`` is a replay
of the original transfer or a conflicting reuse of the key, so it must only
depend on the request's values and never on how the caller ordered them.
"""

import hashlib
import json
from collections.abc import Mapping
from typing import Any

from ledger_service.domain.exceptions import InvalidMetadataError


def canonical_transfer_document(
    request_id: str,
    from_account: str,
    to_account: str,
    amount_units: int,
    zone_id: str,
    metadata: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "request_id": request_id,
        "from_account": from_account,
        "to_account": to_account,
        "amount_units": amount_units,
        "zone_id": zone_id,
        "metadata": dict(metadata or {}),
    }


def canonical_bytes(document: Any) -> bytes:
    """Serialize with recursively sorted keys and no insignificant whitespace.

    Raises:
        InvalidMetadataError: the document holds values JSON cannot represent.
    """
    try:
        encoded = json.dumps(
            document,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as exc:
        raise InvalidMetadataError(str(exc)) from exc
    return encoded.encode("utf-8")


def compute_fingerprint(
    request_id: str,
    from_account: str,
    to_account: str,
    amount_units: int,
    zone_id: str,
    metadata: Mapping[str, Any] | None = None,
) -> str:
    """SHA-256 of the canonical transfer document as lowercase hex."""
    document = canonical_transfer_document(
        request_id=request_id,
        from_account=from_account,
        to_account=to_account,
        amount_units=amount_units,
        zone_id=zone_id,
        metadata=metadata,
    )
    return hashlib.sha256(canonical_bytes(document)).hexdigest()
