from __future__ import annotations

import uuid

from ..errors import ImmutableRecordError


def new_id() -> str:
    return str(uuid.uuid4())


def forbid_change(entity_type: str):
    """Build a mapper listener that rejects UPDATE/DELETE flushes for append-only rows."""
    def _listener(mapper, connection, target):
        raise ImmutableRecordError(
            f"{entity_type} {getattr(target, 'id', None)} is append-only and cannot be modified"
        )
    return _listener
