# Overview: Explicit caller identity passed into every core operation.

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Principal:
    """
    Authenticated caller supplied by the auth collaborator.

    company_id is the tenant boundary: every query and mutation in the core
    filters by it. Services never read the current user from request state.
    """
    user_id: str
    company_id: str
    email: str | None = None
