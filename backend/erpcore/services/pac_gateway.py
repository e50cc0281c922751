# Overview: PAC adapters (HTTP and in-process sandbox) for signing and cancelling CFDIs.

"""
PAC Gateway

Adapters for the authorized certification provider (PAC) that signs a CFDI
and registers it with the tax authority, and later cancels it.

The PAC is treated as untrusted and slow: every adapter bounds its calls by
a timeout and reports failures as PacError. A timeout or a 5xx response sets
``outcome_unknown`` because the request may have been processed remotely.

Adapters:
- FacturamaGateway: HTTP API (Basic auth) against sandbox or production.
- SandboxPacGateway: in-process stand-in used for development and tests.

The gateway for a request is resolved by get_pac_gateway(); an app may
register an override under app.extensions["erpcore.pac_gateway"].
"""

from __future__ import annotations

import itertools
import uuid as uuid_lib
from dataclasses import dataclass
from datetime import datetime

import httpx
from flask import current_app

from ..time_utils import parse_iso_datetime, utcnow
from .cfdi_builder import verification_url

EXTENSION_KEY = "erpcore.pac_gateway"

CANCEL_STATUS_CANCELED = "canceled"


class PacError(Exception):
    def __init__(self, reason: str, *, outcome_unknown: bool = False, status_code: int | None = None):
        super().__init__(reason)
        self.reason = reason
        self.outcome_unknown = outcome_unknown
        self.status_code = status_code


@dataclass(frozen=True)
class StampResult:
    uuid: str
    serie: str
    folio: str
    pac_document_id: str
    verification_url: str
    stamped_at: datetime


@dataclass(frozen=True)
class CancelResult:
    status: str
    accepted: bool
    message: str | None = None
    cancelled_at: datetime | None = None


class PacGateway:
    """Interface every PAC adapter implements."""

    def sign_and_register(self, payload: dict) -> StampResult:
        raise NotImplementedError

    def cancel(
        self,
        *,
        pac_document_id: str,
        uuid: str,
        motive: str,
        substitute_uuid: str | None = None,
    ) -> CancelResult:
        raise NotImplementedError


def _total_cents(value) -> int:
    return int(round(float(value) * 100))


class FacturamaGateway(PacGateway):
    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        *,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        if not username or not password:
            raise PacError("PAC credentials are not configured")
        self.base_url = base_url.rstrip("/")
        self.auth = (username, password)
        self.timeout = timeout
        self.transport = transport

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            with httpx.Client(auth=self.auth, timeout=self.timeout, transport=self.transport) as client:
                response = client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.TimeoutException as exc:
            raise PacError(f"PAC request timed out: {exc}", outcome_unknown=True) from exc
        except httpx.HTTPError as exc:
            raise PacError(f"PAC request failed: {exc}") from exc

        if response.status_code >= 500:
            # server or proxy side; the CFDI may already be registered
            raise PacError(
                f"PAC server error ({response.status_code}): {_error_text(response)}",
                outcome_unknown=True,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise PacError(
                f"PAC rejected the request ({response.status_code}): {_error_text(response)}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise PacError("PAC returned a non-JSON response", outcome_unknown=True) from exc

    def sign_and_register(self, payload: dict) -> StampResult:
        data = self._request("POST", "/3/cfdis", json=payload)

        stamp = (data.get("Complement") or {}).get("TaxStamp") or {}
        document_uuid = stamp.get("Uuid")
        if not document_uuid or not data.get("Id"):
            raise PacError("PAC response is missing the tax stamp", outcome_unknown=True)
        if not data.get("Serie") or data.get("Folio") in (None, ""):
            raise PacError("PAC response is missing the serie or folio", outcome_unknown=True)

        receiver = data.get("Receiver") or {}
        return StampResult(
            uuid=document_uuid,
            serie=str(data["Serie"]),
            folio=str(data["Folio"]),
            pac_document_id=str(data["Id"]),
            verification_url=verification_url(
                uuid=document_uuid,
                issuer_rfc=payload["Issuer"]["Rfc"],
                receiver_rfc=receiver.get("Rfc") or payload["Receiver"]["Rfc"],
                total_cents=_total_cents(data.get("Total", 0)),
                cfdi_sign=stamp.get("CfdiSign") or data.get("CfdiSign"),
            ),
            stamped_at=parse_iso_datetime(stamp.get("Date")) or utcnow(),
        )

    def cancel(self, *, pac_document_id, uuid, motive, substitute_uuid=None) -> CancelResult:
        params = {"type": "issued", "motive": motive}
        if substitute_uuid and motive == "01":
            params["uuidReplacement"] = substitute_uuid
        data = self._request("DELETE", f"/cfdi/{pac_document_id}", params=params)

        status = (data.get("Status") or "").strip()
        accepted = status.lower() == CANCEL_STATUS_CANCELED
        return CancelResult(
            status=status or "unknown",
            accepted=accepted,
            message=data.get("Message"),
            cancelled_at=(parse_iso_datetime(data.get("CancelationDate")) or utcnow()) if accepted else None,
        )


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(body, dict):
        parts = [body.get("Message") or ""]
        for messages in (body.get("ModelState") or {}).values():
            parts.extend(messages if isinstance(messages, list) else [str(messages)])
        return "; ".join(p for p in parts if p) or response.text[:500]
    return response.text[:500]


class SandboxPacGateway(PacGateway):
    """
    In-process PAC for development: stamps and cancels immediately.

    Folios are sequential per gateway instance; UUIDs are random v4.
    """

    def __init__(self, serie: str = "A"):
        self.serie = serie
        self._folios = itertools.count(1)

    def sign_and_register(self, payload: dict) -> StampResult:
        document_uuid = str(uuid_lib.uuid4())
        total_cents = sum(_total_cents(item["Total"]) for item in payload.get("Items", []))
        sign = uuid_lib.uuid4().hex
        return StampResult(
            uuid=document_uuid,
            serie=self.serie,
            folio=str(next(self._folios)),
            pac_document_id=f"sandbox-{document_uuid[:8]}",
            verification_url=verification_url(
                uuid=document_uuid,
                issuer_rfc=payload["Issuer"]["Rfc"],
                receiver_rfc=payload["Receiver"]["Rfc"],
                total_cents=total_cents,
                cfdi_sign=sign,
            ),
            stamped_at=utcnow(),
        )

    def cancel(self, *, pac_document_id, uuid, motive, substitute_uuid=None) -> CancelResult:
        return CancelResult(status=CANCEL_STATUS_CANCELED, accepted=True, message="Sandbox cancellation", cancelled_at=utcnow())


def _credentials(company, test_mode: bool) -> tuple[str | None, str | None]:
    if company.pac_username and company.pac_password:
        return company.pac_username, company.pac_password
    cfg = current_app.config
    if test_mode:
        return cfg.get("PAC_SANDBOX_USERNAME"), cfg.get("PAC_SANDBOX_PASSWORD")
    return cfg.get("PAC_PROD_USERNAME"), cfg.get("PAC_PROD_PASSWORD")


def get_pac_gateway(company) -> PacGateway:
    override = current_app.extensions.get(EXTENSION_KEY)
    if override is not None:
        return override

    cfg = current_app.config
    backend = cfg.get("PAC_BACKEND", "sandbox")
    if backend == "sandbox":
        gateway = current_app.extensions.get("erpcore.sandbox_pac")
        if gateway is None:
            gateway = SandboxPacGateway()
            current_app.extensions["erpcore.sandbox_pac"] = gateway
        return gateway
    if backend == "facturama":
        test_mode = bool(company.test_mode)
        username, password = _credentials(company, test_mode)
        return FacturamaGateway(
            cfg["PAC_SANDBOX_URL"] if test_mode else cfg["PAC_PRODUCTION_URL"],
            username,
            password,
            timeout=cfg.get("PAC_TIMEOUT_SECONDS", 30),
        )
    raise PacError(f"Unknown PAC backend {backend!r}")
