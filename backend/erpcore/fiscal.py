# Overview: SAT catalogs and fiscal value objects (RFC, issuer profile, receiver info).

"""
Fiscal vocabulary for CFDI-style invoices.

Catalog codes follow the SAT catalogs (c_RegimenFiscal, c_UsoCFDI,
c_FormaPago, c_MetodoPago, cancellation motives). The predicate helpers are
shared by the validation engine (which reports problems) and the value
objects below (which refuse to be constructed from invalid data).
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import InvalidRequest


GENERIC_PUBLIC_RFC = "XAXX010101000"
GENERIC_FOREIGN_RFC = "XEXX010101000"
GENERIC_RFCS = {GENERIC_PUBLIC_RFC, GENERIC_FOREIGN_RFC}

# Defaults used when a sale is invoiced to the general public
GENERIC_TAX_REGIME = "616"
GENERIC_CFDI_USE = "S01"

DEFAULT_PRODUCT_KEY = "01010101"
DEFAULT_UNIT_KEY = "H87"

_RFC_RE = re.compile(r"^[A-ZÑ&]{3,4}\d{6}[A-Z0-9]{3}$")
_POSTAL_CODE_RE = re.compile(r"^\d{5}$")
_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

TAX_REGIMES = {
    "601": "General de Ley Personas Morales",
    "603": "Personas Morales con Fines no Lucrativos",
    "605": "Sueldos y Salarios e Ingresos Asimilados a Salarios",
    "606": "Arrendamiento",
    "607": "Régimen de Enajenación o Adquisición de Bienes",
    "608": "Demás ingresos",
    "609": "Consolidación",
    "610": "Residentes en el Extranjero sin Establecimiento Permanente en México",
    "611": "Ingresos por Dividendos (socios y accionistas)",
    "612": "Personas Físicas con Actividades Empresariales y Profesionales",
    "614": "Ingresos por intereses",
    "615": "Régimen de los ingresos por obtención de premios",
    "616": "Sin obligaciones fiscales",
    "620": "Sociedades Cooperativas de Producción que optan por diferir sus ingresos",
    "621": "Incorporación Fiscal",
    "622": "Actividades Agrícolas, Ganaderas, Silvícolas y Pesqueras",
    "623": "Opcional para Grupos de Sociedades",
    "624": "Coordinados",
    "625": "Actividades Empresariales con ingresos a través de Plataformas Tecnológicas",
    "626": "Régimen Simplificado de Confianza",
}

CFDI_USES = {
    "G01": "Adquisición de mercancías",
    "G02": "Devoluciones, descuentos o bonificaciones",
    "G03": "Gastos en general",
    "I01": "Construcciones",
    "I02": "Mobiliario y equipo de oficina por inversiones",
    "I03": "Equipo de transporte",
    "I04": "Equipo de cómputo y accesorios",
    "I05": "Dados, troqueles, moldes, matrices y herramental",
    "I06": "Comunicaciones telefónicas",
    "I07": "Comunicaciones satelitales",
    "I08": "Otra maquinaria y equipo",
    "D01": "Honorarios médicos, dentales y gastos hospitalarios",
    "D02": "Gastos médicos por incapacidad o discapacidad",
    "D03": "Gastos funerales",
    "D04": "Donativos",
    "D05": "Intereses reales efectivamente pagados por créditos hipotecarios",
    "D06": "Aportaciones voluntarias al SAR",
    "D07": "Primas por seguros de gastos médicos",
    "D08": "Gastos de transportación escolar obligatoria",
    "D09": "Depósitos en cuentas para el ahorro, primas que tengan como base planes de pensiones",
    "D10": "Pagos por servicios educativos (colegiaturas)",
    "S01": "Sin efectos fiscales",
    "CP01": "Pagos",
    "CN01": "Nómina",
}

PAYMENT_METHODS = {
    "PUE": "Pago en una sola exhibición",
    "PPD": "Pago en parcialidades o diferido",
}

PAYMENT_FORMS = {
    "01": "Efectivo",
    "02": "Cheque nominativo",
    "03": "Transferencia electrónica de fondos",
    "04": "Tarjeta de crédito",
    "05": "Monedero electrónico",
    "06": "Dinero electrónico",
    "08": "Vales de despensa",
    "12": "Dación en pago",
    "13": "Pago por subrogación",
    "14": "Pago por consignación",
    "15": "Condonación",
    "17": "Compensación",
    "23": "Novación",
    "24": "Confusión",
    "25": "Remisión de deuda",
    "26": "Prescripción o caducidad",
    "27": "A satisfacción del acreedor",
    "28": "Tarjeta de débito",
    "29": "Tarjeta de servicios",
    "30": "Aplicación de anticipos",
    "31": "Intermediario pagos",
    "99": "Por definir",
}

CANCELLATION_MOTIVES = {
    "01": "Comprobante emitido con errores con relación",
    "02": "Comprobante emitido con errores sin relación",
    "03": "No se llevó a cabo la operación",
    "04": "Operación nominativa relacionada en una factura global",
}
MOTIVE_REQUIRES_SUBSTITUTE = "01"


def normalize_rfc(rfc: str | None) -> str | None:
    if rfc is None:
        return None
    value = rfc.strip().upper()
    return value or None


def is_valid_rfc(rfc: str | None) -> bool:
    value = normalize_rfc(rfc)
    return bool(value) and bool(_RFC_RE.match(value))


def is_generic_rfc(rfc: str | None) -> bool:
    return normalize_rfc(rfc) in GENERIC_RFCS


def is_valid_postal_code(postal_code: str | None) -> bool:
    return bool(postal_code) and bool(_POSTAL_CODE_RE.match(postal_code.strip()))


def is_valid_uuid(value: str | None) -> bool:
    return bool(value) and bool(_UUID_RE.match(value))


def default_cfdi_use(tax_regime: str | None) -> str:
    if tax_regime == "616":
        return "S01"
    return "G03"


def expedition_place(receiver_rfc: str, issuer_postal_code: str, receiver_postal_code: str | None) -> str:
    """Generic-public invoices are expedited at the receiver postal code when one is known."""
    if is_generic_rfc(receiver_rfc):
        return receiver_postal_code or issuer_postal_code
    return issuer_postal_code


@dataclass(frozen=True)
class FiscalProfile:
    """
    Issuer data required to put a company on a CFDI.

    Only constructible from complete, well-formed data; use ``from_company``.
    """
    rfc: str
    legal_name: str
    tax_regime: str
    postal_code: str
    street: str
    city: str
    state: str
    exterior_number: str | None = None
    neighborhood: str | None = None

    @classmethod
    def create(cls, *, rfc, legal_name, tax_regime, postal_code, street, city, state,
               exterior_number=None, neighborhood=None) -> "FiscalProfile":
        problems = []
        if not is_valid_rfc(rfc):
            problems.append("rfc")
        if not (legal_name or "").strip():
            problems.append("legal_name")
        if tax_regime not in TAX_REGIMES:
            problems.append("tax_regime")
        if not is_valid_postal_code(postal_code):
            problems.append("postal_code")
        for name, value in (("street", street), ("city", city), ("state", state)):
            if not (value or "").strip():
                problems.append(name)
        if problems:
            raise InvalidRequest(
                "Incomplete company fiscal profile",
                details={"fields": problems},
            )
        return cls(
            rfc=normalize_rfc(rfc),
            legal_name=legal_name.strip(),
            tax_regime=tax_regime,
            postal_code=postal_code.strip(),
            street=street.strip(),
            city=city.strip(),
            state=state.strip(),
            exterior_number=exterior_number,
            neighborhood=neighborhood,
        )

    @classmethod
    def from_company(cls, company) -> "FiscalProfile":
        return cls.create(
            rfc=company.rfc,
            legal_name=company.name,
            tax_regime=company.tax_regime,
            postal_code=company.postal_code,
            street=company.street,
            city=company.city,
            state=company.state,
            exterior_number=company.exterior_number,
            neighborhood=company.neighborhood,
        )


@dataclass(frozen=True)
class CustomerFiscalInfo:
    """
    Receiver data for a CFDI.

    A customer without an RFC is invoiced as the general public
    (XAXX010101000, regime 616, use S01). A named receiver must carry a
    valid RFC, regime, CFDI use and postal code.
    """
    rfc: str
    name: str
    tax_regime: str
    cfdi_use: str
    postal_code: str | None

    @property
    def is_generic(self) -> bool:
        return is_generic_rfc(self.rfc)

    @classmethod
    def create(cls, *, rfc, name, tax_regime=None, cfdi_use=None, postal_code=None) -> "CustomerFiscalInfo":
        rfc = normalize_rfc(rfc) or GENERIC_PUBLIC_RFC
        if not (name or "").strip():
            raise InvalidRequest("Receiver name is required", details={"fields": ["name"]})

        if rfc in GENERIC_RFCS:
            # SAT only accepts regime 616 / use S01 for generic receivers
            return cls(
                rfc=rfc,
                name=name.strip(),
                tax_regime=GENERIC_TAX_REGIME,
                cfdi_use=GENERIC_CFDI_USE,
                postal_code=postal_code,
            )

        problems = []
        if not is_valid_rfc(rfc):
            problems.append("rfc")
        if tax_regime not in TAX_REGIMES:
            problems.append("tax_regime")
        if cfdi_use not in CFDI_USES:
            problems.append("cfdi_use")
        if not is_valid_postal_code(postal_code):
            problems.append("postal_code")
        if problems:
            raise InvalidRequest("Incomplete receiver fiscal data", details={"fields": problems})

        return cls(
            rfc=rfc,
            name=name.strip(),
            tax_regime=tax_regime,
            cfdi_use=cfdi_use,
            postal_code=postal_code.strip(),
        )

    @classmethod
    def from_customer(cls, customer, cfdi_use: str | None = None) -> "CustomerFiscalInfo":
        return cls.create(
            rfc=customer.rfc,
            name=customer.legal_name or customer.name,
            tax_regime=customer.tax_regime,
            cfdi_use=cfdi_use or customer.cfdi_use,
            postal_code=customer.fiscal_postal_code,
        )
