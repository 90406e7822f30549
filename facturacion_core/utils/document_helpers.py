"""
FACTURACION-CORE — Document Utilities
Helpers for Colombian tax identifiers, Bogota dates and monetary strings.
"""

import re
from datetime import datetime, timedelta, timezone

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


BOGOTA_FIXED_OFFSET = timezone(timedelta(hours=-5), "COT")

DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M:%S"
DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_ZERO_AMOUNTS = ("", "0", "0.0", "0.00")

UNIT_CODES = {
    "UN": "94",
    "KG": "KGM",
    "GR": "GRM",
    "LT": "LTR",
    "MT": "MTR",
    "M2": "MTK",
    "M3": "MTQ",
    "HR": "HUR",
    "MIN": "MIN",
    "DIA": "DAY",
    "PAR": "PR",
    "DOC": "DZN",
    "CM": "CMT",
    "MM": "MMT",
}

TAX_NAMES = {
    "01": "IVA",
    "02": "Consumo",
    "03": "ICA",
    "04": "INC",
    "05": "ReteIVA",
    "06": "ReteFuente",
    "07": "ReteICA",
}


def bogota_tz():
    """America/Bogota zone, or a fixed -05:00 offset when tzdata is missing."""
    try:
        return ZoneInfo("America/Bogota")
    except ZoneInfoNotFoundError:
        return BOGOTA_FIXED_OFFSET


def now_bogota() -> datetime:
    return datetime.now(bogota_tz())


def today_bogota() -> str:
    """Current date in Colombia as YYYY-MM-DD."""
    return now_bogota().strftime(DATE_FORMAT)


def processing_stamp() -> tuple[str, str]:
    """
    Get (fecha_procesamiento, hora_procesamiento) in Colombia time.
    Returns: ("YYYY-MM-DD", "HH:MM:SS")
    """
    now = now_bogota()
    return now.strftime(DATE_FORMAT), now.strftime(TIME_FORMAT)


def synthesize_lote() -> str:
    """Batch id used when the gateway does not assign one: lote-YYYYMMDD-HHMMSS."""
    return now_bogota().strftime("lote-%Y%m%d-%H%M%S")


def normalize_nit(nit: str | None) -> str:
    """
    Strip the verification digit from a NIT.
    "860011153-6" -> "860011153", " 860011153 " -> "860011153"
    """
    if not nit:
        return ""
    if "-" in nit:
        return nit.split("-", 1)[0].strip()
    return nit.strip()


def parse_nit_with_dv(nit: str | None) -> tuple[str, str]:
    """
    Split a NIT into (base, dv). The dv is empty when none was provided.
    With several dashes the first part is the base and the last one the dv.
    """
    if not nit:
        return "", ""
    parts = nit.split("-")
    if len(parts) == 1:
        return nit, ""
    return parts[0].strip(), parts[-1].strip()


def parse_date(value: str) -> datetime:
    """Strict YYYY-MM-DD parse. Raises ValueError."""
    if not re.fullmatch(r"\d{4}-\d{2}-\d{2}", value or ""):
        raise ValueError(f"invalid date: {value!r}")
    return datetime.strptime(value, DATE_FORMAT)


def parse_time(value: str) -> datetime:
    """Strict HH:MM:SS parse. Raises ValueError."""
    if not re.fullmatch(r"\d{2}:\d{2}:\d{2}", value or ""):
        raise ValueError(f"invalid time: {value!r}")
    return datetime.strptime(value, TIME_FORMAT)


def is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def is_zero_amount(value: str | None) -> bool:
    return (value or "").strip() in _ZERO_AMOUNTS


def normalize_monetary_value(value: str | None) -> str:
    """Empty or zero amounts become "0.00"; anything else is returned as is."""
    if is_zero_amount(value):
        return "0.00"
    return value


def parse_amount(value: str | None) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def format_amount(value: float) -> str:
    return f"{value:.2f}"


def map_unit_code(code: str | None) -> str:
    """Map OpenETL unit codes to UBL codes. Unknown codes pass through."""
    return UNIT_CODES.get(code or "", code or "")


def tax_name(code: str | None) -> str:
    return TAX_NAMES.get(code or "", "Impuesto")


def extract_prefix_and_consecutive(document_number: str) -> tuple[str, str]:
    """
    Split a full document number at its first digit.
    "SETT5604" -> ("SETT", "5604"), "5604" -> ("", "5604")
    """
    match = re.search(r"\d", document_number or "")
    if not match:
        return document_number or "", ""
    return document_number[:match.start()], document_number[match.start():]


def combine_emails(*sources: str | None) -> str:
    """Join distinct e-mails from several ';' or ',' separated sources with ';'."""
    seen = []
    for source in sources:
        if not source:
            continue
        for email in re.split(r"[;,]", source):
            email = email.strip()
            if email and email not in seen:
                seen.append(email)
    return ";".join(seen)
