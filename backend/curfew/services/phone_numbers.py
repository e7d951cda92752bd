from __future__ import annotations

from functools import lru_cache
import re
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_SEPARATORS = re.compile(r"[\s\-().]")

# Calling code -> representative zone, used when a device registers without a zone.
COUNTRY_TIMEZONES: dict[str, str] = {
    "+91": "Asia/Kolkata",
    "+1": "America/New_York",
    "+44": "Europe/London",
    "+86": "Asia/Shanghai",
    "+81": "Asia/Tokyo",
    "+49": "Europe/Berlin",
    "+33": "Europe/Paris",
    "+61": "Australia/Sydney",
    "+65": "Asia/Singapore",
    "+971": "Asia/Dubai",
    "+966": "Asia/Riyadh",
    "+60": "Asia/Kuala_Lumpur",
    "+66": "Asia/Bangkok",
    "+62": "Asia/Jakarta",
    "+63": "Asia/Manila",
    "+82": "Asia/Seoul",
    "+852": "Asia/Hong_Kong",
    "+886": "Asia/Taipei",
    "+234": "Africa/Lagos",
    "+27": "Africa/Johannesburg",
    "+20": "Africa/Cairo",
    "+55": "America/Sao_Paulo",
    "+52": "America/Mexico_City",
    "+54": "America/Argentina/Buenos_Aires",
    "+56": "America/Santiago",
    "+57": "America/Bogota",
    "+51": "America/Lima",
    "+58": "America/Caracas",
}


def canonical_phone(raw: str | None, default_country_code: str) -> str:
    """Normalize a phone number to `+<digits>`.

    Numbers without an international prefix get `default_country_code`.
    Returns an empty string when nothing usable is left.
    """
    if raw is None:
        return ""
    cleaned = _SEPARATORS.sub("", str(raw))
    if cleaned.startswith("00"):
        cleaned = "+" + cleaned[2:]
    if cleaned.startswith("+"):
        digits = cleaned[1:]
        prefix = "+"
    else:
        digits = cleaned
        prefix = default_country_code
    if not digits.isdigit():
        return ""
    return f"{prefix}{digits}"


def phones_match(left: str | None, right: str | None, default_country_code: str) -> bool:
    left_canonical = canonical_phone(left, default_country_code)
    return bool(left_canonical) and left_canonical == canonical_phone(right, default_country_code)


def timezone_from_phone(phone: str | None, fallback: str = "UTC") -> str:
    if not phone or not phone.startswith("+"):
        return fallback
    for code in sorted(COUNTRY_TIMEZONES, key=len, reverse=True):
        if phone.startswith(code):
            return COUNTRY_TIMEZONES[code]
    return fallback


@lru_cache(maxsize=512)
def is_known_timezone(name: str | None) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return False
    return True


def mask_identifier(value: str | None, visible: int = 4) -> str | None:
    """Reduce an identifier to its trailing characters for logs."""
    if value is None:
        return None
    text = str(value)
    if len(text) <= visible:
        return "*" * len(text)
    return "*" * (len(text) - visible) + text[-visible:]


def is_placeholder_fingerprint(value: str | None, placeholder_prefixes) -> bool:
    """True for absent fingerprints and temporary ids a handset sends before it has a real one."""
    if value is None or not value.strip():
        return True
    return any(value.startswith(prefix) for prefix in placeholder_prefixes)
