"""
Validators — Regex and rule-based validation for Indian KYC identifiers
and off-ramp request fields.
"""
import re
from datetime import date, datetime

import httpx

SUPPORTED_ASSETS = ("USDC", "USDT")
PAYOUT_CHANNELS = ("upi", "bank", "imps", "neft")


def validate_pan(pan: str | None) -> bool:
    """Validate Indian PAN format: 5 letters + 4 digits + 1 letter (e.g. ABCPK1234F)."""
    if not pan:
        return False
    return bool(re.match(r"^[A-Z]{5}[0-9]{4}[A-Z]$", pan.strip().upper()))


def validate_aadhaar(aadhaar: str | None) -> bool:
    """Validate Aadhaar number: exactly 12 digits, first digit non-zero."""
    if not aadhaar:
        return False
    cleaned = re.sub(r"[\s-]", "", aadhaar)
    return bool(re.match(r"^[2-9]\d{11}$", cleaned))


def validate_upi_vpa(vpa: str | None) -> bool:
    """Validate UPI VPA format: user@provider."""
    if not vpa:
        return False
    return bool(re.match(r"^[\w.-]+@[\w]+$", vpa.strip()))


def validate_ifsc(ifsc: str | None) -> bool:
    """Validate IFSC: 4 letters, a zero, 6 alphanumerics (e.g. HDFC0001234)."""
    if not ifsc:
        return False
    return bool(re.match(r"^[A-Z]{4}0[A-Z0-9]{6}$", ifsc.strip().upper()))


def validate_account_number(account_number: str | None) -> bool:
    """Indian bank account numbers are 9 to 18 digits."""
    if not account_number:
        return False
    return bool(re.match(r"^\d{9,18}$", account_number.strip()))


def validate_otp(otp: str | None) -> bool:
    if not otp:
        return False
    return bool(re.match(r"^\d{6}$", otp.strip()))


def validate_driving_license(number: str | None) -> bool:
    """State code + RTO code + 11 digits, e.g. GJ14 20110012345 (spaces and hyphens ignored)."""
    if not number:
        return False
    cleaned = re.sub(r"[\s-]", "", number).upper()
    return bool(re.match(r"^[A-Z]{2}\d{13}$", cleaned))


def validate_voter_id(number: str | None) -> bool:
    """EPIC number: 3 letters + 7 digits (e.g. GUJ0012345)."""
    if not number:
        return False
    return bool(re.match(r"^[A-Z]{3}\d{7}$", number.strip().upper()))


def validate_passport(number: str | None) -> bool:
    """Indian passport: 1 letter + 7 digits (e.g. J1234567)."""
    if not number:
        return False
    return bool(re.match(r"^[A-Z]\d{7}$", number.strip().upper()))


def validate_date_of_birth(value: str | None) -> bool:
    """ISO date (YYYY-MM-DD) in the past."""
    if not value:
        return False
    try:
        born = datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError:
        return False
    return born < date.today()


def sanitize_name(name: str | None) -> str:
    """Basic sanitization for names: strip, title case."""
    if not name:
        return ""
    return re.sub(r"[^a-zA-Z\s.-]", "", name.strip()).title()


def validate_http_url(url: str | None) -> bool:
    """Absolute http(s) URL with a host, parsed the way webhook delivery will parse it."""
    if not url or not url.strip():
        return False
    try:
        parsed = httpx.URL(url.strip())
    except httpx.InvalidURL:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.host)
