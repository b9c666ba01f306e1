"""
Input Validation
================

Validators for untrusted request input. Each takes a raw value and either
returns the normalized value or raises ``ValidationError`` with the
offending field name.
"""

import json
import re
from typing import Any, Callable, Dict, List, Optional, Sequence

from fastapi import Request

from captureai.errors import ValidationError

MAX_BODY_SIZE = 1024 * 1024
MAX_IMAGE_SIZE = 5 * 1024 * 1024

EMAIL_REGEX = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
LICENSE_KEY_REGEX = re.compile(r"^[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}-[A-Z0-9]{4}$")
IMAGE_DATA_URI_REGEX = re.compile(r"^data:image/(png|jpeg|jpg|gif|webp);base64,(.+)$", re.DOTALL)
BASE64_REGEX = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")
HEX_REGEX = re.compile(r"^[a-fA-F0-9]+$")

DISPOSABLE_EMAIL_DOMAINS = (
    "tempmail.com", "throwaway.email", "guerrillamail.com",
    "10minutemail.com", "10minutemail.net", "mailinator.com",
    "maildrop.cc", "temp-mail.org", "getnada.com", "trashmail.com",
    "sharklasers.com", "guerrillamailblock.com", "grr.la",
    "fakeinbox.com", "yopmail.com", "mohmal.com", "dispostable.com",
    "emailondeck.com", "mintemail.com", "mytemp.email",
    "tempmail.net", "spamgourmet.com", "mailnesia.com",
    "throwawaymail.com", "temp-mail.io", "guerrillamail.de",
    "inboxkitten.com", "getairmail.com", "anonbox.net",
)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


# =============================================================================
# Domain validators
# =============================================================================

def validate_email(email: Any, required: bool = True) -> Optional[str]:
    """Validate an email address and return it trimmed and lowercased."""
    if _is_blank(email):
        if required:
            raise ValidationError("Email is required", "email")
        return None

    if not isinstance(email, str):
        raise ValidationError("Email must be a string", "email")

    email = email.strip()

    if len(email) > 320:
        raise ValidationError("Email is too long (max 320 characters)", "email")

    if not EMAIL_REGEX.match(email):
        raise ValidationError("Invalid email format", "email")

    local_part, domain = email.split("@", 1)

    if len(local_part) > 64:
        raise ValidationError("Email local part is too long (max 64 characters)", "email")

    if len(domain) > 255:
        raise ValidationError("Email domain is too long (max 255 characters)", "email")

    domain = domain.lower()
    if any(domain.endswith(d) for d in DISPOSABLE_EMAIL_DOMAINS):
        raise ValidationError("Disposable email addresses are not allowed", "email")

    return email.lower()


def validate_license_key(license_key: Any, required: bool = True) -> Optional[str]:
    """Strip whitespace, uppercase and check the XXXX-XXXX-XXXX-XXXX-XXXX shape."""
    if _is_blank(license_key):
        if required:
            raise ValidationError("License key is required", "licenseKey")
        return None

    if not isinstance(license_key, str):
        raise ValidationError("License key must be a string", "licenseKey")

    normalized = re.sub(r"\s+", "", license_key).upper()

    if len(normalized) > 100:
        raise ValidationError("License key is too long", "licenseKey")

    if not LICENSE_KEY_REGEX.match(normalized):
        raise ValidationError(
            "Invalid license key format. Expected format: XXXX-XXXX-XXXX-XXXX-XXXX",
            "licenseKey",
        )

    return normalized


def parse_signature_header(signature: Any) -> Dict[str, str]:
    """
    Parse a ``t=<unix>,v1=<hex>`` webhook signature header.

    Returns the key/value pairs; ``t`` and ``v1`` are always present.
    """
    if not signature or not isinstance(signature, str):
        raise ValidationError("Invalid webhook signature format")

    parts = signature.split(",")
    if len(parts) < 2:
        raise ValidationError("Invalid webhook signature format")

    components: Dict[str, str] = {}
    for part in parts:
        key, _, value = part.strip().partition("=")
        if not key or not value:
            raise ValidationError("Invalid webhook signature format")
        # Keep the first occurrence when a scheme repeats
        components.setdefault(key, value)

    if not components.get("t") or not components.get("v1"):
        raise ValidationError("Missing required signature components")

    try:
        timestamp = int(components["t"])
    except ValueError:
        raise ValidationError("Invalid signature timestamp")
    if timestamp <= 0:
        raise ValidationError("Invalid signature timestamp")

    if not HEX_REGEX.match(components["v1"]):
        raise ValidationError("Invalid signature format")

    return components


def validate_base64_image(value: Any, field: str = "image") -> str:
    """Check a ``data:image/...;base64,`` URI and its decoded size."""
    if not value or not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field)

    match = IMAGE_DATA_URI_REGEX.match(value)
    if not match:
        raise ValidationError(f"{field} must be a valid base64 data URI", field)

    data = match.group(2)
    if not BASE64_REGEX.match(data):
        raise ValidationError(f"{field} contains invalid base64 characters", field)

    if len(data) * 3 / 4 > MAX_IMAGE_SIZE:
        raise ValidationError(f"{field} is too large (max 5MB)", field)

    return value


# =============================================================================
# Generic validators
# =============================================================================

def validate_string(
    value: Any,
    field: str,
    required: bool = True,
    min_length: int = 0,
    max_length: int = 1000,
    pattern: Optional[re.Pattern] = None,
    allow_empty: bool = False,
) -> Optional[str]:
    if value is None or value == "":
        if required and not allow_empty:
            raise ValidationError(f"{field} is required", field)
        return "" if allow_empty else None

    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field)

    if len(value) < min_length:
        raise ValidationError(f"{field} must be at least {min_length} characters", field)

    if len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters", field)

    if pattern is not None and not pattern.search(value):
        raise ValidationError(f"{field} has invalid format", field)

    return value


def validate_number(
    value: Any,
    field: str,
    required: bool = True,
    minimum: Optional[float] = None,
    maximum: Optional[float] = None,
    integer: bool = False,
) -> Optional[float]:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", field)
        return None

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field)

    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", field)
    if number != number:
        raise ValidationError(f"{field} must be a number", field)

    if integer and not number.is_integer():
        raise ValidationError(f"{field} must be an integer", field)

    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be at least {minimum}", field)

    if maximum is not None and number > maximum:
        raise ValidationError(f"{field} must be at most {maximum}", field)

    return int(number) if integer else number


def validate_enum(
    value: Any,
    field: str,
    allowed: Sequence[str],
    required: bool = True,
) -> Optional[str]:
    if value is None or value == "":
        if required:
            raise ValidationError(f"{field} is required", field)
        return None

    if value not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(allowed)}", field)

    return value


def validate_array(
    value: Any,
    field: str,
    required: bool = True,
    min_length: int = 0,
    max_length: int = 100,
    item_validator: Optional[Callable[[Any], Any]] = None,
) -> Optional[List[Any]]:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required", field)
        return None

    if not isinstance(value, list):
        raise ValidationError(f"{field} must be an array", field)

    if len(value) < min_length:
        raise ValidationError(f"{field} must have at least {min_length} items", field)

    if len(value) > max_length:
        raise ValidationError(f"{field} must have at most {max_length} items", field)

    if item_validator is None:
        return value

    items = []
    for index, item in enumerate(value):
        try:
            items.append(item_validator(item))
        except ValidationError as e:
            raise ValidationError(f"{field}[{index}]: {e.message}", field)
    return items


def sanitize_string(value: Any) -> Any:
    """Drop NUL bytes and surrounding whitespace from free text."""
    if not isinstance(value, str):
        return value
    return value.replace("\0", "").strip()


# =============================================================================
# Request body
# =============================================================================

async def read_request_body(request: Request, max_size: int = MAX_BODY_SIZE) -> bytes:
    """
    Read the raw request body, refusing anything over ``max_size`` bytes.

    The limit is checked against Content-Length first and again against
    the bytes actually read.
    """
    too_large = f"Request body too large. Maximum size: {max_size} bytes"

    content_length = request.headers.get("content-length")
    if content_length:
        try:
            declared = int(content_length)
        except ValueError:
            raise ValidationError("Invalid Content-Length header")
        if declared > max_size:
            raise ValidationError(too_large)

    raw = await request.body()
    if len(raw) > max_size:
        raise ValidationError(too_large)

    return raw


async def parse_request_body(request: Request, max_size: int = MAX_BODY_SIZE) -> Dict[str, Any]:
    """Read and decode a JSON request body. An empty body yields ``{}``."""
    raw = await read_request_body(request, max_size)
    if not raw.strip():
        return {}

    try:
        body = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ValidationError("Invalid JSON format")

    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")

    return body
