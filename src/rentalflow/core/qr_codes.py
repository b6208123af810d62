"""QR code payload handling for asset labels."""

import re
import secrets
import time

from rentalflow.core.exceptions import QrCodeError

MAX_QR_CODE_LENGTH = 255

_PRINTABLE = re.compile(r"^[\x21-\x7e]+$")


def normalize_qr_code(raw: str | None) -> str:
    """Clean a scanned QR payload before it is used as a lookup key.

    Args:
        raw: Raw string reported by the scanner

    Returns:
        The payload without surrounding whitespace

    Raises:
        QrCodeError: If the payload is empty, too long, or not printable ASCII

    Examples:
        >>> normalize_qr_code("  ASSET-ACM-1717171717171-0A1B2C\\n")
        'ASSET-ACM-1717171717171-0A1B2C'
    """
    if raw is None:
        raise QrCodeError("QR code is required")

    code = raw.strip()
    if not code:
        raise QrCodeError("QR code is required")
    if len(code) > MAX_QR_CODE_LENGTH:
        raise QrCodeError(
            f"QR code is {len(code)} characters long. Maximum: {MAX_QR_CODE_LENGTH}"
        )
    if not _PRINTABLE.match(code):
        raise QrCodeError(f"Invalid QR code: '{code}'. Expected printable characters only")

    return code


def generate_qr_code(company_name: str) -> str:
    """Build a label payload in the format ASSET-<company>-<millis>-<hex>.

    The company part is the first three alphanumerics of the name, upper
    cased, or UNK when the name has none.
    """
    company_code = re.sub(r"[^a-zA-Z0-9]", "", company_name)[:3].upper() or "UNK"
    timestamp = int(time.time() * 1000)
    return f"ASSET-{company_code}-{timestamp}-{secrets.token_hex(3).upper()}"
