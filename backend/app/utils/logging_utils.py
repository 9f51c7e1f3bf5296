"""Logging utilities for PII redaction and secure logging."""

import hashlib
from typing import Optional


def normalize_email(email: Optional[str]) -> str:
    """Canonical form used for keys and comparisons: trimmed and lower-cased."""
    return (email or "").strip().lower()


def redact_email(email: Optional[str]) -> str:
    """
    Redact email address for logging while maintaining uniqueness.

    Examples:
        >>> redact_email("founder@example.com")
        'f***@example.com'
        >>> redact_email(None)
        'N/A'
    """
    if not email:
        return "N/A"

    try:
        local, domain = email.split("@", 1)

        # Short local parts are hashed so they can't be guessed from the initial
        if len(local) < 3:
            email_hash = hashlib.sha256(email.encode()).hexdigest()[:6]
            return f"hash:{email_hash}@{domain}"

        return f"{local[0]}***@{domain}"

    except (ValueError, IndexError):
        email_hash = hashlib.sha256(str(email).encode()).hexdigest()[:6]
        return f"hash:{email_hash}"


def token_ref(token_hash: Optional[str]) -> str:
    """
    Short reference to a stored token digest for correlating log lines.

    Only ever pass the digest here, never the raw secret.
    """
    if not token_hash:
        return "N/A"
    return token_hash[:8]


def redact_ip(ip_address: Optional[str]) -> str:
    """
    Redact IP address for logging while maintaining network info.

    Examples:
        >>> redact_ip("192.168.1.100")
        '192.168.1.***'
        >>> redact_ip(None)
        'N/A'
    """
    if not ip_address:
        return "N/A"

    if "." in ip_address:
        parts = ip_address.split(".")
        if len(parts) == 4:
            return f"{parts[0]}.{parts[1]}.{parts[2]}.***"

    if ":" in ip_address:
        parts = ip_address.split(":")
        if len(parts) >= 4:
            return ":".join(parts[:3]) + ":***"

    ip_hash = hashlib.sha256(str(ip_address).encode()).hexdigest()[:6]
    return f"hash:{ip_hash}"
