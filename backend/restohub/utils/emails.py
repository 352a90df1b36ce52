from __future__ import annotations

from functools import lru_cache

from email_validator import EmailNotValidError, validate_email

from restohub.core.errors import BadRequestError


@lru_cache(maxsize=512)
def _validate_format_only(candidate: str) -> str:
    info = validate_email(candidate, check_deliverability=False)
    return info.normalized or info.email


def normalize_email(value: str) -> str:
    """Return the lower-cased, syntax-checked form of an e-mail address."""
    candidate = (value or "").strip().lower()
    if not candidate:
        raise BadRequestError("E-mail is required")
    try:
        return _validate_format_only(candidate).lower()
    except EmailNotValidError as exc:  # pragma: no cover - library error text varies
        raise BadRequestError(f"Invalid e-mail: {exc}") from exc


def same_email(left: str | None, right: str | None) -> bool:
    return bool(left and right) and left.strip().lower() == right.strip().lower()
