from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """A write broke a ledger-store rule.

    Covers duplicate live emails, duplicate category names within a ledger,
    repeated memberships, references to rows that do not exist, and page
    requests outside the allowed bounds. ``detail`` names the offending field
    or id and is passed through to the error envelope.
    """

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = dict(detail) if detail else {}

    def __str__(self) -> str:
        if not self.detail:
            return self.message
        fields = ", ".join(f"{key}={value}" for key, value in sorted(self.detail.items()))
        return f"{self.message} ({fields})"


__all__ = ["ConstraintViolation"]
