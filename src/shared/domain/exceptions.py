"""Base class for business-rule violations.

Every error raised by the domain carries a stable ``kind`` (used by the
API layer to pick a status code) and a ``context`` dict with the ids and
amounts a caller needs to render an actionable message.  The domain never
formats user-facing copy.
"""

from __future__ import annotations

from typing import Any, Dict


class DomainError(Exception):
    """Base business error."""

    kind: str = "domain_error"

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message or self.__class__.__doc__ or self.kind)
        self.context: Dict[str, Any] = {
            key: value for key, value in context.items() if value is not None
        }

    @property
    def sub_order_id(self) -> Any:
        return self.context.get("sub_order_id")
