"""
Response envelope helpers.

Successful responses look like ``{"success": true, "data": ..., "message": ...}``
with optional ``pagination``, ``subscription_info`` and ``metadata`` keys.
"""
import math
from typing import Any, Dict, Optional


def envelope(data: Any = None, message: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    body.update({k: v for k, v in extra.items() if v is not None})
    return body


def pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }
