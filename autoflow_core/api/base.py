"""
API Base

Response envelope shared by every endpoint.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional


def generate_request_id() -> str:
    """Generate a unique request ID."""
    return f"req_{uuid.uuid4().hex[:16]}"


def success_response(
    data: Any,
    meta: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a success response."""
    return {
        "success": True,
        "data": data,
        "error": None,
        "meta": meta,
        "request_id": request_id or generate_request_id(),
        "timestamp": datetime.utcnow().isoformat(),
    }


def error_response(
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Create an error response."""
    request_id = request_id or generate_request_id()
    return {
        "success": False,
        "data": None,
        "error": {
            "code": code,
            "message": message,
            "details": details,
            "request_id": request_id,
        },
        "request_id": request_id,
        "timestamp": datetime.utcnow().isoformat(),
    }
