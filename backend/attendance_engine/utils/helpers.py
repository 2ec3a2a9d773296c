"""Helper functions for the application."""
import secrets
from datetime import datetime, timezone
from flask import jsonify
from typing import Dict, Any

def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

def generate_id(prefix: str) -> str:
    """Generate an opaque identifier such as ``vs_Zt3...``."""
    return f"{prefix}_{secrets.token_urlsafe(12)}"

def handle_error(error, status_code: int):
    """Handle application errors with consistent format."""
    return jsonify({
        'error': True,
        'message': str(error),
        'status_code': status_code
    }), status_code

def error_payload(error) -> Dict[str, Any]:
    """Build the error envelope for an engine error."""
    payload = {
        'error': True,
        'message': error.message,
        'code': error.code,
        'status_code': error.status_code
    }
    if error.details:
        payload['details'] = error.details
    return payload
