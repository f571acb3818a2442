# Overview: Request decorators for API routes; error translation and JSON body access.

from functools import wraps
from flask import request, jsonify, current_app

from .services.errors import LedgerError
from .services.reporting_service import ReportError
from .validation import ValidationError, ConflictError


def json_errors(action: str):
    """
    Translate service exceptions into JSON responses.

    LedgerError subclasses carry their own HTTP status and details;
    validation problems are 400, catalog conflicts 409. Anything else is
    logged with its traceback and reported as a 500.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except LedgerError as e:
                if e.http_status >= 500:
                    current_app.logger.error("%s failed: %s", action, e)
                return jsonify(e.to_dict()), e.http_status
            except (ValidationError, ReportError) as e:
                return jsonify({"error": str(e)}), 400
            except ConflictError as e:
                return jsonify({"error": str(e)}), 409
            except Exception:
                current_app.logger.exception("Failed to %s", action)
                return jsonify({"error": "Internal server error"}), 500

        return decorated_function
    return decorator


def json_body() -> dict:
    """Request JSON as a dict; a missing or malformed body is a ValidationError."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data
