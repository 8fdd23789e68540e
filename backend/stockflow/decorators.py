# Overview: Request decorators for API routes; business context and service error mapping.

from functools import wraps

from flask import current_app, g, jsonify, request

from .validation import ConflictError, NotFoundError, ValidationError


def require_business(f):
    """
    Establish the business (tenant) context for a request.

    The business id comes from the X-Business-Id header, or the business_id
    query parameter as a fallback. Sets g.business_id.

    Returns 400 when it is missing or not an integer, 404 when the business
    does not exist or is inactive.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get("X-Business-Id") or request.args.get("business_id")
        if not raw:
            return jsonify({"error": "X-Business-Id header is required"}), 400
        try:
            business_id = int(raw)
        except ValueError:
            return jsonify({"error": "X-Business-Id must be an integer"}), 400

        from .models import Business
        from .extensions import db

        business = db.session.get(Business, business_id)
        if business is None or not business.is_active:
            return jsonify({"error": "Business not found"}), 404

        g.business_id = business.id
        return f(*args, **kwargs)

    return decorated_function


def handle_service_errors(f):
    """
    Translate service-layer exceptions into JSON error responses.

    - ConflictError      -> 409
    - ValidationError    -> 400
    - NotFoundError      -> 404
    - PartialWriteError  -> 500 (carries conversion_id and failed step)
    - anything else      -> 500, logged with traceback
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        from .services.conversion_service import PartialWriteError

        try:
            return f(*args, **kwargs)
        except ConflictError as e:
            return jsonify({"error": str(e)}), 409
        except ValidationError as e:
            return jsonify({"error": str(e)}), 400
        except NotFoundError as e:
            return jsonify({"error": str(e)}), 404
        except PartialWriteError as e:
            return jsonify({
                "error": str(e),
                "conversion_id": e.conversion_id,
                "failed_step": e.step,
            }), 500
        except Exception:
            current_app.logger.exception("Unhandled error in %s %s", request.method, request.path)
            return jsonify({"error": "Internal server error"}), 500

    return decorated_function
