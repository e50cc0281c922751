# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .extensions import db
from .models import Company, User
from .principal import Principal


def require_principal(f):
    """
    Resolve the caller and establish tenant context.

    Authentication happens upstream; the auth collaborator forwards the
    verified identity as X-User-Id / X-Company-Id headers.

    MULTI-TENANT: Sets g.principal (Principal). Routes pass it explicitly
    into every service call.

    Returns 401 if either header is missing, 403 if the user does not belong
    to the company or either is deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id = (request.headers.get("X-User-Id") or "").strip()
        company_id = (request.headers.get("X-Company-Id") or "").strip()

        if not user_id or not company_id:
            return jsonify({"error": "Authentication required"}), 401

        user = db.session.query(User).filter_by(id=user_id, company_id=company_id).first()
        company = db.session.get(Company, company_id)

        if not user or not company or not user.is_active or not company.is_active:
            current_app.logger.warning(
                "Rejected principal user=%s company=%s on %s %s",
                user_id, company_id, request.method, request.path,
            )
            return jsonify({"error": "Access denied"}), 403

        g.principal = Principal(user_id=user.id, company_id=company.id, email=user.email)
        return f(*args, **kwargs)

    return decorated_function
