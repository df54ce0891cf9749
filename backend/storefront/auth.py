"""Admin authorization: Auth0-issued RS256 bearer tokens plus a role claim."""

import logging
from functools import wraps

import jwt
from flask import current_app, jsonify
from flask_jwt_extended import JWTManager, get_jwt, verify_jwt_in_request

from .config import AUTH_MODE_DISABLED
from .errors import PermissionDeniedError

logger = logging.getLogger(__name__)


class JwksKeyResolver:
    """Looks up the signing key for a token's ``kid`` in the provider's key set."""

    def __init__(self, domain: str, timeout: int = 10):
        self.jwks_uri = f"https://{domain}/.well-known/jwks.json"
        self.client = jwt.PyJWKClient(self.jwks_uri, cache_keys=True, timeout=timeout)

    def __call__(self, jwt_header):
        kid = jwt_header.get("kid")
        if not kid:
            raise jwt.DecodeError("Token header has no key id.")
        try:
            return self.client.get_signing_key(kid).key
        except jwt.PyJWKClientError as exc:
            logger.warning("Unable to resolve signing key %s from %s: %s", kid, self.jwks_uri, exc)
            raise jwt.DecodeError("Unable to verify the token signature.")


def init_admin_auth(app, signing_key_resolver=None):
    """Configure flask-jwt-extended for the identity provider, if enforced."""
    if app.config["AUTH_MODE"] == AUTH_MODE_DISABLED:
        app.logger.warning(
            "AUTH_MODE=disabled: admin routes are open to everyone. Never use this in production."
        )
        return None

    domain = app.config["AUTH0_DOMAIN"]
    app.config["JWT_ALGORITHM"] = "RS256"
    app.config["JWT_DECODE_ALGORITHMS"] = ["RS256"]
    app.config["JWT_DECODE_AUDIENCE"] = app.config["AUTH0_AUDIENCE"]
    app.config["JWT_DECODE_ISSUER"] = f"https://{domain}/"
    app.config["JWT_TOKEN_LOCATION"] = ["headers"]
    app.config["JWT_IDENTITY_CLAIM"] = "sub"

    resolver = signing_key_resolver or JwksKeyResolver(
        domain, timeout=app.config["JWKS_TIMEOUT_SECONDS"]
    )
    jwt_manager = JWTManager(app)

    @jwt_manager.decode_key_loader
    def load_decode_key(jwt_header, _jwt_payload):
        return resolver(jwt_header)

    def auth_error(message: str):
        return jsonify({"message": message, "retryable": False}), 401

    @jwt_manager.unauthorized_loader
    def missing_token(reason):
        return auth_error(reason or "Missing Authorization header.")

    @jwt_manager.invalid_token_loader
    def invalid_token(reason):
        return auth_error(reason or "Invalid token.")

    @jwt_manager.expired_token_loader
    def expired_token(_jwt_header, _jwt_payload):
        return auth_error("Token has expired.")

    return jwt_manager


def token_roles(claims, roles_claim: str):
    roles = claims.get(roles_claim) or []
    if isinstance(roles, str):
        roles = [roles]
    return [str(role) for role in roles]


def admin_required(view):
    """Reject callers without a verified token carrying the admin role."""

    @wraps(view)
    def wrapper(*args, **kwargs):
        if current_app.config["AUTH_MODE"] == AUTH_MODE_DISABLED:
            return view(*args, **kwargs)

        verify_jwt_in_request()
        roles = token_roles(get_jwt(), current_app.config["ADMIN_ROLES_CLAIM"])
        if "admin" not in roles:
            raise PermissionDeniedError("Admin access required.")
        return view(*args, **kwargs)

    return wrapper
