import time
from typing import Dict, Mapping, Optional

import jwt
from flask import Flask, g, jsonify, request
from flask_cors import CORS
from flask_pymongo import PyMongo
from pymongo.errors import ConnectionFailure, ExecutionTimeout, PyMongoError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from .auth import admin_required, init_admin_auth
from .catalog import ProductCatalog, serialize_product
from .config import configure_logging, cors_origins, load_config
from .errors import AuthenticationError, ConfigurationError, StoreError, ValidationError
from .media import CloudinaryMediaStore, MediaService
from .orders import OrderService, serialize_order
from .payments import PaymentReconciler, PaymentService, StripeGateway, verify_webhook_event
from .seed import seed_products_command


def create_app(
    config: Optional[Mapping[str, object]] = None,
    *,
    database=None,
    payment_gateway=None,
    media_store=None,
    signing_key_resolver=None,
) -> Flask:
    """Create and configure the Flask application.

    Collaborators that are not passed in are built from configuration:
    the MongoDB handle from ``MONGO_URI``, the Stripe gateway from
    ``STRIPE_SECRET_KEY``, the Cloudinary store from its credentials and
    the JWKS key resolver from ``AUTH0_DOMAIN``.
    """
    app = Flask(__name__)

    # --- Configuration ---
    app.config.update(load_config(config))
    configure_logging(app.config["LOG_LEVEL"])
    app.config["MAX_CONTENT_LENGTH"] = int(app.config["MAX_UPLOAD_SIZE_MB"]) * 1024 * 1024

    trusted_proxy_hops = max(0, int(app.config["TRUSTED_PROXY_HOPS"]))
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    CORS(app, origins=cors_origins(app.config))

    # --- Collaborators ---
    if database is None:
        if not app.config["MONGO_URI"]:
            raise ConfigurationError(
                "MONGO_URI not set. Please add it to the environment and restart the server."
            )
        timeout_ms = int(app.config["MONGO_TIMEOUT_MS"])
        mongo = PyMongo(
            app,
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
            socketTimeoutMS=timeout_ms,
        )
        database = mongo.db if mongo.db is not None else mongo.cx[app.config["MONGO_DB_NAME"]]

    if payment_gateway is None and app.config["STRIPE_SECRET_KEY"]:
        payment_gateway = StripeGateway(
            app.config["STRIPE_SECRET_KEY"], timeout=int(app.config["STRIPE_TIMEOUT_SECONDS"])
        )
    if payment_gateway is None:
        app.logger.warning("STRIPE_SECRET_KEY not set: payment intent creation is disabled")
    if not app.config["STRIPE_WEBHOOK_SECRET"]:
        app.logger.warning(
            "STRIPE_WEBHOOK_SECRET not set: webhook events will be trusted without verification"
        )

    if media_store is None and all(
        app.config[key]
        for key in ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET")
    ):
        media_store = CloudinaryMediaStore(
            app.config["CLOUDINARY_CLOUD_NAME"],
            app.config["CLOUDINARY_API_KEY"],
            app.config["CLOUDINARY_API_SECRET"],
            folder=app.config["CLOUDINARY_FOLDER"],
        )
    if media_store is None:
        app.logger.warning("Cloudinary credentials not set: image uploads are disabled")

    init_admin_auth(app, signing_key_resolver)

    catalog = ProductCatalog(database)
    orders = OrderService(database, catalog)
    payments = PaymentService(
        catalog, orders, payment_gateway, default_currency=app.config["DEFAULT_CURRENCY"]
    )
    reconciler = PaymentReconciler(orders)
    media = MediaService(media_store)

    catalog.ensure_indexes()
    orders.ensure_indexes()

    app.extensions["storefront"] = {
        "db": database,
        "catalog": catalog,
        "orders": orders,
        "payments": payments,
        "reconciler": reconciler,
        "media": media,
    }
    app.cli.add_command(seed_products_command)

    # --- Helpers ---

    def json_body() -> Dict:
        payload = request.get_json(silent=True)
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object.")
        return payload

    # --- Request logging and errors ---

    @app.before_request
    def start_request_timer():
        g.request_started_at = time.perf_counter()

    @app.after_request
    def log_request(response):
        started_at = g.get("request_started_at")
        elapsed_ms = (time.perf_counter() - started_at) * 1000 if started_at else 0.0
        app.logger.info(
            "%s %s %s %.1fms", request.method, request.path, response.status_code, elapsed_ms
        )
        return response

    @app.errorhandler(StoreError)
    def handle_store_error(exc: StoreError):
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(PyMongoError)
    def handle_database_error(exc: PyMongoError):
        retryable = isinstance(exc, (ConnectionFailure, ExecutionTimeout))
        app.logger.error("Database error on %s %s: %s", request.method, request.path, exc)
        status_code = 503 if retryable else 500
        return (
            jsonify({"message": "The database is unavailable. Please try again later.", "retryable": retryable}),
            status_code,
        )

    @app.errorhandler(jwt.PyJWTError)
    def handle_token_error(exc):
        app.logger.warning("Rejected bearer token: %s", exc)
        return handle_store_error(AuthenticationError("Invalid token."))

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return jsonify({"message": exc.description, "retryable": False}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({"message": "Internal server error.", "retryable": False}), 500

    # --- ROUTES ---

    @app.route("/health", methods=["GET"])
    @app.route("/api/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok"})

    # Catalog
    @app.route("/api/products", methods=["GET"])
    def list_products():
        category = (request.args.get("category") or "").strip() or None
        products = [serialize_product(document) for document in catalog.list_products(category)]
        return jsonify({"products": products})

    @app.route("/api/products/<slug>", methods=["GET"])
    def get_product(slug: str):
        return jsonify({"product": serialize_product(catalog.get_by_slug(slug))})

    # Orders
    @app.route("/api/orders", methods=["POST"])
    def create_order():
        payload = json_body()
        order_document = orders.create_order(
            payload.get("items"),
            shipping_address=payload.get("shippingAddress"),
            customer_email=payload.get("userEmail") or payload.get("email"),
            payment_intent_id=payload.get("paymentIntentId"),
        )
        return (
            jsonify({"message": "Order created.", "order": serialize_order(order_document)}),
            201,
        )

    @app.route("/api/orders/<order_id>", methods=["GET"])
    def get_order(order_id: str):
        return jsonify({"order": serialize_order(orders.get_order(order_id))})

    # Payments
    @app.route("/api/create-payment-intent", methods=["POST"])
    def create_payment_intent():
        payload = json_body()
        intent = payments.create_payment_intent(
            payload.get("items"),
            metadata=payload.get("metadata"),
            currency=payload.get("currency"),
        )
        return jsonify(intent)

    @app.route("/api/payment-intent/<payment_intent_id>", methods=["GET"])
    def get_payment_intent(payment_intent_id: str):
        return jsonify(payments.get_payment_intent(payment_intent_id))

    @app.route("/api/webhook", methods=["POST"])
    def stripe_webhook():
        event = verify_webhook_event(
            request.get_data(),
            request.headers.get("Stripe-Signature"),
            app.config["STRIPE_WEBHOOK_SECRET"],
        )
        outcome = reconciler.handle_event(event)
        return jsonify({"received": True, "outcome": outcome})

    # --- Admin Routes ---

    @app.route("/api/admin/products", methods=["GET"])
    @admin_required
    def admin_list_products():
        products = [serialize_product(document) for document in catalog.list_products()]
        return jsonify({"products": products})

    @app.route("/api/admin/products/<product_id>", methods=["GET"])
    @admin_required
    def admin_get_product(product_id: str):
        return jsonify({"product": serialize_product(catalog.get_product(product_id))})

    @app.route("/api/admin/products", methods=["POST"])
    @admin_required
    def admin_create_product():
        product_document = catalog.create_product(json_body())
        return (
            jsonify(
                {
                    "message": "Product added successfully.",
                    "product": serialize_product(product_document),
                }
            ),
            201,
        )

    @app.route("/api/admin/products/<product_id>", methods=["PUT"])
    @admin_required
    def admin_update_product(product_id: str):
        product_document = catalog.update_product(product_id, json_body())
        return jsonify(
            {"message": "Product updated.", "product": serialize_product(product_document)}
        )

    @app.route("/api/admin/orders", methods=["GET"])
    @admin_required
    def admin_list_orders():
        return jsonify(
            orders.list_orders(
                page=request.args.get("page"),
                page_size=request.args.get("pageSize"),
                search=request.args.get("q") or "",
            )
        )

    @app.route("/api/admin/orders/<order_id>/status", methods=["PUT"])
    @admin_required
    def admin_update_order_status(order_id: str):
        payload = json_body()
        order_document = orders.update_fulfillment_status(
            order_id, payload.get("status") or payload.get("fulfillmentStatus")
        )
        return jsonify({"order": serialize_order(order_document)})

    # Media
    @app.route("/api/upload/image", methods=["POST"])
    @admin_required
    def upload_image():
        return jsonify(media.upload_image(request.files.get("image")))

    @app.route("/api/upload/image", methods=["DELETE"])
    @admin_required
    def delete_image():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            payload = request.form.to_dict() or request.args.to_dict()
        return jsonify(
            media.delete_image(public_id=payload.get("public_id"), url=payload.get("url"))
        )

    return app
