import hashlib
import hmac
import time

import jwt
import mongomock
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from storefront import create_app
from storefront.errors import ValidationError

AUTH0_DOMAIN = "jesko-test.eu.auth0.com"
AUTH0_AUDIENCE = "https://api.jesko.test"
ROLES_CLAIM = "https://jesko.com/roles"
WEBHOOK_SECRET = "whsec_test_secret"


class FakeGateway:
    def __init__(self):
        self.created = []
        self.intents = {}

    def create_intent(self, amount, currency, metadata):
        intent_id = f"pi_test_{len(self.created) + 1}"
        intent = {
            "id": intent_id,
            "amount": amount,
            "currency": currency,
            "status": "requires_payment_method",
            "metadata": dict(metadata),
        }
        self.created.append(intent)
        self.intents[intent_id] = intent
        return {"id": intent_id, "client_secret": f"{intent_id}_secret_abc"}

    def retrieve_intent(self, payment_intent_id):
        intent = self.intents.get(payment_intent_id)
        if intent is None:
            raise ValidationError(f"No such payment_intent: '{payment_intent_id}'")
        return dict(intent)


class FakeMediaStore:
    def __init__(self):
        self.uploaded = []
        self.destroyed = []
        self.destroy_result = {"result": "ok"}

    def upload(self, image_file):
        self.uploaded.append(image_file.filename)
        return {
            "url": "https://res.cloudinary.com/demo/image/upload/v1712/jesko-products/abc123.jpg",
            "public_id": "jesko-products/abc123",
        }

    def destroy(self, public_id):
        self.destroyed.append(public_id)
        return self.destroy_result


def base_config(**overrides):
    config = {
        "MONGO_URI": "",
        "AUTH_MODE": "enforced",
        "AUTH0_DOMAIN": AUTH0_DOMAIN,
        "AUTH0_AUDIENCE": AUTH0_AUDIENCE,
        "ADMIN_ROLES_CLAIM": ROLES_CLAIM,
        "STRIPE_SECRET_KEY": "",
        "STRIPE_WEBHOOK_SECRET": WEBHOOK_SECRET,
        "CLOUDINARY_CLOUD_NAME": "",
        "CLOUDINARY_API_KEY": "",
        "CLOUDINARY_API_SECRET": "",
        "DEFAULT_CURRENCY": "inr",
        "TRUSTED_PROXY_HOPS": 0,
        "TESTING": True,
    }
    config.update(overrides)
    return config


def stripe_signature(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp=None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed_payload = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def database():
    return mongomock.MongoClient()["jesko_test"]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def media_store():
    return FakeMediaStore()


@pytest.fixture
def app(database, gateway, media_store, rsa_key):
    public_key = rsa_key.public_key()
    return create_app(
        base_config(),
        database=database,
        payment_gateway=gateway,
        media_store=media_store,
        signing_key_resolver=lambda jwt_header: public_key,
    )


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def catalog(app):
    return app.extensions["storefront"]["catalog"]


@pytest.fixture
def orders(app):
    return app.extensions["storefront"]["orders"]


@pytest.fixture
def make_token(rsa_key):
    def build(roles=("admin",), **claims):
        now = int(time.time())
        payload = {
            "sub": "auth0|tester",
            "aud": AUTH0_AUDIENCE,
            "iss": f"https://{AUTH0_DOMAIN}/",
            "iat": now,
            "exp": now + 600,
            ROLES_CLAIM: list(roles),
        }
        payload.update(claims)
        return jwt.encode(payload, rsa_key, algorithm="RS256", headers={"kid": "test-key"})

    return build


@pytest.fixture
def admin_headers(make_token):
    return {"Authorization": f"Bearer {make_token()}"}


@pytest.fixture
def name_board(catalog):
    return catalog.create_product(
        {
            "title": "Custom Name Board",
            "slug": "custom-name-board",
            "price": 500,
            "category": "nameboard",
            "images": ["https://res.cloudinary.com/demo/image/upload/v1/jesko-products/board.jpg"],
            "isCustomizable": True,
            "customizationSchema": {
                "text": {"type": "text", "label": "Text", "default": "Your Name"},
            },
        }
    )
