import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Generator, Optional, Sequence, Tuple

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from lxml import etree
from signxml import XMLSigner, methods

os.environ.setdefault("DATABASE_ALLOW_NON_POSTGRES", "1")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("DATABASE_URL", os.getenv("DATABASE_URL", os.environ["TEST_DATABASE_URL"]))
os.environ.setdefault("AUTH_JWT_SECRET", "test-jwt-secret-with-enough-entropy-0123456789")

import fakeredis
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  registers every table on Base.metadata
from core.auth.settings import AuthSettings
from database import Base
from models.org import Org, OrgMembership
from models.user import User
from services.audit_log import RecordingSecurityEventLogger
from services.auth.lockout import RedisCounterStore
from services.sso_config_cache import invalidate_sso_config_cache


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    test_engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Generator[Session, None, None]:
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _clear_sso_config_cache() -> Generator[None, None, None]:
    invalidate_sso_config_cache()
    yield
    invalidate_sso_config_cache()


@pytest.fixture()
def auth_settings() -> AuthSettings:
    # Cheap argon2 parameters keep the suite fast; production defaults are much higher.
    return AuthSettings(
        jwt_secret="test-jwt-secret-with-enough-entropy-0123456789",
        lockout_max_attempts=5,
        lockout_window_seconds=900,
        argon2_time_cost=1,
        argon2_memory_cost=8,
        argon2_parallelism=1,
        sso_state_secret=None,
        sso_config_cache_ttl_seconds=0,
    )


@pytest.fixture()
def redis_client() -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture()
def counter_store(redis_client: fakeredis.FakeRedis) -> RedisCounterStore:
    return RedisCounterStore(redis_client)


@pytest.fixture()
def events() -> RecordingSecurityEventLogger:
    return RecordingSecurityEventLogger()


@pytest.fixture()
def make_org(db_session: Session) -> Callable[..., Org]:
    def _make(slug: str = "acme", *, seat_limit: Optional[int] = None) -> Org:
        org = Org(id=uuid.uuid4(), slug=slug, name=slug.title(), seat_limit=seat_limit)
        db_session.add(org)
        db_session.commit()
        return org

    return _make


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    def _make(email: str, *, password_hash: Optional[str] = None, is_system_admin: bool = False) -> User:
        user = User(id=uuid.uuid4(), email=email, name=email.split("@")[0], password_hash=password_hash, is_system_admin=is_system_admin)
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture()
def make_membership(db_session: Session) -> Callable[..., OrgMembership]:
    def _make(user: User, org: Org, *, roles=("org_member",), is_disabled: bool = False) -> OrgMembership:
        membership = OrgMembership(
            id=uuid.uuid4(),
            user_id=user.id,
            org_id=org.id,
            roles=list(roles),
            is_disabled=is_disabled,
        )
        db_session.add(membership)
        db_session.commit()
        return membership

    return _make


@pytest.fixture(scope="session")
def saml_signing_material() -> Tuple[str, str]:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test IdP")])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=1))
        .sign(private_key=key, algorithm=hashes.SHA256())
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM).decode("utf-8")
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    return cert_pem, key_pem


def _saml_instant(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def build_saml_response(
    *,
    audience: str,
    destination: str,
    issuer: str,
    email: str = "user@example.com",
    groups: Sequence[str] = (),
    issued_at: Optional[datetime] = None,
    not_before: Optional[datetime] = None,
    not_on_or_after: Optional[datetime] = None,
) -> bytes:
    now = issued_at or datetime.now(timezone.utc)
    not_before = not_before or now - timedelta(minutes=1)
    not_on_or_after = not_on_or_after or now + timedelta(minutes=5)
    group_values = "".join(f"<saml:AttributeValue>{group}</saml:AttributeValue>" for group in groups)
    group_attribute = f'<saml:Attribute Name="groups">{group_values}</saml:Attribute>' if groups else ""
    xml = f"""
<samlp:Response xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol"
                xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion"
                ID="_{uuid.uuid4().hex}"
                Version="2.0"
                IssueInstant="{_saml_instant(now)}"
                Destination="{destination}">
  <saml:Issuer>{issuer}</saml:Issuer>
  <saml:Assertion ID="_{uuid.uuid4().hex}" Version="2.0" IssueInstant="{_saml_instant(now)}">
    <saml:Issuer>{issuer}</saml:Issuer>
    <saml:Subject>
      <saml:NameID>{email}</saml:NameID>
    </saml:Subject>
    <saml:Conditions NotBefore="{_saml_instant(not_before)}" NotOnOrAfter="{_saml_instant(not_on_or_after)}">
      <saml:AudienceRestriction>
        <saml:Audience>{audience}</saml:Audience>
      </saml:AudienceRestriction>
    </saml:Conditions>
    <saml:AttributeStatement>
      <saml:Attribute Name="email">
        <saml:AttributeValue>{email}</saml:AttributeValue>
      </saml:Attribute>
      {group_attribute}
    </saml:AttributeStatement>
  </saml:Assertion>
</samlp:Response>
""".strip()
    return xml.encode("utf-8")


def sign_saml_response(xml: bytes, cert_pem: str, key_pem: str) -> bytes:
    root = etree.fromstring(xml)
    signer = XMLSigner(
        method=methods.enveloped,
        signature_algorithm="rsa-sha256",
        digest_algorithm="sha256",
    )
    signed_root = signer.sign(root, key=key_pem, cert=cert_pem)
    return etree.tostring(signed_root)


@pytest.fixture()
def signed_saml_response(saml_signing_material: Tuple[str, str]) -> Callable[..., bytes]:
    """Factory returning a signed SAML Response document (raw XML bytes)."""
    cert_pem, key_pem = saml_signing_material

    def _build(**kwargs) -> bytes:
        return sign_saml_response(build_saml_response(**kwargs), cert_pem, key_pem)

    return _build


@pytest.fixture()
def unsigned_saml_response() -> Callable[..., bytes]:
    return build_saml_response
