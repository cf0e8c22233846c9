import os, json, hmac, hashlib, base64, logging, secrets
from datetime import datetime, timedelta, timezone
from typing import Iterable
from dotenv import load_dotenv
from fastapi import Depends, Header
from sqlalchemy.orm import Session

from db import get_db
from models import User
from errors import Unauthorized, Forbidden

load_dotenv()
logger = logging.getLogger(__name__)

_DEV_SECRET = "dev-insecure-change-me"
AUTH_SECRET = os.getenv("AUTH_SECRET", "")
if not AUTH_SECRET:
    logger.warning("AUTH_SECRET is not set; using the development secret (unsafe for production)")
    AUTH_SECRET = _DEV_SECRET
TOKEN_TTL_HOURS = int(os.getenv("TOKEN_TTL_HOURS", "24"))

PBKDF2_ITERATIONS = 240_000

class TokenSigner:
    """URL-safe HMAC signer for bearer tokens.

    Encodes/decodes JSON payloads with an HMAC-SHA256 signature:
    token = base64url(payload) + "." + base64url(signature).
    """

    def __init__(self, secret_key, salt=""):
        """
        Args:
            secret_key (str): Secret bytes used for HMAC.
            salt (str): Optional salt mixed into the HMAC key.
        """
        self.secret_key = (secret_key or "").encode("utf-8")
        self.salt = salt or ""

    def _b64(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")

    def _unb64(self, s: str) -> bytes:
        s_bytes = s.encode("ascii")
        padding = b"=" * (-len(s_bytes) % 4)
        return base64.urlsafe_b64decode(s_bytes + padding)

    def _sign(self, payload: bytes) -> bytes:
        return hmac.new(self.secret_key + self.salt.encode("utf-8"), payload, hashlib.sha256).digest()

    def dumps(self, obj) -> str:
        """Serialize and sign a JSON-serializable value into "<b64json>.<b64sig>"."""
        payload = json.dumps(obj, separators=(",", ":"), sort_keys=True).encode("utf-8")
        return f"{self._b64(payload)}.{self._b64(self._sign(payload))}"

    def loads(self, token: str):
        """Verify signature and deserialize a token.

        Raises:
            ValueError: If token format or signature is invalid.
        """
        try:
            payload_b64, sig_b64 = token.rsplit(".", 1)
            payload = self._unb64(payload_b64)
            sig = self._unb64(sig_b64)
        except (ValueError, UnicodeEncodeError):
            raise ValueError("Invalid token format")
        if not hmac.compare_digest(sig, self._sign(payload)):
            raise ValueError("Invalid signature")
        return json.loads(payload.decode("utf-8"))

signer = TokenSigner(secret_key=AUTH_SECRET, salt="feedflow-auth")

def _now_utc() -> datetime:
    return datetime.now(timezone.utc)

# ------------------------
# Passwords
# ------------------------
def hash_password(password: str) -> str:
    """Return a salted PBKDF2-SHA256 hash as "pbkdf2_sha256$<iter>$<salt>$<hex>"."""
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"

def verify_password(password: str, stored: str) -> bool:
    try:
        scheme, iterations, salt, expected = stored.split("$", 3)
    except ValueError:
        return False
    if scheme != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)

# ------------------------
# Tokens
# ------------------------
def issue_token(user: User) -> str:
    exp = _now_utc() + timedelta(hours=TOKEN_TTL_HOURS)
    return signer.dumps({
        "id": user.id,
        "role": user.role,
        "company_id": user.company_id,
        "exp": int(exp.timestamp()),
    })

def load_token_with_expiry(token: str) -> tuple[dict, bool]:
    """Decode a token and determine if it is expired.

    Returns:
        tuple[dict, bool]: (payload, expired_flag)

    Raises:
        ValueError: If token format/signature invalid.
    """
    data = signer.loads(token)
    exp = int(data.get("exp", 0) or 0)
    expired = bool(exp and _now_utc().timestamp() > exp)
    return data, expired

def get_current_user(authorization: str = Header(default=""), db: Session = Depends(get_db)) -> User:
    """Resolve the bearer token to an active user.

    Raises:
        Unauthorized: missing/invalid/expired token, or user no longer exists.
        Forbidden: user account is inactive.
    """
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Missing bearer token")
    try:
        data, expired = load_token_with_expiry(token.strip())
    except ValueError:
        raise Unauthorized("Invalid token")
    if expired:
        raise Unauthorized("Token expired")

    user = db.get(User, data.get("id"))
    if not user:
        raise Unauthorized("User not found")
    if user.status != "active":
        raise Forbidden("Your account has been deactivated")
    return user

# ------------------------
# Authorization
# ------------------------
def role_allowed(role: str, allowed: Iterable[str]) -> bool:
    """Single authorization predicate shared by every protected route."""
    return role in set(allowed)

def require_roles(*roles: str):
    """Build a dependency that returns the current user if their role is allowed."""
    def _dependency(user: User = Depends(get_current_user)) -> User:
        if not role_allowed(user.role, roles):
            raise Forbidden(f"Access denied. Requires one of the roles: {', '.join(roles)}")
        return user
    return _dependency

require_admin = require_roles("admin")
require_editor = require_roles("admin", "creator")
require_report_reader = require_roles("admin", "analyst")
