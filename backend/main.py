import logging
import math
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
import psycopg2
import psycopg2.extras
from pydantic import BaseModel
from dotenv import load_dotenv
from jose import JWTError, jwt

_project_root = Path(__file__).resolve().parents[1]
if str(_project_root) not in sys.path:
    sys.path.append(str(_project_root))

try:
    from backend import app_context
    from backend.app.billing import AuthenticationError, BillingError, UpstreamError
except ModuleNotFoundError as exc:
    if exc.name != "backend":
        raise
    import app_context  # type: ignore[no-redef]
    from app.billing import AuthenticationError, BillingError, UpstreamError  # type: ignore[no-redef]


load_dotenv()

def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))

DB_CFG = dict(
    host=os.getenv("DB_HOST", "127.0.0.1"),
    port=int(os.getenv("DB_PORT", "5432")),
    dbname=os.getenv("DB_NAME", "billing_db"),
    user=os.getenv("DB_USER", "billing_user"),
    password=os.getenv("DB_PASSWORD", "billing_pass"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
JWT_EXP_MINUTES = int(os.getenv("JWT_EXP_MINUTES", str(60 * 24 * 7)))  # default: 7 days
CORS_ALLOW_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]
AUTO_CREATE_SCHEMA = os.getenv("DB_AUTO_CREATE_SCHEMA", "0").lower() in {"1", "true", "yes"}

logger = logging.getLogger("billing_api")


class CurrentUser(BaseModel):
    id: str
    email: Optional[str] = None


def get_conn():
    return psycopg2.connect(**DB_CFG)


def create_access_token(
    *,
    subject: str,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    payload = {"sub": subject}
    if email:
        payload["email"] = email
    if expires_delta is None:
        expires_delta = timedelta(minutes=JWT_EXP_MINUTES)
    expire = datetime.utcnow() + expires_delta
    payload["exp"] = expire
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def get_user_by_id(uid: str) -> Optional[CurrentUser]:
    try:
        with get_conn() as conn, conn.cursor(cursor_factory=psycopg2.extras.DictCursor) as cur:
            cur.execute("SELECT id, email FROM profiles WHERE id = %s", (uid,))
            row = cur.fetchone()
    except psycopg2.Error as exc:
        logger.error("Profile lookup failed for user %s: %s", uid, exc)
        raise UpstreamError(f"Account store error: {exc}") from exc
    if not row:
        return None
    return CurrentUser(id=str(row["id"]), email=row["email"])


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    token = authorization.replace("Bearer ", "", 1).strip()
    return token or None


def resolve_user_from_token(token: str) -> Optional[CurrentUser]:
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    subject = payload.get("sub")
    if not subject:
        return None

    email = payload.get("email")
    if email:
        return CurrentUser(id=str(subject), email=email)
    return get_user_by_id(str(subject))


def get_current_user(authorization: Optional[str] = Header(None)) -> CurrentUser:
    token = _bearer_token(authorization)
    if token is None:
        raise AuthenticationError("Missing authorization header")

    user = resolve_user_from_token(token)
    if user is None:
        raise AuthenticationError("Authentication failed: invalid or expired token")
    if not user.email:
        raise AuthenticationError("User not authenticated or email not available")
    return user


def get_optional_current_user(authorization: Optional[str] = Header(None)) -> Optional[CurrentUser]:
    token = _bearer_token(authorization)
    if token is None:
        return None

    try:
        user = resolve_user_from_token(token)
    except Exception:
        logger.exception("Unexpected error while resolving optional bearer token")
        return None
    return user


app_context.configure(
    get_conn=get_conn,
    get_current_user=get_current_user,
    get_optional_current_user=get_optional_current_user,
)

try:
    from backend.app.routes.billing import router as billing_router
except ModuleNotFoundError as exc:
    if exc.name != "backend":
        raise
    from app.routes.billing import router as billing_router  # type: ignore[no-redef]

app = FastAPI(title="Billing Sync API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(billing_router)


@app.exception_handler(BillingError)
async def handle_billing_error(request: Request, exc: BillingError):
    return exc.to_response()


@app.on_event("startup")
def setup_schema() -> None:
    if not AUTO_CREATE_SCHEMA:
        return
    from backend.app.billing.repository import PostgresAccountProfileRepository

    PostgresAccountProfileRepository().ensure_schema()
    logger.info("Account profile schema ensured")


@app.get("/api/healthz")
def healthz():
    return {"ok": True}

# run: uvicorn backend.main:app --host 127.0.0.1 --port 8000 --reload
