import logging
import math
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Cookie, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
import psycopg2
from pydantic import BaseModel
from dotenv import load_dotenv
from jose import JWTError, jwt

_project_root = Path(__file__).resolve().parents[1]
if str(_project_root) not in sys.path:
    sys.path.append(str(_project_root))

try:
    from backend import app_context
except ModuleNotFoundError as exc:
    if exc.name != "backend":
        raise
    import app_context  # type: ignore[no-redef]


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
    dbname=os.getenv("DB_NAME", "memberships_db"),
    user=os.getenv("DB_USER", "membership_user"),
    password=os.getenv("DB_PASSWORD", "membership_pass"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
JWT_EXP_MINUTES = int(os.getenv("JWT_EXP_MINUTES", str(60 * 24 * 7)))  # default: 7 days
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")

logger = logging.getLogger("memberships.api")


def get_conn():
    return psycopg2.connect(**DB_CFG)


class UserOut(BaseModel):
    id: str
    username: Optional[str] = None
    role: str = "contractor"
    contractor_id: Optional[str] = None


def create_access_token(
    *,
    subject: str,
    contractor_id: Optional[str] = None,
    role: str = "contractor",
    username: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    payload: Dict[str, Any] = {"sub": subject, "role": role}
    if contractor_id is not None:
        payload["contractor_id"] = contractor_id
    if username is not None:
        payload["username"] = username
    if expires_delta is None:
        expires_delta = timedelta(minutes=JWT_EXP_MINUTES)
    payload["exp"] = datetime.now(timezone.utc) + expires_delta
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def resolve_user_from_session_token(session_token: str) -> Optional[UserOut]:
    """Build the caller from the signed session claims issued by the auth service."""

    try:
        payload = jwt.decode(session_token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None

    subject = payload.get("sub")
    if subject is None:
        return None
    return UserOut(
        id=str(subject),
        username=payload.get("username"),
        role=payload.get("role") or "contractor",
        contractor_id=payload.get("contractor_id"),
    )


def get_current_user(session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME)) -> UserOut:
    if not session_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    user = resolve_user_from_session_token(session_token)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user


app_context.configure(get_conn=get_conn, get_current_user=get_current_user)

from backend.app.memberships.postgres import PostgresMembershipRepository
from backend.app.routes.memberships import router as memberships_router
from backend.app.services.memberships import get_membership_components
from backend.renewals import (
    get_renewal_metrics,
    shutdown_renewal_scheduler,
    start_renewal_scheduler,
)

app = FastAPI(title="Contractor Memberships API")

# Vite proxy origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(memberships_router)


@app.on_event("startup")
def _start_membership_services() -> None:
    components = get_membership_components()
    if isinstance(components.repository, PostgresMembershipRepository):
        components.repository.ensure_schema()
    if components.config.renewal_scheduler_enabled:
        start_renewal_scheduler()


@app.on_event("shutdown")
def _shutdown_renewal_scheduler() -> None:
    shutdown_renewal_scheduler()


@app.get("/api/healthz")
def healthz():
    return {"ok": True}


@app.get("/api/metrics/membership-renewals")
def read_membership_renewal_metrics() -> Dict[str, Any]:
    return get_renewal_metrics()
