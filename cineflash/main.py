import logging
import math
import os
from typing import Any, Dict, Optional

from fastapi import Cookie, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
import psycopg2
import psycopg2.extras
from pydantic import BaseModel
from dotenv import load_dotenv
from jose import JWTError, jwt

from cineflash import app_context


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
    dbname=os.getenv("DB_NAME", "cineflash"),
    user=os.getenv("DB_USER", "cineflash"),
    password=os.getenv("DB_PASSWORD", "cineflash"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")

logger = logging.getLogger("cineflash")


class UserOut(BaseModel):
    id: str
    email: Optional[str] = None
    role: str = "user"


def get_conn():
    return psycopg2.connect(**DB_CFG)


def get_user_by_id(uid: str) -> Optional[UserOut]:
    with get_conn() as conn, conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute("SELECT id, email, role FROM users WHERE id = %s", (uid,))
        row = cur.fetchone()
    if not row:
        return None
    return UserOut(id=str(row["id"]), email=row.get("email"), role=row.get("role") or "user")


def resolve_user_from_session_token(session_token: str) -> Optional[UserOut]:
    try:
        payload = jwt.decode(session_token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as exc:
        logger.debug("Rejected session token: %s", exc)
        return None
    subject = payload.get("sub")
    if not subject:
        return None
    return get_user_by_id(str(subject))


def get_current_user(session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME)) -> UserOut:
    if not session_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    user = resolve_user_from_session_token(session_token)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user


app_context.configure(
    get_conn=get_conn,
    get_current_user=get_current_user,
)

from cineflash.app.routes.billing import router as billing_router
from cineflash.app.routes.internal import router as internal_router
from cineflash.app.routes.profiles import router as profiles_router
from cineflash.sync_scheduler import (
    get_sync_metrics,
    shutdown_sync_scheduler,
    start_sync_scheduler,
)

app = FastAPI(title="Cineflash Billing API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.getenv("APP_BASE_URL", "http://localhost:3000")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(billing_router)
app.include_router(internal_router)
app.include_router(profiles_router)


@app.on_event("startup")
def _start_sync_scheduler() -> None:
    start_sync_scheduler()


@app.on_event("shutdown")
def _shutdown_sync_scheduler() -> None:
    shutdown_sync_scheduler()


@app.get("/api/metrics/subscription-sync")
def read_subscription_sync_metrics() -> Dict[str, Any]:
    return get_sync_metrics()


@app.get("/api/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}
