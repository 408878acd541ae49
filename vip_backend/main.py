import logging
import math
import os
from datetime import datetime
from typing import Optional

import psycopg2
import psycopg2.extras
from dotenv import load_dotenv
from fastapi import Cookie, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from jose import JWTError, jwt
from pydantic import BaseModel

from vip_backend import app_context
from vip_backend.app.billing import load_vip_config
from vip_backend.app.routes.admin_vip import router as admin_vip_router
from vip_backend.app.routes.vip import router as vip_router


load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("vip")


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
    dbname=os.getenv("DB_NAME", "vip_db"),
    user=os.getenv("DB_USER", "vip_user"),
    password=os.getenv("DB_PASSWORD", "vip_pass"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")

ADMIN_ROLES = {"admin"}


class UserOut(BaseModel):
    id: str
    username: str
    role: str
    created_at: Optional[datetime] = None


def get_conn():
    return psycopg2.connect(**DB_CFG)


def get_user_by_id(uid: str) -> Optional[UserOut]:
    with get_conn() as conn, conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute("SELECT id, username, role, created_at FROM users WHERE id = %s", (uid,))
        row = cur.fetchone()
    if not row:
        return None
    return UserOut(**{**dict(row), "id": str(row["id"])})


def resolve_user_from_session_token(session_token: str) -> Optional[UserOut]:
    try:
        payload = jwt.decode(session_token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
        subject = payload.get("sub")
        if subject is None:
            return None
    except JWTError as exc:
        logger.debug("Rejected session token: %s", exc)
        return None

    return get_user_by_id(str(subject))


def get_current_user(session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME)) -> UserOut:
    if not session_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    user = resolve_user_from_session_token(session_token)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user


def is_admin(user: UserOut) -> bool:
    return getattr(user, "role", None) in ADMIN_ROLES


app_context.configure(
    get_conn=get_conn,
    get_current_user=get_current_user,
    is_admin=is_admin,
)

app = FastAPI(title="VIP Subscriptions API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(load_vip_config().cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(vip_router)
app.include_router(admin_vip_router)


@app.get("/healthz")
def healthz():
    return {"status": "ok"}
