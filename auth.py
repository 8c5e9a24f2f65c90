"""
Password hashing, bearer tokens and the auth gate dependencies.
"""
import logging
from datetime import timedelta
from typing import Optional

import jwt
from bson import ObjectId
from fastapi import Depends, Header
from passlib.context import CryptContext
from pymongo.database import Database

from config import get_settings
from database import USERS, get_db, utc_now
from errors import APIError, InternalError, Unauthenticated
from schemas import CurrentUser

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

BEARER_PREFIX = "Bearer "


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except ValueError:
        # unrecognised hash format
        return False


def create_token(user_id) -> str:
    settings = get_settings()
    issued = utc_now()
    payload = {
        "userId": str(user_id),
        "iat": issued,
        "exp": issued + timedelta(days=settings.jwt_expires_days),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> str:
    """Return the user id the token was issued for."""
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        logger.info("Auth failed: token expired")
        raise Unauthenticated("Please authenticate", "Token verification failed: token has expired")
    except jwt.InvalidTokenError as exc:
        logger.info("Auth failed: %s", exc)
        raise Unauthenticated("Please authenticate", f"Token verification failed: {exc}")
    user_id = payload.get("userId")
    if not user_id:
        raise Unauthenticated("Please authenticate", "Token verification failed: token carries no user")
    return user_id


def bearer_token(authorization: Optional[str]) -> str:
    """Pull the token out of an Authorization header value."""
    if not authorization:
        logger.info("Auth failed: no Authorization header")
        raise Unauthenticated("Please authenticate", "No Authorization header provided")
    if not authorization.startswith(BEARER_PREFIX):
        logger.info("Auth failed: invalid Authorization format")
        raise Unauthenticated(
            "Please authenticate",
            'Invalid Authorization format - must start with "Bearer "',
        )
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        logger.info("Auth failed: empty token")
        raise Unauthenticated("Please authenticate", "Empty token provided")
    return token


def load_user(db: Database, user_id: str) -> Optional[dict]:
    if not ObjectId.is_valid(user_id):
        return None
    return db[USERS].find_one({"_id": ObjectId(user_id)})


def get_current_user(
    authorization: Optional[str] = Header(None),
    db: Database = Depends(get_db),
) -> CurrentUser:
    token = bearer_token(authorization)
    try:
        user_id = decode_token(token)
        user = load_user(db, user_id)
        if not user:
            logger.info("Auth failed: no user for token %s...", token[:15])
            raise Unauthenticated("Please authenticate", "User not found for this token")
        if not user.get("username"):
            logger.info("Auth failed: user %s has no username", user_id)
            raise Unauthenticated("Authentication error", "User account is incomplete (missing username)")
    except APIError:
        raise
    except Exception as exc:
        logger.exception("Unexpected error in auth gate")
        raise InternalError("Authentication error", str(exc)) from exc

    return CurrentUser(
        id=str(user["_id"]),
        username=user["username"],
        name=user.get("name", ""),
        email=user.get("email", ""),
    )


def get_optional_user(
    authorization: Optional[str] = Header(None),
    db: Database = Depends(get_db),
) -> Optional[CurrentUser]:
    """Like get_current_user, but anonymous (None) instead of a 401."""
    if not authorization:
        return None
    try:
        return get_current_user(authorization, db)
    except Unauthenticated:
        return None
