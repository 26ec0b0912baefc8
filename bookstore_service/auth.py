import logging
import uuid
from datetime import datetime, timedelta, timezone

import jwt
from sqlalchemy import delete, or_, select
from werkzeug.security import check_password_hash, generate_password_hash

from .db import transaction
from .errors import Conflict, InvalidInput, NotFound, Unauthorized
from .models import CustomerProfile, ROLE_ADMIN, ROLE_CUSTOMER, RevokedToken, User

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("username", "password", "first_name", "last_name", "email")


def _create_user(session, data, role):
    missing = [f for f in REQUIRED_FIELDS if not str(data.get(f) or "").strip()]
    if missing:
        raise InvalidInput(f"Missing required fields: {', '.join(missing)}")

    username = data["username"].strip()
    email = data["email"].strip().lower()
    if "@" not in email:
        raise InvalidInput("email is not valid")

    existing = session.execute(
        select(User.id).where(or_(User.username == username, User.email == email))
    ).first()
    if existing:
        raise Conflict("Username or email already registered")

    user = User(
        username=username,
        password_hash=generate_password_hash(data["password"]),
        first_name=data["first_name"].strip(),
        last_name=data["last_name"].strip(),
        email=email,
        role=role,
    )
    session.add(user)
    session.flush()
    return user


def register_customer(session, data):
    """
    Request JSON:
      {
        "username": "alice", "password": "...",
        "first_name": "Alice", "last_name": "Example",
        "email": "alice@example.com",
        "phone": "555-0100",          # optional
        "address": "1 Main St"        # optional
      }
    """
    with transaction(session):
        user = _create_user(session, data, ROLE_CUSTOMER)
        session.add(
            CustomerProfile(
                user_id=user.id,
                phone_number=data.get("phone"),
                shipping_address=data.get("address"),
            )
        )
        user_id = user.id
    logger.info("Registered customer %s (%s)", data["username"], user_id)
    return user_id


def create_admin(session, username, password, email, first_name="Store", last_name="Admin"):
    with transaction(session):
        user = _create_user(
            session,
            {
                "username": username,
                "password": password,
                "email": email,
                "first_name": first_name,
                "last_name": last_name,
            },
            ROLE_ADMIN,
        )
        user_id = user.id
    logger.info("Created admin %s (%s)", username, user_id)
    return user_id


def authenticate(session, username, password):
    if not username or not password:
        raise InvalidInput("username and password are required")
    user = session.execute(
        select(User).where(User.username == username)
    ).scalar_one_or_none()
    if user is None or not check_password_hash(user.password_hash, password):
        logger.warning("Failed login for %s", username)
        raise Unauthorized("Invalid username or password")
    return user


def issue_token(user, secret, algorithm="HS256", exp_minutes=60):
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user.id),
        "username": user.username,
        "role": user.role,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + timedelta(minutes=exp_minutes),
    }
    return jwt.encode(claims, secret, algorithm=algorithm)


def decode_token(session, token, secret, algorithm="HS256"):
    if session.get(RevokedToken, token) is not None:
        raise Unauthorized("Token has been revoked. Please login again.")
    try:
        claims = jwt.decode(token, secret, algorithms=[algorithm])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired. Please login again.")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")
    claims["user_id"] = int(claims["sub"])
    return claims


def revoke_token(session, token, expires_at=None):
    """
    Blacklist ``token`` until ``expires_at`` (naive UTC) and drop entries
    whose tokens have expired on their own.
    """
    with transaction(session):
        pruned = _delete_expired(session, datetime.utcnow())
        if session.get(RevokedToken, token) is None:
            session.add(RevokedToken(token=token, expires_at=expires_at))
    if pruned:
        logger.info("Pruned %s expired revoked tokens", pruned)


def _delete_expired(session, now):
    result = session.execute(
        delete(RevokedToken)
        .where(RevokedToken.expires_at < now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def prune_revoked_tokens(session, now=None):
    with transaction(session):
        pruned = _delete_expired(session, now or datetime.utcnow())
    logger.info("Pruned %s expired revoked tokens", pruned)
    return pruned


def token_expiry(claims):
    """Naive UTC datetime of a decoded token's ``exp`` claim."""
    return datetime.fromtimestamp(claims["exp"], timezone.utc).replace(tzinfo=None)


def update_profile(session, user_id, data):
    """
    Edit personal info; only the fields present in ``data`` change.
    """
    with transaction(session):
        user = session.get(User, user_id)
        if user is None:
            raise NotFound("User not found")

        for field in ("first_name", "last_name"):
            if data.get(field):
                setattr(user, field, data[field].strip())
        if data.get("email"):
            email = data["email"].strip().lower()
            taken = session.execute(
                select(User.id).where(User.email == email, User.id != user_id)
            ).first()
            if taken:
                raise Conflict("Email already registered")
            user.email = email
        if data.get("password"):
            user.password_hash = generate_password_hash(data["password"])

        if "phone" in data or "address" in data:
            profile = user.profile
            if profile is None:
                profile = CustomerProfile(user_id=user.id)
                session.add(profile)
            if "phone" in data:
                profile.phone_number = data["phone"]
            if "address" in data:
                profile.shipping_address = data["address"]

        result = {
            "username": user.username,
            "first_name": user.first_name,
            "last_name": user.last_name,
            "email": user.email,
        }
    logger.info("Updated profile for user %s", user_id)
    return result
