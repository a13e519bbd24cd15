from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from loguru import logger
from passlib.context import CryptContext
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import config
from database import create_document, get_db, serialize_doc, to_object_id
from errors import ForbiddenError, UnauthorizedError, ValidationError
from schemas import Admin

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

INVALID_CREDENTIALS = "Invalid email or password"


# -----------------------------
# Helpers
# -----------------------------

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    return pwd_context.verify(plain_password, password_hash)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.JWT_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def public_admin(doc: Dict[str, Any]) -> Dict[str, Any]:
    admin = serialize_doc(doc)
    admin.pop("passwordHash", None)
    return admin


# -----------------------------
# Service
# -----------------------------
class AuthService:
    def __init__(self, db: Database):
        self.collection = db.admin
        self.db = db

    def login(self, email: str, password: str) -> Dict[str, Any]:
        admin = self.collection.find_one({"email": email.strip().lower()})
        # one message for both failures
        if not admin or not verify_password(password, admin.get("passwordHash", "")):
            logger.warning(f"Failed admin login for {email}")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        token = create_access_token({"id": str(admin["_id"]), "role": admin["role"]})
        logger.info(f"Admin logged in: {admin['email']}")
        return {
            "token": token,
            "admin": {"id": str(admin["_id"]), "email": admin["email"], "role": admin["role"]},
        }

    def authenticate(self, token: Optional[str]) -> Dict[str, Any]:
        if not token:
            raise UnauthorizedError("Authentication required")
        try:
            payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
        except JWTError:
            raise UnauthorizedError("Invalid or expired token")

        admin_id = payload.get("id")
        if not admin_id:
            raise UnauthorizedError("Invalid or expired token")
        try:
            oid = to_object_id(admin_id)
        except ValidationError:
            raise UnauthorizedError("Invalid or expired token")

        admin = self.collection.find_one({"_id": oid})
        if not admin:
            raise UnauthorizedError("Admin not found")
        return public_admin(admin)

    def profile(self, admin_id: str) -> Dict[str, Any]:
        admin = self.collection.find_one({"_id": to_object_id(admin_id)})
        if not admin:
            raise UnauthorizedError("Admin not found")
        return public_admin(admin)

    def create_admin(self, email: str, password: str, role: str = "admin") -> Dict[str, Any]:
        admin = Admin(email=email, password_hash=hash_password(password), role=role)
        doc = admin.to_document()
        doc["email"] = doc["email"].lower()
        return public_admin(create_document(self.db, "admin", doc))

    def ensure_admin(self, email: str, password: str, role: str = "superadmin") -> bool:
        """Seed the initial back office account. Returns True when one was created."""
        if self.collection.find_one({"email": email.strip().lower()}, {"_id": 1}):
            return False
        try:
            self.create_admin(email, password, role)
        except DuplicateKeyError:
            # another worker seeded it first
            return False
        logger.info(f"Seeded admin account {email}")
        return True


# -----------------------------
# Dependencies
# -----------------------------
def get_current_admin(token: Optional[str] = Depends(oauth2_scheme), db: Database = Depends(get_db)) -> Dict[str, Any]:
    return AuthService(db).authenticate(token)


def require_roles(*roles: str):
    allowed = set(roles)

    def dependency(admin: Dict[str, Any] = Depends(get_current_admin)) -> Dict[str, Any]:
        if admin.get("role") not in allowed:
            raise ForbiddenError("Insufficient privileges")
        return admin

    return dependency
