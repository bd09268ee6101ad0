"""Actor resolution: who is calling, for which tenant, in what role."""

import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from jose import JWTError, jwt

from spinwheel_api.errors import AccessDenied
from spinwheel_api.settings import get_settings
from spinwheel_api.utils.clock import utcnow

logger = logging.getLogger(__name__)


class ActorRole(str, enum.Enum):
    """Roles recognised by the engine."""

    MANAGER = "MANAGER"
    TENANT_ADMIN = "TENANT_ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


@dataclass(frozen=True)
class Actor:
    """Authenticated caller. Passed explicitly into every mutating call."""

    actor_id: str
    tenant_id: Optional[int]
    role: ActorRole

    @property
    def manager_id(self) -> int:
        """Manager primary key for MANAGER actors."""
        if self.role != ActorRole.MANAGER:
            raise AccessDenied("Only managers can perform this action")
        return int(self.actor_id)

    def require(self, *roles: ActorRole) -> "Actor":
        """Raise AccessDenied unless the actor holds one of ``roles``."""
        if self.role not in roles:
            raise AccessDenied(f"Role {self.role.value} cannot perform this action")
        return self

    def can_access_tenant(self, tenant_id: int) -> bool:
        """Super admins see every tenant; everyone else only their own."""
        return self.role == ActorRole.SUPER_ADMIN or self.tenant_id == tenant_id


class ActorResolver(ABC):
    """Abstract actor resolution interface (owned by the auth layer)."""

    @abstractmethod
    def resolve_actor(self, token: str) -> Actor:
        """Resolve a bearer token into an actor or raise AccessDenied."""
        pass


class JWTActorResolver(ActorResolver):
    """Resolve HS256 JWTs carrying ``sub``, ``tenant_id`` and ``role`` claims."""

    def __init__(self, secret_key: Optional[str] = None, algorithm: Optional[str] = None):
        """Initialize resolver."""
        settings = get_settings()
        self.secret_key = secret_key or settings.jwt_secret_key
        self.algorithm = algorithm or settings.jwt_algorithm

    def resolve_actor(self, token: str) -> Actor:
        """Decode and validate token claims."""
        try:
            claims = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            logger.info(f"Rejected token: {e}")
            raise AccessDenied("Invalid or expired token") from e

        try:
            role = ActorRole(claims["role"])
            tenant_id = claims.get("tenant_id")
            actor = Actor(
                actor_id=str(claims["sub"]),
                tenant_id=int(tenant_id) if tenant_id is not None else None,
                role=role,
            )
        except (KeyError, ValueError, TypeError) as e:
            raise AccessDenied("Token is missing required claims") from e

        if actor.role != ActorRole.SUPER_ADMIN and actor.tenant_id is None:
            raise AccessDenied("Token is not bound to a tenant")
        if actor.role == ActorRole.MANAGER and not actor.actor_id.isdigit():
            raise AccessDenied("Manager token subject must be a manager id")
        return actor

    def issue_token(self, actor: Actor, expires_in: Optional[timedelta] = None) -> str:
        """Issue a token for ``actor`` (used by the CLI and tests)."""
        if expires_in is None:
            expires_in = timedelta(hours=get_settings().jwt_expiration_hours)
        claims = {
            "sub": actor.actor_id,
            "tenant_id": actor.tenant_id,
            "role": actor.role.value,
            "exp": utcnow() + expires_in,
        }
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)


def get_actor_resolver() -> ActorResolver:
    """Get the configured actor resolver."""
    return JWTActorResolver()
