"""Actor identification from HTTP headers or environment."""

from dataclasses import dataclass

from fastapi import Request

from rentalflow.config import get_settings
from rentalflow.core.models import Actor, Role


@dataclass
class CurrentUser:
    """Caller identity as forwarded by the auth proxy."""

    id: str | None
    role: Role | None
    companies: frozenset[str]

    @property
    def is_authenticated(self) -> bool:
        """Check if the caller carries both an identity and a role."""
        return bool(self.id) and self.role is not None

    def to_actor(self) -> Actor | None:
        if not self.is_authenticated:
            return None
        return Actor(id=self.id, role=self.role, company_scope=self.companies)


def _parse_role(value: str | None) -> Role | None:
    if not value:
        return None
    try:
        return Role(value.strip().upper())
    except ValueError:
        return None


def _parse_companies(value: str | None) -> frozenset[str]:
    if not value:
        return frozenset()
    return frozenset(part.strip() for part in value.split(",") if part.strip())


def get_current_user(request: Request) -> CurrentUser:
    """Extract the caller from request headers or environment.

    The auth proxy forwards identity via HTTP headers:
    - X-Forwarded-Email: actor id
    - X-Actor-Role: CLIENT, FULFILLMENT_STAFF, ADMIN or SYSTEM
    - X-Actor-Companies: comma separated company ids, "*" for all

    In development, falls back to USER_ID, USER_ROLE and USER_COMPANIES.
    """
    actor_id = request.headers.get("X-Forwarded-Email")
    role = request.headers.get("X-Actor-Role")
    companies = request.headers.get("X-Actor-Companies")

    # Fall back to environment variables (dev)
    if not actor_id:
        settings = get_settings().user
        actor_id = settings.id or None
        role = role or settings.role
        companies = companies or settings.companies

    return CurrentUser(id=actor_id, role=_parse_role(role), companies=_parse_companies(companies))
