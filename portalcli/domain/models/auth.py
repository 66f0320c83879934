"""Domain models for the authenticated session.

A session is a CredentialPair plus the Principal decoded from its access
token. Both are replaced wholesale, never edited in place.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List

from .common import AccessToken, RefreshToken

GUEST_ROLE = "guest"

# Keycloak-style tokens nest realm roles; plain tokens use 'roles' or 'role'.
_ROLE_CLAIMS = ("roles", "role")


@dataclass(frozen=True)
class CredentialPair:
    """The access/refresh token couple representing an authenticated session."""
    access_token: AccessToken
    refresh_token: RefreshToken

    def to_dict(self) -> Dict[str, str]:
        return {"access_token": self.access_token, "refresh_token": self.refresh_token}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CredentialPair":
        return cls(
            access_token=AccessToken(str(data["access_token"])),
            refresh_token=RefreshToken(str(data["refresh_token"])),
        )

    def __repr__(self) -> str:
        # Tokens are bearer secrets; keep them out of logs and tracebacks.
        return "CredentialPair(access_token='***', refresh_token='***')"


@dataclass
class Principal:
    """Decoded identity and authorization claims of a session."""
    id: str
    name: str
    email: str = ""
    role: str = GUEST_ROLE
    roles: List[str] = field(default_factory=lambda: [GUEST_ROLE])
    permissions: List[str] = field(default_factory=list)

    def has_role(self, code: str) -> bool:
        wanted = code.upper()
        return any(r.upper() == wanted for r in self.roles)

    def has_permission(self, code: str) -> bool:
        wanted = code.upper()
        return any(p.upper() == wanted for p in self.permissions)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Principal":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            email=str(data.get("email") or ""),
            role=str(data.get("role") or GUEST_ROLE),
            roles=list(data.get("roles") or [GUEST_ROLE]),
            permissions=list(data.get("permissions") or []),
        )

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> "Principal":
        """Builds a Principal from decoded access-token claims.

        Understands plain JWT claims ('sub', 'name', 'email', 'roles',
        'permissions') and the Keycloak layout ('preferred_username',
        'realm_access.roles'). A token without any role claims yields the
        guest role.

        Raises:
            ValueError: If the claims carry no subject at all.
        """
        subject = claims.get("sub") or claims.get("id") or claims.get("preferred_username")
        if not subject:
            raise ValueError("Token claims carry no subject")

        roles: List[str] = []
        for claim in _ROLE_CLAIMS:
            value = claims.get(claim)
            if isinstance(value, str):
                roles.append(value)
            elif isinstance(value, (list, tuple)):
                roles.extend(str(v) for v in value)
        realm_access = claims.get("realm_access")
        if isinstance(realm_access, dict):
            roles.extend(str(v) for v in realm_access.get("roles", []))

        # Preserve order, drop duplicates
        roles = list(dict.fromkeys(roles)) or [GUEST_ROLE]

        permissions = claims.get("permissions") or claims.get("scope") or []
        if isinstance(permissions, str):
            permissions = permissions.split()

        name = claims.get("name") or claims.get("preferred_username") or claims.get("username") or str(subject)
        return cls(
            id=str(subject),
            name=str(name),
            email=str(claims.get("email") or ""),
            role=roles[0],
            roles=roles,
            permissions=[str(p) for p in permissions],
        )


def development_principal(identifier: str) -> Principal:
    """Synthesizes the local principal used by the opt-in development login fallback."""
    return Principal(
        id=f"dev-{identifier}",
        name=identifier,
        email=f"{identifier}@localhost",
        role="admin",
        roles=["admin"],
        permissions=[],
    )



@dataclass(frozen=True)
class AuthEndpoints:
    """Paths of the remote authentication endpoints."""
    login: str = "/api/auth/login"
    refresh: str = "/api/auth/refresh"
    logout: str = "/api/auth/logout"
    register: str = "/api/auth/register"
    me: str = "/api/auth/me"
    reset_password: str = "/api/auth/reset-password"

    def is_auth_endpoint(self, endpoint: str) -> bool:
        """Credential-exchange endpoints, which must never carry a bearer token."""
        path = endpoint.split("?", 1)[0].rstrip("/")
        return path in {self.login, self.refresh, self.register, self.reset_password}

    def is_refresh_endpoint(self, endpoint: str) -> bool:
        return endpoint.split("?", 1)[0].rstrip("/") == self.refresh
