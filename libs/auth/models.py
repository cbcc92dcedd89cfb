from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class AuthUser(BaseModel):
    """
    Represents an authenticated user from a verified access token.
    """

    user_id: str = Field(..., alias="sub")
    email: Optional[str] = None
    roles: list[str] = Field(default_factory=list)
    token: Optional[str] = None

    def has_role(self, role: str) -> bool:
        return role in self.roles


class TokenProfile(BaseModel):
    """Profile details read from token claims, used to prefill checkout."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    email: str = ""
    preferred_username: str = ""
    given_name: str = ""
    family_name: str = ""
    name: str = ""
    phone_number: str = ""
    roles: list[str] = Field(default_factory=list)

    def has_role(self, role: str) -> bool:
        return role in self.roles


def extract_roles(claims: dict[str, Any]) -> list[str]:
    """Collect roles from the claim shapes identity providers use."""
    roles: list[str] = []
    for value in (claims.get("role"), claims.get("roles")):
        if isinstance(value, str):
            roles.append(value)
        elif isinstance(value, list):
            roles.extend(str(item) for item in value)
    realm_access = claims.get("realm_access")
    if isinstance(realm_access, dict):
        roles.extend(str(item) for item in realm_access.get("roles") or [])
    # keep order, drop duplicates
    return list(dict.fromkeys(roles))


def build_token_profile(
    claims: Optional[dict[str, Any]], profile: Optional[dict[str, Any]] = None
) -> Optional[TokenProfile]:
    """Merge a stored profile with token claims; the stored profile wins."""
    if not claims and not profile:
        return None
    claims = claims or {}
    profile = profile or {}

    first_name = profile.get("firstName") or claims.get("given_name") or ""
    last_name = profile.get("lastName") or claims.get("family_name") or ""
    if profile:
        name = " ".join(part for part in (profile.get("firstName"), profile.get("lastName")) if part)
    else:
        name = claims.get("name") or ""

    return TokenProfile(
        email=profile.get("email") or claims.get("email") or claims.get("sub") or "",
        preferred_username=claims.get("preferred_username")
        or profile.get("email")
        or claims.get("sub")
        or "",
        given_name=first_name,
        family_name=last_name,
        name=name or " ".join(part for part in (first_name, last_name) if part),
        phone_number=profile.get("phone")
        or claims.get("phone")
        or claims.get("phone_number")
        or "",
        roles=extract_roles(claims),
    )
