import logging
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from keycloak import KeycloakOpenID
from opentelemetry import trace
from pydantic import BaseModel

from app.core.config import settings

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Keycloak client configuration (bearer-only mode - no client_secret needed)
keycloak_openid = KeycloakOpenID(
    server_url=settings.KEYCLOAK_SERVER_URL,
    client_id=settings.KEYCLOAK_CLIENT_ID,
    realm_name=settings.KEYCLOAK_REALM,
)

# Security scheme for Bearer token (auto_error disabled so we answer with our own 401)
security_scheme = HTTPBearer(auto_error=False)

# Frontend clients allowed to call the sync endpoints
ALLOWED_AZP = frozenset(
    {
        "apps-vetra-clinic-portal",
        "apps-vetra-admin-portal",
    }
)


class User(BaseModel):
    sub: str  # Keycloak user ID
    email: str | None = None
    preferred_username: str | None = None
    realm_access: dict | None = None
    resource_access: dict | None = None

    @property
    def roles(self) -> list[str]:
        """Realm roles plus the roles granted on this service's client."""
        user_roles: list[str] = []
        if self.realm_access and "roles" in self.realm_access:
            user_roles.extend(self.realm_access["roles"])
        if self.resource_access and settings.KEYCLOAK_CLIENT_ID in self.resource_access:
            user_roles.extend(
                self.resource_access[settings.KEYCLOAK_CLIENT_ID].get("roles", [])
            )
        return user_roles


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def verify_token(token: str) -> dict:
    """
    Verify JWT token with Keycloak.

    Validates:
    - Token signature and expiration (via decode_token)
    - iss (issuer) - must be from our Keycloak realm (skipped in DEBUG)
    - azp (authorized party) - must be one of the Vetra portals
    """
    with tracer.start_as_current_span("verify_keycloak_token") as span:
        try:
            token_info = keycloak_openid.decode_token(token, validate=True)
        except Exception as e:
            logger.error(f"Token verification failed: {e}")
            span.set_attribute("auth.error", True)
            span.set_attribute("auth.error_detail", str(e))
            raise _unauthorized("Invalid token") from e

        iss = token_info.get("iss")
        if not settings.DEBUG:
            expected_issuer = (
                f"{settings.KEYCLOAK_SERVER_URL.rstrip('/')}/realms/{settings.KEYCLOAK_REALM}"
            )
            if iss != expected_issuer:
                logger.error(f"Invalid issuer in token: {iss}. Expected: {expected_issuer}")
                raise _unauthorized(f"Token from unauthorized issuer: {iss}")
        else:
            logger.debug(f"DEBUG mode: Skipping issuer validation. Token issuer: {iss}")

        azp = token_info.get("azp")
        if azp not in ALLOWED_AZP:
            logger.error(f"Invalid azp in token: {azp}. Expected one of: {sorted(ALLOWED_AZP)}")
            raise _unauthorized(f"Token not authorized for this service (invalid azp: {azp})")

        span.set_attribute("auth.user_id", token_info.get("sub"))
        span.set_attribute("auth.azp", azp)
        return token_info


async def extract_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)] = None,
) -> str:
    """Extract the JWT from the Authorization header."""
    if credentials:
        return credentials.credentials

    logger.warning("No authentication token found in request")
    raise _unauthorized("Authentication required. Provide a Bearer token.")


async def get_current_user(token: Annotated[str, Depends(extract_token)]) -> User:
    """Get current user from verified Keycloak token."""
    token_data = await verify_token(token)
    user = User(**token_data)
    logger.info(f"User authenticated: {user.sub}")
    return user


def require_roles(*roles: str):
    """
    Dependency factory for role-based access control (user needs ANY of the roles).

    Examples:
        @router.post("/sync", dependencies=[Depends(require_roles("admin"))])
    """

    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        with tracer.start_as_current_span("check_user_roles") as span:
            span.set_attribute("auth.required_roles", ",".join(roles))
            span.set_attribute("auth.user_id", current_user.sub)

            user_roles = current_user.roles
            if not any(role in user_roles for role in roles):
                logger.warning(
                    f"Access denied for user {current_user.sub}. "
                    f"Required roles: {roles}. User roles: {user_roles}"
                )
                span.set_attribute("auth.access_denied", True)
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail=f"Access denied. Required roles: {', '.join(roles)}",
                )

            span.set_attribute("auth.access_granted", True)
            return current_user

    return role_checker
