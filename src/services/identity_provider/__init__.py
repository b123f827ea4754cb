from .base import AuthenticationResult, BaseIdentityProvider, SessionData, UserProfile
from .oidc import OIDCIdentityProvider
from .saml import SAMLIdentityProvider
from .service import IdentityProviderService, provider_registry, create_provider_instance

__all__ = [
    "AuthenticationResult",
    "BaseIdentityProvider",
    "SessionData",
    "UserProfile",
    "OIDCIdentityProvider",
    "SAMLIdentityProvider",
    "IdentityProviderService",
    "provider_registry",
    "create_provider_instance",
]
