"""
Base identity provider
Shared attribute mapping and result types for SAML and OIDC providers
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from models.identity_provider import AttributeMappingType, IdentityProvider

logger = logging.getLogger(__name__)

PROFILE_FIELDS = {
    AttributeMappingType.EMAIL.value: "email",
    AttributeMappingType.FIRST_NAME.value: "first_name",
    AttributeMappingType.LAST_NAME.value: "last_name",
    AttributeMappingType.FULL_NAME.value: "full_name",
    AttributeMappingType.ROLE.value: "role",
    AttributeMappingType.ORGANIZATION.value: "organization",
    AttributeMappingType.WORKSPACE.value: "workspace",
}


@dataclass
class UserProfile:
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    role: Optional[str] = None
    organization: Optional[str] = None
    workspace: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SessionData:
    """Federated session details, persisted once the user is known"""
    external_id: str
    expires_at: datetime
    session_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AuthenticationResult:
    success: bool
    user: Optional[UserProfile] = None
    session: Optional[SessionData] = None
    redirect_url: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, user: UserProfile, session: SessionData, redirect_url: str) -> "AuthenticationResult":
        return cls(success=True, user=user, session=session, redirect_url=redirect_url)

    @classmethod
    def failed(cls, error: str) -> "AuthenticationResult":
        return cls(success=False, error=error)


def _single(value):
    if isinstance(value, (list, tuple)):
        return value[0] if len(value) == 1 else list(value)
    return value


class BaseIdentityProvider(ABC):
    """
    Common behaviour of federated identity providers

    A provider is built from an IdentityProvider row. It keeps a plain copy
    of the configuration so it can outlive the database session that loaded it.
    """

    type: str = ""

    def __init__(self, provider: IdentityProvider):
        self.provider_id = provider.id
        self.name = provider.name
        self.config: Dict[str, Any] = dict(provider.config or {})
        self.attributes: List[dict] = [a.to_dict() for a in provider.attributes]
        self.initialized = False

    async def initialize(self) -> bool:
        self.initialized = True
        return True

    @abstractmethod
    async def generate_service_provider_metadata(self) -> str:
        ...

    @abstractmethod
    def parse_identity_provider_metadata(self, metadata: str) -> dict:
        ...

    @abstractmethod
    async def initiate_authentication(self, redirect_url: str = "/") -> str:
        """Return the URL the browser should be sent to"""

    @abstractmethod
    async def handle_callback(self, params: Dict[str, Any]) -> AuthenticationResult:
        ...

    @abstractmethod
    def logout_url(self, session) -> str:
        ...

    def validate_session(self, session) -> bool:
        return session.is_valid()

    def map_attributes(self, attributes: Dict[str, Any]) -> UserProfile:
        """Apply the provider's attribute mappings to raw IdP attributes"""
        profile = UserProfile()

        for mapping in self.attributes:
            if not mapping.get("enabled", True):
                continue

            source = mapping["source_attribute"]
            if source not in attributes:
                if mapping.get("required"):
                    logger.warning(f"Required attribute {source} not found in response")
                continue

            value = _single(attributes[source])
            mapping_type = mapping.get("mapping_type")
            if mapping_type in PROFILE_FIELDS:
                setattr(profile, PROFILE_FIELDS[mapping_type], value)
            elif mapping_type == AttributeMappingType.CUSTOM.value and mapping.get("target_attribute"):
                profile.metadata[mapping["target_attribute"]] = value

        if not profile.full_name and (profile.first_name or profile.last_name):
            profile.full_name = f"{profile.first_name or ''} {profile.last_name or ''}".strip()

        if profile.full_name and not profile.first_name and not profile.last_name:
            parts = profile.full_name.split(" ")
            if len(parts) > 1:
                profile.first_name = parts[0]
                profile.last_name = " ".join(parts[1:])
            else:
                profile.first_name = profile.full_name

        return profile
