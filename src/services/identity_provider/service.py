"""
Identity provider service
Provider CRUD, the registry of initialized providers, and the federated login flow
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models.identity_provider import (
    IdentityProvider,
    IdentityProviderAttribute,
    IdentityProviderSession,
    IdentityProviderStatus,
    IdentityProviderType,
    AttributeMappingType,
)
from models.organization import OrganizationRole
from models.workspace import WorkspaceRole
from core.exceptions import (
    NotFoundException,
    ConflictException,
    ValidationException,
    ForbiddenException,
    IdentityProviderError,
)
from core.security import create_access_token
from core.validators import generate_slug, is_valid_slug
from services.audit_service import AuditService, AuditAction
from services.user_service import UserService
from services.organization_service import OrganizationService
from services.workspace_service import WorkspaceService
from services.role_service import RoleService
from .base import BaseIdentityProvider, UserProfile, SessionData
from .oidc import OIDCIdentityProvider
from .saml import SAMLIdentityProvider

logger = logging.getLogger(__name__)

PROVIDER_CLASSES = {
    IdentityProviderType.OIDC.value: OIDCIdentityProvider,
    IdentityProviderType.SAML.value: SAMLIdentityProvider,
}

UPDATABLE_FIELDS = (
    "name",
    "slug",
    "status",
    "organization_id",
    "config",
    "is_default",
    "just_in_time_provisioning",
    "auto_create_organizations",
    "auto_create_workspaces",
    "default_role",
    "sync_interval",
)

ATTRIBUTE_FIELDS = ("source_attribute", "target_attribute", "mapping_type", "required", "enabled")

# Initialized providers by id, shared across requests
provider_registry: Dict[str, BaseIdentityProvider] = {}


def create_provider_instance(provider: IdentityProvider) -> BaseIdentityProvider:
    provider_class = PROVIDER_CLASSES.get(provider.type)
    if provider_class is None:
        raise IdentityProviderError(f"Unsupported identity provider type: {provider.type}")
    return provider_class(provider)


class IdentityProviderService:
    """Service for identity providers and SSO logins"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.users = UserService(db)
        self.organizations = OrganizationService(db)
        self.workspaces = WorkspaceService(db)
        self.roles = RoleService(db)

    # Registry

    async def initialize(self) -> int:
        """Load every active provider into the registry"""
        result = await self.db.execute(
            select(IdentityProvider).where(IdentityProvider.status == IdentityProviderStatus.ACTIVE.value)
        )
        providers = list(result.scalars().all())
        logger.info(f"Loading {len(providers)} active identity providers")

        loaded = 0
        for provider in providers:
            if await self.initialize_provider(provider):
                loaded += 1
        return loaded

    async def initialize_provider(self, provider: IdentityProvider) -> bool:
        try:
            instance = create_provider_instance(provider)
        except IdentityProviderError as e:
            logger.error(f"Error initializing provider {provider.id}: {e}")
            return False

        if await instance.initialize():
            provider_registry[provider.id] = instance
            logger.info(f"Successfully initialized provider: {provider.name} ({provider.id})")
            return True

        provider_registry.pop(provider.id, None)
        logger.error(f"Failed to initialize provider: {provider.name} ({provider.id})")
        return False

    def get_provider_instance(self, provider_id: str) -> BaseIdentityProvider:
        instance = provider_registry.get(provider_id)
        if instance is None:
            raise NotFoundException("Identity provider not found or not active")
        return instance

    async def _refresh_registry(self, provider: IdentityProvider):
        if provider.status == IdentityProviderStatus.ACTIVE.value:
            await self.initialize_provider(provider)
        else:
            provider_registry.pop(provider.id, None)

    # Providers

    async def get_all(self) -> List[IdentityProvider]:
        result = await self.db.execute(select(IdentityProvider).order_by(IdentityProvider.name))
        return list(result.scalars().all())

    async def get_for_organization(self, organization_id: str) -> List[IdentityProvider]:
        result = await self.db.execute(
            select(IdentityProvider)
            .where(IdentityProvider.organization_id == organization_id)
            .order_by(IdentityProvider.name)
        )
        return list(result.scalars().all())

    async def get_by_id(self, provider_id: str) -> IdentityProvider:
        provider = await self.db.get(IdentityProvider, provider_id)
        if not provider:
            raise NotFoundException(f"Identity provider not found: {provider_id}")
        return provider

    async def get_by_slug(self, slug: str) -> IdentityProvider:
        result = await self.db.execute(select(IdentityProvider).where(IdentityProvider.slug == slug))
        provider = result.scalar_one_or_none()
        if not provider:
            raise NotFoundException(f"Identity provider '{slug}' not found")
        return provider

    async def create(self, data: Dict[str, Any], user_id: Optional[str] = None) -> IdentityProvider:
        provider_type = data.get("type")
        if provider_type not in PROVIDER_CLASSES:
            raise ValidationException(f"Unsupported identity provider type: {provider_type}")
        if not data.get("name"):
            raise ValidationException("Identity provider name is required")

        slug = data.get("slug") or generate_slug(data["name"])
        await self._check_slug(slug)

        if data.get("organization_id"):
            await self.organizations.get_organization(data["organization_id"])

        provider = IdentityProvider(
            name=data["name"],
            slug=slug,
            type=provider_type,
            status=data.get("status") or IdentityProviderStatus.INACTIVE.value,
            organization_id=data.get("organization_id"),
            config=data.get("config") or {},
            metadata_=data.get("metadata") or {},
            is_default=bool(data.get("is_default", False)),
            just_in_time_provisioning=data.get("just_in_time_provisioning", True),
            auto_create_organizations=bool(data.get("auto_create_organizations", False)),
            auto_create_workspaces=bool(data.get("auto_create_workspaces", False)),
            default_role=data.get("default_role") or OrganizationRole.MEMBER.value,
            sync_interval=data.get("sync_interval"),
            created_by=user_id,
            updated_by=user_id,
            attributes=[self._build_attribute(a) for a in data.get("attributes") or []],
        )

        self.db.add(provider)
        await self.db.flush()
        if provider.is_default:
            await self._clear_other_defaults(provider)

        await self.audit.log_user_action(
            user_id, AuditAction.IDP_CREATED, "identity_provider", provider.id,
            {"provider_id": provider.id, "name": provider.name, "type": provider.type},
        )
        await self._refresh_registry(provider)
        return provider

    async def update(self, provider_id: str, data: Dict[str, Any], user_id: Optional[str] = None) -> IdentityProvider:
        provider = await self.get_by_id(provider_id)

        new_slug = data.get("slug")
        if new_slug and new_slug != provider.slug:
            await self._check_slug(new_slug)

        new_org = data.get("organization_id")
        if new_org and new_org != provider.organization_id:
            await self.organizations.get_organization(new_org)

        for key in UPDATABLE_FIELDS:
            if data.get(key) is not None:
                setattr(provider, key, data[key])
        if data.get("metadata") is not None:
            provider.metadata_ = data["metadata"]
        provider.updated_by = user_id

        await self.db.flush()
        if provider.is_default:
            await self._clear_other_defaults(provider)

        await self.audit.log_user_action(
            user_id, AuditAction.IDP_UPDATED, "identity_provider", provider.id,
            {"provider_id": provider.id, "name": provider.name, "type": provider.type},
        )
        await self._refresh_registry(provider)
        return provider

    async def delete(self, provider_id: str, user_id: Optional[str] = None) -> bool:
        provider = await self.get_by_id(provider_id)

        await self.audit.log_user_action(
            user_id, AuditAction.IDP_DELETED, "identity_provider", provider.id,
            {"provider_id": provider.id, "name": provider.name, "type": provider.type},
        )
        provider_registry.pop(provider.id, None)

        await self.db.delete(provider)
        await self.db.flush()
        return True

    async def _check_slug(self, slug: str):
        if not is_valid_slug(slug):
            raise ValidationException("Invalid slug format. Use only lowercase letters, numbers, and hyphens.")
        result = await self.db.execute(select(IdentityProvider.id).where(IdentityProvider.slug == slug))
        if result.first() is not None:
            raise ConflictException(f"Identity provider with slug '{slug}' already exists")

    async def _clear_other_defaults(self, provider: IdentityProvider):
        condition = (
            IdentityProvider.organization_id == provider.organization_id
            if provider.organization_id
            else IdentityProvider.organization_id.is_(None)
        )
        await self.db.execute(
            update(IdentityProvider)
            .where(condition, IdentityProvider.id != provider.id)
            .values(is_default=False)
        )

    # Attribute mappings

    def _build_attribute(self, data: Dict[str, Any]) -> IdentityProviderAttribute:
        if not data.get("source_attribute") or not data.get("target_attribute"):
            raise ValidationException("source_attribute and target_attribute are required")
        mapping_type = data.get("mapping_type") or AttributeMappingType.CUSTOM.value
        if mapping_type not in {m.value for m in AttributeMappingType}:
            raise ValidationException(f"Invalid mapping type '{mapping_type}'")
        return IdentityProviderAttribute(
            source_attribute=data["source_attribute"],
            target_attribute=data["target_attribute"],
            mapping_type=mapping_type,
            required=bool(data.get("required", False)),
            enabled=data.get("enabled", True),
        )

    async def list_attributes(self, provider_id: str) -> List[IdentityProviderAttribute]:
        provider = await self.get_by_id(provider_id)
        return list(provider.attributes)

    async def add_attribute(self, provider_id: str, data: Dict[str, Any]) -> IdentityProviderAttribute:
        provider = await self.get_by_id(provider_id)
        attribute = self._build_attribute(data)
        provider.attributes.append(attribute)
        await self.db.flush()
        await self._refresh_registry(provider)
        return attribute

    async def update_attribute(
        self, provider_id: str, attribute_id: str, data: Dict[str, Any]
    ) -> IdentityProviderAttribute:
        provider = await self.get_by_id(provider_id)
        attribute = self._find_attribute(provider, attribute_id)

        if data.get("mapping_type") and data["mapping_type"] not in {m.value for m in AttributeMappingType}:
            raise ValidationException(f"Invalid mapping type '{data['mapping_type']}'")
        for key in ATTRIBUTE_FIELDS:
            if data.get(key) is not None:
                setattr(attribute, key, data[key])

        await self.db.flush()
        await self._refresh_registry(provider)
        return attribute

    async def delete_attribute(self, provider_id: str, attribute_id: str) -> bool:
        provider = await self.get_by_id(provider_id)
        attribute = self._find_attribute(provider, attribute_id)
        provider.attributes.remove(attribute)
        await self.db.flush()
        await self._refresh_registry(provider)
        return True

    def _find_attribute(self, provider: IdentityProvider, attribute_id: str) -> IdentityProviderAttribute:
        for attribute in provider.attributes:
            if attribute.id == attribute_id:
                return attribute
        raise NotFoundException(f"Attribute mapping {attribute_id} not found")

    # Metadata and connection checks

    async def test_connection(self, provider_id: str) -> dict:
        provider = await self.get_by_id(provider_id)
        try:
            instance = create_provider_instance(provider)
        except IdentityProviderError as e:
            return {"success": False, "message": str(e)}

        if await instance.initialize():
            return {"success": True, "message": f"Connection to {provider.name} succeeded"}
        return {"success": False, "message": f"Connection to {provider.name} failed"}

    async def generate_service_provider_metadata(self, provider_id: str) -> str:
        instance = provider_registry.get(provider_id)
        if instance is None:
            instance = create_provider_instance(await self.get_by_id(provider_id))
        return await instance.generate_service_provider_metadata()

    async def parse_identity_provider_metadata(self, provider_id: str, metadata: str) -> dict:
        instance = create_provider_instance(await self.get_by_id(provider_id))
        return instance.parse_identity_provider_metadata(metadata)

    # Login flow

    async def initiate_authentication(self, provider_id: str, redirect_url: str = "/") -> str:
        return await self.get_provider_instance(provider_id).initiate_authentication(redirect_url)

    async def handle_callback(
        self,
        provider_id: str,
        params: Dict[str, Any],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> dict:
        """
        Complete a federated login

        Runs the provider callback, provisions the user and records the
        session. Returns the user, a bearer token and where to send the browser.
        """
        instance = self.get_provider_instance(provider_id)
        result = await instance.handle_callback(params)
        if not result.success:
            logger.error(f"Authentication failed: {result.error}")
            raise IdentityProviderError(result.error or "Authentication failed")

        provider = await self.get_by_id(provider_id)
        user = await self.provision_user(result.user, provider, result.session)
        session = await self.save_session(user.id, provider, result.session, ip_address, user_agent)

        await self.audit.log_user_action(
            user.id, AuditAction.SSO_LOGIN, "identity_provider", provider.id,
            {"session_id": session.id, "provider_type": provider.type},
            ip_address=ip_address, user_agent=user_agent,
        )

        roles = await self.roles.get_user_role_names(user.id, system_only=True)
        return {
            "user": user.to_dict(),
            "access_token": create_access_token(user.id, roles=roles, extra_claims={"idp_session": session.id}),
            "token_type": "bearer",
            "session_id": session.id,
            "redirect_url": result.redirect_url or "/",
        }

    async def save_session(
        self,
        user_id: str,
        provider: IdentityProvider,
        data: SessionData,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> IdentityProviderSession:
        session = IdentityProviderSession(
            user_id=user_id,
            identity_provider_id=provider.id,
            external_id=data.external_id,
            session_data=data.session_data,
            expires_at=data.expires_at,
            active=True,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.db.add(session)
        await self.db.flush()
        return session

    async def provision_user(self, profile: UserProfile, provider: IdentityProvider, session: SessionData):
        """Find or create the local user for a federated profile and place it in its tenants"""
        idp_metadata = {
            "idp": provider.id,
            "idp_type": provider.type,
            "external_id": session.external_id,
            **profile.metadata,
        }

        user = await self.users.get_user_by_email(profile.email)
        if user:
            user = await self.users.update_profile(
                user.id,
                metadata=idp_metadata,
                first_name=profile.first_name or None,
                last_name=profile.last_name or None,
                full_name=profile.full_name or None,
            )
        elif provider.just_in_time_provisioning:
            user = await self.users.create_user(
                email=profile.email,
                first_name=profile.first_name or None,
                last_name=profile.last_name or None,
                full_name=profile.full_name or None,
                metadata=idp_metadata,
            )
            await self.audit.log_user_action(
                user.id, AuditAction.USER_PROVISIONED, "user", user.id,
                {"email": profile.email, "provider_id": provider.id, "provider_type": provider.type},
            )
        else:
            logger.error(f"User not found and JIT provisioning is disabled: {profile.email}")
            raise ForbiddenException("User not found and just-in-time provisioning is disabled")

        organization_id = await self._resolve_organization(profile, provider, user.id)
        if organization_id:
            if not await self.organizations.find_member(organization_id, user.id):
                role = provider.default_role
                if role not in {r.value for r in OrganizationRole}:
                    role = OrganizationRole.MEMBER.value
                await self.organizations.add_member(organization_id, user.id, role)

            if profile.workspace and provider.auto_create_workspaces:
                await self._join_workspace(organization_id, profile.workspace, user.id)

        return user

    async def _resolve_organization(self, profile: UserProfile, provider: IdentityProvider, user_id: str):
        if provider.organization_id:
            return provider.organization_id
        if not profile.organization or not provider.auto_create_organizations:
            return None

        slug = generate_slug(profile.organization)
        existing = await self._find_organization_by_slug(slug)
        if existing:
            return existing.id
        organization = await self.organizations.create_organization(
            name=profile.organization, created_by=user_id, slug=slug
        )
        return organization.id

    async def _find_organization_by_slug(self, slug: str):
        try:
            return await self.organizations.get_organization_by_slug(slug)
        except NotFoundException:
            return None

    async def _join_workspace(self, organization_id: str, workspace_name: str, user_id: str):
        slug = generate_slug(workspace_name)
        workspace = await self.workspaces.find_workspace_by_slug(organization_id, slug)
        if workspace is None:
            workspace = await self.workspaces.create_workspace(
                organization_id=organization_id, name=workspace_name, slug=slug, created_by=user_id
            )
        if not await self.workspaces.find_member(workspace.id, user_id):
            await self.workspaces.add_member(workspace.id, user_id, WorkspaceRole.MEMBER.value)

    async def logout(self, provider_id: str, session_id: str, user_id: Optional[str] = None) -> str:
        """Deactivate a federated session and return the IdP logout URL"""
        session = await self.db.get(IdentityProviderSession, session_id)
        if not session or session.identity_provider_id != provider_id:
            raise NotFoundException(f"Session {session_id} not found")
        if user_id and session.user_id != user_id:
            raise ForbiddenException("Session belongs to another user")

        session.active = False
        await self.db.flush()

        await self.audit.log_user_action(
            session.user_id, AuditAction.SSO_LOGOUT, "identity_provider", provider_id, {"session_id": session_id},
        )

        instance = provider_registry.get(provider_id)
        if instance is None:
            return "/"
        return instance.logout_url(session)
