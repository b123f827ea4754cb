"""
Organization service for managing organizations and their members
"""
import logging
from typing import List, Optional

from sqlalchemy import select, and_, or_, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from models.organization import (
    Organization,
    OrganizationMember,
    OrganizationRole,
    ORGANIZATION_ADMIN_ROLES,
)
from models.workspace import Workspace, WorkspaceMember
from models.invitation import Invitation
from models.user import User
from models.rbac import Role, UserRole, role_permissions
from models.identity_provider import IdentityProvider, IdentityProviderAttribute, IdentityProviderSession
from models.api_key import ApiKey
from models.settings import OrganizationSettings, WorkspaceSettings
from core.exceptions import (
    NotFoundException,
    ConflictException,
    ValidationException,
    ForbiddenException,
)
from core.validators import generate_slug, is_valid_slug
from services.audit_service import AuditService, AuditAction
from services.permission_service import permission_cache


logger = logging.getLogger(__name__)

MEMBER_ROLES = {r.value for r in OrganizationRole}


class OrganizationService:
    """Service for managing organizations"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def create_organization(
        self,
        name: str,
        created_by: Optional[str],
        slug: Optional[str] = None,
        description: Optional[str] = None,
        settings: Optional[dict] = None,
    ) -> Organization:
        """Create a new organization; the creator becomes its owner"""
        if not slug:
            slug = generate_slug(name)

        if not is_valid_slug(slug):
            raise ValidationException("Invalid slug format. Use only lowercase letters, numbers, and hyphens.")

        existing = await self.db.execute(
            select(Organization).where(Organization.slug == slug)
        )
        if existing.scalar_one_or_none():
            raise ConflictException(f"Organization with slug '{slug}' already exists")

        organization = Organization(
            name=name,
            slug=slug,
            description=description,
            settings=settings or {},
            created_by=created_by,
        )
        self.db.add(organization)
        await self.db.flush()

        if created_by:
            self.db.add(OrganizationMember(
                organization_id=organization.id,
                user_id=created_by,
                role=OrganizationRole.OWNER.value,
            ))
            await self.db.flush()

        await self.audit.log_user_action(
            created_by, AuditAction.ORGANIZATION_CREATED, "organization", organization.id,
            {"name": name, "slug": slug},
        )
        logger.info(f"Created organization: {organization.id}")
        return organization

    async def get_organization(self, organization_id: str) -> Organization:
        """Get organization by ID"""
        organization = await self.db.get(Organization, organization_id)
        if not organization:
            raise NotFoundException(f"Organization {organization_id} not found")
        return organization

    async def get_organization_by_slug(self, slug: str) -> Organization:
        """Get organization by slug"""
        result = await self.db.execute(
            select(Organization).where(Organization.slug == slug)
        )
        organization = result.scalar_one_or_none()
        if not organization:
            raise NotFoundException(f"Organization with slug '{slug}' not found")
        return organization

    async def list_organizations(
        self,
        user_id: Optional[str] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 100
    ) -> List[Organization]:
        """List organizations with filters"""
        query = select(Organization)

        if user_id:
            query = query.join(
                OrganizationMember,
                Organization.id == OrganizationMember.organization_id
            ).where(OrganizationMember.user_id == user_id)

        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(Organization.name.ilike(pattern), Organization.slug.ilike(pattern))
            )

        query = query.order_by(Organization.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def update_organization(
        self,
        organization_id: str,
        updated_by: Optional[str] = None,
        **updates
    ) -> Organization:
        """Update organization"""
        organization = await self.get_organization(organization_id)

        new_slug = updates.get("slug")
        if new_slug and new_slug != organization.slug:
            if not is_valid_slug(new_slug):
                raise ValidationException("Invalid slug format")

            existing = await self.db.execute(
                select(Organization).where(
                    and_(Organization.slug == new_slug, Organization.id != organization_id)
                )
            )
            if existing.scalar_one_or_none():
                raise ConflictException(f"Organization with slug '{new_slug}' already exists")

        for key, value in updates.items():
            if key in ("name", "slug", "description", "status", "settings") and value is not None:
                setattr(organization, key, value)

        await self.db.flush()

        await self.audit.log_user_action(
            updated_by, AuditAction.ORGANIZATION_UPDATED, "organization", organization_id,
            {"fields": sorted(k for k, v in updates.items() if v is not None)},
        )
        logger.info(f"Updated organization: {organization_id}")
        return organization

    async def delete_organization(self, organization_id: str, deleted_by: Optional[str] = None) -> bool:
        """
        Delete an organization and everything scoped to it

        Workspaces, members, invitations, organization roles and their
        assignments, settings, identity providers with their attribute mappings and
        sessions, and API keys all go with it.
        """
        from services.identity_provider.service import provider_registry

        organization = await self.get_organization(organization_id)

        workspace_ids = select(Workspace.id).where(Workspace.organization_id == organization_id)
        role_ids = select(Role.id).where(Role.organization_id == organization_id)
        provider_ids = list(await self.db.scalars(
            select(IdentityProvider.id).where(IdentityProvider.organization_id == organization_id)
        ))

        await self.db.execute(delete(ApiKey).where(
            or_(ApiKey.organization_id == organization_id, ApiKey.workspace_id.in_(workspace_ids))
        ))
        await self.db.execute(delete(UserRole).where(
            or_(UserRole.role_id.in_(role_ids), UserRole.workspace_id.in_(workspace_ids))
        ))
        await self.db.execute(delete(role_permissions).where(role_permissions.c.role_id.in_(role_ids)))
        await self.db.execute(delete(Role).where(Role.organization_id == organization_id))

        if provider_ids:
            await self.db.execute(delete(IdentityProviderSession).where(
                IdentityProviderSession.identity_provider_id.in_(provider_ids)
            ))
            await self.db.execute(delete(IdentityProviderAttribute).where(
                IdentityProviderAttribute.identity_provider_id.in_(provider_ids)
            ))
            await self.db.execute(delete(IdentityProvider).where(IdentityProvider.id.in_(provider_ids)))

        await self.db.execute(delete(WorkspaceSettings).where(WorkspaceSettings.workspace_id.in_(workspace_ids)))
        await self.db.execute(delete(OrganizationSettings).where(OrganizationSettings.organization_id == organization_id))
        await self.db.execute(delete(WorkspaceMember).where(WorkspaceMember.workspace_id.in_(workspace_ids)))
        await self.db.execute(delete(Invitation).where(Invitation.organization_id == organization_id))
        await self.db.execute(delete(Workspace).where(Workspace.organization_id == organization_id))
        await self.db.execute(delete(OrganizationMember).where(OrganizationMember.organization_id == organization_id))
        await self.db.delete(organization)
        await self.db.flush()

        for provider_id in provider_ids:
            provider_registry.pop(provider_id, None)
        await permission_cache.invalidate()

        await self.audit.log_user_action(
            deleted_by, AuditAction.ORGANIZATION_DELETED, "organization", organization_id,
            {"slug": organization.slug, "identity_providers": len(provider_ids)},
        )
        logger.info(f"Deleted organization: {organization_id}")
        return True

    # Members

    async def list_members(self, organization_id: str) -> List[OrganizationMember]:
        await self.get_organization(organization_id)
        result = await self.db.execute(
            select(OrganizationMember)
            .where(OrganizationMember.organization_id == organization_id)
            .order_by(OrganizationMember.created_at)
        )
        return list(result.scalars().all())

    async def find_member(self, organization_id: str, user_id: str) -> Optional[OrganizationMember]:
        result = await self.db.execute(
            select(OrganizationMember).where(
                and_(
                    OrganizationMember.organization_id == organization_id,
                    OrganizationMember.user_id == user_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_member(self, organization_id: str, user_id: str) -> OrganizationMember:
        member = await self.find_member(organization_id, user_id)
        if not member:
            raise NotFoundException(f"User {user_id} is not a member of organization {organization_id}")
        return member

    async def get_member_by_email(self, organization_id: str, email: str) -> OrganizationMember:
        result = await self.db.execute(select(User).where(User.email == email.strip().lower()))
        user = result.scalar_one_or_none()
        if not user:
            raise NotFoundException(f"User with email {email} not found")
        return await self.get_member(organization_id, user.id)

    async def add_member(
        self,
        organization_id: str,
        user_id: str,
        role: str = OrganizationRole.MEMBER.value,
        added_by: Optional[str] = None
    ) -> OrganizationMember:
        """Add user to organization"""
        await self.get_organization(organization_id)
        self._check_role(role)

        if await self.find_member(organization_id, user_id):
            raise ConflictException(f"User {user_id} is already a member of organization {organization_id}")

        member = OrganizationMember(organization_id=organization_id, user_id=user_id, role=role)
        self.db.add(member)
        await self.db.flush()

        await self.audit.log_user_action(
            added_by, AuditAction.MEMBER_ADDED, "organization", organization_id,
            {"user_id": user_id, "role": role},
        )
        logger.info(f"Added user {user_id} to organization {organization_id} as {role}")
        return member

    async def update_member_role(
        self,
        organization_id: str,
        user_id: str,
        role: str,
        updated_by: Optional[str] = None
    ) -> OrganizationMember:
        self._check_role(role)
        member = await self.get_member(organization_id, user_id)

        if member.role == OrganizationRole.OWNER.value and role != OrganizationRole.OWNER.value:
            await self._ensure_not_last_owner(organization_id)

        member.role = role
        await self.db.flush()

        await self.audit.log_user_action(
            updated_by, AuditAction.MEMBER_UPDATED, "organization", organization_id,
            {"user_id": user_id, "role": role},
        )
        return member

    async def remove_member(self, organization_id: str, user_id: str, removed_by: Optional[str] = None) -> bool:
        """Remove user from organization"""
        member = await self.get_member(organization_id, user_id)

        if member.role == OrganizationRole.OWNER.value:
            await self._ensure_not_last_owner(organization_id)

        await self.db.delete(member)
        await self.db.flush()

        await self.audit.log_user_action(
            removed_by, AuditAction.MEMBER_REMOVED, "organization", organization_id,
            {"user_id": user_id},
        )
        logger.info(f"Removed user {user_id} from organization {organization_id}")
        return True

    async def list_user_organizations(self, user_id: str) -> List[dict]:
        """Organizations of a user together with the membership role"""
        result = await self.db.execute(
            select(Organization, OrganizationMember.role)
            .join(OrganizationMember, Organization.id == OrganizationMember.organization_id)
            .where(OrganizationMember.user_id == user_id)
            .order_by(Organization.name)
        )
        return [{**org.to_dict(), "role": role} for org, role in result.all()]

    # Access checks

    async def check_access(self, organization_id: str, user_id: str) -> OrganizationMember:
        """Membership is required to touch an organization"""
        await self.get_organization(organization_id)
        member = await self.find_member(organization_id, user_id)
        if not member:
            raise ForbiddenException("User does not have access to this organization")
        return member

    async def check_admin_access(self, organization_id: str, user_id: str) -> OrganizationMember:
        member = await self.check_access(organization_id, user_id)
        if member.role not in ORGANIZATION_ADMIN_ROLES:
            raise ForbiddenException("User does not have admin access to this organization")
        return member

    def _check_role(self, role: str):
        if role not in MEMBER_ROLES:
            raise ValidationException(f"Invalid organization role '{role}'")

    async def _ensure_not_last_owner(self, organization_id: str):
        owners = await self.db.scalar(
            select(func.count()).select_from(OrganizationMember).where(
                and_(
                    OrganizationMember.organization_id == organization_id,
                    OrganizationMember.role == OrganizationRole.OWNER.value,
                )
            )
        )
        if owners <= 1:
            raise ValidationException("Cannot remove the last owner of an organization")
