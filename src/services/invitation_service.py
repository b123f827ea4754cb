"""
Invitation service
"""
import logging
import uuid
from datetime import timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.invitation import Invitation, InvitationStatus
from models.organization import OrganizationRole
from models.workspace import WorkspaceRole
from core.config import settings
from core.exceptions import NotFoundException, ValidationException
from core.utils import utcnow
from core.validators import validate_email
from services.organization_service import OrganizationService
from services.workspace_service import WorkspaceService
from services.audit_service import AuditService, AuditAction

logger = logging.getLogger(__name__)

IMMUTABLE_FIELDS = ("id", "organization_id", "workspace_id", "token")


def _expiry():
    return utcnow() + timedelta(days=settings.INVITATION_EXPIRY_DAYS)


class InvitationService:
    """Service for inviting users into organizations and workspaces"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.organizations = OrganizationService(db)
        self.workspaces = WorkspaceService(db)
        self.audit = AuditService(db)

    async def create_invitation(
        self,
        email: str,
        organization_id: str,
        workspace_id: Optional[str] = None,
        role: str = "member",
        invited_by: Optional[str] = None,
    ) -> Invitation:
        if not email or not organization_id:
            raise ValidationException("Email and organization ID are required")

        try:
            email = validate_email(email)
        except ValueError as e:
            raise ValidationException(str(e))

        await self.organizations.get_organization(organization_id)

        if workspace_id:
            workspace = await self.workspaces.get_workspace(workspace_id)
            if workspace.organization_id != organization_id:
                raise ValidationException("Workspace does not belong to the specified organization")
            allowed = {r.value for r in WorkspaceRole}
        else:
            allowed = {r.value for r in OrganizationRole}

        if role not in allowed:
            raise ValidationException(f"Invalid role '{role}' for this invitation")

        invitation = Invitation(
            email=email,
            organization_id=organization_id,
            workspace_id=workspace_id,
            role=role,
            token=str(uuid.uuid4()),
            status=InvitationStatus.PENDING.value,
            invited_by=invited_by,
            expires_at=_expiry(),
        )
        self.db.add(invitation)
        await self.db.flush()

        await self.audit.log_user_action(
            invited_by, AuditAction.INVITATION_CREATED, "invitation", invitation.id,
            {"email": email, "organization_id": organization_id, "workspace_id": workspace_id, "role": role},
        )
        logger.info(f"Created invitation {invitation.id} for organization {organization_id}")
        return invitation

    async def get_invitation(self, invitation_id: str) -> Invitation:
        invitation = await self.db.get(Invitation, invitation_id)
        if not invitation:
            raise NotFoundException(f"Invitation {invitation_id} not found")
        return invitation

    async def get_invitation_by_token(self, token: str) -> Invitation:
        result = await self.db.execute(select(Invitation).where(Invitation.token == token))
        invitation = result.scalar_one_or_none()
        if not invitation:
            raise NotFoundException("Invitation not found")
        return invitation

    async def list_invitations_by_email(self, email: str) -> List[Invitation]:
        result = await self.db.execute(
            select(Invitation)
            .where(Invitation.email == email.strip().lower())
            .order_by(Invitation.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_organization_invitations(
        self, organization_id: str, include_workspace_invitations: bool = False
    ) -> List[Invitation]:
        await self.organizations.get_organization(organization_id)
        query = select(Invitation).where(Invitation.organization_id == organization_id)
        if not include_workspace_invitations:
            query = query.where(Invitation.workspace_id.is_(None))
        result = await self.db.execute(query.order_by(Invitation.created_at.desc()))
        return list(result.scalars().all())

    async def list_workspace_invitations(self, workspace_id: str) -> List[Invitation]:
        await self.workspaces.get_workspace(workspace_id)
        result = await self.db.execute(
            select(Invitation)
            .where(Invitation.workspace_id == workspace_id)
            .order_by(Invitation.created_at.desc())
        )
        return list(result.scalars().all())

    async def update_invitation(self, invitation_id: str, **updates) -> Invitation:
        invitation = await self.get_invitation(invitation_id)
        for key, value in updates.items():
            if key in IMMUTABLE_FIELDS or value is None or not hasattr(invitation, key):
                continue
            setattr(invitation, key, value)
        await self.db.flush()
        return invitation

    async def cancel_invitation(self, invitation_id: str, canceled_by: Optional[str] = None) -> Invitation:
        invitation = await self.get_invitation(invitation_id)
        invitation.status = InvitationStatus.CANCELED.value
        await self.db.flush()

        await self.audit.log_user_action(
            canceled_by, AuditAction.INVITATION_CANCELED, "invitation", invitation_id, {"email": invitation.email},
        )
        return invitation

    async def resend_invitation(self, invitation_id: str) -> Invitation:
        """Only pending invitations can be resent; the expiry window restarts"""
        invitation = await self.get_invitation(invitation_id)
        if invitation.status != InvitationStatus.PENDING.value:
            raise ValidationException(f"Cannot resend invitation with status {invitation.status}")

        invitation.expires_at = _expiry()
        await self.db.flush()

        logger.info(f"Resent invitation {invitation_id} to {invitation.email}")
        return invitation

    async def accept_invitation(self, token: str, user_id: str) -> Invitation:
        """Join the invited organization (and workspace) as the given user"""
        invitation = await self.get_invitation_by_token(token)

        if invitation.status != InvitationStatus.PENDING.value:
            raise ValidationException(f"Invitation is {invitation.status}")

        if invitation.is_expired():
            invitation.status = InvitationStatus.EXPIRED.value
            # Commit now, the error below rolls back the request transaction
            await self.db.commit()
            raise ValidationException("Invitation has expired")

        org_member = await self.organizations.find_member(invitation.organization_id, user_id)

        if invitation.workspace_id:
            if not org_member:
                await self.organizations.add_member(
                    invitation.organization_id, user_id, OrganizationRole.MEMBER.value, added_by=invitation.invited_by
                )
            if not await self.workspaces.find_member(invitation.workspace_id, user_id):
                await self.workspaces.add_member(
                    invitation.workspace_id, user_id, invitation.role, added_by=invitation.invited_by
                )
        elif not org_member:
            await self.organizations.add_member(
                invitation.organization_id, user_id, invitation.role, added_by=invitation.invited_by
            )

        invitation.status = InvitationStatus.ACCEPTED.value
        await self.db.flush()

        await self.audit.log_user_action(
            user_id, AuditAction.INVITATION_ACCEPTED, "invitation", invitation.id,
            {"organization_id": invitation.organization_id, "workspace_id": invitation.workspace_id},
        )
        logger.info(f"User {user_id} accepted invitation {invitation.id}")
        return invitation

