"""
Tests for API keys and the audit trail they leave
"""
from datetime import timedelta

import pytest
from fastapi import HTTPException

from core.utils import utcnow
from services.api_key_service import API_KEY_PREFIX, ApiKeyService
from services.audit_service import AuditService, AuditAction
from services.user_service import UserService


@pytest.fixture
async def owner(db_session):
    return await UserService(db_session).create_user(email="keys@example.com")


class TestApiKeyService:

    @pytest.mark.asyncio
    async def test_create_returns_secret_once(self, db_session, owner):
        api_key, secret = await ApiKeyService(db_session).create_api_key("  CI key ", user_id=owner.id)

        assert api_key.key_name == "CI key"
        assert api_key.api_key.startswith(API_KEY_PREFIX)
        assert api_key.api_secret_hash != secret
        assert "api_secret_hash" not in api_key.to_dict()

    @pytest.mark.asyncio
    async def test_name_required(self, db_session, owner):
        with pytest.raises(HTTPException) as exc:
            await ApiKeyService(db_session).create_api_key("   ", user_id=owner.id)
        assert exc.value.status_code == 400

    @pytest.mark.asyncio
    async def test_validate(self, db_session, owner):
        service = ApiKeyService(db_session)
        api_key, secret = await service.create_api_key("deploy", user_id=owner.id)

        validated = await service.validate_api_key(api_key.api_key, secret)
        assert validated.id == api_key.id
        assert validated.last_used_at is not None

        with pytest.raises(HTTPException) as exc:
            await service.validate_api_key(api_key.api_key, "wrong-secret")
        assert exc.value.status_code == 401
        with pytest.raises(HTTPException):
            await service.validate_api_key("fs_unknown", secret)

    @pytest.mark.asyncio
    async def test_expired_key_rejected(self, db_session, owner):
        service = ApiKeyService(db_session)
        api_key, secret = await service.create_api_key(
            "old", user_id=owner.id, expires_at=utcnow() - timedelta(days=1)
        )

        with pytest.raises(HTTPException) as exc:
            await service.validate_api_key(api_key.api_key, secret)
        assert exc.value.detail == "API key has expired"

    @pytest.mark.asyncio
    async def test_update_list_delete(self, db_session, owner):
        service = ApiKeyService(db_session)
        api_key, _ = await service.create_api_key("first", user_id=owner.id)
        await service.create_api_key("second", user_id=owner.id)

        await service.update_api_key(api_key.id, "renamed")
        assert {k.key_name for k in await service.get_user_api_keys(owner.id)} == {"renamed", "second"}

        await service.delete_api_key(api_key.id, deleted_by=owner.id)
        with pytest.raises(HTTPException) as exc:
            await service.get_api_key(api_key.id)
        assert exc.value.status_code == 404

    @pytest.mark.asyncio
    async def test_actions_are_audited(self, db_session, owner):
        service = ApiKeyService(db_session)
        api_key, _ = await service.create_api_key("audited", user_id=owner.id)
        await service.delete_api_key(api_key.id, deleted_by=owner.id)

        logs, total = await AuditService(db_session).get_audit_logs(user_id=owner.id, resource_type="api_key")

        assert total == 2
        assert {log.action for log in logs} == {
            AuditAction.API_KEY_CREATED.value,
            AuditAction.API_KEY_DELETED.value,
        }


class TestAuditService:

    @pytest.mark.asyncio
    async def test_filters_and_paging(self, db_session, owner):
        audit = AuditService(db_session)
        for i in range(5):
            await audit.log_user_action(owner.id, "export", "report", f"r{i}", {"n": i}, ip_address="10.0.0.1")
        await audit.log_user_action(None, "import", "report", "r0")

        logs, total = await audit.get_audit_logs(action="export", limit=2, offset=0)
        assert total == 5
        assert len(logs) == 2

        logs, total = await audit.get_resource_audit_logs("report", "r0")
        assert total == 2

        entry = (await audit.get_user_audit_logs(owner.id, limit=1))[0][0]
        assert entry.to_dict()["ip_address"] == "10.0.0.1"
        assert (await audit.get_audit_log(entry.id)).id == entry.id

    @pytest.mark.asyncio
    async def test_date_range(self, db_session, owner):
        audit = AuditService(db_session)
        await audit.log_user_action(owner.id, "export", "report", "r1")

        _, future_total = await audit.get_audit_logs(start_date=utcnow() + timedelta(hours=1))
        _, past_total = await audit.get_audit_logs(end_date=utcnow() + timedelta(hours=1))

        assert future_total == 0
        assert past_total == 1
