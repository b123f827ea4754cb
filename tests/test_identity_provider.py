"""
Tests for SAML and OIDC identity providers and the federated login flow
"""
from datetime import timedelta
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi import HTTPException

from core.exceptions import IdentityProviderError
from core.security import decode_access_token
from core.utils import utcnow
from models.identity_provider import IdentityProvider, IdentityProviderAttribute
from services.identity_provider import IdentityProviderService
from services.identity_provider.oidc import OIDCIdentityProvider
from services.identity_provider.saml import SAMLIdentityProvider, decode_and_inflate
from services.identity_provider.service import provider_registry
from services.organization_service import OrganizationService
from services.user_service import UserService
from saml_support import (
    IDP, IDP_ENTITY_ID, authn_request_id, idp_metadata, make_identity, saml_config, saml_response, sp_entity_id,
    tampered, with_copied_certificate,
)

DISCOVERY = {
    "issuer": "https://login.example.com",
    "authorization_endpoint": "https://login.example.com/authorize",
    "token_endpoint": "https://login.example.com/token",
    "userinfo_endpoint": "https://login.example.com/userinfo",
    "jwks_uri": "https://login.example.com/jwks",
    "end_session_endpoint": "https://login.example.com/logout",
}


def mapping(source, target, mapping_type, required=False, enabled=True):
    return IdentityProviderAttribute(
        source_attribute=source,
        target_attribute=target,
        mapping_type=mapping_type,
        required=required,
        enabled=enabled,
    )


def transient_provider(type, config, attributes=()):
    return IdentityProvider(
        id=f"{type}-provider", name=f"{type} provider", slug=f"{type}-provider", type=type,
        config=config, attributes=list(attributes),
    )


@pytest.fixture(scope="module")
def idp_cert():
    return IDP.cert_pem


@pytest.fixture(autouse=True)
def clean_registry():
    provider_registry.clear()
    yield
    provider_registry.clear()


def oidc_transport(userinfo=None, token_status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/.well-known/openid-configuration":
            return httpx.Response(200, json=DISCOVERY)
        if request.url.path == "/token":
            return httpx.Response(token_status, json={
                "access_token": "access-123",
                "id_token": "header.payload.signature",
                "token_type": "Bearer",
                "expires_in": 3600,
            })
        if request.url.path == "/userinfo":
            return httpx.Response(200, json=userinfo or {})
        return httpx.Response(404)

    return lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestAttributeMapping:

    def test_mapped_fields_and_custom_metadata(self):
        provider = SAMLIdentityProvider(transient_provider("saml", {}, [
            mapping("mail", "email", "email"),
            mapping("givenName", "first_name", "first_name"),
            mapping("sn", "last_name", "last_name"),
            mapping("dept", "department", "custom"),
            mapping("ignored", "role", "role", enabled=False),
        ]))

        profile = provider.map_attributes({
            "mail": ["jane@example.com"], "givenName": "Jane", "sn": "Doe", "dept": "R&D", "ignored": "admin",
        })

        assert profile.email == "jane@example.com"
        assert profile.full_name == "Jane Doe"
        assert profile.metadata == {"department": "R&D"}
        assert profile.role is None

    def test_full_name_is_split(self):
        provider = SAMLIdentityProvider(transient_provider("saml", {}, [mapping("cn", "full_name", "full_name")]))

        profile = provider.map_attributes({"cn": "Ada King Lovelace"})

        assert profile.first_name == "Ada"
        assert profile.last_name == "King Lovelace"

    def test_multi_valued_attributes_stay_lists(self):
        provider = SAMLIdentityProvider(transient_provider("saml", {}, [mapping("groups", "groups", "custom")]))
        assert provider.map_attributes({"groups": ["a", "b"]}).metadata["groups"] == ["a", "b"]


class TestSAMLIdentityProvider:

    @pytest.fixture
    async def saml(self):
        provider = SAMLIdentityProvider(transient_provider("saml", saml_config()))
        assert await provider.initialize() is True
        return provider

    def test_parse_metadata_prefers_redirect_binding(self, idp_cert):
        provider = SAMLIdentityProvider(transient_provider("saml", {}))
        parsed = provider.parse_identity_provider_metadata(idp_metadata(idp_cert))

        assert parsed["idpEntityID"] == IDP_ENTITY_ID
        assert parsed["singleSignOnServiceUrl"] == "https://idp.example.com/sso"
        assert parsed["singleLogoutServiceUrl"] == "https://idp.example.com/slo"
        assert "BEGIN CERTIFICATE" in parsed["idpCert"]

    def test_parse_invalid_metadata(self):
        provider = SAMLIdentityProvider(transient_provider("saml", {}))
        with pytest.raises(IdentityProviderError):
            provider.parse_identity_provider_metadata("<not-metadata/>")

    @pytest.mark.asyncio
    async def test_initialize_requires_sso_url(self):
        provider = SAMLIdentityProvider(transient_provider("saml", {"idpEntityID": IDP_ENTITY_ID}))
        assert await provider.initialize() is False

    @pytest.mark.asyncio
    async def test_initialize_requires_idp_certificate(self):
        config = saml_config()
        del config["idpCert"]
        assert await SAMLIdentityProvider(transient_provider("saml", config)).initialize() is False

        broken = SAMLIdentityProvider(transient_provider("saml", saml_config(idpCert="not a certificate")))
        assert await broken.initialize() is False

    @pytest.mark.asyncio
    async def test_initialize_from_metadata(self, idp_cert):
        provider = SAMLIdentityProvider(transient_provider("saml", {"idpMetadata": idp_metadata(idp_cert)}))

        assert await provider.initialize() is True
        assert provider.config["idpCert"].startswith("-----BEGIN CERTIFICATE-----")

    @pytest.mark.asyncio
    async def test_service_provider_metadata(self, saml):
        metadata = await saml.generate_service_provider_metadata()

        assert 'entityID="http://test/saml/metadata/saml-provider"' in metadata
        assert 'WantAssertionsSigned="true"' in metadata
        assert "http://test/api/v1/auth/saml/callback/saml-provider" in metadata
        assert "urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress" in metadata

    @pytest.mark.asyncio
    async def test_login_round_trip(self, saml):
        url = await saml.initiate_authentication("/dashboard")
        query = parse_qs(urlparse(url).query)

        request = decode_and_inflate(query["SAMLRequest"][0])
        assert "AuthnRequest" in request
        assert 'AssertionConsumerServiceURL="http://test/api/v1/auth/saml/callback/saml-provider"' in request

        result = await saml.handle_callback({
            "SAMLResponse": saml_response(
                audience=sp_entity_id("saml-provider"), in_response_to=authn_request_id(url),
            ),
            "RelayState": query["RelayState"][0],
        })

        assert result.success is True
        assert result.redirect_url == "/dashboard"
        assert result.user.email == "jane@example.com"
        assert result.session.external_id == "jane@example.com"
        assert result.session.session_data["session_index"] == "_session1"
        assert result.session.session_data["attributes"]["groups"] == ["eng", "ops"]

    @pytest.mark.asyncio
    async def test_relay_state_is_single_use(self, saml):
        url = await saml.initiate_authentication("/dashboard")
        relay_state = parse_qs(urlparse(url).query)["RelayState"][0]
        request_id = authn_request_id(url)

        first = await saml.handle_callback({
            "SAMLResponse": saml_response(in_response_to=request_id), "RelayState": relay_state,
        })
        second = await saml.handle_callback({
            "SAMLResponse": saml_response(in_response_to=request_id), "RelayState": relay_state,
        })

        assert first.success is True
        assert second.success is False
        assert "pending login request" in second.error

    @pytest.mark.asyncio
    async def test_idp_initiated_login_redirects_home(self, saml):
        result = await saml.handle_callback({"SAMLResponse": saml_response(), "RelayState": "unknown"})
        assert result.success is True
        assert result.redirect_url == "/"

    @pytest.mark.asyncio
    async def test_rejects_wrong_issuer(self, saml):
        result = await saml.handle_callback({"SAMLResponse": saml_response(issuer="https://evil.example.com")})
        assert result.success is False
        assert "issuer" in result.error

    @pytest.mark.asyncio
    async def test_rejects_expired_assertion(self, saml):
        response = saml_response(not_on_or_after=utcnow() - timedelta(minutes=10))
        result = await saml.handle_callback({"SAMLResponse": response})
        assert result.success is False
        assert "expired" in result.error

    @pytest.mark.asyncio
    async def test_rejects_failed_status(self, saml):
        response = saml_response(status="urn:oasis:names:tc:SAML:2.0:status:Requester")
        result = await saml.handle_callback({"SAMLResponse": response})
        assert result.success is False

    @pytest.mark.asyncio
    async def test_rejects_missing_response_and_garbage(self, saml):
        assert (await saml.handle_callback({})).success is False
        assert (await saml.handle_callback({"SAMLResponse": "!!not-base64"})).success is False

    @pytest.mark.asyncio
    async def test_accepts_signed_assertion_or_signed_response(self, saml):
        by_assertion = await saml.handle_callback({"SAMLResponse": saml_response(sign="assertion")})
        by_response = await saml.handle_callback({"SAMLResponse": saml_response(sign="response")})

        assert by_assertion.success is True
        assert by_response.success is True

    @pytest.mark.asyncio
    async def test_rejects_unsigned_response(self, saml):
        result = await saml.handle_callback({"SAMLResponse": saml_response(signed_by=None)})
        assert result.success is False
        assert "signature" in result.error

    @pytest.mark.asyncio
    async def test_copied_certificate_is_not_a_signature(self, saml, idp_cert):
        response = with_copied_certificate(idp_cert, name_id="admin@victim.com")

        result = await saml.handle_callback({"SAMLResponse": response})

        assert result.success is False
        assert result.user is None

    @pytest.mark.asyncio
    async def test_rejects_signature_from_another_key(self, saml):
        response = saml_response(signed_by=make_identity("evil.example.com"))
        result = await saml.handle_callback({"SAMLResponse": response})
        assert result.success is False
        assert "signature" in result.error

    @pytest.mark.asyncio
    async def test_rejects_assertion_edited_after_signing(self, saml):
        response = tampered(saml_response(), "jane@example.com", "admin@example.com")
        result = await saml.handle_callback({"SAMLResponse": response})
        assert result.success is False

    @pytest.mark.asyncio
    async def test_rejects_foreign_audience(self, saml):
        response = saml_response(audience="https://other-sp.example.com/metadata")
        result = await saml.handle_callback({"SAMLResponse": response})
        assert result.success is False
        assert "not intended" in result.error

    @pytest.mark.asyncio
    async def test_rejects_unsolicited_in_response_to(self, saml):
        result = await saml.handle_callback({"SAMLResponse": saml_response(in_response_to="_forged-request")})
        assert result.success is False
        assert "pending login request" in result.error

    @pytest.mark.asyncio
    async def test_rejects_replayed_assertion(self, saml):
        response = saml_response()

        assert (await saml.handle_callback({"SAMLResponse": response})).success is True
        replay = await saml.handle_callback({"SAMLResponse": response})

        assert replay.success is False
        assert "already been used" in replay.error

    @pytest.mark.asyncio
    async def test_logout_url(self, saml):
        session = type("Session", (), {"external_id": "jane@example.com", "session_data": {"session_index": "_s"}})()

        url = saml.logout_url(session)

        assert url.startswith("https://idp.example.com/slo?SAMLRequest=")
        request = decode_and_inflate(parse_qs(urlparse(url).query)["SAMLRequest"][0])
        assert "jane@example.com" in request
        assert "_s" in request


class TestOIDCIdentityProvider:

    @pytest.mark.asyncio
    async def test_initialize_from_issuer(self):
        provider = OIDCIdentityProvider(transient_provider("oidc", {
            "clientId": "client", "issuer": "https://login.example.com/",
        }))
        with patch("services.identity_provider.oidc.http_client", oidc_transport()):
            assert await provider.initialize() is True
        assert provider.metadata["token_endpoint"] == DISCOVERY["token_endpoint"]

    @pytest.mark.asyncio
    async def test_initialize_without_client_id(self):
        provider = OIDCIdentityProvider(transient_provider("oidc", {"issuer": "https://login.example.com"}))
        assert await provider.initialize() is False

    @pytest.mark.asyncio
    async def test_authorization_url_uses_pkce(self, fake_redis):
        provider = OIDCIdentityProvider(transient_provider("oidc", {
            "clientId": "client", "issuer": "https://login.example.com",
        }))
        with patch("services.identity_provider.oidc.http_client", oidc_transport()):
            await provider.initialize()

        url = await provider.initiate_authentication("/after")
        query = parse_qs(urlparse(url).query)

        assert url.startswith(DISCOVERY["authorization_endpoint"])
        assert query["code_challenge_method"] == ["S256"]
        assert query["redirect_uri"] == ["http://test/api/v1/auth/oidc/callback/oidc-provider"]
        assert await fake_redis.get(f"test:oidc:state:{query['state'][0]}") is not None

    @pytest.mark.asyncio
    async def test_callback_rejects_unknown_state(self):
        provider = OIDCIdentityProvider(transient_provider("oidc", {
            "clientId": "client", "issuer": "https://login.example.com",
        }))
        with patch("services.identity_provider.oidc.http_client", oidc_transport()):
            await provider.initialize()

        result = await provider.handle_callback({"state": "nope", "code": "abc"})
        assert result.success is False
        assert result.error == "Invalid state parameter"

    @pytest.mark.asyncio
    async def test_callback_reports_provider_error(self):
        provider = OIDCIdentityProvider(transient_provider("oidc", {"clientId": "client"}))
        provider.initialized = True

        result = await provider.handle_callback({"error": "access_denied"})
        assert "access_denied" in result.error


class TestIdentityProviderService:

    @pytest.fixture(autouse=True)
    def discovery(self):
        with patch("services.identity_provider.oidc.http_client", oidc_transport()):
            yield

    @pytest.fixture
    async def organization(self, db_session):
        owner = await UserService(db_session).create_user(email="idp-owner@example.com")
        return await OrganizationService(db_session).create_organization(name="Federated", created_by=owner.id)

    @pytest.fixture
    async def oidc_provider(self, db_session, organization):
        return await IdentityProviderService(db_session).create({
            "name": "Corporate Login",
            "type": "oidc",
            "status": "active",
            "organization_id": organization.id,
            "config": {"clientId": "client", "clientSecret": "s3cret", "issuer": "https://login.example.com"},
            "attributes": [
                {"source_attribute": "given_name", "target_attribute": "first_name", "mapping_type": "first_name"},
                {"source_attribute": "family_name", "target_attribute": "last_name", "mapping_type": "last_name"},
            ],
        })

    @pytest.mark.asyncio
    async def test_create_registers_active_provider(self, oidc_provider):
        assert oidc_provider.slug == "corporate-login"
        assert oidc_provider.id in provider_registry
        assert oidc_provider.to_dict()["config"]["clientSecret"] == "********"

    @pytest.mark.asyncio
    async def test_unsupported_type(self, db_session):
        with pytest.raises(HTTPException) as exc:
            await IdentityProviderService(db_session).create({"name": "LDAP", "type": "ldap"})
        assert exc.value.status_code == 400

    @pytest.mark.asyncio
    async def test_single_default_per_organization(self, db_session, organization):
        service = IdentityProviderService(db_session)
        config = saml_config()
        first = await service.create({
            "name": "First", "type": "saml", "organization_id": organization.id, "config": config, "is_default": True,
        })
        second = await service.create({
            "name": "Second", "type": "saml", "organization_id": organization.id, "config": config, "is_default": True,
        })

        await db_session.refresh(first)
        assert first.is_default is False
        assert second.is_default is True

    @pytest.mark.asyncio
    async def test_attribute_crud(self, db_session, oidc_provider):
        service = IdentityProviderService(db_session)
        attribute = await service.add_attribute(oidc_provider.id, {
            "source_attribute": "dept", "target_attribute": "department",
        })
        assert attribute.mapping_type == "custom"

        await service.update_attribute(oidc_provider.id, attribute.id, {"required": True})
        assert len(await service.list_attributes(oidc_provider.id)) == 3

        await service.delete_attribute(oidc_provider.id, attribute.id)
        assert len(await service.list_attributes(oidc_provider.id)) == 2

        with pytest.raises(HTTPException):
            await service.add_attribute(oidc_provider.id, {"source_attribute": "x", "target_attribute": "y",
                                                           "mapping_type": "bogus"})

    @pytest.mark.asyncio
    async def test_inactive_provider_leaves_registry(self, db_session, oidc_provider):
        await IdentityProviderService(db_session).update(oidc_provider.id, {"status": "inactive"})
        assert oidc_provider.id not in provider_registry

    @pytest.mark.asyncio
    async def test_full_oidc_login_provisions_member(self, db_session, organization, oidc_provider):
        service = IdentityProviderService(db_session)
        url = await service.initiate_authentication(oidc_provider.id, "/welcome")
        query = parse_qs(urlparse(url).query)
        claims = {"sub": "ext-42", "nonce": query["nonce"][0], "exp": int(utcnow().timestamp()) + 3600}
        userinfo = {"email": "Jane.Doe@Example.com", "given_name": "Jane", "family_name": "Doe"}

        with patch("services.identity_provider.oidc.http_client", oidc_transport(userinfo)), \
                patch.object(OIDCIdentityProvider, "_decode_id_token", AsyncMock(return_value=claims)):
            result = await service.handle_callback(
                oidc_provider.id, {"state": query["state"][0], "code": "abc"}, ip_address="10.1.1.1"
            )

        assert result["redirect_url"] == "/welcome"
        assert result["user"]["email"] == "jane.doe@example.com"
        assert result["user"]["first_name"] == "Jane"
        assert result["user"]["metadata"]["external_id"] == "ext-42"
        assert decode_access_token(result["access_token"])["sub"] == result["user"]["id"]

        member = await OrganizationService(db_session).get_member(organization.id, result["user"]["id"])
        assert member.role == "member"

        logout_url = await service.logout(oidc_provider.id, result["session_id"], result["user"]["id"])
        assert logout_url.startswith(DISCOVERY["end_session_endpoint"])
        assert "id_token_hint=header.payload.signature" in logout_url

    @pytest.mark.asyncio
    async def test_state_cannot_be_replayed(self, db_session, oidc_provider):
        service = IdentityProviderService(db_session)
        url = await service.initiate_authentication(oidc_provider.id)
        query = parse_qs(urlparse(url).query)
        claims = {"sub": "ext-1", "nonce": query["nonce"][0]}
        params = {"state": query["state"][0], "code": "abc"}

        with patch("services.identity_provider.oidc.http_client", oidc_transport({"email": "x@example.com"})), \
                patch.object(OIDCIdentityProvider, "_decode_id_token", AsyncMock(return_value=claims)):
            await service.handle_callback(oidc_provider.id, params)
            with pytest.raises(IdentityProviderError):
                await service.handle_callback(oidc_provider.id, params)

    @pytest.mark.asyncio
    async def test_nonce_mismatch(self, db_session, oidc_provider):
        service = IdentityProviderService(db_session)
        query = parse_qs(urlparse(await service.initiate_authentication(oidc_provider.id)).query)

        with patch("services.identity_provider.oidc.http_client", oidc_transport()), \
                patch.object(OIDCIdentityProvider, "_decode_id_token", AsyncMock(return_value={"nonce": "other"})):
            with pytest.raises(IdentityProviderError) as exc:
                await service.handle_callback(oidc_provider.id, {"state": query["state"][0], "code": "abc"})
        assert "nonce" in str(exc.value)

    @pytest.mark.asyncio
    async def test_jit_disabled_rejects_unknown_user(self, db_session, organization):
        service = IdentityProviderService(db_session)
        provider = await service.create({
            "name": "Closed SAML", "type": "saml", "status": "active", "just_in_time_provisioning": False,
            "config": saml_config(),
        })

        with pytest.raises(HTTPException) as exc:
            await service.handle_callback(provider.id, {"SAMLResponse": saml_response(name_id="new@example.com")})
        assert exc.value.status_code == 403

    @pytest.mark.asyncio
    async def test_saml_login_auto_creates_tenants(self, db_session):
        service = IdentityProviderService(db_session)
        provider = await service.create({
            "name": "Global SAML", "type": "saml", "status": "active",
            "auto_create_organizations": True, "auto_create_workspaces": True,
            "config": saml_config(),
            "attributes": [
                {"source_attribute": "givenName", "target_attribute": "organization", "mapping_type": "organization"},
                {"source_attribute": "sn", "target_attribute": "workspace", "mapping_type": "workspace"},
            ],
        })

        result = await service.handle_callback(provider.id, {"SAMLResponse": saml_response()})

        organization = await OrganizationService(db_session).get_organization_by_slug("jane")
        orgs = await OrganizationService(db_session).list_user_organizations(result["user"]["id"])
        assert [o["id"] for o in orgs] == [organization.id]
        workspaces = await service.workspaces.list_user_workspaces(result["user"]["id"])
        assert [w["slug"] for w in workspaces] == ["doe"]
