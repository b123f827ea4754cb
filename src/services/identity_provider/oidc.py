"""
OpenID Connect identity provider
Authorization code flow with PKCE; state lives in Redis between the legs
"""
import asyncio
import base64
import hashlib
import json
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
import jwt
from jwt import PyJWKClient

from core.config import settings
from core.exceptions import IdentityProviderError
from core.redis import get_redis_client, redis_key
from core.utils import utcnow
from models.identity_provider import IdentityProviderType
from .base import AuthenticationResult, BaseIdentityProvider, SessionData

logger = logging.getLogger(__name__)

DISCOVERY_PATH = "/.well-known/openid-configuration"
ID_TOKEN_ALGORITHMS = ["RS256", "RS384", "RS512", "ES256", "ES384", "PS256"]


def http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.IDP_HTTP_TIMEOUT)


def pkce_pair() -> tuple:
    """Return (verifier, S256 challenge)"""
    verifier = secrets.token_urlsafe(32)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def _state_key(state: str) -> str:
    return redis_key("oidc", "state", state)


class OIDCIdentityProvider(BaseIdentityProvider):
    type = IdentityProviderType.OIDC.value

    def __init__(self, provider):
        super().__init__(provider)
        self.metadata: Dict[str, Any] = {}
        self._jwk_client: Optional[PyJWKClient] = None

    @property
    def redirect_uri(self) -> str:
        return f"{settings.APP_URL}/api/v1/auth/oidc/callback/{self.provider_id}"

    @property
    def post_logout_redirect_uri(self) -> str:
        return f"{settings.APP_URL}/api/v1/auth/oidc/logout/callback/{self.provider_id}"

    def discovery_url(self) -> str:
        url = self.config.get("discoveryUrl")
        if url:
            return url
        issuer = self.config.get("issuer")
        if not issuer:
            raise IdentityProviderError("OIDC provider configuration is missing discovery URL or issuer")
        return issuer.rstrip("/") + DISCOVERY_PATH

    async def initialize(self) -> bool:
        try:
            if not self.config.get("clientId"):
                raise IdentityProviderError("OIDC provider configuration is missing clientId")

            async with http_client() as client:
                response = await client.get(self.discovery_url())
                response.raise_for_status()
                self.metadata = self.parse_identity_provider_metadata(response.text)

            if not self.metadata.get("authorization_endpoint") or not self.metadata.get("token_endpoint"):
                raise IdentityProviderError("Discovery document lacks authorization or token endpoint")

            self.initialized = True
            return True
        except (httpx.HTTPError, IdentityProviderError, ValueError) as e:
            logger.error(f"[OIDC] Failed to initialize provider {self.provider_id}: {e}")
            return False

    async def generate_service_provider_metadata(self) -> str:
        return json.dumps({
            "client_id": self.config.get("clientId"),
            "redirect_uris": [self.redirect_uri],
            "post_logout_redirect_uris": [self.post_logout_redirect_uri],
            "response_types": ["code"],
            "grant_types": ["authorization_code"],
            "token_endpoint_auth_method": self.config.get("tokenEndpointAuthMethod", "client_secret_basic"),
        })

    def parse_identity_provider_metadata(self, metadata) -> dict:
        document = json.loads(metadata) if isinstance(metadata, (str, bytes)) else dict(metadata)
        return {
            "issuer": document.get("issuer"),
            "authorization_endpoint": document.get("authorization_endpoint"),
            "token_endpoint": document.get("token_endpoint"),
            "userinfo_endpoint": document.get("userinfo_endpoint"),
            "jwks_uri": document.get("jwks_uri"),
            "end_session_endpoint": document.get("end_session_endpoint"),
        }

    async def initiate_authentication(self, redirect_url: str = "/") -> str:
        if not self.initialized:
            raise IdentityProviderError("OIDC client not initialized")

        verifier, challenge = pkce_pair()
        state = secrets.token_urlsafe(32)
        nonce = secrets.token_urlsafe(32)

        await get_redis_client().set(
            _state_key(state),
            json.dumps({
                "provider_id": self.provider_id,
                "code_verifier": verifier,
                "nonce": nonce,
                "redirect_url": redirect_url or "/",
            }),
            ex=settings.IDP_STATE_TTL_SECONDS,
        )

        query = urlencode({
            "response_type": "code",
            "client_id": self.config["clientId"],
            "redirect_uri": self.redirect_uri,
            "scope": self.config.get("scope", "openid profile email"),
            "state": state,
            "nonce": nonce,
            "code_challenge": challenge,
            "code_challenge_method": "S256",
        })
        endpoint = self.metadata["authorization_endpoint"]
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{query}"

    async def _pop_state(self, state: str) -> Optional[dict]:
        client = get_redis_client()
        raw = await client.get(_state_key(state))
        if raw is None:
            return None
        await client.delete(_state_key(state))
        return json.loads(raw)

    async def _exchange_code(self, code: str, code_verifier: str) -> dict:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "code_verifier": code_verifier,
        }
        auth = None
        if self.config.get("tokenEndpointAuthMethod") == "client_secret_post":
            data["client_id"] = self.config["clientId"]
            data["client_secret"] = self.config.get("clientSecret", "")
        else:
            auth = (self.config["clientId"], self.config.get("clientSecret", ""))

        async with http_client() as client:
            response = await client.post(self.metadata["token_endpoint"], data=data, auth=auth)
            response.raise_for_status()
            return response.json()

    async def _fetch_userinfo(self, access_token: str) -> dict:
        endpoint = self.metadata.get("userinfo_endpoint")
        if not endpoint or not access_token:
            return {}
        async with http_client() as client:
            response = await client.get(endpoint, headers={"Authorization": f"Bearer {access_token}"})
            response.raise_for_status()
            return response.json()

    async def _decode_id_token(self, id_token: str) -> dict:
        if self._jwk_client is None:
            self._jwk_client = PyJWKClient(self.metadata["jwks_uri"])
        # PyJWKClient fetches the key set synchronously
        signing_key = await asyncio.to_thread(self._jwk_client.get_signing_key_from_jwt, id_token)
        return jwt.decode(
            id_token,
            signing_key.key,
            algorithms=ID_TOKEN_ALGORITHMS,
            audience=self.config["clientId"],
            issuer=self.metadata.get("issuer"),
        )

    async def handle_callback(self, params: Dict[str, Any]) -> AuthenticationResult:
        if not self.initialized:
            return AuthenticationResult.failed("OIDC client not initialized")

        if params.get("error"):
            return AuthenticationResult.failed(
                f"OIDC provider returned error: {params.get('error_description') or params['error']}"
            )

        state = params.get("state")
        stored = await self._pop_state(state) if state else None
        if not stored or stored.get("provider_id") != self.provider_id:
            return AuthenticationResult.failed("Invalid state parameter")

        code = params.get("code")
        if not code:
            return AuthenticationResult.failed("Authorization code missing from callback")

        try:
            tokens = await self._exchange_code(code, stored["code_verifier"])
            id_token = tokens.get("id_token")
            if not id_token:
                return AuthenticationResult.failed("Token response did not include an ID token")

            claims = await self._decode_id_token(id_token)
            if claims.get("nonce") != stored["nonce"]:
                return AuthenticationResult.failed("Invalid nonce in ID token")

            userinfo = await self._fetch_userinfo(tokens.get("access_token"))
        except (httpx.HTTPError, jwt.PyJWTError, KeyError, ValueError) as e:
            logger.error(f"[OIDC] Authentication callback error: {e}")
            return AuthenticationResult.failed(f"OIDC authentication failed: {e}")

        attributes = {**claims, **userinfo}
        profile = self.map_attributes(attributes)
        if not profile.email and attributes.get("email"):
            profile.email = attributes["email"]
        if not profile.email:
            return AuthenticationResult.failed("No email found in OIDC response")

        if claims.get("exp"):
            expires_at = datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)
        else:
            expires_at = utcnow() + timedelta(hours=settings.IDP_SESSION_HOURS)

        session = SessionData(
            external_id=str(claims.get("sub") or profile.email),
            expires_at=expires_at,
            session_data={
                "token_set": {
                    "access_token": tokens.get("access_token"),
                    "id_token": id_token,
                    "refresh_token": tokens.get("refresh_token"),
                    "token_type": tokens.get("token_type"),
                    "expires_in": tokens.get("expires_in"),
                },
                "user_info": attributes,
            },
        )
        return AuthenticationResult.ok(profile, session, stored.get("redirect_url") or "/")

    def logout_url(self, session) -> str:
        endpoint = self.metadata.get("end_session_endpoint")
        id_token = ((session.session_data or {}).get("token_set") or {}).get("id_token")
        if not endpoint or not id_token:
            return "/"
        query = urlencode({
            "id_token_hint": id_token,
            "post_logout_redirect_uri": self.post_logout_redirect_uri,
        })
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{query}"
