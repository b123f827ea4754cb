"""
SAML 2.0 identity provider
HTTP-Redirect binding for requests, HTTP-POST binding for responses.
Responses are only trusted once their XML signature verifies against the
configured IdP certificate; everything read from them comes from the signed
element.
"""
import asyncio
import base64
import binascii
import json
import logging
import secrets
import uuid
import zlib
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from cryptography import x509
from lxml import etree
from signxml import XMLVerifier
from signxml.exceptions import SignXMLException

from core.config import settings
from core.exceptions import IdentityProviderError
from core.redis import get_redis_client, redis_key
from core.utils import utcnow
from models.identity_provider import IdentityProviderType
from .base import AuthenticationResult, BaseIdentityProvider, SessionData

logger = logging.getLogger(__name__)

NS = {
    "md": "urn:oasis:names:tc:SAML:2.0:metadata",
    "ds": "http://www.w3.org/2000/09/xmldsig#",
    "saml": "urn:oasis:names:tc:SAML:2.0:assertion",
    "samlp": "urn:oasis:names:tc:SAML:2.0:protocol",
}

BINDING_REDIRECT = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect"
BINDING_POST = "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"
NAMEID_EMAIL = "urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress"
STATUS_SUCCESS = "urn:oasis:names:tc:SAML:2.0:status:Success"

CLOCK_SKEW = timedelta(minutes=3)


def _tag(prefix: str, name: str) -> str:
    return f"{{{NS[prefix]}}}{name}"


def _instant(value: Optional[datetime] = None) -> str:
    return (value or utcnow()).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_instant(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _text(element) -> str:
    return (element.text or "").strip() if element is not None else ""


def deflate_and_encode(xml: str) -> str:
    compressor = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, -15)
    data = compressor.compress(xml.encode("utf-8")) + compressor.flush()
    return base64.b64encode(data).decode("ascii")


def decode_and_inflate(value: str) -> str:
    return zlib.decompress(base64.b64decode(value), -15).decode("utf-8")


def _safe_parser() -> etree.XMLParser:
    # No DTDs, entities or network access; parsers are not shared between threads
    return etree.XMLParser(resolve_entities=False, no_network=True, load_dtd=False)


def parse_xml(data):
    if isinstance(data, str):
        data = data.encode("utf-8")
    try:
        return etree.fromstring(data, parser=_safe_parser())
    except etree.XMLSyntaxError as e:
        raise IdentityProviderError(f"Invalid XML: {e}")


def pem_to_der(pem: str) -> bytes:
    body = "".join(
        line.strip() for line in pem.strip().splitlines() if line.strip() and "-----" not in line
    )
    return base64.b64decode(body)


def wrap_certificate(body: str) -> str:
    body = "".join(body.split())
    return f"-----BEGIN CERTIFICATE-----\n{body}\n-----END CERTIFICATE-----"


def _relay_key(relay_state: str) -> str:
    return redis_key("saml", "relay", relay_state)


def _assertion_key(assertion_id: str) -> str:
    return redis_key("saml", "assertion", assertion_id)


class SAMLIdentityProvider(BaseIdentityProvider):
    type = IdentityProviderType.SAML.value

    @property
    def sp_entity_id(self) -> str:
        return self.config.get("entityID") or f"{settings.APP_URL}/saml/metadata/{self.provider_id}"

    @property
    def acs_url(self) -> str:
        return f"{settings.APP_URL}/api/v1/auth/saml/callback/{self.provider_id}"

    @property
    def slo_url(self) -> str:
        return f"{settings.APP_URL}/api/v1/auth/saml/logout/callback/{self.provider_id}"

    async def initialize(self) -> bool:
        try:
            if self.config.get("idpMetadata"):
                parsed = self.parse_identity_provider_metadata(self.config["idpMetadata"])
                for key, value in parsed.items():
                    if value and not self.config.get(key):
                        self.config[key] = value

            if not self.config.get("idpEntityID"):
                raise IdentityProviderError("SAML configuration is missing idpEntityID")
            if not self.config.get("singleSignOnServiceUrl"):
                raise IdentityProviderError("SAML configuration is missing singleSignOnServiceUrl")
            if not self.config.get("idpCert"):
                raise IdentityProviderError("SAML configuration is missing idpCert")

            x509.load_der_x509_certificate(pem_to_der(self.config["idpCert"]))

            self.initialized = True
            return True
        except (IdentityProviderError, ValueError, binascii.Error) as e:
            logger.error(f"[SAML] Failed to initialize provider {self.provider_id}: {e}")
            return False

    async def generate_service_provider_metadata(self) -> str:
        root = etree.Element(
            _tag("md", "EntityDescriptor"), {"entityID": self.sp_entity_id},
            nsmap={"md": NS["md"], "ds": NS["ds"]},
        )
        descriptor = etree.SubElement(root, _tag("md", "SPSSODescriptor"), {
            "AuthnRequestsSigned": "true" if self.config.get("authnRequestsSigned") else "false",
            "WantAssertionsSigned": "true",
            "protocolSupportEnumeration": NS["samlp"],
        })

        if self.config.get("signingCert"):
            key = etree.SubElement(descriptor, _tag("md", "KeyDescriptor"), {"use": "signing"})
            info = etree.SubElement(key, _tag("ds", "KeyInfo"))
            data = etree.SubElement(info, _tag("ds", "X509Data"))
            cert = etree.SubElement(data, _tag("ds", "X509Certificate"))
            cert.text = base64.b64encode(pem_to_der(self.config["signingCert"])).decode("ascii")

        etree.SubElement(descriptor, _tag("md", "SingleLogoutService"), {
            "Binding": BINDING_REDIRECT, "Location": self.slo_url,
        })
        name_id = etree.SubElement(descriptor, _tag("md", "NameIDFormat"))
        name_id.text = NAMEID_EMAIL
        etree.SubElement(descriptor, _tag("md", "AssertionConsumerService"), {
            "Binding": BINDING_POST, "Location": self.acs_url, "index": "0", "isDefault": "true",
        })

        return etree.tostring(root, encoding="unicode")

    def parse_identity_provider_metadata(self, metadata: str) -> dict:
        try:
            root = parse_xml(metadata)
        except IdentityProviderError as e:
            raise IdentityProviderError(f"Invalid SAML metadata: {e}")

        entity = root if root.tag == _tag("md", "EntityDescriptor") else root.find(".//md:EntityDescriptor", NS)
        if entity is None:
            raise IdentityProviderError("Invalid SAML metadata: EntityDescriptor not found")

        idp = entity.find("md:IDPSSODescriptor", NS)
        if idp is None:
            raise IdentityProviderError("Invalid SAML metadata: IDPSSODescriptor not found")

        def service_url(name: str) -> str:
            services = idp.findall(f"md:{name}", NS)
            if not services:
                return ""
            for service in services:
                if service.get("Binding") == BINDING_REDIRECT:
                    return service.get("Location", "")
            return services[0].get("Location", "")

        idp_cert = ""
        for key in idp.findall("md:KeyDescriptor", NS):
            if key.get("use") in (None, "signing"):
                cert = key.find("ds:KeyInfo/ds:X509Data/ds:X509Certificate", NS)
                if cert is not None and cert.text:
                    idp_cert = wrap_certificate(cert.text)
                    break

        return {
            "idpEntityID": entity.get("entityID", ""),
            "singleSignOnServiceUrl": service_url("SingleSignOnService"),
            "singleLogoutServiceUrl": service_url("SingleLogoutService"),
            "idpCert": idp_cert,
        }

    def build_authn_request(self, request_id: str) -> str:
        root = etree.Element(_tag("samlp", "AuthnRequest"), {
            "ID": request_id,
            "Version": "2.0",
            "IssueInstant": _instant(),
            "Destination": self.config["singleSignOnServiceUrl"],
            "AssertionConsumerServiceURL": self.acs_url,
            "ProtocolBinding": BINDING_POST,
        }, nsmap={"samlp": NS["samlp"], "saml": NS["saml"]})
        issuer = etree.SubElement(root, _tag("saml", "Issuer"))
        issuer.text = self.sp_entity_id
        etree.SubElement(root, _tag("samlp", "NameIDPolicy"), {"Format": NAMEID_EMAIL, "AllowCreate": "true"})
        return etree.tostring(root, encoding="unicode")

    async def initiate_authentication(self, redirect_url: str = "/") -> str:
        if not self.initialized:
            raise IdentityProviderError("SAML provider not initialized")

        request_id = f"_{uuid.uuid4().hex}"
        relay_state = secrets.token_urlsafe(24)
        await get_redis_client().set(
            _relay_key(relay_state),
            json.dumps({
                "provider_id": self.provider_id,
                "request_id": request_id,
                "redirect_url": redirect_url or "/",
            }),
            ex=settings.IDP_STATE_TTL_SECONDS,
        )

        query = urlencode({
            "SAMLRequest": deflate_and_encode(self.build_authn_request(request_id)),
            "RelayState": relay_state,
        })
        sso_url = self.config["singleSignOnServiceUrl"]
        separator = "&" if "?" in sso_url else "?"
        return f"{sso_url}{separator}{query}"

    async def _pop_relay_state(self, relay_state: Optional[str]) -> Optional[dict]:
        """The login this response answers, or None for IdP-initiated logins"""
        if not relay_state:
            return None
        client = get_redis_client()
        raw = await client.get(_relay_key(relay_state))
        if raw is None:
            return None
        await client.delete(_relay_key(relay_state))
        stored = json.loads(raw)
        if stored.get("provider_id") != self.provider_id:
            return None
        return stored

    def _verified_assertion(self, document: bytes):
        try:
            result = XMLVerifier().verify(document, x509_cert=self.config["idpCert"])
        except (SignXMLException, etree.LxmlError, ValueError) as e:
            raise IdentityProviderError(f"SAML signature is invalid: {e}")

        signed = result.signed_xml
        if signed.tag == _tag("saml", "Assertion"):
            return signed
        if signed.tag == _tag("samlp", "Response"):
            assertions = signed.findall("saml:Assertion", NS)
            if len(assertions) == 1:
                return assertions[0]
        raise IdentityProviderError("SAML signature does not cover exactly one assertion")

    def _check_conditions(self, assertion):
        conditions = assertion.find("saml:Conditions", NS)
        if conditions is None:
            return
        now = utcnow()
        not_before = conditions.get("NotBefore")
        if not_before and now + CLOCK_SKEW < _parse_instant(not_before):
            raise IdentityProviderError("SAML assertion is not yet valid")
        not_on_or_after = conditions.get("NotOnOrAfter")
        if not_on_or_after and now - CLOCK_SKEW >= _parse_instant(not_on_or_after):
            raise IdentityProviderError("SAML assertion has expired")

        for restriction in conditions.findall("saml:AudienceRestriction", NS):
            audiences = [_text(a) for a in restriction.findall("saml:Audience", NS)]
            if self.sp_entity_id not in audiences:
                raise IdentityProviderError("SAML assertion is not intended for this service provider")

    def parse_response(self, saml_response: str) -> dict:
        """Decode, verify and check a base64 SAMLResponse"""
        try:
            document = base64.b64decode("".join(saml_response.split()), validate=True)
        except (binascii.Error, ValueError) as e:
            raise IdentityProviderError(f"Malformed SAML response: {e}")

        root = parse_xml(document)
        if root.tag != _tag("samlp", "Response"):
            raise IdentityProviderError("Malformed SAML response: not a samlp:Response")

        status = root.find("samlp:Status/samlp:StatusCode", NS)
        if status is None or status.get("Value") != STATUS_SUCCESS:
            raise IdentityProviderError(
                f"SAML authentication was not successful: {status.get('Value') if status is not None else 'no status'}"
            )

        if len(root.findall(".//saml:Assertion", NS)) != 1:
            raise IdentityProviderError("SAML response must contain exactly one assertion")

        assertion = self._verified_assertion(document)

        expected_issuer = self.config["idpEntityID"]
        if _text(assertion.find("saml:Issuer", NS)) != expected_issuer:
            raise IdentityProviderError("SAML response issuer does not match the identity provider")
        response_issuer = root.find("saml:Issuer", NS)
        if response_issuer is not None and _text(response_issuer) != expected_issuer:
            raise IdentityProviderError("SAML response issuer does not match the identity provider")

        self._check_conditions(assertion)

        confirmation = assertion.find("saml:Subject/saml:SubjectConfirmation/saml:SubjectConfirmationData", NS)
        in_response_to = {root.get("InResponseTo")}
        if confirmation is not None:
            in_response_to.add(confirmation.get("InResponseTo"))
        in_response_to.discard(None)
        if len(in_response_to) > 1:
            raise IdentityProviderError("SAML response and assertion answer different requests")

        conditions = assertion.find("saml:Conditions", NS)
        name_id = assertion.find("saml:Subject/saml:NameID", NS)
        attributes: Dict[str, Any] = {}
        for attribute in assertion.findall("saml:AttributeStatement/saml:Attribute", NS):
            values = [v.text or "" for v in attribute.findall("saml:AttributeValue", NS)]
            attributes[attribute.get("Name")] = values[0] if len(values) == 1 else values

        authn = assertion.find("saml:AuthnStatement", NS)
        return {
            "name_id": _text(name_id) or None,
            "attributes": attributes,
            "session_index": authn.get("SessionIndex") if authn is not None else None,
            "response_id": root.get("ID"),
            "assertion_id": assertion.get("ID"),
            "in_response_to": next(iter(in_response_to), None),
            "not_on_or_after": conditions.get("NotOnOrAfter") if conditions is not None else None,
        }

    async def _mark_assertion_used(self, parsed: dict):
        assertion_id = parsed["assertion_id"]
        if not assertion_id:
            raise IdentityProviderError("SAML assertion has no ID")

        ttl = settings.IDP_STATE_TTL_SECONDS
        if parsed["not_on_or_after"]:
            remaining = _parse_instant(parsed["not_on_or_after"]) + CLOCK_SKEW - utcnow()
            ttl = max(int(remaining.total_seconds()), 1)

        stored = await get_redis_client().set(_assertion_key(assertion_id), self.provider_id, ex=ttl, nx=True)
        if not stored:
            raise IdentityProviderError("SAML assertion has already been used")

    async def handle_callback(self, params: Dict[str, Any]) -> AuthenticationResult:
        if not self.initialized:
            return AuthenticationResult.failed("SAML provider not initialized")

        saml_response = params.get("SAMLResponse")
        if not saml_response:
            return AuthenticationResult.failed("No SAML response found in request")

        pending = await self._pop_relay_state(params.get("RelayState"))

        try:
            parsed = await asyncio.to_thread(self.parse_response, saml_response)

            expected_request = pending.get("request_id") if pending else None
            if parsed["in_response_to"] != expected_request:
                raise IdentityProviderError("SAML response does not answer a pending login request")

            await self._mark_assertion_used(parsed)
        except IdentityProviderError as e:
            logger.error(f"[SAML] Authentication callback error: {e}")
            return AuthenticationResult.failed(f"SAML authentication failed: {e}")

        attributes = parsed["attributes"]
        name_id = parsed["name_id"]
        profile = self.map_attributes(attributes)

        if not profile.email:
            if name_id and "@" in name_id:
                profile.email = name_id
            else:
                return AuthenticationResult.failed("No email found in SAML response")

        session = SessionData(
            external_id=name_id or attributes.get("uid") or profile.email,
            expires_at=utcnow() + timedelta(hours=settings.IDP_SESSION_HOURS),
            session_data={
                "attributes": attributes,
                "session_index": parsed["session_index"],
                "response_id": parsed["response_id"],
            },
        )
        redirect_url = (pending or {}).get("redirect_url") or "/"
        return AuthenticationResult.ok(profile, session, redirect_url)

    def build_logout_request(self, name_id: str, session_index: Optional[str] = None) -> str:
        root = etree.Element(_tag("samlp", "LogoutRequest"), {
            "ID": f"_{uuid.uuid4().hex}",
            "Version": "2.0",
            "IssueInstant": _instant(),
            "Destination": self.config["singleLogoutServiceUrl"],
        }, nsmap={"samlp": NS["samlp"], "saml": NS["saml"]})
        issuer = etree.SubElement(root, _tag("saml", "Issuer"))
        issuer.text = self.sp_entity_id
        name = etree.SubElement(root, _tag("saml", "NameID"), {"Format": NAMEID_EMAIL})
        name.text = name_id
        if session_index:
            index = etree.SubElement(root, _tag("samlp", "SessionIndex"))
            index.text = session_index
        return etree.tostring(root, encoding="unicode")

    def logout_url(self, session) -> str:
        slo_url = self.config.get("singleLogoutServiceUrl")
        if not slo_url:
            return "/"
        request = self.build_logout_request(
            session.external_id, (session.session_data or {}).get("session_index")
        )
        separator = "&" if "?" in slo_url else "?"
        return f"{slo_url}{separator}{urlencode({'SAMLRequest': deflate_and_encode(request)})}"
