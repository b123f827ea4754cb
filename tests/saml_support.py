"""
SAML documents for tests: a throwaway IdP key pair, IdP metadata and signed base64 responses
"""
import base64
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import parse_qs, urlparse

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID
from lxml import etree
from signxml import XMLSigner
from signxml.algorithms import CanonicalizationMethod, SignatureConstructionMethod

from core.utils import utcnow
from services.identity_provider.saml import STATUS_SUCCESS, _instant, decode_and_inflate, pem_to_der

IDP_ENTITY_ID = "https://idp.example.com/metadata"


@dataclass
class SigningIdentity:
    key_pem: str
    cert_pem: str


def make_identity(common_name: str = "idp.example.com") -> SigningIdentity:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    key_pem = key.private_bytes(
        serialization.Encoding.PEM, serialization.PrivateFormat.PKCS8, serialization.NoEncryption()
    ).decode("ascii")
    return SigningIdentity(key_pem, certificate.public_bytes(serialization.Encoding.PEM).decode("ascii"))


IDP = make_identity()


def saml_config(**extra) -> dict:
    return {
        "idpEntityID": IDP_ENTITY_ID,
        "singleSignOnServiceUrl": "https://idp.example.com/sso",
        "singleLogoutServiceUrl": "https://idp.example.com/slo",
        "idpCert": IDP.cert_pem,
        **extra,
    }


def sp_entity_id(provider_id: str) -> str:
    return f"http://test/saml/metadata/{provider_id}"


def authn_request_id(login_url: str) -> str:
    request = decode_and_inflate(parse_qs(urlparse(login_url).query)["SAMLRequest"][0])
    return etree.fromstring(request.encode("utf-8")).get("ID")


def cert_body(pem: str) -> str:
    return base64.b64encode(pem_to_der(pem)).decode("ascii")


def idp_metadata(cert_pem: str) -> str:
    return f"""<md:EntityDescriptor xmlns:md="urn:oasis:names:tc:SAML:2.0:metadata"
    xmlns:ds="http://www.w3.org/2000/09/xmldsig#" entityID="{IDP_ENTITY_ID}">
  <md:IDPSSODescriptor protocolSupportEnumeration="urn:oasis:names:tc:SAML:2.0:protocol">
    <md:KeyDescriptor use="signing">
      <ds:KeyInfo><ds:X509Data><ds:X509Certificate>{cert_body(cert_pem)}</ds:X509Certificate></ds:X509Data></ds:KeyInfo>
    </md:KeyDescriptor>
    <md:SingleLogoutService Binding="urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect"
        Location="https://idp.example.com/slo"/>
    <md:SingleSignOnService Binding="urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST"
        Location="https://idp.example.com/sso/post"/>
    <md:SingleSignOnService Binding="urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect"
        Location="https://idp.example.com/sso"/>
  </md:IDPSSODescriptor>
</md:EntityDescriptor>"""


def _sign(xml: str, element_id: str, identity: SigningIdentity) -> str:
    signer = XMLSigner(
        method=SignatureConstructionMethod.enveloped,
        c14n_algorithm=CanonicalizationMethod.EXCLUSIVE_XML_CANONICALIZATION_1_0,
    )
    signed = signer.sign(
        etree.fromstring(xml.encode("utf-8")),
        key=identity.key_pem,
        cert=identity.cert_pem,
        reference_uri=f"#{element_id}",
    )
    return etree.tostring(signed).decode("utf-8")


def saml_response(
    issuer: str = IDP_ENTITY_ID,
    name_id: str = "jane@example.com",
    status: str = STATUS_SUCCESS,
    not_on_or_after: datetime = None,
    audience: Optional[str] = None,
    in_response_to: Optional[str] = None,
    signed_by: Optional[SigningIdentity] = IDP,
    sign: str = "assertion",
    assertion_id: Optional[str] = None,
) -> str:
    """
    A base64 samlp:Response

    ``sign`` picks the signed element ("assertion" or "response"); pass
    ``signed_by=None`` for an unsigned document.
    """
    now = utcnow()
    not_on_or_after = not_on_or_after or now + timedelta(minutes=5)
    assertion_id = assertion_id or f"_{uuid.uuid4().hex}"
    response_id = f"_{uuid.uuid4().hex}"
    answers = f' InResponseTo="{in_response_to}"' if in_response_to else ""
    audience_restriction = (
        f"<saml:AudienceRestriction><saml:Audience>{audience}</saml:Audience></saml:AudienceRestriction>"
        if audience else ""
    )

    assertion = f"""<saml:Assertion xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion"
    ID="{assertion_id}" Version="2.0" IssueInstant="{_instant(now)}">
    <saml:Issuer>{issuer}</saml:Issuer>
    <saml:Subject>
      <saml:NameID>{name_id}</saml:NameID>
      <saml:SubjectConfirmation Method="urn:oasis:names:tc:SAML:2.0:cm:bearer">
        <saml:SubjectConfirmationData NotOnOrAfter="{_instant(not_on_or_after)}"{answers}/>
      </saml:SubjectConfirmation>
    </saml:Subject>
    <saml:Conditions NotBefore="{_instant(now - timedelta(minutes=1))}" NotOnOrAfter="{_instant(not_on_or_after)}">{audience_restriction}</saml:Conditions>
    <saml:AuthnStatement AuthnInstant="{_instant(now)}" SessionIndex="_session1"/>
    <saml:AttributeStatement>
      <saml:Attribute Name="givenName"><saml:AttributeValue>Jane</saml:AttributeValue></saml:Attribute>
      <saml:Attribute Name="sn"><saml:AttributeValue>Doe</saml:AttributeValue></saml:Attribute>
      <saml:Attribute Name="groups">
        <saml:AttributeValue>eng</saml:AttributeValue><saml:AttributeValue>ops</saml:AttributeValue>
      </saml:Attribute>
    </saml:AttributeStatement>
  </saml:Assertion>"""

    if signed_by is not None and sign == "assertion":
        assertion = _sign(assertion, assertion_id, signed_by)

    xml = f"""<samlp:Response xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol"
    xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion" ID="{response_id}" Version="2.0"
    IssueInstant="{_instant(now)}"{answers}>
  <saml:Issuer>{issuer}</saml:Issuer>
  <samlp:Status><samlp:StatusCode Value="{status}"/></samlp:Status>
  {assertion}
</samlp:Response>"""

    if signed_by is not None and sign == "response":
        xml = _sign(xml, response_id, signed_by)

    return base64.b64encode(xml.encode("utf-8")).decode("ascii")


def with_copied_certificate(cert_pem: str, name_id: str) -> str:
    """An unsigned response carrying a Signature block that only holds the IdP's public certificate"""
    xml = base64.b64decode(saml_response(name_id=name_id, signed_by=None)).decode("utf-8")
    fake_signature = (
        '<ds:Signature xmlns:ds="http://www.w3.org/2000/09/xmldsig#"><ds:KeyInfo><ds:X509Data>'
        f"<ds:X509Certificate>{cert_body(cert_pem)}</ds:X509Certificate>"
        "</ds:X509Data></ds:KeyInfo></ds:Signature>"
    )
    xml = xml.replace("<samlp:Status>", fake_signature + "<samlp:Status>", 1)
    return base64.b64encode(xml.encode("utf-8")).decode("ascii")


def tampered(response: str, old: str, new: str) -> str:
    xml = base64.b64decode(response).decode("utf-8")
    return base64.b64encode(xml.replace(old, new).encode("utf-8")).decode("ascii")
