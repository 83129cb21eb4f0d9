"""
CAQH CORE Real-Time SOAP Envelope Codec.

Source: Design Document 02_eligibility_codec_design.md
Verified: 2026-10-19

Wraps an X12 270 payload in a CORE Rule 2.2.0 SOAP 1.2 envelope and
extracts the X12 payload from a clearinghouse response.

Two dialects are produced:
- Office Ally: soapenv prefix, plain UsernameToken, payload in CDATA
- UHIN: soap/cor prefixes, mustUnderstand, wsu:Id token, PasswordText
  password type, XML-escaped bare payload
"""

import re
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple
from uuid import uuid4
from xml.sax.saxutils import escape, unescape
import logging

from src.core.enums import EnvelopeDialect
from src.utils.errors import NoPayloadFoundError

logger = logging.getLogger(__name__)


PAYLOAD_TYPE_270 = "X12_270_Request_005010X279A1"
PROCESSING_MODE = "RealTime"
CORE_RULE_VERSION = "2.2.0"
SNIPPET_LENGTH = 1000

SOAP_NS = "http://www.w3.org/2003/05/soap-envelope"
CORE_NS = "http://www.caqh.org/SOAP/WSDL/CORERule2.2.0.xsd"
WSSE_NS = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-secext-1.0.xsd"
WSU_NS = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-utility-1.0.xsd"
PASSWORD_TEXT_TYPE = (
    "http://docs.oasis-open.org/wss/2004/01/"
    "oasis-200401-wss-username-token-profile-1.0#PasswordText"
)

TRANSPORT_HEADERS: Dict[str, str] = {
    "Content-Type": "application/soap+xml; charset=utf-8;action=RealTimeTransaction;",
    "Action": "RealTimeTransaction",
}

# Tried in order; the first match wins.
PAYLOAD_PATTERNS: Tuple[Tuple[re.Pattern, bool], ...] = (
    (re.compile(r"<Payload(?:\s[^>]*)?>\s*<!\[CDATA\[(.*?)\]\]>\s*</Payload>", re.DOTALL), False),
    (re.compile(r"<Payload(?:\s[^>]*)?>(.*?)</Payload>", re.DOTALL), True),
    (re.compile(r"<ns1:Payload(?:\s[^>]*)?>\s*<!\[CDATA\[(.*?)\]\]>\s*</ns1:Payload>", re.DOTALL), False),
    (re.compile(r"<ns1:Payload(?:\s[^>]*)?>(.*?)</ns1:Payload>", re.DOTALL), True),
)

FAULT_PATTERN = re.compile(r"<(?:\w+:)?Fault\b.*?</(?:\w+:)?Fault>", re.DOTALL)
FAULT_REASON_PATTERNS = (
    re.compile(r"<(?:\w+:)?Text[^>]*>(.*?)</(?:\w+:)?Text>", re.DOTALL),
    re.compile(r"<faultstring[^>]*>(.*?)</faultstring>", re.DOTALL),
)


# =============================================================================
# Data Models
# =============================================================================


@dataclass(frozen=True)
class SoapCredentials:
    """WS-Security UsernameToken credentials."""
    username: str
    password: str

    def __repr__(self) -> str:
        return f"SoapCredentials(username={self.username!r}, password='***')"


@dataclass(frozen=True)
class SoapRequest:
    """A wrapped request ready for the transport."""
    body: str
    payload_id: str
    timestamp: str
    dialect: EnvelopeDialect
    headers: Dict[str, str] = field(default_factory=lambda: dict(TRANSPORT_HEADERS))


# =============================================================================
# Wrap
# =============================================================================


def format_core_timestamp(now: Optional[datetime] = None) -> str:
    """UTC timestamp as YYYY-MM-DDTHH:MM:SSZ (no fractional seconds)."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%SZ")


def wrap(
    x12: str,
    dialect: EnvelopeDialect,
    credentials: SoapCredentials,
    sender_id: str,
    receiver_id: str,
    payload_id: Optional[str] = None,
    now: Optional[datetime] = None,
    token_id_factory: Callable[[], str] = lambda: secrets.token_hex(4),
) -> SoapRequest:
    """
    Wrap an X12 payload in a CORE real-time SOAP envelope.

    Args:
        x12: Serialized X12 270
        dialect: Envelope flavor for the target clearinghouse
        credentials: UsernameToken credentials (XML-escaped on output)
        sender_id: CORE SenderID
        receiver_id: CORE ReceiverID
        payload_id: Optional fixed PayloadID, uuid4 otherwise
        now: Optional timestamp source, UTC now otherwise

    Returns:
        SoapRequest with body, payload ID, timestamp and transport headers
    """
    payload_id = payload_id or str(uuid4())
    timestamp = format_core_timestamp(now)

    core_fields = (
        f"<PayloadType>{PAYLOAD_TYPE_270}</PayloadType>\n"
        f"<ProcessingMode>{PROCESSING_MODE}</ProcessingMode>\n"
        f"<PayloadID>{payload_id}</PayloadID>\n"
        f"<TimeStamp>{timestamp}</TimeStamp>\n"
        f"<SenderID>{escape(sender_id)}</SenderID>\n"
        f"<ReceiverID>{escape(receiver_id)}</ReceiverID>\n"
        f"<CORERuleVersion>{CORE_RULE_VERSION}</CORERuleVersion>\n"
    )
    username = escape(credentials.username)
    password = escape(credentials.password)

    if dialect == EnvelopeDialect.UHIN:
        body = (
            f'<soap:Envelope xmlns:soap="{SOAP_NS}" xmlns:cor="{CORE_NS}">\n'
            f"<soap:Header>\n"
            f'<wsse:Security soap:mustUnderstand="true" xmlns:wsse="{WSSE_NS}">\n'
            f'<wsse:UsernameToken wsu:Id="UsernameToken-{token_id_factory()}" xmlns:wsu="{WSU_NS}">\n'
            f"<wsse:Username>{username}</wsse:Username>\n"
            f'<wsse:Password Type="{PASSWORD_TEXT_TYPE}">{password}</wsse:Password>\n'
            f"</wsse:UsernameToken>\n"
            f"</wsse:Security>\n"
            f"</soap:Header>\n"
            f"<soap:Body>\n"
            f"<cor:COREEnvelopeRealTimeRequest>\n"
            f"{core_fields}"
            f"<Payload>{escape(x12)}</Payload>\n"
            f"</cor:COREEnvelopeRealTimeRequest>\n"
            f"</soap:Body>\n"
            f"</soap:Envelope>"
        )
    else:
        body = (
            f'<soapenv:Envelope xmlns:soapenv="{SOAP_NS}">\n'
            f"<soapenv:Header>\n"
            f'<wsse:Security xmlns:wsse="{WSSE_NS}">\n'
            f"<wsse:UsernameToken>\n"
            f"<wsse:Username>{username}</wsse:Username>\n"
            f"<wsse:Password>{password}</wsse:Password>\n"
            f"</wsse:UsernameToken>\n"
            f"</wsse:Security>\n"
            f"</soapenv:Header>\n"
            f"<soapenv:Body>\n"
            f'<ns1:COREEnvelopeRealTimeRequest xmlns:ns1="{CORE_NS}">\n'
            f"{core_fields}"
            f"<Payload>\n<![CDATA[{x12}]]>\n</Payload>\n"
            f"</ns1:COREEnvelopeRealTimeRequest>\n"
            f"</soapenv:Body>\n"
            f"</soapenv:Envelope>"
        )

    logger.debug(f"Wrapped payload {payload_id} dialect={dialect.value}")
    return SoapRequest(
        body=body,
        payload_id=payload_id,
        timestamp=timestamp,
        dialect=dialect,
    )


# =============================================================================
# Unwrap
# =============================================================================


def unwrap(text: str) -> str:
    """
    Extract the X12 payload from a SOAP response.

    Raises:
        NoPayloadFoundError: No Payload element matched; carries the first
            1000 characters of the response and any SOAP fault reason.
    """
    text = text or ""
    for pattern, is_bare in PAYLOAD_PATTERNS:
        match = pattern.search(text)
        if match:
            payload = match.group(1)
            if is_bare:
                payload = unescape(payload)
            return payload.strip()

    fault = extract_soap_fault(text)
    logger.warning(f"No payload in SOAP response (fault={fault!r})")
    raise NoPayloadFoundError(text[:SNIPPET_LENGTH], fault=fault)


def extract_soap_fault(text: str) -> Optional[str]:
    """Return the SOAP fault reason text, or None if the response is not a fault."""
    fault = FAULT_PATTERN.search(text or "")
    if not fault:
        return None
    for pattern in FAULT_REASON_PATTERNS:
        reason = pattern.search(fault.group(0))
        if reason:
            return unescape(reason.group(1)).strip()
    return "SOAP fault"
