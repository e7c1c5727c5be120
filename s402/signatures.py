"""
HTTP message signatures (RFC 9421 subset) with Ed25519.

Wire format:
    signature-input: sig1=("@method" "@authority" "@path");created=1700000000;keyid="default";alg="ed25519"
    signature:       sig1=:<base64 signature>:

The signature base is one line per covered component, followed by the
@signature-params line, joined with newlines:

    "@method": GET
    "@authority": api.example.com
    "@path": /api/data
    "@signature-params": ("@method" "@authority" "@path");created=1700000000;keyid="default";alg="ed25519"

The verifier rebuilds the base from the component list declared by the
client, but refuses signatures that do not cover a mandatory minimum set.
"""

from __future__ import annotations

import hashlib
import logging
import re
import time
from base64 import b64decode, b64encode
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
from urllib.parse import urlsplit

from cryptography.exceptions import InvalidSignature

from .errors import AuthErrorCode
from .keys import load_private_key, load_public_key
from .models import HttpRequest, SignatureComponents, VerificationResult

logger = logging.getLogger(__name__)

ALGORITHM = "ed25519"
SIGNATURE_LABEL = "sig1"
SIGNATURE_INPUT_HEADER = "signature-input"
SIGNATURE_HEADER = "signature"
CONTENT_DIGEST_HEADER = "content-digest"
REQUIRED_COMPONENTS = ("@method", "@authority")

_QUOTED_RE = re.compile(r'"((?:[^"\\]|\\.)*)"')
_PARAM_RE = re.compile(r';\s*([a-z*][a-z0-9_\-.*]*)(?:=("(?:[^"\\]|\\.)*"|[^;"]*))?')


@dataclass
class SignatureParams:
    """One parsed member of a signature-input header."""
    label: str
    components: List[str]
    params: Dict[str, Any] = field(default_factory=dict)
    raw: str = ""  # serialized inner list + params, as signed

    @property
    def created(self) -> Optional[int]:
        value = self.params.get("created")
        return value if isinstance(value, int) else None

    @property
    def key_id(self) -> Optional[str]:
        return self.params.get("keyid")

    @property
    def algorithm(self) -> Optional[str]:
        return self.params.get("alg")


# --- Structured field parsing ---


def _split_members(value: str) -> List[str]:
    """Split a structured-field dictionary on top-level commas."""
    members: List[str] = []
    depth = 0
    in_quotes = False
    escaped = False
    start = 0
    for i, ch in enumerate(value):
        if in_quotes:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_quotes = False
            continue
        if ch == '"':
            in_quotes = True
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "," and depth == 0:
            members.append(value[start:i].strip())
            start = i + 1
    members.append(value[start:].strip())
    return [m for m in members if m]


def _unquote(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value[1:-1])


def _parse_param_value(raw: Optional[str]) -> Any:
    if raw is None or raw == "":
        return True
    raw = raw.strip()
    if raw.startswith('"'):
        return _unquote(raw)
    if re.fullmatch(r"-?\d+", raw):
        return int(raw)
    if raw in ("?1", "?0"):
        return raw == "?1"
    return raw


def _parse_params(text: str) -> Dict[str, Any]:
    params: Dict[str, Any] = {}
    text = text.strip()
    pos = 0
    for match in _PARAM_RE.finditer(text):
        if match.start() != pos:
            raise ValueError(f"Malformed signature parameters: {text}")
        params[match.group(1)] = _parse_param_value(match.group(2))
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"Malformed signature parameters: {text}")
    return params


def _find_closing_paren(text: str) -> int:
    in_quotes = False
    escaped = False
    for i, ch in enumerate(text):
        if in_quotes:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_quotes = False
        elif ch == '"':
            in_quotes = True
        elif ch == ")":
            return i
    return -1


def parse_signature_input(value: str) -> Dict[str, SignatureParams]:
    """
    Parse a signature-input header into its labelled members.

    Args:
        value: Raw signature-input header value.

    Returns:
        Dict of label -> SignatureParams, in header order.

    Raises:
        ValueError: If the header is not a valid structured dictionary.
    """
    result: Dict[str, SignatureParams] = {}
    for member in _split_members(value):
        label, sep, rest = member.partition("=")
        label = label.strip()
        rest = rest.strip()
        if not sep or not label or not rest.startswith("("):
            raise ValueError(f"Malformed signature-input member: {member}")

        close = _find_closing_paren(rest)
        if close == -1:
            raise ValueError(f"Unterminated component list: {member}")

        inner = rest[1:close]
        if _QUOTED_RE.sub("", inner).strip():
            raise ValueError(f"Malformed component list: {inner}")
        components = [_unquote(f'"{c}"') for c in _QUOTED_RE.findall(inner)]

        result[label] = SignatureParams(
            label=label,
            components=components,
            params=_parse_params(rest[close + 1:]),
            raw=rest,
        )
    if not result:
        raise ValueError("Empty signature-input header")
    return result


def parse_signature(value: str) -> Dict[str, bytes]:
    """
    Parse a signature header into label -> raw signature bytes.

    Raises:
        ValueError: If a member is not a byte sequence (label=:base64:).
    """
    result: Dict[str, bytes] = {}
    for member in _split_members(value):
        label, sep, rest = member.partition("=")
        rest = rest.strip()
        if not sep or len(rest) < 2 or not rest.startswith(":") or not rest.endswith(":"):
            raise ValueError(f"Malformed signature member: {member}")
        result[label.strip()] = b64decode(rest[1:-1], validate=True)
    if not result:
        raise ValueError("Empty signature header")
    return result


def serialize_signature_params(components: Sequence[str], params: Dict[str, Any]) -> str:
    """Serialize a covered component list and its parameters."""
    inner = " ".join(f'"{c}"' for c in components)
    out = f"({inner})"
    for key, value in params.items():
        if isinstance(value, bool):
            out += f";{key}" if value else f";{key}=?0"
        elif isinstance(value, int):
            out += f";{key}={value}"
        else:
            escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
            out += f';{key}="{escaped}"'
    return out


# --- Signature base ---


def compute_content_digest(body: Union[str, bytes]) -> str:
    """Compute a content-digest header value (sha-256, RFC 9530)."""
    data = body.encode("utf-8") if isinstance(body, str) else body
    return f"sha-256=:{b64encode(hashlib.sha256(data).digest()).decode('ascii')}:"


def component_value(component: str, request: HttpRequest) -> Optional[str]:
    """
    Resolve the value of a covered component for a request.

    Returns None if the component is not present (or not supported).
    """
    parts = urlsplit(request.url)
    if component == "@method":
        return request.method.upper()
    if component == "@authority":
        return parts.netloc.rpartition("@")[2].lower() or None
    if component == "@path":
        return parts.path or "/"
    if component == "@query":
        return f"?{parts.query}"
    if component == "@target-uri":
        return request.url
    if component == "@scheme":
        return parts.scheme.lower() or None
    if component == "@request-target":
        path = parts.path or "/"
        return f"{path}?{parts.query}" if parts.query else path
    if component.startswith("@"):
        return None

    value = request.headers.get(component.lower())
    if value is None:
        return None
    return value.strip()


def build_signature_base(
    request: HttpRequest,
    components: Sequence[str],
    signature_params: str,
) -> str:
    """
    Build the canonical signature base string.

    Raises:
        ValueError: If a covered component is missing from the request.
    """
    lines = []
    for component in components:
        value = component_value(component, request)
        if value is None:
            raise ValueError(f"Covered component {component} is missing from the request")
        lines.append(f'"{component}": {value}')
    lines.append(f'"@signature-params": {signature_params}')
    return "\n".join(lines)


def default_components(request: HttpRequest) -> List[str]:
    """Components covered when the caller does not choose them."""
    components = ["@method", "@authority", "@path"]
    if urlsplit(request.url).query:
        components.append("@query")
    if "content-type" in request.headers:
        components.append("content-type")
    if CONTENT_DIGEST_HEADER in request.headers:
        components.append(CONTENT_DIGEST_HEADER)
    return components


# --- Sign / verify ---


def sign_request(
    request: HttpRequest,
    private_key: bytes,
    key_id: str = "default",
    components: Optional[Iterable[str]] = None,
    created: Optional[int] = None,
) -> SignatureComponents:
    """
    Sign an HTTP request.

    Args:
        request: Request to sign.
        private_key: Raw 32-byte Ed25519 private key.
        key_id: Key identifier placed in the keyid parameter.
        components: Covered components (defaults to default_components()).
        created: Creation timestamp (defaults to now).

    Returns:
        SignatureComponents. If the request has a body without a
        content-digest header, the computed digest is returned in
        content_digest and must be sent along with the signature headers.
    """
    content_digest = None
    signing_request = request
    if request.body and CONTENT_DIGEST_HEADER not in request.headers:
        content_digest = compute_content_digest(request.body)
        signing_request = HttpRequest(
            method=request.method,
            url=request.url,
            headers={**request.headers, CONTENT_DIGEST_HEADER: content_digest},
            body=request.body,
        )

    covered = list(components) if components is not None else default_components(signing_request)
    params = {
        "created": int(created if created is not None else time.time()),
        "keyid": key_id,
        "alg": ALGORITHM,
    }
    signature_params = serialize_signature_params(covered, params)
    base = build_signature_base(signing_request, covered, signature_params)

    raw_signature = load_private_key(private_key).sign(base.encode("utf-8"))

    return SignatureComponents(
        signature_input=f"{SIGNATURE_LABEL}={signature_params}",
        signature=f"{SIGNATURE_LABEL}=:{b64encode(raw_signature).decode('ascii')}:",
        key_id=key_id,
        algorithm=ALGORITHM,
        content_digest=content_digest,
    )


def add_signature_headers(
    headers: Dict[str, str],
    components: SignatureComponents,
) -> Dict[str, str]:
    """Return a copy of headers with the signature headers added."""
    result = dict(headers)
    if components.content_digest:
        result[CONTENT_DIGEST_HEADER] = components.content_digest
    result[SIGNATURE_INPUT_HEADER] = components.signature_input
    result[SIGNATURE_HEADER] = components.signature
    return result


def parse_signature_headers(headers: Dict[str, str]) -> Dict[str, Optional[str]]:
    lowered = {k.lower(): v for k, v in headers.items()}
    return {
        "signature_input": lowered.get(SIGNATURE_INPUT_HEADER),
        "signature": lowered.get(SIGNATURE_HEADER),
    }


def _fail(code: AuthErrorCode, error: str) -> VerificationResult:
    return VerificationResult(valid=False, error=error, error_code=code)


def verify_request(
    request: HttpRequest,
    public_key: bytes,
    required_components: Sequence[str] = REQUIRED_COMPONENTS,
    algorithm: str = ALGORITHM,
    max_age: Optional[int] = None,
    now: Optional[float] = None,
) -> VerificationResult:
    """
    Verify an HTTP request signature.

    Args:
        request: Received request (headers must include the signature headers).
        public_key: Raw 32-byte Ed25519 public key of the signer.
        required_components: Components every signature must cover.
        algorithm: The only algorithm accepted.
        max_age: Reject signatures created more than max_age seconds ago.
        now: Current time (defaults to time.time()).

    Returns:
        VerificationResult. Never raises for bad input.
    """
    headers = parse_signature_headers(request.headers)
    signature_input = headers["signature_input"]
    signature = headers["signature"]

    if not signature_input or not signature:
        return _fail(
            AuthErrorCode.MISSING_SIGNATURE,
            "Missing signature headers (signature-input or signature)",
        )

    try:
        inputs = parse_signature_input(signature_input)
        signatures = parse_signature(signature)
    except ValueError as e:
        return _fail(AuthErrorCode.INVALID_SIGNATURE, f"Malformed signature headers: {e}")

    selected = next((p for label, p in inputs.items() if label in signatures), None)
    if selected is None:
        return _fail(
            AuthErrorCode.INVALID_SIGNATURE,
            "No signature matches a signature-input label",
        )

    missing = [c for c in required_components if c not in selected.components]
    if missing:
        return _fail(
            AuthErrorCode.UNDER_SPECIFIED_SIGNATURE,
            f"Signature does not cover required components: {', '.join(missing)}",
        )

    declared_alg = selected.algorithm
    if declared_alg is not None and str(declared_alg).lower() != algorithm:
        return _fail(
            AuthErrorCode.UNSUPPORTED_ALGORITHM,
            f"Unsupported signature algorithm: {declared_alg}",
        )

    if max_age is not None:
        current = now if now is not None else time.time()
        if selected.created is None or current - selected.created > max_age:
            return _fail(AuthErrorCode.INVALID_SIGNATURE, "Signature expired")

    if CONTENT_DIGEST_HEADER in selected.components and request.body:
        expected = compute_content_digest(request.body)
        if request.headers.get(CONTENT_DIGEST_HEADER, "").strip() != expected:
            return _fail(AuthErrorCode.INVALID_SIGNATURE, "Content digest mismatch")

    try:
        base = build_signature_base(request, selected.components, selected.raw)
    except ValueError as e:
        return _fail(AuthErrorCode.INVALID_SIGNATURE, str(e))

    try:
        load_public_key(public_key).verify(signatures[selected.label], base.encode("utf-8"))
    except InvalidSignature:
        logger.debug("Signature mismatch for keyid=%s", selected.key_id)
        return _fail(AuthErrorCode.INVALID_SIGNATURE, "Invalid signature")
    except ValueError as e:
        return _fail(AuthErrorCode.INVALID_SIGNATURE, f"Invalid verification key: {e}")

    return VerificationResult(
        valid=True,
        metadata={
            "keyid": selected.key_id,
            "algorithm": declared_alg or algorithm,
            "created": selected.created,
            "components": list(selected.components),
        },
    )
