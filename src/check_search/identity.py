"""Diagnostic identity tokens.

A diagnostic carries an opaque ``identity`` string so that code actions and
fixes can recover the exact finding it was raised for, even after the
diagnostic has travelled through a host UI. The token is a tagged union
``<CODE>:<payload>`` where ``CODE`` names the finding kind and ``payload`` is
the finding serialized as canonical JSON (sorted keys, no whitespace).
"""

import json

from pydantic import TypeAdapter, ValidationError

from .errors import IdentityError
from .models import Finding, FindingKind

# Wire codes per finding kind
CODES: dict[FindingKind, str] = {
    FindingKind.npm_dependency: "DEPENDENCY_RULES",
    FindingKind.travis_go: "TRAVIS_GO",
}

_KINDS_BY_CODE = {code: kind for kind, code in CODES.items()}

_FINDING_ADAPTER: TypeAdapter = TypeAdapter(Finding)


def _serialize(finding) -> str:
    payload = finding.model_dump(mode="json")
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def encode_identity(finding) -> str:
    """
    Encode a finding as an identity token.

    The token is decoded again before being returned; a finding that does not
    survive the round trip raises instead of producing an unreadable token.

    Args:
        finding: Any finding model

    Returns:
        Identity token string

    Raises:
        IdentityError: If the finding kind is unknown or the round trip fails
    """
    try:
        code = CODES[FindingKind(finding.kind)]
    except (ValueError, KeyError) as e:
        raise IdentityError(f"No identity code for finding kind {finding.kind!r}") from e

    token = f"{code}:{_serialize(finding)}"
    if decode_identity(token) != finding:
        raise IdentityError(f"Identity token does not round-trip: {token}")
    return token


def decode_identity(token: str):
    """
    Decode an identity token back into the finding it was built from.

    Args:
        token: Token produced by encode_identity

    Returns:
        The decoded finding model

    Raises:
        IdentityError: If the token is malformed or its code and payload disagree
    """
    code, sep, payload = token.partition(":")
    if not sep or code not in _KINDS_BY_CODE:
        raise IdentityError(f"Unrecognized identity token: {token[:60]}")

    try:
        finding = _FINDING_ADAPTER.validate_json(payload)
    except ValidationError as e:
        raise IdentityError(f"Invalid identity payload for {code}: {e}") from e

    if FindingKind(finding.kind) != _KINDS_BY_CODE[code]:
        raise IdentityError(f"Identity code {code} does not match payload kind {finding.kind}")
    return finding


def identity_kind(token: str) -> FindingKind | None:
    """Return the finding kind named by a token's code, or None if it is not ours."""
    code, sep, _ = token.partition(":")
    if not sep:
        return None
    return _KINDS_BY_CODE.get(code)
