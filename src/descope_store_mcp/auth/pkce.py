"""
PKCE (RFC 7636) code_verifier validation. Only the S256 method is accepted.
"""

import base64
import hashlib
import hmac

from ..exceptions import INVALID_REQUEST, OAuthError

SUPPORTED_METHODS = ("S256",)


def compute_code_challenge(code_verifier: str) -> str:
    """BASE64URL(SHA256(code_verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_code_verifier(code_verifier: str, code_challenge: str, method: str = "S256") -> bool:
    """Check a code_verifier against the challenge stored with the code.

    Raises:
        OAuthError: invalid_request for any method other than S256
    """
    if method not in SUPPORTED_METHODS:
        raise OAuthError(INVALID_REQUEST, "code_challenge_method must be S256")

    expected = compute_code_challenge(code_verifier)
    return hmac.compare_digest(expected.encode("ascii"), code_challenge.encode("utf-8"))
