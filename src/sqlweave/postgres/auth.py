"""Client side of Postgres password authentication (cleartext, MD5, SCRAM-SHA-256)."""

from __future__ import annotations

import base64
import hashlib
import hmac
import os

from sqlweave.errors import AuthenticationError

SCRAM_SHA_256 = "SCRAM-SHA-256"


def md5_password(user: str, password: str, salt: bytes) -> str:
    """Return the response to AuthenticationMD5Password."""
    inner = hashlib.md5((password + user).encode("utf-8")).hexdigest()  # noqa: S324
    return "md5" + hashlib.md5(inner.encode("ascii") + salt).hexdigest()  # noqa: S324


def _parse_attributes(message: bytes) -> dict[str, str]:
    attributes = {}
    for part in message.decode("utf-8").split(","):
        key, sep, value = part.partition("=")
        if sep:
            attributes[key] = value
    return attributes


def _hmac(key: bytes, msg: bytes) -> bytes:
    return hmac.new(key, msg, hashlib.sha256).digest()


class ScramClient:
    """SCRAM-SHA-256 exchange without channel binding (RFC 5802, RFC 7677).

    Postgres ignores the SCRAM user name (it uses the startup user), so the
    client-first message carries an empty ``n=``.
    """

    def __init__(self, password: str, nonce: str | None = None) -> None:
        """Initialize with the password and an optional fixed nonce (tests)."""
        self._password = password
        self._client_nonce = nonce or base64.b64encode(os.urandom(18)).decode("ascii")
        self._client_first_bare = f"n=,r={self._client_nonce}"
        self._server_signature: bytes | None = None

    def client_first(self) -> bytes:
        """Return the client-first message."""
        return ("n,," + self._client_first_bare).encode("utf-8")

    def client_final(self, server_first: bytes) -> bytes:
        """Return the client-final message for the server-first message."""
        attributes = _parse_attributes(server_first)
        try:
            nonce = attributes["r"]
            salt = base64.b64decode(attributes["s"])
            iterations = int(attributes["i"])
        except (KeyError, ValueError) as exc:
            raise AuthenticationError("malformed SCRAM server-first message") from exc
        if not nonce.startswith(self._client_nonce):
            raise AuthenticationError("SCRAM server nonce does not extend the client nonce")

        salted = hashlib.pbkdf2_hmac("sha256", self._password.encode("utf-8"), salt, iterations)
        client_key = _hmac(salted, b"Client Key")
        stored_key = hashlib.sha256(client_key).digest()
        without_proof = f"c=biws,r={nonce}"
        auth_message = ",".join(
            [self._client_first_bare, server_first.decode("utf-8"), without_proof]
        ).encode("utf-8")
        signature = _hmac(stored_key, auth_message)
        proof = bytes(a ^ b for a, b in zip(client_key, signature, strict=True))
        self._server_signature = _hmac(_hmac(salted, b"Server Key"), auth_message)
        return f"{without_proof},p={base64.b64encode(proof).decode('ascii')}".encode("utf-8")

    def verify_server_final(self, server_final: bytes) -> None:
        """Check the server signature; raise ``AuthenticationError`` on mismatch."""
        attributes = _parse_attributes(server_final)
        if "e" in attributes:
            raise AuthenticationError(f"SCRAM authentication failed: {attributes['e']}")
        if self._server_signature is None or "v" not in attributes:
            raise AuthenticationError("unexpected SCRAM server-final message")
        if not hmac.compare_digest(base64.b64decode(attributes["v"]), self._server_signature):
            raise AuthenticationError("SCRAM server signature mismatch")
