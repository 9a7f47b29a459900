"""TLS settings built from CA, certificate and key files."""

from __future__ import annotations

import socket
import ssl
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any
from urllib.request import HTTPSHandler, OpenerDirector, build_opener

from syncinspect.utils import get_json

_ALPN_PROTOCOLS = ["http/1.1"]
_PEM_MARKER = "-----BEGIN CERTIFICATE-----"


class TLSError(Exception):
    """TLS files could not be loaded or a peer was rejected."""


class _TLSContext(ssl.SSLContext):
    """Client context that also remembers what a server side needs."""

    ca_data: str = ""
    cert_path: str = ""
    key_path: str = ""
    common_names: frozenset[str] = frozenset()

    def server_context(self) -> ssl.SSLContext:
        ctx = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        if self.cert_path and self.key_path:
            ctx.load_cert_chain(self.cert_path, self.key_path)
        ctx.load_verify_locations(cadata=self.ca_data)
        ctx.set_alpn_protocols(_ALPN_PROTOCOLS)
        if self.common_names:
            ctx.verify_mode = ssl.CERT_REQUIRED
        return ctx


def _check_common_name(cert: dict[str, Any], allowed: frozenset[str]) -> None:
    names = [
        value
        for rdn in cert.get("subject", ())
        for key, value in rdn
        if key == "commonName"
    ]
    if not any(name in allowed for name in names):
        raise TLSError(
            "client certificate authentication failed. The Common Name from the "
            f"client certificate {names} was not found in the configuration "
            f"cluster-verify-cn with value: {sorted(allowed)}"
        )


class _VerifiedListener:
    """Listening TLS socket that only accepts peers with an allowed CN."""

    def __init__(self, sock: ssl.SSLSocket, allowed: frozenset[str]) -> None:
        self._sock = sock
        self._allowed = allowed

    def accept(self) -> tuple[ssl.SSLSocket, Any]:
        conn, addr = self._sock.accept()
        try:
            _check_common_name(conn.getpeercert() or {}, self._allowed)
        except TLSError:
            conn.close()
            raise
        return conn, addr

    def __getattr__(self, name: str) -> Any:
        return getattr(self._sock, name)


def to_tls_config(ca_path: str, cert_path: str, key_path: str) -> ssl.SSLContext | None:
    """Build a TLS context from the CA, certificate and key paths."""
    return to_tls_config_with_verify(ca_path, cert_path, key_path, None)


def to_tls_config_with_verify(
    ca_path: str,
    cert_path: str,
    key_path: str,
    verify_cn: list[str] | None = None,
) -> ssl.SSLContext | None:
    """Build a TLS context, or return ``None`` when no CA path is given.

    The common names in ``verify_cn`` are required of clients accepted by a
    listener wrapped with this context.
    """
    if not ca_path:
        return None

    context = _TLSContext(ssl.PROTOCOL_TLS_CLIENT)
    if cert_path and key_path:
        try:
            context.load_cert_chain(cert_path, key_path)
        except OSError as err:
            raise TLSError(f"could not load client key pair: {err}") from err
        context.cert_path = cert_path
        context.key_path = key_path

    try:
        ca_data = Path(ca_path).read_bytes().decode("latin-1")
    except OSError as err:
        raise TLSError(f"could not read ca certificate: {err}") from err

    if _PEM_MARKER not in ca_data:
        raise TLSError("failed to append ca certs")
    try:
        context.load_verify_locations(cadata=ca_data)
    except (ssl.SSLError, ValueError) as err:
        raise TLSError("failed to append ca certs") from err
    context.ca_data = ca_data
    context.set_alpn_protocols(_ALPN_PROTOCOLS)

    if verify_cn:
        context.common_names = frozenset(cn.strip() for cn in verify_cn)
    return context


def client_with_tls(ssl_context: ssl.SSLContext | None) -> OpenerDirector:
    """Return a URL opener that uses the given TLS context for HTTPS."""
    if ssl_context is None:
        return build_opener()
    return build_opener(HTTPSHandler(context=ssl_context))


@dataclass(frozen=True)
class TLS:
    """TLS settings together with the base URL of the server to talk to."""

    inner: ssl.SSLContext | None
    url: str

    def with_host(self, host: str) -> TLS:
        """Return a copy pointing at another host."""
        scheme = "https" if self.inner is not None else "http"
        return replace(self, url=f"{scheme}://{host}")

    def tls_config(self) -> ssl.SSLContext | None:
        """Return the TLS context, or ``None`` when TLS is disabled."""
        return self.inner

    def wrap_listener(self, sock: socket.socket) -> Any:
        """Place a TLS layer over a listening socket."""
        if self.inner is None:
            return sock
        if not isinstance(self.inner, _TLSContext):
            raise TLSError("TLS context carries no server settings")
        wrapped = self.inner.server_context().wrap_socket(sock, server_side=True)
        if not self.inner.common_names:
            return wrapped
        return _VerifiedListener(wrapped, self.inner.common_names)

    def get_json(self, path: str) -> Any:
        """Fetch ``path`` from the server and decode the JSON body."""
        return get_json(self.url + path, self.inner)


def new_tls(
    ca_path: str,
    cert_path: str,
    key_path: str,
    host: str,
    verify_cn: list[str] | None = None,
) -> TLS:
    """Build TLS settings for ``host``; without a CA path TLS is disabled."""
    if not ca_path:
        return TLS(None, f"http://{host}")
    inner = to_tls_config_with_verify(ca_path, cert_path, key_path, verify_cn)
    return TLS(inner, f"https://{host}")