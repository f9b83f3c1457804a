"""PostgreSQL connection URI parsing, canonical rebuilding and masking.

Accepted form::

    postgres[ql]://[user[:password]@]host[:port][/database][?params]

User, password and database are percent-decoded on parse and percent-encoded
on build, so ``parse_connection_string(build_connection_string(...))``
reproduces its inputs for any component values.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qsl, quote, unquote, urlencode

DEFAULT_PORT = 5432
DEFAULT_SSL_MODE = "require"
SSL_MODES = ("disable", "allow", "prefer", "require", "verify-ca", "verify-full")
MASK = "***"
MASK_MARKER = f":{MASK}@"

_DSN_RE = re.compile(
    r"^postgres(?:ql)?://"
    r"(?:(?P<userinfo>[^?#]*)@)?"
    r"(?P<host>\[[^\]/?#@]+\]|[^:/?#@\[\]]+)"
    r"(?::(?P<port>\d+))?"
    r"(?:/(?P<database>[^?#]*))?"
    r"(?:\?(?P<query>[^#]*))?$",
    re.IGNORECASE,
)
# Userinfo ends at the last "@" inside the authority, so a raw "@" in a password is covered.
_USERINFO_RE = re.compile(
    r"^(?P<scheme>[a-z][a-z0-9+.-]*://)(?P<userinfo>[^/?#]*)@",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ConnectionDescriptor:
    host: str
    port: int
    database: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    ssl_mode: str = DEFAULT_SSL_MODE

    @property
    def has_credentials(self) -> bool:
        return bool(self.user) and bool(self.password)


def parse_connection_string(
    uri: str,
    default_ssl_mode: str = DEFAULT_SSL_MODE,
) -> Optional[ConnectionDescriptor]:
    """Return the decomposed URI, or ``None`` when it is not a PostgreSQL URI."""
    if not isinstance(uri, str):
        return None
    match = _DSN_RE.match(uri.strip())
    if match is None:
        return None

    user: Optional[str] = None
    password: Optional[str] = None
    userinfo = match.group("userinfo")
    if userinfo is not None:
        raw_user, sep, raw_password = userinfo.partition(":")
        user = unquote(raw_user) or None
        if sep:
            password = unquote(raw_password) or None

    port = DEFAULT_PORT
    if match.group("port"):
        port = int(match.group("port"))
        if not 0 < port < 65536:
            return None

    params = dict(parse_qsl(match.group("query") or "", keep_blank_values=True))
    ssl_mode = params.get("sslmode") or params.get("ssl_mode") or default_ssl_mode
    if ssl_mode not in SSL_MODES:
        return None

    host = match.group("host")
    if host.startswith("["):
        host = host[1:-1]

    return ConnectionDescriptor(
        host=host,
        port=port,
        database=unquote(match.group("database") or "") or None,
        user=user,
        password=password,
        ssl_mode=ssl_mode,
    )


def build_connection_string(
    host: str,
    port: int,
    database: Optional[str] = None,
    user: Optional[str] = None,
    password: Optional[str] = None,
    ssl_mode: Optional[str] = None,
) -> str:
    credentials = ""
    if user:
        credentials = quote(user, safe="")
        if password:
            credentials += ":" + quote(password, safe="")
        credentials += "@"

    if ":" in host and not host.startswith("["):
        host = f"[{host}]"

    dsn = f"postgresql://{credentials}{host}:{port}"
    if database:
        dsn += "/" + quote(database, safe="")
    if ssl_mode:
        dsn += "?" + urlencode({"sslmode": ssl_mode})
    return dsn


def mask_connection_string(uri: Optional[str]) -> Optional[str]:
    if not uri:
        return uri
    match = _USERINFO_RE.match(uri)
    if match is None:
        return uri
    user, sep, _ = match.group("userinfo").partition(":")
    if not sep:
        return uri
    return f"{match.group('scheme')}{user}{MASK_MARKER}{uri[match.end():]}"


def is_masked(uri: Optional[str]) -> bool:
    return bool(uri) and MASK_MARKER in uri
