"""
Credential supply for HTTP basic-auth challenges.
"""

import logging
import re
from typing import Iterable, Optional, Tuple


_REALM_RE = re.compile(r'realm\s*=\s*(?:"([^"]*)"|([^\s,]+))', re.IGNORECASE)


def parse_basic_realm(header: Optional[str]) -> Optional[str]:
    """
    Return the realm of a ``WWW-Authenticate: Basic ...`` challenge.
    None if the header is missing or is not a Basic challenge.
    """
    if not header or not header.strip().lower().startswith('basic'):
        return None
    match = _REALM_RE.search(header)
    if not match:
        return ''
    return match.group(1) if match.group(1) is not None else match.group(2)


class CredentialProvider:
    """Maps an authentication realm to a username and password."""

    def credentials_for(self, realm: str) -> Optional[Tuple[str, str]]:
        raise NotImplementedError


class StaticCredentialProvider(CredentialProvider):
    """
    Answers challenges with one configured username/password pair.
    With ``realms`` given, only those realms get the credentials.
    """

    def __init__(self, username: str, password: str,
                 realms: Optional[Iterable[str]] = None,
                 logger: Optional[logging.Logger] = None):
        self.username = username
        self.password = password
        self.realms = set(realms) if realms is not None else None
        self.logger = logger or logging.getLogger(__name__)

    def credentials_for(self, realm: str) -> Optional[Tuple[str, str]]:
        if not self.username:
            return None
        if self.realms is not None and realm not in self.realms:
            self.logger.debug(f"No credentials for realm {realm!r}")
            return None
        self.logger.debug(f"Supplying credentials for realm {realm!r} (user={self.username}, password=***)")
        return self.username, self.password
