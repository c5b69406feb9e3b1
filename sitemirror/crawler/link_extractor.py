"""
Link extraction for mirrored pages.

This is a tolerant substring scanner rather than an HTML parser: it looks for
a fixed set of tag/attribute pairs and never fails on broken markup.
"""

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Set, Tuple, Union
from urllib.parse import urljoin, urlsplit

from .work_queue import normalize_url


# Tag/attribute pairs that reference other resources, in scan order
LINK_ATTRIBUTES: Tuple[Tuple[str, str], ...] = (
    ('img', 'src'),
    ('a', 'href'),
    ('body', 'background'),
    ('frame', 'src'),
    ('link', 'href'),
    ('embed', 'src'),
)

QUOTES = ('"', "'")

# ASCII-only lower-casing keeps indices aligned with the original text
ASCII_LOWER = str.maketrans('ABCDEFGHIJKLMNOPQRSTUVWXYZ', 'abcdefghijklmnopqrstuvwxyz')


class MailLinkLog:
    """
    Append-only record of mailto: references found while crawling.
    One reference per line in the log file; only a running count is kept in memory.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None,
                 logger: Optional[logging.Logger] = None):
        self.path = Path(path) if path else None
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._count = 0

    def record(self, page_url: str, reference: str):
        """Count a mail reference found on ``page_url`` and append it to the log file."""
        with self._lock:
            self._count += 1
            if self.path is None:
                return
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, 'a', encoding='utf-8') as f:
                    f.write(reference + '\n')
            except OSError as e:
                self.logger.warning(f"Could not append mailto link from {page_url} to {self.path}: {e}")

    @property
    def count(self) -> int:
        with self._lock:
            return self._count


@dataclass
class ExtractedLinks:
    """What one page references: crawlable URLs and the mailto: references found."""
    links: List[str] = field(default_factory=list)
    mail_links: List[str] = field(default_factory=list)


def is_mailto(reference: str) -> bool:
    return reference.lstrip().lower().startswith('mailto:')


def resolve_reference(base_url: str, reference: str) -> Optional[str]:
    """Resolve a raw attribute value against the page URL. None if it is not a usable URL."""
    reference = reference.strip()
    if not reference or any(ch in reference for ch in '<>\r\n'):
        return None
    try:
        absolute = urljoin(base_url, reference)
        parts = urlsplit(absolute)
    except ValueError:
        return None
    if parts.scheme not in ('http', 'https') or not parts.netloc:
        return None
    return absolute


class LinkExtractor:
    """
    Extracts absolute URLs referenced by a page.
    """

    def __init__(self, mail_log: Optional[MailLinkLog] = None,
                 attributes: Tuple[Tuple[str, str], ...] = LINK_ATTRIBUTES,
                 logger: Optional[logging.Logger] = None):
        self.mail_log = mail_log if mail_log is not None else MailLinkLog()
        self.attributes = attributes
        self.logger = logger or logging.getLogger(__name__)

    def scan(self, base_url: str, content: str) -> ExtractedLinks:
        """
        Find the references in ``content``, resolved against ``base_url``.

        ``links`` keeps first-seen order and holds each URL once. mailto:
        references are recorded in the mail log and returned in ``mail_links``
        instead of ``links``.
        """
        found = ExtractedLinks()
        seen: Set[str] = set()
        lowered = content.translate(ASCII_LOWER)

        for tag, attr in self.attributes:
            for reference in self._scan_tag(content, lowered, tag, attr):
                if is_mailto(reference):
                    reference = reference.strip()
                    self.mail_log.record(base_url, reference)
                    found.mail_links.append(reference)
                    continue

                url = resolve_reference(base_url, reference)
                if url is None:
                    continue

                key = normalize_url(url)
                if key not in seen:
                    seen.add(key)
                    found.links.append(url)

        if not found.links:
            self.logger.debug(f"Got 0 links from {base_url}")
        else:
            self.logger.debug(f"Extracted {len(found.links)} links from {base_url}")
        return found

    def extract(self, base_url: str, content: str) -> List[str]:
        """Return only the crawlable URLs referenced from ``content``."""
        return self.scan(base_url, content).links

    def _scan_tag(self, content: str, lowered: str, tag: str, attr: str) -> List[str]:
        """Collect raw ``attr`` values of every ``<tag ...>`` occurrence."""
        references = []
        start_token = '<' + tag.lower()
        attr_token = attr.lower() + '='
        pos = 0

        while True:
            tag_pos = lowered.find(start_token, pos)
            if tag_pos < 0:
                return references
            pos = tag_pos + 1

            name_end = tag_pos + len(start_token)
            if name_end >= len(lowered) or not lowered[name_end].isspace():
                continue

            close_pos = lowered.find('>', name_end)
            if close_pos < 0:
                # truncated tag
                continue

            value = self._attribute_value(content, lowered, attr_token, name_end, close_pos)
            if value is None:
                continue

            fragment_pos = value.find('#')
            if fragment_pos >= 0:
                value = value[:fragment_pos]
            references.append(value)

    @staticmethod
    def _attribute_value(content: str, lowered: str, attr_token: str,
                         start: int, close_pos: int) -> Optional[str]:
        search_pos = start
        while True:
            attr_pos = lowered.find(attr_token, search_pos)
            if attr_pos < 0 or attr_pos > close_pos:
                return None
            search_pos = attr_pos + 1
            # must be a whole attribute name, not e.g. data-src=
            if not lowered[attr_pos - 1].isspace():
                continue

            quote_pos = attr_pos + len(attr_token)
            if quote_pos >= len(content) or content[quote_pos] not in QUOTES:
                return None
            quote = content[quote_pos]
            end_quote = content.find(quote, quote_pos + 1)
            if end_quote < 0:
                return None
            return content[quote_pos + 1:end_quote]
