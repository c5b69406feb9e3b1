"""
Mirror storage: maps URLs to files under the mirror root and reads/writes them.
"""

import contextlib
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Optional, Union
from urllib.parse import urlsplit


class ContentClass(Enum):
    """Coarse content classes the crawler cares about."""
    HTML = 'html'
    XML = 'xml'
    IMAGE = 'image'
    OTHER = 'other'

    @property
    def is_markup(self) -> bool:
        return self in (ContentClass.HTML, ContentClass.XML)


XML_TYPES = ('text/xml', 'application/xml', 'application/xhtml+xml')

# the mirror keeps no content-type metadata; these are the only extensions read back as images
DISK_IMAGE_TYPES = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.gif': 'image/gif',
}


def classify_content_type(content_type: Optional[str]) -> ContentClass:
    """Classify a MIME type (parameters such as charset are ignored)."""
    ct = (content_type or '').strip().lower()
    if ct.startswith('text/html'):
        return ContentClass.HTML
    if ct.startswith(XML_TYPES):
        return ContentClass.XML
    if ct.startswith('image/'):
        return ContentClass.IMAGE
    return ContentClass.OTHER


def guess_content_type(url: str) -> str:
    """
    Content type for a file loaded from the mirror.
    JPEG and GIF extensions map to their image type, everything else is HTML.
    """
    suffix = PurePosixPath(urlsplit(url).path).suffix.lower()
    return DISK_IMAGE_TYPES.get(suffix, 'text/html')


_CHARSET_RE = re.compile(r'charset\s*=\s*["\']?([\w.:-]+)', re.IGNORECASE)


@dataclass
class FetchedResource:
    """A resource loaded for one fetch cycle, from the network or from disk."""
    url: str
    content_type: str
    content: bytes
    existed_on_disk: bool = False
    from_network: bool = True

    @property
    def content_class(self) -> ContentClass:
        return classify_content_type(self.content_type)

    @property
    def text(self) -> str:
        """Content decoded with the declared charset, falling back to UTF-8."""
        match = _CHARSET_RE.search(self.content_type or '')
        if match:
            try:
                return self.content.decode(match.group(1))
            except (LookupError, UnicodeDecodeError):
                pass
        return self.content.decode('utf-8', errors='replace')


class ContentStore:
    """
    File-based mirror of crawled URLs.

    ``http://host/a/b?x=1&y=2`` is stored at ``<root>/host/a/b%3Fx=1%26y=2``;
    URLs ending in ``/`` (or with no path) get ``index.html`` appended.
    """

    def __init__(self, root: Union[str, Path], logger: Optional[logging.Logger] = None):
        self.root = Path(root)
        self.logger = logger or logging.getLogger(__name__)
        self.stats = {
            'files_written': 0,
            'bytes_written': 0,
            'write_errors': 0
        }

    def initialize(self):
        """Create the mirror root. Raises OSError if that is not possible."""
        if self.root.exists() and not self.root.is_dir():
            raise NotADirectoryError(f"Mirror root is not a directory: {self.root}")
        self.root.mkdir(parents=True, exist_ok=True)
        self.logger.info(f"Mirror storage initialized at {self.root}")

    def local_path_for(self, url: str) -> Path:
        """Map an absolute URL to its path under the mirror root."""
        relative = url.split('#', 1)[0]
        scheme_end = relative.find('://')
        if scheme_end >= 0:
            relative = relative[scheme_end + 3:]

        # host only, e.g. example.com
        if '/' not in relative:
            relative += '/'
        if relative.endswith('/'):
            relative += 'index.html'

        relative = relative.replace('?', '%3F').replace('&', '%26')
        return self.root / relative

    def exists(self, url: str) -> bool:
        return self.local_path_for(url).is_file()

    def read(self, url: str) -> Optional[bytes]:
        """Load the mirrored copy of a URL. None if it is missing or unreadable."""
        path = self.local_path_for(url)
        if path.is_dir():
            path = path / 'index.html'
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            self.logger.warning(f"IO error reading disk version of {url}: {e}")
            return None

    def load(self, url: str) -> Optional[FetchedResource]:
        """Read a mirrored URL as a resource, typing it from the URL extension."""
        content = self.read(url)
        if content is None:
            return None
        return FetchedResource(
            url=url,
            content_type=guess_content_type(url),
            content=content,
            existed_on_disk=True,
            from_network=False
        )

    def write(self, url: str, content: bytes) -> bool:
        """
        Write content for a URL, creating parent directories as needed.
        The file only appears once all bytes are written.
        """
        path = self.local_path_for(url)
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix='.', suffix='.part')
            with os.fdopen(fd, 'wb') as f:
                f.write(content)
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            self.stats['write_errors'] += 1
            self.logger.warning(f"IO error writing {url} to {path}: {e}")
            return False
        finally:
            if tmp_name is not None:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_name)

        self.stats['files_written'] += 1
        self.stats['bytes_written'] += len(content)
        self.logger.debug(f"Wrote {len(content)} bytes to {path}")
        return True

    def get_stats(self) -> dict:
        return self.stats.copy()
