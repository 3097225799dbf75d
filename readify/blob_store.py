"""
Filesystem blob store. Blobs are served by the API under BLOB_URL_PREFIX.
"""

import logging
import mimetypes
import uuid
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, Optional, Union
from urllib.parse import urlparse

from readify import config
from readify.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)


class BlobStore:

    def __init__(self, root: Optional[Path] = None, url_prefix: str = config.BLOB_URL_PREFIX, public_url: str = config.PUBLIC_URL):
        self.root = Path(root) if root is not None else config.BLOB_DIR
        self.root.mkdir(parents=True, exist_ok=True)
        self.url_prefix = "/" + url_prefix.strip("/")
        self.public_url = public_url.rstrip("/")

    def _safe_pathname(self, pathname: str) -> str:
        parts = [p for p in PurePosixPath(pathname.replace("\\", "/")).parts if p not in ("", ".", "/")]
        if not parts or any(p == ".." for p in parts):
            raise ValidationError(f"Invalid blob name: {pathname}")
        return "/".join(parts)

    def url_for(self, pathname: str) -> str:
        return f"{self.public_url}{self.url_prefix}/{pathname}"

    def put(self, pathname: str, data: Union[bytes, Iterable[bytes]], content_type: Optional[str] = None, add_random_suffix: bool = False) -> Dict[str, str]:
        """Writes a blob and returns {url, pathname, contentType}. Same name overwrites."""
        pathname = self._safe_pathname(pathname)
        if add_random_suffix:
            p = PurePosixPath(pathname)
            pathname = str(p.with_name(f"{p.stem}-{uuid.uuid4().hex[:8]}{p.suffix}"))

        target = self.root / pathname
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "wb") as f:
                if isinstance(data, (bytes, bytearray)):
                    f.write(data)
                else:
                    for chunk in data:
                        f.write(chunk)
        except OSError as e:
            raise StorageError(f"Blob write failed for {pathname}: {e}")

        ctype = content_type or mimetypes.guess_type(pathname)[0] or "application/octet-stream"
        logger.info(f"[BLOB] stored {pathname}")
        return {"url": self.url_for(pathname), "pathname": pathname, "contentType": ctype}

    def pathname_from_url(self, url: str) -> Optional[str]:
        path = urlparse(url or "").path
        prefix = self.url_prefix + "/"
        if not path.startswith(prefix):
            return None
        return path[len(prefix):]

    def read(self, url: str) -> bytes:
        pathname = self.pathname_from_url(url)
        if pathname is None:
            raise StorageError(f"Not a blob URL: {url}")
        try:
            return (self.root / self._safe_pathname(pathname)).read_bytes()
        except OSError as e:
            raise StorageError(f"Blob read failed for {pathname}: {e}")

    def delete(self, urls: Iterable[str]):
        """Deletes blobs by URL; URLs that point elsewhere or are already gone are ignored."""
        for url in urls:
            pathname = self.pathname_from_url(url)
            if pathname is None:
                logger.warning(f"[BLOB] skip delete, foreign url: {url}")
                continue
            try:
                (self.root / self._safe_pathname(pathname)).unlink(missing_ok=True)
            except OSError as e:
                raise StorageError(f"Blob delete failed for {pathname}: {e}")
