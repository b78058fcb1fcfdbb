"""
=============================================================================
MOUNTED DIRECTORY
=============================================================================

With -mount /srv/images the server exposes that directory read-only:

    GET /mount/cats/tabby.jpg   →   /srv/images/cats/tabby.jpg

Requests are resolved against the mount root and must stay inside it;
anything that escapes (symlinks included) is refused with 403.
Directories are never listed.

Cache-Control is not set here. When -http-cache-ttl is given, the cache
middleware adds it to these responses.

=============================================================================
"""

from datetime import datetime, timezone
from http import HTTPStatus
from pathlib import Path
import logging
import mimetypes

from ..http.request import HTTPRequest
from ..http.response import (
    HTTPResponse,
    ResponseBuilder,
    forbidden,
    format_http_date,
    internal_error,
    not_found,
)


logger = logging.getLogger(__name__)

MOUNT_PREFIX = "/mount"

DEFAULT_CONTENT_TYPE = "application/octet-stream"


def content_type_for(path: Path) -> str:
    content_type, _ = mimetypes.guess_type(path.name)
    if content_type is None:
        return DEFAULT_CONTENT_TYPE
    if content_type.startswith("text/"):
        return f"{content_type}; charset=utf-8"
    return content_type


class StaticFileHandler:
    """
    Serves files below a mount root.

    Usage:
        static = StaticFileHandler("/srv/images")
        router.get("/mount/*path", static.handle)
    """

    def __init__(self, root_dir: str):
        self.root_dir = Path(root_dir).resolve()
        if not self.root_dir.is_dir():
            raise ValueError(f"mount path is not a directory: {root_dir}")

    def resolve(self, relative: str) -> Path:
        """
        Map a request path onto the filesystem.

        Raises:
            PermissionError: The resolved path leaves the mount root.
        """
        full_path = (self.root_dir / relative.lstrip("/")).resolve()
        try:
            full_path.relative_to(self.root_dir)
        except ValueError:
            raise PermissionError(f"outside of mount: {relative}")
        return full_path

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        relative = request.path_params.get("path", "")
        try:
            full_path = self.resolve(relative)
        except PermissionError:
            logger.warning(f"Path traversal attempt: {relative!r} from {request.client_address[0]}")
            return forbidden("Access denied")

        if full_path.is_dir():
            return forbidden("Directory listing not allowed")
        if not full_path.is_file():
            return not_found(f"File not found: {relative}")

        return self._serve_file(full_path, request)

    def _serve_file(self, path: Path, request: HTTPRequest) -> HTTPResponse:
        try:
            st = path.stat()
            etag = f'"{int(st.st_mtime)}-{st.st_size}"'

            if request.get_header("if-none-match") == etag:
                return (ResponseBuilder()
                    .status(HTTPStatus.NOT_MODIFIED)
                    .header("ETag", etag)
                    .build())

            content = path.read_bytes()
        except PermissionError:
            return forbidden("Permission denied")
        except OSError as e:
            logger.error(f"Error reading {path}: {e}")
            return internal_error("Failed to read file")

        modified = datetime.fromtimestamp(st.st_mtime, tz=timezone.utc)
        return (ResponseBuilder()
            .header("ETag", etag)
            .header("Last-Modified", format_http_date(modified))
            .body(content, content_type_for(path))
            .build())


def serve_mount(root_dir: str) -> StaticFileHandler:
    return StaticFileHandler(root_dir)
