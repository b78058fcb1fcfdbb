"""
Unit tests for the mounted directory handler.
"""

import os
from http import HTTPStatus
from pathlib import Path

import pytest

from imaginary.handlers.static import StaticFileHandler, content_type_for


@pytest.fixture
def mount(tmp_path: Path) -> Path:
    (tmp_path / "cats").mkdir()
    (tmp_path / "cats" / "tabby.jpg").write_bytes(b"\xff\xd8\xff\xe0jpeg")
    (tmp_path / "notes.txt").write_text("hello")
    return tmp_path


def mount_request(make_request, relative: str, headers=None):
    request = make_request(f"/mount/{relative}", headers=headers)
    request.path_params = {"path": relative}
    return request


class TestStaticFileHandler:
    """Tests for StaticFileHandler."""

    def test_serves_file(self, mount, make_request):
        response = StaticFileHandler(str(mount)).handle(mount_request(make_request, "cats/tabby.jpg"))

        assert response.status == HTTPStatus.OK
        assert response.body == b"\xff\xd8\xff\xe0jpeg"
        assert response.headers["Content-Type"] == "image/jpeg"
        assert response.headers["ETag"]
        assert response.headers["Last-Modified"].endswith("GMT")
        assert "Cache-Control" not in response.headers

    def test_text_has_charset(self, mount, make_request):
        response = StaticFileHandler(str(mount)).handle(mount_request(make_request, "notes.txt"))

        assert response.headers["Content-Type"] == "text/plain; charset=utf-8"

    def test_missing_file(self, mount, make_request):
        response = StaticFileHandler(str(mount)).handle(mount_request(make_request, "cats/gone.jpg"))

        assert response.status == HTTPStatus.NOT_FOUND

    @pytest.mark.parametrize("relative", ["", "cats"])
    def test_directory_refused(self, mount, make_request, relative):
        response = StaticFileHandler(str(mount)).handle(mount_request(make_request, relative))

        assert response.status == HTTPStatus.FORBIDDEN

    def test_traversal_refused(self, mount, make_request):
        response = StaticFileHandler(str(mount / "cats")).handle(
            mount_request(make_request, "../notes.txt")
        )

        assert response.status == HTTPStatus.FORBIDDEN

    def test_symlink_escape_refused(self, mount, make_request, tmp_path_factory):
        outside = tmp_path_factory.mktemp("outside") / "secret.txt"
        outside.write_text("secret")
        os.symlink(outside, mount / "link.txt")

        response = StaticFileHandler(str(mount)).handle(mount_request(make_request, "link.txt"))

        assert response.status == HTTPStatus.FORBIDDEN

    def test_not_modified(self, mount, make_request):
        handler = StaticFileHandler(str(mount))
        first = handler.handle(mount_request(make_request, "notes.txt"))

        second = handler.handle(mount_request(
            make_request, "notes.txt", headers={"If-None-Match": first.headers["ETag"]}
        ))

        assert second.status == HTTPStatus.NOT_MODIFIED
        assert second.body == b""

    def test_root_must_be_directory(self, mount):
        with pytest.raises(ValueError):
            StaticFileHandler(str(mount / "notes.txt"))


class TestContentType:
    @pytest.mark.parametrize("name, expected", [
        ("a.png", "image/png"),
        ("a.jpg", "image/jpeg"),
        ("a.json", "application/json"),
        ("a.unknownext", "application/octet-stream"),
    ])
    def test_guess(self, name, expected):
        assert content_type_for(Path(name)) == expected
