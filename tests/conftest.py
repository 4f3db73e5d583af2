import functools
import io
import shutil
import tarfile
import threading
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

from phantomjs_alarm import fetch_and_package
from phantomjs_alarm.errors import DownloadError, ScrapeError
from phantomjs_alarm.fetch_and_package import PackagingConfig

MIRROR = "http://mirror.test"
RELEASES = "https://releases.test/{filename}"

BINARY_BYTES = b"\x7fELF fake phantomjs binary"


def _add_bytes(tar: tarfile.TarFile, name: str, data: bytes, mode: int = 0o644) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = mode
    tar.addfile(info, io.BytesIO(data))


def _add_dir(tar: tarfile.TarFile, name: str) -> None:
    info = tarfile.TarInfo(name)
    info.type = tarfile.DIRTYPE
    info.mode = 0o755
    tar.addfile(info)


def listing_html(*filenames: str) -> str:
    rows = "\n".join(f'<a href="{name}">{name}</a>      19-Oct-2026 10:00    1M' for name in filenames)
    return f"<html><head><title>Index of /armv7h/community/</title></head><body><pre>\n{rows}\n</pre></body></html>"


@pytest.fixture
def make_alarm_package(tmp_path):
    """Build an ALARM style phantomjs-<version>-<arch>.pkg.tar.xz."""

    def _make(version: str, architecture: str, with_binary: bool = True, binary_as_symlink: bool = False) -> Path:
        path = tmp_path / "fixtures" / f"phantomjs-{version}-{architecture}.pkg.tar.xz"
        path.parent.mkdir(parents=True, exist_ok=True)
        with tarfile.open(path, "w:xz") as tar:
            _add_bytes(tar, ".PKGINFO", b"pkgname = phantomjs\n")
            _add_dir(tar, "usr")
            _add_dir(tar, "usr/bin")
            if binary_as_symlink:
                link = tarfile.TarInfo("usr/bin/phantomjs")
                link.type = tarfile.SYMTYPE
                link.linkname = "../lib/phantomjs/phantomjs"
                tar.addfile(link)
            elif with_binary:
                _add_bytes(tar, "usr/bin/phantomjs", BINARY_BYTES + version.encode(), mode=0o755)
            _add_bytes(tar, "usr/share/licenses/phantomjs/LICENSE", b"BSD\n")
        return path

    return _make


@pytest.fixture
def make_release_archive(tmp_path):
    """Build an official phantomjs-<version>-linux-x86_64.tar.bz2."""

    def _make(version: str, with_changelog: bool = True) -> Path:
        top = f"phantomjs-{version}-linux-x86_64"
        path = tmp_path / "fixtures" / f"{top}.tar.bz2"
        path.parent.mkdir(parents=True, exist_ok=True)
        with tarfile.open(path, "w:bz2") as tar:
            _add_dir(tar, top)
            _add_dir(tar, f"{top}/bin")
            _add_bytes(tar, f"{top}/bin/phantomjs", b"x86_64 binary", mode=0o755)
            _add_bytes(tar, f"{top}/README.md", b"# PhantomJS\n")
            if with_changelog:
                _add_bytes(tar, f"{top}/ChangeLog", f"{version}\n".encode())
            _add_bytes(tar, f"{top}/LICENSE.BSD", b"BSD license\n")
            _add_bytes(tar, f"{top}/third-party.txt", b"third party\n")
            _add_dir(tar, f"{top}/examples")
            _add_bytes(tar, f"{top}/examples/hello.js", b"console.log('Hello, world!');\n")
        return path

    return _make


class FakeNetwork:
    """Stands in for the mirror and release servers."""

    def __init__(self):
        self.pages: dict[str, str] = {}
        self.files: dict[str, Path] = {}
        self.requests: list[str] = []

    def add_listing(self, architecture: str, *filenames: str) -> None:
        self.pages[f"{MIRROR}/{architecture}/community/"] = listing_html(*filenames)

    def add_package(self, architecture: str, version: str, path: Path) -> None:
        self.files[f"{MIRROR}/{architecture}/community/phantomjs-{version}-{architecture}.pkg.tar.xz"] = path

    def add_release(self, version: str, path: Path) -> None:
        self.files[RELEASES.format(filename=f"phantomjs-{version}-linux-x86_64.tar.bz2")] = path

    def fetch_listing(self, url: str) -> str:
        self.requests.append(url)
        if url not in self.pages:
            raise ScrapeError(f"{url} returned HTTP 404", stage="fetch mirror listing", status=404)
        return self.pages[url]

    def download_file(self, url, output_path, show_progress=True, stage="download") -> None:
        self.requests.append(url)
        if url not in self.files:
            raise DownloadError(f"{url} returned HTTP 404", stage=stage, status=404)
        shutil.copyfile(self.files[url], output_path)

    def downloads_of(self, fragment: str) -> int:
        return sum(1 for url in self.requests if fragment in url)


@pytest.fixture
def network(monkeypatch):
    fake = FakeNetwork()
    monkeypatch.setattr(fetch_and_package, "fetch_listing", fake.fetch_listing)
    monkeypatch.setattr(fetch_and_package, "download_file", fake.download_file)
    return fake


@pytest.fixture
def output_dir(tmp_path):
    return tmp_path / "dist"


@pytest.fixture
def config(output_dir):
    return PackagingConfig(
        output_dir=output_dir,
        mirror_url=MIRROR,
        release_url=RELEASES,
        show_progress=False,
    )


@pytest.fixture
def binary_file(tmp_path):
    path = tmp_path / "phantomjs"
    path.write_bytes(BINARY_BYTES)
    return path


class _QuietHandler(SimpleHTTPRequestHandler):
    def log_message(self, format, *args):
        pass


@pytest.fixture
def http_server(tmp_path):
    """Serve a scratch directory over HTTP on localhost; yields (root, base_url)."""
    root = tmp_path / "www"
    root.mkdir()
    handler = functools.partial(_QuietHandler, directory=str(root))
    server = ThreadingHTTPServer(("127.0.0.1", 0), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield root, f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()
        thread.join()
