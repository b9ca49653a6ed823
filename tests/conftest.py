"""Pytest configuration and global fixtures.

Common Fixtures:
    - config: A QupConfig rooted in the test's temporary directory
    - file_server: A local HTTP server that serves instructions files and payloads
    - sample_manifest: Instructions file text covering every section family
    - staged_tree: A small staging tree with mixed permission bits
"""

import asyncio
import os
from pathlib import Path

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from qup.models.config import END_OF_FILE_MARKER, QupConfig


class FileServer:
    """Serves `files` by path. `slow/` paths send one chunk and then stall."""

    def __init__(self, server: TestServer):
        self.server = server
        self.files: dict[str, bytes] = {}
        self.requests: list[str] = []
        self.release = asyncio.Event()

    def url(self, path: str) -> str:
        return str(self.server.make_url(f"/{path.lstrip('/')}"))

    async def handle(self, request: web.Request) -> web.StreamResponse:
        path = request.match_info["path"]
        self.requests.append(path)
        if path.startswith("slow/"):
            response = web.StreamResponse()
            await response.prepare(request)
            await response.write(b"x" * 1024)
            await self.release.wait()
            return response
        if path not in self.files:
            raise web.HTTPNotFound()
        return web.Response(body=self.files[path])


@pytest_asyncio.fixture
async def file_server():
    """Provide a running local HTTP server.

    Example:
        async def test_fetch(file_server):
            file_server.files["qup.txt"] = b"..."
            url = file_server.url("qup.txt")
    """
    app = web.Application()
    server = TestServer(app)
    files = FileServer(server)
    app.router.add_get("/{path:.*}", files.handle)
    await server.start_server()
    try:
        yield files
    finally:
        files.release.set()
        await server.close()


@pytest.fixture
def config(tmp_path):
    """Provide a configuration with fast timers and temporary directories."""
    return QupConfig(
        temp_dir=tmp_path / "tmp",
        desktop_dir=tmp_path / "desktop",
        settle_delay=0.01,
        writability_interval=0.05,
        chunk_size=4096,
    )


@pytest.fixture
def sample_manifest():
    """Provide instructions file text. `{base}` is replaced with the files URL."""
    return "\n".join(
        [
            "# Product instructions",
            "[General]",
            "file=readme.txt",
            "file_destination=docs",
            "url={base}",
            "",
            "[Windows]",
            "executable=tool.exe",
            "file=helper.dll",
            "url={base}",
            "",
            "[Unix]",
            "executable:debian_12_amd64=tool",
            "executable:windows_11_amd64=tool.exe",
            "shell=tool.sh",
            "file=helper.dll",
            "file=helper.so",
            "url={base}",
            END_OF_FILE_MARKER,
            "",
        ]
    )


@pytest.fixture
def staged_tree(tmp_path) -> Path:
    """Create a staging tree with an executable, a plain file and a subdirectory."""
    root = tmp_path / "staged"
    (root / "docs").mkdir(parents=True)
    (root / "tool").write_bytes(b"#!/bin/sh\necho tool\n")
    os.chmod(root / "tool", 0o755)
    (root / "helper.so").write_bytes(b"\x7fELF-shared-object")
    os.chmod(root / "helper.so", 0o644)
    (root / "docs" / "readme.txt").write_text("Read me.\n")
    os.chmod(root / "docs" / "readme.txt", 0o640)
    return root
