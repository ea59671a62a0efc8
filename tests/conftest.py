"""Shared fixtures: a counting HTTP file server and an isolated launcher root."""

import asyncio
import io
import json
import sys
import zipfile
from typing import Dict

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from craftlaunch.config import LauncherConfig
from craftlaunch.core.context import LaunchContext

FAKE_JAVA = """
import os
import shutil
import sys

args = sys.argv[1:]
main, rest = args[2], args[3:]
if main == "test.Fail":
    sys.stderr.write("processor exploded\\n")
    sys.exit(3)
options = dict(zip(rest[::2], rest[1::2]))
os.makedirs(os.path.dirname(options["--output"]), exist_ok=True)
shutil.copyfile(options["--input"], options["--output"])
print("copied", options["--input"])
"""


class FileServer:
    """Serves in-memory files and counts requests per path."""

    def __init__(self):
        self.files: Dict[str, bytes] = {}
        self.redirects: Dict[str, str] = {}
        self.hits: Dict[str, int] = {}
        self.delay = 0.0
        self.chunk_delay = 0.0
        self.chunk_size = 1024
        self.server = None

    def url(self, path: str) -> str:
        return str(self.server.make_url(path))

    def add(self, path: str, data: bytes) -> str:
        self.files[path] = data
        return self.url(path)

    def add_json(self, path: str, data) -> str:
        return self.add(path, json.dumps(data).encode())

    def redirect(self, path: str, target: str) -> str:
        self.redirects[path] = target
        return self.url(path)

    @property
    def total_hits(self) -> int:
        return sum(self.hits.values())

    async def handle(self, request: web.Request) -> web.StreamResponse:
        path = request.path
        self.hits[path] = self.hits.get(path, 0) + 1
        if path in self.redirects:
            raise web.HTTPFound(self.url(self.redirects[path]))
        if path not in self.files:
            raise web.HTTPNotFound()
        if self.delay:
            await asyncio.sleep(self.delay)
        body = self.files[path]
        if not self.chunk_delay:
            return web.Response(body=body)

        response = web.StreamResponse()
        response.content_length = len(body)
        await response.prepare(request)
        for start in range(0, len(body), self.chunk_size):
            await response.write(body[start:start + self.chunk_size])
            await asyncio.sleep(self.chunk_delay)
        await response.write_eof()
        return response


@pytest_asyncio.fixture
async def file_server():
    files = FileServer()
    app = web.Application()
    app.router.add_route("GET", "/{tail:.*}", files.handle)
    server = TestServer(app)
    await server.start_server()
    files.server = server
    yield files
    await server.close()


@pytest.fixture
def config(tmp_path):
    return LauncherConfig(
        root_dir=tmp_path / "minecraft",
        concurrent_downloads=4,
        lock_timeout=5,
    )


@pytest.fixture
def context(config):
    return LaunchContext(config=config)


def make_jar(entries: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w') as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buffer.getvalue()


@pytest.fixture
def game_jar_bytes():
    return make_jar({
        "net/minecraft/client/main/Main.class": b"\xca\xfe\xba\xbe",
        "META-INF/MANIFEST.MF": b"Manifest-Version: 1.0\r\n",
    })


@pytest.fixture
def jar_factory():
    return make_jar


@pytest.fixture
def java(tmp_path):
    """A java stand-in: ``-cp <cp> <main> --input A --output B`` copies A to B."""
    script = tmp_path / "bin" / "fake_java.py"
    script.parent.mkdir()
    script.write_text(FAKE_JAVA)
    path = script.with_name("java")
    path.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{script}" "$@"\n')
    path.chmod(0o755)
    return str(path)
