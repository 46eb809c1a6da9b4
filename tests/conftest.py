"""Shared fixtures: release archives, a recording archive fetcher and a stub source parser."""

import asyncio
import io
import tarfile
import threading
from pathlib import Path

import pytest

from extract.declarations import (
    CompilationUnit,
    MethodDeclaration,
    NamespaceDeclaration,
    PredefinedType,
    SourceParseError,
    TypeDeclaration,
)


def build_archive(path: Path, files: dict) -> Path:
    """Write a gzip tar holding ``files`` (archive path -> text)."""
    with tarfile.open(path, "w:gz") as tar:
        for name, text in files.items():
            data = text.encode("utf-8")
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return path


class RecordingFetcher:
    """ArchiveFetcher serving local archives by URL and recording every request."""

    def __init__(self, archives: dict, failing=(), delay: float = 0.0):
        self.archives = archives
        self.failing = set(failing)
        self.delay = delay
        self.requested = []
        self.active = 0
        self.max_active = 0

    async def fetch(self, url: str, destination: Path) -> None:
        self.requested.append(url)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if url in self.failing:
                raise OSError(f"connection reset while fetching {url}")
            destination.write_bytes(Path(self.archives[url]).read_bytes())
        finally:
            self.active -= 1


class StubParser:
    """SourceParser whose file text is ``<ClassName>[:<Method>,...]``; ``!`` fails the parse."""

    def __init__(self, namespace: str = "Unity.Sample"):
        self.namespace = namespace
        self.parsed = []
        self._lock = threading.Lock()

    def parse(self, text: str, path: str) -> CompilationUnit:
        with self._lock:
            self.parsed.append(path)
        text = text.strip()
        if text.startswith("!"):
            raise SourceParseError(f"{path}: unexpected token")
        name, _, methods = text.partition(":")
        members = [
            MethodDeclaration(("public",), PredefinedType("void"), method, has_body=True)
            for method in methods.split(",") if method
        ]
        declaration = TypeDeclaration("class", ("public",), name, members=members)
        return CompilationUnit([NamespaceDeclaration(self.namespace, [declaration])])


@pytest.fixture
def stub_parser():
    return StubParser()


def registry_payload(releases: dict) -> dict:
    """Registry document for ``{version: (unity, tarball_url)}``."""
    versions = {}
    for version, (unity, tarball) in releases.items():
        entry = {"dist": {"tarball": tarball}}
        if unity:
            entry["unity"] = unity
        versions[version] = entry
    return {"name": "com.unity.sample", "versions": versions}
