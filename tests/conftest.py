"""Shared fixtures: an in-memory stand-in for otool/install_name_tool."""

import copy
from pathlib import Path

import pytest

from dylibfix.errors import MetadataError
from dylibfix.macho import LinkInfo

WIRESHARK = "/opt/homebrew/opt/wireshark/lib/libwireshark.19.dylib"
WSUTIL = "/opt/homebrew/opt/wireshark/lib/libwsutil.17.dylib"
GLIB = "/opt/homebrew/opt/glib/lib/libglib-2.0.0.dylib"
SYSTEM = "/usr/lib/libSystem.B.dylib"


class FakeMachOTool:
    """Keeps LinkInfo per path and applies edits the way install_name_tool does."""

    def __init__(self):
        self.files: dict[str, LinkInfo] = {}
        self.calls: list[tuple] = []
        self.fail_on: set[str] = set()  # "id", an old dependency path, or "sign"
        self.ignore_changes = False

    def add(self, path, install_name=None, dependencies=(), rpaths=()):
        self.files[str(path)] = LinkInfo(
            install_name=install_name,
            dependencies=list(dependencies),
            rpaths=list(rpaths),
        )

    def read(self, path):
        self.calls.append(("read", str(path)))
        if str(path) not in self.files:
            raise MetadataError(f"No Mach-O load commands found in {path}")
        return copy.deepcopy(self.files[str(path)])

    def set_install_name(self, path, name):
        self.calls.append(("id", str(path), name))
        if "id" in self.fail_on:
            raise MetadataError("install_name_tool exited with status 1", stderr="boom")
        self.files[str(path)].install_name = name

    def change_dependency(self, path, old, new):
        self.calls.append(("change", str(path), old, new))
        if old in self.fail_on:
            raise MetadataError("install_name_tool exited with status 1", stderr="boom")
        if self.ignore_changes:
            return
        deps = self.files[str(path)].dependencies
        self.files[str(path)].dependencies = [new if d == old else d for d in deps]

    def adhoc_sign(self, path):
        self.calls.append(("sign", str(path)))
        if "sign" in self.fail_on:
            raise MetadataError("codesign exited with status 1")

    @property
    def edits(self) -> list[tuple]:
        return [c for c in self.calls if c[0] != "read"]


@pytest.fixture
def fake_tool():
    return FakeMachOTool()


@pytest.fixture
def plugin(tmp_path, fake_tool) -> Path:
    """A plugin file freshly linked against Homebrew's Wireshark and GLib."""
    path = tmp_path / "build" / "matchy.so"
    path.parent.mkdir()
    path.write_bytes(b"\xcf\xfa\xed\xfe")
    fake_tool.add(
        path,
        install_name=str(path),
        dependencies=[WIRESHARK, WSUTIL, GLIB, SYSTEM],
    )
    return path
