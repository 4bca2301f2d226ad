"""Mach-O metadata access through the platform toolchain.

Reading uses ``otool -l``; edits use ``install_name_tool`` (and optionally
``codesign``). Each edit is a separate subprocess call, so an edit either
lands completely or not at all.
"""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from dylibfix.errors import MetadataError

logger = logging.getLogger(__name__)

ID_COMMAND = "LC_ID_DYLIB"
RPATH_COMMAND = "LC_RPATH"
LOAD_COMMANDS = frozenset(
    {
        "LC_LOAD_DYLIB",
        "LC_LOAD_WEAK_DYLIB",
        "LC_REEXPORT_DYLIB",
        "LC_LAZY_LOAD_DYLIB",
        "LC_LOAD_UPWARD_DYLIB",
    }
)

_LOAD_COMMAND_RE = re.compile(r"^Load command (\d+)\s*$")
_ARCH_HEADER_RE = re.compile(r"^.+ \(architecture (\S+)\):\s*$")
_PATH_FIELD_RE = re.compile(r"^\s*(name|path)\s+(.*?)\s+\(offset \d+\)\s*$")
_FIELD_RE = re.compile(r"^\s*(\w+)\s+(.*?)\s*$")


@dataclass
class LinkInfo:
    """Snapshot of the linking metadata recorded in an artifact."""

    install_name: str | None = None
    dependencies: list[str] = field(default_factory=list)
    rpaths: list[str] = field(default_factory=list)

    @classmethod
    def from_load_commands(cls, commands: list[dict]) -> LinkInfo:
        info = cls()
        for command in commands:
            cmd = command.get("cmd")
            if cmd == ID_COMMAND and info.install_name is None:
                info.install_name = command.get("name")
            elif cmd in LOAD_COMMANDS:
                name = command.get("name")
                if name and name not in info.dependencies:
                    info.dependencies.append(name)
            elif cmd == RPATH_COMMAND:
                path = command.get("path")
                if path and path not in info.rpaths:
                    info.rpaths.append(path)
        return info


def parse_load_commands(output: str) -> list[dict]:
    """Parse ``otool -l`` output into one dict per load command.

    Each dict has a ``cmd`` key, an ``arch`` key (``None`` for thin files)
    and, where present, ``name`` (dylib commands) or ``path`` (``LC_RPATH``)
    with the ``(offset N)`` suffix removed. Section listings inside segment
    commands are ignored.
    """
    commands: list[dict] = []
    current: dict | None = None
    arch = None

    for line in output.splitlines():
        header = _ARCH_HEADER_RE.match(line)
        if header:
            arch = header.group(1)
            current = None
            continue

        if _LOAD_COMMAND_RE.match(line):
            current = {"arch": arch}
            commands.append(current)
            continue

        if current is None:
            continue

        if line.strip() == "Section":
            # Section blocks repeat keys like "size"; nothing in them matters here.
            current = None
            continue

        path_field = _PATH_FIELD_RE.match(line)
        if path_field:
            current[path_field.group(1)] = path_field.group(2)
            continue

        plain = _FIELD_RE.match(line)
        if plain and plain.group(1) not in current:
            current[plain.group(1)] = plain.group(2)

    return [c for c in commands if "cmd" in c]


class MachOTool:
    """Inspect and edit Mach-O load commands with otool/install_name_tool."""

    def __init__(
        self,
        otool: str = "otool",
        install_name_tool: str = "install_name_tool",
        codesign: str = "codesign",
    ):
        self.otool = otool
        self.install_name_tool = install_name_tool
        self.codesign = codesign

    def read(self, path: str | Path) -> LinkInfo:
        """Read the install name, dependencies and rpaths of ``path``."""
        output = self._run([self.otool, "-l", str(path)])
        commands = parse_load_commands(output)
        if not commands:
            raise MetadataError(
                f"No Mach-O load commands found in {path}",
                command=[self.otool, "-l", str(path)],
            )
        return LinkInfo.from_load_commands(commands)

    def set_install_name(self, path: str | Path, name: str) -> None:
        self._run([self.install_name_tool, "-id", name, str(path)])

    def change_dependency(self, path: str | Path, old: str, new: str) -> None:
        self._run([self.install_name_tool, "-change", old, new, str(path)])

    def adhoc_sign(self, path: str | Path) -> None:
        """Re-sign ad hoc; edits invalidate an existing signature."""
        self._run([self.codesign, "--force", "--sign", "-", str(path)])

    def _run(self, command: list[str]) -> str:
        logger.debug("running: %s", " ".join(command))
        try:
            proc = subprocess.run(
                command,
                capture_output=True,
                text=True,
                check=True,
            )
        except FileNotFoundError as e:
            raise MetadataError(
                f"Toolchain program not found: {command[0]}", command=command
            ) from e
        except subprocess.CalledProcessError as e:
            raise MetadataError(
                f"{Path(command[0]).name} exited with status {e.returncode}",
                command=command,
                stderr=e.stderr or "",
            ) from e

        if proc.stderr:
            # install_name_tool warns about invalidated signatures on success
            logger.debug("%s stderr: %s", command[0], proc.stderr.strip())
        return proc.stdout
