"""Error taxonomy for dylibfix.

Every error is terminal for an invocation; nothing is retried.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dylibfix.rewriter import RewriteReport


class DylibFixError(Exception):
    """Base class for all dylibfix errors."""


class UsageError(DylibFixError):
    """The tool was invoked incorrectly."""


class RuleError(UsageError):
    """A rule set is malformed (duplicate names, non-relocatable target, ...)."""


class NotFound(DylibFixError):
    """The artifact path does not name an existing, readable regular file."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Artifact not found: {path}")


class MetadataError(DylibFixError):
    """Reading or writing the artifact's load commands failed."""

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        stderr: str = "",
        report: RewriteReport | None = None,
    ):
        self.command = command or []
        self.stderr = stderr
        self.report = report
        super().__init__(message)

    def details(self) -> str:
        lines = [str(self)]
        if self.command:
            lines.append(f"command: {' '.join(self.command)}")
        if self.stderr:
            lines.append(f"stderr: {self.stderr.strip()}")
        return "\n".join(lines)


class UnmatchedDependencyError(MetadataError):
    """Strict mode: a dependency looks like a rule's library but no rule matches it."""
