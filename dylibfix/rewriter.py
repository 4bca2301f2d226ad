"""Dependency path rewriter — the core of dylibfix.

Given one Mach-O artifact, the rewriter:
1. Sets the artifact's install name (``LC_ID_DYLIB``) to its base name
2. Reads the recorded dependency references
3. Replaces each reference that matches a rewrite rule with the rule's
   ``@rpath`` reference

Rules are evaluated independently; a rule that matches nothing is not an
error. Entries are only renamed, never added, removed or reordered, so a
second run over the same artifact changes nothing.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from dylibfix.errors import MetadataError, NotFound, UnmatchedDependencyError
from dylibfix.macho import LinkInfo, MachOTool
from dylibfix.rules import DEFAULT_RULES, RewriteRule, RuleSet

logger = logging.getLogger(__name__)

INSTALL_NAME_STEP = "install-name"


class StepStatus(Enum):
    """Outcome of a single rewrite step."""

    PLANNED = "planned"
    APPLIED = "applied"
    UNCHANGED = "unchanged"  # Already in the wanted state, or no reference matched
    UNMATCHED = "unmatched"  # A same-family reference with another version exists
    FAILED = "failed"
    SKIPPED = "skipped"  # Not attempted because an earlier step failed


@dataclass
class RewriteStep:
    """One metadata edit: the install name, or one rule's dependency change."""

    name: str
    new: str
    old: str | None = None
    rule: RewriteRule | None = None
    status: StepStatus = StepStatus.PLANNED
    error: str = ""

    @property
    def is_install_name(self) -> bool:
        return self.rule is None

    def describe(self) -> str:
        if self.is_install_name:
            if self.status == StepStatus.UNCHANGED:
                return f"install name already {self.new}"
            return f"install name {self.old or '(none)'} -> {self.new}"
        if self.status == StepStatus.UNMATCHED:
            return f"{self.name}: found {self.old}, expected {self.rule.source}"
        if self.old is None:
            return f"{self.name}: no reference to {self.rule.source}"
        return f"{self.name}: {self.old} -> {self.new}"


@dataclass
class RewriteReport:
    """Everything one run did (or would do) to an artifact."""

    artifact: str
    rule_set: str
    steps: list[RewriteStep] = field(default_factory=list)
    before: LinkInfo | None = None
    after: LinkInfo | None = None
    dry_run: bool = False
    signed: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not any(s.status in (StepStatus.FAILED, StepStatus.SKIPPED) for s in self.steps)

    @property
    def changed(self) -> bool:
        return any(s.status == StepStatus.APPLIED for s in self.steps)

    @property
    def failed_step(self) -> RewriteStep | None:
        for step in self.steps:
            if step.status == StepStatus.FAILED:
                return step
        return None

    @property
    def unmatched(self) -> list[RewriteStep]:
        return [s for s in self.steps if s.status == StepStatus.UNMATCHED]

    def summary(self) -> str:
        counts: dict[str, int] = {}
        for step in self.steps:
            counts[step.status.value] = counts.get(step.status.value, 0) + 1
        parts = ", ".join(f"{n} {status}" for status, n in counts.items())
        mode = " (dry run)" if self.dry_run else ""
        return f"{Path(self.artifact).name}{mode}: {parts or 'no steps'}"


class DependencyPathRewriter:
    """Makes an artifact's linking metadata relocatable."""

    def __init__(
        self,
        rules: RuleSet | None = None,
        tool: MachOTool | None = None,
        strict: bool = False,
        codesign: bool = False,
    ):
        """Initialize the rewriter.

        Args:
            rules: Rewrite rules to apply. Defaults to the built-in Homebrew set.
            tool: Metadata facility. Defaults to the otool/install_name_tool wrapper.
            strict: Fail, before editing, when a dependency is a version of a
                    rule's library that no rule matches exactly.
            codesign: Re-sign the artifact ad hoc after a successful edit.
        """
        self.rules = rules if rules is not None else DEFAULT_RULES
        self.tool = tool if tool is not None else MachOTool()
        self.strict = strict
        self.codesign = codesign

    def check_artifact(self, path: str | Path) -> Path:
        """Raise NotFound unless ``path`` is an existing, readable regular file."""
        artifact = Path(path)
        if not artifact.is_file() or not os.access(artifact, os.R_OK):
            raise NotFound(str(path))
        return artifact

    def plan(self, path: str | Path) -> RewriteReport:
        """Work out the edits ``rewrite`` would make, without making them.

        Raises:
            NotFound: the artifact does not exist or is unreadable.
            UnmatchedDependencyError: strict mode found a version mismatch.
        """
        artifact = self.check_artifact(path)
        info = self.tool.read(artifact)
        report = RewriteReport(
            artifact=str(artifact),
            rule_set=self.rules.name,
            steps=self._plan_steps(artifact, info),
            before=info,
            dry_run=True,
        )
        report.warnings.extend(_unmatched_warning(s) for s in report.unmatched)

        if self.strict and report.unmatched:
            raise UnmatchedDependencyError(
                f"{len(report.unmatched)} dependency reference(s) match no rule exactly",
                report=report,
            )
        return report

    def rewrite(self, path: str | Path) -> RewriteReport:
        """Apply the install-name step and every matching rule to ``path``.

        Raises:
            NotFound: the artifact does not exist or is unreadable.
            UnmatchedDependencyError: strict mode found a version mismatch.
                Raised before any edit.
            MetadataError: a read, edit or the final verification failed.
                ``error.report`` holds the steps completed so far.
        """
        report = self.plan(path)
        report.dry_run = False
        artifact = Path(report.artifact)

        for i, step in enumerate(report.steps):
            try:
                self._apply(artifact, step)
            except MetadataError as e:
                step.status = StepStatus.FAILED
                step.error = str(e)
                for later in report.steps[i + 1:]:
                    later.status = StepStatus.SKIPPED
                e.report = report
                raise

        if self.codesign and report.changed:
            try:
                self.tool.adhoc_sign(artifact)
            except MetadataError as e:
                e.report = report
                raise
            report.signed = True

        report.after = self.tool.read(artifact)
        problems = self._verify(report)
        if problems:
            raise MetadataError(
                "Verification failed: " + "; ".join(problems), report=report
            )
        return report

    def _plan_steps(self, artifact: Path, info: LinkInfo) -> list[RewriteStep]:
        base_name = artifact.name
        steps = [
            RewriteStep(
                name=INSTALL_NAME_STEP,
                old=info.install_name,
                new=base_name,
                status=(
                    StepStatus.UNCHANGED
                    if info.install_name == base_name
                    else StepStatus.PLANNED
                ),
            )
        ]

        for rule in self.rules:
            step = RewriteStep(name=rule.name, new=rule.target, rule=rule, status=StepStatus.UNCHANGED)
            if any(rule.matches(dep) for dep in info.dependencies):
                step.old = rule.source
                step.status = StepStatus.PLANNED
            else:
                drifted = [dep for dep in info.dependencies if rule.is_drifted(dep)]
                if drifted:
                    step.old = drifted[0]
                    step.status = StepStatus.UNMATCHED
            steps.append(step)

        return steps

    def _apply(self, artifact: Path, step: RewriteStep) -> None:
        if step.is_install_name:
            # Issued even when already equal; -id with the same name is a no-op.
            self.tool.set_install_name(artifact, step.new)
            if step.status == StepStatus.PLANNED:
                step.status = StepStatus.APPLIED
                logger.info("set install name of %s to %s", artifact, step.new)
            return

        if step.status != StepStatus.PLANNED:
            return
        self.tool.change_dependency(artifact, step.old, step.new)
        step.status = StepStatus.APPLIED
        logger.info("changed %s to %s in %s", step.old, step.new, artifact)

    def _verify(self, report: RewriteReport) -> list[str]:
        after = report.after
        problems = []
        if not after.install_name or "/" in after.install_name:
            problems.append(f"install name is {after.install_name!r}")
        leftover = [dep for dep in after.dependencies if dep in self.rules.sources]
        if leftover:
            problems.append(f"absolute references remain: {', '.join(leftover)}")
        return problems


def _unmatched_warning(step: RewriteStep) -> str:
    return (
        f"{step.old} looks like {step.rule.family} but does not match "
        f"{step.rule.source}; left unchanged"
    )
