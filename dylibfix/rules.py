"""Rewrite rules — absolute install paths mapped to relocatable references.

A rule names one library living under a known absolute install root. When an
artifact records exactly that path as a dependency, the rewriter replaces it
with ``@rpath/<library>`` so the loader resolves it through the runtime
search path instead.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from dylibfix.errors import RuleError

RELOCATABLE_TOKENS = ("@rpath/", "@loader_path/", "@executable_path/")


@dataclass(frozen=True)
class RewriteRule:
    """One absolute-path-to-``@rpath`` mapping."""

    name: str
    install_root: str
    library: str
    token: str = "@rpath"

    @property
    def source(self) -> str:
        return posixpath.join(self.install_root, self.library)

    @property
    def target(self) -> str:
        return f"{self.token.rstrip('/')}/{self.library}"

    @property
    def family(self) -> str:
        """Library name without its version and extension (``libwireshark``)."""
        return self.library.split(".", 1)[0]

    def matches(self, reference: str) -> bool:
        return reference == self.source

    def is_drifted(self, reference: str) -> bool:
        """True for a same-family library under the same root with another version."""
        if self.matches(reference):
            return False
        directory, filename = posixpath.split(reference)
        if directory != self.install_root.rstrip("/"):
            return False
        return filename.split(".", 1)[0] == self.family


@dataclass
class RuleSet:
    """An ordered collection of rewrite rules."""

    name: str
    rules: list[RewriteRule] = field(default_factory=list)

    def __post_init__(self):
        _check_rules(self.rules)

    def __iter__(self):
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    @property
    def sources(self) -> set[str]:
        return {r.source for r in self.rules}

    def get(self, name: str) -> RewriteRule | None:
        for rule in self.rules:
            if rule.name == name:
                return rule
        return None


RULE_FIELDS = ("name", "install_root", "library", "token")


def load_rules(path: str | Path) -> RuleSet:
    """Load a rule set from a YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise RuleError(f"Cannot read rule file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise RuleError(f"Rule file {path} is not valid YAML: {e}") from e

    if not isinstance(data, dict):
        raise RuleError(f"Rule file {path} must contain a mapping")

    name = data.get("name", Path(path).stem)
    if not isinstance(name, str):
        raise RuleError(f"Rule file {path}: name must be a string")

    entries = data.get("rules") or []
    if not isinstance(entries, list):
        raise RuleError(f"Rule file {path}: rules must be a list")

    rules = []
    for i, rule_data in enumerate(entries):
        if not isinstance(rule_data, dict):
            raise RuleError(f"rules[{i}] must be a mapping")
        missing = [k for k in ("install_root", "library") if not rule_data.get(k)]
        if missing:
            raise RuleError(f"rules[{i}] is missing: {', '.join(missing)}")
        wrong = [k for k in RULE_FIELDS if k in rule_data and not isinstance(rule_data[k], str)]
        if wrong:
            raise RuleError(f"rules[{i}] must be strings: {', '.join(wrong)}")
        library = rule_data["library"]
        rules.append(
            RewriteRule(
                name=rule_data.get("name", library.split(".", 1)[0]),
                install_root=rule_data["install_root"],
                library=library,
                token=rule_data.get("token", "@rpath"),
            )
        )

    if not rules:
        raise RuleError(f"Rule file {path} declares no rules")

    return RuleSet(name=name, rules=rules)


def _check_rules(rules: list[RewriteRule]) -> None:
    names: set[str] = set()
    sources: set[str] = set()
    for rule in rules:
        wrong = [k for k in RULE_FIELDS if not isinstance(getattr(rule, k), str)]
        if wrong:
            raise RuleError(f"Rule {rule.name!r}: must be strings: {', '.join(wrong)}")
        if rule.name in names:
            raise RuleError(f"Duplicate rule name: {rule.name}")
        if rule.source in sources:
            raise RuleError(f"Duplicate rule source: {rule.source}")
        if not rule.install_root.startswith("/"):
            raise RuleError(f"Rule {rule.name}: install root must be absolute: {rule.install_root}")
        if "/" in rule.library:
            raise RuleError(f"Rule {rule.name}: library must be a bare file name: {rule.library}")
        if not rule.target.startswith(RELOCATABLE_TOKENS):
            raise RuleError(f"Rule {rule.name}: target is not relocatable: {rule.target}")
        names.add(rule.name)
        sources.add(rule.source)


HOMEBREW_WIRESHARK = "/opt/homebrew/opt/wireshark/lib"
HOMEBREW_GLIB = "/opt/homebrew/opt/glib/lib"

DEFAULT_RULES = RuleSet(
    name="wireshark-homebrew",
    rules=[
        RewriteRule("libwireshark", HOMEBREW_WIRESHARK, "libwireshark.19.dylib"),
        RewriteRule("libwsutil", HOMEBREW_WIRESHARK, "libwsutil.17.dylib"),
        RewriteRule("libglib", HOMEBREW_GLIB, "libglib-2.0.0.dylib"),
    ],
)
