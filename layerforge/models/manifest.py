"""Dependency manifest models — the input to the fingerprint engine."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

_OPERATORS = ("==", ">=", "<=", "~=", "!=", ">", "<", "@")
_OPERATOR_PREFIXES = (*_OPERATORS, "*")


def _normalize_constraint(raw: str) -> str:
    """Collapse whitespace and make bare versions explicit (``1.0`` -> ``==1.0``)."""
    compact = "".join(raw.split())
    if not compact:
        return "*"
    if compact.startswith(_OPERATOR_PREFIXES):
        return compact
    return f"=={compact}"


def _strip_comment(line: str) -> str:
    return line.split("#", 1)[0].strip()


class Dependency(BaseModel):
    """A single declared dependency: name plus version/source constraint."""

    model_config = ConfigDict(frozen=True)

    name: str
    constraint: str = "*"

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("dependency name must be non-empty")
        return value

    @field_validator("constraint")
    @classmethod
    def _validate_constraint(cls, value: str) -> str:
        return _normalize_constraint(value)

    @property
    def canonical(self) -> str:
        """Canonical one-line form used for hashing."""
        return f"{self.name} {self.constraint}"

    @classmethod
    def parse(cls, line: str) -> Dependency:
        """Parse one manifest line (comment already stripped).

        Accepted forms: ``name==1.0``, ``name>=1.0``, ``name 1.0``,
        ``name @ source`` and a bare ``name``.
        """
        line = line.strip()
        # The earliest operator in the line ends the name.
        positions = [line.find(op) for op in _OPERATORS if op in line]
        if positions:
            at = min(positions)
            return cls(name=line[:at], constraint=line[at:])
        parts = line.split(None, 1)
        if len(parts) == 2:
            return cls(name=parts[0], constraint=parts[1])
        return cls(name=parts[0])


class Manifest(BaseModel):
    """An ordered set of declared dependencies.

    Declaration order and formatting are irrelevant to identity: use
    ``canonical_lines()`` for anything that must be stable.
    """

    model_config = ConfigDict(frozen=True)

    entries: tuple[Dependency, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def canonical_lines(self) -> list[str]:
        """Sorted, de-duplicated canonical entry lines."""
        return sorted({dep.canonical for dep in self.entries})

    def __len__(self) -> int:
        return len(self.canonical_lines())

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def of(cls, entries: Iterable[Any]) -> Manifest:
        """Build a manifest from dependencies, ``(name, constraint)`` pairs or dicts."""
        deps: list[Dependency] = []
        for entry in entries:
            if isinstance(entry, Dependency):
                deps.append(entry)
            elif isinstance(entry, Mapping):
                deps.append(Dependency(**entry))
            elif isinstance(entry, str):
                deps.append(Dependency.parse(entry))
            else:
                name, constraint = entry
                deps.append(Dependency(name=name, constraint=constraint))
        return cls(entries=tuple(deps))

    @classmethod
    def from_text(cls, text: str) -> Manifest:
        """Parse the line-oriented manifest format.

        Blank lines and ``#`` comments (whole-line or trailing) are dropped.
        """
        deps = [
            Dependency.parse(stripped)
            for stripped in (_strip_comment(line) for line in text.splitlines())
            if stripped
        ]
        return cls(entries=tuple(deps))

    @classmethod
    def from_lockfile(cls, data: Mapping[str, Any]) -> Manifest:
        """Parse an renv-style lockfile (``{"Packages": {name: {"Version": ...}}}``).

        The package ``Source``/``RemoteRef`` is appended to the constraint so a
        package pinned to a different remote yields a different entry.
        """
        deps: list[Dependency] = []
        for name, record in sorted(data.get("Packages", {}).items()):
            version = str(record.get("Version", "")).strip()
            constraint = f"=={version}" if version else "*"
            remote = record.get("RemoteRef") or record.get("RemoteSha")
            if remote:
                constraint = f"{constraint}@{remote}"
            deps.append(Dependency(name=record.get("Package", name), constraint=constraint))
        return cls(entries=tuple(deps))

    @classmethod
    def from_file(cls, path: Path | str) -> Manifest:
        """Load a manifest file; ``.json``/``.lock`` files are read as lockfiles."""
        path = Path(path)
        text = path.read_text(encoding="utf-8")
        if path.suffix in (".json", ".lock"):
            return cls.from_lockfile(json.loads(text))
        return cls.from_text(text)
