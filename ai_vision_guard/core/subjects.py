"""
Parsing of model answers into subjects and their materials.

The model is asked to answer one "object: material, material" pair per
line. Malformed lines are skipped rather than failing the whole answer.
"""

import json
from dataclasses import dataclass
from typing import Iterable, List, Tuple

_LINE_SEPARATORS = ("\r\n", "\r", ";")


@dataclass(frozen=True)
class Subject:
    """A physical object recognised by the model and what it is made of."""
    name: str
    materials: Tuple[str, ...] = ()

    def summary(self) -> str:
        """Comma-separated list of materials."""
        return ", ".join(self.materials)

    def contains_material(self, material: str) -> bool:
        """Case-insensitive material membership test."""
        wanted = material.strip().casefold()
        return any(m.casefold() == wanted for m in self.materials)

    def __str__(self) -> str:
        if not self.materials:
            return self.name
        return f"{self.name}: {self.summary()}"


def parse_subject(line: str) -> Subject:
    """Parse a single "object: material, material" line.

    Raises:
        ValueError: If the line is empty, has no colon or no object name
    """
    if not line or not line.strip():
        raise ValueError("subject line cannot be empty")

    name, sep, rest = line.partition(":")
    if not sep:
        raise ValueError(f"subject line must contain ':' separating object and materials: {line!r}")

    name = name.strip().lstrip("-*• ").strip()
    if not name:
        raise ValueError(f"subject line has no object name: {line!r}")

    materials = tuple(m.strip().rstrip(".") for m in rest.split(",") if m.strip().rstrip("."))
    return Subject(name=name, materials=materials)


def parse_subjects(text: str) -> Tuple[Subject, ...]:
    """Parse a whole model answer, skipping lines that do not parse."""
    if not text or not text.strip():
        return ()

    for separator in _LINE_SEPARATORS:
        text = text.replace(separator, "\n")

    subjects: List[Subject] = []
    for line in text.split("\n"):
        if not line.strip():
            continue
        try:
            subjects.append(parse_subject(line))
        except ValueError:
            continue
    return tuple(subjects)


def subjects_to_json(subjects: Iterable[Subject]) -> str:
    return json.dumps(
        [{"name": s.name, "materials": list(s.materials)} for s in subjects],
        ensure_ascii=False,
    )


def subjects_from_json(raw: str) -> Tuple[Subject, ...]:
    if not raw:
        return ()
    return tuple(
        Subject(name=item["name"], materials=tuple(item.get("materials", ())))
        for item in json.loads(raw)
    )
