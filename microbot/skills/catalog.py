"""
Skill Catalog
=============

Name-indexed registry of skill descriptors.

Skills are described in Markdown documents with a front-matter block:

    ---
    name: data-analyzer
    description: "Run SQL queries against CSV or JSON files"
    available: true
    requires: sqltools
    ---
    # Data Analyzer

    ## Instructions
    Write the query against the file name; the table name is fixed up.

    ## Examples
    - SELECT COUNT(*) FROM employees.csv WHERE role = 'engineer'

    ## Guidelines
    - Always include a FROM clause

Layout on disk (both forms are picked up):

    skills/
    ├── data-analyzer/
    │   └── SKILL.md
    └── weather.md

The catalog only describes skills. Running them is the SkillDispatcher's job.

Reload Semantics:
    load() parses everything into a fresh dict and then replaces the old one
    with a single assignment. A reader holding the catalog mid-reload sees
    either the complete old set or the complete new set.
"""

import asyncio
import json
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from microbot.errors import SkillParseError
from microbot.utils.logger import Logger

logger = Logger("Skills")

SKILL_FILENAME = "SKILL.md"

_HEADING = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_BULLET = re.compile(r"^\s*[-*]\s+(.*)$")

_SECTION_NAMES = ("instructions", "examples", "guidelines")

# Front-matter keys that map onto descriptor fields rather than metadata
_DESCRIPTOR_KEYS = {"name", "description", "available", "parameters", "requires"}


@dataclass(frozen=True)
class SkillDescriptor:
    """
    Everything the agent knows about one skill.

    Attributes:
        name: Unique lookup key
        description: One-paragraph human description
        available: False hides the skill from summaries
        parameters: Optional JSON schema for the skill's parameters
        instructions: Free text from the "Instructions" section
        examples: Bullet items from the "Examples" section
        guidelines: Bullet items from the "Guidelines" section
        requires: Executables the skill needs on PATH
        metadata: Any other front-matter keys
        path: Document the descriptor was loaded from
    """
    name: str
    description: str = ""
    available: bool = True
    parameters: dict[str, Any] | None = None
    instructions: str = ""
    examples: tuple[str, ...] = ()
    guidelines: tuple[str, ...] = ()
    requires: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    path: Path | None = None

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match on name, description, examples and guidelines."""
        needle = query.lower()
        haystacks = (self.name, self.description, *self.examples, *self.guidelines)
        return any(needle in text.lower() for text in haystacks)

    def render(self) -> str:
        """Full Markdown rendering used when a skill is loaded into context."""
        parts = [f"## {self.name}", self.description]
        if self.instructions:
            parts.append(f"### Instructions\n{self.instructions}")
        if self.examples:
            parts.append("### Examples\n" + "\n".join(f"- {e}" for e in self.examples))
        if self.guidelines:
            parts.append("### Guidelines\n" + "\n".join(f"- {g}" for g in self.guidelines))
        return "\n\n".join(p for p in parts if p)


# ==============================================================================
# Document Parsing
# ==============================================================================

def _parse_scalar(raw: str) -> Any:
    """Strip matching quotes and recognize true/false."""
    value = raw.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    return value


def _parse_front_matter(lines: list[str]) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for line in lines:
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        key, sep, raw = line.partition(":")
        if not sep:
            logger.debug(f"Ignoring front-matter line without a colon: {line!r}")
            continue
        data[key.strip()] = _parse_scalar(raw)
    return data


def _split_front_matter(text: str) -> tuple[dict[str, Any], str]:
    """
    Separate the front-matter block from the body.

    Raises:
        SkillParseError: If an opening '---' has no closing '---'
    """
    lines = text.split("\n")
    if not lines or lines[0].strip() != "---":
        return {}, text

    for index in range(1, len(lines)):
        if lines[index].strip() == "---":
            return _parse_front_matter(lines[1:index]), "\n".join(lines[index + 1:])

    raise SkillParseError("Front matter block is not terminated with '---'")


def _extract_sections(body: str) -> tuple[dict[str, str], str]:
    """
    Pull the Instructions/Examples/Guidelines sections out of a body.

    A section runs until the next heading at the same or a higher level.

    Returns:
        (sections keyed by lower-case name, first plain paragraph of the body)
    """
    sections: dict[str, list[str]] = {}
    current: str | None = None
    current_level = 0
    intro: list[str] = []
    intro_done = False

    for line in body.split("\n"):
        heading = _HEADING.match(line)
        if heading:
            level = len(heading.group(1))
            title = heading.group(2).strip().lower()
            if current is not None and level > current_level:
                sections[current].append(line)
                continue
            if title in _SECTION_NAMES:
                current, current_level = title, level
                sections.setdefault(current, [])
            else:
                current = None
            if intro:
                intro_done = True
            continue

        if current is not None:
            sections[current].append(line)
        elif not intro_done:
            if line.strip():
                intro.append(line.strip())
            elif intro:
                intro_done = True

    return {name: "\n".join(lines).strip() for name, lines in sections.items()}, " ".join(intro)


def _bullets(section: str) -> tuple[str, ...]:
    items = []
    for line in section.split("\n"):
        match = _BULLET.match(line)
        if match and match.group(1).strip():
            items.append(match.group(1).strip())
    return tuple(items)


def _parse_parameters(value: Any) -> dict[str, Any] | None:
    if not isinstance(value, str) or not value.strip().startswith("{"):
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        logger.warning(f"Ignoring unparseable parameters schema: {e}")
        return None
    return parsed if isinstance(parsed, dict) else None


def _parse_requires(value: Any) -> tuple[str, ...]:
    if not isinstance(value, str):
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


def parse_skill_document(
    text: str,
    fallback_name: str | None = None,
    path: Path | None = None
) -> SkillDescriptor:
    """
    Parse a skill document into a descriptor.

    Args:
        text: Document contents (LF or CRLF line endings)
        fallback_name: Name to use when the front matter has none
            (usually the skill's directory name)
        path: Source path recorded on the descriptor

    Returns:
        The parsed SkillDescriptor

    Raises:
        SkillParseError: If the front matter is unterminated or no name
            can be determined
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    front, body = _split_front_matter(text)
    sections, intro = _extract_sections(body)

    name = front.get("name") or fallback_name
    if not name or not isinstance(name, str):
        raise SkillParseError("Skill document has no name")

    description = front.get("description")
    if not isinstance(description, str) or not description:
        description = intro

    requires = _parse_requires(front.get("requires"))
    available = front.get("available", True) is not False
    missing = [exe for exe in requires if shutil.which(exe) is None]
    if available and missing:
        logger.warning(f"Skill {name} unavailable, missing executables: {', '.join(missing)}")
        available = False

    return SkillDescriptor(
        name=name.strip(),
        description=description.strip(),
        available=available,
        parameters=_parse_parameters(front.get("parameters")),
        instructions=sections.get("instructions", ""),
        examples=_bullets(sections.get("examples", "")),
        guidelines=_bullets(sections.get("guidelines", "")),
        requires=requires,
        metadata={k: v for k, v in front.items() if k not in _DESCRIPTOR_KEYS},
        path=path,
    )


# ==============================================================================
# Catalog
# ==============================================================================

class SkillCatalog:
    """
    Registry of skill descriptors, keyed by name.

    Example:
        catalog = SkillCatalog()
        await catalog.load(Path("skills"))

        print(catalog.summarize())
        skill = catalog.get("data-analyzer")
        names = catalog.find_relevant("sql")
    """

    def __init__(self, skills: dict[str, SkillDescriptor] | None = None):
        self._skills: dict[str, SkillDescriptor] = dict(skills or {})
        self.directory: Path | None = None

    async def load(self, directory: Path) -> int:
        """
        Scan a directory for skill documents and replace the catalog.

        Documents that fail to parse are skipped with a warning. The
        directory is created if it does not exist.

        Args:
            directory: Root of the skills tree

        Returns:
            Number of skills loaded
        """
        directory = Path(directory)
        logger.info(f"Loading skills from {directory}")
        skills = await asyncio.to_thread(_scan_directory, directory)

        # Single assignment: readers see the old dict or the new one
        self._skills = skills
        self.directory = directory

        logger.info(f"Loaded {len(skills)} skills")
        return len(skills)

    async def reload(self) -> int:
        """Re-run load() against the last directory."""
        if self.directory is None:
            raise RuntimeError("SkillCatalog.reload() called before load()")
        return await self.load(self.directory)

    def get(self, name: str) -> SkillDescriptor | None:
        return self._skills.get(name)

    def names(self) -> list[str]:
        return list(self._skills)

    def all(self) -> list[SkillDescriptor]:
        return list(self._skills.values())

    def __contains__(self, name: object) -> bool:
        return name in self._skills

    def __len__(self) -> int:
        return len(self._skills)

    def summarize(self) -> str:
        """
        Short name + description digest of the available skills.

        Skills marked unavailable are left out. The output depends only on
        the catalog contents, so it is stable between loads.

        Returns:
            Markdown digest, or "" if no skill is available
        """
        skills = self._skills
        lines = []
        for name in sorted(skills):
            skill = skills[name]
            if not skill.available:
                continue
            first_line = skill.description.split("\n", 1)[0].strip()
            lines.append(f"- {name}: {first_line}" if first_line else f"- {name}")

        if not lines:
            return ""
        return "# Available Skills\n\n" + "\n".join(lines)

    def find_relevant(self, query: str) -> list[str]:
        """
        Names of skills whose name, description, examples or guidelines
        contain the query (case-insensitive). Order is not significant.
        """
        if not query:
            return []
        return [skill.name for skill in self._skills.values() if skill.matches(query)]

    def render_for_context(self, names: list[str]) -> str:
        """
        Full documentation for the named skills, for prompts that need more
        than the summary. Unknown names are ignored.
        """
        skills = self._skills
        rendered = [skills[n].render() for n in names if n in skills]
        if not rendered:
            return ""
        return "# Loaded Skills\n\n" + "\n\n".join(rendered)


def _candidate_documents(directory: Path) -> list[tuple[Path, str]]:
    """(document path, fallback name) pairs found under a skills directory."""
    candidates = []
    for entry in sorted(directory.iterdir()):
        if entry.is_dir():
            skill_file = entry / SKILL_FILENAME
            if skill_file.is_file():
                candidates.append((skill_file, entry.name))
            else:
                logger.warning(f"{SKILL_FILENAME} not found in: {entry}")
        elif entry.is_file() and entry.suffix.lower() == ".md":
            candidates.append((entry, entry.stem))
    return candidates


def _scan_directory(directory: Path) -> dict[str, SkillDescriptor]:
    directory.mkdir(parents=True, exist_ok=True)

    skills: dict[str, SkillDescriptor] = {}
    for path, fallback_name in _candidate_documents(directory):
        try:
            text = path.read_text(encoding="utf-8")
            skill = parse_skill_document(text, fallback_name=fallback_name, path=path)
        except (OSError, UnicodeDecodeError, SkillParseError) as e:
            logger.warning(f"Skipping skill document {path}: {e}")
            continue

        if skill.name in skills:
            logger.warning(f"Duplicate skill name {skill.name} in {path}, keeping the first")
            continue

        skills[skill.name] = skill
        logger.debug(f"Loaded skill: {skill.name}")

    return skills
