"""Persona library: markdown files with YAML frontmatter, one agent per file."""

import logging
from collections.abc import Mapping, Sequence
from pathlib import Path

import frontmatter

from agora.models import Agent

logger = logging.getLogger(__name__)

_REQUIRED_KEYS = ("name", "bio", "style_summary")


def parse_persona(file_path: Path) -> Agent:
    """Parse one persona file.

    Frontmatter carries name, bio and style_summary; the body is the style
    exemplar.

    Raises:
        ValueError: If a required frontmatter key is missing or empty.
    """
    post = frontmatter.load(str(file_path))
    missing = [k for k in _REQUIRED_KEYS if not str(post.metadata.get(k, "")).strip()]
    if missing:
        raise ValueError(f"{file_path.name}: missing frontmatter keys: {', '.join(missing)}")
    return Agent(
        name=str(post.metadata["name"]).strip(),
        bio=str(post.metadata["bio"]).strip(),
        style_example=post.content.strip(),
        style_summary=str(post.metadata["style_summary"]).strip(),
    )


def load_personas(personas_dir: Path) -> dict[str, Agent]:
    """Load every .md persona in personas_dir, keyed by file stem, in name order.

    Raises:
        FileNotFoundError: If personas_dir does not exist.
        ValueError: If two files declare the same agent name.
    """
    if not personas_dir.is_dir():
        raise FileNotFoundError(f"Personas directory not found: {personas_dir}")

    library: dict[str, Agent] = {}
    seen_names: set[str] = set()
    for file_path in sorted(personas_dir.glob("*.md")):
        agent = parse_persona(file_path)
        if agent.name in seen_names:
            raise ValueError(f"Duplicate persona name '{agent.name}' in {file_path.name}")
        seen_names.add(agent.name)
        library[file_path.stem] = agent

    logger.info("Loaded %d personas from %s", len(library), personas_dir)
    return library


def select_agents(library: Mapping[str, Agent], persona_ids: Sequence[str] | None = None) -> list[Agent]:
    """Resolve a roster from persona ids; None means the whole library.

    Raises:
        KeyError: If an id is not in the library.
    """
    if persona_ids is None:
        return list(library.values())
    unknown = [pid for pid in persona_ids if pid not in library]
    if unknown:
        raise KeyError(f"Unknown persona(s): {', '.join(unknown)}")
    return [library[pid] for pid in persona_ids]
