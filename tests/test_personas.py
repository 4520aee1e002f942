"""Unit tests for agora/personas.py. No API calls."""

import textwrap
from pathlib import Path

import pytest

from agora.personas import load_personas, parse_persona, select_agents

_BUNDLED = Path(__file__).parent.parent / "config" / "personas"


def _persona(directory: Path, stem: str, name: str, body: str = "Sample speech.") -> Path:
    path = directory / f"{stem}.md"
    path.write_text(
        textwrap.dedent(f"""\
            ---
            name: {name}
            bio: {name} has a biography.
            style_summary: Speaks like {name}.
            ---
            {body}
        """),
        encoding="utf-8",
    )
    return path


def test_parse_persona_reads_frontmatter_and_body(tmp_path: Path) -> None:
    path = _persona(tmp_path, "ada", "Ada Lovelace", body="The Analytical Engine weaves algebraic patterns.")
    agent = parse_persona(path)
    assert agent.name == "Ada Lovelace"
    assert agent.bio == "Ada Lovelace has a biography."
    assert agent.style_summary == "Speaks like Ada Lovelace."
    assert agent.style_example == "The Analytical Engine weaves algebraic patterns."


def test_parse_persona_missing_key(tmp_path: Path) -> None:
    path = tmp_path / "broken.md"
    path.write_text("---\nname: Nobody\n---\nBody text.", encoding="utf-8")
    with pytest.raises(ValueError, match="bio"):
        parse_persona(path)


def test_parse_persona_without_frontmatter(tmp_path: Path) -> None:
    path = tmp_path / "plain.md"
    path.write_text("Just a speech, no metadata.", encoding="utf-8")
    with pytest.raises(ValueError, match="name"):
        parse_persona(path)


def test_load_personas_keyed_by_stem_in_order(tmp_path: Path) -> None:
    _persona(tmp_path, "twain", "Mark Twain")
    _persona(tmp_path, "ada", "Ada Lovelace")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

    library = load_personas(tmp_path)

    assert list(library) == ["ada", "twain"]
    assert library["twain"].name == "Mark Twain"


def test_load_personas_missing_dir(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_personas(tmp_path / "nope")


def test_load_personas_duplicate_names(tmp_path: Path) -> None:
    _persona(tmp_path, "one", "Socrates")
    _persona(tmp_path, "two", "Socrates")
    with pytest.raises(ValueError, match="Duplicate"):
        load_personas(tmp_path)


def test_select_agents_all_when_no_ids(tmp_path: Path) -> None:
    _persona(tmp_path, "a", "Alpha")
    _persona(tmp_path, "b", "Beta")
    library = load_personas(tmp_path)
    assert [a.name for a in select_agents(library)] == ["Alpha", "Beta"]


def test_select_agents_keeps_requested_order(tmp_path: Path) -> None:
    _persona(tmp_path, "a", "Alpha")
    _persona(tmp_path, "b", "Beta")
    library = load_personas(tmp_path)
    assert [a.name for a in select_agents(library, ["b", "a"])] == ["Beta", "Alpha"]


def test_select_agents_unknown_id(tmp_path: Path) -> None:
    _persona(tmp_path, "a", "Alpha")
    with pytest.raises(KeyError, match="zeta"):
        select_agents(load_personas(tmp_path), ["a", "zeta"])


def test_bundled_personas_parse() -> None:
    library = load_personas(_BUNDLED)
    assert {"socrates", "ada-lovelace", "mark-twain"} <= set(library)
    for agent in library.values():
        assert agent.style_example
        assert agent.bio
