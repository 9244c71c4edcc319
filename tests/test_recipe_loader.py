from pathlib import Path
import textwrap

import pytest

from memini.recipes import RecipeDefinition, RecipeLoadError, RecipeLoader


def write_recipe(path: Path, *, interval: str, name: str | None = None) -> None:
    header = f"name: {name}\n" if name else ""
    path.write_text(
        header
        + textwrap.dedent(
            """
            interval_secs: {interval}
            instructions: |
              Summarize what happened today.
            persona: Be brief.
            """
        ).strip().format(interval=interval),
        encoding="utf-8",
    )


def test_scan_uses_file_stem_as_default_name(tmp_path: Path) -> None:
    write_recipe(tmp_path / "digest.yaml", interval="7200")
    write_recipe(tmp_path / "other.yml", interval="1.5", name="quick")

    recipes = RecipeLoader(tmp_path).scan()

    definition, path = recipes["digest"]
    assert path == tmp_path / "digest.yaml"
    assert definition.interval_secs == 7200
    assert definition.instructions == "Summarize what happened today."
    assert definition.persona == "Be brief."
    assert definition.enabled is True
    assert recipes["quick"][0].interval_secs == 1.5


def test_scan_handles_missing_directory(tmp_path: Path) -> None:
    assert RecipeLoader(tmp_path / "absent").scan() == {}


def test_scan_ignores_empty_files(tmp_path: Path) -> None:
    (tmp_path / "blank.yaml").write_text("", encoding="utf-8")

    assert RecipeLoader(tmp_path).scan() == {}


def test_scan_reports_every_invalid_file(tmp_path: Path) -> None:
    (tmp_path / "broken.yaml").write_text("interval_secs: -5\ninstructions: x", encoding="utf-8")
    (tmp_path / "list.yaml").write_text("- not a mapping", encoding="utf-8")

    with pytest.raises(RecipeLoadError) as excinfo:
        RecipeLoader(tmp_path).scan()

    message = str(excinfo.value)
    assert "broken.yaml" in message
    assert "list.yaml" in message


def test_scan_rejects_duplicate_names(tmp_path: Path) -> None:
    write_recipe(tmp_path / "a.yaml", interval="60", name="same")
    write_recipe(tmp_path / "b.yaml", interval="60", name="same")

    with pytest.raises(RecipeLoadError, match="defined in both"):
        RecipeLoader(tmp_path).scan()


def test_write_then_scan_and_delete(tmp_path: Path) -> None:
    loader = RecipeLoader(tmp_path / "recipes")
    definition = RecipeDefinition(name="weekly", interval_secs=604800, instructions="Plan the week")

    path = loader.write(definition)

    assert path == tmp_path / "recipes" / "weekly.yaml"
    assert loader.existing_path("weekly") == path
    assert loader.scan()["weekly"][0].to_document() == definition.to_document()
    assert not path.with_suffix(".yaml.tmp").exists()

    loader.delete(path)
    loader.delete(path)
    assert loader.existing_path("weekly") is None
