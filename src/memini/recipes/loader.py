"""Recipe file loading utilities."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from ..errors import RecipeValidationError
from .models import RecipeDefinition

RECIPE_SUFFIXES = (".yaml", ".yml")


class RecipeLoadError(RecipeValidationError):
    """Raised when one or more recipe files cannot be parsed."""


class RecipeLoader:
    """Reads and writes one YAML file per recipe in a single directory."""

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, name: str) -> Path:
        return self._directory / f"{name}.yaml"

    def existing_path(self, name: str) -> Path | None:
        for suffix in RECIPE_SUFFIXES:
            candidate = self._directory / f"{name}{suffix}"
            if candidate.exists():
                return candidate
        return None

    def scan(self) -> dict[str, tuple[RecipeDefinition, Path]]:
        """Parse every recipe file in the directory.

        All files are checked before anything is returned; any malformed file or
        duplicated name fails the whole scan.
        """

        if not self._directory.exists():
            return {}

        recipes: dict[str, tuple[RecipeDefinition, Path]] = {}
        errors: list[str] = []
        paths = sorted(
            path for suffix in RECIPE_SUFFIXES for path in self._directory.glob(f"*{suffix}")
        )

        for path in paths:
            try:
                document = yaml.safe_load(path.read_text(encoding="utf-8"))
            except yaml.YAMLError as exc:
                errors.append(f"Failed to parse YAML in {path}: {exc}")
                continue

            if document is None:
                continue
            if not isinstance(document, dict):
                errors.append(f"Recipe file {path} must contain a mapping")
                continue
            document.setdefault("name", path.stem)

            try:
                definition = RecipeDefinition.model_validate(document)
            except ValidationError as exc:
                errors.append(f"Recipe validation error in {path}: {exc}")
                continue

            if definition.name in recipes:
                errors.append(
                    f"Recipe '{definition.name}' is defined in both {recipes[definition.name][1]} and {path}"
                )
                continue
            recipes[definition.name] = (definition, path)

        if errors:
            raise RecipeLoadError("; ".join(errors))

        return recipes

    def write(self, definition: RecipeDefinition, path: Path | None = None) -> Path:
        target = path or self.path_for(definition.name)
        self._directory.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        tmp.write_text(
            yaml.safe_dump(definition.to_document(), sort_keys=False, allow_unicode=True),
            encoding="utf-8",
        )
        tmp.replace(target)
        return target

    def delete(self, path: Path) -> None:
        Path(path).unlink(missing_ok=True)



__all__ = ["RECIPE_SUFFIXES", "RecipeLoadError", "RecipeLoader"]
