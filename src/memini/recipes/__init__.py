"""Recurring recipes and their scheduler."""

from .loader import RecipeLoadError, RecipeLoader
from .models import Recipe, RecipeDefinition, RunOutcome, TaskRun
from .scheduler import RecipeScheduler, ReloadReport
from .templates import BUILTIN_TEMPLATES, RecipeTemplate

__all__ = [
    "BUILTIN_TEMPLATES",
    "Recipe",
    "RecipeDefinition",
    "RecipeLoadError",
    "RecipeLoader",
    "RecipeScheduler",
    "RecipeTemplate",
    "ReloadReport",
    "RunOutcome",
    "TaskRun",
]
