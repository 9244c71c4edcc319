"""Memini diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from memini.config import MeminiSettings
from memini.errors import RecipeValidationError
from memini.recipes import RecipeLoader
from memini.storage import MemoryStore, MemoryUnavailableError


def load_store(settings: MeminiSettings) -> MemoryStore:
    try:
        store = MemoryStore(settings.chroma_persist_path)
        store.ping()
    except MemoryUnavailableError as exc:
        print(f"Memory store unavailable: {exc}")
        raise SystemExit(1)
    return store


def cmd_recipes(args: argparse.Namespace) -> None:
    settings = MeminiSettings()
    if settings.recipe_dir is None:
        print(json.dumps({"recipe_dir": None, "recipes": []}, indent=2))
        return
    loader = RecipeLoader(settings.recipe_dir)
    try:
        scanned = loader.scan()
    except RecipeValidationError as exc:
        print(f"Recipe error: {exc}")
        raise SystemExit(1)
    payload = {
        "recipe_dir": str(loader.directory),
        "recipes": [
            {**definition.to_document(), "path": str(path)}
            for definition, path in scanned.values()
        ],
    }
    print(json.dumps(payload, indent=2))


def cmd_traces(args: argparse.Namespace) -> None:
    settings = MeminiSettings()
    store = load_store(settings)
    try:
        traces = store.recall(args.query, k=args.limit or settings.recall_limit)
    except MemoryUnavailableError as exc:
        print(f"Memory store unavailable: {exc}")
        raise SystemExit(1)
    payload = [
        {
            "id": trace.id,
            "input": trace.input,
            "action": trace.action,
            "outcome": trace.outcome,
            "timestamp": trace.timestamp.isoformat(),
            "distance": trace.distance,
        }
        for trace in traces
    ]
    print(json.dumps(payload, indent=2))


def cmd_runs(args: argparse.Namespace) -> None:
    settings = MeminiSettings()
    store = load_store(settings)
    filters: dict[str, str] = {"event_type": "task_run"}
    if args.recipe:
        filters["recipe"] = args.recipe
    try:
        events = store.search_events(filters=filters)
    except MemoryUnavailableError as exc:
        print(f"Memory store unavailable: {exc}")
        raise SystemExit(1)

    events.sort(key=lambda event: event.timestamp)
    if args.limit is not None and args.limit > 0:
        events = events[-args.limit :]

    payload = [
        {
            "event_id": getattr(event, "id", None),
            "recipe": event.metadata.get("recipe"),
            "trigger": event.metadata.get("trigger"),
            "outcome": event.metadata.get("outcome"),
            "session_id": event.metadata.get("session_id"),
            "timestamp": event.timestamp.isoformat(),
        }
        for event in events
    ]
    print(json.dumps(payload, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Memini diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_recipes = sub.add_parser("recipes", help="Validate and list recipe files")
    p_recipes.set_defaults(func=cmd_recipes)

    p_traces = sub.add_parser("traces", help="Recall memory traces for a query")
    p_traces.add_argument("--query", required=True)
    p_traces.add_argument("--limit", type=int, default=None)
    p_traces.set_defaults(func=cmd_traces)

    p_runs = sub.add_parser("runs", help="List journaled recipe runs")
    p_runs.add_argument("--recipe")
    p_runs.add_argument(
        "--limit",
        type=int,
        default=None,
        help="If provided, show only the latest N runs",
    )
    p_runs.set_defaults(func=cmd_runs)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
