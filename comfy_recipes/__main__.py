"""
Comfy Recipes - CLI Entry Point
Run with: python -m comfy_recipes
"""

import argparse
import json
import sys
from pathlib import Path


def _parse_value(text: str):
    """JSON literal if it parses, otherwise the raw string."""
    try:
        return json.loads(text)
    except ValueError:
        return text


def _load_params(args) -> dict:
    params = {}
    if args.params:
        source = args.params
        if source.startswith("@"):
            source = Path(source[1:]).read_text(encoding="utf-8")
        loaded = json.loads(source)
        if not isinstance(loaded, dict):
            raise ValueError("--params must be a JSON object")
        params.update(loaded)
    for item in args.set or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"--set expects key=value, got '{item}'")
        params[key] = _parse_value(value)
    return params


def cmd_list(args) -> int:
    from .workflows import get_library

    for recipe in get_library().list_all():
        print(f"{recipe.id:28} {recipe.summary}")
    return 0


def cmd_describe(args) -> int:
    from .workflows import get_library

    recipe = get_library().get(args.recipe)
    print(json.dumps(recipe.describe(), indent=2))
    return 0


def cmd_build(args) -> int:
    from .workflows import get_library

    try:
        params = _load_params(args)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    recipe = get_library().get(args.recipe)
    result = recipe.try_build(params, preset=args.preset)
    if result.failed:
        print(f"Invalid parameters for {recipe.id}:", file=sys.stderr)
        for error in result.error.errors:
            print(f"  {error.describe()}", file=sys.stderr)
        return 2

    document = result.value
    payload = document.to_dict() if args.full else document.nodes
    text = json.dumps(payload, indent=args.indent)
    if args.output:
        Path(args.output).write_text(text + "\n", encoding="utf-8")
        print(f"Wrote {len(document.nodes)} nodes to {args.output} ({document.document_hash})")
    else:
        print(text)
    return 0


def cmd_check(args) -> int:
    from .catalog import DEFAULT_CATALOG, fetch_remote_catalog
    from .resolver import find_cycle, find_dangling_references

    try:
        data = json.loads(Path(args.document).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        print(f"Error: cannot read {args.document}: {e}", file=sys.stderr)
        return 2
    # Accept the full build output as well as a bare prompt document
    if isinstance(data, dict) and isinstance(data.get("prompt"), dict):
        data = data["prompt"]
    if not isinstance(data, dict):
        print("Error: document must be a JSON object", file=sys.stderr)
        return 2

    catalog = fetch_remote_catalog(args.catalog_url) if args.catalog_url else DEFAULT_CATALOG

    problems = [d.message for d in find_dangling_references(data, catalog)]
    cycle = find_cycle(data)
    if cycle:
        problems.append(f"Workflow contains a cycle: {' -> '.join(cycle)}")
    if args.strict:
        for node_id, node in data.items():
            kind = node.get("class_type") if isinstance(node, dict) else None
            if not isinstance(kind, str) or kind not in catalog:
                problems.append(f"Node '{node_id}' uses unknown operation kind '{kind}'")

    if problems:
        for problem in problems:
            print(problem)
        return 1
    print(f"OK: {len(data)} nodes")
    return 0


def cmd_settings(args) -> int:
    from .config import get_settings

    print(json.dumps(get_settings().to_dict(), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="comfy_recipes", description="Comfy Recipes - ComfyUI workflow graph builder"
    )
    parser.add_argument("--version", "-v", action="store_true", help="Show version and exit")
    parser.add_argument("--log-level", help="Override the log level (DEBUG, INFO, ...)")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("list", help="List built-in recipes").set_defaults(func=cmd_list)

    describe = sub.add_parser("describe", help="Show a recipe's inputs and stages")
    describe.add_argument("recipe")
    describe.set_defaults(func=cmd_describe)

    build = sub.add_parser("build", help="Build a recipe's graph document")
    build.add_argument("recipe")
    build.add_argument("--params", "-p", help="JSON object, or @file containing one")
    build.add_argument(
        "--set", "-s", action="append", metavar="KEY=VALUE", help="Set one parameter (repeatable)"
    )
    build.add_argument("--preset", help="Named preset applied beneath the given parameters")
    build.add_argument("--output", "-o", help="Write the document to a file")
    build.add_argument("--indent", type=int, default=2, help="JSON indent (default: 2)")
    build.add_argument(
        "--full", action="store_true", help="Include recipe id, hash and resolved parameters"
    )
    build.set_defaults(func=cmd_build)

    check = sub.add_parser("check", help="Check a stored document's references")
    check.add_argument("document")
    check.add_argument("--catalog-url", help="ComfyUI URL to read the node catalog from")
    check.add_argument(
        "--strict", action="store_true", help="Also reject kinds missing from the catalog"
    )
    check.set_defaults(func=cmd_check)

    sub.add_parser("settings", help="Show the effective settings").set_defaults(func=cmd_settings)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Version check
    if args.version:
        from . import __version__

        print(f"comfy-recipes v{__version__}")
        return 0

    if args.log_level:
        from .logging_config import set_log_level

        set_log_level(args.log_level)

    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    from .exceptions import ComfyRecipesError, format_error_for_user

    try:
        return args.func(args)
    except ComfyRecipesError as e:
        print(f"Error: {format_error_for_user(e)}", file=sys.stderr)
        for suggestion in e.suggestions:
            print(f"  - {suggestion}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
