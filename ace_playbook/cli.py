"""ACE playbook CLI entrypoint."""

import argparse
import json
import os
import sys
from typing import Any, NoReturn

from ace_playbook import __version__
from ace_playbook.core.config import load_config
from ace_playbook.core.manager import PlaybookManager, PlaybookNotFoundError
from ace_playbook.core.render import extract_used_bullets
from ace_playbook.core.schema import SECTIONS, RunContext
from ace_playbook.core.storage import PlaybookStore
from ace_playbook.llm import LLMServiceError, create_llm_client
from ace_playbook.reflector import format_bullets_reference, reflect
from ace_playbook.utils import setup_logging


def read_json_input(path_or_stdin: str | None) -> dict[str, Any]:
    """Read JSON from file path or stdin."""
    if path_or_stdin and path_or_stdin != "-":
        with open(path_or_stdin) as f:
            return json.load(f)  # type: ignore
    else:
        return json.load(sys.stdin)  # type: ignore


def read_text_input(path_or_stdin: str | None) -> str:
    if path_or_stdin and path_or_stdin != "-":
        with open(path_or_stdin) as f:
            return f.read()
    return sys.stdin.read()


def print_output(data: Any, as_json: bool) -> None:
    """Print output as JSON or human-readable format."""
    if as_json:
        json.dump(data, sys.stdout, indent=2, default=str)
        print()
    else:
        if isinstance(data, dict):
            for key, value in data.items():
                print(f"{key}: {value}")
        elif isinstance(data, list):
            for item in data:
                print(item)
        else:
            print(data)


def fail(message: str) -> NoReturn:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def build_manager() -> PlaybookManager:
    """Manager over the configured storage root, with logging set up from config."""
    config = load_config()
    setup_logging(config.logging.level, json_format=config.logging.format == "json")
    return PlaybookManager(store=PlaybookStore(config.storage.root), config=config)


def project_path(args: argparse.Namespace) -> str:
    return os.path.abspath(getattr(args, "project", None) or os.getcwd())


def cmd_render(args: argparse.Namespace) -> None:
    """Print the prompt addition for a project (nothing when ACE is inactive)."""
    manager = build_manager()
    addition = manager.prompt_addition(project_path(args), token_budget=args.budget)

    if args.json:
        print_output(
            {
                "text": addition.text if addition else "",
                "bullets_included": addition.bullets_included if addition else [],
                "token_estimate": addition.token_estimate if addition else 0,
            },
            as_json=True,
        )
    elif addition:
        print(addition.text)


def cmd_extract(args: argparse.Namespace) -> None:
    """Extract the bullet IDs an agent reported using."""
    ids = extract_used_bullets(read_text_input(args.file))
    print_output(ids, as_json=args.json)


def _run_context(doc: dict[str, Any]) -> RunContext:
    context = RunContext.model_validate(doc)
    if not context.bullets_used and doc.get("response"):
        context.bullets_used = extract_used_bullets(doc["response"])
    return context


def cmd_reflect(args: argparse.Namespace) -> None:
    """Run the Reflector on a finished run without changing the playbook."""
    manager = build_manager()
    context = _run_context(read_json_input(args.doc))
    playbook = manager.get_playbook(project_path(args))
    reference = format_bullets_reference(playbook, context.bullets_used) if playbook else ""

    config = manager.config
    client = create_llm_client(config.llm, model=config.ace.reflector_model)
    try:
        result = reflect(
            context,
            reference,
            client,
            model=config.ace.reflector_model,
            temperature=config.llm.temperature,
            max_tokens=config.llm.max_tokens,
            timeout=config.llm.timeout_seconds,
        )
    except LLMServiceError as e:
        fail(f"Reflection failed: {e}")

    print_output(result.model_dump(by_alias=True), as_json=args.json)


def cmd_cycle(args: argparse.Namespace) -> None:
    """Run reflect → curate → apply for a finished run."""
    manager = build_manager()
    context = _run_context(read_json_input(args.doc))
    result = manager.run_cycle(project_path(args), context, curate=not args.no_curate)

    print_output(result.to_dict(), as_json=args.json)
    if result.status == "failed":
        sys.exit(1)


def cmd_add(args: argparse.Namespace) -> None:
    """Add a bullet by hand."""
    manager = build_manager()
    try:
        bullet = manager.add_bullet(project_path(args), args.section, args.content)
    except ValueError as e:
        fail(str(e))
    print_output(bullet.model_dump(mode="json", by_alias=True), as_json=args.json)


def cmd_update(args: argparse.Namespace) -> None:
    """Replace a bullet's content."""
    manager = build_manager()
    try:
        bullet = manager.update_bullet(project_path(args), args.bullet_id, args.content)
    except (ValueError, PlaybookNotFoundError) as e:
        fail(str(e))
    print_output(bullet.model_dump(mode="json", by_alias=True), as_json=args.json)


def cmd_deactivate(args: argparse.Namespace) -> None:
    """Deactivate a bullet."""
    manager = build_manager()
    try:
        bullet = manager.deactivate_bullet(project_path(args), args.bullet_id)
    except (ValueError, PlaybookNotFoundError) as e:
        fail(str(e))
    print_output({"id": bullet.id, "active": bullet.active}, as_json=args.json)


def cmd_enable(args: argparse.Namespace) -> None:
    """Turn ACE on or off for a project."""
    manager = build_manager()
    enabled = args.command == "enable"
    playbook = manager.set_ace_enabled(project_path(args), enabled)
    print_output(
        {"project_id": playbook.project_id, "ace_enabled": playbook.ace_enabled},
        as_json=args.json,
    )


def cmd_stats(args: argparse.Namespace) -> None:
    """Show playbook statistics."""
    manager = build_manager()
    playbook = manager.get_playbook(project_path(args))
    if playbook is None:
        fail(f"No playbook for {project_path(args)}")

    result = manager.playbook_stats(playbook)
    report = manager.check_and_refine(playbook)
    result["suggestions"] = report.suggestions

    if args.json:
        print_output(result, as_json=True)
    else:
        print("Playbook Statistics:")
        print(f"  Project: {result['project_path']} ({result['project_id']})")
        print(f"  ACE enabled: {result['ace_enabled']}")
        print(f"  Bullets: {result['active_bullets']} active / {result['total_bullets']} total")
        print(f"  Helpful: {result['helpful_total']}")
        print(f"  Harmful: {result['harmful_total']}")
        print(f"  Tokens: {result['token_estimate']} (limit {result['max_tokens']})")
        print("\nActive bullets by section:")
        for section, count in result["by_section"].items():
            print(f"  {section}: {count}")
        for suggestion in report.suggestions:
            print(f"\nSuggestion: {suggestion}")


def cmd_list(args: argparse.Namespace) -> None:
    """List all stored playbooks."""
    manager = build_manager()
    rows = [
        {
            "project_id": p.project_id,
            "project_path": p.project_path,
            "ace_enabled": p.ace_enabled,
            "active_bullets": len(p.active_bullets()),
        }
        for p in manager.list_playbooks()
    ]
    if args.json:
        print_output(rows, as_json=True)
    else:
        for row in rows:
            flag = "" if row["ace_enabled"] else " (disabled)"
            print(f"{row['project_id']}  {row['active_bullets']:>4}  {row['project_path']}{flag}")


def cmd_dump(args: argparse.Namespace) -> None:
    """Dump full playbook JSON."""
    manager = build_manager()
    playbook = manager.get_playbook(project_path(args))
    if playbook is None:
        fail(f"No playbook for {project_path(args)}")

    playbook_json = playbook.model_dump_json(by_alias=True, indent=2)
    if args.out:
        with open(args.out, "w") as f:
            f.write(playbook_json)
        print(f"Playbook dumped to {args.out}")
    else:
        print(playbook_json)


def cmd_version(args: argparse.Namespace) -> None:
    """Print the package version."""
    print(__version__)


def main() -> NoReturn:
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        prog="ace-playbook",
        description="ACE (Agentic Context Engineering) - per-project playbooks for coding agents",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def project_parser(name: str, help_text: str) -> argparse.ArgumentParser:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--project", help="Project directory (default: current directory)")
        sub.add_argument("--json", action="store_true", help="Output as JSON")
        return sub

    render_parser = project_parser("render", "Print the playbook block to inject into a prompt")
    render_parser.add_argument("--budget", type=int, help="Token budget (default: playbook max)")
    render_parser.set_defaults(func=cmd_render)

    extract_parser = subparsers.add_parser("extract", help="Extract reported bullet IDs")
    extract_parser.add_argument("--file", help="Agent response file (or '-' for stdin)")
    extract_parser.add_argument("--json", action="store_true", help="Output as JSON")
    extract_parser.set_defaults(func=cmd_extract)

    reflect_parser = project_parser("reflect", "Reflect on a finished run (no changes)")
    reflect_parser.add_argument("--doc", help="Path to run JSON (or '-' for stdin)")
    reflect_parser.set_defaults(func=cmd_reflect)

    cycle_parser = project_parser("cycle", "Run reflect → curate → apply for a finished run")
    cycle_parser.add_argument("--doc", help="Path to run JSON (or '-' for stdin)")
    cycle_parser.add_argument(
        "--no-curate", action="store_true", help="Stop after recording bullet feedback"
    )
    cycle_parser.set_defaults(func=cmd_cycle)

    add_parser = project_parser("add", "Add a bullet")
    add_parser.add_argument("section", choices=SECTIONS, help="Section for the bullet")
    add_parser.add_argument("content", help="Bullet content")
    add_parser.set_defaults(func=cmd_add)

    update_parser = project_parser("update", "Replace a bullet's content")
    update_parser.add_argument("bullet_id", help="Bullet ID")
    update_parser.add_argument("content", help="New content")
    update_parser.set_defaults(func=cmd_update)

    deactivate_parser = project_parser("deactivate", "Deactivate a bullet")
    deactivate_parser.add_argument("bullet_id", help="Bullet ID")
    deactivate_parser.set_defaults(func=cmd_deactivate)

    project_parser("enable", "Enable ACE for a project").set_defaults(func=cmd_enable)
    project_parser("disable", "Disable ACE for a project").set_defaults(func=cmd_enable)

    project_parser("stats", "Show playbook statistics").set_defaults(func=cmd_stats)

    list_parser = subparsers.add_parser("list", help="List stored playbooks")
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")
    list_parser.set_defaults(func=cmd_list)

    dump_parser = subparsers.add_parser("dump", help="Dump full playbook JSON")
    dump_parser.add_argument("--project", help="Project directory (default: current directory)")
    dump_parser.add_argument("--out", help="Output file path (default: stdout)")
    dump_parser.set_defaults(func=cmd_dump)

    version_parser = subparsers.add_parser("version", help="Print the version")
    version_parser.set_defaults(func=cmd_version)

    args = parser.parse_args()
    args.func(args)
    sys.exit(0)


if __name__ == "__main__":
    main()
