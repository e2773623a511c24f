"""CLI entrypoint for the workflow engine.

Every command runs against the configured store (JSON files by default), so
state carries over between invocations.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from pydantic import BaseModel, ValidationError

from workflow_engine import __version__
from workflow_engine.core.config import EngineSettings
from workflow_engine.core.errors import WorkflowError
from workflow_engine.core.logging import configure_logging
from workflow_engine.core.models import WorkflowDefinition
from workflow_engine.core.service import WorkflowService
from workflow_engine.core.store import UnreadableStateFile

logger = logging.getLogger(__name__)


def _print_json(value: BaseModel | Sequence[BaseModel]) -> None:
    if isinstance(value, BaseModel):
        payload: object = value.model_dump(mode="json", by_alias=True)
    else:
        payload = [item.model_dump(mode="json", by_alias=True) for item in value]
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _load_definition(path: Path) -> WorkflowDefinition:
    return WorkflowDefinition.model_validate_json(path.read_text(encoding="utf-8"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workflow-engine",
        description="Define workflows and drive workflow instances through their states",
    )
    parser.add_argument("--version", action="version", version=f"workflow-engine {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    define = subparsers.add_parser("define", help="Accept a workflow definition from a JSON file")
    define.add_argument("file", type=Path, help="Path to the workflow definition JSON")

    show_definition = subparsers.add_parser("show-definition", help="Print a workflow definition")
    show_definition.add_argument("definition_id", help="Workflow definition id")

    subparsers.add_parser("list-definitions", help="Print all workflow definitions")

    start = subparsers.add_parser("start", help="Create a new instance of a workflow definition")
    start.add_argument("definition_id", help="Workflow definition id")

    apply = subparsers.add_parser("apply", help="Apply an action to a workflow instance")
    apply.add_argument("instance_id", help="Workflow instance id")
    apply.add_argument("action_id", help="Action id from the instance's definition")

    show_instance = subparsers.add_parser(
        "show-instance", help="Print a workflow instance, including its history"
    )
    show_instance.add_argument("instance_id", help="Workflow instance id")

    list_instances = subparsers.add_parser("list-instances", help="Print workflow instances")
    list_instances.add_argument(
        "--definition-id",
        default=None,
        help="Only list instances of this workflow definition",
    )

    available = subparsers.add_parser(
        "available-actions",
        help="Print the actions that can currently be applied to an instance",
    )
    available.add_argument("instance_id", help="Workflow instance id")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = EngineSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level)
    service = WorkflowService.from_settings(settings)

    try:
        if args.command == "define":
            try:
                definition = _load_definition(args.file)
            except (OSError, ValidationError) as e:
                print(f"Cannot read workflow definition from {args.file}:", file=sys.stderr)
                print(e, file=sys.stderr)
                return 2
            _print_json(service.accept_definition(definition))
            return 0

        if args.command == "show-definition":
            _print_json(service.get_definition(args.definition_id))
            return 0

        if args.command == "list-definitions":
            _print_json(service.list_definitions())
            return 0

        if args.command == "start":
            _print_json(service.create_instance(args.definition_id))
            return 0

        if args.command == "apply":
            _print_json(service.apply_action(args.instance_id, args.action_id))
            return 0

        if args.command == "show-instance":
            _print_json(service.get_instance(args.instance_id))
            return 0

        if args.command == "list-instances":
            _print_json(service.list_instances(definition_id=args.definition_id))
            return 0

        if args.command == "available-actions":
            _print_json(service.available_actions(args.instance_id))
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except WorkflowError as e:
        logger.warning(e.message, extra={"error": e.kind, "category": e.category.value})
        print(f"{e.kind}: {e.message}", file=sys.stderr)
        return 3

    except UnreadableStateFile as e:
        logger.error("State file is unreadable", extra={"path": str(e.path), "reason": e.reason})
        print(f"Refusing to overwrite {e.path}: {e.reason}", file=sys.stderr)
        return 2

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
