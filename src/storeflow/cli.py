"""
CLI tool for workflow authors.

Provides terminal access to:
- Graph validation of a workflow JSON file
- Local execution of a workflow JSON file
- The primitive palette
- The template gallery
"""

import sys
import json
import argparse
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from storeflow.config import get_settings
from storeflow.errors import GraphValidationError
from storeflow.observability import setup_logging
from storeflow.registry import get_global_registry
from storeflow.workflows import WorkflowDefinition, check, parse_workflow, validate
from storeflow.workflows.interpreter import Interpreter
from storeflow.workflows.templates import TemplateCatalog


def load_workflow_file(path: str) -> WorkflowDefinition:
    """Load and parse a workflow JSON file (``-`` reads stdin)."""
    text = sys.stdin.read() if path == "-" else Path(path).read_text()
    return parse_workflow(json.loads(text))


def print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a workflow file."""
    try:
        workflow = load_workflow_file(args.file)
    except (OSError, ValueError, ValidationError) as e:
        print(f"Error: cannot load workflow: {e}")
        return 1

    issues = check(workflow, strict_branches=get_settings().strict_condition_branches)
    errors = [issue for issue in issues if issue.is_error]

    print(f"Workflow: {workflow.name} ({len(workflow.nodes)} nodes, {len(workflow.edges)} edges)")
    for issue in issues:
        marker = "ERROR" if issue.is_error else "WARN "
        where = f" [{issue.node_id or issue.edge_id}]" if (issue.node_id or issue.edge_id) else ""
        print(f"  {marker} {issue.code}{where}: {issue.message}")

    if errors:
        print(f"\nInvalid: {len(errors)} error(s)")
        return 1
    print("\nValid")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Execute a workflow file locally against the built-in primitives."""
    setup_logging()

    try:
        workflow = load_workflow_file(args.file)
        payload = json.loads(args.payload) if args.payload else None
    except (OSError, ValueError, ValidationError) as e:
        print(f"Error: cannot load workflow: {e}")
        return 1

    try:
        validated = validate(workflow)
    except GraphValidationError as e:
        print_json(e.to_dict())
        return 1

    result = Interpreter().execute(validated, payload, get_global_registry())
    print_json({"executionId": result.execution_id, **result.to_response()})
    return 0 if result.success else 1


def cmd_primitives(args: argparse.Namespace) -> int:
    """List registered primitives."""
    registry = get_global_registry()
    primitives = registry.list(category=args.category)

    if args.json:
        print_json([primitive.to_palette() for primitive in primitives])
        return 0

    current = None
    for primitive in primitives:
        if primitive.category != current:
            current = primitive.category
            print(f"\n{current.upper()}")
        print(f"  {primitive.name:<28} {primitive.description}")
    return 0


def cmd_templates(args: argparse.Namespace) -> int:
    """List the template gallery."""
    for category, templates in TemplateCatalog().grouped().items():
        print(f"\n{category.upper()}")
        for template in templates:
            print(f"  {template.slug:<28} {template.name} [{template.trigger_type.value}]")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Storeflow CLI - validate and run workflow definitions",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    # validate command
    validate_parser = subparsers.add_parser('validate', help='Validate a workflow JSON file')
    validate_parser.add_argument('file', help='Workflow JSON file (- for stdin)')

    # run command
    run_parser = subparsers.add_parser('run', help='Execute a workflow JSON file')
    run_parser.add_argument('file', help='Workflow JSON file (- for stdin)')
    run_parser.add_argument('--payload', help='Trigger payload as JSON')

    # primitives command
    primitives_parser = subparsers.add_parser('primitives', help='List available primitives')
    primitives_parser.add_argument('--category', help='Only this category')
    primitives_parser.add_argument('--json', action='store_true', help='Print palette JSON')

    # templates command
    subparsers.add_parser('templates', help='List workflow templates')

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    if args.command == 'validate':
        return cmd_validate(args)
    elif args.command == 'run':
        return cmd_run(args)
    elif args.command == 'primitives':
        return cmd_primitives(args)
    elif args.command == 'templates':
        return cmd_templates(args)
    else:
        print(f"Unknown command: {args.command}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
