"""
Workflows - definitions, validation and execution.

This package provides:
- models: Workflow, node, edge and template structures
- validator: Graph checks producing a ValidatedWorkflow
- interpreter: Worklist interpreter producing an ExecutionResult
- templates: Template catalog and installer
- service: Store-backed facade used by the API, CLI and tasks

Import the interpreter, templates and service from their modules.
"""

from .models import (
    Edge,
    NodeKind,
    OutputType,
    TemplateCategory,
    TriggerType,
    WorkflowDefinition,
    WorkflowTemplate,
    parse_workflow,
)
from .validator import GraphIssue, ValidatedWorkflow, check, validate

__all__ = [
    "Edge",
    "GraphIssue",
    "NodeKind",
    "OutputType",
    "TemplateCategory",
    "TriggerType",
    "ValidatedWorkflow",
    "WorkflowDefinition",
    "WorkflowTemplate",
    "check",
    "parse_workflow",
    "validate",
]
