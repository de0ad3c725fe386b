"""Pytest configuration and fixtures."""
import os
import time

import pytest

# Set test environment variables
os.environ["STOREFLOW_ENV"] = "test"
os.environ["STOREFLOW_STORE_BACKEND"] = "memory"
os.environ["STOREFLOW_REDIS_URL"] = "redis://localhost:6379/1"  # Test DB
os.environ["STOREFLOW_BROKER_URL"] = "redis://localhost:6379/2"
os.environ["STOREFLOW_SHIPPO_API_TOKEN"] = "shippo_test_token"
os.environ["STOREFLOW_STRIPE_API_KEY"] = "sk_test_123"


@pytest.fixture(autouse=True)
def reset_globals():
    """Fresh settings, registry, store and service for every test."""
    from storeflow.config import reset_settings
    from storeflow.registry import reset_global_registry
    from storeflow.storage import reset_workflow_store
    from storeflow.workflows.service import reset_workflow_service

    reset_settings()
    reset_global_registry()
    reset_workflow_store()
    reset_workflow_service()
    yield
    reset_settings()
    reset_global_registry()
    reset_workflow_store()
    reset_workflow_service()


def _echo(args, context):
    return dict(args)


def _fail(args, context):
    raise RuntimeError("boom")


def _slow(args, context):
    time.sleep(args.get("seconds", 1))
    return {"slept": True}


@pytest.fixture
def registry():
    """Registry with test primitives: test.echo, test.fail, test.slow."""
    from storeflow.registry import PrimitiveDefinition, PrimitiveRegistry

    registry = PrimitiveRegistry()
    registry.register(PrimitiveDefinition(name="test.echo", description="Returns its arguments", handler=_echo))
    registry.register(PrimitiveDefinition(name="test.fail", description="Always raises", handler=_fail))
    registry.register(
        PrimitiveDefinition(
            name="test.slow",
            description="Sleeps",
            timeout_ms=50,
            input_schema={"properties": {"seconds": {"type": "number", "default": 1}}},
            handler=_slow,
        )
    )
    return registry


@pytest.fixture
def interpreter():
    from storeflow.workflows.interpreter import Interpreter

    return Interpreter(default_timeout_ms=2000, default_max_steps=50, sleep=lambda seconds: None)


@pytest.fixture
def make_workflow():
    """Build a WorkflowDefinition from compact node/edge lists."""
    from storeflow.workflows.models import WorkflowDefinition

    def build(nodes, edges, **fields):
        edge_dicts = []
        for i, edge in enumerate(edges):
            if isinstance(edge, dict):
                edge_dicts.append(edge)
                continue
            source, target, *handle = edge
            data = {"id": f"e{i}", "source": source, "target": target}
            if handle:
                data["sourceHandle"] = handle[0]
            edge_dicts.append(data)
        return WorkflowDefinition.model_validate({"name": "Test", "nodes": nodes, "edges": edge_dicts, **fields})

    return build


@pytest.fixture
def echo_workflow(make_workflow):
    """trigger -> test.echo -> return output."""
    return make_workflow(
        [
            {"id": "t", "kind": "trigger"},
            {"id": "p", "kind": "primitive", "primitive": "test.echo"},
            {"id": "o", "kind": "output", "outputType": "return"},
        ],
        [("t", "p"), ("p", "o")],
    )


@pytest.fixture
def branching_workflow(make_workflow):
    """trigger -> condition(input.x > 3) -> true: big / false: small."""
    return make_workflow(
        [
            {"id": "t", "kind": "trigger"},
            {"id": "c", "kind": "condition", "condition": "input.x > 3"},
            {"id": "big", "kind": "output", "outputType": "return", "value": {"size": "big"}},
            {"id": "small", "kind": "output", "outputType": "return", "value": {"size": "small"}},
        ],
        [("t", "c"), ("c", "big", "true"), ("c", "small", "false")],
    )


@pytest.fixture
def service(registry, interpreter):
    """WorkflowService over an in-memory store and the test registry."""
    from storeflow.storage import InMemoryWorkflowStore
    from storeflow.workflows.service import WorkflowService

    return WorkflowService(store=InMemoryWorkflowStore(), registry=registry, interpreter=interpreter)


@pytest.fixture
def echo_data():
    """Editor JSON for trigger -> test.echo -> return output."""
    return {
        "name": "Echo",
        "nodes": [
            {"id": "t", "kind": "trigger"},
            {"id": "p", "kind": "primitive", "primitive": "test.echo"},
            {"id": "o", "kind": "output", "outputType": "return"},
        ],
        "edges": [{"id": "e1", "source": "t", "target": "p"}, {"id": "e2", "source": "p", "target": "o"}],
    }
