"""Pytest configuration and fixtures."""

import os
import tempfile
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from flowengine.executors.base import RunContext
from flowengine.models.core import NodeExecutionResult, WorkflowNode
from flowengine.storage.database import Base
from flowengine.storage import models  # noqa: F401


@pytest.fixture
def temp_db():
    """Create a temporary database and return a session factory bound to it."""
    db_fd, db_path = tempfile.mkstemp(suffix=".db")
    os.close(db_fd)

    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )
    Base.metadata.create_all(bind=test_engine)

    yield sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

    test_engine.dispose()
    try:
        os.unlink(db_path)
    except OSError:
        pass


def make_node(node_id: str, name: str, kind: str = "action", **fields) -> WorkflowNode:
    """Build a node from camelCase fields the way stored workflows look."""
    return WorkflowNode.model_validate({"id": node_id, "name": name, "type": kind, **fields})


def make_result(node_id: str, name: str, output: Any, success: bool = True) -> NodeExecutionResult:
    return NodeExecutionResult(
        id=f"{node_id}-test",
        node_id=node_id,
        node_name=name,
        success=success,
        output=output,
    )


def make_context(previous_results: Optional[List[NodeExecutionResult]] = None, **fields) -> RunContext:
    return RunContext(run_id="run-test", previous_results=tuple(previous_results or ()), **fields)


class FakePlatformClient:
    """Records action calls and returns a canned response or raises."""

    def __init__(self, response: Any = None, error: Optional[Exception] = None):
        self.response = response
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def run_action(self, action_id, action_input, connection_id=None):
        self.calls.append({"action_id": action_id, "input": action_input, "connection_id": connection_id})
        if self.error:
            raise self.error
        return self.response


class FakeModelClient:
    """Returns a canned value, or raises, and records every prompt."""

    def __init__(self, value: Any = "hi", error: Optional[Exception] = None):
        self.value = value
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, model, prompt, output_schema=None, tools=None):
        self.calls.append({"model": model, "prompt": prompt, "output_schema": output_schema, "tools": tools})
        if self.error:
            raise self.error
        return self.value


class FakeToolSet:
    definitions = [{"name": "lookup", "description": "", "input_schema": {"type": "object", "properties": {}}}]

    async def call(self, name, arguments):
        return "ok"


class FakeToolConnector:
    """Counts how often a tool server connection is opened and closed."""

    def __init__(self, fail_on_open: bool = False):
        self.fail_on_open = fail_on_open
        self.opened = 0
        self.closed = 0
        self.last_open: Optional[Dict[str, Any]] = None

    @asynccontextmanager
    async def open(self, url, transport, headers=None):
        self.last_open = {"url": url, "transport": transport, "headers": headers}
        if self.fail_on_open:
            raise ConnectionError("tool server unreachable")
        self.opened += 1
        try:
            yield FakeToolSet()
        finally:
            self.closed += 1


@pytest.fixture
def platform_client():
    return FakePlatformClient(response={"id": "created-1"})


@pytest.fixture
def model_client():
    return FakeModelClient()


@pytest.fixture
def tool_connector():
    return FakeToolConnector()
