from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING


if TYPE_CHECKING:
    from verity.models.definition import TestDefinition
    from verity.orchestration.cancellation import CancellationToken


@dataclass(frozen=True, slots=True)
class TestContext:
    """Execution context for the test body currently running.

    Attributes:
    ----------
    definition : TestDefinition
        The test being executed.
    token : CancellationToken
        Signals timeout or suite cancellation; bodies should poll or await it.
    execution_id : str | None
        Id of the suite execution, when run by the engine.
    attempt : int
        1-based attempt number when retries are enabled.
    """

    __test__ = False  # Prevent pytest from collecting this as a test class

    definition: TestDefinition
    token: CancellationToken
    execution_id: str | None = None
    attempt: int = 1

    @property
    def test_id(self) -> str:
        return self.definition.id


TEST_CONTEXT: ContextVar[TestContext | None] = ContextVar("test_context", default=None)


def get_test_context() -> TestContext | None:
    """Get the current test context, or None if not in a test."""
    return TEST_CONTEXT.get()


def get_cancellation_token() -> CancellationToken | None:
    """Cancellation token of the running test, or None outside a test."""
    ctx = TEST_CONTEXT.get()
    return ctx.token if ctx else None


@contextmanager
def test_context_scope(ctx: TestContext) -> Iterator[None]:
    """Temporarily set `TEST_CONTEXT` for the duration of the ``with`` block.

    Parameters
    ----------
    ctx : TestContext
        The context to bind as the current test context.
    """
    token = TEST_CONTEXT.set(ctx)
    try:
        yield
    finally:
        TEST_CONTEXT.reset(token)
