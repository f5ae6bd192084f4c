"""
Middleware composition engine.

``compose`` turns an ordered sequence of handlers into a single
``ComposedPipeline``.  Each handler is called as ``handler(context, next)``
where ``next`` is a zero-argument callable that dispatches the remainder
of the chain and returns an awaitable of its result::

    async def add_timing_header(context, next):
        started = time.monotonic()
        result = await next()
        context.response.set_header("X-Elapsed", f"{time.monotonic() - started:.3f}")
        return result

    pipeline = compose([add_timing_header, respond])
    await pipeline(context)

Dispatch discipline
-------------------
For every invocation the engine keeps one ``SlotState`` per handler
position plus one sentinel for "past the end of the chain".  A slot moves
``NOT_STARTED → RUNNING → SETTLED | FAILED`` and never re-enters
``RUNNING``.  The state list belongs to a ``_PipelineInvocation`` object
created per call, so concurrent invocations of one pipeline never share
bookkeeping.

Two kinds of continuation misuse are detected and surfaced as failures
of the invocation:

- calling ``next`` more than once (``NextCalledMultipleTimesError``).
  The second call raises immediately, and the violation is remembered so
  the handler's own invocation fails even if it catches that exception.

- calling ``next`` without awaiting it before the handler settles
  (``NextNotAwaitedError``).  ``next()`` marks the downstream slot
  ``RUNNING`` as soon as it is called, so a slot still ``RUNNING`` once
  its caller has settled means the continuation was leaked.  A leaked
  continuation that never started is closed; no downstream handler runs.
  If a task already owns it, the task fails with the same error when it
  starts.

Any exception, including ``asyncio.CancelledError``, marks the slot
``FAILED`` and propagates unchanged through every pending dispatch frame.
Nothing is retried or rolled back.

A ``ComposedPipeline`` has the handler signature itself (its
``trailing_handler`` argument receives the outer ``next``), so pipelines
nest.
"""

import asyncio
import collections.abc
import enum
import inspect
import typing

import structlog

import mfkey_function.exceptions

logger = structlog.get_logger()

ContextT = typing.TypeVar("ContextT")
ResultT = typing.TypeVar("ResultT")

Next = collections.abc.Callable[[], collections.abc.Awaitable[ResultT]]
Handler = collections.abc.Callable[
    [ContextT, Next[ResultT]],
    ResultT | collections.abc.Awaitable[ResultT],
]


class SlotState(enum.Enum):
    """Lifecycle of one handler position within a single invocation."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    SETTLED = "settled"
    FAILED = "failed"


def describe_handler(handler: typing.Any) -> str:
    """Return a readable name for a handler (function or callable object)."""
    return getattr(handler, "__qualname__", type(handler).__qualname__)


class _PipelineInvocation:
    """
    Bookkeeping for exactly one call of a ``ComposedPipeline``.

    Holds the effective chain (composed handlers plus the optional
    trailing handler), the shared context, the slot states and the
    continuation coroutines handed out by ``dispatch``.
    """

    def __init__(
        self,
        chain: tuple[typing.Any, ...],
        context: typing.Any,
    ) -> None:
        self._chain = chain
        self._context = context
        self.slot_states: list[SlotState] = [SlotState.NOT_STARTED] * (len(chain) + 1)
        self._continuations: dict[int, collections.abc.Coroutine] = {}
        self._repeated_continuation_callers: set[int] = set()
        self._abandoned_positions: set[int] = set()

    def dispatch(self, position: int) -> collections.abc.Coroutine:
        """
        Start slot ``position`` and return the coroutine that runs it.

        The slot transition happens when ``dispatch`` is called, not when
        the returned coroutine is awaited; this is what lets a leaked
        (never awaited) continuation be detected afterwards.
        """
        if self.slot_states[position] is not SlotState.NOT_STARTED:
            calling_position = position - 1
            self._repeated_continuation_callers.add(calling_position)
            logger.warning(
                "middleware_next_called_multiple_times",
                position=calling_position,
                middleware=describe_handler(self._chain[calling_position]),
            )
            raise mfkey_function.exceptions.NextCalledMultipleTimesError(calling_position)

        if position == len(self._chain):
            self.slot_states[position] = SlotState.SETTLED
            continuation = self._reach_end_of_chain()
        else:
            self.slot_states[position] = SlotState.RUNNING
            continuation = self._run_handler(position)

        self._continuations[position] = continuation
        return continuation

    async def _reach_end_of_chain(self) -> None:
        return None

    async def _run_handler(self, position: int) -> typing.Any:
        try:
            if position in self._abandoned_positions:
                raise mfkey_function.exceptions.NextNotAwaitedError(position - 1)
            result = await self._call_handler(position)
            self._verify_continuation_protocol(position)
        except BaseException as error:
            self.slot_states[position] = SlotState.FAILED
            if (
                position in self._repeated_continuation_callers
                and isinstance(error, Exception)
                and not isinstance(error, mfkey_function.exceptions.PipelineProtocolError)
            ):
                raise mfkey_function.exceptions.NextCalledMultipleTimesError(position) from error
            raise

        self.slot_states[position] = SlotState.SETTLED
        return result

    def _continuation(self, position: int) -> Next[typing.Any]:
        # Extra arguments are ignored so the continuation can itself be the
        # trailing handler of a nested pipeline.
        def call_next(*_ignored: typing.Any) -> collections.abc.Coroutine:
            return self.dispatch(position)

        return call_next

    async def _call_handler(self, position: int) -> typing.Any:
        handler = self._chain[position]
        try:
            result = handler(self._context, self._continuation(position + 1))
            if inspect.isawaitable(result):
                result = await result
            return result
        finally:
            self._discard_unstarted_continuation(position + 1)

    def _discard_unstarted_continuation(self, position: int) -> None:
        continuation = self._continuations.get(position)
        if continuation is None or inspect.getcoroutinestate(continuation) != inspect.CORO_CREATED:
            return

        if any(task.get_coro() is continuation for task in asyncio.all_tasks()):
            # Owned by a task: it fails with NextNotAwaitedError on its first step.
            self._abandoned_positions.add(position)
        else:
            continuation.close()

    def _verify_continuation_protocol(self, position: int) -> None:
        if position in self._repeated_continuation_callers:
            raise mfkey_function.exceptions.NextCalledMultipleTimesError(position)

        if self.slot_states[position + 1] is SlotState.RUNNING:
            logger.warning(
                "middleware_next_not_awaited",
                position=position,
                middleware=describe_handler(self._chain[position]),
            )
            raise mfkey_function.exceptions.NextNotAwaitedError(position)


class ComposedPipeline(typing.Generic[ContextT, ResultT]):
    """
    A single callable built from an ordered, fixed sequence of handlers.

    The pipeline holds no per-call state; every call creates its own
    ``_PipelineInvocation``.  Call it as ``await pipeline(context)`` or
    ``await pipeline.invoke(context, trailing_handler)``.
    """

    __slots__ = ("_handlers",)

    def __init__(self, handlers: tuple[Handler[ContextT, ResultT], ...]) -> None:
        self._handlers = handlers

    @property
    def handlers(self) -> tuple[Handler[ContextT, ResultT], ...]:
        """The composed handlers in dispatch order."""
        return self._handlers

    async def invoke(
        self,
        context: ContextT | None = None,
        trailing_handler: typing.Any = None,
    ) -> ResultT | None:
        """
        Dispatch the chain once with ``context``.

        Args:
            context: The request-scoped object shared by every handler.
                Defaults to a new empty ``dict``.
            trailing_handler: Handler appended to the chain for this call
                only.  Anything that is not callable is ignored.

        Returns:
            The first handler's result, or ``None`` when the chain is
            empty.

        Raises:
            PipelineProtocolError: A handler misused its continuation.
            Exception: Whatever a handler raised, unchanged.
        """
        if context is None:
            context = {}

        chain = self._handlers
        if callable(trailing_handler):
            chain = (*chain, trailing_handler)

        invocation = _PipelineInvocation(chain, context)
        return await invocation.dispatch(0)

    __call__ = invoke

    def __repr__(self) -> str:
        names = ", ".join(describe_handler(handler) for handler in self._handlers)
        return f"ComposedPipeline([{names}])"


def compose(
    handlers: collections.abc.Sequence[Handler[ContextT, ResultT]],
) -> ComposedPipeline[ContextT, ResultT]:
    """
    Compose an ordered sequence of handlers into a ``ComposedPipeline``.

    The sequence is copied, so later changes to ``handlers`` do not
    affect the pipeline.

    Raises:
        PipelineConfigurationError: ``handlers`` is not a sequence, or one
            of its elements is not callable.
    """
    if isinstance(handlers, (str, bytes)) or not isinstance(handlers, collections.abc.Sequence):
        raise mfkey_function.exceptions.PipelineConfigurationError(
            "Middleware stack must be a sequence!",
        )

    for position, handler in enumerate(handlers):
        if not callable(handler):
            raise mfkey_function.exceptions.PipelineConfigurationError(
                f"Middleware must be composed of callables! middleware[{position}] is a {type(handler).__name__}.",
            )

    pipeline: ComposedPipeline[ContextT, ResultT] = ComposedPipeline(tuple(handlers))
    logger.debug(
        "middleware_pipeline_composed",
        handler_count=len(pipeline.handlers),
        handlers=[describe_handler(handler) for handler in pipeline.handlers],
    )
    return pipeline
