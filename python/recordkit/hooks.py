"""Pre/post hook pipeline around named operations.

Three hook shapes are supported for pre hooks:

- synchronous: ``fn(context, *args)``; raising aborts the operation
- coroutine: ``async fn(context, *args)``; awaited before the next hook starts
- asynchronous (``is_async=True``): ``async fn(proceed, context, *args)``.
  The hook runs as a task. The pipeline starts the next hook as soon as the
  hook calls ``proceed()`` or its task finishes, and the pre phase only
  resolves once every such task has finished.

Post hooks are synchronous or coroutine functions ``fn(context, result)``
run in registration order after the core operation succeeded.

Example:
    >>> hooks = Hooks()
    >>> hooks.pre("save", lambda record: record.set("slug", slugify(record.get("title"))))
    >>> async def notify(proceed, record):
    ...     proceed()
    ...     await mailer.send(record)
    >>> hooks.pre("save", notify, is_async=True)
    >>> await hooks.run("save", record, lambda: mapper.persist(record))
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from recordkit.errors import HookError

logger = logging.getLogger(__name__)

HookFn = Callable[..., Any]


@dataclass(frozen=True)
class _Hook:
    fn: HookFn
    is_async: bool = False


class Proceed:
    """Continuation passed to asynchronous pre hooks.

    Calling it lets the pipeline start the next hook. Passing an error (an
    exception or a message) aborts the operation. Once the pipeline has moved
    on, an error passed here is raised inside the hook instead.
    """

    __slots__ = ("_future", "_operation")

    def __init__(self, future: asyncio.Future[None], operation: str) -> None:
        self._future = future
        self._operation = operation

    @property
    def called(self) -> bool:
        return self._future.done()

    def __call__(self, error: BaseException | str | None = None) -> None:
        if error is not None and not isinstance(error, BaseException):
            error = HookError(str(error), operation=self._operation)

        if self._future.done():
            if error is not None:
                raise error
            return

        if error is None:
            self._future.set_result(None)
        else:
            self._future.set_exception(error)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class Hooks:
    """Ordered pre and post callbacks keyed by operation name."""

    def __init__(self) -> None:
        self._pres: dict[str, list[_Hook]] = {}
        self._posts: dict[str, list[_Hook]] = {}

    # ========== Registration ==========

    def pre(self, name: str, fn: HookFn, *, is_async: bool = False) -> Hooks:
        """Register a pre hook for an operation."""
        if is_async and not inspect.iscoroutinefunction(fn):
            raise TypeError("Asynchronous pre hooks must be coroutine functions")
        self._pres.setdefault(name, []).append(_Hook(fn, is_async))
        return self

    def post(self, name: str, fn: HookFn) -> Hooks:
        """Register a post hook for an operation."""
        self._posts.setdefault(name, []).append(_Hook(fn))
        return self

    def remove(self, name: str, fn: HookFn | None = None) -> Hooks:
        """Remove hooks.

        ``"op"`` targets both sides, ``"pre:op"`` and ``"post:op"`` only one.
        Without ``fn`` every hook of the targeted side is removed.
        """
        targets = [self._pres, self._posts]
        if name.startswith("pre:"):
            name, targets = name[4:], [self._pres]
        elif name.startswith("post:"):
            name, targets = name[5:], [self._posts]

        for registry in targets:
            if name not in registry:
                continue
            if fn is None:
                del registry[name]
            else:
                registry[name] = [hook for hook in registry[name] if hook.fn is not fn]
        return self

    def has_hooks(self, name: str) -> bool:
        return bool(self._pres.get(name) or self._posts.get(name))

    def pres(self, name: str) -> list[HookFn]:
        return [hook.fn for hook in self._pres.get(name, ())]

    def posts(self, name: str) -> list[HookFn]:
        return [hook.fn for hook in self._posts.get(name, ())]

    def clone(self) -> Hooks:
        """Snapshot copy; later registrations on either side stay independent."""
        other = Hooks()
        other._pres = {name: list(hooks) for name, hooks in self._pres.items()}
        other._posts = {name: list(hooks) for name, hooks in self._posts.items()}
        return other

    # ========== Execution ==========

    async def run(self, name: str, context: Any, core: Callable[[], Any], *args: Any) -> Any:
        """Run pre hooks, the core operation, then post hooks.

        A pre hook error skips the core operation and the post hooks. A post
        hook error propagates after the core operation has completed.
        """
        await self.run_pres(name, context, *args)
        result = await _maybe_await(core())
        await self.run_posts(name, context, result)
        return result

    async def run_pres(self, name: str, context: Any, *args: Any) -> None:
        hooks = list(self._pres.get(name, ()))
        if not hooks:
            return

        logger.debug("running %d pre hook(s) for %s", len(hooks), name)
        loop = asyncio.get_running_loop()
        tasks: list[asyncio.Task[Any]] = []

        try:
            for hook in hooks:
                if not hook.is_async:
                    await _maybe_await(hook.fn(context, *args))
                    continue

                signal: asyncio.Future[None] = loop.create_future()
                task = asyncio.ensure_future(hook.fn(Proceed(signal, name), context, *args))
                tasks.append(task)

                await asyncio.wait({signal, task}, return_when=asyncio.FIRST_COMPLETED)
                if signal.done():
                    signal.result()
                else:
                    # Finishing without calling proceed() counts as proceeding
                    signal.cancel()
                    task.result()

            pending = {task for task in tasks if not task.done()}
            for task in tasks:
                if task.done():
                    task.result()
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
                for task in done:
                    task.result()
        except BaseException:
            await self._cancel(tasks)
            raise

    async def run_posts(self, name: str, context: Any, result: Any) -> None:
        hooks = list(self._posts.get(name, ()))
        if hooks:
            logger.debug("running %d post hook(s) for %s", len(hooks), name)
        for hook in hooks:
            await _maybe_await(hook.fn(context, result))

    @staticmethod
    async def _cancel(tasks: list[asyncio.Task[Any]]) -> None:
        outstanding = [task for task in tasks if not task.done()]
        for task in outstanding:
            task.cancel()
        # Collect results so failures of sibling hooks are not reported as unretrieved
        await asyncio.gather(*tasks, return_exceptions=True)

    # ========== Method wrapping ==========

    @staticmethod
    def wrap(owner: type, name: str) -> bool:
        """Route calls of ``owner.name`` through ``type(self).__hooks__``.

        Hooks run with the instance as context and the call arguments as
        extra arguments. Returns False if the method was already wrapped.
        """
        fn = getattr(owner, name, None)
        if fn is None or not callable(fn):
            raise AttributeError(f"{owner.__name__} has no method '{name}' to hook")
        if getattr(fn, "__hooked__", False):
            return False

        @functools.wraps(fn)
        async def hooked(self: Any, *args: Any, **kwargs: Any) -> Any:
            hooks: Hooks = type(self).__hooks__
            return await hooks.run(name, self, functools.partial(fn, self, *args, **kwargs), *args)

        hooked.__hooked__ = True  # type: ignore[attr-defined]
        setattr(owner, name, hooked)
        return True
