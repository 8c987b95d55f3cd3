"""Tests for the hook pipeline and mapper lifecycle hooks."""

import asyncio

import pytest

from recordkit import HookError, Hooks, Mapper, mapped_column


class Context:
    pass


async def noop_core():
    return "done"


class TestPreHooks:
    async def test_sync_async_sync_ordering(self):
        """The core waits for p1 and p3 in order and for p2's completion."""
        events = []
        hooks = Hooks()

        def p1(ctx):
            events.append("p1")

        async def p2(proceed, ctx):
            events.append("p2 start")
            proceed()
            await asyncio.sleep(0.01)
            events.append("p2 done")

        def p3(ctx):
            events.append("p3")

        async def core():
            events.append("core")
            return "result"

        hooks.pre("save", p1).pre("save", p2, is_async=True).pre("save", p3)

        assert await hooks.run("save", Context(), core) == "result"
        assert events == ["p1", "p2 start", "p3", "p2 done", "core"]

    async def test_async_hook_blocks_until_proceed(self):
        events = []
        hooks = Hooks()
        release = asyncio.Event()

        async def gate(proceed, ctx):
            await release.wait()
            events.append("gate")
            proceed()

        def after(ctx):
            events.append("after")

        hooks.pre("save", gate, is_async=True).pre("save", after)

        task = asyncio.ensure_future(hooks.run("save", Context(), noop_core))
        await asyncio.sleep(0)
        assert events == []
        release.set()
        await task
        assert events == ["gate", "after"]

    async def test_async_hook_finishing_without_proceed(self):
        events = []
        hooks = Hooks()

        async def quiet(proceed, ctx):
            events.append("quiet")

        hooks.pre("save", quiet, is_async=True).pre("save", lambda ctx: events.append("next"))
        await hooks.run("save", Context(), noop_core)
        assert events == ["quiet", "next"]

    async def test_coroutine_hook_is_awaited(self):
        events = []
        hooks = Hooks()

        async def first(ctx):
            await asyncio.sleep(0.01)
            events.append("first")

        hooks.pre("save", first).pre("save", lambda ctx: events.append("second"))
        await hooks.run("save", Context(), noop_core)
        assert events == ["first", "second"]

    async def test_hooks_receive_context_and_args(self):
        seen = []
        hooks = Hooks()
        ctx = Context()
        hooks.pre("publish", lambda context, channel: seen.append((context, channel)))
        await hooks.run("publish", ctx, noop_core, "news")
        assert seen == [(ctx, "news")]

    def test_async_hook_must_be_coroutine_function(self):
        with pytest.raises(TypeError):
            Hooks().pre("save", lambda proceed, ctx: proceed(), is_async=True)


class TestErrors:
    async def test_failing_pre_hook_skips_core_and_posts(self):
        boom = RuntimeError("boom")
        calls = []
        hooks = Hooks()

        def failing(ctx):
            raise boom

        async def core():
            calls.append("core")

        hooks.pre("save", failing)
        hooks.post("save", lambda ctx, result: calls.append("post"))

        with pytest.raises(RuntimeError) as exc_info:
            await hooks.run("save", Context(), core)

        assert exc_info.value is boom
        assert calls == []

    async def test_proceed_with_error(self):
        hooks = Hooks()
        error = HookError("denied")

        async def deny(proceed, ctx):
            proceed(error)

        hooks.pre("delete", deny, is_async=True)
        with pytest.raises(HookError) as exc_info:
            await hooks.run("delete", Context(), noop_core)
        assert exc_info.value is error

    async def test_proceed_with_message_wraps_hook_error(self):
        hooks = Hooks()

        async def deny(proceed, ctx):
            proceed("not allowed")

        hooks.pre("delete", deny, is_async=True)
        with pytest.raises(HookError, match="not allowed") as exc_info:
            await hooks.run("delete", Context(), noop_core)
        assert exc_info.value.operation == "delete"

    async def test_error_after_proceed_cancels_outstanding_hooks(self):
        cancelled = []
        core_calls = []
        hooks = Hooks()

        async def slow(proceed, ctx):
            proceed()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.append("slow")
                raise

        async def failing(proceed, ctx):
            proceed()
            raise ValueError("late failure")

        async def core():
            core_calls.append("core")

        hooks.pre("save", slow, is_async=True).pre("save", failing, is_async=True)

        with pytest.raises(ValueError, match="late failure"):
            await hooks.run("save", Context(), core)

        assert cancelled == ["slow"]
        assert core_calls == []

    async def test_post_hook_failure_propagates_after_core(self):
        calls = []
        hooks = Hooks()

        async def core():
            calls.append("core")
            return 1

        def failing(ctx, result):
            raise RuntimeError("post failed")

        hooks.post("save", failing)
        with pytest.raises(RuntimeError, match="post failed"):
            await hooks.run("save", Context(), core)
        assert calls == ["core"]


class TestPostHooks:
    async def test_posts_run_in_order_with_result(self):
        seen = []
        hooks = Hooks()

        async def second(ctx, result):
            seen.append(("second", result))

        hooks.post("save", lambda ctx, result: seen.append(("first", result)))
        hooks.post("save", second)

        await hooks.run("save", Context(), noop_core)
        assert seen == [("first", "done"), ("second", "done")]


class TestRegistry:
    def test_remove_with_prefixes(self):
        def fn(ctx, *args):
            pass

        hooks = Hooks().pre("save", fn).post("save", fn)
        hooks.remove("pre:save")
        assert hooks.pres("save") == []
        assert hooks.posts("save") == [fn]

        hooks.pre("save", fn).remove("post:save", fn)
        assert hooks.pres("save") == [fn]
        assert hooks.posts("save") == []

        hooks.post("save", fn).remove("save")
        assert not hooks.has_hooks("save")

    def test_clone_is_independent(self):
        def a(ctx):
            pass

        def b(ctx):
            pass

        hooks = Hooks().pre("save", a)
        copy = hooks.clone()
        copy.pre("save", b)
        assert hooks.pres("save") == [a]
        assert copy.pres("save") == [a, b]


class TestMapperHooks:
    async def test_lifecycle_order_on_create_and_update(self, executor):
        class Users(Mapper):
            __tablename__ = "users"
            id = mapped_column(int, primary_key=True)
            name = mapped_column(str)

        events = []
        for event in ("saving", "saved", "creating", "created", "updating", "updated"):
            if event.endswith("d"):
                Users.listen(event, lambda record, result, e=event: events.append(e))
            else:
                Users.listen(event, lambda record, e=event: events.append(e))

        users = Users(executor)
        user = await users.create({"name": "Alice"})
        assert events == ["saving", "creating", "created", "saved"]

        events.clear()
        user.set("name", "Bob")
        await user.save()
        assert events == ["saving", "updating", "updated", "saved"]

    async def test_failing_creating_hook_prevents_insert(self, executor):
        class Users(Mapper):
            __tablename__ = "users"
            name = mapped_column(str)

        saved = []

        @Users.listens_for("creating")
        def reject(record):
            raise HookError("no new users")

        Users.listen("saved", lambda record, result: saved.append(record))

        users = Users(executor)
        with pytest.raises(HookError, match="no new users"):
            await users.create({"name": "Alice"})

        assert executor.rows("users") == []
        assert saved == []

    async def test_hooks_can_modify_record_before_insert(self, executor):
        class Users(Mapper):
            __tablename__ = "users"
            name = mapped_column(str)
            slug = mapped_column(str)

        Users.listen("saving", lambda record: record.set("slug", record.get("name").lower()))

        users = Users(executor)
        await users.create({"name": "Alice"})
        assert executor.rows("users")[0]["slug"] == "alice"

    async def test_delete_and_fetch_events(self, executor):
        class Users(Mapper):
            __tablename__ = "users"

        events = []
        Users.listen("deleting", lambda record: events.append("deleting"))
        Users.listen("deleted", lambda record, result: events.append("deleted"))
        Users.listen("fetching", lambda record: events.append("fetching"))
        Users.listen("fetched", lambda record, result: events.append("fetched"))

        executor.seed("users", {"id": 1, "name": "Alice"})
        users = Users(executor)
        user = await users.find(1)
        await user.fetch()
        await user.destroy()
        assert events == ["fetching", "fetched", "deleting", "deleted"]

    async def test_derived_mapper_hooks_do_not_leak_to_base(self, executor):
        class BaseUsers(Mapper):
            __tablename__ = "users"
            name = mapped_column(str)

        calls = []
        BaseUsers.pre("save", lambda record: calls.append("base"))

        class AuditedUsers(BaseUsers):
            pass

        AuditedUsers.pre("save", lambda record: calls.append("audited"))

        await BaseUsers(executor).create({"name": "Alice"})
        assert calls == ["base"]

        calls.clear()
        await AuditedUsers(executor).create({"name": "Bob"})
        assert calls == ["base", "audited"]

    async def test_hooks_registered_on_base_later_are_not_inherited(self, executor):
        class BaseUsers(Mapper):
            __tablename__ = "users"

        class DerivedUsers(BaseUsers):
            pass

        calls = []
        BaseUsers.pre("save", lambda record: calls.append("late"))

        await DerivedUsers(executor).create({"name": "Alice"})
        assert calls == []

    def test_unknown_event(self):
        class Users(Mapper):
            __tablename__ = "users"

        with pytest.raises(ValueError, match="Unknown lifecycle event"):
            Users.listen("exploded", lambda record: None)

    async def test_custom_operation_hook(self, executor):
        class Posts(Mapper):
            __tablename__ = "posts"
            title = mapped_column(str)
            published = mapped_column(bool, default=False)

            async def publish(self, record):
                record.set("published", True)
                return await self.save(record)

        calls = []
        Posts.hook("publish")
        Posts.pre("publish", lambda mapper, record: calls.append(("pre", record.get("published"))))
        Posts.post("publish", lambda mapper, result: calls.append(("post", result.get("published"))))

        posts = Posts(executor)
        post = await posts.create({"title": "Hello"})
        await posts.publish(post)

        assert calls == [("pre", False), ("post", True)]
        assert executor.rows("posts")[0]["published"] is True

    def test_wrapping_is_idempotent(self):
        class Posts(Mapper):
            __tablename__ = "posts"

            async def publish(self, record):
                return record

        assert Hooks.wrap(Posts, "publish") is True
        wrapped = Posts.publish
        assert Hooks.wrap(Posts, "publish") is False
        assert Posts.publish is wrapped

    def test_wrapping_unknown_method(self):
        class Posts(Mapper):
            __tablename__ = "posts"

        with pytest.raises(AttributeError):
            Posts.hook("publish")
