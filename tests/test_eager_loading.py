"""Tests for batched eager loading."""

import pytest

from recordkit import (
    Mapper,
    MemoryExecutor,
    Registry,
    RelationConfigurationError,
    has_many,
    mapped_column,
    noload,
    selectinload,
)
from recordkit.loader import parse_options


@pytest.fixture
def family():
    executor = MemoryExecutor()
    registry = Registry()

    class Parents(Mapper):
        __tablename__ = "parents"
        id = mapped_column(int, primary_key=True)
        name = mapped_column(str)
        children = has_many("children", "fk")

    class Children(Mapper):
        __tablename__ = "children"
        id = mapped_column(int, primary_key=True)
        fk = mapped_column(int)
        x = mapped_column(str)

    executor.seed("parents", {"id": 1, "name": "A"}, {"id": 2, "name": "B"}, {"id": 3, "name": "C"})
    executor.seed(
        "children",
        {"id": 1, "fk": 1, "x": "a1"},
        {"id": 2, "fk": 2, "x": "b1"},
        {"id": 3, "fk": 1, "x": "a2"},
    )
    return executor, Parents(executor, registry=registry), Children(executor, registry=registry)


class TestHasMany:
    async def test_children_grouped_with_one_query(self, family):
        executor, parents, _ = family
        records = await parents.find_many([1, 2])
        executor.reset_log()

        await parents.load(records, "children")

        assert [[child.x for child in record.children] for record in records] == [["a1", "a2"], ["b1"]]
        assert len(executor.calls("fetch_all", "children")) == 1
        assert len(executor.log) == 1

    async def test_query_count_is_independent_of_parent_count(self, family):
        executor, parents, _ = family
        executor.seed("parents", *({"id": i, "name": f"P{i}"} for i in range(4, 54)))
        records = await parents.all()
        executor.reset_log()

        await parents.load(records, "children")
        assert len(executor.log) == 1

    async def test_parents_without_children_get_empty_list(self, family):
        _, parents, _ = family
        records = await parents.all("children")
        assert records[2].name == "C"
        assert records[2].children == []
        assert records[2].is_loaded("children")

    async def test_with_related_on_query(self, family):
        executor, parents, _ = family
        records = await parents.query().where("name", "B").with_related("children").all()
        assert [child.x for child in records[0].children] == ["b1"]
        assert len(executor.calls("fetch_all", "children")) == 1

    async def test_no_records_means_no_query(self, family):
        executor, parents, _ = family
        assert await parents.load([], "children") == []
        assert executor.log == []

    async def test_string_keys_match_integer_keys(self, family):
        _, parents, children = family
        parent = parents.new_instance({"id": 1}, exists=True)
        child = children.new_instance({"id": 9, "fk": "1", "x": "s"}, exists=True)

        relation = parents.get_relation("children")
        relation.match([parent], [child])
        assert parent.children == [child]

    async def test_string_parent_key_loads_integer_children(self, seeded, executor):
        parent = seeded.users.new_instance({"id": "1", "name": "Alice"}, exists=True)
        executor.reset_log()

        await seeded.users.load([parent], "posts")

        assert [post.title for post in parent.posts] == ["a1", "a2"]
        assert len(executor.log) == 1


class TestRelationsOfMapper:
    async def test_to_one_defaults_to_none(self, seeded):
        users = await seeded.users.all("profile")
        assert [user.profile is None for user in users] == [False, True, True]

    async def test_belongs_to(self, seeded, executor):
        posts = await seeded.posts.all()
        executor.reset_log()
        await seeded.posts.load(posts, "author")
        assert [post.author.name for post in posts] == ["Alice", "Alice", "Bob"]
        assert len(executor.log) == 1

    async def test_multiple_names_one_query_each(self, seeded, executor):
        users = await seeded.users.all()
        executor.reset_log()

        await seeded.users.load(users, "posts", "profile", "roles")

        assert len(executor.calls("fetch_all", "posts")) == 1
        assert len(executor.calls("fetch_all", "profiles")) == 1
        assert len(executor.calls("fetch_all", "roles")) == 1
        assert len(executor.log) == 3

    async def test_single_record(self, seeded):
        alice = await seeded.users.find(1)
        result = await seeded.users.load(alice, "posts")
        assert result is alice
        assert [post.title for post in alice.posts] == ["a1", "a2"]

    async def test_constraint_mapping(self, seeded):
        users = await seeded.users.all({"posts": lambda query: query.where("title", "a2")})
        assert [[post.title for post in user.posts] for user in users] == [["a2"], [], []]

    async def test_selectinload_with_constraint(self, seeded):
        users = await (
            seeded.users.query()
            .options(selectinload("posts", lambda query: query.order_by("-id")))
            .all()
        )
        assert [post.title for post in users[0].posts] == ["a2", "a1"]

    async def test_noload(self, seeded, executor):
        users = await seeded.users.all()
        executor.reset_log()

        await seeded.users.load(users, noload("posts"), noload("profile"))
        assert executor.log == []
        assert all(user.posts == [] and user.profile is None for user in users)

    async def test_nested_names_are_rejected(self, seeded, executor):
        users = await seeded.users.all()
        executor.reset_log()
        with pytest.raises(RelationConfigurationError) as exc_info:
            await seeded.users.load(users, "posts.comments")
        assert exc_info.value.relation == "posts.comments"
        assert executor.log == []

    async def test_unknown_name_is_rejected_before_querying(self, seeded, executor):
        users = await seeded.users.all()
        executor.reset_log()
        with pytest.raises(RelationConfigurationError):
            await seeded.users.load(users, "posts", "followers")
        assert executor.log == []


def test_parse_options():
    def constraint(query):
        return query

    options = parse_options(["posts", {"roles": constraint}, noload("profile")])
    assert [(o.strategy, o.name) for o in options] == [
        ("selectin", "posts"),
        ("selectin", "roles"),
        ("noload", "profile"),
    ]
    assert options[1].constraint is constraint

    with pytest.raises(TypeError):
        parse_options([42])
