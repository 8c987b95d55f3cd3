"""Tests for one-to-one and one-to-many relations."""

import pytest

from recordkit import RelationConfigurationError, RelationKind, RelationStateError, has_many
from recordkit.relations import BelongsTo, HasMany, HasOne, RelationState


class TestDescriptors:
    def test_kinds(self, schema):
        relations = schema.UserMapper.__relations__
        assert relations["posts"].kind is RelationKind.HAS_MANY
        assert relations["profile"].kind is RelationKind.HAS_ONE
        assert relations["roles"].kind is RelationKind.BELONGS_TO_MANY
        assert schema.PostMapper.__relations__["author"].kind is RelationKind.BELONGS_TO
        assert relations["posts"].many
        assert not relations["profile"].many

    def test_descriptors_are_shared_read_only(self):
        info = has_many("posts")
        with pytest.raises(AttributeError):
            info.target = "comments"

    def test_key_conventions(self, schema):
        profile = schema.users.get_relation("profile")
        assert isinstance(profile, HasOne)
        assert (profile.local_key, profile.other_key) == ("id", "user_id")

        user = schema.profiles.get_relation("user")
        assert isinstance(user, BelongsTo)
        assert (user.local_key, user.other_key) == ("user_id", "id")

        posts = schema.users.get_relation("posts")
        assert isinstance(posts, HasMany)
        assert posts.other_key == "author_id"

    def test_relation_without_registry(self, executor, schema):
        users = schema.UserMapper(executor, name="detached_users")
        with pytest.raises(RelationConfigurationError, match="no registry"):
            users.get_relation("posts")


class TestLazyLoading:
    async def test_has_many(self, seeded):
        alice = await seeded.users.find(1)
        posts = await alice.relation("posts").load()
        assert [post.title for post in posts] == ["a1", "a2"]

    async def test_has_many_empty(self, seeded):
        carol = await seeded.users.find(3)
        assert await carol.relation("posts").load() == []

    async def test_has_one(self, seeded):
        alice = await seeded.users.find(1)
        profile = await alice.relation("profile").load()
        assert profile.bio == "Alice's bio"

        bob = await seeded.users.find(2)
        assert await bob.relation("profile").load() is None

    async def test_belongs_to(self, seeded):
        post = await seeded.posts.find(3)
        author = await post.relation("author").load()
        assert author.name == "Bob"

    async def test_belongs_to_without_key_skips_query(self, seeded, executor):
        post = seeded.posts.new_instance({"title": "draft"})
        executor.reset_log()
        assert await post.relation("author").load() is None
        assert executor.log == []

    async def test_modify(self, seeded):
        alice = await seeded.users.find(1)
        posts = await alice.relation("posts").modify(lambda query, title: query.where("title", title), "a2").load()
        assert [post.title for post in posts] == ["a2"]

    async def test_record_load(self, seeded):
        alice = await seeded.users.find(1)
        await alice.load("posts", "profile")
        assert [post.title for post in alice.posts] == ["a1", "a2"]
        assert alice.profile.get("user_id") == 1


class TestStateMachine:
    async def test_resolving_unconstrained_relation(self, seeded):
        relation = seeded.users.get_relation("posts")
        assert relation.state is RelationState.UNCONSTRAINED
        with pytest.raises(RelationStateError, match="must be constrained"):
            await relation.load()

    async def test_resolving_twice(self, seeded):
        alice = await seeded.users.find(1)
        relation = alice.relation("posts")
        assert relation.state is RelationState.CONSTRAINED
        await relation.load()
        assert relation.state is RelationState.RESOLVED
        with pytest.raises(RelationStateError, match="already been resolved"):
            await relation.load()

    async def test_constraining_twice(self, seeded):
        alice = await seeded.users.find(1)
        relation = alice.relation("posts")
        with pytest.raises(RelationStateError, match="already constrained"):
            relation.apply_constraints()

    def test_constraints_need_a_parent_record(self, schema):
        relation = schema.users.get_relation("posts")
        with pytest.raises(RelationStateError, match="not bound"):
            relation.apply_constraints()


class TestPersistence:
    async def test_has_many_create(self, seeded, executor):
        alice = await seeded.users.find(1)
        post = await alice.relation("posts").create({"title": "a3"})
        assert post.get("author_id") == 1
        assert post.exists
        assert executor.rows("posts")[-1] == {"title": "a3", "author_id": 1, "id": 4}

    async def test_has_many_save_many(self, seeded):
        carol = await seeded.users.find(3)
        drafts = [seeded.posts.new_instance({"title": "c1"}), seeded.posts.new_instance({"title": "c2"})]
        saved = await carol.relation("posts").save_many(drafts)
        assert [post.get("author_id") for post in saved] == [3, 3]

        posts = await carol.relation("posts").load()
        assert [post.title for post in posts] == ["c1", "c2"]

    async def test_has_one_create_many(self, seeded):
        bob = await seeded.users.find(2)
        created = await bob.relation("profile").create_many([{"bio": "one"}])
        assert created[0].get("user_id") == 2

    async def test_associate_record(self, seeded):
        post = await seeded.posts.find(1)
        bob = await seeded.users.find(2)

        parent = post.relation("author").associate(bob)
        assert parent is post
        assert post.get("author_id") == 2
        assert post.author is bob
        assert post.get_dirty() == {"author_id": 2}

    async def test_associate_key(self, seeded):
        post = await seeded.posts.find(1)
        post.set_related("author", None)
        post.relation("author").associate(3)
        assert post.get("author_id") == 3
        assert not post.is_loaded("author")

    async def test_dissociate(self, seeded, executor):
        post = await seeded.posts.find(1)
        post.relation("author").dissociate()
        assert post.get("author_id") is None
        assert post.author is None

        await post.save()
        assert executor.rows("posts")[0]["author_id"] is None
