"""Pytest configuration and fixtures."""

from types import SimpleNamespace

import pytest

from recordkit import (
    Mapper,
    MemoryExecutor,
    Registry,
    belongs_to,
    belongs_to_many,
    has_many,
    has_one,
    mapped_column,
    morph_many,
    morph_one,
    morph_to,
    morph_to_many,
)


@pytest.fixture
def executor():
    """In-memory executor; pivot tables have no generated key."""
    return MemoryExecutor(primary_keys={"role_user": None, "taggables": None})


@pytest.fixture
def registry():
    return Registry()


@pytest.fixture
def schema(executor, registry):
    """Fresh mapper classes bound to the executor.

    Classes are defined per test so hooks and listeners never leak between
    tests.
    """

    class UserMapper(Mapper):
        __tablename__ = "users"

        id = mapped_column(int, primary_key=True)
        name = mapped_column(str, max_length=50, nullable=False)
        email = mapped_column(str)
        age = mapped_column(int, coerce=int, validator=lambda v: v >= 0)
        active = mapped_column(bool, default=True)

        posts = has_many("posts", "author_id")
        profile = has_one("profiles")
        roles = belongs_to_many("roles", pivot_columns=["granted_by"])
        comments = morph_many("comments", "commentable")
        image = morph_one("images", "imageable")
        tags = morph_to_many("tags", "taggable")

    class PostMapper(Mapper):
        __tablename__ = "posts"

        id = mapped_column(int, primary_key=True)
        title = mapped_column(str, max_length=200)
        author_id = mapped_column(int)

        author = belongs_to("users", "author_id")
        comments = morph_many("comments", "commentable")
        tags = morph_to_many("tags", "taggable")

    class ProfileMapper(Mapper):
        __tablename__ = "profiles"

        id = mapped_column(int, primary_key=True)
        user_id = mapped_column(int)
        bio = mapped_column(str)

        user = belongs_to("users")

    class RoleMapper(Mapper):
        __tablename__ = "roles"

        id = mapped_column(int, primary_key=True)
        name = mapped_column(str)

        users = belongs_to_many("users")

    class CommentMapper(Mapper):
        __tablename__ = "comments"

        id = mapped_column(int, primary_key=True)
        body = mapped_column(str)
        commentable_type = mapped_column(str)
        commentable_id = mapped_column(int)

        commentable = morph_to()

    class ImageMapper(Mapper):
        __tablename__ = "images"

        id = mapped_column(int, primary_key=True)
        url = mapped_column(str)

        imageable = morph_to()

    class TagMapper(Mapper):
        __tablename__ = "tags"

        id = mapped_column(int, primary_key=True)
        name = mapped_column(str)

    classes = {
        "UserMapper": UserMapper,
        "PostMapper": PostMapper,
        "ProfileMapper": ProfileMapper,
        "RoleMapper": RoleMapper,
        "CommentMapper": CommentMapper,
        "ImageMapper": ImageMapper,
        "TagMapper": TagMapper,
    }
    return SimpleNamespace(
        users=UserMapper(executor, registry=registry),
        posts=PostMapper(executor, registry=registry),
        profiles=ProfileMapper(executor, registry=registry),
        roles=RoleMapper(executor, registry=registry),
        comments=CommentMapper(executor, registry=registry),
        images=ImageMapper(executor, registry=registry),
        tags=TagMapper(executor, registry=registry),
        **classes,
    )


@pytest.fixture
def seeded(schema, executor):
    """Schema with a small data set.

    Alice (1) wrote posts a1, a2 and has roles admin, editor; Bob (2) wrote
    b1 and has role editor; Carol (3) has nothing.
    """
    executor.seed(
        "users",
        {"id": 1, "name": "Alice", "email": "alice@example.com", "age": 30, "active": True},
        {"id": 2, "name": "Bob", "email": "bob@example.com", "age": 25, "active": True},
        {"id": 3, "name": "Carol", "email": None, "age": 41, "active": False},
    )
    executor.seed(
        "posts",
        {"id": 1, "title": "a1", "author_id": 1},
        {"id": 2, "title": "a2", "author_id": 1},
        {"id": 3, "title": "b1", "author_id": 2},
    )
    executor.seed("profiles", {"id": 1, "user_id": 1, "bio": "Alice's bio"})
    executor.seed(
        "roles",
        {"id": 1, "name": "admin"},
        {"id": 2, "name": "editor"},
        {"id": 3, "name": "viewer"},
        {"id": 4, "name": "guest"},
    )
    executor.seed(
        "role_user",
        {"user_id": 1, "role_id": 1, "granted_by": "root"},
        {"user_id": 1, "role_id": 2, "granted_by": "root"},
        {"user_id": 2, "role_id": 2, "granted_by": None},
    )
    return schema
