import unittest

from sqlalchemy import (
    Column,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from model_state import collect_foreign_keys_by_table, collect_tables, compute_current_state
from schema_state import ColumnState, ForeignKeyState, IndexFieldState, IndexState, SchemaValidationError


NAMING = {
    "fk": "fk_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ix": "ix_%(table_name)s_%(column_0_name)s",
}


def users_metadata() -> MetaData:
    metadata = MetaData()
    Table(
        "orgs",
        metadata,
        Column("id", Integer, primary_key=True),
    )
    users = Table(
        "users",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("name", String(64), nullable=False),
        Column("bio", Text),
        Column("org_id", Integer),
        ForeignKeyConstraint(["org_id"], ["orgs.id"], name="fk_users_org", ondelete="set null"),
    )
    Index("idx_users_name", users.c.name, unique=True, mysql_length={"name": 16}, mysql_using="btree", info={"comment": "by name"})
    return metadata


class TestComputeCurrentState(unittest.TestCase):
    def test_core_tables(self) -> None:
        state = compute_current_state([users_metadata()])
        self.assertEqual(sorted(state.tables), ["orgs", "users"])

        users = state.tables["users"]
        self.assertEqual(users.primary_keys, ("id",))
        self.assertEqual(users.columns["id"], ColumnState("INTEGER NOT NULL AUTO_INCREMENT"))
        self.assertEqual(users.columns["name"], ColumnState("VARCHAR(64) NOT NULL"))
        self.assertEqual(users.columns["bio"], ColumnState("TEXT"))
        self.assertEqual(users.columns["org_id"], ColumnState("INTEGER"))
        self.assertEqual(
            users.indexes["idx_users_name"],
            IndexState(
                index_class="UNIQUE",
                index_type="btree",
                comment="by name",
                fields=(IndexFieldState(column="name", length=16),),
            ),
        )
        self.assertEqual(
            users.foreign_keys,
            {"fk_users_org": ForeignKeyState(("org_id",), "orgs", ("id",), on_delete="SET NULL")},
        )
        self.assertEqual(state.tables["orgs"].foreign_keys, {})

    def test_table_and_metadata_inputs_agree(self) -> None:
        metadata = users_metadata()
        self.assertEqual(
            compute_current_state([metadata]),
            compute_current_state([metadata.tables["users"], metadata.tables["orgs"]]),
        )

    def test_index_sort_collate_and_expressions(self) -> None:
        metadata = MetaData()
        posts = Table(
            "posts",
            metadata,
            Column("id", Integer, primary_key=True),
            Column("slug", String(128)),
            Column("body", Text),
            Column("created", Integer),
        )
        Index("idx_posts_slug", posts.c.slug.collate("utf8mb4_bin"), posts.c.created.desc())
        Index("idx_posts_lower_slug", func.lower(posts.c.slug))
        Index("idx_posts_body", posts.c.body, mysql_prefix="FULLTEXT", mysql_with_parser="ngram")

        indexes = compute_current_state([metadata]).tables["posts"].indexes
        self.assertEqual(
            indexes["idx_posts_slug"].fields,
            (
                IndexFieldState(column="slug", collate="utf8mb4_bin"),
                IndexFieldState(column="created", sort="DESC"),
            ),
        )
        self.assertEqual(indexes["idx_posts_lower_slug"].fields, (IndexFieldState(expression="(lower(slug))"),))
        self.assertEqual(indexes["idx_posts_body"].index_class, "FULLTEXT")
        self.assertEqual(indexes["idx_posts_body"].option, "WITH PARSER ngram")

    def test_unique_constraint_is_a_unique_index(self) -> None:
        metadata = MetaData()
        Table(
            "accounts",
            metadata,
            Column("id", Integer, primary_key=True),
            Column("email", String(255)),
            Column("tenant", String(32)),
            UniqueConstraint("tenant", "email", name="uq_accounts_email"),
        )
        table = compute_current_state([metadata]).tables["accounts"]
        self.assertEqual(
            table.indexes["uq_accounts_email"],
            IndexState(index_class="UNIQUE", fields=(IndexFieldState(column="tenant"), IndexFieldState(column="email"))),
        )

    def test_partial_index_is_rejected(self) -> None:
        metadata = MetaData()
        t = Table("t", metadata, Column("id", Integer, primary_key=True), Column("x", Integer))
        Index("idx_t_x", t.c.x, sqlite_where=t.c.x > 5)
        with self.assertRaises(SchemaValidationError) as ctx:
            compute_current_state([metadata])
        self.assertIn("unsupported for MySQL migrations", str(ctx.exception))

    def test_unnamed_foreign_key_is_rejected(self) -> None:
        metadata = MetaData()
        Table("parents", metadata, Column("id", Integer, primary_key=True))
        Table("children", metadata, Column("id", Integer, primary_key=True), Column("parent_id", Integer, ForeignKey("parents.id")))
        with self.assertRaises(SchemaValidationError) as ctx:
            compute_current_state([metadata])
        self.assertIn("unnamed foreign key", str(ctx.exception))

    def test_varchar_without_length_is_rejected(self) -> None:
        metadata = MetaData()
        Table("t", metadata, Column("id", Integer, primary_key=True), Column("name", String()))
        with self.assertRaises(SchemaValidationError):
            compute_current_state([metadata])

    def test_unsupported_model_object(self) -> None:
        with self.assertRaises(SchemaValidationError):
            compute_current_state([object()])


class TestForeignKeys(unittest.TestCase):
    def parents_and(self, *constraints: ForeignKeyConstraint) -> dict[str, Table]:
        metadata = MetaData()
        Table("parents", metadata, Column("id", Integer, primary_key=True))
        Table(
            "children",
            metadata,
            Column("id", Integer, primary_key=True),
            Column("parent_id", Integer),
            Column("other_id", Integer),
            *constraints,
        )
        return collect_tables([metadata])

    def test_identical_constraints_keep_smallest_name(self) -> None:
        tables = self.parents_and(
            ForeignKeyConstraint(["parent_id"], ["parents.id"], name="fk_b", ondelete="CASCADE"),
            ForeignKeyConstraint(["parent_id"], ["parents.id"], name="fk_a", ondelete="cascade"),
        )
        self.assertEqual(
            collect_foreign_keys_by_table(tables)["children"],
            {"fk_a": ForeignKeyState(("parent_id",), "parents", ("id",), on_delete="CASCADE")},
        )

    def test_same_name_different_definition_conflicts(self) -> None:
        tables = self.parents_and(
            ForeignKeyConstraint(["parent_id"], ["parents.id"], name="fk_children_parent"),
            ForeignKeyConstraint(["other_id"], ["parents.id"], name="fk_children_parent"),
        )
        with self.assertRaises(SchemaValidationError) as ctx:
            collect_foreign_keys_by_table(tables)
        self.assertIn("conflicting foreign key definition", str(ctx.exception))

    def test_conflict_behind_a_collapsed_duplicate_is_caught(self) -> None:
        metadata = MetaData()
        Table("parents", metadata, Column("id", Integer, primary_key=True))
        Table("queues", metadata, Column("id", Integer, primary_key=True))
        Table(
            "children",
            metadata,
            Column("id", Integer, primary_key=True),
            Column("parent_id", Integer),
            ForeignKeyConstraint(["parent_id"], ["parents.id"], name="fk_a"),
            ForeignKeyConstraint(["parent_id"], ["parents.id"], name="fk_b"),
            ForeignKeyConstraint(["parent_id"], ["queues.id"], name="fk_b"),
        )
        with self.assertRaises(SchemaValidationError) as ctx:
            compute_current_state([metadata])
        self.assertIn("conflicting foreign key definition for `fk_b`", str(ctx.exception))


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING)


post_tags = Table(
    "post_tags",
    Base.metadata,
    Column("post_id", Integer, ForeignKey("posts.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(primary_key=True)
    label: Mapped[str] = mapped_column(String(64), unique=True)


class Post(Base):
    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(200), index=True)
    tags: Mapped[list[Tag]] = relationship(secondary=post_tags)


class TestDeclarativeModels(unittest.TestCase):
    def test_mapped_class_brings_association_table(self) -> None:
        state = compute_current_state([Post])
        self.assertEqual(sorted(state.tables), ["post_tags", "posts"])

        link = state.tables["post_tags"]
        self.assertEqual(link.primary_keys, ("post_id", "tag_id"))
        self.assertEqual(link.columns["post_id"], ColumnState("INTEGER NOT NULL"))
        self.assertEqual(
            link.foreign_keys,
            {
                "fk_post_tags_post_id": ForeignKeyState(("post_id",), "posts", ("id",), on_delete="CASCADE"),
                "fk_post_tags_tag_id": ForeignKeyState(("tag_id",), "tags", ("id",), on_delete="CASCADE"),
            },
        )

        posts = state.tables["posts"]
        self.assertEqual(posts.columns["title"], ColumnState("VARCHAR(200) NOT NULL"))
        self.assertEqual(posts.indexes["ix_posts_title"], IndexState(fields=(IndexFieldState(column="title"),)))

    def test_named_unique_column(self) -> None:
        tags = compute_current_state([Tag]).tables["tags"]
        self.assertEqual(
            tags.indexes,
            {"uq_tags_label": IndexState(index_class="UNIQUE", fields=(IndexFieldState(column="label"),))},
        )


if __name__ == "__main__":
    unittest.main()
