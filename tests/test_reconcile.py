import unittest

from ddlsync.errors import UnsupportedDialectError
from ddlsync.mapping import DatabaseMap
from ddlsync.model import (
    Column,
    ForeignKey,
    ForeignKeyColumn,
    Index,
    Insert,
    InsertColumn,
    PrimaryKey,
    Schema,
    Table,
    ValueKind,
)
from ddlsync.reconcile import coalesce_alter_statements, diff
from ddlsync.serializer import serialize

ID = Column("id", "integer", nullable=False)
NAME = Column("name", "varchar", size=50, nullable=False)


def table(*columns: Column, pk: tuple[str, ...] | None = ("id",), name: str = "t", group: str | None = None) -> Table:
    return Table(name, columns, PrimaryKey(pk) if pk else None, group=group)


def fk(*columns: tuple[str, str], name: str = "fk_address_person") -> ForeignKey:
    return ForeignKey(name, "address", "person", tuple(ForeignKeyColumn(a, b) for a, b in columns))


def full_model() -> Schema:
    person = Table(
        "person",
        (Column("id", "integer", nullable=False, auto_increment=True), NAME),
        PrimaryKey(("id",)),
    )
    address = Table(
        "address",
        (ID, Column("person_id", "integer"), Column("owner_id", "integer")),
        PrimaryKey(("id",)),
    )
    return Schema(
        [
            person,
            Index("person_name", "person", ("name",), unique=True),
            address,
            fk(("person_id", "id")),
            Insert("person", (InsertColumn("id", ValueKind.LITERAL, "1"),), ("id",)),
        ]
    )


class TestDiff(unittest.TestCase):
    def test_identical_models_produce_nothing(self) -> None:
        for dialect in ("mysql", "pgsql"):
            with self.subTest(dialect=dialect):
                self.assertEqual(
                    diff(
                        full_model(),
                        full_model(),
                        allow_drop_table=True,
                        allow_drop_column=True,
                        allow_drop_index=True,
                        dialect=dialect,
                    ),
                    [],
                )

    def test_add_column_mysql(self) -> None:
        old = Schema([table(ID, NAME)])
        new = Schema([table(ID, NAME, Column("email", "varchar", size=50, nullable=False))])
        self.assertEqual(
            diff(old, new, dialect="mysql"),
            ["alter table t add column email varchar(50) not null default '' after name"],
        )

    def test_add_column_pgsql_has_no_position(self) -> None:
        old = Schema([table(ID, NAME)])
        new = Schema([table(ID, NAME, Column("email", "varchar", size=50, nullable=False))])
        self.assertEqual(
            diff(old, new, dialect="pgsql", local_schema="app"),
            ["alter table app.t add column email varchar(50) not null default ''"],
        )

    def test_added_columns_are_coalesced(self) -> None:
        old = Schema([table(ID)])
        new = Schema([table(Column("a", "integer"), ID, Column("b", "integer"))])
        self.assertEqual(
            diff(old, new),
            ["alter table t add column a integer default NULL first, add column b integer default NULL after id"],
        )

    def test_drop_column_needs_permission(self) -> None:
        old = Schema([table(ID, NAME)])
        new = Schema([table(ID)])
        self.assertEqual(diff(old, new), [])
        self.assertEqual(diff(old, new, allow_drop_column=True), ["alter table t drop column name"])
        self.assertEqual(
            diff(old, new, allow_drop_column=True, dialect="pgsql"),
            ["alter table t drop column name cascade"],
        )

    def test_change_column_mysql(self) -> None:
        old = Schema([table(ID, NAME)])
        new = Schema([table(ID, Column("name", "varchar", size=100, nullable=False))])
        self.assertEqual(
            diff(old, new),
            ["alter table t change column name name varchar(100) not null default '' after id"],
        )

    def test_change_column_pgsql(self) -> None:
        old = Schema([table(ID, Column("name", "varchar", size=50))])
        new = Schema([table(ID, Column("name", "varchar", size=100, nullable=False))])
        self.assertEqual(
            diff(old, new, dialect="pgsql"),
            [
                "alter table t alter column name type varchar(100), alter column name set not null, "
                "alter column name set default ''"
            ],
        )

    def test_binary_family_change_is_not_a_pgsql_type_change(self) -> None:
        old = Schema([table(ID, Column("b", "binary", size=16))])
        new = Schema([table(ID, Column("b", "blob"))])
        self.assertEqual(diff(old, new, dialect="pgsql"), [])
        self.assertEqual(diff(old, new, dialect="mysql"), ["alter table t change column b b longblob default NULL after id"])

    def test_pgsql_auto_increment_creates_sequence(self) -> None:
        old = Schema([table(ID)])
        new = Schema([table(Column("id", "integer", nullable=False, auto_increment=True))])
        self.assertEqual(
            diff(old, new, dialect="pgsql"),
            [
                "create sequence if not exists t_autoInc_seq",
                "alter table t alter column id set default nextval('t_autoInc_seq')",
            ],
        )

    def test_pgsql_added_auto_increment_column_creates_sequence(self) -> None:
        code = Column("code", "varchar", size=10, nullable=False)
        old = Schema([table(code, pk=("code",))])
        new = Schema([table(Column("id", "integer", nullable=False, auto_increment=True), code)])
        self.assertEqual(
            diff(old, new, dialect="pgsql"),
            [
                "create sequence if not exists t_autoInc_seq",
                "alter table t add column id integer not null default nextval('t_autoInc_seq'), "
                "drop constraint if exists t_pkey, add primary key (id)",
            ],
        )

    def test_pgsql_dropped_auto_increment_column_drops_sequence(self) -> None:
        code = Column("code", "varchar", size=10, nullable=False)
        old = Schema([table(Column("id", "integer", nullable=False, auto_increment=True), code)])
        new = Schema([table(code, pk=("code",))])
        self.assertEqual(
            diff(old, new, allow_drop_column=True, dialect="pgsql"),
            [
                "alter table t drop column id cascade",
                "drop sequence if exists t_autoInc_seq",
                "alter table t drop constraint if exists t_pkey, add primary key (code)",
            ],
        )
        self.assertNotIn("sequence", " ".join(diff(old, new, allow_drop_column=True, dialect="mysql")))

    def test_pgsql_auto_increment_turned_off_drops_sequence(self) -> None:
        old = Schema([table(Column("id", "integer", nullable=False, auto_increment=True))])
        new = Schema([table(ID)])
        self.assertEqual(
            diff(old, new, dialect="pgsql"),
            ["alter table t alter column id set default 0", "drop sequence if exists t_autoInc_seq"],
        )

    def test_primary_key_changes(self) -> None:
        old = Schema([table(ID, NAME)])
        new = Schema([table(ID, NAME, pk=("id", "name"))])
        self.assertEqual(diff(old, new), ["alter table t drop primary key, add primary key (id, name)"])
        self.assertEqual(
            diff(old, new, dialect="pgsql"),
            ["alter table t drop constraint if exists t_pkey, add primary key (id, name)"],
        )
        self.assertEqual(diff(old, Schema([table(ID, NAME, pk=None)])), ["alter table t drop primary key"])
        self.assertEqual(diff(Schema([table(ID, NAME, pk=None)]), old), ["alter table t add primary key (id)"])

    def test_removed_tables_need_permission(self) -> None:
        old = Schema([table(ID), table(ID, name="gone")])
        new = Schema([table(ID)])
        self.assertEqual(diff(old, new), [])
        self.assertEqual(
            diff(old, new, allow_drop_table=True),
            ["drop table if exists gone", "drop view if exists gone"],
        )
        self.assertEqual(
            diff(old, new, allow_drop_table=True, dialect="pgsql"),
            ["drop table if exists gone", "drop view if exists gone", "drop sequence if exists gone_autoInc_seq"],
        )

    def test_added_table_is_created_before_its_foreign_keys(self) -> None:
        model = full_model()
        old = model.restrict_to(["person"])
        statements = diff(old, model)
        created = serialize(model.restrict_to(["address"]), "mysql")
        self.assertEqual(statements[:-1], created[:-1])
        self.assertEqual(
            statements[-1],
            "alter table address add constraint fk_address_person foreign key (person_id) references person (id)",
        )

    def test_new_index_on_existing_table(self) -> None:
        old = Schema([table(ID, NAME)])
        new = Schema([table(ID, NAME), Index("t_name", "t", ("name",))])
        self.assertEqual(diff(old, new), ["create index t_name on t (name)"])

    def test_changed_index_is_dropped_once(self) -> None:
        old = Schema([table(ID, NAME), Index("t_name", "t", ("name",))])
        new = Schema([table(ID, NAME), Index("t_name", "t", ("name",), unique=True)])
        expected = ["drop index t_name on t", "create unique index t_name on t (name)"]
        self.assertEqual(diff(old, new), expected)
        self.assertEqual(diff(old, new, allow_drop_index=True), expected)
        self.assertEqual(
            diff(old, new, dialect="pgsql", local_schema="app"),
            ["drop index app.t_name", "create unique index t_name on app.t (name)"],
        )

    def test_removed_index_needs_permission(self) -> None:
        old = Schema([table(ID, NAME), Index("t_name", "t", ("name",))])
        new = Schema([table(ID, NAME)])
        self.assertEqual(diff(old, new), [])
        self.assertEqual(diff(old, new, allow_drop_index=True), ["drop index t_name on t"])
        self.assertEqual(diff(old, new, allow_drop_index=True, dialect="pgsql"), ["drop index t_name"])

    def test_changed_foreign_key_is_recreated(self) -> None:
        old = full_model()
        new = Schema(
            [e for e in old.entities if not isinstance(e, ForeignKey)] + [fk(("owner_id", "id"))]
        )
        self.assertEqual(
            diff(old, new),
            [
                "alter table address drop foreign key fk_address_person, add constraint fk_address_person "
                "foreign key (owner_id) references person (id)"
            ],
        )
        self.assertEqual(
            diff(old, new, dialect="pgsql", allow_drop_index=True),
            [
                "alter table address drop constraint fk_address_person, add constraint fk_address_person "
                "foreign key (owner_id) references person (id)"
            ],
        )

    def test_mysql_foreign_key_index_is_left_to_the_key(self) -> None:
        model = full_model()
        old = Schema(model.entities + [Index("fk_address_person", "address", ("person_id",))])
        self.assertEqual(diff(old, model, allow_drop_index=True), [])

        changed = Schema(
            [e for e in model.entities if not isinstance(e, ForeignKey)] + [fk(("owner_id", "id"))]
        )
        self.assertEqual(
            diff(old, changed, allow_drop_index=True),
            [
                "alter table address drop foreign key fk_address_person",
                "drop index fk_address_person on address",
                "alter table address add constraint fk_address_person foreign key (owner_id) references person (id)",
            ],
        )

    def test_mapped_table_only_rebuilds_view(self) -> None:
        mapping = DatabaseMap("group:security:otherdb")
        old = Schema([table(ID, Column("name", "varchar", size=50), group="security")])
        resized = Schema([table(ID, Column("name", "varchar", size=80), group="security")])
        self.assertEqual(
            diff(old, resized, mapping=mapping),
            ["drop table if exists t", "create or replace view t as select * from otherdb.t"],
        )

        defaulted = Schema([table(ID, Column("name", "varchar", size=50, default="x"), group="security")])
        self.assertEqual(diff(old, defaulted, mapping=mapping), [])
        self.assertEqual(
            diff(old, defaulted),
            ["alter table t change column name name varchar(50) default 'x' after id"],
        )

    def test_inputs_are_not_modified(self) -> None:
        old = full_model()
        new = Schema(list(old.entities[:2]))
        before = list(old.entities)
        diff(old, new, allow_drop_table=True, allow_drop_index=True, allow_drop_column=True)
        self.assertEqual(old.entities, before)
        self.assertEqual(len(new), 2)

    def test_unsupported_dialect_is_rejected(self) -> None:
        with self.assertRaises(UnsupportedDialectError):
            diff(Schema(), Schema(), dialect="oracle")


class TestCoalesce(unittest.TestCase):
    def test_runs_on_the_same_table_merge(self) -> None:
        statements = [
            "alter table t add x",
            "alter table t add y",
            "alter table u add z",
            "insert into u (z) values (1)",
            "alter table u add w",
        ]
        self.assertEqual(
            coalesce_alter_statements(statements),
            ["alter table t add x, add y", "alter table u add z", "insert into u (z) values (1)", "alter table u add w"],
        )

    def test_length_bound_splits_runs(self) -> None:
        statements = ["alter table t add column a", "alter table t add column b", "alter table t add column c"]
        result = coalesce_alter_statements(statements, max_length=40)
        self.assertEqual(result, ["alter table t add column a, add column b", "alter table t add column c"])
        self.assertTrue(all(len(s) <= 40 for s in result))

    def test_diff_honours_max_statement_length(self) -> None:
        old = Schema([table(ID)])
        new = Schema([table(ID, *(Column(f"c{i}", "integer") for i in range(20)))])
        merged = diff(old, new)
        self.assertEqual(len(merged), 1)
        split = diff(old, new, max_statement_length=200)
        self.assertGreater(len(split), 1)
        self.assertTrue(all(len(s) <= 200 for s in split))
        self.assertEqual(", ".join(split).count("add column"), 20)

    def test_empty(self) -> None:
        self.assertEqual(coalesce_alter_statements([]), [])


if __name__ == "__main__":
    unittest.main()
