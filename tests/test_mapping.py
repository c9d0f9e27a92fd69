import unittest

from ddlsync.errors import ConfigurationError
from ddlsync.mapping import DatabaseMap, resolve_database


class TestDatabaseMap(unittest.TestCase):
    def test_table_rule_overrides_group_rule(self) -> None:
        mapping = DatabaseMap("group:security:common,appuserrole:")
        self.assertEqual(mapping.resolve("security", "appuser"), "common")
        self.assertIsNone(mapping.resolve("security", "appuserrole"))
        self.assertIsNone(mapping.resolve("billing", "invoice"))
        self.assertIsNone(mapping.resolve(None, "invoice"))

    def test_table_rule_without_group(self) -> None:
        mapping = DatabaseMap("invoice:billing")
        self.assertEqual(mapping.resolve(None, "invoice"), "billing")
        self.assertEqual(mapping.resolve("sales", "invoice"), "billing")

    def test_whitespace_is_ignored(self) -> None:
        mapping = DatabaseMap(" group : security : common , invoice : billing ")
        self.assertEqual(mapping.resolve("security", "appuser"), "common")
        self.assertEqual(mapping.resolve(None, "invoice"), "billing")

    def test_all_target_databases_are_distinct_and_ordered(self) -> None:
        mapping = DatabaseMap("group:a:db1,t1:db2,t2:db1,t3:")
        self.assertEqual(mapping.all_target_databases, ["db1", "db2"])

    def test_empty_mapping(self) -> None:
        mapping = DatabaseMap("")
        self.assertEqual(mapping.table_maps, {})
        self.assertEqual(mapping.group_maps, {})
        self.assertIsNone(resolve_database(mapping, "g", "t"))
        self.assertIsNone(resolve_database(None, "g", "t"))

    def test_malformed_rules(self) -> None:
        cases = {
            ":db": "Missing table name",
            "grp:security:db": 'Missing "group" keyword',
            "group::db": "Missing group name",
            "a:b:c:d": "Mal-formed mapping",
            "justatable": "Mal-formed mapping",
        }
        for config, message in cases.items():
            with self.subTest(config=config):
                with self.assertRaisesRegex(ConfigurationError, message):
                    DatabaseMap(config)


if __name__ == "__main__":
    unittest.main()
