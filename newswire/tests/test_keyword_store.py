import unittest

from newswire.db import (
    AlreadyExistsError,
    InMemoryDbClient,
    NotFoundError,
    PostgresDbClient,
)


class KeywordStoreBehaviour:
    """Shared keyword-cycle checks run against every DbClient implementation."""

    def make_db(self):
        raise NotImplementedError

    def setUp(self):
        self.db = self.make_db()
        self.project = self.db.create_project(
            1, "Energy", "", "renewable energy", project_limit=10
        )

    def add_with_searches(self, content, searches):
        keyword = self.db.add_keyword(self.project.id, content)
        for _ in range(searches):
            self.db.increment_keyword_searches(keyword.id)
        return keyword

    def test_add_normalizes_and_rejects_case_duplicates(self):
        keyword = self.db.add_keyword(self.project.id, "Foo")
        self.assertEqual(keyword.content, "foo")
        self.assertEqual(keyword.searches, 0)
        self.assertFalse(keyword.processed)
        self.assertTrue(keyword.visible)
        with self.assertRaises(AlreadyExistsError):
            self.db.add_keyword(self.project.id, "foo")

    def test_same_content_allowed_in_other_project(self):
        other = self.db.create_project(1, "Other", "", "other", project_limit=10)
        first = self.db.add_keyword(self.project.id, "solar")
        second = self.db.add_keyword(other.id, "solar")
        self.assertNotEqual(first.id, second.id)

    def test_add_to_missing_project(self):
        with self.assertRaises(NotFoundError):
            self.db.add_keyword(9999, "solar")

    def test_soft_delete_then_add_reactivates_same_row(self):
        keyword = self.db.add_keyword(self.project.id, "x")
        self.db.soft_delete_keyword(self.project.id, keyword.id)
        self.assertEqual(self.db.list_keywords(self.project.id), [])

        again = self.db.add_keyword(self.project.id, "X")
        self.assertEqual(again.id, keyword.id)
        self.assertTrue(again.visible)
        self.assertEqual([k.id for k in self.db.list_keywords(self.project.id)], [keyword.id])

    def test_soft_delete_wrong_project(self):
        other = self.db.create_project(1, "Other", "", "other", project_limit=10)
        keyword = self.db.add_keyword(self.project.id, "wind")
        with self.assertRaises(NotFoundError):
            self.db.soft_delete_keyword(other.id, keyword.id)
        with self.assertRaises(NotFoundError):
            self.db.soft_delete_keyword(self.project.id, 9999)

    def test_mark_processed_resets_after_last_keyword(self):
        k1 = self.add_with_searches("k1", 2)
        k2 = self.add_with_searches("k2", 1)

        updated, was_reset = self.db.mark_keyword_processed(k1.id)
        self.assertFalse(was_reset)
        self.assertTrue(updated.processed)
        self.assertEqual(self.db.get_keyword(k1.id).searches, 2)
        self.assertFalse(self.db.get_keyword(k2.id).processed)

        updated, was_reset = self.db.mark_keyword_processed(k2.id)
        self.assertTrue(was_reset)
        self.assertFalse(updated.processed)
        for keyword in self.db.list_keywords(self.project.id):
            self.assertFalse(keyword.processed)
            self.assertEqual(keyword.searches, 0)

    def test_hidden_keywords_do_not_block_reset(self):
        k1 = self.db.add_keyword(self.project.id, "k1")
        hidden = self.add_with_searches("hidden", 3)
        self.db.soft_delete_keyword(self.project.id, hidden.id)

        _, was_reset = self.db.mark_keyword_processed(k1.id)
        self.assertTrue(was_reset)
        self.assertEqual(self.db.get_keyword(hidden.id).searches, 3)

    def test_cycle_reset_never_fires_on_empty_project(self):
        keyword = self.db.add_keyword(self.project.id, "only")
        self.db.soft_delete_keyword(self.project.id, keyword.id)
        self.assertFalse(self.db.cycle_reset(self.project.id))

    def test_soft_deleting_last_unprocessed_keyword_does_not_reset(self):
        k1 = self.add_with_searches("k1", 1)
        k2 = self.db.add_keyword(self.project.id, "k2")
        self.db.mark_keyword_processed(k1.id)
        self.db.soft_delete_keyword(self.project.id, k2.id)

        keyword = self.db.get_keyword(k1.id)
        self.assertTrue(keyword.processed)
        self.assertEqual(keyword.searches, 1)

    def test_mark_processed_missing_keyword(self):
        with self.assertRaises(NotFoundError):
            self.db.mark_keyword_processed(9999)

    def test_select_top_for_search_orders_by_searches(self):
        for index, searches in enumerate([3, 1, 2, 0, 5]):
            self.add_with_searches(f"kw{index}", searches)

        top = self.db.select_top_for_search(self.project.id, 3)
        self.assertEqual([k.searches for k in top], [0, 1, 2])
        self.assertEqual([k.content for k in top], ["kw3", "kw1", "kw2"])

    def test_select_top_for_search_breaks_ties_by_id_and_ignores_processed(self):
        a = self.db.add_keyword(self.project.id, "a")
        b = self.db.add_keyword(self.project.id, "b")
        self.db.add_keyword(self.project.id, "c")
        self.db.mark_keyword_processed(a.id)

        top = self.db.select_top_for_search(self.project.id, 2)
        self.assertEqual([k.id for k in top], [a.id, b.id])


class InMemoryKeywordStoreTests(KeywordStoreBehaviour, unittest.TestCase):
    def make_db(self):
        return InMemoryDbClient()


class PostgresKeywordStoreTests(KeywordStoreBehaviour, unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres client logic.
    """

    def make_db(self):
        return PostgresDbClient("sqlite+pysqlite:///:memory:")


if __name__ == "__main__":
    unittest.main()
