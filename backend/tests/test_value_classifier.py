"""Tests for the exact -> fuzzy -> catch-all resolution cascade."""

import unittest

from app.services.taxonomy_builder import build_bucket_tree
from app.services.value_classifier import ValueClassifier


class TestValueClassifier(unittest.TestCase):

    def setUp(self):
        self.tree, self.exact_map = build_bucket_tree(
            [
                {"name": "Finance", "children": [{"name": "Banking"}]},
                {"name": "Tech", "children": [{"name": "Soft"}]},
                {"name": "Software"},
            ]
        )
        self.classifier = ValueClassifier(self.tree, self.exact_map)

    def names(self, resolution):
        return [n.name for n in resolution.path]

    def test_fuzzy_match_value_contains_bucket_name(self):
        resolution = self.classifier.resolve("Retail Banking Services")
        self.assertEqual(resolution.source, "fuzzy")
        self.assertEqual(self.names(resolution), ["Finance", "Banking"])

    def test_fuzzy_match_bucket_name_contains_value(self):
        resolution = self.classifier.resolve("bank")
        self.assertEqual(resolution.source, "fuzzy")
        self.assertEqual(resolution.target.name, "Banking")

    def test_fuzzy_tie_break_is_preorder(self):
        # "Soft" (under Tech) precedes the "Software" root in pre-order
        resolution = self.classifier.resolve("Software Inc")
        self.assertEqual(self.names(resolution), ["Tech", "Soft"])

    def test_exact_map_wins_over_fuzzy(self):
        software = self.tree.find_by_name_path(["Software"])
        self.exact_map["Software Inc"] = self.tree.find_path(software.id)
        resolution = self.classifier.resolve("  Software Inc ")
        self.assertEqual(resolution.source, "exact")
        self.assertIs(resolution.target, software)

    def test_unmatched_value_goes_to_catch_all(self):
        resolution = self.classifier.resolve("Agriculture")
        self.assertEqual(resolution.source, "catch_all")
        self.assertIs(resolution.target, self.tree.catch_all)

    def test_catch_all_is_never_a_fuzzy_candidate(self):
        resolution = self.classifier.resolve("general")
        self.assertEqual(resolution.source, "catch_all")

    def test_empty_value_goes_to_catch_all(self):
        self.assertIs(self.classifier.resolve("   ").target, self.tree.catch_all)
        self.assertIs(self.classifier.resolve("").target, self.tree.catch_all)

    def test_resolution_is_idempotent(self):
        first = self.classifier.resolve("Online Banking")
        second = self.classifier.resolve("Online Banking")
        self.assertIs(first.target, second.target)
        self.assertEqual(first.path, second.path)
        fresh = ValueClassifier(self.tree, self.exact_map).resolve("Online Banking")
        self.assertIs(fresh.target, first.target)

    def test_invalidate_picks_up_new_nodes(self):
        self.assertEqual(self.classifier.resolve("Agritech").target.name, "Tech")
        self.tree.find_or_create_path(["Agri"])
        self.assertEqual(self.classifier.resolve("Agritech").target.name, "Tech")
        self.classifier.invalidate()
        self.assertEqual(self.classifier.resolve("Agritech").target.name, "Tech")
        self.assertEqual(self.classifier.resolve("Agriculture").target.name, "Agri")


if __name__ == "__main__":
    unittest.main()
