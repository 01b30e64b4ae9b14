"""Tests for turning taxonomies into bucket trees."""

import unittest

from app.schemas.requests import TaxonomyNodeIn
from app.services.bucket_tree import CATCH_ALL_NAME
from app.services.taxonomy_builder import (
    build_bucket_tree,
    deterministic_taxonomy,
    heuristic_taxonomy,
    seed_name_matches,
    sorted_by_count,
    strip_catch_all,
)


class TestBuildBucketTree(unittest.TestCase):

    def setUp(self):
        self.taxonomy = [
            {
                "name": "Finance",
                "description": "Money things",
                "isAiSuggested": False,
                "children": [
                    {"name": "Banking", "children": [{"name": "Retail", "children": []}]},
                    {"name": "Insurance", "children": [], "isAiSuggested": True},
                ],
            },
            {"name": "Health", "children": []},
        ]

    def test_prepends_catch_all_and_computes_depths(self):
        tree, exact_map = build_bucket_tree(self.taxonomy)
        self.assertEqual([r.name for r in tree.roots], [CATCH_ALL_NAME, "Finance", "Health"])
        depths = {n.name: n.depth for n in tree.walk()}
        self.assertEqual(depths, {CATCH_ALL_NAME: 0, "Finance": 0, "Banking": 1, "Retail": 2, "Insurance": 1, "Health": 0})
        self.assertEqual(exact_map, {})
        self.assertEqual(tree.check_invariants(), [])

    def test_fresh_ids_and_zero_counts(self):
        tree_a, _ = build_bucket_tree(self.taxonomy)
        tree_b, _ = build_bucket_tree(self.taxonomy)
        ids_a = {n.id for n in tree_a.walk()}
        ids_b = {n.id for n in tree_b.walk()}
        self.assertEqual(len(ids_a), len(tree_a))
        self.assertFalse(ids_a & ids_b)
        self.assertTrue(all(n.row_count == 0 and n.row_indices == [] for n in tree_a.walk()))

    def test_keeps_description_and_suggestion_flag(self):
        tree, _ = build_bucket_tree(self.taxonomy)
        finance = tree.find_by_name_path(["Finance"])
        self.assertEqual(finance.description, "Money things")
        self.assertTrue(tree.find_by_name_path(["Finance", "Insurance"]).is_ai_suggested)

    def test_accepts_request_models(self):
        nodes = [TaxonomyNodeIn.model_validate(n) for n in self.taxonomy]
        tree, _ = build_bucket_tree(nodes)
        self.assertIsNotNone(tree.find_by_name_path(["Finance", "Banking", "Retail"]))

    def test_merges_case_insensitive_siblings(self):
        tree, _ = build_bucket_tree(
            [
                {"name": "Finance", "children": [{"name": "Banking"}]},
                {"name": "FINANCE", "children": [{"name": "banking"}, {"name": "Loans"}]},
            ]
        )
        self.assertEqual([r.name for r in tree.roots], [CATCH_ALL_NAME, "Finance"])
        finance = tree.roots[1]
        self.assertEqual([c.name for c in finance.children], ["Banking", "Loans"])
        self.assertEqual(finance.children_count, 2)

    def test_missing_name_becomes_literal_string(self):
        tree, _ = build_bucket_tree([{"children": []}])
        self.assertEqual(tree.roots[1].name, "None")

    def test_aliases_fill_exact_map(self):
        tree, exact_map = build_bucket_tree(
            [{"name": "Finance", "children": [{"name": "Banking", "match": ["Acme Bank", " Big Bank "]}]}]
        )
        self.assertEqual([n.name for n in exact_map["Acme Bank"]], ["Finance", "Banking"])
        self.assertIn("Big Bank", exact_map)

    def test_empty_taxonomy_yields_only_catch_all(self):
        tree, _ = build_bucket_tree([])
        self.assertEqual(len(tree), 1)
        self.assertIs(tree.roots[0], tree.catch_all)


class TestSeedingAndProposals(unittest.TestCase):

    def test_seed_name_matches_is_case_insensitive_and_keeps_existing(self):
        tree, exact_map = build_bucket_tree([{"name": "Finance", "children": [{"name": "Banking"}]}])
        exact_map["Finance"] = [tree.catch_all]
        added = seed_name_matches(tree, exact_map, ["banking", "Finance", "Other", ""])
        self.assertEqual(added, 1)
        self.assertEqual(exact_map["banking"][-1].name, "Banking")
        self.assertIs(exact_map["Finance"][0], tree.catch_all)
        self.assertNotIn("Other", exact_map)

    def test_sorted_by_count_is_stable(self):
        self.assertEqual(sorted_by_count({"a": 1, "b": 3, "c": 1}), [("b", 3), ("a", 1), ("c", 1)])

    def test_deterministic_taxonomy_takes_most_frequent(self):
        taxonomy = deterministic_taxonomy({"x": 1, "y": 5, "z": 3}, limit=2)
        self.assertEqual([n["name"] for n in taxonomy], ["y", "z"])
        self.assertEqual(taxonomy[0]["match"], ["y"])

    def test_heuristic_taxonomy_splits_delimited_values(self):
        taxonomy = heuristic_taxonomy({"Finance > Banking": 3, "finance | Loans": 1, "Health": 2, "Finance/Banking": 1})
        self.assertEqual([n["name"] for n in taxonomy], ["Finance", "Health"])
        self.assertEqual([c["name"] for c in taxonomy[0]["children"]], ["Banking", "Loans"])

    def test_strip_catch_all(self):
        nodes = [{"name": CATCH_ALL_NAME.lower()}, {"name": "Finance"}]
        self.assertEqual(strip_catch_all(nodes), [{"name": "Finance"}])

    def test_confirmed_catch_all_keeps_no_children(self):
        tree, exact_map = build_bucket_tree(
            [{"name": CATCH_ALL_NAME, "children": [{"name": "Misc"}], "match": ["n/a"]}, {"name": "Finance"}]
        )
        self.assertEqual([r.name for r in tree.roots], [CATCH_ALL_NAME, "Finance"])
        self.assertEqual(tree.catch_all.children, [])
        self.assertEqual(exact_map["n/a"], [tree.catch_all])


if __name__ == "__main__":
    unittest.main()
