"""Tests for response parsing, the dev mock and the HTTP gateway client."""

import asyncio
import json
import unittest

import httpx

from app.core.exceptions import ExternalServiceError, MalformedResponseError
from app.services.bucket_tree import CATCH_ALL_NAME
from app.services.llm import (
    LLMClient,
    mock_map_batch,
    parse_json_from_content,
    validate_mapping_response,
)

TAXONOMY = [{"name": "Finance", "children": [{"name": "Banking", "children": []}]}]


class TestParseJson(unittest.TestCase):

    def test_plain_object(self):
        self.assertEqual(parse_json_from_content('{"mappings": []}'), {"mappings": []})

    def test_fenced_block(self):
        content = '```json\n{"mappings": [{"value": "a", "path": ["X"]}]}\n```'
        self.assertEqual(parse_json_from_content(content)["mappings"][0]["value"], "a")

    def test_object_inside_prose(self):
        content = 'Sure! Here you go: {"mappings": [{"value": "a}b", "path": ["X"]}]} Hope it helps.'
        self.assertEqual(parse_json_from_content(content)["mappings"][0]["value"], "a}b")

    def test_array(self):
        self.assertEqual(parse_json_from_content('Result: [{"name": "Finance"}]'), [{"name": "Finance"}])

    def test_malformed(self):
        with self.assertRaises(MalformedResponseError):
            parse_json_from_content("no json here")
        with self.assertRaises(MalformedResponseError):
            parse_json_from_content('{"mappings": [')

    def test_validate_mapping_response(self):
        self.assertEqual(validate_mapping_response({"mappings": []}), {"mappings": []})
        for bad in ([], {"mappings": {}}, {"other": []}, None):
            with self.assertRaises(MalformedResponseError):
                validate_mapping_response(bad)


class TestMockClassifier(unittest.TestCase):

    def test_similar_value_maps_to_node_path(self):
        result = mock_map_batch(["Retail Banking Services"], TAXONOMY)
        self.assertEqual(result["mappings"][0]["path"], ["Finance", "Banking"])

    def test_unrelated_value_goes_to_catch_all(self):
        result = mock_map_batch(["zzzz"], TAXONOMY)
        self.assertEqual(result["mappings"][0], {"value": "zzzz", "path": [CATCH_ALL_NAME]})

    def test_empty_taxonomy(self):
        result = mock_map_batch(["Anything"], [])
        self.assertEqual(result["mappings"][0]["path"], [CATCH_ALL_NAME])

    def test_mock_client(self):
        async def go():
            async with LLMClient(base_url="") as llm:
                self.assertTrue(llm.is_mock)
                proposal = await llm.propose_taxonomy(
                    "Industry",
                    [{"value": "Finance > Banking", "count": 3}, {"value": "Tech", "count": 1}],
                    guide=[{"name": "Guide"}],
                )
                mapped = await llm.map_batch("Industry", ["Banking"], TAXONOMY)
            return proposal, mapped

        proposal, mapped = asyncio.run(go())
        names = [node["name"] for node in proposal]
        self.assertEqual(names[0], "Guide")
        self.assertIn("Finance", names)
        self.assertEqual(mapped["mappings"][0]["path"], ["Finance", "Banking"])


def gateway(handler):
    return LLMClient(base_url="http://llm.test", model="test-model", transport=httpx.MockTransport(handler))


class TestGatewayClient(unittest.TestCase):

    def test_map_batch_parses_fenced_completion(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            body = '```json\n{"mappings": [{"value": "Acme", "path": ["Finance"]}]}\n```'
            return httpx.Response(200, json={"response": body})

        async def go():
            async with gateway(handler) as llm:
                return await llm.map_batch("Company", ["Acme"], TAXONOMY)

        result = asyncio.run(go())
        self.assertEqual(result["mappings"][0]["path"], ["Finance"])
        self.assertEqual(seen["path"], "/api/generate")
        self.assertEqual(seen["body"]["model"], "test-model")
        self.assertFalse(seen["body"]["stream"])
        self.assertIn("Acme", seen["body"]["prompt"])

    def test_gateway_error_raises(self):
        async def go():
            async with gateway(lambda request: httpx.Response(500, text="boom")) as llm:
                await llm.map_batch("Company", ["Acme"], TAXONOMY)

        with self.assertRaises(ExternalServiceError) as ctx:
            asyncio.run(go())
        self.assertEqual(ctx.exception.details.get("status_code"), 500)

    def test_missing_mappings_is_malformed(self):
        async def go():
            async with gateway(lambda request: httpx.Response(200, json={"response": '{"foo": 1}'})) as llm:
                await llm.map_batch("Company", ["Acme"], TAXONOMY)

        with self.assertRaises(MalformedResponseError):
            asyncio.run(go())

    def test_propose_failure_returns_empty(self):
        async def go():
            async with gateway(lambda request: httpx.Response(503, text="busy")) as llm:
                return await llm.propose_taxonomy("Industry", [{"value": "Tech", "count": 1}])

        self.assertEqual(asyncio.run(go()), [])

    def test_propose_unwraps_buckets_object(self):
        payload = json.dumps({"buckets": [{"name": "Finance", "children": []}]})

        async def go():
            async with gateway(lambda request: httpx.Response(200, json={"response": payload})) as llm:
                return await llm.propose_taxonomy("Industry", [{"value": "Bank", "count": 1}])

        self.assertEqual(asyncio.run(go()), [{"name": "Finance", "children": []}])


if __name__ == "__main__":
    unittest.main()
