import unittest

from tools.catalog import (
    DEFAULT_TOOLS,
    DESTRUCTIVE_TOOLS,
    WRITE_TOOLS,
    ToolCatalog,
    ToolDefinition,
    ToolName,
)


class TestToolCatalog(unittest.TestCase):
    def setUp(self):
        self.catalog = ToolCatalog()

    def test_default_catalog_covers_every_tool_name(self):
        self.assertEqual(len(self.catalog), len(ToolName))
        self.assertEqual(set(self.catalog.names), {t.value for t in ToolName})

    def test_lookup_by_string_and_enum(self):
        self.assertIs(self.catalog.get("get_item"), self.catalog.get(ToolName.GET_ITEM))
        self.assertIsNone(self.catalog.get("format_disk"))
        self.assertIn("search_items", self.catalog)
        self.assertNotIn("format_disk", self.catalog)

    def test_duplicate_definitions_are_rejected(self):
        with self.assertRaises(ValueError):
            ToolCatalog(DEFAULT_TOOLS + (DEFAULT_TOOLS[0],))

    def test_destructive_tools_are_writes(self):
        self.assertTrue(DESTRUCTIVE_TOOLS <= WRITE_TOOLS)
        self.assertIn(ToolName.DELETE_ITEM, DESTRUCTIVE_TOOLS)
        self.assertNotIn(ToolName.SUMMARIZE_ITEM, WRITE_TOOLS)

    def test_summary_lists_each_tool(self):
        summary = self.catalog.to_tool_summary()
        lines = summary.splitlines()
        self.assertEqual(len(lines), len(ToolName))
        self.assertTrue(lines[0].startswith("- list_containers: "))

    def test_prompt_tools_include_instructions_and_parameters(self):
        text = self.catalog.to_prompt_tools()
        self.assertIn("<tool_call>", text)
        self.assertIn("- item_type: Type of item to create [note, url] (optional)", text)
        self.assertIn("(none)", text)

    def test_function_schemas_shape(self):
        schemas = self.catalog.to_function_schemas()
        create_item = next(s for s in schemas if s["function"]["name"] == "create_item")
        params = create_item["function"]["parameters"]
        self.assertEqual(create_item["type"], "function")
        self.assertEqual(params["type"], "object")
        self.assertEqual(params["required"], ["container_id", "title", "content"])
        self.assertEqual(params["properties"]["item_type"]["enum"], ["note", "url"])

    def test_restricted_catalog(self):
        catalog = ToolCatalog([ToolDefinition(ToolName.LIST_CONTAINERS, "List vaults.")])
        self.assertEqual(catalog.names, ["list_containers"])
        self.assertNotIn("get_item", catalog)


class TestValidateArguments(unittest.TestCase):
    def setUp(self):
        self.catalog = ToolCatalog()

    def test_valid_arguments(self):
        problems = self.catalog.validate_arguments(
            "create_item", {"container_id": "1", "title": "t", "content": "c"}
        )
        self.assertEqual(problems, [])

    def test_missing_required_argument(self):
        problems = self.catalog.validate_arguments("get_item", {})
        self.assertEqual(problems, ["Missing required argument 'item_id'"])

    def test_numeric_ids_are_accepted(self):
        self.assertEqual(self.catalog.validate_arguments("get_item", {"item_id": 42}), [])

    def test_wrong_type_is_reported(self):
        problems = self.catalog.validate_arguments("get_item", {"item_id": ["42"]})
        self.assertEqual(problems, ["Argument 'item_id' must be of type string"])

    def test_enum_is_enforced(self):
        problems = self.catalog.validate_arguments(
            "create_item",
            {"container_id": "1", "title": "t", "content": "c", "item_type": "video"},
        )
        self.assertEqual(problems, ["Argument 'item_type' must be one of: note, url"])

    def test_unknown_tool(self):
        self.assertEqual(self.catalog.validate_arguments("nope", {}), ["Unknown tool: nope"])
