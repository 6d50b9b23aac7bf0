import json
import unittest

from query_engine.core.errors import MalformedRequestError
from query_engine.services.request_parsing import (
    FORMAT_DATA_TABLE,
    FORMAT_ROW_WINDOW,
    FORMAT_SIMPLE,
    canonical_operator,
    detect_format,
    natural_response_format,
    parse_request,
    sanitize_field_name,
)


class FormatDetectionTests(unittest.TestCase):
    def test_window_keys_win_over_json_models(self):
        params = {"startRow": "0", "endRow": "10", "filterModel": "{}", "page": "2"}
        self.assertEqual(detect_format(params).name, FORMAT_ROW_WINDOW)

    def test_json_models_select_data_table(self):
        self.assertEqual(detect_format({"sortModel": "[]", "page": "0"}).name, FORMAT_DATA_TABLE)

    def test_simple_keys_and_fallback(self):
        self.assertEqual(detect_format({"page": "1"}).name, FORMAT_SIMPLE)
        self.assertEqual(detect_format({"filter[status]": "active"}).name, FORMAT_SIMPLE)
        self.assertEqual(detect_format({}).name, FORMAT_SIMPLE)
        self.assertEqual(detect_format({"unrelated": "x"}).name, FORMAT_SIMPLE)

    def test_natural_response_formats(self):
        self.assertEqual(natural_response_format(parse_request({"startRow": "0", "endRow": "5"})), "row-model")
        self.assertEqual(natural_response_format(parse_request({"sortModel": "[]"})), "data-table")
        self.assertEqual(natural_response_format(parse_request({"cursor": "abc"})), "infinite-scroll")
        self.assertEqual(natural_response_format(parse_request({})), "standard")


class SimpleGrammarTests(unittest.TestCase):
    def test_flat_keys(self):
        draft = parse_request(
            {"page": "2", "pageSize": "10", "search": " drama ", "sortBy": "title", "sortDir": "DESC"}
        )
        self.assertEqual(draft.pagination.kind, "offset")
        self.assertEqual(draft.pagination.page, "2")
        self.assertEqual(draft.pagination.page_size, "10")
        self.assertEqual(draft.search.term, "drama")
        self.assertEqual([(s.field, s.direction) for s in draft.sort], [("title", "desc")])

    def test_aliases(self):
        draft = parse_request({"per_page": "5", "q": "noir", "sortBy": "rating", "sortOrder": "asc"})
        self.assertEqual(draft.pagination.page_size, "5")
        self.assertEqual(draft.search.term, "noir")
        self.assertEqual(draft.sort[0].direction, "asc")

    def test_multi_sort_string(self):
        draft = parse_request({"sort": "rating:desc,title"})
        self.assertEqual([(s.field, s.direction) for s in draft.sort], [("rating", "desc"), ("title", "asc")])

    def test_structured_filters_and_operator_aliases(self):
        draft = parse_request(
            {
                "filter[status]": "active",
                "filter[rating][gte]": "7",
                "filter[genre][in]": "Drama,Comedy",
                "filter[release_year][inRange]": "1990,2000",
            }
        )
        filters = {(f.field, f.operator): f.value for f in draft.filters}
        self.assertEqual(filters[("status", "equals")], "active")
        self.assertEqual(filters[("rating", "gte")], "7")
        self.assertEqual(filters[("genre", "in")], ["Drama", "Comedy"])
        self.assertEqual(filters[("release_year", "between")], ["1990", "2000"])

    def test_nested_filter_mapping_is_accepted(self):
        draft = parse_request({"filter": {"title": {"contains": "star"}}})
        self.assertEqual([(f.field, f.operator, f.value) for f in draft.filters], [("title", "contains", "star")])

    def test_repeated_list_values_are_merged(self):
        draft = parse_request({"filter[genre][in]": ["Drama", "Comedy,Noir"]})
        self.assertEqual(draft.filters[0].value, ["Drama", "Comedy", "Noir"])

    def test_unknown_operator_passes_through(self):
        draft = parse_request({"filter[title][like]": "x"})
        self.assertEqual(draft.filters[0].operator, "like")

    def test_bare_field_keys_are_not_filters(self):
        draft = parse_request({"status": "active", "page": "1"})
        self.assertEqual(draft.filters, [])

    def test_cursor_selects_cursor_pagination(self):
        draft = parse_request({"after": "tok", "limit": "15"})
        self.assertEqual(draft.pagination.kind, "cursor")
        self.assertEqual(draft.pagination.cursor, "tok")
        self.assertEqual(draft.pagination.page_size, "15")

    def test_search_fields_and_shared_flags(self):
        draft = parse_request(
            {
                "search": "x",
                "search_fields": "title, synopsis",
                "includeDeleted": "true",
                "include_total": "1",
                "format": "swr",
            }
        )
        self.assertEqual(draft.search.fields, ["title", "synopsis"])
        self.assertEqual(draft.include_deleted, "true")
        self.assertTrue(draft.include_total)
        self.assertEqual(draft.response_format, "swr")
        self.assertEqual(draft.param_count, 5)


class RowWindowGrammarTests(unittest.TestCase):
    def test_filter_and_sort_models(self):
        draft = parse_request(
            {
                "startRow": "0",
                "endRow": "24",
                "filterModel": json.dumps(
                    {
                        "status": {"type": "equals", "filter": "active"},
                        "genre": {"filterType": "set", "values": ["Drama", "Noir"]},
                        "rating": {"type": "inRange", "filter": 5, "filterTo": 8},
                        "synopsis": {"type": "blank"},
                    }
                ),
                "sortModel": json.dumps([{"colId": "rating", "sort": "desc"}]),
            }
        )
        self.assertEqual(draft.pagination.kind, "window")
        self.assertEqual((draft.pagination.start_row, draft.pagination.end_row), ("0", "24"))
        filters = {(f.field, f.operator): f.value for f in draft.filters}
        self.assertEqual(filters[("status", "equals")], "active")
        self.assertEqual(filters[("genre", "in")], ["Drama", "Noir"])
        self.assertEqual(filters[("rating", "between")], [5, 8])
        self.assertIn(("synopsis", "isNull"), filters)
        self.assertEqual([(s.field, s.direction) for s in draft.sort], [("rating", "desc")])

    def test_and_conditions_are_flattened(self):
        model = {
            "rating": {
                "operator": "AND",
                "conditions": [{"type": "greaterThan", "filter": 5}, {"type": "lessThan", "filter": 9}],
            }
        }
        draft = parse_request({"startRow": "0", "endRow": "10", "filterModel": json.dumps(model)})
        self.assertEqual([(f.operator, f.value) for f in draft.filters], [("gt", 5), ("lt", 9)])

    def test_or_conditions_are_rejected(self):
        model = {"rating": {"operator": "OR", "conditions": [{"type": "equals", "filter": 5}, {"type": "equals", "filter": 6}]}}
        with self.assertRaises(MalformedRequestError):
            parse_request({"startRow": "0", "endRow": "10", "filterModel": json.dumps(model)})

    def test_flattened_keys_and_global_filter(self):
        draft = parse_request(
            {
                "startRow": "10",
                "endRow": "20",
                "sort[1][colId]": "title",
                "sort[0][colId]": "rating",
                "sort[0][sort]": "desc",
                "filters[genre][type]": "notEqual",
                "filters[genre][filter]": "Comedy",
                "filters[title][type]": "contains",
                "filters[title][filter]": "",
                "globalFilter": "space",
            }
        )
        self.assertEqual([(s.field, s.direction) for s in draft.sort], [("rating", "desc"), ("title", "asc")])
        self.assertEqual([(f.field, f.operator, f.value) for f in draft.filters], [("genre", "notEquals", "Comedy")])
        self.assertEqual(draft.search.term, "space")

    def test_malformed_json_raises(self):
        with self.assertRaises(MalformedRequestError) as ctx:
            parse_request({"startRow": "0", "endRow": "10", "filterModel": "{not json"})
        self.assertEqual(ctx.exception.parameter, "filterModel")

    def test_filter_model_must_be_object(self):
        with self.assertRaises(MalformedRequestError):
            parse_request({"startRow": "0", "endRow": "10", "filterModel": "[1, 2]"})

    def test_cursor_token_is_carried_on_the_window_draft(self):
        draft = parse_request({"startRow": "0", "endRow": "2", "after": "tok-9"})
        self.assertEqual(draft.pagination.kind, "window")
        self.assertEqual(draft.pagination.cursor, "tok-9")


class DataTableGrammarTests(unittest.TestCase):
    def test_items_sort_and_zero_based_page(self):
        draft = parse_request(
            {
                "page": "0",
                "pageSize": "25",
                "sortModel": json.dumps([{"field": "title", "sort": "asc"}]),
                "filterModel": json.dumps(
                    {
                        "items": [
                            {"field": "genre", "operator": "isAnyOf", "value": ["Drama", "Noir"]},
                            {"field": "rating", "operator": ">", "value": "6"},
                            {"field": "title", "operator": "contains", "value": ""},
                        ],
                        "quickFilterValues": ["deep", "space"],
                    }
                ),
            }
        )
        self.assertEqual(draft.source_format, FORMAT_DATA_TABLE)
        self.assertEqual(draft.pagination.page, 1)
        self.assertEqual(draft.pagination.page_size, "25")
        self.assertEqual(
            [(f.field, f.operator, f.value) for f in draft.filters],
            [("genre", "in", ["Drama", "Noir"]), ("rating", "gt", "6")],
        )
        self.assertEqual(draft.search.term, "deep space")
        self.assertEqual([(s.field, s.direction) for s in draft.sort], [("title", "asc")])

    def test_negative_page_is_kept_for_validation(self):
        draft = parse_request({"sortModel": "[]", "page": "-1"})
        self.assertEqual(draft.pagination.page, -1)

    def test_alternative_filter_model_shape(self):
        draft = parse_request({"filterModel": json.dumps({"status": "active", "rating": {"gte": 7}})})
        self.assertEqual(
            [(f.field, f.operator, f.value) for f in draft.filters],
            [("status", "equals", "active"), ("rating", "gte", 7)],
        )

    def test_or_logic_with_several_items_is_rejected(self):
        model = {
            "items": [
                {"field": "genre", "operator": "equals", "value": "Drama"},
                {"field": "genre", "operator": "equals", "value": "Noir"},
            ],
            "logicOperator": "or",
        }
        with self.assertRaises(MalformedRequestError):
            parse_request({"filterModel": json.dumps(model)})

    def test_cursor_token_is_carried_on_the_data_table_draft(self):
        draft = parse_request({"sortModel": json.dumps([{"field": "title", "sort": "asc"}]), "cursor": "tok-3"})
        self.assertEqual(draft.source_format, FORMAT_DATA_TABLE)
        self.assertEqual(draft.pagination.cursor, "tok-3")


class ParsingHelperTests(unittest.TestCase):
    def test_repeated_scalar_key_keeps_last_occurrence(self):
        draft = parse_request({"page": ["1", "3"], "pageSize": "10"})
        self.assertEqual(draft.pagination.page, "3")

    def test_field_names_are_sanitized(self):
        self.assertEqual(sanitize_field_name("title; DROP TABLE movies"), "titleDROPTABLEmovies")
        self.assertEqual(sanitize_field_name(" release_year "), "release_year")

    def test_operator_aliases(self):
        self.assertEqual(canonical_operator("!="), "notEquals")
        self.assertEqual(canonical_operator("onOrAfter"), "gte")
        self.assertEqual(canonical_operator("isEmpty"), "isNull")
        self.assertEqual(canonical_operator("bogus"), "bogus")


if __name__ == "__main__":
    unittest.main()
