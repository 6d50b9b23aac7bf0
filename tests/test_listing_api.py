import json
import unittest
from datetime import datetime, timezone

from tests.base import MovieDatabaseCase

from fastapi.testclient import TestClient
from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from query_engine.db.session import get_db
from query_engine.main import app
from query_engine.models.movie import Movie
from query_engine.models.movie_quote import MovieQuote
from query_engine.services.listing import params_to_dict


class ListingApiTests(MovieDatabaseCase):
    def setUp(self):
        super().setUp()

        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()
        app.dependency_overrides.clear()

    def _seed_catalogue(self):
        self.seed_movies(25)
        self.seed_movies(5, title_prefix="Laugh", genre="Comedy", synopsis="Slapstick")

    def test_scenario_simple_search_page(self):
        self._seed_catalogue()
        response = self.client.get("/api/records/movies", params={"page": 2, "pageSize": 10, "search": "drama"})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual([row["title"] for row in body["data"]], [f"Movie {i:02d}" for i in range(11, 21)])
        self.assertEqual(body["meta"]["pagination"]["total"], 25)
        self.assertEqual(body["meta"]["pagination"]["totalPages"], 3)
        self.assertNotIn("internal_notes", body["data"][0])

    def test_scenario_row_window_last_row(self):
        self.seed_movies(30)
        self.seed_movies(4, title_prefix="Draft", status="draft")
        filter_model = json.dumps({"status": {"type": "equals", "filter": "active"}})

        open_ended = self.client.get(
            "/api/records/movies",
            params={"startRow": 0, "endRow": 24, "filterModel": filter_model},
        ).json()
        self.assertEqual(len(open_ended["data"]), 24)
        self.assertIsNone(open_ended["lastRow"])
        self.assertNotIn("meta", open_ended)

        tail = self.client.get(
            "/api/records/movies",
            params={"startRow": 24, "endRow": 48, "filterModel": filter_model},
        ).json()
        self.assertEqual(len(tail["data"]), 6)
        self.assertEqual(tail["lastRow"], 30)

    def test_scenario_non_filterable_field(self):
        response = self.client.get("/api/records/movies", params={"filter[internal_notes]": "secret"})
        self.assertEqual(response.status_code, 422)
        body = response.json()
        self.assertFalse(body["success"])
        self.assertEqual(body["error"], "validation_failed")
        self.assertIn(
            {"field": "internal_notes", "reason": "field not filterable", "rejectedValue": "internal_notes"},
            body["validation_errors"],
        )

    def test_scenario_between_with_one_value(self):
        response = self.client.get("/api/records/movies", params={"filter[rating][between]": "5"})
        self.assertEqual(response.status_code, 422)
        reasons = [item["reason"] for item in response.json()["validation_errors"]]
        self.assertEqual(reasons, ["between requires exactly two values"])

    def test_scenario_cursor_batches_cover_the_result_set(self):
        self.seed_movies(12)
        seen = []
        params = {"format": "infinite-scroll", "pageSize": 5, "sortBy": "release_year", "sortDir": "desc"}
        for _ in range(10):
            body = self.client.get("/api/records/movies", params=params).json()
            self.assertTrue(body["success"])
            batch = [row["title"] for row in body["data"]]
            self.assertFalse(set(batch) & set(seen))
            seen.extend(batch)
            if not body["hasNextPage"]:
                self.assertIsNone(body["nextCursor"])
                break
            params = {**params, "cursor": body["nextCursor"]}
        self.assertEqual(seen, [f"Movie {i:02d}" for i in range(12, 0, -1)])

    def test_cursor_walk_with_json_sort_model(self):
        self.seed_movies(5)
        params = {
            "format": "infinite-scroll",
            "pageSize": 2,
            "sortModel": json.dumps([{"field": "title", "sort": "asc"}]),
        }
        seen = []
        for _ in range(5):
            body = self.client.get("/api/records/movies", params=params).json()
            seen.extend(row["title"] for row in body["data"])
            if not body["hasNextPage"]:
                break
            params = {**params, "cursor": body["nextCursor"]}
        self.assertEqual(seen, [f"Movie {i:02d}" for i in range(1, 6)])

    def test_cursor_walk_with_row_window_keys(self):
        self.seed_movies(5)
        params = {"format": "cursor", "startRow": 0, "endRow": 2}
        seen = []
        for _ in range(5):
            body = self.client.get("/api/records/movies", params=params).json()
            seen.extend(row["title"] for row in body["data"])
            if not body["pageInfo"]["hasNextPage"]:
                break
            params = {**params, "after": body["pageInfo"]["endCursor"]}
        self.assertEqual(seen, [f"Movie {i:02d}" for i in range(1, 6)])

    def test_cursor_page_info_format(self):
        self.seed_movies(3)
        first = self.client.get("/api/records/movies", params={"format": "relay", "pageSize": 2}).json()
        self.assertTrue(first["pageInfo"]["hasNextPage"])
        self.assertFalse(first["pageInfo"]["hasPreviousPage"])
        second = self.client.get(
            "/api/records/movies",
            params={"format": "relay", "pageSize": 2, "after": first["pageInfo"]["endCursor"]},
        ).json()
        self.assertEqual([row["title"] for row in second["data"]], ["Movie 03"])
        self.assertFalse(second["pageInfo"]["hasNextPage"])
        self.assertTrue(second["pageInfo"]["hasPreviousPage"])

    def test_cursor_minted_for_other_sort_is_rejected(self):
        self.seed_movies(3)
        first = self.client.get("/api/records/movies", params={"format": "cursor", "pageSize": 1}).json()
        response = self.client.get(
            "/api/records/movies",
            params={"format": "cursor", "pageSize": 1, "cursor": first["pageInfo"]["endCursor"], "sortBy": "rating"},
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["validation_errors"][0]["reason"], "cursor does not match sort")

    def test_data_table_grammar(self):
        self._seed_catalogue()
        response = self.client.get(
            "/api/records/movies",
            params={
                "page": 0,
                "pageSize": 10,
                "sortModel": json.dumps([{"field": "title", "sort": "desc"}]),
                "filterModel": json.dumps({"items": [{"field": "genre", "operator": "equals", "value": "Drama"}]}),
            },
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["rowCount"], 25)
        self.assertEqual(body["meta"], {"page": 0, "pageSize": 10, "hasNextPage": True})
        self.assertEqual(body["data"][0]["title"], "Movie 25")

    def test_beyond_last_page_is_empty_success(self):
        self.seed_movies(3)
        body = self.client.get("/api/records/movies", params={"page": 9, "pageSize": 10}).json()
        self.assertTrue(body["success"])
        self.assertEqual(body["data"], [])

    def test_page_size_is_clamped(self):
        self.seed_movies(3)
        body = self.client.get("/api/records/movies", params={"pageSize": 0}).json()
        self.assertEqual(body["meta"]["pagination"]["pageSize"], 20)
        body = self.client.get("/api/records/movies", params={"pageSize": 100000}).json()
        self.assertEqual(body["meta"]["pagination"]["pageSize"], 1000)

    def test_response_format_override_and_alias(self):
        self.seed_movies(3)
        body = self.client.get("/api/records/movies", params={"page": 1, "format": "tanstack-query"}).json()
        self.assertIn("links", body)
        self.assertIn("timestamp", body)
        body = self.client.get("/api/records/movies", params={"responseFormat": "swr"}).json()
        self.assertIn("cacheKey", body)

    def test_unknown_format_degrades_to_standard(self):
        self.seed_movies(2)
        with self.assertLogs("query_engine.formatting", level="WARNING"):
            response = self.client.get("/api/records/movies", params={"format": "xml"})
        self.assertEqual(response.status_code, 200)
        self.assertIn("pagination", response.json()["meta"])

    def test_include_total_forces_count(self):
        self.seed_movies(30)
        body = self.client.get(
            "/api/records/movies",
            params={"startRow": 0, "endRow": 10, "includeTotal": "true"},
        ).json()
        self.assertEqual(body["lastRow"], 30)

    def test_malformed_filter_model_is_400(self):
        response = self.client.get("/api/records/movies", params={"startRow": 0, "endRow": 10, "filterModel": "{oops"})
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["error"], "malformed_request")
        self.assertEqual(body["parameter"], "filterModel")

    def test_soft_deleted_listing(self):
        self.seed_movies(3)
        with self.SessionLocal() as db:
            db.execute(
                update(Movie).where(Movie.title == "Movie 02").values(deleted_at=datetime(2026, 2, 1, tzinfo=timezone.utc))
            )
            db.commit()
        live = self.client.get("/api/records/movies").json()
        self.assertEqual([row["title"] for row in live["data"]], ["Movie 01", "Movie 03"])
        with_deleted = self.client.get("/api/records/movies", params={"includeDeleted": "true"}).json()
        self.assertEqual(len(with_deleted["data"]), 3)
        deleted = self.client.get("/api/records/movies/deleted").json()
        self.assertEqual([row["title"] for row in deleted["data"]], ["Movie 02"])

    def test_related_listing(self):
        movies = self.seed_movies(2)
        with self.SessionLocal() as db:
            db.add(MovieQuote(movie_id=movies[0].id, quote="first", sort_order=2))
            db.add(MovieQuote(movie_id=movies[0].id, quote="second", sort_order=1))
            db.add(MovieQuote(movie_id=movies[1].id, quote="other", sort_order=1))
            db.commit()
        body = self.client.get(f"/api/records/movie_quotes/related/movie/{movies[0].id}").json()
        self.assertEqual([row["quote"] for row in body["data"]], ["second", "first"])

        self.assertEqual(self.client.get("/api/records/movie_quotes/related/director/x").status_code, 404)
        invalid = self.client.get("/api/records/movie_quotes/related/movie/not-a-uuid")
        self.assertEqual(invalid.status_code, 422)

    def test_model_meta_and_formats(self):
        meta = self.client.get("/api/records/movies/meta").json()
        self.assertIn("title", meta["filters"])
        self.assertNotIn("internal_notes", meta["filters"])
        self.assertIn("contains", meta["filters"]["title"]["operators"])
        self.assertNotIn("contains", meta["filters"]["rating"]["operators"])
        self.assertEqual(meta["defaultSort"], [{"field": "title", "direction": "asc"}])

        formats = self.client.get("/api/meta/formats").json()
        self.assertEqual(formats["default"], "standard")
        self.assertIn("row-model", [item["id"] for item in formats["formats"]])

        models = self.client.get("/api/meta/models").json()
        self.assertEqual(models["models"], ["movie_quotes", "movies"])

    def test_unknown_model_is_404(self):
        response = self.client.get("/api/records/directors")
        self.assertEqual(response.status_code, 404)


class ListingApiFailureTests(MovieDatabaseCase):
    @classmethod
    def setUpClass(cls):
        super().setUpClass()
        # No tables: every store call fails.
        cls.empty_engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.EmptySession = sessionmaker(bind=cls.empty_engine, autocommit=False, autoflush=False)

    @classmethod
    def tearDownClass(cls):
        cls.empty_engine.dispose()
        super().tearDownClass()

    def setUp(self):
        super().setUp()

        def override_get_db():
            db = self.EmptySession()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()
        app.dependency_overrides.clear()

    def test_execution_failure_is_generic_500_with_correlation_id(self):
        with self.assertLogs("query_engine.errors", level="ERROR"):
            response = self.client.get("/api/records/movies", headers={"X-Request-ID": "trace-123"})
        self.assertEqual(response.status_code, 500)
        body = response.json()
        self.assertEqual(
            body,
            {
                "success": False,
                "error": "internal_error",
                "detail": "Query execution failed",
                "correlation_id": "trace-123",
            },
        )
        self.assertEqual(response.headers.get("x-request-id"), "trace-123")


class ParamsToDictTests(unittest.TestCase):
    def test_repeated_keys_become_lists(self):
        params = params_to_dict([("page", "1"), ("filter[genre][in]", "Drama"), ("filter[genre][in]", "Noir")])
        self.assertEqual(params, {"page": "1", "filter[genre][in]": ["Drama", "Noir"]})
