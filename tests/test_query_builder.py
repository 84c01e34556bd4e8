"""Tests for listing query construction."""

import pytest
from pymongo import ASCENDING, DESCENDING

from errors import ValidationError
from query_builder import (
    build_category_query,
    build_featured_query,
    build_list_query,
    build_new_arrivals_query,
    build_search_query,
    MAX_PAGE_SIZE,
    MAX_SKIP,
    parse_number,
    parse_page_size,
    parse_positive_int,
)


class TestParsing:
    @pytest.mark.parametrize("raw, expected", [
        (None, 7), ("", 7), ("abc", 7), ("0", 7), ("-3", 7), ("2.5", 7), ("3", 3), (" 4 ", 4),
    ])
    def test_parse_positive_int(self, raw, expected):
        assert parse_positive_int(raw, 7) == expected

    @pytest.mark.parametrize("raw, expected", [
        (None, None), ("", None), ("ten", None), ("nan", None), ("inf", None), ("10", 10.0), ("9.5", 9.5), ("0", 0.0),
    ])
    def test_parse_number(self, raw, expected):
        assert parse_number(raw) == expected

    @pytest.mark.parametrize("raw, default, expected", [
        (None, 10, 10), ("50", 10, 50), ("1000", 10, 1000), ("1001", 10, MAX_PAGE_SIZE),
        ("99999999999999999999", 10, MAX_PAGE_SIZE), ("5000", 2000, 2000), (None, 2000, 2000),
    ])
    def test_parse_page_size_is_capped(self, raw, default, expected):
        assert parse_page_size(raw, default) == expected


class TestListQuery:
    def test_defaults(self):
        query = build_list_query({})

        assert query.page == 1
        assert query.page_size == 1000
        assert query.skip == 0
        assert query.mongo_filter() == {}
        assert query.mongo_sort() == [("productId", DESCENDING)]
        assert query.projection() is None

    def test_full_filter(self):
        query = build_list_query({
            "page": "3",
            "limit": "20",
            "category": "electronics",
            "minPrice": "10",
            "maxPrice": "20",
            "inStock": "true",
            "search": "mouse",
            "sortField": "price",
            "sortOrder": "asc",
        })

        assert query.skip == 40
        assert query.mongo_filter() == {
            "category": "electronics",
            "inStock": True,
            "price": {"$gte": 10.0, "$lte": 20.0},
            "$text": {"$search": "mouse"},
        }
        assert query.mongo_sort() == [("price", ASCENDING)]
        assert query.projection() == {"score": {"$meta": "textScore"}}

    def test_single_price_bound(self):
        assert build_list_query({"minPrice": "5"}).mongo_filter() == {"price": {"$gte": 5.0}}
        assert build_list_query({"maxPrice": "5", "minPrice": "x"}).mongo_filter() == {"price": {"$lte": 5.0}}

    @pytest.mark.parametrize("value", [None, "false", "True", "1", "yes"])
    def test_in_stock_only_for_literal_true(self, value):
        assert "inStock" not in build_list_query({"inStock": value}).mongo_filter()

    def test_malformed_input_degrades_to_defaults(self):
        query = build_list_query({"page": "first", "limit": "-1", "sortField": "$where", "sortOrder": "ASC"})

        assert query.page == 1
        assert query.page_size == 1000
        assert query.mongo_sort() == [("productId", DESCENDING)]

    def test_score_sort_requires_search(self):
        assert build_list_query({"sortField": "score"}).sort_field == "productId"
        assert build_list_query({"sortField": "score", "search": "lamp"}).mongo_sort() == [
            ("score", {"$meta": "textScore"}),
        ]

    def test_custom_default_page_size(self):
        assert build_list_query({}, default_page_size=50).page_size == 50

    def test_total_pages(self):
        query = build_list_query({"limit": "4"})
        assert query.total_pages(0) == 0
        assert query.total_pages(4) == 1
        assert query.total_pages(9) == 3

    def test_huge_page_and_limit(self):
        query = build_list_query({"page": "10000000000000000", "limit": "10000000000000000"})

        assert query.page_size == MAX_PAGE_SIZE
        assert query.skip > MAX_SKIP
        assert query.total_pages(5) == 1


class TestEndpointQueries:
    def test_category(self):
        query = build_category_query("books", {"page": "2"})

        assert query.page_size == 10
        assert query.skip == 10
        assert query.mongo_filter() == {"category": "books"}
        assert query.mongo_sort() == [("createdAt", DESCENDING)]

    def test_search_requires_term(self):
        with pytest.raises(ValidationError, match="Search query is required"):
            build_search_query({})
        with pytest.raises(ValidationError):
            build_search_query({"q": "   "})

    def test_search_ranked_by_score(self):
        query = build_search_query({"q": "desk lamp", "limit": "5"})

        assert query.page_size == 5
        assert query.mongo_filter() == {"$text": {"$search": "desk lamp"}}
        assert query.mongo_sort() == [("score", {"$meta": "textScore"})]

    def test_featured(self):
        query = build_featured_query({})

        assert query.page_size == 5
        assert query.mongo_filter() == {"inStock": True}
        assert query.mongo_sort() == [("ratings.average", DESCENDING), ("ratings.count", DESCENDING)]

    def test_new_arrivals(self):
        query = build_new_arrivals_query({"limit": "3"})

        assert query.page_size == 3
        assert query.mongo_filter() == {"inStock": True}
        assert query.mongo_sort() == [("createdAt", DESCENDING)]
