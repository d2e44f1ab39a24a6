from datetime import date

from app.utils import coerce_float, coerce_int, paginate, parse_release_date


def test_paginate_defaults_for_missing_values():
    assert paginate(None, None, default_limit=20, max_limit=100) == (0, 20)


def test_paginate_clamps_limit_and_page():
    assert paginate(3, 500, default_limit=20, max_limit=100) == (200, 100)
    assert paginate(0, -5, default_limit=10, max_limit=100) == (0, 10)


def test_parse_release_date_tolerates_blank_and_malformed():
    assert parse_release_date("1999-10-15") == date(1999, 10, 15)
    assert parse_release_date("") is None
    assert parse_release_date("soon") is None
    assert parse_release_date(None) is None


def test_coercion_helpers_fall_back_to_defaults():
    assert coerce_int("12") == 12
    assert coerce_int("abc", default=0) == 0
    assert coerce_float(None) == 0.0
