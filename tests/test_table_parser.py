
from math import inf, isnan, pi

import pytest

from game_source.constants import parse_table, shape_table
from game_source.core.table_parser import coerce_cell, parse_csv, transpose_grid


def test_coerce_cell():
	assert coerce_cell(" 3 ") == 3.0
	assert coerce_cell("-1.5e2") == -150.0
	assert coerce_cell("50%") == 0.5
	assert coerce_cell("$10") == 10.0
	assert coerce_cell("90 deg") == pytest.approx(pi / 2)
	assert coerce_cell("45°") == pytest.approx(pi / 4)
	assert coerce_cell("-infinity") == -inf
	assert isnan(coerce_cell("NaN"))
	assert coerce_cell("TRUE") is True
	assert coerce_cell("null") is None
	assert coerce_cell("  knight ") == "knight"
	assert coerce_cell("  knight ", trim=False) == "  knight "


def test_coerce_cell_untrimmed_values():
	assert coerce_cell(" 3 ", trim=False) == 3.0
	assert coerce_cell(" $12.50", trim=False) == 12.5
	assert coerce_cell("45deg ", trim=False) == pytest.approx(pi / 4)
	assert coerce_cell(" true ", trim=False) is True
	assert parse_csv("a, 2 ,$12.50\n", trim=False) == [["a", 2.0, 12.5]]


def test_coerce_cell_documented_examples():
	assert coerce_cell("$12.50") == 12.5
	assert coerce_cell("45deg") == pytest.approx(pi / 4)
	assert coerce_cell("12.5%") == 0.125


def test_parse_csv_pads_rows():
	grid = parse_csv('name,hp,speed\nknight,10\n"wizard, old",4,2\n', fill=None)
	assert grid == [
		["name", "hp", "speed"],
		["knight", 10.0, None],
		["wizard, old", 4.0, 2.0],
	]


def test_transpose_grid():
	assert transpose_grid([[1, 2, 3], [4, 5, 6]]) == [[1, 4], [2, 5], [3, 6]]
	assert transpose_grid([]) == []


CREATURES = "name,hp,speed\nknight,10,1\nwizard,4,2\n"


def test_table_object_of_objects():
	assert parse_table(CREATURES, {"type": "table"}) == {
		"hp": {"knight": 10.0, "wizard": 4.0},
		"speed": {"knight": 1.0, "wizard": 2.0},
	}


def test_table_transposed_object_of_objects():
	assert parse_table(CREATURES, {"type": "table", "transpose": True}) == {
		"knight": {"hp": 10.0, "speed": 1.0},
		"wizard": {"hp": 4.0, "speed": 2.0},
	}


def test_table_arrays():
	table = parse_table(CREATURES, {"type": "table", "row_type": "object", "column_type": "array"})
	assert table == {"name": ["knight", "wizard"], "hp": [10.0, 4.0], "speed": [1.0, 2.0]}

	table = parse_table(
		CREATURES,
		{"type": "table", "row_type": "array", "column_type": "array", "ignore_first_row": True},
	)
	assert table == [["knight", "wizard"], [10.0, 4.0], [1.0, 2.0]]


def test_empty_table():
	assert shape_table([], {}) == {}
	assert shape_table([], {"row_type": "array", "column_type": "object"}) == []
