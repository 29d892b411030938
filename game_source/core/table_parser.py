
import csv
import io
from math import inf, nan, pi
import re
import typing as t


Grid = t.List[t.List[t.Any]]

_NUMBER_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?$")
_CURRENCY_RE = re.compile(r"^[$¥€£§]([+\-0-9.e]+)$")
_PERCENT_RE = re.compile(r"^([+\-0-9.e]+)%$")
_DEGREE_RE = re.compile(r"^([+\-0-9.e]+) ?(?:deg|°)$")

_SPECIAL_CELLS: t.Dict[str, t.Any] = {
	"infinity": inf,
	"+infinity": inf,
	"-infinity": -inf,
	"nil": None,
	"null": None,
	"NaN": nan,
	"nan": nan,
	"TRUE": True,
	"true": True,
	"FALSE": False,
	"false": False,
}


def _to_float(s: str) -> t.Optional[float]:
	try:
		return float(s)
	except ValueError:
		return None


def coerce_cell(value: str, trim: bool = True) -> t.Any:
	"""
	Turns a single CSV cell into the value it denotes. Surrounding
	whitespace never keeps a cell from being coerced; strings that
	mean nothing special are returned as-is (trimmed if requested).
	"""
	cell = value.strip()
	if trim:
		value = cell

	if _NUMBER_RE.match(cell):
		return float(cell)

	if cell in _SPECIAL_CELLS:
		return _SPECIAL_CELLS[cell]

	if (m := _CURRENCY_RE.match(cell)) and (f := _to_float(m[1])) is not None:
		return f
	if (m := _PERCENT_RE.match(cell)) and (f := _to_float(m[1])) is not None:
		return f / 100
	if (m := _DEGREE_RE.match(cell)) and (f := _to_float(m[1])) is not None:
		return f * pi / 180

	return value


def parse_csv(text: str, trim: bool = True, fill: t.Any = "") -> Grid:
	"""
	Parses comma-separated text into a row-major grid, coercing each
	cell through ``coerce_cell``.
	Rows shorter than the longest one are padded with ``fill``.
	"""
	rows = [
		[coerce_cell(cell, trim) for cell in row]
		for row in csv.reader(io.StringIO(text))
	]
	width = max((len(row) for row in rows), default=0)
	for row in rows:
		if len(row) < width:
			row.extend(fill for _ in range(width - len(row)))

	return rows


def transpose_grid(grid: Grid) -> Grid:
	if not grid:
		return []
	return [[grid[y][x] for y in range(len(grid))] for x in range(len(grid[0]))]
