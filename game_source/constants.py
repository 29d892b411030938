"""
Evaluation of the typed constants a manifest declares.
"""

import json
import re
import typing as t

import yaml

from game_source.core.errors import (
	ConfigurationError, LiteralParseError, LoadError, ReferenceCycleError
)
from game_source.core.literal_parser import parse_value
from game_source.core.table_parser import Grid, parse_csv, transpose_grid


Color = t.Dict[str, float]


class GlobalReference:
	"""
	The value of a constant aliasing another constant or an asset.
	Deliberately not resolved once and for all: ``resolve_constant``
	walks the chain again on each access.
	"""

	__slots__ = ("identifier",)

	def __init__(self, identifier: str) -> None:
		self.identifier = identifier

	def __eq__(self, other: object) -> bool:
		return isinstance(other, GlobalReference) and other.identifier == self.identifier

	def __hash__(self) -> int:
		return hash((GlobalReference, self.identifier))

	def __repr__(self) -> str:
		return f"<{self.__class__.__name__} -> {self.identifier!r}>"


def parse_hex(s: str) -> float:
	"""
	Parses one color channel of one or two hex digits to [0, 1].
	"""
	return int(s, 16) / (255 if len(s) == 2 else 15)


def parse_hex_color(s: str) -> Color:
	"""
	Parses a hex color without its leading ``#``. Accepts the forms
	``Y``, ``YY``, ``RGB``, ``RGBA``, ``RRGGBB`` and ``RRGGBBAA``.
	"""
	if not re.fullmatch(r"[0-9a-fA-F]*", s):
		raise ConfigurationError(f"Illegal hexadecimal color specification: '#{s}'")

	n = len(s)
	if n in (1, 2):
		y = parse_hex(s)
		return {"r": y, "g": y, "b": y, "a": 1}
	elif n in (3, 4):
		return {
			"r": parse_hex(s[0]), "g": parse_hex(s[1]), "b": parse_hex(s[2]),
			"a": parse_hex(s[3]) if n == 4 else 1,
		}
	elif n in (6, 8):
		return {
			"r": parse_hex(s[0:2]), "g": parse_hex(s[2:4]), "b": parse_hex(s[4:6]),
			"a": parse_hex(s[6:8]) if n == 8 else 1,
		}

	raise ConfigurationError(f"Illegal hexadecimal color specification: '#{s}'")


def _record(value: t.Any, fields: str, tag: str) -> t.Dict[str, t.Any]:
	if not isinstance(value, dict):
		raise ConfigurationError(f"A {tag} constant must have an object value")
	return {f: evaluate_constant(value.get(f)) for f in fields}


def _color(value: t.Any, fields: str, tag: str) -> t.Dict[str, t.Any]:
	if isinstance(value, dict):
		return _record(value, fields, tag)
	if isinstance(value, str) and value.startswith("#"):
		c = parse_hex_color(value[1:])
		return {f: c[f] for f in fields}
	raise ConfigurationError(f"Illegal {tag} value: {value!r}")


def evaluate_constant(definition: t.Any) -> t.Any:
	"""
	Evaluates a constant definition from a manifest (or the extra
	properties of a sprite). Plain numbers, strings and booleans are
	their own value, everything else is a ``{"type": ..., "value": ...}``
	object.
	"""
	if definition is None or isinstance(definition, (bool, int, float, str)):
		return definition

	if not isinstance(definition, dict):
		raise ConfigurationError(f"Illegal constant definition: {definition!r}")

	type_ = definition.get("type")
	value = definition.get("value")

	if type_ == "nil":
		return None

	elif type_ == "raw":
		if "url" in definition:
			raise ConfigurationError("Raw values with urls are only permitted for top-level constants")
		return value

	elif type_ == "number":
		if isinstance(value, (int, float)) and not isinstance(value, bool):
			return value
		if not isinstance(value, str):
			raise ConfigurationError(f"Illegal number value: {value!r}")
		try:
			return parse_value(value.strip())
		except LiteralParseError as e:
			raise ConfigurationError(f"Illegal number value {value!r}: {e}") from e

	elif type_ == "boolean":
		return value is True or value == "true"

	elif type_ == "string":
		return value

	elif type_ in ("xy", "xz", "xyz", "hsv", "hsva"):
		return _record(value, type_, type_)

	elif type_ in ("rgb", "rgba"):
		return _color(value, type_, type_)

	elif type_ == "object":
		if not isinstance(value, dict):
			raise ConfigurationError("Object constant must have an object {} value field")
		return {k: evaluate_constant(v) for k, v in value.items()}

	elif type_ == "array":
		if not isinstance(value, list):
			raise ConfigurationError("Array constant must have an array [] value field")
		return [evaluate_constant(v) for v in value]

	elif type_ == "reference":
		raise ConfigurationError("References are only permitted for top-level constants")

	raise ConfigurationError(f'Unrecognized data type: "{type_}"')


def follow_reference_chain(
	name: str,
	definitions: t.Mapping[str, t.Any],
	known: t.Callable[[str], bool],
) -> GlobalReference:
	"""
	Walks the chain of reference constants starting at ``name`` until
	a constant that isn't a reference is found and checks that it is
	``known``. Returns the reference ``name`` is to be stored as.

	Raises a ``ReferenceCycleError`` naming the whole chain if a name
	comes up twice, and a ``ConfigurationError`` if the chain ends in
	something unknown.
	"""
	seen = {name}
	chain = [name]
	definition = definitions[name]
	while True:
		target = definition.get("value")
		if not isinstance(target, str):
			raise ConfigurationError(
				f"Reference constant {chain[-1]!r} must name another constant or an asset"
			)
		chain.append(target)
		if target in seen:
			raise ReferenceCycleError(chain)
		seen.add(target)

		definition = definitions.get(target)
		if not (isinstance(definition, dict) and definition.get("type") == "reference"):
			break

	if not known(target):
		raise ConfigurationError("Unresolved reference: " + " → ".join(chain))

	return GlobalReference(definitions[name]["value"])


def resolve_constant(
	value: t.Any,
	constants: t.Mapping[str, t.Any],
	assets: t.Optional[t.Mapping[str, t.Any]] = None,
) -> t.Any:
	"""
	Returns what ``value`` currently stands for, following references
	through ``constants`` and then ``assets``.
	"""
	chain: t.List[str] = []
	while isinstance(value, GlobalReference):
		identifier = value.identifier
		if identifier in chain:
			raise ReferenceCycleError(chain + [identifier])
		chain.append(identifier)

		if identifier in constants:
			value = constants[identifier]
		elif assets is not None and identifier in assets:
			return assets[identifier]
		else:
			raise LoadError("Unresolved reference: " + " → ".join(chain))

	return value


def is_external(definition: t.Any) -> bool:
	"""
	Whether a top-level constant definition is loaded from an url.
	"""
	return (
		isinstance(definition, dict) and definition.get("type") in ("raw", "table") and
		"url" in definition
	)


def raw_document_kind(url: str) -> str:
	"""
	Returns ``"json"`` or ``"yaml"`` for the url of a raw constant.
	"""
	if url.endswith(".json"):
		return "json"
	if url.endswith(".yml") or url.endswith(".yaml"):
		return "yaml"
	raise ConfigurationError(f"Unsupported file format for raw constant {url}", url)


def parse_raw_document(text: str, url: str) -> t.Any:
	kind = raw_document_kind(url)
	try:
		if kind == "json":
			return json.loads(text)
		return yaml.safe_load(text)
	except (ValueError, yaml.YAMLError) as e:
		raise ConfigurationError(f"Malformed {kind} document: {e}", url) from e


def shape_table(grid: Grid, definition: t.Dict[str, t.Any]) -> t.Any:
	"""
	Turns a row-major grid parsed from a table constant's CSV into the
	value the definition describes.

	Tables are column-major by default; ``transpose`` keeps the rows.
	``row_type`` and ``column_type`` choose between ``"object"`` (keyed
	by the first row/column) and ``"array"`` for each axis.
	"""
	transpose = bool(definition.get("transpose"))
	if not transpose:
		grid = transpose_grid(grid)

	row_type = (definition.get("column_type") if transpose else definition.get("row_type")) or "object"
	col_type = (definition.get("row_type") if transpose else definition.get("column_type")) or "object"

	ignore_first_row = definition.get("ignore_first_row")
	ignore_first_column = definition.get("ignore_first_column")

	if ignore_first_row or (ignore_first_column and transpose):
		grid = [column[1:] for column in grid]
	if ignore_first_column or (ignore_first_row and transpose):
		grid = grid[1:]

	if col_type == "array" and row_type == "array":
		return grid

	if not grid or not grid[0]:
		return {} if row_type == "object" else []

	if row_type == "object":
		if col_type == "object":
			# Object of objects, keyed by the first column and first row
			return {
				grid[c][0]: {grid[0][r]: grid[c][r] for r in range(1, len(grid[0]))}
				for c in range(1, len(grid))
			}
		# Object of arrays keyed by the first row
		return {column[0]: column[1:] for column in grid}

	# Array of objects, the first column holds the property names
	return [
		{grid[0][r]: grid[c][r] for r in range(len(grid[c]))}
		for c in range(1, len(grid))
	]


def parse_table(text: str, definition: t.Dict[str, t.Any]) -> t.Any:
	grid = parse_csv(text, definition.get("trim") is not False)
	return shape_table(grid, definition)
