"""
Parser for the compact literal notation values are dumped in, e.g.
``{pos: xy(1, 2)}``-style object literals, ``[1, ½, -¼π, 30°, 50%]``
and friends.
"""

from math import inf, nan, pi
import re
import typing as t

from game_source.core.errors import LiteralParseError


class _FunctionPlaceholder:
	"""
	Stands in for a function value, which can't be expressed as a
	literal.
	"""

	__slots__ = ()

	def __call__(self, *_a, **_k) -> None:
		return None

	def __repr__(self) -> str:
		return "<function>"


FUNCTION_PLACEHOLDER = _FunctionPlaceholder()

ELLIPSIS = "…"

_WHITESPACE = " \t\n"
_TRAILING = ", \t\n"
_KEY_SEPARATORS = ": \t\n"

_TOKEN_END_RE = re.compile(r"[,:\[{}\] \n\t\"]")
_KEY_END_RE = re.compile(r"[: \n\t\"]")
_FLOAT_PREFIX_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def _signed(names: t.Iterable[str], value: float) -> t.Dict[str, float]:
	res = {}
	for name in names:
		res[name] = value
		res["+" + name] = value
		res["-" + name] = -value
	return res


_NAMED_CONSTANTS: t.Dict[str, t.Any] = {
	"true": True,
	"false": False,
	"nil": None,
	"∅": None,
	"builtin": None,
	"function": FUNCTION_PLACEHOLDER,
	"nan": nan,
	ELLIPSIS: ELLIPSIS,
	**_signed(("infinity", "∞"), inf),
	**_signed(("pi", "π"), pi),
	**_signed(("¼pi", "¼π"), pi / 4),
	**_signed(("½pi", "½π"), pi / 2),
	**_signed(("¾pi", "¾π"), pi * 3 / 4),
}

for _glyph, _value in (
	("¼", 1/4), ("½", 1/2), ("¾", 3/4), ("⅓", 1/3), ("⅔", 2/3),
	("⅕", 1/5), ("⅖", 2/5), ("⅗", 3/5), ("⅘", 4/5), ("⅙", 1/6),
	("⅚", 5/6), ("⅐", 1/7), ("⅛", 1/8), ("⅜", 3/8), ("⅝", 5/8),
	("⅞", 7/8), ("⅑", 1/9), ("⅒", 1/10),
):
	_NAMED_CONSTANTS[_glyph] = _value
	_NAMED_CONSTANTS["-" + _glyph] = -_value
del _glyph, _value


def parse_float_prefix(s: str) -> float:
	"""
	Parses the longest leading float of ``s``, ignoring whatever
	follows. Returns ``nan`` if there is none.
	"""
	s = s.lstrip()
	m = _FLOAT_PREFIX_RE.match(s)
	if m is None:
		lowered = s.lower()
		if lowered.startswith(("infinity", "+infinity")):
			return inf
		if lowered.startswith("-infinity"):
			return -inf
		return nan
	return float(m[0])


def _scan_until(source: str, regex: t.Pattern, i: int) -> int:
	m = regex.search(source, i)
	return len(source) if m is None else m.start()


def _skip(source: str, chars: str, i: int) -> int:
	while i < len(source) and source[i] in chars:
		i += 1
	return i


def _skip_to_closing(source: str, closing: str, i: int) -> int:
	while i < len(source) and source[i] != closing:
		i += 1
	return i + 1


def _parse_bare_token(token: str) -> t.Any:
	token = token.lower()
	if token in _NAMED_CONSTANTS:
		return _NAMED_CONSTANTS[token]

	if token.endswith("deg"):
		return parse_float_prefix(token[:-3]) * pi / 180
	if token.endswith("°"):
		return parse_float_prefix(token[:-1]) * pi / 180
	if token.endswith("%"):
		return parse_float_prefix(token[:-1]) / 100
	return parse_float_prefix(token)


def _parse_string(source: str, i: int) -> t.Tuple[str, int]:
	# i points behind the opening quote
	begin = i
	while i < len(source) and (source[i] != '"' or source[i - 1] == "\\"):
		i += 1
	return source[begin:i].replace('\\"', '"'), i + 1


def parse(source: str, i: int = 0) -> t.Tuple[t.Any, int]:
	"""
	Parses the literal value starting at index ``i`` of ``source``.
	Returns a two-element tuple of the value and the index
	immediately behind it.

	An ellipsis (``…``) inside of an array or object truncates it to
	an empty one, which is how elided or self-referencing structures
	appear in dumps.
	"""
	if not isinstance(source, str):
		raise LiteralParseError("parse() requires a string as an argument")

	i = _skip(source, _WHITESPACE, i)
	if i >= len(source):
		raise LiteralParseError(f"Hit the end of {source!r}")

	c = source[i]
	if c == '"':
		return _parse_string(source, i + 1)

	if c == "[":
		i = _skip(source, _WHITESPACE, i + 1)
		array = []
		while i < len(source) and source[i] != "]":
			value, nxt = parse(source, i)
			if value == ELLIPSIS:
				return [], _skip_to_closing(source, "]", i)

			array.append(value)
			i = _skip(source, _TRAILING, nxt)
		return array, i + 1

	if c == "{":
		i = _skip(source, _WHITESPACE, i + 1)
		obj = {}
		while i < len(source) and source[i] != "}":
			if source.startswith(ELLIPSIS, i):
				return {}, _skip_to_closing(source, "}", i)

			if source[i] == '"':
				key, i = _parse_string(source, i + 1)
			else:
				end = _scan_until(source, _KEY_END_RE, i)
				key = source[i:end]
				i = end

			if key == ELLIPSIS:
				return {}, _skip_to_closing(source, "}", i)

			i = _skip(source, _KEY_SEPARATORS, i)
			value, i = parse(source, i)
			obj[key] = value
			i = _skip(source, _TRAILING, i)
		return obj, i + 1

	end = _scan_until(source, _TOKEN_END_RE, i)
	if end == i:
		raise LiteralParseError(f"Unexpected {c!r} at index {i} of {source!r}")
	return _parse_bare_token(source[i:end]), end


def parse_value(source: str) -> t.Any:
	"""
	Convenience wrapper around ``parse`` that only returns the value.
	"""
	return parse(source.strip())[0]
