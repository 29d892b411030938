
import re
import sys
import typing as t

from schema import Optional, Or, Schema, SchemaError

from game_source.core.errors import ConfigurationError, FrozenAssetError


T = t.TypeVar("T")
U = t.TypeVar("U")
V = t.TypeVar("V")


ADDRESS_PADDING = (sys.maxsize.bit_length() + 1) // 4
ADDRESS_FSTR = f"0x{{:0>{ADDRESS_PADDING}x}}"

BUILTIN_SCHEME = "quad://"

_SCHEME_RE = re.compile(r"^.{3,6}://")
_HOST_RE = re.compile(r"^.{3,6}://.*?(?=/)")
_WINDOWS_ABS_RE = re.compile(r"^[A-Za-z]:[\\/]")


NUMBER = Or(int, float)


def xy_schema(error: str, partial: bool = False) -> Schema:
	"""
	Schema of an ``{"x": ..., "y": ...}`` record of numbers. If
	``partial`` is set, both components may be left out.
	"""
	key = Optional if partial else (lambda k: k)
	return Schema({key("x"): NUMBER, key("y"): NUMBER, Optional(str): object}, error=error)

def validate_json(schema: Schema, json: t.Any, url: t.Optional[str]) -> None:
	"""
	Validates a metadata document, raising a ``ConfigurationError``
	attributed to ``url`` if it doesn't match the schema.
	"""
	try:
		schema.validate(json)
	except SchemaError as e:
		raise ConfigurationError(e.code, url) from None


def clamp(value: T, min_: U, max_: V) -> t.Union[T, U, V]:
	return min_ if value < min_ else (max_ if value > max_ else value)

def dump_id(x: object) -> str:
	return ADDRESS_FSTR.format(id(x))


class Frozen:
	"""
	Mixin for published values. Attributes are written exactly once
	through ``_init_attr`` while constructing, every later attempt to
	set or delete one raises a ``FrozenAssetError``.
	"""

	__slots__ = ()

	def _init_attr(self, name: str, value: t.Any) -> None:
		object.__setattr__(self, name, value)

	def __setattr__(self, name: str, value: t.Any) -> None:
		raise FrozenAssetError(f"{self.__class__.__name__} objects are immutable")

	def __delattr__(self, name: str) -> None:
		raise FrozenAssetError(f"{self.__class__.__name__} objects are immutable")


def url_dir(url: str) -> str:
	"""
	Returns everything up to and including the final slash of an url,
	dropping any query string.
	"""
	url = re.sub(r"\?.*$", "", url)
	return re.sub(r"/[^/]*$", "/", url)

def url_file(url: str) -> str:
	return url[url.rfind("/") + 1:]

def strip_asset_suffix(url: str) -> str:
	"""
	``"a/b/robot.sprite.json"`` -> ``"robot"``
	"""
	return re.sub(r"\.[^.]+\.json$", "", url_file(url))

def asset_type_of(url: str) -> t.Optional[str]:
	"""
	Infers an asset's type from its metadata document's url, i.e.
	``"sprite"`` for ``"robot.sprite.json"``. Returns ``None`` if the
	url has no such suffix.
	"""
	m = re.search(r"\.([^.]+)\.json$", url, re.IGNORECASE)
	return None if m is None else m[1].lower()

def make_url_absolute(parent_url: str, child_url: str, builtin_root: str) -> str:
	"""
	Makes ``child_url`` absolute relative to ``parent_url``.
	``quad://`` urls resolve against ``builtin_root``, urls with a scheme
	are left alone and server-absolute paths keep the parent's scheme
	and host.
	"""
	if child_url.startswith(BUILTIN_SCHEME):
		root = builtin_root if builtin_root.endswith("/") else builtin_root + "/"
		return root + child_url[len(BUILTIN_SCHEME):]

	if _SCHEME_RE.match(child_url):
		return child_url

	if child_url[:1] in ("/", "\\"):
		m = _HOST_RE.match(parent_url)
		return child_url if m is None else m[0] + child_url

	if _WINDOWS_ABS_RE.match(child_url):
		m = _HOST_RE.match(parent_url)
		return child_url if m is None else m[0] + "/" + child_url

	return url_dir(parent_url) + child_url if "/" in parent_url else child_url
