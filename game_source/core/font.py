
from concurrent.futures import Future
import typing as t

from loguru import logger
from pyglet.math import Vec2
from schema import Optional, Schema

from game_source.core.asset_system import OrderSlot, PayloadKind, RawImage
from game_source.core.errors import ConfigurationError
from game_source.core.utils import NUMBER, Frozen, dump_id, validate_json, xy_schema

if t.TYPE_CHECKING:
	from game_source.session import LoadSession


BORDER_SIZE = 1

FONT_SCHEMA = Schema({
	"url": Schema(str, error="The font's url must be a string"),
	"char_size": xy_schema("char_size must have a numeric x and y"),
	"letter_spacing": xy_schema("letter_spacing must have a numeric x and y"),
	Optional("baseline"): Schema(NUMBER, error="baseline must be a number"),
	Optional("shadow_size"): Schema(NUMBER, error="shadow_size must be a number"),
	Optional("shadowSize"): Schema(NUMBER, error="shadowSize must be a number"),
	Optional(str): object,
})


def make_mask(image: RawImage) -> bytes:
	"""
	Reduces an RGBA8 font image to one byte per pixel, 1 wherever the
	glyph image is at least half opaque.
	"""
	return bytes(1 if a >= 128 else 0 for a in image.data[3::4])


class Font(Frozen):
	asset_type = "font"

	__slots__ = (
		"name", "url", "json", "json_url", "char_size", "letter_spacing", "baseline",
		"border_size", "shadow_size", "size", "mask", "order_slot",
	)

	def __init__(
		self,
		name: str,
		url: str,
		json: t.Dict[str, t.Any],
		json_url: str,
		size: Vec2,
		mask: bytes,
	) -> None:
		char_size = json["char_size"]
		letter_spacing = json["letter_spacing"]
		self._init_attr("name", name)
		self._init_attr("url", url)
		self._init_attr("json", json)
		self._init_attr("json_url", json_url)
		self._init_attr("char_size", Vec2(char_size["x"], char_size["y"]))
		self._init_attr("letter_spacing", Vec2(letter_spacing["x"], letter_spacing["y"]))
		self._init_attr("baseline", json.get("baseline", 0))
		self._init_attr("border_size", BORDER_SIZE)
		self._init_attr("shadow_size", int(json.get("shadowSize", json.get("shadow_size", 1))))
		self._init_attr("size", size)
		self._init_attr("mask", mask)
		"""One byte per pixel of the font image, rows top to bottom."""
		self._init_attr("order_slot", OrderSlot())

	def get_estimated_size(self) -> int:
		return len(self.mask)

	def __repr__(self) -> str:
		return f"<{self.__class__.__name__} {self.name!r} at {dump_id(self)}>"


def load_font(
	session: "LoadSession",
	name: str,
	json: t.Dict[str, t.Any],
	json_url: str,
) -> Future:
	cached = session.cache.get(json_url)
	if cached is not None:
		def reregister(font: Font) -> Font:
			session.fonts.register(font)
			return font

		return session.procedure.defer([cached], reregister, json_url)

	for key in ("url", "char_size", "letter_spacing"):
		if key not in json:
			raise ConfigurationError(f"Font is missing {key!r}", json_url)
	validate_json(FONT_SCHEMA, json, json_url)

	png_url = session.make_url_absolute(json_url, json["url"])

	def preprocess(image: RawImage) -> t.Tuple[RawImage, bytes]:
		return (image, make_mask(image))

	def pack(payload: t.Tuple[RawImage, bytes]) -> Font:
		image, mask = payload
		session.file_contents.setdefault(png_url, image)
		font = Font(name, png_url, json, json_url, Vec2(image.width, image.height), mask)
		session.fonts.register(font)
		logger.debug(f"Loaded {font!r}")
		return font

	future = session.procedure.schedule(
		png_url,
		PayloadKind.IMAGE,
		pack,
		preprocess,
		force_reload = session.compute_force_reload(png_url),
	)
	session.cache.put(json_url, future)
	return future
