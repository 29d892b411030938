"""
Tile maps: a TMX tile-layer document resolved against the compiled
spritesheet it was drawn with.
"""

from concurrent.futures import Future
from types import MappingProxyType
import typing as t
from xml.etree import ElementTree

from loguru import logger
from pyglet.math import Vec2

from game_source.constants import parse_hex_color
from game_source.core.asset_system import OrderSlot, PayloadKind
from game_source.core.errors import ConfigurationError
from game_source.core.spritesheet import Sprite, Spritesheet, load_spritesheet
from game_source.core.utils import Frozen, dump_id

if t.TYPE_CHECKING:
	from game_source.session import LoadSession


FLIP_X_FLAG = 0x80000000
FLIP_Y_FLAG = 0x40000000
TILE_INDEX_MASK = 0x0FFFFFFF

DEFAULT_SHEET_KEY = "<default>"

Layer = t.Tuple[t.Tuple[t.Optional[Sprite], ...], ...]


def _hex_color_property(value: str) -> t.Dict[str, float]:
	# TMX colors are #AARRGGBB
	return parse_hex_color(value[3:] + value[1:3])


_PROPERTY_CONVERTERS: t.Dict[t.Optional[str], t.Callable[[str], t.Any]] = {
	None: str,
	"string": str,
	"file": str,
	"color": _hex_color_property,
	"bool": lambda v: v != "false",
	"float": float,
	"int": int,
}


class MapAsset(Frozen):
	"""
	A tile map. Each layer is a column-major grid of sprites, ``None``
	for empty cells. Indexing the map itself indexes its first layer.
	"""

	asset_type = "map"

	__slots__ = (
		"name", "url", "json", "json_url", "offset", "z_offset", "z_scale", "wrap_x",
		"wrap_y", "flip_y_on_load", "layers", "spritesheet", "spritesheet_table",
		"sprite_size", "size", "properties", "order_slot",
	)

	def __init__(
		self,
		name: str,
		url: str,
		json: t.Dict[str, t.Any],
		json_url: str,
		spritesheet: Spritesheet,
		spritesheet_name: str,
		sprite_size: Vec2,
		size: Vec2,
		layers: t.Sequence[Layer],
		properties: t.Dict[str, t.Any],
	) -> None:
		offset = json.get("offset") or {}
		self._init_attr("name", name)
		self._init_attr("url", url)
		self._init_attr("json", json)
		self._init_attr("json_url", json_url)
		self._init_attr("offset", Vec2(offset.get("x", 0), offset.get("y", 0)))
		self._init_attr("z_offset", properties.get("z_offset", json.get("z_offset", 0)))
		self._init_attr("z_scale", properties.get("z_scale", json.get("z_scale", 1)))
		self._init_attr("wrap_x", bool(properties.get("wrap_x", json.get("wrap_x", False))))
		self._init_attr("wrap_y", bool(properties.get("wrap_y", json.get("wrap_y", False))))
		self._init_attr("flip_y_on_load", json.get("y_up") is True)
		self._init_attr("layers", tuple(layers))
		self._init_attr("spritesheet", spritesheet)
		self._init_attr("spritesheet_table", MappingProxyType({spritesheet_name: spritesheet}))
		self._init_attr("sprite_size", sprite_size)
		self._init_attr("size", size)
		self._init_attr("properties", MappingProxyType(properties))
		self._init_attr("order_slot", OrderSlot())

	def get_estimated_size(self) -> int:
		# The spritesheet is cached and counted on its own
		return 0

	def __getitem__(self, x: int) -> t.Tuple[t.Optional[Sprite], ...]:
		return self.layers[0][x]

	def __len__(self) -> int:
		return len(self.layers[0]) if self.layers else 0

	def __repr__(self) -> str:
		return (
			f"<{self.__class__.__name__} {self.name!r} {self.size.x}x{self.size.y}, "
			f"{len(self.layers)} layers at {dump_id(self)}>"
		)


def parse_properties(root: ElementTree.Element) -> t.Dict[str, t.Any]:
	"""
	Reads the custom properties of a TMX map, converting them by their
	declared type. Properties whose name starts with an underscore are
	dropped.
	"""
	props = {}
	properties = root.find("properties")
	if properties is None:
		return props

	for node in properties.iter("property"):
		name = node.get("name", "")
		value = node.get("value", "")
		type_ = node.get("type")
		converter = _PROPERTY_CONVERTERS.get(type_)
		if converter is None:
			logger.warning(f"Unknown map property type {type_!r} of {name!r}, kept as string")
			converter = str

		if not name.startswith("_"):
			props[name] = converter(value)

	return props


def decode_cell(gid: int) -> t.Tuple[int, bool, bool]:
	"""
	Splits a TMX global tile id into its 0-based tile index (-1 for
	empty cells) and its horizontal and vertical flip flags.
	"""
	return ((gid & TILE_INDEX_MASK) - 1, bool(gid & FLIP_X_FLAG), bool(gid & FLIP_Y_FLAG))


def compose_layer(
	data: t.Sequence[int],
	width: int,
	height: int,
	columns: int,
	spritesheet: Spritesheet,
	flip_y: bool,
) -> Layer:
	"""
	Converts a row-major list of TMX global tile ids into a column-major
	grid of sprites.
	"""
	if len(data) < width * height:
		raise ConfigurationError(
			f"Layer holds {len(data)} tiles, expected {width * height}"
		)

	grid: t.List[t.List[t.Optional[Sprite]]] = [[None] * height for _ in range(width)]
	i = 0
	for y in range(height):
		ty = height - 1 - y if flip_y else y
		for x in range(width):
			index, flip_x_, flip_y_ = decode_cell(data[i])
			i += 1
			if index < 0:
				continue

			sx, sy = index % columns, index // columns
			if sx >= spritesheet.columns or sy >= spritesheet.rows:
				raise ConfigurationError(
					f"Tile {index} at ({x}, {y}) lies outside of spritesheet {spritesheet.name!r}"
				)

			sprite = spritesheet.grid[sx][sy]
			if flip_x_:
				sprite = sprite.x_flipped
			if flip_y_:
				sprite = sprite.y_flipped
			grid[x][ty] = sprite

	return tuple(tuple(column) for column in grid)


def _int_attr(node: ElementTree.Element, attr: str, url: str) -> int:
	value = node.get(attr)
	try:
		return int(value)
	except (TypeError, ValueError):
		raise ConfigurationError(
			f"<{node.tag}> has an illegal or missing {attr!r} attribute: {value!r}", url
		) from None


def compose_map(
	name: str,
	json: t.Dict[str, t.Any],
	json_url: str,
	tmx_url: str,
	sheet_key: str,
	spritesheet: Spritesheet,
	xml: str,
) -> MapAsset:
	try:
		root = ElementTree.fromstring(xml)
	except ElementTree.ParseError as e:
		raise ConfigurationError(f"Malformed map document: {e}", tmx_url) from e

	properties = parse_properties(root)

	tileset = root.find("tileset")
	if tileset is None:
		raise ConfigurationError("Map has no tileset", tmx_url)

	sprite_size = Vec2(_int_attr(tileset, "tilewidth", tmx_url), _int_attr(tileset, "tileheight", tmx_url))
	columns = _int_attr(tileset, "columns", tmx_url)
	sheet_name = tileset.get("name", "")
	if sheet_key != DEFAULT_SHEET_KEY and sheet_key != sheet_name:
		raise ConfigurationError(
			f"Spritesheet name {sheet_name!r} in {tmx_url} does not match the name "
			f"{sheet_key!r} from the map file",
			json_url,
		)

	image = tileset.find("image")
	if image is None:
		raise ConfigurationError("Map tileset has no image", tmx_url)
	image_size = Vec2(_int_attr(image, "width", tmx_url), _int_attr(image, "height", tmx_url))

	if spritesheet.sprite_size != sprite_size:
		raise ConfigurationError(
			f"Sprite size ({spritesheet.sprite_size.x}, {spritesheet.sprite_size.y}) does not "
			f"match what the map expected, ({sprite_size.x}, {sprite_size.y}).",
			tmx_url,
		)
	if spritesheet.size != image_size:
		raise ConfigurationError(
			f"Spritesheet size ({spritesheet.size.x}, {spritesheet.size.y}) does not match "
			f"what the map expected, ({image_size.x}, {image_size.y}).",
			tmx_url,
		)

	layer_nodes = root.findall("layer")
	if not layer_nodes:
		raise ConfigurationError("Map has no tile layers", tmx_url)

	size = Vec2(0, 0)
	layers = []
	flip_y = json.get("y_up") is True
	for node in layer_nodes:
		size = Vec2(_int_attr(node, "width", tmx_url), _int_attr(node, "height", tmx_url))
		data_node = node.find("data")
		if data_node is None or (data_node.get("encoding") or "csv") != "csv":
			raise ConfigurationError(
				f"Layer {node.get('name')!r} must hold csv encoded data", tmx_url
			)
		try:
			data = [int(s) for s in (data_node.text or "").split(",") if s.strip()]
		except ValueError as e:
			raise ConfigurationError(
				f"Illegal tile in layer {node.get('name')!r}: {e}", tmx_url
			) from e

		layers.append(compose_layer(data, size.x, size.y, columns, spritesheet, flip_y))

	return MapAsset(
		name, tmx_url, json, json_url, spritesheet, sheet_name, sprite_size, size, layers,
		properties,
	)


def load_map(
	session: "LoadSession",
	name: str,
	json: t.Dict[str, t.Any],
	json_url: str,
) -> Future:
	"""
	Loads a map in three chained stages: the metadata document of its
	spritesheet, the spritesheet itself and finally the TMX document,
	which can only be composed once the spritesheet is compiled.
	"""
	cached = session.cache.get(json_url)
	if cached is not None:
		def reregister(map_: MapAsset) -> MapAsset:
			session.spritesheets.register(map_.spritesheet)
			return map_

		return session.procedure.defer([cached], reregister, json_url)

	if "url" not in json:
		raise ConfigurationError("Map has no url", json_url)
	tmx_url = session.make_url_absolute(json_url, json["url"])

	if json.get("sprite_url"):
		sheet_key, sheet_ref = DEFAULT_SHEET_KEY, json["sprite_url"]
	elif json.get("sprite_url_table"):
		# Only the first spritesheet is supported
		sheet_key, sheet_ref = next(iter(json["sprite_url_table"].items()))
	else:
		raise ConfigurationError("No sprite_url or sprite_url_table specified", json_url)
	sheet_url = session.make_url_absolute(json_url, sheet_ref)

	def on_sheet_json(sheet_json: t.Dict[str, t.Any]) -> Future:
		session.file_contents[sheet_url] = sheet_json
		return load_spritesheet(session, name + ".spritesheet", sheet_json, sheet_url)

	sheet_future = session.procedure.schedule(
		sheet_url,
		PayloadKind.JSON,
		on_sheet_json,
		force_reload = session.compute_force_reload(sheet_url),
	)

	def on_tmx(xml: str) -> MapAsset:
		session.file_contents[tmx_url] = xml
		map_ = compose_map(name, json, json_url, tmx_url, sheet_key, sheet_future.result(), xml)
		logger.debug(f"Composed {map_!r}")
		return map_

	future = session.procedure.schedule(
		tmx_url,
		PayloadKind.TEXT,
		on_tmx,
		force_reload = session.compute_force_reload(tmx_url),
		depends_on = (sheet_future,),
	)
	session.cache.put(json_url, future)
	return future
