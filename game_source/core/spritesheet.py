"""
Compilation of an image and its metadata document into a frozen
sprite atlas.
"""

from concurrent.futures import Future
from math import hypot
from types import MappingProxyType
import typing as t

from loguru import logger
from pyglet.math import Vec2
from schema import Optional, Or, Schema

from game_source.core.animation import AnimationSequence, Extrapolation
from game_source.core.asset_system import OrderSlot, PayloadKind, RawImage
from game_source.core.errors import ConfigurationError, LoadError
from game_source.core.image_data import QuantizedImage, Region, classify_alpha, quantize
from game_source.core.utils import NUMBER, Frozen, dump_id, validate_json, xy_schema

if t.TYPE_CHECKING:
	from game_source.session import LoadSession


MIN_FRAMES = 0.25

# Keys of a `names` entry that are not copied into a sprite's properties
BUILTIN_PROPERTIES = frozenset((
	"", "id", "frames", "x", "y", "x_flipped", "y_flipped", "scale", "size", "pivot",
	"spritesheet", "tile_index", "start", "end", "default_frames", "extrapolate",
))

# Scales of the four orientations, indexed by orientation bits (1: x flip, 2: y flip)
ORIENTATION_SCALES = (Vec2(1, 1), Vec2(-1, 1), Vec2(1, -1), Vec2(-1, -1))
ORIENTATION_SUFFIXES = ("", ".x_flipped", ".y_flipped", ".x_flipped.y_flipped")

SPRITESHEET_SCHEMA = Schema({
	"url": Schema(str, error="The spritesheet's url must be a string"),
	Optional("sprite_size"): xy_schema("sprite_size must have a numeric x and y"),
	Optional("pivot"): Or(None, xy_schema("pivot must have a numeric x and y")),
	Optional("gutter"): Schema(Or(None, NUMBER), error="gutter must be a number"),
	Optional("default_frames"): Schema(Or(None, NUMBER), error="default_frames must be a number"),
	Optional("region"): Or(None, Schema(
		{
			Optional("corner"): Or(None, xy_schema("region.corner must be numeric", True)),
			Optional("pos"): Or(None, xy_schema("region.pos must be numeric", True)),
			Optional("size"): Or(None, xy_schema("region.size must be numeric", True)),
			Optional(str): object,
		},
		error = "region must be an object",
	)),
	Optional("names"): Schema(Or(None, dict), error="names must be an object"),
	Optional(str): object,
})


class Sprite(Frozen):
	"""
	One cell of a spritesheet in one of four orientations.
	All four orientations of a cell are created together and reach each
	other through ``x_flipped``, ``y_flipped`` and ``source``.
	"""

	__slots__ = (
		"spritesheet", "tile_index", "x", "y", "size", "pivot", "scale", "id",
		"orientation_id", "has_alpha", "requires_blending", "frames", "name",
		"animation_name", "animation_index", "animation", "properties",
		"bounding_radius", "_orientation", "_group",
	)

	def __init__(
		self,
		spritesheet: "Spritesheet",
		tile_index: Vec2,
		x: int,
		y: int,
		size: Vec2,
		pivot: Vec2,
		id_: int,
		orientation: int,
		has_alpha: bool,
		requires_blending: bool,
		frames: float,
		name: str,
		animation_name: t.Optional[str],
		animation_index: t.Optional[int],
		properties: t.Mapping[str, t.Any],
		bounding_radius: float,
	) -> None:
		self._init_attr("spritesheet", spritesheet)
		self._init_attr("tile_index", tile_index)
		self._init_attr("x", x)
		"""Horizontal pixel offset of the sprite in the spritesheet's image."""
		self._init_attr("y", y)
		self._init_attr("size", size)
		self._init_attr("pivot", pivot)
		"""Pivot point relative to the sprite's center."""
		self._init_attr("scale", ORIENTATION_SCALES[orientation])
		self._init_attr("id", id_)
		self._init_attr("orientation_id", id_ + orientation)
		self._init_attr("has_alpha", has_alpha)
		self._init_attr("requires_blending", requires_blending)
		self._init_attr("frames", frames)
		self._init_attr("name", name + ORIENTATION_SUFFIXES[orientation])
		self._init_attr("animation_name", animation_name)
		self._init_attr("animation_index", animation_index)
		self._init_attr("animation", None)
		self._init_attr("properties", properties)
		self._init_attr("bounding_radius", bounding_radius)
		self._init_attr("_orientation", orientation)
		self._init_attr("_group", ())

	@property
	def x_flipped(self) -> "Sprite":
		return self._group[self._orientation ^ 1]

	@property
	def y_flipped(self) -> "Sprite":
		return self._group[self._orientation ^ 2]

	@property
	def source(self) -> "Sprite":
		"""
		The unflipped sprite this one is a variant of, or the sprite
		itself if it isn't flipped.
		"""
		return self._group[0]

	@property
	def is_x_flipped(self) -> bool:
		return bool(self._orientation & 1)

	@property
	def is_y_flipped(self) -> bool:
		return bool(self._orientation & 2)

	def __getitem__(self, key: str) -> t.Any:
		return self.properties[key]

	def __repr__(self) -> str:
		return f"<{self.__class__.__name__} {self.name!r} ({self.orientation_id}) at {dump_id(self)}>"


class Spritesheet(Frozen):
	"""
	A compiled sprite atlas. Indexing with an int returns a column of
	sprites, indexing with a string returns the named sprite or
	animation.
	"""

	asset_type = "spritesheet"

	__slots__ = (
		"name", "url", "json", "json_url", "source_url", "source_size", "region",
		"gutter", "sprite_size", "size", "default_frames", "image", "grid", "names",
		"order_slot",
	)

	def __init__(
		self,
		name: str,
		url: str,
		json: t.Dict[str, t.Any],
		json_url: str,
		source_url: t.Optional[str],
		source_size: Vec2,
		region: Region,
		gutter: int,
		sprite_size: Vec2,
		default_frames: float,
		image: QuantizedImage,
	) -> None:
		self._init_attr("name", name)
		self._init_attr("url", url)
		self._init_attr("json", json)
		self._init_attr("json_url", json_url)
		self._init_attr("source_url", source_url)
		self._init_attr("source_size", source_size)
		"""Size of the image before the region was applied."""
		self._init_attr("region", region)
		self._init_attr("gutter", gutter)
		self._init_attr("sprite_size", sprite_size)
		self._init_attr("size", Vec2(image.width, image.height))
		self._init_attr("default_frames", default_frames)
		self._init_attr("image", image)
		self._init_attr("grid", ())
		"""Column-major tuple of tuples of the unflipped sprites."""
		self._init_attr("names", MappingProxyType({}))
		self._init_attr("order_slot", OrderSlot())

	@property
	def columns(self) -> int:
		return len(self.grid)

	@property
	def rows(self) -> int:
		return len(self.grid[0]) if self.grid else 0

	def sprite_at(self, x: int, y: int) -> Sprite:
		return self.grid[x][y]

	def iter_sprites(self) -> t.Iterator[Sprite]:
		for column in self.grid:
			yield from column

	def get_estimated_size(self) -> int:
		return self.image.get_estimated_size()

	def __getitem__(self, key: t.Union[int, str]) -> t.Any:
		if isinstance(key, str):
			return self.names[key]
		return self.grid[key]

	def __len__(self) -> int:
		return len(self.grid)

	def __repr__(self) -> str:
		return (
			f"<{self.__class__.__name__} {self.name!r} {self.columns}x{self.rows} "
			f"at {dump_id(self)}>"
		)


def _as_index(value: t.Any) -> t.Any:
	if isinstance(value, float) and value.is_integer():
		return int(value)
	return value


class _CellDraft:
	__slots__ = (
		"u", "v", "has_alpha", "requires_blending", "name", "frames", "pivot",
		"animation_name", "animation_index", "properties",
	)

	def __init__(
		self, u: int, v: int, has_alpha: bool, requires_blending: bool, name: str,
		frames: float, pivot: Vec2,
	) -> None:
		self.u = u
		self.v = v
		self.has_alpha = has_alpha
		self.requires_blending = requires_blending
		self.name = name
		self.frames = frames
		self.pivot = pivot
		self.animation_name: t.Optional[str] = None
		self.animation_index: t.Optional[int] = None
		self.properties: t.Dict[str, t.Any] = {}


class SpritesheetBuilder:
	"""
	Accumulates the mutable intermediate state of a spritesheet's
	compilation. ``build`` emits the frozen ``Spritesheet``; nothing
	else ever sees the drafts.
	"""

	def __init__(
		self,
		name: str,
		json: t.Dict[str, t.Any],
		json_url: str,
		url: str,
		source_url: t.Optional[str],
		source_size: Vec2,
		region: Region,
		image: QuantizedImage,
	) -> None:
		self.name = name
		self.json = json
		self.json_url = json_url
		self.url = url
		self.source_url = source_url
		self.source_size = source_size
		self.region = region
		self.image = image

		self.gutter = int(json.get("gutter") or 0)
		sprite_size = json.get("sprite_size")
		if sprite_size is None:
			self.sprite_size = Vec2(image.width, image.height)
		else:
			self.sprite_size = Vec2(int(sprite_size["x"]), int(sprite_size["y"]))
		if self.sprite_size.x <= 0 or self.sprite_size.y <= 0:
			raise ConfigurationError(f"Illegal sprite_size ({self.sprite_size.x}, {self.sprite_size.y})", json_url)

		self.transpose = bool(json.get("transpose", False))
		self.default_frames = max(json.get("default_frames") or 1, MIN_FRAMES)
		self.pivot = self._make_pivot(json.get("pivot"))

		self.cells: t.List[t.List[_CellDraft]] = []
		self.named_cells: t.Dict[str, _CellDraft] = {}
		self.animations: t.Dict[str, t.Tuple[t.List[_CellDraft], Extrapolation]] = {}

	def _make_pivot(self, pivot: t.Optional[t.Dict[str, float]]) -> Vec2:
		if pivot is None:
			return Vec2(0, 0)
		return Vec2(pivot["x"] - self.sprite_size.x / 2, pivot["y"] - self.sprite_size.y / 2)

	def compute_grid(self) -> t.Tuple[int, int]:
		sw, sh = self.sprite_size.x, self.sprite_size.y
		cols = (self.image.width + self.gutter) // (sw + self.gutter)
		rows = (self.image.height + self.gutter) // (sh + self.gutter)
		if self.transpose:
			cols, rows = rows, cols

		if cols == 0 or rows == 0:
			raise ConfigurationError(
				f"Spritesheet has a sprite_size of {sw}x{sh}, which is larger than the entire "
				f"{self.image.width}x{self.image.height} spritesheet.",
				self.json_url,
			)
		return cols, rows

	def scan_cells(self) -> None:
		"""
		Lays out the grid and classifies the alpha channel of every
		cell.
		"""
		cols, rows = self.compute_grid()
		sw, sh = self.sprite_size.x, self.sprite_size.y
		self.cells = []
		for x in range(cols):
			column = []
			for y in range(rows):
				u, v = (y, x) if self.transpose else (x, y)
				has_alpha, requires_blending = classify_alpha(
					self.image, u * (sw + self.gutter), v * (sh + self.gutter), sw, sh
				)
				column.append(_CellDraft(
					u, v, has_alpha, requires_blending, f"{self.name}[{u}][{v}]",
					self.default_frames, self.pivot,
				))
			self.cells.append(column)

	def _cell(self, u: t.Any, v: t.Any, what: str) -> _CellDraft:
		cols, rows = len(self.cells), len(self.cells[0])
		u, v = _as_index(u), _as_index(v)
		if (
			not isinstance(u, int) or not isinstance(v, int) or
			u < 0 or u >= cols or v < 0 or v >= rows
		):
			raise ConfigurationError(
				f"{what} index xy({u}, {v}) {'after transpose ' if self.transpose else ''}is "
				f"out of bounds for the {cols}x{rows} spritesheet.",
				self.json_url,
			)
		return self.cells[u][v]

	def _to_cell_coords(self, x: t.Any, y: t.Any) -> t.Tuple[t.Any, t.Any]:
		return (y, x) if self.transpose else (x, y)

	def apply_names(
		self,
		names: t.Any,
		evaluate: t.Callable[[t.Any], t.Any] = lambda v: v,
	) -> None:
		"""
		Processes the ``names`` table of the metadata document. Each
		entry either renames a single cell (``x`` and ``y``) or makes an
		animation out of a horizontal or vertical run of cells
		(``start`` and optionally ``end``). Any key that isn't built in
		becomes a property of the affected sprites, evaluated with
		``evaluate``.
		"""
		if not isinstance(names, dict):
			raise ConfigurationError(
				f'The "names" entry of a spritesheet must be an object (was '
				f'{type(names).__name__})',
				self.json_url,
			)

		for anim, data in names.items():
			if not isinstance(data, dict):
				raise ConfigurationError(f'Entry "{anim}" of "names" must be an object', self.json_url)

			if ("start" in data) == ("x" in data):
				raise ConfigurationError(
					f'Animation data for "{anim}" must have either "x" and "y" fields or a '
					f'"start" field, but not both',
					self.json_url,
				)

			anim_default_frames = max(MIN_FRAMES, data.get("default_frames") or self.default_frames)

			properties = {}
			for key, value in data.items():
				if key.startswith("_") or key in BUILTIN_PROPERTIES:
					continue
				try:
					properties[key] = evaluate(value)
				except LoadError as e:
					raise ConfigurationError(
						f"{e.message} while parsing {anim}.{key}", self.json_url
					) from e

			if "x" in data:
				cell = self._cell(*self._to_cell_coords(data["x"], data.get("y")), f'Named sprite "{anim}"')
				cell.name = f"{self.name}.{anim}"
				cell.frames = anim_default_frames
				cell.animation_name = anim
				cell.animation_index = None
				cell.properties.update(properties)
				self.named_cells[anim] = cell
				continue

			start = data["start"]
			end = data.get("end") or {}
			sx, sy = _as_index(start.get("x", 0)), _as_index(start.get("y", 0))
			ex, ey = _as_index(end.get("x", sx)), _as_index(end.get("y", sy))
			if not all(isinstance(c, int) for c in (sx, sy, ex, ey)):
				raise ConfigurationError(f'Illegal start or end for animation "{anim}"', self.json_url)
			if sx != ex and sy != ey:
				raise ConfigurationError(
					f'Animation frames must be in a horizontal or vertical line for animation "{anim}"',
					self.json_url,
				)

			pivot = self.pivot if data.get("pivot") is None else self._make_pivot(data["pivot"])
			try:
				extrapolate = Extrapolation.from_json(data.get("extrapolate"))
			except ValueError:
				raise ConfigurationError(
					f'Unknown extrapolation {data["extrapolate"]!r} for animation "{anim}"',
					self.json_url,
				) from None

			frames = data.get("frames")
			if frames is None:
				frame_list = [anim_default_frames]
			elif isinstance(frames, list):
				frame_list = frames or [anim_default_frames]
			else:
				frame_list = [frames]

			run = []
			for y in range(sy, ey + 1):
				for x in range(sx, ex + 1):
					i = len(run)
					cell = self._cell(*self._to_cell_coords(x, y), f'Animation "{anim}"')
					cell.animation_name = anim
					cell.animation_index = i
					cell.name = f"{self.name}.{anim}[{i}]"
					cell.pivot = pivot
					cell.frames = max(MIN_FRAMES, frame_list[min(i, len(frame_list) - 1)])
					cell.properties.update(properties)
					run.append(cell)

			if not run:
				raise ConfigurationError(f'Animation "{anim}" is empty', self.json_url)

			self.animations[anim] = (run, extrapolate)

	def build(self, allocate_ids: t.Callable[[int], int]) -> Spritesheet:
		"""
		Creates the frozen spritesheet. ``allocate_ids`` is called with
		the amount of sprites and must return the first of that many
		consecutive blocks of four ids.
		"""
		sheet = Spritesheet(
			self.name, self.url, self.json, self.json_url, self.source_url, self.source_size,
			self.region, self.gutter, self.sprite_size, self.default_frames, self.image,
		)

		sprite_count = sum(len(column) for column in self.cells)
		next_id = allocate_ids(sprite_count)
		bounding_radius = hypot(self.sprite_size.x, self.sprite_size.y)

		built: t.Dict[int, Sprite] = {}
		grid = []
		for column in self.cells:
			out_column = []
			for cell in column:
				properties = MappingProxyType(dict(cell.properties))
				group = tuple(
					Sprite(
						sheet, Vec2(cell.u, cell.v),
						cell.u * (self.sprite_size.x + self.gutter),
						cell.v * (self.sprite_size.y + self.gutter),
						self.sprite_size, cell.pivot, next_id, orientation, cell.has_alpha,
						cell.requires_blending, cell.frames, cell.name, cell.animation_name,
						cell.animation_index, properties, bounding_radius,
					)
					for orientation in range(4)
				)
				for sprite in group:
					sprite._init_attr("_group", group)
				next_id += 4
				built[id(cell)] = group[0]
				out_column.append(group[0])
			grid.append(tuple(out_column))

		names: t.Dict[str, t.Any] = {}
		for anim, cell in self.named_cells.items():
			names[anim] = built[id(cell)]

		for anim, (run, extrapolate) in self.animations.items():
			sequence = AnimationSequence(anim, [built[id(cell)] for cell in run], extrapolate)
			for cell in run:
				for sprite in built[id(cell)]._group:
					sprite._init_attr("animation", sequence)
			names[anim] = sequence

		sheet._init_attr("grid", tuple(grid))
		sheet._init_attr("names", MappingProxyType(names))
		return sheet


def load_spritesheet(
	session: "LoadSession",
	name: str,
	json: t.Dict[str, t.Any],
	json_url: str,
) -> Future:
	"""
	Returns a future of the spritesheet described by ``json``, which
	was loaded from ``json_url``. Only the first call per url and
	session compiles anything; later ones receive the identical
	spritesheet once it's done.
	"""
	cached = session.cache.get(json_url)
	if cached is not None:
		def reregister(sheet: Spritesheet) -> Spritesheet:
			session.spritesheets.register(sheet)
			return sheet

		logger.debug(f"Spritesheet cache hit for {json_url}")
		return session.procedure.defer([cached], reregister, json_url)

	if "url" not in json:
		raise ConfigurationError("Spritesheet has no image url", json_url)
	validate_json(SPRITESHEET_SCHEMA, json, json_url)

	png_url = session.make_url_absolute(json_url, json["url"])
	source_url = (
		session.make_url_absolute(json_url, json["source_url"]) if json.get("source_url")
		else None
	)

	def preprocess(image: RawImage) -> t.Tuple[RawImage, Region, QuantizedImage]:
		region = Region.from_json(json.get("region"), image.width, image.height)
		return (image, region, quantize(image, region))

	def compile_(payload: t.Tuple[RawImage, Region, QuantizedImage]) -> Spritesheet:
		raw, region, image = payload
		session.file_contents.setdefault(png_url, raw)

		builder = SpritesheetBuilder(
			name, json, json_url, png_url, source_url, Vec2(raw.width, raw.height), region, image
		)
		builder.scan_cells()
		if "names" in json:
			builder.apply_names(json["names"], session.evaluate_constant)

		sheet = builder.build(session.allocate_sprite_ids)
		session.spritesheets.register(sheet)
		logger.debug(f"Compiled {sheet!r} from {png_url}")
		return sheet

	future = session.procedure.schedule(
		png_url,
		PayloadKind.IMAGE,
		compile_,
		preprocess,
		force_reload = session.compute_force_reload(png_url),
	)
	session.cache.put(json_url, future)
	return future
