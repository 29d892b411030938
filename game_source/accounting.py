"""
Read-only passes over a completely loaded game: credits and the
resource statistics limits are checked against.
"""

from math import ceil
import re
import typing as t

from loguru import logger

from game_source.core.utils import asset_type_of, strip_asset_suffix

if t.TYPE_CHECKING:
	from game_source.session import GameSource


CREDIT_CATEGORIES = ("game", "pack", "font", "sprite", "sound", "code", "runtime")

_COPYRIGHT_RE = re.compile(r"(?:\(c\)|copyright|©)\s*(?=\d)", re.IGNORECASE)

_STRING_RE = re.compile(r'"(?:[^"\\]|\\.)*"')
_BLOCK_COMMENT_RE = re.compile(r"/\*[\s\S]*?\*/")
_LINE_COMMENT_RE = re.compile(r"//.*$", re.MULTILINE)
_SECTION_RE = re.compile(r"(?:^|\n)[ \t]*(?:init|enter|frame|leave)[ \t]*\n(?:-|─|—|━|⎯){5,}[ \t]*\n")
_DEF_LINE_RE = re.compile(r"\n *def [^\n]+: *\n")
_BLOCK_LINE_RE = re.compile(r"\n *(?:local|preserving_transform): *\n")
_TODO_ASSERT_RE = re.compile(r"(?:todo|assert) *\(.*\n")
_BLANK_LINES_RE = re.compile(r"\n\s*\n")


class Credits:
	"""
	Credit lines per category, in ``CREDIT_CATEGORIES``.
	"""

	__slots__ = ("title", "developer", "lines")

	def __init__(self, title: str, developer: str) -> None:
		self.title = title
		self.developer = developer
		self.lines: t.Dict[str, t.List[str]] = {c: [] for c in CREDIT_CATEGORIES}

	def __getitem__(self, category: str) -> t.List[str]:
		return self.lines[category]

	def to_json(self) -> t.Dict[str, t.Any]:
		return {"title": self.title, "developer": self.developer, **self.lines}


class ResourceStats:
	def __init__(self) -> None:
		self.sprite_pixels = 0
		self.spritesheets = 0
		self.max_spritesheet_width = 0
		self.max_spritesheet_height = 0
		self.sound_kilobytes = 0
		self.sounds = 0
		self.source_statements = 0
		self.sprite_pixels_by_url: t.Dict[str, int] = {}
		self.sound_kilobytes_by_url: t.Dict[str, int] = {}
		self.source_statements_by_url: t.Dict[str, int] = {}

	def record_spritesheet(self, asset: t.Any) -> None:
		"""
		Records a spritesheet or font. Fonts count for half their pixels,
		they only need 8 bits per pixel.
		"""
		if asset.name.startswith("_"):
			return

		width, height = asset.size.x, asset.size.y
		count = width * height
		if asset.asset_type == "font":
			count = ceil(count / 2)

		self.sprite_pixels += count
		self.sprite_pixels_by_url[asset.url] = count
		self.spritesheets += 1
		self.max_spritesheet_width = max(self.max_spritesheet_width, width)
		self.max_spritesheet_height = max(self.max_spritesheet_height, height)

	def record_sound(self, sound: t.Any) -> None:
		if sound.name.startswith("_"):
			return

		count = sound.data.get_kilobytes()
		self.sounds += 1
		self.sound_kilobytes += count
		self.sound_kilobytes_by_url[sound.url] = count

	def record_source(self, code: str, url: str) -> None:
		count = count_source_statements(code)
		self.source_statements += count - self.source_statements_by_url.get(url, 0)
		self.source_statements_by_url[url] = count

	def to_json(self) -> t.Dict[str, t.Any]:
		return {
			"sprite_pixels": self.sprite_pixels,
			"spritesheets": self.spritesheets,
			"max_spritesheet_width": self.max_spritesheet_width,
			"max_spritesheet_height": self.max_spritesheet_height,
			"sound_kilobytes": self.sound_kilobytes,
			"sounds": self.sounds,
			"source_statements": self.source_statements,
			"sprite_pixels_by_url": dict(self.sprite_pixels_by_url),
			"sound_kilobytes_by_url": dict(self.sound_kilobytes_by_url),
			"source_statements_by_url": dict(self.source_statements_by_url),
		}

	def __repr__(self) -> str:
		return (
			f"<{self.__class__.__name__} sprite_pixels={self.sprite_pixels} "
			f"sound_kilobytes={self.sound_kilobytes} statements={self.source_statements}>"
		)


def count_source_statements(code: str) -> int:
	"""
	Approximates the amount of statements in a piece of game code:
	strings, comments, section headers, function headers, block
	openers, todo/assert lines and blank lines are stripped, then every
	remaining line and semicolon counts as one.
	"""
	code = _STRING_RE.sub("", code)
	code = _BLOCK_COMMENT_RE.sub("", code)
	code = _LINE_COMMENT_RE.sub("", code)
	code = _SECTION_RE.sub("\n", code)
	code = _DEF_LINE_RE.sub("\n", code)
	code = _BLOCK_LINE_RE.sub("\n", code)
	code = _TODO_ASSERT_RE.sub("\n", code)
	code = _BLANK_LINES_RE.sub("\n", code)

	return max(1, code.count(";") + code.count("\n") - 1)


def canonicalize_license(license: str) -> str:
	license = _COPYRIGHT_RE.sub("©", license)
	if license.startswith("By "):
		license = "by " + license[3:]
	return license


def join_names(names: t.Sequence[str]) -> str:
	"""
	``a``, ``a and b``, ``a, b, and c``.
	"""
	if len(names) == 1:
		return names[0]
	if len(names) == 2:
		return f"{names[0]} and {names[1]}"
	return ", ".join(names[:-1]) + ", and " + names[-1]


def compute_asset_credits(
	game_source: "GameSource",
	runtime_credits: t.Sequence[str] = (),
	warn: t.Optional[t.Callable[[str, t.Optional[str]], None]] = None,
) -> Credits:
	"""
	Builds the credits of a game from its manifest and the licenses of
	its assets. Assets sharing a license are credited together.
	"""
	manifest = game_source.json
	title = manifest.get("title") or "Untitled"
	developer = manifest.get("developer") or ""
	credits = Credits(title, developer)

	game_line = title
	if developer:
		game_line += " by " + developer
	if manifest.get("copyright"):
		game_line += " " + manifest["copyright"]
	credits["game"].append(game_line)
	if isinstance(manifest.get("license"), str) and manifest["license"]:
		credits["game"].append(canonicalize_license(manifest["license"]))

	# category -> license -> asset names, insertion ordered
	by_license: t.Dict[str, t.Dict[str, t.List[str]]] = {c: {} for c in CREDIT_CATEGORIES}

	def add_credit(category: str, json_url: str, license: t.Any) -> None:
		if not isinstance(license, str):
			message = f"License of {json_url} is not a string, not crediting it"
			if warn is None:
				logger.warning(message)
			else:
				warn(message, json_url)
			return

		by_license[category].setdefault(canonicalize_license(license), []).append(
			strip_asset_suffix(json_url)
		)

	for name in sorted(game_source.assets):
		asset = game_source.assets[name]
		category = asset_type_of(asset.json_url)
		license = asset.json.get("license")
		if license and category in by_license:
			add_credit(category, asset.json_url, license)

		if asset.asset_type == "map":
			for sheet in asset.spritesheet_table.values():
				if sheet.json.get("license"):
					add_credit("sprite", sheet.json_url, sheet.json["license"])

	for category, licenses in by_license.items():
		for license, names in licenses.items():
			credits[category].append(f"{join_names(names)} {license}")

	credits["runtime"].extend(runtime_credits)
	return credits


def compute_resource_stats(
	game_source: "GameSource", stats: t.Optional[ResourceStats] = None
) -> ResourceStats:
	"""
	Adds the sprite and sound usage of a game's assets to ``stats``
	(which typically already holds the source statement counts).
	Every asset is counted once no matter how many names it goes by;
	assets whose name starts with an underscore are not counted.
	"""
	if stats is None:
		stats = ResourceStats()

	counted: t.Set[int] = set()
	for name, asset in game_source.assets.items():
		if name.startswith("_") or id(asset) in counted:
			continue
		counted.add(id(asset))

		if asset.asset_type in ("font", "spritesheet"):
			stats.record_spritesheet(asset)
		elif asset.asset_type == "sound":
			stats.record_sound(asset)
		elif asset.asset_type == "map":
			for sheet in asset.spritesheet_table.values():
				if id(sheet) not in counted:
					counted.add(id(sheet))
					stats.record_spritesheet(sheet)

	return stats
