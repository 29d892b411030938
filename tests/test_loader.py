
from concurrent.futures import ThreadPoolExecutor
import json
import typing as t

import pytest

from game_source import (
	ConfigurationError, FetchError, GameLoader, LoadError, LoaderConfig, MemoryFetcher, Mode,
	ReferenceCycleError
)
from game_source.constants import GlobalReference
from game_source.core.font import Font
from game_source.core.loading_procedure import InlineExecutor
from game_source.core.sound import Sound
from game_source.core.spritesheet import Spritesheet
from game_source.core.tilemap import MapAsset
from game_source.manifest import mode_name, resolve_game_url

from conftest import GAME_DIR, GAME_URL, make_image, make_manifest


CAVE_TMX = """<?xml version="1.0" encoding="UTF-8"?>
<map version="1.5" width="2" height="1">
 <tileset firstgid="1" name="tiles" tilewidth="16" tileheight="16" columns="4">
  <image source="tiles.png" width="64" height="32"/>
 </tileset>
 <layer id="1" name="ground" width="2" height="1">
  <data encoding="csv">1,2147483650</data>
 </layer>
</map>
"""


@pytest.fixture
def demo(fetcher: MemoryFetcher, add_sheet, add_sound) -> t.Dict[str, t.Any]:
	"""
	A game using every kind of asset and constant.
	"""
	add_sheet(GAME_DIR + "hero.sprite.json", license="By Ann (c) 2020")
	add_sheet(GAME_DIR + "tiles.sprite.json", license="By Ann (c) 2020")
	add_sound(GAME_DIR + "boom.sound.json", license="by Bo")
	fetcher.contents[GAME_DIR + "tiny.font.json"] = {
		"url": "tiny.png",
		"char_size": {"x": 5, "y": 7},
		"letter_spacing": {"x": 1, "y": 0},
	}
	fetcher.contents[GAME_DIR + "tiny.png"] = make_image(8, 8)
	fetcher.contents[GAME_DIR + "cave.map.json"] = {"url": "cave.tmx", "sprite_url": "tiles.sprite.json"}
	fetcher.contents[GAME_DIR + "cave.tmx"] = CAVE_TMX
	fetcher.contents[GAME_DIR + "lib.pyxl"] = "def helper():\r\n  a = 1\r\n  b = 2\r\n"
	fetcher.contents[GAME_DIR + "levels.yml"] = "first:\n  enemies: 3\n"
	fetcher.contents[GAME_DIR + "stats.csv"] = "name,hp\nknight,10\n"

	manifest = make_manifest(
		scripts = ["lib.pyxl"],
		assets = {
			"hero": "hero.sprite.json",
			"boom": "boom.sound.json",
			"tiny": "tiny.font.json",
			"cave": "cave.map.json",
		},
		constants = {
			"SPEED": {"type": "number", "value": "150%"},
			"GRAVITY": 9.81,
			"TINT": {"type": "rgb", "value": "#f80"},
			"ALIAS": {"type": "reference", "value": "SPEED"},
			"PLAYER": {"type": "reference", "value": "hero"},
			"LEVELS": {"type": "raw", "url": "levels.yml"},
			"STATS": {"type": "table", "url": "stats.csv", "transpose": True},
		},
		docs = ["README.md", {"name": "Guide", "url": "/docs/guide.md"}],
	)
	fetcher.contents[GAME_URL] = manifest
	return manifest


def test_resolve_game_url():
	assert resolve_game_url("games/demo/") == "games/demo/demo.game.json"
	assert resolve_game_url("games/demo") == "games/demo/demo.game.json"
	assert resolve_game_url("games/demo/demo.game.json") == "games/demo/demo.game.json"


def test_mode_name():
	assert mode_name("modes/Play") == "Play"
	assert mode_name("_Menu") == "$Menu"


def test_loads_every_asset_kind(loader: GameLoader, demo):
	session = loader.load_game(GAME_DIR)
	gs = session.wait()

	assert session.is_successful()
	assert gs.json_url == GAME_URL
	assert gs.start_mode == "Play"
	assert gs.modes == [Mode("Play", GAME_DIR + "Play.pyxl")]
	assert gs.scripts == [GAME_DIR + "lib.pyxl"]
	assert gs.screen_size == (384, 224)
	assert gs.extended_json["screen_size"] == {"x": 384, "y": 224}
	assert "screen_size" not in gs.json
	assert gs.docs == [GAME_DIR + "README.md", "/docs/guide.md"]

	hero, boom, tiny, cave = (gs.assets[n] for n in ("hero", "boom", "tiny", "cave"))
	assert isinstance(hero, Spritesheet) and (hero.columns, hero.rows) == (4, 2)
	assert isinstance(boom, Sound) and boom.frames == 60
	assert isinstance(tiny, Font) and tiny.char_size.x == 5
	assert isinstance(cave, MapAsset)
	assert cave[0][0] is cave.spritesheet[0][0]
	assert cave[1][0] is cave.spritesheet[1][0].x_flipped

	assert len(session.spritesheets) == 2
	assert set(session.spritesheets) == {hero, cave.spritesheet}
	assert list(session.fonts) == [tiny]
	assert tiny.order_slot.index == 0

	assert gs.constants["SPEED"] == 1.5
	assert gs.constants["GRAVITY"] == 9.81
	assert gs.constants["TINT"] == pytest.approx({"r": 1, "g": 8 / 15, "b": 0})
	assert gs.constants["ALIAS"] == GlobalReference("SPEED")
	assert gs.get_constant("ALIAS") == 1.5
	assert gs.get_constant("PLAYER") is hero
	assert gs.constants["LEVELS"] == {"first": {"enemies": 3}}
	assert gs.constants["STATS"] == {"knight": {"hp": 10.0}}

	assert session.file_contents[GAME_DIR + "lib.pyxl"] == "def helper():\n  a = 1\n  b = 2\n"
	assert session.file_contents[GAME_URL] is gs.json

	assert gs.credits["sprite"] == ["tiles and hero by Ann ©2020"]
	assert gs.credits["sound"] == ["boom by Bo"]
	assert gs.resource_stats.sounds == 1
	assert gs.resource_stats.spritesheets == 3
	assert gs.resource_stats.source_statements_by_url[GAME_DIR + "lib.pyxl"] == 2

	# One entry per declared asset plus one per distinct spritesheet backing a map
	stats = loader.get_cache_stats()
	assert stats.object_count <= len(demo["assets"]) + 1
	assert stats.object_count == 5 and stats.pending_count == 0


def test_completion_callback_and_ticking(loader: GameLoader, demo):
	loaded = []
	session = loader.load_game(GAME_URL, on_complete=loaded.append)
	assert not session.is_done()
	while not session.is_done():
		session.tick()
	assert loaded == [session.game_source]


def test_threaded_load(config: LoaderConfig, fetcher: MemoryFetcher, demo):
	fetcher.delays = {GAME_DIR + "hero.png": 0.02, GAME_DIR + "tiles.sprite.json": 0.01}
	loader = GameLoader(config, fetcher, lambda: ThreadPoolExecutor(4))
	gs = loader.load_game_blocking(GAME_DIR)
	assert set(gs.assets) == {"hero", "boom", "tiny", "cave"}


def test_shared_assets_are_loaded_once(loader: GameLoader, fetcher: MemoryFetcher, add_sheet):
	add_sheet(GAME_DIR + "hero.sprite.json")
	fetcher.contents[GAME_URL] = make_manifest(
		assets = {"hero": "hero.sprite.json", "also_hero": "hero.sprite.json"},
	)
	session = loader.load_game(GAME_URL)
	gs = session.wait()

	assert gs.assets["hero"] is gs.assets["also_hero"]
	assert fetcher.request_count(GAME_DIR + "hero.png") == 1
	assert len(session.spritesheets) == 1
	assert gs.resource_stats.spritesheets == 1


def test_built_in_assets_survive_reloads(loader: GameLoader, fetcher: MemoryFetcher, add_sheet):
	add_sheet("quad/sprites/ui.sprite.json")
	add_sheet(GAME_DIR + "hero.sprite.json")
	fetcher.contents[GAME_URL] = make_manifest(
		assets = {"ui": "quad://sprites/ui.sprite.json", "hero": "hero.sprite.json"},
	)

	first = loader.load_game_blocking(GAME_URL)
	second_session = loader.load_game(GAME_URL)
	second = second_session.wait()

	assert second.assets["ui"] is first.assets["ui"]
	assert second.assets["hero"] is not first.assets["hero"]
	assert fetcher.request_count("quad/sprites/ui.png") == 1
	assert fetcher.request_count(GAME_DIR + "hero.png") == 2
	# Metadata documents are always fetched again
	assert fetcher.request_count("quad/sprites/ui.sprite.json") == 2
	assert list(second_session.spritesheets).count(second.assets["ui"]) == 1


def test_ide_mode_drops_built_in_assets(fetcher: MemoryFetcher, add_sheet):
	add_sheet("quad/sprites/ui.sprite.json")
	fetcher.contents[GAME_URL] = make_manifest(assets={"ui": "quad://sprites/ui.sprite.json"})
	loader = GameLoader(LoaderConfig(use_ide=True), fetcher, InlineExecutor)

	first = loader.load_game_blocking(GAME_URL)
	second = loader.load_game_blocking(GAME_URL)
	assert second.assets["ui"] is not first.assets["ui"]
	assert fetcher.request_count("quad/sprites/ui.png") == 2


def test_new_load_cancels_the_running_one(loader: GameLoader, demo):
	first = loader.load_game(GAME_URL)
	second = loader.load_game(GAME_URL)
	assert first.is_done() and not first.is_successful()
	assert second.wait().assets
	with pytest.raises(LoadError, match="cancelled"):
		first.wait()


def test_legacy_start_mode(loader: GameLoader, fetcher: MemoryFetcher):
	fetcher.contents[GAME_DIR + "Title.pyxl"] = "x = 1\n"
	manifest = make_manifest(modes=["Title*", "Play"])
	del manifest["start_mode"]
	fetcher.contents[GAME_URL] = manifest

	warnings = []
	session = loader.load_game(GAME_URL, on_warning=lambda m, u: warnings.append(m))
	gs = session.wait()

	assert gs.start_mode == "Title"
	assert gs.json["modes"] == ["Title", "Play"]
	assert warnings == ["Legacy start mode upgraded on load"]
	assert session.warnings == [("Legacy start mode upgraded on load", GAME_URL)]


def test_unknown_asset_types_are_skipped(loader: GameLoader, fetcher: MemoryFetcher):
	fetcher.contents[GAME_DIR + "thing.blob.json"] = {"url": "thing.bin"}
	fetcher.contents[GAME_URL] = make_manifest(assets={"thing": "thing.blob.json"})
	session = loader.load_game(GAME_URL)
	gs = session.wait()
	assert gs.assets == {}
	assert session.warnings == [('Unrecognized asset type: "blob"', GAME_DIR + "thing.blob.json")]


def test_debug_document(fetcher: MemoryFetcher):
	fetcher.contents[GAME_URL] = make_manifest()
	loader = GameLoader(LoaderConfig(load_debug_json=True), fetcher, InlineExecutor)
	assert loader.load_game_blocking(GAME_URL).debug == {}

	fetcher.contents[GAME_DIR + "demo.debug.json"] = {"breakpoints": []}
	assert loader.load_game_blocking(GAME_URL).debug == {"breakpoints": []}


@pytest.mark.parametrize("changes, message", [
	({"modes": None}, "modes parameter is not an array"),
	({"modes": []}, "no modes"),
	({"modes": ["Play", 3]}, "must be a string"),
	({"assets": []}, "assets parameter is not an object"),
	({"assets": {"_secret": "x.sprite.json"}}, 'Illegal asset name: "_secret"'),
	({"constants": [1]}, "constants parameter is not an object"),
	({"screen_size": {"x": 100, "y": 100}}, "100 x 100 is not a supported screen size"),
	({"scripts": "lib.pyxl"}, "scripts parameter is not an array"),
	({"scripts": [1]}, "Script 0 is not a url"),
	({"start_mode": "Missing"}, 'No "start_mode" specified'),
	({"modes": ["a/Play", "b/Play"]}, "matches 2 modes"),
	({"constants": {"C": {"type": "bogus"}}}, "Unrecognized data type: \"bogus\" in constant 'C'"),
	({"constants": {"C": {"type": "reference", "value": "nothing"}}}, "Unresolved reference: C → nothing"),
	({"constants": {"C": {"type": "raw", "url": "c.txt"}}}, "Unsupported file format"),
	({"docs": [3]}, "Illegal doc entry"),
	({"title": 5}, "title must be a string"),
	({"developer": ["a", "b"]}, "developer must be a string"),
])
def test_invalid_manifests(loader: GameLoader, fetcher: MemoryFetcher, changes, message):
	fetcher.contents[GAME_URL] = make_manifest(**changes)
	errors = []
	session = loader.load_game(GAME_URL, on_error=errors.append)
	with pytest.raises(ConfigurationError, match=message) as exc_info:
		session.wait()
	assert errors == [exc_info.value]
	assert exc_info.value.url is not None
	assert not session.is_successful()


def test_reference_cycles_are_reported(loader: GameLoader, fetcher: MemoryFetcher):
	fetcher.contents[GAME_URL] = make_manifest(constants={
		"A": {"type": "reference", "value": "B"},
		"B": {"type": "reference", "value": "A"},
	})
	with pytest.raises(ReferenceCycleError, match="A → B → A"):
		loader.load_game_blocking(GAME_URL)


def test_missing_documents_fail_the_load(loader: GameLoader, fetcher: MemoryFetcher):
	fetcher.contents[GAME_URL] = make_manifest(assets={"hero": "hero.sprite.json"})
	with pytest.raises(FetchError) as exc_info:
		loader.load_game_blocking(GAME_URL)
	assert exc_info.value.url == GAME_DIR + "hero.sprite.json"

	with pytest.raises(FetchError):
		loader.load_game_blocking("games/nothing/")


def test_map_with_mismatching_spritesheet(loader: GameLoader, fetcher: MemoryFetcher, add_sheet):
	add_sheet(GAME_DIR + "tiles.sprite.json", sprite_size=8)
	fetcher.contents[GAME_DIR + "cave.map.json"] = {"url": "cave.tmx", "sprite_url": "tiles.sprite.json"}
	fetcher.contents[GAME_DIR + "cave.tmx"] = CAVE_TMX
	fetcher.contents[GAME_URL] = make_manifest(assets={"cave": "cave.map.json"})
	with pytest.raises(ConfigurationError, match="Sprite size"):
		loader.load_game_blocking(GAME_URL)


@pytest.mark.parametrize("asset, metadata, message", [
	("hero.sprite.json", {"url": "hero.png", "sprite_size": {"x": 16}}, "sprite_size must have a numeric x and y"),
	("hero.sprite.json", {"url": "hero.png", "region": {"size": {"x": "big"}}}, "region.size must be numeric"),
	("hero.sprite.json", {"url": "hero.png", "gutter": "wide"}, "gutter must be a number"),
	("hero.sprite.json", {"url": 3}, "url must be a string"),
	("tiny.font.json", {"url": "tiny.png", "letter_spacing": {"x": 1, "y": 0}}, "Font is missing 'char_size'"),
	(
		"tiny.font.json",
		{"url": "tiny.png", "char_size": {"x": 5}, "letter_spacing": {"x": 1, "y": 0}},
		"char_size must have a numeric x and y",
	),
])
def test_malformed_asset_metadata(
	loader: GameLoader, fetcher: MemoryFetcher, asset, metadata, message
):
	fetcher.contents[GAME_DIR + asset] = metadata
	fetcher.contents[GAME_DIR + "hero.png"] = make_image(64, 32)
	fetcher.contents[GAME_DIR + "tiny.png"] = make_image(8, 8)
	fetcher.contents[GAME_URL] = make_manifest(assets={"thing": asset})

	with pytest.raises(ConfigurationError, match=message) as exc_info:
		loader.load_game_blocking(GAME_URL)
	assert exc_info.value.url == GAME_DIR + asset
	assert fetcher.request_count(GAME_DIR + "hero.png") == 0


def test_maps_share_their_spritesheet(loader: GameLoader, fetcher: MemoryFetcher, add_sheet):
	add_sheet(GAME_DIR + "tiles.sprite.json")
	for name in ("cave", "mine"):
		fetcher.contents[GAME_DIR + f"{name}.map.json"] = {
			"url": f"{name}.tmx", "sprite_url": "tiles.sprite.json",
		}
		fetcher.contents[GAME_DIR + f"{name}.tmx"] = CAVE_TMX
	fetcher.contents[GAME_URL] = make_manifest(
		assets = {"cave": "cave.map.json", "mine": "mine.map.json"},
	)

	session = loader.load_game(GAME_URL)
	gs = session.wait()

	cave, mine = gs.assets["cave"], gs.assets["mine"]
	assert cave.spritesheet is mine.spritesheet
	assert list(session.spritesheets) == [cave.spritesheet]
	assert fetcher.request_count(GAME_DIR + "tiles.png") == 1
	assert loader.get_cache_stats().object_count == 2 + 1


def test_reload_reads_edited_files(config: LoaderConfig, tmp_path):
	game_dir = tmp_path / "demo"
	game_dir.mkdir()
	manifest_path = game_dir / "demo.game.json"
	mode_path = game_dir / "Play.pyxl"
	manifest_path.write_text(json.dumps(make_manifest(title="First")))
	mode_path.write_text("x = 1\n")

	loader = GameLoader(config, executor_factory=InlineExecutor)
	assert loader.load_game_blocking(str(manifest_path)).json["title"] == "First"

	manifest_path.write_text(json.dumps(make_manifest(title="Second")))
	mode_path.write_text("x = 2\n")
	session = loader.load_game(str(manifest_path))
	gs = session.wait()

	assert gs.json["title"] == "Second"
	assert session.file_contents[str(mode_path)] == "x = 2\n"
