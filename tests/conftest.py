
import typing as t

import pytest
from pyglet.math import Vec2

from game_source import GameLoader, LoaderConfig, MemoryFetcher
from game_source.constants import evaluate_constant
from game_source.core.asset_system import RawImage, SoundData
from game_source.core.image_data import Region, quantize
from game_source.core.loading_procedure import InlineExecutor
from game_source.core.spritesheet import Spritesheet, SpritesheetBuilder


GAME_DIR = "games/demo/"
GAME_URL = GAME_DIR + "demo.game.json"


def make_image(width: int, height: int, pixel: int = 0x336699FF) -> RawImage:
	return RawImage.from_pixels(width, height, [pixel] * (width * height))


def build_sheet(
	json: t.Dict[str, t.Any],
	image: t.Optional[RawImage] = None,
	name: str = "hero",
	first_id: int = 100,
) -> Spritesheet:
	"""
	Compiles a spritesheet without going through a load.
	"""
	image = make_image(64, 32) if image is None else image
	region = Region.from_json(json.get("region"), image.width, image.height)
	builder = SpritesheetBuilder(
		name, json, f"a/{name}.sprite.json", f"a/{name}.png", None,
		Vec2(image.width, image.height), region, quantize(image, region),
	)
	builder.scan_cells()
	if "names" in json:
		builder.apply_names(json["names"], evaluate_constant)
	return builder.build(lambda count: first_id)


def make_manifest(**kwargs: t.Any) -> t.Dict[str, t.Any]:
	manifest = {
		"title": "Demo",
		"developer": "Someone",
		"modes": ["Play"],
		"start_mode": "Play",
	}
	manifest.update(kwargs)
	return manifest


@pytest.fixture
def fetcher() -> MemoryFetcher:
	return MemoryFetcher({GAME_DIR + "Play.pyxl": "init\n────\nx = 1\n"})


@pytest.fixture
def config() -> LoaderConfig:
	return LoaderConfig(sprite_id_seed=0)


@pytest.fixture
def loader(config: LoaderConfig, fetcher: MemoryFetcher) -> GameLoader:
	return GameLoader(config, fetcher, InlineExecutor)


@pytest.fixture
def add_sheet(fetcher: MemoryFetcher) -> t.Callable[..., str]:
	"""
	Puts a spritesheet metadata document and its image into the
	fetcher. Returns the metadata url.
	"""
	def add(
		json_url: str, width: int = 64, height: int = 32, sprite_size: int = 16,
		**extra: t.Any,
	) -> str:
		png_url = json_url.replace(".sprite.json", ".png")
		fetcher.contents[json_url] = {
			"url": png_url.rsplit("/", 1)[-1],
			"sprite_size": {"x": sprite_size, "y": sprite_size},
			**extra,
		}
		fetcher.contents[png_url] = make_image(width, height)
		return json_url

	return add


@pytest.fixture
def add_sound(fetcher: MemoryFetcher) -> t.Callable[..., str]:
	def add(json_url: str, duration: float = 1.0, **extra: t.Any) -> str:
		wav_url = json_url.replace(".sound.json", ".wav")
		fetcher.contents[json_url] = {"url": wav_url.rsplit("/", 1)[-1], **extra}
		fetcher.contents[wav_url] = SoundData(2, 44100, duration)
		return json_url

	return add
