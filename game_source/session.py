
from concurrent.futures import Executor
import random
import typing as t

from loguru import logger

from game_source.accounting import (
	Credits, ResourceStats, compute_asset_credits, compute_resource_stats
)
from game_source.config import LoaderConfig
from game_source.constants import evaluate_constant, resolve_constant
from game_source.core.asset_system import AssetCache, BaseFetcher, DisplayOrder
from game_source.core.errors import LoadError
from game_source.core.loading_procedure import LoadingProcedure
from game_source.core.utils import make_url_absolute, url_file
from game_source.manifest import schedule_manifest


MAX_FIRST_SPRITE_ID = 8192


class Mode:
	__slots__ = ("name", "url")

	def __init__(self, name: str, url: str) -> None:
		self.name = name
		self.url = url

	def __eq__(self, other: object) -> bool:
		return isinstance(other, Mode) and other.name == self.name and other.url == self.url

	def __repr__(self) -> str:
		return f"<{self.__class__.__name__} {self.name!r} ({self.url})>"


class GameSource:
	"""
	Everything a loaded game consists of. Only complete once its load
	session has finished.
	"""

	def __init__(self, json_url: str) -> None:
		self.json_url = json_url

		self.json: t.Dict[str, t.Any] = {}
		"""
		The manifest as it was fetched, apart from a legacy start mode
		having been upgraded.
		"""

		self.extended_json: t.Dict[str, t.Any] = {}
		"""
		The manifest as it was loaded, with all defaults filled in.
		"""

		self.debug: t.Dict[str, t.Any] = {}
		self.scripts: t.List[str] = []
		self.modes: t.List[Mode] = []
		self.assets: t.Dict[str, t.Any] = {}
		self.constants: t.Dict[str, t.Any] = {}
		self.docs: t.List[str] = []
		self.screen_size: t.Tuple[int, int] = (0, 0)
		self.start_mode: str = ""
		self.credits: t.Optional[Credits] = None
		self.resource_stats: t.Optional[ResourceStats] = None

	def get_constant(self, name: str) -> t.Any:
		"""
		Returns the current value of the constant ``name``, following
		references.
		"""
		return resolve_constant(self.constants[name], self.constants, self.assets)

	def __repr__(self) -> str:
		return (
			f"<{self.__class__.__name__} {self.json_url} modes={len(self.modes)} "
			f"assets={len(self.assets)} constants={len(self.constants)}>"
		)


class LoadSession:
	"""
	The state of one load of a game. Created by ``GameLoader.load_game``
	and handed to everything taking part in the load.
	"""

	def __init__(
		self,
		config: LoaderConfig,
		fetcher: BaseFetcher,
		cache: AssetCache,
		game_url: str,
		executor: t.Optional[Executor] = None,
		on_complete: t.Optional[t.Callable[[GameSource], None]] = None,
		on_error: t.Optional[t.Callable[[LoadError], None]] = None,
		on_warning: t.Optional[t.Callable[[str, t.Optional[str]], None]] = None,
	) -> None:
		self.config = config
		self.cache = cache
		self.game_url = game_url
		self.game_source = GameSource(game_url)

		self.spritesheets = DisplayOrder()
		self.fonts = DisplayOrder()

		self.file_contents: t.Dict[str, t.Any] = {}
		"""
		Maps urls to the raw contents loaded from them, for editing.
		Not a cache.
		"""

		self.resource_stats = ResourceStats()
		self.warnings: t.List[t.Tuple[str, t.Optional[str]]] = []

		self._on_complete = on_complete
		self._on_warning = on_warning

		# Random, so nobody starts relying on sprite ids staying the same
		self._next_sprite_id = round(
			random.Random(config.sprite_id_seed).random() * MAX_FIRST_SPRITE_ID
		)

		self.procedure = LoadingProcedure(
			fetcher,
			executor,
			on_complete = self._on_drained,
			on_error = on_error,
			on_warning = self._warned,
			thread_count = config.thread_count,
		)

	def start(self) -> None:
		logger.info(f"Loading {self.game_url}")
		schedule_manifest(self)
		self.procedure.finalize()

	def _on_drained(self) -> None:
		gs = self.game_source
		gs.credits = compute_asset_credits(gs, self.config.runtime_credits, self.warn)
		gs.resource_stats = compute_resource_stats(gs, self.resource_stats)
		logger.info(f"Loaded {gs!r}")
		if self._on_complete is not None:
			self._on_complete(gs)

	def _warned(self, message: str, url: t.Optional[str]) -> None:
		self.warnings.append((message, url))
		if self._on_warning is not None:
			self._on_warning(message, url)

	def warn(self, message: str, url: t.Optional[str] = None) -> None:
		self.procedure.warn(message, url)

	def allocate_sprite_ids(self, count: int) -> int:
		"""
		Reserves ids for ``count`` sprites, a block of four (one per
		orientation) each. Returns the first one.
		"""
		first = self._next_sprite_id
		self._next_sprite_id += 4 * count
		return first

	def make_url_absolute(self, parent_url: str, child_url: str) -> str:
		return make_url_absolute(parent_url, child_url, self.config.get_builtin_root())

	def compute_force_reload(self, url: str) -> bool:
		return self.config.compute_force_reload(url)

	def is_builtin(self, url: str) -> bool:
		return self.config.is_builtin(url)

	def evaluate_constant(self, definition: t.Any) -> t.Any:
		return evaluate_constant(definition)

	def add_code_to_source_stats(self, code: str, url: str) -> None:
		"""
		Counts the statements of a script or mode, unless it is a
		system file.
		"""
		if (
			url_file(url).startswith(self.config.reserved_prefix) or
			url.startswith(self.config.get_builtin_root() + "scripts/")
		):
			return
		self.resource_stats.record_source(code, url)

	def tick(self, dt: t.Optional[float] = None) -> None:
		self.procedure.tick(dt)

	def wait(self) -> GameSource:
		"""
		Blocks until the load is done and returns the loaded game.
		Raises the load's error if it failed.
		"""
		self.procedure.wait()
		if not self.procedure.is_successful():
			raise LoadError("Load was cancelled", self.game_url)
		return self.game_source

	def cancel(self) -> None:
		self.procedure.cancel()

	def is_done(self) -> bool:
		return self.procedure.is_done()

	def is_successful(self) -> bool:
		return self.procedure.is_successful()
