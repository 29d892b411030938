
from concurrent.futures import Executor
import typing as t

from loguru import logger

from game_source.config import LoaderConfig
from game_source.core.asset_system import AssetCache, BaseFetcher, CacheStats, FileFetcher
from game_source.core.errors import LoadError
from game_source.manifest import resolve_game_url
from game_source.session import GameSource, LoadSession


class GameLoader:
	"""
	Loads games, keeping their assets cached between loads.
	Only one load may be running at a time; starting one cancels the
	previous load.
	"""

	def __init__(
		self,
		config: t.Optional[LoaderConfig] = None,
		fetcher: t.Optional[BaseFetcher] = None,
		executor_factory: t.Optional[t.Callable[[], Executor]] = None,
	) -> None:
		"""
		Args:
			config: Loader configuration. Taken from the environment
				if not given.
			fetcher: The fetch capability used for every document.
				Reads local files if not given.
			executor_factory: Creates the executor each load runs its
				fetches on. Each load gets a thread pool of
				``config.thread_count`` threads if not given.
		"""
		self.config = LoaderConfig.from_env() if config is None else config
		self.config.validate()

		self.fetcher = FileFetcher() if fetcher is None else fetcher
		self.cache = AssetCache(self.config.is_builtin)
		self._executor_factory = executor_factory

		self.active_session: t.Optional[LoadSession] = None

	def load_game(
		self,
		url: str,
		on_complete: t.Optional[t.Callable[[GameSource], None]] = None,
		on_error: t.Optional[t.Callable[[LoadError], None]] = None,
		on_warning: t.Optional[t.Callable[[str, t.Optional[str]], None]] = None,
	) -> LoadSession:
		"""
		Starts loading the game at ``url``, which may be its manifest or
		the directory containing it. Returns the session, which must be
		ticked (or waited on) for the load to progress.
		"""
		if self.active_session is not None and not self.active_session.is_done():
			logger.info(f"Cancelling load of {self.active_session.game_url}")
			self.active_session.cancel()

		self.cache.clear(keep_builtins=not self.config.clears_builtins())
		self.fetcher.clear()

		game_url = resolve_game_url(url)
		session = LoadSession(
			self.config,
			self.fetcher,
			self.cache,
			game_url,
			None if self._executor_factory is None else self._executor_factory(),
			on_complete,
			on_error,
			on_warning,
		)
		self.active_session = session
		session.start()
		return session

	def load_game_blocking(self, url: str) -> GameSource:
		"""
		Loads the game at ``url`` and blocks until it's done.
		Raises the load's error if it fails.
		"""
		return self.load_game(url).wait()

	def get_cache_stats(self) -> CacheStats:
		return self.cache.get_cache_stats()
