
from dataclasses import dataclass, field
import os
import typing as t

from game_source.core.errors import ConfigurationError
from game_source.core.utils import BUILTIN_SCHEME


SCREEN_SIZES: t.Tuple[t.Tuple[int, int], ...] = (
	(384, 224),
	(320, 180),
	(192, 112),
	(128, 128),
	(64, 64),
)

DEFAULT_RUNTIME_CREDITS = (
	"game-source-loader, used under the MIT license",
	"pyglet ©2006-2008 Alex Holkner, ©2008-2023 pyglet contributors, used under the BSD license",
	"loguru ©2017 Delgan, used under the MIT license",
	"PyYAML ©2017-2021 Ingy döt Net and Kirill Simonov, used under the MIT license",
)


def _convert_bool_env_var(v: t.Optional[str]) -> bool:
	if v == "0":
		return False
	return bool(v)


@dataclass
class LoaderConfig():
	"""
	Stores loader configuration.

	`builtin_root`: Directory or url `quad://` urls resolve against.
		Everything below it counts as built in.
	`screen_sizes`: The screen sizes a manifest may pick from.
	`default_screen_size`: Screen size of manifests that don't specify
		one.
	`reserved_prefix`: Asset names may not start with this.
	`thread_count`: Amount of loader threads fetching in parallel.
	`use_ide`: Whether the load runs under an editor, which makes all
		non-built-in documents be reloaded from their source and the
		whole asset cache be wiped between loads.
	`fast_reload`: Keeps built-in assets cached between loads even
		when `use_ide` is set.
	`load_debug_json`: Whether to fetch a game's `.debug.json`.
	`runtime_credits`: Lines credited in the `runtime` credits
		category.
	`sprite_id_seed`: Seeds the random first sprite id of each load.
		`None` for a truly random one.
	"""
	builtin_root: str = "quad"
	screen_sizes: t.Tuple[t.Tuple[int, int], ...] = SCREEN_SIZES
	default_screen_size: t.Tuple[int, int] = (384, 224)
	reserved_prefix: str = "_"
	thread_count: int = 4
	use_ide: bool = False
	fast_reload: bool = False
	load_debug_json: bool = False
	runtime_credits: t.Sequence[str] = field(default_factory=lambda: list(DEFAULT_RUNTIME_CREDITS))
	sprite_id_seed: t.Optional[int] = None

	@classmethod
	def from_env(cls, **overrides: t.Any) -> "LoaderConfig":
		"""
		Creates a config, taking `builtin_root`, `thread_count`,
		`use_ide` and `fast_reload` from the `GAME_SOURCE_BUILTIN_ROOT`,
		`GAME_SOURCE_THREADS`, `GAME_SOURCE_USE_IDE` and
		`GAME_SOURCE_FAST_RELOAD` environment variables if they are set.
		Explicit overrides win.
		"""
		kwargs: t.Dict[str, t.Any] = {}
		if (root := os.getenv("GAME_SOURCE_BUILTIN_ROOT")) is not None:
			kwargs["builtin_root"] = root
		if (threads := os.getenv("GAME_SOURCE_THREADS")) is not None:
			try:
				kwargs["thread_count"] = int(threads)
			except ValueError:
				raise ConfigurationError(
					f"GAME_SOURCE_THREADS must be an integer, not {threads!r}"
				) from None
		if (use_ide := os.getenv("GAME_SOURCE_USE_IDE")) is not None:
			kwargs["use_ide"] = _convert_bool_env_var(use_ide)
		if (fast_reload := os.getenv("GAME_SOURCE_FAST_RELOAD")) is not None:
			kwargs["fast_reload"] = _convert_bool_env_var(fast_reload)

		kwargs.update(overrides)
		return cls(**kwargs)

	def validate(self) -> None:
		if self.thread_count < 1:
			raise ConfigurationError(f"thread_count must be at least 1, not {self.thread_count}")
		if tuple(self.default_screen_size) not in [tuple(s) for s in self.screen_sizes]:
			raise ConfigurationError(
				f"Default screen size {self.default_screen_size} is not an allowed screen size"
			)
		if len(self.reserved_prefix) != 1:
			raise ConfigurationError("The reserved asset name prefix must be a single character")

	def get_builtin_root(self) -> str:
		return self.builtin_root if self.builtin_root.endswith("/") else self.builtin_root + "/"

	def is_builtin(self, url: str) -> bool:
		return url.startswith(BUILTIN_SCHEME) or url.startswith(self.get_builtin_root())

	def clears_builtins(self) -> bool:
		"""
		Whether the asset cache is to be wiped completely between
		loads, built-in assets included.
		"""
		return self.use_ide and not self.fast_reload

	def compute_force_reload(self, url: str) -> bool:
		"""
		Whether a document should bypass the fetcher's cache when
		reloading a game.
		"""
		return self.use_ide and not (self.fast_reload and self.is_builtin(url))
