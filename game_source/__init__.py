
from game_source.config import LoaderConfig
from game_source.core.asset_system import (
	AssetCache, BaseFetcher, FileFetcher, MemoryFetcher, PayloadKind
)
from game_source.core.errors import (
	ConfigurationError, FetchError, LoadError, ReferenceCycleError
)
from game_source.loader import GameLoader
from game_source.session import GameSource, LoadSession, Mode

__all__ = [
	"AssetCache", "BaseFetcher", "ConfigurationError", "FetchError", "FileFetcher",
	"GameLoader", "GameSource", "LoadError", "LoadSession", "LoaderConfig", "MemoryFetcher",
	"Mode", "PayloadKind", "ReferenceCycleError",
]
