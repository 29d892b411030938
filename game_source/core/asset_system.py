"""
Fetch capabilities, payload types and the url-keyed asset cache the
loading machinery is built on.
"""

import abc
from concurrent.futures import Future
import copy
import enum
import io
import json
from math import ceil
import threading
from time import sleep
import typing as t

from loguru import logger

from game_source.core.errors import FetchError
from game_source.core.utils import dump_id

if t.TYPE_CHECKING:
	from pyglet.media.codecs.base import Source


class PayloadKind(enum.Enum):
	TEXT = "text"
	BYTES = "bytes"
	JSON = "json"
	IMAGE = "image"
	SOUND = "sound"


class RawImage:
	"""
	A decoded image: ``width * height`` RGBA8 pixels, rows top to
	bottom.
	"""

	__slots__ = ("width", "height", "data")

	def __init__(self, width: int, height: int, data: bytes) -> None:
		if len(data) != width * height * 4:
			raise ValueError(
				f"Expected {width * height * 4} bytes of RGBA data for a {width}x{height} "
				f"image, got {len(data)}"
			)
		self.width = width
		self.height = height
		self.data = data

	@classmethod
	def from_pixels(cls, width: int, height: int, pixels: t.Sequence[int]) -> "RawImage":
		"""
		Creates a RawImage from a sequence of ``0xRRGGBBAA`` ints.
		"""
		return cls(width, height, b"".join(p.to_bytes(4, "big") for p in pixels))

	def __repr__(self) -> str:
		return f"<{self.__class__.__name__} {self.width}x{self.height} at {dump_id(self)}>"


class SoundData:
	"""
	A decoded sound. ``source`` is whatever the decoder produced and is
	only of interest to playback.
	"""

	__slots__ = ("channels", "sample_rate", "duration", "source")

	def __init__(
		self,
		channels: int,
		sample_rate: int,
		duration: float,
		source: t.Optional["Source"] = None,
	) -> None:
		self.channels = channels
		self.sample_rate = sample_rate
		self.duration = duration
		self.source = source

	@property
	def sample_count(self) -> int:
		return int(round(self.duration * self.sample_rate))

	def get_kilobytes(self) -> int:
		"""
		Memory footprint of the decoded samples as 32-bit floats.
		"""
		return ceil(4 * self.channels * self.sample_count / 1024)


def decode_image(data: bytes, filename: str = "image.png") -> RawImage:
	# pyglet.image needs a GL library to import, so only reach for it
	# when an image is actually decoded.
	from pyglet import image

	image_data = image.load(filename, file=io.BytesIO(data)).get_image_data()
	w, h = image_data.width, image_data.height
	return RawImage(w, h, image_data.get_data("RGBA", -w * 4))


def decode_sound(data: bytes, filename: str = "sound.wav") -> SoundData:
	from pyglet import media

	source = media.load(filename, file=io.BytesIO(data), streaming=False)
	fmt = source.audio_format
	if fmt is None:
		raise ValueError(f"{filename} contains no audio")
	return SoundData(fmt.channels, fmt.sample_rate, source.duration or 0.0, source)


class BaseFetcher(abc.ABC):
	"""
	The fetch capability handed to a load. ``fetch`` is called on
	loader threads and must return the payload in the form requested:

	- ``TEXT``: ``str``
	- ``BYTES``: ``bytes``
	- ``JSON``: the decoded document
	- ``IMAGE``: a ``RawImage``
	- ``SOUND``: a ``SoundData``

	Any failure is to be raised as a ``FetchError``.
	"""

	@abc.abstractmethod
	def fetch(self, url: str, kind: PayloadKind, force_reload: bool = False) -> t.Any:
		raise NotImplementedError()

	def clear(self) -> None:
		"""
		Drops anything the fetcher keeps between fetches. Called at the
		start of every load, so the asset cache is all that survives
		from one load to the next.
		"""


def _decode_payload(url: str, raw: bytes, kind: PayloadKind) -> t.Any:
	try:
		if kind is PayloadKind.BYTES:
			return raw
		elif kind is PayloadKind.TEXT:
			return raw.decode("utf-8")
		elif kind is PayloadKind.JSON:
			return json.loads(raw.decode("utf-8"))
		elif kind is PayloadKind.IMAGE:
			return decode_image(raw, url)
		elif kind is PayloadKind.SOUND:
			return decode_sound(raw, url)
	except (ValueError, UnicodeDecodeError) as e:
		raise FetchError(f"Failed decoding {kind.value} payload: {e}", url, e) from e
	raise FetchError(f"Unknown payload kind {kind!r}", url)


class FileFetcher(BaseFetcher):
	"""
	Fetches from the local file system. Accepts plain paths and
	``file://`` urls. Raw file contents are cached until a fetch with
	``force_reload`` set replaces them.
	"""

	def __init__(self) -> None:
		self._raw_cache: t.Dict[str, bytes] = {}
		self._cache_lock = threading.Lock()

	def _url_to_path(self, url: str) -> str:
		if url.startswith("file://"):
			return url[7:]
		if "://" in url:
			raise FetchError("Only local files can be fetched", url)
		return url

	def fetch(self, url: str, kind: PayloadKind, force_reload: bool = False) -> t.Any:
		path = self._url_to_path(url)

		raw = None
		if not force_reload:
			with self._cache_lock:
				raw = self._raw_cache.get(path)

		if raw is None:
			try:
				with open(path, "rb") as f:
					raw = f.read()
			except OSError as e:
				raise FetchError(f"Could not read file: {e.strerror}", url, e) from e

			with self._cache_lock:
				self._raw_cache[path] = raw

		return _decode_payload(url, raw, kind)

	def clear(self) -> None:
		with self._cache_lock:
			self._raw_cache.clear()


class MemoryFetcher(BaseFetcher):
	"""
	Serves payloads from a dict. Strings and bytes are decoded per
	requested kind, already decoded values are handed out as copies
	(``RawImage`` and ``SoundData`` as-is).
	An optional per-url delay simulates slow transports.
	"""

	def __init__(
		self,
		contents: t.Optional[t.Dict[str, t.Any]] = None,
		delays: t.Optional[t.Dict[str, float]] = None,
	) -> None:
		self.contents = {} if contents is None else contents
		self.delays = {} if delays is None else delays
		self.requested: t.List[str] = []
		self._lock = threading.Lock()

	def fetch(self, url: str, kind: PayloadKind, force_reload: bool = False) -> t.Any:
		with self._lock:
			self.requested.append(url)

		if (delay := self.delays.get(url)) is not None:
			sleep(delay)

		if url not in self.contents:
			raise FetchError("No such document", url)

		value = self.contents[url]
		if isinstance(value, BaseException):
			raise FetchError(str(value), url, value)
		if isinstance(value, str):
			value = value.encode("utf-8")
		if isinstance(value, bytes):
			return _decode_payload(url, value, kind)
		if isinstance(value, (RawImage, SoundData)):
			return value
		return copy.deepcopy(value)

	def request_count(self, url: str) -> int:
		with self._lock:
			return self.requested.count(url)


class OrderSlot:
	"""
	The one mutable part of a published asset: its index in the
	session's render-order array.
	"""

	__slots__ = ("index",)

	def __init__(self, index: int = -1) -> None:
		self.index = index

	def __repr__(self) -> str:
		return f"<{self.__class__.__name__} index={self.index}>"


class DisplayOrder:
	"""
	A render-order array. Assets are registered with it by their
	``order_slot``, which is then updated to their position.
	Registering an asset that is already present does nothing, so an
	asset is never listed twice no matter how often it's pulled from
	the cache.
	"""

	def __init__(self) -> None:
		self._items: t.List[t.Any] = []

	def register(self, asset: t.Any) -> int:
		slot: OrderSlot = asset.order_slot
		if 0 <= slot.index < len(self._items) and self._items[slot.index] is asset:
			return slot.index

		slot.index = len(self._items)
		self._items.append(asset)
		return slot.index

	def __contains__(self, asset: object) -> bool:
		return any(a is asset for a in self._items)

	def __len__(self) -> int:
		return len(self._items)

	def __getitem__(self, i: int) -> t.Any:
		return self._items[i]

	def __iter__(self) -> t.Iterator[t.Any]:
		return iter(self._items)


class CacheStats:
	"""
	Cheap dataclass for generic attributes relating to a cache.
	"""

	__slots__ = ("object_count", "pending_count", "system_memory_used")

	def __init__(self) -> None:
		self.object_count: int = 0
		"""
		The amount of distinct, completely loaded assets in the cache.
		"""

		self.pending_count: int = 0
		"""
		The amount of assets in the cache that are still being built.
		"""

		self.system_memory_used: int = 0
		"""
		The estimated amount of memory the loaded assets' pixel and
		sample data occupies, in bytes.
		"""

	def __repr__(self) -> str:
		return (
			f"<{self.__class__.__name__} objects={self.object_count} "
			f"pending={self.pending_count} memory={self.system_memory_used}>"
		)


class AssetCache:
	"""
	Maps metadata document urls to futures of the asset built from
	them. Putting the future in before the asset is built is what
	collapses multiple references to the same url into one asset.
	"""

	def __init__(self, is_builtin: t.Callable[[str], bool]) -> None:
		self._is_builtin = is_builtin
		self._entries: t.Dict[str, Future] = {}

	def get(self, url: str) -> t.Optional[Future]:
		return self._entries.get(url)

	def put(self, url: str, future: Future) -> None:
		if url in self._entries and self._entries[url] is not future:
			raise KeyError(f"{url!r} is already cached")
		self._entries[url] = future

	def lookup(self, url: str) -> t.Any:
		"""
		Returns the completely built asset for the url, or ``None`` if
		there is none (yet).
		"""
		f = self._entries.get(url)
		if f is None or not f.done() or f.cancelled() or f.exception() is not None:
			return None
		return f.result()

	def clear(self, keep_builtins: bool) -> None:
		"""
		Drops cached assets. If ``keep_builtins`` is set, successfully
		built built-in assets survive.
		"""
		if not keep_builtins:
			self._entries.clear()
			return

		kept = {}
		for url, f in self._entries.items():
			if (
				self._is_builtin(url) and f.done() and not f.cancelled() and
				f.exception() is None
			):
				kept[url] = f
		logger.debug(f"Asset cache cleared, kept {len(kept)} built-in assets.")
		self._entries = kept

	def get_cache_stats(self) -> CacheStats:
		stats = CacheStats()
		for url in self._entries:
			asset = self.lookup(url)
			if asset is None:
				stats.pending_count += 1
				continue
			stats.object_count += 1
			stats.system_memory_used += asset.get_estimated_size()
		return stats

	def __contains__(self, url: object) -> bool:
		return url in self._entries

	def __len__(self) -> int:
		return len(self._entries)
