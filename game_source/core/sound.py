
from concurrent.futures import Future
import typing as t

from loguru import logger

from game_source.core.asset_system import OrderSlot, PayloadKind, SoundData
from game_source.core.errors import ConfigurationError
from game_source.core.utils import Frozen, dump_id

if t.TYPE_CHECKING:
	from game_source.session import LoadSession


FRAMES_PER_SECOND = 60


class Sound(Frozen):
	asset_type = "sound"

	__slots__ = ("name", "url", "json", "json_url", "data", "frames", "order_slot")

	def __init__(
		self,
		name: str,
		url: str,
		json: t.Dict[str, t.Any],
		json_url: str,
		data: SoundData,
	) -> None:
		self._init_attr("name", name)
		self._init_attr("url", url)
		self._init_attr("json", json)
		self._init_attr("json_url", json_url)
		self._init_attr("data", data)
		self._init_attr("frames", data.duration * FRAMES_PER_SECOND)
		"""Duration of the sound in 60Hz frames."""
		self._init_attr("order_slot", OrderSlot())

	def get_estimated_size(self) -> int:
		return self.data.get_kilobytes() * 1024

	def __repr__(self) -> str:
		return f"<{self.__class__.__name__} {self.name!r} ({self.data.duration:.2f}s) at {dump_id(self)}>"


def load_sound(
	session: "LoadSession",
	name: str,
	json: t.Dict[str, t.Any],
	json_url: str,
) -> Future:
	cached = session.cache.get(json_url)
	if cached is not None:
		return cached

	if "url" not in json:
		raise ConfigurationError("Sound has no url", json_url)

	sound_url = session.make_url_absolute(json_url, json["url"])

	def on_decoded(data: SoundData) -> Sound:
		sound = Sound(name, sound_url, json, json_url, data)
		logger.debug(f"Loaded {sound!r}")
		return sound

	future = session.procedure.schedule(
		sound_url,
		PayloadKind.SOUND,
		on_decoded,
		force_reload = session.compute_force_reload(sound_url),
	)
	session.cache.put(json_url, future)
	return future
