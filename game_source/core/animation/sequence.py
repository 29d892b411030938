
import enum
from math import floor, inf
import typing as t

from game_source.core.utils import Frozen, dump_id

if t.TYPE_CHECKING:
	from game_source.core.spritesheet import Sprite


class Extrapolation(enum.Enum):
	CLAMP = "clamp"
	LOOP = "loop"
	OSCILLATE = "oscillate"

	@classmethod
	def from_json(cls, value: t.Optional[str]) -> "Extrapolation":
		if value is None:
			return cls.LOOP
		return cls(value)


def compute_timing(
	frame_durations: t.Sequence[float], extrapolate: Extrapolation
) -> t.Tuple[float, float]:
	"""
	Returns ``(period, frames)`` for a sequence of per-sprite frame
	durations.
	Looping and oscillating sequences run forever, their ``frames`` is
	infinite and ``period`` the length of one cycle, where an
	oscillation visits every sprite but the first and last twice.
	Clamped sequences have a ``period`` of 0 and ``frames`` is their
	total length.
	"""
	if extrapolate is Extrapolation.CLAMP:
		return (0, sum(frame_durations))

	if extrapolate is Extrapolation.LOOP:
		return (sum(frame_durations), inf)

	last = len(frame_durations) - 1
	period = 0
	for i, frames in enumerate(frame_durations):
		period += frames if i == 0 or i == last else frames * 2
	return (period, inf)


class AnimationSequence(Frozen):
	"""
	An ordered, immutable run of sprites and how to extrapolate it when
	sampled outside of its length. Sample it with ``sample``.
	"""

	__slots__ = ("name", "sprites", "extrapolate", "period", "frames")

	def __init__(
		self,
		name: str,
		sprites: t.Sequence["Sprite"],
		extrapolate: Extrapolation,
	) -> None:
		if not sprites:
			raise ValueError("Animations must have at least one sprite!")

		period, frames = compute_timing([s.frames for s in sprites], extrapolate)
		self._init_attr("name", name)
		self._init_attr("sprites", tuple(sprites))
		self._init_attr("extrapolate", extrapolate)
		self._init_attr("period", period)
		self._init_attr("frames", frames)

	def __len__(self) -> int:
		return len(self.sprites)

	def __getitem__(self, i: int) -> "Sprite":
		return self.sprites[i]

	def __iter__(self) -> t.Iterator["Sprite"]:
		return iter(self.sprites)

	def __repr__(self) -> str:
		return (
			f"<{self.__class__.__name__} {self.name!r} at {dump_id(self)}, "
			f"{len(self.sprites)} sprites, {self.extrapolate.value}>"
		)


def sample(sequence: AnimationSequence, frame: float) -> "Sprite":
	"""
	Returns the sprite shown at the given frame of ``sequence``.
	Linear in the length of the sequence, not in ``frame``.
	"""
	f = floor(frame)
	sprites = sequence.sprites
	n = len(sprites)

	if sequence.extrapolate is Extrapolation.CLAMP:
		if f < 0:
			return sprites[0]
		if f >= sequence.frames:
			return sprites[-1]
	else:
		# Floored modulo, negative frames wrap around from the end
		f %= sequence.period

	if sequence.extrapolate is Extrapolation.OSCILLATE:
		reverse_time = (sequence.period + sprites[0].frames + sprites[-1].frames) / 2
		if f >= reverse_time:
			# On the way back, walk from the second to last sprite
			f -= reverse_time
			i = n - 2
			while i > 0 and f >= sprites[i].frames:
				f -= sprites[i].frames
				i -= 1
			return sprites[i]

	i = 0
	while i < n and f >= sprites[i].frames:
		f -= sprites[i].frames
		i += 1

	return sprites[min(i, n - 1)]
