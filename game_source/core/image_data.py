"""
Reduction of decoded images to the 4-bit-per-channel representation
sprite data is kept in.
"""

from array import array
from math import inf
import typing as t

from game_source.core.asset_system import RawImage
from game_source.core.utils import clamp, dump_id


class Region:
	"""
	A crop region in pixels, already clamped to an image's bounds.
	"""

	__slots__ = ("x", "y", "width", "height")

	def __init__(self, x: int, y: int, width: int, height: int) -> None:
		self.x = x
		self.y = y
		self.width = width
		self.height = height

	@classmethod
	def from_json(
		cls, json: t.Optional[t.Dict[str, t.Any]], image_width: int, image_height: int
	) -> "Region":
		"""
		Builds a region from a metadata document's ``region`` entry,
		which may specify its ``corner`` (or ``pos``) and ``size``.
		Missing parts default to the whole image, and everything is
		clamped so the region lies inside it.
		"""
		json = json or {}
		corner = json.get("corner", json.get("pos")) or {}
		size = json.get("size") or {}

		x = int(clamp(corner.get("x", 0), 0, image_width))
		y = int(clamp(corner.get("y", 0), 0, image_height))
		w = int(min(image_width - x, size.get("x", inf)))
		h = int(min(image_height - y, size.get("y", inf)))
		return cls(x, y, w, h)

	def covers(self, image_width: int, image_height: int) -> bool:
		return (
			self.x == 0 and self.y == 0 and
			self.width == image_width and self.height == image_height
		)

	def to_json(self) -> t.Dict[str, t.Dict[str, int]]:
		return {
			"corner": {"x": self.x, "y": self.y},
			"size": {"x": self.width, "y": self.height},
		}

	def __repr__(self) -> str:
		return f"<{self.__class__.__name__} ({self.x}, {self.y}) {self.width}x{self.height}>"


class QuantizedImage:
	"""
	An image in RGBA4, one 16-bit value per pixel laid out as
	``0xABGR``, rows top to bottom. ``flipped_x`` holds the same image
	mirrored horizontally.
	"""

	__slots__ = ("width", "height", "data", "flipped_x")

	def __init__(self, width: int, height: int, data: array, flipped_x: array) -> None:
		self.width = width
		self.height = height
		self.data = data
		self.flipped_x = flipped_x

	def pixel(self, x: int, y: int) -> int:
		return self.data[y * self.width + x]

	def alpha(self, x: int, y: int) -> int:
		return (self.data[y * self.width + x] >> 12) & 0xF

	def get_estimated_size(self) -> int:
		return (len(self.data) + len(self.flipped_x)) * self.data.itemsize

	def __repr__(self) -> str:
		return f"<{self.__class__.__name__} {self.width}x{self.height} at {dump_id(self)}>"


def quantize_pixel(r: int, g: int, b: int, a: int) -> int:
	return ((a >> 4) << 12) | ((b >> 4) << 8) | ((g >> 4) << 4) | (r >> 4)


def quantize(image: RawImage, region: t.Optional[Region] = None) -> QuantizedImage:
	"""
	Crops ``image`` to ``region`` (the whole image if ``None``) and
	reduces it to RGBA4, producing the horizontally mirrored copy in
	the same pass.
	"""
	if region is None:
		region = Region(0, 0, image.width, image.height)

	data = array("H")
	flipped = array("H")
	src = image.data
	for y in range(region.y, region.y + region.height):
		start = (y * image.width + region.x) * 4
		row = src[start:start + region.width * 4]
		qrow = [
			((a >> 4) << 12) | ((b >> 4) << 8) | ((g >> 4) << 4) | (r >> 4)
			for r, g, b, a in zip(row[0::4], row[1::4], row[2::4], row[3::4])
		]
		data.extend(qrow)
		qrow.reverse()
		flipped.extend(qrow)

	return QuantizedImage(region.width, region.height, data, flipped)


def classify_alpha(
	image: QuantizedImage, x: int, y: int, width: int, height: int
) -> t.Tuple[bool, bool]:
	"""
	Scans the given block of ``image`` once.
	Returns a tuple of whether any pixel is not fully opaque and
	whether any pixel has a fractional alpha, which requires blending.
	Stops at the first fractional alpha value found.
	"""
	has_alpha = False
	data = image.data
	for j in range(y, y + height):
		index = j * image.width + x
		for v in data[index:index + width]:
			alpha = (v >> 12) & 0xF
			if alpha < 0xF:
				has_alpha = True
				if alpha > 0:
					return (True, True)

	return (has_alpha, False)
