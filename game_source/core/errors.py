
import typing as t


class LoadError(Exception):
	"""
	Base class for any error that aborts a load session.
	Carries the url of the document that caused it, if known.
	"""

	def __init__(self, message: str, url: t.Optional[str] = None) -> None:
		super().__init__(message)
		self.message = message
		self.url = url

	def __str__(self) -> str:
		if self.url is None:
			return self.message
		return f"{self.message} (in {self.url})"


class ConfigurationError(LoadError):
	"""
	A manifest or metadata document is malformed: missing fields,
	illegal values, out of bounds indices, mismatching sizes.
	"""
	pass


class FetchError(LoadError):
	"""
	A document could not be fetched or decoded.
	"""

	def __init__(
		self,
		message: str,
		url: t.Optional[str] = None,
		cause: t.Optional[BaseException] = None,
	) -> None:
		super().__init__(message, url)
		self.cause = cause


class ReferenceCycleError(ConfigurationError):
	def __init__(self, chain: t.Sequence[str], url: t.Optional[str] = None) -> None:
		self.chain = tuple(chain)
		super().__init__("Cycle in reference chain: " + " → ".join(self.chain), url)


class LiteralParseError(ValueError):
	pass


class FrozenAssetError(AttributeError):
	pass
