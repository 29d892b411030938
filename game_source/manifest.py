"""
Validation of a game's manifest and fanning out the fetches for
everything it references.
"""

import copy
from concurrent.futures import Future
import re
import typing as t

from loguru import logger
from schema import And, Optional, Schema

from game_source.constants import (
	follow_reference_chain, is_external, parse_raw_document, parse_table, raw_document_kind
)
from game_source.core.asset_system import PayloadKind
from game_source.core.errors import ConfigurationError, LoadError
from game_source.core.font import load_font
from game_source.core.sound import load_sound
from game_source.core.spritesheet import load_spritesheet
from game_source.core.tilemap import load_map
from game_source.core.utils import asset_type_of, validate_json

if t.TYPE_CHECKING:
	from game_source.session import LoadSession


ASSET_LOADERS: t.Dict[
	str, t.Callable[["LoadSession", str, t.Dict[str, t.Any], str], Future]
] = {
	"font": load_font,
	"sprite": load_spritesheet,
	"sound": load_sound,
	"map": load_map,
}

MODE_SUFFIX = ".pyxl"

_GAME_JSON_RE = re.compile(r"\.game\.json$", re.IGNORECASE)

MANIFEST_SCHEMA = Schema(
	{
		"modes": And(
			Schema(list, error="The modes parameter is not an array"),
			Schema(len, error="The game has no modes"),
			Schema([str], error="Every mode must be a string"),
		),
		Optional("assets"): Schema(dict, error="The assets parameter is not an object"),
		Optional("constants"): Schema(dict, error="The constants parameter is not an object"),
		Optional("scripts"): Schema(list, error="The scripts parameter is not an array"),
		Optional("docs"): Schema(list, error="The docs parameter is not an array"),
		Optional("title"): Schema(str, error="The title must be a string"),
		Optional("developer"): Schema(str, error="The developer must be a string"),
		Optional("copyright"): Schema(str, error="The copyright must be a string"),
		Optional(str): object,
	},
)


def resolve_game_url(url: str) -> str:
	"""
	Turns the url of a game's directory into the url of its manifest,
	``<dir>/<name>.game.json``. Manifest urls are returned unchanged.
	"""
	if _GAME_JSON_RE.search(url):
		return url
	url = url.rstrip("/")
	return re.sub(r"(/|^)([^/]+)$", r"\1\2/\2.game.json", url)


def debug_url_of(game_url: str) -> str:
	return _GAME_JSON_RE.sub(".debug.json", game_url)


def mode_name(mode: str) -> str:
	"""
	Strips the path of a mode and replaces a leading underscore with
	``$``, which would be a nuisance in actual file names.
	"""
	name = re.sub(r"^.*/", "", mode)
	return "$" + name[1:] if name.startswith("_") else name


def _strip_cr(text: str) -> str:
	return text.replace("\r", "")


def validate_manifest(
	manifest: t.Dict[str, t.Any],
	session: "LoadSession",
) -> t.Dict[str, t.Any]:
	"""
	Checks the structure of a manifest, upgrading a legacy start mode
	in place. Returns the extended copy of the manifest everything is
	loaded from, with defaults filled in.
	"""
	config = session.config
	url = session.game_url

	validate_json(MANIFEST_SCHEMA, manifest, url)

	modes = manifest["modes"]
	assets = manifest.setdefault("assets", {})
	for name in assets:
		if name.startswith(config.reserved_prefix):
			raise ConfigurationError(f'Illegal asset name: "{name}"', url)

	if not manifest.get("start_mode"):
		for i, mode in enumerate(modes):
			if "*" in mode:
				session.warn("Legacy start mode upgraded on load", url)
				manifest["start_mode"] = modes[i] = mode.replace("*", "")

	extended = copy.deepcopy(manifest)

	screen_size = extended.setdefault(
		"screen_size",
		{"x": config.default_screen_size[0], "y": config.default_screen_size[1]},
	)
	if (
		not isinstance(screen_size, dict) or
		(screen_size.get("x"), screen_size.get("y")) not in
			[tuple(s) for s in config.screen_sizes]
	):
		size = (
			f"{screen_size.get('x')} x {screen_size.get('y')}" if isinstance(screen_size, dict)
			else repr(screen_size)
		)
		raise ConfigurationError(f"{size} is not a supported screen size.", url)

	for i, script in enumerate(extended.get("scripts", [])):
		if not isinstance(script, str):
			raise ConfigurationError(f"Script {i} is not a url.", url)

	start_mode = extended.get("start_mode")
	matches = sum(1 for mode in extended["modes"] if mode_name(mode) == start_mode)
	if matches == 0:
		raise ConfigurationError('No "start_mode" specified', url)
	if matches > 1:
		raise ConfigurationError(f'"start_mode" {start_mode!r} matches {matches} modes', url)

	return extended


def _schedule_text(
	session: "LoadSession", url: str, on_text: t.Callable[[str], None]
) -> None:
	def on_success(text: str) -> None:
		text = _strip_cr(text)
		session.add_code_to_source_stats(text, url)
		session.file_contents[url] = text
		on_text(text)

	session.procedure.schedule(
		url, PayloadKind.TEXT, on_success, force_reload=session.compute_force_reload(url)
	)


def _load_asset(
	session: "LoadSession",
	name: str,
	type_: t.Optional[str],
	url: str,
	json: t.Any,
) -> t.Optional[Future]:
	session.file_contents[url] = json
	loader = ASSET_LOADERS.get(type_) if type_ is not None else None
	if loader is None:
		session.warn(f'Unrecognized asset type: "{type_}"', url)
		return None

	if not isinstance(json, dict):
		raise ConfigurationError("Asset metadata must be an object", url)
	return loader(session, name, json, url)


def _schedule_assets(session: "LoadSession", manifest: t.Dict[str, t.Any]) -> None:
	gs = session.game_source
	for name in sorted(manifest["assets"]):
		ref = manifest["assets"][name]
		if not isinstance(ref, str):
			raise ConfigurationError(f'Asset "{name}" must be a url', session.game_url)
		url = session.make_url_absolute(session.game_url, ref)
		type_ = asset_type_of(url)

		def store(asset: t.Any, name: str = name) -> None:
			if asset is not None:
				gs.assets[name] = asset

		# The metadata document is always fetched again, even if the asset
		# itself is cached.
		loaded = session.procedure.schedule(
			url,
			PayloadKind.JSON,
			lambda json, name=name, type_=type_, url=url: _load_asset(session, name, type_, url, json),
			force_reload = session.compute_force_reload(url),
		)
		session.procedure.defer([loaded], store, url)


def _schedule_external_constant(
	session: "LoadSession", name: str, definition: t.Dict[str, t.Any]
) -> None:
	gs = session.game_source
	url = session.make_url_absolute(session.game_url, definition["url"])

	if definition["type"] == "raw":
		raw_document_kind(url)

		def on_raw(text: str) -> None:
			session.file_contents[url] = text
			gs.constants[name] = parse_raw_document(text, url)

		session.procedure.schedule(url, PayloadKind.TEXT, on_raw)
	else:
		def on_table(text: str) -> None:
			session.file_contents[url] = text
			gs.constants[name] = parse_table(text, definition)

		session.procedure.schedule(url, PayloadKind.TEXT, on_table)


def _process_constants(session: "LoadSession", manifest: t.Dict[str, t.Any]) -> None:
	gs = session.game_source
	definitions = manifest.get("constants", {})
	references = []

	for name in sorted(definitions):
		definition = definitions[name]
		if is_external(definition):
			_schedule_external_constant(session, name, definition)
		elif isinstance(definition, dict) and definition.get("type") == "reference":
			references.append(name)
		else:
			try:
				gs.constants[name] = session.evaluate_constant(definition)
			except LoadError as e:
				raise ConfigurationError(f"{e.message} in constant {name!r}", session.game_url) from e

	# Checked against declared names only; assets and external constants
	# have not loaded yet.
	def known(identifier: str) -> bool:
		return identifier in definitions or identifier in manifest["assets"]

	for name in references:
		try:
			gs.constants[name] = follow_reference_chain(name, definitions, known)
		except LoadError as e:
			e.url = session.game_url
			raise


def _process_docs(session: "LoadSession", manifest: t.Dict[str, t.Any]) -> None:
	docs = []
	for doc in manifest.get("docs", []):
		# Legacy manifests describe docs with objects
		ref = doc if isinstance(doc, str) else (doc.get("url") if isinstance(doc, dict) else None)
		if not isinstance(ref, str):
			raise ConfigurationError(f"Illegal doc entry {doc!r}", session.game_url)
		docs.append(session.make_url_absolute(session.game_url, ref))
	session.game_source.docs = docs


def process_manifest(session: "LoadSession", manifest: t.Any) -> None:
	"""
	Validates the manifest of the game and schedules the fetches of
	its scripts, modes, assets and external constants.
	"""
	# Imported here as the session module imports this one
	from game_source.session import Mode

	url = session.game_url
	if not isinstance(manifest, dict):
		raise ConfigurationError("The game manifest must be an object", url)

	gs = session.game_source
	extended = validate_manifest(manifest, session)
	session.file_contents[url] = gs.json = manifest
	gs.extended_json = extended
	gs.screen_size = (extended["screen_size"]["x"], extended["screen_size"]["y"])
	gs.start_mode = extended["start_mode"]

	for script in extended.get("scripts", []):
		script_url = session.make_url_absolute(url, script)
		gs.scripts.append(script_url)
		_schedule_text(session, script_url, lambda _: None)

	for mode in extended["modes"]:
		gs.modes.append(Mode(mode_name(mode), session.make_url_absolute(url, mode + MODE_SUFFIX)))
	for mode in gs.modes:
		_schedule_text(session, mode.url, lambda _: None)

	_schedule_assets(session, extended)
	_process_constants(session, extended)
	_process_docs(session, extended)

	logger.debug(
		f"Manifest {url} processed: {len(gs.scripts)} scripts, {len(gs.modes)} modes, "
		f"{len(extended['assets'])} assets"
	)


def schedule_manifest(session: "LoadSession") -> None:
	"""
	Schedules the fetch of the session's manifest and, if configured,
	its debug document.
	"""
	url = session.game_url
	gs = session.game_source

	if session.config.load_debug_json and not session.is_builtin(url):
		def on_debug(json: t.Any) -> None:
			gs.debug = json

		session.procedure.schedule(
			debug_url_of(url), PayloadKind.JSON, on_debug, on_failure=lambda _: True
		)

	session.procedure.schedule(
		url,
		PayloadKind.JSON,
		lambda manifest: process_manifest(session, manifest),
		force_reload = session.compute_force_reload(url),
	)
