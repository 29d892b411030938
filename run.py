#!/usr/bin/env python3

import argparse
import json
import sys
import typing as t

load_dotenv: t.Optional[t.Callable] = None
try:
	from dotenv import load_dotenv # type: ignore
except ImportError:
	pass


def _format_value(value: t.Any) -> str:
	try:
		return json.dumps(value)
	except TypeError:
		return repr(value)


def main():
	argparser = argparse.ArgumentParser(
		description = "Loads a game and prints what it consists of."
	)
	argparser.add_argument(
		"game",
		help = "The game's .game.json manifest, or the directory containing it.",
	)
	argparser.add_argument(
		"--verbose",
		"-v",
		action = "count",
		default = 0,
		help = (
			"Raises the log level. If specified once, logs every asset as it's loaded. "
			"If specified more often than that, logs every fetch."
		),
	)
	argparser.add_argument(
		"--quiet",
		"-q",
		action = "store_true",
		help = "Only logs warnings and errors.",
	)
	argparser.add_argument(
		"--threads",
		"-t",
		type = int,
		default = None,
		help = "Amount of loader threads. Defaults to GAME_SOURCE_THREADS or 4.",
	)
	argparser.add_argument(
		"--builtin-root",
		default = None,
		help = "Directory quad:// urls resolve against.",
	)

	result = argparser.parse_args()

	if load_dotenv is not None:
		load_dotenv()

	from loguru import logger

	level = "WARNING" if result.quiet else ("INFO", "DEBUG", "TRACE")[min(result.verbose, 2)]
	logger.remove(0)
	logger.add(
		sys.stderr,
		level = level,
		format = (
			"<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
			"<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
		),
	)

	from game_source import GameLoader, LoadError, LoaderConfig

	overrides = {}
	if result.threads is not None:
		overrides["thread_count"] = result.threads
	if result.builtin_root is not None:
		overrides["builtin_root"] = result.builtin_root

	try:
		loader = GameLoader(LoaderConfig.from_env(**overrides))
		game = loader.load_game_blocking(result.game)
	except LoadError as e:
		logger.error(str(e))
		sys.exit(1)

	print(f"{game.extended_json.get('title', 'Untitled')} ({game.json_url})")
	print(f"Screen size: {game.screen_size[0]}x{game.screen_size[1]}, start mode: {game.start_mode}")

	print("\nAssets:")
	for name, asset in sorted(game.assets.items()):
		print(f"  {name}: {asset!r}")

	print("\nConstants:")
	for name in sorted(game.constants):
		print(f"  {name} = {_format_value(game.constants[name])}")

	print("\nCredits:")
	for category, lines in game.credits.lines.items():
		for line in lines:
			print(f"  [{category}] {line}")

	print("\nResources:")
	for key, value in game.resource_stats.to_json().items():
		if not isinstance(value, dict):
			print(f"  {key}: {value}")
	print(f"  cache: {loader.get_cache_stats()!r}")


if __name__ == "__main__":
	main()
