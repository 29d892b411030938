#!/usr/bin/env python3

from setuptools import find_packages, setup


if __name__ == "__main__":
	setup(
		name = "game-source-loader",
		version = "0.1.0",
		description = "Loads game manifests and compiles the assets they reference.",
		packages = find_packages(include=["game_source", "game_source.*"]),
		py_modules = ["run"],
		python_requires = ">=3.8",
		install_requires = [
			"pyglet>=2.0",
			"loguru",
			"PyYAML",
			"schema",
			"python-dotenv",
		],
		extras_require = {
			"test": ["pytest"],
		},
		entry_points = {
			"console_scripts": ["game-source-loader = run:main"],
		},
	)
