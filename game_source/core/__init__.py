"""
game_source core submodule.
The loading machinery and asset types that know nothing about
manifests. This includes, but is not limited to:
 - The loading procedure and its fetchers
 - The asset cache and display order
 - Spritesheet, font, sound and map compilation
 - The literal and CSV parsers constants are built with
"""
