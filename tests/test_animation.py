
from math import inf
from types import SimpleNamespace

import pytest

from game_source.core.animation import AnimationSequence, Extrapolation, sample
from game_source.core.animation.sequence import compute_timing
from game_source.core.errors import FrozenAssetError


def _sequence(durations, extrapolate):
	sprites = [SimpleNamespace(frames=f, index=i) for i, f in enumerate(durations)]
	return AnimationSequence("anim", sprites, extrapolate)


def _indices(sequence, frames):
	return [sample(sequence, f).index for f in frames]


def test_timing():
	assert compute_timing([1, 2, 3], Extrapolation.CLAMP) == (0, 6)
	assert compute_timing([1, 2, 3], Extrapolation.LOOP) == (6, inf)
	assert compute_timing([1, 2, 3], Extrapolation.OSCILLATE) == (1 + 4 + 3, inf)
	assert compute_timing([2], Extrapolation.OSCILLATE) == (2, inf)


def test_loop():
	seq = _sequence([1, 1, 1], Extrapolation.LOOP)
	assert seq.period == 3
	assert _indices(seq, [0, 1, 2, 3, 4, 5.5, 300]) == [0, 1, 2, 0, 1, 2, 0]
	assert _indices(seq, [-1, -2, -3, -0.5]) == [2, 1, 0, 2]


def test_clamp():
	seq = _sequence([2, 3], Extrapolation.CLAMP)
	assert seq.frames == 5
	assert _indices(seq, [-3, 0, 1.9, 2, 4, 5, 100]) == [0, 0, 0, 1, 1, 1, 1]


def test_oscillate():
	seq = _sequence([1, 1, 1], Extrapolation.OSCILLATE)
	assert seq.period == 4
	assert _indices(seq, range(9)) == [0, 1, 2, 1, 0, 1, 2, 1, 0]


def test_oscillate_uneven_durations():
	seq = _sequence([1, 2, 1], Extrapolation.OSCILLATE)
	assert seq.period == 6
	assert _indices(seq, range(7)) == [0, 1, 1, 2, 1, 1, 0]


def test_extrapolation_from_json():
	assert Extrapolation.from_json(None) is Extrapolation.LOOP
	assert Extrapolation.from_json("clamp") is Extrapolation.CLAMP
	with pytest.raises(ValueError):
		Extrapolation.from_json("bounce")


def test_sequence_is_frozen():
	seq = _sequence([1], Extrapolation.LOOP)
	assert len(seq) == 1
	with pytest.raises(FrozenAssetError):
		seq.period = 2
	with pytest.raises(ValueError):
		AnimationSequence("empty", [], Extrapolation.LOOP)
