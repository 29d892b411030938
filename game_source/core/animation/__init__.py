from .sequence import AnimationSequence, Extrapolation, sample

__all__ = ["AnimationSequence", "Extrapolation", "sample"]
