"""Build keys and completion markers."""

from .keys import BuildInputs, build_inputs, build_key
from .marker import MARKER_NAME, CompletionMarker

__all__ = ["MARKER_NAME", "BuildInputs", "CompletionMarker", "build_inputs", "build_key"]
