"""The outcome of aligning a template against a target image."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(kw_only=True)
class AlignmentResult:
    """Estimated transformation, confidence and timing of one alignment."""

    translation: tuple[float, float] = (0.0, 0.0)
    rotation: float = 0.0
    scale: float = 1.0
    confidence: float = 0.0
    processing_time_ms: float = 0.0
    algorithm_used: str

    @classmethod
    def for_algorithm(cls, algorithm: str) -> AlignmentResult:
        """An identity result attributed to ``algorithm``."""
        return cls(algorithm_used=algorithm)

    def to_dict(self) -> dict[str, Any]:
        return {
            "translation": [self.translation[0], self.translation[1]],
            "rotation": self.rotation,
            "scale": self.scale,
            "confidence": self.confidence,
            "processing_time_ms": self.processing_time_ms,
            "algorithm_used": self.algorithm_used,
        }