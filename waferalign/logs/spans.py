"""Structured spans giving hierarchical context to log events."""

from __future__ import annotations

import json
import logging
import math
import time
import uuid
from contextvars import ContextVar, Token
from typing import Any

from waferalign.logs.context import get_patch_context

logger = logging.getLogger(__name__)

_SPAN_STACK: ContextVar[tuple[str, ...]] = ContextVar("waferalign_span_stack", default=())


class _Span:
    """A named span carrying fields; entering it nests later spans and events beneath it."""

    def __init__(self, name: str, level: int, fields: dict[str, Any]) -> None:
        self.name = name
        self.level = level
        self.fields: dict[str, Any] = {k: v for k, v in fields.items() if v is not None}
        self._parents = _SPAN_STACK.get()
        self._start = time.perf_counter()
        self._tokens: list[Token] = []

    def _elapsed_ms(self) -> int:
        return int((time.perf_counter() - self._start) * 1000)

    def _event(self, level: int, message: str, **fields: Any) -> None:
        logger.log(
            level,
            message,
            extra={
                "spans": [*self._parents, self.name],
                "fields": fields,
                "span_fields": dict(self.fields),
            },
            stacklevel=3,
        )

    def __enter__(self):
        self._tokens.append(_SPAN_STACK.set(_SPAN_STACK.get() + (self.name,)))
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        _SPAN_STACK.reset(self._tokens.pop())


class AlgorithmSpan(_Span):
    """Span around one algorithm execution on one patch."""

    def __init__(
        self,
        algorithm_name: str,
        patch_location: tuple[int, int] | None = None,
        patch_size: tuple[int, int] | None = None,
        correlation_id: uuid.UUID | None = None,
    ) -> None:
        context = get_patch_context()
        if context is not None:
            patch_location = patch_location or context.extracted_from
            patch_size = patch_size or context.patch_size
        self.algorithm_name = algorithm_name
        self.patch_location = patch_location
        self.patch_size = patch_size
        super().__init__(
            "algorithm_execution",
            logging.INFO,
            {
                "algorithm": algorithm_name,
                "patch_x": patch_location[0] if patch_location else None,
                "patch_y": patch_location[1] if patch_location else None,
                "patch_width": patch_size[0] if patch_size else None,
                "patch_height": patch_size[1] if patch_size else None,
                "correlation_id": str(correlation_id) if correlation_id else None,
            },
        )

    def __enter__(self) -> AlgorithmSpan:
        return super().__enter__()

    def __exit__(self, exc_type, exc, tb) -> None:
        super().__exit__(exc_type, exc, tb)

    def record_feature_detection(self, keypoints: int, descriptors: int) -> None:
        self.fields["keypoints_detected"] = keypoints
        self.fields["descriptors_computed"] = descriptors
        self._event(
            logging.DEBUG,
            "Feature detection completed",
            keypoints=keypoints,
            descriptors=descriptors,
        )

    def record_matching(
        self, raw_matches: int, filtered_matches: int, match_confidence: float
    ) -> None:
        self.fields["raw_matches"] = raw_matches
        self.fields["filtered_matches"] = filtered_matches
        self.fields["match_confidence"] = match_confidence
        self._event(
            logging.DEBUG,
            "Feature matching completed",
            raw_matches=raw_matches,
            filtered_matches=filtered_matches,
            match_confidence=match_confidence,
        )

    def record_ransac(self, iterations: int, inliers: int, final_error: float) -> None:
        self.fields["ransac_iterations"] = iterations
        self.fields["ransac_inliers"] = inliers
        self.fields["ransac_error"] = final_error
        self._event(
            logging.DEBUG,
            "RANSAC estimation completed",
            iterations=iterations,
            inliers=inliers,
            final_error=final_error,
        )

    def record_result(self, success: bool, confidence: float, description: str) -> None:
        """Record the outcome and the elapsed time."""
        elapsed = self._elapsed_ms()
        self.fields["success"] = success
        self.fields["final_confidence"] = confidence
        self.fields["execution_time_ms"] = float(elapsed)
        self.fields["result_description"] = description
        self._event(
            logging.INFO,
            "Algorithm execution completed",
            success=success,
            confidence=confidence,
            execution_time_ms=elapsed,
            description=description,
        )

    def record_detailed_result(
        self,
        translation: tuple[float, float],
        rotation: float,
        scale: float,
        confidence: float,
        found_location: tuple[int, int],
    ) -> None:
        """Record the transformation found and, if the patch origin is known, its spatial error."""
        elapsed = self._elapsed_ms()
        tx, ty = translation
        found_x, found_y = found_location
        self.fields.update(
            translation_x=tx,
            translation_y=ty,
            rotation=rotation,
            scale=scale,
            final_confidence=confidence,
            found_x=found_x,
            found_y=found_y,
            execution_time_ms=float(elapsed),
        )
        summary = {
            "match_found_at": f"({found_x}, {found_y})",
            "translation": f"({tx:.2f}, {ty:.2f})",
            "rotation": f"{rotation:.2f}°",
            "scale": f"{scale:.3f}x",
            "confidence": f"{confidence:.3f}",
            "execution_time_ms": elapsed,
        }

        if self.patch_location is None:
            self._event(
                logging.INFO, "Alignment result recorded (patch origin unknown)", **summary
            )
            return

        orig_x, orig_y = self.patch_location
        distance = math.sqrt((found_x - orig_x) ** 2 + (found_y - orig_y) ** 2)
        translation_error = math.sqrt(tx**2 + ty**2)
        self.fields["patch_to_match_distance"] = distance
        self.fields["translation_error"] = translation_error
        self._event(
            logging.INFO,
            "Detailed spatial alignment result recorded",
            patch_extracted_at=f"({orig_x}, {orig_y})",
            spatial_distance=f"{distance:.2f}px",
            translation_error=f"{translation_error:.2f}px",
            **summary,
        )

    def record_patch_context(
        self,
        extracted_from: tuple[int, int],
        variance: float,
        source_image_size: tuple[int, int],
    ) -> None:
        self.fields.update(
            patch_extracted_x=extracted_from[0],
            patch_extracted_y=extracted_from[1],
            patch_variance=variance,
            source_width=source_image_size[0],
            source_height=source_image_size[1],
        )
        self._event(
            logging.DEBUG,
            "Patch extraction context recorded",
            patch_extracted_at=f"({extracted_from[0]}, {extracted_from[1]})",
            patch_variance=f"{variance:.1f}",
            source_image_size=f"{source_image_size[0]}x{source_image_size[1]}",
        )


class PipelineSpan(_Span):
    """Span around one pipeline stage."""

    def __init__(self, stage_name: str, correlation_id: uuid.UUID | None = None) -> None:
        self.stage_name = stage_name
        super().__init__(
            "pipeline_stage",
            logging.INFO,
            {
                "stage": stage_name,
                "correlation_id": str(correlation_id) if correlation_id else None,
            },
        )

    def __enter__(self) -> PipelineSpan:
        return super().__enter__()

    def __exit__(self, exc_type, exc, tb) -> None:
        super().__exit__(exc_type, exc, tb)

    def record_input(self, input_type: str, input_size: tuple[int, int] | None = None) -> None:
        self.fields["input_type"] = input_type
        if input_size is not None:
            self.fields["input_width"], self.fields["input_height"] = input_size
        self._event(
            logging.DEBUG,
            "Pipeline stage input recorded",
            input_type=input_type,
            input_width=input_size[0] if input_size else None,
            input_height=input_size[1] if input_size else None,
        )

    def record_completion(self, output_type: str, success: bool) -> None:
        elapsed = self._elapsed_ms()
        self.fields["output_type"] = output_type
        self.fields["success"] = success
        self.fields["execution_time_ms"] = float(elapsed)
        self._event(
            logging.INFO,
            "Pipeline stage completed",
            output_type=output_type,
            success=success,
            execution_time_ms=elapsed,
        )


class TestSessionSpan(_Span):
    """Span around a whole test session."""

    __test__ = False

    def __init__(self, test_type: str, session_id: uuid.UUID) -> None:
        self.test_type = test_type
        self.session_id = session_id
        super().__init__(
            "test_session",
            logging.INFO,
            {"test_type": test_type, "session_id": str(session_id)},
        )

    def __enter__(self) -> TestSessionSpan:
        return super().__enter__()

    def __exit__(self, exc_type, exc, tb) -> None:
        super().__exit__(exc_type, exc, tb)

    def record_config(self, config: str, parameters: Any) -> None:
        self.fields["test_config"] = config
        self._event(
            logging.INFO,
            "Test session configuration recorded",
            config=config,
            parameters=json.dumps(parameters, separators=(",", ":")),
        )

    def record_iteration(self, iteration: int, algorithm: str, success: bool) -> None:
        self._event(
            logging.DEBUG,
            "Test iteration completed",
            iteration=iteration,
            algorithm=algorithm,
            success=success,
        )

    def record_completion(self, total_tests: int, successful_tests: int) -> None:
        elapsed = self._elapsed_ms()
        success_rate = successful_tests / total_tests * 100.0 if total_tests > 0 else 0.0
        self.fields.update(
            total_tests=total_tests,
            successful_tests=successful_tests,
            success_rate=success_rate,
            session_duration_ms=float(elapsed),
        )
        self._event(
            logging.INFO,
            "Test session completed",
            total_tests=total_tests,
            successful_tests=successful_tests,
            success_rate=success_rate,
            session_duration_ms=elapsed,
        )


def _dynamic_span(name: str, level: int, correlation_id: uuid.UUID | None) -> _Span:
    return _Span(
        "dynamic_span",
        level,
        {"name": name, "correlation_id": str(correlation_id) if correlation_id else None},
    )


def create_info_span(name: str, correlation_id: uuid.UUID | None = None) -> _Span:
    """An info-level span labelled with a dynamic name."""
    return _dynamic_span(name, logging.INFO, correlation_id)


def create_debug_span(name: str, correlation_id: uuid.UUID | None = None) -> _Span:
    """A debug-level span labelled with a dynamic name."""
    return _dynamic_span(name, logging.DEBUG, correlation_id)