"""Telemetry module for tracking bot and admin operations with PostHog."""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from posthog import Posthog

logger = logging.getLogger(__name__)

DISTINCT_ID = "nyamedia-bot"

KNOWN_SERVICES = ("emby", "tmdb", "bgm")


@dataclass
class StepResult:
    """Result of a tracked step."""

    duration_ms: float
    success: bool = True
    error_type: str | None = None


@dataclass
class RequestTelemetry:
    """Tracks performance metrics for a single operation."""

    steps: dict[str, StepResult] = field(default_factory=dict)
    api_calls: dict[str, int] = field(default_factory=lambda: dict.fromkeys(KNOWN_SERVICES, 0))
    start_time: float = field(default_factory=time.perf_counter)

    @contextmanager
    def track_step(self, step_name: str):
        """Context manager to time a step.

        Args:
            step_name: Name of the step being tracked

        Yields:
            None
        """
        step_start = time.perf_counter()
        error_type = None

        try:
            yield
        except Exception as e:
            error_type = type(e).__name__
            raise
        finally:
            duration_ms = (time.perf_counter() - step_start) * 1000
            self.steps[step_name] = StepResult(
                duration_ms=duration_ms,
                success=error_type is None,
                error_type=error_type,
            )

    def record_api_call(self, service: str) -> None:
        """Increment API call counter for a service.

        Args:
            service: Name of the service ("emby", "tmdb", "bgm")
        """
        if service in self.api_calls:
            self.api_calls[service] += 1
        else:
            logger.warning(f"Unknown service for API call tracking: {service}")

    def get_total_duration_ms(self) -> float:
        """Get total elapsed time since telemetry was created."""
        return (time.perf_counter() - self.start_time) * 1000

    def get_step_timings(self) -> dict[str, float]:
        """Get timing for each step in milliseconds."""
        return {f"{name}_ms": step.duration_ms for name, step in self.steps.items()}

    def send_to_posthog(
        self,
        posthog_client: Posthog,
        event: str,
        extra_properties: dict[str, Any] | None = None,
    ) -> None:
        """Send step events and a summary event to PostHog.

        Args:
            posthog_client: PostHog client instance
            event: Summary event name; step events are named ``{event}_{step}``
            extra_properties: Additional properties to include in the summary event
        """
        extra_properties = extra_properties or {}

        for step_name, step_result in self.steps.items():
            posthog_client.capture(
                distinct_id=DISTINCT_ID,
                event=f"{event}_{step_name}",
                properties={
                    "step": step_name,
                    "duration_ms": round(step_result.duration_ms, 2),
                    "success": step_result.success,
                    "error_type": step_result.error_type,
                },
            )

        posthog_client.capture(
            distinct_id=DISTINCT_ID,
            event=event,
            properties={
                "total_duration_ms": round(self.get_total_duration_ms(), 2),
                "steps": self.get_step_timings(),
                "api_calls": self.api_calls.copy(),
                **extra_properties,
            },
        )

        logger.debug(
            f"Sent telemetry: {event}, {len(self.steps)} steps, "
            f"total {self.get_total_duration_ms():.1f}ms"
        )


def capture_event(
    posthog_client: Posthog | None,
    event: str,
    properties: dict[str, Any] | None = None,
) -> None:
    """Send a single product event; a missing client or PostHog failure is ignored."""
    if posthog_client is None:
        return
    try:
        posthog_client.capture(distinct_id=DISTINCT_ID, event=event, properties=properties or {})
    except Exception as e:
        logger.warning(f"PostHog capture failed for {event}: {e}")


def report_telemetry(
    posthog_client: Posthog | None,
    telemetry: RequestTelemetry,
    event: str,
    extra_properties: dict[str, Any] | None = None,
) -> None:
    """Send tracked steps for ``event``; a missing client or PostHog failure is ignored."""
    if posthog_client is None:
        return
    try:
        telemetry.send_to_posthog(posthog_client, event, extra_properties)
    except Exception as e:
        logger.warning(f"PostHog capture failed for {event}: {e}")
