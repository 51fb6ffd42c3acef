"""
Error taxonomy for the tracker core.

Every error carries an HTTP status and a context dict so routes can render
them uniformly (see ``app.register_error_handlers``).
"""

from typing import Any, Dict, Optional


class TrackerError(Exception):
    """Base class for errors surfaced to callers"""
    status_code = 500
    retryable = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': False,
            'error': self.message,
            'error_type': type(self).__name__,
            'retryable': self.retryable,
            **self.context,
        }


class ValidationError(TrackerError):
    """Malformed or missing input"""
    status_code = 400


class NotFoundError(TrackerError):
    """Referenced scenario, KU or facet does not exist"""
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)


class InvalidStateTransitionError(TrackerError):
    """Transition requested from a state that does not permit it"""
    status_code = 409

    def __init__(self, scenario_id: str, current_state: str, requested: str):
        super().__init__(
            f"Cannot {requested} scenario {scenario_id} in state '{current_state}'",
            scenario_id=scenario_id,
            current_state=current_state,
            requested=requested,
        )


class GenerationFailure(TrackerError):
    """Content generator call failed, timed out, or returned unusable output"""
    status_code = 502
    retryable = True

    def __init__(self, operation: str, reason: str, cause: Optional[BaseException] = None):
        super().__init__(f"Content generation failed during {operation}: {reason}", operation=operation)
        self.cause = cause


class StoreFailure(TrackerError):
    """Persistence layer unavailable or write rejected"""
    status_code = 503


class ConcurrentModificationError(StoreFailure):
    """Record changed underneath a read-modify-write"""
    status_code = 409
    retryable = True


class ScenarioBusyError(TrackerError):
    """Another transition for the same scenario is in flight"""
    status_code = 409
    retryable = True

    def __init__(self, scenario_id: str):
        super().__init__(
            f"Scenario {scenario_id} has a transition in progress",
            scenario_id=scenario_id,
        )
