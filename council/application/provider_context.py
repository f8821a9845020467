"""Resolution of a provider's own conversation context for single-provider steps."""

import logging
from typing import Any

from council.application.run_state import RunState
from council.domain.models.results import BatchResult
from council.domain.persistence.collaborator import PersistenceCollaborator

logger = logging.getLogger(__name__)


class ProviderContextResolver:
    """Finds the continuation blob a provider should resume from.

    Tiers are tried in order and the first hit wins:

    1. the in-run cache written by this run's batch step
    2. contexts already known to the resolved context
    3. the output meta of an explicitly linked batch step
    4. durable storage

    Only the first tier is expected to hit in a normal run; the others
    cover recompute runs and batch steps whose cache write was skipped.
    """

    def __init__(self, persistence: PersistenceCollaborator | None = None) -> None:
        self._persistence = persistence

    def resolve(
        self,
        provider_id: str,
        run: RunState,
        linked_batch_step: str | None = None,
    ) -> dict[str, Any] | None:
        cached = run.provider_contexts.get(provider_id)
        if cached:
            logger.debug(f"Context for {provider_id}: in-run cache")
            return cached

        historical = run.historical_contexts.get(provider_id)
        if historical:
            logger.debug(f"Context for {provider_id}: resolved context")
            return historical

        if linked_batch_step:
            linked = run.step_results.get(linked_batch_step)
            if linked is not None and linked.is_completed and isinstance(linked.result, BatchResult):
                output = linked.result.results.get(provider_id)
                if output is not None and output.meta:
                    logger.debug(f"Context for {provider_id}: linked step {linked_batch_step}")
                    return dict(output.meta)

        if self._persistence is None:
            return None
        try:
            stored = self._persistence.get_provider_contexts(run.session_id)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read stored contexts for {run.session_id}: {e}")
            return None
        meta = stored.get(provider_id)
        if meta:
            logger.debug(f"Context for {provider_id}: storage")
            return dict(meta)
        return None
