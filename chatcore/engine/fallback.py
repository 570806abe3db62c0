import logging
from typing import Iterable, List, Sequence, Tuple

from chatcore.common.models import Candidate
from chatcore.engine.catalog import ModelCatalog

logger = logging.getLogger("ChatCore")


class FallbackPlanner:
    """Builds the ordered candidate chain for a request.

    The chain is the requested pair followed by a fixed list of fast,
    highly available alternates. Duplicates are dropped keeping the first
    occurrence, then candidates whose provider is not configured are removed.
    The alternates trade fidelity to the user's pick for availability;
    callers learn which candidate ran from ``GenerationResult.served_by``.
    """

    def __init__(self, catalog: ModelCatalog, fallbacks: Iterable[Tuple[str, str]]):
        self.catalog = catalog
        self.fallbacks: Tuple[Candidate, ...] = tuple(
            Candidate(provider=provider, model=model) for provider, model in fallbacks
        )

    def plan(self, requested: Candidate) -> List[Candidate]:
        seen = set()
        chain: List[Candidate] = []
        for candidate in (requested, *self.fallbacks):
            if candidate in seen:
                continue
            seen.add(candidate)
            if not self.catalog.is_available(candidate.provider):
                logger.debug(f"Skipping candidate {candidate}: provider not configured.")
                continue
            chain.append(candidate)
        logger.info(f"Fallback plan for {requested}: {describe_plan(chain)}")
        return chain


def describe_plan(chain: Sequence[Candidate]) -> str:
    return " -> ".join(str(c) for c in chain) or "<empty>"
