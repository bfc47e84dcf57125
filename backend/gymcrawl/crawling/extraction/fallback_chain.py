"""
Fallback Chain - Ordered degraded-mode strategies tried after a primary search fails
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Dict, List, Optional

import structlog
from pydantic import BaseModel

from gymcrawl.models import Observation, ObservationType

if TYPE_CHECKING:
    from gymcrawl.crawling.sources.base import SourceAdapter
    from gymcrawl.crawling.sources.public_api import PublicApiAdapter

logger = structlog.get_logger(__name__)

MINIMAL_SOURCE = "minimal_fallback"
MINIMAL_CONFIDENCE = 0.05


class FallbackResult(BaseModel):
    """Observation produced by the chain and the strategy that produced it"""
    strategy: str
    observation: Observation


class FallbackStrategy(ABC):
    """A single alternative way to describe a facility"""

    name: str = "fallback"
    priority: int = 100

    def is_available(self) -> bool:
        return True

    @abstractmethod
    async def execute(self, name: str, address: Optional[str] = None) -> Optional[Observation]:
        """
        Produce an observation or None when this strategy has nothing

        Args:
            name: Facility name
            address: Facility address, if known

        Returns:
            Observation or None
        """
        pass


class SimplifiedQueryStrategy(FallbackStrategy):
    """Query a secondary adapter with the bare facility name"""

    def __init__(
        self,
        adapter: "SourceAdapter",
        priority: int = 10,
        confidence_factor: float = 0.8,
        blocked: Optional[Callable[[str], bool]] = None
    ):
        self.adapter = adapter
        self.priority = priority
        self.confidence_factor = confidence_factor
        self.name = f"simplified_query:{adapter.name}"
        self._blocked = blocked

    def is_available(self) -> bool:
        if self._blocked and self._blocked(self.adapter.name):
            return False
        return self.adapter.is_available()

    async def execute(self, name: str, address: Optional[str] = None) -> Optional[Observation]:
        observation = await self.adapter.search(name, None)
        if observation is None:
            return None
        return observation.model_copy(update={
            "address": observation.address or (address or ""),
            "confidence": observation.confidence * self.confidence_factor,
        })


class PublicDatasetStrategy(FallbackStrategy):
    """Answer from public dataset rows already collected in this run"""

    name = "public_dataset"

    def __init__(self, adapter: "PublicApiAdapter", priority: int = 20):
        self.adapter = adapter
        self.priority = priority

    def is_available(self) -> bool:
        return self.adapter.has_data()

    async def execute(self, name: str, address: Optional[str] = None) -> Optional[Observation]:
        return self.adapter.lookup(name, address)


class MinimalObservationStrategy(FallbackStrategy):
    """Last resort: name and address only, very low confidence"""

    name = MINIMAL_SOURCE
    priority = 1000

    def __init__(self, confidence: float = MINIMAL_CONFIDENCE):
        self.confidence = confidence

    async def execute(self, name: str, address: Optional[str] = None) -> Observation:
        return self.build(name, address)

    def build(self, name: str, address: Optional[str] = None) -> Observation:
        return Observation(
            name=name,
            address=address or "",
            source=MINIMAL_SOURCE,
            confidence=self.confidence,
            type=ObservationType.PRIVATE
        )


def is_minimal(observation: Optional[Observation]) -> bool:
    return observation is not None and observation.source == MINIMAL_SOURCE


class FallbackChain:
    """
    Strategies tried strictly by ascending priority

    The minimal observation strategy always sits last, so execute()
    never comes back empty-handed.
    """

    def __init__(self, strategies: Optional[List[FallbackStrategy]] = None):
        self.strategies: List[FallbackStrategy] = []
        self.usage: Dict[str, int] = {}
        self._minimal = MinimalObservationStrategy()
        for strategy in strategies or []:
            self.add_strategy(strategy)
        if not any(isinstance(s, MinimalObservationStrategy) for s in self.strategies):
            self.add_strategy(self._minimal)

    def add_strategy(self, strategy: FallbackStrategy):
        if isinstance(strategy, MinimalObservationStrategy):
            self.strategies = [s for s in self.strategies if not isinstance(s, MinimalObservationStrategy)]
            self._minimal = strategy
        self.strategies.append(strategy)
        self.strategies.sort(key=lambda s: (isinstance(s, MinimalObservationStrategy), s.priority))

    async def execute_with_details(self, name: str, address: Optional[str] = None) -> FallbackResult:
        """Run strategies in order; the first non-None observation wins"""
        for strategy in self.strategies:
            if not strategy.is_available():
                continue
            try:
                observation = await strategy.execute(name, address)
            except Exception as e:
                logger.warning("Fallback strategy failed",
                               strategy=strategy.name,
                               target=name,
                               error=str(e),
                               error_type=type(e).__name__)
                continue

            if observation is not None:
                self.usage[strategy.name] = self.usage.get(strategy.name, 0) + 1
                logger.info("Fallback strategy succeeded",
                            strategy=strategy.name,
                            target=name,
                            confidence=observation.confidence)
                return FallbackResult(strategy=strategy.name, observation=observation)

        self.usage[self._minimal.name] = self.usage.get(self._minimal.name, 0) + 1
        return FallbackResult(strategy=self._minimal.name, observation=self._minimal.build(name, address))

    async def execute(self, name: str, address: Optional[str] = None) -> Observation:
        result = await self.execute_with_details(name, address)
        return result.observation
