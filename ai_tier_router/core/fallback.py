"""
Model fallback resolution.

Builds the ordered list of substitute models for a primary model from a
static fallback graph. The graph must be acyclic; a cycle is a deploy-time
defect and is rejected when the resolver is built.
"""

from types import MappingProxyType
from typing import Dict, List, Sequence, Tuple

from .errors import ConfigurationError


class FallbackResolver:
    """Immutable lookup of fallback chains."""

    def __init__(self, graph: Dict[str, Sequence[str]]):
        """Build the resolver and validate the graph.

        Args:
            graph: Model identifier -> ordered substitute model identifiers

        Raises:
            ConfigurationError: If the graph contains a cycle or a chain
                repeats a model
        """
        normalized = {}
        for model, chain in graph.items():
            chain = tuple(chain)
            if len(set(chain)) != len(chain):
                raise ConfigurationError(f"Fallback chain for '{model}' repeats a model: {list(chain)}")
            normalized[model] = chain

        _check_acyclic(normalized)
        self._graph = MappingProxyType(normalized)

    def fallbacks_for(self, model_id: str) -> Tuple[str, ...]:
        """Substitutes for a model, in order. Empty if none are configured."""
        return self._graph.get(model_id, ())

    def candidates_for(self, model_id: str) -> List[str]:
        """The primary model followed by its fallbacks."""
        candidates = [model_id]
        for model in self.fallbacks_for(model_id):
            if model not in candidates:
                candidates.append(model)
        return candidates

    @property
    def models(self) -> List[str]:
        return sorted(self._graph)


def _check_acyclic(graph: Dict[str, Tuple[str, ...]]) -> None:
    """Depth-first search for a back edge.

    Raises:
        ConfigurationError: Naming the first cycle found
    """
    visiting, done = set(), set()

    def visit(model: str, path: List[str]) -> None:
        if model in done:
            return
        if model in visiting:
            cycle = path[path.index(model):] + [model]
            raise ConfigurationError(f"Fallback graph has a cycle: {' -> '.join(cycle)}")
        visiting.add(model)
        path.append(model)
        for nxt in graph.get(model, ()):
            visit(nxt, path)
        path.pop()
        visiting.discard(model)
        done.add(model)

    for model in sorted(graph):
        visit(model, [])
