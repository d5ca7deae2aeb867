"""Field dependency graph built from conditional show/require rules."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Set

from .definition import FieldDefinition, normalize_form_definition


@dataclass
class FieldGraph:
    """Input fields of a form plus ``source -> target`` dependency edges.

    An edge exists whenever ``target``'s show/require rule references
    ``source``. Nodes are canonical answer keys; ``aliases`` resolves a raw
    field id or answer key to its node.
    """

    fields: List[FieldDefinition] = field(default_factory=list)
    aliases: Dict[str, str] = field(default_factory=dict)
    edges: Dict[str, Set[str]] = field(default_factory=dict)

    def canonical(self, ref: str) -> str:
        return self.aliases.get(ref, ref)

    def canonicalize(self, refs: Iterable[str]) -> Set[str]:
        return {self.canonical(ref) for ref in refs if ref}

    def dependents(self, node: str) -> Set[str]:
        return self.edges.get(self.canonical(node), set())

    def reachable_from(self, roots: Iterable[str]) -> Set[str]:
        """Breadth-first closure of ``roots`` over dependency edges."""
        seen = self.canonicalize(roots)
        queue = deque(seen)
        while queue:
            node = queue.popleft()
            for target in self.edges.get(node, ()):
                if target not in seen:
                    seen.add(target)
                    queue.append(target)
        return seen


def build_field_graph(raw_definition: Any) -> FieldGraph:
    """Build a :class:`FieldGraph`; a missing definition yields an empty graph."""
    if raw_definition is None:
        return FieldGraph()

    definition = normalize_form_definition(raw_definition)
    graph = FieldGraph(fields=definition.input_fields(), aliases=definition.alias_map())

    for target in graph.fields:
        if target.logic is None:
            continue
        for condition in target.logic.conditions():
            for rule in condition.rules:
                source = graph.canonical(rule.field_key)
                if source == target.answer_key:
                    continue
                graph.edges.setdefault(source, set()).add(target.answer_key)
    return graph
