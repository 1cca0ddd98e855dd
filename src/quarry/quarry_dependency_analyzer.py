"""Dependency analysis over filter definitions to detect recursion."""

from typing import Dict, List, Set


class QuarryDependencyAnalyzer:
    """
    Analyzes the static call graph of filter definitions.

    Nodes are definition ids; an edge f -> g means the body of f (not counting
    definitions nested inside it) calls g.  A definition is recursive when it is
    part of a cycle, either directly (it calls itself) or mutually.
    """

    def recursive_definitions(self, graph: Dict[int, Set[int]]) -> Set[int]:
        """
        Return the ids of every definition that takes part in a cycle.

        Args:
            graph: Dict mapping each definition id to the ids it calls

        Returns:
            Ids of the definitions in a strongly connected component that has
            more than one member or a self-loop
        """
        result: Set[int] = set()
        for component in self._find_strongly_connected_components(graph):
            if len(component) > 1 or any(node in graph.get(node, set()) for node in component):
                result.update(component)

        return result

    def _find_strongly_connected_components(self, graph: Dict[int, Set[int]]) -> List[Set[int]]:
        """
        Find strongly connected components using Tarjan's algorithm.

        Args:
            graph: Dict mapping node ids to their successors

        Returns:
            List of sets, each representing a strongly connected component
        """
        index_counter = [0]
        stack: List[int] = []
        lowlinks: Dict[int, int] = {}
        index: Dict[int, int] = {}
        on_stack: Dict[int, bool] = {}
        result: List[Set[int]] = []

        def strongconnect(node: int) -> None:
            index[node] = index_counter[0]
            lowlinks[node] = index_counter[0]
            index_counter[0] += 1
            stack.append(node)
            on_stack[node] = True

            # Successors in id order keep the output deterministic
            for successor in sorted(graph.get(node, set())):
                if successor not in index:
                    strongconnect(successor)
                    lowlinks[node] = min(lowlinks[node], lowlinks[successor])

                elif on_stack.get(successor, False):
                    lowlinks[node] = min(lowlinks[node], index[successor])

            # If node is a root, pop the stack and create SCC
            if lowlinks[node] == index[node]:
                component: Set[int] = set()
                while True:
                    w = stack.pop()
                    on_stack[w] = False
                    component.add(w)
                    if w == node:
                        break

                result.append(component)

        for node in sorted(graph):
            if node not in index:
                strongconnect(node)

        return result
