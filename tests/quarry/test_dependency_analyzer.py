"""Tests for the definition dependency analyzer."""

from quarry.quarry_dependency_analyzer import QuarryDependencyAnalyzer


class TestQuarryDependencyAnalyzer:
    """Test detection of recursive definitions."""

    def test_self_and_mutual_recursion(self):
        """Test that self-loops and cycles are recursive and nothing else is."""
        graph = {0: {1, 4}, 1: {2}, 2: {1}, 3: {3}, 4: set()}
        assert QuarryDependencyAnalyzer().recursive_definitions(graph) == {1, 2, 3}

    def test_chain_is_not_recursive(self):
        """Test that calls without a cycle mark nothing."""
        graph = {0: {1}, 1: {2}, 2: set()}
        assert QuarryDependencyAnalyzer().recursive_definitions(graph) == set()

    def test_long_cycle(self):
        """Test that every member of a longer cycle is recursive, but not its callers."""
        graph = {0: {1}, 1: {2}, 2: {3}, 3: {1}, 4: {0}}
        assert QuarryDependencyAnalyzer().recursive_definitions(graph) == {1, 2, 3}

    def test_calls_to_unlisted_definitions(self):
        """Test edges to ids that have no entry of their own."""
        graph = {0: {7}, 1: {1, 8}}
        assert QuarryDependencyAnalyzer().recursive_definitions(graph) == {1}

    def test_empty_graph(self):
        """Test that an empty graph has no recursive definitions."""
        assert QuarryDependencyAnalyzer().recursive_definitions({}) == set()
