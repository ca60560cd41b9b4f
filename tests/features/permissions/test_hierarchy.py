"""Tests for the role hierarchy value type and the authorize guard."""

import pytest

from app.features.permissions.hierarchy import HierarchyLevel, authorize


class TestHierarchyLevel:
    """Ordering and management comparisons between levels."""

    def test_total_order(self):
        """Levels compare by their integer value."""
        assert HierarchyLevel(4) < HierarchyLevel(6)
        assert HierarchyLevel(7) > HierarchyLevel(1)
        assert HierarchyLevel(3) == HierarchyLevel(3)
        assert sorted([HierarchyLevel(2), HierarchyLevel(7), HierarchyLevel(4)]) == [
            HierarchyLevel(2), HierarchyLevel(4), HierarchyLevel(7)
        ]

    def test_strictly_above_excludes_peers(self):
        """A level never manages itself or a peer."""
        assert HierarchyLevel(6).is_strictly_above(HierarchyLevel(4))
        assert not HierarchyLevel(4).is_strictly_above(HierarchyLevel(4))
        assert not HierarchyLevel(4).is_strictly_above(HierarchyLevel(6))

    def test_at_least_includes_peers(self):
        assert HierarchyLevel(4).is_at_least(HierarchyLevel(4))
        assert HierarchyLevel(5).is_at_least(HierarchyLevel(4))
        assert not HierarchyLevel(3).is_at_least(HierarchyLevel(4))

    def test_str(self):
        assert str(HierarchyLevel(5)) == "level 5"


class TestAuthorize:
    """Exact-match permission checks."""

    effective = frozenset({"assets.read", "assets.create", "reports.view"})

    def test_all_mode(self):
        """Every required key must be present."""
        assert authorize(self.effective, ["assets.read", "assets.create"])
        assert not authorize(self.effective, ["assets.read", "assets.assign"])

    def test_any_mode(self):
        """One matching key is enough."""
        assert authorize(self.effective, ["assets.assign", "reports.view"], mode="any")
        assert not authorize(self.effective, ["assets.assign", "tickets.close"], mode="any")

    def test_empty_requirement_is_satisfied(self):
        assert authorize(self.effective, [])
        assert authorize(frozenset(), [], mode="any")

    def test_no_prefix_or_wildcard_matching(self):
        """Keys match exactly; there is no namespace or wildcard expansion."""
        assert not authorize(self.effective, ["assets"])
        assert not authorize(self.effective, ["assets.*"])
        assert not authorize({"assets.*"}, ["assets.read"])

    def test_accepts_any_iterable(self):
        assert authorize(["assets.read"], ("assets.read",))

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            authorize(self.effective, ["assets.read"], mode="some")
