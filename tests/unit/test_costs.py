"""Unit tests for item cost computation."""

import math

import pytest

from estimator.core.costs import compute_item_costs
from estimator.models.estimate import ItemNode, ItemRecord


class TestComputeItemCosts:
    """Tests for compute_item_costs."""

    def test_sums_components_and_multiplies_quantity(self):
        """A typical line: quantity times the sum of cost components."""
        costs = compute_item_costs(
            {
                "quantity": 3,
                "material_cost": 10,
                "labor_cost": 5,
                "equipment_cost": 2,
                "other_cost": 1,
                "subcontract_cost": 0,
            }
        )

        assert costs.cost_per_unit == 18
        assert costs.line_cost_total == 54

    def test_missing_fields_count_as_zero(self):
        """Test missing fields count as zero."""
        costs = compute_item_costs({"quantity": 2, "labor_cost": 7.5})

        assert costs.cost_per_unit == 7.5
        assert costs.line_cost_total == 15

    def test_missing_quantity_counts_as_one(self):
        """Test missing quantity counts as one."""
        costs = compute_item_costs({"material_cost": 12})

        assert costs.line_cost_total == 12

    @pytest.mark.parametrize("quantity", [0, -2, "abc", float("nan"), None])
    def test_invalid_quantity_counts_as_one(self, quantity):
        """Zero, negative and unparsable quantities fall back to 1."""
        costs = compute_item_costs({"quantity": quantity, "material_cost": 8})

        assert costs.line_cost_total == 8

    @pytest.mark.parametrize(
        "value", ["12abc", float("nan"), float("inf"), -5, None, True]
    )
    def test_malformed_costs_count_as_zero(self, value):
        """Test malformed costs count as zero."""
        costs = compute_item_costs({"quantity": 2, "material_cost": value, "labor_cost": 3})

        assert costs.cost_per_unit == 3
        assert math.isfinite(costs.line_cost_total)

    def test_numeric_strings_are_parsed(self):
        """Test numeric strings are parsed."""
        costs = compute_item_costs({"quantity": "2.5", "material_cost": "4"})

        assert costs.line_cost_total == 10

    def test_accepts_models(self):
        """Nodes and records are read through their attributes."""
        record = ItemRecord(id="i-1", quantity=2, material_cost=3, labor_cost=1)
        node = ItemNode(id="i-1", quantity=2, material_cost=3, labor_cost=1)

        assert compute_item_costs(record) == compute_item_costs(node)
        assert compute_item_costs(node).line_cost_total == 8

    def test_item_node_exposes_derived_costs(self):
        """Test item node exposes derived costs."""
        node = ItemNode(id="i-1", quantity=4, material_cost=150, labor_cost=50)

        assert node.cost_per_unit == 200
        assert node.line_cost_total == 800
        dumped = node.model_dump()
        assert dumped["line_cost_total"] == 800
