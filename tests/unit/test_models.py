"""Unit tests for data models."""

import pytest
from pydantic import TypeAdapter, ValidationError

from estimator.models.estimate import (
    Customer,
    EstimateNode,
    GroupNode,
    ItemNode,
    ItemRecord,
    NodeType,
    TreeChanges,
    coerce_cost,
    coerce_quantity,
    is_placeholder_id,
    placeholder_id,
)


class TestLenientCoercion:
    """Tests for numeric normalization of item fields."""

    @pytest.mark.parametrize(
        "value,expected",
        [("12.5", 12.5), (3, 3.0), ("abc", 0.0), (-4, 0.0), (float("inf"), 0.0)],
    )
    def test_coerce_cost(self, value, expected):
        """Test coerce cost."""
        assert coerce_cost(value) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [("2", 2.0), (0.5, 0.5), (0, 1.0), (-1, 1.0), ("x", 1.0), (None, 1.0)],
    )
    def test_coerce_quantity(self, value, expected):
        """Test coerce quantity."""
        assert coerce_quantity(value) == expected

    def test_item_record_normalizes_on_load(self):
        """Rows with garbage numbers still load."""
        record = ItemRecord(
            id="i-1",
            quantity="zero",
            material_cost="NaN",
            labor_cost="25",
        )

        assert record.quantity == 1.0
        assert record.material_cost == 0.0
        assert record.labor_cost == 25.0
        assert record.equipment_cost is None


class TestNodes:
    """Tests for tree node models."""

    def test_nodes_are_frozen(self):
        """Test nodes are frozen."""
        group = GroupNode(id="g-1", name="Kitchen")

        with pytest.raises(ValidationError):
            group.name = "Bath"

    def test_node_type(self):
        """Test node type."""
        assert GroupNode(id="g-1").node_type == NodeType.GROUP
        assert ItemNode(id="i-1").node_type == NodeType.ITEM

    def test_item_mode(self):
        """Items picked from a costbook are catalog items."""
        assert ItemNode(id="i-1").mode == "custom"
        assert ItemNode(id="i-2", item_id="cat-9").mode == "catalog"
        assert ItemNode(id="i-3", costbook_item_id="cb-1").mode == "catalog"

    def test_discriminated_union_validation(self):
        """Test discriminated union validation."""
        adapter = TypeAdapter(EstimateNode)

        group = adapter.validate_python(
            {
                "type": "group",
                "id": "g-1",
                "name": "Kitchen",
                "children": [{"type": "item", "id": "i-1", "quantity": 2}],
            }
        )

        assert isinstance(group, GroupNode)
        assert isinstance(group.children[0], ItemNode)
        assert isinstance(group.children, tuple)

    def test_item_to_record_drops_derived_fields(self):
        """Test item to record drops derived fields."""
        node = ItemNode(id="i-1", group_id="g-1", quantity=2, material_cost=5)

        record = node.to_record()

        assert isinstance(record, ItemRecord)
        assert record.id == "i-1"
        assert record.group_id == "g-1"
        assert not hasattr(record, "line_cost_total")

    def test_group_to_record_drops_children(self):
        """Test group to record drops children."""
        group = GroupNode(
            id="g-1",
            name="Kitchen",
            order_index=0,
            children=(ItemNode(id="i-1"),),
        )

        record = group.to_record()

        assert record.id == "g-1"
        assert record.name == "Kitchen"
        assert "children" not in record.model_dump()


class TestPlaceholderIds:
    """Tests for client-side ids."""

    def test_placeholder_format(self):
        """Test placeholder format."""
        node_id = placeholder_id(NodeType.ITEM)

        assert node_id.startswith("temp-item-")
        assert is_placeholder_id(node_id)

    def test_placeholders_are_unique(self):
        """Test placeholders are unique."""
        ids = {placeholder_id("group") for _ in range(50)}

        assert len(ids) == 50

    def test_stored_ids_are_not_placeholders(self):
        """Test stored ids are not placeholders."""
        assert not is_placeholder_id("3f2a9c")
        assert not is_placeholder_id(None)


class TestMisc:
    def test_tree_changes_is_empty(self):
        """Test tree changes is empty."""
        assert TreeChanges().is_empty
        assert not TreeChanges(deleted_item_ids=["i-1"]).is_empty

    def test_customer_display_name(self):
        """Test customer display name."""
        assert Customer(customer_id="c-1", first_name="Ada", last_name="Lovelace").display_name == "Ada Lovelace"
        assert Customer(customer_id="c-2").display_name == "c-2"
