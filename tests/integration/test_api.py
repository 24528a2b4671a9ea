"""Integration tests for API endpoints."""

import pytest
from httpx import AsyncClient

from estimator.core.store import EstimateStore
from estimator.core.tree import build_tree, diff_trees


async def open_session(client: AsyncClient, **body) -> dict:
    response = await client.post("/v1/sessions", json=body)
    assert response.status_code == 201
    return response.json()


class TestHealthEndpoint:
    """Tests for health check endpoint."""

    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient):
        """Test health check returns healthy status."""
        response = await client.get("/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "version" in data
        assert "environment" in data
        assert data["active_sessions"] == 0


class TestSessionEndpoints:
    """Tests for opening and closing sessions."""

    @pytest.mark.asyncio
    async def test_create_empty_session(self, client: AsyncClient):
        """Test create empty session."""
        data = await open_session(client)

        assert data["tree"] == []
        assert data["totals"]["final_total"] == 0
        assert data["estimate_id"] is None

    @pytest.mark.asyncio
    async def test_open_stored_estimate(
        self, client: AsyncClient, store: EstimateStore, sample_groups, sample_items
    ):
        """Test open stored estimate."""
        estimate = await store.create_estimate()
        await store.apply_changes(estimate.id, diff_trees((), build_tree(sample_groups, sample_items)))

        data = await open_session(client, estimate_id=estimate.id)

        assert data["estimate_id"] == estimate.id
        assert [node["id"] for node in data["tree"]] == ["g-kitchen", "g-bath"]
        assert data["totals"]["subtotal"] == 1500
        assert data["has_unsaved_changes"] is False

    @pytest.mark.asyncio
    async def test_open_missing_estimate(self, client: AsyncClient):
        """Test open missing estimate."""
        response = await client.post("/v1/sessions", json={"estimate_id": "nope"})

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_get_and_delete_session(self, client: AsyncClient):
        """Test get and delete session."""
        session_id = (await open_session(client))["session_id"]

        assert (await client.get(f"/v1/sessions/{session_id}")).status_code == 200
        assert (await client.delete(f"/v1/sessions/{session_id}")).status_code == 204
        assert (await client.get(f"/v1/sessions/{session_id}")).status_code == 404

    @pytest.mark.asyncio
    async def test_list_sessions(self, client: AsyncClient):
        """Test list sessions."""
        await open_session(client)
        await open_session(client)

        response = await client.get("/v1/sessions", params={"limit": 1})

        data = response.json()
        assert data["total"] == 2
        assert len(data["sessions"]) == 1

    @pytest.mark.asyncio
    async def test_select_customer(self, client: AsyncClient):
        """Test select customer."""
        session_id = (await open_session(client))["session_id"]

        response = await client.put(
            f"/v1/sessions/{session_id}/customer",
            json={"customer": {"customer_id": "c-1", "first_name": "Ada"}},
        )

        assert response.status_code == 200
        assert response.json()["customer"]["customer_id"] == "c-1"


class TestTreeEndpoints:
    """Tests for editing the tree over HTTP."""

    @pytest.mark.asyncio
    async def test_build_estimate(self, client: AsyncClient):
        """Test build estimate."""
        session_id = (await open_session(client))["session_id"]
        base = f"/v1/sessions/{session_id}"

        group = await client.post(f"{base}/groups", json={"name": "Kitchen"})
        assert group.status_code == 201
        group_id = group.json()["node"]["id"]

        item = await client.post(
            f"{base}/items",
            json={
                "group_id": group_id,
                "description": "Cabinet install",
                "quantity": 2,
                "unit": "ea",
                "material_cost": 10,
                "labor_cost": 5,
            },
        )

        assert item.status_code == 201
        data = item.json()
        assert data["node"]["group_id"] == group_id
        assert data["node"]["line_cost_total"] == 30
        assert data["totals"]["subtotal"] == 30
        assert data["totals"]["final_total"] == pytest.approx(33.9)

    @pytest.mark.asyncio
    async def test_blank_group_name_is_rejected(self, client: AsyncClient):
        """Test blank group name is rejected."""
        session_id = (await open_session(client))["session_id"]

        response = await client.post(f"/v1/sessions/{session_id}/groups", json={"name": "   "})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATIONERROR"

    @pytest.mark.asyncio
    async def test_update_item(self, client: AsyncClient):
        """Test update item."""
        session_id = (await open_session(client))["session_id"]
        base = f"/v1/sessions/{session_id}"
        item = await client.post(
            f"{base}/items",
            json={"description": "Paint", "unit": "sq ft", "quantity": 100, "labor_cost": 2},
        )
        item_id = item.json()["node"]["id"]

        response = await client.patch(f"{base}/items/{item_id}", json={"quantity": 150})

        assert response.status_code == 200
        assert response.json()["totals"]["subtotal"] == 300

    @pytest.mark.asyncio
    async def test_catalog_text_is_read_only(self, client: AsyncClient):
        """Test catalog text is read only."""
        session_id = (await open_session(client))["session_id"]
        base = f"/v1/sessions/{session_id}"
        item = await client.post(
            f"{base}/items",
            json={"description": "Drywall sheet", "unit": "ea", "costbook_item_id": "cb-7"},
        )
        item_id = item.json()["node"]["id"]

        response = await client.patch(f"{base}/items/{item_id}", json={"description": "Other"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_null_group_name_is_rejected(self, client: AsyncClient):
        """Test that an explicit null name is a validation error, not a crash."""
        session_id = (await open_session(client))["session_id"]
        base = f"/v1/sessions/{session_id}"
        group_id = (await client.post(f"{base}/groups", json={"name": "Kitchen"})).json()["node"]["id"]

        response = await client.patch(f"{base}/groups/{group_id}", json={"name": None})

        assert response.status_code == 422
        tree = (await client.get(base)).json()["tree"]
        assert tree[0]["name"] == "Kitchen"

    @pytest.mark.asyncio
    async def test_null_item_fields_are_rejected(self, client: AsyncClient):
        """Test that nulls cannot blank the description or reset the quantity."""
        session_id = (await open_session(client))["session_id"]
        base = f"/v1/sessions/{session_id}"
        item = await client.post(
            f"{base}/items",
            json={"description": "Studs", "unit": "ea", "quantity": 4, "material_cost": 10},
        )
        item_id = item.json()["node"]["id"]

        response = await client.patch(
            f"{base}/items/{item_id}", json={"description": None, "quantity": None}
        )

        assert response.status_code == 422
        session = (await client.get(base)).json()
        assert session["tree"][0]["description"] == "Studs"
        assert session["tree"][0]["quantity"] == 4
        assert session["totals"]["subtotal"] == 40

    @pytest.mark.asyncio
    async def test_null_cost_clears_component(self, client: AsyncClient):
        """Test that a null cost component counts as zero."""
        session_id = (await open_session(client))["session_id"]
        base = f"/v1/sessions/{session_id}"
        item = await client.post(
            f"{base}/items",
            json={"description": "Studs", "unit": "ea", "material_cost": 10, "labor_cost": 5},
        )
        item_id = item.json()["node"]["id"]

        response = await client.patch(f"{base}/items/{item_id}", json={"labor_cost": None})

        assert response.status_code == 200
        assert response.json()["totals"]["subtotal"] == 10

    @pytest.mark.asyncio
    async def test_update_missing_item(self, client: AsyncClient):
        """Test update missing item."""
        session_id = (await open_session(client))["session_id"]

        response = await client.patch(
            f"/v1/sessions/{session_id}/items/nope", json={"quantity": 2}
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_move_and_delete(self, client: AsyncClient):
        """Test move and delete."""
        session_id = (await open_session(client))["session_id"]
        base = f"/v1/sessions/{session_id}"
        a = (await client.post(f"{base}/groups", json={"name": "A"})).json()["node"]["id"]
        b = (await client.post(f"{base}/groups", json={"name": "B"})).json()["node"]["id"]

        moved = await client.post(
            f"{base}/move",
            json={"node_id": b, "node_type": "group", "new_order_index": 0},
        )
        assert moved.status_code == 200
        assert moved.json()["node"]["order_index"] == 0

        stepped = await client.post(
            f"{base}/move-step",
            json={"node_id": b, "node_type": "group", "direction": "down"},
        )
        assert stepped.json()["node"]["order_index"] == 1

        deleted = await client.delete(f"{base}/nodes/group/{a}")
        assert deleted.status_code == 200
        assert deleted.json()["changes"]["deleted_group_ids"] == [a]

        tree = (await client.get(base)).json()["tree"]
        assert [node["id"] for node in tree] == [b]
        assert tree[0]["order_index"] == 0

    @pytest.mark.asyncio
    async def test_move_to_missing_parent_changes_nothing(self, client: AsyncClient):
        """Test move to missing parent changes nothing."""
        session_id = (await open_session(client))["session_id"]
        base = f"/v1/sessions/{session_id}"
        a = (await client.post(f"{base}/groups", json={"name": "A"})).json()["node"]["id"]

        response = await client.post(
            f"{base}/move",
            json={"node_id": a, "node_type": "group", "new_parent_group_id": "missing"},
        )

        assert response.status_code == 200
        changes = response.json()["changes"]
        assert changes["upserted_groups"] == []
        assert changes["deleted_group_ids"] == []


class TestSaveEndpoint:
    """Tests for persisting a session."""

    @pytest.mark.asyncio
    async def test_save_new_estimate(self, client: AsyncClient, store: EstimateStore):
        """Test save new estimate."""
        session_id = (await open_session(client))["session_id"]
        base = f"/v1/sessions/{session_id}"
        group_id = (await client.post(f"{base}/groups", json={"name": "Kitchen"})).json()["node"]["id"]
        await client.post(
            f"{base}/items",
            json={"group_id": group_id, "description": "Sink", "unit": "ea", "material_cost": 250},
        )

        response = await client.post(f"{base}/save")

        assert response.status_code == 200
        data = response.json()
        assert group_id in data["id_mapping"]
        assert data["saved_rows"] == 2

        session = (await client.get(base)).json()
        assert session["estimate_id"] == data["estimate_id"]
        assert session["has_unsaved_changes"] is False
        assert session["tree"][0]["id"] == data["id_mapping"][group_id]

        stored = await store.get_estimate(data["estimate_id"])
        assert stored.subtotal == 250
        groups, items = await store.fetch_tree_records(data["estimate_id"])
        assert len(groups) == 1
        assert items[0].group_id == groups[0].id

    @pytest.mark.asyncio
    async def test_second_save_writes_only_changes(self, client: AsyncClient):
        """Test second save writes only changes."""
        session_id = (await open_session(client))["session_id"]
        base = f"/v1/sessions/{session_id}"
        await client.post(f"{base}/groups", json={"name": "Kitchen"})
        await client.post(f"{base}/groups", json={"name": "Bath"})
        await client.post(f"{base}/save")

        tree = (await client.get(base)).json()["tree"]
        await client.patch(f"{base}/groups/{tree[1]['id']}", json={"name": "Bathroom"})
        response = await client.post(f"{base}/save")

        assert response.json()["saved_rows"] == 1
        assert response.json()["id_mapping"] == {}


class TestEstimateEndpoints:
    """Tests for stored estimates and unit choices."""

    @pytest.mark.asyncio
    async def test_list_estimates(self, client: AsyncClient, store: EstimateStore):
        """Test listing stored estimates, optionally by customer."""
        await store.create_estimate(customer_id="c-1")
        await store.create_estimate(customer_id="c-2")

        everything = await client.get("/v1/estimates")
        filtered = await client.get("/v1/estimates", params={"customer_id": "c-1"})

        assert everything.status_code == 200
        assert everything.json()["total"] == 2
        data = filtered.json()
        assert data["total"] == 1
        assert data["estimates"][0]["customer_id"] == "c-1"
        assert data["estimates"][0]["status"] == "Draft"

    @pytest.mark.asyncio
    async def test_saved_session_appears_in_list(self, client: AsyncClient):
        """Test that saving a new session creates a listed estimate."""
        session_id = (await open_session(client))["session_id"]
        saved = (await client.post(f"/v1/sessions/{session_id}/save")).json()

        response = await client.get("/v1/estimates")

        assert [e["id"] for e in response.json()["estimates"]] == [saved["estimate_id"]]

    @pytest.mark.asyncio
    async def test_list_units(self, client: AsyncClient):
        """Test the unit picker choices."""
        response = await client.get("/v1/units")

        assert response.status_code == 200
        units = response.json()["units"]
        assert "sq ft" in units
        assert "ea" in units
