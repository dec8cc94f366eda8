"""Location registry: listing, create, rename and safe delete.

Invariants:
    - Names are unique among non-retired locations
    - Root and zones can never be deleted
    - A delete either removes the whole subtree or nothing at all
"""

import asyncio

import pytest

from facility_api.crud.location_crud import LocationRegistry
from facility_api.exceptions import (
    ConstraintViolationError,
    InvalidInputError,
    InvariantViolationError,
    LocationNotFoundError,
)
from facility_api.models.location import LocationCreate, LocationRecord, LocationUpdate
from facility_api.tree import ROOT_ID, TRIAGE_ID, ZONES
from tests.fakes import YieldingLocationGateway


async def _create(registry, name, parent_id=TRIAGE_ID):
    return await registry.create(
        LocationCreate(parent_uuid=parent_id, names={"en": name})
    )


# --- list / search / retrieve ---


async def test_list_all_starts_with_root_then_zones(registry):
    result = await registry.list_all()

    ids = [loc.uuid for loc in result.results]
    assert ids == [ROOT_ID] + [zone_id for _, zone_id in ZONES]
    assert result.results[0].parent_uuid is None
    assert result.results[0].names == {"en": "Facility Kailahun"}


async def test_list_all_puts_children_right_after_their_parent(registry):
    tent = await _create(registry, "Tent 3")
    bed = await _create(registry, "Bed 1", parent_id=tent.uuid)

    ids = [loc.uuid for loc in (await registry.list_all()).results]

    assert ids.index(TRIAGE_ID) < ids.index(tent.uuid) < ids.index(bed.uuid)
    assert ids.index(bed.uuid) < ids.index(ZONES[1][1])


async def test_list_all_parent_references_resolve_within_listing(registry):
    tent = await _create(registry, "Tent 3")
    await _create(registry, "Bed 1", parent_id=tent.uuid)
    await _create(registry, "Bed 2", parent_id=tent.uuid)

    results = (await registry.list_all()).results
    listed = {loc.uuid for loc in results}

    for loc in results:
        if loc.uuid != ROOT_ID:
            assert loc.parent_uuid in listed


async def test_list_all_omits_retired_node_but_keeps_its_children(registry, gateway):
    tent = await _create(registry, "Tent 3")
    bed = await _create(registry, "Bed 1", parent_id=tent.uuid)
    gateway.locations[tent.uuid].retired = True

    results = (await registry.list_all()).results
    by_id = {loc.uuid: loc for loc in results}

    assert tent.uuid not in by_id
    assert by_id[bed.uuid].parent_uuid == tent.uuid


async def test_list_all_without_root_is_an_invariant_violation(gateway):
    registry = LocationRegistry(gateway)

    with pytest.raises(InvariantViolationError):
        await registry.list_all()


async def test_search_returns_the_full_listing(registry):
    await _create(registry, "Tent 3")

    assert await registry.search({"q": "Tent"}) == await registry.list_all()


async def test_retrieve_unknown_id_returns_none(registry):
    assert await registry.retrieve("no-such-location") is None


async def test_retrieve_round_trips_a_created_location(registry):
    created = await _create(registry, "Tent 3")

    fetched = await registry.retrieve(created.uuid)

    assert fetched.names == created.names == {"en": "Tent 3"}
    assert fetched.parent_uuid == created.parent_uuid == TRIAGE_ID


async def test_retrieve_still_resolves_a_retired_location(registry, gateway):
    tent = await _create(registry, "Tent 3")
    gateway.locations[tent.uuid].retired = True

    fetched = await registry.retrieve(tent.uuid)

    assert fetched is not None
    assert fetched.uuid == tent.uuid
    assert fetched.names == {"en": "Tent 3"}


# --- create ---


async def test_create_assigns_a_fresh_uuid(registry, gateway):
    first = await _create(registry, "Tent 3")
    second = await _create(registry, "Tent 4")

    assert first.uuid != second.uuid
    assert gateway.locations[first.uuid].name == "Tent 3"


async def test_create_same_name_twice_is_rejected(registry):
    await _create(registry, "Tent 3")

    with pytest.raises(InvalidInputError, match="already has the name"):
        await _create(registry, "Tent 3", parent_id=ZONES[1][1])


async def test_create_may_reuse_a_retired_name(registry, gateway):
    old = await _create(registry, "Tent 3")
    gateway.locations[old.uuid].retired = True

    new = await _create(registry, "Tent 3")

    assert new.uuid != old.uuid


@pytest.mark.parametrize(
    "request_body, message",
    [
        ({"uuid": "abc", "parent_uuid": TRIAGE_ID, "names": {"en": "X"}}, "UUID is specified"),
        ({"names": {"en": "X"}}, "Parent UUID is required"),
        ({"parent_uuid": "nowhere", "names": {"en": "X"}}, "No parent location"),
        ({"parent_uuid": TRIAGE_ID}, "No name"),
        ({"parent_uuid": TRIAGE_ID, "names": {}}, "No name"),
        ({"parent_uuid": TRIAGE_ID, "names": {"en": ""}}, "Empty name"),
        ({"parent_uuid": TRIAGE_ID, "names": {"en": "   "}}, "Empty name"),
    ],
)
async def test_create_rejects_invalid_requests(registry, gateway, request_body, message):
    saves_before = gateway.saves

    with pytest.raises(InvalidInputError, match=message):
        await registry.create(LocationCreate(**request_body))

    assert gateway.saves == saves_before


async def test_create_uses_first_name_when_no_default_locale(registry):
    created = await registry.create(
        LocationCreate(parent_uuid=TRIAGE_ID, names={"fr": "Tente 3", "es": "Carpa 3"})
    )

    assert created.names == {"en": "Tente 3"}


# --- update ---


async def test_update_renames_location(registry):
    tent = await _create(registry, "Tent 3")

    updated = await registry.update(tent.uuid, LocationUpdate(names={"en": "Tent 5"}))

    assert updated.names == {"en": "Tent 5"}
    assert updated.parent_uuid == TRIAGE_ID
    assert (await registry.retrieve(tent.uuid)).names == {"en": "Tent 5"}


async def test_update_to_own_current_name_succeeds(registry):
    tent = await _create(registry, "Tent 3")

    updated = await registry.update(tent.uuid, LocationUpdate(names={"en": "Tent 3"}))

    assert updated.names == {"en": "Tent 3"}


async def test_update_to_another_locations_name_is_rejected(registry):
    await _create(registry, "Tent 3")
    tent4 = await _create(registry, "Tent 4")

    with pytest.raises(InvalidInputError):
        await registry.update(tent4.uuid, LocationUpdate(names={"en": "Tent 3"}))


async def test_update_unknown_location_is_not_found(registry):
    with pytest.raises(LocationNotFoundError):
        await registry.update("missing", LocationUpdate(names={"en": "Tent 3"}))


async def test_update_without_names_is_rejected(registry):
    tent = await _create(registry, "Tent 3")

    with pytest.raises(InvalidInputError):
        await registry.update(tent.uuid, LocationUpdate())


# --- delete ---


async def test_delete_root_is_rejected(registry, gateway):
    with pytest.raises(InvalidInputError, match="root"):
        await registry.delete(ROOT_ID)
    assert ROOT_ID in gateway.locations


@pytest.mark.parametrize("name, zone_id", ZONES)
async def test_delete_zone_is_rejected(registry, gateway, name, zone_id):
    with pytest.raises(InvalidInputError, match=name):
        await registry.delete(zone_id)
    assert zone_id in gateway.locations


async def test_delete_zone_with_unreferenced_children_is_rejected(registry, gateway):
    tent = await _create(registry, "Tent 3")
    bed = await _create(registry, "Bed 1", parent_id=tent.uuid)

    with pytest.raises(InvalidInputError, match="Triage Zone"):
        await registry.delete(TRIAGE_ID)

    assert gateway.purged == []
    for location_id in (TRIAGE_ID, tent.uuid, bed.uuid):
        assert location_id in gateway.locations


async def test_delete_unknown_location_is_not_found(registry):
    with pytest.raises(LocationNotFoundError):
        await registry.delete("missing")


async def test_delete_blocked_by_patient_in_descendant(registry, gateway):
    tent = await _create(registry, "Tent 3")
    bed = await _create(registry, "Bed 1", parent_id=tent.uuid)
    gateway.add_patient("p1", assigned_location=bed.uuid)

    with pytest.raises(ConstraintViolationError) as excinfo:
        await registry.delete(tent.uuid)

    assert excinfo.value.location_name == "Bed 1"
    assert 'Cannot delete the location "Bed 1"' in str(excinfo.value)
    assert tent.uuid in gateway.locations
    assert bed.uuid in gateway.locations
    assert gateway.purged == []


async def test_delete_cascades_children_before_parents(registry, gateway):
    x = await _create(registry, "Tent 3")
    y = await _create(registry, "Bed 1", parent_id=x.uuid)
    z = await _create(registry, "Bed 2", parent_id=y.uuid)
    gateway.add_patient("p1", assigned_location=TRIAGE_ID)

    purged = await registry.delete(x.uuid)

    assert purged == [z.uuid, y.uuid, x.uuid]
    for loc in (x, y, z):
        assert await registry.retrieve(loc.uuid) is None


async def test_delete_ignores_non_location_patient_attributes(registry, gateway):
    tent = await _create(registry, "Tent 3")
    gateway.add_patient("p1", given_name="Tent 3", age=7)

    await registry.delete(tent.uuid)

    assert tent.uuid not in gateway.locations


async def test_delete_includes_retired_descendants(registry, gateway):
    tent = await _create(registry, "Tent 3")
    await gateway.save(LocationRecord(id="old-bed", name="Old bed", parent_id=tent.uuid, retired=True))

    purged = await registry.delete(tent.uuid)

    assert purged == ["old-bed", tent.uuid]


async def test_create_under_a_location_being_deleted_leaves_no_orphan():
    gateway = YieldingLocationGateway()
    registry = LocationRegistry(gateway)
    await registry.bootstrap()
    tent = await _create(registry, "Tent 3")

    deleted, created = await asyncio.gather(
        registry.delete(tent.uuid),
        registry.create(LocationCreate(parent_uuid=tent.uuid, names={"en": "Bed 1"})),
        return_exceptions=True,
    )

    assert deleted == [tent.uuid]
    assert isinstance(created, InvalidInputError)
    assert "No parent location" in str(created)
    for location in gateway.locations.values():
        if location.id != ROOT_ID:
            assert location.parent_id in gateway.locations
