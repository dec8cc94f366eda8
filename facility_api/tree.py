"""
Location hierarchy helpers.

The facility is a single tree: one well-known root with a fixed set of
well-known zones directly beneath it. Everything else hangs off those.
"""

from typing import AsyncIterator, List, Tuple

from facility_api.gateway import LocationGateway
from facility_api.exceptions import DatabaseError
from facility_api.logging_config import get_child_logger, tracer
from facility_api.models.location import LocationRecord

logger = get_child_logger("tree")

ROOT_ID = "3449f5fe-8e6b-4250-bcaa-fca5df28ddbf"
ROOT_NAME = "Facility Kailahun"
TRIAGE_ID = "3f75ca61-ec1a-4739-af09-25a84e3dd237"

# (name, id) pairs, created in this order as children of the root
ZONES: Tuple[Tuple[str, str], ...] = (
    ("Triage Zone", TRIAGE_ID),
    ("Suspected Zone", "2f1e2418-ede6-481a-ad80-b9939a7fde8e"),
    ("Probable Zone", "3b11e7c8-a68a-4a5f-afb3-a4a053592d0e"),
    ("Confirmed Zone", "b9038895-9c9d-4908-9e0d-51fd535ddd3c"),
    ("Morgue", "4ef642b9-9843-4d0d-9b2b-84fe1984801f"),
    ("Discharged", "d7ca63c3-6ea0-4357-82fd-0910cc17a2cb"),
)
ZONE_NAMES_BY_ID = {zone_id: name for name, zone_id in ZONES}


async def bootstrap_locations(gateway: LocationGateway) -> List[LocationRecord]:
    """
    Make sure the root and every zone exist, creating whichever are missing.

    Safe to run repeatedly; an existing skeleton is left untouched.

    Returns:
        The locations created by this call (empty when nothing was missing)
    """
    with tracer.start_as_current_span("bootstrap_locations") as span:
        created = []
        skeleton = [(ROOT_NAME, ROOT_ID, None)] + [
            (name, zone_id, ROOT_ID) for name, zone_id in ZONES
        ]
        for name, location_id, parent_id in skeleton:
            if await gateway.get_by_id(location_id) is not None:
                continue
            logger.info(
                f"Creating location {name}",
                extra={"location_id": location_id, "parent_id": parent_id},
            )
            try:
                created.append(
                    await gateway.save(
                        LocationRecord(id=location_id, name=name, parent_id=parent_id)
                    )
                )
            except DatabaseError as e:
                span.set_attribute("error", True)
                logger.error(
                    f"Could not create location {name}",
                    extra={"location_id": location_id},
                    exc_info=e.original_exception,
                )
                raise

        span.set_attribute("locations.created", len(created))
        return created


async def walk_preorder(
    gateway: LocationGateway, start_id: str
) -> AsyncIterator[LocationRecord]:
    """
    Yield the location `start_id` and all its descendants, parents first.

    Uses an explicit stack and skips any id already seen, so corrupted
    parent links cannot loop forever. Siblings keep the order the gateway
    lists them in. Retired locations are yielded like any other.
    """
    start = await gateway.get_by_id(start_id)
    if start is None:
        return

    stack = [start]
    visited = set()
    while stack:
        location = stack.pop()
        if location.id in visited:
            logger.warning(
                "Location reached twice during traversal",
                extra={"location_id": location.id},
            )
            continue
        visited.add(location.id)
        yield location

        children = await gateway.list_children(location.id)
        stack.extend(reversed(children))


async def collect_subtree(gateway: LocationGateway, start_id: str) -> List[LocationRecord]:
    return [location async for location in walk_preorder(gateway, start_id)]
