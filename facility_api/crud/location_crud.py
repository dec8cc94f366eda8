import asyncio
import uuid
from typing import Any, List, Mapping, Optional

from facility_api.exceptions import (
    ConstraintViolationError,
    InvalidInputError,
    InvariantViolationError,
    LocationNotFoundError,
)
from facility_api.gateway import LocationGateway
from facility_api.logging_config import get_child_logger, tracer
from facility_api.models.location import (
    LocationCreate,
    LocationList,
    LocationRecord,
    LocationResponse,
    LocationUpdate,
    pick_name,
    to_response,
)
from facility_api.tree import (
    ROOT_ID,
    ZONE_NAMES_BY_ID,
    bootstrap_locations,
    collect_subtree,
    walk_preorder,
)

# Create a child logger for this module
logger = get_child_logger("crud.location")


class LocationRegistry:
    """
    Business rules for the location tree.

    All reads and writes go through the gateway. Creates, renames, deletes
    and the skeleton bootstrap are serialized on one lock, so two requests in
    this process cannot claim the same name or attach a child to a location
    that is being purged.
    """

    def __init__(self, gateway: LocationGateway):
        self._gateway = gateway
        self._write_lock = asyncio.Lock()

    async def bootstrap(self) -> List[LocationRecord]:
        async with self._write_lock:
            return await bootstrap_locations(self._gateway)

    async def list_all(self) -> LocationList:
        """
        Every non-retired location, parents before children.

        A retired location is left out, but its non-retired descendants are
        still listed with their original parent reference.

        Raises:
            InvariantViolationError: If the root location is missing
        """
        with tracer.start_as_current_span("list_locations") as span:
            root = await self._gateway.get_by_id(ROOT_ID)
            if root is None:
                logger.error(
                    "Root location is missing", extra={"location_id": ROOT_ID}
                )
                raise InvariantViolationError(
                    f"Somehow the facility root does not exist with UUID {ROOT_ID}"
                )

            results = [
                to_response(location)
                async for location in walk_preorder(self._gateway, ROOT_ID)
                if not location.retired
            ]
            span.set_attribute("locations.count", len(results))
            logger.info(f"Listed {len(results)} locations", extra={"count": len(results)})
            return LocationList(results=results)

    async def search(self, params: Optional[Mapping[str, Any]] = None) -> LocationList:
        # Filters are not supported; search returns the full listing.
        return await self.list_all()

    async def retrieve(self, location_id: str) -> Optional[LocationResponse]:
        with tracer.start_as_current_span("retrieve_location") as span:
            span.set_attribute("location.id", location_id)
            location = await self._gateway.get_by_id(location_id)
            if location is None:
                logger.info("Location not found", extra={"location_id": location_id})
                return None
            return to_response(location)

    async def create(self, request: LocationCreate) -> LocationResponse:
        """
        Create a location under an existing parent.

        Raises:
            InvalidInputError: If a uuid is supplied, the parent is missing or
                unknown, or the name is missing, empty or already taken
        """
        with tracer.start_as_current_span("create_location") as span:
            if "uuid" in request.model_fields_set:
                raise InvalidInputError("UUID is specified but not allowed")
            if request.parent_uuid is None:
                raise InvalidInputError("Parent UUID is required but not specified")

            async with self._write_lock:
                parent = await self._gateway.get_by_id(request.parent_uuid)
                if parent is None:
                    raise InvalidInputError(
                        f"No parent location found with UUID {request.parent_uuid}"
                    )
                name = await self._validate_name(request.names)

                location = LocationRecord(
                    id=str(uuid.uuid4()), name=name, parent_id=parent.id
                )
                span.set_attribute("location.id", location.id)
                span.set_attribute("location.parent_id", parent.id)
                saved = await self._gateway.save(location)

            logger.info(
                "Location created",
                extra={"location_id": saved.id, "parent_id": parent.id, "location_name": name},
            )
            return to_response(saved)

    async def update(self, location_id: str, request: LocationUpdate) -> LocationResponse:
        """
        Rename a location. Parent and retired flag cannot be changed here.

        Raises:
            LocationNotFoundError: If the location does not exist
            InvalidInputError: If the new name is missing, empty or taken by
                another location
        """
        with tracer.start_as_current_span("update_location") as span:
            span.set_attribute("location.id", location_id)
            async with self._write_lock:
                existing = await self._gateway.get_by_id(location_id)
                if existing is None:
                    raise LocationNotFoundError(f"No location found with UUID {location_id}")

                name = await self._validate_name(request.names, exclude_id=location_id)
                saved = await self._gateway.save(existing.model_copy(update={"name": name}))

            logger.info(
                "Location renamed",
                extra={"location_id": location_id, "location_name": name},
            )
            return to_response(saved)

    async def delete(self, location_id: str) -> List[str]:
        """
        Purge a location and everything beneath it.

        The whole subtree is checked for patient references before anything
        is removed; if any location in it is referenced, nothing is deleted.

        Returns:
            Ids of the purged locations, children before parents

        Raises:
            InvalidInputError: If the location is the root or a zone
            LocationNotFoundError: If the location does not exist
            ConstraintViolationError: If a patient is assigned anywhere in the subtree
            InvariantViolationError: If a patient document is malformed
        """
        with tracer.start_as_current_span("delete_location") as span:
            span.set_attribute("location.id", location_id)
            if location_id == ROOT_ID:
                raise InvalidInputError("Cannot delete the root location")
            if location_id in ZONE_NAMES_BY_ID:
                raise InvalidInputError(
                    f'Cannot delete the zone "{ZONE_NAMES_BY_ID[location_id]}"'
                )

            async with self._write_lock:
                subtree = await collect_subtree(self._gateway, location_id)
                if not subtree:
                    raise LocationNotFoundError(f"No location found with UUID {location_id}")
                span.set_attribute("subtree.size", len(subtree))

                blocking = await self._find_referenced(subtree)
                if blocking is not None:
                    span.set_attribute("delete.blocked_by", blocking.id)
                    logger.warning(
                        "Delete blocked by patient assignment",
                        extra={"location_id": location_id, "blocking_location_id": blocking.id},
                    )
                    raise ConstraintViolationError(
                        f'Cannot delete the location "{blocking.name}"'
                        " because it has patients assigned to it",
                        location_name=blocking.name,
                    )

                purged = []
                for location in reversed(subtree):
                    await self._gateway.purge(location.id)
                    purged.append(location.id)

                logger.info(
                    f"Purged {len(purged)} locations",
                    extra={"location_id": location_id, "count": len(purged)},
                )
            return purged

    async def _find_referenced(self, subtree: List[LocationRecord]) -> Optional[LocationRecord]:
        """First location in pre-order that any patient attribute points at."""
        referenced = set()
        async for patient in self._gateway.iter_patients():
            referenced |= patient.location_values()
        for location in subtree:
            if location.id in referenced:
                return location
        return None

    async def _validate_name(
        self, names: Optional[Mapping[str, str]], exclude_id: Optional[str] = None
    ) -> str:
        name = pick_name(names)
        if name is None:
            raise InvalidInputError("No name specified for location")
        if not name.strip():
            raise InvalidInputError("Empty name specified for location")

        duplicate = await self._gateway.get_by_name(name)
        if duplicate is not None and duplicate.id != exclude_id:
            raise InvalidInputError(f'Another location already has the name "{name}"')
        return name
