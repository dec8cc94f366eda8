"""
Persistence boundary for the location registry.

`LocationGateway` is the capability the registry is written against;
`CosmosLocationGateway` implements it on two Cosmos DB containers
(locations and patients).
"""

from typing import AsyncIterator, List, Optional, Protocol

import opentelemetry.trace
from azure.cosmos.aio import ContainerProxy
from azure.cosmos.exceptions import CosmosHttpResponseError
from pydantic import ValidationError

from facility_api.exceptions import (
    DatabaseError,
    InvariantViolationError,
    LocationNotFoundError,
)
from facility_api.logging_config import get_child_logger, tracer
from facility_api.models.location import LocationRecord
from facility_api.models.patient import PatientRecord

logger = get_child_logger("gateway")


class LocationGateway(Protocol):
    async def get_by_id(self, location_id: str) -> Optional[LocationRecord]:
        ...

    async def get_by_name(self, name: str) -> Optional[LocationRecord]:
        """Return a non-retired location with exactly this name, if any."""
        ...

    async def save(self, location: LocationRecord) -> LocationRecord:
        ...

    async def purge(self, location_id: str) -> None:
        ...

    async def list_children(self, location_id: str) -> List[LocationRecord]:
        ...

    def iter_patients(self) -> AsyncIterator[PatientRecord]:
        ...


class CosmosLocationGateway:
    """
    Cosmos DB implementation of `LocationGateway`.

    Locations are partitioned on `/id`; lookups by name or parent are
    cross-partition queries.
    """

    def __init__(self, locations: ContainerProxy, patients: ContainerProxy):
        self._locations = locations
        self._patients = patients

    async def get_by_id(self, location_id: str) -> Optional[LocationRecord]:
        with tracer.start_as_current_span("gateway_get_location") as span:
            span.set_attribute("location.id", location_id)
            try:
                item = await self._locations.read_item(
                    item=location_id, partition_key=location_id
                )
            except CosmosHttpResponseError as e:
                if e.status_code == 404:
                    return None
                raise self._database_error("reading location", e) from e
            return LocationRecord.model_validate(item)

    async def get_by_name(self, name: str) -> Optional[LocationRecord]:
        query = (
            "SELECT * FROM c WHERE c.name = @name "
            "AND (NOT IS_DEFINED(c.retired) OR c.retired = false)"
        )
        matches = await self._query_locations(query, [{"name": "@name", "value": name}])
        return matches[0] if matches else None

    async def save(self, location: LocationRecord) -> LocationRecord:
        with tracer.start_as_current_span("gateway_save_location") as span:
            span.set_attribute("location.id", location.id)
            try:
                result = await self._locations.upsert_item(body=location.model_dump())
            except CosmosHttpResponseError as e:
                raise self._database_error("saving location", e) from e
            return LocationRecord.model_validate(result)

    async def purge(self, location_id: str) -> None:
        with tracer.start_as_current_span("gateway_purge_location") as span:
            span.set_attribute("location.id", location_id)
            try:
                await self._locations.delete_item(
                    item=location_id, partition_key=location_id
                )
            except CosmosHttpResponseError as e:
                if e.status_code == 404:
                    raise LocationNotFoundError(
                        f"No location found with UUID {location_id}"
                    ) from e
                raise self._database_error("purging location", e) from e

    async def list_children(self, location_id: str) -> List[LocationRecord]:
        query = "SELECT * FROM c WHERE c.parent_id = @parent_id"
        return await self._query_locations(
            query, [{"name": "@parent_id", "value": location_id}]
        )

    async def iter_patients(self) -> AsyncIterator[PatientRecord]:
        """
        Every patient's id and attributes.

        A malformed patient document is an error, never skipped.

        Raises:
            InvariantViolationError: If a patient document does not validate
            DatabaseError: If the query fails
        """
        try:
            async for item in self._patients.query_items(
                query="SELECT c.id, c.attributes FROM c"
            ):
                try:
                    patient = PatientRecord.model_validate(item)
                except ValidationError as e:
                    patient_id = item.get("id") if isinstance(item, dict) else None
                    logger.error(
                        "Malformed patient document",
                        extra={"patient_id": patient_id, "errors": str(e.errors())},
                    )
                    raise InvariantViolationError(
                        f"Patient document {patient_id} is malformed"
                    ) from e
                yield patient
        except CosmosHttpResponseError as e:
            raise self._database_error("scanning patients", e) from e

    async def _query_locations(self, query: str, parameters: list) -> List[LocationRecord]:
        with tracer.start_as_current_span("gateway_query_locations") as span:
            results = []
            try:
                async for item in self._locations.query_items(
                    query=query, parameters=parameters
                ):
                    try:
                        results.append(LocationRecord.model_validate(item))
                    except ValidationError as e:
                        logger.debug(f"Skipping malformed location document: {e.errors()}")
            except CosmosHttpResponseError as e:
                raise self._database_error("querying locations", e) from e
            span.set_attribute("locations.count", len(results))
            return results

    @staticmethod
    def _database_error(action: str, e: CosmosHttpResponseError) -> DatabaseError:
        span = opentelemetry.trace.get_current_span()
        span.set_attribute("error", True)
        span.set_attribute("error.type", "cosmos_http_error")
        span.set_attribute("error.status_code", e.status_code)
        logger.error(
            f"Cosmos DB error {action}",
            extra={"status_code": e.status_code, "error_message": e.message},
            exc_info=True,
        )
        return DatabaseError(
            f"Cosmos DB error {action}: Status Code {e.status_code}, Message: {e.message}",
            original_exception=e,
        )
