from fastapi import APIRouter, Body, HTTPException, Path, Request, Response, status, Depends

from facility_api.models.location import (
    LocationCreate,
    LocationList,
    LocationResponse,
    LocationUpdate,
)
from facility_api.crud.location_crud import LocationRegistry
from facility_api.exceptions import (
    ConstraintViolationError,
    DatabaseError,
    InvalidInputError,
    InvariantViolationError,
    LocationNotFoundError,
)

from facility_api.logging_config import tracer, get_child_logger

# Create a child logger for this module
logger = get_child_logger("routes.location")

router = APIRouter(prefix="/locations", tags=["locations"])


async def get_location_registry(request: Request) -> LocationRegistry:
    return request.app.state.location_registry


@router.get("/", response_model=LocationList, response_model_exclude_none=True)
async def get_locations(
    registry: LocationRegistry = Depends(get_location_registry),
):
    with tracer.start_as_current_span("api_get_locations") as span:
        logger.info("Handling GET /locations request")
        try:
            result = await registry.list_all()
            span.set_attribute("locations.count", len(result.results))
            return result
        except InvariantViolationError:
            # Left to the app-level handler
            raise
        except DatabaseError as e:
            span.set_attribute("error", True)
            span.set_attribute("error.type", "database_error")
            logger.error(
                "Database error during location listing",
                extra={"error": str(e)},
                exc_info=e.original_exception,
            )
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="A database error occurred.",
            )
        except Exception as e:
            span.set_attribute("error", True)
            span.set_attribute("error.type", type(e).__name__)
            logger.error(
                "Unexpected error during location listing",
                extra={"error": str(e), "error_type": type(e).__name__},
                exc_info=True,
            )
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="An unexpected internal server error occurred.",
            )


@router.get("/search", response_model=LocationList, response_model_exclude_none=True)
async def search_locations(
    request: Request,
    registry: LocationRegistry = Depends(get_location_registry),
):
    try:
        return await registry.search(dict(request.query_params))
    except InvariantViolationError:
        raise
    except DatabaseError as e:
        logger.error(f"Database error: {e}", exc_info=e.original_exception)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="A database error occurred.",
        )
    except Exception as e:
        logger.error(f"Unexpected error during location search: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected internal server error occurred.",
        )


@router.post(
    "/",
    response_model=LocationResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
async def add_new_location(
    location: LocationCreate = Body(..., description="Parent and name of the new location"),
    registry: LocationRegistry = Depends(get_location_registry),
):
    try:
        return await registry.create(location)
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except DatabaseError as e:
        logger.error(f"Database error: {e}", exc_info=e.original_exception)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="A database error occurred.",
        )
    except Exception as e:
        logger.error(f"Unexpected error during location creation: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected internal server error occurred.",
        )


@router.get("/{location_id}", response_model=LocationResponse, response_model_exclude_none=True)
async def get_location(
    location_id: str = Path(..., title="The UUID of the location to retrieve"),
    registry: LocationRegistry = Depends(get_location_registry),
):
    try:
        location = await registry.retrieve(location_id)
    except DatabaseError as e:
        logger.error(f"Database error: {e}", exc_info=e.original_exception)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="A database error occurred.",
        )
    except Exception as e:
        logger.error(
            f"Unexpected error retrieving location {location_id}: {e}", exc_info=True
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected internal server error occurred.",
        )
    if location is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No location found with UUID {location_id}",
        )
    return location


@router.patch("/{location_id}", response_model=LocationResponse, response_model_exclude_none=True)
async def update_existing_location(
    updated_location: LocationUpdate,
    location_id: str = Path(..., title="The UUID of the location to rename"),
    registry: LocationRegistry = Depends(get_location_registry),
):
    try:
        return await registry.update(location_id, updated_location)
    except LocationNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except DatabaseError as e:
        logger.error(
            f"Database error during location update: {e}", exc_info=e.original_exception
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="A database error occurred.",
        )
    except Exception as e:
        logger.error(f"Unexpected error during location update: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected internal server error occurred.",
        )


@router.delete("/{location_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_existing_location(
    location_id: str = Path(..., title="The UUID of the location to delete"),
    registry: LocationRegistry = Depends(get_location_registry),
):
    with tracer.start_as_current_span("api_delete_location") as span:
        span.set_attribute("location.id", location_id)
        try:
            purged = await registry.delete(location_id)
            span.set_attribute("locations.purged", len(purged))
            return Response(status_code=status.HTTP_204_NO_CONTENT)
        except InvalidInputError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        except LocationNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except ConstraintViolationError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
        except InvariantViolationError:
            raise
        except DatabaseError as e:
            span.set_attribute("error", True)
            logger.error(f"Database error: {e}", exc_info=e.original_exception)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="A database error occurred.",
            )
        except Exception as e:
            span.set_attribute("error", True)
            logger.error(
                f"Unexpected error in DELETE /locations/{location_id}: {e}", exc_info=True
            )
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="An unexpected internal server error occurred.",
            )
