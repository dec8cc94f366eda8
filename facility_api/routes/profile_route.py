import asyncio

from fastapi import APIRouter, File, HTTPException, Path, Request, Response, UploadFile, status, Depends
from fastapi.responses import FileResponse

from facility_api.models.profile import ProfileList, ProfileResult
from facility_api.crud.profile_crud import ProfileStore
from facility_api.exceptions import ProfileError, ProfileNotFoundError

from facility_api.logging_config import tracer, get_child_logger

logger = get_child_logger("routes.profile")

router = APIRouter(prefix="/profiles", tags=["profiles"])


async def get_profile_store(request: Request) -> ProfileStore:
    return request.app.state.profile_store


def _profile_failure(e: ProfileError) -> HTTPException:
    detail = {"message": str(e)}
    if e.output:
        detail["output"] = e.output
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


@router.get("/", response_model=ProfileList)
async def get_profiles(store: ProfileStore = Depends(get_profile_store)):
    return ProfileList(
        profiles=await asyncio.to_thread(store.list_profiles),
        current_profile=await asyncio.to_thread(store.current_profile),
    )


@router.post("/", response_model=ProfileResult, status_code=status.HTTP_201_CREATED)
async def upload_profile(
    file: UploadFile = File(..., description="Profile file to validate and store"),
    store: ProfileStore = Depends(get_profile_store),
):
    with tracer.start_as_current_span("api_upload_profile") as span:
        filename = file.filename or "profile"
        span.set_attribute("profile.filename", filename)
        content = await file.read()
        try:
            name = await store.add_profile(filename, content)
        except ProfileError as e:
            raise _profile_failure(e)
        except OSError as e:
            span.set_attribute("error", True)
            logger.error(f"Problem saving uploaded profile: {e}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="The profile could not be saved.",
            )
        return ProfileResult(filename=name)


@router.post("/{name}/apply", response_model=ProfileResult)
async def apply_profile(
    name: str = Path(..., title="The profile to apply"),
    store: ProfileStore = Depends(get_profile_store),
):
    with tracer.start_as_current_span("api_apply_profile") as span:
        span.set_attribute("profile.name", name)
        try:
            result = await store.apply_profile(name)
        except ProfileNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except ProfileError as e:
            raise _profile_failure(e)
        return ProfileResult(filename=name, output=result.output)


@router.get("/{name}")
async def download_profile(
    name: str = Path(..., title="The profile to download"),
    store: ProfileStore = Depends(get_profile_store),
):
    try:
        path = await asyncio.to_thread(store.profile_path, name)
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return FileResponse(path, media_type="application/octet-stream", filename=path.name)


@router.delete("/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_profile(
    name: str = Path(..., title="The profile to delete"),
    store: ProfileStore = Depends(get_profile_store),
):
    try:
        await store.delete_profile(name)
    except ProfileNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ProfileError as e:
        raise _profile_failure(e)
    except OSError as e:
        logger.error(f"Error deleting profile {name}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="The profile could not be deleted.",
        )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
