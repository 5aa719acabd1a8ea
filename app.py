import logging
from typing import Optional
from urllib.parse import quote

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from credentials import CredentialProvider, EnvironmentCredentials
from errors import GenerationInProgress, InvalidSourceImage, PosterValidationError, SourceImageFetchError
from images import decode_image_payload, fetch_source_image, normalize_source_image
from poster_service import PosterGenerator
from schemas import PosterConfigUpdate, SessionView, SourceImagePayload, SourceImageUrlPayload
from session import PosterBackend, PosterSession, SessionRegistry
from settings import Settings

logger = logging.getLogger(__name__)

router = APIRouter()


# --- 1. Application factory ---
def create_app(
    settings: Optional[Settings] = None,
    credentials: Optional[CredentialProvider] = None,
    generator: Optional[PosterBackend] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    credentials = credentials or EnvironmentCredentials(settings.env_file)
    generator = generator or PosterGenerator(
        credentials,
        standard_model=settings.standard_model,
        pro_model=settings.pro_model,
    )
    if not credentials.resolve_api_key(False):
        logger.warning("No Gemini API key configured yet; generation will fail until one is selected.")

    app = FastAPI(
        title="AdCraft AI Poster API",
        description="Turns a product photo and marketing copy into a studio-quality advertisement poster.",
        version="1.0.0"
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.sessions = SessionRegistry(
        generator, credentials, settings.progress_interval, idle_ttl=settings.session_ttl
    )
    app.include_router(router)
    return app


# --- 2. Dependencies ---
def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def get_session(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> PosterSession:
    try:
        return registry.get(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")


# --- 3. API Endpoints ---

@router.post("/sessions", response_model=SessionView, status_code=201)
async def create_session(registry: SessionRegistry = Depends(get_registry)):
    return registry.create().snapshot()


@router.get("/sessions/{session_id}", response_model=SessionView)
async def read_session(session: PosterSession = Depends(get_session)):
    return session.snapshot()


@router.delete("/sessions/{session_id}", status_code=204)
async def end_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    try:
        registry.drop(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return Response(status_code=204)


@router.put("/sessions/{session_id}/source-image", response_model=SessionView)
async def upload_source_image(
    payload: SourceImagePayload,
    request: Request,
    session: PosterSession = Depends(get_session),
):
    try:
        raw = decode_image_payload(payload.image)
        session.set_source_image(normalize_source_image(raw, request.app.state.settings.max_upload_bytes))
    except InvalidSourceImage as e:
        raise HTTPException(status_code=400, detail=str(e))
    return session.snapshot()


@router.post("/sessions/{session_id}/source-image/fetch", response_model=SessionView)
async def fetch_source_image_from_url(
    payload: SourceImageUrlPayload,
    request: Request,
    session: PosterSession = Depends(get_session),
):
    try:
        max_bytes = request.app.state.settings.max_upload_bytes
        raw = await fetch_source_image(payload.url, max_bytes=max_bytes)
        session.set_source_image(normalize_source_image(raw, max_bytes))
    except SourceImageFetchError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except InvalidSourceImage as e:
        raise HTTPException(status_code=400, detail=str(e))
    return session.snapshot()


@router.patch("/sessions/{session_id}/config", response_model=SessionView)
async def update_config(payload: PosterConfigUpdate, session: PosterSession = Depends(get_session)):
    session.update_config(**payload.model_dump(exclude_none=True))
    return session.snapshot()


@router.post("/sessions/{session_id}/generate", response_model=SessionView)
async def generate_poster(session: PosterSession = Depends(get_session)):
    try:
        entry = await session.generate()
    except PosterValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GenerationInProgress as e:
        raise HTTPException(status_code=409, detail=str(e))
    if entry is None:
        raise HTTPException(status_code=502, detail=session.error)
    return session.snapshot()


@router.post("/sessions/{session_id}/history/{poster_id}/select", response_model=SessionView)
async def select_history_entry(poster_id: str, session: PosterSession = Depends(get_session)):
    try:
        session.select_history(poster_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown poster: {poster_id}")
    return session.snapshot()


@router.get("/sessions/{session_id}/download",
    response_class=Response,
    responses={
        200: {
            "content": {"image/png": {}},
            "description": "The currently displayed poster in PNG format."
        }
    }
)
async def download_poster(session: PosterSession = Depends(get_session)):
    try:
        filename, data = session.download()
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return Response(
        content=data,
        media_type="image/png",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
    )


@router.post("/sessions/{session_id}/credential", response_model=SessionView)
async def select_credential(session: PosterSession = Depends(get_session)):
    if not session.open_credential_selection():
        raise HTTPException(status_code=400, detail=session.error)
    return session.snapshot()


# --- 4. Run the Application ---
settings = Settings.from_env()
logging.basicConfig(level=settings.log_level)
app = create_app(settings)

if __name__ == "__main__":
    uvicorn.run(app, host=settings.host, port=settings.port)
