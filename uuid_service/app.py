import logging
import time
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response
from pydantic import BaseModel

from .config import ServiceSettings, configure_logging, load_settings


class UUIDResponse(BaseModel):
    uuid: str
    instanceId: str


class MessageResponse(BaseModel):
    message: str
    instanceId: str


def get_settings(request: Request) -> ServiceSettings:
    return request.app.state.settings


def get_logger(request: Request) -> logging.Logger:
    return request.app.state.logger


def compose_message(token: Optional[str], value: str) -> str:
    # an absent token is rendered as "null", callers rely on it
    shown = "null" if token is None else token
    return f"id {shown} : uuid {value}"


router = APIRouter(prefix="/api/v1/uuid")


@router.get("/get", response_model=UUIDResponse)
def get_uuid(
    settings: ServiceSettings = Depends(get_settings),
    log: logging.Logger = Depends(get_logger),
):
    res = UUIDResponse(uuid=str(uuid.uuid4()), instanceId=settings.instance_id)
    log.info("%s", res)
    return res


@router.get("/get-id", response_model=MessageResponse)
def get_uuid_with_query_id(
    id: Optional[str] = None,
    settings: ServiceSettings = Depends(get_settings),
    log: logging.Logger = Depends(get_logger),
):
    res = MessageResponse(
        message=compose_message(id, str(uuid.uuid4())),
        instanceId=settings.instance_id,
    )
    log.info("%s", res)
    return res


@router.get("/path/get/{id}", response_model=MessageResponse)
def get_uuid_with_path_id(
    id: str,
    settings: ServiceSettings = Depends(get_settings),
    log: logging.Logger = Depends(get_logger),
):
    res = MessageResponse(
        message=compose_message(id, str(uuid.uuid4())),
        instanceId=settings.instance_id,
    )
    log.info("%s", res)
    return res


@router.get("/get-slow", response_model=UUIDResponse)
def get_uuid_slow(
    settings: ServiceSettings = Depends(get_settings),
    log: logging.Logger = Depends(get_logger),
):
    """
    Same as /get but holds the worker for slow_delay_sec first.

    Sync handlers run in the threadpool, so only this request's worker
    is blocked. Used to exercise proxy read timeouts.
    """
    log.info("slow request, sleeping %.1fs", settings.slow_delay_sec)
    time.sleep(settings.slow_delay_sec)
    res = UUIDResponse(uuid=str(uuid.uuid4()), instanceId=settings.instance_id)
    log.info("%s", res)
    return res


@router.get("/get/error")
def get_error(log: logging.Logger = Depends(get_logger)):
    log.warning("forced error requested")
    return Response(status_code=500)


def create_app(
    settings: Optional[ServiceSettings] = None,
    logger: Optional[logging.Logger] = None,
) -> FastAPI:
    settings = settings or load_settings()
    app = FastAPI(title="uuid-service")
    app.state.settings = settings
    app.state.logger = logger or logging.getLogger("uuid_service")

    @app.get("/health")
    def health():
        return {"status": "ok", "instanceId": settings.instance_id}

    app.include_router(router)
    return app


def build_app() -> FastAPI:
    """Entry point for uvicorn (factory=True): read the environment, set up logging."""
    settings = load_settings()
    configure_logging(settings.log_level)
    return create_app(settings)
