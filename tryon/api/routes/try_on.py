"""
Try-on API: submit a person/outfit pair, read dispatch stats, clear the waiting queue.
Image payloads use the same shape in both directions: base64 or data URL plus media type.
"""
import logging

from fastapi import APIRouter, HTTPException, Request, status
from pydantic import BaseModel, Field

from tryon.services.dispatch import (
    ImagePayload,
    NoImageInResponse,
    QueueCleared,
    RequestTimeout,
    TryOnError,
    TryOnService,
    UpstreamError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/try-on", tags=["try-on"])

ERROR_STATUS: dict[type[TryOnError], int] = {
    NoImageInResponse: 422,
    UpstreamError: status.HTTP_502_BAD_GATEWAY,
    RequestTimeout: status.HTTP_504_GATEWAY_TIMEOUT,
    QueueCleared: status.HTTP_503_SERVICE_UNAVAILABLE,
}


class ImageIn(BaseModel):
    base64: str | None = None
    dataUrl: str | None = None
    mimeType: str = "image/jpeg"

    def to_payload(self) -> ImagePayload:
        if self.dataUrl:
            return ImagePayload.from_data_url(self.dataUrl)
        if self.base64:
            return ImagePayload.from_base64(self.base64, self.mimeType)
        raise ValueError("Image must include base64 or dataUrl")


class ImageOut(BaseModel):
    mimeType: str
    base64: str
    dataUrl: str

    @classmethod
    def from_payload(cls, image: ImagePayload) -> "ImageOut":
        return cls(mimeType=image.mime_type, base64=image.base64, dataUrl=image.data_url)


class TryOnRequest(BaseModel):
    modelImage: ImageIn
    outfitImage: ImageIn


class TryOnResponse(BaseModel):
    image: ImageOut
    warning: str | None = Field(None, description="Advisory message for repeated identical submissions.")


def get_service(request: Request) -> TryOnService:
    return request.app.state.try_on_service


@router.post("", response_model=TryOnResponse)
async def create_try_on(payload: TryOnRequest, request: Request) -> TryOnResponse:
    try:
        model_image = payload.modelImage.to_payload()
        outfit_image = payload.outfitImage.to_payload()
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    service = get_service(request)
    try:
        result = await service.generate_try_on(model_image, outfit_image)
    except TryOnError as e:
        code = ERROR_STATUS.get(type(e), status.HTTP_500_INTERNAL_SERVER_ERROR)
        logger.warning(
            "tryon_api_error",
            extra={"path": request.url.path, "status_code": code, "error_type": type(e).__name__},
        )
        raise HTTPException(status_code=code, detail=e.user_message)

    return TryOnResponse(image=ImageOut.from_payload(result.image), warning=result.warning)


@router.get("/stats")
async def try_on_stats(request: Request) -> dict:
    return get_service(request).stats()


@router.post("/queue/clear")
async def clear_queue(request: Request) -> dict:
    cleared = get_service(request).queue.clear()
    return {"cleared": cleared}
