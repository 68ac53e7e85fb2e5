from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from relay_gateway.metrics import metrics_router
from relay_gateway.models.chat import GenerateResponse
from relay_gateway.services.relay_service import RelayService
from relay_gateway.services.stream_relay import SSE_HEADERS

router = APIRouter()
router.include_router(metrics_router)


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/generate", response_model=GenerateResponse)
async def generate(request: Request) -> GenerateResponse:
    service: RelayService = request.app.state.relay_service
    reply = await service.handle_generate(request)
    return GenerateResponse(reply=reply)


@router.post("/chat-stream")
async def chat_stream(request: Request) -> StreamingResponse:
    service: RelayService = request.app.state.relay_service
    frames = await service.handle_chat_stream(request)
    return StreamingResponse(frames, media_type="text/event-stream", headers=SSE_HEADERS)
