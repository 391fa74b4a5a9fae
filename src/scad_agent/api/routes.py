import logging
import uuid

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse
from sse_starlette.sse import EventSourceResponse

from ..config import MAX_PROMPT_LENGTH
from ..events import EmitFn
from .models import ConversationListItemOut, ConversationOut, ModelRequest, OutputFormat
from .sse import stream_workflow

logger = logging.getLogger(__name__)
router = APIRouter()

MEDIA_TYPES = {"stl": "model/stl", "3mf": "model/3mf"}


def _require_file_id(file_id: str) -> str:
    try:
        return str(uuid.UUID(file_id))
    except ValueError:
        raise HTTPException(status_code=404, detail="File not found") from None


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.post("/api/models/generate")
async def generate_model(req: ModelRequest, request: Request):
    workflow = request.app.state.model_workflow
    sqlite = request.app.state.sqlite_store

    prompt = (req.prompt or "").strip()
    if req.action == "generate":
        if not prompt:
            raise HTTPException(
                status_code=400, detail="Prompt is required and must be a non-empty string"
            )
        if len(prompt) > MAX_PROMPT_LENGTH:
            raise HTTPException(
                status_code=400,
                detail=f"Prompt is too long (maximum {MAX_PROMPT_LENGTH} characters)",
            )
    elif not req.conversation_id:
        raise HTTPException(
            status_code=400, detail=f"conversation_id is required for action '{req.action}'"
        )

    conversation_id = req.conversation_id
    if conversation_id and not await sqlite.get_conversation(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")

    logger.info(
        "Model request: action=%s format=%s conversation=%s",
        req.action,
        req.format,
        conversation_id or "<new>",
    )

    async def operation(emit: EmitFn):
        if req.action == "finalize":
            return await workflow.finalize(conversation_id, req.format, emit)
        if req.action == "reject_preview_and_retry":
            return await workflow.reject_and_retry(conversation_id, req.format, emit)
        return await workflow.generate(prompt, req.format, conversation_id, emit)

    return EventSourceResponse(stream_workflow(operation), ping=15)


@router.get("/api/models/{file_id}/{fmt}")
async def get_model_file(file_id: str, fmt: OutputFormat, request: Request):
    workflow = request.app.state.model_workflow
    path = workflow.get_model_file(_require_file_id(file_id), fmt)
    if path is None:
        raise HTTPException(status_code=404, detail="Model file not found")
    return FileResponse(path, media_type=MEDIA_TYPES[fmt], filename=f"model.{fmt}")


@router.get("/api/previews/{file_name}")
async def get_preview_file(file_name: str, request: Request):
    workflow = request.app.state.model_workflow
    file_id = _require_file_id(file_name.removesuffix(".png"))
    path = workflow.get_preview_file(file_id)
    if path is None:
        raise HTTPException(status_code=404, detail="Preview not found")
    return FileResponse(path, media_type="image/png")


@router.get("/api/conversations", response_model=list[ConversationListItemOut])
async def list_conversations(request: Request):
    sqlite = request.app.state.sqlite_store
    return await sqlite.list_conversations()


@router.get("/api/conversations/{conversation_id}", response_model=ConversationOut)
async def get_conversation(conversation_id: str, request: Request):
    sqlite = request.app.state.sqlite_store
    conv = await sqlite.get_conversation(conversation_id)
    if not conv:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conv


@router.delete("/api/conversations/{conversation_id}")
async def delete_conversation(conversation_id: str, request: Request):
    sqlite = request.app.state.sqlite_store
    if not await sqlite.delete_conversation(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    logger.info("Conversation deleted: %s", conversation_id)
    return {"deleted": True, "id": conversation_id}
