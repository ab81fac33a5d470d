from typing import Dict, List, Optional
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field
import structlog

from contextforge.domain.context.context_assembler import assemble
from contextforge.domain.errors import AssemblyInputError
from contextforge.domain.generation.provider import GenerationOptions
from contextforge.domain.models.content import ContentItem, Zone
from contextforge.domain.models.conversation import Message
from contextforge.domain.models.generation import GenerationRecord, GenerationStatus, ProviderKind

logger = structlog.get_logger(__name__)

router = APIRouter()

# Content kind for generations kept in a session
GENERATION_KIND = "generation"


class GenerationRequest(BaseModel):
    """Start a relayed generation over the session's stored content"""
    input: str
    history: List[Message] = Field(default_factory=list)
    active_skills: Dict[str, bool] = Field(default_factory=dict)
    provider: ProviderKind = ProviderKind.CLAUDE
    model: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)
    disable_agent_behavior: Optional[bool] = None


class GenerationStarted(BaseModel):
    generation_id: str


class CancelResponse(BaseModel):
    cancel_requested: bool


@router.post("/sessions/{session_id}/generations", response_model=GenerationStarted, status_code=201)
async def start_generation(session_id: str, body: GenerationRequest, request: Request):
    state = request.app.state
    settings = state.settings

    provider = state.providers.get(body.provider)
    if provider is None:
        raise HTTPException(status_code=400, detail=f"Provider not available: {body.provider.value}")

    items = await state.content_store.list_zoned_content(session_id)
    try:
        prompt = assemble(items, body.history, state.skills.render(body.active_skills), body.input)
    except AssemblyInputError as e:
        raise HTTPException(status_code=409, detail=str(e))

    options = GenerationOptions(
        model=body.model,
        temperature=body.temperature if body.temperature is not None else settings.temperature,
        disable_agent_behavior=(
            body.disable_agent_behavior
            if body.disable_agent_behavior is not None
            else settings.disable_agent_behavior
        )
    )

    generation_id = await state.coordinator.start_relayed(session_id, provider, prompt, options)
    return GenerationStarted(generation_id=generation_id)


@router.get("/generations/{generation_id}", response_model=GenerationRecord)
async def get_generation(generation_id: str, request: Request):
    return await request.app.state.record_store.get(generation_id)


@router.get("/sessions/{session_id}/generations/latest", response_model=GenerationRecord)
async def get_latest_generation(session_id: str, request: Request):
    record = await request.app.state.record_store.get_latest(session_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No generations for session {session_id}")
    return record


@router.post("/generations/{generation_id}/cancel", response_model=CancelResponse)
async def cancel_generation(generation_id: str, request: Request):
    cancel_requested = await request.app.state.coordinator.cancel(generation_id)
    return CancelResponse(cancel_requested=cancel_requested)


@router.post("/generations/{generation_id}/save", response_model=ContentItem, status_code=201)
async def save_generation(generation_id: str, request: Request):
    """Keep a finished generation's text as the last item of its session's working zone"""
    state = request.app.state

    record = await state.record_store.get(generation_id)
    if record.status != GenerationStatus.COMPLETE:
        raise HTTPException(status_code=409, detail=f"Generation is {record.status.value}, not complete")
    if not record.text.strip():
        raise HTTPException(status_code=409, detail="Generation has no text to save")

    item = await state.content_store.add_item(
        record.session_id,
        record.text,
        zone=Zone.WORKING,
        kind=GENERATION_KIND
    )

    logger.info("Generation saved", generation_id=generation_id, session_id=record.session_id, item_id=item.id)
    return item
