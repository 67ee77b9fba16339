"""Controllers for chat endpoints.

Defines the routes over the ChatService.  They are registered in
``main.py``.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from loguru import logger

from ..models.chat_message import ChatMessage, Citation
from ..models.chat_request import ChatRequest
from ..models.chat_response import ChatResponse, SessionState
from ..models.conversation import Conversation
from ..models.enums import HistoryStatus
from ..services.chat_service import ChatService, get_chat_service
from ..utils.error_handler import ChatError, ConversationNotFoundError, ExchangeInProgressError

router = APIRouter(prefix="/chat", tags=["Chat"])


@router.post("", response_model=ChatResponse)
async def chat_endpoint(
    request: ChatRequest,
    service: ChatService = Depends(get_chat_service),
) -> ChatResponse:
    """Submit a question and return the settled conversation.

    The answer is streamed from the backend; failures while streaming
    are reported as ``error`` messages inside the returned list rather
    than as HTTP errors.
    """
    try:
        logger.info("Received question for conversation {}", request.conversation_id or "<new>")
        return await service.submit(request.question, request.conversation_id)
    except ConversationNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except ExchangeInProgressError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except ChatError as exc:
        logger.error("ChatError: {}", exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc


@router.post("/stop")
async def stop_endpoint(
    service: ChatService = Depends(get_chat_service),
) -> dict[str, str]:
    """Cancel every answer currently being generated."""
    service.stop_generating()
    return {"status": "ok"}


@router.post("/new")
async def new_chat_endpoint(
    service: ChatService = Depends(get_chat_service),
) -> dict[str, str]:
    """Start a fresh conversation."""
    service.new_chat()
    return {"status": "ok"}


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def clear_chat_endpoint(
    service: ChatService = Depends(get_chat_service),
) -> None:
    """Clear the messages of the current conversation."""
    if not await service.clear_chat():
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Error clearing current chat",
        )
    return None


@router.get("/messages", response_model=list[ChatMessage])
async def messages_endpoint(
    service: ChatService = Depends(get_chat_service),
) -> list[ChatMessage]:
    return service.messages


@router.get("/state", response_model=SessionState)
async def state_endpoint(
    service: ChatService = Depends(get_chat_service),
) -> SessionState:
    return service.get_state()


@router.get("/history", response_model=list[Conversation])
async def history_endpoint(
    service: ChatService = Depends(get_chat_service),
) -> list[Conversation]:
    """Return the conversations known to the session, most recent first."""
    return service.list_conversations()


@router.get("/citations/{message_id}", response_model=list[Citation])
async def citations_endpoint(
    message_id: str,
    service: ChatService = Depends(get_chat_service),
) -> list[Citation]:
    """Return the citations of a displayed tool message."""
    citations = service.find_citations(message_id)
    if citations is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tool message not found")
    return citations


@router.post("/auth", response_model=SessionState)
async def auth_endpoint(
    service: ChatService = Depends(get_chat_service),
) -> SessionState:
    """Refresh whether the missing-authentication banner should be shown."""
    await service.check_auth()
    return service.get_state()


@router.post("/history/ensure")
async def ensure_history_endpoint(
    service: ChatService = Depends(get_chat_service),
) -> dict[str, str]:
    """Refresh the availability of the persisted chat history."""
    history_status: HistoryStatus = await service.ensure_history()
    return {"status": history_status.value}
