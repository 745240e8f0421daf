"""Expense Flow API Endpoints

FastAPI routes the WhatsApp webhook layer calls for the receipt expense flow.

Endpoints:
- POST   /api/expense-flow/receipts                        - Start a flow from a receipt image
- POST   /api/expense-flow/messages                        - Route a text reply to the active flow
- GET    /api/expense-flow/{tenant_id}/{conversation_id}   - Inspect the active flow
- DELETE /api/expense-flow/{tenant_id}/{conversation_id}   - Cancel the active flow
- POST   /api/expense-flow/ledger/connect                  - Store ledger credentials for a tenant
- DELETE /api/expense-flow/ledger/{tenant_id}/connection   - Forget ledger credentials
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, model_validator

from app.models.flow import FlowResult, FlowStep
from app.services.expense_flow_service import ExpenseFlowService, build_default_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/expense-flow", tags=["expense-flow"])

# Singleton service instance
_expense_flow_service: Optional[ExpenseFlowService] = None


def get_expense_flow_service() -> ExpenseFlowService:
    """Get or create ExpenseFlowService singleton."""
    global _expense_flow_service
    if _expense_flow_service is None:
        _expense_flow_service = build_default_service()
    return _expense_flow_service


# ============================================================================
# Request/Response Models
# ============================================================================

class StartFlowRequest(BaseModel):
    """Receipt image delivered inline or as a transport media reference."""
    tenant_id: str = Field(..., min_length=1)
    conversation_id: str = Field(..., min_length=1, description="Remote JID of the conversation")
    image_base64: Optional[str] = Field(None, description="Base64 image (data: URLs accepted)")
    mime_type: str = "image/jpeg"
    caption: str = ""
    instance_key: Optional[str] = Field(None, description="Messaging instance that received the image")
    media_ref: Optional[Dict[str, Any]] = Field(None, description="Message key used to download the media")

    @model_validator(mode="after")
    def require_image_source(self) -> "StartFlowRequest":
        if self.image_base64:
            return self
        if self.instance_key and self.media_ref:
            return self
        raise ValueError("Provide image_base64 or both instance_key and media_ref")


class MessageRequest(BaseModel):
    tenant_id: str = Field(..., min_length=1)
    conversation_id: str = Field(..., min_length=1)
    text: str


class FlowStatusResponse(BaseModel):
    active: bool
    step: Optional[FlowStep] = None
    expires_at: Optional[datetime] = None


class LedgerConnectRequest(BaseModel):
    tenant_id: str = Field(..., min_length=1)
    email: str
    password: str


class LedgerConnectResponse(BaseModel):
    success: bool
    message: str


# ============================================================================
# Endpoints
# ============================================================================

@router.post("/receipts", response_model=FlowResult)
def start_flow(
    request: StartFlowRequest,
    service: ExpenseFlowService = Depends(get_expense_flow_service),
) -> FlowResult:
    """Extract the receipt and open a flow at the wallet question."""
    if request.image_base64:
        return service.start_from_image(
            request.tenant_id,
            request.conversation_id,
            request.image_base64,
            request.mime_type,
            request.caption,
        )
    return service.start_from_media(
        request.tenant_id,
        request.conversation_id,
        request.instance_key,
        request.media_ref,
        request.caption,
    )


@router.post("/messages", response_model=FlowResult)
def process_message(
    request: MessageRequest,
    service: ExpenseFlowService = Depends(get_expense_flow_service),
) -> FlowResult:
    return service.process_message(request.tenant_id, request.conversation_id, request.text)


@router.post("/ledger/connect", response_model=LedgerConnectResponse)
def connect_ledger(
    request: LedgerConnectRequest,
    service: ExpenseFlowService = Depends(get_expense_flow_service),
) -> LedgerConnectResponse:
    result = service.ledger_client.connect(request.tenant_id, request.email, request.password)
    if not result.get("success"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=result.get("message") or "Falha ao conectar",
        )
    return LedgerConnectResponse(success=True, message=result.get("message", ""))


@router.delete("/ledger/{tenant_id}/connection", status_code=status.HTTP_204_NO_CONTENT)
def disconnect_ledger(
    tenant_id: str,
    service: ExpenseFlowService = Depends(get_expense_flow_service),
) -> None:
    if not service.ledger_client.disconnect(tenant_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not connected")


@router.get("/{tenant_id}/{conversation_id}", response_model=FlowStatusResponse)
def get_flow_status(
    tenant_id: str,
    conversation_id: str,
    service: ExpenseFlowService = Depends(get_expense_flow_service),
) -> FlowStatusResponse:
    state = service.get_state(tenant_id, conversation_id)
    if state is None:
        return FlowStatusResponse(active=False)
    return FlowStatusResponse(active=True, step=state.step, expires_at=state.expires_at)


@router.delete("/{tenant_id}/{conversation_id}", response_model=FlowResult)
def cancel_flow(
    tenant_id: str,
    conversation_id: str,
    service: ExpenseFlowService = Depends(get_expense_flow_service),
) -> FlowResult:
    result = service.cancel(tenant_id, conversation_id)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result.response)
    logger.info(f"Flow cancelled via API for {tenant_id}/{conversation_id}")
    return result
