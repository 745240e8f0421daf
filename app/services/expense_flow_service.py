"""Expense Flow Service

Step router for the receipt-to-ledger conversation. Each inbound message is
dispatched to the handler for the conversation's current step; the handler
writes the next state (or clears it) and returns the reply to send.

Responsibilities:
- Start a flow from a receipt image (inline base64 or transport media reference)
- Route text replies through wallet selection, wallet creation, item review
  and final confirmation
- Honor cancel tokens at every step before any step-specific logic
- Serialize work per (tenant_id, conversation_id) within this process
- Convert unexpected errors into an apology reply without touching state
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from app.models.flow import (
    AwaitingFinalConfirmationPayload,
    AwaitingItemsConfirmationPayload,
    AwaitingWalletPayload,
    AwaitingWalletTypePayload,
    ExtractedItem,
    FlowResult,
    FlowState,
    FlowStep,
    ReceiptContext,
    WalletRef,
)
from app.repositories.flow_state_repository import FlowStateRepository
from app.services import flow_messages as messages
from app.services.commit_engine import CommitEngine
from app.services.item_editor import ItemCommandKind, edit_item, is_confirm, is_deny, parse_item_command, remove_item
from app.services.receipt_extraction import ReceiptExtractionService
from app.services.wallet_resolver import WalletSelectionKind, resolve_wallet_selection, resolve_wallet_type
from app.utils.helpers.exceptions import ExtractionFailure
from app.utils.logging_utils import log_commit_event, log_transition_event

logger = logging.getLogger(__name__)

CANCEL_TOKENS = {"cancelar", "cancela", "parar", "sair", "abort", "abortar"}


def is_cancel(message: str) -> bool:
    return message.strip().lower() in CANCEL_TOKENS


class ExpenseFlowService:
    """Conversational state machine turning a receipt into ledger transactions."""

    def __init__(
        self,
        repository: FlowStateRepository,
        extraction_service: ReceiptExtractionService,
        ledger_client,
        commit_engine: Optional[CommitEngine] = None,
        media_client=None,
        default_category: str = "Alimentação",
    ):
        """
        Args:
            repository: Flow state store
            extraction_service: Turns an image into a reconciled ReceiptContext
            ledger_client: Exposes is_connected / list_wallets / create_wallet / create_transaction
            commit_engine: Writes confirmed items (built from ledger_client when omitted)
            media_client: Exposes ``download(instance_key, media_ref)``; optional
            default_category: Category used when neither item nor receipt has one
        """
        self.repository = repository
        self.extraction_service = extraction_service
        self.ledger_client = ledger_client
        self.commit_engine = commit_engine or CommitEngine(ledger_client, default_category)
        self.media_client = media_client

        # key -> [lock, holders and waiters]; entries are dropped when unused
        self._locks: Dict[Tuple[str, str], list] = {}
        self._locks_guard = threading.Lock()

        self._handlers: Dict[FlowStep, Callable[[FlowState, str], FlowResult]] = {
            FlowStep.AWAITING_WALLET: self._handle_wallet_selection,
            FlowStep.AWAITING_WALLET_TYPE: self._handle_wallet_type,
            FlowStep.AWAITING_ITEMS_CONFIRMATION: self._handle_items_confirmation,
            FlowStep.AWAITING_FINAL_CONFIRMATION: self._handle_final_confirmation,
        }

    # ========================================
    # Public operations
    # ========================================

    def start_from_image(
        self,
        tenant_id: str,
        conversation_id: str,
        image_base64: str,
        mime_type: str = "image/jpeg",
        caption: str = "",
    ) -> FlowResult:
        """Extract a receipt and open a flow at AWAITING_WALLET.

        An existing flow for the conversation is replaced.
        """
        with self._conversation_lock(tenant_id, conversation_id):
            if not self.ledger_client.is_connected(tenant_id):
                return FlowResult(success=False, response=messages.LEDGER_NOT_CONNECTED, flow_ended=True)
            return self._start_flow(tenant_id, conversation_id, image_base64, mime_type, caption)

    def start_from_media(
        self,
        tenant_id: str,
        conversation_id: str,
        instance_key: str,
        media_ref: Dict[str, Any],
        caption: str = "",
    ) -> FlowResult:
        """Download the image from the messaging transport, then start the flow."""
        with self._conversation_lock(tenant_id, conversation_id):
            if not self.ledger_client.is_connected(tenant_id):
                return FlowResult(success=False, response=messages.LEDGER_NOT_CONNECTED, flow_ended=True)

            media = None
            if self.media_client is not None:
                try:
                    media = self.media_client.download(instance_key, media_ref)
                except Exception as e:
                    logger.error(f"Media download raised for {tenant_id}/{conversation_id}: {e}")

            if media is None or not media.base64:
                logger.warning(f"No media downloaded for {tenant_id}/{conversation_id}")
                return FlowResult(success=False, response=messages.MEDIA_DOWNLOAD_FAILED, flow_ended=True)

            return self._start_flow(tenant_id, conversation_id, media.base64, media.mime_type, caption)

    def process_message(self, tenant_id: str, conversation_id: str, text: str) -> FlowResult:
        """Route a text reply to the handler of the current step."""
        with self._conversation_lock(tenant_id, conversation_id):
            state = self.repository.get(tenant_id, conversation_id)
            if state is None:
                return FlowResult(success=False, response=messages.NO_ACTIVE_FLOW, flow_ended=True)

            if is_cancel(text):
                self._end(state, "cancelled")
                return FlowResult(success=True, response=messages.CANCELLED, flow_ended=True)

            handler = self._handlers[state.step]
            try:
                return handler(state, text)
            except Exception as e:
                logger.error(
                    f"Error handling {state.step.value} for {tenant_id}/{conversation_id}: {e}",
                    exc_info=True,
                )
                return FlowResult(success=False, response=messages.GENERIC_ERROR, step=state.step)

    def has_active_flow(self, tenant_id: str, conversation_id: str) -> bool:
        return self.get_state(tenant_id, conversation_id) is not None

    def get_state(self, tenant_id: str, conversation_id: str) -> Optional[FlowState]:
        with self._conversation_lock(tenant_id, conversation_id):
            return self.repository.get(tenant_id, conversation_id)

    def cancel(self, tenant_id: str, conversation_id: str) -> FlowResult:
        with self._conversation_lock(tenant_id, conversation_id):
            if not self.repository.clear(tenant_id, conversation_id):
                return FlowResult(success=False, response=messages.NO_ACTIVE_FLOW, flow_ended=True)
            log_transition_event({
                "tenant_id": tenant_id,
                "conversation_id": conversation_id,
                "to_step": None,
                "reason": "cancelled",
            })
            return FlowResult(success=True, response=messages.CANCELLED, flow_ended=True)

    # ========================================
    # Flow start
    # ========================================

    def _start_flow(
        self,
        tenant_id: str,
        conversation_id: str,
        image_base64: str,
        mime_type: str,
        caption: str,
    ) -> FlowResult:
        try:
            receipt = self.extraction_service.extract(image_base64, mime_type, caption or "")
        except ExtractionFailure as e:
            logger.info(f"Receipt rejected for {tenant_id}/{conversation_id}: {e}")
            return FlowResult(success=False, response=e.user_message, flow_ended=True)
        except Exception as e:
            logger.error(f"Error extracting receipt for {tenant_id}/{conversation_id}: {e}", exc_info=True)
            return FlowResult(success=False, response=messages.RECEIPT_ERROR, flow_ended=True)

        try:
            wallets = self.ledger_client.list_wallets(tenant_id)
            payload = AwaitingWalletPayload(receipt=receipt, wallets=wallets)
            self._save(tenant_id, conversation_id, payload, from_step=None)
        except Exception as e:
            logger.error(f"Error opening flow for {tenant_id}/{conversation_id}: {e}", exc_info=True)
            return FlowResult(success=False, response=messages.RECEIPT_ERROR, flow_ended=True)

        return FlowResult(
            success=True,
            response=messages.receipt_identified(receipt, wallets),
            step=FlowStep.AWAITING_WALLET,
        )

    # ========================================
    # Step handlers
    # ========================================

    def _handle_wallet_selection(self, state: FlowState, text: str) -> FlowResult:
        payload: AwaitingWalletPayload = state.payload
        selection = resolve_wallet_selection(text, payload.wallets)

        if selection.kind == WalletSelectionKind.EXISTING:
            wallet = WalletRef(id=selection.wallet.id, name=selection.wallet.name)
            return self._enter_items_confirmation(state, payload.receipt, wallet)

        if selection.kind == WalletSelectionKind.NEW_UNNAMED:
            self._save_from(state, AwaitingWalletTypePayload(receipt=payload.receipt))
            return FlowResult(
                success=True,
                response=messages.new_wallet_name_prompt(),
                step=FlowStep.AWAITING_WALLET_TYPE,
            )

        if selection.kind == WalletSelectionKind.NEW_NAMED:
            self._save_from(state, AwaitingWalletTypePayload(
                receipt=payload.receipt,
                new_wallet_name=selection.new_wallet_name,
            ))
            return FlowResult(
                success=True,
                response=messages.wallet_type_prompt(selection.new_wallet_name),
                step=FlowStep.AWAITING_WALLET_TYPE,
            )

        return FlowResult(
            success=True,
            response=messages.wallet_unrecognized(payload.wallets),
            step=FlowStep.AWAITING_WALLET,
        )

    def _handle_wallet_type(self, state: FlowState, text: str) -> FlowResult:
        payload: AwaitingWalletTypePayload = state.payload
        name = text.strip()

        if not payload.new_wallet_name:
            if not name:
                return FlowResult(
                    success=True,
                    response=messages.new_wallet_name_prompt(),
                    step=FlowStep.AWAITING_WALLET_TYPE,
                )
            self._save_from(state, AwaitingWalletTypePayload(receipt=payload.receipt, new_wallet_name=name))
            return FlowResult(
                success=True,
                response=messages.wallet_type_prompt(name),
                step=FlowStep.AWAITING_WALLET_TYPE,
            )

        wallet_type = resolve_wallet_type(text)
        if wallet_type is None:
            return FlowResult(
                success=True,
                response=messages.wallet_type_unrecognized(),
                step=FlowStep.AWAITING_WALLET_TYPE,
            )

        result = self.ledger_client.create_wallet(
            state.tenant_id,
            payload.new_wallet_name,
            wallet_type.name,
            wallet_type.icon,
        )
        if not result.success or result.wallet is None:
            logger.warning(
                f"Wallet '{payload.new_wallet_name}' creation failed for tenant {state.tenant_id}: {result.message}"
            )
            self._end(state, "wallet_creation_failed")
            return FlowResult(
                success=False,
                response=messages.wallet_creation_failed(result.message),
                flow_ended=True,
            )

        logger.info(f"Created wallet '{result.wallet.name}' ({wallet_type.id}) for tenant {state.tenant_id}")
        wallet = WalletRef(id=result.wallet.id, name=result.wallet.name)
        return self._enter_items_confirmation(state, payload.receipt, wallet)

    def _handle_items_confirmation(self, state: FlowState, text: str) -> FlowResult:
        payload: AwaitingItemsConfirmationPayload = state.payload
        command = parse_item_command(text)
        items = [item.model_copy() for item in payload.items]

        if command.kind == ItemCommandKind.CONFIRM:
            self._save_from(state, AwaitingFinalConfirmationPayload(
                receipt=payload.receipt,
                wallet=payload.wallet,
                items=items,
            ))
            return FlowResult(
                success=True,
                response=messages.final_summary(payload.wallet.name, payload.receipt, items),
                step=FlowStep.AWAITING_FINAL_CONFIRMATION,
            )

        if command.kind == ItemCommandKind.DENY:
            self._end(state, "denied")
            return FlowResult(success=True, response=messages.ENTRY_CANCELLED, flow_ended=True)

        if command.kind == ItemCommandKind.REMOVE:
            removed = remove_item(items, command.index)
            if removed is not None:
                if not items:
                    self._end(state, "all_items_removed")
                    return FlowResult(success=True, response=messages.ALL_ITEMS_REMOVED, flow_ended=True)
                self._save_items(state, payload, items)
                return FlowResult(
                    success=True,
                    response=messages.item_removed(removed, items),
                    step=FlowStep.AWAITING_ITEMS_CONFIRMATION,
                )

        if command.kind == ItemCommandKind.EDIT:
            if edit_item(items, command.index, command.value) is not None:
                self._save_items(state, payload, items)
                return FlowResult(
                    success=True,
                    response=messages.item_edited(items),
                    step=FlowStep.AWAITING_ITEMS_CONFIRMATION,
                )

        return FlowResult(
            success=True,
            response=messages.ITEMS_HELP,
            step=FlowStep.AWAITING_ITEMS_CONFIRMATION,
        )

    def _handle_final_confirmation(self, state: FlowState, text: str) -> FlowResult:
        payload: AwaitingFinalConfirmationPayload = state.payload

        if is_deny(text):
            self._end(state, "denied")
            return FlowResult(success=True, response=messages.ENTRY_CANCELLED, flow_ended=True)

        if not is_confirm(text):
            return FlowResult(
                success=True,
                response=messages.FINAL_HELP,
                step=FlowStep.AWAITING_FINAL_CONFIRMATION,
            )

        try:
            summary = self.commit_engine.commit(state.tenant_id, payload.receipt, payload.wallet, payload.items)
        finally:
            # The flow terminates whatever happened to the individual items
            self._end(state, "committed")

        log_commit_event({
            "tenant_id": state.tenant_id,
            "conversation_id": state.conversation_id,
            "wallet_id": payload.wallet.id,
            "items": len(summary.results),
            "succeeded": summary.succeeded_count,
            "failed": summary.failed_count,
            "total": summary.total,
        })

        if summary.all_succeeded:
            response = messages.commit_complete(payload.wallet.name, payload.receipt, summary)
        else:
            response = messages.commit_partial(summary)
        return FlowResult(success=summary.all_succeeded, response=response, flow_ended=True)

    # ========================================
    # State helpers
    # ========================================

    def _enter_items_confirmation(self, state: FlowState, receipt: ReceiptContext, wallet: WalletRef) -> FlowResult:
        items = [item.model_copy() for item in receipt.items]
        self._save_from(state, AwaitingItemsConfirmationPayload(receipt=receipt, wallet=wallet, items=items))
        return FlowResult(
            success=True,
            response=messages.items_confirmation(wallet.name, receipt, items),
            step=FlowStep.AWAITING_ITEMS_CONFIRMATION,
        )

    def _save_items(
        self,
        state: FlowState,
        payload: AwaitingItemsConfirmationPayload,
        items: List[ExtractedItem],
    ) -> None:
        self._save_from(state, AwaitingItemsConfirmationPayload(
            receipt=payload.receipt,
            wallet=payload.wallet,
            items=items,
        ))

    def _save_from(self, state: FlowState, payload) -> FlowState:
        return self._save(state.tenant_id, state.conversation_id, payload, from_step=state.step)

    def _save(self, tenant_id: str, conversation_id: str, payload, from_step: Optional[FlowStep]) -> FlowState:
        saved = self.repository.set(tenant_id, conversation_id, payload)
        if from_step != saved.step:
            log_transition_event({
                "tenant_id": tenant_id,
                "conversation_id": conversation_id,
                "from_step": from_step.value if from_step else None,
                "to_step": saved.step.value,
                "expires_at": saved.expires_at.isoformat(),
            })
        return saved

    def _end(self, state: FlowState, reason: str) -> None:
        self.repository.clear(state.tenant_id, state.conversation_id)
        log_transition_event({
            "tenant_id": state.tenant_id,
            "conversation_id": state.conversation_id,
            "from_step": state.step.value,
            "to_step": None,
            "reason": reason,
        })

    @contextmanager
    def _conversation_lock(self, tenant_id: str, conversation_id: str) -> Iterator[None]:
        key = (tenant_id, conversation_id)
        with self._locks_guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1

        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


def build_default_service(config=None) -> ExpenseFlowService:
    """Wire the production collaborators from environment configuration."""
    from app.extractors.openai_receipt_extractor import OpenAIReceiptExtractor
    from app.integrations.evolution_api import EvolutionMediaClient
    from app.integrations.ledger_api import LedgerAPIClient
    from app.repositories.ledger_credentials_repository import LedgerCredentialsRepository
    from app.services.config_service import ConfigService

    config = config or ConfigService()
    db_path = config.get_db_path()

    repository = FlowStateRepository(
        db_path=db_path,
        ttl=timedelta(minutes=config.get_flow_timeout_minutes()),
    )
    extractor = OpenAIReceiptExtractor(
        api_key=config.get_openai_api_key(),
        model=config.get_openai_model(),
        max_image_dim=config.get_openai_image_max_dim(),
        timeouts=config.get_openai_timeouts(),
    )
    ledger_client = LedgerAPIClient(
        base_url=config.get_ledger_api_url(),
        credentials=LedgerCredentialsRepository(db_path=db_path),
        timeout=config.get_ledger_timeout(),
    )
    media_client = EvolutionMediaClient(
        base_url=config.get_evolution_api_url(),
        api_key=config.get_evolution_api_key(),
    )

    if not extractor.is_available():
        logger.warning("OPENAI_API_KEY not set; receipt extraction will fail until configured")

    return ExpenseFlowService(
        repository=repository,
        extraction_service=ReceiptExtractionService(extractor),
        ledger_client=ledger_client,
        media_client=media_client,
        default_category=config.get_default_category(),
    )
