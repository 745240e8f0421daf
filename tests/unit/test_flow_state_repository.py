from datetime import timedelta

import pytest

from app.models.flow import (
    AwaitingItemsConfirmationPayload,
    AwaitingWalletPayload,
    AwaitingWalletTypePayload,
    ExtractedItem,
    FlowStep,
    ReceiptContext,
    WalletRef,
)
from app.models.ledger import Wallet
from app.repositories.flow_state_repository import FlowStateRepository

TENANT = "tenant-1"
CONVERSATION = "5511999990000@s.whatsapp.net"


@pytest.fixture
def receipt() -> ReceiptContext:
    return ReceiptContext(
        items=[ExtractedItem(name="Arroz", quantity=1, unit_price=20.0, total_price=20.0)],
        total_amount=20.0,
        establishment="Mercado Central",
    )


def test_get_returns_none_when_absent(flow_repository):
    assert flow_repository.get(TENANT, CONVERSATION) is None


def test_set_then_get_keeps_tagged_payload(flow_repository, receipt, clock):
    saved = flow_repository.set(TENANT, CONVERSATION, AwaitingWalletPayload(
        receipt=receipt,
        wallets=[Wallet(id="w1", name="Nubank")],
    ))

    assert saved.expires_at == clock() + timedelta(minutes=15)

    state = flow_repository.get(TENANT, CONVERSATION)
    assert state.step == FlowStep.AWAITING_WALLET
    assert isinstance(state.payload, AwaitingWalletPayload)
    assert state.payload.wallets[0].name == "Nubank"
    assert state.payload.receipt.items[0].name == "Arroz"
    assert state.expires_at == saved.expires_at


def test_set_overwrites_previous_state(flow_repository, receipt):
    flow_repository.set(TENANT, CONVERSATION, AwaitingWalletPayload(receipt=receipt))
    flow_repository.set(TENANT, CONVERSATION, AwaitingItemsConfirmationPayload(
        receipt=receipt,
        wallet=WalletRef(id="w1", name="Nubank"),
        items=receipt.items,
    ))

    state = flow_repository.get(TENANT, CONVERSATION)
    assert state.step == FlowStep.AWAITING_ITEMS_CONFIRMATION
    assert state.payload.wallet.id == "w1"
    assert flow_repository.count() == 1


def test_expired_state_is_removed_on_read(flow_repository, receipt, clock):
    flow_repository.set(TENANT, CONVERSATION, AwaitingWalletPayload(receipt=receipt))

    clock.advance(minutes=15)
    assert flow_repository.get(TENANT, CONVERSATION) is not None  # exactly at expiry is still valid

    clock.advance(seconds=1)
    assert flow_repository.get(TENANT, CONVERSATION) is None
    assert flow_repository.count() == 0


def test_read_does_not_renew_expiry(flow_repository, receipt, clock):
    saved = flow_repository.set(TENANT, CONVERSATION, AwaitingWalletPayload(receipt=receipt))

    clock.advance(minutes=10)
    assert flow_repository.get(TENANT, CONVERSATION).expires_at == saved.expires_at

    clock.advance(minutes=6)
    assert flow_repository.get(TENANT, CONVERSATION) is None


def test_write_renews_expiry(flow_repository, receipt, clock):
    flow_repository.set(TENANT, CONVERSATION, AwaitingWalletPayload(receipt=receipt))
    clock.advance(minutes=10)
    flow_repository.set(TENANT, CONVERSATION, AwaitingWalletTypePayload(receipt=receipt))
    clock.advance(minutes=10)

    assert flow_repository.get(TENANT, CONVERSATION).step == FlowStep.AWAITING_WALLET_TYPE


def test_clear(flow_repository, receipt):
    flow_repository.set(TENANT, CONVERSATION, AwaitingWalletPayload(receipt=receipt))

    assert flow_repository.clear(TENANT, CONVERSATION) is True
    assert flow_repository.clear(TENANT, CONVERSATION) is False
    assert flow_repository.get(TENANT, CONVERSATION) is None


def test_unreadable_payload_is_discarded(flow_repository, receipt):
    flow_repository.set(TENANT, CONVERSATION, AwaitingWalletPayload(receipt=receipt))
    conn = flow_repository._get_connection()
    conn.execute(
        "UPDATE expense_flow_states SET payload_json = ? WHERE tenant_id = ?",
        ('{"step": "awaiting_items_confirmation", "receipt": {}}', TENANT),
    )
    conn.commit()

    assert flow_repository.get(TENANT, CONVERSATION) is None
    assert flow_repository.count() == 0


def test_delete_expired_only_touches_expired_rows(flow_repository, receipt, clock):
    flow_repository.set(TENANT, "old@s.whatsapp.net", AwaitingWalletPayload(receipt=receipt))
    clock.advance(minutes=10)
    flow_repository.set(TENANT, "new@s.whatsapp.net", AwaitingWalletPayload(receipt=receipt))
    clock.advance(minutes=6)

    assert flow_repository.delete_expired() == 1
    assert flow_repository.get(TENANT, "new@s.whatsapp.net") is not None


def test_file_database_persists_across_instances(tmp_path, receipt, clock):
    db_path = str(tmp_path / "flows.db")
    FlowStateRepository(db_path=db_path, clock=clock).set(
        TENANT, CONVERSATION, AwaitingWalletTypePayload(receipt=receipt, new_wallet_name="Cofrinho")
    )

    state = FlowStateRepository(db_path=db_path, clock=clock).get(TENANT, CONVERSATION)

    assert state.step == FlowStep.AWAITING_WALLET_TYPE
    assert state.payload.new_wallet_name == "Cofrinho"


def test_custom_ttl(receipt, clock):
    repo = FlowStateRepository(db_path=":memory:", ttl=timedelta(minutes=1), clock=clock)
    repo.set(TENANT, CONVERSATION, AwaitingWalletPayload(receipt=receipt))

    clock.advance(minutes=2)

    assert repo.get(TENANT, CONVERSATION) is None
