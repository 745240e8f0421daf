"""Pytest configuration and shared fixtures for the expense flow tests.

- In-memory flow state store driven by a controllable clock
- Fake ledger / extractor / media collaborators (no network)
- FastAPI TestClient with the service dependency overridden
- Flow event log redirected to a temporary directory
"""

import copy
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.integrations.evolution_api import MediaPayload
from app.models.ledger import TransactionResult, Wallet, WalletCreationResult
from app.repositories.flow_state_repository import FlowStateRepository
from app.services.expense_flow_service import ExpenseFlowService
from app.services.receipt_extraction import ReceiptExtractionService
from app.utils import logging_utils

TENANT = "tenant-1"
CONVERSATION = "5511999990000@s.whatsapp.net"


class FakeClock:
    """Callable clock whose time only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeLedgerClient:
    """Records every call; items listed in ``fail_items`` fail to commit."""

    def __init__(self, wallets: Optional[List[Wallet]] = None, connected: bool = True):
        self.wallets = list(wallets or [])
        self.connected = connected
        self.fail_items = set()
        self.wallet_creation_result: Optional[WalletCreationResult] = None
        self.created_wallets: List[tuple] = []
        self.transactions: List[Any] = []

    def is_connected(self, tenant_id: str) -> bool:
        return self.connected

    def connect(self, tenant_id: str, email: str, password: str) -> Dict[str, Any]:
        if password != "secret":
            return {"success": False, "message": "Email ou senha incorretos"}
        self.connected = True
        return {"success": True, "message": "Conta conectada com sucesso!"}

    def disconnect(self, tenant_id: str) -> bool:
        was_connected = self.connected
        self.connected = False
        return was_connected

    def list_wallets(self, tenant_id: str) -> List[Wallet]:
        return list(self.wallets)

    def create_wallet(self, tenant_id: str, name: str, wallet_type: str, icon: Optional[str] = None):
        self.created_wallets.append((name, wallet_type, icon))
        if self.wallet_creation_result is not None:
            return self.wallet_creation_result
        wallet = Wallet(id=f"w-new-{len(self.created_wallets)}", name=name, type=wallet_type, icon=icon)
        self.wallets.append(wallet)
        return WalletCreationResult(success=True, message=f'✅ Carteira "{name}" criada com sucesso!', wallet=wallet)

    def create_transaction(self, tenant_id: str, request) -> TransactionResult:
        self.transactions.append(request)
        if request.item in self.fail_items:
            return TransactionResult(success=False, message="Erro ao registrar transação")
        return TransactionResult(success=True, message=f"✅ Gasto de R${request.amount:.2f} registrado!")


class FakeExtractor:
    """Returns a canned extractor answer (deep-copied) or raises ``error``."""

    def __init__(self, result: Optional[Dict[str, Any]] = None, error: Optional[Exception] = None):
        self.result = result
        self.error = error
        self.calls: List[tuple] = []

    def extract(self, image_base64: str, mime_type: str, caption: str = "") -> Dict[str, Any]:
        self.calls.append((image_base64, mime_type, caption))
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.result)


class FakeMediaClient:
    def __init__(self, payload: Optional[MediaPayload] = None):
        self.payload = payload
        self.calls: List[tuple] = []

    def download(self, instance_key: str, media_ref: Dict[str, Any]) -> Optional[MediaPayload]:
        self.calls.append((instance_key, media_ref))
        return self.payload


@pytest.fixture(autouse=True)
def isolated_flow_log(tmp_path, monkeypatch) -> Path:
    """Keep structured flow events out of the project's artifacts folder."""
    log_dir = tmp_path / "logs"
    monkeypatch.setattr(logging_utils, "LOG_DIR", log_dir)
    monkeypatch.setattr(logging_utils, "LOG_FILE", log_dir / "expense_flow.log")
    return log_dir / "expense_flow.log"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 27, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def flow_repository(clock: FakeClock) -> FlowStateRepository:
    return FlowStateRepository(db_path=":memory:", clock=clock)


@pytest.fixture
def receipt_answer() -> Dict[str, Any]:
    """Extractor answer whose items already add up to the reported total."""
    return {
        "isReceipt": True,
        "establishment": "Mercado Central",
        "date": "2026-01-27",
        "suggestedCategory": "Mercado",
        "items": [
            {"name": "Arroz", "quantity": 1, "unitPrice": 20.00, "totalPrice": 20.00},
            {"name": "Feijão", "quantity": 2, "unitPrice": 7.50, "totalPrice": 15.00},
            {"name": "Café", "quantity": 1, "unitPrice": 10.00, "totalPrice": 10.00},
        ],
        "totalAmount": 45.00,
    }


@pytest.fixture
def wallets() -> List[Wallet]:
    return [
        Wallet(id="w1", name="Nubank", type="credit"),
        Wallet(id="w2", name="Itaú", type="checking", icon="🏦"),
    ]


@pytest.fixture
def ledger(wallets: List[Wallet]) -> FakeLedgerClient:
    return FakeLedgerClient(wallets=wallets)


@pytest.fixture
def extractor(receipt_answer: Dict[str, Any]) -> FakeExtractor:
    return FakeExtractor(result=receipt_answer)


@pytest.fixture
def media_client() -> FakeMediaClient:
    return FakeMediaClient(payload=MediaPayload(base64="aW1hZ2U=", mime_type="image/png"))


@pytest.fixture
def expense_flow_service(
    flow_repository: FlowStateRepository,
    extractor: FakeExtractor,
    ledger: FakeLedgerClient,
    media_client: FakeMediaClient,
) -> ExpenseFlowService:
    return ExpenseFlowService(
        repository=flow_repository,
        extraction_service=ReceiptExtractionService(extractor),
        ledger_client=ledger,
        media_client=media_client,
    )


@pytest.fixture
def started_flow(expense_flow_service: ExpenseFlowService) -> ExpenseFlowService:
    """Service with a flow waiting for the wallet answer."""
    result = expense_flow_service.start_from_image(TENANT, CONVERSATION, "aW1hZ2U=", "image/jpeg", "mercado")
    assert result.success
    return expense_flow_service


@pytest.fixture
def api_client(expense_flow_service: ExpenseFlowService):
    """TestClient whose routes use the fixture service instead of the default wiring."""
    from app.api.expense_flow import get_expense_flow_service
    from app.main import create_app

    app = create_app()
    app.dependency_overrides[get_expense_flow_service] = lambda: expense_flow_service
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
