"""
Ledger Service Integration Module

REST client for the external ledger (wallets, transactions). Tokens are kept
per tenant in LedgerCredentialsRepository and refreshed shortly before expiry.

Expected upstream failures (4xx/5xx, network errors) are returned as result
objects with a user-presentable message instead of being raised, so a single
failed transaction never aborts the rest of a multi-item commit.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
import logging

import requests
from pydantic import ValidationError

from app.models.ledger import (
    TransactionRequest,
    TransactionResult,
    Wallet,
    WalletCreationResult,
)
from app.repositories.ledger_credentials_repository import (
    LedgerCredentials,
    LedgerCredentialsRepository,
)

logger = logging.getLogger(__name__)

# Refresh tokens that expire within this window
TOKEN_REFRESH_MARGIN = timedelta(seconds=60)
DEFAULT_TOKEN_LIFETIME_SECONDS = 900


def _error_message(response: requests.Response, fallback: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return fallback


class LedgerAPIClient:
    """
    Client for the ledger REST API.

    Usage:
        client = LedgerAPIClient(base_url, LedgerCredentialsRepository(db_path))
        client.connect("tenant-1", "owner@example.com", "secret")
        wallets = client.list_wallets("tenant-1")
    """

    def __init__(
        self,
        base_url: str,
        credentials: LedgerCredentialsRepository,
        timeout: int = 15,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.timeout = timeout
        self.clock = clock

    # ========================================
    # Connection
    # ========================================

    def connect(self, tenant_id: str, email: str, password: str) -> Dict[str, Any]:
        """Log in to the ledger and store the tenant's tokens."""
        try:
            response = requests.post(
                f"{self.base_url}/login",
                json={"email": email, "password": password},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Ledger login failed for tenant {tenant_id}: {e}")
            return {"success": False, "message": "Erro de conexão com o serviço financeiro"}

        if not response.ok:
            if response.status_code == 401:
                return {"success": False, "message": "Email ou senha incorretos"}
            if response.status_code == 403:
                return {"success": False, "message": "Conta sem plano ativo"}
            return {"success": False, "message": _error_message(response, "Erro ao conectar")}

        try:
            data = response.json()
            tokens = data.get("tokens") or data
            access_token = tokens.get("accessToken")
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"Unexpected login payload for tenant {tenant_id}: {e}")
            return {"success": False, "message": "Resposta inválida do serviço financeiro"}
        if not access_token:
            logger.error(f"Ledger login for tenant {tenant_id} returned no access token")
            return {"success": False, "message": "Servidor não retornou token de acesso"}

        self._store_tokens(
            tenant_id,
            access_token,
            tokens.get("refreshToken"),
            tokens.get("expiresIn") or DEFAULT_TOKEN_LIFETIME_SECONDS,
        )
        logger.info(f"Connected ledger for tenant {tenant_id}")
        return {"success": True, "message": "Conta conectada com sucesso!"}

    def disconnect(self, tenant_id: str) -> bool:
        return self.credentials.delete(tenant_id)

    def is_connected(self, tenant_id: str) -> bool:
        stored = self.credentials.get(tenant_id)
        return stored is not None and stored.is_active

    # ========================================
    # Wallets
    # ========================================

    def list_wallets(self, tenant_id: str) -> List[Wallet]:
        """Return the tenant's wallets; any failure yields an empty list."""
        token = self._get_valid_token(tenant_id)
        if not token:
            logger.warning(f"No valid ledger token for tenant {tenant_id}")
            return []

        try:
            response = requests.get(
                f"{self.base_url}/wallets",
                headers=self._auth_headers(token),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Error getting wallets for tenant {tenant_id}: {e}")
            return []

        if not response.ok:
            logger.error(f"Wallets error response {response.status_code}: {response.text}")
            return []

        try:
            body = response.json()
            entries = body.get("wallets", []) if isinstance(body, dict) else body
            wallets = [Wallet.model_validate(entry) for entry in entries]
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"Unexpected wallets payload for tenant {tenant_id}: {e}")
            return []

        logger.info(f"Got {len(wallets)} wallets for tenant {tenant_id}")
        return wallets

    def create_wallet(self, tenant_id: str, name: str, wallet_type: str, icon: Optional[str] = None) -> WalletCreationResult:
        token = self._get_valid_token(tenant_id)
        if not token:
            return WalletCreationResult(success=False, message="Conta do serviço financeiro não conectada")

        try:
            response = requests.post(
                f"{self.base_url}/wallets",
                headers=self._auth_headers(token),
                json={"name": name, "type": wallet_type, "balance": 0, "icon": icon},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Error creating wallet for tenant {tenant_id}: {e}")
            return WalletCreationResult(success=False, message="Erro ao conectar com o serviço financeiro")

        if not response.ok:
            return WalletCreationResult(
                success=False,
                message=_error_message(response, "Erro ao criar carteira"),
            )

        try:
            wallet = Wallet.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.error(f"Unexpected wallet payload for tenant {tenant_id}: {e}")
            return WalletCreationResult(success=False, message="Erro ao criar carteira")

        return WalletCreationResult(
            success=True,
            message=f'✅ Carteira "{name}" criada com sucesso!',
            wallet=wallet,
        )

    # ========================================
    # Transactions
    # ========================================

    def create_transaction(self, tenant_id: str, request: TransactionRequest) -> TransactionResult:
        token = self._get_valid_token(tenant_id)
        if not token:
            return TransactionResult(success=False, message="Conta do serviço financeiro não conectada")

        body = {
            "amount": request.amount,
            "walletId": request.wallet_id,
            "type": request.type,
            "category": request.category,
            "item": request.item,
            "date": request.date or date.today().isoformat(),
            "establishment": request.establishment,
        }

        try:
            response = requests.post(
                f"{self.base_url}/transactions",
                headers=self._auth_headers(token),
                json=body,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Error creating transaction for tenant {tenant_id}: {e}")
            return TransactionResult(success=False, message="Erro ao conectar com o serviço financeiro")

        if not response.ok:
            return TransactionResult(
                success=False,
                message=_error_message(response, "Erro ao registrar transação"),
            )

        return TransactionResult(success=True, message=f"✅ Gasto de R${request.amount:.2f} registrado!")

    # ========================================
    # Tokens
    # ========================================

    def _get_valid_token(self, tenant_id: str) -> Optional[str]:
        stored = self.credentials.get(tenant_id)
        if stored is None or not stored.is_active:
            return None

        if stored.expires_at - self.clock() > TOKEN_REFRESH_MARGIN:
            return stored.access_token

        if stored.refresh_token:
            return self._refresh(stored)
        return None

    def _refresh(self, stored: LedgerCredentials) -> Optional[str]:
        try:
            response = requests.post(
                f"{self.base_url}/refresh",
                headers=self._auth_headers(stored.refresh_token),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Error refreshing ledger token for tenant {stored.tenant_id}: {e}")
            return None

        if not response.ok:
            logger.warning(f"Ledger token refresh rejected for tenant {stored.tenant_id}: {response.status_code}")
            return None

        try:
            data = response.json()
            access_token = data.get("accessToken")
        except (ValueError, AttributeError) as e:
            logger.error(f"Unexpected refresh payload for tenant {stored.tenant_id}: {e}")
            return None
        if not access_token:
            return None

        self._store_tokens(
            stored.tenant_id,
            access_token,
            data.get("refreshToken") or stored.refresh_token,
            data.get("expiresIn") or DEFAULT_TOKEN_LIFETIME_SECONDS,
        )
        return access_token

    def _store_tokens(self, tenant_id: str, access_token: str, refresh_token: Optional[str], expires_in: int) -> None:
        self.credentials.save(LedgerCredentials(
            tenant_id=tenant_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=self.clock() + timedelta(seconds=int(expires_in)),
        ))

    @staticmethod
    def _auth_headers(token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
