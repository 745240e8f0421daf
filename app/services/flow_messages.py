"""WhatsApp reply templates for the expense flow (pt-BR, WhatsApp markdown)."""

from __future__ import annotations

from typing import List, Sequence

from app.models.flow import CommitSummary, ExtractedItem, ReceiptContext
from app.models.ledger import WALLET_TYPES, Wallet
from app.services.item_editor import items_total

CANCELLED = "❌ Operação cancelada."
ENTRY_CANCELLED = "❌ Lançamento cancelado."
ALL_ITEMS_REMOVED = "❌ Todos os itens foram removidos. Lançamento cancelado."
NO_ACTIVE_FLOW = "Nenhum fluxo ativo."
GENERIC_ERROR = "❌ Erro ao processar sua mensagem. Tente novamente."
RECEIPT_ERROR = "❌ Erro ao processar nota fiscal. Tente novamente."
MEDIA_DOWNLOAD_FAILED = "❌ Não consegui baixar a imagem. Tente enviar novamente."
LEDGER_NOT_CONNECTED = (
    "❌ Serviço financeiro não está conectado. "
    "Acesse Integrações no painel para conectar sua conta."
)

ITEMS_HELP = """❓ Não entendi. Opções:
• *SIM* - confirmar itens
• *NÃO* - cancelar
• *remover 2* - remove item 2
• *editar 1 para 10.00* - altera valor"""

FINAL_HELP = "❓ Responda *SIM* para confirmar ou *NÃO* para cancelar."


def money(value: float) -> str:
    return f"R$ {value:.2f}"


def numbered_items(items: Sequence[ExtractedItem]) -> str:
    return "\n".join(
        f"{i}. {item.name} ({item.quantity}x) - {money(item.total_price)}"
        for i, item in enumerate(items, start=1)
    )


def bullet_items(items: Sequence[ExtractedItem]) -> str:
    return "\n".join(f"• {item.name}: {money(item.total_price)}" for item in items)


def wallet_types_list() -> str:
    return "\n".join(f"{i}. {t.icon} {t.name}" for i, t in enumerate(WALLET_TYPES, start=1))


def receipt_identified(receipt: ReceiptContext, wallets: List[Wallet]) -> str:
    if wallets:
        wallet_list = "\n".join(f"{i}. {w.icon or '💳'} {w.name}" for i, w in enumerate(wallets, start=1))
        wallet_options = f"\n📋 *Carteiras disponíveis:*\n{wallet_list}\n\n0️⃣ *Criar nova carteira*"
    else:
        wallet_options = (
            "\n📋 Você não tem carteiras cadastradas.\n"
            "Digite o nome da nova carteira (ex: Nubank) ou \"0\" para criar:"
        )

    return f"""🧾 *Nota Fiscal Identificada!*

📍 *Local:* {receipt.establishment or 'Não identificado'}
📅 *Data:* {receipt.date or 'Hoje'}

📦 *Itens encontrados:*
{numbered_items(receipt.items)}

💰 *Total:* {money(receipt.total_amount)}
{wallet_options}

_Responda com o número da carteira ou "0" para criar nova._
_Digite "cancelar" para abortar._"""


def wallet_unrecognized(wallets: List[Wallet]) -> str:
    wallet_list = "\n".join(f"{i}. {w.icon or '💳'} {w.name}" for i, w in enumerate(wallets, start=1))
    lines = ["❓ Não entendi. Responda com o número da carteira, o nome dela, ou \"0\" para criar nova."]
    if wallet_list:
        lines.append(wallet_list)
    return "\n".join(lines)


def new_wallet_name_prompt() -> str:
    return f"""🆕 *Criar Nova Carteira*

Digite o nome da carteira (ex: Nubank, Itaú, Cartão Santander):

_Depois você escolhe o tipo:_
{wallet_types_list()}"""


def wallet_type_prompt(wallet_name: str) -> str:
    return f"""📝 Nova carteira: *{wallet_name}*

Qual o tipo dessa carteira?
{wallet_types_list()}

_Responda com o número do tipo._"""


def wallet_type_unrecognized() -> str:
    return f"""❓ Tipo não reconhecido. Escolha um número:
{wallet_types_list()}"""


def wallet_creation_failed(message: str) -> str:
    return f"❌ Erro ao criar carteira: {message or 'erro desconhecido'}"


def items_confirmation(wallet_name: str, receipt: ReceiptContext, items: Sequence[ExtractedItem]) -> str:
    return f"""✅ *Carteira selecionada:* {wallet_name}

📦 *Itens a serem lançados:*
{numbered_items(items)}

💰 *Total:* {money(items_total(items))}
📍 *Local:* {receipt.establishment or 'Não informado'}

*Confirma o lançamento destes itens?*
Responda: *SIM* para confirmar ou *NÃO* para cancelar.

💡 _Você também pode editar:_
• "remover 2" - remove o item 2
• "editar 1 para 10.00" - altera valor do item 1"""


def item_removed(removed: ExtractedItem, items: Sequence[ExtractedItem]) -> str:
    return f"""✅ Item "{removed.name}" removido!

📦 *Itens restantes:*
{numbered_items(items)}

💰 *Novo Total:* {money(items_total(items))}

Responda *SIM* para confirmar ou continue editando."""


def item_edited(items: Sequence[ExtractedItem]) -> str:
    return f"""✅ Valor atualizado!

📦 *Itens:*
{numbered_items(items)}

💰 *Novo Total:* {money(items_total(items))}

Responda *SIM* para confirmar ou continue editando."""


def final_summary(wallet_name: str, receipt: ReceiptContext, items: Sequence[ExtractedItem]) -> str:
    return f"""🔍 *RESUMO FINAL*

📋 *Carteira:* {wallet_name}
📍 *Local:* {receipt.establishment or 'Não informado'}

{bullet_items(items)}

💰 *TOTAL:* {money(items_total(items))}

*Confirma o lançamento final?*
Responda *SIM* para salvar ou *NÃO* para cancelar."""


def _result_lines(summary: CommitSummary) -> str:
    return "\n".join(
        f"✅ {r.name}: {money(r.total_price)}" if r.succeeded else f"❌ {r.name}: Erro"
        for r in summary.results
    )


def commit_complete(wallet_name: str, receipt: ReceiptContext, summary: CommitSummary) -> str:
    return f"""🎉 *Lançamento Completo!*

📋 *Carteira:* {wallet_name}
📍 *Local:* {receipt.establishment or '-'}

{_result_lines(summary)}

💰 *Total:* {money(summary.total)}
📊 *Itens:* {summary.succeeded_count} lançados"""


def commit_partial(summary: CommitSummary) -> str:
    return f"""⚠️ *Lançamento Parcial*

{_result_lines(summary)}

✅ {summary.succeeded_count} sucesso | ❌ {summary.failed_count} falhas"""
