"""Exception hierarchy for the expense flow."""


class ExpenseFlowError(Exception):
    """Base class for failures inside the expense-capture workflow."""


class ExtractionFailure(ExpenseFlowError):
    """The receipt could not be turned into line items. No state is persisted."""

    user_message = "❌ Não consegui ler os itens da nota."


class NotAReceipt(ExtractionFailure):
    user_message = "❌ Esta imagem não parece ser um cupom fiscal."


class NoItemsExtracted(ExtractionFailure):
    user_message = "❌ Não encontrei itens na nota."


class ExtractionError(ExtractionFailure):
    """The extraction service failed or returned something unparseable."""

    user_message = "❌ Erro ao analisar a nota fiscal."

