"""
errors.py

Taxonomia de erros do núcleo de liquidação. Os serviços levantam estas exceções e
as views as convertem em respostas JSON com o status HTTP correspondente.

Classes:
    SettlementError: Base de todos os erros do núcleo.
    ConfigurationError: Configuração de taxas ou credenciais ausentes/inválidas.
    NotFoundError: Venda, saque ou configuração inexistente.
    InvalidRequestError: Dados de entrada inválidos.
    UnauthorizedError: Token de webhook ausente ou inválido.
    InsufficientFundsError: Saldo disponível insuficiente para o saque.
    ConflictError: Operação sobre registro já processado ou em estado incompatível.
    LedgerReconciliationError: Venda marcada como paga sem o crédito correspondente no saldo.
"""

from typing import Dict, Optional


class SettlementError(Exception):
    """
    Erro base do núcleo financeiro.

    Attributes:
        message (str): Mensagem segura para exibição ao cliente.
        status (int): Status HTTP equivalente.
    """

    status = 500
    code = "settlement_error"

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict:
        payload = {"error": self.message, "code": self.code}
        if self.details:
            payload.update(self.details)
        return payload


class ConfigurationError(SettlementError):
    status = 500
    code = "configuration_error"


class NotFoundError(SettlementError):
    status = 404
    code = "not_found"


class InvalidRequestError(SettlementError):
    status = 400
    code = "invalid_request"


class UnauthorizedError(SettlementError):
    status = 401
    code = "unauthorized"


class ConflictError(SettlementError):
    status = 409
    code = "conflict"


class LedgerReconciliationError(SettlementError):
    status = 500
    code = "ledger_reconciliation_required"


class InsufficientFundsError(SettlementError):
    """
    Saldo disponível insuficiente. Carrega os valores calculados para que o
    produtor consiga corrigir a solicitação.
    """

    status = 400
    code = "insufficient_funds"

    def __init__(self, available_cents: int, amount_cents: int, fee_cents: int = 0):
        self.available_cents = available_cents
        self.amount_cents = amount_cents
        self.fee_cents = fee_cents
        self.required_cents = amount_cents + fee_cents
        self.shortfall_cents = max(self.required_cents - available_cents, 0)
        super().__init__(
            "Insufficient balance",
            {
                "available_balance_cents": available_cents,
                "requested_amount_cents": amount_cents,
                "fee_cents": fee_cents,
                "total_required_cents": self.required_cents,
                "shortfall_cents": self.shortfall_cents,
            }
        )
