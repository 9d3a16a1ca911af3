# D:\3xDigital\settlement\services\fee_calculator.py
"""
fee_calculator.py

Funções puras de cálculo de taxas, reserva de segurança e data de liberação.
Nenhuma função deste módulo acessa o banco de dados.

Regras de Negócio:
    - Pix e boleto usam percentual fixo; cartão usa a tabela por parcelas,
      caindo para a taxa de 1x quando a parcela não está configurada
    - taxa = arredondamento(bruto * percentual / 100) + taxa fixa
    - Arredondamento para o inteiro mais próximo, metade para cima
    - A data de liberação é a data do pagamento (sem hora) somada aos dias
      configurados para o método. A granularidade de dia é política declarada,
      não precisão inferida
"""

from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from settlement.models.finance_models import PAYMENT_METHODS
from settlement.services.errors import InvalidRequestError
from settlement.services.fee_settings_service import FeeSettings


def round_half_up(value: Union[Decimal, int, float, str]) -> int:
    """
    Arredonda para o inteiro mais próximo, com empates para cima.

    Args:
        value: Valor a arredondar. Floats são convertidos via str para evitar
            ruído de representação binária.

    Returns:
        int: Valor arredondado.
    """
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _validate_method(method: str, installments: int = 1) -> None:
    if method not in PAYMENT_METHODS:
        raise InvalidRequestError(f"Unsupported payment method: {method}")
    if installments < 1:
        raise InvalidRequestError("Installments must be at least 1")


def compute_platform_fee(method: str, installments: int, gross_cents: int, settings: FeeSettings) -> int:
    """
    Calcula a taxa da plataforma para uma venda.

    Args:
        method (str): 'card', 'pix' ou 'bank_slip'.
        installments (int): Número de parcelas (ignorado fora do cartão).
        gross_cents (int): Valor bruto em centavos.
        settings (FeeSettings): Configurações já resolvidas para o produtor.

    Returns:
        int: Taxa em centavos (nunca negativa).

    Exemplo:
        Bruto 10000, cartão 1x a 5% com taxa fixa 100 -> 600.
    """
    _validate_method(method, installments)
    percent = settings.fee_percent_for(method, installments)
    percentage_fee = round_half_up(Decimal(gross_cents) * percent / Decimal(100))
    return max(percentage_fee + settings.fixed_fee_cents, 0)


def compute_security_reserve(gross_cents: int, settings: FeeSettings) -> int:
    """
    Calcula a reserva de segurança sobre o valor bruto.
    """
    return round_half_up(Decimal(gross_cents) * settings.security_reserve_percent / Decimal(100))


def compute_release_date(method: str, paid_at: Union[date, datetime], settings: FeeSettings) -> date:
    """
    Calcula a data em que a parte do produtor passa a ser sacável.

    Args:
        method (str): Método de pagamento.
        paid_at (date | datetime): Data do pagamento; a hora é descartada.
        settings (FeeSettings): Configurações resolvidas.

    Returns:
        date: Data de liberação.
    """
    _validate_method(method)
    paid_date = paid_at.date() if isinstance(paid_at, datetime) else paid_at
    return paid_date + timedelta(days=settings.release_days_for(method))
