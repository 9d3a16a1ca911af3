# D:\3xDigital\settlement\services\payment\gateway_interface.py

"""
gateway_interface.py

Módulo que define a interface base para todos os gateways de pagamento.
Esta interface funciona como um contrato que todas as implementações
específicas de gateway devem seguir: cada gateway traduz o próprio formato
de webhook para um GatewayEvent neutro, que o núcleo de liquidação entende.

Classes:
    GatewayEvent: Evento de pagamento normalizado.
    PaymentGatewayInterface: Interface abstrata base para gateways de pagamento.
"""

import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Dict, Optional, Any, Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.models.finance_models import PaymentGatewayConfig
from settlement.services.errors import ConfigurationError, UnauthorizedError

EVENT_KINDS = (
    'payment_confirmed',
    'payment_failed',
    'payment_refunded',
    'payment_cancelled',
    'payment_expired',
    'subscription_activated',
    'ignored',
)


@dataclass
class GatewayEvent:
    """
    Evento de pagamento normalizado, independente do gateway.

    Attributes:
        kind (str): Tipo do evento (ver EVENT_KINDS).
        event_name (str): Nome original do evento no gateway.
        reference (str): Referência da cobrança no gateway.
        subscription_reference (str): Referência da assinatura, se houver.
        paid_at_date (date): Data do pagamento informada pelo gateway.
        amount_cents (int): Valor pago em centavos, se informado.
        gateway_status (str): Status bruto informado pelo gateway.
    """
    kind: str
    event_name: str
    reference: Optional[str] = None
    subscription_reference: Optional[str] = None
    paid_at_date: Optional[date] = None
    amount_cents: Optional[int] = None
    gateway_status: Optional[str] = None


class PaymentGatewayInterface(ABC):
    """
    Interface abstrata base para implementações de gateway de pagamento.

    Cada gateway de pagamento (Asaas, Iugu, etc.) deve implementar
    esta interface para garantir compatibilidade com o sistema.
    """

    name: str = ""
    token_header: str = ""

    @abstractmethod
    def parse_webhook(self, payload: Dict[str, Any]) -> GatewayEvent:
        """
        Traduz o corpo de um webhook para um GatewayEvent.

        Args:
            payload (Dict[str, Any]): Corpo do webhook já decodificado (JSON ou formulário).

        Returns:
            GatewayEvent: Evento normalizado.

        Raises:
            InvalidRequestError: Se faltarem campos obrigatórios.
        """
        pass

    def verify_webhook(self, headers: Mapping[str, str], config: Optional[PaymentGatewayConfig]) -> None:
        """
        Valida o token compartilhado enviado pelo gateway.

        Args:
            headers (Mapping[str, str]): Cabeçalhos da requisição.
            config (Optional[PaymentGatewayConfig]): Configuração do gateway.

        Raises:
            ConfigurationError: Se o segredo do webhook não estiver configurado.
            UnauthorizedError: Se o token estiver ausente ou não conferir.
        """
        secret = config.webhook_secret if config else None
        if not secret:
            raise ConfigurationError(f"Webhook secret is not configured for gateway '{self.name}'")

        token = headers.get(self.token_header)
        if not token or not hmac.compare_digest(token.encode(), secret.encode()):
            raise UnauthorizedError("Invalid webhook token")

    async def get_gateway_config(self, session: AsyncSession) -> Optional[PaymentGatewayConfig]:
        """
        Obtém as configurações do gateway armazenadas no banco de dados.

        Returns:
            Optional[PaymentGatewayConfig]: Configuração ou None se não cadastrada.
        """
        result = await session.execute(
            select(PaymentGatewayConfig).where(PaymentGatewayConfig.gateway_name == self.name)
        )
        return result.scalar_one_or_none()
