# D:\3xDigital\settlement\services\payment\gateway_factory.py

"""
gateway_factory.py

Este módulo fornece uma factory para selecionar a implementação de gateway
de pagamento apropriada, com base no nome do gateway solicitado ou no
gateway ativo da plataforma.

Classes:
    PaymentGatewayFactory: Factory para criação de instâncias de gateway de pagamento.
"""

from typing import Dict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import ACTIVE_PAYMENT_GATEWAY
from settlement.models.finance_models import PaymentGatewayConfig
from settlement.services.errors import NotFoundError
from .gateway_interface import PaymentGatewayInterface
from .asaas_gateway import AsaasGateway
from .iugu_gateway import IuguGateway


class PaymentGatewayFactory:
    """
    Factory para criar instâncias de gateways de pagamento.

    Esta classe facilita a obtenção de implementações específicas de gateway
    com base no nome do gateway solicitado, sem que o código cliente precise
    conhecer os detalhes de implementação de cada gateway.
    """

    # Registra os gateways suportados
    _GATEWAYS = {
        "asaas": AsaasGateway,
        "iugu": IuguGateway
    }

    @classmethod
    def get_gateway(cls, gateway_name: str) -> PaymentGatewayInterface:
        """
        Retorna uma instância de gateway de pagamento com base no nome.

        Args:
            gateway_name (str): Nome do gateway ('asaas', 'iugu', etc.)

        Returns:
            PaymentGatewayInterface: Instância do gateway.

        Raises:
            NotFoundError: Se o gateway solicitado não for suportado.
        """
        gateway_class = cls._GATEWAYS.get((gateway_name or "").lower())

        if not gateway_class:
            raise NotFoundError(f"Unsupported payment gateway: {gateway_name}")

        return gateway_class()

    @classmethod
    async def get_active_gateway(cls, session: AsyncSession) -> PaymentGatewayInterface:
        """
        Retorna o gateway marcado como ativo no banco; sem registro ativo,
        usa ACTIVE_PAYMENT_GATEWAY do ambiente.
        """
        result = await session.execute(
            select(PaymentGatewayConfig.gateway_name)
            .where(PaymentGatewayConfig.is_active.is_(True))
            .order_by(PaymentGatewayConfig.id)
            .limit(1)
        )
        gateway_name = result.scalar_one_or_none() or ACTIVE_PAYMENT_GATEWAY
        return cls.get_gateway(gateway_name)

    @classmethod
    def register_gateway(cls, gateway_name: str, gateway_class: type) -> None:
        """
        Registra um novo tipo de gateway na factory.

        Args:
            gateway_name (str): Nome do gateway a ser registrado.
            gateway_class (type): Classe que implementa PaymentGatewayInterface.

        Raises:
            TypeError: Se a classe fornecida não implementar PaymentGatewayInterface.
        """
        if not issubclass(gateway_class, PaymentGatewayInterface):
            raise TypeError(
                f"A classe {gateway_class.__name__} deve implementar PaymentGatewayInterface"
            )

        cls._GATEWAYS[gateway_name.lower()] = gateway_class

    @classmethod
    def get_supported_gateways(cls) -> Dict[str, type]:
        """
        Retorna um dicionário com todos os gateways suportados.
        """
        return dict(cls._GATEWAYS)
