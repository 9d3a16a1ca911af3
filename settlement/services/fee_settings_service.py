# D:\3xDigital\settlement\services\fee_settings_service.py
"""
fee_settings_service.py

Módulo responsável pelas configurações de taxas: a linha única da plataforma, as
sobrescritas por produtor e a resolução das duas em um objeto de valor tipado.

Funcionalidades principais:
    - Resolução de configurações (sobrescrita do produtor ou padrão da plataforma)
    - Validação das configurações antes de qualquer cálculo
    - Criação da linha padrão da plataforma na inicialização
    - Consulta e atualização das configurações da plataforma e dos produtores

Regras de Negócio:
    - Uma sobrescrita não nula do produtor sempre vence o padrão da plataforma
    - A tabela de taxas por parcela do produtor substitui a da plataforma por inteiro
    - Percentuais devem estar entre 0 e 100; centavos e dias não podem ser negativos
    - Configuração ausente ou inválida interrompe a operação antes de qualquer escrita

Dependências:
    - SQLAlchemy para persistência
    - settlement.models.finance_models para PlatformSettings e ProducerSettings
"""

from dataclasses import dataclass, field, asdict
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional, Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.config.settings import DEFAULT_FEE_SETTINGS
from settlement.models.database import User
from settlement.models.finance_models import PlatformSettings, ProducerSettings
from settlement.services.errors import ConfigurationError, InvalidRequestError, NotFoundError

PERCENT_FIELDS = (
    'pix_fee_percent', 'bank_slip_fee_percent', 'card_fee_percent', 'security_reserve_percent'
)
INTEGER_FIELDS = (
    'fixed_fee_cents', 'pix_release_days', 'bank_slip_release_days', 'card_release_days',
    'security_reserve_days', 'withdrawal_fee_cents'
)
TABLE_FIELD = 'card_installment_fee_percents'
SETTINGS_FIELDS = PERCENT_FIELDS + INTEGER_FIELDS + (TABLE_FIELD,)


@dataclass(frozen=True)
class FeeSettings:
    """
    Configurações de taxas já resolvidas para um produtor.

    Attributes:
        pix_fee_percent (Decimal): Taxa percentual do Pix.
        bank_slip_fee_percent (Decimal): Taxa percentual do boleto.
        card_fee_percent (Decimal): Taxa de cartão usada quando não há tabela por parcela.
        fixed_fee_cents (int): Taxa fixa por transação.
        pix_release_days (int): Dias para liberar vendas via Pix.
        bank_slip_release_days (int): Dias para liberar vendas via boleto.
        card_release_days (int): Dias para liberar vendas via cartão.
        security_reserve_percent (Decimal): Percentual da reserva de segurança.
        security_reserve_days (int): Dias de retenção da reserva.
        withdrawal_fee_cents (int): Taxa de saque.
        card_installment_fee_percents (Dict[int, Decimal]): Taxa por número de parcelas.
    """
    pix_fee_percent: Decimal
    bank_slip_fee_percent: Decimal
    card_fee_percent: Decimal
    fixed_fee_cents: int
    pix_release_days: int
    bank_slip_release_days: int
    card_release_days: int
    security_reserve_percent: Decimal
    security_reserve_days: int
    withdrawal_fee_cents: int
    card_installment_fee_percents: Dict[int, Decimal] = field(default_factory=dict)

    def fee_percent_for(self, method: str, installments: int = 1) -> Decimal:
        """
        Seleciona o percentual de taxa para o método e parcelamento.
        """
        if method == 'pix':
            return self.pix_fee_percent
        if method == 'bank_slip':
            return self.bank_slip_fee_percent
        table = self.card_installment_fee_percents
        if installments in table:
            return table[installments]
        if 1 in table:
            return table[1]
        return self.card_fee_percent

    def release_days_for(self, method: str) -> int:
        if method == 'pix':
            return self.pix_release_days
        if method == 'bank_slip':
            return self.bank_slip_release_days
        return self.card_release_days

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for name in PERCENT_FIELDS:
            data[name] = float(data[name])
        data[TABLE_FIELD] = {str(k): float(v) for k, v in self.card_installment_fee_percents.items()}
        return data


def _to_percent(value: Any) -> Decimal:
    percent = Decimal(str(value))
    if not percent.is_finite():
        raise InvalidOperation(value)
    return percent


def _to_table(value: Any) -> Dict[int, Decimal]:
    if not isinstance(value, dict):
        raise ValueError("installment table must be an object")
    return {int(k): _to_percent(v) for k, v in value.items()}


def _parse_values(values: Dict[str, Any], error_cls=InvalidRequestError) -> Dict[str, Any]:
    """
    Converte e valida valores de configuração.

    Args:
        values (Dict[str, Any]): Campos a validar; None é mantido (ausência de sobrescrita).
        error_cls: Exceção levantada em caso de valor inválido.

    Returns:
        Dict[str, Any]: Valores convertidos (Decimal para percentuais, int para o resto).
    """
    parsed = {}
    for name, value in values.items():
        if name not in SETTINGS_FIELDS:
            raise error_cls(f"Unknown settings field: {name}")
        if value is None:
            parsed[name] = None
            continue
        try:
            if name in PERCENT_FIELDS:
                parsed[name] = _to_percent(value)
            elif name == TABLE_FIELD:
                parsed[name] = _to_table(value)
            else:
                if isinstance(value, bool) or int(value) != Decimal(str(value)):
                    raise ValueError(value)
                parsed[name] = int(value)
        except (ValueError, TypeError, InvalidOperation):
            raise error_cls(f"Invalid value for {name}")

        if name in PERCENT_FIELDS and not (0 <= parsed[name] <= 100):
            raise error_cls(f"{name} must be between 0 and 100")
        if name in INTEGER_FIELDS and parsed[name] < 0:
            raise error_cls(f"{name} must not be negative")
        if name == TABLE_FIELD:
            for installments, percent in parsed[name].items():
                if installments < 1 or not (0 <= percent <= 100):
                    raise error_cls(f"Invalid installment fee entry: {installments}")
    return parsed


def _row_values(row) -> Dict[str, Any]:
    return {name: getattr(row, name) for name in SETTINGS_FIELDS}


async def ensure_platform_settings(session: AsyncSession) -> PlatformSettings:
    """
    Cria a linha única de configurações da plataforma com os padrões do ambiente,
    caso ainda não exista.

    Args:
        session (AsyncSession): Sessão do banco de dados

    Returns:
        PlatformSettings: Configuração existente ou recém-criada
    """
    result = await session.execute(select(PlatformSettings).order_by(PlatformSettings.id).limit(1))
    platform = result.scalar_one_or_none()
    if platform:
        return platform

    values = _parse_values(DEFAULT_FEE_SETTINGS, ConfigurationError)
    platform = PlatformSettings(**values)
    session.add(platform)
    await session.commit()
    await session.refresh(platform)
    return platform


async def get_platform_settings(session: AsyncSession) -> PlatformSettings:
    """
    Obtém a linha de configurações da plataforma.

    Raises:
        ConfigurationError: Se a plataforma ainda não foi configurada.
    """
    result = await session.execute(select(PlatformSettings).order_by(PlatformSettings.id).limit(1))
    platform = result.scalar_one_or_none()
    if not platform:
        raise ConfigurationError("Platform fee settings are not configured")
    return platform


async def get_producer_settings(session: AsyncSession, producer_id: int) -> Optional[ProducerSettings]:
    result = await session.execute(
        select(ProducerSettings).where(ProducerSettings.producer_id == producer_id)
    )
    return result.scalar_one_or_none()


async def resolve_fee_settings(session: AsyncSession, producer_id: int) -> FeeSettings:
    """
    Resolve as configurações efetivas de um produtor: cada campo não nulo da
    sobrescrita vence o padrão da plataforma.

    Args:
        session (AsyncSession): Sessão do banco de dados
        producer_id (int): ID do produtor

    Returns:
        FeeSettings: Configurações tipadas e validadas

    Raises:
        ConfigurationError: Se faltar a configuração da plataforma ou algum valor for inválido
    """
    platform = await get_platform_settings(session)
    producer = await get_producer_settings(session, producer_id)

    platform_values = _row_values(platform)
    producer_values = _row_values(producer) if producer else {}

    resolved = {}
    for name in SETTINGS_FIELDS:
        override = producer_values.get(name)
        resolved[name] = override if override is not None else platform_values[name]

    missing = [name for name in SETTINGS_FIELDS if name != TABLE_FIELD and resolved[name] is None]
    if missing:
        raise ConfigurationError(f"Missing fee settings: {', '.join(missing)}")

    parsed = _parse_values(resolved, ConfigurationError)
    parsed[TABLE_FIELD] = parsed[TABLE_FIELD] or {}
    return FeeSettings(**parsed)


async def update_platform_settings(session: AsyncSession, values: Dict[str, Any]) -> PlatformSettings:
    """
    Atualiza os padrões da plataforma. Campos obrigatórios não aceitam nulo,
    exceto a tabela de parcelas.

    Raises:
        InvalidRequestError: Se algum valor for inválido
        ConfigurationError: Se a plataforma ainda não foi configurada
    """
    parsed = _parse_values(values)
    for name, value in parsed.items():
        if value is None and name != TABLE_FIELD:
            raise InvalidRequestError(f"{name} cannot be null for platform settings")

    platform = await get_platform_settings(session)
    for name, value in parsed.items():
        setattr(platform, name, value)
    await session.commit()
    await session.refresh(platform)
    return platform


async def update_producer_settings(
    session: AsyncSession,
    producer_id: int,
    values: Dict[str, Any]
) -> ProducerSettings:
    """
    Cria ou atualiza as sobrescritas de um produtor. Enviar null remove a sobrescrita.

    Args:
        session (AsyncSession): Sessão do banco de dados
        producer_id (int): ID do produtor
        values (Dict[str, Any]): Campos a atualizar

    Returns:
        ProducerSettings: Registro atualizado
    """
    producer = await session.get(User, producer_id)
    if not producer or producer.role != 'producer':
        raise NotFoundError("Producer not found")

    parsed = _parse_values(values)
    settings = await get_producer_settings(session, producer_id)
    if not settings:
        settings = ProducerSettings(producer_id=producer_id)
        session.add(settings)

    for name, value in parsed.items():
        setattr(settings, name, value)
    await session.commit()
    await session.refresh(settings)
    return settings


def settings_to_dict(row) -> Dict[str, Any]:
    """
    Serializa uma linha de configurações para JSON.
    """
    data = {}
    for name in SETTINGS_FIELDS:
        value = getattr(row, name)
        if name in PERCENT_FIELDS and value is not None:
            value = float(value)
        if name == TABLE_FIELD and value is not None:
            value = {str(k): float(v) for k, v in value.items()}
        data[name] = value
    return data
