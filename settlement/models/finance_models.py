# D:\3xDigital\settlement\models\finance_models.py
"""
finance_models.py

Módulo que define os modelos de dados (ORM) do núcleo financeiro de liquidação,
usando SQLAlchemy.

Funcionalidades principais:
    - Registro de vendas e dos campos financeiros calculados na confirmação
    - Saldo de produtores em três partes (disponível, pendente, reservado)
    - Extrato de lançamentos (trilha de auditoria de cada movimentação)
    - Solicitações de saque e seu ciclo de vida
    - Configurações de taxas da plataforma e sobrescritas por produtor
    - Configuração dos gateways de pagamento

Regras de Negócio:
    - Valores monetários são sempre inteiros em centavos
    - amount_total_cents == platform_fee_cents + producer_share_cents após a liquidação
    - security_reserve_cents <= producer_share_cents
    - Solicitações de saque nunca são apagadas
    - Campos nulos em producer_settings significam "usar o padrão da plataforma"

Dependências:
    - SQLAlchemy para ORM
    - settlement.models.database para a base declarativa
"""

import json

from sqlalchemy import (
    Column, Integer, String, Enum, Date, DateTime, ForeignKey, Boolean, Text, Numeric,
    CheckConstraint
)
from sqlalchemy.orm import relationship

from settlement.config.settings import TIMEZONE
from settlement.models.database import Base

PAYMENT_METHODS = ('card', 'pix', 'bank_slip')
SALE_STATUSES = ('pending_payment', 'paid', 'active', 'refunded', 'failed', 'cancelled', 'expired')
SETTLED_STATUSES = ('paid', 'active')
# Uma assinatura cancelada depois de paga continua com a parte creditada ao produtor;
# os campos financeiros só valem quando paid_at está preenchido
CREDITED_STATUSES = ('paid', 'active', 'cancelled')
WITHDRAWAL_STATUSES = ('pending', 'approved', 'rejected', 'paid')
BALANCE_BUCKETS = ('available', 'pending', 'reserved')


class Sale(Base):
    """
    Representa uma venda (uma tentativa de cobrança) de um produto.

    Attributes:
        id (int): ID único da venda.
        product_id (int): Produto vendido.
        producer_id (int): Produtor dono do produto.
        buyer_email (str): Email do comprador.
        amount_total_cents (int): Valor bruto em centavos.
        payment_method (enum): 'card', 'pix' ou 'bank_slip'.
        installments (int): Número de parcelas (apenas cartão).
        status (enum): Estado do ciclo de vida da venda.
        gateway_name (str): Gateway que processou a cobrança.
        gateway_transaction_id (str): Referência da cobrança no gateway.
        gateway_subscription_id (str): Referência da assinatura no gateway, se houver.
        gateway_status (str): Último status informado pelo gateway.
        paid_at (datetime): Data do pagamento (nula até a confirmação).
        release_date (date): Data a partir da qual a parte do produtor fica disponível.
        platform_fee_cents (int): Taxa da plataforma.
        producer_share_cents (int): Parte do produtor (bruto - taxa).
        security_reserve_cents (int): Reserva de segurança retida dentro da parte do produtor.
        payout_status (str): Estado do repasse.
        ledger_bucket (str): Saldo em que a parte (sem a reserva) foi creditada.
        ledger_applied (bool): Indica se o crédito no saldo já foi aplicado.
    """
    __tablename__ = 'sales'

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey('products.id'), nullable=False)
    producer_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    buyer_email = Column(String(255), nullable=True)
    amount_total_cents = Column(Integer, nullable=False)
    payment_method = Column(Enum(*PAYMENT_METHODS, name='payment_methods'), nullable=False)
    installments = Column(Integer, nullable=False, default=1)
    status = Column(Enum(*SALE_STATUSES, name='sale_status'), nullable=False, default='pending_payment')
    gateway_name = Column(String(50), nullable=True)
    gateway_transaction_id = Column(String(255), nullable=True, unique=True)
    gateway_subscription_id = Column(String(255), nullable=True, index=True)
    gateway_status = Column(String(50), nullable=True)
    paid_at = Column(DateTime, nullable=True)
    release_date = Column(Date, nullable=True)
    platform_fee_cents = Column(Integer, nullable=True)
    producer_share_cents = Column(Integer, nullable=True)
    security_reserve_cents = Column(Integer, nullable=True)
    payout_status = Column(String(20), nullable=True)
    ledger_bucket = Column(String(20), nullable=True)
    ledger_applied = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=TIMEZONE)
    updated_at = Column(DateTime, default=TIMEZONE, onupdate=TIMEZONE)

    product = relationship("Product")

    __table_args__ = (
        CheckConstraint('installments >= 1', name='ck_sales_installments'),
        CheckConstraint('amount_total_cents >= 0', name='ck_sales_amount'),
    )

    @property
    def is_subscription(self) -> bool:
        return bool(self.gateway_subscription_id)


class ProducerBalance(Base):
    """
    Saldo corrente de um produtor, mantido como acumulador.

    Attributes:
        id (int): ID único do registro.
        producer_id (int): Produtor dono do saldo (único).
        available_balance_cents (int): Valor disponível para saque.
        pending_balance_cents (int): Partes com data de liberação futura.
        reserved_balance_cents (int): Reservas de segurança ainda retidas.
        updated_at (datetime): Última atualização.
    """
    __tablename__ = 'producer_balances'

    id = Column(Integer, primary_key=True, autoincrement=True)
    producer_id = Column(Integer, ForeignKey('users.id', ondelete="CASCADE"), nullable=False, unique=True)
    available_balance_cents = Column(Integer, nullable=False, default=0)
    pending_balance_cents = Column(Integer, nullable=False, default=0)
    reserved_balance_cents = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=TIMEZONE, onupdate=TIMEZONE)

    __table_args__ = (
        CheckConstraint('available_balance_cents >= 0', name='ck_balance_available'),
        CheckConstraint('pending_balance_cents >= 0', name='ck_balance_pending'),
        CheckConstraint('reserved_balance_cents >= 0', name='ck_balance_reserved'),
    )


class LedgerEntry(Base):
    """
    Lançamento do extrato de um produtor. Cada mutação de saldo gera um lançamento
    na mesma transação.

    Attributes:
        id (int): ID único do lançamento.
        producer_id (int): Produtor afetado.
        entry_type (enum): Natureza do lançamento.
        bucket (str): Saldo afetado ('available', 'pending', 'reserved').
        amount_cents (int): Valor com sinal (positivo entra, negativo sai).
        reference_type (str): 'sale' ou 'withdrawal'.
        reference_id (int): ID da venda ou do saque relacionado.
        description (str): Descrição legível.
        created_at (datetime): Data do lançamento.
    """
    __tablename__ = 'ledger_entries'

    id = Column(Integer, primary_key=True, autoincrement=True)
    producer_id = Column(Integer, ForeignKey('users.id', ondelete="CASCADE"), nullable=False, index=True)
    entry_type = Column(
        Enum(
            'sale_credit', 'reserve_hold', 'reserve_release', 'share_release',
            'withdrawal', 'withdrawal_refund', 'adjustment',
            name='ledger_entry_types'
        ),
        nullable=False
    )
    bucket = Column(String(20), nullable=False)
    amount_cents = Column(Integer, nullable=False)
    reference_type = Column(String(20), nullable=True)
    reference_id = Column(Integer, nullable=True)
    description = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=TIMEZONE)


class WithdrawalRequest(Base):
    """
    Representa uma solicitação de saque realizada por um produtor.

    Attributes:
        id (int): ID único da solicitação.
        producer_id (int): ID do produtor que solicitou o saque.
        amount_cents (int): Valor solicitado.
        fee_cents (int): Taxa de saque cobrada no momento da solicitação.
        status (enum): Status ('pending', 'approved', 'rejected', 'paid').
        requested_at (datetime): Data da solicitação.
        processed_at (datetime): Data do processamento pelo administrador.
        admin_notes (str): Notas do administrador.
    """
    __tablename__ = 'withdrawal_requests'

    id = Column(Integer, primary_key=True, autoincrement=True)
    producer_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)
    fee_cents = Column(Integer, nullable=False, default=0)
    status = Column(
        Enum(*WITHDRAWAL_STATUSES, name='withdrawal_status'),
        nullable=False,
        default='pending'
    )
    requested_at = Column(DateTime, default=TIMEZONE)
    processed_at = Column(DateTime, nullable=True)
    admin_notes = Column(Text, nullable=True)

    @property
    def total_cents(self) -> int:
        return self.amount_cents + self.fee_cents


class PlatformSettings(Base):
    """
    Configurações de taxas da plataforma (linha única).

    Attributes:
        pix_fee_percent / bank_slip_fee_percent / card_fee_percent (Decimal): Taxas percentuais.
        card_installment_fee_percents (dict): Taxa de cartão por número de parcelas.
        fixed_fee_cents (int): Taxa fixa por transação.
        pix_release_days / bank_slip_release_days / card_release_days (int): Prazo de liberação.
        security_reserve_percent (Decimal): Percentual da reserva de segurança.
        security_reserve_days (int): Dias de retenção da reserva.
        withdrawal_fee_cents (int): Taxa de saque.
    """
    __tablename__ = 'platform_settings'

    id = Column(Integer, primary_key=True, autoincrement=True)
    pix_fee_percent = Column(Numeric(5, 2), nullable=False)
    bank_slip_fee_percent = Column(Numeric(5, 2), nullable=False)
    card_fee_percent = Column(Numeric(5, 2), nullable=False)
    _card_installment_fee_percents = Column("card_installment_fee_percents", Text, nullable=True)
    fixed_fee_cents = Column(Integer, nullable=False)
    pix_release_days = Column(Integer, nullable=False)
    bank_slip_release_days = Column(Integer, nullable=False)
    card_release_days = Column(Integer, nullable=False)
    security_reserve_percent = Column(Numeric(5, 2), nullable=False)
    security_reserve_days = Column(Integer, nullable=False)
    withdrawal_fee_cents = Column(Integer, nullable=False)
    updated_at = Column(DateTime, default=TIMEZONE, onupdate=TIMEZONE)

    @property
    def card_installment_fee_percents(self):
        """
        Desserializa a tabela de taxas por parcela do formato JSON.
        """
        if self._card_installment_fee_percents:
            return json.loads(self._card_installment_fee_percents)
        return None

    @card_installment_fee_percents.setter
    def card_installment_fee_percents(self, value):
        if value is not None:
            self._card_installment_fee_percents = json.dumps(
                {str(k): str(v) for k, v in value.items()}
            )
        else:
            self._card_installment_fee_percents = None


class ProducerSettings(Base):
    """
    Sobrescritas de taxas de um produtor. Qualquer campo nulo usa o padrão da plataforma.
    """
    __tablename__ = 'producer_settings'

    id = Column(Integer, primary_key=True, autoincrement=True)
    producer_id = Column(Integer, ForeignKey('users.id', ondelete="CASCADE"), nullable=False, unique=True)
    pix_fee_percent = Column(Numeric(5, 2), nullable=True)
    bank_slip_fee_percent = Column(Numeric(5, 2), nullable=True)
    card_fee_percent = Column(Numeric(5, 2), nullable=True)
    _card_installment_fee_percents = Column("card_installment_fee_percents", Text, nullable=True)
    fixed_fee_cents = Column(Integer, nullable=True)
    pix_release_days = Column(Integer, nullable=True)
    bank_slip_release_days = Column(Integer, nullable=True)
    card_release_days = Column(Integer, nullable=True)
    security_reserve_percent = Column(Numeric(5, 2), nullable=True)
    security_reserve_days = Column(Integer, nullable=True)
    withdrawal_fee_cents = Column(Integer, nullable=True)
    updated_at = Column(DateTime, default=TIMEZONE, onupdate=TIMEZONE)

    card_installment_fee_percents = PlatformSettings.card_installment_fee_percents


class PaymentGatewayConfig(Base):
    """
    Representa a configuração de um gateway de pagamento no sistema.

    Attributes:
        id (int): ID único da configuração.
        gateway_name (str): Nome do gateway (asaas, iugu).
        is_active (bool): Se o gateway é o gateway ativo da plataforma.
        api_key (str): Chave API do gateway.
        webhook_secret (str): Token compartilhado para validação de webhooks.
        configuration (str): Configurações adicionais em formato JSON.
    """
    __tablename__ = 'payment_gateway_configs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    gateway_name = Column(String(50), nullable=False, unique=True)
    is_active = Column(Boolean, default=False, nullable=False)
    api_key = Column(String(255), nullable=True)
    webhook_secret = Column(String(255), nullable=True)
    configuration = Column(Text, nullable=True)
    created_at = Column(DateTime, default=TIMEZONE)
    updated_at = Column(DateTime, default=TIMEZONE, onupdate=TIMEZONE)
