# D:\3xDigital\settlement\services\auth_service.py

"""
auth_service.py

Este módulo contém a classe AuthService, responsável pela emissão e verificação dos
tokens JWT que identificam administradores e produtores nas rotas financeiras.
O cadastro e o login de usuários ficam fora deste serviço.

Classes:
    AuthService: Emissão e validação de tokens de acesso.
"""

from datetime import timedelta

import jwt

from settlement.config.settings import JWT_SECRET_KEY, JWT_EXPIRATION_MINUTES, TIMEZONE
from settlement.models.database import User


class AuthService:
    """
    Serviço de autenticação por token.

    Métodos:
        generate_jwt_token: Gera um token JWT para um usuário.
        verify_jwt_token: Decodifica e valida um token JWT.
    """

    @staticmethod
    def generate_jwt_token(user: User) -> str:
        """
        Gera um token JWT contendo o ID e o papel do usuário.

        Args:
            user (User): Usuário para o qual o token será gerado.

        Returns:
            str: Token JWT gerado.
        """
        expires = TIMEZONE() + timedelta(minutes=JWT_EXPIRATION_MINUTES)
        payload = {
            "sub": str(user.id),
            "role": user.role,
            "exp": expires
        }
        return jwt.encode(payload, JWT_SECRET_KEY, algorithm="HS256")

    @staticmethod
    def verify_jwt_token(token: str) -> dict:
        """
        Decodifica e valida um token JWT.

        Raises:
            ValueError: Se o token for inválido ou expirado.
        """
        try:
            return jwt.decode(
                token,
                JWT_SECRET_KEY,
                algorithms=["HS256"],
                options={"verify_exp": True}
            )
        except jwt.ExpiredSignatureError:
            raise ValueError("Token expirado.")
        except jwt.InvalidTokenError:
            raise ValueError("Token inválido.")

