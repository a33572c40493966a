"""
Gatekeeper - Signing Secret Generator

Prints a fresh pair of signing secrets for the .env file.
Access and refresh tokens must be signed with different secrets.

Usage:
    python scripts/generate_jwt_secrets.py >> .env
"""

import secrets


SECRET_BYTES = 64


def generate_secret() -> str:
    return secrets.token_hex(SECRET_BYTES)


if __name__ == "__main__":
    print(f"JWT_SECRET={generate_secret()}")
    print(f"JWT_REFRESH_SECRET={generate_secret()}")
