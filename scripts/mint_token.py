# scripts/mint_token.py
"""
Issue an access token for an existing staff member.

Run: python -m scripts.mint_token reception@clinic.test
"""

import argparse
import asyncio
from datetime import timedelta

from sqlalchemy.future import select

from src.auth.auth_service import create_access_token
from src.common.database.database import async_session
from src.models.models import User


async def mint(email: str, minutes: int) -> str:
    async with async_session() as db:
        result = await db.execute(select(User).where(User.email == email, User.is_active.is_(True)))
        user = result.scalars().first()
    if user is None:
        raise SystemExit(f"No active staff member with email {email}")
    return create_access_token(
        {"sub": str(user.id), "role": user.role.value},
        expires_delta=timedelta(minutes=minutes),
    )


def main():
    parser = argparse.ArgumentParser(description="Mint a bearer token for a staff member")
    parser.add_argument("email")
    parser.add_argument("--minutes", type=int, default=720, help="Token lifetime")
    args = parser.parse_args()
    print(asyncio.run(mint(args.email, args.minutes)))


if __name__ == "__main__":
    main()
