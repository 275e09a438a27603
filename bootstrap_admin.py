#!/usr/bin/env python3
"""
Super Admin Bootstrap Script

Creates the first super admin. Super admins cannot self-register, so every
deployment needs this once after migrations.

Usage:
    python bootstrap_admin.py "Jane Doe" jane@example.com [phone]
"""

import asyncio
import sys

import asyncpg

from app.core.config import settings
from app.core.exceptions import HierarchyError
from app.services.admins import register_admin


async def bootstrap_super_admin(name: str, email: str, phone: str | None = None) -> bool:
    """Create a super admin unless one already uses this email."""
    conn = await asyncpg.connect(settings.DATABASE_URL, timeout=settings.DB_CONNECT_TIMEOUT_SECONDS)

    try:
        print("🔍 Checking existing super admins...")

        existing = await conn.fetch(
            "SELECT id, email FROM users WHERE role = 'super_admin' ORDER BY created_at"
        )
        for row in existing:
            print(f"ℹ️  Existing super admin: {row['email']} (ID: {row['id']})")
            if row["email"] == email.lower():
                print("ℹ️  This email is already a super admin, nothing to do")
                return True

        admin = await register_admin(
            conn, name, email, "super_admin", phone=phone, bootstrap=True
        )

        print("\n🎉 Super admin created!")
        print(f"   • Name: {admin['name']}")
        print(f"   • Email: {admin['email']}")
        print(f"   • ID: {admin['id']}")
        return True

    except (HierarchyError, asyncpg.PostgresError) as e:
        print(f"❌ Error during bootstrap: {e}")
        return False

    finally:
        await conn.close()


async def main(argv: list[str]) -> bool:
    """Main bootstrap function."""
    print("🚀 Hierarchy Super Admin Bootstrap")
    print("=" * 50)

    if len(argv) < 2:
        print(__doc__)
        return False

    name, email = argv[0], argv[1]
    phone = argv[2] if len(argv) > 2 else None
    success = await bootstrap_super_admin(name, email, phone)

    if success:
        print("\n✅ Bootstrap completed successfully!")
        print("Issue a token for this admin id from the identity service to sign in.")
    else:
        print("\n❌ Bootstrap failed!")
        print("Please check the error messages above and try again.")

    return success


if __name__ == "__main__":
    success = asyncio.run(main(sys.argv[1:]))
    sys.exit(0 if success else 1)
