#!/usr/bin/env python
"""Seed the development store with one family and print session tokens.

Constraints:
- Refuses to run in staging or prod (HEARTH_ENV check)
- Idempotent: users whose email already exists in the family are reused
- Never runs automatically (manual invocation only)

Usage:
    HEARTH_DATA_DIR=./data python scripts/seed_dev.py
"""

import sys

DEV_FAMILY_ID = 1
DEV_MEMBERS = [
    ("Ada", "ada@family.localhost"),
    ("Grace", "grace@family.localhost"),
    ("Linus", "linus@family.localhost"),
]


def main():
    from hearth.auth.session import mint_session_token
    from hearth.config import Environment, get_settings
    from hearth.db.store import Store
    from hearth.services.users import create_user, family_member_ids, get_user

    settings = get_settings()
    if settings.hearth_env not in (Environment.LOCAL, Environment.TEST):
        print(f"ERROR: seed_dev.py refuses to run in HEARTH_ENV={settings.hearth_env.value}")
        sys.exit(1)

    store = Store.open(settings.effective_database_path)
    try:
        with store.write_tx() as tx:
            existing = {}
            for user_id in family_member_ids(tx, DEV_FAMILY_ID):
                user = get_user(tx, user_id)
                if user is not None:
                    existing[user.email] = user

            users = []
            for name, email in DEV_MEMBERS:
                user = existing.get(email) or create_user(tx, name, email, DEV_FAMILY_ID)
                users.append(user)
            tx.commit()
    finally:
        store.close()

    print(f"Seeded family {DEV_FAMILY_ID} in {settings.effective_database_path}")
    for user in users:
        print(f"  {user.name} (id={user.id}) authToken={mint_session_token(user.id)}")


if __name__ == "__main__":
    main()
