import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.armory.models import Role, User  # noqa: E402
from app.armory.modules.permissions.service import all_permission_keys, ensure_perm, import_default_policies  # noqa: E402
from app.armory.modules.reference.seed import seed_reference_data  # noqa: E402
from scripts._db_utils import script_session  # noqa: E402


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed permissions/roles/admin user and starter reference data in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@virtualarmory.com").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///armory.db").strip()

    # Direct engine/session so release can run without importing app.wsgi.
    with script_session(db_url) as s:
        for key in all_permission_keys():
            ensure_perm(s, key)
        import_default_policies(s)

        role_admin = s.query(Role).filter(Role.key == "admin").one()
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(email=admin_email, password_hash=generate_password_hash(admin_password), verified=True)
            s.add(user)
        if role_admin not in user.roles:
            user.roles.append(role_admin)

        added = seed_reference_data(s)

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")
    for table, n in added.items():
        if n:
            print(f"Seeded {n} {table}")


def main() -> None:
    seed_only(database_url=None)


if __name__ == "__main__":
    main()
