from __future__ import annotations

import os
from getpass import getpass

from filevault import create_app
from filevault.extensions import db
from filevault.models import User


def main() -> None:
    app = create_app()

    with app.app_context():
        db.create_all()

        username = os.getenv("ADMIN_USERNAME", "admin")
        email = os.getenv("ADMIN_EMAIL", f"{username}@localhost.localdomain")
        password = os.getenv("ADMIN_PASSWORD")
        if not password:
            password = getpass("Admin password: ")

        user = User.query.filter_by(username=username).one_or_none()
        created = False
        if user is None:
            user = User(username=username, email=email, is_active=True)
            created = True

        user.is_admin = True
        user.set_password(password)

        db.session.add(user)
        db.session.commit()

        print(f"{'Created' if created else 'Updated'} admin user: {username}")


if __name__ == "__main__":
    main()
