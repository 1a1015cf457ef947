import os
from uuid import UUID

from app.core.security import create_access_token
from app.domain.models.publication_job import PublicationPlatform
from app.infrastructure.db.session import SessionLocal
from app.integrations.credential_provider import load_social_connection, store_social_connection

DEFAULT_DEV_USER_ID = UUID("00000000-0000-4000-8000-000000000001")
DEV_TOKEN_LIFETIME_MINUTES = 60 * 24


def seed_dev_data() -> None:
    user_id = UUID(os.getenv("DEV_USER_ID", str(DEFAULT_DEV_USER_ID)))
    with SessionLocal() as db:
        created: list[str] = []
        for platform in PublicationPlatform:
            if load_social_connection(db, user_id=user_id, platform=platform.value) is not None:
                continue
            store_social_connection(
                db,
                user_id=user_id,
                platform=platform.value,
                access_token=os.getenv(f"DEV_{platform.name}_ACCESS_TOKEN", f"dev-{platform.value}-token"),
                platform_user_id=os.getenv(f"DEV_{platform.name}_ACCOUNT_ID", f"dev-{platform.value}-account"),
                expires_in_seconds=60 * 60 * 24 * 60,
                profile_data={"seeded": True},
            )
            created.append(platform.value)
        db.commit()

    print("Dev seed data:")
    print(f"- user_id: {user_id}")
    print(f"- connections_created: {', '.join(created) or 'none (already seeded)'}")
    print(f"- access_token: {create_access_token(user_id, expires_minutes=DEV_TOKEN_LIFETIME_MINUTES)}")


if __name__ == "__main__":
    seed_dev_data()
