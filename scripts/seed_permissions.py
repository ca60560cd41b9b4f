"""
Seed script to populate the permission registry and default roles.

Run this script after database initialization to create:
- Permission categories and their permissions
- The role hierarchy with default permission sets

Existing categories, permissions and roles are left untouched, so the
script is safe to re-run and never overwrites role defaults edited through
the API.

Usage:
    uv run python -m scripts.seed_permissions
"""
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.permissions.catalog import DEFAULT_CATEGORIES, DEFAULT_ROLES
from app.features.permissions.models import Permission, PermissionCategory, Role
from app.utils import get_logger


log = get_logger(__name__)


async def seed_permissions(db: AsyncSession) -> dict[str, Permission]:
    """
    Create default categories and permissions.

    Returns:
        Dictionary mapping permission keys to Permission objects
    """
    log.info("Creating default permissions...")
    existing_categories = {c.key for c in (await db.execute(select(PermissionCategory))).scalars().all()}
    permissions_map = {p.key: p for p in (await db.execute(select(Permission))).scalars().all()}
    created = 0

    for order, (category_key, category_config) in enumerate(DEFAULT_CATEGORIES.items()):
        if category_key not in existing_categories:
            db.add(PermissionCategory(key=category_key, name=category_config["name"], display_order=order))
            log.info("Created category: %s", category_key)

        for position, (key, name, description) in enumerate(category_config["permissions"]):
            if key in permissions_map:
                log.debug("Permission '%s' already exists, skipping", key)
                continue
            permission = Permission(
                key=key,
                name=name,
                description=description,
                category_key=category_key,
                display_order=position,
            )
            db.add(permission)
            permissions_map[key] = permission
            created += 1

    await db.commit()
    log.info("Created %d permissions (%d total)", created, len(permissions_map))
    return permissions_map


async def seed_roles(db: AsyncSession, permissions_map: dict[str, Permission]):
    """
    Create default roles and assign permissions.

    Args:
        db: Database session
        permissions_map: Dictionary of permission key -> Permission object
    """
    log.info("Creating default roles...")
    existing = {r.key for r in (await db.execute(select(Role))).scalars().all()}

    for role_key, role_config in DEFAULT_ROLES.items():
        if role_key in existing:
            log.debug("Role '%s' already exists, skipping", role_key)
            continue

        role = Role(
            key=role_key,
            name=role_config["name"],
            description=role_config["description"],
            hierarchy_level=role_config["hierarchy_level"],
            is_protected=role_config["is_protected"],
        )

        if role_config["permissions"] == "ALL":
            role.permissions = list(permissions_map.values())
        else:
            role_permissions = []
            for key in role_config["permissions"]:
                if key in permissions_map:
                    role_permissions.append(permissions_map[key])
                else:
                    log.warning("Permission '%s' not found for role '%s'", key, role_key)
            role.permissions = role_permissions

        db.add(role)
        log.info("Created role '%s' with %d permissions", role_key, len(role.permissions))

    await db.commit()
    log.info("Default roles created successfully")


async def seed_catalog(db: AsyncSession):
    """Seed categories, permissions and roles in one go."""
    permissions_map = await seed_permissions(db)
    await seed_roles(db, permissions_map)


async def main():
    """Main function to seed permissions and roles."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            await seed_catalog(db)
        except Exception:
            log.exception("Error seeding permissions")
            await db.rollback()
            raise

    log.info("Permission seeding completed successfully!")
    for role_key, role_config in DEFAULT_ROLES.items():
        log.info("  - %s (level %d): %s", role_key, role_config["hierarchy_level"], role_config["description"])


if __name__ == "__main__":
    asyncio.run(main())
