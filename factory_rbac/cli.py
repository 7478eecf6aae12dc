"""Factory access-control CLI tool (factoryctl)."""

import logging
from typing import Optional

import typer

app = typer.Typer(name="factoryctl", help="Factory access-control CLI")
db_app = typer.Typer(help="Database management commands")
users_app = typer.Typer(help="User administration commands")
roles_app = typer.Typer(help="Role inspection commands")
app.add_typer(db_app, name="db")
app.add_typer(users_app, name="users")
app.add_typer(roles_app, name="roles")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


@db_app.command("create")
def db_create():
    """Create the MySQL database if it doesn't exist."""
    import pymysql
    from sqlalchemy.engine import make_url
    from factory_rbac.core.config import settings

    url = make_url(settings.DATABASE_URL)
    if not url.drivername.startswith("mysql"):
        typer.echo(f"Nothing to create for '{url.drivername}' databases")
        return

    conn = pymysql.connect(
        host=url.host or "localhost",
        port=url.port or 3306,
        user=url.username,
        password=url.password or "",
    )
    try:
        cursor = conn.cursor()
        cursor.execute(
            f"CREATE DATABASE IF NOT EXISTS `{url.database}` "
            "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
        )
        conn.commit()
        typer.echo(f"✅ Database '{url.database}' created (or already exists)")
    finally:
        conn.close()


@db_app.command("init")
def db_init():
    """Create all tables."""
    import factory_rbac.models  # noqa: F401  (registers every table)
    from factory_rbac.db.base import Base
    from factory_rbac.db.session import engine

    Base.metadata.create_all(bind=engine)
    typer.echo("✅ Tables created")


@db_app.command("seed")
def db_seed():
    """Seed default roles and the admin user."""
    from factory_rbac.db.session import SessionLocal
    from factory_rbac.db.seeds.seed_roles import seed_roles
    from factory_rbac.db.seeds.seed_admin import seed_admin

    db = SessionLocal()
    try:
        added = seed_roles(db)
        created = seed_admin(db)
    finally:
        db.close()
    typer.echo(f"✅ Seeds applied ({added} roles added, admin {'created' if created else 'unchanged'})")


@users_app.command("approve")
def users_approve(
    username: str = typer.Argument(..., help="Username of the pending user"),
    role: str = typer.Option(..., "--role", "-r", help="Role to assign"),
    department_id: Optional[int] = typer.Option(None, "--department", help="Department ID"),
    group_id: Optional[int] = typer.Option(None, "--group", help="Group ID"),
):
    """Approve a pending registration as the system actor."""
    from factory_rbac.core.exceptions import FactoryAppError
    from factory_rbac.db.session import SessionLocal
    from factory_rbac.models.user import User
    from factory_rbac.services.user_service import user_service

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.username_lower == username.lower()).first()
        if user is None:
            typer.echo(f"User '{username}' not found", err=True)
            raise typer.Exit(code=1)
        try:
            user_service.approve(db, user.id, role, department_id, group_id)
        except FactoryAppError as e:
            typer.echo(f"Approval failed: {e.message}", err=True)
            raise typer.Exit(code=1)
    finally:
        db.close()
    typer.echo(f"✅ '{username}' approved as '{role}'")


@roles_app.command("list")
def roles_list():
    """Print every role with its data reach and granted actions."""
    from factory_rbac.db.session import SessionLocal
    from factory_rbac.services.role_service import role_service

    db = SessionLocal()
    try:
        roles = role_service.list_roles(db)
    finally:
        db.close()
    for role in roles:
        grants = ", ".join(
            f"{resource.value}:{'edit' if flags.can_edit else 'view'}"
            for resource, flags in role.permissions.items()
            if flags.can_view
        )
        marker = " (built-in)" if role.is_built_in else ""
        typer.echo(f"  {role.name}{marker} [{role.data_reach.value}] v{role.version}  {grants or '-'}")


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", help="Host"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(False, help="Auto-reload"),
    workers: Optional[int] = typer.Option(None, help="Worker processes (default: WORKERS)"),
):
    """Start the FastAPI server."""
    import uvicorn
    from factory_rbac.core.config import settings
    from factory_rbac.services.role_cache import role_cache

    workers = workers or settings.WORKERS
    if workers > 1 and role_cache.process_local:
        typer.echo(
            f"Refusing to start {workers} workers with the in-memory role cache; "
            "set ROLE_CACHE_BACKEND=redis",
            err=True,
        )
        raise typer.Exit(code=1)
    uvicorn.run("factory_rbac.main:app", host=host, port=port, reload=reload, workers=workers)


if __name__ == "__main__":
    app()
