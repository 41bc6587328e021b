#!/usr/bin/env python3
"""
Gestión de migraciones del POS con Alembic.

Uso:
  python migrate.py create 'mensaje'   # Nueva revisión (autogenerate)
  python migrate.py upgrade [rev]      # Aplicar hasta head o rev
  python migrate.py downgrade [rev]    # Revertir una revisión o hasta rev
  python migrate.py sql                # Imprimir el SQL de upgrade sin conectarse
  python migrate.py stamp [rev]        # Marcar la base sin ejecutar migraciones
  python migrate.py history | current
"""
import logging
import sys
from pathlib import Path

from alembic import command
from alembic.config import Config

from app.core.config import settings

ROOT_DIR = Path(__file__).parent

logging.basicConfig(level=logging.INFO, format="%(levelname)s - %(message)s")
logger = logging.getLogger("migrate")


def get_alembic_config() -> Config:
    alembic_cfg = Config(str(ROOT_DIR / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(ROOT_DIR / "migrations"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url)
    return alembic_cfg


def create_migration(cfg: Config, message: str):
    command.revision(cfg, autogenerate=True, message=message)
    logger.info(f"Migración creada: {message}")


def upgrade(cfg: Config, revision: str = "head"):
    command.upgrade(cfg, revision)
    logger.info(f"Base de datos actualizada a {revision}")


def downgrade(cfg: Config, revision: str = "-1"):
    command.downgrade(cfg, revision)
    logger.info(f"Rollback ejecutado hasta {revision}")


def upgrade_sql(cfg: Config, revision: str = "head"):
    command.upgrade(cfg, revision, sql=True)


def stamp(cfg: Config, revision: str = "head"):
    command.stamp(cfg, revision)
    logger.info(f"Base de datos marcada en {revision}")


COMMANDS = {
    "upgrade": upgrade,
    "downgrade": downgrade,
    "sql": upgrade_sql,
    "stamp": stamp,
    "history": command.history,
    "current": command.current,
}


def main(argv) -> int:
    if not argv:
        print(__doc__)
        return 1

    action, args = argv[0], argv[1:]
    cfg = get_alembic_config()

    if action == "create":
        if not args:
            logger.error("Se requiere un mensaje para la migración")
            return 1
        create_migration(cfg, args[0])
        return 0

    handler = COMMANDS.get(action)
    if handler is None:
        logger.error(f"Acción desconocida: {action}")
        return 1

    handler(cfg, *args[:1])
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
