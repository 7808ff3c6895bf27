from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.core.database_init import init_database_schema
from app.core.logging import configure_logging
from app.services.bootstrap import ensure_default_categories


def main() -> None:
    configure_logging()
    init_database_schema()
    ensure_default_categories()


if __name__ == "__main__":
    main()
