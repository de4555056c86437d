# coursepay/main.py
import uvicorn

from coursepay.api import create_app
from coursepay.data.database import Base, engine
from coursepay.data import models  # noqa: F401  registers every table on Base.metadata
from coursepay.utils.logging import get_logger

logger = get_logger(__name__)


def init_db():
    logger.info(f"Creating tables: {list(Base.metadata.tables.keys())}")
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.error(f"Failed to create tables: {e}")
        raise


init_db()

app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
