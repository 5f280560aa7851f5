# storefront/main.py
import uvicorn

from storefront.api import create_app
from storefront.data.database import Base, engine
from storefront.data import models  # noqa: F401  registers the tables
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

logger.info(f"Models registered in Base.metadata: {list(Base.metadata.tables.keys())}")
Base.metadata.create_all(bind=engine)

app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8080)
