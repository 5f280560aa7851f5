# storefront/utils/settings.py
import os
from dotenv import load_dotenv

load_dotenv()

STOREFRONT_API_URL = os.getenv("STOREFRONT_API_URL", "http://localhost:8000/api")
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", 10))
HTTP_READ_ATTEMPTS = int(os.getenv("HTTP_READ_ATTEMPTS", 1))  # 1 = no retry
QUANTITY_DEBOUNCE_SECONDS = float(os.getenv("QUANTITY_DEBOUNCE_SECONDS", 0.3))
ORDER_PAGE_SIZE = int(os.getenv("ORDER_PAGE_SIZE", 5))
SESSION_IDLE_SECONDS = float(os.getenv("SESSION_IDLE_SECONDS", 1800))
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./storefront.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
