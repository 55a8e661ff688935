from pydantic import BaseModel
import os

class Settings(BaseModel):
    # Remote ordering API
    API_BASE_URL: str = os.getenv('API_BASE_URL', 'http://localhost:5000/api')
    HTTP_TIMEOUT_SECONDS: float = float(os.getenv('HTTP_TIMEOUT_SECONDS', '30'))

    # Local mirror
    LOCAL_DB_DSN: str = os.getenv('LOCAL_DB_DSN', 'sqlite:///./sushi_local.db')

    # Sync policy
    CATALOG_REFRESH_MINUTES: int = int(os.getenv('CATALOG_REFRESH_MINUTES', '60'))
    RECENT_ORDERS_DEFAULT: int = int(os.getenv('RECENT_ORDERS_DEFAULT', '10'))

    # Auth/JWT
    TOKEN_EXPIRY_LEEWAY_SECONDS: int = int(os.getenv('TOKEN_EXPIRY_LEEWAY_SECONDS', '30'))

    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')

settings = Settings()
