import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from siro.utils.env_helper import env_bool, env_none_or_str, env_list


load_dotenv()

# TODO: update origins for prod
DEFAULT_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:8080",
]


class Settings(BaseModel):
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    jwt_secret: Optional[str] = None

    # "memory" keeps every document in process, "supabase" uses the tables in
    # siro/*/models.py
    document_store: str = "memory"

    cors_origins: List[str] = DEFAULT_ORIGINS
    ws_require_token: bool = False

    cookie_httponly: bool = True
    cookie_secure: bool = False
    cookie_samesite: str = "Lax"
    cookie_domain: Optional[str] = None

    log_level: str = "INFO"
    log_format: str = "default"

    @property
    def jwt_issuer(self) -> Optional[str]:
        if not self.supabase_url:
            return None
        return f"{self.supabase_url}/auth/v1"

    @classmethod
    def from_env(cls) -> "Settings":
        supabase_url = env_none_or_str("PUBLIC_SUPABASE_URL")
        supabase_key = env_none_or_str("SECRET_API_KEY")

        default_store = "supabase" if supabase_url and supabase_key else "memory"

        return cls(
            supabase_url=supabase_url,
            supabase_key=supabase_key,
            jwt_secret=env_none_or_str("SUPABASE_JWT_SECRET"),
            document_store=os.getenv("DOCUMENT_STORE", default_store).lower(),
            cors_origins=env_list("CORS_ORIGINS", DEFAULT_ORIGINS),
            ws_require_token=env_bool("WS_REQUIRE_TOKEN", default=False),
            cookie_httponly=env_bool("HTTPONLY", default=True),
            cookie_secure=env_bool("SECURE", default=False),
            cookie_samesite=os.getenv("SAMESITE", "Lax"),
            cookie_domain=env_none_or_str("COOKIE_DOMAIN", None),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "default"),
        )
