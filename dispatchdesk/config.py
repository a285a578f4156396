"""
Configuration for DispatchDesk
Reads environment variables (and .env) once at startup
"""

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel


class Settings(BaseModel):
    """Process-wide settings, built once and passed to each service"""
    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_service_key: Optional[str] = None
    database_url: Optional[str] = None

    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"

    google_maps_key: Optional[str] = None
    nominatim_user_agent: str = "dispatchdesk/1.0"

    sendgrid_api_key: Optional[str] = None
    dispatch_from_email: str = "dispatch@example.com"

    dispatch_top_k: int = 5
    dispatch_radius_miles: float = 50.0
    duplicate_window_days: int = 30
    request_timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        return cls(
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_anon_key=os.getenv("SUPABASE_ANON_KEY"),
            supabase_service_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY"),
            database_url=os.getenv("DATABASE_URL"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            google_maps_key=os.getenv("GOOGLE_MAPS_SERVER_KEY"),
            nominatim_user_agent=os.getenv("NOMINATIM_USER_AGENT", "dispatchdesk/1.0"),
            sendgrid_api_key=os.getenv("SENDGRID_API_KEY"),
            dispatch_from_email=os.getenv("DISPATCH_FROM_EMAIL", "dispatch@example.com"),
            dispatch_top_k=int(os.getenv("DISPATCH_TOP_K", 5)),
            dispatch_radius_miles=float(os.getenv("DISPATCH_RADIUS_MILES", 50)),
            duplicate_window_days=int(os.getenv("DUPLICATE_WINDOW_DAYS", 30)),
            request_timeout_seconds=float(os.getenv("REQUEST_TIMEOUT_SECONDS", 30)),
        )
