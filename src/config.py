"""
Application configuration loaded from environment variables.

`.env` in the working directory is loaded first; real environment
variables win over it.
"""

import os

from dotenv import load_dotenv

load_dotenv(dotenv_path=os.path.join(os.getcwd(), ".env"))


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Config:
    """Application configuration."""

    # Flask
    DEBUG = _flag("FLASK_DEBUG", "0")
    PORT = int(os.getenv("PORT", 5050))
    ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.getenv(
            "ALLOWED_ORIGINS",
            "http://127.0.0.1:3000,http://localhost:3000,http://localhost:5000",
        ).split(",")
        if origin.strip()
    ]

    # Auth
    JWT_SECRET = os.getenv("JWT_SECRET")

    # Storage: "supabase" or "memory"
    DONATION_STORE = os.getenv("DONATION_STORE", "supabase")
    SUPABASE_URL = os.getenv("SUPABASE_URL")
    SUPABASE_KEY = os.getenv("SUPABASE_KEY")
    DONATIONS_TABLE = os.getenv("DONATIONS_TABLE", "food_donations")

    # Expiry sweeper
    ENABLE_SCHEDULER = _flag("ENABLE_SCHEDULER", "true")
    EXPIRY_SWEEP_MINUTES = float(os.getenv("EXPIRY_SWEEP_MINUTES", 5))

    # Email
    MAIL_SERVER = os.getenv("MAIL_SERVER", "smtp.gmail.com")
    MAIL_PORT = int(os.getenv("MAIL_PORT", 587))
    MAIL_USE_TLS = _flag("MAIL_USE_TLS", "True")
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", os.getenv("MAIL_USERNAME"))

    @classmethod
    def flask_settings(cls) -> dict:
        return {
            "DEBUG": cls.DEBUG,
            "JWT_SECRET": cls.JWT_SECRET,
            "DONATION_STORE": cls.DONATION_STORE,
            "ENABLE_SCHEDULER": cls.ENABLE_SCHEDULER,
            "EXPIRY_SWEEP_MINUTES": cls.EXPIRY_SWEEP_MINUTES,
            "MAIL_SERVER": cls.MAIL_SERVER,
            "MAIL_PORT": cls.MAIL_PORT,
            "MAIL_USE_TLS": cls.MAIL_USE_TLS,
            "MAIL_USERNAME": cls.MAIL_USERNAME,
            "MAIL_PASSWORD": cls.MAIL_PASSWORD,
            "MAIL_DEFAULT_SENDER": cls.MAIL_DEFAULT_SENDER,
        }


# Singleton instance
config = Config()
