"""
MODULE OVERVIEW:
Application-wide configuration using Pydantic Settings.

WHAT IS HAPPENING HERE:
All protocol timings and endpoints live here instead of being hardcoded deep inside the
client. Every field can be overridden with an environment variable prefixed with
`MTGOX_` (e.g. `MTGOX_SECURE=1`) or through a `.env` file.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    HOST: str = "socketio.mtgox.com"
    PORT: int | None = None
    SECURE: bool = False
    LOG_LEVEL: str = "INFO"

    # The only Socket.IO endpoint carrying application JSON
    ENDPOINT: str = "/mtgox"

    # Handshake
    HANDSHAKE_TIMEOUT_S: float = 10.0
    CONNECT_TIMEOUT_S: float = 10.0

    # Heartbeats go out this many seconds before the server's deadline
    HEARTBEAT_MARGIN_S: float = 2.0

    # Transport
    READ_CHUNK_SIZE: int = 65536
    MAX_FRAME_SIZE: int = 2**20

    model_config = SettingsConfigDict(
        env_prefix="MTGOX_",
        env_file=".env",
        # Tolerate missing env vars to allow easy out-of-the-box execution
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()
