from typing import Annotated

from pydantic import AliasChoices, Field, HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    # database
    mysql_host: Annotated[str, Field(default="localhost"), "database"]
    mysql_port: Annotated[int, Field(default=3306), "database"]
    mysql_database: Annotated[str, Field(default="textflow"), "database"]
    mysql_user: Annotated[str, Field(default="textflow"), "database"]
    mysql_password: Annotated[str, Field(default="password"), "database"]
    database_url_override: Annotated[
        str | None,
        Field(default=None, validation_alias=AliasChoices("database_url", "database_url_override")),
        "database",
    ]

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return f"mysql+aiomysql://{self.mysql_user}:{self.mysql_password}@{self.mysql_host}:{self.mysql_port}/{self.mysql_database}"

    # jwt
    secret_key: Annotated[str, Field(default="your_jwt_secret_here", alias="jwt_secret_key"), "jwt"]
    algorithm: Annotated[str, Field(default="HS256", alias="jwt_algorithm"), "jwt"]
    access_token_expire_minutes: Annotated[int, Field(default=10080), "jwt"]  # 7 days

    # server
    host: Annotated[str, Field(default="0.0.0.0"), "server"]  # noqa: S104
    port: Annotated[int, Field(default=8000), "server"]
    debug: Annotated[bool, Field(default=False), "server"]
    cors_urls: Annotated[list[HttpUrl], Field(default=[]), "server"]
    frontend_url: Annotated[HttpUrl | None, Field(default=None), "server"]

    # logging
    log_level: Annotated[str, Field(default="INFO"), "logging"]

    # monitoring
    sentry_dsn: Annotated[HttpUrl | None, Field(default=None), "monitoring"]

    # chat
    chat_room_lifetime_minutes: Annotated[int, Field(default=60), "chat"]
    chat_room_code_max_attempts: Annotated[int, Field(default=30), "chat"]
    chat_join_rate_limit: Annotated[int, Field(default=10), "chat"]
    chat_join_rate_window_seconds: Annotated[int, Field(default=60), "chat"]
    chat_member_idle_seconds: Annotated[int, Field(default=120), "chat"]
    chat_purge_interval_seconds: Annotated[int, Field(default=60), "chat"]
    chat_nickname_max_length: Annotated[int, Field(default=20), "chat"]
    chat_message_max_length: Annotated[int, Field(default=500), "chat"]
    chat_message_history_limit: Annotated[int, Field(default=2000), "chat"]
    enable_chat_purge: Annotated[bool, Field(default=True), "chat"]


settings = Settings()  # pyright: ignore[reportCallIssue]
