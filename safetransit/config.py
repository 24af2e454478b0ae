"""Configuration management using Pydantic settings"""

from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseSettings):
    """Database configuration"""

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    name: str = Field(default="safetransit", description="Database name")
    user: str = Field(default="safetransit_user", description="Database user")
    password: str = Field(default="", description="Database password")
    min_connections: int = Field(default=1, description="Minimum pooled connections")
    pool_size: int = Field(default=10, description="Connection pool size")
    connect_timeout: int = Field(default=5, description="Connection timeout in seconds")
    query_log_enabled: bool = Field(default=False, description="Keep an in-memory log of executed queries")
    query_log_size: int = Field(default=500, ge=1, description="Most recent queries kept in the query log")

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


class APIConfig(BaseSettings):
    """API configuration"""

    host: str = Field(default="0.0.0.0", description="API host")
    port: int = Field(default=8000, description="API port")
    workers: int = Field(default=4, description="Number of workers")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")

    model_config = SettingsConfigDict(
        env_prefix="API_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


class LoggingConfig(BaseSettings):
    """Logging configuration"""

    level: str = Field(default="INFO", description="Logging level")
    format: str = Field(default="json", description="Log format (json or text)")
    output: str = Field(default="stdout", description="Log output (stdout or file path)")

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


class SecurityConfig(BaseSettings):
    """Security configuration"""

    jwt_secret: str = Field(default="change-me-in-production", description="JWT secret key")
    jwt_algorithm: str = Field(default="HS256", description="JWT algorithm")
    jwt_expiry_hours: int = Field(default=24, description="JWT expiry in hours")
    encryption_key: str = Field(
        default="K" * 32,
        description="AES-256-GCM key: 32 raw characters or base64 of 32 bytes"
    )
    anonymization_salt: str = Field(default="change-me-in-production", description="Salt for anonymous hashes")
    csrf_field_name: str = Field(default="_csrf_token", description="Session key and form field for CSRF tokens")
    csrf_token_lifetime_seconds: int = Field(default=3600, description="CSRF token lifetime in seconds")
    session_secret: str = Field(default="change-me-in-production", description="Session cookie signing secret")
    admin_roles: List[str] = Field(
        default_factory=lambda: ["Admin", "Verifier"],
        description="Roles allowed to review incidents"
    )

    model_config = SettingsConfigDict(
        env_prefix="SECURITY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


class ReportingConfig(BaseSettings):
    """Anonymous report submission and alerting configuration"""

    rate_limit_enabled: bool = Field(default=False, description="Enforce the per-IP report limit")
    rate_limit_reports: int = Field(default=5, description="Reports per IP per window")
    rate_limit_window_seconds: int = Field(default=3600, description="Rate limit window in seconds")
    description_min_length: int = Field(default=10, description="Minimum description length")
    description_max_length: int = Field(default=500, description="Maximum description length")
    submission_alert_radius_km: float = Field(default=1.0, description="Radius of alerts raised on critical submission")
    submission_alert_ttl_hours: float = Field(default=2.0, description="Lifetime of alerts raised on critical submission")
    verification_alert_ttl_hours: float = Field(default=4.0, description="Lifetime of alerts raised on verification")
    default_alert_radius_km: float = Field(default=2.0, description="Alert radius when the location has none")

    model_config = SettingsConfigDict(
        env_prefix="REPORTING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


class ProximityConfig(BaseSettings):
    """Nearby incident and alert query configuration"""

    radius_default_km: float = Field(default=5.0, description="Default search radius")
    radius_min_km: float = Field(default=0.1, description="Minimum search radius")
    radius_max_km: float = Field(default=100.0, description="Maximum search radius")
    days_default: int = Field(default=7, description="Default look-back window in days")
    days_min: int = Field(default=1, description="Minimum look-back window in days")
    days_max: int = Field(default=365, description="Maximum look-back window in days")
    incident_limit: int = Field(default=50, description="Maximum nearby incidents returned")
    alert_limit: int = Field(default=20, description="Maximum alerts returned")

    model_config = SettingsConfigDict(
        env_prefix="PROXIMITY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings"""

    environment: str = Field(default="development", description="Environment (development, staging, production)")
    debug: bool = Field(default=False, description="Debug mode")

    # Sub-configurations
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    reporting: ReportingConfig = Field(default_factory=ReportingConfig)
    proximity: ProximityConfig = Field(default_factory=ProximityConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def DATABASE_URL(self) -> str:
        """Construct PostgreSQL connection URL from database config."""
        return (
            f"postgresql://{self.database.user}:{self.database.password}"
            f"@{self.database.host}:{self.database.port}/{self.database.name}"
            f"?connect_timeout={self.database.connect_timeout}"
        )


# Global settings instance
settings = Settings()
