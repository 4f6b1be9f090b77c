# config.py
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from jira_bridge.field_resolver import FieldRole
from jira_bridge.transport import RetryPolicy

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Configuration settings for the Jira MCP Bridge with validation"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Jira connection settings
    JIRA_HOST: str = Field(description="Jira Cloud site, e.g. https://your-site.atlassian.net")
    JIRA_EMAIL: str = Field(description="Account email used for basic auth")
    JIRA_API_TOKEN: str = Field(description="API token for the account")
    JIRA_DEFAULT_PROJECT: Optional[str] = Field(
        default=None, description="Project key used when a tool call omits one")

    # Explicit custom field ids, these win over auto-detection
    JIRA_FIELD_STORY_POINTS: Optional[str] = None
    JIRA_FIELD_EPIC_LINK: Optional[str] = None
    JIRA_FIELD_ACCEPTANCE_CRITERIA: Optional[str] = None
    JIRA_FIELD_START_DATE: Optional[str] = None
    JIRA_FIELD_TEAM: Optional[str] = None

    JIRA_AUTO_DETECT_FIELDS: bool = Field(
        default=True, description="Detect custom fields from create metadata")
    AUTO_CREATE_TEST_TICKETS: bool = Field(
        default=False, description="Create a linked Test issue for every new Story")

    # API request settings
    REQUEST_TIMEOUT: int = Field(default=30, description="Timeout for API requests in seconds", ge=1)

    # Retry policy
    RETRY_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    RETRY_INITIAL_DELAY: float = Field(default=1.0, ge=0)
    RETRY_BACKOFF_MULTIPLIER: float = Field(default=2.0, ge=1)
    RETRY_MAX_DELAY: float = Field(default=10.0, ge=0)
    RETRY_NON_IDEMPOTENT: bool = Field(
        default=False, description="Also retry POST requests (may duplicate writes)")

    # Transport configuration
    TRANSPORT_MODE: str = Field(
        default="stdio", description="Transport mode for MCP communication (stdio or sse)")

    # Logging configuration
    LOG_LEVEL: str = Field(
        default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")
    LOG_FILE: Optional[str] = Field(default=None, description="Optional path to a log file")

    @field_validator("JIRA_HOST")
    @classmethod
    def validate_host(cls, v):
        v = v.strip().rstrip("/")
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Invalid Jira host: {v}. Must start with http:// or https://")
        return v

    @field_validator("TRANSPORT_MODE", mode="before")
    @classmethod
    def validate_transport_mode(cls, v):
        v = str(v).lower()
        if v not in ["stdio", "sse"]:
            raise ValueError(f"Invalid transport mode: {v}. Must be 'stdio' or 'sse'")
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v):
        v = str(v).upper()
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v

    def field_overrides(self) -> Dict[FieldRole, str]:
        configured = {
            FieldRole.STORY_POINTS: self.JIRA_FIELD_STORY_POINTS,
            FieldRole.EPIC_LINK: self.JIRA_FIELD_EPIC_LINK,
            FieldRole.ACCEPTANCE_CRITERIA: self.JIRA_FIELD_ACCEPTANCE_CRITERIA,
            FieldRole.START_DATE: self.JIRA_FIELD_START_DATE,
            FieldRole.TEAM: self.JIRA_FIELD_TEAM,
        }
        return {role: field_id for role, field_id in configured.items() if field_id}

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.RETRY_MAX_ATTEMPTS,
            initial_delay=self.RETRY_INITIAL_DELAY,
            backoff_multiplier=self.RETRY_BACKOFF_MULTIPLIER,
            max_delay=self.RETRY_MAX_DELAY,
            retry_non_idempotent=self.RETRY_NON_IDEMPOTENT,
        )
