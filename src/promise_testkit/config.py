"""Configuration management for async test expectations."""

from pydantic import Field
from pydantic_settings import BaseSettings


class ExpectationSettings(BaseSettings):
    """Default timeouts and failure policy, overridable from the environment."""

    timeout: float = Field(
        1.0, gt=0, description="Seconds to wait for a condition or async test body"
    )
    poll_interval: float = Field(
        0.01, gt=0, description="Seconds to sleep between polling attempts"
    )
    fail_on_error: bool = Field(
        True, description="Whether an async test body raising fails the test"
    )

    model_config = {
        "env_prefix": "PROMISE_TESTKIT_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }
