import json
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BrowserMode(str, Enum):
    """Whether a fetch may, must, or must not go through a browser session."""
    ALWAYS = "always"
    NEVER = "never"
    AUTO = "auto"


class Viewport(BaseModel):
    model_config = ConfigDict(frozen=True)

    width: int = Field(gt=0)
    height: int = Field(gt=0)


class BrowserOptions(BaseModel):
    """
    Launch overrides for a pooled browser session.

    Two option sets with the same fingerprint share one pooled session.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    headless: bool | None = None  # None = config default
    viewport: Viewport | None = None
    launch_args: tuple[str, ...] = ()

    def fingerprint(self) -> str:
        """
        Canonical pool key: sorted keys, launch args de-duplicated and sorted,
        so field order or arg order in the caller's input does not matter.
        """
        payload = self.model_dump(mode="json")
        payload["launch_args"] = sorted(set(self.launch_args))
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))


class FetchOptions(BaseModel):
    """
    Per-call knobs accepted by fetch_one / fetch_batch.

    Fields left as None fall back to the service's CrawlerConfig.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    timeout_s: float | None = Field(default=None, gt=0)
    max_redirects: int | None = Field(default=None, ge=0)
    follow_redirects: bool = True
    additional_headers: dict[str, str] = Field(default_factory=dict)
    random_delay: bool = True
    use_browser: BrowserMode = BrowserMode.AUTO
    browser_options: BrowserOptions = Field(default_factory=BrowserOptions)
    max_retries: int | None = Field(default=None, ge=0)
    wait_for_selector: str | None = None
    wait_for_network_idle: bool = True
    browser_timeout_s: float | None = Field(default=None, gt=0)

    @field_validator("use_browser", mode="before")
    @classmethod
    def _coerce_tristate(cls, value):
        # Older callers pass true / false / null
        if value is None:
            return BrowserMode.AUTO
        if value is True:
            return BrowserMode.ALWAYS
        if value is False:
            return BrowserMode.NEVER
        if isinstance(value, str):
            return value.lower()
        return value
