"""
Bridge configuration.

``BridgeConfig`` is built once (by the CLI or by embedding code) and handed to
every component as an immutable value.
"""

from typing import Dict, FrozenSet, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .constants import DEFAULT_MAX_ITEMS, DEFAULT_MAX_RESPONSE_SIZE, DEFAULT_TIMEOUT

# Operation letters accepted by --enable / --disable
OPERATION_LETTERS = frozenset("CSFGUDA")
READ_OPERATION_LETTERS = frozenset("SFG")


def parse_operation_letters(value: str) -> FrozenSet[str]:
    """Expand an operation letter string such as "RC" into single letters ("R" expands to S, F and G)."""
    letters = set()
    for char in value.upper():
        if char in (" ", ","):
            continue
        if char == "R":
            letters.update(READ_OPERATION_LETTERS)
        elif char in OPERATION_LETTERS:
            letters.add(char)
        else:
            raise ValueError(f"Unknown operation type '{char}'. Valid types: C, S, F, G, U, D, A, R")
    return frozenset(letters)


class BridgeConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    service_url: str
    username: Optional[str] = None
    password: Optional[str] = None
    cookies: Optional[Dict[str, str]] = None

    # Exposure filters: exact names or trailing-'*' prefixes, case-insensitive
    allowed_entities: Optional[List[str]] = None
    allowed_functions: Optional[List[str]] = None
    read_only: bool = False
    read_only_but_functions: bool = False
    enable_ops: Optional[str] = None
    disable_ops: Optional[str] = None

    # Naming
    tool_shrink: bool = False
    tool_prefix: Optional[str] = None
    tool_postfix: Optional[str] = None  # None derives "_for_<service>", "" disables the suffix
    sort_tools: bool = True
    claude_code_friendly: bool = False  # Advertise query options without the '$' prefix

    # Responses
    max_items: int = Field(default=DEFAULT_MAX_ITEMS, ge=1)
    max_response_size: int = Field(default=DEFAULT_MAX_RESPONSE_SIZE, ge=1)
    legacy_dates: bool = True
    response_metadata: bool = False
    verbose_errors: bool = False

    timeout: float = DEFAULT_TIMEOUT
    verbose: bool = False

    @field_validator("service_url")
    @classmethod
    def _strip_service_url(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("service_url must not be empty")
        return value

    @field_validator("enable_ops", "disable_ops")
    @classmethod
    def _check_letters(cls, value: Optional[str]) -> Optional[str]:
        if value:
            parse_operation_letters(value)
        return value or None

    @model_validator(mode="after")
    def _check_exclusive_flags(self):
        if self.read_only and self.read_only_but_functions:
            raise ValueError("read_only and read_only_but_functions are mutually exclusive")
        if self.enable_ops and self.disable_ops:
            raise ValueError("enable_ops and disable_ops are mutually exclusive")
        return self

    @property
    def auth(self) -> Optional[Tuple[str, str]]:
        if self.username and self.password:
            return (self.username, self.password)
        return None

    @property
    def enabled_operations(self) -> FrozenSet[str]:
        """Operation letters left after applying --enable/--disable and the read-only modes."""
        if self.enable_ops:
            letters = set(parse_operation_letters(self.enable_ops))
        else:
            letters = set(OPERATION_LETTERS)
        if self.disable_ops:
            letters -= parse_operation_letters(self.disable_ops)
        if self.read_only:
            letters -= set("CUDA")
        elif self.read_only_but_functions:
            letters -= set("CUD")
        return frozenset(letters)

    def is_operation_enabled(self, letter: str) -> bool:
        return letter in self.enabled_operations
