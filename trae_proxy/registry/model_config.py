"""Model configuration dataclass."""
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class ModelConfig:
    """Configuration for a single upstream model."""

    name: str  # upstream model name, e.g. "aws_sdk_claude37_sonnet"
    public_name: Optional[str] = None  # name shown on /v1/models
    aliases: List[str] = field(default_factory=list)

    # Re-submit a "continue" turn when the answer is cut off by length
    auto_continue: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.name:
            raise ValueError("Model name must not be empty")
        if not isinstance(self.aliases, list) or not all(
            isinstance(alias, str) for alias in self.aliases
        ):
            raise ValueError("aliases must be a list of strings")

    @property
    def display_name(self) -> str:
        return self.public_name or self.name
