"""Read-only project lore used as a cross-reference signal for risk scoring."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class LoreCharacter(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    aliases: list[str] = Field(default_factory=list)
    bio: str = ""
    attributes: dict[str, str] = Field(default_factory=dict)
    is_protagonist: bool = False


class LoreContext(BaseModel):
    """Character bios, world rules and out-of-setting terms."""

    model_config = ConfigDict(frozen=True)

    characters: list[LoreCharacter] = Field(default_factory=list)
    world_rules: list[str] = Field(default_factory=list)
    anachronisms: list[str] = Field(default_factory=list)

    def protagonists(self) -> list[LoreCharacter]:
        return [c for c in self.characters if c.is_protagonist]
