"""Describes a supported blockchain platform."""

from dataclasses import dataclass, field
from typing import List


@dataclass
class PlatformDefinition:
    """Registry entry for one blockchain ecosystem."""
    id: str
    name: str
    display_name: str
    languages: List[str]
    file_extensions: List[str]
    is_active: bool = True
    static_analyzers: List[str] = field(default_factory=list)
    focus_areas: List[str] = field(default_factory=list)
