"""Interface for presenting analysis output to the user.

Defines the contract for displaying results, health data, errors and
warnings, allowing different UI implementations (console, JSON, ...).
"""

import abc
from typing import Any, Dict, List

from ..models.contract import AnalysisResult


class UserInterface(abc.ABC):
    """Abstract Base Class for user interaction."""

    @abc.abstractmethod
    def display_analysis_result(self, result: AnalysisResult, platform: str) -> None:
        """Renders the findings, errors and warnings of one analysis."""
        pass

    @abc.abstractmethod
    def display_health_summary(self, summary: Dict[str, Any]) -> None:
        """Renders the aggregate platform health summary."""
        pass

    @abc.abstractmethod
    def display_validation(self, platform: str, report: Dict[str, Any]) -> None:
        """Renders an analyzer readiness report (valid, issues, recommendations)."""
        pass

    @abc.abstractmethod
    def display_platforms(self, platforms: List[Dict[str, Any]]) -> None:
        """Renders the supported platform table."""
        pass

    @abc.abstractmethod
    def display_error(self, error_message: str, **kwargs: Any) -> None:
        """Displays an error message to the user.

        Args:
            error_message: The error message string.
            **kwargs: Additional arguments for formatting.
        """
        pass

    @abc.abstractmethod
    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        """Displays a warning message to the user."""
        pass

    @abc.abstractmethod
    def display_info(self, info_message: str, **kwargs: Any) -> None:
        """Displays an informational message to the user."""
        pass
