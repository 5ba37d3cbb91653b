"""Registry of supported blockchain platforms.

One instance is built at startup and passed to the services that need
it; nothing here is a module-level singleton.
"""

import logging
import os
from typing import Dict, Iterable, List, Optional

from chainaudit.domain.models.platform import PlatformDefinition

logger = logging.getLogger(__name__)

EVM_FOCUS_AREAS = ["solidity-security", "evm-patterns", "gas-optimization", "reentrancy"]
SOLANA_FOCUS_AREAS = ["rust-security", "anchor-patterns", "pda-validation", "account-model"]
CARDANO_FOCUS_AREAS = ["haskell-security", "plutus-patterns", "utxo-model", "datum-validation"]
MOVE_FOCUS_AREAS = ["move-security", "resource-patterns", "capability-security"]
DEFAULT_FOCUS_AREAS = ["general-security", "best-practices"]


def default_platforms() -> List[PlatformDefinition]:
    evm = [
        PlatformDefinition(
            id=platform_id,
            name=platform_id,
            display_name=display_name,
            languages=["solidity"],
            file_extensions=[".sol"],
            static_analyzers=["slither"],
            focus_areas=list(EVM_FOCUS_AREAS),
        )
        for platform_id, display_name in (
            ("ethereum", "Ethereum"),
            ("bsc", "BNB Smart Chain"),
            ("polygon", "Polygon"),
        )
    ]
    return evm + [
        PlatformDefinition(
            id="solana",
            name="solana",
            display_name="Solana",
            languages=["rust"],
            file_extensions=[".rs"],
            static_analyzers=["clippy"],
            focus_areas=list(SOLANA_FOCUS_AREAS),
        ),
        PlatformDefinition(
            id="cardano",
            name="cardano",
            display_name="Cardano",
            languages=["haskell", "plutus"],
            file_extensions=[".hs", ".plutus"],
            static_analyzers=["ghc", "cabal", "hlint"],
            focus_areas=list(CARDANO_FOCUS_AREAS),
        ),
        PlatformDefinition(
            id="aptos",
            name="aptos",
            display_name="Aptos",
            languages=["move"],
            file_extensions=[".move"],
            static_analyzers=["aptos"],
            focus_areas=list(MOVE_FOCUS_AREAS),
        ),
        PlatformDefinition(
            id="sui",
            name="sui",
            display_name="Sui",
            languages=["move"],
            file_extensions=[".move"],
            static_analyzers=["sui"],
            focus_areas=list(MOVE_FOCUS_AREAS),
        ),
    ]


class BlockchainRegistry:
    """Holds platform definitions and their active flags."""

    def __init__(self, platforms: Optional[Iterable[PlatformDefinition]] = None):
        self._platforms: Dict[str, PlatformDefinition] = {}
        for platform in (default_platforms() if platforms is None else platforms):
            self._platforms[platform.id] = platform
        logger.debug(f"Platform registry initialized with {list(self._platforms)}")

    def get_platform(self, platform_id: str) -> Optional[PlatformDefinition]:
        return self._platforms.get(platform_id)

    def get_all_platforms(self) -> List[PlatformDefinition]:
        return list(self._platforms.values())

    def get_active_platforms(self) -> List[PlatformDefinition]:
        return [p for p in self._platforms.values() if p.is_active]

    def is_active(self, platform_id: str) -> bool:
        platform = self._platforms.get(platform_id)
        return bool(platform and platform.is_active)

    def activate(self, platform_id: str) -> None:
        self._require(platform_id).is_active = True
        logger.info(f"Platform activated: {platform_id}")

    def deactivate(self, platform_id: str) -> None:
        self._require(platform_id).is_active = False
        logger.info(f"Platform deactivated: {platform_id}")

    def _require(self, platform_id: str) -> PlatformDefinition:
        platform = self._platforms.get(platform_id)
        if platform is None:
            raise KeyError(f"Unknown platform: {platform_id}")
        return platform

    def detect_platform(self, filename: str) -> Optional[str]:
        """Guesses the platform from the file extension.

        Extensions shared by several platforms resolve to the first active
        one registered (``.sol`` -> ethereum, ``.move`` -> aptos).
        """
        extension = os.path.splitext(filename)[1].lower()
        for platform in self.get_active_platforms():
            if extension in platform.file_extensions:
                return platform.id
        return None

    def focus_areas(self, platform_id: str) -> List[str]:
        platform = self._platforms.get(platform_id)
        if platform and platform.focus_areas:
            return list(platform.focus_areas)
        return list(DEFAULT_FOCUS_AREAS)
