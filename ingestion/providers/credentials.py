"""
Provider credential lookup.

Issuance, encryption and rotation of credentials live outside this
service; the import pipeline only resolves them by reference.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional
from pydantic import BaseModel
from core.config import settings
from schemas.imports import LeagueRef


class EspnCredentials(BaseModel):
    """ESPN private-league cookies"""
    swid: str
    espn_s2: str

    @property
    def cookie_header(self) -> str:
        swid = self.swid if self.swid.startswith("{") else f"{{{self.swid}}}"
        return f"SWID={swid}; espn_s2={self.espn_s2}"

    def __repr__(self) -> str:
        return "EspnCredentials(swid=***, espn_s2=***)"


class CredentialStore(ABC):
    """Resolves provider credentials for a league"""

    @abstractmethod
    async def get_credentials(self, league: LeagueRef) -> Optional[EspnCredentials]:
        """Return credentials, or None when the league has none"""
        pass


class SettingsCredentialStore(CredentialStore):
    """Single set of credentials from ESPN_SWID / ESPN_S2"""

    async def get_credentials(self, league: LeagueRef) -> Optional[EspnCredentials]:
        if not settings.ESPN_SWID or not settings.ESPN_S2:
            return None
        return EspnCredentials(swid=settings.ESPN_SWID, espn_s2=settings.ESPN_S2)


class StaticCredentialStore(CredentialStore):
    """Credentials keyed by credentials_ref, with an optional default"""

    def __init__(
        self,
        credentials: Optional[Dict[str, EspnCredentials]] = None,
        default: Optional[EspnCredentials] = None
    ):
        self.credentials = dict(credentials or {})
        self.default = default

    async def get_credentials(self, league: LeagueRef) -> Optional[EspnCredentials]:
        if league.credentials_ref and league.credentials_ref in self.credentials:
            return self.credentials[league.credentials_ref]
        return self.default
