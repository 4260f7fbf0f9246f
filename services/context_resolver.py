"""
Resolves the organization, project and credential for one write-back run.
"""
import logging
from typing import Optional

from models.nodes import RemoteContext
from services.errors import ConfigurationError
from src.ado_writeback_agent.config import AdoWriteBackSettings, get_settings

logger = logging.getLogger(__name__)


class ContextResolver:
    """Combines configured settings with per-request overrides."""

    def __init__(
        self,
        settings: Optional[AdoWriteBackSettings] = None,
        organization: Optional[str] = None,
        project: Optional[str] = None,
        access_token: Optional[str] = None,
        team: Optional[str] = None
    ):
        """
        Initialize resolver.

        Args:
            settings: Configured defaults (read from the environment when omitted)
            organization: Organization override (e.g. from the request body)
            project: Project override
            access_token: Bearer token override (e.g. from the Authorization header)
            team: Team override used for work item area paths
        """
        self.settings = settings
        self.organization = organization
        self.project = project
        self.access_token = access_token
        self.team = team

    def resolve(self) -> RemoteContext:
        """
        Produce the immutable context for one run.

        Returns:
            RemoteContext

        Raises:
            ConfigurationError: If credential, organization or project is unavailable
        """
        try:
            settings = self.settings or get_settings()
        except Exception as e:
            raise ConfigurationError(f"Failed to load Azure DevOps settings: {str(e)}")

        organization = _first_non_blank(self.organization, settings.organization)
        project = _first_non_blank(self.project, settings.project)
        access_token = _first_non_blank(self.access_token, settings.access_token)
        team = _first_non_blank(self.team, settings.team)

        if not access_token:
            raise ConfigurationError(
                "Could not retrieve access token. Provide a Bearer token or set ADO_ACCESS_TOKEN."
            )
        if not organization:
            raise ConfigurationError("Could not determine organization name. Set ADO_ORGANIZATION.")
        if not project:
            raise ConfigurationError("Could not determine project name. Set ADO_PROJECT.")

        logger.info(f"Resolved Azure DevOps context: org={organization}, project={project}, team={team}")
        return RemoteContext(
            organization=organization,
            project=project,
            access_token=access_token,
            team=team,
            base_url=settings.base_url,
            api_version=settings.api_version,
            timeout=settings.api_timeout
        )


def _first_non_blank(*values: Optional[str]) -> Optional[str]:
    for value in values:
        if value and value.strip():
            return value.strip()
    return None
