"""pcopeople: async client for the Planning Center People API.

Rate-limit-aware requests, person matching and dependency-aware batch
operations.
"""

from pcopeople.client import PcoClient
from pcopeople.core.exceptions import (
    BatchValidationError,
    ConfigurationError,
    MatchNotFoundError,
    PcoApiError,
    PcoClientError,
    PcoError,
    TokenRefreshError,
    UnsupportedOperationError,
)
from pcopeople.domain.models.batch import BatchOperation, BatchOptions, BatchResult, BatchSummary, Ref
from pcopeople.domain.models.common import AgePreference, MatchStrategy
from pcopeople.domain.models.matching import MatchCandidate, PersonMatchCriteria
from pcopeople.domain.models.resources import Resource, ResourceList
from pcopeople.infrastructure.config.settings import (
    OAuthAuth,
    PcoClientConfig,
    PersonalAccessTokenAuth,
    build_client_config,
)

__version__ = "0.1.0"

__all__ = [
    'PcoClient',
    'PcoClientConfig',
    'PersonalAccessTokenAuth',
    'OAuthAuth',
    'build_client_config',
    'BatchOperation',
    'BatchOptions',
    'BatchResult',
    'BatchSummary',
    'Ref',
    'PersonMatchCriteria',
    'MatchCandidate',
    'MatchStrategy',
    'AgePreference',
    'Resource',
    'ResourceList',
    'PcoClientError',
    'PcoApiError',
    'PcoError',
    'ConfigurationError',
    'TokenRefreshError',
    'BatchValidationError',
    'UnsupportedOperationError',
    'MatchNotFoundError',
]
