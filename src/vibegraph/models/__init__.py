"""Models domain — entities, profiles and classification results."""

from vibegraph.models.classification import ClassificationEnvelope
from vibegraph.models.classification import ClassificationResult
from vibegraph.models.classification import IndividualResult
from vibegraph.models.classification import OrganizationResult
from vibegraph.models.classification import RawClassification
from vibegraph.models.classification import ResultSource
from vibegraph.models.classification import SpamResult
from vibegraph.models.connections import MatchSource
from vibegraph.models.connections import MutualConnection
from vibegraph.models.connections import MutualType
from vibegraph.models.connections import OrganizationMember
from vibegraph.models.connections import OrgConnection
from vibegraph.models.entities import AFFILIATION_EDGE_TYPES
from vibegraph.models.entities import Classification
from vibegraph.models.entities import Department
from vibegraph.models.entities import EdgeType
from vibegraph.models.entities import Entity
from vibegraph.models.entities import INDIVIDUAL_FIELDS
from vibegraph.models.entities import ORGANIZATION_FIELDS
from vibegraph.models.entities import OrgType
from vibegraph.models.entities import TRACKED_PROFILE_FIELDS
from vibegraph.models.entities import Web3Focus
from vibegraph.models.entities import foreign_category_fields
from vibegraph.models.entities import normalize_handle
from vibegraph.models.profiles import Profile
from vibegraph.models.profiles import ProfilePage
from vibegraph.models.profiles import VerificationInfo

__all__ = [
    "AFFILIATION_EDGE_TYPES",
    "Classification",
    "ClassificationEnvelope",
    "ClassificationResult",
    "Department",
    "EdgeType",
    "Entity",
    "INDIVIDUAL_FIELDS",
    "IndividualResult",
    "MatchSource",
    "MutualConnection",
    "MutualType",
    "ORGANIZATION_FIELDS",
    "OrgConnection",
    "OrgType",
    "OrganizationMember",
    "OrganizationResult",
    "Profile",
    "ProfilePage",
    "RawClassification",
    "ResultSource",
    "SpamResult",
    "TRACKED_PROFILE_FIELDS",
    "VerificationInfo",
    "Web3Focus",
    "foreign_category_fields",
    "normalize_handle",
]
