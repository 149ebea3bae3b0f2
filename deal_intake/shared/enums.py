"""Common enumerations used across the application."""
from enum import Enum


class Role(str, Enum):
    """Side of the transaction a party belongs to."""
    SELLER = "seller"
    BUYER = "buyer"


class PersonType(str, Enum):
    """Type of legal entity for a transaction party."""
    INDIVIDUAL = "individual"
    ENTITY = "entity"


class MaritalState(str, Enum):
    """Civil state of an individual party."""
    SINGLE = "single"
    MARRIED = "married"
    CIVIL_UNION = "civil_union"
    DIVORCED = "divorced"
    WIDOWED = "widowed"
    SEPARATED = "separated"


# Marital states that require a spouse entry next to the principal
QUALIFYING_MARITAL_STATES = frozenset({MaritalState.MARRIED, MaritalState.CIVIL_UNION})


class PropertyRegime(str, Enum):
    """Matrimonial property regime shared by a principal and its spouse."""
    PARTIAL_COMMUNION = "partial_communion"
    UNIVERSAL_COMMUNION = "universal_communion"
    TOTAL_SEPARATION = "total_separation"
    FINAL_PARTICIPATION = "final_participation"


DEFAULT_PROPERTY_REGIME = PropertyRegime.PARTIAL_COMMUNION


class ArtifactCategory(str, Enum):
    """Checklist section an uploaded artifact is filed under."""
    BUYERS = "buyers"
    SELLERS = "sellers"
    PROPERTY = "property"


ROLE_CATEGORY = {
    Role.SELLER: ArtifactCategory.SELLERS,
    Role.BUYER: ArtifactCategory.BUYERS,
}


class RequirementScope(str, Enum):
    """Which party of a couple a document requirement applies to."""
    PRINCIPAL = "principal"
    SPOUSE = "spouse"


class RecognitionStatus(str, Enum):
    """Lifecycle of an artifact inside the recognition (OCR) service."""
    IDLE = "idle"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_RECOGNITION_STATUSES = frozenset({RecognitionStatus.COMPLETED, RecognitionStatus.ERROR})


class RequirementStatus(str, Enum):
    """Aggregate status of a requirement slot for one party."""
    EMPTY = "empty"
    PENDING = "pending"
    ERROR = "error"
    SATISFIED = "satisfied"


class Complexity(str, Enum):
    """Complexity rating reported by the requirement catalog."""
    LOW = "low"
    MEDIUM = "medium"
    MEDIUM_HIGH = "medium_high"
    HIGH = "high"
    VERY_HIGH = "very_high"

    @property
    def rank(self) -> int:
        return _COMPLEXITY_RANK[self]


_COMPLEXITY_RANK = {c: i for i, c in enumerate(Complexity)}
