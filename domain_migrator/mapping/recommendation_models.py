"""
Data models for field mapping recommendations.

FieldPattern and SemanticAnalysis form the recommender's knowledge base; the
MappingRecommendation is what a reviewer sees, edits and approves before it is
frozen into a TableMigrationConfig.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class TransformationType(Enum):
    """How a recommendation was derived."""
    DIRECT = "direct"  # pattern match, value copied as is
    SUGGESTED = "suggested"  # pattern match with a named transformation
    SEMANTIC = "semantic"  # keyword fallback


class ClinicalRelevance(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RelationshipType(Enum):
    ONE_TO_ONE = "one_to_one"
    ONE_TO_MANY = "one_to_many"
    MANY_TO_ONE = "many_to_one"
    HIERARCHICAL = "hierarchical"


RELEVANCE_SCORE = {
    ClinicalRelevance.HIGH.value: 3,
    ClinicalRelevance.MEDIUM.value: 2,
    ClinicalRelevance.LOW.value: 1,
}


@dataclass
class FieldPattern:
    """
    Regex over source field names suggesting a target field.

    Attributes:
        pattern: Regular expression matched case-insensitively against the whole field name
        target_field: Suggested target field
        confidence: Match confidence in [0.1, 1.0]
        context: Human readable meaning of the target
        transformation_hint: Description of the transformation applied
        learned: True for exact-match patterns learned from reviewer feedback
    """
    pattern: str
    target_field: str
    confidence: float
    context: str
    transformation_hint: str
    learned: bool = False
    _compiled: Any = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        if not self.pattern:
            raise ValueError("pattern cannot be empty")
        if not self.target_field:
            raise ValueError("target_field cannot be empty")
        self._compiled = re.compile(self.pattern, re.IGNORECASE)

    def matches(self, source_field: str) -> bool:
        return self._compiled.search(source_field) is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pattern': self.pattern,
            'target_field': self.target_field,
            'confidence': self.confidence,
            'context': self.context,
            'transformation_hint': self.transformation_hint,
            'learned': self.learned,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FieldPattern':
        return cls(
            pattern=data['pattern'],
            target_field=data['target_field'],
            confidence=float(data['confidence']),
            context=data.get('context', ''),
            transformation_hint=data.get('transformation_hint', ''),
            learned=bool(data.get('learned', False)),
        )


@dataclass
class SemanticAnalysis:
    """Healthcare semantics of one target field."""
    field: str
    semantic_category: str
    healthcare_context: str
    clinical_relevance: str
    regulatory_importance: str
    data_classification: str
    gdpr_category: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'field': self.field,
            'semantic_category': self.semantic_category,
            'healthcare_context': self.healthcare_context,
            'clinical_relevance': self.clinical_relevance,
            'regulatory_importance': self.regulatory_importance,
            'data_classification': self.data_classification,
            'gdpr_category': self.gdpr_category,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SemanticAnalysis':
        return cls(**{key: data[key] for key in (
            'field', 'semantic_category', 'healthcare_context', 'clinical_relevance',
            'regulatory_importance', 'data_classification', 'gdpr_category')})


@dataclass
class DataRelationship:
    """Relationship detected between two recommended target fields."""
    primary_field: str
    related_field: str
    relationship_type: str
    confidence: float
    description: str


@dataclass
class AlternativeTarget:
    field: str
    confidence: float
    reasoning: str


@dataclass
class SampleTransformation:
    """One sampled value before and after the suggested transformation."""
    input: Any
    output: Any
    explanation: str


@dataclass
class DataQualityImpact:
    """Sample quality estimates, each rounded to 2 decimals."""
    completeness: float
    accuracy: float
    consistency: float


@dataclass
class MappingRecommendation:
    """
    Suggested source to target field mapping awaiting human review.

    Attributes:
        mapping_id: Unique identifier used in feedback
        source_field: Field in the sampled source records
        target_field: Suggested target column
        confidence: Confidence in [0, 1]
        reasoning: Why the mapping was suggested
        transformation_type: direct, suggested or semantic
        transformation_logic: Description of the transformation
        transformation_name: Registry transformation applied, if any
        validation_rules: Human readable validation rule descriptions
        sample_transformation: One sampled value before and after transformation
        alternative_targets: Other plausible targets with lower confidence
        data_quality_impact: Completeness, accuracy and consistency estimates
    """
    mapping_id: str
    source_field: str
    target_field: str
    confidence: float
    reasoning: str
    transformation_type: str
    transformation_logic: str
    validation_rules: List[str]
    sample_transformation: SampleTransformation
    data_quality_impact: DataQualityImpact
    alternative_targets: List[AlternativeTarget] = field(default_factory=list)
    transformation_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mapping_id': self.mapping_id,
            'source_field': self.source_field,
            'target_field': self.target_field,
            'confidence': self.confidence,
            'reasoning': self.reasoning,
            'transformation_type': self.transformation_type,
            'transformation_logic': self.transformation_logic,
            'transformation_name': self.transformation_name,
            'validation_rules': list(self.validation_rules),
            'sample_transformation': {
                'input': _jsonable(self.sample_transformation.input),
                'output': _jsonable(self.sample_transformation.output),
                'explanation': self.sample_transformation.explanation,
            },
            'alternative_targets': [
                {'field': alt.field, 'confidence': alt.confidence, 'reasoning': alt.reasoning}
                for alt in self.alternative_targets
            ],
            'data_quality_impact': {
                'completeness': self.data_quality_impact.completeness,
                'accuracy': self.data_quality_impact.accuracy,
                'consistency': self.data_quality_impact.consistency,
            },
        }


@dataclass
class MappingFeedback:
    """
    Reviewer feedback on one recommendation.

    Attributes:
        mapping_id: Recommendation the feedback refers to
        accepted: Whether the reviewer accepted the suggested target
        source_field: Source field of the recommendation
        original_recommendation: Target field that was suggested
        user_selected_target: Target chosen instead, when rejected
        user_reasoning: Reviewer's reason, stored as the learned pattern's context
    """
    mapping_id: str
    accepted: bool
    source_field: str
    original_recommendation: str
    user_selected_target: Optional[str] = None
    user_reasoning: Optional[str] = None


@dataclass
class MappingDataset:
    """Named sample submitted to batch recommendation."""
    name: str
    data: List[Dict[str, Any]]
    context: Optional[Dict[str, Any]] = None


@dataclass
class BatchMappingResult:
    """Per-dataset recommendations and per-dataset errors of a batch run."""
    results: Dict[str, List[MappingRecommendation]] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)


def _jsonable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return str(value)
