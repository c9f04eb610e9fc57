"""
Field mapping recommender.

Analyzes sampled source records and suggests source to target field mappings for
human review. Each populated source field is matched against the pattern library;
unmatched fields fall back to keyword semantic matching. Recommendations carry a
confidence score, a sample transformation, alternative targets and data quality
estimates, and are ranked by clinical relevance then confidence.

Reviewer feedback adjusts pattern confidence and teaches exact-match patterns.
"""

import logging
import re
import uuid
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from ..audit.events import (
    EventEmitter, BATCH_PROCESSING, LEARNING_UPDATED,
    MAPPING_ANALYSIS_COMPLETED, MAPPING_ANALYSIS_STARTED
)
from ..exceptions import MappingRecommendationError
from ..utils import ValidationUtils
from .pattern_store import PatternStore, clamp_confidence
from .recommendation_models import (
    AlternativeTarget, BatchMappingResult, DataQualityImpact, DataRelationship, FieldPattern,
    MappingDataset, MappingFeedback, MappingRecommendation, RelationshipType, SampleTransformation,
    TransformationType, RELEVANCE_SCORE
)
from .transformation_registry import TransformationRegistry, get_default_registry


ACCEPT_ADJUSTMENT = 0.05
REJECT_ADJUSTMENT = -0.1
RELATIONSHIP_BOOST = 0.05
HIGH_CONFIDENCE = 0.9

# Target field -> registry transformation used for the sample preview
TARGET_TRANSFORMATIONS = {
    'full_name': 'normalize_name',
    'first_name': 'normalize_name',
    'last_name': 'normalize_name',
    'date_of_birth': 'parse_uk_date',
    'phone_number': 'normalize_phone_uk',
    'postcode': 'normalize_postcode_uk',
    'nhs_number': 'validate_nhs_number',
    'current_medications': 'parse_medications',
}

# (keywords, target, confidence, reasoning) for fields no pattern matches
SEMANTIC_KEYWORDS = [
    (('weight', 'mass', 'kg'), 'weight', 0.75, 'Physical measurement field'),
    (('height', 'tall', 'cm'), 'height', 0.75, 'Physical measurement field'),
    (('religion', 'faith', 'belief'), 'religion', 0.80, 'Religious/spiritual preference'),
    (('language', 'speak', 'tongue'), 'preferred_language', 0.78, 'Communication preference'),
    (('social', 'worker', 'authority'), 'social_worker', 0.72, 'Social services contact'),
]

VALIDATION_RULE_DESCRIPTIONS = {
    'resident_id': ['Not null', 'Unique', 'Alphanumeric', 'Max 20 characters'],
    'nhs_number': ['Exactly 10 digits', 'Valid check digit', 'Unique'],
    'date_of_birth': ['Valid date', 'Age 18-120', 'Not future date'],
    'phone_number': ['UK format', 'Valid digits', 'Min 10 characters'],
    'postcode': ['UK postcode format', 'Valid area code'],
    'email': ['Valid email format', 'Max 255 characters'],
    'current_medications': ['Valid medication names', 'Structured format'],
    'known_allergies': ['Valid allergy types', 'No duplicates'],
    'care_level': ['Valid care level', 'One of: Low/Medium/High/Nursing'],
    'full_name': ['Not empty', 'Valid characters', 'Max 100 characters'],
    'gender': ['Valid gender', 'One of: male/female/other/prefer_not_to_say'],
}
DEFAULT_VALIDATION_RULE_DESCRIPTIONS = ['Not empty', 'Valid format']

MEDICAL_TARGETS = ('current_medications', 'known_allergies', 'medical_history')

_VALUE_FORMATS = [
    ('iso_date', re.compile(r'^\d{4}-\d{2}-\d{2}')),
    ('uk_date', re.compile(r'^\d{1,2}/\d{1,2}/\d{4}$')),
    ('email', re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')),
    ('numeric', re.compile(r'^[+-]?\d+$')),
    ('decimal', re.compile(r'^[+-]?\d*\.\d+$')),
    ('alpha', re.compile(r'^[A-Za-z][A-Za-z\s\'\-]*$')),
    ('alphanumeric', re.compile(r'^[A-Za-z0-9][A-Za-z0-9\s\'\-]*$')),
]


def infer_value_format(value: Any) -> str:
    """Coarse format class of one sampled value."""
    if hasattr(value, 'isoformat'):
        return 'iso_date'
    if isinstance(value, bool):
        return 'boolean'
    if isinstance(value, int):
        return 'numeric'
    if isinstance(value, float):
        return 'decimal'
    text = str(value).strip()
    for name, regex in _VALUE_FORMATS:
        if regex.match(text):
            return name
    return 'other'


class FieldMappingRecommender:
    """
    Generates ranked, confidence-scored field mapping recommendations.

    The pattern store is the only mutable state and is guarded by its own lock,
    so recommendations and feedback learning may run on different threads.
    """

    def __init__(self, pattern_store: Optional[PatternStore] = None,
                 registry: Optional[TransformationRegistry] = None,
                 event_emitter: Optional[EventEmitter] = None):
        """
        Initialize the recommender.

        Args:
            pattern_store: Pattern library and semantic rules; defaults to the built-in library
            registry: Transformation registry used for sample previews
            event_emitter: Receives mapping lifecycle events
        """
        self.logger = logging.getLogger(__name__)
        self.pattern_store = pattern_store or PatternStore()
        self.registry = registry or get_default_registry()
        self.events = event_emitter or EventEmitter()

    def generate_mapping_recommendations(self, source_data: Sequence[Dict[str, Any]],
                                         target_schema: Optional[Union[Iterable[str], Dict[str, Any]]] = None,
                                         context: Optional[Dict[str, Any]] = None) -> List[MappingRecommendation]:
        """
        Recommend target fields for every populated source field.

        Args:
            source_data: Sampled source records
            target_schema: Optional target field names (or a mapping keyed by them); only
                           these targets are recommended when given
            context: Optional caller context (source system, migration purpose), echoed on events

        Returns:
            Recommendations sorted by clinical relevance, then confidence (both descending)

        Raises:
            MappingRecommendationError: If the sample is not a sequence of records
        """
        if not source_data:
            return []
        if isinstance(source_data, (str, bytes, dict)) or not all(isinstance(r, dict) for r in source_data):
            raise MappingRecommendationError("source_data must be a sequence of records (dicts)")

        allowed_targets = set(target_schema) if target_schema is not None else None
        source_fields = self._collect_fields(source_data)

        self.events.emit(MAPPING_ANALYSIS_STARTED, {
            'field_count': len(source_fields),
            'record_count': len(source_data),
            'context': context,
        })

        recommendations = []
        for source_field in source_fields:
            recommendation = self._analyze_field(source_field, source_data, allowed_targets)
            if recommendation:
                recommendations.append(recommendation)

        relationships = self.detect_relationships(recommendations)
        self._enhance_with_relationships(recommendations, relationships)

        recommendations.sort(key=lambda r: (-self._relevance_score(r.target_field), -r.confidence))

        high_confidence_count = len([r for r in recommendations if r.confidence > HIGH_CONFIDENCE])
        self.events.emit(MAPPING_ANALYSIS_COMPLETED, {
            'recommendation_count': len(recommendations),
            'high_confidence_count': high_confidence_count,
        })
        self.logger.info(f"Generated {len(recommendations)} mapping recommendations for "
                         f"{len(source_fields)} source fields ({high_confidence_count} high confidence)")
        return recommendations

    def detect_relationships(self, recommendations: List[MappingRecommendation]) -> List[DataRelationship]:
        """
        Detect relationships between recommended targets.

        A resident identifier relates one-to-many to contact/next-of-kin fields and
        one-to-one to medical fields.
        """
        relationships: List[DataRelationship] = []
        has_resident_id = any(r.target_field == 'resident_id' for r in recommendations)
        if not has_resident_id:
            return relationships

        for recommendation in recommendations:
            target = recommendation.target_field
            if 'contact' in target or 'kin' in target:
                relationships.append(DataRelationship(
                    primary_field='resident_id',
                    related_field=target,
                    relationship_type=RelationshipType.ONE_TO_MANY.value,
                    confidence=0.85,
                    description='Resident can have multiple emergency contacts',
                ))
            elif target in MEDICAL_TARGETS:
                relationships.append(DataRelationship(
                    primary_field='resident_id',
                    related_field=target,
                    relationship_type=RelationshipType.ONE_TO_ONE.value,
                    confidence=0.90,
                    description='Medical information belongs to specific resident',
                ))
        return relationships

    def learn_from_feedback(self, feedback: MappingFeedback) -> None:
        """
        Apply reviewer feedback to the pattern store.

        Accepted: the matching pattern gains 0.05 confidence (cap 1.0).
        Rejected: it loses 0.1 (floor 0.1); a reviewer-selected target is learned as an
        exact-match pattern at 0.7.
        """
        with self.pattern_store.lock:
            if feedback.accepted:
                self.pattern_store.adjust_confidence(
                    feedback.source_field, feedback.original_recommendation, ACCEPT_ADJUSTMENT)
            else:
                self.pattern_store.adjust_confidence(
                    feedback.source_field, feedback.original_recommendation, REJECT_ADJUSTMENT)
                if feedback.user_selected_target:
                    self.pattern_store.add_or_update_learned_pattern(
                        feedback.source_field,
                        feedback.user_selected_target,
                        feedback.user_reasoning or 'User preference',
                    )

        self.events.emit(LEARNING_UPDATED, {
            'source_field': feedback.source_field,
            'accepted': feedback.accepted,
            'new_target': feedback.user_selected_target,
        })

    def batch_generate_mappings(self, datasets: Sequence[Union[MappingDataset, Dict[str, Any]]]) -> BatchMappingResult:
        """
        Generate recommendations for several datasets independently.

        A failing dataset records its error and does not affect the others.
        """
        result = BatchMappingResult()
        for dataset in datasets:
            if isinstance(dataset, dict):
                dataset = MappingDataset(name=dataset['name'], data=dataset.get('data') or [],
                                         context=dataset.get('context'))

            self.events.emit(BATCH_PROCESSING, {
                'dataset_name': dataset.name,
                'record_count': len(dataset.data) if hasattr(dataset.data, '__len__') else None,
            })
            try:
                result.results[dataset.name] = self.generate_mapping_recommendations(
                    dataset.data, None, dataset.context)
            except Exception as e:
                self.logger.error(f"Mapping analysis failed for dataset {dataset.name}: {e}")
                result.errors[dataset.name] = str(e)
        return result

    def get_validation_rule_descriptions(self, target_field: str) -> List[str]:
        return list(VALIDATION_RULE_DESCRIPTIONS.get(target_field, DEFAULT_VALIDATION_RULE_DESCRIPTIONS))

    def _collect_fields(self, source_data: Sequence[Dict[str, Any]]) -> List[str]:
        """Union of keys across the sample, in first-seen order."""
        seen: Dict[str, None] = {}
        for record in source_data:
            for key in record:
                seen.setdefault(key, None)
        return list(seen)

    def _analyze_field(self, source_field: str, source_data: Sequence[Dict[str, Any]],
                       allowed_targets: Optional[set]) -> Optional[MappingRecommendation]:
        field_values = [record.get(source_field) for record in source_data]
        populated_values = [value for value in field_values if not ValidationUtils.is_empty(value)]
        if not populated_values:
            return None

        pattern = self._select_pattern(source_field, allowed_targets)
        if pattern:
            return self._recommendation_from_pattern(source_field, pattern, field_values,
                                                     populated_values, allowed_targets)
        return self._semantic_recommendation(source_field, field_values, populated_values, allowed_targets)

    def _select_pattern(self, source_field: str, allowed_targets: Optional[set]) -> Optional[FieldPattern]:
        if allowed_targets is None:
            return self.pattern_store.find_best_match(source_field)
        best_match = None
        for pattern in self.pattern_store.matching_patterns(source_field):
            if pattern.target_field not in allowed_targets:
                continue
            if best_match is None or (pattern.learned and not best_match.learned) or (
                    pattern.learned == best_match.learned and pattern.confidence > best_match.confidence):
                best_match = pattern
        return best_match

    def _recommendation_from_pattern(self, source_field: str, pattern: FieldPattern, field_values: List[Any],
                                     populated_values: List[Any],
                                     allowed_targets: Optional[set]) -> MappingRecommendation:
        sample_value = populated_values[0]
        transformation_name = TARGET_TRANSFORMATIONS.get(pattern.target_field)
        sample_output = sample_value
        explanation = 'Direct mapping'

        if transformation_name and self.registry.has(transformation_name):
            try:
                sample_output = self.registry.get(transformation_name)(sample_value)
                explanation = f"Transformed using {pattern.transformation_hint}"
            except Exception as e:
                explanation = f"Transformation needed: {e}"
        else:
            transformation_name = None

        return MappingRecommendation(
            mapping_id=str(uuid.uuid4()),
            source_field=source_field,
            target_field=pattern.target_field,
            confidence=pattern.confidence,
            reasoning=f"Pattern match: {pattern.context}",
            transformation_type=(TransformationType.SUGGESTED.value if transformation_name
                                 else TransformationType.DIRECT.value),
            transformation_logic=pattern.transformation_hint,
            transformation_name=transformation_name,
            validation_rules=self.get_validation_rule_descriptions(pattern.target_field),
            sample_transformation=SampleTransformation(sample_value, sample_output, explanation),
            alternative_targets=self._alternative_targets(source_field, pattern.target_field, allowed_targets),
            data_quality_impact=self._assess_quality_impact(field_values, populated_values, pattern.target_field),
        )

    def _semantic_recommendation(self, source_field: str, field_values: List[Any], populated_values: List[Any],
                                 allowed_targets: Optional[set]) -> Optional[MappingRecommendation]:
        field_lower = source_field.lower()
        sample_value = populated_values[0]

        for keywords, target, confidence, reasoning in SEMANTIC_KEYWORDS:
            if allowed_targets is not None and target not in allowed_targets:
                continue
            if any(keyword in field_lower for keyword in keywords):
                return MappingRecommendation(
                    mapping_id=str(uuid.uuid4()),
                    source_field=source_field,
                    target_field=target,
                    confidence=confidence,
                    reasoning=reasoning,
                    transformation_type=TransformationType.SEMANTIC.value,
                    transformation_logic='Semantic field analysis with healthcare context',
                    validation_rules=self.get_validation_rule_descriptions(target),
                    sample_transformation=SampleTransformation(sample_value, sample_value,
                                                               'Direct semantic mapping'),
                    data_quality_impact=self._assess_quality_impact(field_values, populated_values, target),
                )

        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"No mapping found for source field '{source_field}'")
        return None

    def _alternative_targets(self, source_field: str, primary_target: str,
                             allowed_targets: Optional[set]) -> List[AlternativeTarget]:
        alternatives: List[AlternativeTarget] = []
        field_lower = source_field.lower()

        if 'name' in field_lower and primary_target == 'full_name':
            alternatives.append(AlternativeTarget('first_name', 0.7, 'Could be first name only'))
            alternatives.append(AlternativeTarget('last_name', 0.6, 'Could be surname only'))
        if 'date' in field_lower and primary_target == 'date_of_birth':
            alternatives.append(AlternativeTarget('admission_date', 0.4, 'Could be admission date'))
            alternatives.append(AlternativeTarget('assessment_date', 0.3, 'Could be assessment date'))
        if ('contact' in field_lower or 'phone' in field_lower) and primary_target == 'phone_number':
            alternatives.append(AlternativeTarget('emergency_contact_phone', 0.6, 'Could be emergency contact'))
            alternatives.append(AlternativeTarget('gp_phone', 0.4, 'Could be GP contact'))

        # Other patterns matching the same field
        known = {primary_target} | {alt.field for alt in alternatives}
        for pattern in self.pattern_store.matching_patterns(source_field):
            if pattern.target_field not in known:
                alternatives.append(AlternativeTarget(pattern.target_field, pattern.confidence, pattern.context))
                known.add(pattern.target_field)

        if allowed_targets is not None:
            alternatives = [alt for alt in alternatives if alt.field in allowed_targets]
        alternatives.sort(key=lambda alt: -alt.confidence)
        return alternatives

    def _assess_quality_impact(self, field_values: List[Any], populated_values: List[Any],
                               target_field: str) -> DataQualityImpact:
        completeness = len(populated_values) / len(field_values) if field_values else 0.0

        accuracy = 0.9
        semantic_info = self.pattern_store.get_semantic_analysis(target_field)
        if semantic_info and semantic_info.clinical_relevance == 'high':
            # Clinical fields are held to a higher standard
            accuracy = 0.95 if completeness > 0.95 else completeness * 0.9

        formats = {infer_value_format(value) for value in populated_values}
        consistency = 1.0 / len(formats) if formats else 1.0

        return DataQualityImpact(
            completeness=round(completeness, 2),
            accuracy=round(accuracy, 2),
            consistency=round(consistency, 2),
        )

    def _enhance_with_relationships(self, recommendations: List[MappingRecommendation],
                                    relationships: List[DataRelationship]) -> None:
        for recommendation in recommendations:
            related = [r for r in relationships
                       if recommendation.target_field in (r.primary_field, r.related_field)]
            if related:
                recommendation.reasoning += f" (Related to {len(related)} other field(s))"
                recommendation.confidence = min(clamp_confidence(recommendation.confidence + RELATIONSHIP_BOOST), 1.0)

    def _relevance_score(self, target_field: str) -> int:
        semantic_info = self.pattern_store.get_semantic_analysis(target_field)
        relevance = semantic_info.clinical_relevance if semantic_info else 'low'
        return RELEVANCE_SCORE.get(relevance, 1)
