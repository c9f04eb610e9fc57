"""
Review templates and statistics for mapping recommendations.

Recommendations are exported as a plain dict a reviewer edits (setting
user_approved), imported back as approved recommendations, and frozen into an
immutable TableMigrationConfig the orchestrator consumes.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence

from ..exceptions import MappingRecommendationError
from ..models import DEFAULT_PII_COLUMNS, TableMigrationConfig, TransformationRule, ValidationRule
from ..utils import utc_now
from .pattern_store import PatternStore
from .recommendation_models import (
    DataQualityImpact, MappingRecommendation, SampleTransformation, TransformationType
)


logger = logging.getLogger(__name__)

TEMPLATE_VERSION = '1.0'

TEMPLATE_INSTRUCTIONS = [
    'Review each mapping for accuracy',
    'Modify target fields as needed',
    'Change transformation_name to another registered transformation if required',
    'Set user_approved to true for confirmed mappings',
]

# Preview-only transformations whose output is not a row value
_PREVIEW_ONLY_TRANSFORMATIONS = {'parse_medications': 'trim'}

# target_field -> (rule kind, error message)
_INFERRED_VALIDATION_RULES = {
    'resident_id': ('required', 'Resident identifier is required'),
    'nhs_number': ('nhs_number', 'Invalid NHS number'),
    'email': ('email', 'Invalid email address'),
    'phone_number': ('phone', 'Invalid UK phone number'),
    'date_of_birth': ('date', 'Invalid date of birth'),
    'admission_date': ('date', 'Invalid admission date'),
}


def export_mapping_template(recommendations: Sequence[MappingRecommendation]) -> Dict[str, Any]:
    """Export recommendations as an editable review template. Nothing is approved yet."""
    return {
        'version': TEMPLATE_VERSION,
        'generated_at': utc_now().isoformat(),
        'mapping_count': len(recommendations),
        'mappings': [
            {
                'source_field': rec.source_field,
                'target_field': rec.target_field,
                'transformation_type': rec.transformation_type,
                'transformation_logic': rec.transformation_logic,
                'transformation_name': rec.transformation_name,
                'confidence': rec.confidence,
                'validation_rules': list(rec.validation_rules),
                'user_approved': False,
                'notes': '',
            }
            for rec in recommendations
        ],
        'instructions': list(TEMPLATE_INSTRUCTIONS),
    }


def import_mapping_template(template: Dict[str, Any]) -> List[MappingRecommendation]:
    """
    Import a reviewed template.

    Only mappings marked user_approved are returned, each at confidence 1.0.

    Raises:
        MappingRecommendationError: If the template has no mappings list or an
                                    approved mapping lacks source or target field
    """
    mappings = template.get('mappings') if isinstance(template, dict) else None
    if not isinstance(mappings, list):
        raise MappingRecommendationError("Mapping template must contain a 'mappings' list")

    recommendations = []
    for index, mapping in enumerate(mappings):
        if not mapping.get('user_approved'):
            continue
        source_field = mapping.get('source_field')
        target_field = mapping.get('target_field')
        if not source_field or not target_field:
            raise MappingRecommendationError(
                f"Approved mapping {index} must have source_field and target_field")

        recommendations.append(MappingRecommendation(
            mapping_id=str(uuid.uuid4()),
            source_field=source_field,
            target_field=target_field,
            confidence=1.0,
            reasoning='User approved mapping',
            transformation_type=mapping.get('transformation_type') or TransformationType.DIRECT.value,
            transformation_logic=mapping.get('transformation_logic') or '',
            transformation_name=mapping.get('transformation_name'),
            validation_rules=list(mapping.get('validation_rules') or []),
            sample_transformation=SampleTransformation(None, None, 'User-approved transformation'),
            data_quality_impact=DataQualityImpact(1.0, 1.0, 1.0),
        ))

    logger.info(f"Imported {len(recommendations)} approved mappings out of {len(mappings)}")
    return recommendations


def get_mapping_statistics(recommendations: Sequence[MappingRecommendation],
                           pattern_store: Optional[PatternStore] = None) -> Dict[str, Any]:
    """
    Summarize a recommendation set for reviewers.

    Returns counts by confidence band and transformation type, coverage of
    clinical/administrative/demographic fields, a quality score (0-100) and advice.
    """
    store = pattern_store or PatternStore()
    total = len(recommendations)

    def coverage(context_keyword: str) -> int:
        count = 0
        for rec in recommendations:
            semantic_info = store.get_semantic_analysis(rec.target_field)
            if semantic_info and context_keyword in semantic_info.healthcare_context:
                count += 1
        return count

    stats = {
        'total_mappings': total,
        'high_confidence_mappings': len([r for r in recommendations if r.confidence > 0.9]),
        'medium_confidence_mappings': len([r for r in recommendations if 0.7 < r.confidence <= 0.9]),
        'low_confidence_mappings': len([r for r in recommendations if r.confidence <= 0.7]),
        'suggested_mappings': len([r for r in recommendations
                                   if r.transformation_type == TransformationType.SUGGESTED.value]),
        'direct_mappings': len([r for r in recommendations
                                if r.transformation_type == TransformationType.DIRECT.value]),
        'semantic_mappings': len([r for r in recommendations
                                  if r.transformation_type == TransformationType.SEMANTIC.value]),
        'average_confidence': (round(sum(r.confidence for r in recommendations) / total, 4) if total else 0.0),
        'field_coverage': {
            'clinical': coverage('clinical'),
            'administrative': coverage('administrative'),
            'demographic': coverage('demographic'),
        },
    }
    stats['quality_score'] = _quality_score(stats)
    stats['recommendations'] = _statistics_advice(stats)
    return stats


def _quality_score(stats: Dict[str, Any]) -> int:
    total = stats['total_mappings']
    if not total:
        return 0

    score = 0.0
    score += stats['high_confidence_mappings'] / total * 40
    score += stats['medium_confidence_mappings'] / total * 25
    score += stats['low_confidence_mappings'] / total * 10
    score += stats['suggested_mappings'] / total * 20

    field_coverage = stats['field_coverage']
    covered = field_coverage['clinical'] + field_coverage['administrative'] + field_coverage['demographic']
    score += min(covered / total, 1) * 15

    return int(round(min(score, 100)))


def _statistics_advice(stats: Dict[str, Any]) -> List[str]:
    advice = []
    if stats['low_confidence_mappings'] > stats['total_mappings'] * 0.3:
        advice.append('Consider manual review of low-confidence mappings')
    if stats['field_coverage']['clinical'] < 3:
        advice.append('Ensure critical clinical fields are mapped')
    if stats['average_confidence'] < 0.8:
        advice.append('Review field mappings to improve overall confidence')
    if stats['suggested_mappings'] == 0:
        advice.append('Review unmatched fields for suggested transformations')
    return advice


def freeze_table_config(recommendations: Sequence[MappingRecommendation], source_table: str,
                        target_table: str, contains_pii: bool = False, healthcare_context: str = '',
                        retention_years: int = 7, order_by: str = 'id',
                        required_targets: Sequence[str] = ('resident_id',)) -> TableMigrationConfig:
    """
    Freeze approved recommendations into an immutable TableMigrationConfig.

    Each recommendation becomes one TransformationRule in the given order, using its
    registry transformation (or 'identity'). Validation rules are inferred from the
    target field names.

    Raises:
        MappingRecommendationError: If there is nothing to freeze or a target is mapped twice
    """
    if not recommendations:
        raise MappingRecommendationError(f"No approved mappings to freeze for {source_table}")

    seen_targets = set()
    transformation_rules = []
    validation_rules = []

    for rec in recommendations:
        if rec.target_field in seen_targets:
            raise MappingRecommendationError(
                f"Target column {rec.target_field} is mapped more than once for {source_table}")
        seen_targets.add(rec.target_field)

        transformation = rec.transformation_name or 'identity'
        transformation = _PREVIEW_ONLY_TRANSFORMATIONS.get(transformation, transformation)
        transformation_rules.append(TransformationRule(
            source_column=rec.source_field,
            target_column=rec.target_field,
            transformation=transformation,
            required=rec.target_field in required_targets,
        ))

        inferred = _INFERRED_VALIDATION_RULES.get(rec.target_field)
        if inferred:
            kind, message = inferred
            validation_rules.append(ValidationRule(column=rec.target_field, rule=kind, error_message=message))

    pii_columns = tuple(column for column in DEFAULT_PII_COLUMNS if column in seen_targets)

    logger.info(f"Froze {len(transformation_rules)} mappings for {source_table} -> {target_table} "
                f"with {len(validation_rules)} validation rules")
    return TableMigrationConfig(
        source_table=source_table,
        target_table=target_table,
        transformation_rules=tuple(transformation_rules),
        validation_rules=tuple(validation_rules),
        contains_pii=contains_pii,
        healthcare_context=healthcare_context,
        retention_years=retention_years,
        order_by=order_by,
        pii_columns=pii_columns or DEFAULT_PII_COLUMNS,
    )
