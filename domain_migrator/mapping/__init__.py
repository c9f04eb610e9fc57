"""
Field mapping components.

- FieldMappingRecommender: confidence-scored source to target field suggestions
- PatternStore: pattern library and semantic rules, learnable from feedback
- mapping_template: review template export/import, statistics, freezing to TableMigrationConfig
- TransformationRegistry: named value transformations referenced from configuration
- TransformationEngine: applies approved field rules to source rows
"""

from .mapping_template import (
    export_mapping_template, freeze_table_config, get_mapping_statistics, import_mapping_template
)
from .pattern_store import PatternStore
from .recommendation_models import (
    FieldPattern, MappingDataset, MappingFeedback, MappingRecommendation, SemanticAnalysis
)
from .recommender import FieldMappingRecommender
from .transformation_engine import TransformationEngine
from .transformation_registry import TransformationRegistry, get_default_registry

__all__ = [
    'FieldMappingRecommender',
    'FieldPattern',
    'MappingDataset',
    'MappingFeedback',
    'MappingRecommendation',
    'PatternStore',
    'SemanticAnalysis',
    'TransformationEngine',
    'TransformationRegistry',
    'export_mapping_template',
    'freeze_table_config',
    'get_default_registry',
    'get_mapping_statistics',
    'import_mapping_template',
]
