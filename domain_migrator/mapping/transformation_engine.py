"""
Row transformation for migration batches.

TransformationEngine converts one source row into one target-shaped row by applying
an ordered list of TransformationRules, then stamps the provenance columns used by
rollback. A failure fails only the record being transformed.
"""

import logging
from datetime import datetime
from typing import Callable, Optional, Sequence

from ..interfaces import TransformationEngineInterface
from ..models import Row, ROW_VALUE_TYPES, TransformationRule
from ..exceptions import TransformationError
from ..utils import utc_now
from .transformation_registry import TransformationRegistry, get_default_registry


CREATED_AT_COLUMN = 'created_at'
MIGRATION_SOURCE_COLUMN = 'migration_source'


class TransformationEngine(TransformationEngineInterface):
    """
    Applies TransformationRules in declared order to one source row.

    For each rule:
    - null/missing value on a required rule fails the record (TransformationError naming the column)
    - null/missing value on an optional rule writes None
    - otherwise the rule's transformation chain is applied and the result written

    Output values must belong to the Row variant set (str, int, float, Decimal, bool,
    date, datetime, None). Every output row carries created_at (UTC) and
    migration_source = provenance_marker.
    """

    def __init__(self, provenance_marker: str = "monolith",
                 registry: Optional[TransformationRegistry] = None,
                 clock: Callable[[], datetime] = utc_now):
        """
        Initialize the transformation engine.

        Args:
            provenance_marker: Value stamped into migration_source
            registry: Transformation registry; the shared built-in registry when None
            clock: Source of the created_at timestamp
        """
        self.logger = logging.getLogger(__name__)
        self.provenance_marker = provenance_marker
        self.registry = registry or get_default_registry()
        self._clock = clock

    def transform_record(self, source_row: Row, rules: Sequence[TransformationRule]) -> Row:
        """
        Transform one source row.

        Args:
            source_row: Row read from the source table
            rules: Field rules applied in declared order

        Returns:
            Target row

        Raises:
            TransformationError: Missing required value, failing transformation, or unsupported output type
        """
        record_id = source_row.get('id')
        target_row: Row = {}

        for rule in rules:
            source_value = source_row.get(rule.source_column)

            if source_value is None:
                if rule.required:
                    raise TransformationError(
                        f"{rule.target_column}: required source column '{rule.source_column}' is missing or null",
                        column=rule.target_column,
                        source_value=None,
                        transformation=rule.transformation,
                        source_record_id=str(record_id) if record_id is not None else None,
                    )
                target_row[rule.target_column] = None
                continue

            target_row[rule.target_column] = self._apply_rule(rule, source_value, record_id)

        target_row[CREATED_AT_COLUMN] = self._clock()
        target_row[MIGRATION_SOURCE_COLUMN] = self.provenance_marker
        return target_row

    def _apply_rule(self, rule: TransformationRule, source_value, record_id):
        chain = rule.transformation_chain
        current_value = source_value

        for step in chain:
            if self.logger.isEnabledFor(logging.DEBUG):
                self.logger.debug(f"Applying '{step}' for {rule.target_column} to value: {current_value!r}")
            try:
                current_value = self.registry.get(step)(current_value)
            except Exception as e:
                raise TransformationError(
                    f"{rule.target_column}: transformation '{step}' failed for value '{current_value}': {e}",
                    column=rule.target_column,
                    source_value=source_value,
                    transformation=step,
                    source_record_id=str(record_id) if record_id is not None else None,
                ) from e
            if current_value is None:
                break

        if current_value is None and rule.required:
            raise TransformationError(
                f"{rule.target_column}: required value became empty after '{rule.transformation}'",
                column=rule.target_column,
                source_value=source_value,
                transformation=rule.transformation,
                source_record_id=str(record_id) if record_id is not None else None,
            )

        if not isinstance(current_value, ROW_VALUE_TYPES):
            raise TransformationError(
                f"{rule.target_column}: transformation '{rule.transformation}' produced unsupported "
                f"value type {type(current_value).__name__}",
                column=rule.target_column,
                source_value=source_value,
                transformation=rule.transformation,
                source_record_id=str(record_id) if record_id is not None else None,
            )

        return current_value
