"""
Pattern store for the field mapping recommender.

Holds the ordered FieldPattern library and the SemanticAnalysis rules. All reads and
writes go through one re-entrant lock, so feedback learning can run while other
threads generate recommendations. The store can be snapshotted, restored and
persisted as JSON so learned patterns survive restarts.
"""

import copy
import json
import logging
import re
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..exceptions import ConfigurationError
from .recommendation_models import FieldPattern, SemanticAnalysis


MIN_CONFIDENCE = 0.1
MAX_CONFIDENCE = 1.0
LEARNED_PATTERN_CONFIDENCE = 0.7
SNAPSHOT_VERSION = 1


# (pattern, target_field, confidence, context, transformation_hint)
DEFAULT_FIELD_PATTERNS = [
    # Resident identification
    (r'^(patient|resident|client|service_user)_?(id|ref|number)$', 'resident_id', 0.95,
     'Primary identifier for care recipient', 'Ensure uniqueness and format consistency'),
    (r'^nhs_?(number|no)$', 'nhs_number', 0.98,
     'NHS unique patient identifier', 'Validate 10-digit format and check digit'),

    # Personal information
    (r'^(full_?name|patient_?name|client_?name)$', 'full_name', 0.92,
     'Complete name of care recipient', 'Standardize capitalization and format'),
    (r'^(first_?name|given_?name|forename)$', 'first_name', 0.94,
     'First/given name', 'Proper case formatting'),
    (r'^(last_?name|surname|family_?name)$', 'last_name', 0.94,
     'Family/surname', 'Proper case formatting'),
    (r'^(dob|date_?of_?birth|birth_?date)$', 'date_of_birth', 0.96,
     'Date of birth', 'Parse multiple date formats, validate age range'),
    (r'^(gender|sex)$', 'gender', 0.90,
     'Gender identity', 'Standardize to male/female/other/prefer_not_to_say'),

    # Contact information
    (r'^(phone|telephone|mobile|contact_?number)$', 'phone_number', 0.88,
     'Primary contact number', 'Normalize to UK format with +44 prefix'),
    (r'^(email|email_?address)$', 'email', 0.92,
     'Email address', 'Validate format and normalize case'),
    (r'^(address|home_?address|residential_?address)$', 'address', 0.85,
     'Home/residential address', 'Standardize address format'),
    (r'^(post_?code|postal_?code|zip)$', 'postcode', 0.90,
     'UK postcode', 'Validate UK postcode format and normalize spacing'),

    # Medical information
    (r'^(medications?|current_?medications?|drugs?)$', 'current_medications', 0.85,
     'Current medication regimen', 'Parse medication strings into structured format'),
    (r'^(allergies|known_?allergies|adverse_?reactions)$', 'known_allergies', 0.88,
     'Known allergies and adverse reactions', 'Parse comma-separated values, handle "None known"'),
    (r'^(medical_?history|conditions|diagnoses)$', 'medical_history', 0.82,
     'Medical history and conditions', 'Structure medical conditions with dates and status'),
    (r'^(gp|general_?practitioner|primary_?care)$', 'gp_name', 0.85,
     'General Practitioner details', 'Extract GP name and practice information'),

    # Care information
    (r'^(care_?level|dependency_?level|care_?category)$', 'care_level', 0.87,
     'Level of care required', 'Standardize to Low/Medium/High dependency or Nursing care'),
    (r'^(care_?needs|care_?requirements|support_?needs)$', 'care_requirements', 0.83,
     'Specific care needs and requirements', 'Structure care needs into categories'),
    (r'^(room|room_?number|accommodation)$', 'room_number', 0.90,
     'Room/accommodation assignment', 'Standardize room numbering format'),

    # Administrative information
    (r'^(admission_?date|start_?date|entry_?date)$', 'admission_date', 0.88,
     'Date of admission to care', 'Parse date format and validate against business rules'),
    (r'^(funding|payment|fee_?arrangement)$', 'funding_type', 0.85,
     'Funding arrangement type', 'Standardize funding categories'),
    (r'^(next_?of_?kin|emergency_?contact|contact_?person)$', 'next_of_kin', 0.86,
     'Emergency contact information', 'Parse contact details into structured format'),

    # Risk and assessment
    (r'^(risk|risk_?factors|risk_?assessment)$', 'risk_factors', 0.80,
     'Identified risk factors', 'Categorize risks by type and severity'),
    (r'^(mobility|mobility_?aid|walking_?aid)$', 'mobility_aid', 0.85,
     'Mobility assistance requirements', 'Standardize mobility aid descriptions'),
    (r'^(diet|dietary|nutrition|food)$', 'dietary_requirements', 0.82,
     'Dietary and nutritional requirements', 'Structure dietary information'),
]

# field: (semantic_category, healthcare_context, clinical_relevance,
#         regulatory_importance, data_classification, gdpr_category)
DEFAULT_SEMANTIC_RULES = {
    'resident_id': ('identifier', 'patient_identification', 'high', 'critical', 'personal', 'personal'),
    'nhs_number': ('identifier', 'national_identifier', 'high', 'critical', 'personal', 'special'),
    'date_of_birth': ('demographic', 'patient_demographics', 'high', 'critical', 'personal', 'personal'),
    'current_medications': ('clinical', 'medication_management', 'high', 'critical', 'medical', 'special'),
    'known_allergies': ('clinical', 'safety_information', 'high', 'critical', 'medical', 'special'),
    'care_level': ('care_planning', 'care_assessment', 'medium', 'important', 'administrative', 'special'),
}


def clamp_confidence(value: float) -> float:
    """Clamp a confidence to [0.1, 1.0], rounded to 4 decimals."""
    return round(max(MIN_CONFIDENCE, min(MAX_CONFIDENCE, value)), 4)


def exact_match_pattern(source_field: str) -> str:
    return f"^{re.escape(source_field)}$"


class PatternStore:
    """
    Guarded store of FieldPatterns and SemanticAnalysis rules.

    Patterns keep their insertion order; learned patterns are appended. Every method
    returns copies, so callers never hold references into the store.
    """

    def __init__(self, patterns: Optional[List[FieldPattern]] = None,
                 semantic_rules: Optional[Dict[str, SemanticAnalysis]] = None):
        self.logger = logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._patterns: List[FieldPattern] = (
            copy.deepcopy(patterns) if patterns is not None else self._default_patterns()
        )
        self._semantic_rules: Dict[str, SemanticAnalysis] = (
            copy.deepcopy(semantic_rules) if semantic_rules is not None else self._default_semantic_rules()
        )

    @staticmethod
    def _default_patterns() -> List[FieldPattern]:
        return [FieldPattern(pattern, target, confidence, context, hint)
                for pattern, target, confidence, context, hint in DEFAULT_FIELD_PATTERNS]

    @staticmethod
    def _default_semantic_rules() -> Dict[str, SemanticAnalysis]:
        return {name: SemanticAnalysis(name, *values) for name, values in DEFAULT_SEMANTIC_RULES.items()}

    @property
    def lock(self) -> threading.RLock:
        """Re-entrant lock for grouping several store updates atomically."""
        return self._lock

    def patterns(self) -> List[FieldPattern]:
        with self._lock:
            return copy.deepcopy(self._patterns)

    def find_best_match(self, source_field: str) -> Optional[FieldPattern]:
        """
        Find the pattern to recommend for a source field.

        Learned exact-match patterns take precedence; otherwise the highest-confidence
        matching pattern wins, with earlier patterns winning ties.
        """
        with self._lock:
            best_match = None
            for pattern in self._patterns:
                if not pattern.matches(source_field):
                    continue
                if best_match is None:
                    best_match = pattern
                elif pattern.learned and not best_match.learned:
                    best_match = pattern
                elif pattern.learned == best_match.learned and pattern.confidence > best_match.confidence:
                    best_match = pattern
            return copy.deepcopy(best_match) if best_match else None

    def matching_patterns(self, source_field: str) -> List[FieldPattern]:
        with self._lock:
            return [copy.deepcopy(p) for p in self._patterns if p.matches(source_field)]

    def adjust_confidence(self, source_field: str, target_field: str, adjustment: float) -> Optional[float]:
        """
        Adjust the confidence of the first pattern matching the field and target.

        Returns:
            The new confidence, or None when no pattern matches
        """
        with self._lock:
            for pattern in self._patterns:
                if pattern.target_field == target_field and pattern.matches(source_field):
                    pattern.confidence = clamp_confidence(pattern.confidence + adjustment)
                    self.logger.debug(f"Adjusted pattern {pattern.pattern} -> {target_field} "
                                      f"by {adjustment:+}: {pattern.confidence}")
                    return pattern.confidence
            self.logger.debug(f"No pattern for {source_field} -> {target_field} to adjust")
            return None

    def add_or_update_learned_pattern(self, source_field: str, target_field: str,
                                      reasoning: str = "User preference") -> FieldPattern:
        """
        Record a reviewer-selected target as an exact-match pattern at moderate confidence.

        An existing learned pattern for the same source field is updated in place.
        """
        regex = exact_match_pattern(source_field)
        with self._lock:
            for pattern in self._patterns:
                if pattern.learned and pattern.pattern == regex:
                    pattern.target_field = target_field
                    pattern.confidence = LEARNED_PATTERN_CONFIDENCE
                    pattern.context = reasoning
                    self.logger.info(f"Updated learned pattern {source_field} -> {target_field}")
                    return copy.deepcopy(pattern)

            pattern = FieldPattern(
                pattern=regex,
                target_field=target_field,
                confidence=LEARNED_PATTERN_CONFIDENCE,
                context=reasoning,
                transformation_hint='User-defined mapping',
                learned=True,
            )
            self._patterns.append(pattern)
            self.logger.info(f"Learned new pattern {source_field} -> {target_field}")
            return copy.deepcopy(pattern)

    def get_semantic_analysis(self, target_field: str) -> Optional[SemanticAnalysis]:
        with self._lock:
            rule = self._semantic_rules.get(target_field)
            return copy.deepcopy(rule) if rule else None

    def snapshot(self) -> Dict[str, Any]:
        """JSON-serializable copy of the whole store."""
        with self._lock:
            return {
                'version': SNAPSHOT_VERSION,
                'patterns': [pattern.to_dict() for pattern in self._patterns],
                'semantic_rules': [rule.to_dict() for rule in self._semantic_rules.values()],
            }

    def restore(self, snapshot: Dict[str, Any]) -> None:
        """
        Replace the store contents with a snapshot.

        Raises:
            ConfigurationError: If the snapshot is malformed; the store is left unchanged
        """
        try:
            patterns = [FieldPattern.from_dict(item) for item in snapshot['patterns']]
            semantic_rules = {item['field']: SemanticAnalysis.from_dict(item)
                              for item in snapshot.get('semantic_rules', [])}
        except (KeyError, TypeError, ValueError, re.error) as e:
            raise ConfigurationError(f"Invalid pattern store snapshot: {e}")
        with self._lock:
            self._patterns = patterns
            self._semantic_rules = semantic_rules
        self.logger.info(f"Restored pattern store: {len(patterns)} patterns, {len(semantic_rules)} semantic rules")

    def save(self, path: Union[str, Path]) -> None:
        snapshot = self.snapshot()
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as file:
            json.dump(snapshot, file, indent=2)
        self.logger.info(f"Saved pattern store to {path}")

    def load(self, path: Union[str, Path]) -> None:
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Pattern store file not found: {path}")
        try:
            with open(path, 'r', encoding='utf-8') as file:
                snapshot = json.load(file)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Failed to parse pattern store file {path}: {e}")
        self.restore(snapshot)
