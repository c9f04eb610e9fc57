"""
Unit tests for FieldMappingRecommender and PatternStore.

Tests verify pattern matching, semantic fallback, quality estimates, relationship
enhancement, ranking, feedback learning and batch processing.
"""

from datetime import date

import pytest

from domain_migrator.audit.events import (
    EventEmitter, BATCH_PROCESSING, LEARNING_UPDATED, MAPPING_ANALYSIS_COMPLETED, MAPPING_ANALYSIS_STARTED
)
from domain_migrator.exceptions import ConfigurationError, MappingRecommendationError
from domain_migrator.mapping import (
    FieldMappingRecommender, MappingDataset, MappingFeedback, PatternStore
)
from domain_migrator.mapping.pattern_store import LEARNED_PATTERN_CONFIDENCE, clamp_confidence
from domain_migrator.mapping.recommender import infer_value_format


@pytest.fixture
def sample_records():
    return [
        {'patient_id': 'R001', 'nhs_no': '9434765919', 'full_name': 'mary smith', 'dob': '15/03/1945',
         'phone': '01234 567890', 'medications': 'Aspirin 75mg OD', 'next_of_kin': 'John Smith',
         'weight_kg': '61.5', 'favourite_colour': 'blue'},
        {'patient_id': 'R002', 'nhs_no': '4010232137', 'full_name': 'JOHN JONES', 'dob': '1950-07-01',
         'phone': '07700 900123', 'medications': None, 'next_of_kin': '', 'weight_kg': '80',
         'favourite_colour': 'green'},
        {'patient_id': 'R003', 'nhs_no': '9434765919', 'full_name': 'Ann Lee', 'dob': None,
         'phone': '01632 960001', 'medications': 'Paracetamol 500mg QDS', 'next_of_kin': 'Bob Lee',
         'weight_kg': '55.2', 'favourite_colour': None},
    ]


@pytest.fixture
def emitter():
    return EventEmitter()


@pytest.fixture
def recommender(emitter):
    return FieldMappingRecommender(pattern_store=PatternStore(), event_emitter=emitter)


def by_source(recommendations):
    return {rec.source_field: rec for rec in recommendations}


class TestGenerateRecommendations:
    def test_pattern_matches_and_semantic_fallback(self, recommender, sample_records):
        recommendations = by_source(recommender.generate_mapping_recommendations(sample_records))

        assert recommendations['patient_id'].target_field == 'resident_id'
        assert recommendations['nhs_no'].target_field == 'nhs_number'
        assert recommendations['dob'].target_field == 'date_of_birth'
        assert recommendations['phone'].target_field == 'phone_number'

        weight = recommendations['weight_kg']
        assert weight.target_field == 'weight'
        assert weight.confidence == 0.75
        assert weight.transformation_type == 'semantic'

        # Matches neither a pattern nor a keyword
        assert 'favourite_colour' not in recommendations

    def test_sample_transformation_and_quality(self, recommender, sample_records):
        dob = by_source(recommender.generate_mapping_recommendations(sample_records))['dob']

        assert dob.transformation_type == 'suggested'
        assert dob.transformation_name == 'parse_uk_date'
        assert dob.sample_transformation.input == '15/03/1945'
        assert dob.sample_transformation.output == date(1945, 3, 15)
        assert dob.sample_transformation.explanation.startswith('Transformed using')

        # 2 of 3 populated; high clinical relevance -> accuracy = completeness * 0.9
        assert dob.data_quality_impact.completeness == 0.67
        assert dob.data_quality_impact.accuracy == 0.6
        # uk_date and iso_date formats
        assert dob.data_quality_impact.consistency == 0.5

    def test_failed_sample_transformation_is_explained(self, recommender):
        records = [{'nhs_no': '1234567890'}]
        nhs = recommender.generate_mapping_recommendations(records)[0]

        assert nhs.sample_transformation.output == '1234567890'
        assert nhs.sample_transformation.explanation.startswith('Transformation needed:')

    def test_alternatives(self, recommender, sample_records):
        full_name = by_source(recommender.generate_mapping_recommendations(sample_records))['full_name']

        assert [(alt.field, alt.confidence) for alt in full_name.alternative_targets] == [
            ('first_name', 0.7), ('last_name', 0.6)
        ]
        assert full_name.validation_rules == ['Not empty', 'Valid characters', 'Max 100 characters']

    def test_relationships_boost_confidence(self, recommender, sample_records):
        recommendations = by_source(recommender.generate_mapping_recommendations(sample_records))

        resident = recommendations['patient_id']
        assert resident.confidence == 1.0
        assert resident.reasoning.endswith('(Related to 2 other field(s))')
        assert recommendations['next_of_kin'].confidence == pytest.approx(0.91)
        assert recommendations['medications'].confidence == pytest.approx(0.90)
        assert 'Related to' not in recommendations['phone'].reasoning

    def test_detect_relationships(self, recommender, sample_records):
        recommendations = recommender.generate_mapping_recommendations(sample_records)
        relationships = {r.related_field: r for r in recommender.detect_relationships(recommendations)}

        assert relationships['next_of_kin'].relationship_type == 'one_to_many'
        assert relationships['next_of_kin'].confidence == 0.85
        assert relationships['current_medications'].relationship_type == 'one_to_one'
        assert relationships['current_medications'].confidence == 0.90

    def test_sorted_by_relevance_then_confidence(self, recommender, sample_records):
        targets = [rec.target_field for rec in recommender.generate_mapping_recommendations(sample_records)]

        assert targets == [
            'resident_id', 'nhs_number', 'date_of_birth', 'current_medications',
            'full_name', 'next_of_kin', 'phone_number', 'weight',
        ]

    def test_target_schema_restricts_targets(self, recommender, sample_records):
        recommendations = recommender.generate_mapping_recommendations(
            sample_records, target_schema=['resident_id', 'nhs_number'])

        assert sorted(rec.target_field for rec in recommendations) == ['nhs_number', 'resident_id']

    def test_target_schema_mapping_keys(self, recommender, sample_records):
        recommendations = recommender.generate_mapping_recommendations(
            sample_records, target_schema={'weight': 'DECIMAL(5,2)'})

        assert [rec.source_field for rec in recommendations] == ['weight_kg']

    def test_union_of_keys_in_first_seen_order(self, recommender):
        records = [{'dob': '01/01/1950'}, {'nhs_no': '9434765919', 'dob': None}]
        recommendations = recommender.generate_mapping_recommendations(records)

        assert {rec.source_field for rec in recommendations} == {'dob', 'nhs_no'}
        nhs = by_source(recommendations)['nhs_no']
        assert nhs.data_quality_impact.completeness == 0.5

    def test_empty_sample(self, recommender):
        assert recommender.generate_mapping_recommendations([]) == []

    def test_rejects_non_record_input(self, recommender):
        with pytest.raises(MappingRecommendationError):
            recommender.generate_mapping_recommendations("patient_id,nhs_no")
        with pytest.raises(MappingRecommendationError):
            recommender.generate_mapping_recommendations([{'a': 1}, 'b'])

    def test_lifecycle_events(self, recommender, emitter, sample_records):
        received = []
        emitter.on(MAPPING_ANALYSIS_STARTED, lambda payload: received.append(('started', payload)))
        emitter.on(MAPPING_ANALYSIS_COMPLETED, lambda payload: received.append(('completed', payload)))

        recommender.generate_mapping_recommendations(sample_records, context={'source_system': 'legacy'})

        assert received[0] == ('started', {'field_count': 9, 'record_count': 3,
                                           'context': {'source_system': 'legacy'}})
        assert received[1][0] == 'completed'
        assert received[1][1]['recommendation_count'] == 8

    def test_to_dict_is_json_friendly(self, recommender, sample_records):
        dob = by_source(recommender.generate_mapping_recommendations(sample_records))['dob']
        data = dob.to_dict()

        assert data['sample_transformation']['output'] == '1945-03-15'
        assert data['data_quality_impact']['completeness'] == 0.67


class TestFeedbackLearning:
    def test_accept_raises_confidence(self, recommender):
        recommender.learn_from_feedback(MappingFeedback('m1', True, 'full_name', 'full_name'))

        pattern = recommender.pattern_store.find_best_match('full_name')
        assert pattern.confidence == pytest.approx(0.97)

    def test_accept_caps_at_one(self, recommender):
        for _ in range(3):
            recommender.learn_from_feedback(MappingFeedback('m1', True, 'nhs_no', 'nhs_number'))
        assert recommender.pattern_store.find_best_match('nhs_no').confidence == 1.0

    def test_reject_floors_at_minimum(self, recommender):
        for _ in range(12):
            recommender.learn_from_feedback(MappingFeedback('m1', False, 'gender', 'gender'))
        assert recommender.pattern_store.find_best_match('gender').confidence == 0.1

    def test_reject_with_selected_target_learns_pattern(self, recommender, emitter):
        updates = []
        emitter.on(LEARNING_UPDATED, updates.append)

        recommender.learn_from_feedback(MappingFeedback(
            'm1', False, 'phone', 'phone_number',
            user_selected_target='emergency_contact_phone', user_reasoning='Legacy phone is the NOK number'))

        recommendation = recommender.generate_mapping_recommendations([{'phone': '01234 567890'}])[0]
        assert recommendation.target_field == 'emergency_contact_phone'
        assert recommendation.confidence == LEARNED_PATTERN_CONFIDENCE
        assert recommendation.reasoning == 'Pattern match: Legacy phone is the NOK number'

        original = [p for p in recommender.pattern_store.patterns() if p.target_field == 'phone_number'][0]
        assert original.confidence == pytest.approx(0.78)
        assert updates == [{'source_field': 'phone', 'accepted': False, 'new_target': 'emergency_contact_phone'}]

    def test_learned_pattern_updated_not_duplicated(self, recommender):
        for target in ('gp_phone', 'emergency_contact_phone'):
            recommender.learn_from_feedback(MappingFeedback('m', False, 'phone', 'phone_number',
                                                            user_selected_target=target))

        learned = [p for p in recommender.pattern_store.patterns() if p.learned]
        assert len(learned) == 1
        assert learned[0].target_field == 'emergency_contact_phone'


class TestBatchGenerate:
    def test_datasets_processed_independently(self, recommender, emitter, sample_records):
        batches = []
        emitter.on(BATCH_PROCESSING, batches.append)

        result = recommender.batch_generate_mappings([
            MappingDataset('residents', sample_records),
            {'name': 'broken', 'data': 'not records'},
            {'name': 'empty', 'data': []},
        ])

        assert len(result.results['residents']) == 8
        assert result.results['empty'] == []
        assert 'broken' not in result.results
        assert 'sequence of records' in result.errors['broken']
        assert [b['dataset_name'] for b in batches] == ['residents', 'broken', 'empty']


class TestPatternStore:
    def test_clamp_confidence(self):
        assert clamp_confidence(1.2) == 1.0
        assert clamp_confidence(-3) == 0.1
        assert clamp_confidence(0.123456) == 0.1235

    def test_highest_confidence_match_wins(self):
        store = PatternStore()
        # 'contact_number' matches phone_number (0.88) only; 'emergency_contact' matches next_of_kin
        assert store.find_best_match('contact_number').target_field == 'phone_number'
        assert store.find_best_match('emergency_contact').target_field == 'next_of_kin'
        assert store.find_best_match('unrelated_field') is None

    def test_matching_is_case_insensitive(self):
        assert PatternStore().find_best_match('NHS_Number').target_field == 'nhs_number'

    def test_adjust_unknown_pattern_returns_none(self):
        assert PatternStore().adjust_confidence('nhs_no', 'postcode', 0.05) is None

    def test_snapshot_restore(self):
        store = PatternStore()
        store.add_or_update_learned_pattern('legacy_ref', 'resident_id')
        snapshot = store.snapshot()

        restored = PatternStore(patterns=[], semantic_rules={})
        restored.restore(snapshot)

        assert restored.find_best_match('legacy_ref').target_field == 'resident_id'
        assert restored.get_semantic_analysis('nhs_number').gdpr_category == 'special'

    def test_restore_rejects_malformed_snapshot(self):
        store = PatternStore()
        with pytest.raises(ConfigurationError):
            store.restore({'patterns': [{'pattern': '('}]})
        # Store unchanged
        assert store.find_best_match('nhs_no').target_field == 'nhs_number'

    def test_save_and_load(self, tmp_path):
        store = PatternStore()
        store.add_or_update_learned_pattern('kin_phone', 'emergency_contact_phone', 'Reviewer choice')
        path = tmp_path / 'patterns' / 'store.json'
        store.save(path)

        loaded = PatternStore(patterns=[])
        loaded.load(path)

        pattern = loaded.find_best_match('kin_phone')
        assert pattern.learned
        assert pattern.context == 'Reviewer choice'

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            PatternStore().load(tmp_path / 'missing.json')


@pytest.mark.parametrize("value,expected", [
    ('2024-01-05', 'iso_date'),
    ('05/01/2024', 'uk_date'),
    ('a@b.org', 'email'),
    ('42', 'numeric'),
    ('61.5', 'decimal'),
    ('Mary Smith', 'alpha'),
    ('Flat 3B', 'alphanumeric'),
    ('#!?', 'other'),
    (42, 'numeric'),
    (date(2024, 1, 5), 'iso_date'),
])
def test_infer_value_format(value, expected):
    assert infer_value_format(value) == expected
