"""Integration tests for IntakePipeline."""

import json
import threading

import pandas as pd
import pytest

from conftest import StubExtractor, make_config, make_text
from intake.config import IntakeConfig
from intake.exceptions import (
    ExtractionFailed,
    ExtractionTimeout,
    InvalidRequest,
    PipelineCancelled,
    RubricMismatch,
)
from intake.models import IntakeRequest, PipelineState, Status, Tier, document_id
from intake.pipeline import IntakePipeline
from intake.registry import Registry
from intake.scorer import RubricConfig, RubricCriterion
from intake.tier_classifier import TaxonomyHeuristics, TaxonomyRule, TierThresholds

ANALYSIS_SCORES = [4, 4, 4, 3, 3]  # 18
PRACTICE_SCORES = [5, 5, 5, 5, 4]  # 24
RESEARCH_SCORES = [2, 2, 2, 2, 2]  # 10


def build_pipeline(scores, registry=None, extractor=None, **kwargs):
    return IntakePipeline(
        config=make_config(scores, **kwargs),
        registry=registry if registry is not None else Registry(),
        extractor=extractor or StubExtractor(content=make_text('extracted', 300)),
    )


class TestScenarios:
    """End-to-end intake outcomes."""

    def test_insufficient_content(self):
        """Test a 500 character document is rejected."""
        pipeline = build_pipeline(ANALYSIS_SCORES)
        result = pipeline.process(IntakeRequest(raw_text='x' * 500))

        assert result.status is Status.REJECTED
        assert result.reason == 'InsufficientContent'
        assert '500' in result.message
        assert result.state is PipelineState.REJECTED
        assert len(pipeline.registry) == 0

    def test_analysis_filed(self):
        """Test a total of 18 is filed as analysis."""
        pipeline = build_pipeline(ANALYSIS_SCORES)
        text = make_text('alpha')
        result = pipeline.process(IntakeRequest(raw_text=text))

        assert result.status is Status.FILED
        assert result.tier is Tier.ANALYSIS
        assert result.item_id == document_id(raw_text=text)

        item = pipeline.registry.get(result.item_id)
        assert item.total_score == 18.0
        assert item.taxonomy == {'domain': 'general', 'riskProfile': 'medium'}
        assert item.evaluation['totalScore'] == 18.0

    def test_research_filed(self):
        pipeline = build_pipeline(RESEARCH_SCORES)
        result = pipeline.process(IntakeRequest(raw_text=make_text('alpha')))
        assert result.tier is Tier.RESEARCH

    def test_practice_without_validation_downgraded(self):
        """Test a total of 24 without validation is filed as analysis pending validation."""
        pipeline = build_pipeline(PRACTICE_SCORES)
        result = pipeline.process(IntakeRequest(raw_text=make_text('alpha')))

        assert result.status is Status.FILED
        assert result.tier is Tier.ANALYSIS
        assert result.pending_validation
        assert any(w.startswith('PendingValidation') for w in result.warnings)
        assert result.to_dict()['pendingValidation'] is True

        item = pipeline.registry.get(result.item_id)
        assert item.tier is Tier.ANALYSIS
        assert item.pending_validation
        assert item.validated_at is None

    def test_near_duplicate(self):
        """Test the second of two near-identical submissions is a duplicate."""
        pipeline = build_pipeline(ANALYSIS_SCORES)
        base = make_text('alpha', 300)

        first = pipeline.process(IntakeRequest(raw_text=base))
        second = pipeline.process(IntakeRequest(raw_text=base + ' ' + make_text('extra', 10)))

        assert first.status is Status.FILED
        assert second.status is Status.DUPLICATE
        assert second.item_id == first.item_id
        assert second.tier is None
        assert len(pipeline.registry) == 1

        markers = pipeline.registry.duplicates()
        assert len(markers) == 1
        assert markers[0]['duplicateOf'] == first.item_id

    def test_idempotent_resubmission(self):
        """Test identical text is filed once, then reported as a duplicate of itself."""
        pipeline = build_pipeline(ANALYSIS_SCORES)
        text = make_text('alpha')

        first = pipeline.process(IntakeRequest(raw_text=text))
        second = pipeline.process(IntakeRequest(raw_text=text))

        assert first.status is Status.FILED
        assert second.status is Status.DUPLICATE
        assert second.item_id == first.item_id
        assert len(pipeline.registry) == 1


class TestValidationPolicy:
    """Test the practice tier gate."""

    def test_validated_practice(self, t0):
        pipeline = build_pipeline(PRACTICE_SCORES)
        result = pipeline.process(IntakeRequest(raw_text=make_text('alpha'), validated_at=t0))

        assert result.tier is Tier.PRACTICE
        assert not result.pending_validation
        assert pipeline.registry.get(result.item_id).validated_at == t0

    def test_strict_mode_rejects(self):
        """Test strict mode rejects instead of downgrading."""
        pipeline = build_pipeline(PRACTICE_SCORES, strict=True)
        result = pipeline.process(IntakeRequest(raw_text=make_text('alpha')))

        assert result.status is Status.REJECTED
        assert result.reason == 'InvariantViolation'
        assert result.message
        assert len(pipeline.registry) == 0

    def test_strict_per_request(self):
        pipeline = build_pipeline(PRACTICE_SCORES)
        result = pipeline.process(IntakeRequest(raw_text=make_text('alpha'), strict=True))
        assert result.reason == 'InvariantViolation'

    def test_pending_then_validated(self, t0):
        """Test a later validation event promotes the pending item."""
        pipeline = build_pipeline(PRACTICE_SCORES)
        result = pipeline.process(IntakeRequest(raw_text=make_text('alpha')))

        item = pipeline.registry.record_validation(result.item_id, t0)
        assert item.tier is Tier.PRACTICE

    def test_filed_practice_has_validation(self, t0):
        """Test every filed practice item carries a validation timestamp."""
        pipeline = build_pipeline(PRACTICE_SCORES)
        pipeline.process(IntakeRequest(raw_text=make_text('a'), validated_at=t0))
        pipeline.process(IntakeRequest(raw_text=make_text('b')))
        pipeline.process(IntakeRequest(raw_text=make_text('c'), strict=True))

        for item in pipeline.registry.items():
            if item.tier is Tier.PRACTICE:
                assert item.validated_at is not None


class TestTaxonomyOutcomes:
    """Test heuristics outcomes during intake."""

    def test_optional_axis_warning(self):
        pipeline = build_pipeline(ANALYSIS_SCORES)
        result = pipeline.process(IntakeRequest(raw_text=make_text('alpha')))

        assert result.status is Status.FILED
        assert 'NoMatchingRule: context' in result.warnings
        assert 'context' not in pipeline.registry.get(result.item_id).taxonomy

    def test_missing_required_axis_rejected(self):
        """Test an unset domain cannot be filed."""
        heuristics = TaxonomyHeuristics(rules={'riskProfile': [TaxonomyRule('medium')]})
        pipeline = build_pipeline(ANALYSIS_SCORES, heuristics=heuristics)
        result = pipeline.process(IntakeRequest(raw_text=make_text('alpha')))

        assert result.status is Status.REJECTED
        assert result.reason == 'InvariantViolation'
        assert 'NoMatchingRule: domain' in result.warnings


class TestExtraction:
    """Test URL intake through the extractor."""

    def test_url_intake(self):
        extractor = StubExtractor(content='# Shingles in practice\n\n' + make_text('body', 300))
        pipeline = build_pipeline(ANALYSIS_SCORES, extractor=extractor)
        url = 'https://Example.com/posts/shingles/'

        result = pipeline.process(IntakeRequest(url=url))

        assert extractor.calls == [url]
        assert result.item_id == document_id(url='https://example.com/posts/shingles')
        item = pipeline.registry.get(result.item_id)
        assert item.title == 'Shingles in practice'
        assert item.source_domain == 'example.com'

    def test_raw_text_skips_extractor(self):
        extractor = StubExtractor(content=make_text('unused'))
        pipeline = build_pipeline(ANALYSIS_SCORES, extractor=extractor)
        pipeline.process(IntakeRequest(raw_text=make_text('alpha')))
        assert extractor.calls == []

    def test_extraction_failed(self, failing_extractor):
        pipeline = build_pipeline(ANALYSIS_SCORES, extractor=failing_extractor)
        result = pipeline.process(IntakeRequest(url='https://example.com/a'))

        assert result.status is Status.REJECTED
        assert result.reason == 'ExtractionFailed'
        assert result.item_id is None

    def test_extraction_timeout(self):
        """Test timeouts are rejected with their own reason, never as empty documents."""
        extractor = StubExtractor(error=ExtractionTimeout("timed out after 30s"))
        pipeline = build_pipeline(ANALYSIS_SCORES, extractor=extractor)
        result = pipeline.process(IntakeRequest(url='https://example.com/a'))

        assert result.reason == 'ExtractionTimeout'
        assert len(pipeline.registry) == 0

    def test_extracted_content_too_short(self):
        pipeline = build_pipeline(ANALYSIS_SCORES, extractor=StubExtractor(content='short page'))
        result = pipeline.process(IntakeRequest(url='https://example.com/a'))
        assert result.reason == 'InsufficientContent'


class TestFailureModes:
    """Test fatal errors and cancellation."""

    def broken_config(self):
        rubric = RubricConfig(criteria=[
            RubricCriterion('fine', 20, lambda text, metadata: 3),
            RubricCriterion('broken', 5, lambda text, metadata: 7),
        ])
        return IntakeConfig(
            rubric=rubric,
            thresholds=TierThresholds(),
            heuristics=TaxonomyHeuristics(),
        )

    def test_rubric_mismatch_halts(self):
        """Test a rubric defect halts every later document."""
        pipeline = IntakePipeline(
            config=self.broken_config(), registry=Registry(), extractor=StubExtractor()
        )

        with pytest.raises(RubricMismatch):
            pipeline.process(IntakeRequest(raw_text=make_text('alpha')))
        assert pipeline.halted

        with pytest.raises(RubricMismatch):
            pipeline.process(IntakeRequest(raw_text='too short anyway'))
        assert len(pipeline.registry) == 0

    def test_rubric_mismatch_halts_batch(self):
        pipeline = IntakePipeline(
            config=self.broken_config(), registry=Registry(), extractor=StubExtractor()
        )
        requests = [IntakeRequest(raw_text=make_text(f'doc{i}')) for i in range(3)]
        with pytest.raises(RubricMismatch):
            pipeline.process_batch(requests, max_workers=2)

    def test_cancelled_before_start(self):
        pipeline = build_pipeline(ANALYSIS_SCORES)
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(PipelineCancelled):
            pipeline.process(IntakeRequest(raw_text=make_text('alpha')), cancel_event=cancel)
        assert len(pipeline.registry) == 0

    def test_cancelled_mid_run(self):
        """Test cancellation after extraction discards the run."""
        cancel = threading.Event()

        class CancellingExtractor(StubExtractor):
            def extract(self, url):
                cancel.set()
                return super().extract(url)

        pipeline = build_pipeline(
            ANALYSIS_SCORES, extractor=CancellingExtractor(content=make_text('alpha'))
        )
        with pytest.raises(PipelineCancelled):
            pipeline.process(IntakeRequest(url='https://example.com/a'), cancel_event=cancel)
        assert len(pipeline.registry) == 0
        assert pipeline.registry.duplicates() == []


class TestBatch:
    """Test concurrent batch processing."""

    def test_results_in_request_order(self):
        pipeline = build_pipeline(ANALYSIS_SCORES)
        requests = [IntakeRequest(raw_text=make_text(f'doc{i}x')) for i in range(10)]
        requests.append(IntakeRequest(raw_text='short'))

        results = pipeline.process_batch(requests, max_workers=4)

        assert len(results) == 11
        assert all(r.status is Status.FILED for r in results[:10])
        assert results[10].reason == 'InsufficientContent'
        assert [r.item_id for r in results[:10]] == [
            document_id(raw_text=make_text(f'doc{i}x')) for i in range(10)
        ]

    def test_concurrent_near_duplicates_filed_once(self):
        """Test only one of several concurrent near-duplicates is filed."""
        pipeline = build_pipeline(ANALYSIS_SCORES)
        base = make_text('alpha', 300)
        requests = [
            IntakeRequest(raw_text=base + ' ' + make_text(f'tail{i}x', 5)) for i in range(6)
        ]

        results = pipeline.process_batch(requests, max_workers=6)
        statuses = [r.status for r in results]

        assert statuses.count(Status.FILED) == 1
        assert statuses.count(Status.DUPLICATE) == 5
        assert len(pipeline.registry) == 1


class TestReporting:
    """Test statistics and result files."""

    @pytest.fixture
    def results(self):
        pipeline = build_pipeline(ANALYSIS_SCORES)
        requests = [
            IntakeRequest(raw_text=make_text('alpha')),
            IntakeRequest(raw_text=make_text('alpha')),
            IntakeRequest(raw_text=make_text('beta')),
            IntakeRequest(raw_text='x' * 10),
        ]
        return pipeline, [pipeline.process(r) for r in requests]

    def test_compute_statistics(self, results):
        pipeline, batch = results
        stats = pipeline.compute_statistics(batch)

        assert stats['total'] == 4
        assert stats['status_distribution'] == {'filed': 2, 'duplicate': 1, 'rejected': 1}
        assert stats['tier_distribution'] == {'research': 0, 'analysis': 2, 'practice': 0}
        assert stats['pending_validation'] == 0
        assert stats['rejection_reasons'] == {'InsufficientContent': 1}

    def test_save_results(self, results, tmp_path):
        pipeline, batch = results
        output = tmp_path / 'results.json'
        pipeline.save_results(batch, str(output))

        with open(output, 'r') as f:
            data = json.load(f)

        assert data['metadata']['total_documents'] == 4
        assert data['results'][0]['status'] == 'filed'
        assert data['results'][3]['reason'] == 'InsufficientContent'
        assert data['statistics']['status_distribution']['duplicate'] == 1

    def test_save_summary_csv(self, results, tmp_path):
        pipeline, batch = results
        output = tmp_path / 'summary.csv'
        pipeline.save_summary_csv(batch, str(output))

        frame = pd.read_csv(output)
        assert list(frame.columns) == ['status', 'itemId', 'tier', 'reason', 'message', 'pendingValidation']
        assert frame['status'].tolist() == ['filed', 'duplicate', 'filed', 'rejected']


class TestIntakeRequest:
    """Test the invocation surface."""

    @pytest.mark.parametrize('kwargs', [
        {},
        {'url': 'https://example.com', 'raw_text': 'text'},
        {'raw_text': 'text', 'priority': 'urgent'},
        {'raw_text': 'text', 'publication_date': 'last tuesday'},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(InvalidRequest):
            IntakeRequest(**kwargs)

    @pytest.mark.parametrize('payload', [
        {'rawText': 'text', 'metadata': 'x'},
        {'rawText': 'text', 'metadata': ['Jane']},
        ['rawText', 'text'],
    ])
    def test_from_dict_malformed(self, payload):
        """Test malformed JSON shapes are rejected as invalid requests."""
        with pytest.raises(InvalidRequest):
            IntakeRequest.from_dict(payload)

    def test_from_dict(self):
        request = IntakeRequest.from_dict({
            'rawText': 'text',
            'metadata': {'authorInfo': 'Jane', 'publicationDate': '2024-05-01T00:00:00Z'},
            'validatedAt': '2025-01-01',
        })
        assert request.author_info == 'Jane'
        assert request.publication_date.year == 2024
        assert request.publication_date.tzinfo is not None
        assert request.validated_at is not None

    def test_result_shape(self):
        pipeline = build_pipeline(ANALYSIS_SCORES)
        result = pipeline.process(IntakeRequest(raw_text=make_text('alpha')))
        payload = result.to_dict()

        assert payload['status'] == 'filed'
        assert payload['tier'] == 'analysis'
        assert 'reason' not in payload


def test_reference_configuration_end_to_end(sample_article, registry):
    """Test the built-in rubric and heuristics file a realistic article."""
    pipeline = IntakePipeline(registry=registry, extractor=StubExtractor())
    result = pipeline.process(IntakeRequest(
        raw_text=sample_article,
        author_info='Jane Doe',
        publication_date='2025-03-01',
    ))

    assert result.status is Status.FILED
    item = registry.get(result.item_id)
    assert item.taxonomy['domain'] in ('architecture', 'security', 'ai-tooling')
    assert item.taxonomy['riskProfile'] in ('low', 'medium', 'high')
    assert item.tier is not Tier.PRACTICE
    assert item.title == 'Retrieval patterns for AI coding assistants'
    assert len(item.evaluation['criteria']) == 10
