"""Content Intake Pipeline.

Sequences extraction, scoring, duplicate detection, classification and
filing for each submitted document, enforcing the quality gates between
them.
"""

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Dict, List, Optional, Tuple

import pandas as pd

from .config import IntakeConfig
from .duplicate_detector import DuplicateDetector
from .exceptions import IntakeError, PipelineCancelled, RubricMismatch
from .extractor import ExtractorClient, build_extractor
from .models import (
    ClassifiedItem,
    DuplicateMarker,
    IntakeRequest,
    IntakeResult,
    PipelineState,
    SourceDocument,
    Status,
    Tier,
    utcnow,
)
from .registry import Registry
from .scorer import RubricScorer
from .store import open_store
from .tier_classifier import Classification, TierClassifier

RESULT_COLUMNS = ['status', 'itemId', 'tier', 'reason', 'message', 'pendingValidation']


class IntakePipeline:
    """Main pipeline for content intake.

    Stateless between invocations: each call to process() handles one
    document end to end. The registry is the only shared mutable state, so
    many documents can be processed concurrently with process_batch().
    """

    def __init__(
        self,
        config: IntakeConfig = None,
        registry: Registry = None,
        extractor: ExtractorClient = None
    ):
        """Initialize the pipeline.

        Args:
            config: Validated configuration (defaults when omitted)
            registry: Registry to file into (built from config when omitted)
            extractor: Content extractor (built from config when omitted)
        """
        self.config = config or IntakeConfig.from_dict({})
        self.logger = self._setup_logger()

        # An empty registry is falsy
        if registry is None:
            registry = Registry(open_store(self.config.registry_path))
        self.registry = registry
        self.extractor = extractor if extractor is not None else build_extractor(self.config.extractor)

        self.scorer = RubricScorer(self.config.rubric)
        self.classifier = TierClassifier(
            thresholds=self.config.thresholds,
            heuristics=self.config.heuristics,
            max_score=self.config.rubric.max_score
        )
        self.duplicate_detector = DuplicateDetector(
            similarity_threshold=self.config.duplicate_threshold,
            shingle_size=self.config.shingle_size
        )

        # Duplicate check and filing must not interleave across documents
        self._intake_lock = threading.Lock()
        self._halted: Optional[RubricMismatch] = None

        self.logger.info("Intake Pipeline initialized")

    def _setup_logger(self) -> logging.Logger:
        """Setup logger for pipeline."""
        logger = logging.getLogger('IntakePipeline')
        logger.setLevel(logging.INFO)

        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        return logger

    @property
    def halted(self) -> bool:
        return self._halted is not None

    @staticmethod
    def _checkpoint(cancel_event: Optional[threading.Event], state: PipelineState):
        if cancel_event is not None and cancel_event.is_set():
            raise PipelineCancelled(f"Pipeline cancelled while {state.value}")

    def capture(self, request: IntakeRequest) -> SourceDocument:
        """Produce the source document for a request, extracting URLs.

        Raises:
            ExtractionFailed: If the extractor returns no usable content
            ExtractionTimeout: If the extractor times out
        """
        if request.raw_text:
            raw_text = request.raw_text
        else:
            raw_text = self.extractor.extract(request.url)

        return SourceDocument.capture(
            raw_text,
            url=request.url,
            author_info=request.author_info,
            publication_date=request.publication_date,
            priority=request.priority,
        )

    def build_item(
        self,
        document: SourceDocument,
        evaluation,
        classification: Classification,
        request: IntakeRequest,
        strict: bool
    ) -> Tuple[ClassifiedItem, List[str]]:
        """Turn a classification into a registry item.

        A practice classification needs a validation signal, either on the
        request or on an already validated item with the same id. Without
        one the item is filed as analysis pending validation, unless strict
        mode is on, in which case the practice item goes to the registry
        as-is and is rejected there.

        Returns:
            Tuple of (item, warnings)
        """
        warnings = list(classification.warnings)
        existing = self.registry.get(document.id)
        validated_at = request.validated_at or (existing.validated_at if existing else None)

        tier = classification.tier
        pending = False
        if tier is Tier.PRACTICE and validated_at is None and not strict:
            tier = Tier.ANALYSIS
            pending = True
            warnings.append("PendingValidation: practice tier requires human validation")
            self.logger.info(
                f"Document {document.id} scored {evaluation.total_score} (practice); "
                f"filing as analysis pending validation"
            )

        item = ClassifiedItem(
            id=document.id,
            tier=tier,
            taxonomy=dict(classification.taxonomy),
            validated_at=validated_at,
            pending_validation=pending,
            title=document.title,
            url=document.url,
            source_domain=document.source_domain,
            total_score=evaluation.total_score,
            captured_at=document.captured_at,
            fingerprint=self.duplicate_detector.fingerprint(document.raw_text),
            evaluation=evaluation.to_dict(),
        )
        return item, warnings

    def _reject(
        self,
        error: IntakeError,
        state: PipelineState,
        item_id: str = None,
        warnings: List[str] = None
    ) -> IntakeResult:
        self.logger.warning(f"Rejected while {state.value}: {error.reason}: {error}")
        return IntakeResult(
            status=Status.REJECTED,
            item_id=item_id,
            reason=error.reason,
            message=str(error),
            warnings=warnings or [],
            state=PipelineState.REJECTED,
        )

    def process(
        self,
        request: IntakeRequest,
        cancel_event: threading.Event = None
    ) -> IntakeResult:
        """Run one document through the pipeline.

        Args:
            request: Intake request (URL or raw text plus metadata)
            cancel_event: Optional event; when set the run aborts at the next
                state transition and nothing is written

        Returns:
            IntakeResult with status filed, duplicate or rejected

        Raises:
            RubricMismatch: If the rubric is defective; the pipeline halts and
                every later call raises as well
            PipelineCancelled: If cancel_event was set
        """
        if self._halted is not None:
            raise RubricMismatch(self._halted.criterion, self._halted.value)

        strict = self.config.strict if request.strict is None else request.strict
        state = PipelineState.EXTRACTING
        document = None
        warnings: List[str] = []

        try:
            self._checkpoint(cancel_event, state)
            document = self.capture(request)

            state = PipelineState.SCORING
            self._checkpoint(cancel_event, state)
            evaluation = self.scorer.evaluate(document)
            self.logger.info(
                f"Scored {document.id}: {evaluation.total_score}/{self.config.rubric.max_score}"
            )

            state = PipelineState.DEDUPLICATING
            self._checkpoint(cancel_event, state)
            with self._intake_lock:
                match = self.duplicate_detector.best_match(document, self.registry)
                if match is not None:
                    existing_id, similarity = match
                    state = PipelineState.FILING
                    self._checkpoint(cancel_event, state)
                    self.registry.record_duplicate(DuplicateMarker(
                        document_id=document.id,
                        duplicate_of=existing_id,
                        similarity=similarity,
                        detected_at=utcnow(),
                        url=document.url,
                    ))
                    return IntakeResult(
                        status=Status.DUPLICATE,
                        item_id=existing_id,
                        message=f"Near-duplicate of {existing_id} (similarity {similarity:.3f})",
                    )

                state = PipelineState.CLASSIFYING
                self._checkpoint(cancel_event, state)
                classification = self.classifier.classify(evaluation)

                state = PipelineState.FILING
                self._checkpoint(cancel_event, state)
                item, warnings = self.build_item(
                    document, evaluation, classification, request, strict
                )
                stored = self.registry.file(item)

        except RubricMismatch as e:
            self._halted = e
            self.logger.error(f"Rubric defect, halting pipeline: {e}")
            raise
        except PipelineCancelled:
            self.logger.info(f"Pipeline cancelled while {state.value}")
            raise
        except IntakeError as e:
            return self._reject(e, state, document.id if document else None, warnings)

        return IntakeResult(
            status=Status.FILED,
            item_id=stored.id,
            tier=stored.tier,
            pending_validation=stored.pending_validation,
            warnings=warnings,
        )

    def process_batch(
        self,
        requests: List[IntakeRequest],
        max_workers: int = None,
        cancel_event: threading.Event = None
    ) -> List[IntakeResult]:
        """Process many documents concurrently, one pipeline run each.

        Args:
            requests: Intake requests
            max_workers: Worker threads (defaults to config.workers)
            cancel_event: Optional event cancelling every run

        Returns:
            Results in request order
        """
        workers = max_workers or self.config.workers
        self.logger.info(f"Processing batch of {len(requests)} documents with {workers} workers")
        start_time = datetime.now()

        results: List[Optional[IntakeResult]] = [None] * len(requests)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {
                executor.submit(self.process, request, cancel_event): index
                for index, request in enumerate(requests)
            }
            try:
                for future in as_completed(futures):
                    results[futures[future]] = future.result()
            except (RubricMismatch, PipelineCancelled):
                for future in futures:
                    future.cancel()
                raise

        duration = (datetime.now() - start_time).total_seconds()
        self.logger.info(f"Batch complete in {duration:.2f} seconds")
        return results

    def results_frame(self, results: List[IntakeResult]) -> pd.DataFrame:
        """Tabulate results, one row per document."""
        return pd.DataFrame([r.to_dict() for r in results], columns=RESULT_COLUMNS)

    def compute_statistics(self, results: List[IntakeResult]) -> Dict:
        """Compute summary statistics for a batch."""
        frame = self.results_frame(results)
        filed = frame[frame['status'] == Status.FILED.value]
        rejected = frame[frame['status'] == Status.REJECTED.value]

        return {
            'total': len(frame),
            'status_distribution': {
                status.value: int((frame['status'] == status.value).sum()) for status in Status
            },
            'tier_distribution': {
                tier.value: int((filed['tier'] == tier.value).sum()) for tier in Tier
            },
            'pending_validation': int(frame['pendingValidation'].eq(True).sum()),
            'rejection_reasons': {
                reason: int(count) for reason, count in rejected['reason'].value_counts().items()
            },
        }

    def save_results(self, results: List[IntakeResult], output_path: str):
        """Save results and statistics to a JSON file.

        Args:
            results: Results from process_batch()
            output_path: Output file path
        """
        payload = {
            'metadata': {
                'timestamp': utcnow().isoformat(),
                'total_documents': len(results),
            },
            'results': [r.to_dict() for r in results],
            'statistics': self.compute_statistics(results),
        }
        try:
            with open(output_path, 'w') as f:
                json.dump(payload, f, indent=2)
        except OSError as e:
            self.logger.error(f"Error saving results: {e}")
            raise
        self.logger.info(f"Results saved to {output_path}")

    def save_summary_csv(self, results: List[IntakeResult], output_path: str):
        """Write the per-document result table as CSV."""
        self.results_frame(results).to_csv(output_path, index=False)
        self.logger.info(f"Summary saved to {output_path}")
