"""
Image-to-product reconciliation
Scans the image store, extracts SKUs from filenames and links images to catalog products
"""

import time
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from database import LinkDatabase
from sku_linker.catalog_index import CatalogIndex
from sku_linker.errors import (
    BatchTimeout,
    CatalogAccessFailure,
    DuplicateLinkSkip,
    EXTRACTION_EMPTY,
    NO_CATALOG_MATCH,
    PersistenceFailure,
    StorageAccessFailure,
)
from sku_linker.extraction import extract_codes
from sku_linker.models import ImageAsset, MatchResult
from sku_linker.progress import (
    ProgressChannel,
    ScanSnapshot,
    STATUS_COMPLETED,
    STATUS_ERROR,
    STATUS_INITIALIZING,
    STATUS_PROCESSING,
    STATUS_SCANNING,
    STATUS_STOPPED,
)
from sku_linker.report import ScanReport
from sku_linker.storage import ImageStore, list_all_images

logger = logging.getLogger(__name__)

OUTCOME_LINKED = 'linked'
OUTCOME_CANDIDATE = 'candidate'
OUTCOME_DUPLICATE = 'duplicate'
OUTCOME_UNRESOLVED = 'unresolved'


class _ScanRun:
    """Mutable state of a single scan run"""

    def __init__(self, session_id: str, report: ScanReport):
        self.session_id = session_id
        self.report = report
        self.status = STATUS_INITIALIZING
        self.step = ''
        self.processed = 0
        self.total = 0
        self.current_file: Optional[str] = None

    def snapshot(self) -> ScanSnapshot:
        return ScanSnapshot(
            status=self.status,
            current_step=self.step,
            processed=self.processed,
            successful=self.report.successful,
            failed=self.report.failed,
            total=self.total,
            current_file=self.current_file,
            errors=list(self.report.errors),
        )


class ImageReconciler:
    def __init__(self, config: dict, db: LinkDatabase, store: ImageStore,
                 channel: ProgressChannel = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config
        self.db = db
        self.store = store
        self.channel = channel or ProgressChannel()
        self._sleep = sleep
        self._clock = clock

        matching = config.get('matching', {})
        self.link_threshold = matching.get('link_threshold', 80)
        self.candidate_threshold = matching.get('candidate_threshold', 60)

        scan = config.get('scan', {})
        self.page_size = int(scan.get('page_size', 200))
        self.batch_size = int(scan.get('batch_size', 5))
        self.batch_pause = float(scan.get('batch_pause_seconds', 0.1))
        self.batch_timeout = float(scan.get('batch_timeout_seconds', 30))
        self.max_errors = int(scan.get('max_errors', 20))
        self.max_unresolved = int(scan.get('max_unresolved', 1000))

        storage = config.get('storage', {})
        self.folder = storage.get('folder', '') or ''
        self.recursive = bool(storage.get('recursive', True))

    def run_scan(self, session_id: str = None) -> ScanReport:
        """
        Run a full reconciliation scan.

        Args:
            session_id: Progress session to publish to (opened if not given)

        Returns:
            The finalized ScanReport (also persisted)
        """
        session_id = session_id or self.channel.open_session()
        started_at = datetime.now()
        start = self._clock()
        run = _ScanRun(session_id, ScanReport(
            session_id=session_id,
            max_errors=self.max_errors,
            max_unresolved=self.max_unresolved,
        ))

        logger.info(f"Starting image scan {session_id}")

        try:
            self._publish(run, STATUS_INITIALIZING, 'Loading catalog')
            index = CatalogIndex.build(self.db.list_active_products_with_code())
            run.report.total_products = len(index)

            self._publish(run, STATUS_SCANNING, 'Listing storage images')
            images = list_all_images(self.store, self.folder, self.page_size, self.recursive)
            run.report.total_images = len(images)

            unlinked = self._filter_unlinked(images)
            run.report.linked_images = len(images) - len(unlinked)
            run.total = len(unlinked)
            logger.info(f"{len(unlinked)} unlinked images to process ({run.report.linked_images} already linked)")

            stopped = self._process_images(run, unlinked, index)
            run.status = STATUS_STOPPED if stopped else STATUS_COMPLETED

        except (StorageAccessFailure, CatalogAccessFailure) as e:
            logger.error(f"Scan {session_id} failed: {str(e)}")
            run.status = STATUS_ERROR
            run.report.add_error(str(e))
        except Exception as e:
            logger.error(f"Scan {session_id} failed: {str(e)}", exc_info=True)
            run.status = STATUS_ERROR
            run.report.add_error(f"Fatal error: {str(e)}")

        run.current_file = None
        run.report.status = run.status
        run.report.processing_time_ms = int((self._clock() - start) * 1000)

        try:
            self.db.save_scan_report(run.report, started_at, datetime.now())
        except PersistenceFailure as e:
            logger.error(f"Could not save scan report: {str(e)}")
            run.report.add_error(str(e))

        self._publish(run, run.status, run.report.summary())
        logger.info(f"Scan {session_id} finished - {run.report.summary()}")
        return run.report

    def _filter_unlinked(self, images: List[ImageAsset]) -> List[ImageAsset]:
        """Drop images that already back an active link, by storage path or public URL"""
        linked_paths = self.db.list_already_linked_paths()
        linked_urls = self.db.list_active_link_urls()
        return [
            image for image in images
            if image.storage_path not in linked_paths
            and self.store.get_public_url(image.storage_path) not in linked_urls
        ]

    def _process_images(self, run: _ScanRun, images: List[ImageAsset], index: CatalogIndex) -> bool:
        """Process images in small batches; returns True if stopped early"""
        batches = [images[i:i + self.batch_size] for i in range(0, len(images), self.batch_size)]

        for number, batch in enumerate(batches, start=1):
            if self.channel.is_stop_requested(run.session_id):
                logger.info(f"Scan {run.session_id} stopped at {run.processed}/{run.total} images")
                return True

            batch_started = self._clock()
            for image in batch:
                run.current_file = image.filename

                if self._clock() - batch_started > self.batch_timeout:
                    error = BatchTimeout(
                        f"Batch {number} exceeded {self.batch_timeout:g}s, {image.storage_path} not processed")
                    logger.warning(str(error))
                    run.report.failed += 1
                    run.report.add_error(str(error))
                else:
                    try:
                        self.process_image(image, index, run.report, run.session_id)
                    except Exception as e:
                        logger.error(f"Error processing {image.storage_path}: {str(e)}")
                        run.report.failed += 1
                        run.report.add_error(f"Error processing {image.storage_path}: {str(e)}")

                run.processed += 1
                self._publish(run, STATUS_PROCESSING, f"Batch {number}/{len(batches)}")

            if number < len(batches) and self.batch_pause > 0:
                self._sleep(self.batch_pause)

        return False

    def process_image(self, image: ImageAsset, index: CatalogIndex, report: ScanReport,
                      session_id: str = '') -> str:
        """
        Extract, match and route a single image.

        Returns:
            One of 'linked', 'candidate', 'duplicate' or 'unresolved'
        """
        codes = extract_codes(image.filename, image.storage_path)
        if not codes:
            report.add_unresolved(image.filename, [], 0, EXTRACTION_EMPTY)
            return OUTCOME_UNRESOLVED

        match, attempts = index.find_best_match(codes)
        if match is None or match.score < self.candidate_threshold:
            report.add_unresolved(image.filename, [code.value for code in codes], attempts, NO_CATALOG_MATCH)
            logger.debug(f"No match for {image.filename} after {attempts} attempts")
            return OUTCOME_UNRESOLVED

        if self.db.has_active_link(match.product_id):
            logger.info(f"{DuplicateLinkSkip(match.product_id)}, skipping {image.filename}")
            report.skipped += 1
            return OUTCOME_DUPLICATE

        image_url = self.store.get_public_url(image.storage_path)
        metadata = self._build_metadata(image, match, session_id)

        if match.score >= self.link_threshold:
            try:
                self.db.insert_image_link(match.product_id, image_url, match.score, True,
                                          metadata, source_filename=image.filename,
                                          source_path=image.storage_path)
            except DuplicateLinkSkip as e:
                logger.info(f"{str(e)}, skipping {image.filename}")
                report.skipped += 1
                return OUTCOME_DUPLICATE
            report.direct_links_created += 1
            report.successful += 1
            return OUTCOME_LINKED

        if self.db.has_pending_candidate(match.product_id, image_url):
            logger.info(f"{image.filename} is already pending review for product {match.product_id}")
            report.skipped += 1
            return OUTCOME_DUPLICATE

        self.db.insert_image_candidate(match.product_id, image_url, match.score,
                                       match.extracted_code.value, image.filename, metadata)
        report.candidates_created += 1
        report.successful += 1
        return OUTCOME_CANDIDATE

    @staticmethod
    def _build_metadata(image: ImageAsset, match: MatchResult, session_id: str) -> Dict:
        metadata = {
            'filename': image.filename,
            'storage_path': image.storage_path,
            'extraction_method': match.extracted_code.provenance,
            'extraction_confidence': match.extracted_code.confidence,
            'match_type': match.match_type,
            'code_extracted': match.extracted_code.value,
            'product_code': match.product_code,
            'scan_session': session_id,
        }
        if image.metadata:
            metadata['image'] = dict(image.metadata)
        return metadata

    def _publish(self, run: _ScanRun, status: str, step: str) -> None:
        run.status = status
        run.step = step
        self.channel.publish(run.session_id, run.snapshot())
