"""Texture conversion pipeline orchestrator.

Runs one batch: classify inputs, group them into material sets, convert each
member TIFF to JPEG on a bounded thread pool, write outputs under the
overwrite/preview rules, then emit material descriptors for the groups that
were fully processed.
"""

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from tqdm import tqdm

from .config import ChannelKind, RunConfig
from .core.classify import classify_inputs
from .core.errors import OutputConflictError, TexBrewError
from .core.grouping import GroupingResult, group_images
from .core.io import convert_to_jpeg
from .core.paths import OutputResolver
from .core.records import (
    ConversionResult, FailureReason, InputImage, MaterialGroup, Outcome, RunReport,
)
from .phases.material import GodotMaterialGenerator

logger = logging.getLogger("texture_pipeline")

Job = Tuple[InputImage, Path]


class TexturePipeline:
    """Convert a batch of TIFF textures and assemble their materials.

    A pipeline instance serves a single ``run()``. ``request_cancel()`` may
    be called from another thread (or a signal handler) while it runs.
    """

    def __init__(
        self,
        config: RunConfig,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ):
        self.config = config
        self._progress_callback = progress_callback
        self._results: Dict[int, ConversionResult] = {}
        self._results_lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._futures: Dict[Future, Job] = {}
        self.resolver = OutputResolver.from_config(config)
        self.material_generator = GodotMaterialGenerator(config, self.resolver)

    # ------------------------------------------
    # Helpers
    # ------------------------------------------

    def request_cancel(self):
        """Stop submitting new conversions; in-flight ones still finish."""
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _report_progress(self, done: int, total: int) -> None:
        if self._progress_callback is not None:
            try:
                self._progress_callback(int(done), max(int(total), 1))
            except Exception:
                logger.debug("Progress callback failed.", exc_info=True)

    def _record(self, result: ConversionResult) -> None:
        with self._results_lock:
            self._results[result.source.index] = result

    def _record_cancelled(self, image: InputImage, destination: Path) -> None:
        self._record(ConversionResult(
            source=image,
            destination=destination,
            outcome=Outcome.FAILED,
            reason=FailureReason.CANCELLED,
            message="Cancelled before conversion started",
        ))

    def _record_unexpected(self, image: InputImage, destination: Path, exc: Exception) -> None:
        logger.error("Unexpected error converting %s: %s", image.filename, exc, exc_info=True)
        self._record(ConversionResult(
            source=image,
            destination=destination,
            outcome=Outcome.FAILED,
            reason=FailureReason.ENCODE_ERROR,
            message=f"Unexpected error: {exc}",
        ))

    # ------------------------------------------
    # Stages
    # ------------------------------------------

    def _claim_destinations(self, grouping: GroupingResult) -> List[Job]:
        """Claim every member's destination in discovery order."""
        members = sorted(
            (image for group in grouping for image in group.members),
            key=lambda img: img.index,
        )
        jobs = []
        for image in members:
            destination = self.resolver.destination_for(image)
            try:
                self.resolver.claim(destination, image)
            except OutputConflictError as exc:
                logger.error("%s", exc)
                self._record(ConversionResult(
                    source=image,
                    destination=destination,
                    outcome=Outcome.FAILED,
                    reason=exc.reason,
                    message=str(exc),
                ))
                continue
            jobs.append((image, destination))
        return jobs

    def _convert_one(self, image: InputImage, destination: Path) -> ConversionResult:
        """Decode, encode and commit one file. Never raises ``TexBrewError``."""
        conv = self.config.conversion
        try:
            encoded = convert_to_jpeg(
                str(image.path),
                quality=conv.jpeg_quality,
                subsampling=conv.subsampling,
                optimize=conv.optimize,
                max_pixels=self.config.max_image_pixels,
            )
            outcome = self.resolver.commit(encoded.data, destination)
        except TexBrewError as exc:
            logger.error("Failed %s: %s", image.filename, exc)
            return ConversionResult(
                source=image,
                destination=destination,
                outcome=Outcome.FAILED,
                reason=exc.reason,
                message=str(exc),
            )
        notes = encoded.notes
        if outcome is Outcome.SKIPPED_PREVIEW and self.resolver.would_overwrite(destination):
            notes += ("destination exists",)
        return ConversionResult(
            source=image, destination=destination, outcome=outcome, notes=notes,
        )

    def _convert_sequential(self, jobs: List[Job]) -> None:
        total = len(jobs)
        for done, (image, destination) in enumerate(tqdm(jobs, desc="Converting", disable=None)):
            if self._cancel_event.is_set():
                for rest_image, rest_destination in jobs[done:]:
                    self._record_cancelled(rest_image, rest_destination)
                break
            try:
                self._record(self._convert_one(image, destination))
            except Exception as exc:
                self._record_unexpected(image, destination, exc)
            self._report_progress(done + 1, total)

    def _convert_parallel(self, jobs: List[Job], workers: int) -> None:
        total = len(jobs)
        done_items = 0
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="texbrew")
        try:
            futures = self._futures
            for image, destination in jobs:
                if self._cancel_event.is_set():
                    self._record_cancelled(image, destination)
                    done_items += 1
                    continue
                futures[executor.submit(self._convert_one, image, destination)] = (
                    image, destination,
                )
            pending = set(futures)
            with tqdm(total=total, initial=done_items, desc="Converting", disable=None) as pbar:
                while pending:
                    if self._cancel_event.is_set():
                        running = set()
                        for future in pending:
                            if future.cancel():
                                self._record_cancelled(*futures[future])
                                pbar.update(1)
                                done_items += 1
                            else:
                                running.add(future)
                        pending = running
                        if not pending:
                            break
                        logger.info("Waiting for %d in-flight conversion(s)", len(pending))
                        finished, pending = wait(pending)
                    else:
                        finished, pending = wait(
                            pending, timeout=0.2, return_when=FIRST_COMPLETED,
                        )
                    for future in finished:
                        image, destination = futures[future]
                        try:
                            self._record(future.result())
                        except Exception as exc:
                            self._record_unexpected(image, destination, exc)
                        pbar.update(1)
                        done_items += 1
                        self._report_progress(done_items, total)
        finally:
            executor.shutdown(wait=True, cancel_futures=True)

    def _convert_all(self, jobs: List[Job]) -> None:
        if not jobs:
            return
        workers = min(self.config.max_workers, len(jobs))
        logger.info("Converting %d file(s) with %d worker(s)", len(jobs), workers)
        try:
            if workers <= 1:
                self._convert_sequential(jobs)
            else:
                self._convert_parallel(jobs, workers)
        except KeyboardInterrupt:
            logger.warning("Interrupted; no further conversions will start")
            self._cancel_event.set()
            self._collect_finished()
        # Interrupts can leave jobs without a result.
        for image, destination in jobs:
            if image.index not in self._results:
                self._record_cancelled(image, destination)

    def _collect_finished(self) -> None:
        """Record futures that completed but were never collected."""
        for future, (image, destination) in self._futures.items():
            if not future.done() or future.cancelled() or image.index in self._results:
                continue
            try:
                self._record(future.result())
            except Exception as exc:
                self._record_unexpected(image, destination, exc)

    def _group_results(self, group: MaterialGroup) -> Dict[ChannelKind, ConversionResult]:
        return {kind: self._results[image.index] for kind, image in group.channels.items()}

    def _generate_materials(self, grouping: GroupingResult, report: RunReport) -> None:
        for group in grouping:
            if not group.has_recognized_channels:
                continue
            results = self._group_results(group)
            if any(r.reason is FailureReason.CANCELLED for r in results.values()):
                logger.info("Skipping material '%s': run was cancelled", group.base_name)
                continue
            material = self.material_generator.generate(group, results)
            if material is not None:
                report.materials.append(material)

    # ------------------------------------------
    # Entry point
    # ------------------------------------------

    def run(self) -> RunReport:
        """Run the batch and return its report."""
        config = self.config
        report = RunReport(preview=config.preview)
        if config.preview:
            logger.info("Preview mode: nothing will be written")

        images = classify_inputs(config.input_paths)
        grouping = group_images(images, self.resolver.destination_for)
        for conflict in grouping.conflicts:
            self._record(conflict)

        jobs = self._claim_destinations(grouping)
        self._convert_all(jobs)

        if config.generate_material:
            self._generate_materials(grouping, report)

        with self._results_lock:
            report.files = [self._results[i] for i in sorted(self._results)]
        report.cancelled = self._cancel_event.is_set()
        self._finalize(report)
        return report

    def _finalize(self, report: RunReport) -> None:
        incomplete = report.incomplete_materials
        logger.info(
            "Run complete: %d converted, %d skipped, %d failed, %d material(s) "
            "(%d incomplete)%s",
            report.converted, report.skipped, report.failed, len(report.materials),
            len(incomplete), " [cancelled]" if report.cancelled else "",
        )
        if self.config.report_path and not report.preview:
            try:
                report.save_json(self.config.report_path)
            except OSError as exc:
                logger.error("Failed to save report %s: %s", self.config.report_path, exc)
