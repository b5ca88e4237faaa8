from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from .config import Settings
from .extract import DiagramBlock, derive_filename, extract_blocks
from .renderer import BrowserRenderer, RenderError
from .rewrite import embedding_reference, rewrite_document
from .utils import human_bytes, to_posix_reference
from .walker import walk_documents

REPORT_FILENAME = "generation-report.json"


class Renderer(Protocol):
    async def render(self, code: str, base_filename: str) -> Path: ...


RendererFactory = Callable[[Settings], AbstractAsyncContextManager[Renderer]]


class RunState(str, Enum):
    IDLE = "idle"
    ENGINE_STARTING = "engine_starting"
    WALKING = "walking"
    PROCESSING_DOCUMENT = "processing_document"
    REPORT_GENERATED = "report_generated"
    ENGINE_STOPPED = "engine_stopped"


@dataclass(frozen=True)
class RenderResult:
    source_document: Path
    output_image_path: Path
    relative_reference: str

    def to_detail(self) -> dict[str, str]:
        return {
            "file": str(self.source_document),
            "image": str(self.output_image_path),
            "relativePath": self.relative_reference,
        }


class GenerationManifest(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    timestamp: str
    config: dict[str, Any]
    processed_files: int = Field(alias="processedFiles")
    generated_images: int = Field(alias="generatedImages")
    failed_blocks: int = Field(default=0, alias="failedBlocks")
    details: list[dict[str, str]] = Field(default_factory=list)

    def write(self, path: Path) -> None:
        path.write_text(self.model_dump_json(by_alias=True, indent=2) + "\n", encoding="utf-8")


@dataclass
class BlockFailure:
    document: Path
    ordinal: int
    error: str


@dataclass
class RunSummary:
    processed_files: list[Path] = field(default_factory=list)
    results: list[RenderResult] = field(default_factory=list)
    failures: list[BlockFailure] = field(default_factory=list)
    failed_documents: list[Path] = field(default_factory=list)
    report_path: Path | None = None

    @property
    def partial(self) -> bool:
        return bool(self.failures or self.failed_documents)


class MermaidImageGenerator:
    """Walks the documents tree, renders every diagram and rewrites the files.

    The renderer is acquired once for the whole run and released on every
    exit path. Render failures are isolated to their block; read/write
    failures to their document. Anything else ends the run.
    """

    def __init__(self, settings: Settings, renderer_factory: RendererFactory = BrowserRenderer):
        self.settings = settings
        self.renderer_factory = renderer_factory
        self.state = RunState.IDLE
        self.summary = RunSummary()
        self._names: dict[str, tuple[Path, int]] = {}

    def _enter(self, state: RunState) -> None:
        logging.debug("Generator state: %s -> %s", self.state.value, state.value)
        self.state = state

    async def run(self) -> RunSummary:
        settings = self.settings
        self.summary = RunSummary()
        self._names = {}
        settings.output_dir.mkdir(parents=True, exist_ok=True)

        self._enter(RunState.ENGINE_STARTING)
        try:
            async with self.renderer_factory(settings) as renderer:
                self._enter(RunState.WALKING)
                documents = walk_documents(settings.docs_dir, settings.doc_extension)
                for doc_path in documents:
                    self._enter(RunState.PROCESSING_DOCUMENT)
                    try:
                        await self.process_document(renderer, doc_path)
                    except (OSError, UnicodeDecodeError):
                        logging.exception("Failed to process %s", doc_path)
                        self.summary.failed_documents.append(doc_path)
                    self._enter(RunState.WALKING)
                self.summary.report_path = self.write_report()
                self._enter(RunState.REPORT_GENERATED)
        finally:
            self._enter(RunState.ENGINE_STOPPED)
        self._log_summary()
        return self.summary

    async def process_document(self, renderer: Renderer, doc_path: Path) -> None:
        """Render the diagrams of one document and rewrite it in place."""
        settings = self.settings
        # newline="" keeps CRLF/LF exactly as found
        with open(doc_path, encoding="utf-8", newline="") as f:
            content = f.read()
        blocks = extract_blocks(content)
        if not blocks:
            logging.debug("No mermaid diagrams in %s", doc_path)
            return

        logging.info("Processing %s (%d diagram(s))", doc_path, len(blocks))
        replacements: list[tuple[DiagramBlock, str]] = []
        results: list[RenderResult] = []
        for block in blocks:
            name = self._filename_for(doc_path, block.ordinal)
            try:
                image_path = await renderer.render(block.code, name)
            except RenderError as e:
                logging.error("Diagram %d in %s was not rendered: %s", block.ordinal, doc_path, e)
                self.summary.failures.append(BlockFailure(doc_path, block.ordinal, str(e)))
                continue

            relative = to_posix_reference(image_path, settings.base_dir)
            reference = embedding_reference(
                relative, block if settings.render.include_source else None
            )
            replacements.append((block, reference))
            results.append(RenderResult(doc_path, image_path, relative))
            logging.info("Generated %s", relative)

        updated = rewrite_document(content, replacements)
        if updated != content:
            doc_path.write_text(updated, encoding="utf-8", newline="")
        # Only images that are actually linked from the document are reported
        self.summary.results.extend(results)
        self.summary.processed_files.append(doc_path)

    def _filename_for(self, doc_path: Path, ordinal: int) -> str:
        name = derive_filename(
            doc_path, ordinal, self.settings.docs_dir, hash_suffix=self.settings.hash_filenames
        )
        previous = self._names.setdefault(name, (doc_path, ordinal))
        if previous != (doc_path, ordinal):
            logging.warning(
                "Image name %r for diagram %d in %s already used by diagram %d in %s; "
                "set HASH_FILENAMES=true to keep them apart",
                name, ordinal, doc_path, previous[1], previous[0],
            )
        return name

    def build_manifest(self) -> GenerationManifest:
        return GenerationManifest(
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            config=self.settings.snapshot(),
            processed_files=len(self.summary.processed_files),
            generated_images=len(self.summary.results),
            failed_blocks=len(self.summary.failures),
            details=[r.to_detail() for r in self.summary.results],
        )

    def write_report(self) -> Path:
        path = self.settings.output_dir / REPORT_FILENAME
        self.build_manifest().write(path)
        return path

    def _log_summary(self) -> None:
        s = self.summary
        total = 0
        for r in s.results:
            try:
                total += r.output_image_path.stat().st_size
            except OSError:
                continue
        logging.info(
            "Processed %d file(s), generated %d image(s) (%s), %d diagram(s) failed",
            len(s.processed_files), len(s.results), human_bytes(total), len(s.failures),
        )
        if s.report_path is not None:
            logging.info("Report written to %s", s.report_path)
