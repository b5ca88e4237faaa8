import json
import logging
import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_CDN = "https://cdn.jsdelivr.net/npm/mermaid@10/dist/mermaid.min.js"
CONFIG_FILENAME = "mermaid-config.json"


class _Options(BaseModel):
    # Unknown keys are kept and written back untouched
    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True, extra="allow"
    )


class FlowchartOptions(_Options):
    use_max_width: bool = True
    html_labels: bool = True
    curve: str = "basis"


class SequenceOptions(_Options):
    diagram_margin_x: int = 50
    diagram_margin_y: int = 10
    actor_margin: int = 50
    width: int = 150
    height: int = 65
    box_margin: int = 10
    box_text_margin: int = 5
    note_margin: int = 10
    message_margin: int = 35


class GanttOptions(_Options):
    title_top_margin: int = 25
    bar_height: int = 20
    font_family: str = '"Open-Sans", "sans-serif"'
    font_size: int = 11
    grid_line_start_padding: int = 35
    bottom_padding: int = 25


class MermaidConfig(_Options):
    flowchart: FlowchartOptions = Field(default_factory=FlowchartOptions)
    sequence: SequenceOptions = Field(default_factory=SequenceOptions)
    gantt: GanttOptions = Field(default_factory=GanttOptions)


class RenderOptions(_Options):
    """Persisted rendering options (``mermaid-config.json``)."""

    image_format: Literal["png", "svg"] = "png"
    image_scale: float = Field(default=2, gt=0, le=5)
    theme: Literal["default", "dark", "forest", "neutral", "base"] = "default"
    background_color: str = "white"
    width: int = Field(default=1200, gt=0)
    height: int = Field(default=800, gt=0)
    quality: int = Field(default=90, ge=0, le=100)
    include_source: bool = False
    custom_css: str = Field(default="", alias="customCSS")
    mermaid_config: MermaidConfig = Field(default_factory=MermaidConfig)

    @field_validator("image_format", "theme", mode="before")
    @classmethod
    def _lower(cls, v: object) -> object:
        return v.strip().lower() if isinstance(v, str) else v

    def to_document(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    base_dir: Path
    docs_dir: Path
    output_dir: Path
    config_file: Path
    render: RenderOptions = Field(default_factory=RenderOptions)
    mermaid_cdn: str = DEFAULT_CDN
    doc_extension: str = ".md"
    render_timeout_sec: float = 10
    hash_filenames: bool = False
    fail_on_partial: bool = False
    # Logging
    log_file: Path | None = None
    log_level: str = "INFO"
    log_max_bytes: int = 5 * 1024 * 1024
    log_backups: int = 5

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return (v or "INFO").upper()

    @field_validator("base_dir", "docs_dir", "output_dir", "config_file", mode="before")
    @classmethod
    def _ensure_path(cls, v: Path | str) -> Path:
        return Path(v).expanduser().resolve()

    @field_validator("log_file", mode="before")
    @classmethod
    def _ensure_log_path(cls, v: str | Path | None) -> Path | None:
        if not v:
            return None
        return Path(v).expanduser().resolve()

    @field_validator("doc_extension", mode="before")
    @classmethod
    def _dotted(cls, v: str) -> str:
        v = (v or ".md").strip().lower()
        return v if v.startswith(".") else f".{v}"

    def snapshot(self) -> dict:
        """Configuration as recorded in the generation report."""
        return {
            "docsPath": str(self.docs_dir),
            "outputPath": str(self.output_dir),
            "mermaidCDN": self.mermaid_cdn,
            **self.render.to_document(),
        }


def _write_options(path: Path, options: RenderOptions) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(options.to_document(), indent=2) + "\n", encoding="utf-8")


def load_render_options(path: Path) -> RenderOptions:
    """Load options from ``path``, creating or completing the file with defaults."""
    if not path.exists():
        options = RenderOptions()
        _write_options(path, options)
        logging.info("Created default configuration at %s", path)
        return options

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Configuration file {path} is not valid JSON: {e}") from e
    if not isinstance(raw, dict):
        raise RuntimeError(f"Configuration file {path} must contain a JSON object")

    try:
        options = RenderOptions.model_validate(raw)
    except ValidationError as e:
        raise RuntimeError(f"Invalid configuration in {path}:\n{e}") from e

    missing = set(options.to_document()) - set(raw)
    if missing:
        _write_options(path, options)
        logging.info("Added default values for %s to %s", ", ".join(sorted(missing)), path)
    return options


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").lower() in {"1", "true", "yes", "y"}


def load_settings(
    docs_dir: str | Path | None = None,
    output_dir: str | Path | None = None,
    config_file: str | Path | None = None,
    fail_on_partial: bool | None = None,
    hash_filenames: bool | None = None,
) -> Settings:
    """Build settings from the environment; explicit arguments win."""
    base_dir = Path(os.getenv("BASE_DIR", ".") or ".").expanduser().resolve()

    # Relative locations are taken from BASE_DIR
    docs_dir = base_dir / Path(docs_dir or os.getenv("MERMAID_DOCS_DIR") or "docs").expanduser()
    output_dir = base_dir / Path(
        output_dir or os.getenv("MERMAID_OUTPUT_DIR") or "assets/mermaid"
    ).expanduser()
    config_file = base_dir / Path(
        config_file or os.getenv("MERMAID_CONFIG_FILE") or CONFIG_FILENAME
    ).expanduser()
    config_file = config_file.resolve()

    try:
        timeout = float(os.getenv("RENDER_TIMEOUT_SEC", "10") or 10)
    except ValueError as e:
        raise RuntimeError("RENDER_TIMEOUT_SEC must be a number") from e
    if timeout <= 0:
        raise RuntimeError("RENDER_TIMEOUT_SEC must be positive")

    # Logging
    log_file_raw = os.getenv("LOG_FILE", "").strip()
    log_level = (os.getenv("LOG_LEVEL", "INFO") or "INFO").upper()
    log_max_bytes = int(os.getenv("LOG_MAX_BYTES", str(5 * 1024 * 1024)))
    log_backups = int(os.getenv("LOG_BACKUPS", "5"))

    return Settings(
        base_dir=base_dir,
        docs_dir=docs_dir,
        output_dir=output_dir,
        config_file=config_file,
        render=load_render_options(config_file),
        mermaid_cdn=os.getenv("MERMAID_CDN", "").strip() or DEFAULT_CDN,
        doc_extension=os.getenv("DOC_EXTENSION", ".md"),
        render_timeout_sec=timeout,
        hash_filenames=_env_flag("HASH_FILENAMES") if hash_filenames is None else hash_filenames,
        fail_on_partial=_env_flag("FAIL_ON_PARTIAL") if fail_on_partial is None else fail_on_partial,
        log_file=log_file_raw or None,
        log_level=log_level,
        log_max_bytes=log_max_bytes,
        log_backups=log_backups,
    )
