"""Core pipeline for nb2tex."""

from __future__ import annotations

import copy
import json
import logging
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from .body import extract_document_body, postprocess_body
from .directives import rewrite_markdown_with_directives
from .errors import (
    ConversionError,
    DocumentStructureError,
    ExternalToolFailed,
    ExternalToolUnavailable,
    NotebookUnreadable,
    TemporaryIOError,
)
from .latex import DATE_PLACEHOLDER, LATEX_HEADER, tex_escape
from .metadata import Metadata, Person, cell_source, parse_meta_from_first_markdown

LOG = logging.getLogger("nb2tex")

EXIT_INVALID_ARGS = 6
EXIT_NBCONVERT_MISSING = 8
EXIT_CONVERSION_FAILED = 10

PYTHON_ENV = "NB2TEX_PYTHON"
DEFAULT_INTERPRETERS = ("python", "python3")

SCRATCH_SUFFIX = ".__abstmp__"
SCRATCH_ARTIFACT_SUFFIXES = (".ipynb", ".tex", ".log", ".aux", ".out")
NOTEBOOK_SUFFIX = ".ipynb"

PathLike = Union[str, Path]

__all__ = [
    "ConversionError",
    "ConversionResult",
    "DocumentStructureError",
    "ExternalToolFailed",
    "ExternalToolUnavailable",
    "NotebookUnreadable",
    "TemporaryIOError",
    "ToolCandidate",
    "assemble_document",
    "build_frontmatter",
    "build_pdf_metadata",
    "check_nbconvert",
    "convert_notebook_to_latex",
    "convert_notebooks",
    "find_notebooks",
    "relocate_output_files",
    "resolve_nbconvert",
    "setup_logging",
]


@dataclass(frozen=True)
class ToolCandidate:
    executable: str

    def command(self, *args: str) -> List[str]:
        return [self.executable, "-m", "nbconvert", *args]


@dataclass
class ConversionResult:
    output_path: Path
    metadata: Metadata


@dataclass
class ScratchFiles:
    """Temporary notebook handed to nbconvert plus the artifacts it leaves behind."""

    base: Path
    tmp_dir: Optional[Path] = None

    @property
    def notebook(self) -> Path:
        return self.base.with_name(self.base.name + ".ipynb")

    @property
    def files_dir(self) -> Path:
        """Directory where nbconvert extracts images referenced by the ``.tex``."""
        return self.base.with_name(self.base.name + "_files")

    def artifacts(self) -> List[Path]:
        return [self.base.with_name(self.base.name + suffix) for suffix in SCRATCH_ARTIFACT_SUFFIXES]


def _resolve_log_level(verbose: bool, debug: bool) -> int:
    return logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)


def _configure_nb2tex_logger(level: int) -> None:
    LOG.setLevel(level)
    LOG.propagate = False
    if not LOG.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        handler.setLevel(level)
        LOG.addHandler(handler)
    else:
        for handler in LOG.handlers:
            handler.setLevel(level)
            if handler.formatter is None:
                handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))


def setup_logging(verbose: bool, debug: bool) -> None:
    level = _resolve_log_level(verbose, debug)
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    _configure_nb2tex_logger(level)


def _progress_bar_line(current: int, total: int, width: int = 24) -> str:
    if total <= 0:
        return "[?]"
    clamped = max(0, min(current, total))
    filled = min(int((clamped / total) * width), width)
    return "[" + "#" * filled + "." * (width - filled) + "]"


def _log_batch_progress(current: int, total: int, detail: str) -> None:
    counter = f"[{current}/{total}]" if total > 0 else f"[{current}]"
    LOG.info("Converting %s %s | %s", _progress_bar_line(current, total), counter, detail)


def safe_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8", newline="\n")


# --- nbconvert invocation ---


def tool_candidates() -> List[ToolCandidate]:
    names: List[str] = []
    override = (os.environ.get(PYTHON_ENV) or "").strip()
    if override:
        names.append(override)
    for name in DEFAULT_INTERPRETERS:
        if name not in names:
            names.append(name)
    return [ToolCandidate(name) for name in names]


def _probe_candidate(candidate: ToolCandidate) -> bool:
    try:
        result = subprocess.run(candidate.command("--version"), capture_output=True, text=True, check=False)
    except OSError as exc:
        LOG.debug("nbconvert probe: cannot spawn %s (%s)", candidate.executable, exc)
        return False
    LOG.debug("nbconvert probe: %s exited with %s", candidate.executable, result.returncode)
    return result.returncode == 0


def resolve_nbconvert(candidates: Optional[Sequence[ToolCandidate]] = None) -> ToolCandidate:
    """Return the first candidate able to run ``nbconvert --version``."""
    for candidate in candidates if candidates is not None else tool_candidates():
        if _probe_candidate(candidate):
            return candidate
    raise ExternalToolUnavailable("nbconvert not found (install it with: pip install nbconvert)")


def check_nbconvert() -> bool:
    try:
        resolve_nbconvert()
    except ExternalToolUnavailable:
        return False
    return True


def run_nbconvert(notebook: Path, output_base: Path, candidates: Sequence[ToolCandidate]) -> Path:
    """Run ``nbconvert --to latex`` next to ``notebook`` and return the generated ``.tex`` path.

    Candidates that cannot be spawned are skipped; a non-zero exit from a
    spawned candidate is final.
    """
    tex_path = output_base.with_name(output_base.name + ".tex")
    for candidate in candidates:
        cmd = candidate.command("--to", "latex", "--output", output_base.name, str(notebook))
        LOG.debug("Running: %s", " ".join(cmd))
        try:
            result = subprocess.run(cmd, cwd=str(notebook.parent), capture_output=True, text=True, check=False)
        except OSError as exc:
            LOG.debug("Cannot spawn %s: %s", candidate.executable, exc)
            continue

        output = "\n".join(part.strip() for part in (result.stderr, result.stdout) if part and part.strip())
        if result.returncode != 0:
            raise ExternalToolFailed(
                f"nbconvert failed: {output or 'Unknown error'}",
                returncode=result.returncode,
                output=output,
            )
        if not tex_path.is_file():
            raise ExternalToolFailed(
                f"nbconvert did not produce {tex_path.name}",
                returncode=result.returncode,
                output=output,
            )
        return tex_path
    raise ExternalToolUnavailable("nbconvert could not be started with any Python interpreter")


# --- scratch files ---


def _writable_dir(path: Path) -> bool:
    return os.access(path, os.W_OK)


def _scratch_in(directory: Path, nb_path: Path, tmp_dir: Optional[Path] = None) -> ScratchFiles:
    return ScratchFiles(base=directory / f"{nb_path.stem}{SCRATCH_SUFFIX}", tmp_dir=tmp_dir)


def _scratch_in_tempdir(nb_path: Path) -> ScratchFiles:
    tmp_dir = Path(tempfile.mkdtemp(prefix="nb2tex-"))
    return _scratch_in(tmp_dir, nb_path, tmp_dir)


def write_scratch_notebook(nb_path: Path, notebook: Dict[str, Any]) -> ScratchFiles:
    """Write the scratch notebook beside ``nb_path``, or in a temporary directory when that fails."""
    payload = json.dumps(notebook, ensure_ascii=False, indent=2)
    if _writable_dir(nb_path.parent):
        scratch = _scratch_in(nb_path.parent, nb_path)
        try:
            scratch.notebook.write_text(payload, encoding="utf-8")
            return scratch
        except OSError as exc:
            LOG.debug("Cannot write %s (%s); using a temporary directory", scratch.notebook, exc)
            remove_scratch_files(scratch)

    try:
        scratch = _scratch_in_tempdir(nb_path)
    except OSError as exc:
        raise TemporaryIOError(f"Unable to create a temporary directory: {exc}") from exc
    try:
        scratch.notebook.write_text(payload, encoding="utf-8")
    except OSError as exc:
        remove_scratch_files(scratch)
        raise TemporaryIOError(f"Unable to write temporary notebook {scratch.notebook}: {exc}") from exc
    return scratch


def _remove_artifact(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        return
    except OSError as exc:
        raise TemporaryIOError(f"Unable to remove temporary file {path}: {exc}") from exc


def relocate_output_files(scratch: ScratchFiles, out_dir: Path) -> Optional[Path]:
    """Move the nbconvert image directory into ``out_dir`` so relative ``\\includegraphics`` paths resolve."""
    source = scratch.files_dir
    if not source.is_dir():
        return None
    target = out_dir / source.name
    if target.resolve() == source.resolve():
        return target
    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        if target.exists():
            shutil.rmtree(target)
        shutil.move(str(source), str(target))
    except OSError as exc:
        raise ConversionError(f"Unable to move extracted images to {target}: {exc}") from exc
    LOG.debug("Moved extracted images to %s", target)
    return target


def remove_scratch_files(scratch: ScratchFiles) -> None:
    for path in scratch.artifacts():
        try:
            _remove_artifact(path)
        except TemporaryIOError as exc:
            LOG.warning("%s", exc)
    if scratch.tmp_dir is not None:
        try:
            shutil.rmtree(scratch.tmp_dir)
        except FileNotFoundError:
            pass
        except OSError as exc:
            LOG.warning("Unable to remove temporary directory %s: %s", scratch.tmp_dir, exc)


# --- notebook handling ---


def load_notebook(nb_path: Path) -> Dict[str, Any]:
    try:
        raw = nb_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise NotebookUnreadable(f"Unable to read notebook {nb_path}: {exc}") from exc
    try:
        notebook = json.loads(raw)
    except ValueError as exc:
        raise NotebookUnreadable(f"Invalid notebook JSON in {nb_path}: {exc}") from exc
    if not isinstance(notebook, dict):
        raise NotebookUnreadable(f"Notebook {nb_path} is not a JSON object")
    return notebook


def prepare_scratch_notebook(
    notebook: Dict[str, Any], first_md_idx: Optional[int], root_dir: Path
) -> Dict[str, Any]:
    """Copy ``notebook``, blank the metadata cell and rewrite directives in every markdown cell."""
    scratch = copy.deepcopy(notebook)
    cells = scratch.get("cells") or []
    if first_md_idx is not None and first_md_idx < len(cells):
        cells[first_md_idx]["source"] = []

    rewritten = 0
    for idx, cell in enumerate(cells):
        if idx == first_md_idx:
            continue
        if not isinstance(cell, dict) or cell.get("cell_type") != "markdown":
            continue
        cell["source"] = [rewrite_markdown_with_directives(cell_source(cell), root_dir)]
        rewritten += 1
    LOG.debug("Rewrote %d markdown cell(s)", rewritten)
    return scratch


# --- frontmatter and assembly ---


def _person_block(person: Person) -> str:
    line = "{\\normalsize " + tex_escape(person.name)
    email = person.email.strip()
    if email:
        line += f" \\quad {{\\small(\\href{{mailto:{email}}}{{{tex_escape(email)}}})}}"
    line += " \\par}"
    if person.affiliation:
        line += f"\n{{\\small {tex_escape(person.affiliation)} \\par}}"
    return line


def build_frontmatter(meta: Metadata) -> str:
    parts = ["\\begin{center}"]
    if meta.title:
        parts.append(f"{{\\LARGE\\bfseries {tex_escape(meta.title)} \\par}}")
    if meta.subtitle:
        parts.append(f"\\vspace{{0.35em}}{{\\large {tex_escape(meta.subtitle)} \\par}}")
    parts.append("\\vspace{1.0em}")

    for idx, author in enumerate(meta.authors):
        parts.append(_person_block(author))
        if idx < len(meta.authors) - 1:
            parts.append("\\vspace{0.5em}")

    if meta.supervisors:
        parts.append("\\vspace{0.8em}{\\small\\itshape Supervisor(s)\\par}")
        parts.append("\\vspace{0.3em}")
        for idx, supervisor in enumerate(meta.supervisors):
            parts.append(_person_block(supervisor))
            if idx < len(meta.supervisors) - 1:
                parts.append("\\vspace{0.4em}")

    parts.append("\\end{center}")
    parts.append("\\vspace{0.8em}")
    return "\n".join(parts) + "\n"


def build_pdf_metadata(meta: Metadata) -> str:
    lines = []
    if meta.title:
        lines.append(f"\\title{{{tex_escape(meta.title)}}}")
    if meta.authors:
        names = ", ".join(person.name for person in meta.authors if person.name)
        lines.append(f"\\author{{{tex_escape(names)}}}")
    lines.append(f"\\date{{{tex_escape(meta.date or DATE_PLACEHOLDER)}}}")
    return "\n".join(lines) + "\n"


def assemble_document(meta: Metadata, body: str) -> str:
    return (
        f"{LATEX_HEADER}{build_pdf_metadata(meta)}\\begin{{document}}\n"
        "% --- front matter ---\n"
        f"{build_frontmatter(meta)}{body.strip()}\n\n"
        "\\end{document}\n"
    )


# --- drivers ---


def convert_notebook_to_latex(
    nb_path: PathLike,
    output_path: Optional[PathLike] = None,
    root_dir: Optional[PathLike] = None,
    tool: Optional[ToolCandidate] = None,
) -> ConversionResult:
    """Convert one notebook; ``tool`` skips the nbconvert lookup when already resolved."""
    nb_path = Path(nb_path)
    out_tex = Path(output_path) if output_path else nb_path.with_suffix(".tex")
    root = Path(root_dir) if root_dir else nb_path.parent
    LOG.info("Converting notebook: %s", nb_path)

    notebook = load_notebook(nb_path)
    meta, first_md_idx = parse_meta_from_first_markdown(notebook)
    scratch_notebook = prepare_scratch_notebook(notebook, first_md_idx, root)

    if tool is None:
        tool = resolve_nbconvert()
    LOG.info("Using nbconvert via %s", tool.executable)

    scratch = write_scratch_notebook(nb_path, scratch_notebook)
    try:
        tex_path = run_nbconvert(scratch.notebook, scratch.base, [tool])
        try:
            tex = tex_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ExternalToolFailed(f"Unable to read nbconvert output {tex_path}: {exc}") from exc

        body = extract_document_body(tex, str(tex_path))
        body = postprocess_body(body, meta, nb_path.with_suffix(""), root)
        try:
            safe_write_text(out_tex, assemble_document(meta, body))
        except OSError as exc:
            raise ConversionError(f"Unable to write {out_tex}: {exc}") from exc
        relocate_output_files(scratch, out_tex.parent)
    finally:
        remove_scratch_files(scratch)

    LOG.info("Created: %s", out_tex)
    return ConversionResult(output_path=out_tex, metadata=meta)


def _is_scratch_notebook(path: Path) -> bool:
    return path.name.endswith(SCRATCH_SUFFIX + NOTEBOOK_SUFFIX)


def find_notebooks(dir_path: PathLike) -> List[Path]:
    root = Path(dir_path)
    found = []
    for path in root.rglob(f"*{NOTEBOOK_SUFFIX}"):
        rel_parts = path.relative_to(root).parts
        if any(part.startswith(".") for part in rel_parts):
            continue
        if _is_scratch_notebook(path) or not path.is_file():
            continue
        found.append(path)
    return sorted(found)


def convert_notebooks(
    dir_path: PathLike,
    root_dir: Optional[PathLike] = None,
    tool: Optional[ToolCandidate] = None,
) -> List[ConversionResult]:
    """Convert every notebook under ``dir_path``; failures are logged and skipped."""
    dir_path = Path(dir_path)
    if tool is None:
        try:
            tool = resolve_nbconvert()
        except ExternalToolUnavailable:
            LOG.warning("nbconvert not available, skipping notebook conversion")
            return []

    root = Path(root_dir) if root_dir else dir_path
    notebooks = find_notebooks(dir_path)
    converted: List[ConversionResult] = []
    for idx, nb_path in enumerate(notebooks, start=1):
        _log_batch_progress(idx, len(notebooks), nb_path.name)
        try:
            converted.append(convert_notebook_to_latex(nb_path, None, root, tool))
        except ConversionError as exc:
            LOG.warning("Failed to convert %s: %s", nb_path.name, exc)
    return converted
