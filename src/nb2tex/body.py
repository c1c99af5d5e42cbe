"""Post-processing of the LaTeX body produced by nbconvert."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .errors import DocumentStructureError
from .latex import tex_escape
from .metadata import Metadata

LOG = logging.getLogger("nb2tex")

BEGIN_DOCUMENT_RE = re.compile(r"\\begin\s*\{\s*document\s*\}")
END_DOCUMENT_MARKER = "\\end{document}"
TITLE_PAGE_RE = re.compile(
    r"^\s*(?:\\title\{.*?\}\s*)?(?:\\author\{.*?\}\s*)?(?:\\date\{.*?\}\s*)?\\maketitle\s*",
    re.DOTALL,
)
ABSTRACT_HEADER_RE = re.compile(
    r"\\section\*?\{\s*(?:Abstract|\\texorpdfstring\{\s*\\textbf\{Abstract\}\s*\}\{\s*Abstract\s*\})\s*\}"
    r"(?:\s*\\label\{[^}]*\})?",
    re.IGNORECASE,
)
NEXT_SECTION_RE = re.compile(r"^\s*\\section", re.MULTILINE)
INTRO_RE = re.compile(r"(?:^|\n)\s*(?:\\hypertarget\{[^}]*\}\{\s*)?\\section\*?\{\s*Introduction\s*\}")
INTRO_LOOKBACK = 40
SECTION_RE = re.compile(
    r"^\s*\\section\*?\{\s*([^}]+)\s*\}\s*(?:\\label\{[^}]*\}\s*)?",
    re.IGNORECASE | re.MULTILINE,
)
APPENDIX_HEADER_RE = re.compile(
    r"^\s*\\section\*?\{\s*(Appendix[^}]*)\s*\}\s*(?:\\label\{[^}]*\}\s*)?",
    re.IGNORECASE | re.MULTILINE,
)

DISPLAY_DOLLAR_RE = re.compile(r"\$\$\s*(.*?)\s*\$\$", re.DOTALL)
DISPLAY_BRACKET_RE = re.compile(r"(?<!\\)\\\[\s*(.*?)\s*\\\]", re.DOTALL)
ALIGN_STAR_RE = re.compile(r"\\begin\{align\*\}\s*(.*?)\s*\\end\{align\*\}", re.DOTALL)
GATHER_STAR_RE = re.compile(r"\\begin\{gather\*\}\s*(.*?)\s*\\end\{gather\*\}", re.DOTALL)
TAG_RE = re.compile(r"\\(?:tag|notag)\b")
MULTILINE_ENV_RE = re.compile(r"\\begin\{(?:align\*?|aligned|alignedat|gather\*?|gathered|multline\*?)\}")
ARRAY_ENV_RE = re.compile(r"\\begin\{array\}")

FOOTNOTE_DEF_RE = re.compile(r"^[ \t]*\\?\[\s*\^\s*(.+?)\s*\][ \t]*:[ \t]*(.*?)(?:\n|$)", re.MULTILINE)
FOOTNOTE_MARKER_RE = re.compile(r"\\?\[\s*\^\s*(.+?)\s*\]")

BIB_STYLE = "apalike"


def extract_document_body(tex: str, source: str = "<nbconvert output>") -> str:
    begin = BEGIN_DOCUMENT_RE.search(tex)
    end_idx = tex.rfind(END_DOCUMENT_MARKER)
    if begin is None or end_idx < 0:
        raise DocumentStructureError(f"Could not find LaTeX document body in {source}")
    if end_idx <= begin.end():
        raise DocumentStructureError(f"Invalid document structure in {source}")
    return tex[begin.end() : end_idx]


def strip_title_page(body: str) -> str:
    return TITLE_PAGE_RE.sub("", body, count=1)


def process_abstract(body: str, meta: Metadata) -> str:
    match = ABSTRACT_HEADER_RE.search(body)
    if not match:
        return body

    start = match.end()
    next_section = NEXT_SECTION_RE.search(body, start)
    end = next_section.start() if next_section else len(body)
    content = body[start:end].strip()

    abstract_tex = (
        "\n% --- Abstract ---\n"
        "\\begin{center}{\\bfseries Abstract}\\end{center}\n"
        f"{content}\n"
    )

    meta_lines = []
    if meta.date:
        meta_lines.append(f"\\noindent\\textbf{{Date:}} {tex_escape(meta.date)}")
    if meta.keywords:
        meta_lines.append(f"\\noindent\\textbf{{Keywords:}} {tex_escape(meta.keywords)}")
    if meta_lines:
        abstract_tex += (
            "\\par\\medskip\n"
            "{\\setlength{\\parskip}{0.25\\baselineskip}\n"
            + "\\par\n".join(meta_lines)
            + "\n}\n\n"
        )

    return body[: match.start()] + abstract_tex + body[end:]


def force_intro_new_page(body: str) -> str:
    match = INTRO_RE.search(body)
    if not match:
        return body
    prefix = body[max(0, match.start() - INTRO_LOOKBACK) : match.start()]
    if "\\clearpage" in prefix or "\\newpage" in prefix:
        return body
    return body[: match.start()] + "\n\\clearpage\n" + body[match.start() :]


def _wrap_equation(inner: str, sub_env: Optional[str] = None) -> str:
    if sub_env:
        inner = f"\\begin{{{sub_env}}}\n{inner}\n\\end{{{sub_env}}}"
    return "\\begingroup\\small\\begin{equation}\n" + inner + "\n\\end{equation}\\endgroup"


def _has_tag(inner: str) -> bool:
    return bool(TAG_RE.search(inner))


def _should_use_aligned(inner: str) -> bool:
    if MULTILINE_ENV_RE.search(inner) or ARRAY_ENV_RE.search(inner):
        return False
    return "\\\\" in inner and "&" in inner


def ensure_numbered_display_math(body: str) -> str:
    """Turn bare and starred display math into numbered ``equation`` environments."""

    def _display(match: "re.Match[str]") -> str:
        inner = match.group(1)
        if _has_tag(inner):
            return match.group(0)
        return _wrap_equation(inner, "aligned" if _should_use_aligned(inner) else None)

    def _starred(sub_env: str):
        def _replace(match: "re.Match[str]") -> str:
            inner = match.group(1)
            if _has_tag(inner):
                return match.group(0)
            return _wrap_equation(inner, sub_env)

        return _replace

    body = DISPLAY_DOLLAR_RE.sub(_display, body)
    body = DISPLAY_BRACKET_RE.sub(_display, body)

    body = body.replace("\\begin{equation*}", "\\begin{equation}")
    body = body.replace("\\end{equation*}", "\\end{equation}")

    body = ALIGN_STAR_RE.sub(_starred("aligned"), body)
    body = GATHER_STAR_RE.sub(_starred("gathered"), body)

    body = body.replace("\\begin{multline*}", "\\begin{multline}")
    body = body.replace("\\end{multline*}", "\\end{multline}")
    return body


def collect_footnote_definitions(body: str) -> Tuple[str, Dict[str, str]]:
    definitions: Dict[str, str] = {}

    def _collect(match: "re.Match[str]") -> str:
        definitions[match.group(1).strip()] = match.group(2).strip()
        return ""

    return FOOTNOTE_DEF_RE.sub(_collect, body), definitions


def replace_footnote_markers(body: str, definitions: Dict[str, str]) -> str:
    def _marker(match: "re.Match[str]") -> str:
        fn_id = match.group(1).strip()
        if fn_id not in definitions:
            return match.group(0)
        return f"\\footnote{{{tex_escape(definitions[fn_id])}}}"

    return FOOTNOTE_MARKER_RE.sub(_marker, body)


def insert_markdown_footnotes(body: str) -> str:
    # Definitions are gathered over the whole body first so forward references resolve.
    body, definitions = collect_footnote_definitions(body)
    if definitions:
        LOG.debug("Resolved %d footnote definition(s)", len(definitions))
    return replace_footnote_markers(body, definitions)


def find_sections(body: str) -> List[Tuple[str, int, int]]:
    matches = list(SECTION_RE.finditer(body))
    sections: List[Tuple[str, int, int]] = []
    for idx, match in enumerate(matches):
        end = matches[idx + 1].start() if idx + 1 < len(matches) else len(body)
        sections.append((match.group(1).strip(), match.start(), end))
    return sections


def make_unnumbered_with_toc(title: str) -> str:
    escaped = tex_escape(title)
    return f"\\section*{{{escaped}}}\n\\addcontentsline{{toc}}{{section}}{{{escaped}}}\n"


def normalise_appendix_block(block: str) -> str:
    return APPENDIX_HEADER_RE.sub(lambda m: make_unnumbered_with_toc(m.group(1).strip()), block, count=1)


def relocate_appendices(body: str) -> Tuple[str, List[str]]:
    """Split appendix sections out of ``body``; returns the remaining body and the appendix blocks."""
    appendices: List[str] = []
    parts: List[str] = []
    cursor = 0
    for title, start, end in find_sections(body):
        parts.append(body[cursor:start])
        if title.lower().startswith("appendix"):
            appendices.append(body[start:end])
        else:
            parts.append(body[start:end])
        cursor = end
    parts.append(body[cursor:])
    return "".join(parts), appendices


def insert_after_conclusion(body: str, insert_text: str) -> str:
    for title, _, end in reversed(find_sections(body)):
        if title.lower() == "conclusion":
            return body[:end] + insert_text + body[end:]
    return body + insert_text


def detect_bibfile(base: Path, root_dir: Path) -> Optional[Path]:
    candidates = [root_dir / f"{Path(base).name}.bib", root_dir / "references.bib"]
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    if root_dir.is_dir():
        found = sorted(p for p in root_dir.iterdir() if p.suffix == ".bib" and p.is_file())
        if found:
            return found[0]
    return None


def build_bibliography_block(bibfile: Path) -> str:
    return (
        "\n\\clearpage\n"
        f"\\bibliographystyle{{{BIB_STYLE}}}\n"
        f"\\bibliography{{{bibfile.stem}}}\n"
    )


def build_tail(appendices: List[str], bibfile: Optional[Path]) -> str:
    tail = ""
    if appendices:
        normalized = [normalise_appendix_block(block) for block in appendices]
        tail += "\n\\clearpage\n" + "\n\\clearpage\n".join(normalized)
    if bibfile is not None:
        tail += build_bibliography_block(bibfile)
    return tail


def postprocess_body(body: str, meta: Metadata, base: Path, root_dir: Path) -> str:
    body = strip_title_page(body)
    body = process_abstract(body, meta)
    body = force_intro_new_page(body)
    body = ensure_numbered_display_math(body)
    body = insert_markdown_footnotes(body)

    body, appendices = relocate_appendices(body)
    if appendices:
        LOG.info("Relocating %d appendix section(s)", len(appendices))

    bibfile = detect_bibfile(base, root_dir)
    if bibfile is not None:
        LOG.info("Using bibliography: %s", bibfile)

    tail = build_tail(appendices, bibfile)
    if tail:
        body = insert_after_conclusion(body, tail)
    return body
