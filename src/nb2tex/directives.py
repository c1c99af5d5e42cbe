"""Rewrite table, figure, code-table and math-table directives in markdown cells into LaTeX."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Type

from .latex import normalize_quotes, protect_for_lstinline, tex_escape, unescape_md_attr

LOG = logging.getLogger("nb2tex")

DIRECTIVE_KINDS = ("tbl", "fig", "codetbl", "mathtbl")
TRUTHY_VALUES = {"1", "true", "yes", "y"}
CODE_HEADERS = {"code", "pseudo", "pseudocode", "expression"}

CROSS_REF_RE = re.compile(r"\[@\s*((?:tab|tbl|fig):[A-Za-z0-9:_\-.]+)\s*\]")
FENCED_DIRECTIVE_RE = re.compile(
    r"```(?P<kind>codetbl|mathtbl|tbl|fig)[ \t]*(?P<attrs>\{[^}]*\})?[ \t]*"
    r"(?:\n(?P<body>.*?))?[ \t\n]*```",
    re.DOTALL,
)
BARE_DIRECTIVE_RE = re.compile(
    r"^[ \t]*(?P<kind>codetbl|mathtbl|tbl|fig)[ \t]*(?P<attrs>\{.*\})[ \t]*$",
    re.MULTILINE,
)
ATTR_ID_RE = re.compile(r"(?:^|(?<=\s))#([A-Za-z0-9:_\-.]+)")
ATTR_QUOTED_RE = re.compile(r""""[^"]*"|'[^']*'""")
ATTR_KV_RE =re.compile(r"""(\w+)=("([^"]*)"|'([^']*)'|([^\s}]+))""")
SEPARATOR_ROW_RE = re.compile(r"^[-:\s|]+$")


@dataclass(frozen=True)
class Directive:
    attrs: Dict[str, str] = field(default_factory=dict)
    identifier: Optional[str] = None
    body: Optional[str] = None

    def get(self, key: str, default: str = "") -> str:
        return self.attrs.get(key, default)

    @property
    def source(self) -> str:
        return (self.attrs.get("src") or self.attrs.get("path") or "").strip()


@dataclass(frozen=True)
class TableDirective(Directive):
    pass


@dataclass(frozen=True)
class FigureDirective(Directive):
    pass


@dataclass(frozen=True)
class CodeTableDirective(Directive):
    pass


@dataclass(frozen=True)
class MathTableDirective(Directive):
    pass


DIRECTIVE_TYPES: Dict[str, Type[Directive]] = {
    "tbl": TableDirective,
    "fig": FigureDirective,
    "codetbl": CodeTableDirective,
    "mathtbl": MathTableDirective,
}


def parse_attrs(attr_text: Optional[str]) -> Tuple[Optional[str], Dict[str, str]]:
    """Parse ``{#id key="value" key2=bare}`` into an identifier and an ordered mapping."""
    if not attr_text:
        return None, {}
    s = attr_text.strip()
    if s.startswith("{") and s.endswith("}"):
        s = s[1:-1].strip()

    identifier = None
    # quoted values are blanked so a "#" inside them is never taken as the id
    unquoted = ATTR_QUOTED_RE.sub(lambda m: " " * len(m.group(0)), s)
    id_match = ATTR_ID_RE.search(unquoted)
    if id_match:
        identifier = id_match.group(1)
        s = (s[: id_match.start()] + s[id_match.end() :]).strip()

    attrs: Dict[str, str] = {}
    for match in ATTR_KV_RE.finditer(s):
        raw = next((g for g in match.group(3, 4, 5) if g is not None), "")
        attrs[match.group(1)] = unescape_md_attr(raw.rstrip("}"))
    return identifier, attrs


def build_directive(kind: str, attr_text: Optional[str], body: Optional[str] = None) -> Directive:
    identifier, attrs = parse_attrs(attr_text)
    return DIRECTIVE_TYPES[kind](attrs=attrs, identifier=identifier, body=body)


def _directive_from_match(match: "re.Match[str]") -> Directive:
    body = match.groupdict().get("body")
    return build_directive(match.group("kind"), match.group("attrs"), body)


def parse_directives(md_src: str) -> List[Directive]:
    """Return every fenced and bare directive in ``md_src`` in document order."""
    found: List[Tuple[int, Directive]] = []
    for match in FENCED_DIRECTIVE_RE.finditer(md_src or ""):
        found.append((match.start(), _directive_from_match(match)))
    stripped = FENCED_DIRECTIVE_RE.sub(lambda m: re.sub(r"[^\n]", " ", m.group(0)), md_src or "")
    for match in BARE_DIRECTIVE_RE.finditer(stripped):
        found.append((match.start(), _directive_from_match(match)))
    found.sort(key=lambda item: item[0])
    return [directive for _, directive in found]


def read_source_text(src: str, root_dir: Path) -> str:
    path = Path(src)
    if not path.is_absolute():
        path = root_dir / path
    if not path.is_file():
        LOG.warning("Directive source not found: %s", path)
        return ""
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        LOG.warning("Unable to read directive source %s: %s", path, exc)
        return ""


def rows_from_raw_table(text: Optional[str]) -> List[List[str]]:
    rows: List[List[str]] = []
    for line in (text or "").split("\n"):
        if not line.strip():
            continue
        if SEPARATOR_ROW_RE.match(line.replace("|", "")):
            continue
        stripped = line.strip()
        if stripped.startswith("|"):
            stripped = stripped[1:]
        if stripped.endswith("|"):
            stripped = stripped[:-1]
        rows.append([cell.strip() for cell in stripped.split("|")])
    return rows


def _is_truthy(value: str) -> bool:
    return value.strip().lower() in TRUTHY_VALUES


def _make_caption(title: str, caption: str) -> str:
    title = (title or "").strip()
    caption = (caption or "").strip()
    if title and caption:
        return f"{tex_escape(title)}. {tex_escape(caption)}"
    return tex_escape(title or caption)


def _scale_option(scale: str) -> Optional[str]:
    if not scale:
        return None
    try:
        return f"width={float(scale):.3f}\\linewidth"
    except ValueError:
        LOG.debug("Ignoring invalid scale attribute: %r", scale)
        return None


def _adjustbox_options(scale: str) -> str:
    width = _scale_option(scale)
    return f"{width},max width=\\linewidth" if width else "max width=\\linewidth"


def _placeholder(inner: str, placement: str = "H") -> str:
    return (
        f"\\begin{{table}}[{placement}]\n"
        "\\centering\n"
        f"{{\\footnotesize {inner}}}\n"
        "\\end{table}\n"
    )


def latex_tabular_from_rows(rows: List[List[str]], colspec_override: str = "", raw: bool = False) -> Tuple[str, int, str]:
    """Build a booktabs tabular body; returns ``(body, ncols, colspec)``."""
    if not rows:
        return "", 0, ""
    ncols = max(len(row) for row in rows)
    if ncols == 0:
        return "", 0, ""
    colspec = colspec_override if colspec_override and len(colspec_override) == ncols else "l" * ncols
    fmt = (lambda c: c) if raw else tex_escape

    def render_row(row: List[str]) -> str:
        padded = (row + [""] * ncols)[:ncols]
        return " & ".join(fmt(cell) for cell in padded) + " \\\\"

    lines = ["\\toprule", render_row(rows[0]), "\\midrule"]
    lines.extend(render_row(row) for row in rows[1:])
    lines.append("\\bottomrule")
    return "\n".join(lines), ncols, colspec


def _table_rows(directive: Directive, root_dir: Path) -> List[List[str]]:
    if directive.source:
        return rows_from_raw_table(read_source_text(directive.source, root_dir))
    return rows_from_raw_table(directive.body or "")


def _wrap_table_float(
    *,
    placement: str,
    caption: str,
    label: str,
    scale: str,
    colspec: str,
    tab_body: str,
    notes: str,
) -> str:
    lines = [
        f"\\begin{{table}}[{placement}]",
        "\\centering",
        f"\\caption{{{caption}}}\\label{{{label}}}",
        f"\\begin{{adjustbox}}{{{_adjustbox_options(scale)}}}",
        f"\\begin{{tabular}}{{{colspec}}}",
        tab_body,
        "\\end{tabular}",
        "\\end{adjustbox}",
    ]
    if notes:
        lines.append(f"\\compactnotes{{{notes}}}")
    lines.append("\\end{table}")
    return "\n".join(lines) + "\n"


def render_table(directive: TableDirective, root_dir: Path) -> str:
    rows = _table_rows(directive, root_dir)
    math_mode = _is_truthy(directive.get("math"))
    tab_body, ncols, colspec = latex_tabular_from_rows(rows, directive.get("cols"), raw=math_mode)
    if ncols == 0 or not tab_body:
        missing = tex_escape(directive.source) if directive.source else "(inline table)"
        return _placeholder(f"\\emph{{Table source not found or empty: }}{missing}")

    notes = directive.get("notes").strip()
    return _wrap_table_float(
        placement="H",
        caption=_make_caption(directive.get("title"), directive.get("caption")),
        label=directive.identifier or "tab:auto",
        scale=directive.get("scale"),
        colspec=colspec,
        tab_body=tab_body,
        notes=notes if math_mode else tex_escape(notes),
    )


def render_figure(directive: FigureDirective, root_dir: Path) -> str:
    src = directive.source
    if not src:
        return _placeholder("\\emph{Figure source not specified.}", placement="htbp")

    placement = directive.get("placement").strip()
    placement = re.sub(r"[{}\[\]]", "", placement) or "htbp"
    width = _scale_option(directive.get("scale")) or "width=\\linewidth"
    caption = _make_caption(directive.get("title"), directive.get("caption"))
    label = directive.identifier or "fig:auto"
    notes = directive.get("notes").strip()

    graphic = src.replace("\\", "/")
    lines = [
        f"\\begin{{figure}}[{placement}]",
        "\\centering",
        f"\\includegraphics[{width}]{{{graphic}}}",
        f"\\caption{{{caption}}}\\label{{{label}}}",
    ]
    if notes:
        lines.append(f"\\compactnotes{{{tex_escape(notes)}}}")
    lines.append("\\end{figure}")
    return "\n".join(lines) + "\n"


def render_code_table(directive: CodeTableDirective, root_dir: Path) -> str:
    rows = _table_rows(directive, root_dir)
    if not rows:
        return _placeholder("\\emph{Code table empty.}")

    add_linenos = _is_truthy(directive.get("ln"))
    header, body_rows = rows[0], rows[1:]

    code_idxs = {i for i, h in enumerate(header) if h.strip().lower() in CODE_HEADERS}
    if not code_idxs and len(header) >= 2:
        code_idxs.add(1)

    colspec = directive.get("cols").strip()
    if not colspec:
        ncols = len(header) + (1 if add_linenos else 0)
        colspec = "lp{0.55\\linewidth}p{0.35\\linewidth}" if ncols == 3 else "l" * ncols
    elif add_linenos:
        colspec = "r" + colspec

    head_cells = ([""] if add_linenos else []) + [tex_escape(c) for c in header]
    out = ["\\toprule", " & ".join(head_cells) + " \\\\", "\\midrule"]
    for lineno, row in enumerate(body_rows, start=1):
        padded = (row + [""] * len(header))[: len(header)]
        cells = [str(lineno)] if add_linenos else []
        for j, cell in enumerate(padded):
            cell = cell.rstrip()
            if j in code_idxs:
                cells.append(f"\\codecell{{{protect_for_lstinline(cell)}}}")
            else:
                cells.append(tex_escape(cell))
        out.append(" & ".join(cells) + " \\\\")
    out.append("\\bottomrule")

    notes = directive.get("notes").strip()
    return _wrap_table_float(
        placement="t",
        caption=_make_caption(directive.get("title"), directive.get("caption")),
        label=directive.identifier or "tab:code",
        scale=directive.get("scale"),
        colspec=colspec,
        tab_body="\n".join(out),
        notes=tex_escape(notes),
    )


def render_math_table(directive: MathTableDirective, root_dir: Path) -> str:
    rows = _table_rows(directive, root_dir)
    tab_body, ncols, colspec = latex_tabular_from_rows(rows, directive.get("cols").strip(), raw=True)
    if ncols == 0 or not tab_body:
        return _placeholder("\\emph{Table source not found or empty.}")

    return _wrap_table_float(
        placement=directive.get("place", "H").strip() or "H",
        caption=_make_caption(directive.get("title"), directive.get("caption")),
        label=directive.identifier or "tab:auto",
        scale=directive.get("scale"),
        colspec=colspec,
        tab_body=tab_body,
        notes=directive.get("notes").strip(),
    )


def render_directive(directive: Directive, root_dir: Path) -> str:
    if isinstance(directive, MathTableDirective):
        return render_math_table(directive, root_dir)
    if isinstance(directive, CodeTableDirective):
        return render_code_table(directive, root_dir)
    if isinstance(directive, FigureDirective):
        return render_figure(directive, root_dir)
    if isinstance(directive, TableDirective):
        return render_table(directive, root_dir)
    raise TypeError(f"Unsupported directive type: {type(directive).__name__}")


def rewrite_markdown_with_directives(md_src: str, root_dir: Path) -> str:
    """Replace cross-references and directive blocks in one markdown cell source."""
    root_dir = Path(root_dir)

    def _replace(match: "re.Match[str]") -> str:
        return "\n" + render_directive(_directive_from_match(match), root_dir) + "\n"

    out = normalize_quotes(md_src or "")
    out = CROSS_REF_RE.sub(lambda m: f"\\ref{{{m.group(1)}}}", out)
    out = FENCED_DIRECTIVE_RE.sub(_replace, out)
    out = BARE_DIRECTIVE_RE.sub(_replace, out)
    return out
