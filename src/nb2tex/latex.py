"""LaTeX preamble and text escaping helpers shared by the nb2tex pipeline."""

from __future__ import annotations

import re
from typing import Optional

DATE_PLACEHOLDER = r"\the\year"

LATEX_HEADER = r"""\documentclass[letterpaper,12pt,notitlepage]{article}

% --- language and page layout ---
\usepackage[english]{babel}
\usepackage[bottom=-0.5in,top=1.0in]{geometry}
\setlength{\textwidth}{6in}
\setlength{\textheight}{8.58in}
\setlength{\oddsidemargin}{.3in}

% --- core maths / layout packages ---
\usepackage{amsmath,amssymb,mathtools}
\usepackage{amsthm}
\usepackage{rotating}
\usepackage{delarray,dcolumn}
\usepackage{graphics,epsfig}
\usepackage{soul}
\usepackage{longtable,lscape,multirow,array}
\usepackage{caption}
\usepackage{anyfontsize}
\usepackage{float}
\usepackage[usenames,dvipsnames]{color}
\usepackage{booktabs}
\usepackage{siunitx}
\sisetup{
  input-symbols = {()},
  group-digits  = false
}

% --- spacing ---
\usepackage{verbatim}
\usepackage{setspace}
\doublespacing

\usepackage{footmisc}
\renewcommand\footnotelayout{\fontsize{10}{12}\selectfont}

\usepackage{arydshln}
\setcounter{secnumdepth}{3}
\setcounter{tocdepth}{3}
\usepackage[titletoc,toc,page]{appendix}
\usepackage{authblk}

% --- theorem environments ---
\theoremstyle{definition}
\newtheorem{exmp}{Example}[subsection]
\newtheorem{proposition}{Proposition}

% --- penalties and float parameters ---
\setlength{\parskip}{3mm}
\widowpenalty=20000
\displaywidowpenalty=20000
\clubpenalty=100000
\def\floatpagefraction{0.98}
\renewcommand{\textfraction}{0.01}
\renewcommand{\topfraction}{0.99}
\renewcommand{\bottomfraction}{0.99}

% --- algorithms ---
\usepackage{algorithm}
\usepackage[noend]{algpseudocode}

%%%%%%%%%%%%%%%% Converter helpers
\graphicspath{{images/}}

\usepackage{adjustbox}
\captionsetup{font=small}
\newcommand{\compactnotes}[2][Notes.]{%
  \par\vspace{0.25em}%
  \begingroup\footnotesize\emph{#1}~#2\par\endgroup%
}

\usepackage{listings}
\lstset{
  basicstyle=\ttfamily\small,
  columns=fullflexible,
  keepspaces=true,
  breaklines=true,
  upquote=true,
}
\newcommand{\codecell}[1]{\lstinline[columns=fullflexible]!#1!}

\providecommand{\tightlist}{\setlength{\itemsep}{0pt}\setlength{\parskip}{0pt}}

% --- Bibliography ---
\usepackage{etoolbox}
\makeatletter
\renewcommand\@biblabel[1]{}
\@ifpackageloaded{biblatex}{%
  \AtBeginBibliography{\clearpage}
  \setlength\bibhang{1.5em}
  \defbibenvironment{bibliography}
    {\list{}{\setlength{\leftmargin}{\bibhang}%
             \setlength{\itemindent}{-\leftmargin}%
             \setlength{\itemsep}{0.25\baselineskip}}}
    {\endlist}
    {\item}
}{%
  \pretocmd{\thebibliography}{\clearpage}{}{}
  \patchcmd{\@bibitem}{\ignorespaces}{\hangindent=1.5em\hangafter=1\ignorespaces}{}{}
  \patchcmd{\@lbibitem}{\ignorespaces}{\hangindent=1.5em\hangafter=1\ignorespaces}{}{}
}
\makeatother

\usepackage[round,authoryear]{natbib}
\usepackage[colorlinks=true,allcolors=blue]{hyperref}

"""

_PUNCT_NORMALIZATION = (
    ("\u00a0", " "),
    ("\u202f", " "),
    ("–", "--"),
    ("—", "---"),
    ("‘", "'"),
    ("’", "'"),
    ("“", '"'),
    ("”", '"'),
    ("−", "-"),
    ("∼", "~"),
)

# Applied after escaping so the inserted math shifts are not escaped again.
_SYMBOL_REPLACEMENTS = (
    ("×", r"$\times$"),
    ("≤", r"$\le$"),
    ("≥", r"$\ge$"),
    ("≈", r"$\approx$"),
    ("°", r"$^\circ$"),
    ("…", r"\ldots{}"),
)

_SPECIAL_CHARS = {
    "&": r"\&",
    "%": r"\%",
    "$": r"\$",
    "#": r"\#",
    "_": r"\_",
    "{": r"\{",
    "}": r"\}",
    "~": r"\textasciitilde{}",
    "^": r"\textasciicircum{}",
}

_AMP_TOKEN = "\x00AMP\x00"

_MD_ATTR_ESCAPE_RE = re.compile(r"\\([\\`*_{}\[\]()#+\-.!~|])")


def tex_escape(text: Optional[str]) -> str:
    if text is None:
        return ""
    s = str(text)
    for old, new in _PUNCT_NORMALIZATION:
        s = s.replace(old, new)

    s = s.replace(r"\&", _AMP_TOKEN)
    s = "".join(_SPECIAL_CHARS.get(ch, ch) for ch in s)
    s = s.replace(_AMP_TOKEN, r"\&")

    for old, new in _SYMBOL_REPLACEMENTS:
        s = s.replace(old, new)
    return s


def normalize_quotes(text: str) -> str:
    return (
        text.replace("“", '"')
        .replace("”", '"')
        .replace("‘", "'")
        .replace("’", "'")
    )


def unescape_md_attr(value: str) -> str:
    """Undo markdown punctuation escapes (``\\_`` -> ``_``) inside attribute values."""
    if not value:
        return value
    return _MD_ATTR_ESCAPE_RE.sub(r"\1", value)


def protect_for_lstinline(text: Optional[str]) -> str:
    if text is None:
        return ""
    return text.replace("\u00a0", " ").replace("\u202f", " ")
