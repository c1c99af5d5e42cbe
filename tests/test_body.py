import pytest

import nb2tex.body as body_mod
from nb2tex.errors import DocumentStructureError
from nb2tex.metadata import Metadata

SECTIONED_BODY = (
    "\\section{Introduction}\nIntro text.\n"
    "\\section{Conclusion}\nWrap up.\n"
    "\\section{Appendix A}\\label{appendix-a}\nExtra material.\n"
    "\\section{Results}\nNumbers.\n"
)


def test_extract_document_body():
    tex = "\\documentclass{article}\n\\begin{document}\nHello\n\\end{document}\n"

    assert body_mod.extract_document_body(tex) == "\nHello\n"


def test_extract_document_body_errors():
    with pytest.raises(DocumentStructureError):
        body_mod.extract_document_body("no markers here")
    with pytest.raises(DocumentStructureError):
        body_mod.extract_document_body("\\end{document} text \\begin{document}")


def test_strip_title_page():
    body = "\n\\title{Generated}\n\\maketitle\n\\section{Introduction}\n"

    assert body_mod.strip_title_page(body) == "\\section{Introduction}\n"


def test_process_abstract_moves_content_and_adds_meta_lines():
    body = "\\section{Abstract}\\label{abstract}\nWe study X.\n\n\\section{Introduction}\nBody\n"
    meta = Metadata(date="2024", keywords="graphs")

    out = body_mod.process_abstract(body, meta)

    assert "\\section{Abstract}" not in out
    assert "\\begin{center}{\\bfseries Abstract}\\end{center}\nWe study X.\n" in out
    assert "\\noindent\\textbf{Date:} 2024\\par\n\\noindent\\textbf{Keywords:} graphs" in out
    assert out.index("We study X.") < out.index("\\section{Introduction}")


def test_process_abstract_without_abstract_is_noop():
    assert body_mod.process_abstract("\\section{Intro}\n", Metadata()) == "\\section{Intro}\n"


def test_force_intro_new_page():
    out = body_mod.force_intro_new_page("Abstract text\n\\section{Introduction}\nBody")
    assert "\n\\clearpage\n\n\\section{Introduction}" in out

    already = "Abstract text\n\\clearpage\n\\section{Introduction}\nBody"
    assert body_mod.force_intro_new_page(already) == already


def test_display_math_becomes_numbered_equation():
    out = body_mod.ensure_numbered_display_math("$$ x = 1 $$")

    assert "\\begin{equation}\nx = 1\n\\end{equation}" in out
    assert "$$" not in out


def test_aligned_heuristic_for_display_math():
    out = body_mod.ensure_numbered_display_math("$$a&=b\\\\c&=d$$")

    assert "\\begin{equation}\n\\begin{aligned}\na&=b\\\\c&=d\n\\end{aligned}\n\\end{equation}" in out


def test_tagged_and_starred_math():
    tagged = "$$ x \\tag{1} $$"
    assert body_mod.ensure_numbered_display_math(tagged) == tagged

    out = body_mod.ensure_numbered_display_math("\\begin{equation*}y\\end{equation*}")
    assert out == "\\begin{equation}y\\end{equation}"

    out = body_mod.ensure_numbered_display_math("\\begin{align*}\na &= b\n\\end{align*}")
    assert "\\begin{equation}\n\\begin{aligned}\na &= b\n\\end{aligned}\n\\end{equation}" in out

    out = body_mod.ensure_numbered_display_math("\\[ z = 2 \\]")
    assert "\\begin{equation}\nz = 2\n\\end{equation}" in out


def test_footnotes_resolve_forward_and_backward():
    forward = body_mod.insert_markdown_footnotes("claim[^1]\n\n[^1]: supporting note\n")
    backward = body_mod.insert_markdown_footnotes("[^1]: supporting note\nclaim[^1]\n")

    for out in (forward, backward):
        assert "claim\\footnote{supporting note}" in out
        assert "[^1]:" not in out


def test_unmatched_footnote_marker_is_kept():
    assert body_mod.insert_markdown_footnotes("text[^9] here") == "text[^9] here"


def test_relocate_appendices_keeps_other_sections_in_order():
    remaining, appendices = body_mod.relocate_appendices("Preamble text\n" + SECTIONED_BODY)

    assert remaining.startswith("Preamble text\n")
    assert "Appendix A" not in remaining
    assert remaining.index("Conclusion") < remaining.index("Results")
    assert appendices == ["\\section{Appendix A}\\label{appendix-a}\nExtra material.\n"]


def test_normalise_appendix_block():
    out = body_mod.normalise_appendix_block("\\section{Appendix A}\\label{appendix-a}\nExtra.\n")

    assert out == "\\section*{Appendix A}\n\\addcontentsline{toc}{section}{Appendix A}\nExtra.\n"


def test_insert_after_conclusion_appends_without_conclusion():
    assert body_mod.insert_after_conclusion("\\section{Intro}\nx\n", "TAIL") == "\\section{Intro}\nx\nTAIL"


def test_detect_bibfile_preference(tmp_path):
    assert body_mod.detect_bibfile(tmp_path / "paper", tmp_path) is None

    (tmp_path / "zeta.bib").write_text("", encoding="utf-8")
    (tmp_path / "alpha.bib").write_text("", encoding="utf-8")
    assert body_mod.detect_bibfile(tmp_path / "paper", tmp_path) == tmp_path / "alpha.bib"

    (tmp_path / "references.bib").write_text("", encoding="utf-8")
    assert body_mod.detect_bibfile(tmp_path / "paper", tmp_path) == tmp_path / "references.bib"

    (tmp_path / "paper.bib").write_text("", encoding="utf-8")
    assert body_mod.detect_bibfile(tmp_path / "paper", tmp_path) == tmp_path / "paper.bib"


def test_postprocess_places_appendix_and_bibliography_after_conclusion(tmp_path):
    (tmp_path / "references.bib").write_text("@misc{x}", encoding="utf-8")

    out = body_mod.postprocess_body(SECTIONED_BODY, Metadata(), tmp_path / "paper", tmp_path)

    conclusion = out.index("\\section{Conclusion}")
    appendix = out.index("\\section*{Appendix A}")
    bibliography = out.index("\\bibliography{references}")
    results = out.index("\\section{Results}")
    assert conclusion < appendix < bibliography < results
    assert "\\bibliographystyle{apalike}" in out
    assert "\\addcontentsline{toc}{section}{Appendix A}" in out


def test_bibliography_name_is_not_escaped(tmp_path):
    out = body_mod.build_bibliography_block(tmp_path / "my_refs.bib")

    assert "\\bibliography{my_refs}\n" in out


def test_strip_title_page_without_maketitle_is_noop():
    assert body_mod.strip_title_page("\\section{Intro}\n") == "\\section{Intro}\n"


def test_inner_multiline_environments_are_not_wrapped_in_aligned():
    sources = [
        "\\begin{array}{cc}a&b\\\\c&d\\end{array}",
        "\\begin{aligned}a&=b\\\\c&=d\\end{aligned}",
        "\\begin{gathered}a&b\\\\c&d\\end{gathered}",
    ]
    for inner in sources:
        out = body_mod.ensure_numbered_display_math(f"$${inner}$$")

        assert out == "\\begingroup\\small\\begin{equation}\n" + inner + "\n\\end{equation}\\endgroup"


def test_gather_and_multline_stars():
    out = body_mod.ensure_numbered_display_math("\\begin{gather*}\na\\\\b\n\\end{gather*}")
    assert "\\begin{equation}\n\\begin{gathered}\na\\\\b\n\\end{gathered}\n\\end{equation}" in out

    out = body_mod.ensure_numbered_display_math("\\begin{multline*}\na\\\\b\n\\end{multline*}")
    assert out == "\\begin{multline}\na\\\\b\n\\end{multline}"


def test_row_spacing_is_not_display_math():
    rows = "a & b \\\\[2pt] c & d"

    assert body_mod.ensure_numbered_display_math(rows) == rows
