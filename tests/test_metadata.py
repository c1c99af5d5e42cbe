import nb2tex.metadata as metadata
from nb2tex.latex import DATE_PLACEHOLDER
from nb2tex.metadata import Person


def test_parse_metadata_with_author_list():
    text = "title: My Paper\nauthors:\n  - Jane Doe <jane@example.com> | MIT\ndate: 2024"

    meta = metadata.parse_metadata_text(text)

    assert meta.title == "My Paper"
    assert meta.date == "2024"
    assert meta.authors == [Person(name="Jane Doe", email="jane@example.com", affiliation="MIT")]


def test_parse_person_variants():
    assert metadata.parse_person("Ada Lovelace (Analytical Society)") == Person("Ada Lovelace", "", "Analytical Society")
    assert metadata.parse_person("Alan Turing, Cambridge") == Person("Alan Turing", "", "Cambridge")
    assert metadata.parse_person("Grace Hopper grace@navy.mil, Yale") == Person("Grace Hopper", "grace@navy.mil", "Yale")
    assert metadata.parse_person("- Solo Name") == Person("Solo Name", "", "")
    assert metadata.parse_person(None) == Person()


def test_inline_person_keys_and_aliases():
    text = (
        "Author: Jane Doe | MIT\n"
        "author: John Roe <john@example.org>\n"
        "supervisor: Prof. Smith (Oxford)\n"
    )

    meta = metadata.parse_metadata_text(text)

    assert [a.name for a in meta.authors] == ["Jane Doe", "John Roe"]
    assert meta.authors[1].email == "john@example.org"
    assert meta.supervisors == [Person("Prof. Smith", "", "Oxford")]


def test_block_keys_collect_until_next_key():
    text = (
        "title: Study\n"
        "abstract: First line\n"
        "second line\n"
        "\n"
        "Note: still abstract\n"
        "keywords: graphs, notebooks\n"
        "acknowledgement: Thanks to all.\n"
    )

    meta = metadata.parse_metadata_text(text)

    assert meta.abstract == "First line\nsecond line\n\nNote: still abstract"
    assert meta.keywords == "graphs, notebooks"
    assert meta.acknowledgements == "Thanks to all."


def test_scalar_keys_map_to_fields():
    text = "currentdegrees: BSc\norcid: 0000-0001\nsubmittedfor: MSc\nschool: Engineering"

    meta = metadata.parse_metadata_text(text)

    assert meta.current_degrees == "BSc"
    assert meta.orcid == "0000-0001"
    assert meta.submitted_for == "MSc"
    assert meta.school == "Engineering"


def test_title_first_wins_and_heading_fallback():
    assert metadata.parse_metadata_text("title: A\ntitle: B").title == "A"

    meta = metadata.parse_metadata_text("# Big Title\n## Small Subtitle\nauthor: X")
    assert meta.title == "Big Title"
    assert meta.subtitle == "Small Subtitle"

    meta = metadata.parse_metadata_text("# Heading\ntitle: Explicit")
    assert meta.title == "Explicit"


def test_defaults_when_nothing_parsed():
    meta = metadata.parse_metadata_text("Just some prose.")

    assert meta.title == ""
    assert meta.date == DATE_PLACEHOLDER
    assert meta.authors == [Person()]
    assert metadata.parse_metadata_text("date:").date == DATE_PLACEHOLDER


def test_parse_meta_from_first_markdown_reports_index():
    notebook = {
        "cells": [
            {"cell_type": "code", "source": "print(1)"},
            {"cell_type": "markdown", "source": ["title: Paper\n", "author: Jane"]},
            {"cell_type": "markdown", "source": "title: Other"},
        ]
    }

    meta, idx = metadata.parse_meta_from_first_markdown(notebook)

    assert idx == 1
    assert meta.title == "Paper"
    assert meta.authors[0].name == "Jane"


def test_parse_meta_without_markdown_cells():
    meta, idx = metadata.parse_meta_from_first_markdown({"cells": [{"cell_type": "code", "source": []}]})

    assert idx is None
    assert meta.authors == [Person()]
