"""
Tests for include/exclude document filters.
"""

from phdsync.filters import DocumentFilter, build_document_filter


class TestDocumentFilter:
    def test_empty_filter_matches_everything(self):
        assert DocumentFilter().matches("any/path", "any/type")

    def test_include_by_name_glob(self):
        document_filter = build_document_filter(["*.budget"])

        assert document_filter.matches("Finance/Q1.budget")
        assert not document_filter.matches("Finance/Q1.notes")

    def test_include_by_document_type(self):
        document_filter = build_document_filter(["powerhouse/budget*"])

        assert document_filter.matches("Anything", "powerhouse/budget-statement")
        assert not document_filter.matches("Anything", "powerhouse/scope")

    def test_folder_prefix(self):
        document_filter = build_document_filter(["./Finance/"])

        assert document_filter.matches("Finance/Report")
        assert not document_filter.matches("Legal/Finance")

    def test_exclude_wins(self):
        document_filter = build_document_filter(["Finance/*"], ["*Draft*"])

        assert document_filter.matches("Finance/Report")
        assert not document_filter.matches("Finance/Draft Report")

    def test_blank_patterns_ignored(self):
        assert build_document_filter(["", "a"], [""]) == DocumentFilter(include_patterns=("a",))
