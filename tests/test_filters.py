#!/usr/bin/env python3
"""Tests for filter compilation and filter state."""

import unittest

from logfacets.definitions import ALL_BREAKDOWNS, build_allowed_columns
from logfacets.filters import (
    Filter,
    FilterCompiler,
    FilterState,
    compile_filters,
    format_literal,
    is_filter_superset,
)

ASN_COLUMN = "CAST(asn AS VARCHAR) || ' ' || asn_name"
FAMILY_COLUMN = "split_part(content_type, '/', 1) || '/*'"


class TestFilterCompiler(unittest.TestCase):
    def setUp(self):
        self.compiler = FilterCompiler()

    def test_no_filters(self):
        compiled = self.compiler.compile([])
        self.assertEqual(compiled.predicate_text, '')
        self.assertEqual(compiled.groups, {})

    def test_unknown_column_is_dropped(self):
        with self.assertLogs('logfacets.filters', level='WARNING'):
            compiled = self.compiler.compile([Filter('1=1 OR 1=1 --', 'x')])
        self.assertEqual(compiled.predicate_text, '')
        self.assertEqual(compiled.groups, {})
        self.assertEqual(len(compiled.rejected), 1)

    def test_unknown_operator_is_dropped(self):
        with self.assertLogs('logfacets.filters', level='WARNING'):
            compiled = self.compiler.compile([Filter('host', 'x', filter_operator='>')])
        self.assertEqual(compiled.predicate_text, '')
        self.assertEqual(compiled.rejected[0].column, 'host')

    def test_numeric_filter_value_is_unquoted(self):
        compiled = self.compiler.compile([
            Filter(ASN_COLUMN, '15169 Google LLC', filter_column='asn', filter_value=15169)
        ])
        self.assertEqual(compiled.predicate_text, 'AND asn = 15169')

    def test_string_values_are_quoted_and_escaped(self):
        compiled = self.compiler.compile([Filter('referer', "https://o'brien.example/")])
        self.assertEqual(compiled.predicate_text, "AND referer = 'https://o''brien.example/'")

    def test_includes_are_ored(self):
        compiled = self.compiler.compile([Filter('method', 'GET'), Filter('method', 'POST')])
        self.assertEqual(compiled.predicate_text, "AND (method = 'GET' OR method = 'POST')")

    def test_excludes_are_anded(self):
        compiled = self.compiler.compile([
            Filter('host', 'a.com', exclude=True),
            Filter('host', 'b.com', exclude=True),
        ])
        self.assertEqual(compiled.predicate_text, "AND host != 'a.com' AND host != 'b.com'")

    def test_include_and_exclude_on_same_column(self):
        compiled = self.compiler.compile([
            Filter('host', 'a.com'),
            Filter('host', 'b.com', exclude=True),
        ])
        self.assertEqual(compiled.predicate_text, "AND (host = 'a.com' AND host != 'b.com')")
        group = compiled.groups['host']
        self.assertEqual(group.includes, [('a.com', '=')])
        self.assertEqual(group.excludes, [('b.com', '=')])

    def test_columns_are_anded_in_insertion_order(self):
        compiled = self.compiler.compile([Filter('method', 'GET'), Filter('host', 'a.com')])
        self.assertEqual(compiled.predicate_text, "AND method = 'GET' AND host = 'a.com'")

    def test_like_operator(self):
        include = Filter(FAMILY_COLUMN, 'image/*', filter_column='content_type',
                         filter_value='image/%', filter_operator='LIKE')
        exclude = Filter(FAMILY_COLUMN, 'text/*', exclude=True, filter_column='content_type',
                         filter_value='text/%', filter_operator='LIKE')
        self.assertEqual(self.compiler.compile([include]).predicate_text,
                         "AND content_type LIKE 'image/%'")
        self.assertEqual(self.compiler.compile([exclude]).predicate_text,
                         "AND content_type NOT LIKE 'text/%'")

    def test_compile_is_deterministic(self):
        filters = [Filter('method', 'GET'), Filter('host', 'a.com', exclude=True)]
        self.assertEqual(self.compiler.compile(filters).predicate_text,
                         self.compiler.compile(filters).predicate_text)

    def test_compile_excluding_skips_own_column(self):
        filters = [Filter('method', 'GET'), Filter('host', 'a.com')]
        compiled = self.compiler.compile_excluding(filters, 'host')
        self.assertEqual(compiled.predicate_text, "AND method = 'GET'")

    def test_bucket_expressions_are_allowed(self):
        content_length = next(b for b in ALL_BREAKDOWNS if b.id == 'breakdown-content-length')
        column = content_length.resolve_column(10)
        compiled = self.compiler.compile([Filter(column, '10 B-50 KB')])
        self.assertTrue(compiled.predicate_text.startswith('AND CASE WHEN content_length = 0'))

    def test_custom_allow_list(self):
        compiled = compile_filters([Filter('host', 'a.com')], allowed_columns={'method'})
        self.assertEqual(compiled.predicate_text, '')


def test_allowed_columns_cover_breakdowns():
    allowed = build_allowed_columns()
    assert 'asn' in allowed
    assert 'content_length' in allowed
    assert 'time_elapsed_ms' in allowed
    assert ASN_COLUMN in allowed
    assert '1=1' not in allowed


def test_format_literal():
    assert format_literal(15169) == '15169'
    assert format_literal(1.5) == '1.5'
    assert format_literal(True) == "'True'"
    assert format_literal("it's") == "'it''s'"


def test_superset_reflexive():
    compiled = compile_filters([Filter('method', 'GET'), Filter('host', 'a.com', exclude=True)])
    assert is_filter_superset(compiled.groups, compiled.groups)


def test_superset_monotonic():
    base = [Filter('method', 'GET')]
    cached = compile_filters(base).groups
    grown = compile_filters(base + [Filter('method', 'POST'), Filter('host', 'a.com')]).groups
    assert is_filter_superset(grown, cached)


def test_superset_fails_when_cached_value_missing():
    cached = compile_filters([Filter('method', 'GET')]).groups
    current = compile_filters([Filter('method', 'POST')]).groups
    assert not is_filter_superset(current, cached)
    assert not is_filter_superset({}, cached)


def test_superset_checks_excludes_separately():
    cached = compile_filters([Filter('host', 'a.com', exclude=True)]).groups
    current = compile_filters([Filter('host', 'a.com')]).groups
    assert not is_filter_superset(current, cached)


def test_superset_compares_values_as_strings():
    cached = compile_filters([Filter(ASN_COLUMN, 'x', filter_column='asn', filter_value=15169)]).groups
    current = compile_filters([Filter(ASN_COLUMN, 'y', filter_column='asn', filter_value='15169')]).groups
    assert is_filter_superset(current, cached)


class TestFilterState(unittest.TestCase):
    def test_add_resolves_filter_column_and_transform(self):
        state = FilterState()
        f = state.add(ASN_COLUMN, '15169 Google LLC')
        self.assertEqual(f.filter_column, 'asn')
        self.assertEqual(f.filter_value, 15169)
        self.assertEqual(FilterCompiler().compile(list(state)).predicate_text, 'AND asn = 15169')

    def test_add_like_facet(self):
        state = FilterState()
        f = state.add(FAMILY_COLUMN, 'image/*')
        self.assertEqual(f.filter_operator, 'LIKE')
        self.assertEqual(f.filter_value, 'image/%')

    def test_add_replaces_same_value(self):
        state = FilterState()
        state.add('host', 'a.com')
        state.add('host', 'a.com', exclude=True)
        self.assertEqual(len(state), 1)
        self.assertTrue(state.filters[0].exclude)

    def test_remove_and_clear(self):
        state = FilterState()
        state.add('host', 'a.com')
        state.add('host', 'b.com')
        state.add('method', 'GET')
        self.assertEqual(len(state.for_column('host')), 2)

        state.remove_value('host', 'a.com')
        self.assertEqual([f.value for f in state.for_column('host')], ['b.com'])

        state.clear_column('host')
        self.assertEqual(state.for_column('host'), [])

        state.remove(0)
        self.assertEqual(len(state), 0)

    def test_catalog_transform_applies(self):
        f = FilterState().add('upper(cache_status)', 'hit')
        self.assertIsNone(f.filter_column)
        self.assertEqual(f.sql_value, 'HIT')
        self.assertEqual(FilterCompiler().compile([f]).predicate_text,
                         "AND upper(cache_status) = 'HIT'")

    def test_plain_column_has_no_override(self):
        f = FilterState().add('host', 'a.com')
        self.assertIsNone(f.filter_column)
        self.assertEqual(f.sql_column, 'host')
        self.assertEqual(f.sql_value, 'a.com')


if __name__ == '__main__':
    unittest.main()
