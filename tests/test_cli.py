#!/usr/bin/env python3
"""Tests for the reporting CLI."""

import argparse

import pytest

from logfacets.cli import (
    build_filter_state,
    build_parser,
    find_facet,
    main,
    parse_filter_arg,
    resolve_filter_column,
)

ASN_COLUMN = "CAST(asn AS VARCHAR) || ' ' || asn_name"

CSV_ROWS = [
    "timestamp,host,url,method,status,content_type,content_length,cache_status,x_error,time_elapsed_ms",
    "2025-01-01 11:10:00,a.example,/a,GET,200,text/html,100,HIT,,12.5",
    "2025-01-01 11:20:00,a.example,/a,GET,200,text/html,100,MISS,,40.0",
    "2025-01-01 11:30:00,b.example,/b,POST,502,application/json,0,MISS,bad gateway,1500.0",
    "2025-01-01 09:00:00,c.example,/old,DELETE,200,text/html,10,HIT,,3.0",
]


@pytest.fixture
def csv_dir(tmp_path):
    (tmp_path / 'requests.csv').write_text("\n".join(CSV_ROWS) + "\n")
    return tmp_path


def test_parse_filter_arg():
    assert parse_filter_arg('url=/a?b=c') == ('url', '/a?b=c')
    assert parse_filter_arg(' host =a.com') == ('host', 'a.com')
    with pytest.raises(argparse.ArgumentTypeError):
        parse_filter_arg('noequals')
    with pytest.raises(argparse.ArgumentTypeError):
        parse_filter_arg('=x')


def test_find_facet():
    assert find_facet('asn').id == 'breakdown-asn'
    assert find_facet('breakdown-asn').id == 'breakdown-asn'
    assert find_facet('nope') is None


def test_resolve_filter_column():
    assert resolve_filter_column('asn', 5) == ASN_COLUMN
    assert resolve_filter_column('cacheStatus', 5) == 'upper(cache_status)'
    assert resolve_filter_column('x_error', 5) == 'x_error'
    assert resolve_filter_column('content-length', 5).startswith('CASE WHEN content_length = 0')
    assert resolve_filter_column('whatever', 5) == 'whatever'


def test_build_filter_state():
    state = build_filter_state([('asn', '15169 Google LLC')], [('method', 'GET')], 5)
    first, second = list(state)
    assert first.filter_column == 'asn'
    assert first.filter_value == 15169
    assert not first.exclude
    assert second.column == 'method'
    assert second.exclude


def test_parser():
    args = build_parser().parse_args(['-f', 'host=a.com', '-x', 'method=GET', '-n', '10',
                                      '--facet', 'hosts', '--sampling-mode', 'clause'])
    assert args.filter == [('host', 'a.com')]
    assert args.exclude == [('method', 'GET')]
    assert args.top_n == 10
    assert args.facet == ['hosts']
    assert args.sampling_mode == 'clause'
    assert args.time_range == '1h'


def test_parser_rejects_unknown_top_n():
    with pytest.raises(SystemExit):
        build_parser().parse_args(['-n', '7'])


def test_list_facets(capsys):
    assert main(['--list-facets']) == 0
    out = capsys.readouterr().out
    assert 'paths' in out
    assert 'content-length' in out


def test_missing_datadir(monkeypatch, capsys):
    monkeypatch.delenv('LOGFACETS_DATADIR', raising=False)
    monkeypatch.delenv('LOGFACETS_DATABASE', raising=False)
    assert main([]) == 1
    assert 'Data directory not specified' in capsys.readouterr().err


def test_nonexistent_datadir(tmp_path, capsys):
    assert main(['-d', str(tmp_path / 'missing')]) == 1
    assert 'does not exist' in capsys.readouterr().err


def test_unknown_facet(csv_dir, capsys):
    assert main(['-d', str(csv_dir), '--facet', 'nope']) == 1
    assert 'unknown facet' in capsys.readouterr().err


def test_report_from_csv(csv_dir, capsys):
    code = main(['-d', str(csv_dir), '--facet', 'methods', '--facet', 'errors',
                 '--now', '2025-01-01 12:00:00', '-r', '1h', '--duckdb-threads', '1'])
    assert code == 0
    out = capsys.readouterr().out
    assert 'Methods' in out
    assert 'GET' in out
    assert 'POST' in out
    assert 'DELETE' not in out
    assert 'bad gateway' in out
    assert 'slowest' in out


def test_report_with_filter(csv_dir, capsys):
    code = main(['-d', str(csv_dir), '--facet', 'hosts', '-f', 'method=POST',
                 '--now', '2025-01-01 12:00:00', '--sampling-mode', 'clause'])
    assert code == 0
    out = capsys.readouterr().out
    assert 'b.example' in out
    assert 'a.example' not in out


def test_report_rejects_empty_window(csv_dir, capsys):
    code = main(['-d', str(csv_dir), '--facet', 'methods',
                 '--from', '2025-01-01 12:00', '--to', '2025-01-01 11:00'])
    assert code == 1
    assert 'Empty time window' in capsys.readouterr().err


def test_list_columns(capsys):
    assert main(['--list-columns']) == 0
    out = capsys.readouterr().out
    assert 'cacheStatus' in out
    assert 'upper(cache_status)' in out
