import logging

from result_parser.credits import load_credit_map, missing_credits, parse_credit_lines


def test_parse_credit_lines_skips_bad_rows(caplog):
    lines = ["CS301,4", "", "CS302, 3.5 ", "bad", "CS303,x", ",2"]
    with caplog.at_level(logging.WARNING, logger="result_parser.credits"):
        credits = parse_credit_lines(lines)
    assert credits == {"CS301": 4.0, "CS302": 3.5}
    assert len(caplog.records) == 3


def test_load_credit_map_reads_file(tmp_path):
    path = tmp_path / "credits.csv"
    path.write_text("MAT202,4\r\nCS301,3\nCS301,4\n", encoding="utf-8")
    assert load_credit_map(path) == {"MAT202": 4.0, "CS301": 4.0}


def test_missing_credits_in_document_order():
    subject_map = {"CS303": "OS", "CS301": "DS", "MAT202": "PSNM"}
    assert missing_credits(subject_map, {"CS301": 4.0}) == ["CS303", "MAT202"]
