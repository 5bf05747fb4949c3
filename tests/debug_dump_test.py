from result_parser.debug_dump import classify_pages, parse_pages_arg


def test_parse_pages_arg():
    assert parse_pages_arg(None) is None
    assert parse_pages_arg("1-2,4") == {1, 2, 4}
    assert parse_pages_arg("3-1") == {1, 2, 3}
    assert parse_pages_arg("x, 2,") == {2}
    assert parse_pages_arg("0, 2-2, 4 - 5, 7-x") == {2, 4, 5}


def test_classify_pages_tags_page_and_label(monkeypatch):
    monkeypatch.delenv("RESULT_PARSER_DEPT_MARKER", raising=False)
    pages = [
        "CIVIL ENGINEERING [Full Time]\nCE201 MECHANICS\n",
        "TKM24CE001 CE201(A)\nCE202(B)\nPage 2",
    ]
    dumped = classify_pages(pages)
    assert [(d.page, d.label) for d in dumped] == [
        (1, "dept"),
        (1, "subject"),
        (2, "student"),
        (2, "grades+"),
        (2, "-"),
    ]
    assert dumped[2].text == "TKM24CE001 CE201(A)"


def test_classify_pages_honours_env_marker(monkeypatch):
    monkeypatch.setenv("RESULT_PARSER_DEPT_MARKER", "[Part Time]")
    dumped = classify_pages(["CIVIL ENGINEERING [Part Time]"])
    assert dumped[0].label == "dept"
