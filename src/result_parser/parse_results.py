from __future__ import annotations

import argparse
import io
import json
import logging
import os
import re
import sys
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import date
from pathlib import Path
from typing import BinaryIO, Pattern

from result_parser.credits import load_credit_map, missing_credits

# -------- Text extractor (pdfplumber) --------
try:
    import pdfplumber  # type: ignore
except Exception:
    pdfplumber = None  # type: ignore

logger = logging.getLogger(__name__)

SubjectCode = str
Grade = str

# Grades that make a subject count as failed. I and TBP are deliberately not here.
FAILURE_GRADES = frozenset({"F", "FE", "Absent", "Withheld"})
# Non-passing markers that are still not treated as failures by the parser.
NON_FINAL_GRADES = frozenset({"I", "TBP"})

DEFAULT_REGULAR_BATCH = "23"
DEFAULT_EXAM_NAME = "Exam Result"
DEFAULT_SCHEME = "Unknown"
DEFAULT_COLLEGE = "Unknown College"

# ---------- Metadata regexes ----------
EXAM_NAME_PATS = [
    re.compile(r"B\.Tech S\d+.*Exam.*20\d{2}", re.I),
    re.compile(r"B\.Tech.*Result", re.I),
]
SCHEME_PAT = re.compile(r"\((\d{4})\s*Scheme\)", re.I)
# Label is case-insensitive; the name may start on the next line but stays uppercase.
COLLEGE_PAT = re.compile(
    r"(?i:Centre|Institution|College).*?:\s*([A-Z .&]+(?:ENGINEERING|TECHNOLOGY))"
)
EXAM_MONTH_YEAR_PAT = re.compile(
    r"(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec|January|February|March|April"
    r"|June|July|August|September|October|November|December)\s+(\d{4})",
    re.I,
)
SEMESTER_PAT = re.compile(r"S(\d+)", re.I)

LINE_SPLIT_PAT = re.compile(r"\r?\n")
LEADING_NON_LETTERS = re.compile(r"^[^a-zA-Z]+")
NAME_TRIM_CHARS = "\"',"


class ResultParseError(RuntimeError):
    """Raised when a result document cannot be turned into a ParseResult."""


@dataclass(frozen=True)
class ResultLayout:
    """Markers and patterns describing one result-sheet template."""

    dept_marker: str = "[Full Time]"
    column_header: str = "Course Code"
    name_stop_markers: tuple[str, ...] = ("Course", "Register")
    subject_code: Pattern[str] = re.compile(r"[A-Z]{2,6}\d{3}")
    same_line_subject: Pattern[str] = re.compile(r"([A-Z]{2,6}\d{3})\s+(.{3,})$")
    register_no: Pattern[str] = re.compile(r"([A-Z]{3})?(\d{2})([A-Z]{2,3})(\d{3})")
    grade_token: Pattern[str] = re.compile(r"([A-Z]{2,6}\d{3})\s*\(([^)]+)\)")
    grade_continuation: Pattern[str] = re.compile(r"[A-Z]{2,6}\d{3}\s*\(")
    split_code_max_len: int = 15


DEFAULT_LAYOUT = ResultLayout()


def layout_from_env(base: ResultLayout = DEFAULT_LAYOUT) -> ResultLayout:
    marker = os.environ.get("RESULT_PARSER_DEPT_MARKER", "").strip()
    return replace(base, dept_marker=marker) if marker else base


@dataclass(frozen=True)
class StudentResult:
    register_no: str
    batch: str
    dept: str
    roll_no: str
    grades: dict[SubjectCode, Grade]
    failed_subjects: list[SubjectCode]

    @property
    def is_passed(self) -> bool:
        return not self.failed_subjects

    def is_regular(self, regular_batch: str) -> bool:
        """A student sitting the exam with their own admission cohort."""
        return self.batch == regular_batch

    def to_dict(self) -> dict[str, object]:
        return {
            "registerNo": self.register_no,
            "batch": self.batch,
            "dept": self.dept,
            "rollNo": self.roll_no,
            "grades": dict(self.grades),
            "failedSubjects": list(self.failed_subjects),
            "isPassed": self.is_passed,
        }


@dataclass
class ExamMetadata:
    college: str = DEFAULT_COLLEGE
    exam_name: str = DEFAULT_EXAM_NAME
    date: str = ""
    scheme: str = DEFAULT_SCHEME
    regular_batch: str = DEFAULT_REGULAR_BATCH
    dept_map: dict[str, str] = field(default_factory=dict)
    subject_map: dict[SubjectCode, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "college": self.college,
            "examName": self.exam_name,
            "date": self.date,
            "scheme": self.scheme,
            "regularBatch": self.regular_batch,
            "deptMap": dict(self.dept_map),
            "subjectMap": dict(self.subject_map),
        }


@dataclass
class ParseResult:
    metadata: ExamMetadata
    students: list[StudentResult]

    def regular_students(self) -> list[StudentResult]:
        return [s for s in self.students if s.is_regular(self.metadata.regular_batch)]

    def supply_students(self) -> list[StudentResult]:
        return [s for s in self.students if not s.is_regular(self.metadata.regular_batch)]

    def to_dict(self) -> dict[str, object]:
        return {
            "metadata": self.metadata.to_dict(),
            "students": [s.to_dict() for s in self.students],
        }


# ---------- Line normalizer ----------


def join_pages(pages: Iterable[str]) -> str:
    return "".join(f"{p}\n" for p in pages)


def normalize_lines(pages: Iterable[str]) -> list[str]:
    """Flatten page texts into trimmed, non-empty lines in reading order."""
    lines = (ln.strip() for ln in LINE_SPLIT_PAT.split(join_pages(pages)))
    return [ln for ln in lines if ln]


# ---------- Metadata extractor ----------


def calculate_regular_batch(exam_name: str) -> str:
    """
    Infer the regular (first-attempt) batch from an exam title.

    Every two semesters move the admission year back by one, so S3 and S4
    of a 2024 exam both belong to batch 23. Returns the last two digits of
    that year, or ``DEFAULT_REGULAR_BATCH`` when the title lacks either a
    month + year or an ``S<n>`` semester token.
    """
    year_m = EXAM_MONTH_YEAR_PAT.search(exam_name)
    sem_m = SEMESTER_PAT.search(exam_name)
    if not year_m or not sem_m:
        return DEFAULT_REGULAR_BATCH
    sem = int(sem_m.group(1))
    if sem <= 0:
        return DEFAULT_REGULAR_BATCH
    return str(int(year_m.group(1)) - sem // 2)[-2:]


def extract_metadata(full_text: str) -> ExamMetadata:
    exam_name = DEFAULT_EXAM_NAME
    for pat in EXAM_NAME_PATS:
        m = pat.search(full_text)
        if m:
            exam_name = m.group(0).replace("\n", " ")
            break

    m_scheme = SCHEME_PAT.search(full_text)
    scheme = m_scheme.group(1) if m_scheme else DEFAULT_SCHEME

    m_college = COLLEGE_PAT.search(full_text)
    college = m_college.group(1).strip() if m_college else DEFAULT_COLLEGE

    return ExamMetadata(
        college=college,
        exam_name=exam_name,
        scheme=scheme,
        regular_batch=calculate_regular_batch(exam_name),
    )


# ---------- Grade token extractor ----------


def extract_grades(
    text: str,
    grades: dict[SubjectCode, Grade],
    failed: list[SubjectCode],
    layout: ResultLayout = DEFAULT_LAYOUT,
) -> None:
    """
    Pull every ``CODE(grade)`` pair out of *text* into the shared accumulators.

    A later pair for the same code overwrites the earlier grade, keeping the
    code's original position. *failed* mirrors the failing codes of *grades*.
    """
    for m in layout.grade_token.finditer(text):
        code, grade = m.group(1), m.group(2).strip()
        _upsert(grades, code, grade)
        if grade in FAILURE_GRADES:
            if code not in failed:
                failed.append(code)
        elif code in failed:
            failed.remove(code)


def _upsert(mapping: dict[str, str], key: str, value: str) -> None:
    mapping[key] = value


def _insert_if_absent(mapping: dict[str, str], key: str, value: str) -> bool:
    if key in mapping:
        return False
    mapping[key] = value
    return True


def _clean_name_fragment(s: str) -> str:
    return s.strip().strip(NAME_TRIM_CHARS)


# ---------- Structural scanner ----------

LABEL_NOISE = "-"
LABEL_DEPT = "dept"
LABEL_SUBJECT = "subject"
LABEL_SUBJECT_CONT = "subject+"
LABEL_STUDENT = "student"
LABEL_GRADES_CONT = "grades+"
LABEL_DROPPED = "dropped"


class ResultScanner:
    """
    Single pass over normalized lines recovering departments, subjects and students.

    Every line is tried against the department header, same-line subject,
    split-line subject and student row detectors in that order. A detector
    may consume following lines, so the cursor can move by more than one
    line per step. ``labels`` records how each line was classified.
    """

    def __init__(self, lines: list[str], layout: ResultLayout = DEFAULT_LAYOUT):
        self.lines = lines
        self.layout = layout
        self.cursor = 0
        self.staged_dept_name = ""
        self.dept_map: dict[str, str] = {}
        self.subject_map: dict[SubjectCode, str] = {}
        self.students: list[StudentResult] = []
        self.labels: list[str] = [LABEL_NOISE] * len(lines)

    # -- cursor --

    def peek(self, k: int = 1) -> str | None:
        idx = self.cursor + k
        return self.lines[idx] if 0 <= idx < len(self.lines) else None

    def advance(self, n: int = 1) -> None:
        self.cursor += n

    # -- line predicates --

    def _is_plain_text(self, line: str) -> bool:
        lay = self.layout
        if lay.subject_code.search(line) or lay.register_no.search(line):
            return False
        return not any(marker in line for marker in lay.name_stop_markers)

    def _is_definition_candidate(self, line: str) -> bool:
        return "(" not in line and self.layout.column_header not in line

    def _consume_name_continuation(self, name: str) -> str:
        while True:
            nxt = self.peek()
            if nxt is None or not self._is_plain_text(nxt):
                return name
            self.advance()
            self.labels[self.cursor] = LABEL_SUBJECT_CONT
            name += " " + _clean_name_fragment(nxt)

    def _commit_subject(self, code: str, name: str) -> None:
        if _insert_if_absent(self.subject_map, code, name):
            logger.debug(f"Subject {code}: {name}")
        else:
            logger.debug(f"Subject {code} already defined, keeping first name")

    # -- detectors --

    def _try_dept_header(self, line: str) -> bool:
        marker = self.layout.dept_marker
        if marker not in line:
            return False
        name_part = line.split(marker, 1)[0]
        self.staged_dept_name = LEADING_NON_LETTERS.sub("", name_part).strip()
        self.labels[self.cursor] = LABEL_DEPT
        logger.debug(f"Department header: {self.staged_dept_name!r}")
        return True

    def _try_subject_same_line(self, line: str) -> bool:
        m = self.layout.same_line_subject.search(line)
        if not m or not self._is_definition_candidate(line):
            return False
        code = m.group(1).strip()
        name = _clean_name_fragment(m.group(2))
        if self.layout.register_no.search(name):
            return False
        self.labels[self.cursor] = LABEL_SUBJECT
        name = self._consume_name_continuation(name)
        self._commit_subject(code, name)
        return True

    def _try_subject_split_line(self, line: str) -> bool:
        m = self.layout.subject_code.search(line)
        if not m or not self._is_definition_candidate(line):
            return False
        if len(line) >= self.layout.split_code_max_len:
            return False
        nxt = self.peek()
        if nxt is None or not self._is_plain_text(nxt):
            return False
        self.labels[self.cursor] = LABEL_SUBJECT
        self.advance()
        self.labels[self.cursor] = LABEL_SUBJECT_CONT
        name = self._consume_name_continuation(_clean_name_fragment(nxt))
        self._commit_subject(m.group(0), name)
        return True

    def _is_grade_continuation(self, line: str) -> bool:
        lay = self.layout
        if lay.register_no.search(line):
            return False
        if lay.dept_marker in line or lay.column_header in line:
            return False
        return lay.grade_continuation.search(line) is not None

    def _try_student_row(self, line: str) -> bool:
        m = self.layout.register_no.search(line)
        if not m:
            return False
        register_no = m.group(0)
        batch, dept_code, roll_no = m.group(2), m.group(3), m.group(4)

        if self.staged_dept_name and _insert_if_absent(
            self.dept_map, dept_code, self.staged_dept_name
        ):
            logger.debug(f"Department {dept_code}: {self.staged_dept_name}")

        grades: dict[SubjectCode, Grade] = {}
        failed: list[SubjectCode] = []
        anchor = self.cursor
        extract_grades(line[m.end() :], grades, failed, self.layout)

        while True:
            nxt = self.peek()
            if nxt is None or not self._is_grade_continuation(nxt):
                break
            self.advance()
            self.labels[self.cursor] = LABEL_GRADES_CONT
            extract_grades(nxt, grades, failed, self.layout)

        if not grades:
            self.labels[anchor] = LABEL_DROPPED
            logger.debug(f"Dropping {register_no}: no grades found")
            return True

        self.labels[anchor] = LABEL_STUDENT
        self.students.append(StudentResult(register_no, batch, dept_code, roll_no, grades, failed))
        return True

    def scan(self) -> ResultScanner:
        while self.cursor < len(self.lines):
            line = self.lines[self.cursor]
            for detect in (
                self._try_dept_header,
                self._try_subject_same_line,
                self._try_subject_split_line,
                self._try_student_row,
            ):
                if detect(line):
                    break
            self.advance()
        return self


# ---------- Entry points ----------


def _today_str(today: date | None = None) -> str:
    return (today or date.today()).strftime("%x")


def parse_pages(
    pages: Iterable[str], layout: ResultLayout = DEFAULT_LAYOUT, today: date | None = None
) -> ParseResult:
    pages = list(pages)
    lines = normalize_lines(pages)
    metadata = extract_metadata(join_pages(pages))
    scanner = ResultScanner(lines, layout).scan()
    metadata.date = _today_str(today)
    metadata.dept_map = scanner.dept_map
    metadata.subject_map = scanner.subject_map
    logger.info(
        f"Parsed {len(pages)} page(s), {len(lines)} line(s): "
        f"{len(scanner.students)} student(s), {len(scanner.subject_map)} subject(s), "
        f"{len(scanner.dept_map)} department(s)"
    )
    return ParseResult(metadata=metadata, students=scanner.students)


def parse_lines(
    lines: Iterable[str], layout: ResultLayout = DEFAULT_LAYOUT, today: date | None = None
) -> ParseResult:
    """Parse already extracted text lines as if they were a single page."""
    return parse_pages(["\n".join(lines)], layout=layout, today=today)


def extract_page_texts(source: str | Path | bytes | BinaryIO) -> list[str]:
    if pdfplumber is None:
        raise ResultParseError("pdfplumber is not available in this environment")
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)
    try:
        with pdfplumber.open(source) as pdf:
            return [page.extract_text() or "" for page in pdf.pages]
    except Exception as exc:
        raise ResultParseError(f"could not read text from document: {exc}") from exc


def parse_document(
    source: str | Path | bytes | BinaryIO,
    layout: ResultLayout | None = None,
    today: date | None = None,
) -> ParseResult:
    pages = extract_page_texts(source)
    return parse_pages(pages, layout=layout or layout_from_env(), today=today)


def run_file(
    path: Path,
    layout: ResultLayout | None = None,
    credit_map: Mapping[str, float] | None = None,
) -> ParseResult:
    result = parse_document(path, layout=layout)
    if credit_map is not None:
        gaps = missing_credits(result.metadata.subject_map, credit_map)
        if gaps:
            logger.warning(f"{path.name}: no credits for {', '.join(gaps)}")
    return result


def _print_summary(result: ParseResult) -> None:
    md = result.metadata
    regular = result.regular_students()
    supply = result.supply_students()
    passed = sum(1 for s in result.students if s.is_passed)
    print(f"  College: {md.college}")
    print(f"  Exam: {md.exam_name}")
    print(f"  Scheme: {md.scheme}")
    print(f"  Regular batch: {md.regular_batch}")
    for code, name in md.dept_map.items():
        print(f"  Department {code}: {name}")
    print(f"  Subjects: {len(md.subject_map)}")
    for code, name in md.subject_map.items():
        print(f"    {code}: {name}")
    print(
        f"  Students: {len(result.students)} "
        f"(regular {len(regular)}, supply {len(supply)}), passed {passed}"
    )
    if not result.students:
        print(" [no student rows detected]")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="result-parser")
    parser.add_argument("inputs", nargs="+", help="Result PDF file(s)")
    parser.add_argument("--out", default=None, help="Optional JSON output path")
    parser.add_argument("--credits", default=None, help="code,credit file to check against")
    parser.add_argument(
        "--dept-marker",
        default=None,
        help="Text marking a department header line (default: [Full Time])",
    )
    parser.add_argument("--verbose", action="store_true", help="Log detection details")
    args = parser.parse_args(argv if argv is not None else sys.argv[1:])

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    layout = layout_from_env()
    if args.dept_marker:
        layout = replace(layout, dept_marker=args.dept_marker)
    credit_map = None
    if args.credits:
        try:
            credit_map = load_credit_map(args.credits)
        except (OSError, UnicodeDecodeError) as exc:
            logger.error(f"Could not read credits file {args.credits}: {exc}")
            print(f"Could not read credits file {args.credits}")
            raise SystemExit(1) from exc

    collected: dict[str, dict[str, object]] = {}
    failures = 0
    for inp in args.inputs:
        p = Path(inp)
        base = p.name
        print(f"Results for {base}")
        try:
            result = run_file(p, layout=layout, credit_map=credit_map)
        except ResultParseError as exc:
            failures += 1
            logger.error(f"Parsing failed for {base}: {exc}")
            print(f"  Could not parse {base}: {exc}")
            continue
        _print_summary(result)
        collected[base] = result.to_dict()
        print(f"Parsed {base}")

    if args.out:
        Path(args.out).write_text(json.dumps(collected, indent=2), encoding="utf-8")

    if failures:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
