"""
Tests for the course bulk format (Cours;Intit.Complet) and upload checks.
"""

import tempfile
import unittest
from pathlib import Path

from examsync.errors import UploadRejected
from examsync.model import IssueKind, ParsedCourseRecord
from examsync.parse import check_upload, parse, parse_courses, parse_table, read_upload

HEADER = "Cours;Intit.Complet"


class TestParseCourses(unittest.TestCase):
    def test_simple_rows(self) -> None:
        result = parse_courses(f"{HEADER}\nWMDS2221;Data science\nLBIO1111;Biologie\n")

        self.assertEqual(result.errors, [])
        self.assertEqual(
            result.rows,
            [
                ParsedCourseRecord("WMDS2221", "Data science"),
                ParsedCourseRecord("LBIO1111", "Biologie"),
            ],
        )

    def test_semicolons_in_title_are_kept(self) -> None:
        result = parse_courses(f"{HEADER}\nWMDS2221;Data science; theory;practice \n")
        self.assertEqual(result.rows[0].full_title, "Data science; theory;practice")

    def test_required_fields(self) -> None:
        text = "\n".join(
            [
                HEADER,
                ";Biologie",
                "LBIO1111",
                "LBIO1112;",
                f"{'C' * 51};Too long code",
                f"LBIO1113;{'t' * 501}",
            ]
        )
        result = parse_courses(text)

        self.assertEqual(result.rows, [])
        self.assertEqual(
            [str(e) for e in result.errors],
            [
                "Line 2: missing code",
                "Line 3: missing title",
                "Line 4: missing title",
                "Line 5: code too long (max 50 characters)",
                "Line 6: title too long (max 500 characters)",
            ],
        )
        self.assertTrue(all(e.kind is IssueKind.ROW_REJECTED for e in result.errors))

    def test_length_bounds_are_inclusive(self) -> None:
        result = parse_courses(f"{HEADER}\n{'C' * 50};{'t' * 500}\n")
        self.assertEqual(len(result.rows), 1)

    def test_header_only(self) -> None:
        result = parse_courses(f"{HEADER}\n\n")
        self.assertEqual(result.rows, [])
        self.assertEqual(result.errors, [])

    def test_wrong_header_does_not_stop_parsing(self) -> None:
        result = parse_courses("a;b\nWMDS2221;Data science\n")
        self.assertEqual(len(result.rows), 1)
        self.assertEqual(result.errors[0].kind, IssueKind.STRUCTURAL)

    def test_parse_table_with_custom_delimiter(self) -> None:
        rows, structural = parse_table("code,title\nA,B,C\n", 2, ("code", "title"), delimiter=",")
        self.assertEqual(structural, [])
        self.assertEqual(rows[0].fields, ("A", "B,C"))
        self.assertEqual(rows[0].line, 2)

    def test_parse_dispatch(self) -> None:
        self.assertEqual(len(parse(f"{HEADER}\nA;B\n", "courses").rows), 1)
        with self.assertRaises(ValueError):
            parse("", "rooms")


class TestUpload(unittest.TestCase):
    def test_zero_byte_file_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            p = Path(d) / "empty.csv"
            p.write_bytes(b"")
            with self.assertRaises(UploadRejected) as ctx:
                check_upload(p, "courses")
            self.assertIn("file is empty", str(ctx.exception))

    def test_wrong_extension_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            p = Path(d) / "courses.xlsx"
            p.write_text("x", encoding="utf-8")
            with self.assertRaises(UploadRejected):
                check_upload(p, "courses")

    def test_size_ceiling_depends_on_kind(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            p = Path(d) / "big.csv"
            p.write_bytes(b"x" * (6 * 1024 * 1024))
            with self.assertRaises(UploadRejected):
                check_upload(p, "courses")
            self.assertEqual(check_upload(p, "exams"), 6 * 1024 * 1024)

    def test_missing_file(self) -> None:
        with self.assertRaises(UploadRejected):
            check_upload("/nonexistent/courses.csv", "courses")

    def test_read_upload_handles_bom_and_cp1252(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            utf = Path(d) / "utf.csv"
            utf.write_bytes("Cours;Intit.Complet\nA;Économie\n".encode("utf-8-sig"))
            self.assertTrue(read_upload(utf, "courses").startswith("Cours"))

            legacy = Path(d) / "legacy.txt"
            legacy.write_bytes("Cours;Intit.Complet\nA;Économie\n".encode("cp1252"))
            self.assertIn("Économie", read_upload(legacy, "courses"))


if __name__ == "__main__":
    unittest.main()
