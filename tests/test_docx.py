"""
Document-level tests: container reading, paragraph extraction and the
full docx → ExamData pipeline, plus the CLI and HTTP surfaces.
"""

from __future__ import annotations

import io
import json
import struct

import pytest
from click.testing import CliRunner

from exam_parser import parse_docx, validate_exam
from exam_parser.archive import (
    DocxArchive,
    content_type_for,
    extract_media,
    parse_relationships,
)
from exam_parser.cli import cli
from exam_parser.engine import ParserConfig, ParserEngine
from exam_parser.exceptions import (
    ArchiveError,
    InvalidInputError,
    MediaExtractionWarning,
    MissingPartError,
)
from exam_parser.extractor import ParagraphExtractor
from exam_parser.models import QuestionType
from exam_parser.server import create_app


def _extract(builder, *paragraphs):
    return ParagraphExtractor().extract(builder.document(paragraphs))


def _patch_central_header(data: bytes, name: str, offset: int, value: int) -> bytes:
    """Overwrite a 2-byte field of `name`'s central directory header."""
    header = data.rfind(name.encode("ascii")) - 46
    assert data[header:header + 4] == b"PK\x01\x02"
    patched = bytearray(data)
    patched[header + offset:header + offset + 2] = struct.pack("<H", value)
    return bytes(patched)


def _with_compression_method(data: bytes, name: str, method: int) -> bytes:
    return _patch_central_header(data, name, 10, method)


def _with_flag_bits(data: bytes, name: str, flag_bits: int) -> bytes:
    return _patch_central_header(data, name, 8, flag_bits)


# ═══════════════════════════════════════════════════════════════════════════════
# ARCHIVE TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestDocxArchive:
    """Test container opening and part access."""

    def test_empty_bytes(self):
        with pytest.raises(ArchiveError):
            DocxArchive.from_bytes(b"")

    def test_not_a_zip(self):
        with pytest.raises(ArchiveError):
            DocxArchive.from_bytes(b"definitely not a zip container")

    def test_main_document(self, builder):
        data = builder.build(["Câu 1. x"])
        with DocxArchive.from_bytes(data) as archive:
            assert archive.has_part("word/document.xml")
            assert b"w:document" in archive.main_document()

    def test_missing_main_document(self, builder):
        data = builder.build(include_document=False)
        with DocxArchive.from_bytes(data) as archive:
            with pytest.raises(MissingPartError) as exc_info:
                archive.main_document()
        assert exc_info.value.part_name == "word/document.xml"

    def test_unreadable_main_document(self, builder):
        data = _with_compression_method(
            builder.build(["Câu 1. x"]), "word/document.xml", method=99
        )
        with DocxArchive.from_bytes(data) as archive:
            with pytest.raises(ArchiveError):
                archive.main_document()

    def test_read_text(self, builder):
        data = builder.build(["Câu 1. Tính x"])
        with DocxArchive.from_bytes(data) as archive:
            assert "Câu 1. Tính x" in archive.read_text("word/document.xml")

    def test_content_types(self):
        assert content_type_for("image1.png") == "image/png"
        assert content_type_for("image2.JPG") == "image/jpeg"
        assert content_type_for("image3.jpeg") == "image/jpeg"
        assert content_type_for("image4.emf") == "image/png"


class TestMediaExtraction:
    """Test media extraction and relationship resolution."""

    def test_assets_linked_through_manifest(self, builder, png_bytes):
        data = builder.build(
            ["Câu 1. x"],
            media={"image1.png": png_bytes, "image2.jpeg": b"jpeg-data"},
            rels={"rId5": "media/image1.png", "rId6": "media/image2.jpeg"},
        )
        with DocxArchive.from_bytes(data) as archive:
            catalog = extract_media(archive)

        assert len(catalog) == 2
        first, second = catalog.assets
        assert (first.id, first.filename, first.relationship_id) == (
            "img_0", "image1.png", "rId5",
        )
        assert first.payload == png_bytes
        assert second.content_type == "image/jpeg"
        assert catalog.resolve("rId6") is second

    def test_first_relationship_wins(self, builder, png_bytes):
        data = builder.build(
            media={"image1.png": png_bytes},
            rels={"rId5": "media/image1.png", "rId9": "media/image1.png"},
        )
        with DocxArchive.from_bytes(data) as archive:
            catalog = extract_media(archive)

        assert catalog.assets[0].relationship_id == "rId5"
        assert catalog.resolve("rId9") is catalog.assets[0]

    def test_no_manifest(self, builder, png_bytes):
        data = builder.build(media={"image1.png": png_bytes})
        with DocxArchive.from_bytes(data) as archive:
            catalog = extract_media(archive)

        assert len(catalog) == 1
        assert catalog.assets[0].relationship_id == ""

    def test_malformed_manifest_warns(self, builder, png_bytes):
        data = builder.build(
            media={"image1.png": png_bytes},
            rels_xml=b"<Relationships><Relationship",
        )
        with DocxArchive.from_bytes(data) as archive:
            with pytest.warns(MediaExtractionWarning):
                catalog = extract_media(archive)

        assert len(catalog) == 1

    def test_unsupported_compression_warns(self, builder, png_bytes):
        data = _with_compression_method(
            builder.build(
                ["Câu 1. x"],
                media={"image1.png": png_bytes, "image2.png": png_bytes},
            ),
            "word/media/image1.png",
            method=99,
        )
        with DocxArchive.from_bytes(data) as archive:
            with pytest.warns(MediaExtractionWarning):
                catalog = extract_media(archive)

        assert [a.filename for a in catalog.assets] == ["image2.png"]

    def test_encrypted_entry_warns(self, builder, png_bytes):
        data = _with_flag_bits(
            builder.build(["Câu 1. x"], media={"image1.png": png_bytes}),
            "word/media/image1.png",
            flag_bits=0x1,
        )
        with DocxArchive.from_bytes(data) as archive:
            with pytest.warns(MediaExtractionWarning):
                catalog = extract_media(archive)

        assert len(catalog) == 0

    def test_external_targets_ignored(self):
        xml = (
            b'<Relationships xmlns="http://schemas.openxmlformats.org/package/2006/relationships">'
            b'<Relationship Id="rId1" Target="media/image1.png"/>'
            b'<Relationship Id="rId2" Target="http://example.com/media/x.png" TargetMode="External"/>'
            b'<Relationship Id="rId3" Target="styles.xml"/>'
            b"</Relationships>"
        )
        assert parse_relationships(xml) == {"rId1": "image1.png"}


# ═══════════════════════════════════════════════════════════════════════════════
# PARAGRAPH EXTRACTOR TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestParagraphExtractor:
    """Test WordprocessingML paragraph extraction."""

    def test_runs_concatenated(self, builder):
        paras = _extract(builder, builder.para("Câu 1. ", "2+2=?"))
        assert [p.text for p in paras] == ["Câu 1. 2+2=?"]

    def test_empty_paragraphs_skipped(self, builder):
        paras = _extract(builder, builder.para(), "Câu 1. x", builder.para("   "))
        assert [p.text for p in paras] == ["Câu 1. x"]

    def test_underlined_run(self, builder):
        paras = _extract(builder, builder.para(
            builder.run("A. 3 "),
            builder.run("B. 4", underline=True),
        ))
        para = paras[0]
        assert para.has_underline is True
        assert para.underlined_segments == ["B. 4"]
        assert para.text == "A. 3 B. 4"

    def test_underline_none_is_not_underline(self, builder):
        paras = _extract(builder, builder.para(builder.run("B. 4", underline="none")))
        assert paras[0].has_underline is False

    def test_markdown_underline(self, builder):
        paras = _extract(builder, "Đáp án [B]{.underline}")
        para = paras[0]
        assert para.text == "Đáp án B"
        assert para.has_underline is True
        assert para.underlined_segments == ["B"]

    def test_image_reference(self, builder):
        paras = _extract(builder, builder.para("Hình 3", builder.image("rId5")))
        assert paras[0].text == "Hình 3"
        assert paras[0].image_ids == ["rId5"]

    def test_image_only_paragraph(self, builder):
        paras = _extract(builder, builder.para(builder.image("rId5")))
        assert paras[0].text == ""
        assert paras[0].image_ids == ["rId5"]

    def test_legacy_vml_image(self, builder):
        pict = builder.raw(
            '<w:r><w:pict><v:shape><v:imagedata r:id="rId8"/></v:shape></w:pict></w:r>'
        )
        paras = _extract(builder, builder.para(pict))
        assert paras[0].image_ids == ["rId8"]

    def test_fallback_content_skipped(self, builder):
        alternate = builder.raw(
            "<w:r><mc:AlternateContent>"
            '<mc:Choice Requires="wps"><w:drawing><a:blip r:embed="rId5"/></w:drawing></mc:Choice>'
            "<mc:Fallback><w:pict><v:shape>"
            '<v:imagedata r:id="rId6"/>'
            "</v:shape></w:pict></mc:Fallback>"
            "</mc:AlternateContent></w:r>"
        )
        paras = _extract(builder, builder.para(alternate))
        assert paras[0].image_ids == ["rId5"]

    def test_line_breaks_and_tabs(self, builder):
        run = builder.raw("<w:r><w:t>foo</w:t><w:br/><w:t>bar</w:t><w:tab/><w:t>baz</w:t></w:r>")
        paras = _extract(builder, builder.para(run))
        assert paras[0].text == "foo\nbar baz"

    def test_math_runs(self, builder):
        math = builder.raw("<m:oMath><m:r><m:t>x=1</m:t></m:r></m:oMath>")
        paras = _extract(builder, builder.para("Tính ", math))
        assert paras[0].text == "Tính x=1"

    def test_latex_normalized(self, builder):
        paras = _extract(builder, r"Giải \(x^2=4\)")
        assert paras[0].text == "Giải $x^2=4$"

    def test_unparseable_document(self):
        with pytest.raises(ArchiveError):
            ParagraphExtractor().extract(b"not xml at all")


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE / END-TO-END TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestParserEngine:
    """Test the full docx → ExamData pipeline."""

    def test_full_exam(self, full_exam_docx):
        exam = ParserEngine().parse_bytes(full_exam_docx, title="Đề thử")

        assert exam.title == "Đề thử"
        assert exam.time_limit == 90
        assert [q.number for q in exam.questions] == [101, 102, 201, 301]
        assert exam.answers == {101: "B", 102: "C", 301: "7"}
        assert [s.section_type for s in exam.sections] == [
            QuestionType.MULTIPLE_CHOICE,
            QuestionType.TRUE_FALSE,
            QuestionType.SHORT_ANSWER,
        ]
        assert len(exam.images) == 1

    def test_inline_options_underline_scenario(self, full_exam_docx):
        exam = ParserEngine().parse_bytes(full_exam_docx)
        q = exam.get_question(101)

        assert q.text == "2+2=?"
        assert [o.text for o in q.options] == ["3", "4", "5", "6"]
        assert q.correct_answer == "B"

    def test_figure_caption_scenario(self, full_exam_docx, png_bytes):
        exam = ParserEngine().parse_bytes(full_exam_docx)
        q = exam.get_question(102)

        assert q.text == "Xem hình bên."
        assert "Hình 1" not in q.solution
        assert [img.filename for img in q.images] == ["image1.png"]
        assert q.images[0].payload == png_bytes

    def test_true_false_answer_format(self, full_exam_docx):
        exam = ParserEngine().parse_bytes(full_exam_docx)
        q = exam.get_question(201)
        assert q.question_type == QuestionType.TRUE_FALSE
        assert [o.letter for o in q.options] == ["a", "b", "c", "d"]
        assert q.correct_answer == "a,c"
        assert 201 not in exam.answers

    def test_encoded_numbers_unique(self, full_exam_docx):
        exam = ParserEngine().parse_bytes(full_exam_docx)
        numbers = [q.number for q in exam.questions]
        assert len(set(numbers)) == len(numbers)
        for q in exam.questions:
            assert q.number == q.section_index * 100 + q.authored_number

    def test_headerless_document(self, headerless_docx):
        exam = ParserEngine().parse_bytes(headerless_docx)

        assert [q.number for q in exam.questions] == [101, 102]
        assert len(exam.sections) == 1
        assert exam.sections[0].section_type == QuestionType.MULTIPLE_CHOICE

    def test_time_limit_from_config(self, headerless_docx):
        exam = ParserEngine(ParserConfig(time_limit=45)).parse_bytes(headerless_docx)
        assert exam.time_limit == 45

    def test_document_without_questions(self, builder):
        exam = ParserEngine().parse_bytes(builder.build(["Chỉ có lời dẫn"]))
        assert exam.questions == []
        assert exam.sections == []

    def test_invalid_container(self):
        with pytest.raises(InvalidInputError):
            ParserEngine().parse_bytes(b"PK-not-really")

    def test_missing_main_part(self, builder):
        with pytest.raises(MissingPartError):
            ParserEngine().parse_bytes(builder.build(include_document=False))

    def test_non_bytes_input(self):
        with pytest.raises(InvalidInputError):
            ParserEngine().parse_bytes("word/document.xml")

    def test_parse_file(self, tmp_path, headerless_docx):
        path = tmp_path / "de_thi.docx"
        path.write_bytes(headerless_docx)

        exam = ParserEngine().parse(str(path))
        assert exam.title == "de_thi"
        assert len(exam.questions) == 2

    def test_parse_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ParserEngine().parse(str(tmp_path / "missing.docx"))

    def test_run_saves_outputs(self, tmp_path, full_exam_docx):
        path = tmp_path / "de_thi.docx"
        path.write_bytes(full_exam_docx)
        out = tmp_path / "out"

        engine = ParserEngine(ParserConfig(
            output_dir=str(out), exam_id="de1", save_paragraphs=True,
        ))
        result = engine.run(str(path))

        assert result.validation.valid is True
        assert result.validation.total_questions == 4
        assert result.source.filename == "de_thi.docx"
        assert result.source.media_count == 1
        assert result.parse_version.question_count == 4

        saved = json.loads((out / "de1_parsed.json").read_text(encoding="utf-8"))
        assert saved["exam"]["answers"]["101"] == "B"
        assert (out / "de1_validation.json").exists()
        paragraphs = json.loads((out / "de1_paragraphs.json").read_text(encoding="utf-8"))
        assert paragraphs[0]["text"] == "PHẦN 1. Trắc nghiệm nhiều lựa chọn"

    def test_package_helpers(self, full_exam_docx):
        exam = parse_docx(full_exam_docx, title="Đề", time_limit=60)
        assert exam.time_limit == 60
        report = validate_exam(exam)
        assert report.valid is True
        assert report.section_counts == {
            "multiple_choice": 2, "true_false": 1, "short_answer": 1,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# CLI TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestCli:
    """Test the click command-line interface."""

    @pytest.fixture
    def docx_path(self, tmp_path, full_exam_docx):
        path = tmp_path / "de_thi.docx"
        path.write_bytes(full_exam_docx)
        return path

    def test_parse_json_output(self, docx_path):
        result = CliRunner().invoke(cli, ["parse", str(docx_path), "--json-output"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["exam"]["title"] == "de_thi"
        assert data["validation"]["total_questions"] == 4

    def test_parse_writes_outputs(self, tmp_path, docx_path):
        out = tmp_path / "out"
        result = CliRunner().invoke(cli, [
            "parse", str(docx_path), "-o", str(out), "--exam-id", "de1",
            "--log-level", "ERROR",
        ])

        assert result.exit_code == 0, result.output
        assert (out / "de1_parsed.json").exists()
        assert "Validation Report" in result.output

    def test_parse_invalid_document(self, tmp_path):
        path = tmp_path / "broken.docx"
        path.write_bytes(b"not a document")
        result = CliRunner().invoke(cli, ["parse", str(path), "--log-level", "ERROR"])

        assert result.exit_code == 1
        assert "Invalid document" in result.output

    def test_validate_saved_result(self, tmp_path, docx_path):
        out = tmp_path / "out"
        runner = CliRunner()
        runner.invoke(cli, [
            "parse", str(docx_path), "-o", str(out), "--exam-id", "de1",
            "--log-level", "ERROR",
        ])
        result = runner.invoke(cli, ["validate", str(out / "de1_parsed.json")])

        assert result.exit_code == 0, result.output
        assert "Validation Report" in result.output

    def test_validate_empty_exam_fails(self, tmp_path):
        path = tmp_path / "empty.json"
        path.write_text(json.dumps({"exam": {"title": "Trống"}}), encoding="utf-8")
        result = CliRunner().invoke(cli, ["validate", str(path)])
        assert result.exit_code == 2

    def test_validate_malformed_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        result = CliRunner().invoke(cli, ["validate", str(path)])

        assert result.exit_code == 1
        assert "Invalid JSON" in result.output

    def test_validate_json_list(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[]", encoding="utf-8")
        result = CliRunner().invoke(cli, ["validate", str(path)])

        assert result.exit_code == 1
        assert "Not a parse result" in result.output

    def test_info(self, docx_path):
        result = CliRunner().invoke(cli, ["info", str(docx_path)])
        assert result.exit_code == 0, result.output
        assert "Document Information" in result.output

    def test_batch(self, tmp_path, full_exam_docx, headerless_docx):
        src = tmp_path / "src"
        src.mkdir()
        (src / "a.docx").write_bytes(full_exam_docx)
        (src / "b.docx").write_bytes(headerless_docx)
        (src / "c.docx").write_bytes(b"broken")

        result = CliRunner().invoke(cli, [
            "batch", str(src), "-o", str(tmp_path / "out"), "--log-level", "ERROR",
        ])

        assert result.exit_code == 0, result.output
        assert (tmp_path / "out" / "a_parsed.json").exists()
        assert (tmp_path / "out" / "b_parsed.json").exists()


# ═══════════════════════════════════════════════════════════════════════════════
# HTTP SERVER TESTS
# ═══════════════════════════════════════════════════════════════════════════════


class TestServer:
    """Test the Flask microservice."""

    @pytest.fixture
    def client(self):
        app = create_app({"TESTING": True, "LOG_LEVEL": "ERROR"})
        return app.test_client()

    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"

    def test_info(self, client):
        data = client.get("/api/info").get_json()
        assert data["supported_formats"] == ["docx"]

    def test_parse_upload(self, client, full_exam_docx):
        response = client.post(
            "/api/parse",
            data={"file": (io.BytesIO(full_exam_docx), "de.docx"), "title": "Đề 1"},
            content_type="multipart/form-data",
        )

        assert response.status_code == 200
        data = response.get_json()
        assert data["exam"]["title"] == "Đề 1"
        assert "201" not in data["exam"]["answers"]
        assert data["exam"]["questions"][2]["correct_answer"] == "a,c"
        assert data["validation"]["valid"] is True
        assert data["source"]["filename"] == "de.docx"

    def test_parse_raw_body(self, client, headerless_docx):
        response = client.post(
            "/api/parse?time_limit=45",
            data=headerless_docx,
            content_type="application/octet-stream",
        )

        assert response.status_code == 200
        exam = response.get_json()["exam"]
        assert exam["time_limit"] == 45
        assert [q["number"] for q in exam["questions"]] == [101, 102]

    def test_parse_invalid_document(self, client):
        response = client.post(
            "/api/parse", data=b"garbage", content_type="application/octet-stream"
        )
        assert response.status_code == 400
        assert "error" in response.get_json()

    def test_parse_without_input(self, client):
        response = client.post("/api/parse")
        assert response.status_code == 400

    def test_parse_bad_time_limit(self, client, headerless_docx):
        response = client.post(
            "/api/parse?time_limit=soon",
            data=headerless_docx,
            content_type="application/octet-stream",
        )
        assert response.status_code == 400

    def test_validate(self, client, full_exam_docx):
        parsed = client.post(
            "/api/parse", data=full_exam_docx, content_type="application/octet-stream"
        ).get_json()

        response = client.post("/api/validate", json={"exam": parsed["exam"]})

        assert response.status_code == 200
        report = response.get_json()
        assert report["total_questions"] == 4
        assert report["valid"] is True

    def test_validate_rejects_bad_payload(self, client):
        assert client.post("/api/validate", json=[1, 2]).status_code == 400
        assert client.post(
            "/api/validate", json={"time_limit": "ninety"}
        ).status_code == 400
