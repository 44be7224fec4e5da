import docx
import pytest

from error_handling import SourceExtractionError
from processing import clean_text, extract_text


def test_clean_text_drops_blank_lines():
    assert clean_text("  first  \n\n\t\n second\n") == "first\nsecond"


def test_extract_plain_text(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("Photosynthesis happens in leaves.\n\n\nOxygen is released.\n", encoding="utf-8")

    assert extract_text(str(path)) == "Photosynthesis happens in leaves.\nOxygen is released."


def test_extract_docx(tmp_path):
    path = tmp_path / "notes.docx"
    document = docx.Document()
    document.add_paragraph("Chlorophyll is green.")
    document.add_paragraph("")
    document.add_paragraph("It absorbs red and blue light.")
    document.save(str(path))

    assert extract_text(str(path)) == "Chlorophyll is green.\nIt absorbs red and blue light."


def test_unsupported_extension(tmp_path):
    path = tmp_path / "image.png"
    path.write_bytes(b"\x89PNG")

    with pytest.raises(SourceExtractionError, match="Unsupported file type"):
        extract_text(str(path))


def test_empty_file_has_no_text(tmp_path):
    path = tmp_path / "empty.txt"
    path.write_text("   \n\n", encoding="utf-8")

    with pytest.raises(SourceExtractionError, match="No text found"):
        extract_text(str(path))


def test_corrupt_document_is_reported(tmp_path):
    path = tmp_path / "broken.docx"
    path.write_bytes(b"not a zip file")

    with pytest.raises(SourceExtractionError, match="Could not read broken.docx"):
        extract_text(str(path))
