import logging
import os

import docx
import pymupdf
from pptx import Presentation

from error_handling import SourceExtractionError

logger = logging.getLogger("quizgen.processing")

SUPPORTED_EXTENSIONS = ('.pdf', '.docx', '.pptx', '.txt')


def clean_text(text: str) -> str:
    """Strip every line and drop blank ones."""
    return "\n".join(line.strip() for line in text.splitlines() if line.strip())


def extract_text(file_path: str) -> str:
    """
    Extracts text from an uploaded PDF, DOCX, PPTX or TXT file.

    Raises:
        SourceExtractionError: unsupported extension, unreadable file or no text
    """
    _, ext = os.path.splitext(file_path)
    ext = ext.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise SourceExtractionError(f"Unsupported file type: {ext or 'none'}")

    text = ""
    try:
        if ext == '.pdf':
            doc = pymupdf.open(file_path)
            try:
                for page in doc:
                    text += page.get_text() + "\n"
            finally:
                doc.close()
        elif ext == '.docx':
            document = docx.Document(file_path)
            for para in document.paragraphs:
                text += para.text + "\n"
        elif ext == '.pptx':
            prs = Presentation(file_path)
            for slide in prs.slides:
                slide_texts = []
                if slide.shapes.title is not None:
                    slide_texts.append(slide.shapes.title.text)

                # Body, content and subtitle placeholders
                for shape in slide.shapes:
                    if shape.has_text_frame and shape.is_placeholder:
                        if shape.placeholder_format.idx in [1, 13, 14, 15, 16]:
                            slide_texts.append(shape.text)

                text += "\n".join(slide_texts) + "\n\n"
        else:
            with open(file_path, 'r', encoding='utf-8', errors='replace') as f:
                text = f.read()
    except Exception as e:
        logger.error("Error reading %s: %s", file_path, e)
        raise SourceExtractionError(f"Could not read {os.path.basename(file_path)}: {e}")

    cleaned = clean_text(text)
    if not cleaned:
        raise SourceExtractionError(f"No text found in {os.path.basename(file_path)}")
    logger.info("Extracted %d characters from %s", len(cleaned), os.path.basename(file_path))
    return cleaned
