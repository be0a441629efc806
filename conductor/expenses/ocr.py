"""
OCR Service for expense documents

Reads receipts and invoices (images or PDFs) with Tesseract and extracts
the fields an expense report needs: amount, date, merchant, merchant CNPJ
and payment method.

Pipeline:
    content bytes -> Pillow / pdf2image -> pytesseract -> regex extraction -> validation

Tesseract calls are blocking and run in a worker thread.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from io import BytesIO
from typing import Any, Dict, List, Optional, Tuple
import asyncio
import hashlib
import logging
import re
import time
import unicodedata
import uuid

import pytesseract
from PIL import Image, UnidentifiedImageError
from pdf2image import convert_from_bytes
from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from conductor.core.config import settings
from conductor.core.exceptions import DocumentValidationError, DuplicateDocumentError, OCRProcessingError
from conductor.middleware.metrics import track_ocr_document
from conductor.models.expense import ExpenseDocument
from conductor.models.ticket import ActivityLog
from conductor.validation.brazilian import format_cnpj, validate_cnpj

logger = logging.getLogger(__name__)

SUPPORTED_MIME_TYPES = {
    "image/jpeg",
    "image/png",
    "image/tiff",
    "image/webp",
    "application/pdf",
}

# Checked in order; the first label found wins
AMOUNT_LABELS = ("VALOR TOTAL", "TOTAL A PAGAR", "VALOR PAGO", "TOTAL")

_NUMBER = r"(\d[\d.,]*\d|\d)"
_CURRENCY_AMOUNT = re.compile(r"R\$\s*" + _NUMBER)
_CNPJ_CANDIDATE = re.compile(r"\d{2}\.?\d{3}\.?\d{3}/?\d{4}-?\d{2}")

_DATE_PATTERNS = [
    (re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b"), ("year", "month", "day")),
    (re.compile(r"\b(\d{2})/(\d{2})/(\d{4})\b"), ("day", "month", "year")),
    (re.compile(r"\b(\d{2})-(\d{2})-(\d{4})\b"), ("day", "month", "year")),
    (re.compile(r"\b(\d{2})/(\d{2})/(\d{2})\b"), ("day", "month", "year")),
    (re.compile(r"\b(\d{2})-(\d{2})-(\d{2})\b"), ("day", "month", "year")),
]

# Accent-free, lowercase keywords
PAYMENT_KEYWORDS = [
    ("pix", ("pix",)),
    ("credit_card", ("cartao de credito", "credito", "credit card", "credit")),
    ("debit_card", ("cartao de debito", "debito", "debit card", "debit")),
    ("boleto", ("boleto",)),
    ("cash", ("dinheiro", "especie", "cash")),
]

_HEADER_SKIP_WORDS = (
    "CNPJ", "CPF", "CUPOM", "NOTA FISCAL", "NFC-E", "DATA", "ENDERECO", "RUA", "AV.", "TEL", "R$",
    "EXTRATO", "DOCUMENTO", "IE:", "INSCRICAO",
)

MAX_DATE_AGE_DAYS = 90


def strip_accents(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value or "")
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def parse_amount(value: str) -> Optional[Decimal]:
    """
    Parse a money string in Brazilian or US notation.

    ``1.234,56`` / ``1,234.56`` / ``1234.56`` / ``R$ 12,00``. When only one
    kind of separator is present, a trailing group of 1-2 digits is the
    decimal part and a group of exactly 3 digits is thousands.

    Returns:
        Decimal, or None when nothing numeric can be read
    """
    cleaned = re.sub(r"[^\d.,-]", "", value or "")
    if not cleaned or not re.search(r"\d", cleaned):
        return None

    if "," in cleaned and "." in cleaned:
        decimal_sep = "," if cleaned.rfind(",") > cleaned.rfind(".") else "."
        thousands_sep = "." if decimal_sep == "," else ","
        cleaned = cleaned.replace(thousands_sep, "").replace(decimal_sep, ".")
    elif "," in cleaned or "." in cleaned:
        sep = "," if "," in cleaned else "."
        head, _, tail = cleaned.rpartition(sep)
        if cleaned.count(sep) == 1 and len(tail) in (1, 2):
            cleaned = f"{head}.{tail}"
        elif len(tail) == 3:
            cleaned = cleaned.replace(sep, "")
        else:
            cleaned = f"{head.replace(sep, '')}.{tail}"

    try:
        return Decimal(cleaned).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None


@dataclass
class ExtractedExpenseData:
    amount: Optional[Decimal] = None
    currency: str = "BRL"
    expense_date: Optional[date] = None
    merchant_name: Optional[str] = None
    merchant_cnpj: Optional[str] = None
    payment_method: Optional[str] = None
    raw_amounts: List[Decimal] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount": str(self.amount) if self.amount is not None else None,
            "currency": self.currency,
            "expense_date": self.expense_date.isoformat() if self.expense_date else None,
            "merchant_name": self.merchant_name,
            "merchant_cnpj": self.merchant_cnpj,
            "payment_method": self.payment_method,
            "raw_amounts": [str(amount) for amount in self.raw_amounts],
        }


@dataclass
class OCRResult:
    text: str
    confidence: float
    document_hash: str
    processing_time_ms: int
    page_count: int
    extracted_data: ExtractedExpenseData
    validation: Dict[str, Any]

    @property
    def needs_review(self) -> bool:
        return not self.validation.get("is_valid", False) or self.confidence < settings.ocr_min_confidence

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "confidence": self.confidence,
            "document_hash": self.document_hash,
            "processing_time_ms": self.processing_time_ms,
            "page_count": self.page_count,
            "extracted_data": self.extracted_data.to_dict(),
            "validation": self.validation,
        }


# ==================== Extraction ====================

def _extract_amount(text: str) -> Tuple[Optional[Decimal], List[Decimal]]:
    raw_amounts = [amount for amount in (parse_amount(m.group(1)) for m in _CURRENCY_AMOUNT.finditer(text))
                   if amount is not None]

    upper = strip_accents(text).upper()
    for label in AMOUNT_LABELS:
        match = re.search(r"\b" + re.escape(label) + r"\s*:?\s*(?:R\$)?\s*" + _NUMBER, upper)
        if match:
            amount = parse_amount(match.group(1))
            if amount is not None:
                return amount, raw_amounts

    return (max(raw_amounts) if raw_amounts else None), raw_amounts


def _extract_date(text: str) -> Optional[date]:
    for pattern, order in _DATE_PATTERNS:
        for match in pattern.finditer(text):
            parts = dict(zip(order, (int(group) for group in match.groups())))
            if parts["year"] < 100:
                parts["year"] += 2000
            try:
                return date(parts["year"], parts["month"], parts["day"])
            except ValueError:
                continue
    return None


def _extract_cnpj(text: str) -> Optional[str]:
    for match in _CNPJ_CANDIDATE.finditer(text):
        if validate_cnpj(match.group(0)):
            return format_cnpj(match.group(0))
    return None


def _extract_merchant(text: str) -> Optional[str]:
    for line in text.splitlines()[:8]:
        candidate = line.strip()
        letters = sum(1 for ch in candidate if ch.isalpha())
        if letters < 3 or letters < len(candidate.replace(" ", "")) / 2:
            continue
        upper = strip_accents(candidate).upper()
        if any(re.search(r"\b" + re.escape(word), upper) for word in _HEADER_SKIP_WORDS):
            continue
        return re.sub(r"\s{2,}", " ", candidate)
    return None


def _extract_payment_method(text: str) -> Optional[str]:
    normalized = strip_accents(text).lower()
    for method, keywords in PAYMENT_KEYWORDS:
        for keyword in keywords:
            if re.search(r"\b" + re.escape(keyword) + r"\b", normalized):
                return method
    return None


def extract_expense_data(text: str) -> ExtractedExpenseData:
    """Regex extraction of expense fields from OCR text."""
    amount, raw_amounts = _extract_amount(text or "")
    return ExtractedExpenseData(
        amount=amount,
        expense_date=_extract_date(text or ""),
        merchant_name=_extract_merchant(text or ""),
        merchant_cnpj=_extract_cnpj(text or ""),
        payment_method=_extract_payment_method(text or ""),
        raw_amounts=raw_amounts,
    )


def validate_extracted_data(
    data: ExtractedExpenseData,
    confidence: float = 1.0,
    today: date = None,
    min_confidence: float = None,
) -> Tuple[bool, List[str], List[str]]:
    """
    Check extracted fields.

    Returns:
        (is_valid, errors, warnings); errors make the document invalid
    """
    today = today or date.today()
    min_confidence = settings.ocr_min_confidence if min_confidence is None else min_confidence
    errors: List[str] = []
    warnings: List[str] = []

    if data.amount is None:
        errors.append("Amount not found")
    elif data.amount <= 0:
        errors.append("Amount must be positive")

    if data.expense_date is None:
        warnings.append("Expense date not found")
    elif data.expense_date > today:
        errors.append("Expense date is in the future")
    elif data.expense_date < today - timedelta(days=MAX_DATE_AGE_DAYS):
        warnings.append(f"Expense date is older than {MAX_DATE_AGE_DAYS} days")

    if data.merchant_cnpj is None:
        warnings.append("Merchant CNPJ missing or invalid")

    if confidence < min_confidence:
        warnings.append(f"Low OCR confidence ({confidence:.2f})")

    return len(errors) == 0, errors, warnings


# ==================== Service ====================

class OCRService:
    def __init__(
        self,
        languages: str = None,
        pdf_dpi: int = None,
        max_bytes: int = None,
        min_confidence: float = None,
    ):
        self.languages = languages or settings.ocr_languages
        self.pdf_dpi = pdf_dpi or settings.ocr_pdf_dpi
        self.max_bytes = max_bytes or settings.max_upload_bytes
        self.min_confidence = settings.ocr_min_confidence if min_confidence is None else min_confidence

        if settings.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = settings.tesseract_cmd

    def validate_input(self, content: bytes, mime_type: str) -> None:
        if not content:
            raise DocumentValidationError("Document is empty")
        if len(content) > self.max_bytes:
            raise DocumentValidationError(
                "Document exceeds the maximum upload size",
                details={"size_bytes": len(content), "max_bytes": self.max_bytes},
            )
        if mime_type not in SUPPORTED_MIME_TYPES:
            raise DocumentValidationError(
                f"Unsupported document type: {mime_type}",
                details={"supported": sorted(SUPPORTED_MIME_TYPES)},
            )

    def _load_images(self, content: bytes, mime_type: str) -> List[Image.Image]:
        if mime_type == "application/pdf":
            try:
                return convert_from_bytes(content, dpi=self.pdf_dpi)
            except (PDFPageCountError, PDFSyntaxError) as e:
                raise DocumentValidationError("PDF could not be read", details={"error": str(e)}) from e
            except PDFInfoNotInstalledError as e:
                raise OCRProcessingError("PDF rasteriser (poppler) is not installed") from e

        try:
            image = Image.open(BytesIO(content))
            image.load()
        except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as e:
            raise DocumentValidationError("Image could not be read", details={"error": str(e)}) from e
        return [image]

    def _run_ocr(self, content: bytes, mime_type: str) -> Tuple[str, float, int]:
        images = self._load_images(content, mime_type)

        texts = []
        word_confidences = []
        for image in images:
            data = pytesseract.image_to_data(image, lang=self.languages, output_type=pytesseract.Output.DICT)
            word_confidences.extend(float(conf) for conf in data.get("conf", []) if float(conf) > -1)
            texts.append(pytesseract.image_to_string(image, lang=self.languages).strip())

        confidence = round(sum(word_confidences) / len(word_confidences) / 100, 4) if word_confidences else 0.0
        return "\n".join(texts), confidence, len(images)

    async def process_document(self, content: bytes, mime_type: str, file_name: str = None) -> OCRResult:
        """
        OCR a document and extract expense data.

        Raises:
            DocumentValidationError: Empty, oversize, unsupported or unreadable document
            OCRProcessingError: Tesseract failed or is not installed
        """
        try:
            self.validate_input(content, mime_type)
        except DocumentValidationError:
            track_ocr_document("rejected")
            raise

        logger.info(f"Processing document {file_name} ({mime_type}, {len(content)} bytes)")
        start = time.perf_counter()

        try:
            text, confidence, page_count = await asyncio.to_thread(self._run_ocr, content, mime_type)
        except DocumentValidationError:
            track_ocr_document("rejected", mime_type)
            raise
        except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError) as e:
            track_ocr_document("failed", mime_type)
            logger.error(f"OCR failed for {file_name}: {e}")
            raise OCRProcessingError("OCR engine failed to process the document", details={"error": str(e)}) from e

        extracted = extract_expense_data(text)
        is_valid, errors, warnings = validate_extracted_data(extracted, confidence, min_confidence=self.min_confidence)
        duration = time.perf_counter() - start

        track_ocr_document("processed", mime_type, duration)
        logger.info(f"OCR completed for {file_name}: confidence={confidence}, amount={extracted.amount}")

        return OCRResult(
            text=text,
            confidence=confidence,
            document_hash=hashlib.sha256(content).hexdigest(),
            processing_time_ms=int(duration * 1000),
            page_count=page_count,
            extracted_data=extracted,
            validation={"is_valid": is_valid, "errors": errors, "warnings": warnings},
        )


async def check_duplicate_document(db: AsyncSession, document_hash: str) -> bool:
    return await ExpenseDocument.get_by_hash(db, document_hash) is not None


async def save_document(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    result: OCRResult,
    file_name: str,
    mime_type: str,
    size_bytes: int,
    uploaded_by: Optional[uuid.UUID] = None,
) -> ExpenseDocument:
    """
    Persist an OCR result and its audit entry.

    Raises:
        DuplicateDocumentError: A document with the same hash exists
    """
    existing = await ExpenseDocument.get_by_hash(db, result.document_hash)
    if existing:
        track_ocr_document("duplicate", mime_type)
        raise DuplicateDocumentError(
            "Document was already submitted",
            details={"document_id": str(existing.id), "document_hash": result.document_hash},
        )

    document = ExpenseDocument(
        tenant_id=tenant_id,
        file_name=file_name,
        mime_type=mime_type,
        size_bytes=size_bytes,
        document_hash=result.document_hash,
        ocr_text=result.text,
        confidence=result.confidence,
        extracted_data=result.extracted_data.to_dict(),
        validation=result.validation,
        status="needs_review" if result.needs_review else "processed",
        uploaded_by=uploaded_by,
    )
    db.add(document)
    try:
        await db.flush()
    except IntegrityError as e:
        raise DuplicateDocumentError(
            "Document was already submitted",
            details={"document_hash": result.document_hash},
        ) from e

    db.add(ActivityLog(
        tenant_id=tenant_id,
        entity_type="expense_document",
        entity_id=document.id,
        action="process_document",
        details={
            "confidence": result.confidence,
            "processing_time_ms": result.processing_time_ms,
            "extracted_amount": result.extracted_data.to_dict()["amount"],
            "validation_errors": result.validation.get("errors", []),
        },
        performed_by=str(uploaded_by) if uploaded_by else None,
    ))
    await db.flush()
    return document
