"""Expense processing: OCR extraction, policy evaluation and fraud detection."""
