"""
Tags Intelligence Service

Keyword-based tag suggestions for tickets. Matching is accent-insensitive
and covers Portuguese and English vocabulary; tags that are popular in the
tenant get a small confidence boost.
"""

from collections import Counter
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional
import re
import unicodedata

# tag -> keywords (accent-free, lowercase)
TAG_KEYWORDS: Dict[str, List[str]] = {
    "hardware": ["hardware", "computador", "notebook", "monitor", "teclado", "mouse", "impressora", "printer",
                 "equipamento", "equipment"],
    "software": ["software", "sistema", "aplicativo", "programa", "app", "instalacao", "install", "atualizacao",
                 "update", "versao", "version"],
    "rede": ["rede", "network", "internet", "wifi", "vpn", "conexao", "connection", "lentidao", "slow"],
    "acesso": ["acesso", "access", "login", "senha", "password", "bloqueado", "locked", "permissao", "permission"],
    "email": ["email", "e-mail", "outlook", "caixa", "inbox", "spam"],
    "faturamento": ["fatura", "faturamento", "invoice", "billing", "nota", "cobranca", "boleto"],
    "pagamento": ["pagamento", "payment", "pix", "cartao", "card", "reembolso", "refund", "estorno"],
    "reclamacao": ["reclamacao", "complaint", "insatisfeito", "unhappy", "pessimo", "ruim", "terrible"],
    "cancelamento": ["cancelar", "cancelamento", "cancel", "cancellation", "encerrar", "rescisao"],
    "urgente": ["urgente", "urgent", "critico", "critical", "parado", "down", "emergencia", "emergency", "asap"],
    "duvida": ["duvida", "question", "como", "how", "ajuda", "help", "orientacao"],
    "contrato": ["contrato", "contract", "renovacao", "renewal", "aditivo", "sla"],
}

MAX_FREQUENCY_BOOST = 0.1


def strip_accents(value: str) -> str:
    normalized = unicodedata.normalize("NFKD", value)
    return "".join(c for c in normalized if not unicodedata.combining(c))


def normalize_tag(tag: str) -> str:
    """'Suporte Técnico_VIP!' -> 'suporte-tecnico-vip'"""
    value = strip_accents(tag.lower()).strip()
    value = re.sub(r"[\s_]+", "-", value)
    value = re.sub(r"[^a-z0-9-]", "", value)
    value = re.sub(r"-{2,}", "-", value)
    return value.strip("-")


def _words(text: str) -> List[str]:
    return re.findall(r"[a-z0-9]+(?:-[a-z0-9]+)*", strip_accents(text.lower()))


@dataclass
class TagSuggestion:
    tag: str
    confidence: float
    matched_keywords: List[str]

    def to_dict(self):
        return {
            "tag": self.tag,
            "confidence": self.confidence,
            "matched_keywords": self.matched_keywords,
        }


def tag_frequencies_from_tickets(tag_lists: Iterable[Optional[Iterable[str]]]) -> Dict[str, int]:
    """Count normalized tag usage across tickets."""
    counter = Counter()
    for tags in tag_lists:
        for tag in tags or []:
            normalized = normalize_tag(tag)
            if normalized:
                counter[normalized] += 1
    return dict(counter)


class TagsIntelligenceService:
    def __init__(self, keywords: Optional[Dict[str, List[str]]] = None):
        self.keywords = keywords or TAG_KEYWORDS

    def suggest_tags(
        self,
        text: str,
        existing_tags: Optional[Iterable[str]] = None,
        tag_frequencies: Optional[Dict[str, int]] = None,
        limit: int = 5,
    ) -> List[TagSuggestion]:
        """
        Suggest tags for a ticket text.

        Args:
            text: Subject and/or description
            existing_tags: Tags already on the ticket (never suggested again)
            tag_frequencies: Tenant usage counts per normalized tag
            limit: Maximum suggestions

        Returns:
            Suggestions sorted by confidence (desc), then tag
        """
        words = set(_words(text or ""))
        existing = {normalize_tag(t) for t in existing_tags or []}
        frequencies = tag_frequencies or {}
        top_frequency = max(frequencies.values(), default=0)

        suggestions = []
        for tag, keywords in self.keywords.items():
            if tag in existing:
                continue

            matched = [k for k in keywords if k in words]
            if not matched:
                continue

            confidence = min(0.95, 0.4 + 0.15 * len(matched))
            if top_frequency:
                confidence += MAX_FREQUENCY_BOOST * frequencies.get(tag, 0) / top_frequency
            confidence = round(min(0.99, confidence), 4)

            suggestions.append(TagSuggestion(tag=tag, confidence=confidence, matched_keywords=matched))

        suggestions.sort(key=lambda s: (-s.confidence, s.tag))
        return suggestions[:limit]
