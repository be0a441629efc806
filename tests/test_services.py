"""
Unit Tests for Tag Suggestions and Tenant Metrics

Tests:
- Keyword matching (accent-insensitive, PT/EN)
- Frequency boost and ordering
- Tag normalisation and usage counting
- Per-tenant counters and timings
"""

import uuid

import pytest

from conductor.services.metrics_service import MetricsService
from conductor.services.tags_intelligence import (
    TagsIntelligenceService,
    normalize_tag,
    tag_frequencies_from_tickets,
)


class TestTagSuggestions:
    """Test keyword-based tag suggestions"""

    @pytest.fixture
    def service(self):
        return TagsIntelligenceService()

    def test_accent_insensitive_matching(self, service):
        suggestions = service.suggest_tags("Não consigo acessar meu e-mail, senha bloqueada")

        assert [(s.tag, s.confidence) for s in suggestions] == [("acesso", 0.55), ("email", 0.55)]
        assert suggestions[0].matched_keywords == ["senha"]

    def test_more_keywords_more_confidence(self, service):
        suggestions = service.suggest_tags("Urgente: sistema parado, internet down")

        assert [s.tag for s in suggestions] == ["urgente", "rede", "software"]
        assert suggestions[0].confidence == 0.85
        assert suggestions[0].matched_keywords == ["urgente", "parado", "down"]

    def test_frequency_boost(self, service):
        suggestions = service.suggest_tags(
            "Urgente: sistema parado, internet down",
            tag_frequencies={"rede": 10, "software": 5},
        )

        confidences = {s.tag: s.confidence for s in suggestions}
        assert confidences == {"urgente": 0.85, "rede": 0.65, "software": 0.6}

    def test_existing_tags_not_suggested(self, service):
        suggestions = service.suggest_tags("Urgente: sistema parado", existing_tags=["Urgente"])

        assert [s.tag for s in suggestions] == ["software"]

    def test_limit(self, service):
        assert len(service.suggest_tags("Urgente: sistema parado, internet down", limit=1)) == 1

    def test_no_match(self, service):
        assert service.suggest_tags("Bom dia") == []
        assert service.suggest_tags("") == []

    def test_custom_vocabulary(self):
        service = TagsIntelligenceService(keywords={"frete": ["entrega", "frete", "transportadora"]})

        suggestions = service.suggest_tags("Entrega atrasada pela transportadora")

        assert suggestions[0].tag == "frete"
        assert suggestions[0].to_dict()["matched_keywords"] == ["entrega", "transportadora"]


class TestTagNormalisation:
    """Test tag normalisation and usage counts"""

    @pytest.mark.parametrize("raw,normalized", [
        ("Suporte Técnico_VIP!", "suporte-tecnico-vip"),
        ("  Rede  ", "rede"),
        ("faturamento--mensal", "faturamento-mensal"),
        ("???", ""),
    ])
    def test_normalize(self, raw, normalized):
        assert normalize_tag(raw) == normalized

    def test_frequencies(self):
        frequencies = tag_frequencies_from_tickets([["Rede", "rede "], None, ["Software"], ["!!"]])

        assert frequencies == {"rede": 2, "software": 1}


class TestMetricsService:
    """Test per-tenant counters and timings"""

    @pytest.fixture
    def metrics(self):
        return MetricsService()

    def test_counters(self, metrics):
        tenant_id = uuid.uuid4()

        metrics.increment(tenant_id, "tickets_created")
        metrics.increment(tenant_id, "tickets_created", 2)

        assert metrics.snapshot(tenant_id)["counters"] == {"tickets_created": 3}

    def test_timings(self, metrics):
        metrics.record_timing("t1", "ocr", 10)
        metrics.record_timing("t1", "ocr", 30)

        timing = metrics.snapshot("t1")["timings"]["ocr"]

        assert timing == {"count": 2, "total_ms": 40.0, "avg_ms": 20.0, "max_ms": 30.0}

    def test_tenants_are_isolated(self, metrics):
        metrics.increment("t1", "requests")

        assert metrics.snapshot("t2") == {"tenant_id": "t2", "counters": {}, "timings": {}}

    def test_reset_one_tenant(self, metrics):
        metrics.increment("t1", "requests")
        metrics.record_timing("t2", "requests", 5)

        metrics.reset("t1")

        assert metrics.tenants() == ["t2"]

    def test_reset_all(self, metrics):
        metrics.increment("t1", "requests")
        metrics.reset()

        assert metrics.tenants() == []
