"""
Default data for a freshly provisioned tenant schema.

Every tenant starts with the same ticket taxonomy (categories,
subcategories, actions) and one catch-all SLA definition so tickets get
clocks from day one.

Functions here take a synchronous Connection so they can run inside
``AsyncConnection.run_sync`` on a schema-translated connection.
"""
from typing import Dict, List
import uuid
import logging

from sqlalchemy.engine import Connection

from conductor.models.base import utcnow
from conductor.models.ticket import TicketCategory, TicketSubcategory, TicketAction
from conductor.models.sla import SlaDefinition

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    {"name": "Suporte Técnico", "description": "Problemas relacionados a infraestrutura, hardware e software",
     "color": "#3b82f6", "icon": "wrench"},
    {"name": "Atendimento ao Cliente", "description": "Dúvidas, reclamações e suporte geral ao cliente",
     "color": "#10b981", "icon": "user-check"},
    {"name": "Financeiro", "description": "Questões relacionadas a faturamento, pagamentos e contratos",
     "color": "#f59e0b", "icon": "dollar-sign"},
    {"name": "Administrativo", "description": "Processos internos, documentação e gestão",
     "color": "#8b5cf6", "icon": "file-text"},
]

DEFAULT_SUBCATEGORIES = [
    {"category": "Suporte Técnico", "name": "Hardware", "description": "Problemas com equipamentos físicos",
     "color": "#ef4444", "icon": "monitor"},
    {"category": "Suporte Técnico", "name": "Software", "description": "Problemas com aplicações e licenças",
     "color": "#8b5cf6", "icon": "code"},
    {"category": "Suporte Técnico", "name": "Rede", "description": "Problemas de conectividade e infraestrutura",
     "color": "#06b6d4", "icon": "wifi"},
    {"category": "Atendimento ao Cliente", "name": "Dúvidas Gerais", "description": "Questões sobre produtos e serviços",
     "color": "#10b981", "icon": "help-circle"},
    {"category": "Atendimento ao Cliente", "name": "Reclamações", "description": "Insatisfação com produtos ou serviços",
     "color": "#f59e0b", "icon": "alert-triangle"},
    {"category": "Atendimento ao Cliente", "name": "Sugestões", "description": "Ideias de melhoria e feedback",
     "color": "#3b82f6", "icon": "lightbulb"},
    {"category": "Financeiro", "name": "Faturamento", "description": "Dúvidas sobre cobranças e faturas",
     "color": "#f59e0b", "icon": "receipt"},
    {"category": "Financeiro", "name": "Pagamentos", "description": "Questões sobre forma de pagamento",
     "color": "#10b981", "icon": "credit-card"},
    {"category": "Financeiro", "name": "Contratos", "description": "Alterações e renovações contratuais",
     "color": "#8b5cf6", "icon": "file-signature"},
]

DEFAULT_ACTIONS = [
    {"subcategory": "Hardware", "name": "Diagnóstico de Hardware", "estimated_time_minutes": 60,
     "action_type": "diagnostic", "color": "#ef4444", "icon": "search"},
    {"subcategory": "Hardware", "name": "Substituição de Peças", "estimated_time_minutes": 120,
     "action_type": "repair", "color": "#ef4444", "icon": "tool"},
    {"subcategory": "Software", "name": "Reinstalação de Software", "estimated_time_minutes": 45,
     "action_type": "installation", "color": "#8b5cf6", "icon": "download"},
    {"subcategory": "Software", "name": "Atualização de Sistema", "estimated_time_minutes": 30,
     "action_type": "update", "color": "#8b5cf6", "icon": "refresh-cw"},
    {"subcategory": "Rede", "name": "Teste de Conectividade", "estimated_time_minutes": 20,
     "action_type": "testing", "color": "#06b6d4", "icon": "activity"},
    {"subcategory": "Rede", "name": "Configuração de Firewall", "estimated_time_minutes": 40,
     "action_type": "configuration", "color": "#06b6d4", "icon": "shield"},
    {"subcategory": "Faturamento", "name": "Verificar Cobrança", "estimated_time_minutes": 20,
     "action_type": "verification", "color": "#f59e0b", "icon": "calculator"},
    {"subcategory": "Faturamento", "name": "Reemitir Fatura", "estimated_time_minutes": 10,
     "action_type": "documentation", "color": "#f59e0b", "icon": "file-text"},
]

DEFAULT_SLA_DEFINITION = {
    "name": "SLA Padrão",
    "description": "Acordo padrão aplicado a todos os tickets",
    "type": "SLA",
    "priority": 5,
    "application_rules": [],
    "response_time_minutes": 240,
    "resolution_time_minutes": 1440,
    "business_hours_only": True,
    "working_days": [1, 2, 3, 4, 5],
    "working_hours": {"start": "08:00", "end": "18:00"},
    "timezone": "America/Sao_Paulo",
    "escalation_threshold_percent": 80,
}


def _row(tenant_id, **values) -> Dict:
    now = utcnow()
    return {"id": uuid.uuid4(), "tenant_id": tenant_id, "created_at": now, "updated_at": now, **values}


def seed_tenant_defaults(conn: Connection, tenant_id: uuid.UUID) -> Dict[str, int]:
    """
    Insert the default taxonomy and SLA definition.

    Args:
        conn: Sync connection already routed to the tenant schema
        tenant_id: Owner of the seeded rows

    Returns:
        Number of rows inserted per table
    """
    category_rows: List[Dict] = []
    category_ids: Dict[str, uuid.UUID] = {}
    for index, category in enumerate(DEFAULT_CATEGORIES, start=1):
        row = _row(tenant_id, sort_order=index, active=True, **category)
        category_ids[category["name"]] = row["id"]
        category_rows.append(row)

    subcategory_rows: List[Dict] = []
    subcategory_ids: Dict[str, uuid.UUID] = {}
    for index, subcategory in enumerate(DEFAULT_SUBCATEGORIES, start=1):
        values = dict(subcategory)
        category_id = category_ids[values.pop("category")]
        row = _row(tenant_id, category_id=category_id, sort_order=index, active=True, **values)
        subcategory_ids[subcategory["name"]] = row["id"]
        subcategory_rows.append(row)

    action_rows: List[Dict] = []
    for index, action in enumerate(DEFAULT_ACTIONS, start=1):
        values = dict(action)
        subcategory_id = subcategory_ids[values.pop("subcategory")]
        action_rows.append(_row(tenant_id, subcategory_id=subcategory_id, sort_order=index, active=True, **values))

    conn.execute(TicketCategory.__table__.insert(), category_rows)
    conn.execute(TicketSubcategory.__table__.insert(), subcategory_rows)
    conn.execute(TicketAction.__table__.insert(), action_rows)
    conn.execute(
        SlaDefinition.__table__.insert(),
        [_row(tenant_id, is_active=True, **DEFAULT_SLA_DEFINITION)],
    )

    counts = {
        "ticket_categories": len(category_rows),
        "ticket_subcategories": len(subcategory_rows),
        "ticket_actions": len(action_rows),
        "sla_definitions": 1,
    }
    logger.info(f"Seeded tenant {tenant_id}: {counts}")
    return counts
