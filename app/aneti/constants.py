"""
Central constants for the ANETI membership platform.
"""
from __future__ import annotations

from enum import Enum


class PlanTier(str, Enum):
    """Membership tiers known to the association. Values are the plan names."""

    PUBLICO = "Público"
    JUNIOR = "Júnior"
    PLENO = "Pleno"
    SENIOR = "Sênior"
    HONRA = "Honra"
    DIRETIVO = "Diretivo"

    @classmethod
    def from_name(cls, name: str | None) -> "PlanTier | None":
        cleaned = (name or "").strip()
        if cleaned.lower().startswith("plano "):
            cleaned = cleaned[len("plano "):].strip()
        for tier in cls:
            if tier.value == cleaned:
                return tier
        return None


USER_ROLES = ("member", "admin")

# Application review status
STATUS_DRAFT = "draft"
STATUS_PENDING = "pending"
STATUS_DOCUMENTS_REQUESTED = "documents_requested"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
APPLICATION_STATUSES = (
    STATUS_DRAFT,
    STATUS_PENDING,
    STATUS_DOCUMENTS_REQUESTED,
    STATUS_APPROVED,
    STATUS_REJECTED,
)
OPEN_APPLICATION_STATUSES = frozenset({STATUS_DRAFT, STATUS_PENDING, STATUS_DOCUMENTS_REQUESTED})

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"
PAYMENT_FREE = "free"
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_FAILED, PAYMENT_FREE)

BILLING_PERIODS = ("monthly", "yearly", "one_time")

DOC_IDENTITY = "identity"
DOC_EXPERIENCE = "experience"
DOC_STUDENT = "student"
DOCUMENT_TYPES = (DOC_IDENTITY, DOC_EXPERIENCE, DOC_STUDENT)
MAX_EXPERIENCE_DOCUMENTS = 5

APPEAL_TYPES = ("appeal", "response")
APPEAL_STATUSES = ("pending", "reviewed", "accepted", "rejected")

ALLOWED_UPLOAD_PREFIXES = ("image/",)
ALLOWED_UPLOAD_TYPES = frozenset({"application/pdf"})

BRAZILIAN_STATES = frozenset(
    {
        "AC", "AL", "AP", "AM", "BA", "CE", "DF", "ES", "GO", "MA", "MT", "MS", "MG", "PA",
        "PB", "PR", "PE", "PI", "RJ", "RN", "RS", "RO", "RR", "SC", "SP", "SE", "TO",
    }
)

IT_AREAS = (
    "Automação e Robótica",
    "Banco de Dados e Administração de Dados",
    "Ciência de Dados e Inteligência Artificial",
    "Cloud Computing e Arquitetura em Nuvem",
    "Desenvolvimento de Software",
    "DevOps e Engenharia de Confiabilidade (SRE)",
    "Educação e Pesquisa em TI",
    "Engenharia de Dados e Big Data",
    "ERP, CRM e Sistemas Corporativos",
    "Gestão de Projetos e Produtos de TI",
    "Governança de TI e Gestão de Serviços",
    "Infraestrutura de TI",
    "Segurança da Informação e Cibersegurança",
    "Suporte Técnico e Help Desk",
    "Tecnologia Aplicada à Saúde (Health Tech)",
    "Tecnologia para o Setor Público e Governo Digital",
    "Telecomunicações e Redes",
    "Testes e Qualidade de Software (QA)",
)
