"""
Registration wizard state (pure, no I/O).

Steps: 1 personal data, 2 plan selection, 3 documents, 4 payment confirmation
(paid plans) or terms (free plans), 5 terms (paid plans only).

The browser drives the same guards live; the server rebuilds a wizard from the
submitted payload and runs validate_all() before creating anything.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from app.aneti.errors import ValidationFailed
from app.aneti.modules.documents.service import ProvisionalDocuments, missing_documents
from app.aneti.modules.membership_plans.eligibility import ineligibility_reason
from app.aneti.utils import clean_str, parse_bool, parse_int

STEP_PERSONAL = 1
STEP_PLAN = 2
STEP_DOCUMENTS = 3
STEP_PAYMENT_OR_TERMS = 4
STEP_TERMS = 5

PERSONAL_FIELDS = (
    ("full_name", "Nome completo"),
    ("phone", "Telefone"),
    ("state", "Estado"),
    ("city", "Cidade"),
    ("area", "Área de atuação"),
)


class StepValidationError(ValidationFailed):
    def __init__(self, step: int, errors: list[str] | str):
        self.step = step
        super().__init__(errors)


class _PlanLike(Protocol):
    id: int
    name: str
    requires_payment: bool
    is_available_for_registration: bool
    min_experience_years: int | None
    max_experience_years: int | None


@dataclass
class RegistrationWizard:
    full_name: str = ""
    phone: str = ""
    state: str = ""
    city: str = ""
    area: str = ""
    plan: _PlanLike | None = None
    experience_years: int = 0
    is_student: bool = False
    documents: ProvisionalDocuments = field(default_factory=ProvisionalDocuments)
    accept_terms: bool = False
    step: int = STEP_PERSONAL
    submitting: bool = False

    @property
    def is_paid(self) -> bool:
        return bool(self.plan is not None and self.plan.requires_payment)

    @property
    def total_steps(self) -> int:
        return 5 if self.is_paid else 4

    @property
    def is_last_step(self) -> bool:
        return self.step == self.total_steps

    def step_errors(self, step: int | None = None) -> list[str]:
        step = self.step if step is None else step
        errors: list[str] = []
        if step == STEP_PERSONAL:
            for attr, label in PERSONAL_FIELDS:
                if not clean_str(getattr(self, attr)):
                    errors.append(f"{label} é obrigatório.")
        elif step == STEP_PLAN:
            if self.plan is None:
                errors.append("Selecione um plano de associação.")
            else:
                reason = ineligibility_reason(self.plan, self.experience_years, self.is_student)
                if reason:
                    errors.append(reason)
        elif step == STEP_DOCUMENTS:
            if self.plan is None:
                errors.append("Selecione um plano de associação.")
            else:
                errors.extend(missing_documents(self.plan, self.is_student, self.documents.types()))
        elif step == STEP_PAYMENT_OR_TERMS:
            if not self.is_paid and not self.accept_terms:
                errors.append("Você precisa aceitar os termos para continuar.")
        elif step == STEP_TERMS:
            if not self.accept_terms:
                errors.append("Você precisa aceitar os termos para continuar.")
        else:
            errors.append(f"Etapa inválida: {step}")
        return errors

    def can_advance(self, step: int | None = None) -> bool:
        return not self.step_errors(step)

    def next_step(self) -> int:
        errors = self.step_errors()
        if errors:
            raise StepValidationError(self.step, errors)
        if self.step < self.total_steps:
            self.step += 1
        return self.step

    def previous_step(self) -> int:
        """Going back never clears entered data."""
        if self.step > STEP_PERSONAL:
            self.step -= 1
        return self.step

    def can_submit(self) -> bool:
        return self.is_last_step and self.accept_terms and not self.submitting

    def begin_submission(self) -> None:
        if self.submitting:
            raise StepValidationError(self.step, "Envio já em andamento.")
        if not self.can_submit():
            raise StepValidationError(self.step, "Complete todas as etapas e aceite os termos antes de enviar.")
        self.submitting = True

    def end_submission(self) -> None:
        self.submitting = False

    def validate_all(self) -> list[str]:
        errors: list[str] = []
        for step in range(STEP_PERSONAL, self.total_steps + 1):
            errors.extend(self.step_errors(step))
        return errors

    @classmethod
    def from_payload(
        cls,
        payload: dict[str, Any],
        plan: _PlanLike | None,
        documents: ProvisionalDocuments | None = None,
    ) -> "RegistrationWizard":
        years = parse_int(payload.get("experienceYears"))
        wizard = cls(
            full_name=clean_str(payload.get("fullName")),
            phone=clean_str(payload.get("phone")),
            state=clean_str(payload.get("state")).upper(),
            city=clean_str(payload.get("city")),
            area=clean_str(payload.get("area")),
            plan=plan,
            experience_years=years if years is not None and years >= 0 else 0,
            is_student=parse_bool(payload.get("isStudent")),
            documents=documents or ProvisionalDocuments(),
            accept_terms=parse_bool(payload.get("acceptTerms")),
        )
        step = parse_int(payload.get("step"))
        if step is not None:
            wizard.step = max(STEP_PERSONAL, min(step, wizard.total_steps))
        return wizard
