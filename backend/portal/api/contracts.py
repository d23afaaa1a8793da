from datetime import date
from typing import Literal

from pydantic import BaseModel, Field

from portal.workflow import ReviewDecision

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=160)
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=254)
    password: str = Field(..., min_length=8, max_length=256)


class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=1, max_length=256)


class AdminUserCreateRequest(RegisterRequest):
    role: Literal["reviewer", "admin"]


class TimelineEntry(BaseModel):
    activity: str = ""
    start_date: date | None = None
    end_date: date | None = None


class CapitalBudget(BaseModel):
    land_building: float = Field(default=0, ge=0)
    equipment: float = Field(default=0, ge=0)


class RevenueBudget(BaseModel):
    salaries: float = Field(default=0, ge=0)
    consumables: float = Field(default=0, ge=0)
    travel: float = Field(default=0, ge=0)
    workshop_seminar: float = Field(default=0, ge=0)


class Budget(BaseModel):
    capital: CapitalBudget = Field(default_factory=CapitalBudget)
    revenue: RevenueBudget = Field(default_factory=RevenueBudget)
    contingency: float = Field(default=0, ge=0)
    institutional_overhead: float = Field(default=0, ge=0)
    taxes: float = Field(default=0, ge=0)


class InvestigatorCV(BaseModel):
    educational_qualifications: str = ""
    past_experience: str = ""
    research_projects_handled: str = ""
    commercial_applications: str = ""
    papers_published: str = ""


class ProposalUpdateRequest(BaseModel):
    project_title: str | None = Field(default=None, max_length=300)
    definition_of_issue: str | None = None
    objectives: str | None = None
    justification: str | None = None
    work_plan: str | None = None
    methodology: str | None = None
    organization_of_work: str | None = None
    benefit_to_industry: str | None = None
    literature_survey: str | None = None
    rd_components: str | None = None
    timeline: list[TimelineEntry] | None = None
    budget: Budget | None = None
    investigator_cv: InvestigatorCV | None = None
    submit_for_review: bool = False


class ReviewRequest(BaseModel):
    decision: ReviewDecision
    comment: str = Field(..., min_length=10, max_length=5000)
