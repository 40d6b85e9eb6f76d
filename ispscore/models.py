# ispscore/models.py
from sqlalchemy import (
    Integer, String, Date, DateTime, Boolean, ForeignKey, Numeric, Text, JSON, Enum, UniqueConstraint,
)
from sqlalchemy.orm import relationship, Mapped, mapped_column
from datetime import datetime, date
from decimal import Decimal
from typing import Optional

from .database import Base
from .config import DEPARTMENT_PRECEDENCE, RESOLVER_ORDER, REOPEN_GAP_MINUTES, REOPEN_PENALTY_DAYS

USER_ROLES = ("saas_owner", "super_admin", "admin", "user")
COMPANY_STATUSES = ("active", "inactive", "suspended")
RULE_TYPES = ("internal", "external", "both")


class Plan(Base):
    __tablename__ = "plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    max_users: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    companies: Mapped[list["Company"]] = relationship("Company", back_populates="plan")


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    cnpj: Mapped[str | None] = mapped_column(String(20), nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(40), nullable=True)
    email_contact: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ixc_domain: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ixc_token: Mapped[str | None] = mapped_column(String(255), nullable=True)
    logo_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    plan_id: Mapped[int | None] = mapped_column(ForeignKey("plans.id", ondelete="SET NULL"), nullable=True, index=True)
    status: Mapped[str] = mapped_column(Enum(*COMPANY_STATUSES, name="company_status"), default="active", nullable=False)
    expiration_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Ajustes del pipeline de puntuación por empresa
    department_precedence: Mapped[str] = mapped_column(String(120), default=DEPARTMENT_PRECEDENCE, nullable=False)
    resolver_order: Mapped[str] = mapped_column(String(120), default=RESOLVER_ORDER, nullable=False)
    reopen_gap_minutes: Mapped[int] = mapped_column(Integer, default=REOPEN_GAP_MINUTES, nullable=False)
    reopen_penalty_days: Mapped[int] = mapped_column(Integer, default=REOPEN_PENALTY_DAYS, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    plan: Mapped[Optional["Plan"]] = relationship("Plan", back_populates="companies")
    users: Mapped[list["User"]] = relationship("User", back_populates="company", cascade="all, delete-orphan")

    @property
    def has_erp_config(self) -> bool:
        return bool((self.ixc_domain or "").strip() and (self.ixc_token or "").strip())


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    company_id: Mapped[int | None] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    password: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(Enum(*USER_ROLES, name="user_role"), default="user", nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    permissions: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    company: Mapped[Optional["Company"]] = relationship("Company", back_populates="users")


class ScoreRule(Base):
    __tablename__ = "score_rules"
    __table_args__ = (UniqueConstraint("company_id", "subject_id", name="unique_rule"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(Integer, default=0, nullable=False, index=True)
    subject_id: Mapped[str] = mapped_column(String(50), nullable=False)
    points: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    type: Mapped[str] = mapped_column(Enum(*RULE_TYPES, name="rule_type"), default="both", nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class LeaderboardSnapshot(Base):
    __tablename__ = "leaderboard_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), index=True)
    kind: Mapped[str] = mapped_column(String(20), nullable=False, index=True)  # tv / dashboard
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False, index=True)
